# backend/efacture/config.py
from __future__ import annotations
import os


def _csv_env(name: str, default: str) -> set[str]:
    raw = os.environ.get(name, default)
    return {item.strip() for item in raw.split(",") if item.strip()}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/efacture.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///efacture.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # CSV import applies one fixed VAT rate to every imported invoice
    IMPORT_VAT_RATE = os.environ.get("IMPORT_VAT_RATE", "0.20")

    # Rendered invoice documents
    DOCUMENT_ARCHIVE_BACKEND = os.environ.get("DOCUMENT_ARCHIVE_BACKEND", "filesystem")
    DOCUMENT_ARCHIVE_PATH = os.environ.get("DOCUMENT_ARCHIVE_PATH", "")  # empty -> <instance>/documents
    DOCUMENT_BUCKET = os.environ.get("DOCUMENT_BUCKET", "invoices")
    DOCUMENT_S3_ENDPOINT = os.environ.get("DOCUMENT_S3_ENDPOINT")  # e.g. http://minio:9000
    DOCUMENT_S3_REGION = os.environ.get("DOCUMENT_S3_REGION", "us-east-1")
    DOCUMENT_TIMEOUT_SECONDS = float(os.environ.get("DOCUMENT_TIMEOUT_SECONDS", "10"))
    DOCUMENT_WORKERS = int(os.environ.get("DOCUMENT_WORKERS", "4"))
    DOCUMENT_URL_TTL_SECONDS = int(os.environ.get("DOCUMENT_URL_TTL_SECONDS", "60"))

    CORS_ALLOWED_ORIGINS = _csv_env(
        "CORS_ALLOWED_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173,http://127.0.0.1:5173",
    )

    # Bearer sessions
    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "24"))
    SESSION_IDLE_MINUTES = int(os.environ.get("SESSION_IDLE_MINUTES", "120"))
