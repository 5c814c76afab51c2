# backend/efacture/routes/system.py
"""
System health and version endpoints.

GET /health checks the database, the session table and the document
retry queue. FAILED documents make the service "degraded" (still 200);
an exception in any check makes it "unhealthy" (503).

GET /version returns non-sensitive deployment information only.
"""

import sys
import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Company, Invoice, InvoiceDocument, SessionToken
from efacture.time_utils import utcnow

system_bp = Blueprint("system", __name__)

API_VERSION = "1.0.0"


def _timed(name: str, check) -> dict:
    """Run check() -> (status, details) and wrap it with latency and errors."""
    started = time.perf_counter()
    try:
        status, details = check()
        result = {"status": status, "details": details}
    except Exception:
        current_app.logger.exception("Health check %s failed", name)
        result = {"status": "unhealthy", "error": f"{name} check failed"}
    result["latency_ms"] = round((time.perf_counter() - started) * 1000, 2)
    return result


def _database():
    return "healthy", {
        "companies": db.session.query(Company).count(),
        "invoices": db.session.query(Invoice).count(),
    }


def _sessions():
    active = db.session.query(SessionToken).filter(
        SessionToken.is_revoked.is_(False),
        SessionToken.expires_at >= utcnow(),
    ).count()
    return "healthy", {"active_sessions": active}


def _document_queue():
    failed = db.session.query(InvoiceDocument).filter_by(status="FAILED").count()
    return ("degraded" if failed else "healthy"), {"failed_documents": failed}


@system_bp.get("/health")
def health():
    started = time.perf_counter()
    checks = {
        "database": _timed("database", _database),
        "session_service": _timed("session_service", _sessions),
        "document_queue": _timed("document_queue", _document_queue),
    }
    statuses = {check["status"] for check in checks.values()}

    if "unhealthy" in statuses:
        overall, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall, http_status = "degraded", 200
    else:
        overall, http_status = "healthy", 200

    return {
        "status": overall,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.perf_counter() - started) * 1000, 2),
        "checks": checks,
    }, http_status


@system_bp.get("/version")
def version():
    return {
        "api_version": API_VERSION,
        "environment": "development" if current_app.debug else "production",
        "python_version": sys.version.split()[0],
        "server_time": utcnow().isoformat() + "Z",
    }
