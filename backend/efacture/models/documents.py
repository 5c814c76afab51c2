from __future__ import annotations

from ..extensions import db
from efacture.time_utils import to_utc_z


class InvoiceDocument(db.Model):
    """
    Rendered/archived document state for one invoice.

    Rendering and archival never fail the invoice write; their outcome
    lands here instead. FAILED rows are the retry queue
    (see `flask documents retry-failed`).
    """
    __tablename__ = "invoice_documents"
    __table_args__ = (
        db.Index("ix_invoice_documents_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, unique=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)

    storage_key = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="PENDING")
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)
    content_length = db.Column(db.Integer, nullable=True)

    archived_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "storage_key": self.storage_key,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "content_length": self.content_length,
            "archived_at": to_utc_z(self.archived_at) if self.archived_at else None,
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
        }
