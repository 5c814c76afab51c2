from __future__ import annotations

from ..extensions import db
from efacture.money import format_cents
from efacture.time_utils import to_utc_z


class Invoice(db.Model):
    """
    Invoice document with lifecycle.

    DRAFT and READY invoices can be edited or deleted; SUBMITTED is
    terminal.

    INVARIANTS:
    - company_id is set at creation and never changes
    - invoice_number is unique within a company (database constraint)
    - subtotal_cents == sum(line_total_cents), total_cents == subtotal_cents + vat_cents
    - lines are owned exclusively and replaced wholesale on update
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("company_id", "invoice_number", name="uq_invoices_company_number"),
        db.Index("ix_invoices_company_status", "company_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)

    invoice_number = db.Column(db.String(64), nullable=False)
    date = db.Column(db.Date, nullable=False)
    customer_name = db.Column(db.String(100), nullable=False)

    # All amounts in cents (signed 64-bit)
    subtotal_cents = db.Column(db.BigInteger, nullable=False, default=0)
    vat_cents = db.Column(db.BigInteger, nullable=False, default=0)
    total_cents = db.Column(db.BigInteger, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    lines = db.relationship(
        "InvoiceLine",
        order_by="InvoiceLine.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    document = db.relationship(
        "InvoiceDocument",
        uselist=False,
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.invoice_number!r} status={self.status}>"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "company_id": self.company_id,
            "invoice_number": self.invoice_number,
            "date": self.date.isoformat() if self.date else None,
            "customer_name": self.customer_name,
            "subtotal_cents": self.subtotal_cents,
            "vat_cents": self.vat_cents,
            "total_cents": self.total_cents,
            "subtotal": format_cents(self.subtotal_cents),
            "vat": format_cents(self.vat_cents),
            "total": format_cents(self.total_cents),
            "status": self.status,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class InvoiceLine(db.Model):
    """
    Individual line items on an invoice.

    Lines keep a plain invoice_id foreign key and no back-reference;
    the owning Invoice holds them in order.
    """
    __tablename__ = "invoice_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_invoice_lines_quantity_positive"),
        db.CheckConstraint("unit_price_cents >= 0", name="ck_invoice_lines_price_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    description = db.Column(db.String(200), nullable=False)
    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    unit_price_cents = db.Column(db.BigInteger, nullable=False)
    line_total_cents = db.Column(db.BigInteger, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "position": self.position,
            "description": self.description,
            "quantity": str(self.quantity) if self.quantity is not None else None,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "unit_price": format_cents(self.unit_price_cents),
            "line_total": format_cents(self.line_total_cents),
        }


class InvoiceStatusHistory(db.Model):
    """
    Append-only audit trail of invoice status assignments.

    One row per status assignment, including the initial DRAFT write
    (old_status NULL) and no-op edits (old_status == new_status).

    RETENTION: invoice_id is a plain indexed column, not a foreign key.
    Rows outlive the invoice when it is deleted so the audit trail stays
    complete; company_id keeps them tenant-scoped.
    """
    __tablename__ = "invoice_status_history"
    __table_args__ = (
        db.Index("ix_invoice_status_history_invoice", "company_id", "invoice_id", "changed_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False)
    invoice_id = db.Column(db.Integer, nullable=False, index=True)

    old_status = db.Column(db.String(16), nullable=True)
    new_status = db.Column(db.String(16), nullable=False)

    changed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    changed_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "changed_by_user_id": self.changed_by_user_id,
            "changed_at": to_utc_z(self.changed_at),
        }
