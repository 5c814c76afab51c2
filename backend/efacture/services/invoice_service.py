# Overview: Service-layer operations for invoices; the validated, tenant-scoped write path.

"""
Invoice Write Path

Every create/update runs: validate -> recompute totals -> persist (header +
lines + history row in one transaction) -> commit -> publish document.

Document publishing happens after commit and is best-effort; its outcome
never changes the result of the write (see document_service).

Totals are always server-computed:
- subtotal = sum of line totals
- vat      = from the payload (vat / vat_cents, or vat_rate applied to subtotal)
- total    = subtotal + vat
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Invoice, InvoiceLine
from ..money import AmountOutOfRangeError, round_half_away, vat_cents_for
from ..validation import (
    FieldError,
    InvoiceDraft,
    ValidationError,
    parse_invoice_payload,
    validate_invoice,
)
from .document_service import publish_invoice_documents
from .lifecycle_service import (
    DRAFT,
    InvoiceNotFoundError,
    VALID_STATUSES,
    apply_status_change,
    authorize_status_change,
    ensure_editable,
    record_status_change,
    tenant_today,
)
from .tenant_service import TenantContext, require_owned, scoped_query
from efacture.time_utils import get_clock


QUANTITY_STEP = Decimal("0.001")
UNIQUE_NUMBER_CONSTRAINT = "uq_invoices_company_number"
VAT_KEYS = ("vat", "vat_cents", "vat_rate")


@dataclass
class WriteResult:
    """Committed invoice plus any non-fatal document warnings."""
    invoice: Invoice
    document_warnings: list[str] = field(default_factory=list)


def recompute_totals(draft: InvoiceDraft) -> InvoiceDraft:
    """
    Fill subtotal/vat/total on a draft from its lines.

    Quantities are rounded to the stored precision first so the persisted
    line totals match what is recomputed later.
    """
    for line in draft.lines:
        if line.quantity is not None:
            line.quantity = round_half_away(line.quantity, QUANTITY_STEP)

    draft.subtotal_cents = sum(line.line_total_cents for line in draft.lines)
    if draft.vat_rate is not None:
        try:
            draft.vat_cents = vat_cents_for(draft.subtotal_cents, draft.vat_rate)
        except AmountOutOfRangeError:
            draft.vat_cents = 0
            draft.parse_errors.append(FieldError("vat", "VAT is out of range"))
    draft.total_cents = draft.subtotal_cents + draft.vat_cents
    return draft


def is_number_conflict(exc: IntegrityError) -> bool:
    """True when the IntegrityError came from the per-company invoice_number constraint."""
    message = str(getattr(exc, "orig", exc))
    return (
        UNIQUE_NUMBER_CONSTRAINT in message
        or "invoices.company_id, invoices.invoice_number" in message
    )


def number_conflict_error() -> ValidationError:
    return ValidationError([FieldError("invoice_number", "InvoiceNumber already exists")])


def _build_lines(draft: InvoiceDraft) -> list[InvoiceLine]:
    return [
        InvoiceLine(
            position=position,
            description=line.description,
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            line_total_cents=line.line_total_cents,
        )
        for position, line in enumerate(draft.lines, start=1)
    ]


def persist_new_invoice(draft: InvoiceDraft, ctx: TenantContext, now) -> Invoice:
    """
    Add a validated draft as a DRAFT invoice with its initial history row.

    Flushes but does not commit; the caller owns the transaction.
    """
    invoice = Invoice(
        company_id=ctx.company_id,
        invoice_number=draft.invoice_number,
        date=draft.date,
        customer_name=draft.customer_name,
        subtotal_cents=draft.subtotal_cents,
        vat_cents=draft.vat_cents,
        total_cents=draft.total_cents,
        status=DRAFT,
        created_by_user_id=ctx.user_id,
        created_at=now,
        updated_at=now,
    )
    invoice.lines = _build_lines(draft)
    db.session.add(invoice)
    db.session.flush()

    record_status_change(
        invoice,
        old_status=None,
        new_status=DRAFT,
        changed_by_user_id=ctx.user_id,
        changed_at=now,
    )
    db.session.flush()
    return invoice


def create_invoice(payload: dict[str, Any] | None, ctx: TenantContext, *, clock=None) -> WriteResult:
    """
    Create an invoice in DRAFT status.

    Any caller-supplied status is ignored. Raises ValidationError with every
    field problem found, including a lost invoice_number race.
    """
    clock = clock or get_clock()

    draft = parse_invoice_payload(payload)
    draft.status = DRAFT
    recompute_totals(draft)

    errors = validate_invoice(draft, ctx.company_id, today=tenant_today(ctx, clock))
    if errors:
        raise ValidationError(errors)

    try:
        invoice = persist_new_invoice(draft, ctx, clock.now())
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        if is_number_conflict(exc):
            raise number_conflict_error()
        raise

    warnings = publish_invoice_documents([invoice])
    return WriteResult(invoice=invoice, document_warnings=warnings)


def _payload_from_invoice(invoice: Invoice) -> dict[str, Any]:
    return {
        "invoice_number": invoice.invoice_number,
        "date": invoice.date,
        "customer_name": invoice.customer_name,
        "vat_cents": invoice.vat_cents,
        "status": invoice.status,
        "lines": [
            {
                "description": line.description,
                "quantity": line.quantity,
                "unit_price_cents": line.unit_price_cents,
            }
            for line in invoice.lines
        ],
    }


def merge_update_payload(invoice: Invoice, payload: dict[str, Any]) -> dict[str, Any]:
    """
    Overlay an update payload on the invoice's current values.

    Keys the caller leaves out keep their stored value. Any of vat /
    vat_cents / vat_rate replaces the stored VAT.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    merged = _payload_from_invoice(invoice)
    if any(key in payload for key in VAT_KEYS):
        merged.pop("vat_cents")
    merged.update(payload)
    return merged


def update_invoice(invoice_id: int, payload: dict[str, Any] | None, ctx: TenantContext, *, clock=None) -> WriteResult:
    """
    Update a DRAFT or READY invoice, optionally moving its status forward.

    Order of checks:
    1. Tenant-scoped load (InvoiceNotFoundError)
    2. SUBMITTED invoices are locked (InvoiceLockedError)
    3. Requested status change authorized (TransitionDeniedError)
    4. Full validation of the resulting invoice (ValidationError)

    The status is written with its precondition and a history row is
    appended even when the status does not change.
    """
    clock = clock or get_clock()

    invoice = require_owned(Invoice, invoice_id, ctx, not_found=InvoiceNotFoundError, lock=True)
    ensure_editable(invoice, ctx)

    draft = parse_invoice_payload(merge_update_payload(invoice, payload or {}))
    current_status = invoice.status
    target_status = draft.status or current_status
    if target_status not in VALID_STATUSES:
        raise ValidationError(
            [FieldError("status", f"Invalid status '{target_status}'")]
        )
    authorize_status_change(ctx, current_status, target_status)

    recompute_totals(draft)
    errors = validate_invoice(
        draft,
        ctx.company_id,
        existing_id=invoice.id,
        today=tenant_today(ctx, clock),
    )
    if errors:
        db.session.rollback()
        raise ValidationError(errors)

    now = clock.now()
    try:
        apply_status_change(
            invoice,
            expected_status=current_status,
            new_status=target_status,
            ctx=ctx,
            changed_at=now,
        )
        invoice.invoice_number = draft.invoice_number
        invoice.date = draft.date
        invoice.customer_name = draft.customer_name
        invoice.subtotal_cents = draft.subtotal_cents
        invoice.vat_cents = draft.vat_cents
        invoice.total_cents = draft.total_cents
        invoice.lines = _build_lines(draft)
        invoice.updated_at = now
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        if is_number_conflict(exc):
            raise number_conflict_error()
        raise

    warnings = publish_invoice_documents([invoice])
    return WriteResult(invoice=invoice, document_warnings=warnings)


def delete_invoice(invoice_id: int, ctx: TenantContext) -> None:
    """
    Delete a DRAFT or READY invoice and its lines.

    SUBMITTED invoices raise InvoiceLockedError. Status history rows are
    kept for the audit trail.
    """
    invoice = require_owned(Invoice, invoice_id, ctx, not_found=InvoiceNotFoundError, lock=True)
    ensure_editable(invoice, ctx, action="delete")
    db.session.delete(invoice)
    db.session.commit()


def get_invoice(invoice_id: int, ctx: TenantContext) -> Invoice:
    return require_owned(Invoice, invoice_id, ctx, not_found=InvoiceNotFoundError)


def list_invoices(
    ctx: TenantContext,
    *,
    status: str | None = None,
    page: int = 1,
    per_page: int = 50,
) -> dict[str, Any]:
    page = max(1, int(page or 1))
    per_page = max(1, min(200, int(per_page or 50)))

    query = scoped_query(Invoice, ctx)
    if status:
        status = status.strip().upper()
        if status not in VALID_STATUSES:
            raise ValidationError([FieldError("status", f"Invalid status '{status}'")])
        query = query.filter(Invoice.status == status)

    total = query.count()
    invoices = (
        query.order_by(Invoice.date.desc(), Invoice.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "invoices": [inv.to_dict(include_lines=False) for inv in invoices],
        "page": page,
        "per_page": per_page,
        "total": total,
        "pages": (total + per_page - 1) // per_page if per_page else 1,
    }
