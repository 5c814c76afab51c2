# Overview: Service-layer operations for invoice lifecycle; state machine, role policy and audit trail.

"""
E-Facture Invoice Lifecycle Service

================================================================================
PURPOSE: Enforce Draft -> Ready -> Submitted lifecycle for invoices
================================================================================

STATE MACHINE:
    DRAFT -> READY -> SUBMITTED

    DRAFT:     Data entry, can be edited/deleted by any role
    READY:     Reviewed and validated, can still be edited/deleted
    SUBMITTED: IMMUTABLE, terminal local marker (not an external filing)

RULES (NON-NEGOTIABLE):
1. Cannot skip states (DRAFT -> SUBMITTED is forbidden)
2. Cannot reverse states (READY -> DRAFT is forbidden)
3. SUBMITTED invoices reject every field and status edit, and deletion
4. Role gates per transition (see permissions.ROLE_TRANSITIONS):
   DRAFT -> READY: MANAGER, ADMIN    READY -> SUBMITTED: ADMIN
5. Every status assignment appends exactly one InvoiceStatusHistory row,
   including the initial DRAFT write and no-op edits
6. A status change is applied with its precondition re-checked at write
   time (UPDATE ... WHERE status = :expected); a lost race fails, it never
   silently overwrites a concurrently advanced state

ENTRY POINTS:
- invoice_service.update_invoice: general edit path, may carry a status change
- mark_ready: dedicated DRAFT -> READY (re-validates the persisted invoice)
- submit_invoice: dedicated READY -> SUBMITTED, ADMIN only

Both dedicated entry points and the edit path go through
authorize_status_change, so the policy is enforced in one place.
================================================================================
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import update

from ..extensions import db
from ..models import Company, Invoice, InvoiceStatusHistory
from ..permissions import SUBMIT_ROLES, roles_allowed_for
from ..validation import (
    ConflictError,
    InvoiceDraft,
    LineDraft,
    NotFoundError,
    ValidationError,
    validate_invoice,
)
from .concurrency import run_with_retry
from .permission_service import PermissionDeniedError, log_security_event
from .tenant_service import TenantContext, require_owned
from efacture.time_utils import get_clock, local_today


DRAFT = "DRAFT"
READY = "READY"
SUBMITTED = "SUBMITTED"

# Valid lifecycle states
VALID_STATUSES = {DRAFT, READY, SUBMITTED}

# The only forward moves the state machine knows about
VALID_TRANSITIONS = {
    (DRAFT, READY),
    (READY, SUBMITTED),
}


class TransitionDeniedError(PermissionDeniedError):
    """Status change not allowed for this role or from this state."""
    pass


class InvoiceLockedError(PermissionDeniedError):
    """The invoice is SUBMITTED and can no longer be edited or deleted."""
    pass


class InvoiceNotFoundError(NotFoundError):
    pass


class InvoiceStateConflictError(ConflictError):
    """The invoice's status changed between read and write."""
    pass


def validate_status(status: str) -> None:
    """
    Validate that a status value is one of the allowed states.

    Raises ValidationError (field "status") otherwise.
    """
    if status not in VALID_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_STATUSES))}",
            field_name="status",
        )


def can_transition(from_status: str, to_status: str) -> bool:
    """
    Check if a state transition is valid according to the state machine.

    Same-state "transitions" are edits and are allowed unless the invoice
    is SUBMITTED.
    """
    validate_status(from_status)
    validate_status(to_status)

    if from_status == to_status:
        return from_status != SUBMITTED

    return (from_status, to_status) in VALID_TRANSITIONS


def ensure_editable(invoice: Invoice, ctx: TenantContext, *, action: str = "edit") -> None:
    """Raise InvoiceLockedError if the invoice is SUBMITTED."""
    if invoice.status == SUBMITTED:
        log_security_event(
            user_id=ctx.user_id,
            event_type="INVOICE_LOCKED",
            success=False,
            action=action,
            reason=f"Invoice {invoice.id} is SUBMITTED",
            company_id=ctx.company_id,
        )
        raise InvoiceLockedError(f"Invoice {invoice.id} is submitted; {action} is not allowed")


def authorize_status_change(ctx: TenantContext, from_status: str, to_status: str) -> None:
    """
    Enforce the role-based transition table.

    | From -> To         | CLERK | MANAGER | ADMIN |
    | DRAFT -> READY     | deny  | allow   | allow |
    | READY -> SUBMITTED | deny  | deny    | allow |
    | anything else      | deny  | deny    | deny  |
    | no change (edit)   | allow unless SUBMITTED  |

    Raises TransitionDeniedError (an authorization failure, never a
    validation failure) and logs TRANSITION_DENIED.
    """
    validate_status(to_status)

    if from_status == to_status and from_status != SUBMITTED:
        return

    allowed = (
        can_transition(from_status, to_status)
        and ctx.role in roles_allowed_for(from_status, to_status)
    )
    if allowed:
        return

    log_security_event(
        user_id=ctx.user_id,
        event_type="TRANSITION_DENIED",
        success=False,
        action=f"{from_status}->{to_status}",
        reason=f"Role {ctx.role} cannot move invoice from {from_status} to {to_status}",
        company_id=ctx.company_id,
    )
    raise TransitionDeniedError(
        f"Role {ctx.role} cannot change status from {from_status} to {to_status}"
    )


def record_status_change(
    invoice: Invoice,
    *,
    old_status: str | None,
    new_status: str,
    changed_by_user_id: int,
    changed_at: datetime,
) -> InvoiceStatusHistory:
    """Append one audit row. Does not commit."""
    entry = InvoiceStatusHistory(
        company_id=invoice.company_id,
        invoice_id=invoice.id,
        old_status=old_status,
        new_status=new_status,
        changed_by_user_id=changed_by_user_id,
        changed_at=changed_at,
    )
    db.session.add(entry)
    return entry


def apply_status_change(
    invoice: Invoice,
    *,
    expected_status: str,
    new_status: str,
    ctx: TenantContext,
    changed_at: datetime,
) -> None:
    """
    Write the status with its precondition and append the history row.

    The UPDATE only matches while the stored status still equals
    expected_status, so two racing writers cannot both succeed. Also used
    for no-op edits (expected == new) to catch a concurrent submit.
    Does not commit.
    """
    result = db.session.execute(
        update(Invoice)
        .where(
            Invoice.id == invoice.id,
            Invoice.company_id == ctx.company_id,
            Invoice.status == expected_status,
        )
        .values(status=new_status, updated_at=changed_at)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise InvoiceStateConflictError(
            f"Invoice {invoice.id} is no longer {expected_status}; reload and retry"
        )

    invoice.status = new_status
    invoice.updated_at = changed_at
    record_status_change(
        invoice,
        old_status=expected_status,
        new_status=new_status,
        changed_by_user_id=ctx.user_id,
        changed_at=changed_at,
    )


def draft_from_invoice(invoice: Invoice) -> InvoiceDraft:
    """Snapshot a persisted invoice as a draft so the validator can re-run on it."""
    return InvoiceDraft(
        invoice_number=invoice.invoice_number,
        date=invoice.date,
        customer_name=invoice.customer_name,
        lines=[
            LineDraft(
                description=line.description,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
            )
            for line in invoice.lines
        ],
        subtotal_cents=invoice.subtotal_cents,
        vat_cents=invoice.vat_cents,
        total_cents=invoice.total_cents,
        status=invoice.status,
    )


def tenant_today(ctx: TenantContext, clock=None):
    company = db.session.get(Company, ctx.company_id)
    return local_today(company.timezone if company else None, clock)


def mark_ready(invoice_id: int, ctx: TenantContext, *, clock=None) -> Invoice:
    """
    Move a DRAFT invoice to READY (DRAFT -> READY).

    Re-runs the invoice validator on the persisted invoice, including the
    tenant-scoped invoice_number uniqueness re-check, to catch anything
    that changed since the invoice was created.

    Raises:
        InvoiceNotFoundError: not found within the tenant
        TransitionDeniedError / InvoiceLockedError: role or state forbids it
        ValidationError: the persisted invoice is no longer valid
        InvoiceStateConflictError: status changed concurrently
    """
    clock = clock or get_clock()

    def _op() -> Invoice:
        invoice = require_owned(Invoice, invoice_id, ctx, not_found=InvoiceNotFoundError, lock=True)
        ensure_editable(invoice, ctx)
        if invoice.status != DRAFT:
            log_security_event(
                user_id=ctx.user_id,
                event_type="TRANSITION_DENIED",
                success=False,
                action=f"{invoice.status}->{READY}",
                reason=f"Invoice {invoice.id} is {invoice.status}, not DRAFT",
                company_id=ctx.company_id,
            )
            raise TransitionDeniedError(f"Invoice {invoice.id} is not a DRAFT")
        authorize_status_change(ctx, invoice.status, READY)

        errors = validate_invoice(
            draft_from_invoice(invoice),
            ctx.company_id,
            existing_id=invoice.id,
            today=tenant_today(ctx, clock),
        )
        if errors:
            db.session.rollback()
            raise ValidationError(errors)

        apply_status_change(
            invoice,
            expected_status=DRAFT,
            new_status=READY,
            ctx=ctx,
            changed_at=clock.now(),
        )
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def submit_invoice(invoice_id: int, ctx: TenantContext, *, clock=None) -> Invoice:
    """
    Submit a READY invoice (READY -> SUBMITTED).

    Narrower than the general update path: requires the ADMIN role and the
    invoice to currently be READY. Once SUBMITTED the invoice is immutable.

    Raises:
        InvoiceNotFoundError: not found within the tenant
        TransitionDeniedError: actor is not ADMIN, or invoice is not READY
        InvoiceStateConflictError: status changed concurrently
    """
    clock = clock or get_clock()

    def _op() -> Invoice:
        invoice = require_owned(Invoice, invoice_id, ctx, not_found=InvoiceNotFoundError, lock=True)

        if ctx.role not in SUBMIT_ROLES or invoice.status != READY:
            log_security_event(
                user_id=ctx.user_id,
                event_type="TRANSITION_DENIED",
                success=False,
                action=f"{invoice.status}->{SUBMITTED}",
                reason=f"Submit requires ADMIN and READY (role={ctx.role}, status={invoice.status})",
                company_id=ctx.company_id,
            )
            raise TransitionDeniedError(
                f"Cannot submit invoice {invoice.id}: requires ADMIN role and READY status"
            )
        authorize_status_change(ctx, invoice.status, SUBMITTED)

        apply_status_change(
            invoice,
            expected_status=READY,
            new_status=SUBMITTED,
            ctx=ctx,
            changed_at=clock.now(),
        )
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def get_status_history(invoice_id: int, ctx: TenantContext) -> list[InvoiceStatusHistory]:
    """
    Ordered status transitions for an invoice within the tenant.

    History rows are retained after the invoice is deleted, so this answers
    for deleted invoices too. Raises InvoiceNotFoundError when the tenant
    has neither the invoice nor any history for it.
    """
    rows = (
        db.session.query(InvoiceStatusHistory)
        .filter_by(company_id=ctx.company_id, invoice_id=invoice_id)
        .order_by(InvoiceStatusHistory.changed_at.asc(), InvoiceStatusHistory.id.asc())
        .all()
    )
    if rows:
        return rows
    require_owned(Invoice, invoice_id, ctx, not_found=InvoiceNotFoundError)
    return rows
