# Overview: Pytest coverage for the invoice lifecycle state machine, role gates and audit trail.

"""
Lifecycle Tests

State machine: DRAFT -> READY -> SUBMITTED, no skipping, no going back.

| From -> To         | CLERK | MANAGER | ADMIN |
| DRAFT -> READY     | deny  | allow   | allow |
| READY -> SUBMITTED | deny  | deny    | allow |
| DRAFT -> SUBMITTED | deny  | deny    | deny  |
"""

import pytest
from sqlalchemy import update

from efacture.extensions import db
from efacture.models import Invoice, InvoiceStatusHistory, SecurityEvent
from efacture.services.invoice_service import create_invoice, delete_invoice, update_invoice
from efacture.services.lifecycle_service import (
    InvoiceLockedError,
    InvoiceNotFoundError,
    InvoiceStateConflictError,
    TransitionDeniedError,
    apply_status_change,
    can_transition,
    get_status_history,
    mark_ready,
    submit_invoice,
)
from efacture.validation import ValidationError
from conftest import invoice_payload


def new_invoice(ctx, number="INV-001"):
    return create_invoice(invoice_payload(number), ctx).invoice


def ready_invoice(ctx, number="INV-001"):
    invoice = new_invoice(ctx, number)
    return mark_ready(invoice.id, ctx)


def submitted_invoice(ctx, number="INV-001"):
    invoice = ready_invoice(ctx, number)
    return submit_invoice(invoice.id, ctx)


class TestStateMachine:
    @pytest.mark.parametrize(
        "from_status,to_status,allowed",
        [
            ("DRAFT", "READY", True),
            ("READY", "SUBMITTED", True),
            ("DRAFT", "SUBMITTED", False),
            ("READY", "DRAFT", False),
            ("SUBMITTED", "READY", False),
            ("SUBMITTED", "DRAFT", False),
            ("DRAFT", "DRAFT", True),
            ("READY", "READY", True),
            ("SUBMITTED", "SUBMITTED", False),
        ],
    )
    def test_can_transition(self, from_status, to_status, allowed):
        assert can_transition(from_status, to_status) is allowed

    def test_unknown_status_is_a_validation_error(self):
        with pytest.raises(ValidationError):
            can_transition("DRAFT", "PAID")


class TestRoleGates:
    """Status changes through the general update path."""

    def test_clerk_cannot_move_to_ready(self, db_session, clerk_ctx):
        invoice = new_invoice(clerk_ctx)
        with pytest.raises(TransitionDeniedError):
            update_invoice(invoice.id, {"status": "READY"}, clerk_ctx)
        assert db_session.get(Invoice, invoice.id).status == "DRAFT"

    def test_clerk_cannot_submit(self, db_session, admin_ctx, clerk_ctx):
        invoice = ready_invoice(admin_ctx)
        with pytest.raises(TransitionDeniedError):
            update_invoice(invoice.id, {"status": "SUBMITTED"}, clerk_ctx)
        with pytest.raises(TransitionDeniedError):
            submit_invoice(invoice.id, clerk_ctx)

    def test_manager_can_move_to_ready(self, db_session, manager_ctx):
        invoice = new_invoice(manager_ctx)
        result = update_invoice(invoice.id, {"status": "ready"}, manager_ctx)
        assert result.invoice.status == "READY"

    def test_manager_cannot_submit(self, db_session, manager_ctx):
        invoice = ready_invoice(manager_ctx)
        with pytest.raises(TransitionDeniedError):
            update_invoice(invoice.id, {"status": "SUBMITTED"}, manager_ctx)
        with pytest.raises(TransitionDeniedError):
            submit_invoice(invoice.id, manager_ctx)
        assert db_session.get(Invoice, invoice.id).status == "READY"

    def test_admin_can_submit_through_update(self, db_session, admin_ctx):
        invoice = ready_invoice(admin_ctx)
        result = update_invoice(invoice.id, {"status": "SUBMITTED"}, admin_ctx)
        assert result.invoice.status == "SUBMITTED"

    def test_admin_cannot_skip_ready(self, db_session, admin_ctx):
        invoice = new_invoice(admin_ctx)
        with pytest.raises(TransitionDeniedError):
            update_invoice(invoice.id, {"status": "SUBMITTED"}, admin_ctx)
        with pytest.raises(TransitionDeniedError):
            submit_invoice(invoice.id, admin_ctx)

    def test_nobody_moves_backwards(self, db_session, admin_ctx):
        invoice = ready_invoice(admin_ctx)
        with pytest.raises(TransitionDeniedError):
            update_invoice(invoice.id, {"status": "DRAFT"}, admin_ctx)

    def test_unknown_target_status(self, db_session, admin_ctx):
        invoice = new_invoice(admin_ctx)
        with pytest.raises(ValidationError) as exc:
            update_invoice(invoice.id, {"status": "PAID"}, admin_ctx)
        assert exc.value.errors[0].field == "status"

    def test_denial_is_logged(self, db_session, clerk_ctx):
        invoice = new_invoice(clerk_ctx)
        with pytest.raises(TransitionDeniedError):
            update_invoice(invoice.id, {"status": "READY"}, clerk_ctx)

        event = db_session.query(SecurityEvent).filter_by(event_type="TRANSITION_DENIED").one()
        assert event.user_id == clerk_ctx.user_id
        assert event.company_id == clerk_ctx.company_id
        assert event.action == "DRAFT->READY"
        assert event.success is False


class TestMarkReady:
    def test_moves_draft_to_ready(self, db_session, manager_ctx):
        invoice = new_invoice(manager_ctx)
        assert mark_ready(invoice.id, manager_ctx).status == "READY"

    def test_clerk_denied(self, db_session, clerk_ctx):
        invoice = new_invoice(clerk_ctx)
        with pytest.raises(TransitionDeniedError):
            mark_ready(invoice.id, clerk_ctx)

    def test_only_from_draft(self, db_session, admin_ctx):
        invoice = ready_invoice(admin_ctx)
        with pytest.raises(TransitionDeniedError):
            mark_ready(invoice.id, admin_ctx)

    def test_revalidates_persisted_invoice(self, db_session, admin_ctx, clock):
        invoice = new_invoice(admin_ctx)
        # Corrupt the stored totals behind the service's back
        db.session.execute(update(Invoice).where(Invoice.id == invoice.id).values(total_cents=1))
        db.session.commit()

        with pytest.raises(ValidationError) as exc:
            mark_ready(invoice.id, admin_ctx)
        assert "total" in {e.field for e in exc.value.errors}
        assert db_session.get(Invoice, invoice.id).status == "DRAFT"

    def test_submitted_is_locked(self, db_session, admin_ctx):
        invoice = submitted_invoice(admin_ctx)
        with pytest.raises(InvoiceLockedError):
            mark_ready(invoice.id, admin_ctx)

    def test_other_tenant_gets_not_found(self, db_session, admin_ctx, other_ctx):
        invoice = new_invoice(admin_ctx)
        with pytest.raises(InvoiceNotFoundError):
            mark_ready(invoice.id, other_ctx)


class TestSubmittedIsImmutable:
    @pytest.mark.parametrize(
        "change",
        [
            {"customer_name": "Someone Else"},
            {"invoice_number": "INV-999"},
            {"date": "2026-09-01"},
            {"vat": "0"},
            {"lines": [{"description": "Other", "quantity": 1, "unit_price": "1.00"}]},
            {"status": "SUBMITTED"},
            {},
        ],
    )
    def test_every_edit_fails(self, db_session, admin_ctx, manager_ctx, clerk_ctx, change):
        invoice = submitted_invoice(admin_ctx)
        for ctx in (admin_ctx, manager_ctx, clerk_ctx):
            with pytest.raises(InvoiceLockedError):
                update_invoice(invoice.id, change, ctx)

        stored = db_session.get(Invoice, invoice.id)
        assert stored.customer_name == "Client SARL"
        assert stored.status == "SUBMITTED"

    def test_cannot_submit_twice(self, db_session, admin_ctx):
        invoice = submitted_invoice(admin_ctx)
        with pytest.raises(TransitionDeniedError):
            submit_invoice(invoice.id, admin_ctx)

    def test_cannot_delete(self, db_session, admin_ctx):
        invoice = submitted_invoice(admin_ctx)
        with pytest.raises(InvoiceLockedError):
            delete_invoice(invoice.id, admin_ctx)
        assert db_session.get(Invoice, invoice.id) is not None


class TestStatusHistory:
    def test_one_row_per_status_assignment(self, db_session, admin_ctx, manager_ctx):
        invoice = new_invoice(manager_ctx)
        update_invoice(invoice.id, {"customer_name": "Renamed"}, manager_ctx)
        mark_ready(invoice.id, manager_ctx)
        submit_invoice(invoice.id, admin_ctx)

        history = get_status_history(invoice.id, admin_ctx)
        assert [(h.old_status, h.new_status, h.changed_by_user_id) for h in history] == [
            (None, "DRAFT", manager_ctx.user_id),
            ("DRAFT", "DRAFT", manager_ctx.user_id),
            ("DRAFT", "READY", manager_ctx.user_id),
            ("READY", "SUBMITTED", admin_ctx.user_id),
        ]

    def test_timestamps_come_from_the_clock(self, db_session, admin_ctx, clock):
        invoice = new_invoice(admin_ctx)
        clock.advance(hours=1)
        mark_ready(invoice.id, admin_ctx)

        history = get_status_history(invoice.id, admin_ctx)
        assert [h.to_dict()["changed_at"] for h in history] == [
            "2026-10-19T12:00:00Z",
            "2026-10-19T13:00:00Z",
        ]

    def test_denied_changes_leave_no_row(self, db_session, clerk_ctx):
        invoice = new_invoice(clerk_ctx)
        with pytest.raises(TransitionDeniedError):
            mark_ready(invoice.id, clerk_ctx)
        assert len(get_status_history(invoice.id, clerk_ctx)) == 1

    def test_history_is_retained_after_delete(self, db_session, admin_ctx):
        invoice = ready_invoice(admin_ctx)
        invoice_id = invoice.id
        delete_invoice(invoice_id, admin_ctx)

        assert db_session.get(Invoice, invoice_id) is None
        assert [h.new_status for h in get_status_history(invoice_id, admin_ctx)] == ["DRAFT", "READY"]

    def test_history_is_tenant_scoped(self, db_session, admin_ctx, other_ctx):
        invoice = new_invoice(admin_ctx)
        with pytest.raises(InvoiceNotFoundError):
            get_status_history(invoice.id, other_ctx)

    def test_unknown_invoice(self, db_session, admin_ctx):
        with pytest.raises(InvoiceNotFoundError):
            get_status_history(424242, admin_ctx)


class TestWriteTimePrecondition:
    def test_stale_expected_status_fails(self, db_session, admin_ctx, clock):
        invoice = new_invoice(admin_ctx)
        mark_ready(invoice.id, admin_ctx)

        # A writer that still believes the invoice is DRAFT
        with pytest.raises(InvoiceStateConflictError):
            apply_status_change(
                invoice,
                expected_status="DRAFT",
                new_status="READY",
                ctx=admin_ctx,
                changed_at=clock.now(),
            )

        assert db_session.get(Invoice, invoice.id).status == "READY"
        assert db_session.query(InvoiceStatusHistory).filter_by(invoice_id=invoice.id).count() == 2

    def test_concurrent_submit_only_one_wins(self, db_session, admin_ctx, clock):
        invoice = ready_invoice(admin_ctx)

        apply_status_change(invoice, expected_status="READY", new_status="SUBMITTED",
                            ctx=admin_ctx, changed_at=clock.now())
        db_session.commit()

        with pytest.raises(InvoiceStateConflictError):
            apply_status_change(invoice, expected_status="READY", new_status="SUBMITTED",
                                ctx=admin_ctx, changed_at=clock.now())

        submits = db_session.query(InvoiceStatusHistory).filter_by(
            invoice_id=invoice.id, new_status="SUBMITTED"
        ).count()
        assert submits == 1
