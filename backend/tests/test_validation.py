# Overview: Pytest coverage for invoice payload parsing, money rounding and the invoice validator.

from datetime import date
from decimal import Decimal

import pytest

from efacture.money import (
    MAX_CENTS,
    AmountOutOfRangeError,
    MoneyFormatError,
    format_cents,
    line_total_cents,
    round_half_away,
    to_cents,
    vat_cents_for,
)
from efacture.permissions import Role, normalize_role
from efacture.services.invoice_service import recompute_totals
from efacture.time_utils import local_today, parse_calendar_date
from efacture.validation import (
    InvoiceDraft,
    LineDraft,
    ValidationError,
    parse_invoice_payload,
    validate_invoice,
)
from conftest import FIXED_NOW, FixedClock, invoice_payload


TODAY = date(2026, 10, 19)


def fields(errors):
    return {e.field for e in errors}


def valid_draft(**overrides) -> InvoiceDraft:
    draft = parse_invoice_payload(invoice_payload(**overrides))
    return recompute_totals(draft)


class TestMoney:
    def test_to_cents_rounds_half_away_from_zero(self):
        assert to_cents("12.345") == 1235
        assert to_cents("0.005") == 1
        assert to_cents(10) == 1000
        assert to_cents(9.99) == 999

    def test_to_cents_rejects_garbage(self):
        with pytest.raises(MoneyFormatError):
            to_cents("abc")
        with pytest.raises(MoneyFormatError):
            to_cents(True)
        with pytest.raises(MoneyFormatError):
            to_cents("NaN")

    @pytest.mark.parametrize("amount", ["1e30", "-1e30", "92233720368547758.08"])
    def test_to_cents_rejects_amounts_beyond_int64(self, amount):
        with pytest.raises(AmountOutOfRangeError):
            to_cents(amount)

    def test_to_cents_accepts_the_largest_amount(self):
        assert to_cents("92233720368547758.07") == MAX_CENTS

    def test_out_of_range_is_a_format_error(self):
        with pytest.raises(MoneyFormatError):
            round_half_away(Decimal("1e30"))
        with pytest.raises(MoneyFormatError):
            vat_cents_for(10 ** 30, "1e10")

    def test_line_total_uses_decimal_quantity(self):
        assert line_total_cents(Decimal("2"), 1000) == 2000
        assert line_total_cents(Decimal("0.333"), 1000) == 333
        assert line_total_cents(Decimal("1.5"), 333) == 500  # 499.5 -> 500

    def test_vat_at_twenty_percent(self):
        assert vat_cents_for(2000, "0.20") == 400
        assert vat_cents_for(1234, "0.20") == 247  # 246.8 -> 247

    def test_format_cents(self):
        assert format_cents(12000) == "120.00"
        assert format_cents(5) == "0.05"
        assert format_cents(None) == "0.00"


class TestDates:
    def test_accepted_formats(self):
        assert parse_calendar_date("2024-01-10") == date(2024, 1, 10)
        assert parse_calendar_date("01/10/2024") == date(2024, 1, 10)
        assert parse_calendar_date("2024/01/10") == date(2024, 1, 10)
        assert parse_calendar_date("2024-01-10T23:00:00Z") == date(2024, 1, 10)

    def test_blank_is_none_and_garbage_raises(self):
        assert parse_calendar_date("  ") is None
        assert parse_calendar_date(None) is None
        with pytest.raises(ValueError):
            parse_calendar_date("10th of January")

    def test_unknown_timezone_falls_back_to_utc(self):
        assert local_today("Not/AZone", FixedClock(FIXED_NOW)) == FIXED_NOW.date()


class TestRoles:
    def test_single_role_normalized(self):
        assert normalize_role("manager") == Role.MANAGER
        assert normalize_role(["ADMIN"]) == Role.ADMIN

    def test_multiple_or_unknown_roles_rejected(self):
        assert normalize_role(["ADMIN", "CLERK"]) is None
        assert normalize_role("OWNER") is None
        assert normalize_role(None) is None


class TestPayloadParsing:
    def test_totals_are_server_computed(self):
        draft = valid_draft(subtotal_cents=1, total_cents=1)
        assert draft.subtotal_cents == 10000
        assert draft.vat_cents == 2000
        assert draft.total_cents == 12000

    def test_explicit_vat_amount(self):
        draft = valid_draft(vat_rate=None, vat="7.50")
        assert draft.vat_cents == 750
        assert draft.total_cents == 10750

    def test_vat_defaults_to_zero(self):
        payload = invoice_payload()
        del payload["vat_rate"]
        draft = recompute_totals(parse_invoice_payload(payload))
        assert draft.vat_cents == 0
        assert draft.total_cents == draft.subtotal_cents

    def test_quantity_rounded_to_three_places(self):
        draft = valid_draft(lines=[{"description": "Hours", "quantity": "1.23456", "unit_price": "10"}])
        assert draft.lines[0].quantity == Decimal("1.235")
        assert draft.subtotal_cents == 1235

    def test_status_is_upper_cased(self):
        assert parse_invoice_payload(invoice_payload(status="ready")).status == "READY"

    def test_non_object_payload_rejected(self):
        with pytest.raises(ValidationError):
            parse_invoice_payload(["not", "a", "dict"])

    def test_coercion_errors_are_kept_for_the_validator(self):
        draft = parse_invoice_payload(invoice_payload(
            date="yesterday",
            lines=[{"description": "x", "quantity": "two", "unit_price": "ten"}],
        ))
        assert {"date", "lines[0].quantity", "lines[0].unit_price"} <= fields(draft.parse_errors)


class TestInvoiceValidator:
    def test_valid_invoice_has_no_errors(self, db_session, company_a):
        assert validate_invoice(valid_draft(), company_a.id, today=TODAY) == []

    def test_all_errors_reported_together(self, db_session, company_a):
        draft = recompute_totals(InvoiceDraft(
            invoice_number="inv 1",
            date=date(2026, 10, 20),
            customer_name=None,
            lines=[LineDraft(description=None, quantity=Decimal("0"), unit_price_cents=-5)],
        ))
        errors = validate_invoice(draft, company_a.id, today=TODAY)
        assert {
            "invoice_number",
            "date",
            "customer_name",
            "lines[0].description",
            "lines[0].quantity",
            "lines[0].unit_price",
            "total",
        } <= fields(errors)

    def test_future_date_rejected_today_accepted(self, db_session, company_a):
        assert "date" in fields(validate_invoice(valid_draft(date="2026-10-20"), company_a.id, today=TODAY))
        assert validate_invoice(valid_draft(date="2026-10-19"), company_a.id, today=TODAY) == []

    def test_invoice_number_format(self, db_session, company_a):
        for bad in ("inv-1", "INV_1", "INV 1", "X" * 65):
            errors = validate_invoice(valid_draft(number=bad), company_a.id, today=TODAY)
            assert "invoice_number" in fields(errors), bad

    def test_length_limits(self, db_session, company_a):
        draft = valid_draft(
            customer_name="C" * 101,
            lines=[{"description": "D" * 201, "quantity": "1", "unit_price": "1"}],
        )
        errors = validate_invoice(draft, company_a.id, today=TODAY)
        assert {"customer_name", "lines[0].description"} <= fields(errors)

    def test_at_least_one_line(self, db_session, company_a):
        errors = validate_invoice(valid_draft(lines=[]), company_a.id, today=TODAY)
        assert "lines" in fields(errors)

    def test_zero_total_rejected(self, db_session, company_a):
        draft = valid_draft(lines=[{"description": "Free sample", "quantity": "1", "unit_price": "0"}])
        assert "total" in fields(validate_invoice(draft, company_a.id, today=TODAY))

    def test_total_must_match(self, db_session, company_a):
        draft = valid_draft()
        draft.total_cents += 1
        errors = validate_invoice(draft, company_a.id, today=TODAY)
        assert any(e.message == "Total must equal SubTotal + VAT" for e in errors)

    def test_uniqueness_is_per_company(self, db_session, company_a, company_b, admin_ctx):
        from efacture.services.invoice_service import create_invoice

        create_invoice(invoice_payload("INV-9"), admin_ctx)

        taken = validate_invoice(valid_draft(number="INV-9"), company_a.id, today=TODAY)
        assert any(e.message == "InvoiceNumber already exists" for e in taken)
        assert validate_invoice(valid_draft(number="INV-9"), company_b.id, today=TODAY) == []

    def test_uniqueness_excludes_the_invoice_itself(self, db_session, company_a, admin_ctx):
        from efacture.services.invoice_service import create_invoice

        invoice = create_invoice(invoice_payload("INV-9"), admin_ctx).invoice
        errors = validate_invoice(valid_draft(number="INV-9"), company_a.id, existing_id=invoice.id, today=TODAY)
        assert errors == []
