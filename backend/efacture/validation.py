from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from .extensions import db
from .models import Invoice
from .money import (
    MAX_CENTS,
    AmountOutOfRangeError,
    MoneyFormatError,
    cents_in_range,
    line_total_cents,
    quantity_in_range,
    to_cents,
    to_decimal,
)
from .time_utils import parse_calendar_date


INVOICE_NUMBER_PATTERN = re.compile(r"^[A-Z0-9-]+$")
INVOICE_NUMBER_MAX_LENGTH = 64
CUSTOMER_NAME_MAX_LENGTH = 100
LINE_DESCRIPTION_MAX_LENGTH = 200


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message}


class ValidationError(ValueError):
    """400-level input problem. Carries every field error found, not just the first."""

    def __init__(self, errors: list[FieldError] | str, field_name: str | None = None):
        if isinstance(errors, str):
            errors = [FieldError(field_name or "__all__", errors)]
        self.errors = list(errors)
        super().__init__("; ".join(f"{e.field}: {e.message}" for e in self.errors))

    def to_dict(self) -> dict:
        return {"error": "validation_failed", "errors": [e.to_dict() for e in self.errors]}


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., state changed underneath us)."""


class NotFoundError(LookupError):
    """404-level tenant-scoped lookup miss. Never says whether another tenant owns the row."""


# =============================================================================
# Candidate invoices
# =============================================================================

@dataclass
class LineDraft:
    description: str | None
    quantity: Decimal | None
    unit_price_cents: int | None

    @property
    def line_total_cents(self) -> int:
        if self.quantity is None or self.unit_price_cents is None:
            return 0
        return line_total_cents(self.quantity, self.unit_price_cents)


@dataclass
class InvoiceDraft:
    """
    Proposed invoice state, before it touches the database.

    parse_errors holds coercion problems found while reading a payload so
    validate_invoice can report them together with business-rule errors.
    """
    invoice_number: str | None
    date: date | None
    customer_name: str | None
    lines: list[LineDraft] = field(default_factory=list)
    subtotal_cents: int = 0
    vat_cents: int = 0
    total_cents: int = 0
    status: str | None = None
    vat_rate: Decimal | None = None
    parse_errors: list[FieldError] = field(default_factory=list)


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def _parse_line(raw: Any, index: int, errors: list[FieldError]) -> LineDraft:
    prefix = f"lines[{index}]"
    if not isinstance(raw, dict):
        errors.append(FieldError(prefix, "Line must be an object"))
        return LineDraft(description=None, quantity=None, unit_price_cents=None)

    quantity = None
    if raw.get("quantity") not in (None, ""):
        try:
            quantity = to_decimal(raw.get("quantity"))
        except MoneyFormatError:
            errors.append(FieldError(f"{prefix}.quantity", "Quantity must be a number"))
        if quantity is not None and not quantity_in_range(quantity):
            errors.append(FieldError(f"{prefix}.quantity", "Quantity is out of range"))
            quantity = None

    unit_price_cents = None
    try:
        if raw.get("unit_price_cents") not in (None, ""):
            if isinstance(raw["unit_price_cents"], bool) or not isinstance(raw["unit_price_cents"], int):
                raise MoneyFormatError("unit_price_cents must be an integer")
            unit_price_cents = raw["unit_price_cents"]
            if not cents_in_range(unit_price_cents):
                raise AmountOutOfRangeError("unit_price_cents out of range")
        elif raw.get("unit_price") not in (None, ""):
            unit_price_cents = to_cents(raw.get("unit_price"))
    except AmountOutOfRangeError:
        unit_price_cents = None
        errors.append(FieldError(f"{prefix}.unit_price", "UnitPrice is out of range"))
    except MoneyFormatError:
        errors.append(FieldError(f"{prefix}.unit_price", "UnitPrice must be a number"))

    return LineDraft(
        description=_text(raw.get("description")),
        quantity=quantity,
        unit_price_cents=unit_price_cents,
    )


def parse_invoice_payload(payload: Any) -> InvoiceDraft:
    """
    Read an API payload into an InvoiceDraft.

    Accepted keys: invoice_number, date, customer_name, lines[{description,
    quantity, unit_price | unit_price_cents}], vat | vat_cents | vat_rate
    (percent), status. Totals are never read from the payload.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    errors: list[FieldError] = []

    invoice_date = None
    try:
        invoice_date = parse_calendar_date(payload.get("date"))
    except ValueError:
        errors.append(FieldError("date", "Date is invalid"))

    raw_lines = payload.get("lines")
    if raw_lines is None:
        raw_lines = []
    if not isinstance(raw_lines, list):
        errors.append(FieldError("lines", "Lines must be a list"))
        raw_lines = []
    lines = [_parse_line(raw, i, errors) for i, raw in enumerate(raw_lines)]

    vat_cents = None
    vat_rate = None
    try:
        if payload.get("vat_cents") not in (None, ""):
            if isinstance(payload["vat_cents"], bool) or not isinstance(payload["vat_cents"], int):
                raise MoneyFormatError("vat_cents must be an integer")
            vat_cents = payload["vat_cents"]
            if not cents_in_range(vat_cents):
                raise AmountOutOfRangeError("vat_cents out of range")
        elif payload.get("vat") not in (None, ""):
            vat_cents = to_cents(payload.get("vat"))
        elif payload.get("vat_rate") not in (None, ""):
            vat_rate = to_decimal(payload.get("vat_rate")) / 100
            if vat_rate < 0:
                errors.append(FieldError("vat_rate", "VAT rate cannot be negative"))
    except AmountOutOfRangeError:
        vat_cents = None
        errors.append(FieldError("vat", "VAT is out of range"))
    except MoneyFormatError:
        errors.append(FieldError("vat", "VAT must be a number"))

    status = _text(payload.get("status"))

    return InvoiceDraft(
        invoice_number=_text(payload.get("invoice_number")),
        date=invoice_date,
        customer_name=_text(payload.get("customer_name")),
        lines=lines,
        vat_cents=vat_cents if vat_cents is not None else 0,
        vat_rate=vat_rate,
        status=status.upper() if status else None,
        parse_errors=errors,
    )


# =============================================================================
# Invoice validator
# =============================================================================

def invoice_number_taken(company_id: int, invoice_number: str, existing_id: int | None = None) -> bool:
    q = db.session.query(Invoice.id).filter(
        Invoice.company_id == company_id,
        Invoice.invoice_number == invoice_number,
    )
    if existing_id is not None:
        q = q.filter(Invoice.id != existing_id)
    return q.first() is not None


def validate_invoice(
    draft: InvoiceDraft,
    company_id: int,
    existing_id: int | None = None,
    *,
    today: date,
) -> list[FieldError]:
    """
    Check structural and business validity of a proposed invoice.

    Every rule runs; all violations are returned together. The only
    database read is the invoice_number uniqueness check within the
    company (excluding existing_id, i.e. the invoice being updated). That
    check is a fast-fail: the unique constraint is the source of truth.

    Returns an empty list when the invoice is valid.
    """
    errors: list[FieldError] = list(draft.parse_errors)

    number = draft.invoice_number
    if not number:
        errors.append(FieldError("invoice_number", "InvoiceNumber is required"))
    else:
        if not INVOICE_NUMBER_PATTERN.match(number):
            errors.append(FieldError("invoice_number", "Invalid InvoiceNumber format"))
        if len(number) > INVOICE_NUMBER_MAX_LENGTH:
            errors.append(FieldError(
                "invoice_number", f"InvoiceNumber exceeds max length {INVOICE_NUMBER_MAX_LENGTH}"
            ))
        if invoice_number_taken(company_id, number, existing_id):
            errors.append(FieldError("invoice_number", "InvoiceNumber already exists"))

    if draft.date is None:
        if not any(e.field == "date" for e in errors):
            errors.append(FieldError("date", "Date is required"))
    elif draft.date > today:
        errors.append(FieldError("date", "Date cannot be in the future"))

    if not draft.customer_name:
        errors.append(FieldError("customer_name", "CustomerName is required"))
    elif len(draft.customer_name) > CUSTOMER_NAME_MAX_LENGTH:
        errors.append(FieldError(
            "customer_name", f"CustomerName exceeds max length {CUSTOMER_NAME_MAX_LENGTH}"
        ))

    if not draft.lines:
        errors.append(FieldError("lines", "At least one line item is required"))

    for i, line in enumerate(draft.lines):
        prefix = f"lines[{i}]"
        if not line.description:
            errors.append(FieldError(f"{prefix}.description", "Description is required"))
        elif len(line.description) > LINE_DESCRIPTION_MAX_LENGTH:
            errors.append(FieldError(
                f"{prefix}.description",
                f"Description exceeds max length {LINE_DESCRIPTION_MAX_LENGTH}",
            ))
        if line.quantity is None:
            if not any(e.field == f"{prefix}.quantity" for e in errors):
                errors.append(FieldError(f"{prefix}.quantity", "Quantity is required"))
        elif line.quantity <= 0:
            errors.append(FieldError(f"{prefix}.quantity", "Quantity must be greater than zero"))
        if line.unit_price_cents is None:
            if not any(e.field == f"{prefix}.unit_price" for e in errors):
                errors.append(FieldError(f"{prefix}.unit_price", "UnitPrice is required"))
        elif line.unit_price_cents < 0:
            errors.append(FieldError(f"{prefix}.unit_price", "UnitPrice cannot be negative"))
        elif line.quantity is not None and not cents_in_range(line.line_total_cents):
            errors.append(FieldError(f"{prefix}.line_total", "Line total is out of range"))

    if draft.subtotal_cents < 0:
        errors.append(FieldError("subtotal", "SubTotal cannot be negative"))
    elif draft.subtotal_cents > MAX_CENTS:
        errors.append(FieldError("subtotal", "SubTotal is out of range"))
    if draft.vat_cents < 0:
        errors.append(FieldError("vat", "VAT cannot be negative"))
    elif draft.vat_cents > MAX_CENTS:
        errors.append(FieldError("vat", "VAT is out of range"))
    if draft.total_cents > MAX_CENTS:
        errors.append(FieldError("total", "Total is out of range"))
    if draft.total_cents <= 0:
        errors.append(FieldError("total", "Total must be greater than zero"))
    if draft.total_cents != draft.subtotal_cents + draft.vat_cents:
        errors.append(FieldError("total", "Total must equal SubTotal + VAT"))

    return errors
