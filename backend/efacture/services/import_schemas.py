from __future__ import annotations

import csv
import io
import os
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from ..money import (
    AmountOutOfRangeError,
    MoneyFormatError,
    quantity_in_range,
    to_cents,
    to_decimal,
)
from efacture.time_utils import parse_calendar_date


REQUIRED_COLUMNS = ("InvoiceNumber", "Date", "CustomerName", "Description", "Quantity", "UnitPrice")
ALLOWED_EXTENSIONS = (".csv",)

# Data rows are numbered from 2; row 1 is the header.
FIRST_DATA_ROW = 2


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def _to_number(value: Any, delimiter: str) -> Decimal | None:
    text = _to_text(value)
    if text is None:
        return None
    # "1,5" is a decimal comma in semicolon-separated exports
    if delimiter == ";" and "," in text and "." not in text:
        text = text.replace(",", ".")
    try:
        return to_decimal(text)
    except MoneyFormatError:
        return None


@dataclass
class InvoiceCsvRecord:
    """One data row, values as read from the file (stripped, not yet parsed)."""
    invoice_number: str | None
    date: str | None
    customer_name: str | None
    description: str | None
    quantity: str | None
    unit_price: str | None
    delimiter: str = ","


@dataclass
class RowResult:
    row_number: int
    record: InvoiceCsvRecord
    errors: list[str] = field(default_factory=list)
    invoice_date: date | None = None
    quantity: Decimal | None = None
    unit_price_cents: int | None = None

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {"row_number": self.row_number, "errors": list(self.errors)}


def sniff_delimiter(header_line: str) -> str:
    return ";" if ";" in header_line else ","


def _header_line(text: str) -> str:
    return text.splitlines()[0] if text else ""


def check_file(filename: str | None, text: str | None) -> list[str]:
    """
    File-level pre-check. Returns every structural problem found.

    - extension must be .csv
    - content non-empty with a header line
    - header holds every REQUIRED_COLUMNS name (case-insensitive, any order)
    """
    errors: list[str] = []

    ext = os.path.splitext(filename or "")[1].lower()
    if ext not in ALLOWED_EXTENSIONS:
        errors.append("Only .csv files are allowed.")

    header_line = _header_line(text or "")
    if not header_line.strip():
        errors.append("File is empty or missing header.")
        return errors

    delimiter = sniff_delimiter(header_line)
    headers = {h.strip().strip('"').lower() for h in header_line.split(delimiter)}
    for column in REQUIRED_COLUMNS:
        if column.lower() not in headers:
            errors.append(f"Missing required column: {column}")

    return errors


def parse_records(text: str) -> list[InvoiceCsvRecord]:
    """
    Read all data rows into records.

    Header names are matched case-insensitively; extra columns are ignored.
    Completely blank lines are skipped.
    """
    delimiter = sniff_delimiter(_header_line(text))
    reader = csv.reader(io.StringIO(text), delimiter=delimiter)

    try:
        header = next(reader)
    except StopIteration:
        return []
    index = {name.strip().lower(): i for i, name in enumerate(header)}

    def cell(row: list[str], column: str) -> str | None:
        i = index.get(column.lower())
        if i is None or i >= len(row):
            return None
        return _to_text(row[i])

    records: list[InvoiceCsvRecord] = []
    for row in reader:
        if not any(value.strip() for value in row):
            continue
        records.append(
            InvoiceCsvRecord(
                invoice_number=cell(row, "InvoiceNumber"),
                date=cell(row, "Date"),
                customer_name=cell(row, "CustomerName"),
                description=cell(row, "Description"),
                quantity=cell(row, "Quantity"),
                unit_price=cell(row, "UnitPrice"),
                delimiter=delimiter,
            )
        )
    return records


def validate_row(record: InvoiceCsvRecord, row_number: int) -> RowResult:
    """Check one record. All problems are collected; parsed values are kept on the result."""
    result = RowResult(row_number=row_number, record=record)

    if not record.invoice_number:
        result.errors.append("InvoiceNumber is required.")

    try:
        result.invoice_date = parse_calendar_date(record.date)
    except ValueError:
        result.invoice_date = None
    if result.invoice_date is None:
        result.errors.append("Date is invalid or missing.")

    if not record.customer_name:
        result.errors.append("CustomerName is required.")
    if not record.description:
        result.errors.append("Description is required.")

    result.quantity = _to_number(record.quantity, record.delimiter)
    if result.quantity is None or result.quantity <= 0:
        result.errors.append("Quantity must be greater than zero.")
    elif not quantity_in_range(result.quantity):
        result.errors.append("Quantity is out of range.")
        result.quantity = None

    unit_price = _to_number(record.unit_price, record.delimiter)
    if unit_price is None:
        result.errors.append("UnitPrice is invalid or missing.")
    elif unit_price < 0:
        result.errors.append("UnitPrice cannot be negative.")
    else:
        try:
            result.unit_price_cents = to_cents(unit_price)
        except AmountOutOfRangeError:
            result.errors.append("UnitPrice is out of range.")

    return result
