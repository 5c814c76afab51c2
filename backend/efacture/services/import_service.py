# Overview: Service-layer operations for CSV invoice imports; check, validate, group, persist.

"""
CSV Invoice Import

Pipeline:
1. File pre-check (extension, header, required columns)
2. Parse data rows; no rows is a failure
3. Row validation; any bad row fails the whole import, nothing is created
4. Group rows by InvoiceNumber (exact match, order of first appearance)
5. Build one DRAFT invoice per group at the fixed import VAT rate and run
   the invoice validator on each; any failure again creates nothing
6. Persist each invoice in its own savepoint (header + lines + history)
7. After commit, publish each invoice's document independently

The import is all-or-nothing for validation. At persist time a lost
invoice_number race skips only that invoice and is reported in conflicts.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..money import to_decimal
from ..validation import InvoiceDraft, LineDraft, validate_invoice
from .document_service import publish_invoice_documents
from .import_schemas import FIRST_DATA_ROW, RowResult, check_file, parse_records, validate_row
from .invoice_service import is_number_conflict, persist_new_invoice, recompute_totals
from .lifecycle_service import DRAFT, tenant_today
from .tenant_service import TenantContext
from efacture.time_utils import get_clock


DEFAULT_IMPORT_VAT_RATE = "0.20"

LINE_FIELD_PATTERN = re.compile(r"^lines\[(\d+)\]")


class ImportValidationError(ValueError):
    """The file was rejected. Carries file-level or per-row errors, never both."""

    def __init__(self, file_errors: list[str] | None = None, row_errors: list[RowResult] | None = None):
        self.file_errors = list(file_errors or [])
        self.row_errors = list(row_errors or [])
        summary = self.file_errors or [f"row {r.row_number}: {'; '.join(r.errors)}" for r in self.row_errors]
        super().__init__("; ".join(summary))

    def to_dict(self) -> dict:
        if self.file_errors:
            return {"error": "import_failed", "file_errors": self.file_errors}
        return {"error": "import_failed", "row_errors": [r.to_dict() for r in self.row_errors]}


@dataclass
class ImportResult:
    imported_record_count: int
    created_invoice_count: int
    invoice_ids: list[int] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)
    document_warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "imported_record_count": self.imported_record_count,
            "created_invoice_count": self.created_invoice_count,
            "invoice_ids": self.invoice_ids,
            "conflicts": self.conflicts,
            "document_warnings": self.document_warnings,
        }


def decode_upload(content: bytes | str) -> str:
    if isinstance(content, str):
        return content
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ImportValidationError(file_errors=["File must be UTF-8 encoded."])


def import_vat_rate():
    return to_decimal(current_app.config.get("IMPORT_VAT_RATE", DEFAULT_IMPORT_VAT_RATE))


def group_rows(results: list[RowResult]) -> dict[str, list[RowResult]]:
    """Group valid rows by invoice number, keeping order of first appearance."""
    groups: dict[str, list[RowResult]] = {}
    for result in results:
        groups.setdefault(result.record.invoice_number, []).append(result)
    return groups


def draft_from_group(invoice_number: str, rows: list[RowResult], vat_rate) -> InvoiceDraft:
    """Header fields from the group's first row, one line per row."""
    first = rows[0]
    draft = InvoiceDraft(
        invoice_number=invoice_number,
        date=first.invoice_date,
        customer_name=first.record.customer_name,
        lines=[
            LineDraft(
                description=row.record.description,
                quantity=row.quantity,
                unit_price_cents=row.unit_price_cents,
            )
            for row in rows
        ],
        status=DRAFT,
        vat_rate=vat_rate,
    )
    return recompute_totals(draft)


def _row_for_field(field_name: str, rows: list[RowResult]) -> RowResult:
    match = LINE_FIELD_PATTERN.match(field_name)
    if match and int(match.group(1)) < len(rows):
        return rows[int(match.group(1))]
    return rows[0]


def validate_groups(groups: dict[str, list[RowResult]], drafts: dict[str, InvoiceDraft], ctx: TenantContext, today) -> list[RowResult]:
    """
    Run the invoice validator on every grouped draft.

    Errors are attached to the row they came from: line errors to that
    line's row, header errors to the group's first row.
    """
    failed: dict[int, RowResult] = {}
    for number, draft in drafts.items():
        rows = groups[number]
        for error in validate_invoice(draft, ctx.company_id, today=today):
            row = _row_for_field(error.field, rows)
            entry = failed.setdefault(row.row_number, RowResult(row_number=row.row_number, record=row.record))
            entry.errors.append(error.message)
    return [failed[n] for n in sorted(failed)]


def import_invoices_csv(
    filename: str | None,
    content: bytes | str,
    ctx: TenantContext,
    *,
    clock=None,
) -> ImportResult:
    """
    Import a CSV file of invoice lines as DRAFT invoices.

    Raises ImportValidationError with file_errors or row_errors; in that
    case no invoice is created.
    """
    clock = clock or get_clock()
    text = decode_upload(content)

    file_errors = check_file(filename, text)
    if file_errors:
        raise ImportValidationError(file_errors=file_errors)

    records = parse_records(text)
    if not records:
        raise ImportValidationError(file_errors=["File contains no data rows."])

    results = [validate_row(record, row_number) for row_number, record in enumerate(records, start=FIRST_DATA_ROW)]
    invalid = [r for r in results if not r.is_valid]
    if invalid:
        raise ImportValidationError(row_errors=invalid)

    groups = group_rows(results)
    vat_rate = import_vat_rate()
    drafts = {number: draft_from_group(number, rows, vat_rate) for number, rows in groups.items()}

    invalid = validate_groups(groups, drafts, ctx, tenant_today(ctx, clock))
    if invalid:
        raise ImportValidationError(row_errors=invalid)

    now = clock.now()
    created = []
    imported_records = 0
    conflicts: list[str] = []

    for number, draft in drafts.items():
        nested = db.session.begin_nested()
        try:
            invoice = persist_new_invoice(draft, ctx, now)
            nested.commit()
        except IntegrityError as exc:
            nested.rollback()
            if not is_number_conflict(exc):
                raise
            conflicts.append(number)
            current_app.logger.warning(
                "CSV import skipped invoice %s for company %s: number taken concurrently",
                number, ctx.company_id,
            )
            continue
        created.append(invoice)
        imported_records += len(groups[number])

    db.session.commit()

    warnings = publish_invoice_documents(created)
    return ImportResult(
        imported_record_count=imported_records,
        created_invoice_count=len(created),
        invoice_ids=[invoice.id for invoice in created],
        conflicts=conflicts,
        document_warnings=warnings,
    )
