# Overview: Service-layer operations for invoice documents; PDF rendering, archiving and the retry queue.

"""
Invoice Document Pipeline

After an invoice write commits, the invoice is rendered to a PDF and the
PDF is archived under invoices/<invoice_id>.pdf.

BEST-EFFORT CONTRACT:
- Rendering/archiving never fails or rolls back the invoice write
- Work runs on a worker thread with a bounded timeout; a timeout is a failure
- The worker sees a plain InvoiceSnapshot, never the ORM object or a lock
- Every outcome is recorded in invoice_documents (ARCHIVED / FAILED);
  FAILED rows are the retry queue for `flask documents retry-failed`
- Failures are logged and returned to the caller as warning strings

Backends:
- FilesystemDocumentArchive: local directory (default, development)
- S3DocumentArchive: S3 or an S3-compatible store such as MinIO (boto3)
"""

from __future__ import annotations

import io
import os
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from xml.sax.saxutils import escape

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from flask import current_app
from reportlab.graphics.barcode.qr import QrCodeWidget
from reportlab.graphics.shapes import Drawing
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Company, Invoice, InvoiceDocument
from ..money import format_cents
from ..validation import NotFoundError
from .lifecycle_service import InvoiceNotFoundError
from .tenant_service import TenantContext, require_owned
from efacture.time_utils import utcnow


PIPELINE_EXTENSION_KEY = "efacture.documents"


class RenderError(Exception):
    """The invoice could not be turned into a document."""
    pass


class StoreError(Exception):
    """The archive rejected or could not be reached for a document."""
    pass


class DocumentNotFoundError(NotFoundError):
    """No archived document exists for the invoice."""
    pass


def storage_key_for(invoice_id: int) -> str:
    return f"invoices/{invoice_id}.pdf"


def qr_payload(invoice_number: str, invoice_date: date, total_cents: int) -> str:
    return f"INV:{invoice_number};DATE:{invoice_date.isoformat()};TOTAL:{format_cents(total_cents)}"


@dataclass(frozen=True)
class SnapshotLine:
    description: str
    quantity: Decimal
    unit_price_cents: int
    line_total_cents: int


@dataclass(frozen=True)
class InvoiceSnapshot:
    """Everything the renderer needs, detached from the database session."""
    invoice_id: int
    company_id: int
    company_name: str
    company_tax_id: str
    invoice_number: str
    date: date
    customer_name: str
    status: str
    lines: tuple[SnapshotLine, ...]
    subtotal_cents: int
    vat_cents: int
    total_cents: int

    @classmethod
    def from_invoice(cls, invoice: Invoice) -> "InvoiceSnapshot":
        company = db.session.get(Company, invoice.company_id)
        return cls(
            invoice_id=invoice.id,
            company_id=invoice.company_id,
            company_name=company.name if company else "",
            company_tax_id=company.tax_id if company else "",
            invoice_number=invoice.invoice_number,
            date=invoice.date,
            customer_name=invoice.customer_name,
            status=invoice.status,
            lines=tuple(
                SnapshotLine(
                    description=line.description,
                    quantity=Decimal(line.quantity),
                    unit_price_cents=line.unit_price_cents,
                    line_total_cents=line.line_total_cents,
                )
                for line in invoice.lines
            ),
            subtotal_cents=invoice.subtotal_cents,
            vat_cents=invoice.vat_cents,
            total_cents=invoice.total_cents,
        )

    @property
    def storage_key(self) -> str:
        return storage_key_for(self.invoice_id)


# =============================================================================
# Renderer
# =============================================================================

class PdfInvoiceRenderer:
    """Renders an InvoiceSnapshot to PDF bytes with reportlab, QR code included."""

    qr_size = 1.2 * inch

    def _qr_drawing(self, snapshot: InvoiceSnapshot) -> Drawing:
        widget = QrCodeWidget(qr_payload(snapshot.invoice_number, snapshot.date, snapshot.total_cents))
        x1, y1, x2, y2 = widget.getBounds()
        size = self.qr_size
        drawing = Drawing(size, size, transform=[size / (x2 - x1), 0, 0, size / (y2 - y1), 0, 0])
        drawing.add(widget)
        return drawing

    def render(self, snapshot: InvoiceSnapshot) -> bytes:
        try:
            return self._build(snapshot)
        except Exception as exc:  # noqa: BLE001
            raise RenderError(f"Failed to render invoice {snapshot.invoice_id}: {exc}") from exc

    def _build(self, snapshot: InvoiceSnapshot) -> bytes:
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(buffer, pagesize=A4, topMargin=0.5 * inch, bottomMargin=0.5 * inch)
        styles = getSampleStyleSheet()

        title_style = ParagraphStyle('Title', parent=styles['Heading1'], fontSize=22, textColor=colors.HexColor('#0f172a'))
        header_style = ParagraphStyle('Header', parent=styles['Normal'], fontSize=10, textColor=colors.HexColor('#64748b'))
        value_style = ParagraphStyle('Value', parent=styles['Normal'], fontSize=12, textColor=colors.HexColor('#0f172a'))

        elements = []

        elements.append(Paragraph("INVOICE", title_style))
        elements.append(Spacer(1, 6))
        elements.append(Paragraph(f"#{escape(snapshot.invoice_number)}", header_style))
        elements.append(Spacer(1, 20))

        elements.append(Paragraph(f"<b>From:</b> {escape(snapshot.company_name)}", value_style))
        if snapshot.company_tax_id:
            elements.append(Paragraph(f"ICE {escape(snapshot.company_tax_id)}", header_style))
        elements.append(Spacer(1, 12))

        elements.append(Paragraph("<b>Bill To:</b>", header_style))
        elements.append(Paragraph(escape(snapshot.customer_name), value_style))
        elements.append(Spacer(1, 20))

        date_table = Table(
            [['Date', 'Status'], [snapshot.date.strftime('%b %d, %Y'), snapshot.status]],
            colWidths=[3 * inch, 3 * inch],
        )
        date_table.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 10),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.HexColor('#64748b')),
            ('BOTTOMPADDING', (0, 0), (-1, 0), 12),
            ('ALIGN', (0, 0), (-1, -1), 'LEFT'),
        ]))
        elements.append(date_table)
        elements.append(Spacer(1, 20))

        line_rows = [['Description', 'Qty', 'Unit price', 'Line total']]
        for line in snapshot.lines:
            line_rows.append([
                Paragraph(escape(line.description), styles['Normal']),
                f"{line.quantity.normalize():f}",
                format_cents(line.unit_price_cents),
                format_cents(line.line_total_cents),
            ])
        lines_table = Table(line_rows, colWidths=[3 * inch, 0.8 * inch, 1.1 * inch, 1.1 * inch], repeatRows=1)
        lines_table.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 10),
            ('ALIGN', (1, 0), (-1, -1), 'RIGHT'),
            ('LINEBELOW', (0, 0), (-1, 0), 1, colors.HexColor('#e2e8f0')),
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
        ]))
        elements.append(lines_table)
        elements.append(Spacer(1, 20))

        amount_table = Table(
            [
                ['Subtotal', format_cents(snapshot.subtotal_cents)],
                ['VAT', format_cents(snapshot.vat_cents)],
                ['Total', format_cents(snapshot.total_cents)],
            ],
            colWidths=[4 * inch, 2 * inch],
        )
        amount_table.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (-1, -1), 'Helvetica'),
            ('FONTNAME', (0, -1), (-1, -1), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 11),
            ('ALIGN', (1, 0), (1, -1), 'RIGHT'),
            ('LINEABOVE', (0, -1), (-1, -1), 1, colors.HexColor('#e2e8f0')),
            ('TOPPADDING', (0, -1), (-1, -1), 8),
        ]))
        elements.append(amount_table)
        elements.append(Spacer(1, 30))
        elements.append(self._qr_drawing(snapshot))

        doc.build(elements)
        return buffer.getvalue()


# =============================================================================
# Archives
# =============================================================================

class FilesystemDocumentArchive:
    """Stores documents below a base directory. URLs are file:// URIs."""

    def __init__(self, base_path: str | os.PathLike):
        self.base_path = Path(base_path)

    def _path(self, key: str) -> Path:
        if not key or '..' in key or os.path.isabs(key):
            raise StoreError(f"Invalid storage key: {key!r}")
        full_path = (self.base_path / os.path.normpath(key)).resolve()
        try:
            full_path.relative_to(self.base_path.resolve())
        except ValueError:
            raise StoreError(f"Invalid storage key: {key!r}")
        return full_path

    def store(self, key: str, data: bytes) -> None:
        path = self._path(key)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(data)
            os.replace(tmp_path, path)
        except OSError as exc:
            raise StoreError(f"Failed to write {key}: {exc}") from exc

    def url_for(self, key: str, ttl_seconds: int) -> str:
        path = self._path(key)
        if not path.is_file():
            raise DocumentNotFoundError(f"Document {key} not found")
        return path.as_uri()


class S3DocumentArchive:
    """
    Stores documents in an S3 bucket (AWS or MinIO via endpoint_url).

    Credentials come from the standard boto3 chain (environment, profile,
    instance role). The bucket is created on first write if missing.
    """

    def __init__(
        self,
        bucket: str,
        *,
        endpoint_url: str | None = None,
        region: str = "us-east-1",
        timeout_seconds: float = 10,
        client=None,
    ):
        if not bucket:
            raise ValueError("S3 bucket name is required")
        self.bucket = bucket
        self.s3 = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region,
            config=BotoConfig(
                retries={"max_attempts": 2, "mode": "standard"},
                connect_timeout=timeout_seconds,
                read_timeout=timeout_seconds,
                s3={"addressing_style": "path"} if endpoint_url else None,
            ),
        )

    @staticmethod
    def _error_code(exc: ClientError) -> str:
        return str(exc.response.get("Error", {}).get("Code", ""))

    def _put(self, key: str, data: bytes) -> None:
        self.s3.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType="application/pdf")

    def store(self, key: str, data: bytes) -> None:
        try:
            try:
                self._put(key, data)
            except ClientError as exc:
                if self._error_code(exc) != "NoSuchBucket":
                    raise
                self.s3.create_bucket(Bucket=self.bucket)
                self._put(key, data)
        except (ClientError, BotoCoreError) as exc:
            raise StoreError(f"Failed to upload {key} to bucket {self.bucket}: {exc}") from exc

    def url_for(self, key: str, ttl_seconds: int) -> str:
        try:
            self.s3.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if self._error_code(exc) in ("404", "NoSuchKey", "NotFound"):
                raise DocumentNotFoundError(f"Document {key} not found")
            raise StoreError(f"Failed to look up {key}: {exc}") from exc
        except BotoCoreError as exc:
            raise StoreError(f"Failed to look up {key}: {exc}") from exc

        try:
            return self.s3.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=ttl_seconds,
            )
        except (ClientError, BotoCoreError) as exc:
            raise StoreError(f"Failed to sign URL for {key}: {exc}") from exc


# =============================================================================
# Pipeline
# =============================================================================

class DocumentPipeline:
    """
    Render + archive, run on a worker thread with a timeout.

    Each job holds one of max_workers slots until it returns, timed out
    or not. When every slot is taken, publish fails at once.
    """

    def __init__(self, renderer, archive, *, timeout_seconds: float = 10, max_workers: int = 4):
        self.renderer = renderer
        self.archive = archive
        self.timeout_seconds = timeout_seconds
        self._slots = threading.BoundedSemaphore(max_workers)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="efacture-docs")

    def _render_and_store(self, snapshot: InvoiceSnapshot) -> int:
        try:
            data = self.renderer.render(snapshot)
            self.archive.store(snapshot.storage_key, data)
            return len(data)
        finally:
            self._slots.release()

    def publish(self, snapshot: InvoiceSnapshot) -> int:
        """
        Render and archive one snapshot. Returns the document size in bytes.

        Raises RenderError, StoreError, or TimeoutError when the work does not
        finish within timeout_seconds (the worker is left to finish on its own)
        or when no worker is free.
        """
        if not self._slots.acquire(blocking=False):
            raise TimeoutError(
                f"Document for invoice {snapshot.invoice_id} not archived: all document workers are busy"
            )
        try:
            future = self._executor.submit(self._render_and_store, snapshot)
        except RuntimeError:
            self._slots.release()
            raise
        try:
            return future.result(timeout=self.timeout_seconds)
        except FuturesTimeoutError:
            future.cancel()
            raise TimeoutError(
                f"Document for invoice {snapshot.invoice_id} not archived within {self.timeout_seconds}s"
            )

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)


def build_pipeline(app) -> DocumentPipeline:
    """Create the pipeline configured by DOCUMENT_* settings."""
    timeout = float(app.config.get("DOCUMENT_TIMEOUT_SECONDS", 10))
    workers = int(app.config.get("DOCUMENT_WORKERS", 4))
    backend = (app.config.get("DOCUMENT_ARCHIVE_BACKEND") or "filesystem").lower()

    if backend == "s3":
        archive = S3DocumentArchive(
            app.config.get("DOCUMENT_BUCKET"),
            endpoint_url=app.config.get("DOCUMENT_S3_ENDPOINT"),
            region=app.config.get("DOCUMENT_S3_REGION") or "us-east-1",
            timeout_seconds=timeout,
        )
    elif backend == "filesystem":
        base_path = app.config.get("DOCUMENT_ARCHIVE_PATH") or os.path.join(app.instance_path, "documents")
        archive = FilesystemDocumentArchive(base_path)
    else:
        raise ValueError(f"Unknown DOCUMENT_ARCHIVE_BACKEND: {backend}")

    return DocumentPipeline(PdfInvoiceRenderer(), archive, timeout_seconds=timeout, max_workers=workers)


def get_pipeline() -> DocumentPipeline:
    return current_app.extensions[PIPELINE_EXTENSION_KEY]


# =============================================================================
# Service operations
# =============================================================================

def _document_row(invoice: Invoice) -> InvoiceDocument:
    doc = db.session.query(InvoiceDocument).filter_by(invoice_id=invoice.id).first()
    if doc is None:
        doc = InvoiceDocument(
            invoice_id=invoice.id,
            company_id=invoice.company_id,
            storage_key=storage_key_for(invoice.id),
            status="PENDING",
            attempts=0,
        )
        db.session.add(doc)
    return doc


def publish_invoice_document(invoice: Invoice) -> str | None:
    """
    Render and archive one committed invoice.

    Returns None on success, or a warning message on failure. Never raises:
    the invoice is already committed, so any failure is recorded on the
    invoice's InvoiceDocument row and left for retry.
    """
    invoice_id, invoice_number = invoice.id, invoice.invoice_number
    warning = None
    content_length = None
    try:
        snapshot = InvoiceSnapshot.from_invoice(invoice)
        content_length = get_pipeline().publish(snapshot)
    except (RenderError, StoreError, TimeoutError) as exc:
        warning = f"Document for invoice {invoice_number} was not archived: {exc}"
        current_app.logger.warning(
            "Invoice document publish failed (invoice_id=%s): %s", invoice_id, exc,
        )
    except Exception as exc:
        warning = f"Document for invoice {invoice_number} was not archived: {exc}"
        current_app.logger.exception(
            "Unexpected error publishing document for invoice_id=%s", invoice_id,
        )

    try:
        doc = _document_row(invoice)
        now = utcnow()
        doc.attempts = (doc.attempts or 0) + 1
        doc.updated_at = now
        if warning is None:
            doc.status = "ARCHIVED"
            doc.content_length = content_length
            doc.last_error = None
            doc.archived_at = now
        else:
            doc.status = "FAILED"
            doc.last_error = warning[:2000]
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception(
            "Could not record document state for invoice_id=%s", invoice_id
        )
        warning = warning or f"Document state for invoice {invoice_number} was not recorded"

    return warning


def publish_invoice_documents(invoices) -> list[str]:
    """Publish each invoice independently; one failure never blocks the next."""
    warnings = []
    for invoice in invoices:
        warning = publish_invoice_document(invoice)
        if warning:
            warnings.append(warning)
    return warnings


def document_url_for(invoice_id: int, ctx: TenantContext, ttl_seconds: int | None = None) -> str:
    """
    Short-lived URL for the invoice's archived document.

    Raises InvoiceNotFoundError outside the tenant, DocumentNotFoundError
    when nothing has been archived yet.
    """
    invoice = require_owned(Invoice, invoice_id, ctx, not_found=InvoiceNotFoundError)
    doc = db.session.query(InvoiceDocument).filter_by(invoice_id=invoice.id).first()
    if doc is None or doc.status != "ARCHIVED":
        raise DocumentNotFoundError(f"No archived document for invoice {invoice.id}")

    if ttl_seconds is None:
        ttl_seconds = int(current_app.config.get("DOCUMENT_URL_TTL_SECONDS", 60))
    return get_pipeline().archive.url_for(doc.storage_key, ttl_seconds)


def retry_failed_documents(limit: int = 100) -> dict[str, int]:
    """
    Re-publish documents in FAILED or PENDING state, oldest first.

    Returns counts of attempted / archived / failed.
    """
    limit = max(1, int(limit or 100))
    rows = (
        db.session.query(InvoiceDocument)
        .filter(InvoiceDocument.status.in_(["FAILED", "PENDING"]))
        .order_by(InvoiceDocument.updated_at.asc(), InvoiceDocument.id.asc())
        .limit(limit)
        .all()
    )
    invoice_ids = [row.invoice_id for row in rows]

    attempted = archived = failed = 0
    for invoice_id in invoice_ids:
        invoice = db.session.get(Invoice, invoice_id)
        if invoice is None:
            continue
        attempted += 1
        if publish_invoice_document(invoice) is None:
            archived += 1
        else:
            failed += 1

    return {"attempted": attempted, "archived": archived, "failed": failed}
