# Overview: Flask API routes for invoices; CRUD, lifecycle transitions, history and documents.

# backend/efacture/routes/invoices.py
"""
Invoice API Routes

- GET    /api/invoices                     list (status filter, pagination)
- POST   /api/invoices                     create (always DRAFT)
- GET    /api/invoices/:id                 get with lines
- PUT    /api/invoices/:id                 update fields, optionally move status
- DELETE /api/invoices/:id                 delete (not SUBMITTED)
- POST   /api/invoices/:id/ready           DRAFT -> READY (MANAGER, ADMIN)
- POST   /api/invoices/:id/submit          READY -> SUBMITTED (ADMIN)
- GET    /api/invoices/:id/history         status history (also for deleted invoices)
- GET    /api/invoices/:id/document-url    short-lived link to the archived PDF

SECURITY:
- All routes require authentication
- Tenant and acting user come from the session (g.tenant), never from the body
- Lifecycle role rules are enforced in lifecycle_service, not here
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import document_service, invoice_service, lifecycle_service
from ..decorators import require_auth
from ..http_errors import API_ERRORS, error_response


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


def _write_response(result, status_code: int):
    return jsonify({
        "invoice": result.invoice.to_dict(),
        "document_warnings": result.document_warnings,
    }), status_code


@invoices_bp.get("")
@require_auth
def list_invoices_route():
    try:
        result = invoice_service.list_invoices(
            g.tenant,
            status=request.args.get("status"),
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", 50, type=int),
        )
        return jsonify(result), 200
    except API_ERRORS as e:
        return error_response(e)


@invoices_bp.post("")
@require_auth
def create_invoice_route():
    """
    Create an invoice.

    Body:
        {
            "invoice_number": "INV-100",
            "date": "2024-01-10",
            "customer_name": "Acme",
            "lines": [{"description": "Widget", "quantity": 2, "unit_price": "10.00"}],
            "vat": "4.00"            // or "vat_rate": 20
        }

    Totals are computed server-side. Any "status" is ignored (always DRAFT).
    """
    try:
        result = invoice_service.create_invoice(request.get_json(silent=True), g.tenant)
        return _write_response(result, 201)
    except API_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>")
@require_auth
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id, g.tenant)
        return jsonify({"invoice": invoice.to_dict()}), 200
    except API_ERRORS as e:
        return error_response(e)


@invoices_bp.put("/<int:invoice_id>")
@require_auth
def update_invoice_route(invoice_id: int):
    """
    Update an invoice. Omitted fields keep their stored values; "lines"
    replaces the whole line list. A "status" different from the current
    one is a transition and follows the role table.

    Error responses:
        400: validation_failed
        403: SUBMITTED invoice, or transition not allowed for the role
        404: not found in this company
        409: status changed concurrently
    """
    try:
        result = invoice_service.update_invoice(invoice_id, request.get_json(silent=True), g.tenant)
        return _write_response(result, 200)
    except API_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.delete("/<int:invoice_id>")
@require_auth
def delete_invoice_route(invoice_id: int):
    try:
        invoice_service.delete_invoice(invoice_id, g.tenant)
        return jsonify({"message": f"Invoice {invoice_id} deleted"}), 200
    except API_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/ready")
@require_auth
def mark_ready_route(invoice_id: int):
    try:
        invoice = lifecycle_service.mark_ready(invoice_id, g.tenant)
        return jsonify({
            "invoice": invoice.to_dict(),
            "message": f"Invoice {invoice_id} is ready",
        }), 200
    except API_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark invoice ready")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/submit")
@require_auth
def submit_invoice_route(invoice_id: int):
    """
    Submit a READY invoice (READY -> SUBMITTED). ADMIN only.

    CRITICAL: Once SUBMITTED an invoice can no longer be edited or deleted.
    """
    try:
        invoice = lifecycle_service.submit_invoice(invoice_id, g.tenant)
        return jsonify({
            "invoice": invoice.to_dict(),
            "message": f"Invoice {invoice_id} submitted",
        }), 200
    except API_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to submit invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>/history")
@require_auth
def invoice_history_route(invoice_id: int):
    try:
        rows = lifecycle_service.get_status_history(invoice_id, g.tenant)
        return jsonify({"invoice_id": invoice_id, "history": [r.to_dict() for r in rows]}), 200
    except API_ERRORS as e:
        return error_response(e)


@invoices_bp.get("/<int:invoice_id>/document-url")
@require_auth
def document_url_route(invoice_id: int):
    try:
        url = document_service.document_url_for(invoice_id, g.tenant)
        return jsonify({"invoice_id": invoice_id, "url": url}), 200
    except API_ERRORS as e:
        return error_response(e)
    except document_service.StoreError:
        current_app.logger.exception("Document archive unavailable")
        return jsonify({"error": "document_unavailable", "message": "Document archive unavailable"}), 503
