# Overview: Flask API routes for CSV invoice imports; parses input and returns JSON responses.

"""
Import Routes

POST /api/invoices/import-csv (multipart, field "file")

Success (201):
    {"imported_record_count", "created_invoice_count", "invoice_ids",
     "conflicts", "document_warnings"}
Failure (400):
    {"error": "import_failed", "file_errors": [...]}
    {"error": "import_failed", "row_errors": [{"row_number", "errors"}]}
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth
from ..services import import_service
from ..http_errors import API_ERRORS, error_response


imports_bp = Blueprint("imports", __name__, url_prefix="/api/invoices")


@imports_bp.post("/import-csv")
@require_auth
def import_csv_route():
    if "file" not in request.files:
        return jsonify({"error": "import_failed", "file_errors": ["file is required"]}), 400

    file = request.files["file"]
    try:
        result = import_service.import_invoices_csv(file.filename, file.stream.read(), g.tenant)
        return jsonify(result.to_dict()), 201
    except API_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to import invoices")
        return jsonify({"error": "Internal server error"}), 500
