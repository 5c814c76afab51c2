# Overview: Maps service-layer exceptions to stable JSON error responses.

"""
Error response shapes (one per failure kind, so clients can tell them apart):

    400 {"error": "validation_failed", "errors": [{"field", "message"}]}
    400 {"error": "import_failed", "file_errors": [...]} | {"row_errors": [{"row_number", "errors"}]}
    401 {"error": "unauthenticated", "message"}
    403 {"error": "forbidden", "message"}
    404 {"error": "not_found", "message"}
    409 {"error": "conflict", "message"}
"""

from flask import jsonify

from .services.import_service import ImportValidationError
from .services.permission_service import PermissionDeniedError
from .services.tenant_service import TenantAccessError
from .validation import ConflictError, NotFoundError, ValidationError


API_ERRORS = (
    ValidationError,
    ImportValidationError,
    PermissionDeniedError,
    NotFoundError,
    ConflictError,
    TenantAccessError,
)


def error_response(exc: Exception):
    if isinstance(exc, (ValidationError, ImportValidationError)):
        return jsonify(exc.to_dict()), 400
    if isinstance(exc, TenantAccessError):
        return jsonify({"error": "unauthenticated", "message": str(exc)}), 401
    if isinstance(exc, PermissionDeniedError):
        return jsonify({"error": "forbidden", "message": str(exc)}), 403
    if isinstance(exc, NotFoundError):
        # Same body for missing and foreign-tenant rows
        return jsonify({"error": "not_found", "message": "Not found"}), 404
    if isinstance(exc, ConflictError):
        return jsonify({"error": "conflict", "message": str(exc)}), 409
    raise exc
