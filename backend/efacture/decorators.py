# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service
from .services.permission_service import PermissionDeniedError, require_role as check_role


def _is_authenticated() -> bool:
    return getattr(g, 'tenant', None) is not None


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require authentication and establish tenant context.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.tenant: TenantContext(company_id, user_id, role) - REQUIRED
    - g.session_context: The full SessionContext object

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - User account or company deactivated
    - User does not hold exactly one valid role
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify({"error": "unauthenticated", "message": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "unauthenticated", "message": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.tenant = context.tenant
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """
    Require the authenticated user to hold one of the given roles.

    Denials are logged as PERMISSION_DENIED security events.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "unauthenticated", "message": "Authentication required"}), 401

            try:
                check_role(g.tenant, set(roles), action=f"{request.method} {request.path}")
            except PermissionDeniedError as e:
                return jsonify({
                    "error": "forbidden",
                    "required_roles": sorted(roles),
                    "message": str(e),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
