# Overview: Flask API routes for company users; parses input and returns JSON responses.

"""
User management routes (ADMIN and MANAGER).

- GET    /api/users         list active users of the company
- POST   /api/users         invite {email, password, role?}; role CLERK|MANAGER
- PUT    /api/users/:id     update {email?, password?, role?}
- DELETE /api/users/:id     deactivate (the Admin account is protected)
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..permissions import Role
from ..services import user_service
from ..http_errors import API_ERRORS, error_response


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("")
@require_auth
@require_role(Role.ADMIN, Role.MANAGER)
def list_users_route():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    try:
        users = user_service.list_users(g.tenant, include_inactive=include_inactive)
        return jsonify({"users": [u.to_dict() for u in users]}), 200
    except API_ERRORS as e:
        return error_response(e)


@users_bp.post("")
@require_auth
@require_role(Role.ADMIN, Role.MANAGER)
def invite_user_route():
    data = request.get_json(silent=True) or {}
    try:
        user = user_service.invite_user(
            g.tenant,
            email=data.get("email"),
            password=data.get("password"),
            role=data.get("role"),
        )
        return jsonify({"user": user.to_dict()}), 201
    except API_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to invite user")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.put("/<int:user_id>")
@require_auth
@require_role(Role.ADMIN, Role.MANAGER)
def update_user_route(user_id: int):
    data = request.get_json(silent=True) or {}
    try:
        user = user_service.update_user(
            g.tenant,
            user_id,
            email=data.get("email"),
            password=data.get("password"),
            role=data.get("role"),
        )
        return jsonify({"user": user.to_dict()}), 200
    except API_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update user")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.delete("/<int:user_id>")
@require_auth
@require_role(Role.ADMIN, Role.MANAGER)
def delete_user_route(user_id: int):
    try:
        user_service.delete_user(g.tenant, user_id)
        return jsonify({"message": f"User {user_id} deleted"}), 200
    except API_ERRORS as e:
        return error_response(e)
