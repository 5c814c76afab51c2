# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/efacture/routes/auth.py
"""
Authentication API routes

- POST /api/auth/register: create a company and its ADMIN user
- POST /api/auth/login:    exchange e-mail/password for a session token
- POST /api/auth/logout:   revoke the current token
- GET  /api/auth/me:       current user, company and role

Tokens go in the Authorization header as "Bearer <token>".
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..models import Company
from ..services import auth_service
from ..services import session_service
from ..services.auth_service import AuthenticationError
from ..decorators import require_auth, bearer_token
from ..http_errors import API_ERRORS, error_response


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/register")
def register_route():
    """
    Self-service company registration.

    Body: {company_name, tax_id, address?, email, password}
    The first user always becomes ADMIN; "role" is rejected if sent.
    """
    data = request.get_json(silent=True) or {}
    try:
        company, user = auth_service.register_company(
            company_name=data.get("company_name"),
            tax_id=data.get("tax_id"),
            address=data.get("address"),
            email=data.get("email"),
            password=data.get("password"),
            role=data.get("role"),
        )
        return jsonify({"company": company.to_dict(), "user": user.to_dict()}), 201
    except API_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to register company")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Returns user info and session token on success.
    """
    data = request.get_json(silent=True) or {}
    email = data.get("email")
    password = data.get("password")

    if not email or not password:
        return jsonify({"error": "validation_failed", "errors": [
            {"field": "__all__", "message": "email and password required"}
        ]}), 400

    try:
        user = auth_service.authenticate(email, password)
    except AuthenticationError:
        return jsonify({"error": "unauthenticated", "message": "Invalid credentials"}), 401

    try:
        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
    except ValueError as e:
        return jsonify({"error": "unauthenticated", "message": str(e)}), 401

    return jsonify({
        "user": user.to_dict(),
        "token": token,
        "session": session.to_dict(),
        "company_id": session.company_id,
        "role": user.role,
        "message": "Login successful",
    }), 200


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(bearer_token(), reason="User logout")
    return jsonify({"message": "Logged out"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    company = db.session.get(Company, g.tenant.company_id)
    return jsonify({
        "user": g.current_user.to_dict(),
        "company": company.to_dict() if company else None,
        "role": g.tenant.role,
    }), 200
