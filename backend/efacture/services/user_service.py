# Overview: Service-layer operations for company users; invite, update, deactivate.

"""
Company User Management

Only ADMIN and MANAGER may manage users, and only within their company.

ADMIN ACCOUNT PROTECTIONS:
- cannot be deleted
- cannot have its role or e-mail changed
- its password can only be reset by the Admin themselves

Invited users are CLERK unless MANAGER is requested; ADMIN is never
assignable. Deleting a user deactivates the account and revokes its
sessions so invoice and history attribution stays intact.
"""

from __future__ import annotations

from typing import Any

from ..extensions import db
from ..models import User
from ..permissions import ASSIGNABLE_ROLES, Role, USER_MANAGER_ROLES, normalize_role
from ..validation import FieldError, NotFoundError, ValidationError
from .auth_service import email_errors, hash_password, normalize_email, password_errors
from .permission_service import PermissionDeniedError, log_security_event, require_role
from .session_service import revoke_all_user_sessions
from .tenant_service import TenantContext, require_owned, scoped_query


class UserNotFoundError(NotFoundError):
    pass


def _role_errors(role: Any) -> tuple[str | None, list[FieldError]]:
    normalized = normalize_role(role)
    if normalized not in ASSIGNABLE_ROLES:
        return None, [FieldError("role", "Role must be CLERK or MANAGER")]
    return normalized, []


def _deny(ctx: TenantContext, action: str, reason: str) -> None:
    log_security_event(
        user_id=ctx.user_id,
        event_type="PERMISSION_DENIED",
        success=False,
        action=action,
        reason=reason,
        company_id=ctx.company_id,
    )
    raise PermissionDeniedError(reason)


def list_users(ctx: TenantContext, *, include_inactive: bool = False) -> list[User]:
    require_role(ctx, USER_MANAGER_ROLES, action="list users")
    query = scoped_query(User, ctx)
    if not include_inactive:
        query = query.filter(User.is_active.is_(True))
    return query.order_by(User.id.asc()).all()


def invite_user(ctx: TenantContext, *, email: str | None, password: str | None, role: str | None = None) -> User:
    """Create a CLERK or MANAGER in the caller's company."""
    require_role(ctx, USER_MANAGER_ROLES, action="invite users")

    email = normalize_email(email)
    errors = email_errors(email) + password_errors(password)
    assigned_role = Role.CLERK
    if role is not None:
        assigned_role, role_errors = _role_errors(role)
        errors.extend(role_errors)
    if errors:
        raise ValidationError(errors)

    user = User(
        company_id=ctx.company_id,
        email=email,
        password_hash=hash_password(password),
        role=assigned_role,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def update_user(
    ctx: TenantContext,
    user_id: int,
    *,
    email: str | None = None,
    password: str | None = None,
    role: str | None = None,
) -> User:
    """
    Change a user's e-mail, password and/or role. At least one is required.

    Password or role changes revoke the user's open sessions.
    """
    require_role(ctx, USER_MANAGER_ROLES, action="update users")

    if email is None and password is None and role is None:
        raise ValidationError("At least one field (email, password or role) is required.")

    user = require_owned(User, user_id, ctx, not_found=UserNotFoundError)

    if user.role == Role.ADMIN:
        if email is not None or role is not None:
            _deny(ctx, "update users", "The Admin account's e-mail and role cannot be changed")
        if user.id != ctx.user_id:
            _deny(ctx, "update users", "Only the Admin can reset the Admin password")

    errors: list[FieldError] = []
    new_email = None
    if email is not None:
        new_email = normalize_email(email)
        if new_email != user.email:
            errors.extend(email_errors(new_email))
    if password is not None:
        errors.extend(password_errors(password))
    new_role = None
    if role is not None:
        new_role, role_errors = _role_errors(role)
        errors.extend(role_errors)
    if errors:
        raise ValidationError(errors)

    revoke = False
    if new_email is not None:
        user.email = new_email
    if password is not None:
        user.password_hash = hash_password(password)
        revoke = True
    if new_role is not None and new_role != user.role:
        user.role = new_role
        revoke = True
    db.session.commit()

    if revoke:
        revoke_all_user_sessions(user.id, reason="Credentials or role changed")
    return user


def delete_user(ctx: TenantContext, user_id: int) -> None:
    require_role(ctx, USER_MANAGER_ROLES, action="delete users")

    user = require_owned(User, user_id, ctx, not_found=UserNotFoundError)
    if user.role == Role.ADMIN:
        _deny(ctx, "delete users", "The Admin account cannot be deleted")
    if user.id == ctx.user_id:
        _deny(ctx, "delete users", "You cannot delete your own account")

    user.is_active = False
    db.session.commit()
    revoke_all_user_sessions(user.id, reason="User deleted")
