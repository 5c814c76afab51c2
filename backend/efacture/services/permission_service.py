# Overview: Service-layer operations for role checks and security event logging.

"""
Role gates and the security event trail.

Every refusal (role, lifecycle transition, cross-company lookup, bad
login) leaves one SecurityEvent row carrying the company it happened in.
Grants are not logged.
"""

from flask import has_request_context, request

from ..extensions import db
from ..models import SecurityEvent
from efacture.time_utils import utcnow


class PermissionDeniedError(Exception):
    """Raised when the acting user's role or the target's state forbids an action."""
    pass


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    company_id: int | None = None,
) -> SecurityEvent:
    """
    Log security event to audit trail with tenant context.

    Request details (path, IP, user agent) are filled in from the active
    request when the caller does not pass them.

    NOTE: Commits. Call before mutating anything in the current
    transaction, never in the middle of a write.

    event_type examples:
    - PERMISSION_DENIED
    - TRANSITION_DENIED
    - LOGIN_FAILED
    - CROSS_TENANT_ACCESS_DENIED
    """
    if has_request_context():
        resource = resource or request.path
        ip_address = ip_address or request.remote_addr
        user_agent = user_agent or request.headers.get("User-Agent")

    event = SecurityEvent(
        user_id=user_id,
        company_id=company_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow()
    )

    db.session.add(event)
    db.session.commit()

    return event


def require_role(ctx, allowed_roles, *, action: str) -> None:
    """
    Deny unless the tenant context's role is one of allowed_roles.

    Raises PermissionDeniedError (and logs PERMISSION_DENIED) otherwise.
    """
    if ctx.role in allowed_roles:
        return
    log_security_event(
        user_id=ctx.user_id,
        event_type="PERMISSION_DENIED",
        success=False,
        action=action,
        reason=f"Role {ctx.role} cannot {action}",
        company_id=ctx.company_id,
    )
    raise PermissionDeniedError(f"Role {ctx.role} is not allowed to {action}")
