"""
Multi-Tenant Service: Tenant Context and Scoping Helpers

Tenant context and company-scoped lookups.
Every core operation receives a TenantContext and must never touch rows
outside ctx.company_id.

SECURITY INVARIANTS:
1. Every authenticated request has g.tenant set (see decorators.require_auth)
2. Every query over tenant-owned rows filters on company_id
3. A lookup miss never reveals whether another tenant owns the row
4. Cross-tenant lookups are logged as security events

USAGE:
    from efacture.services.tenant_service import scoped_query, require_owned

    invoices = scoped_query(Invoice, ctx).filter_by(status="DRAFT").all()
    invoice = require_owned(Invoice, invoice_id, ctx, not_found=InvoiceNotFoundError)
"""

from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from ..models import Company, User
from ..permissions import normalize_role
from .permission_service import log_security_event


class TenantAccessError(Exception):
    """Raised when tenant context is missing or invalid."""
    pass


@dataclass(frozen=True)
class TenantContext:
    """
    Authenticated identity for one request: who acts, for which company, as what.

    role is always exactly one of Role.CLERK / MANAGER / ADMIN.
    """
    company_id: int
    user_id: int
    role: str

    @classmethod
    def for_user(cls, user: User, company_id: int | None = None) -> "TenantContext":
        role = normalize_role(user.role)
        if role is None:
            raise TenantAccessError(f"User {user.id} does not hold exactly one valid role")
        return cls(
            company_id=company_id if company_id is not None else user.company_id,
            user_id=user.id,
            role=role,
        )


def validate_company_active(company_id: int) -> Company:
    """
    Validate that a company exists and is active.

    Raises TenantAccessError if company doesn't exist or is inactive.
    """
    company = db.session.get(Company, company_id)

    if not company:
        raise TenantAccessError("Company not found")

    if not company.is_active:
        raise TenantAccessError("Company is not active")

    return company


def scoped_query(model, ctx: TenantContext):
    """Base query over a tenant-owned model, filtered to ctx.company_id."""
    return db.session.query(model).filter(model.company_id == ctx.company_id)


def require_owned(model, row_id: int, ctx: TenantContext, *, not_found, lock: bool = False):
    """
    Load a tenant-owned row by id or raise not_found.

    A row that exists under another company is reported exactly like a
    missing one, and the attempt is logged.
    """
    q = scoped_query(model, ctx).filter(model.id == row_id)
    if lock:
        q = q.with_for_update()
    row = q.first()
    if row is not None:
        return row

    foreign = db.session.query(model.company_id).filter(model.id == row_id).first()
    if foreign is not None:
        _log_cross_tenant_attempt(
            f"{model.__name__} {row_id} belongs to company {foreign[0]}, not {ctx.company_id}",
            ctx,
        )
    raise not_found(f"{model.__name__} {row_id} not found")


def _log_cross_tenant_attempt(reason: str, ctx: TenantContext) -> None:
    """Log a cross-tenant access attempt as CROSS_TENANT_ACCESS_DENIED."""
    log_security_event(
        user_id=ctx.user_id,
        event_type="CROSS_TENANT_ACCESS_DENIED",
        success=False,
        reason=reason,
        company_id=ctx.company_id,
    )
