# Overview: Service-layer operations for session tokens; resolves bearer tokens into tenant context.

"""
Bearer sessions.

A login hands the client an opaque random token; only its SHA-256 digest
is stored. Each session is pinned to the company of its user, and a valid
session resolves to the TenantContext that every invoice operation takes.

Lifetimes come from config:
- SESSION_TTL_HOURS: absolute lifetime (default 24)
- SESSION_IDLE_MINUTES: inactivity window (default 120)

Deactivating a user or a company ends its sessions on their next use.
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..models import Company, SessionToken, User
from .tenant_service import TenantAccessError, TenantContext
from efacture.time_utils import utcnow


DEFAULT_TTL_HOURS = 24
DEFAULT_IDLE_MINUTES = 120


@dataclass
class SessionContext:
    user: User
    session: SessionToken
    tenant: TenantContext


def _ttl() -> timedelta:
    return timedelta(hours=current_app.config.get("SESSION_TTL_HOURS", DEFAULT_TTL_HOURS))


def _idle_window() -> timedelta:
    return timedelta(minutes=current_app.config.get("SESSION_IDLE_MINUTES", DEFAULT_IDLE_MINUTES))


def token_digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _open_session(token: str) -> SessionToken | None:
    if not token:
        return None
    return db.session.query(SessionToken).filter_by(
        token_hash=token_digest(token),
        is_revoked=False,
    ).first()


def _close(session: SessionToken, reason: str, when: datetime) -> None:
    session.is_revoked = True
    session.revoked_at = when
    session.revoked_reason = reason


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """
    Open a session for an active user of an active company.

    Returns (session_row, plaintext_token); the plaintext is never stored.
    Raises ValueError when the user or its company cannot sign in.
    """
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        raise ValueError("User is not active")
    company = db.session.get(Company, user.company_id)
    if company is None or not company.is_active:
        raise ValueError("Company is not active")

    token = secrets.token_hex(32)
    now = utcnow()
    session = SessionToken(
        user_id=user.id,
        company_id=user.company_id,
        token_hash=token_digest(token),
        created_at=now,
        last_used_at=now,
        expires_at=now + _ttl(),
        user_agent=(user_agent or "")[:512] or None,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, token


def validate_session(token: str) -> SessionContext | None:
    """
    Resolve a bearer token into its SessionContext, or None.

    Expired tokens simply stop resolving. Idle tokens, and tokens whose
    user or company was deactivated, are revoked on the spot. A user
    whose stored role is not exactly one known role gets None as well.
    """
    session = _open_session(token)
    if session is None:
        return None

    now = utcnow()
    if session.expires_at < now:
        return None

    reason = None
    if now - session.last_used_at > _idle_window():
        reason = "Idle timeout"
    elif session.user is None or not session.user.is_active:
        reason = "User account deactivated"
    elif session.company is None or not session.company.is_active:
        reason = "Company deactivated"
    if reason:
        _close(session, reason, now)
        db.session.commit()
        return None

    try:
        tenant = TenantContext.for_user(session.user, company_id=session.company_id)
    except TenantAccessError:
        return None

    session.last_used_at = now
    db.session.commit()
    return SessionContext(user=session.user, session=session, tenant=tenant)


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """Revoke one session by its token. False when it was not open."""
    session = _open_session(token)
    if session is None:
        return False
    _close(session, reason, utcnow())
    db.session.commit()
    return True


def revoke_all_user_sessions(user_id: int, reason: str) -> int:
    """Revoke every open session of a user; returns how many were open."""
    count = db.session.query(SessionToken).filter_by(
        user_id=user_id, is_revoked=False,
    ).update(
        {"is_revoked": True, "revoked_at": utcnow(), "revoked_reason": reason},
        synchronize_session=False,
    )
    db.session.commit()
    return count
