# Overview: Service-layer operations for auth; password hashing, company registration and login.

"""
Passwords, self-service registration and login.

Registering creates the Company (tenant) and its first user in one
transaction; that user is always the company's ADMIN. Passwords are
bcrypt-hashed at cost 12 after a strength check (8+ characters with an
uppercase letter, a lowercase letter and a digit). Sessions themselves
live in session_service.
"""

import re

import bcrypt
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Company, User
from ..permissions import Role
from ..validation import FieldError, ValidationError
from .permission_service import log_security_event
from efacture.time_utils import utcnow


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
TAX_ID_PATTERN = re.compile(r"^\d{15}$")


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


class AuthenticationError(Exception):
    """Raised when credentials don't match an active user."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if not password or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password needs an uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password needs a lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password needs a digit")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    Returns True if password matches hash, False otherwise (including
    malformed hashes).
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def email_errors(email: str, field: str = "email") -> list[FieldError]:
    if not email:
        return [FieldError(field, "E-mail is required")]
    if not EMAIL_PATTERN.match(email) or len(email) > 255:
        return [FieldError(field, "Invalid e-mail format")]
    if db.session.query(User.id).filter_by(email=email).first():
        return [FieldError(field, "E-mail is already registered")]
    return []


def password_errors(password: str | None, field: str = "password") -> list[FieldError]:
    try:
        validate_password_strength(password or "")
    except PasswordValidationError as e:
        return [FieldError(field, str(e))]
    return []


def register_company(
    *,
    company_name: str | None,
    tax_id: str | None,
    email: str | None,
    password: str | None,
    address: str | None = None,
    role: str | None = None,
    timezone: str = "UTC",
) -> tuple[Company, User]:
    """
    Self-service sign-up: create a Company and its first user as ADMIN.

    All field problems are reported together. A role may not be chosen
    on self-registration.
    """
    company_name = (company_name or "").strip()
    tax_id = (tax_id or "").strip()
    address = (address or "").strip() or None
    email = normalize_email(email)

    errors: list[FieldError] = []
    if not company_name:
        errors.append(FieldError("company_name", "Company name is required"))
    elif len(company_name) > 120:
        errors.append(FieldError("company_name", "Company name exceeds max length 120"))

    if not tax_id:
        errors.append(FieldError("tax_id", "Tax Id (ICE) is required"))
    elif not TAX_ID_PATTERN.match(tax_id):
        errors.append(FieldError("tax_id", "Tax Id must be 15 digits"))
    elif db.session.query(Company.id).filter_by(tax_id=tax_id).first():
        errors.append(FieldError("tax_id", "Tax Id is already registered"))

    if address and len(address) > 255:
        errors.append(FieldError("address", "Address exceeds max length 255"))

    errors.extend(email_errors(email))
    errors.extend(password_errors(password))

    if role is not None:
        errors.append(FieldError("role", "Role cannot be set during self-registration"))

    if errors:
        raise ValidationError(errors)

    now = utcnow()
    company = Company(
        name=company_name,
        tax_id=tax_id,
        address=address,
        timezone=timezone,
        is_active=True,
        is_verified=True,
        verified_at=now,
    )
    db.session.add(company)
    try:
        db.session.flush()
        user = User(
            company_id=company.id,
            email=email,
            password_hash=hash_password(password),
            role=Role.ADMIN,
            is_active=True,
        )
        db.session.add(user)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError([FieldError("__all__", "Company or e-mail is already registered")])

    return company, user


def authenticate(email: str | None, password: str | None) -> User:
    """
    Check credentials and return the active user.

    Raises AuthenticationError without saying which part was wrong.
    """
    email = normalize_email(email)
    user = db.session.query(User).filter_by(email=email).first()

    if not user or not password or not verify_password(password, user.password_hash):
        log_security_event(
            user_id=user.id if user else None,
            event_type="LOGIN_FAILED",
            success=False,
            reason="Invalid credentials",
            company_id=user.company_id if user else None,
        )
        raise AuthenticationError("Invalid credentials")

    if not user.is_active:
        raise AuthenticationError("Account is disabled")

    user.last_login_at = utcnow()
    db.session.commit()
    return user
