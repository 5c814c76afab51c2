"""
Pytest fixtures for E-Facture backend tests.

Provides the test database, a fixed clock, an in-memory document pipeline,
two tenants with one user per role, and auth header helpers.
"""

from datetime import datetime, timedelta

import pytest
from efacture import create_app
from efacture.extensions import db
from efacture.models import Company, User
from efacture.permissions import Role
from efacture.services.auth_service import hash_password
from efacture.services.document_service import (
    DocumentNotFoundError,
    DocumentPipeline,
    PIPELINE_EXTENSION_KEY,
    RenderError,
)
from efacture.services.session_service import create_session
from efacture.services.tenant_service import TenantContext
from efacture.time_utils import CLOCK_EXTENSION_KEY


PASSWORD = "Password123"
# bcrypt is slow on purpose; hash once for every fixture user
PASSWORD_HASH = hash_password(PASSWORD)

FIXED_NOW = datetime(2026, 10, 19, 12, 0, 0)


class FixedClock:
    def __init__(self, now: datetime):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class StubRenderer:
    def __init__(self):
        self.rendered = []

    def render(self, snapshot) -> bytes:
        self.rendered.append(snapshot)
        return f"%PDF-stub {snapshot.invoice_number}".encode()


class FailingRenderer:
    def render(self, snapshot) -> bytes:
        raise RenderError("renderer offline")


class MemoryArchive:
    def __init__(self):
        self.blobs = {}

    def store(self, key: str, data: bytes) -> None:
        self.blobs[key] = data

    def url_for(self, key: str, ttl_seconds: int) -> str:
        if key not in self.blobs:
            raise DocumentNotFoundError(key)
        return f"memory://{key}?ttl={ttl_seconds}"


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DOCUMENT_ARCHIVE_BACKEND': 'filesystem',
        'DOCUMENT_ARCHIVE_PATH': str(tmp_path_factory.mktemp("documents")),
        'IMPORT_VAT_RATE': '0.20',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def clock(app):
    """Pin 'now' to FIXED_NOW for every service call."""
    fixed = FixedClock(FIXED_NOW)
    app.extensions[CLOCK_EXTENSION_KEY] = fixed
    yield fixed
    app.extensions.pop(CLOCK_EXTENSION_KEY, None)


@pytest.fixture(scope='function')
def archive(app):
    """Swap the document pipeline for a stub renderer and an in-memory archive."""
    previous = app.extensions[PIPELINE_EXTENSION_KEY]
    memory = MemoryArchive()
    pipeline = DocumentPipeline(StubRenderer(), memory, timeout_seconds=5)
    app.extensions[PIPELINE_EXTENSION_KEY] = pipeline
    yield memory
    pipeline.shutdown()
    app.extensions[PIPELINE_EXTENSION_KEY] = previous


@pytest.fixture(scope='function')
def failing_renderer(app, archive):
    """Every render attempt fails."""
    app.extensions[PIPELINE_EXTENSION_KEY].renderer = FailingRenderer()
    return archive


@pytest.fixture(scope='function')
def db_session(app, clock, archive):
    """Create fresh database for each test."""
    with app.app_context():
        db.session.rollback()
        db.session.expunge_all()
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def _company(db_session, name: str, tax_id: str) -> Company:
    company = Company(name=name, tax_id=tax_id, timezone="UTC", is_active=True)
    db_session.add(company)
    db_session.commit()
    return company


def _user(db_session, company: Company, email: str, role: str) -> User:
    user = User(company_id=company.id, email=email, password_hash=PASSWORD_HASH, role=role, is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def company_a(db_session):
    """Company A (first tenant)."""
    return _company(db_session, "Acme SARL", "001234567000089")


@pytest.fixture(scope='function')
def company_b(db_session):
    """Company B (second tenant)."""
    return _company(db_session, "Beta SA", "009876543000012")


@pytest.fixture(scope='function')
def admin_a(db_session, company_a):
    return _user(db_session, company_a, "admin@acme.ma", Role.ADMIN)


@pytest.fixture(scope='function')
def manager_a(db_session, company_a):
    return _user(db_session, company_a, "manager@acme.ma", Role.MANAGER)


@pytest.fixture(scope='function')
def clerk_a(db_session, company_a):
    return _user(db_session, company_a, "clerk@acme.ma", Role.CLERK)


@pytest.fixture(scope='function')
def admin_b(db_session, company_b):
    return _user(db_session, company_b, "admin@beta.ma", Role.ADMIN)


@pytest.fixture(scope='function')
def admin_ctx(admin_a):
    return TenantContext.for_user(admin_a)


@pytest.fixture(scope='function')
def manager_ctx(manager_a):
    return TenantContext.for_user(manager_a)


@pytest.fixture(scope='function')
def clerk_ctx(clerk_a):
    return TenantContext.for_user(clerk_a)


@pytest.fixture(scope='function')
def other_ctx(admin_b):
    return TenantContext.for_user(admin_b)


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def headers_for(user: User) -> dict:
    _, token = create_session(user.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def admin_headers(admin_a):
    return headers_for(admin_a)


@pytest.fixture(scope='function')
def manager_headers(manager_a):
    return headers_for(manager_a)


@pytest.fixture(scope='function')
def clerk_headers(clerk_a):
    return headers_for(clerk_a)


@pytest.fixture(scope='function')
def other_headers(admin_b):
    return headers_for(admin_b)


def invoice_payload(number: str = "INV-001", **overrides) -> dict:
    """Valid create payload: 2 x 50.00 at 20% VAT -> 100.00 + 20.00 = 120.00."""
    payload = {
        "invoice_number": number,
        "date": "2026-10-01",
        "customer_name": "Client SARL",
        "vat_rate": "20",
        "lines": [
            {"description": "Consulting", "quantity": "2", "unit_price": "50.00"},
        ],
    }
    payload.update(overrides)
    return payload
