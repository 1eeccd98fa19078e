"""
Shared pytest fixtures for the SaleFlow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_operation: factory creating operations through the service layer
    - file_ref: a valid FileReference
"""

import itertools

import pytest

from saleflow import create_app
from saleflow.models import db as _db
from saleflow.models.document import FileReference
from saleflow.services import operation_service

ORG_ID = "org-1"

_buyer_seq = itertools.count(1)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


def unique_buyer() -> str:
    return f"buyer-auto-{next(_buyer_seq)}"


def new_operation(buyer_id=None, units=None, step_names=None, **kwargs):
    """Create an operation through the service (commits)."""
    return operation_service.create_operation(
        kwargs.pop("organization_id", ORG_ID),
        buyer_id or unique_buyer(),
        units if units is not None else [{"unit_id": "U-101", "price": 120000}],
        step_names=step_names,
        **kwargs,
    )


@pytest.fixture()
def make_operation():
    """Factory fixture: make_operation(step_names=[...], buyer_id=...)."""
    return new_operation


@pytest.fixture()
def operation():
    """A fresh operation with the default four-step template."""
    return new_operation()


@pytest.fixture()
def file_ref():
    return FileReference(
        url="https://files.example.com/docs/boleto.pdf",
        file_name="boleto.pdf",
        file_size=2048,
        mime_type="application/pdf",
    )
