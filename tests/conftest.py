"""Shared pytest fixtures for Kosly tests."""
import sys
sys.dont_write_bytecode = True

from unittest.mock import MagicMock  # noqa: E402
from uuid import uuid4  # noqa: E402

import pytest  # noqa: E402

from helpers import FakeStore  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_oidc_jwks_cache():
    """Reset the module-level JWKS cache around every test.

    A JWKS cached by one test would not match the keys of the next and
    fail it with 401.
    """
    from kosly.api.auth import reset_jwks_cache

    reset_jwks_cache()
    yield
    reset_jwks_cache()


@pytest.fixture(autouse=True)
def _clear_inline_tasks():
    """Empty the dispatcher's inline task log between tests."""
    from kosly.notifications import dispatcher

    dispatcher.get_tasks_client().clear()
    yield
    dispatcher.get_tasks_client().clear()


@pytest.fixture
def store(monkeypatch):
    """In-memory repositories wired into the domain layer."""
    fake = FakeStore()
    fake.install(monkeypatch)
    return fake


@pytest.fixture
def cur():
    """Mocked psycopg2 cursor; only advisory locks reach it under FakeStore."""
    return MagicMock()


@pytest.fixture
def operator_id():
    return str(uuid4())


@pytest.fixture
def callers(operator_id):
    """One caller per role, operator-side ones attached to operator_id."""
    from kosly.domain.authz import Caller, Role

    return {
        "customer": Caller(id=str(uuid4()), role=Role.CUSTOMER),
        "staff": Caller(id=str(uuid4()), role=Role.STAFF, operator_id=operator_id),
        "operator": Caller(id=str(uuid4()), role=Role.OPERATOR, operator_id=operator_id),
        "superadmin": Caller(id=str(uuid4()), role=Role.SUPERADMIN),
        "other_operator": Caller(id=str(uuid4()), role=Role.OPERATOR, operator_id=str(uuid4())),
    }
