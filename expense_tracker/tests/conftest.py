from __future__ import annotations

import pathlib
import sys

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from expense_tracker import database  # noqa: E402
from expense_tracker.client import ExpenseClient  # noqa: E402
from expense_tracker.config import Settings  # noqa: E402
from expense_tracker.server import create_app  # noqa: E402


@pytest.fixture()
def engine():
    # A fresh in-memory database per test keeps commits from leaking across tests.
    test_engine = database.create_db_engine("sqlite://")
    database.init_db(test_engine)
    yield test_engine
    database.Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return database.make_session_factory(engine)


@pytest.fixture()
def db_session(session_factory):
    session: Session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture()
def app(engine):
    return create_app(Settings(database_url="sqlite://"), engine=engine)


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def rpc_client(client):
    return ExpenseClient("http://testserver", session=client)
