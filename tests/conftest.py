import os

os.environ.setdefault("DB_BACKEND", "sqlite")

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from core.db import DB
from core.models import Base
from core.services import company_service


def _enable_foreign_keys(dbapi_connection, _record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest.fixture
def server_db(tmp_path):
    db_path = tmp_path / "grantgate.sqlite"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _enable_foreign_keys)
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    previous_engine = DB.engine
    previous_session = DB.SessionLocal
    DB.engine = engine
    DB.SessionLocal = SessionLocal
    try:
        yield engine
    finally:
        DB.engine = previous_engine
        DB.SessionLocal = previous_session
        engine.dispose()


@pytest.fixture
def db_session(server_db):
    session = DB.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def acme(server_db):
    """Company ACME with one facility (code 001)."""
    company = company_service.create_company("Acme Corp", short_name="ACME")
    assert company["status"] == "created"
    facility = company_service.create_facility(company["company"]["id"], "Main Plant")
    assert facility["status"] == "created"
    return {
        "company_id": company["company"]["id"],
        "facility_id": facility["facility"]["id"],
    }
