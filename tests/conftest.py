# tests/conftest.py
"""
Shared fixtures. Tests run against an in-memory SQLite database so the
conditional updates and unique indexes of the credential store are exercised
for real; the API client overrides get_db with the same session.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from hostel_gate.database import Base, create_tables, get_db
from hostel_gate.main import app
from hostel_gate.models.credential import OUTGOING, INCOMING
from hostel_gate.services import credential_store
from hostel_gate.services.credential_store import CredentialSnapshot

NOW = datetime(2026, 3, 2, 9, 0, 0)


@pytest.fixture
def db():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    create_tables(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    c = TestClient(app)
    yield c
    app.dependency_overrides.clear()


def make_snapshot(student_ref="STU-001", hostel_block="D-Block", category="normal",
                  request_type="outing", purpose="Shopping"):
    return CredentialSnapshot(
        student_ref=student_ref,
        student_name="Ravi Kumar",
        roll_number="21CS001",
        hostel_block=hostel_block,
        floor="2",
        room_number="D-204",
        phone_number="9000000001",
        parent_phone_number="9000000002",
        request_type=request_type,
        category=category,
        purpose=purpose,
        out_date="2026-03-02",
        out_time="09:00",
        return_time="18:30",
    )


@pytest.fixture
def issue_pass(db):
    """Issue a credential and return (credential, payload)."""
    def _issue(request_id="REQ-1", direction=OUTGOING, activates_at=None, expires_at=None,
               now=NOW, **snapshot_kwargs):
        activates_at = activates_at or now
        expires_at = expires_at or activates_at + timedelta(hours=10)
        c = credential_store.issue(db, request_id, direction, activates_at, expires_at,
                                   make_snapshot(**snapshot_kwargs), now=now)
        return c, credential_store.render_payload(c)
    return _issue
