# conftest.py

import os
from datetime import date

import pytest

# Select the testing config before anything reads the environment
os.environ["GUESTSYNC_ENV"] = "testing"

from guestsync.adapters import InMemoryCRM
from guestsync.models import create_session_factory
from guestsync.pipeline.records import CRMIdentity, TargetStayRecord


@pytest.fixture
def make_row():
    """Factory for raw PMS rows using the PMS column names."""

    counter = {"value": 0}

    def _make_row(
        email="guest@example.com",
        first="John",
        last="Doe",
        check_in="2026-03-01",
        check_out="2026-03-04",
        **overrides,
    ):
        counter["value"] += 1
        row = {
            "NAME_ID": str(1000 + counter["value"]),
            "FIRST": first,
            "LAST": last,
            "EMAIL": email,
            "PHONE": "+54 261 555 0100",
            "LANGUAGE": "E",
            "CITY": "Mendoza",
            "STATE": "Mendoza",
            "COUNTRY": "AR",
            "CHECK_IN": check_in,
            "CHECK_OUT": check_out,
        }
        row.update(overrides)
        return row

    return _make_row


@pytest.fixture
def make_stay():
    def _make_stay(identity_id="ID-1", check_in=date(2026, 3, 1), record_id=None, **fields):
        values = {
            "email": "guest@example.com",
            "first_name": "John",
            "last_name": "Doe",
            "city": "Mendoza",
            "state": "Mendoza",
            "country": "AR",
            "telephone": "+54 261 555 0100",
            "language": "English",
            "check_out": date(2026, 3, 4),
        }
        values.update(fields)
        return TargetStayRecord(
            record_id=record_id or f"ST-{identity_id}-{check_in.isoformat()}",
            identity_id=identity_id,
            check_in=check_in,
            **values,
        )

    return _make_stay


@pytest.fixture
def crm():
    """Empty in-memory CRM."""

    return InMemoryCRM()


@pytest.fixture
def john_crm(make_stay):
    """CRM holding John Doe with one stay checking in 2026-03-01."""

    identity = CRMIdentity(identity_id="ID-1", email="guest@example.com", first_name="John", last_name="Doe")
    return InMemoryCRM(identities=[identity], stays=[make_stay()])


@pytest.fixture
def session():
    """Session bound to a fresh in-memory SQLite database."""

    factory = create_session_factory("sqlite:///:memory:")
    db_session = factory()
    try:
        yield db_session
    finally:
        db_session.close()
        factory.kw["bind"].dispose()
