"""Declarative base and session helpers for guestsync's bookkeeping tables."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on round-trip; treat naive values as UTC."""

    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def create_session_factory(database_url: str, *, create_tables: bool = True) -> sessionmaker[Session]:
    """Build a session factory for ``database_url``, creating the tables when asked."""

    engine_kwargs: dict = {"future": True}
    if database_url.startswith("sqlite") and ":memory:" in database_url:
        # Share one connection so every session sees the same in-memory database.
        engine_kwargs.update(connect_args={"check_same_thread": False}, poolclass=StaticPool)
    engine = create_engine(database_url, **engine_kwargs)
    if create_tables:
        Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)
