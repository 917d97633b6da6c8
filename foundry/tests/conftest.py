from __future__ import annotations

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from foundry import ventures
from foundry.models import Base, Venture

# ---------------------------------------------------------------------------
# Fixtures: SQLite databases
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine():
    """In-memory SQLite shared by every connection through StaticPool."""
    eng = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture()
def session(engine):
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    sess = SessionLocal()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture()
def file_sessions(tmp_path):
    """Session factory over a file-backed database, for tests that use threads.

    Each thread must open its own session from this factory.
    """
    eng = create_engine(
        f"sqlite:///{tmp_path / 'threads.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(eng)
    yield sessionmaker(bind=eng, autoflush=False, expire_on_commit=False)
    eng.dispose()


@pytest.fixture()
def venture(session: Session) -> Venture:
    return ventures.create_venture(session, "user-1", "Sourdough Subscriptions")
