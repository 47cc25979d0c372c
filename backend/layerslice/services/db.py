"""
Database configuration and session management for the slicing backend.

By default a SQLite database is kept in the project's ``storage``
directory.  Set ``SLICE_DB_URL`` to point the engine elsewhere, for
example ``sqlite://`` for a throwaway in-memory database in tests.
"""

from __future__ import annotations

import os
from pathlib import Path

from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool

STORAGE_DIR = Path(__file__).resolve().parents[2] / "storage"


def _database_url() -> str:
    url = os.getenv("SLICE_DB_URL")
    if url:
        return url
    STORAGE_DIR.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{(STORAGE_DIR / 'layerslice.db').as_posix()}"


def _make_engine(url: str):
    if url.startswith("sqlite"):
        # Background tasks write from worker threads
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=False, **kwargs)
    return create_engine(url, echo=False)


engine = _make_engine(_database_url())


def create_db_and_tables() -> None:
    """Create all tables in the database.  Safe to call repeatedly."""
    SQLModel.metadata.create_all(engine)


def get_session() -> Session:
    """Return a new session bound to the engine.

    Use it as a context manager (``with get_session() as session: ...``)
    so the connection is released.
    """
    return Session(engine)
