"""
Persistent metadata about slicing builds.

A ``BuildRecord`` tracks one slice job submitted through the API: its
identifier, the fingerprint of the store it produced, its processing
status and summary counts.  The layer geometry itself stays in memory;
the record lets clients list past and running jobs and see why a job
failed.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from sqlmodel import Field, SQLModel, select

from .db import create_db_and_tables, get_session

# Values of BuildRecord.status
QUEUED = "queued"
RUNNING = "running"
READY = "ready"
PARTIAL = "partial"
FAILED = "failed"
CANCELLED = "cancelled"


class BuildRecord(SQLModel, table=True):
    """Database model for one slice job."""

    slice_id: str = Field(primary_key=True)
    fingerprint: Optional[str] = Field(default=None, index=True)
    status: str = Field(default=QUEUED)
    mesh_count: int = 0
    triangle_count: int = 0
    layer_count: int = 0
    failed_layer_count: int = 0
    issue_count: int = 0
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


def init_db() -> None:
    """Create the tables if they do not exist.  Called on app startup."""
    create_db_and_tables()


def insert_build_record(record: BuildRecord) -> None:
    with get_session() as session:
        session.add(record)
        session.commit()


def get_build_record(slice_id: str) -> Optional[BuildRecord]:
    with get_session() as session:
        return session.get(BuildRecord, slice_id)


def list_build_records() -> List[BuildRecord]:
    """Return every build record, oldest first."""
    with get_session() as session:
        statement = select(BuildRecord).order_by(BuildRecord.created_at)
        return list(session.exec(statement))


def update_build_record(slice_id: str, **fields: Any) -> Optional[BuildRecord]:
    """Set ``fields`` on a record and bump its ``updated_at``.

    Returns:
        The updated record, or ``None`` if no record has that id.
    """
    with get_session() as session:
        record = session.get(BuildRecord, slice_id)
        if record is None:
            return None
        for name, value in fields.items():
            setattr(record, name, value)
        record.updated_at = datetime.utcnow()
        session.add(record)
        session.commit()
        session.refresh(record)
        return record
