from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Optional
from sqlalchemy import String, Text, DateTime, Integer, Index, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.dialects.postgresql import JSONB


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for PostgreSQL models"""

    pass


class TaskModel(Base):
    """
    SQLAlchemy model for backend invocations written by PostgresBackend.

    - id: str # the job_handle pre-assigned by the dispatcher
    - worker_name: str # registered worker identifier
    - queue_name: str # from execution_metadata['queue'], defaulting to "default"
    - priority: int # from execution_metadata['priority'], defaulting to 100
    - arguments: dict # opaque job payload
    - execution_metadata: dict # remaining backend options, passed through unmodified
    - status: str # PENDING, RUNNING, COMPLETED, FAILED
    - unique_key: str # fingerprint guarding duplicate invocations, NULL when bypassed
    - unique_expires_at: datetime # when unique_key stops blocking duplicates
    - failed_reason: str # failure cause reported by the worker
    - created_at: datetime
    - updated_at: datetime
    """

    __tablename__ = 'treeline_tasks'

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    worker_name: Mapped[str] = mapped_column(String(255), nullable=False)
    queue_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    priority: Mapped[int] = mapped_column(
        Integer, nullable=False, default=100, server_default=text('100'),
    )

    arguments: Mapped[Optional[Any]] = mapped_column(JSONB, nullable=True)
    execution_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONB, nullable=True
    )

    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default='PENDING', index=True
    )

    unique_key: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    unique_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    failed_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        # At most one live invocation per uniqueness fingerprint
        Index(
            'uq_treeline_tasks_unique_key_live',
            'unique_key',
            unique=True,
            postgresql_where=text(
                "unique_key IS NOT NULL AND status IN ('PENDING', 'RUNNING')"
            ),
        ),
    )
