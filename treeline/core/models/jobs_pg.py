"""SQLAlchemy models for job tree persistence."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import Boolean, String, Text, Integer, DateTime, ForeignKey, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from treeline.core.models.task_pg import Base


class WorkflowModel(Base):
    """
    SQLAlchemy model for workflow (superjob) instances.

    Tracks the overall state of one job tree:
    - Current status (PENDING, RUNNING, COMPLETED, FAILED)
    - Error summary forwarded by the error handler
    """

    __tablename__ = 'treeline_workflows'

    # UUID stored as string for consistency with subjobs
    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default='PENDING', index=True
    )
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text('NOW()'),
        index=True,
    )


class SubjobModel(Base):
    """
    SQLAlchemy model for subjob nodes.

    Tree edges are stored as ids: parent_id (ordered by position) is the
    owning edge, next_id links a sequential chain. Neither is a foreign key so
    a whole tree can be inserted in any order within one transaction.
    """

    __tablename__ = 'treeline_subjobs'

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    workflow_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey('treeline_workflows.id', ondelete='CASCADE'),
        nullable=False,
        index=True,
    )

    parent_id: Mapped[Optional[str]] = mapped_column(
        String(36), nullable=True, index=True
    )
    next_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    kind: Mapped[str] = mapped_column(String(255), nullable=False)

    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default='initialized', index=True
    )
    descendants_are_complete: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    # Pre-assigned by the dispatcher; backend callbacks resolve nodes through it
    job_handle: Mapped[Optional[str]] = mapped_column(
        String(36), nullable=True, unique=True
    )

    arguments: Mapped[Optional[Any]] = mapped_column(JSONB, nullable=True)
    execution_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONB, nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text('NOW()'),
    )
