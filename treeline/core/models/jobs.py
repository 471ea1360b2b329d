"""Job tree records: workflows (superjobs) and their subjob nodes.

Stores hand out immutable snapshots of these records. The engine never keeps a
snapshot across a suspension point; it re-reads the store instead.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from treeline.core.types.status import JobStatus, WorkflowStatus


class JobKind:
    """Built-in composite kinds. Any other kind is a worker identifier."""

    PARALLEL = 'parallel'
    BATCH = 'batch'
    BATCH_CHILD = 'batch_child'

    COMPOSITE: frozenset[str] = frozenset({PARALLEL, BATCH, BATCH_CHILD})


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass(slots=True, frozen=True)
class JobNode:
    """
    A single subjob in a workflow's job tree.

    - id: str # uuid4
    - workflow_id: str # owning workflow
    - kind: str # worker identifier, nested workflow identifier, or a JobKind composite
    - parent_id: str | None # weak reference to the owning node, None for top-level nodes
    - next_id: str | None # next sibling in a sequential chain
    - position: int # order among the children of parent_id
    - status: JobStatus
    - descendants_are_complete: bool # every node in this subtree is terminal
    - job_handle: str | None # backend invocation id, assigned before invocation
    - arguments: Any # opaque payload handed to the worker
    - execution_metadata: dict # backend options, passed through unmodified
    """

    id: str
    workflow_id: str
    kind: str
    parent_id: str | None = None
    next_id: str | None = None
    position: int = 0
    status: JobStatus = JobStatus.INITIALIZED
    descendants_are_complete: bool = False
    job_handle: str | None = None
    arguments: Any = None
    execution_metadata: dict[str, Any] = field(default_factory=lambda: {})

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def evolve(self, **changes: Any) -> JobNode:
        return replace(self, **changes)

    def to_info(self) -> str:
        return f'{self.kind} #{self.id[:8]} (workflow {self.workflow_id[:8]})'


@dataclass(slots=True, frozen=True)
class WorkflowRecord:
    """A workflow (superjob) owning one job tree."""

    id: str
    name: str
    status: WorkflowStatus = WorkflowStatus.PENDING
    error: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None

    def evolve(self, **changes: Any) -> WorkflowRecord:
        return replace(self, **changes)
