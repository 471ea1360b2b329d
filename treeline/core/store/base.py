"""Persistent job-tree store contract.

Every write is atomic per node and visible to the next read by any caller.
Status and flag writes are compare-and-set: they report whether this caller
performed the change, which is what makes dispatch and parent propagation
exactly-once without locks held by the engine.
"""

from __future__ import annotations

from typing import Iterable, Protocol, Sequence, runtime_checkable

from treeline.core.errors import (
    ErrorCode,
    JobTreeError,
    ValidationReport,
    raise_collected,
)
from treeline.core.models.jobs import JobNode, WorkflowRecord
from treeline.core.types.status import JobStatus, WorkflowStatus


class InvalidTransitionError(JobTreeError):
    """Raised when a write would move a status along an edge the state machine lacks."""

    def __init__(self, source: str, target: str) -> None:
        super().__init__(
            message=f'illegal status transition {source} -> {target}',
            code=ErrorCode.TREE_INVALID_TRANSITION,
            notes=[f'source statuses: {source}', f'target status: {target}'],
        )


def check_transition(
    from_statuses: Iterable[JobStatus | WorkflowStatus],
    to: JobStatus | WorkflowStatus,
) -> None:
    bad = [s for s in from_statuses if not s.can_transition_to(to)]  # type: ignore[arg-type]
    if bad:
        raise InvalidTransitionError(', '.join(s.value for s in bad), to.value)


def validate_tree(workflow: WorkflowRecord, nodes: Sequence[JobNode]) -> None:
    """Check a tree before it is materialized.

    Collects every problem and raises them together.
    """
    report = ValidationReport('job tree')
    by_id: dict[str, JobNode] = {}
    for node in nodes:
        if node.id in by_id:
            report.add(
                JobTreeError(
                    message=f"duplicate node id '{node.id}'",
                    code=ErrorCode.TREE_DUPLICATE_NODE_ID,
                )
            )
        by_id[node.id] = node
        if node.workflow_id != workflow.id:
            report.add(
                JobTreeError(
                    message=f"node '{node.id}' belongs to another workflow",
                    code=ErrorCode.TREE_UNKNOWN_WORKFLOW,
                    notes=[f'expected {workflow.id}, got {node.workflow_id}'],
                )
            )

    for node in nodes:
        for attr in ('parent_id', 'next_id'):
            ref = getattr(node, attr)
            if ref is not None and ref not in by_id:
                report.add(
                    JobTreeError(
                        message=f"node '{node.id}' has dangling {attr} '{ref}'",
                        code=ErrorCode.TREE_DANGLING_REFERENCE,
                    )
                )
        nxt = by_id.get(node.next_id) if node.next_id else None
        if nxt is not None and nxt.parent_id != node.parent_id:
            report.add(
                JobTreeError(
                    message=f"node '{node.id}' chains to '{nxt.id}' under a different parent",
                    code=ErrorCode.TREE_DANGLING_REFERENCE,
                    help_text='next_id must point to a sibling (same parent_id)',
                )
            )

    raise_collected(report)


@runtime_checkable
class JobStore(Protocol):
    """Storage collaborator used by the engine."""

    async def insert_workflow(
        self, workflow: WorkflowRecord, nodes: Sequence[JobNode]
    ) -> None:
        """Materialize a workflow and its whole tree."""
        ...

    async def get_workflow(self, workflow_id: str) -> WorkflowRecord | None: ...

    async def transition_workflow(
        self,
        workflow_id: str,
        *,
        from_statuses: Iterable[WorkflowStatus],
        to: WorkflowStatus,
        error: str | None = None,
    ) -> WorkflowRecord | None:
        """CAS the workflow status; None if the workflow was not in from_statuses."""
        ...

    async def get(self, node_id: str) -> JobNode | None: ...

    async def get_by_handle(self, job_handle: str) -> JobNode | None: ...

    async def children(self, node_id: str) -> list[JobNode]:
        """Children of node_id ordered by position."""
        ...

    async def root_chain(self, workflow_id: str) -> list[JobNode]:
        """Top-level nodes of a workflow ordered by position."""
        ...

    async def transition(
        self,
        node_id: str,
        *,
        from_statuses: Iterable[JobStatus],
        to: JobStatus,
        job_handle: str | None = None,
    ) -> JobNode | None:
        """CAS the node status (and handle, when given).

        Returns the updated snapshot, or None if the node is missing or was not
        in from_statuses.
        """
        ...

    async def mark_descendants_complete(self, node_id: str) -> bool:
        """Flip descendants_are_complete False -> True; True only for the caller that flipped it."""
        ...

    async def delete_subjobs(self, workflow_id: str) -> int:
        """Retire every subjob of a workflow; returns the number removed."""
        ...
