"""In-process job-tree store.

An arena of immutable JobNode snapshots keyed by id. A single threading.Lock
makes each operation atomic, so the store can be shared by several event
loops running on different threads.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Iterable, Sequence

from treeline.core.errors import ErrorCode, JobTreeError
from treeline.core.logging import get_logger
from treeline.core.models.jobs import JobNode, WorkflowRecord
from treeline.core.store.base import check_transition, validate_tree
from treeline.core.types.status import JobStatus, WorkflowStatus

logger = get_logger('store.memory')


class InMemoryJobStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._workflows: dict[str, WorkflowRecord] = {}
        self._nodes: dict[str, JobNode] = {}
        self._by_handle: dict[str, str] = {}

    async def insert_workflow(
        self, workflow: WorkflowRecord, nodes: Sequence[JobNode]
    ) -> None:
        validate_tree(workflow, nodes)
        with self._lock:
            if workflow.id in self._workflows:
                raise JobTreeError(
                    message=f"workflow '{workflow.id}' already exists",
                    code=ErrorCode.TREE_DUPLICATE_WORKFLOW_ID,
                )
            clashes = [n.id for n in nodes if n.id in self._nodes]
            if clashes:
                raise JobTreeError(
                    message='node ids already stored',
                    code=ErrorCode.TREE_DUPLICATE_NODE_ID,
                    notes=[f'ids: {clashes}'],
                )
            self._workflows[workflow.id] = workflow
            for node in nodes:
                self._nodes[node.id] = node
                if node.job_handle is not None:
                    self._by_handle[node.job_handle] = node.id
        logger.debug(f'Stored workflow {workflow.id[:8]} with {len(nodes)} subjobs')

    async def get_workflow(self, workflow_id: str) -> WorkflowRecord | None:
        with self._lock:
            return self._workflows.get(workflow_id)

    async def transition_workflow(
        self,
        workflow_id: str,
        *,
        from_statuses: Iterable[WorkflowStatus],
        to: WorkflowStatus,
        error: str | None = None,
    ) -> WorkflowRecord | None:
        sources = frozenset(from_statuses)
        check_transition(sources, to)
        with self._lock:
            current = self._workflows.get(workflow_id)
            if current is None or current.status not in sources:
                return None
            updated = current.evolve(
                status=to,
                error=error if error is not None else current.error,
                completed_at=datetime.now(timezone.utc) if to.is_terminal else None,
            )
            self._workflows[workflow_id] = updated
            return updated

    async def get(self, node_id: str) -> JobNode | None:
        with self._lock:
            return self._nodes.get(node_id)

    async def get_by_handle(self, job_handle: str) -> JobNode | None:
        with self._lock:
            node_id = self._by_handle.get(job_handle)
            return self._nodes.get(node_id) if node_id is not None else None

    async def children(self, node_id: str) -> list[JobNode]:
        with self._lock:
            kids = [n for n in self._nodes.values() if n.parent_id == node_id]
        return sorted(kids, key=lambda n: n.position)

    async def root_chain(self, workflow_id: str) -> list[JobNode]:
        with self._lock:
            roots = [
                n for n in self._nodes.values()
                if n.workflow_id == workflow_id and n.parent_id is None
            ]
        return sorted(roots, key=lambda n: n.position)

    async def transition(
        self,
        node_id: str,
        *,
        from_statuses: Iterable[JobStatus],
        to: JobStatus,
        job_handle: str | None = None,
    ) -> JobNode | None:
        sources = frozenset(from_statuses)
        check_transition(sources, to)
        with self._lock:
            current = self._nodes.get(node_id)
            if current is None or current.status not in sources:
                return None
            updated = current.evolve(
                status=to,
                job_handle=job_handle if job_handle is not None else current.job_handle,
            )
            self._nodes[node_id] = updated
            if job_handle is not None:
                self._by_handle[job_handle] = node_id
            return updated

    async def mark_descendants_complete(self, node_id: str) -> bool:
        with self._lock:
            current = self._nodes.get(node_id)
            if current is None or current.descendants_are_complete:
                return False
            self._nodes[node_id] = current.evolve(descendants_are_complete=True)
            return True

    async def delete_subjobs(self, workflow_id: str) -> int:
        with self._lock:
            doomed = [n for n in self._nodes.values() if n.workflow_id == workflow_id]
            for node in doomed:
                del self._nodes[node.id]
                if node.job_handle is not None:
                    self._by_handle.pop(node.job_handle, None)
        return len(doomed)
