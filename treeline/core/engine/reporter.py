"""Error reporter: backend failure -> terminal node state -> workflow handler."""

from __future__ import annotations

from typing import Any

from treeline.core.engine.handlers import WorkflowHandlers
from treeline.core.logging import get_logger
from treeline.core.models.jobs import JobNode
from treeline.core.store.base import JobStore
from treeline.core.types.status import JOB_ACTIVE_STATES, JobStatus

logger = get_logger('engine.reporter')


class ErrorReporter:
    def __init__(self, store: JobStore, handlers: WorkflowHandlers) -> None:
        self.store = store
        self.handlers = handlers

    async def fail(
        self,
        node: JobNode,
        worker_name: str,
        item: Any,
        cause: BaseException | str,
    ) -> bool:
        """Mark the node failed and forward the failure once.

        Siblings, parent and chain successors are left untouched; the failed
        node halts its own branch. Returns False when the node was not active
        (already terminal, never dispatched, or deleted).
        """
        logger.debug(f'{node.to_info()}: Error')
        failed = await self.store.transition(
            node.id, from_statuses=JOB_ACTIVE_STATES, to=JobStatus.FAILED
        )
        if failed is None:
            logger.warning(f'{node.to_info()}: failure reported for inactive node, ignored')
            return False

        logger.error(f'{node.to_info()}: {worker_name} failed: {cause}')
        await self.handlers.on_workflow_error(node.workflow_id, worker_name, item, cause)
        return True
