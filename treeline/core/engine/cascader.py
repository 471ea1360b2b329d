"""Completion cascade.

When a node finishes, decide what runs next: its first child, its next
sibling, its parent's continuation, or nothing at all. Parent propagation is
exactly-once because only the caller that flips ``descendants_are_complete``
from False to True carries on past the flag write.
"""

from __future__ import annotations

from treeline.core.engine.dispatcher import Dispatcher
from treeline.core.engine.handlers import WorkflowHandlers
from treeline.core.engine.result_types import DispatchResult
from treeline.core.logging import get_logger
from treeline.core.models.config import TreelineConfig
from treeline.core.models.jobs import JobKind, JobNode
from treeline.core.store.base import JobStore
from treeline.core.types.result import Ok, is_err
from treeline.core.types.status import JOB_ACTIVE_STATES, JobStatus

logger = get_logger('engine.cascader')

_FROM_RUNNING = frozenset({JobStatus.RUNNING})
_SELF_COMPLETING = frozenset({JobKind.BATCH, JobKind.BATCH_CHILD})


class CompletionCascader:
    def __init__(
        self,
        store: JobStore,
        dispatcher: Dispatcher,
        handlers: WorkflowHandlers,
        config: TreelineConfig | None = None,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.handlers = handlers
        self.config = config or TreelineConfig()

    async def complete(self, node: JobNode) -> DispatchResult[None]:
        """Mark a node complete and advance the tree.

        A node with children starts its first child (nested workflows and
        re-completed batch nodes take this path); a node without children
        propagates upward via descendants_complete.
        """
        completed = await self.store.transition(
            node.id, from_statuses=JOB_ACTIVE_STATES, to=JobStatus.COMPLETE
        )
        if completed is None:
            # Duplicate callback, or a composite re-completed after its first pass
            return Ok(None)

        logger.debug(f'{completed.to_info()}: Complete')
        children = await self.store.children(completed.id)
        if children:
            result = await self.dispatcher.enqueue(children[0])
            if is_err(result):
                return result
            return Ok(None)

        return await self.descendants_complete(completed)

    async def descendants_complete(self, node: JobNode) -> DispatchResult[None]:
        if not await self.store.mark_descendants_complete(node.id):
            return Ok(None)
        logger.debug(f'{node.to_info()}: Descendants are complete')

        if node.kind in _SELF_COMPLETING:
            result = await self.complete(node)
            if is_err(result):
                return result

        parent: JobNode | None = None
        if node.parent_id is not None:
            parent = await self.store.get(node.parent_id)
            if parent is None:
                # Rows retired by retention while a late callback was in flight
                logger.warning(
                    f'{node.to_info()}: parent {node.parent_id[:8]} no longer stored, stopping cascade'
                )
                return Ok(None)

        is_child_of_parallel = parent is not None and parent.kind == JobKind.PARALLEL

        if parent is not None:
            siblings = await self.store.children(parent.id)
            if all(s.descendants_are_complete for s in siblings):
                logger.debug(f'{node.to_info()}: Parent ({parent.to_info()}) is complete')
                result = await self.descendants_complete(parent)
                if is_err(result):
                    return result
                if (
                    is_child_of_parallel
                    and not self.config.delete_subjobs_after_workflow_completes
                ):
                    await self.store.transition(
                        parent.id, from_statuses=_FROM_RUNNING, to=JobStatus.COMPLETE
                    )

        if is_child_of_parallel:
            return Ok(None)

        if node.next_id is not None:
            successor = await self.store.get(node.next_id)
            if successor is None:
                logger.warning(
                    f'{node.to_info()}: next node {node.next_id[:8]} no longer stored'
                )
                return Ok(None)
            result = await self.dispatcher.enqueue(successor)
            if is_err(result):
                return result
            return Ok(None)

        if parent is None:
            logger.debug(f'{node.to_info()}: Workflow is complete')
            await self.handlers.on_workflow_complete(node.workflow_id)
        return Ok(None)
