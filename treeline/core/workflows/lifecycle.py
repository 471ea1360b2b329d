"""Workflow lifecycle: the default WorkflowHandlers.

Moves the workflow row to its terminal status, applies the subjob retention
policy and forwards the outcome to optional user hooks.
"""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable

from treeline.core.logging import get_logger
from treeline.core.models.config import TreelineConfig
from treeline.core.models.jobs import WorkflowRecord
from treeline.core.store.base import JobStore
from treeline.core.types.status import WorkflowStatus

logger = get_logger('workflow.lifecycle')

CompleteHook = Callable[[WorkflowRecord], Awaitable[None] | None]
ErrorHook = Callable[[WorkflowRecord, str, Any, BaseException | str], Awaitable[None] | None]

_FROM_RUNNING = frozenset({WorkflowStatus.RUNNING})


def summarize_cause(worker_name: str, cause: BaseException | str) -> str:
    if isinstance(cause, BaseException):
        return f'{worker_name}: {type(cause).__name__}: {cause}'
    return f'{worker_name}: {cause}'


class WorkflowLifecycle:
    def __init__(
        self,
        store: JobStore,
        config: TreelineConfig | None = None,
        *,
        on_complete: CompleteHook | None = None,
        on_error: ErrorHook | None = None,
    ) -> None:
        self.store = store
        self.config = config or TreelineConfig()
        self.on_complete = on_complete
        self.on_error = on_error

    async def on_workflow_complete(self, workflow_id: str) -> None:
        record = await self.store.transition_workflow(
            workflow_id, from_statuses=_FROM_RUNNING, to=WorkflowStatus.COMPLETED
        )
        if record is None:
            # Already terminal (failed branch earlier, or a repeated trigger)
            current = await self.store.get_workflow(workflow_id)
            state = current.status.value if current is not None else 'missing'
            logger.info(f'Workflow {workflow_id[:8]} not completed, status is {state}')
            return

        logger.info(f'Workflow {record.name} ({workflow_id[:8]}) completed')
        if self.config.delete_subjobs_after_workflow_completes:
            removed = await self.store.delete_subjobs(workflow_id)
            logger.debug(f'Deleted {removed} subjobs of workflow {workflow_id[:8]}')

        if self.on_complete is not None:
            await _call_hook(self.on_complete, record)

    async def on_workflow_error(
        self,
        workflow_id: str,
        worker_name: str,
        item: Any,
        cause: BaseException | str,
    ) -> None:
        """Fail the workflow on the first node failure.

        Other branches already dispatched keep running; their completions no
        longer change the workflow status since it is terminal.
        """
        summary = summarize_cause(worker_name, cause)
        record = await self.store.transition_workflow(
            workflow_id,
            from_statuses=_FROM_RUNNING,
            to=WorkflowStatus.FAILED,
            error=summary,
        )
        if record is None:
            logger.warning(
                f'Workflow {workflow_id[:8]} already terminal, additional failure: {summary}'
            )
            return

        logger.error(f'Workflow {record.name} ({workflow_id[:8]}) failed: {summary}')
        if self.on_error is not None:
            await _call_hook(self.on_error, record, worker_name, item, cause)


async def _call_hook(hook: Callable[..., Any], *args: Any) -> None:
    outcome = hook(*args)
    if inspect.isawaitable(outcome):
        await outcome
