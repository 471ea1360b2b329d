"""Dispatcher: decides whether and how a node is handed to the execution backend."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Awaitable, Iterable, Sequence

from treeline.core.backends.base import ExecutionBackend, InvocationRequest, InvokeOutcome
from treeline.core.engine.reporter import ErrorReporter
from treeline.core.engine.result_types import (
    DispatchError,
    DispatchErrorCode,
    DispatchResult,
)
from treeline.core.logging import get_logger
from treeline.core.models.jobs import JobNode, new_id
from treeline.core.registry.workers import (
    WorkerCapability,
    WorkerDescriptor,
    WorkerRegistry,
)
from treeline.core.store.base import JobStore
from treeline.core.types.result import Err, Ok, is_err
from treeline.core.types.status import JobStatus

if TYPE_CHECKING:
    from treeline.core.engine.cascader import CompletionCascader

logger = get_logger('engine.dispatcher')

_FROM_INITIALIZED = frozenset({JobStatus.INITIALIZED})


async def _settle(
    starts: Iterable[Awaitable[DispatchResult[str | None]]],
) -> list[DispatchResult[str | None]]:
    """Run sibling starts concurrently; re-raise the first exception once all have finished."""
    outcomes = await asyncio.gather(*starts, return_exceptions=True)
    for outcome in outcomes:
        if isinstance(outcome, BaseException):
            raise outcome
    return outcomes  # type: ignore[return-value]


class Dispatcher:
    def __init__(
        self,
        store: JobStore,
        backend: ExecutionBackend,
        registry: WorkerRegistry,
        reporter: ErrorReporter,
    ) -> None:
        self.store = store
        self.backend = backend
        self.registry = registry
        self.reporter = reporter
        # Bound by the Orchestrator; nested workflows complete on entry
        self.cascader: CompletionCascader | None = None

    async def enqueue(self, node: JobNode) -> DispatchResult[str | None]:
        """
        Start a node according to its kind.

        Only nodes still INITIALIZED are acted on; the status write itself is
        the compare-and-set guard, so speculative or duplicate calls are safe.

        Returns:
            Ok(handle) for a dispatched leaf, Ok(first child's handle) for a
            fan-out, Ok(None) for a guarded no-op or a nested workflow.
        """
        logger.debug(f'{node.to_info()}: Trying to enqueue')
        if node.status != JobStatus.INITIALIZED:
            return Ok(None)

        descriptor = self.registry.get(node.kind)
        if descriptor is None:
            logger.error(f'{node.to_info()}: kind does not resolve to a registered worker')
            return Err(
                DispatchError(
                    code=DispatchErrorCode.WORKER_NOT_REGISTERED,
                    message=f"worker '{node.kind}' not registered",
                    node_id=node.id,
                    kind=node.kind,
                )
            )

        match descriptor.capability:
            case WorkerCapability.PARALLEL:
                return await self._enqueue_parallel(node)
            case WorkerCapability.BATCH:
                return await self._enqueue_batch(node)
            case WorkerCapability.BATCH_LANE:
                return await self._start_lane(node)
            case WorkerCapability.NESTED_WORKFLOW:
                return await self._expand_nested(node)
            case WorkerCapability.EXECUTABLE:
                return await self._enqueue_leaf(node, descriptor)

    async def _enqueue_parallel(self, node: JobNode) -> DispatchResult[str | None]:
        started = await self.store.transition(
            node.id, from_statuses=_FROM_INITIALIZED, to=JobStatus.RUNNING
        )
        if started is None:
            return Ok(None)

        logger.debug(f'{node.to_info()}: Enqueueing parallel children')
        children = await self.store.children(node.id)
        if not children:
            return await self._complete_empty(started)
        return self._first_handle(
            await _settle(self.enqueue(child) for child in children)
        )

    async def _enqueue_batch(self, node: JobNode) -> DispatchResult[str | None]:
        started = await self.store.transition(
            node.id, from_statuses=_FROM_INITIALIZED, to=JobStatus.RUNNING
        )
        if started is None:
            return Ok(None)

        logger.debug(f'{node.to_info()}: Enqueueing batch children')
        lanes = await self.store.children(node.id)
        if not lanes:
            return await self._complete_empty(started)
        return self._first_handle(
            await _settle(self._start_lane(lane) for lane in lanes)
        )

    async def _start_lane(self, lane: JobNode) -> DispatchResult[str | None]:
        """Mark a batch lane running and start only the first element of its chain."""
        started = await self.store.transition(
            lane.id, from_statuses=_FROM_INITIALIZED, to=JobStatus.RUNNING
        )
        if started is None:
            return Ok(None)

        elements = await self.store.children(lane.id)
        if not elements:
            return await self._complete_empty(started)
        return await self.enqueue(elements[0])

    async def _expand_nested(self, node: JobNode) -> DispatchResult[str | None]:
        """Nested workflows never reach the backend: entering one completes it."""
        started = await self.store.transition(
            node.id, from_statuses=_FROM_INITIALIZED, to=JobStatus.RUNNING
        )
        if started is None:
            return Ok(None)

        logger.debug(f'{node.to_info()}: Expanding nested workflow')
        result = await self._require_cascader().complete(started)
        if is_err(result):
            return result
        return Ok(None)

    async def _enqueue_leaf(
        self, node: JobNode, descriptor: WorkerDescriptor
    ) -> DispatchResult[str | None]:
        # The handle is persisted with QUEUED before the backend sees the job,
        # so a fast completion callback always finds the node by handle.
        handle = new_id()
        queued = await self.store.transition(
            node.id,
            from_statuses=_FROM_INITIALIZED,
            to=JobStatus.QUEUED,
            job_handle=handle,
        )
        if queued is None:
            return Ok(None)

        logger.debug(f'{queued.to_info()}: Enqueueing in backend as {handle[:8]}')
        request = InvocationRequest(
            handle=handle,
            worker_name=queued.kind,
            arguments=queued.arguments,
            execution_metadata=dict(queued.execution_metadata),
            unique=descriptor.unique,
        )
        # Tree nodes may legitimately repeat an invocation; never let the
        # worker's uniqueness policy drop one.
        outcome = await self.backend.invoke(
            request, bypass_unique=descriptor.unique is not None
        )

        if is_err(outcome):
            error = outcome.err_value
            await self.reporter.fail(
                queued, queued.kind, queued.arguments, error.exception or error.message
            )
            return Err(
                DispatchError(
                    code=DispatchErrorCode.BACKEND_INVOKE_FAILED,
                    message=error.message,
                    node_id=queued.id,
                    kind=queued.kind,
                    exception=error.exception,
                )
            )
        if outcome.ok_value == InvokeOutcome.DEDUPLICATED:
            message = f'backend dropped invocation {handle} despite uniqueness bypass'
            await self.reporter.fail(queued, queued.kind, queued.arguments, message)
            return Err(
                DispatchError(
                    code=DispatchErrorCode.BACKEND_INVOKE_FAILED,
                    message=message,
                    node_id=queued.id,
                    kind=queued.kind,
                )
            )
        return Ok(handle)

    async def _complete_empty(self, node: JobNode) -> DispatchResult[str | None]:
        """A composite with nothing to fan out is complete as soon as it starts."""
        logger.debug(f'{node.to_info()}: No children, completing')
        result = await self._require_cascader().complete(node)
        if is_err(result):
            return result
        return Ok(None)

    @staticmethod
    def _first_handle(
        results: Sequence[DispatchResult[str | None]],
    ) -> DispatchResult[str | None]:
        for result in results:
            if is_err(result):
                return result
        return results[0] if results else Ok(None)

    def _require_cascader(self) -> CompletionCascader:
        if self.cascader is None:
            raise RuntimeError('Dispatcher has no CompletionCascader bound')
        return self.cascader
