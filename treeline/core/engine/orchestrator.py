"""Orchestrator: wires the engine components and exposes the entry points.

Backends report outcomes by job handle (``complete_handle``/``fail_handle``);
drivers that already hold node ids can use ``complete``/``fail`` directly.
"""

from __future__ import annotations

from typing import Any, Sequence

from treeline.core.backends.base import ExecutionBackend
from treeline.core.engine.cascader import CompletionCascader
from treeline.core.engine.dispatcher import Dispatcher
from treeline.core.engine.handlers import WorkflowHandlers
from treeline.core.engine.reporter import ErrorReporter
from treeline.core.engine.result_types import (
    DispatchError,
    DispatchErrorCode,
    DispatchResult,
)
from treeline.core.logging import get_logger
from treeline.core.models.config import TreelineConfig
from treeline.core.models.jobs import JobNode, WorkflowRecord
from treeline.core.registry.workers import WorkerRegistry
from treeline.core.store.base import JobStore
from treeline.core.types.result import Err, Ok
from treeline.core.types.status import WorkflowStatus
from treeline.core.workflows.lifecycle import WorkflowLifecycle

logger = get_logger('engine.orchestrator')

_FROM_PENDING = frozenset({WorkflowStatus.PENDING})


class Orchestrator:
    def __init__(
        self,
        store: JobStore,
        backend: ExecutionBackend,
        registry: WorkerRegistry,
        handlers: WorkflowHandlers | None = None,
        config: TreelineConfig | None = None,
    ) -> None:
        self.config = config or TreelineConfig()
        self.store = store
        self.backend = backend
        self.registry = registry
        self.handlers: WorkflowHandlers = handlers or WorkflowLifecycle(store, self.config)
        self.reporter = ErrorReporter(store, self.handlers)
        self.dispatcher = Dispatcher(store, backend, registry, self.reporter)
        self.cascader = CompletionCascader(store, self.dispatcher, self.handlers, self.config)
        self.dispatcher.cascader = self.cascader

        # In-process backends deliver their callbacks straight back here
        attach = getattr(backend, 'attach', None)
        if callable(attach):
            attach(self)

    async def submit(
        self, workflow: WorkflowRecord, nodes: Sequence[JobNode]
    ) -> WorkflowRecord:
        """Materialize a pending workflow and its tree. Does not start it."""
        await self.store.insert_workflow(workflow, nodes)
        logger.info(f'Submitted workflow {workflow.name} ({workflow.id[:8]})')
        return workflow

    async def start(self, workflow_id: str) -> DispatchResult[str | None]:
        """Move a pending workflow to running and enqueue its first top-level node."""
        workflow = await self.store.get_workflow(workflow_id)
        if workflow is None:
            return Err(
                DispatchError(
                    code=DispatchErrorCode.WORKFLOW_NOT_FOUND,
                    message=f"workflow '{workflow_id}' not found",
                )
            )

        running = await self.store.transition_workflow(
            workflow_id, from_statuses=_FROM_PENDING, to=WorkflowStatus.RUNNING
        )
        if running is None:
            return Err(
                DispatchError(
                    code=DispatchErrorCode.WORKFLOW_NOT_PENDING,
                    message=f"workflow '{workflow_id}' is {workflow.status.value}, not pending",
                )
            )

        roots = await self.store.root_chain(workflow_id)
        if not roots:
            logger.info(f'Workflow {workflow.name} ({workflow_id[:8]}) has no subjobs')
            await self.handlers.on_workflow_complete(workflow_id)
            return Ok(None)

        logger.info(f'Starting workflow {workflow.name} ({workflow_id[:8]})')
        return await self.dispatcher.enqueue(roots[0])

    async def enqueue(self, node_id: str) -> DispatchResult[str | None]:
        node = await self.store.get(node_id)
        if node is None:
            return self._node_not_found(node_id)
        return await self.dispatcher.enqueue(node)

    async def complete(self, node_id: str) -> DispatchResult[None]:
        node = await self.store.get(node_id)
        if node is None:
            return self._node_not_found(node_id)
        return await self.cascader.complete(node)

    async def fail(
        self,
        node_id: str,
        worker_name: str,
        item: Any,
        cause: BaseException | str,
    ) -> DispatchResult[bool]:
        node = await self.store.get(node_id)
        if node is None:
            return self._node_not_found(node_id)
        return Ok(await self.reporter.fail(node, worker_name, item, cause))

    async def complete_handle(self, handle: str) -> DispatchResult[None]:
        """Backend callback: the invocation with this handle succeeded."""
        node = await self.store.get_by_handle(handle)
        if node is None:
            return self._handle_not_found(handle)
        return await self.cascader.complete(node)

    async def fail_handle(
        self,
        handle: str,
        worker_name: str,
        item: Any,
        cause: BaseException | str,
    ) -> DispatchResult[bool]:
        """Backend callback: the invocation with this handle raised."""
        node = await self.store.get_by_handle(handle)
        if node is None:
            return self._handle_not_found(handle)
        return Ok(await self.reporter.fail(node, worker_name, item, cause))

    @staticmethod
    def _node_not_found(node_id: str) -> Err[DispatchError]:
        logger.warning(f'Node {node_id} not found')
        return Err(
            DispatchError(
                code=DispatchErrorCode.NODE_NOT_FOUND,
                message=f"node '{node_id}' not found",
                node_id=node_id,
            )
        )

    @staticmethod
    def _handle_not_found(handle: str) -> Err[DispatchError]:
        logger.warning(f'No subjob holds job handle {handle}')
        return Err(
            DispatchError(
                code=DispatchErrorCode.NODE_NOT_FOUND,
                message=f"no node with job handle '{handle}'",
            )
        )
