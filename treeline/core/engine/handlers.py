"""Workflow-level handlers injected into the engine."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class WorkflowHandlers(Protocol):
    """Receives whole-workflow outcomes.

    on_workflow_error is where aggregate failure policy (abort everything,
    let other branches continue) is decided; the engine only reports.
    """

    async def on_workflow_complete(self, workflow_id: str) -> None: ...

    async def on_workflow_error(
        self,
        workflow_id: str,
        worker_name: str,
        item: Any,
        cause: BaseException | str,
    ) -> None: ...
