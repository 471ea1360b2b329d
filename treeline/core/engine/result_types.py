"""Typed error types for engine operations.

Follows the same pattern as ``BackendOperationError`` in
``treeline/core/backends/base.py``.

Where Result stops and exceptions take over:

* ``Dispatcher.enqueue``, ``CompletionCascader.complete`` and the
  ``Orchestrator`` entry points return ``DispatchResult[T]``. A guarded no-op
  (node not ``initialized``) is ``Ok(None)``, never an error.
* A kind that resolves to no registered worker is
  ``Err(WORKER_NOT_REGISTERED)``; the node stays ``initialized`` so a fixed
  registry can dispatch it later.
* Store failures (database down, illegal transition) are exceptions and
  propagate to whoever drove the engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TypeAlias, TypeVar

from treeline.core.types.result import Result


class DispatchErrorCode(str, Enum):
    """Categorized engine failure codes."""

    WORKER_NOT_REGISTERED = 'WORKER_NOT_REGISTERED'
    BACKEND_INVOKE_FAILED = 'BACKEND_INVOKE_FAILED'
    NODE_NOT_FOUND = 'NODE_NOT_FOUND'
    WORKFLOW_NOT_FOUND = 'WORKFLOW_NOT_FOUND'
    WORKFLOW_NOT_PENDING = 'WORKFLOW_NOT_PENDING'


@dataclass(slots=True, frozen=True)
class DispatchError:
    """Error payload carried inside ``Err(...)`` for engine operations.

    Fields:
        code: which failure category
        message: human-readable description
        node_id: the node being processed, when known
        kind: the node kind, when known
        exception: the original cause (if any)
    """

    code: DispatchErrorCode
    message: str
    node_id: str | None = None
    kind: str | None = None
    exception: BaseException | None = None


T = TypeVar('T')

DispatchResult: TypeAlias = Result[T, DispatchError]
