"""Execution backend contract and typed error payloads.

Result propagation policy
-------------------------
Backend operations return ``BackendResult[T]``; they never raise for
operational failures (only for ``asyncio.CancelledError``). The dispatcher
turns an ``Err`` into a failed node plus a ``DispatchError`` for its caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, TypeAlias, TypeVar, runtime_checkable

from treeline.core.registry.workers import UniquePolicy
from treeline.core.types.result import Result


class BackendErrorCode(str, Enum):
    """Categorized backend operation failure codes."""

    INVOKE_FAILED = 'INVOKE_FAILED'
    WORKER_NOT_EXECUTABLE = 'WORKER_NOT_EXECUTABLE'


@dataclass(slots=True, frozen=True)
class BackendOperationError:
    """Error payload carried inside Err(...) for backend operations.

    Fields:
        code: which operation category failed
        message: human-readable description
        retryable: whether the caller can retry this operation
        exception: the original cause (if any)
    """

    code: BackendErrorCode
    message: str
    retryable: bool
    exception: BaseException | None = None


T = TypeVar('T')

BackendResult: TypeAlias = Result[T, BackendOperationError]


class InvokeOutcome(str, Enum):
    ACCEPTED = 'ACCEPTED'
    DEDUPLICATED = 'DEDUPLICATED'
    """Dropped by the worker's uniqueness policy"""


@dataclass(slots=True, frozen=True)
class InvocationRequest:
    """One backend invocation. The handle is chosen by the caller."""

    handle: str
    worker_name: str
    arguments: Any = None
    execution_metadata: dict[str, Any] = field(default_factory=lambda: {})
    unique: UniquePolicy | None = None


@runtime_checkable
class ExecutionBackend(Protocol):
    async def invoke(
        self,
        request: InvocationRequest,
        *,
        bypass_unique: bool = False,
    ) -> BackendResult[InvokeOutcome]:
        """Hand a request to the backend under the caller-supplied handle.

        bypass_unique ignores request.unique for this single invocation.
        """
        ...
