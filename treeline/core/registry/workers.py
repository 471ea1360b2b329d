# treeline/core/registry/workers.py
"""Explicit worker registry: identifier -> handler descriptor.

Populated at process start. The dispatcher resolves every node kind through
it; composite kinds (parallel, batch, batch_child) are pre-registered.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterator, Mapping

from treeline.core.errors import ConfigurationError, ErrorCode, RegistryError
from treeline.core.models.jobs import JobKind


class WorkerCapability(str, Enum):
    """What the dispatcher does with a node of a given kind."""

    EXECUTABLE = 'executable'
    """Handed to the execution backend"""

    NESTED_WORKFLOW = 'nested_workflow'
    """Expands its own children; entering it is its completion trigger"""

    PARALLEL = 'parallel'
    BATCH = 'batch'
    BATCH_LANE = 'batch_lane'


@dataclass(slots=True, frozen=True)
class UniquePolicy:
    """Backend deduplication policy declared by a worker.

    While an invocation with the same worker and arguments is live (and not
    older than expiration_seconds, when set), further equivalent invocations
    are dropped by the backend.
    """

    expiration_seconds: int | None = None

    def __post_init__(self) -> None:
        if self.expiration_seconds is not None and self.expiration_seconds <= 0:
            raise ConfigurationError(
                message='unique expiration must be positive',
                code=ErrorCode.CONFIG_INVALID_UNIQUE_POLICY,
                notes=[f'got expiration_seconds={self.expiration_seconds}'],
                help_text='use None to keep the key until the invocation finishes',
            )


@dataclass(slots=True, frozen=True)
class WorkerDescriptor:
    name: str
    capability: WorkerCapability
    fn: Callable[..., Any] | None = None
    unique: UniquePolicy | None = None

    @property
    def is_executable(self) -> bool:
        return self.capability == WorkerCapability.EXECUTABLE


_BUILTINS: Dict[str, WorkerDescriptor] = {
    JobKind.PARALLEL: WorkerDescriptor(JobKind.PARALLEL, WorkerCapability.PARALLEL),
    JobKind.BATCH: WorkerDescriptor(JobKind.BATCH, WorkerCapability.BATCH),
    JobKind.BATCH_CHILD: WorkerDescriptor(
        JobKind.BATCH_CHILD, WorkerCapability.BATCH_LANE
    ),
}


class NotRegistered(RegistryError, KeyError):
    """Raised when a worker identifier is not present in the registry.

    Inherits from KeyError so Mapping.__contains__ works correctly.
    """

    def __init__(self, worker_name: str) -> None:
        RegistryError.__init__(
            self,
            message=f"worker '{worker_name}' not registered",
            code=ErrorCode.WORKER_NOT_REGISTERED,
            notes=[f"requested worker: '{worker_name}'"],
            help_text='register the worker with registry.worker() or registry.nested_workflow() at startup',
        )
        self.worker_name = worker_name


class DuplicateWorkerNameError(RegistryError):
    """Raised when a worker identifier is registered more than once."""

    def __init__(self, worker_name: str, context: str = '') -> None:
        super().__init__(
            message=f"duplicate worker name '{worker_name}'",
            code=ErrorCode.WORKER_DUPLICATE_NAME,
            notes=[context] if context else [],
            help_text='each worker name must be unique within a registry',
        )
        self.worker_name = worker_name


class ReservedWorkerNameError(RegistryError):
    """Raised when a worker tries to take a built-in composite kind name."""

    def __init__(self, worker_name: str) -> None:
        super().__init__(
            message=f"worker name '{worker_name}' is reserved",
            code=ErrorCode.WORKER_RESERVED_NAME,
            notes=[f'reserved kinds: {sorted(JobKind.COMPOSITE)}'],
            help_text='pick a different worker name',
        )
        self.worker_name = worker_name


class WorkerRegistry(Mapping[str, WorkerDescriptor]):
    """Registry mapping worker identifier -> WorkerDescriptor."""

    def __init__(self) -> None:
        self._data: Dict[str, WorkerDescriptor] = dict(_BUILTINS)

    def __getitem__(self, key: str) -> WorkerDescriptor:
        try:
            return self._data[key]
        except KeyError:
            raise NotRegistered(key)

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def register(self, descriptor: WorkerDescriptor) -> WorkerDescriptor:
        """Insert a descriptor, enforcing name uniqueness.

        Raises:
            ReservedWorkerNameError: name is a composite kind.
            DuplicateWorkerNameError: name already registered with a different descriptor.
        """
        name = descriptor.name
        if name in JobKind.COMPOSITE:
            raise ReservedWorkerNameError(name)
        existing = self._data.get(name)
        if existing is not None:
            if existing == descriptor:
                # Re-import of the same definition
                return existing
            raise DuplicateWorkerNameError(name, 'worker with this name already exists')
        self._data[name] = descriptor
        return descriptor

    def worker(
        self,
        name: str | None = None,
        *,
        unique: UniquePolicy | None = None,
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator registering a backend-executable worker function."""

        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            if not callable(fn):
                raise RegistryError(
                    message='worker must be callable',
                    code=ErrorCode.WORKER_NOT_CALLABLE,
                    notes=[f'got {type(fn).__name__}'],
                )
            self.register(
                WorkerDescriptor(
                    name=name or fn.__name__,
                    capability=WorkerCapability.EXECUTABLE,
                    fn=fn,
                    unique=unique,
                )
            )
            return fn

        return decorator

    def nested_workflow(self, name: str) -> WorkerDescriptor:
        """Register an identifier whose nodes expand a nested workflow."""
        return self.register(
            WorkerDescriptor(name=name, capability=WorkerCapability.NESTED_WORKFLOW)
        )

    def unregister(self, name: str) -> None:
        if name in JobKind.COMPOSITE:
            raise ReservedWorkerNameError(name)
        self._data.pop(name, None)
