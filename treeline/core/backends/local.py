# treeline/core/backends/local.py
"""In-process execution backend.

Runs registered worker functions as asyncio tasks on the running loop and
reports each outcome back through an attached CompletionSink (normally the
Orchestrator). Coroutine functions are awaited; plain functions run in the
default thread pool.

Arguments are spread the usual way: a list/tuple is passed positionally, a
dict as keyword arguments, None as no arguments, anything else as the single
positional argument.

Not thread-safe: use one LocalBackend per event loop.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from typing import Any, Protocol

from treeline.core.backends.base import (
    BackendErrorCode,
    BackendOperationError,
    BackendResult,
    InvocationRequest,
    InvokeOutcome,
)
from treeline.core.logging import get_logger
from treeline.core.registry.workers import WorkerDescriptor, WorkerRegistry
from treeline.core.types.result import Err, Ok, is_err
from treeline.core.utils.fingerprint import unique_fingerprint


class CompletionSink(Protocol):
    async def complete_handle(self, handle: str) -> Any: ...

    async def fail_handle(
        self, handle: str, worker_name: str, item: Any, cause: BaseException
    ) -> Any: ...


def _call_args(arguments: Any) -> tuple[tuple[Any, ...], dict[str, Any]]:
    if arguments is None:
        return (), {}
    if isinstance(arguments, (list, tuple)):
        return tuple(arguments), {}
    if isinstance(arguments, dict):
        return (), dict(arguments)
    return (arguments,), {}


class LocalBackend:
    def __init__(self, registry: WorkerRegistry) -> None:
        self.registry = registry
        self.logger = get_logger('backend.local')
        self._sink: CompletionSink | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        # unique key -> (owning handle, monotonic expiry or None = until it finishes)
        self._live_keys: dict[str, tuple[str, float | None]] = {}

    def attach(self, sink: CompletionSink) -> None:
        self._sink = sink

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def _key_is_live(self, key: str) -> bool:
        if key not in self._live_keys:
            return False
        _, expires = self._live_keys[key]
        if expires is not None and expires <= time.monotonic():
            del self._live_keys[key]
            return False
        return True

    def _release_key(self, key: str, handle: str) -> None:
        # An expired key may already belong to a newer invocation
        owner = self._live_keys.get(key)
        if owner is not None and owner[0] == handle:
            del self._live_keys[key]

    async def invoke(
        self,
        request: InvocationRequest,
        *,
        bypass_unique: bool = False,
    ) -> BackendResult[InvokeOutcome]:
        descriptor = self.registry.get(request.worker_name)
        if descriptor is None or not descriptor.is_executable or descriptor.fn is None:
            return Err(
                BackendOperationError(
                    code=BackendErrorCode.WORKER_NOT_EXECUTABLE,
                    message=f"worker '{request.worker_name}' has no executable function",
                    retryable=False,
                )
            )
        if self._sink is None:
            return Err(
                BackendOperationError(
                    code=BackendErrorCode.INVOKE_FAILED,
                    message='LocalBackend has no completion sink attached',
                    retryable=False,
                )
            )

        key: str | None = None
        if request.unique is not None and not bypass_unique:
            key = unique_fingerprint(request.worker_name, request.arguments)
            if self._key_is_live(key):
                self.logger.info(
                    f'Dropping duplicate {request.worker_name} invocation {request.handle[:8]}'
                )
                return Ok(InvokeOutcome.DEDUPLICATED)
            ttl = request.unique.expiration_seconds
            expires = time.monotonic() + ttl if ttl is not None else None
            self._live_keys[key] = (request.handle, expires)

        task = asyncio.create_task(
            self._run(request, descriptor, key),
            name=f'treeline-{request.worker_name}-{request.handle[:8]}',
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return Ok(InvokeOutcome.ACCEPTED)

    async def _run(
        self,
        request: InvocationRequest,
        descriptor: WorkerDescriptor,
        key: str | None,
    ) -> None:
        assert descriptor.fn is not None
        assert self._sink is not None
        args, kwargs = _call_args(request.arguments)
        failure: BaseException | None = None
        try:
            if inspect.iscoroutinefunction(descriptor.fn):
                await descriptor.fn(*args, **kwargs)
            else:
                await asyncio.to_thread(descriptor.fn, *args, **kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            failure = exc
        finally:
            if key is not None:
                self._release_key(key, request.handle)

        try:
            if failure is None:
                outcome = await self._sink.complete_handle(request.handle)
            else:
                self.logger.warning(
                    f'{request.worker_name} {request.handle[:8]} failed: '
                    f'{type(failure).__name__}: {failure}'
                )
                outcome = await self._sink.fail_handle(
                    request.handle, request.worker_name, request.arguments, failure
                )
        except Exception:
            self.logger.exception(
                f'Completion callback for {request.handle[:8]} raised'
            )
            return
        if is_err(outcome):
            self.logger.error(
                f'Completion callback for {request.handle[:8]} returned {outcome.err_value}'
            )

    async def drain(self) -> None:
        """Wait until no invocation is in flight, including ones started by callbacks."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
