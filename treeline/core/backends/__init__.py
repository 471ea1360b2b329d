from treeline.core.backends.base import (
    BackendErrorCode,
    BackendOperationError,
    BackendResult,
    ExecutionBackend,
    InvocationRequest,
    InvokeOutcome,
)
from treeline.core.backends.local import CompletionSink, LocalBackend
from treeline.core.backends.postgres import PostgresBackend

__all__ = [
    'ExecutionBackend',
    'InvocationRequest',
    'InvokeOutcome',
    'BackendErrorCode',
    'BackendOperationError',
    'BackendResult',
    'CompletionSink',
    'LocalBackend',
    'PostgresBackend',
]
