"""treeline - completion cascade engine for subjob-tree workflows"""

# Install Rust-style error handler on import
from .core.errors import install_error_handler as _install_error_handler

_install_error_handler()

from .core.engine import (
    CompletionCascader,
    Dispatcher,
    DispatchError,
    DispatchErrorCode,
    DispatchResult,
    ErrorReporter,
    Orchestrator,
    WorkflowHandlers,
)
from .core.backends import (
    BackendErrorCode,
    BackendOperationError,
    BackendResult,
    ExecutionBackend,
    InvocationRequest,
    InvokeOutcome,
    LocalBackend,
    PostgresBackend,
)
from .core.store import (
    InMemoryJobStore,
    InvalidTransitionError,
    JobStore,
    PostgresJobStore,
)
from .core.models.config import PostgresConfig, TreelineConfig
from .core.models.jobs import JobKind, JobNode, WorkflowRecord, new_id
from .core.registry.workers import (
    NotRegistered,
    UniquePolicy,
    WorkerCapability,
    WorkerDescriptor,
    WorkerRegistry,
)
from .core.workflows import WorkflowLifecycle
from .core.types.status import (
    JOB_TERMINAL_STATES,
    WORKFLOW_TERMINAL_STATES,
    JobStatus,
    WorkflowStatus,
)
from .core.errors import ErrorCode, ValidationReport, MultipleValidationErrors
from .core.types.result import Result, Ok, Err, is_ok, is_err

__all__ = [
    # Engine
    'Orchestrator',
    'Dispatcher',
    'CompletionCascader',
    'ErrorReporter',
    'WorkflowHandlers',
    'WorkflowLifecycle',
    'DispatchError',
    'DispatchErrorCode',
    'DispatchResult',
    # Backends
    'ExecutionBackend',
    'InvocationRequest',
    'InvokeOutcome',
    'LocalBackend',
    'PostgresBackend',
    'BackendErrorCode',
    'BackendOperationError',
    'BackendResult',
    # Stores
    'JobStore',
    'InMemoryJobStore',
    'PostgresJobStore',
    'InvalidTransitionError',
    # Models
    'TreelineConfig',
    'PostgresConfig',
    'JobKind',
    'JobNode',
    'WorkflowRecord',
    'new_id',
    # Registry
    'WorkerRegistry',
    'WorkerDescriptor',
    'WorkerCapability',
    'UniquePolicy',
    'NotRegistered',
    # Status
    'JobStatus',
    'WorkflowStatus',
    'JOB_TERMINAL_STATES',
    'WORKFLOW_TERMINAL_STATES',
    # Errors
    'ErrorCode',
    'ValidationReport',
    'MultipleValidationErrors',
    # Result
    'Result',
    'Ok',
    'Err',
    'is_ok',
    'is_err',
]
