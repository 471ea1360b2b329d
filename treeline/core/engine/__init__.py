from treeline.core.engine.cascader import CompletionCascader
from treeline.core.engine.dispatcher import Dispatcher
from treeline.core.engine.handlers import WorkflowHandlers
from treeline.core.engine.orchestrator import Orchestrator
from treeline.core.engine.reporter import ErrorReporter
from treeline.core.engine.result_types import (
    DispatchError,
    DispatchErrorCode,
    DispatchResult,
)

__all__ = [
    'Orchestrator',
    'Dispatcher',
    'CompletionCascader',
    'ErrorReporter',
    'WorkflowHandlers',
    'DispatchError',
    'DispatchErrorCode',
    'DispatchResult',
]
