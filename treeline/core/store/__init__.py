from treeline.core.store.base import (
    InvalidTransitionError,
    JobStore,
    check_transition,
    validate_tree,
)
from treeline.core.store.memory import InMemoryJobStore
from treeline.core.store.postgres import PostgresJobStore

__all__ = [
    'JobStore',
    'InMemoryJobStore',
    'PostgresJobStore',
    'InvalidTransitionError',
    'check_transition',
    'validate_tree',
]
