# core/types/status.py
"""
Status enums and the job state machine.
This module should not import from other application modules.
"""

from enum import Enum


class JobStatus(str, Enum):
    """Status of a single subjob in a job tree.

    State machine:
        INITIALIZED → QUEUED  → COMPLETE
                              → FAILED
                    → RUNNING → COMPLETE
                              → FAILED
    """

    INITIALIZED = 'initialized'  # Materialized in the store, not yet dispatched.

    QUEUED = 'queued'  # Leaf handed to the execution backend.

    RUNNING = 'running'  # Composite node whose own work is fanning out children.

    COMPLETE = 'complete'
    FAILED = 'failed'

    @property
    def is_terminal(self) -> bool:
        """Whether this status represents a final state (no further transitions)."""
        return self in JOB_TERMINAL_STATES

    def can_transition_to(self, target: 'JobStatus') -> bool:
        """Whether the edge self → target exists in the state machine."""
        return target in JOB_TRANSITIONS[self]


JOB_TERMINAL_STATES: frozenset[JobStatus] = frozenset({
    JobStatus.COMPLETE,
    JobStatus.FAILED,
})

JOB_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.INITIALIZED: frozenset({JobStatus.QUEUED, JobStatus.RUNNING}),
    JobStatus.QUEUED: JOB_TERMINAL_STATES,
    JobStatus.RUNNING: JOB_TERMINAL_STATES,
    JobStatus.COMPLETE: frozenset(),
    JobStatus.FAILED: frozenset(),
}

# Statuses a node can be completed or failed from
JOB_ACTIVE_STATES: frozenset[JobStatus] = frozenset({
    JobStatus.QUEUED,
    JobStatus.RUNNING,
})


class WorkflowStatus(str, Enum):
    """
    Status of a workflow (superjob).

    State machine:
        PENDING → RUNNING → COMPLETED
                          → FAILED
    """

    PENDING = 'PENDING'
    """Tree materialized, start() not yet called"""

    RUNNING = 'RUNNING'
    """Root chain has been dispatched"""

    COMPLETED = 'COMPLETED'
    """Every node of the root chain has its descendants complete"""

    FAILED = 'FAILED'
    """A subjob failed and the error handler terminated the workflow"""

    @property
    def is_terminal(self) -> bool:
        """Whether this status represents a final state (no further transitions)."""
        return self in WORKFLOW_TERMINAL_STATES

    def can_transition_to(self, target: 'WorkflowStatus') -> bool:
        return target in WORKFLOW_TRANSITIONS[self]


WORKFLOW_TERMINAL_STATES: frozenset[WorkflowStatus] = frozenset({
    WorkflowStatus.COMPLETED,
    WorkflowStatus.FAILED,
})

WORKFLOW_TRANSITIONS: dict[WorkflowStatus, frozenset[WorkflowStatus]] = {
    WorkflowStatus.PENDING: frozenset({WorkflowStatus.RUNNING, WorkflowStatus.FAILED}),
    WorkflowStatus.RUNNING: WORKFLOW_TERMINAL_STATES,
    WorkflowStatus.COMPLETED: frozenset(),
    WorkflowStatus.FAILED: frozenset(),
}
