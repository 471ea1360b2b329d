"""Workflow-level outcome handling."""

from treeline.core.workflows.lifecycle import (
    CompleteHook,
    ErrorHook,
    WorkflowLifecycle,
    summarize_cause,
)

__all__ = [
    'WorkflowLifecycle',
    'CompleteHook',
    'ErrorHook',
    'summarize_cause',
]
