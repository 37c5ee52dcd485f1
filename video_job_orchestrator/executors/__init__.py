"""
Step executors for workflow steps.

- ``StepExecutor``: the interface the workflow engine calls per step type
- Local executors for every step type, used by default and in tests
"""

from .base import CallableStepExecutor, StepExecutor
from .local import LocalStepExecutor, create_local_executors

__all__ = [
    'StepExecutor',
    'CallableStepExecutor',
    'LocalStepExecutor',
    'create_local_executors'
]
