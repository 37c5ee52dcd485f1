"""
Base step executor interface.

A step executor performs one unit of workflow work (download, encode,
upload ...) for a given step type. It receives the shared workflow context
and the step's resolved parameters and either returns a result mapping or
raises.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict

from ..models.workflow import StepType, WorkflowContext


class StepExecutor(ABC):
    """
    Abstract base class for all step executors.

    Implementations must be safe to call concurrently for different
    workflows; anything per-workflow belongs in the context.
    """

    step_type: StepType

    @abstractmethod
    async def execute(self, context: WorkflowContext, parameters: Dict[str, Any]) -> Dict[str, Any]:
        """
        Execute one attempt of a step.

        Args:
            context: Workflow context of the execution
            parameters: Resolved step parameters

        Returns:
            Result mapping recorded as the step's output
        """


class CallableStepExecutor(StepExecutor):
    """Adapts a coroutine function to the executor interface."""

    def __init__(
        self,
        step_type: StepType,
        func: Callable[[WorkflowContext, Dict[str, Any]], Awaitable[Dict[str, Any]]]
    ):
        self.step_type = step_type
        self._func = func

    async def execute(self, context: WorkflowContext, parameters: Dict[str, Any]) -> Dict[str, Any]:
        return await self._func(context, parameters)
