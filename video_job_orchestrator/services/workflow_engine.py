"""
WorkflowEngine for the Video Job Orchestrator

Builds a concrete workflow from a template for each job, executes it in
groups of sequential and parallel steps with per-step timeouts and retry
policies, and rolls back on failure. Only this engine mutates execution
records.
"""

import asyncio
import math
import time
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..core.exceptions import (
    StepExecutionError,
    StepTimeoutError,
    WorkflowError,
    WorkflowNotFoundError,
)
from ..executors.base import StepExecutor
from ..executors.local import create_local_executors
from ..models.job import JobComplexity, JobRequest, collect_effects
from ..models.resources import AllocatedResources, ResourceAllocation
from ..models.workflow import (
    RetryPolicy,
    RollbackStrategy,
    RollbackType,
    StepResult,
    StepType,
    WorkflowContext,
    WorkflowDefinition,
    WorkflowExecution,
    WorkflowResult,
    WorkflowState,
    WorkflowStep,
    WorkflowStepSpec,
    WorkflowTemplate,
    can_transition_to,
)
from ..utils.config import OrchestratorConfig
from ..utils.logger import get_logger, set_log_context
from . import event_bus as events
from .workflow_templates import (
    BALANCED_ASYNC,
    DISTRIBUTED,
    QUICK_SYNC,
    RESOURCE_INTENSIVE,
    TemplateCatalog,
)

NON_RETRIABLE_STEP_TYPES = frozenset({StepType.VALIDATION, StepType.CLEANUP})
CRITICAL_STEP_TYPES = frozenset({StepType.VIDEO_PROCESSING, StepType.S3_UPLOAD, StepType.DATABASE_UPDATE})
IMMEDIATE_DROPPED_STEP_TYPES = frozenset({StepType.QUEUE_OPERATION, StepType.NOTIFICATION, StepType.ANALYSIS})

IMMEDIATE_RETRY_POLICY = RetryPolicy(max_retries=1, backoff_seconds=0.5)

COMPLEXITY_TIMEOUT_MULTIPLIERS = {
    JobComplexity.SIMPLE: 1.0,
    JobComplexity.MODERATE: 1.2,
    JobComplexity.COMPLEX: 1.5,
    JobComplexity.ENTERPRISE: 2.0,
}

# Step types that mark a checkpoint for the checkpoint rollback strategy
CHECKPOINT_STEP_TYPES = {
    "validation": (StepType.VALIDATION,),
    "processing": (StepType.VIDEO_PROCESSING, StepType.DISTRIBUTED_VIDEO_PROCESSING, StepType.RESULT_MERGING),
    "upload": (StepType.S3_UPLOAD,),
}

MANY_ELEMENTS = 20

RollbackAction = Callable[[WorkflowExecution], Awaitable[None]]


class WorkflowEngine:
    """
    Creates and runs workflow executions.

    Provides capabilities for:
    - Template selection and per-job workflow definitions
    - Grouped sequential/parallel step execution
    - Per-step timeouts, retry policies and backoff
    - Rollback strategies on failure
    - Retention of finished executions for a grace period
    """

    def __init__(self,
                 config: Optional[OrchestratorConfig] = None,
                 executors: Optional[Dict[StepType, StepExecutor]] = None,
                 event_bus: Optional[events.EventBus] = None,
                 catalog: Optional[TemplateCatalog] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        """
        Initialize WorkflowEngine.

        Args:
            config: Orchestrator configuration (workflows and retry sections)
            executors: Step executor per step type, local executors when None
            event_bus: Receives workflow_completed / workflow_failed events
            catalog: Template catalog, built-in templates when None
            sleep: Coroutine used for retry backoff
        """
        config = config or OrchestratorConfig()
        self.workflows_config = config.workflows
        self.retry_config = config.global_retry_config
        self.executors: Dict[StepType, StepExecutor] = (
            dict(executors) if executors is not None else create_local_executors()
        )
        self.event_bus = event_bus
        self.catalog = catalog or TemplateCatalog()
        self._sleep = sleep

        self.executions: Dict[str, WorkflowExecution] = {}
        self._running: Dict[str, asyncio.Task] = {}
        self._discard_handles: Dict[str, asyncio.TimerHandle] = {}
        self._rollback_actions: Dict[str, RollbackAction] = {
            "cleanup_temp_files": self._cleanup_temp_files,
            "force_cleanup": self._force_cleanup,
            "release_resources": self._request_resource_release,
        }

        self.logger = get_logger(__name__)
        set_log_context(self.logger, component="workflow_engine")

    async def initialize(self):
        """Load custom templates when enabled."""
        if self.workflows_config.enable_custom_templates and self.workflows_config.template_directory:
            loaded = self.catalog.load_directory(
                self.workflows_config.template_directory,
                default_retry_policy=self.default_retry_policy
            )
            self.logger.info("Custom templates loaded", extra={"loaded": loaded})

        missing = [step_type.value for step_type in StepType if step_type not in self.executors]
        self.logger.info("WorkflowEngine initialized", extra={
            "templates": self.catalog.names(),
            "missing_executors": missing
        })

    async def shutdown(self):
        """Cancel running workflows and retention timers."""
        self.logger.info("Shutting down WorkflowEngine", extra={"running": len(self._running)})

        running = list(self._running.values())
        for task in running:
            task.cancel()
        for task in running:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                self.logger.debug("Workflow ended with error during shutdown", exc_info=True)

        for handle in self._discard_handles.values():
            handle.cancel()
        self._discard_handles.clear()

    def register_executor(self, step_type: StepType, executor: StepExecutor):
        self.executors[step_type] = executor

    def register_rollback_action(self, name: str, action: RollbackAction):
        self._rollback_actions[name] = action

    # Template selection

    def get_template(self, name: str) -> WorkflowTemplate:
        return self.catalog.get(name)

    def list_templates(self) -> List[WorkflowTemplate]:
        return list(self.catalog)

    def select_template(self, resources: AllocatedResources) -> WorkflowTemplate:
        """
        Template for the standard path.

        Uses the analysis' strategy name when the catalog has it, otherwise
        falls back on complexity, element count, GPU need and duration.
        """
        analysis = resources.analysis
        if analysis.optimal_strategy.value in self.catalog:
            return self.catalog.get(analysis.optimal_strategy.value)

        if analysis.complexity == JobComplexity.ENTERPRISE or analysis.element_count > MANY_ELEMENTS:
            return self.catalog.get(DISTRIBUTED)
        if analysis.complexity == JobComplexity.COMPLEX or analysis.resource_requirements.gpu_required:
            return self.catalog.get(RESOURCE_INTENSIVE)
        if analysis.estimated_duration <= 30 and analysis.complexity == JobComplexity.SIMPLE:
            return self.catalog.get(QUICK_SYNC)
        return self.catalog.get(BALANCED_ASYNC)

    def select_async_template(self, resources: AllocatedResources) -> WorkflowTemplate:
        analysis = resources.analysis
        if analysis.complexity == JobComplexity.ENTERPRISE:
            return self.catalog.get(DISTRIBUTED)
        if analysis.complexity == JobComplexity.COMPLEX or analysis.resource_requirements.gpu_required:
            return self.catalog.get(RESOURCE_INTENSIVE)
        return self.catalog.get(BALANCED_ASYNC)

    # Creation

    async def create_workflow(
        self,
        request: JobRequest,
        resources: AllocatedResources,
        template_name: Optional[str] = None
    ) -> WorkflowExecution:
        """
        Build an execution for ``request`` from a template.

        Args:
            request: Job request
            resources: Resources allocated for the job
            template_name: Explicit template, selected from the analysis when None

        Returns:
            Execution in the initialized state
        """
        template = self.catalog.get(template_name) if template_name else self.select_template(resources)
        return self._build_execution(template, request, resources, immediate=False)

    async def create_immediate_workflow(self, request: JobRequest, resources: AllocatedResources) -> WorkflowExecution:
        """Quick-sync workflow with compressed timeouts and non-critical steps dropped."""
        return self._build_execution(self.catalog.get(QUICK_SYNC), request, resources, immediate=True)

    async def create_async_workflow(self, request: JobRequest, resources: AllocatedResources) -> WorkflowExecution:
        return self._build_execution(self.select_async_template(resources), request, resources, immediate=False)

    def _build_execution(
        self,
        template: WorkflowTemplate,
        request: JobRequest,
        resources: AllocatedResources,
        immediate: bool
    ) -> WorkflowExecution:
        workflow_id = f"wf_{uuid.uuid4().hex[:16]}"
        analysis = resources.analysis

        steps: List[WorkflowStep] = []
        for step_spec in template.steps:
            if immediate and step_spec.step_type in IMMEDIATE_DROPPED_STEP_TYPES:
                continue
            steps.append(self._resolve_step(step_spec, template, request, resources, workflow_id, immediate))

        budget = template.max_duration_seconds * COMPLEXITY_TIMEOUT_MULTIPLIERS.get(analysis.complexity, 1.0)
        default_policy = self.capped_retry_policy(template.retry_policy)

        if immediate:
            rollback_strategies = {
                "default": RollbackStrategy(RollbackType.IMMEDIATE, ("cleanup_temp_files",)),
            }
        else:
            rollback_strategies = {
                "default": RollbackStrategy(RollbackType.GRACEFUL, ("cleanup_temp_files", "release_resources")),
                "immediate": RollbackStrategy(RollbackType.IMMEDIATE, ("force_cleanup",)),
                "checkpoint": RollbackStrategy(
                    RollbackType.CHECKPOINT, ("cleanup_temp_files",), tuple(CHECKPOINT_STEP_TYPES)
                ),
            }

        definition = WorkflowDefinition(
            workflow_id=workflow_id,
            template_name=template.name,
            steps=steps,
            timeouts={"default": budget, "step_default": budget * 0.1},
            retry_policies={
                "default": default_policy,
                "critical_step": RetryPolicy(
                    max_retries=default_policy.max_retries + 1,
                    backoff_seconds=default_policy.backoff_seconds,
                    backoff_multiplier=default_policy.backoff_multiplier,
                    max_backoff_seconds=default_policy.max_backoff_seconds,
                ),
                "non_critical": RetryPolicy(
                    max_retries=max(1, default_policy.max_retries - 1),
                    backoff_seconds=default_policy.backoff_seconds,
                ),
            },
            rollback_strategies=rollback_strategies,
            environment=self._environment(request, resources, workflow_id),
        )

        execution = WorkflowExecution(
            workflow_id=workflow_id,
            definition=definition,
            context=WorkflowContext(job_request=request, resources=resources),
        )
        self.executions[workflow_id] = execution

        self.logger.info("Workflow created", extra={
            "workflow_id": workflow_id,
            "job_id": request.job_id,
            "template": template.name,
            "immediate": immediate,
            "steps": len(steps)
        })
        return execution

    def _resolve_step(
        self,
        step_spec: WorkflowStepSpec,
        template: WorkflowTemplate,
        request: JobRequest,
        resources: AllocatedResources,
        workflow_id: str,
        immediate: bool
    ) -> WorkflowStep:
        timeout = self.resolve_step_timeout(step_spec.timeout_seconds, resources.allocation)
        policy = self.step_retry_policy(step_spec.step_type, template.retry_policy)

        if immediate:
            timeout = min(timeout, self.workflows_config.immediate_step_timeout)
            policy = RetryPolicy(
                max_retries=min(policy.max_retries, IMMEDIATE_RETRY_POLICY.max_retries),
                backoff_seconds=IMMEDIATE_RETRY_POLICY.backoff_seconds,
            )

        return WorkflowStep(
            name=step_spec.name,
            step_type=step_spec.step_type,
            timeout_seconds=timeout,
            retry_policy=policy,
            parallel=step_spec.parallel,
            parameters=self._step_parameters(step_spec, request, resources, workflow_id),
        )

    @staticmethod
    def resolve_step_timeout(base_timeout: float, allocation: ResourceAllocation) -> float:
        """
        Scale a template timeout by the allocated resources.

        resource_factor is the mean of cpu_cores/4 and memory_gb/8, each
        clamped to at least 0.5; the timeout is ``base / resource_factor``.
        """
        cpu_factor = max(0.5, allocation.cpu_cores / 4)
        memory_factor = max(0.5, allocation.memory_gb / 8)
        return base_timeout / ((cpu_factor + memory_factor) / 2)

    @property
    def default_retry_policy(self) -> RetryPolicy:
        """Policy built from ``global_retry_config`` for templates that declare none."""
        return RetryPolicy(
            max_retries=self.retry_config.max_retries,
            backoff_seconds=self.retry_config.backoff_seconds,
            backoff_multiplier=self.retry_config.backoff_multiplier,
            max_backoff_seconds=self.retry_config.max_backoff_seconds,
        )

    def capped_retry_policy(self, policy: RetryPolicy) -> RetryPolicy:
        """Limit a template policy to ``global_retry_config.max_retries``."""
        if policy.max_retries <= self.retry_config.max_retries:
            return policy
        return replace(policy, max_retries=self.retry_config.max_retries)

    def step_retry_policy(self, step_type: StepType, default: RetryPolicy) -> RetryPolicy:
        """
        Retry policy of one step.

        The template default is first capped by the global ``max_retries``;
        validation and cleanup never retry and critical steps get one extra
        attempt on top of the capped value.
        """
        default = self.capped_retry_policy(default)
        if step_type in NON_RETRIABLE_STEP_TYPES:
            return RetryPolicy(max_retries=0, backoff_seconds=default.backoff_seconds)

        if step_type in CRITICAL_STEP_TYPES:
            return RetryPolicy(
                max_retries=default.max_retries + 1,
                backoff_seconds=default.backoff_seconds,
                backoff_multiplier=default.backoff_multiplier or self.retry_config.backoff_multiplier,
                max_backoff_seconds=(
                    default.max_backoff_seconds
                    if default.max_backoff_seconds is not None
                    else self.retry_config.max_backoff_seconds
                ),
            )

        return default

    def _step_parameters(
        self,
        step_spec: WorkflowStepSpec,
        request: JobRequest,
        resources: AllocatedResources,
        workflow_id: str
    ) -> Dict[str, Any]:
        root = self.workflows_config.download_root.rstrip("/")
        download_path = f"{root}/download_{workflow_id}"
        allocation = resources.allocation
        step_type = step_spec.step_type

        if step_type == StepType.VALIDATION:
            return {
                "element_count": request.element_count,
                "output_format": request.output_format,
                "resolution": {"width": request.width, "height": request.height},
            }
        if step_type in (StepType.MEDIA_DOWNLOAD, StepType.PARALLEL_DOWNLOAD):
            return {
                "sources": [element.source for element in request.elements],
                "download_path": download_path,
                "parallel_downloads": 4 if allocation.bandwidth_mbps > 200 else 2,
            }
        if step_type in (StepType.VIDEO_PROCESSING, StepType.DISTRIBUTED_VIDEO_PROCESSING):
            return {
                "output_format": request.output_format,
                "resolution": {"width": request.width, "height": request.height},
                "effects": collect_effects(list(request.elements)),
                "gpu_enabled": allocation.gpu_enabled,
                "cpu_cores": allocation.cpu_cores,
                "work_dir": f"{root}/work_{workflow_id}",
            }
        if step_type == StepType.S3_UPLOAD:
            return {
                "bucket": self.workflows_config.result_bucket,
                "key": f"results/{request.job_id}/output.{request.output_format}",
            }
        if step_type == StepType.DATABASE_UPDATE:
            status = "created" if step_spec.name == "create_job_record" else "completed"
            return {"job_id": request.job_id, "status": status}
        if step_type in (StepType.CLEANUP, StepType.CLUSTER_CLEANUP):
            return {"paths": [download_path, f"{root}/work_{workflow_id}"]}
        if step_type == StepType.WORKLOAD_PARTITIONING:
            return {"partitions": max(2, math.ceil(request.element_count / 4))}
        if step_type == StepType.NOTIFICATION:
            return {"channel": "log"}
        return {}

    def _environment(self, request: JobRequest, resources: AllocatedResources, workflow_id: str) -> Dict[str, str]:
        return {
            "JOB_ID": request.job_id,
            "WORKFLOW_ID": workflow_id,
            "OUTPUT_FORMAT": request.output_format,
            "OUTPUT_WIDTH": str(request.width),
            "OUTPUT_HEIGHT": str(request.height),
            "CPU_CORES": str(resources.allocation.cpu_cores),
            "MEMORY_GB": str(resources.allocation.memory_gb),
            "GPU_ENABLED": "true" if resources.allocation.gpu_enabled else "false",
            "RESULT_BUCKET": self.workflows_config.result_bucket,
        }

    # Execution

    def get_workflow(self, workflow_id: str) -> WorkflowExecution:
        execution = self.executions.get(workflow_id)
        if execution is None:
            raise WorkflowNotFoundError(workflow_id)
        return execution

    async def execute_workflow(
        self,
        workflow_id: str,
        service_id: Optional[str] = None,
        rollback_strategy: str = "default"
    ) -> WorkflowResult:
        """
        Run an initialized workflow to completion.

        Args:
            workflow_id: Workflow to run
            service_id: Service instance the job was routed to
            rollback_strategy: Name of the rollback strategy used on failure

        Returns:
            WorkflowResult of the completed workflow

        Raises:
            WorkflowError: If a step exhausts its retries or the workflow
                cannot be started
        """
        execution = self.get_workflow(workflow_id)
        if service_id is not None:
            execution.context.service_id = service_id

        self._transition(execution, WorkflowState.RUNNING)
        execution.metrics.started_at = datetime.now(timezone.utc)
        started = time.perf_counter()
        task = asyncio.current_task()
        if task is not None:
            self._running[workflow_id] = task

        self.logger.info("Workflow started", extra={
            "workflow_id": workflow_id,
            "job_id": execution.context.job_request.job_id,
            "template": execution.definition.template_name,
            "service_id": execution.context.service_id
        })

        try:
            for group in self.group_parallel_steps(execution.definition.steps):
                if len(group) == 1:
                    await self._execute_step(execution, group[0])
                else:
                    await self._execute_parallel_group(execution, group)

        except asyncio.CancelledError:
            if not execution.is_finished:
                self._finish(execution, WorkflowState.CANCELLED, started, error="cancelled")
                self.logger.warning("Workflow cancelled", extra={"workflow_id": workflow_id})
            raise

        except StepExecutionError as e:
            self._finish(execution, WorkflowState.FAILED, started, error=e.message, failed_step=e.step_name)
            self.logger.error("Workflow failed", extra={
                "workflow_id": workflow_id,
                "job_id": execution.context.job_request.job_id,
                "step_name": e.step_name,
                "error": e.message
            })
            await self._rollback(execution, rollback_strategy)
            await self._publish(events.WORKFLOW_FAILED, {
                "workflow_id": workflow_id,
                "job_id": execution.context.job_request.job_id,
                "step_name": e.step_name,
                "error": e.message
            })
            raise WorkflowError(workflow_id, e.message, step_name=e.step_name, step_type=e.step_type) from e

        finally:
            self._running.pop(workflow_id, None)

        self._finish(execution, WorkflowState.COMPLETED, started)
        self.logger.info("Workflow completed", extra={
            "workflow_id": workflow_id,
            "job_id": execution.context.job_request.job_id,
            "duration_seconds": round(execution.metrics.total_duration_seconds, 3),
            "steps": execution.metrics.completed_steps
        })
        await self._publish(events.WORKFLOW_COMPLETED, {
            "workflow_id": workflow_id,
            "job_id": execution.context.job_request.job_id,
            "result": dict(execution.context.result),
            "duration_seconds": execution.metrics.total_duration_seconds
        })

        return WorkflowResult(
            workflow_id=workflow_id,
            state=execution.state,
            result=dict(execution.context.result),
            metrics=execution.metrics,
            step_results=dict(execution.step_results),
        )

    @staticmethod
    def group_parallel_steps(steps: List[WorkflowStep]) -> List[List[WorkflowStep]]:
        """
        Split steps into groups that run together.

        Adjacent parallel-flagged steps form one group; every other step is
        a group of its own.
        """
        groups: List[List[WorkflowStep]] = []
        for step in steps:
            if groups and step.parallel and groups[-1][0].parallel:
                groups[-1].append(step)
            else:
                groups.append([step])
        return groups

    async def _execute_parallel_group(self, execution: WorkflowExecution, group: List[WorkflowStep]):
        results = await asyncio.gather(
            *(self._execute_step(execution, step) for step in group),
            return_exceptions=True
        )
        failures = [result for result in results if isinstance(result, BaseException)]
        for failure in failures:
            if not isinstance(failure, Exception):
                raise failure
        if failures:
            raise failures[0]

    async def _execute_step(self, execution: WorkflowExecution, step: WorkflowStep) -> Dict[str, Any]:
        workflow_id = execution.workflow_id
        executor = self.executors.get(step.step_type)
        if executor is None:
            execution.step_results[step.name] = StepResult(
                step_name=step.name, success=False, duration_seconds=0.0, attempts=0,
                error=f"no executor for step type '{step.step_type.value}'",
                completed_at=datetime.now(timezone.utc),
            )
            execution.metrics.failed_steps += 1
            raise StepExecutionError(workflow_id, step.name,
                                     f"no executor for step type '{step.step_type.value}'",
                                     step_type=step.step_type.value)

        policy = step.retry_policy
        max_attempts = policy.max_retries + 1

        for attempt in range(1, max_attempts + 1):
            started = time.perf_counter()
            cause: Optional[BaseException] = None
            try:
                output = await asyncio.wait_for(
                    executor.execute(execution.context, step.parameters),
                    timeout=step.timeout_seconds
                )
            except asyncio.TimeoutError as e:
                error: StepExecutionError = StepTimeoutError(
                    workflow_id, step.name, step.timeout_seconds, step_type=step.step_type.value
                )
                cause = e
            except StepExecutionError as e:
                error, cause = e, e.__cause__
            except Exception as e:
                error = StepExecutionError(
                    workflow_id, step.name, str(e) or type(e).__name__, step_type=step.step_type.value
                )
                cause = e
            else:
                duration = time.perf_counter() - started
                output = output if isinstance(output, dict) else {"value": output}
                execution.step_results[step.name] = StepResult(
                    step_name=step.name, success=True, duration_seconds=duration,
                    attempts=attempt, output=output, completed_at=datetime.now(timezone.utc),
                )
                execution.context.step_data[step.name] = output
                execution.metrics.completed_steps += 1

                self.logger.debug("Step completed", extra={
                    "workflow_id": workflow_id,
                    "step_name": step.name,
                    "attempt": attempt,
                    "duration_seconds": round(duration, 4)
                })
                return output

            duration = time.perf_counter() - started
            execution.step_results[step.name] = StepResult(
                step_name=step.name, success=False, duration_seconds=duration,
                attempts=attempt, error=error.message, completed_at=datetime.now(timezone.utc),
            )
            execution.metrics.failed_steps += 1

            if attempt >= max_attempts:
                raise error from cause

            delay = policy.delay_for(attempt)
            self.logger.warning("Step failed, retrying", extra={
                "workflow_id": workflow_id,
                "step_name": step.name,
                "attempt": attempt,
                "max_attempts": max_attempts,
                "retry_in_seconds": delay,
                "error": error.message
            })
            await self._sleep(delay)

        raise StepExecutionError(workflow_id, step.name, "no attempts made", step_type=step.step_type.value)

    def _transition(self, execution: WorkflowExecution, target: WorkflowState):
        if not can_transition_to(execution.state, target):
            raise WorkflowError(
                execution.workflow_id,
                f"cannot move from {execution.state.value} to {target.value}"
            )
        execution.state = target

    def _finish(
        self,
        execution: WorkflowExecution,
        state: WorkflowState,
        started: float,
        error: Optional[str] = None,
        failed_step: Optional[str] = None
    ):
        self._transition(execution, state)
        now = datetime.now(timezone.utc)
        execution.error = error
        execution.failed_step = failed_step
        execution.finished_at = now

        metrics = execution.metrics
        metrics.completed_at = now
        metrics.total_duration_seconds = time.perf_counter() - started
        durations = [result.duration_seconds for result in execution.step_results.values()]
        metrics.average_step_duration = sum(durations) / len(durations) if durations else 0.0
        allocation = execution.context.resources.allocation
        metrics.resource_utilization = {
            "cpu_core_seconds": allocation.cpu_cores * metrics.total_duration_seconds,
            "memory_gb_seconds": allocation.memory_gb * metrics.total_duration_seconds,
        }

        self._schedule_discard(execution.workflow_id)

    # Rollback

    async def _rollback(self, execution: WorkflowExecution, strategy_name: str):
        strategies = execution.definition.rollback_strategies
        strategy = strategies.get(strategy_name) or strategies.get("default")
        if strategy is None:
            return

        if strategy.rollback_type == RollbackType.CHECKPOINT:
            execution.context.step_data["last_checkpoint"] = self._last_checkpoint(execution, strategy)

        for action in strategy.actions:
            handler = self._rollback_actions.get(action)
            if handler is None:
                self.logger.warning("Unknown rollback action", extra={
                    "workflow_id": execution.workflow_id,
                    "action": action
                })
                continue
            try:
                await handler(execution)
                execution.rollback_actions.append(action)
            except Exception:
                execution.rollback_actions.append(f"{action}:failed")
                self.logger.error("Rollback action failed", exc_info=True, extra={
                    "workflow_id": execution.workflow_id,
                    "action": action
                })

        self.logger.info("Workflow rolled back", extra={
            "workflow_id": execution.workflow_id,
            "strategy": strategy.rollback_type.value,
            "actions": execution.rollback_actions
        })

    @staticmethod
    def _last_checkpoint(execution: WorkflowExecution, strategy: RollbackStrategy) -> Optional[str]:
        reached = None
        for checkpoint in strategy.checkpoints:
            step_types = CHECKPOINT_STEP_TYPES.get(checkpoint, ())
            steps = [s for s in execution.definition.steps if s.step_type in step_types]
            if steps and all(
                execution.step_results.get(s.name) and execution.step_results[s.name].success for s in steps
            ):
                reached = checkpoint
        return reached

    async def _run_cleanup(self, execution: WorkflowExecution, force: bool):
        executor = self.executors.get(StepType.CLEANUP)
        if executor is None:
            return
        root = self.workflows_config.download_root.rstrip("/")
        parameters = {
            "paths": [f"{root}/download_{execution.workflow_id}", f"{root}/work_{execution.workflow_id}"],
            "force": force,
        }
        await asyncio.wait_for(
            executor.execute(execution.context, parameters),
            timeout=self.workflows_config.immediate_step_timeout
        )

    async def _cleanup_temp_files(self, execution: WorkflowExecution):
        await self._run_cleanup(execution, force=False)

    async def _force_cleanup(self, execution: WorkflowExecution):
        await self._run_cleanup(execution, force=True)

    async def _request_resource_release(self, execution: WorkflowExecution):
        # Allocations belong to the orchestrator; flag the context for it
        execution.context.step_data["release_requested"] = True

    # Lifecycle

    async def cancel_workflow(self, workflow_id: str) -> bool:
        """
        Cancel a workflow that has not finished.

        Returns:
            True if the workflow was cancelled
        """
        execution = self.get_workflow(workflow_id)
        if execution.is_finished:
            return False

        if execution.state == WorkflowState.INITIALIZED:
            self._finish(execution, WorkflowState.CANCELLED, time.perf_counter(), error="cancelled")
            self.logger.info("Workflow cancelled before start", extra={"workflow_id": workflow_id})
            return True

        task = self._running.get(workflow_id)
        if task is None or task is asyncio.current_task():
            return False
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            self.logger.debug("Cancelled workflow ended with error", exc_info=True,
                              extra={"workflow_id": workflow_id})
        return True

    def get_workflow_status(self, workflow_id: str) -> Dict[str, Any]:
        return self.get_workflow(workflow_id).to_dict()

    def get_statistics(self) -> Dict[str, Any]:
        by_state: Dict[str, int] = {state.value: 0 for state in WorkflowState}
        for execution in self.executions.values():
            by_state[execution.state.value] += 1
        return {
            "total_workflows": len(self.executions),
            "running": len(self._running),
            "by_state": by_state,
            "templates": self.catalog.names(),
        }

    def cleanup_expired(self) -> int:
        """Discard finished executions older than the retention period."""
        now = datetime.now(timezone.utc)
        retention = self.workflows_config.retention_seconds
        expired = [
            workflow_id for workflow_id, execution in self.executions.items()
            if execution.finished_at and (now - execution.finished_at).total_seconds() >= retention
        ]
        for workflow_id in expired:
            self._discard(workflow_id)
        return len(expired)

    def _schedule_discard(self, workflow_id: str):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        previous = self._discard_handles.pop(workflow_id, None)
        if previous:
            previous.cancel()
        self._discard_handles[workflow_id] = loop.call_later(
            self.workflows_config.retention_seconds, self._discard, workflow_id
        )

    def _discard(self, workflow_id: str):
        handle = self._discard_handles.pop(workflow_id, None)
        if handle:
            handle.cancel()
        if self.executions.pop(workflow_id, None) is not None:
            self.logger.debug("Workflow discarded", extra={"workflow_id": workflow_id})

    async def _publish(self, event_name: str, payload: Dict[str, Any]):
        if self.event_bus:
            await self.event_bus.publish(event_name, payload)
