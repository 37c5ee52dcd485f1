"""
Workflow models for the Video Job Orchestrator

Templates are the static catalog entries; a WorkflowExecution is one
concrete, resolved instantiation of a template for a single job attempt.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .job import JobComplexity, JobRequest
from .resources import AllocatedResources


class StepType(Enum):
    """Function a workflow step performs."""
    VALIDATION = "validation"
    RESOURCE_ALLOCATION = "resource_allocation"
    MEDIA_DOWNLOAD = "media_download"
    VIDEO_PROCESSING = "video_processing"
    S3_UPLOAD = "s3_upload"
    DATABASE_UPDATE = "database_update"
    CLEANUP = "cleanup"
    QUEUE_OPERATION = "queue_operation"
    NOTIFICATION = "notification"
    ANALYSIS = "analysis"
    WORKLOAD_PARTITIONING = "workload_partitioning"
    CLUSTER_ALLOCATION = "cluster_allocation"
    PARALLEL_DOWNLOAD = "parallel_download"
    DISTRIBUTED_VIDEO_PROCESSING = "distributed_video_processing"
    RESULT_MERGING = "result_merging"
    CLUSTER_CLEANUP = "cluster_cleanup"


class WorkflowState(Enum):
    """Workflow execution state enumeration."""
    INITIALIZED = "initialized"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


WORKFLOW_STATE_TRANSITIONS = {
    WorkflowState.INITIALIZED: [WorkflowState.RUNNING, WorkflowState.CANCELLED],
    WorkflowState.RUNNING: [WorkflowState.COMPLETED, WorkflowState.FAILED, WorkflowState.CANCELLED],
    WorkflowState.COMPLETED: [],
    WorkflowState.FAILED: [],
    WorkflowState.CANCELLED: [],
}


def can_transition_to(current: WorkflowState, target: WorkflowState) -> bool:
    """Check whether a workflow may move from ``current`` to ``target``."""
    return target in WORKFLOW_STATE_TRANSITIONS.get(current, [])


@dataclass(frozen=True)
class RetryPolicy:
    """Retry behavior of a step: ``max_retries`` additional attempts."""
    max_retries: int = 0
    backoff_seconds: float = 1.0
    backoff_multiplier: Optional[float] = None
    max_backoff_seconds: Optional[float] = None

    def delay_for(self, attempt: int) -> float:
        """
        Delay before the retry that follows failed ``attempt`` (1-based).

        Args:
            attempt: Number of the attempt that just failed

        Returns:
            Seconds to wait before the next attempt
        """
        delay = self.backoff_seconds
        if self.backoff_multiplier:
            delay = self.backoff_seconds * (self.backoff_multiplier ** (attempt - 1))
        if self.max_backoff_seconds is not None:
            delay = min(delay, self.max_backoff_seconds)
        return max(0.0, delay)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_retries": self.max_retries,
            "backoff_seconds": self.backoff_seconds,
            "backoff_multiplier": self.backoff_multiplier,
            "max_backoff_seconds": self.max_backoff_seconds,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RetryPolicy':
        return cls(
            max_retries=int(data.get("max_retries", 0)),
            backoff_seconds=float(data.get("backoff_seconds", 1.0)),
            backoff_multiplier=data.get("backoff_multiplier"),
            max_backoff_seconds=data.get("max_backoff_seconds"),
        )


class RollbackType(Enum):
    GRACEFUL = "graceful"
    IMMEDIATE = "immediate"
    CHECKPOINT = "checkpoint"


@dataclass(frozen=True)
class RollbackStrategy:
    """Named list of cleanup actions run when a workflow fails."""
    rollback_type: RollbackType
    actions: Tuple[str, ...] = ()
    checkpoints: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.rollback_type.value,
            "actions": list(self.actions),
            "checkpoints": list(self.checkpoints),
        }


@dataclass(frozen=True)
class WorkflowStepSpec:
    """A step as declared by a template."""
    name: str
    step_type: StepType
    timeout_seconds: float
    parallel: bool = False


@dataclass(frozen=True)
class ResourceProfile:
    cpu_cores: int
    memory_gb: int
    storage_gb: int
    bandwidth_mbps: int
    gpu_required: bool = False


@dataclass(frozen=True)
class WorkflowTemplate:
    """Static catalog entry describing a workflow shape."""
    name: str
    description: str
    steps: Tuple[WorkflowStepSpec, ...]
    max_duration_seconds: float
    retry_policy: RetryPolicy
    resource_profile: ResourceProfile
    min_complexity: JobComplexity = JobComplexity.SIMPLE
    max_complexity: JobComplexity = JobComplexity.ENTERPRISE

    def suits(self, complexity: JobComplexity) -> bool:
        """Whether ``complexity`` lies within the template's suitability bounds."""
        return self.min_complexity.rank <= complexity.rank <= self.max_complexity.rank

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "max_duration_seconds": self.max_duration_seconds,
            "retry_policy": self.retry_policy.to_dict(),
            "resource_profile": {
                "cpu_cores": self.resource_profile.cpu_cores,
                "memory_gb": self.resource_profile.memory_gb,
                "storage_gb": self.resource_profile.storage_gb,
                "bandwidth_mbps": self.resource_profile.bandwidth_mbps,
                "gpu_required": self.resource_profile.gpu_required,
            },
            "suitability": [self.min_complexity.value, self.max_complexity.value],
            "steps": [
                {
                    "name": step.name,
                    "type": step.step_type.value,
                    "timeout_seconds": step.timeout_seconds,
                    "parallel": step.parallel,
                }
                for step in self.steps
            ],
        }


@dataclass
class WorkflowStep:
    """A step resolved for one job: concrete timeout, retry policy and parameters."""
    name: str
    step_type: StepType
    timeout_seconds: float
    retry_policy: RetryPolicy
    parallel: bool = False
    parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass
class WorkflowDefinition:
    workflow_id: str
    template_name: str
    steps: List[WorkflowStep]
    timeouts: Dict[str, float] = field(default_factory=dict)
    retry_policies: Dict[str, RetryPolicy] = field(default_factory=dict)
    rollback_strategies: Dict[str, RollbackStrategy] = field(default_factory=dict)
    environment: Dict[str, str] = field(default_factory=dict)


@dataclass
class StepResult:
    """Outcome of a step, overwritten by each attempt."""
    step_name: str
    success: bool
    duration_seconds: float
    attempts: int = 1
    error: Optional[str] = None
    output: Optional[Dict[str, Any]] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_name": self.step_name,
            "success": self.success,
            "duration_seconds": self.duration_seconds,
            "attempts": self.attempts,
            "error": self.error,
            "output": self.output,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StepResult':
        completed_at = data.get("completed_at")
        return cls(
            step_name=data["step_name"],
            success=data["success"],
            duration_seconds=data["duration_seconds"],
            attempts=data.get("attempts", 1),
            error=data.get("error"),
            output=data.get("output"),
            completed_at=datetime.fromisoformat(completed_at) if completed_at else None,
        )


@dataclass
class WorkflowMetrics:
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    total_duration_seconds: float = 0.0
    completed_steps: int = 0
    failed_steps: int = 0
    average_step_duration: float = 0.0
    resource_utilization: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "total_duration_seconds": self.total_duration_seconds,
            "completed_steps": self.completed_steps,
            "failed_steps": self.failed_steps,
            "average_step_duration": self.average_step_duration,
            "resource_utilization": dict(self.resource_utilization),
        }


@dataclass
class WorkflowContext:
    """Inputs and scratch data shared by the steps of one execution."""
    job_request: JobRequest
    resources: AllocatedResources
    service_id: Optional[str] = None
    step_data: Dict[str, Any] = field(default_factory=dict)
    result: Dict[str, Any] = field(default_factory=dict)


@dataclass
class WorkflowExecution:
    """One execution of a workflow definition. Mutated only by the workflow engine."""
    workflow_id: str
    definition: WorkflowDefinition
    context: WorkflowContext
    state: WorkflowState = WorkflowState.INITIALIZED
    step_results: Dict[str, StepResult] = field(default_factory=dict)
    metrics: WorkflowMetrics = field(default_factory=WorkflowMetrics)
    error: Optional[str] = None
    failed_step: Optional[str] = None
    rollback_actions: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def is_finished(self) -> bool:
        return self.state in (WorkflowState.COMPLETED, WorkflowState.FAILED, WorkflowState.CANCELLED)

    def step_results_to_dict(self) -> Dict[str, Dict[str, Any]]:
        """Serialize the per-step result map."""
        return {name: result.to_dict() for name, result in self.step_results.items()}

    @staticmethod
    def step_results_from_dict(data: Dict[str, Dict[str, Any]]) -> Dict[str, StepResult]:
        """Rebuild a per-step result map produced by ``step_results_to_dict``."""
        return {name: StepResult.from_dict(item) for name, item in data.items()}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "template_name": self.definition.template_name,
            "job_id": self.context.job_request.job_id,
            "state": self.state.value,
            "steps": [step.name for step in self.definition.steps],
            "step_results": self.step_results_to_dict(),
            "metrics": self.metrics.to_dict(),
            "error": self.error,
            "failed_step": self.failed_step,
            "rollback_actions": list(self.rollback_actions),
            "created_at": self.created_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass
class WorkflowResult:
    """What the engine returns for a completed execution."""
    workflow_id: str
    state: WorkflowState
    result: Dict[str, Any]
    metrics: WorkflowMetrics
    step_results: Dict[str, StepResult]

    @property
    def result_url(self) -> Optional[str]:
        return self.result.get("url")
