"""
Orchestration models for the Video Job Orchestrator

Contexts correlating an orchestration id with everything committed for it,
queued job entries, routing decisions and the results handed back to callers.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .job import JobAnalysis, JobPriority, JobRequest
from .resources import AllocatedResources


class ProcessingMode(Enum):
    IMMEDIATE = "immediate"
    QUEUED = "queued"


class OrchestrationStatus(Enum):
    """Status reported to the submitter."""
    IMMEDIATE = "immediate"
    QUEUED = "queued"
    DEGRADED = "degraded"


class OrchestrationState(Enum):
    """Internal lifecycle of an orchestration context."""
    ADMITTED = "admitted"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ProcessingDecision:
    """Immediate-vs-queued routing decision with the inputs that produced it."""
    mode: ProcessingMode
    reasons: List[str] = field(default_factory=list)
    system_load: Dict[str, float] = field(default_factory=dict)
    health_score: float = 1.0

    @property
    def immediate(self) -> bool:
        return self.mode == ProcessingMode.IMMEDIATE


@dataclass
class OrchestrationContext:
    """Everything committed for one orchestration, until it finishes."""
    orchestration_id: str
    job_request: JobRequest
    analysis: JobAnalysis
    resources: Optional[AllocatedResources] = None
    workflow_id: Optional[str] = None
    service_id: Optional[str] = None
    state: OrchestrationState = OrchestrationState.ADMITTED
    gated_categories: List[str] = field(default_factory=list)
    resources_released: bool = False
    service_released: bool = False
    error: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def mark(self, state: OrchestrationState):
        self.state = state
        self.updated_at = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orchestration_id": self.orchestration_id,
            "job_id": self.job_request.job_id,
            "state": self.state.value,
            "complexity": self.analysis.complexity.value,
            "priority": self.analysis.priority.value,
            "workflow_id": self.workflow_id,
            "service_id": self.service_id,
            "resource_id": self.resources.resource_id if self.resources else None,
            "resources_released": self.resources_released,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class QueuedJob:
    """Entry in the deferred-job priority queue."""
    job_id: str
    orchestration_id: str
    priority: JobPriority
    estimated_duration: float
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "orchestration_id": self.orchestration_id,
            "priority": self.priority.value,
            "estimated_duration": self.estimated_duration,
            "enqueued_at": self.enqueued_at.isoformat(),
        }


@dataclass
class OrchestrationResult:
    """Result handed back to the submitter."""
    status: OrchestrationStatus
    job_id: str
    orchestration_id: str
    result_url: Optional[str] = None
    processing_time: Optional[float] = None
    file_size: Optional[int] = None
    estimated_completion: Optional[datetime] = None
    workflow_id: Optional[str] = None
    resource_id: Optional[str] = None
    queue_position: Optional[int] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "status": self.status.value,
            "job_id": self.job_id,
            "orchestration_id": self.orchestration_id,
        }
        if self.status == OrchestrationStatus.IMMEDIATE:
            data.update({
                "result_url": self.result_url,
                "processing_time": self.processing_time,
                "file_size": self.file_size,
            })
        elif self.status == OrchestrationStatus.QUEUED:
            data.update({
                "estimated_completion": self.estimated_completion.isoformat() if self.estimated_completion else None,
                "workflow_id": self.workflow_id,
                "resource_id": self.resource_id,
                "queue_position": self.queue_position,
            })
        if self.message:
            data["message"] = self.message
        return data
