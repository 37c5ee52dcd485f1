"""
Data models for the Video Job Orchestrator

Render requests and their analysis, service instances, resource allocations,
workflow templates/executions and orchestration bookkeeping.
"""

from .job import (
    ContentElement,
    JobAnalysis,
    JobComplexity,
    JobPriority,
    JobRequest,
    ProcessingStrategy,
    ResourceRequirements,
    PRIORITY_SCORES,
)

from .service import (
    HealthStatus,
    LoadBalancingStrategy,
    PerformanceMetrics,
    PerformanceProfile,
    ResourceUtilization,
    ServiceCapacity,
    ServiceInstance,
    ServiceLoad,
)

from .resources import (
    AllocatedResources,
    AllocationMode,
    AllocationStatus,
    ResourceAllocation,
    SystemLoad,
)

from .workflow import (
    ResourceProfile,
    RetryPolicy,
    RollbackStrategy,
    RollbackType,
    StepResult,
    StepType,
    WorkflowContext,
    WorkflowDefinition,
    WorkflowExecution,
    WorkflowMetrics,
    WorkflowResult,
    WorkflowState,
    WorkflowStep,
    WorkflowStepSpec,
    WorkflowTemplate,
    WORKFLOW_STATE_TRANSITIONS,
    can_transition_to,
)

from .orchestration import (
    OrchestrationContext,
    OrchestrationResult,
    OrchestrationState,
    OrchestrationStatus,
    ProcessingDecision,
    ProcessingMode,
    QueuedJob,
)

__all__ = [
    # Job models
    "ContentElement",
    "JobAnalysis",
    "JobComplexity",
    "JobPriority",
    "JobRequest",
    "ProcessingStrategy",
    "ResourceRequirements",
    "PRIORITY_SCORES",

    # Service models
    "HealthStatus",
    "LoadBalancingStrategy",
    "PerformanceMetrics",
    "PerformanceProfile",
    "ResourceUtilization",
    "ServiceCapacity",
    "ServiceInstance",
    "ServiceLoad",

    # Resource models
    "AllocatedResources",
    "AllocationMode",
    "AllocationStatus",
    "ResourceAllocation",
    "SystemLoad",

    # Workflow models
    "ResourceProfile",
    "RetryPolicy",
    "RollbackStrategy",
    "RollbackType",
    "StepResult",
    "StepType",
    "WorkflowContext",
    "WorkflowDefinition",
    "WorkflowExecution",
    "WorkflowMetrics",
    "WorkflowResult",
    "WorkflowState",
    "WorkflowStep",
    "WorkflowStepSpec",
    "WorkflowTemplate",
    "WORKFLOW_STATE_TRANSITIONS",
    "can_transition_to",

    # Orchestration models
    "OrchestrationContext",
    "OrchestrationResult",
    "OrchestrationState",
    "OrchestrationStatus",
    "ProcessingDecision",
    "ProcessingMode",
    "QueuedJob",
]
