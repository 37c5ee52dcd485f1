"""
Exception classes for the Video Job Orchestrator

Every error raised by the orchestrator derives from ``VideoOrchestratorError``
and carries a machine-readable error code plus enough identifiers (job id,
orchestration id, workflow id, step name) to correlate it with the logs.
"""

from typing import Any, Dict, Optional


class VideoOrchestratorError(Exception):
    """Base exception for all orchestrator errors."""

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON serialization."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details
        }


class InitializationError(VideoOrchestratorError):
    """Raised when a component fails to start. Fatal for startup."""

    def __init__(self, component: str, message: str):
        super().__init__(
            f"Initialization of {component} failed: {message}",
            error_code="INITIALIZATION_ERROR",
            details={"component": component}
        )


class AnalysisError(VideoOrchestratorError):
    """Raised when a job request cannot be analyzed."""

    def __init__(self, job_id: Optional[str], message: str):
        super().__init__(
            f"Analysis of job {job_id} failed: {message}",
            error_code="ANALYSIS_ERROR",
            details={"job_id": job_id}
        )
        self.job_id = job_id


class ValidationError(VideoOrchestratorError):
    """Raised when input validation fails."""

    def __init__(self, field: str, message: str, value: Any = None):
        super().__init__(
            f"Validation error for {field}: {message}",
            error_code="VALIDATION_ERROR",
            details={"field": field, "value": str(value) if value is not None else None}
        )


class ImmediateProcessingError(VideoOrchestratorError):
    """Raised when the inline (immediate) path fails or times out."""

    def __init__(self, job_id: str, orchestration_id: str, message: str, workflow_id: Optional[str] = None):
        super().__init__(
            f"Immediate processing of job {job_id} failed: {message}",
            error_code="IMMEDIATE_PROCESSING_ERROR",
            details={"job_id": job_id, "orchestration_id": orchestration_id, "workflow_id": workflow_id}
        )
        self.job_id = job_id
        self.orchestration_id = orchestration_id
        self.workflow_id = workflow_id


class AsyncSetupError(VideoOrchestratorError):
    """Raised when a job cannot be prepared for the queued path."""

    def __init__(self, job_id: str, orchestration_id: str, message: str):
        super().__init__(
            f"Async setup of job {job_id} failed: {message}",
            error_code="ASYNC_SETUP_ERROR",
            details={"job_id": job_id, "orchestration_id": orchestration_id}
        )
        self.job_id = job_id
        self.orchestration_id = orchestration_id


class StepExecutionError(VideoOrchestratorError):
    """Raised by the workflow engine when a single step attempt fails."""

    def __init__(self, workflow_id: str, step_name: str, message: str, step_type: Optional[str] = None):
        super().__init__(
            f"Step '{step_name}' of workflow {workflow_id} failed: {message}",
            error_code="STEP_EXECUTION_ERROR",
            details={"workflow_id": workflow_id, "step_name": step_name, "step_type": step_type}
        )
        self.workflow_id = workflow_id
        self.step_name = step_name
        self.step_type = step_type


class StepTimeoutError(StepExecutionError):
    """Raised when a step attempt does not finish within its timeout."""

    def __init__(self, workflow_id: str, step_name: str, timeout_seconds: float, step_type: Optional[str] = None):
        super().__init__(
            workflow_id,
            step_name,
            f"timed out after {timeout_seconds:g} seconds",
            step_type=step_type
        )
        self.error_code = "STEP_TIMEOUT"
        self.details["timeout_seconds"] = timeout_seconds
        self.timeout_seconds = timeout_seconds


class WorkflowError(VideoOrchestratorError):
    """Raised when a workflow fails after retries are exhausted."""

    def __init__(
        self,
        workflow_id: str,
        message: str,
        step_name: Optional[str] = None,
        step_type: Optional[str] = None
    ):
        super().__init__(
            f"Workflow {workflow_id} failed: {message}",
            error_code="WORKFLOW_ERROR",
            details={"workflow_id": workflow_id, "step_name": step_name, "step_type": step_type}
        )
        self.workflow_id = workflow_id
        self.step_name = step_name
        self.step_type = step_type


class WorkflowNotFoundError(VideoOrchestratorError):
    """Raised when a workflow execution cannot be found."""

    def __init__(self, workflow_id: str):
        super().__init__(
            f"Workflow {workflow_id} not found",
            error_code="WORKFLOW_NOT_FOUND",
            details={"workflow_id": workflow_id}
        )


class TemplateNotFoundError(VideoOrchestratorError):
    """Raised when a workflow template name is not in the catalog."""

    def __init__(self, template_name: str):
        super().__init__(
            f"Workflow template '{template_name}' not found",
            error_code="TEMPLATE_NOT_FOUND",
            details={"template_name": template_name}
        )


class NoAvailableServicesError(VideoOrchestratorError):
    """Raised when no healthy service instance can take a job."""

    def __init__(self, message: str, job_id: Optional[str] = None):
        super().__init__(
            message,
            error_code="NO_AVAILABLE_SERVICES",
            details={"job_id": job_id}
        )


class ServiceNotFoundError(VideoOrchestratorError):
    """Raised when a service instance id is not registered."""

    def __init__(self, service_id: str):
        super().__init__(
            f"Service {service_id} not found",
            error_code="SERVICE_NOT_FOUND",
            details={"service_id": service_id}
        )


class ResourceAllocationError(VideoOrchestratorError):
    """Raised when the resource manager cannot satisfy an allocation."""

    def __init__(self, resource_type: str, requested: Optional[float] = None, available: Optional[float] = None):
        message = f"Cannot allocate {resource_type}"
        if requested is not None and available is not None:
            message += f" (requested {requested:g}, available {available:g})"

        super().__init__(
            message,
            error_code="RESOURCE_ALLOCATION_ERROR",
            details={"resource_type": resource_type, "requested": requested, "available": available}
        )


class CircuitOpenError(VideoOrchestratorError):
    """Synthetic service-unavailable error produced by an open circuit."""

    def __init__(self, category: str, retry_after_seconds: Optional[float] = None):
        super().__init__(
            f"Service unavailable: circuit for '{category}' is open",
            error_code="SERVICE_UNAVAILABLE",
            details={"category": category, "retry_after_seconds": retry_after_seconds}
        )
        self.category = category
        self.retry_after_seconds = retry_after_seconds


class QueueError(VideoOrchestratorError):
    """Raised when queue operations fail."""

    def __init__(self, operation: str, message: str):
        super().__init__(
            f"Queue operation '{operation}' failed: {message}",
            error_code="QUEUE_ERROR",
            details={"operation": operation}
        )


class ConfigurationError(VideoOrchestratorError):
    """Raised when there's an error in configuration."""

    def __init__(self, config_key: str, message: str):
        super().__init__(
            f"Configuration error for {config_key}: {message}",
            error_code="CONFIGURATION_ERROR",
            details={"config_key": config_key}
        )


class OrchestratorError(VideoOrchestratorError):
    """Raised when orchestrator-level operations fail."""

    def __init__(self, message: str, orchestration_id: Optional[str] = None):
        super().__init__(
            f"Orchestrator error: {message}",
            error_code="ORCHESTRATOR_ERROR",
            details={"orchestration_id": orchestration_id}
        )


class ErrorRegistry:
    """Counts orchestration failures by exception type."""

    def __init__(self):
        self.error_counts: Dict[str, int] = {}

    def record_error(self, error: BaseException):
        error_type = error.__class__.__name__
        self.error_counts[error_type] = self.error_counts.get(error_type, 0) + 1

    def get_error_statistics(self) -> Dict[str, Any]:
        """Get error statistics for monitoring."""
        return {
            "total_errors": sum(self.error_counts.values()),
            "error_counts": dict(self.error_counts),
            "most_common_error": max(self.error_counts.items(), key=lambda x: x[1])[0] if self.error_counts else None
        }
