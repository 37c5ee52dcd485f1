"""
Core package for the Video Job Orchestrator

Contains the exception hierarchy and the main orchestrator class.
"""

from .exceptions import (
    VideoOrchestratorError,
    InitializationError,
    AnalysisError,
    ValidationError,
    ImmediateProcessingError,
    AsyncSetupError,
    StepExecutionError,
    StepTimeoutError,
    WorkflowError,
    WorkflowNotFoundError,
    TemplateNotFoundError,
    NoAvailableServicesError,
    ServiceNotFoundError,
    ResourceAllocationError,
    CircuitOpenError,
    QueueError,
    ConfigurationError,
    OrchestratorError,
    ErrorRegistry
)
from .orchestrator import VideoJobOrchestrator

__all__ = [
    "VideoJobOrchestrator",
    "VideoOrchestratorError",
    "InitializationError",
    "AnalysisError",
    "ValidationError",
    "ImmediateProcessingError",
    "AsyncSetupError",
    "StepExecutionError",
    "StepTimeoutError",
    "WorkflowError",
    "WorkflowNotFoundError",
    "TemplateNotFoundError",
    "NoAvailableServicesError",
    "ServiceNotFoundError",
    "ResourceAllocationError",
    "CircuitOpenError",
    "QueueError",
    "ConfigurationError",
    "OrchestratorError",
    "ErrorRegistry"
]
