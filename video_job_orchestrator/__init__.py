"""
Video Job Orchestrator

Schedules and executes multi-step video rendering jobs across a pool of
processing services. Each request is analyzed, routed to inline or queued
processing, and steered through a templated workflow with resource
accounting, per-step retries and rollback.

Key Features:
- Job analysis: duration, resources, complexity tier and processing strategy
- Immediate-vs-queued routing from live load and health
- Workflow engine with parallel step groups, timeouts, retries and rollback
- Load balancing across services with adaptive strategies and health probes
- Category-level circuit breakers
- Priority queue for deferred jobs
- Structured logging and YAML/env configuration
- Command-line interface

Usage:
    from video_job_orchestrator import VideoJobOrchestrator, JobRequest, ContentElement

    orchestrator = VideoJobOrchestrator()
    await orchestrator.start()

    await orchestrator.load_balancer.register_service(ServiceInstance(
        service_id="renderer-1",
        name="video-processor",
        endpoint="http://renderer-1:8080",
        capacity=ServiceCapacity(max_concurrent_jobs=8, capabilities=["ffmpeg"])
    ))

    request = JobRequest(
        job_id="render_001",
        elements=(ContentElement(source="s3://media/intro.mp4", duration=12.0),)
    )

    result = await orchestrator.orchestrate_video_job(request)
    print(result.to_dict())

    await orchestrator.shutdown()
"""

__version__ = "1.0.0"
__author__ = "Video Job Orchestrator Team"
__license__ = "MIT"

# Core orchestrator
from .core.orchestrator import VideoJobOrchestrator

# Data models
from .models.job import ContentElement, JobAnalysis, JobComplexity, JobPriority, JobRequest, ProcessingStrategy
from .models.service import HealthStatus, LoadBalancingStrategy, ServiceCapacity, ServiceInstance
from .models.orchestration import OrchestrationResult, OrchestrationStatus
from .models.workflow import StepType, WorkflowState

# Services (for advanced usage)
from .services.job_analyzer import JobAnalyzer
from .services.load_balancer import LoadBalancerManager
from .services.workflow_engine import WorkflowEngine
from .services.fault_tolerance import FaultToleranceService
from .services.queue_manager import QueueManager
from .services.resource_manager import LocalResourceManager
from .services.monitoring_service import MonitoringService
from .services.event_bus import EventBus

# Utilities
from .utils.config import ConfigurationManager, OrchestratorConfig
from .utils.logger import setup_logger, get_logger

# Exceptions
from .core.exceptions import (
    VideoOrchestratorError,
    AnalysisError,
    ImmediateProcessingError,
    AsyncSetupError,
    WorkflowError,
    CircuitOpenError,
    NoAvailableServicesError,
    ConfigurationError,
    OrchestratorError
)

__all__ = [
    # Core
    "VideoJobOrchestrator",

    # Models
    "ContentElement",
    "JobAnalysis",
    "JobComplexity",
    "JobPriority",
    "JobRequest",
    "ProcessingStrategy",
    "HealthStatus",
    "LoadBalancingStrategy",
    "ServiceCapacity",
    "ServiceInstance",
    "OrchestrationResult",
    "OrchestrationStatus",
    "StepType",
    "WorkflowState",

    # Services (for advanced usage)
    "JobAnalyzer",
    "LoadBalancerManager",
    "WorkflowEngine",
    "FaultToleranceService",
    "QueueManager",
    "LocalResourceManager",
    "MonitoringService",
    "EventBus",

    # Utilities
    "ConfigurationManager",
    "OrchestratorConfig",
    "setup_logger",
    "get_logger",

    # Exceptions
    "VideoOrchestratorError",
    "AnalysisError",
    "ImmediateProcessingError",
    "AsyncSetupError",
    "WorkflowError",
    "CircuitOpenError",
    "NoAvailableServicesError",
    "ConfigurationError",
    "OrchestratorError",

    # Package metadata
    "__version__",
    "__author__",
    "__license__"
]

# Package-level configuration
import logging
logging.getLogger(__name__).addHandler(logging.NullHandler())


# Quick start helper
def quick_start(config_path: str = None) -> VideoJobOrchestrator:
    """
    Quick start helper for simple use cases.

    Args:
        config_path: Optional YAML configuration file

    Returns:
        Configured VideoJobOrchestrator with local collaborators

    Example:
        orchestrator = quick_start("orchestrator.yaml")
        await orchestrator.start()
    """
    return VideoJobOrchestrator(ConfigurationManager.load(config_path))
