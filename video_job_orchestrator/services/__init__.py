"""
Services package for the Video Job Orchestrator

Contains the analyzer, load balancer, workflow engine, circuit breakers,
priority queue and the local reference collaborators.
"""

from .event_bus import EventBus
from .job_analyzer import JobAnalyzer
from .load_balancer import LoadBalancerManager
from .workflow_engine import WorkflowEngine
from .workflow_templates import TemplateCatalog
from .fault_tolerance import FaultToleranceService
from .queue_manager import QueueManager
from .contracts import HealthAnalytics, ResourceManager
from .resource_manager import LocalResourceManager
from .monitoring_service import MonitoringService

__all__ = [
    "EventBus",
    "JobAnalyzer",
    "LoadBalancerManager",
    "WorkflowEngine",
    "TemplateCatalog",
    "FaultToleranceService",
    "QueueManager",
    "HealthAnalytics",
    "ResourceManager",
    "LocalResourceManager",
    "MonitoringService"
]
