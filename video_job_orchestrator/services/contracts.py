"""
Collaborator contracts consumed by the orchestrator.

The orchestrator does not own capacity accounting, health roll-ups or job
history; it talks to them through these narrow interfaces. Local
implementations live in ``resource_manager`` and ``monitoring_service``.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..models.job import JobAnalysis, JobRequest
from ..models.resources import AllocatedResources, SystemLoad
from ..models.service import HealthStatus


class ResourceManager(ABC):
    """Allocates and releases processing capacity."""

    async def initialize(self) -> None:
        """Prepare the manager; default is a no-op."""

    async def shutdown(self) -> None:
        """Release manager-level resources; default is a no-op."""

    @abstractmethod
    async def allocate_resources_immediate(self, analysis: JobAnalysis) -> AllocatedResources:
        """
        Allocate capacity for inline processing.

        Raises:
            ResourceAllocationError: If the pool cannot satisfy the request
        """

    @abstractmethod
    async def allocate_resources_async(self, analysis: JobAnalysis) -> AllocatedResources:
        """
        Reserve capacity for a queued job.

        Raises:
            ResourceAllocationError: If the pool cannot satisfy the request
        """

    async def activate_resources(self, resource_id: str) -> bool:
        """Turn a reservation into an active allocation when its job starts."""
        return True

    @abstractmethod
    async def release_resources(self, resource_id: str) -> bool:
        """Return an allocation to the pool. Returns False for unknown ids."""

    @abstractmethod
    async def get_current_system_load(self) -> SystemLoad:
        """Fractional cpu/memory/storage load of the pool."""

    async def optimize_resource_usage(self) -> Dict[str, Any]:
        """Periodic optimization hook; default does nothing."""
        return {}


class HealthAnalytics(ABC):
    """System health roll-up and completed-job history."""

    async def start(self) -> None:
        """Start background work; default is a no-op."""

    async def stop(self) -> None:
        """Stop background work; default is a no-op."""

    @abstractmethod
    async def get_overall_health(self) -> HealthStatus:
        """Aggregate health of the system."""

    @abstractmethod
    async def find_similar_jobs(self, request: JobRequest) -> List[Dict[str, Any]]:
        """Completed jobs similar to ``request``; each item carries ``duration``."""

    @abstractmethod
    async def record_job_completion(
        self,
        job_id: str,
        analysis: JobAnalysis,
        result: Dict[str, Any]
    ) -> None:
        """Record the outcome of a finished job."""

    async def report_component_health(
        self,
        component: str,
        status: HealthStatus,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        """Feed a component health observation; default ignores it."""

    async def generate_system_analytics(self) -> Dict[str, Any]:
        """Periodic analytics hook; default returns nothing."""
        return {}
