"""
LocalResourceManager for the Video Job Orchestrator

In-process capacity pool. Totals default to the host's size as reported by
psutil; allocations are tracked by id and returned to the pool on release.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import psutil

from ..core.exceptions import ResourceAllocationError
from ..models.job import JobAnalysis
from ..models.resources import (
    AllocatedResources,
    AllocationMode,
    AllocationStatus,
    ResourceAllocation,
    SystemLoad,
)
from ..utils.logger import get_logger, set_log_context
from .contracts import ResourceManager

GIB = 1024 ** 3


class LocalResourceManager(ResourceManager):
    """
    Pool-based resource manager.

    Immediate allocations must fit the free capacity. Async allocations are
    reservations for queued work and may oversubscribe the pool up to
    ``oversubscription`` times its size.
    """

    def __init__(
        self,
        total_cpu_cores: Optional[int] = None,
        total_memory_gb: Optional[float] = None,
        total_storage_gb: Optional[float] = None,
        total_bandwidth_mbps: float = 10000.0,
        gpu_available: bool = False,
        oversubscription: float = 2.0
    ):
        """
        Initialize LocalResourceManager.

        Args:
            total_cpu_cores: Pool cores, defaults to the host's logical cores
            total_memory_gb: Pool memory, defaults to host memory
            total_storage_gb: Pool storage, defaults to the root disk size
            total_bandwidth_mbps: Pool network bandwidth
            gpu_available: Whether GPU acceleration can be granted
            oversubscription: Reservation ceiling as a multiple of the pool
        """
        self.total_cpu_cores = total_cpu_cores or psutil.cpu_count(logical=True) or 1
        self.total_memory_gb = total_memory_gb or psutil.virtual_memory().total / GIB
        self.total_storage_gb = total_storage_gb or psutil.disk_usage("/").total / GIB
        self.total_bandwidth_mbps = total_bandwidth_mbps
        self.gpu_available = gpu_available
        self.oversubscription = oversubscription

        self._allocations: Dict[str, AllocatedResources] = {}
        self._lock = asyncio.Lock()

        self.logger = get_logger(__name__)
        set_log_context(self.logger, component="resource_manager")

    async def initialize(self) -> None:
        self.logger.info("Resource pool ready", extra={
            "cpu_cores": self.total_cpu_cores,
            "memory_gb": round(self.total_memory_gb, 1),
            "storage_gb": round(self.total_storage_gb, 1),
            "bandwidth_mbps": self.total_bandwidth_mbps,
            "gpu_available": self.gpu_available
        })

    async def shutdown(self) -> None:
        async with self._lock:
            outstanding = [a.resource_id for a in self._allocations.values()
                           if a.status != AllocationStatus.RELEASED]
        if outstanding:
            self.logger.warning("Shutting down with outstanding allocations", extra={
                "outstanding": outstanding
            })

    async def allocate_resources_immediate(self, analysis: JobAnalysis) -> AllocatedResources:
        allocation = self._size_allocation(analysis)
        async with self._lock:
            used = self._used(active_only=True)
            self._check_fits("cpu_cores", allocation.cpu_cores, used["cpu_cores"], self.total_cpu_cores)
            self._check_fits("memory_gb", allocation.memory_gb, used["memory_gb"], self.total_memory_gb)
            self._check_fits("storage_gb", allocation.storage_gb, used["storage_gb"], self.total_storage_gb)
            return self._record(analysis, allocation, AllocationMode.IMMEDIATE, AllocationStatus.ACTIVE)

    async def allocate_resources_async(self, analysis: JobAnalysis) -> AllocatedResources:
        allocation = self._size_allocation(analysis)
        async with self._lock:
            used = self._used()
            factor = self.oversubscription
            self._check_fits("cpu_cores", allocation.cpu_cores, used["cpu_cores"], self.total_cpu_cores * factor)
            self._check_fits("memory_gb", allocation.memory_gb, used["memory_gb"], self.total_memory_gb * factor)
            self._check_fits("storage_gb", allocation.storage_gb, used["storage_gb"], self.total_storage_gb * factor)
            return self._record(analysis, allocation, AllocationMode.ASYNC, AllocationStatus.RESERVED)

    async def activate_resources(self, resource_id: str) -> bool:
        """
        Mark a reservation active; from then on it counts toward the load.

        Activation never fails for lack of capacity: the job was already
        admitted when it was queued.
        """
        async with self._lock:
            allocated = self._allocations.get(resource_id)
            if allocated is None:
                return False
            allocated.status = AllocationStatus.ACTIVE

        self.logger.debug("Reservation activated", extra={
            "resource_id": resource_id,
            "job_id": allocated.analysis.job_id
        })
        return True

    async def release_resources(self, resource_id: str) -> bool:
        async with self._lock:
            allocated = self._allocations.pop(resource_id, None)

        if allocated is None:
            self.logger.warning("Release requested for unknown allocation", extra={
                "resource_id": resource_id
            })
            return False

        allocated.status = AllocationStatus.RELEASED
        allocated.released_at = datetime.now(timezone.utc)
        self.logger.info("Resources released", extra={
            "resource_id": resource_id,
            "job_id": allocated.analysis.job_id
        })
        return True

    async def get_current_system_load(self) -> SystemLoad:
        """Load from active allocations; queued reservations do not count."""
        async with self._lock:
            used = self._used(active_only=True)
        return SystemLoad(
            cpu=min(1.0, used["cpu_cores"] / self.total_cpu_cores),
            memory=min(1.0, used["memory_gb"] / self.total_memory_gb),
            storage=min(1.0, used["storage_gb"] / self.total_storage_gb),
        )

    async def optimize_resource_usage(self) -> Dict[str, Any]:
        load = await self.get_current_system_load()
        async with self._lock:
            by_mode = {mode.value: 0 for mode in AllocationMode}
            for allocated in self._allocations.values():
                by_mode[allocated.mode.value] += 1

        summary = {"allocations": by_mode, "load": load.to_dict()}
        self.logger.info("Resource usage reviewed", extra=summary)
        return summary

    def get_allocation(self, resource_id: str) -> Optional[AllocatedResources]:
        return self._allocations.get(resource_id)

    def outstanding_allocations(self) -> int:
        return len(self._allocations)

    def _size_allocation(self, analysis: JobAnalysis) -> ResourceAllocation:
        requirements = analysis.resource_requirements
        return ResourceAllocation(
            cpu_cores=requirements.cpu_cores,
            memory_gb=requirements.memory_gb,
            storage_gb=requirements.storage_gb,
            bandwidth_mbps=requirements.bandwidth_mbps,
            gpu_enabled=requirements.gpu_required and self.gpu_available,
        )

    def _used(self, active_only: bool = False) -> Dict[str, float]:
        used = {"cpu_cores": 0.0, "memory_gb": 0.0, "storage_gb": 0.0}
        for allocated in self._allocations.values():
            if active_only and allocated.status != AllocationStatus.ACTIVE:
                continue
            used["cpu_cores"] += allocated.allocation.cpu_cores
            used["memory_gb"] += allocated.allocation.memory_gb
            used["storage_gb"] += allocated.allocation.storage_gb
        return used

    @staticmethod
    def _check_fits(resource_type: str, requested: float, used: float, limit: float):
        available = max(0.0, limit - used)
        if requested > available:
            raise ResourceAllocationError(resource_type, requested, available)

    def _record(
        self,
        analysis: JobAnalysis,
        allocation: ResourceAllocation,
        mode: AllocationMode,
        status: AllocationStatus
    ) -> AllocatedResources:
        resource_id = f"res_{uuid.uuid4().hex[:12]}"
        allocated = AllocatedResources(
            resource_id=resource_id,
            analysis=analysis,
            allocation=allocation,
            mode=mode,
            status=status,
        )
        self._allocations[resource_id] = allocated

        self.logger.info("Resources allocated", extra={
            "resource_id": resource_id,
            "job_id": analysis.job_id,
            "mode": mode.value,
            "allocation": allocation.to_dict()
        })
        return allocated
