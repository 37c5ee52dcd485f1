"""
Resource accounting models for the Video Job Orchestrator

Allocations handed out by the resource manager and the system load snapshot
the orchestrator uses for its routing decision.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from .job import JobAnalysis


class AllocationMode(Enum):
    """How an allocation was obtained."""
    IMMEDIATE = "immediate"
    ASYNC = "async"


class AllocationStatus(Enum):
    """Lifecycle of an allocation."""
    RESERVED = "reserved"
    ACTIVE = "active"
    RELEASED = "released"


@dataclass(frozen=True)
class ResourceAllocation:
    """Concrete capacity granted to one orchestration."""
    cpu_cores: int
    memory_gb: int
    storage_gb: int
    bandwidth_mbps: int
    gpu_enabled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cpu_cores": self.cpu_cores,
            "memory_gb": self.memory_gb,
            "storage_gb": self.storage_gb,
            "bandwidth_mbps": self.bandwidth_mbps,
            "gpu_enabled": self.gpu_enabled,
        }


@dataclass
class AllocatedResources:
    """An allocation together with the analysis it was sized for."""
    resource_id: str
    analysis: JobAnalysis
    allocation: ResourceAllocation
    mode: AllocationMode
    status: AllocationStatus = AllocationStatus.RESERVED
    reserved_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    released_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource_id": self.resource_id,
            "job_id": self.analysis.job_id,
            "allocation": self.allocation.to_dict(),
            "mode": self.mode.value,
            "status": self.status.value,
            "reserved_at": self.reserved_at.isoformat(),
            "released_at": self.released_at.isoformat() if self.released_at else None,
        }


@dataclass(frozen=True)
class SystemLoad:
    """Fractional (0-1) load of the shared resource pool."""
    cpu: float = 0.0
    memory: float = 0.0
    storage: float = 0.0

    @property
    def combined(self) -> float:
        return self.cpu + self.memory + self.storage

    def to_dict(self) -> Dict[str, float]:
        return {
            "cpu": round(self.cpu, 4),
            "memory": round(self.memory, 4),
            "storage": round(self.storage, 4),
        }
