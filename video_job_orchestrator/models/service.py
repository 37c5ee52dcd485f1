"""
Service instance models for the Video Job Orchestrator

Describes the processing service instances the load balancer routes jobs to:
their capacity, live load, health and rolling performance metrics.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .job import JobComplexity


class HealthStatus(Enum):
    """Health of a service instance or of the system as a whole."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


class LoadBalancingStrategy(Enum):
    """Service selection algorithm."""
    ROUND_ROBIN = "round_robin"
    WEIGHTED = "weighted"
    LEAST_CONNECTIONS = "least_connections"
    PERFORMANCE_BASED = "performance_based"
    AI_DRIVEN = "ai_driven"


@dataclass
class ResourceUtilization:
    """Fractional (0-1) utilization of an instance's resources."""
    cpu: float = 0.0
    memory: float = 0.0
    storage: float = 0.0
    network: float = 0.0

    def average(self) -> float:
        return (self.cpu + self.memory + self.storage + self.network) / 4

    def to_dict(self) -> Dict[str, float]:
        return {
            "cpu": round(self.cpu, 4),
            "memory": round(self.memory, 4),
            "storage": round(self.storage, 4),
            "network": round(self.network, 4),
        }


@dataclass
class ServiceCapacity:
    """Static capacity description of an instance."""
    max_concurrent_jobs: int
    max_utilization: float = 0.9
    supported_complexity: List[JobComplexity] = field(default_factory=list)
    capabilities: List[str] = field(default_factory=list)

    def supports(self, complexity: JobComplexity) -> bool:
        return complexity in self.supported_complexity

    def has_capability(self, capability: str) -> bool:
        return capability in self.capabilities


@dataclass
class ServiceLoad:
    """Live load counters, mutated on assignment and completion."""
    active_jobs: int = 0
    queued_jobs: int = 0
    resource_utilization: ResourceUtilization = field(default_factory=ResourceUtilization)
    response_time_ms: float = 0.0


@dataclass
class PerformanceMetrics:
    """Rolling performance record of an instance."""
    average_response_time_ms: float = 1000.0
    success_rate: float = 100.0
    throughput: float = 0.0
    error_rate: float = 0.0
    availability: float = 100.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "average_response_time_ms": round(self.average_response_time_ms, 2),
            "success_rate": round(self.success_rate, 2),
            "throughput": round(self.throughput, 2),
            "error_rate": round(self.error_rate, 2),
            "availability": round(self.availability, 2),
        }


@dataclass
class JobOutcomeSample:
    """One completed job observed on an instance."""
    success: bool
    duration_ms: float
    finished_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PerformanceProfile:
    """Current metrics plus the sample window they are computed from."""
    metrics: PerformanceMetrics = field(default_factory=PerformanceMetrics)
    samples: List[JobOutcomeSample] = field(default_factory=list)
    health_checks_total: int = 0
    health_checks_passed: int = 0
    last_updated: Optional[datetime] = None


@dataclass
class ServiceInstance:
    """A processing service instance owned by the load balancer registry."""

    service_id: str
    name: str
    endpoint: str
    capacity: ServiceCapacity
    load: ServiceLoad = field(default_factory=ServiceLoad)
    health_status: HealthStatus = HealthStatus.HEALTHY
    performance: PerformanceProfile = field(default_factory=PerformanceProfile)
    last_health_check: Optional[datetime] = None
    registered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_healthy(self) -> bool:
        return self.health_status == HealthStatus.HEALTHY

    def get_utilization(self) -> float:
        """Active jobs as a fraction of max concurrent jobs."""
        if self.capacity.max_concurrent_jobs <= 0:
            return 1.0
        return self.load.active_jobs / self.capacity.max_concurrent_jobs

    def is_eligible(self, utilization_limit: float = 0.9) -> bool:
        """Healthy and below the utilization limit."""
        return self.is_healthy and self.get_utilization() < utilization_limit

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service_id": self.service_id,
            "name": self.name,
            "endpoint": self.endpoint,
            "capacity": {
                "max_concurrent_jobs": self.capacity.max_concurrent_jobs,
                "max_utilization": self.capacity.max_utilization,
                "supported_complexity": [c.value for c in self.capacity.supported_complexity],
                "capabilities": list(self.capacity.capabilities),
            },
            "load": {
                "active_jobs": self.load.active_jobs,
                "queued_jobs": self.load.queued_jobs,
                "resource_utilization": self.load.resource_utilization.to_dict(),
                "response_time_ms": self.load.response_time_ms,
            },
            "health_status": self.health_status.value,
            "utilization": round(self.get_utilization(), 4),
            "performance": self.performance.metrics.to_dict(),
            "last_health_check": self.last_health_check.isoformat() if self.last_health_check else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ServiceInstance':
        """Build an instance from a registration document."""
        capacity = data.get("capacity", {})
        return cls(
            service_id=str(data["service_id"]),
            name=str(data.get("name", data["service_id"])),
            endpoint=str(data.get("endpoint", "")),
            capacity=ServiceCapacity(
                max_concurrent_jobs=int(capacity.get("max_concurrent_jobs", 1)),
                max_utilization=float(capacity.get("max_utilization", 0.9)),
                supported_complexity=[JobComplexity(c) for c in capacity.get("supported_complexity", [])],
                capabilities=list(capacity.get("capabilities", [])),
            ),
            health_status=HealthStatus(data.get("health_status", HealthStatus.HEALTHY.value)),
        )
