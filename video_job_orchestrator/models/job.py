"""
Job-related data models for the Video Job Orchestrator

Defines render requests, their content elements, and the analysis derived
from them (complexity tier, resource requirements, processing strategy).
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class JobPriority(Enum):
    """Job priority enumeration."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def score(self) -> int:
        """Numeric priority used for queue ordering (critical=4 ... low=1)."""
        return PRIORITY_SCORES[self]


PRIORITY_SCORES = {
    JobPriority.CRITICAL: 4,
    JobPriority.HIGH: 3,
    JobPriority.NORMAL: 2,
    JobPriority.LOW: 1,
}


class JobComplexity(Enum):
    """Ordinal complexity tier of a job."""
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"
    ENTERPRISE = "enterprise"

    @property
    def rank(self) -> int:
        return COMPLEXITY_RANKS[self]


COMPLEXITY_RANKS = {
    JobComplexity.SIMPLE: 1,
    JobComplexity.MODERATE: 2,
    JobComplexity.COMPLEX: 3,
    JobComplexity.ENTERPRISE: 4,
}


class ProcessingStrategy(Enum):
    """Named workflow shape a job is processed with."""
    QUICK_SYNC = "quick_sync"
    BALANCED_ASYNC = "balanced_async"
    RESOURCE_INTENSIVE = "resource_intensive"
    DISTRIBUTED = "distributed"


@dataclass(frozen=True)
class ContentElement:
    """One media element placed on the render timeline."""

    source: str
    track: int = 0
    start: float = 0.0
    duration: Optional[float] = None
    effects: Tuple[str, ...] = ()

    @property
    def has_effects(self) -> bool:
        return len(self.effects) > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "track": self.track,
            "start": self.start,
            "duration": self.duration,
            "effects": list(self.effects),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ContentElement':
        return cls(
            source=str(data.get("source", "")),
            track=int(data.get("track", 0) or 0),
            start=float(data.get("start", 0.0) or 0.0),
            duration=data.get("duration"),
            effects=tuple(data.get("effects") or ()),
        )


@dataclass(frozen=True)
class JobRequest:
    """A render request. Immutable once submitted."""

    job_id: str
    elements: Tuple[ContentElement, ...]
    width: int = 1920
    height: int = 1080
    output_format: str = "mp4"
    priority: JobPriority = JobPriority.NORMAL
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def element_count(self) -> int:
        return len(self.elements)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "elements": [element.to_dict() for element in self.elements],
            "width": self.width,
            "height": self.height,
            "output_format": self.output_format,
            "priority": self.priority.value,
            "submitted_at": self.submitted_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'JobRequest':
        """Create a request from a submission payload."""
        submitted_at = data.get("submitted_at")
        return cls(
            job_id=str(data["job_id"]),
            elements=tuple(ContentElement.from_dict(e) for e in data.get("elements", [])),
            width=int(data.get("width", 1920) or 0),
            height=int(data.get("height", 1080) or 0),
            output_format=str(data.get("output_format", "mp4")),
            priority=JobPriority(data.get("priority", JobPriority.NORMAL.value)),
            submitted_at=datetime.fromisoformat(submitted_at) if submitted_at else datetime.now(timezone.utc),
        )


@dataclass(frozen=True)
class ResourceRequirements:
    """Capacity a job needs while it is processed."""

    cpu_cores: int
    memory_gb: int
    storage_gb: int
    bandwidth_mbps: int
    gpu_required: bool
    estimated_duration: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cpu_cores": self.cpu_cores,
            "memory_gb": self.memory_gb,
            "storage_gb": self.storage_gb,
            "bandwidth_mbps": self.bandwidth_mbps,
            "gpu_required": self.gpu_required,
            "estimated_duration": self.estimated_duration,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ResourceRequirements':
        return cls(
            cpu_cores=int(data["cpu_cores"]),
            memory_gb=int(data["memory_gb"]),
            storage_gb=int(data["storage_gb"]),
            bandwidth_mbps=int(data["bandwidth_mbps"]),
            gpu_required=bool(data["gpu_required"]),
            estimated_duration=float(data["estimated_duration"]),
        )


@dataclass(frozen=True)
class JobAnalysis:
    """Analysis of a single request. Never mutated after creation."""

    job_id: str
    estimated_duration: float
    resource_requirements: ResourceRequirements
    priority: JobPriority
    complexity: JobComplexity
    optimal_strategy: ProcessingStrategy
    risk_factors: Tuple[str, ...] = ()
    optimization_hints: Tuple[str, ...] = ()
    element_count: int = 0
    megapixels: float = 0.0
    has_effects: bool = False
    multi_track: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "estimated_duration": self.estimated_duration,
            "resource_requirements": self.resource_requirements.to_dict(),
            "priority": self.priority.value,
            "complexity": self.complexity.value,
            "optimal_strategy": self.optimal_strategy.value,
            "risk_factors": list(self.risk_factors),
            "optimization_hints": list(self.optimization_hints),
            "element_count": self.element_count,
            "megapixels": round(self.megapixels, 3),
            "has_effects": self.has_effects,
            "multi_track": self.multi_track,
        }


def collect_effects(elements: List[ContentElement]) -> List[str]:
    """Distinct effect names used across elements, in first-seen order."""
    seen: List[str] = []
    for element in elements:
        for effect in element.effects:
            if effect not in seen:
                seen.append(effect)
    return seen
