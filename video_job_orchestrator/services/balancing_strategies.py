"""
Load balancing strategies.

Each strategy picks one instance from a non-empty list of eligible
instances. The AI-driven strategy delegates scoring to a ``ServiceScorer``
so a trained model can replace the heuristic without touching selection.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List

from ..models.job import JobAnalysis, JobComplexity, JobPriority
from ..models.service import LoadBalancingStrategy, ResourceUtilization, ServiceInstance

PRIORITY_MULTIPLIERS = {
    JobPriority.CRITICAL: 1.5,
    JobPriority.HIGH: 1.3,
    JobPriority.NORMAL: 1.0,
    JobPriority.LOW: 0.8,
}

# Estimated utilization a job adds to the instance it lands on
BASE_UTILIZATION_DELTA = ResourceUtilization(cpu=0.1, memory=0.05, storage=0.02, network=0.03)
UTILIZATION_DELTA_CAPS = ResourceUtilization(cpu=0.3, memory=0.3, storage=0.2, network=0.2)
COMPLEXITY_UTILIZATION_MULTIPLIERS = {
    JobComplexity.SIMPLE: 1.0,
    JobComplexity.MODERATE: 1.5,
    JobComplexity.COMPLEX: 2.0,
    JobComplexity.ENTERPRISE: 3.0,
}


def estimate_utilization_delta(analysis: JobAnalysis) -> ResourceUtilization:
    """Utilization increase expected from assigning ``analysis``'s job."""
    multiplier = COMPLEXITY_UTILIZATION_MULTIPLIERS.get(analysis.complexity, 1.0)
    return ResourceUtilization(
        cpu=min(UTILIZATION_DELTA_CAPS.cpu, BASE_UTILIZATION_DELTA.cpu * multiplier),
        memory=min(UTILIZATION_DELTA_CAPS.memory, BASE_UTILIZATION_DELTA.memory * multiplier),
        storage=min(UTILIZATION_DELTA_CAPS.storage, BASE_UTILIZATION_DELTA.storage * multiplier),
        network=min(UTILIZATION_DELTA_CAPS.network, BASE_UTILIZATION_DELTA.network * multiplier),
    )


def required_capabilities(analysis: JobAnalysis) -> List[str]:
    capabilities = ["ffmpeg"]
    if analysis.resource_requirements.gpu_required:
        capabilities.append("gpu_acceleration")
    if analysis.complexity == JobComplexity.ENTERPRISE:
        capabilities.extend(["distributed_processing", "enterprise"])
    return capabilities


def extract_features(services: List[ServiceInstance], analysis: JobAnalysis) -> Dict[str, Any]:
    """Feature vector describing the candidate pool and the job."""
    requirements = analysis.resource_requirements
    return {
        "service_count": len(services),
        "average_load": (sum(s.get_utilization() for s in services) / len(services)) if services else 0.0,
        "job_complexity": analysis.complexity.rank,
        "job_priority": analysis.priority.score,
        "estimated_duration": analysis.estimated_duration,
        "cpu_cores": requirements.cpu_cores,
        "memory_gb": requirements.memory_gb,
        "gpu_required": 1 if requirements.gpu_required else 0,
        "required_capabilities": required_capabilities(analysis),
    }


class ServiceScorer(ABC):
    """Scores an instance for a job on a 0-100 scale."""

    def is_available(self) -> bool:
        return True

    @abstractmethod
    def score(self, service: ServiceInstance, analysis: JobAnalysis, features: Dict[str, Any]) -> float:
        ...


class HeuristicServiceScorer(ServiceScorer):
    """
    Heuristic stand-in for a trained model.

    Starts at 50, adds half of the success rate above 50, subtracts up to 30
    for slow responses and up to 20 for utilization, then rewards complexity
    support (+15) and each matched required capability (+5).
    """

    def score(self, service: ServiceInstance, analysis: JobAnalysis, features: Dict[str, Any]) -> float:
        metrics = service.performance.metrics
        score = 50.0
        score += (metrics.success_rate - 50) * 0.5
        score -= min(30.0, metrics.average_response_time_ms / 100)
        score -= service.get_utilization() * 20

        if service.capacity.supports(analysis.complexity):
            score += 15

        required = features.get("required_capabilities", [])
        score += 5 * sum(1 for capability in service.capacity.capabilities if capability in required)

        return max(0.0, min(100.0, score))


class BalancingStrategy(ABC):
    strategy: LoadBalancingStrategy

    @abstractmethod
    def select(self, services: List[ServiceInstance], analysis: JobAnalysis) -> ServiceInstance:
        """Pick one of ``services`` (never empty) for the job."""


class RoundRobinStrategy(BalancingStrategy):
    """Rotates through the candidates with a monotonically advancing cursor."""

    strategy = LoadBalancingStrategy.ROUND_ROBIN

    def __init__(self):
        self._cursor = 0

    def select(self, services, analysis):
        service = services[self._cursor % len(services)]
        self._cursor += 1
        return service


class WeightedStrategy(BalancingStrategy):
    strategy = LoadBalancingStrategy.WEIGHTED

    def select(self, services, analysis):
        return max(services, key=self.weight)

    @staticmethod
    def weight(service: ServiceInstance) -> float:
        capacity = service.capacity.max_concurrent_jobs
        spare = max(1, capacity - service.load.active_jobs)
        return capacity * 0.3 + spare * 0.4 + performance_weight(service) * 0.3


def performance_weight(service: ServiceInstance) -> float:
    metrics = service.performance.metrics
    return (
        (metrics.success_rate / 100)
        * max(0.1, 1 - metrics.average_response_time_ms / 5000)
        * (metrics.availability / 100)
    )


class LeastConnectionsStrategy(BalancingStrategy):
    strategy = LoadBalancingStrategy.LEAST_CONNECTIONS

    def select(self, services, analysis):
        return min(services, key=lambda service: service.load.active_jobs)


class PerformanceBasedStrategy(BalancingStrategy):
    """Blend of response time, success, throughput, availability and load."""

    strategy = LoadBalancingStrategy.PERFORMANCE_BASED

    def select(self, services, analysis):
        return max(services, key=lambda service: self.score(service, analysis))

    @staticmethod
    def score(service: ServiceInstance, analysis: JobAnalysis) -> float:
        metrics = service.performance.metrics
        response_time_score = max(0.0, 100 - metrics.average_response_time_ms / 100)
        throughput_score = min(100.0, metrics.throughput / 10)
        load_factor = max(0.0, 100 - service.get_utilization() * 100)
        resource_score = 100 - service.load.resource_utilization.average() * 100

        base = (
            response_time_score * 0.25
            + metrics.success_rate * 0.20
            + throughput_score * 0.15
            + metrics.availability * 0.15
            + load_factor * 0.15
            + resource_score * 0.10
        )
        return base * complexity_multiplier(analysis.complexity, service) * PRIORITY_MULTIPLIERS.get(analysis.priority, 1.0)


def complexity_multiplier(complexity: JobComplexity, service: ServiceInstance) -> float:
    capabilities = service.capacity.capabilities
    if complexity == JobComplexity.ENTERPRISE and "enterprise" in capabilities:
        return 1.5
    if complexity == JobComplexity.COMPLEX and any(c.startswith("gpu") for c in capabilities):
        return 1.3
    if complexity == JobComplexity.SIMPLE:
        return 1.2
    return 1.0


class AIDrivenStrategy(BalancingStrategy):
    strategy = LoadBalancingStrategy.AI_DRIVEN

    def __init__(self, scorer: ServiceScorer):
        self.scorer = scorer

    def is_available(self) -> bool:
        return self.scorer.is_available()

    def select(self, services, analysis):
        features = extract_features(services, analysis)
        return max(services, key=lambda service: self.scorer.score(service, analysis, features))
