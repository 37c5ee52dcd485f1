"""
JobAnalyzer for the Video Job Orchestrator

Classifies a render request and estimates its cost: processing duration,
resource requirements, complexity tier and the processing strategy that
fits it.
"""

import math
from typing import Iterable, List, Optional, Tuple

from ..core.exceptions import AnalysisError
from ..models.job import (
    JobAnalysis,
    JobComplexity,
    JobRequest,
    ProcessingStrategy,
    ResourceRequirements,
)
from ..utils.logger import get_logger, set_log_context
from .contracts import HealthAnalytics

FULL_HD_PIXELS = 1920 * 1080
UHD_PIXELS = 3840 * 2160
DEFAULT_ELEMENT_DURATION = 10.0
ASSUMED_FPS = 30
SAFETY_MARGIN = 1.2
MIN_ESTIMATED_DURATION = 5
LONG_JOB_SECONDS = 300


def _as_number(value, default: float = 0.0) -> float:
    """Coerce ``value`` to a finite, non-negative float."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or math.isinf(number) or number < 0:
        return default
    return number


class JobAnalyzer:
    """
    Derives a ``JobAnalysis`` from a ``JobRequest``.

    Malformed numeric input falls back to defensive defaults instead of
    failing. Historical durations are blended in when an analytics
    collaborator is available; if it cannot be reached the estimate falls
    back to a pure heuristic.
    """

    def __init__(self, analytics: Optional[HealthAnalytics] = None):
        """
        Initialize JobAnalyzer.

        Args:
            analytics: Source of similar historical jobs, optional
        """
        self.analytics = analytics
        self.logger = get_logger(__name__)
        set_log_context(self.logger, component="job_analyzer")

    async def analyze(self, request: JobRequest) -> JobAnalysis:
        """
        Analyze a job request.

        Args:
            request: Job request to analyze

        Returns:
            Immutable analysis of the request

        Raises:
            AnalysisError: If the request cannot be analyzed at all
        """
        job_id = getattr(request, "job_id", None)
        if not job_id:
            raise AnalysisError(job_id, "request has no job id")

        try:
            element_count = len(request.elements)
            content_duration = self.total_content_duration(request)
            width = _as_number(request.width)
            height = _as_number(request.height)
            output_pixels = width * height
            megapixels = output_pixels / (1024 * 1024)
            has_effects = any(element.effects for element in request.elements)
            multi_track = len({element.track for element in request.elements}) > 1

            estimated_duration = await self.estimate_duration(request)
            requirements = self.calculate_requirements(
                element_count, megapixels, output_pixels, has_effects, estimated_duration
            )
            complexity = self.classify_complexity(
                element_count, content_duration, output_pixels, has_effects, multi_track
            )
            strategy = self.select_strategy(complexity, estimated_duration, requirements)

        except AnalysisError:
            raise
        except Exception as e:
            self.logger.error("Job analysis failed", exc_info=True, extra={"job_id": job_id})
            raise AnalysisError(job_id, str(e)) from e

        analysis = JobAnalysis(
            job_id=job_id,
            estimated_duration=estimated_duration,
            resource_requirements=requirements,
            priority=request.priority,
            complexity=complexity,
            optimal_strategy=strategy,
            risk_factors=tuple(self._risk_factors(element_count, output_pixels, complexity)),
            optimization_hints=tuple(self._optimization_hints(requirements)),
            element_count=element_count,
            megapixels=megapixels,
            has_effects=has_effects,
            multi_track=multi_track,
        )

        self.logger.info("Job analyzed", extra={
            "job_id": job_id,
            "complexity": complexity.value,
            "strategy": strategy.value,
            "estimated_duration": estimated_duration,
            "cpu_cores": requirements.cpu_cores,
            "memory_gb": requirements.memory_gb
        })

        return analysis

    @staticmethod
    def total_content_duration(request: JobRequest) -> float:
        """Sum of element durations; elements without one count as 10s."""
        return sum(
            _as_number(element.duration, DEFAULT_ELEMENT_DURATION) or DEFAULT_ELEMENT_DURATION
            for element in request.elements
        )

    async def estimate_duration(self, request: JobRequest) -> float:
        """
        Estimate processing time in seconds.

        base = elements x 2s, scaled by sqrt(pixels / 1080p), x2.5 with
        effects, x(1 + log1000(frames + 1)); averaged with similar historical
        jobs when there are any; +20% margin; at least 5s.
        """
        element_count = len(request.elements)

        try:
            similar = await self._similar_durations(request)
        except Exception:
            self.logger.warning("Historical data unavailable, using heuristic estimate",
                                exc_info=True, extra={"job_id": request.job_id})
            return float(max(element_count * 3, 10))

        output_pixels = _as_number(request.width) * _as_number(request.height)
        total_frames = self.total_content_duration(request) * ASSUMED_FPS

        duration = element_count * 2.0
        duration *= math.sqrt(output_pixels / FULL_HD_PIXELS)
        if any(element.effects for element in request.elements):
            duration *= 2.5
        duration *= 1 + math.log(total_frames + 1) / math.log(1000)

        if similar:
            duration = (duration + sum(similar) / len(similar)) / 2

        return float(max(math.ceil(duration * SAFETY_MARGIN), MIN_ESTIMATED_DURATION))

    @staticmethod
    def calculate_requirements(
        element_count: int,
        megapixels: float,
        output_pixels: float,
        has_effects: bool,
        estimated_duration: float
    ) -> ResourceRequirements:
        """Resource requirements, non-decreasing in element count and megapixels."""
        cpu = float(max(2, math.ceil(element_count / 2)))
        memory = float(max(4, math.ceil(megapixels * 2 + element_count * 0.5)))
        storage = float(max(10, math.ceil(megapixels * 0.1 * element_count)))
        bandwidth = float(max(100, math.ceil(megapixels * 10)))

        if has_effects:
            cpu *= 1.5
            memory *= 1.8
            storage *= 1.3

        if estimated_duration > LONG_JOB_SECONDS:
            cpu *= 1.2
            memory *= 1.3

        gpu_required = has_effects or output_pixels >= UHD_PIXELS or element_count > 10

        return ResourceRequirements(
            cpu_cores=math.ceil(cpu),
            memory_gb=math.ceil(memory),
            storage_gb=math.ceil(storage),
            bandwidth_mbps=math.ceil(bandwidth),
            gpu_required=gpu_required,
            estimated_duration=estimated_duration,
        )

    @staticmethod
    def classify_complexity(
        element_count: int,
        content_duration: float,
        output_pixels: float,
        has_effects: bool,
        multi_track: bool
    ) -> JobComplexity:
        score = 0

        if element_count > 10:
            score += 2
        elif element_count > 5:
            score += 1

        if content_duration > 300:
            score += 2
        elif content_duration > 60:
            score += 1

        if output_pixels >= UHD_PIXELS:
            score += 2
        elif output_pixels >= FULL_HD_PIXELS:
            score += 1

        if has_effects:
            score += 2

        if multi_track:
            score += 1

        if score >= 6:
            return JobComplexity.ENTERPRISE
        if score >= 4:
            return JobComplexity.COMPLEX
        if score >= 2:
            return JobComplexity.MODERATE
        return JobComplexity.SIMPLE

    @staticmethod
    def select_strategy(
        complexity: JobComplexity,
        estimated_duration: float,
        requirements: ResourceRequirements
    ) -> ProcessingStrategy:
        if complexity == JobComplexity.SIMPLE and estimated_duration <= 30:
            return ProcessingStrategy.QUICK_SYNC
        if complexity == JobComplexity.ENTERPRISE or requirements.cpu_cores > 8:
            return ProcessingStrategy.DISTRIBUTED
        if requirements.cpu_cores > 4 or requirements.memory_gb > 16:
            return ProcessingStrategy.RESOURCE_INTENSIVE
        return ProcessingStrategy.BALANCED_ASYNC

    async def _similar_durations(self, request: JobRequest) -> List[float]:
        if self.analytics is None:
            return []
        similar = await self.analytics.find_similar_jobs(request)
        return [_as_number(job.get("duration")) for job in similar if job.get("duration") is not None]

    @staticmethod
    def _risk_factors(element_count: int, output_pixels: float, complexity: JobComplexity) -> Iterable[str]:
        risks = []
        if complexity == JobComplexity.ENTERPRISE:
            risks.append("High complexity job may require extended processing time")
        if element_count > 15:
            risks.append("Large number of elements may impact performance")
        if output_pixels >= UHD_PIXELS:
            risks.append("4K+ resolution requires significant resources")
        return risks

    @staticmethod
    def _optimization_hints(requirements: ResourceRequirements) -> Tuple[str, ...]:
        hints = []
        if requirements.cpu_cores > 8:
            hints.append("Consider distributed processing for CPU-intensive job")
        if requirements.gpu_required:
            hints.append("GPU acceleration recommended for this job")
        return tuple(hints)
