"""
MonitoringService for the Video Job Orchestrator

Local Health/Analytics collaborator: rolls component health reports up into
an overall status, keeps a bounded history of completed jobs for duration
estimates and produces periodic analytics summaries.
"""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Deque, Dict, List, Optional

from ..models.job import JobAnalysis, JobRequest
from ..models.service import HealthStatus
from ..utils.logger import get_logger, set_log_context
from .contracts import HealthAnalytics


@dataclass
class ComponentHealth:
    """Latest health report of one component."""
    component: str
    status: HealthStatus
    details: Dict[str, Any] = field(default_factory=dict)
    reported_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class JobCompletionRecord:
    """A finished job kept for similarity lookups."""
    job_id: str
    element_count: int
    megapixels: float
    has_effects: bool
    complexity: str
    duration: float
    success: bool
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class MonitoringService(HealthAnalytics):
    """
    In-process health roll-up and job history.

    Provides capabilities for:
    - Overall health from per-component reports
    - Similar-job lookup for duration estimates
    - Completion history with retention-based cleanup
    - Periodic analytics summaries
    """

    # Fraction of unhealthy components that makes the system unhealthy
    UNHEALTHY_RATIO = 0.3
    # Fraction of degraded components that makes the system degraded
    DEGRADED_RATIO = 0.2

    def __init__(self,
                 max_history: int = 1000,
                 retention_hours: float = 24.0,
                 cleanup_interval: float = 3600.0,
                 similar_jobs_limit: int = 10):
        """
        Initialize MonitoringService.

        Args:
            max_history: Completion records kept in memory
            retention_hours: Age after which records are discarded
            cleanup_interval: Seconds between cleanup passes
            similar_jobs_limit: Maximum records returned by ``find_similar_jobs``
        """
        self.max_history = max_history
        self.retention_hours = retention_hours
        self.cleanup_interval = cleanup_interval
        self.similar_jobs_limit = similar_jobs_limit

        self.components: Dict[str, ComponentHealth] = {}
        self.history: Deque[JobCompletionRecord] = deque(maxlen=max_history)
        self._last_status = HealthStatus.UNKNOWN

        self._cleanup_task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()

        self.logger = get_logger(__name__)
        set_log_context(self.logger, component="monitoring_service")

    async def start(self):
        """Start the monitoring service."""
        self.logger.info("Starting MonitoringService")
        self._shutdown_event.clear()
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop(self):
        """Stop the monitoring service."""
        self.logger.info("Stopping MonitoringService")
        self._shutdown_event.set()

        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        self.logger.info("MonitoringService stopped")

    async def report_component_health(
        self,
        component: str,
        status: HealthStatus,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        self.components[component] = ComponentHealth(component, status, details or {})

    async def get_overall_health(self) -> HealthStatus:
        """
        Roll component reports up into one status.

        Returns:
            UNKNOWN without reports, UNHEALTHY when more than 30% of components
            are unhealthy, DEGRADED when any is unhealthy or more than 20% are
            degraded, otherwise HEALTHY
        """
        if not self.components:
            status = HealthStatus.UNKNOWN
        else:
            total = len(self.components)
            unhealthy = sum(1 for c in self.components.values() if c.status == HealthStatus.UNHEALTHY)
            degraded = sum(1 for c in self.components.values() if c.status == HealthStatus.DEGRADED)

            if unhealthy / total > self.UNHEALTHY_RATIO:
                status = HealthStatus.UNHEALTHY
            elif unhealthy > 0 or degraded / total > self.DEGRADED_RATIO:
                status = HealthStatus.DEGRADED
            else:
                status = HealthStatus.HEALTHY

        if status != self._last_status:
            self.logger.info("Overall health changed", extra={
                "previous_status": self._last_status.value,
                "status": status.value
            })
            self._last_status = status
        return status

    async def find_similar_jobs(self, request: JobRequest) -> List[Dict[str, Any]]:
        """
        Successful past jobs comparable to ``request``.

        Jobs are similar when their element counts are within 20% (at least
        one element), their output sizes within a factor of 1.5 and they agree
        on the use of effects.
        """
        element_count = request.element_count
        megapixels = request.width * request.height / (1024 * 1024)
        has_effects = any(element.effects for element in request.elements)
        count_tolerance = max(1, int(element_count * 0.2))

        similar = []
        for record in reversed(self.history):
            if not record.success or record.has_effects != has_effects:
                continue
            if abs(record.element_count - element_count) > count_tolerance:
                continue
            if megapixels > 0 and record.megapixels > 0:
                ratio = record.megapixels / megapixels
                if ratio > 1.5 or ratio < 1 / 1.5:
                    continue
            similar.append({"job_id": record.job_id, "duration": record.duration})
            if len(similar) >= self.similar_jobs_limit:
                break

        return similar

    async def record_job_completion(
        self,
        job_id: str,
        analysis: JobAnalysis,
        result: Dict[str, Any]
    ) -> None:
        record = JobCompletionRecord(
            job_id=job_id,
            element_count=analysis.element_count,
            megapixels=analysis.megapixels,
            has_effects=analysis.has_effects,
            complexity=analysis.complexity.value,
            duration=float(result.get("processing_time", analysis.estimated_duration)),
            success=bool(result.get("success", True)),
        )
        self.history.append(record)

        self.logger.debug("Job completion recorded", extra={
            "job_id": job_id,
            "duration": record.duration,
            "success": record.success
        })

    async def generate_system_analytics(self) -> Dict[str, Any]:
        records = list(self.history)
        by_complexity: Dict[str, List[float]] = {}
        for record in records:
            if record.success:
                by_complexity.setdefault(record.complexity, []).append(record.duration)

        successes = sum(1 for r in records if r.success)
        analytics = {
            "total_jobs": len(records),
            "success_rate": (successes / len(records) * 100) if records else 100.0,
            "average_duration_by_complexity": {
                complexity: sum(durations) / len(durations)
                for complexity, durations in by_complexity.items()
            },
            "overall_health": (await self.get_overall_health()).value,
            "components": {
                name: health.status.value for name, health in self.components.items()
            },
        }

        self.logger.info("System analytics generated", extra=analytics)
        return analytics

    def cleanup_history(self) -> int:
        """Drop records older than the retention window. Returns the count removed."""
        cutoff = datetime.now(timezone.utc) - timedelta(hours=self.retention_hours)
        removed = 0
        while self.history and self.history[0].recorded_at < cutoff:
            self.history.popleft()
            removed += 1
        return removed

    async def _cleanup_loop(self):
        while not self._shutdown_event.is_set():
            try:
                await asyncio.sleep(self.cleanup_interval)
                removed = self.cleanup_history()
                if removed:
                    self.logger.info("Expired completion records removed", extra={"removed": removed})

            except asyncio.CancelledError:
                break
            except Exception:
                self.logger.error("Error in monitoring cleanup loop", exc_info=True)
