"""
LoadBalancerManager for the Video Job Orchestrator

Keeps the registry of processing service instances, their health and
rolling performance metrics, and selects an instance per job under an
adaptive strategy.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from ..core.exceptions import NoAvailableServicesError, ServiceNotFoundError
from ..models.job import JobAnalysis, JobComplexity, JobPriority
from ..models.service import (
    HealthStatus,
    JobOutcomeSample,
    LoadBalancingStrategy,
    ServiceInstance,
)
from ..utils.config import LoadBalancingConfig
from ..utils.logger import LoggerContext, get_logger, set_log_context
from . import event_bus as events
from .balancing_strategies import (
    AIDrivenStrategy,
    BalancingStrategy,
    HeuristicServiceScorer,
    LeastConnectionsStrategy,
    PerformanceBasedStrategy,
    RoundRobinStrategy,
    ServiceScorer,
    WeightedStrategy,
    estimate_utilization_delta,
)
from .health_probe import HealthProbe, HttpHealthProbe, StaticHealthProbe

# Above this many eligible instances least-connections is used
LEAST_CONNECTIONS_POOL_SIZE = 10
# Weight of the newest probe in the response-time moving average
RESPONSE_TIME_SMOOTHING = 0.2


class LoadBalancerManager:
    """
    Registry and selection layer for service instances.

    Provides capabilities for:
    - Service registration and deregistration, grouped by logical name
    - Periodic health checks and performance-metrics refresh
    - Adaptive strategy choice and instance selection per job
    - Optimistic load reservation on selection and release on completion

    Only this class mutates the registry; all mutations hold ``_lock``.
    """

    def __init__(self,
                 config: Optional[LoadBalancingConfig] = None,
                 health_probe: Optional[HealthProbe] = None,
                 scorer: Optional[ServiceScorer] = None,
                 event_bus: Optional[events.EventBus] = None,
                 performance_window: int = 100):
        """
        Initialize LoadBalancerManager.

        Args:
            config: Load balancing configuration
            health_probe: Liveness probe, chosen from the configuration when None
            scorer: Scoring function of the AI-driven strategy
            event_bus: Receives service lifecycle events
            performance_window: Job outcomes kept per instance for metrics
        """
        self.config = config or LoadBalancingConfig()
        self.health_probe = health_probe or self._default_probe()
        self.event_bus = event_bus
        self.performance_window = performance_window

        self.services: Dict[str, ServiceInstance] = {}
        self.service_groups: Dict[str, List[str]] = {}

        ai_scorer = scorer or (HeuristicServiceScorer() if self.config.ai_scoring_enabled else None)
        self._ai_strategy = AIDrivenStrategy(ai_scorer) if ai_scorer else None
        self._strategies: Dict[LoadBalancingStrategy, BalancingStrategy] = {
            LoadBalancingStrategy.ROUND_ROBIN: RoundRobinStrategy(),
            LoadBalancingStrategy.WEIGHTED: WeightedStrategy(),
            LoadBalancingStrategy.LEAST_CONNECTIONS: LeastConnectionsStrategy(),
            LoadBalancingStrategy.PERFORMANCE_BASED: PerformanceBasedStrategy(),
        }
        if self._ai_strategy:
            self._strategies[LoadBalancingStrategy.AI_DRIVEN] = self._ai_strategy

        self._selections: Dict[str, int] = {strategy.value: 0 for strategy in LoadBalancingStrategy}
        self._lock = asyncio.Lock()
        self._health_check_task: Optional[asyncio.Task] = None
        self._performance_task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()

        self.logger = get_logger(__name__)
        set_log_context(self.logger, component="load_balancer")

    async def start(self):
        """Run a first health check and start the background loops."""
        self.logger.info("Starting LoadBalancerManager", extra={
            "default_strategy": self.config.strategy.value,
            "registered_services": len(self.services)
        })
        self._shutdown_event.clear()
        await self.perform_health_checks()

        self._health_check_task = asyncio.create_task(self._health_monitor_loop())
        self._performance_task = asyncio.create_task(self._performance_refresh_loop())

    async def stop(self):
        """Stop background loops and close the health probe."""
        self.logger.info("Stopping LoadBalancerManager")
        self._shutdown_event.set()

        for task in (self._health_check_task, self._performance_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._health_check_task = None
        self._performance_task = None

        await self.health_probe.close()
        self.logger.info("LoadBalancerManager stopped")

    # Registry

    async def register_service(self, service: ServiceInstance) -> bool:
        """
        Register (or replace) a service instance.

        Args:
            service: Instance to register

        Returns:
            True if the instance was new, False if it replaced an existing one
        """
        with LoggerContext(self.logger, service_id=service.service_id):
            async with self._lock:
                is_new = service.service_id not in self.services
                if not is_new:
                    self._remove_from_group(service.service_id)
                self.services[service.service_id] = service
                self.service_groups.setdefault(service.name, []).append(service.service_id)

            self.logger.info("Service registered", extra={
                "service_name": service.name,
                "endpoint": service.endpoint,
                "max_concurrent_jobs": service.capacity.max_concurrent_jobs,
                "capabilities": service.capacity.capabilities,
                "replaced": not is_new
            })

        await self._publish(events.SERVICE_REGISTERED, {
            "service_id": service.service_id,
            "name": service.name
        })
        return is_new

    async def deregister_service(self, service_id: str) -> ServiceInstance:
        """
        Remove a service instance from the registry.

        Raises:
            ServiceNotFoundError: If the id is not registered
        """
        async with self._lock:
            service = self.services.pop(service_id, None)
            if service is None:
                raise ServiceNotFoundError(service_id)
            self._remove_from_group(service_id)

        self.logger.info("Service deregistered", extra={
            "service_id": service_id,
            "active_jobs": service.load.active_jobs
        })
        await self._publish(events.SERVICE_DEREGISTERED, {
            "service_id": service_id,
            "name": service.name
        })
        return service

    async def get_service(self, service_id: str) -> ServiceInstance:
        async with self._lock:
            service = self.services.get(service_id)
        if service is None:
            raise ServiceNotFoundError(service_id)
        return service

    async def get_all_services(self) -> List[ServiceInstance]:
        async with self._lock:
            return list(self.services.values())

    async def get_available_services(self) -> List[ServiceInstance]:
        """Healthy instances below the utilization limit."""
        async with self._lock:
            return self._eligible()

    # Selection

    def select_strategy(self, analysis: JobAnalysis, available_count: int) -> LoadBalancingStrategy:
        """
        Pick the strategy for one job.

        Critical jobs go performance-based, enterprise jobs AI-driven (or
        performance-based when no scorer is available), large pools
        least-connections, everything else the configured default.
        """
        if analysis.priority == JobPriority.CRITICAL:
            return LoadBalancingStrategy.PERFORMANCE_BASED

        if analysis.complexity == JobComplexity.ENTERPRISE:
            if self._ai_strategy and self._ai_strategy.is_available():
                return LoadBalancingStrategy.AI_DRIVEN
            return LoadBalancingStrategy.PERFORMANCE_BASED

        if available_count > LEAST_CONNECTIONS_POOL_SIZE:
            return LoadBalancingStrategy.LEAST_CONNECTIONS

        if self.config.strategy in self._strategies:
            return self.config.strategy
        return LoadBalancingStrategy.PERFORMANCE_BASED

    async def select_optimal_service(self, analysis: JobAnalysis) -> ServiceInstance:
        """
        Select an instance for a job and reserve capacity on it.

        Raises:
            NoAvailableServicesError: If no instance is eligible
        """
        async with self._lock:
            available = self._eligible()
            if not available:
                raise NoAvailableServicesError(
                    f"No healthy service below {self.config.utilization_limit:.0%} utilization",
                    job_id=analysis.job_id
                )

            strategy = self.select_strategy(analysis, len(available))
            service = self._strategies[strategy].select(available, analysis)
            self._reserve(service, analysis)
            self._selections[strategy.value] += 1

        self.logger.info("Service selected", extra={
            "job_id": analysis.job_id,
            "service_id": service.service_id,
            "strategy": strategy.value,
            "candidates": len(available),
            "active_jobs": service.load.active_jobs
        })
        return service

    async def release_service(
        self,
        service_id: str,
        analysis: JobAnalysis,
        success: bool,
        duration_seconds: float
    ) -> None:
        """Undo a reservation once the job has finished and record its outcome."""
        async with self._lock:
            service = self.services.get(service_id)
            if service is None:
                self.logger.warning("Release for unknown service", extra={
                    "service_id": service_id,
                    "job_id": analysis.job_id
                })
                return

            service.load.active_jobs = max(0, service.load.active_jobs - 1)
            delta = estimate_utilization_delta(analysis)
            utilization = service.load.resource_utilization
            utilization.cpu = max(0.0, utilization.cpu - delta.cpu)
            utilization.memory = max(0.0, utilization.memory - delta.memory)
            utilization.storage = max(0.0, utilization.storage - delta.storage)
            utilization.network = max(0.0, utilization.network - delta.network)

            samples = service.performance.samples
            samples.append(JobOutcomeSample(success=success, duration_ms=duration_seconds * 1000))
            if len(samples) > self.performance_window:
                del samples[:len(samples) - self.performance_window]

    def _reserve(self, service: ServiceInstance, analysis: JobAnalysis):
        service.load.active_jobs += 1
        service.load.queued_jobs = max(0, service.load.queued_jobs - 1)

        delta = estimate_utilization_delta(analysis)
        utilization = service.load.resource_utilization
        utilization.cpu = min(1.0, utilization.cpu + delta.cpu)
        utilization.memory = min(1.0, utilization.memory + delta.memory)
        utilization.storage = min(1.0, utilization.storage + delta.storage)
        utilization.network = min(1.0, utilization.network + delta.network)

    def _eligible(self) -> List[ServiceInstance]:
        return [s for s in self.services.values() if s.is_eligible(self.config.utilization_limit)]

    def _remove_from_group(self, service_id: str):
        for name, members in list(self.service_groups.items()):
            if service_id in members:
                members.remove(service_id)
            if not members:
                del self.service_groups[name]

    # Health and performance

    async def perform_health_checks(self) -> Dict[str, HealthStatus]:
        """Probe every instance and apply the results."""
        async with self._lock:
            snapshot = list(self.services.values())

        results = await asyncio.gather(
            *(self.health_probe.check(service) for service in snapshot),
            return_exceptions=True
        )

        statuses: Dict[str, HealthStatus] = {}
        transitions = []
        now = datetime.now(timezone.utc)
        async with self._lock:
            for service, result in zip(snapshot, results):
                if service.service_id not in self.services:
                    continue

                if isinstance(result, BaseException):
                    self.logger.error("Health probe raised", exc_info=result, extra={
                        "service_id": service.service_id
                    })
                    status, response_time = HealthStatus.UNHEALTHY, service.load.response_time_ms
                else:
                    status, response_time = result.status, result.response_time_ms

                previous = service.health_status
                service.health_status = status
                service.last_health_check = now
                service.load.response_time_ms = response_time

                profile = service.performance
                profile.health_checks_total += 1
                if status == HealthStatus.HEALTHY:
                    profile.health_checks_passed += 1
                    profile.metrics.average_response_time_ms = (
                        (1 - RESPONSE_TIME_SMOOTHING) * profile.metrics.average_response_time_ms
                        + RESPONSE_TIME_SMOOTHING * response_time
                    )

                statuses[service.service_id] = status
                if previous != status:
                    transitions.append((service, previous, status))

        for service, previous, status in transitions:
            self.logger.warning("Service health changed", extra={
                "service_id": service.service_id,
                "previous_status": previous.value,
                "status": status.value
            })
            payload = {
                "service_id": service.service_id,
                "name": service.name,
                "previous_status": previous.value,
                "status": status.value
            }
            await self._publish(events.SERVICE_HEALTH_CHANGED, payload)
            if status == HealthStatus.UNHEALTHY:
                await self._publish(events.SERVICE_UNAVAILABLE, payload)

        return statuses

    async def refresh_performance_metrics(self):
        """Recompute each instance's metrics from its outcome window and health history."""
        now = datetime.now(timezone.utc)
        hour_ago = now - timedelta(hours=1)

        async with self._lock:
            for service in self.services.values():
                profile = service.performance
                metrics = profile.metrics

                if profile.samples:
                    successes = sum(1 for sample in profile.samples if sample.success)
                    metrics.success_rate = successes / len(profile.samples) * 100
                    metrics.error_rate = 100 - metrics.success_rate
                    metrics.throughput = float(sum(1 for s in profile.samples if s.finished_at >= hour_ago))

                if profile.health_checks_total:
                    metrics.availability = profile.health_checks_passed / profile.health_checks_total * 100

                profile.last_updated = now

        self.logger.debug("Performance metrics refreshed", extra={"services": len(self.services)})

    async def get_statistics(self) -> Dict[str, Any]:
        async with self._lock:
            services = list(self.services.values())
            healthy = sum(1 for s in services if s.is_healthy)
            eligible = len(self._eligible())
            return {
                "total_services": len(services),
                "healthy_services": healthy,
                "available_services": eligible,
                "service_groups": {name: list(ids) for name, ids in self.service_groups.items()},
                "active_jobs": sum(s.load.active_jobs for s in services),
                "selections_by_strategy": dict(self._selections),
                "default_strategy": self.config.strategy.value,
            }

    async def _health_monitor_loop(self):
        while not self._shutdown_event.is_set():
            try:
                await asyncio.sleep(self.config.health_check_interval)
                await self.perform_health_checks()

            except asyncio.CancelledError:
                break
            except Exception:
                self.logger.error("Error in health monitor loop", exc_info=True)

    async def _performance_refresh_loop(self):
        while not self._shutdown_event.is_set():
            try:
                await asyncio.sleep(self.config.performance_refresh_interval)
                await self.refresh_performance_metrics()

            except asyncio.CancelledError:
                break
            except Exception:
                self.logger.error("Error in performance refresh loop", exc_info=True)

    def _default_probe(self) -> HealthProbe:
        if self.config.health_probe == "static":
            return StaticHealthProbe()
        return HttpHealthProbe(path=self.config.health_check_path, timeout=self.config.health_check_timeout)

    async def _publish(self, event_name: str, payload: Dict[str, Any]):
        if self.event_bus:
            await self.event_bus.publish(event_name, payload)
