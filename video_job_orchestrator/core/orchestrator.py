"""
Main VideoJobOrchestrator class that coordinates all services

Provides the primary interface for video job submission: analyzes each
request, decides between inline and queued processing, drives the workflow
engine and load balancer, guards backends with circuit breakers and owns
the priority queue of deferred jobs.
"""

import asyncio
import signal
import time
import uuid
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from ..models.job import JobAnalysis, JobComplexity, JobRequest
from ..models.orchestration import (
    OrchestrationContext,
    OrchestrationResult,
    OrchestrationState,
    OrchestrationStatus,
    ProcessingDecision,
    ProcessingMode,
    QueuedJob,
)
from ..models.service import HealthStatus
from ..models.workflow import WorkflowResult, WorkflowState
from ..services import event_bus as events
from ..services.contracts import HealthAnalytics, ResourceManager
from ..services.event_bus import EventBus
from ..services.fault_tolerance import (
    JOB_CATEGORIES,
    BackendCategory,
    CircuitBreakerConfig,
    FaultToleranceService,
)
from ..services.job_analyzer import JobAnalyzer
from ..services.load_balancer import LoadBalancerManager
from ..services.monitoring_service import MonitoringService
from ..services.queue_manager import QueueManager
from ..services.resource_manager import LocalResourceManager
from ..services.workflow_engine import WorkflowEngine
from ..utils.config import ConfigurationManager
from ..utils.logger import LoggerContext, get_logger, set_log_context
from .exceptions import (
    AnalysisError,
    AsyncSetupError,
    CircuitOpenError,
    ErrorRegistry,
    ImmediateProcessingError,
    InitializationError,
    OrchestratorError,
    VideoOrchestratorError,
    WorkflowError,
    WorkflowNotFoundError,
)

FINISHED_HISTORY_LIMIT = 1000
TERMINAL_STATES = (OrchestrationState.COMPLETED, OrchestrationState.FAILED, OrchestrationState.CANCELLED)


class VideoJobOrchestrator:
    """
    Main orchestrator class that coordinates all services.

    Provides a unified interface for:
    - Job analysis and immediate-vs-queued routing
    - Inline processing under a hard timeout
    - Queued processing drained by priority
    - Category-level circuit breaking before resources are committed
    - Cancellation, status lookup and system status
    - Background health, optimization, analytics and cleanup loops
    - Graceful shutdown on SIGTERM/SIGINT

    Every collaborator is injected; missing ones are built from the
    configuration with the local reference implementations.
    """

    def __init__(
        self,
        config_manager: Optional[ConfigurationManager] = None,
        resource_manager: Optional[ResourceManager] = None,
        analytics: Optional[HealthAnalytics] = None,
        load_balancer: Optional[LoadBalancerManager] = None,
        workflow_engine: Optional[WorkflowEngine] = None,
        analyzer: Optional[JobAnalyzer] = None,
        fault_tolerance: Optional[FaultToleranceService] = None,
        queue_manager: Optional[QueueManager] = None,
        event_bus: Optional[EventBus] = None
    ):
        """
        Initialize the VideoJobOrchestrator.

        Args:
            config_manager: Validated configuration holder
            resource_manager: Capacity allocation collaborator
            analytics: Health roll-up and job history collaborator
            load_balancer: Service registry and selection
            workflow_engine: Workflow builder and executor
            analyzer: Job analyzer
            fault_tolerance: Circuit breakers per backend category
            queue_manager: Priority queue of deferred jobs
            event_bus: Lifecycle event fan-out
        """
        self.config_manager = config_manager or ConfigurationManager()
        config = self.config_manager.get_config()
        self.settings = config.orchestrator

        self.event_bus = event_bus or EventBus()
        self.resource_manager = resource_manager or LocalResourceManager()
        self.analytics = analytics or MonitoringService()
        self.analyzer = analyzer or JobAnalyzer(self.analytics)
        self.load_balancer = load_balancer or LoadBalancerManager(config.load_balancing, event_bus=self.event_bus)
        self.workflow_engine = workflow_engine or WorkflowEngine(config, event_bus=self.event_bus)
        self.fault_tolerance = fault_tolerance or FaultToleranceService(
            CircuitBreakerConfig(
                failure_threshold=config.circuit_breaker.failure_threshold,
                recovery_timeout=config.circuit_breaker.recovery_timeout,
            ),
            event_bus=self.event_bus,
        )
        self.queue_manager = queue_manager or QueueManager()
        self.error_registry = ErrorRegistry()

        # State tracking
        self.active_orchestrations: Dict[str, OrchestrationContext] = {}
        self.finished_orchestrations: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._job_tasks: Dict[str, asyncio.Task] = {}
        self._background_tasks: List[asyncio.Task] = []
        self._shutdown_task: Optional[asyncio.Task] = None
        self._is_running = False
        self._accepting_jobs = False
        self._shutdown_event = asyncio.Event()
        self._stopped_event = asyncio.Event()

        for event_name in (events.SERVICE_REGISTERED, events.SERVICE_DEREGISTERED, events.SERVICE_HEALTH_CHANGED):
            self.event_bus.subscribe(event_name, self._on_service_change)

        # Logger
        self.logger = get_logger(__name__)
        set_log_context(self.logger, component="orchestrator")

    @property
    def is_running(self) -> bool:
        return self._is_running

    async def start(self):
        """
        Start all components and the background loops.

        Raises:
            InitializationError: If any component fails to start
        """
        self.logger.info("Starting VideoJobOrchestrator", extra={
            "load_balancing_strategy": self.load_balancer.config.strategy.value,
            "templates": len(self.workflow_engine.catalog)
        })

        startup = (
            ("resource_manager", self.resource_manager.initialize),
            ("analytics", self.analytics.start),
            ("workflow_engine", self.workflow_engine.initialize),
            ("load_balancer", self.load_balancer.start),
        )
        for component, start in startup:
            try:
                await start()
            except Exception as e:
                self.logger.error("Failed to start component", exc_info=True, extra={"failed_component": component})
                await self._stop_components()
                raise InitializationError(component, str(e)) from e

        self._shutdown_event.clear()
        self._stopped_event.clear()
        self._is_running = True
        self._accepting_jobs = True
        await self._report_component_health()

        self._background_tasks = [
            asyncio.create_task(self._run_periodically("queue", self.settings.queue_poll_interval, self.process_queue)),
            asyncio.create_task(self._run_periodically(
                "health", self.settings.health_check_interval, self._report_component_health)),
            asyncio.create_task(self._run_periodically(
                "optimization", self.settings.optimization_interval, self.resource_manager.optimize_resource_usage)),
            asyncio.create_task(self._run_periodically(
                "analytics", self.settings.analytics_interval, self.analytics.generate_system_analytics)),
            asyncio.create_task(self._run_periodically(
                "cleanup", self.settings.cleanup_interval, self._cleanup)),
        ]

        await self._publish(events.ORCHESTRATOR_INITIALIZED, {"started_at": datetime.now(timezone.utc).isoformat()})
        self.logger.info("VideoJobOrchestrator started successfully")

    def install_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        """Trigger graceful shutdown on SIGTERM and SIGINT."""
        loop = loop or asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._handle_signal, sig)
            except (NotImplementedError, RuntimeError):
                self.logger.warning("Signal handlers not supported on this platform", extra={"signal": sig.name})
                return

    def _handle_signal(self, sig: signal.Signals):
        self.logger.info("Shutdown signal received", extra={"signal": sig.name})
        if self._shutdown_task is None:
            self._shutdown_task = asyncio.ensure_future(self.shutdown())

    async def wait_closed(self):
        """Block until shutdown has completed."""
        await self._stopped_event.wait()

    # Job Management Interface

    async def orchestrate_video_job(self, request: JobRequest) -> OrchestrationResult:
        """
        Admit, route and process (or queue) a video job.

        Args:
            request: Job request to orchestrate

        Returns:
            Immediate result, queued acknowledgment, or a degraded result when
            a backend circuit is open

        Raises:
            OrchestratorError: If the orchestrator is not accepting jobs
            AnalysisError: If the request cannot be analyzed
            ImmediateProcessingError: If inline processing fails or times out
            AsyncSetupError: If the job cannot be queued
        """
        if not self._accepting_jobs:
            raise OrchestratorError("Orchestrator is not accepting jobs")

        orchestration_id = f"orch_{uuid.uuid4().hex[:16]}"
        with LoggerContext(self.logger, job_id=request.job_id, orchestration_id=orchestration_id):
            self.logger.info("Job received", extra={
                "elements": request.element_count,
                "priority": request.priority.value
            })
            await self._publish(events.JOB_RECEIVED, {
                "job_id": request.job_id,
                "orchestration_id": orchestration_id
            })

            try:
                analysis = await self.analyze(request)
            except AnalysisError as e:
                self.error_registry.record_error(e)
                await self._publish(events.ORCHESTRATION_FAILED, {
                    "job_id": request.job_id,
                    "orchestration_id": orchestration_id,
                    "error": e.to_dict()
                })
                raise

            try:
                admitted = await self.fault_tolerance.admit(JOB_CATEGORIES)
            except CircuitOpenError as e:
                self.error_registry.record_error(e)
                self.logger.warning("Job degraded by open circuit", extra={
                    "category": e.category,
                    "retry_after_seconds": e.retry_after_seconds
                })
                return OrchestrationResult(
                    status=OrchestrationStatus.DEGRADED,
                    job_id=request.job_id,
                    orchestration_id=orchestration_id,
                    message=e.message,
                )

            context = OrchestrationContext(
                orchestration_id=orchestration_id,
                job_request=request,
                analysis=analysis,
                gated_categories=[category.value for category in admitted],
            )
            self.active_orchestrations[orchestration_id] = context

            started = time.perf_counter()
            try:
                decision = await self.make_processing_decision(analysis)
                self.logger.info("Processing decision made", extra={
                    "mode": decision.mode.value,
                    "reasons": decision.reasons,
                    "health_score": decision.health_score
                })
                if decision.immediate:
                    return await self._process_immediate(context)
                return await self._process_async(context)

            except asyncio.CancelledError:
                await self._cancel_orchestration_context(context, time.perf_counter() - started)
                raise
            except Exception as e:
                await self._fail_orchestration(context, e, time.perf_counter() - started)
                raise

    async def analyze(self, request: JobRequest) -> JobAnalysis:
        return await self.analyzer.analyze(request)

    async def make_processing_decision(self, analysis: JobAnalysis) -> ProcessingDecision:
        """
        Decide between immediate and queued processing.

        Immediate requires a short estimated duration, low combined system
        load, a healthy system, non-enterprise complexity and at least one
        service with headroom. Any failed condition queues the job.
        """
        settings = self.settings
        load = await self.resource_manager.get_current_system_load()
        health = await self.analytics.get_overall_health()
        health_score = 1.0 if health == HealthStatus.HEALTHY else 0.5
        services = await self.load_balancer.get_all_services()

        reasons = []
        if analysis.estimated_duration > settings.immediate_max_duration:
            reasons.append(f"estimated duration {analysis.estimated_duration:g}s exceeds "
                           f"{settings.immediate_max_duration:g}s")
        if load.combined >= settings.immediate_load_ceiling:
            reasons.append(f"combined system load {load.combined:.2f} too high")
        if health_score <= settings.immediate_health_floor:
            reasons.append(f"system health is {health.value}")
        if analysis.complexity == JobComplexity.ENTERPRISE:
            reasons.append("enterprise complexity")
        if not any(s.load.active_jobs < s.capacity.max_concurrent_jobs * settings.service_headroom for s in services):
            reasons.append("no service with spare capacity")

        return ProcessingDecision(
            mode=ProcessingMode.QUEUED if reasons else ProcessingMode.IMMEDIATE,
            reasons=reasons,
            system_load=load.to_dict(),
            health_score=health_score,
        )

    async def _process_immediate(self, context: OrchestrationContext) -> OrchestrationResult:
        request, analysis = context.job_request, context.analysis
        timeout = self.settings.immediate_timeout
        started = time.perf_counter()
        context.mark(OrchestrationState.PROCESSING)

        try:
            context.resources = await self.resource_manager.allocate_resources_immediate(analysis)
            service = await self.load_balancer.select_optimal_service(analysis)
            context.service_id = service.service_id

            execution = await self.workflow_engine.create_immediate_workflow(request, context.resources)
            context.workflow_id = execution.workflow_id

            workflow_result = await asyncio.wait_for(
                self.workflow_engine.execute_workflow(execution.workflow_id, service.service_id),
                timeout=timeout
            )
        except asyncio.TimeoutError as e:
            raise ImmediateProcessingError(
                request.job_id, context.orchestration_id,
                f"timed out after {timeout:g} seconds", context.workflow_id
            ) from e
        except Exception as e:
            message = e.message if isinstance(e, VideoOrchestratorError) else str(e)
            raise ImmediateProcessingError(
                request.job_id, context.orchestration_id, message, context.workflow_id
            ) from e

        if workflow_result.state != WorkflowState.COMPLETED:
            raise ImmediateProcessingError(
                request.job_id, context.orchestration_id,
                f"workflow ended in state {workflow_result.state.value}", context.workflow_id
            )

        processing_time = time.perf_counter() - started
        await self._complete_orchestration(context, workflow_result, processing_time)

        return OrchestrationResult(
            status=OrchestrationStatus.IMMEDIATE,
            job_id=request.job_id,
            orchestration_id=context.orchestration_id,
            result_url=workflow_result.result_url,
            processing_time=processing_time,
            file_size=workflow_result.result.get("file_size"),
            workflow_id=context.workflow_id,
            resource_id=context.resources.resource_id,
        )

    async def _process_async(self, context: OrchestrationContext) -> OrchestrationResult:
        request, analysis = context.job_request, context.analysis

        try:
            context.resources = await self.resource_manager.allocate_resources_async(analysis)
            execution = await self.workflow_engine.create_async_workflow(request, context.resources)
            context.workflow_id = execution.workflow_id

            queue_size = await self.queue_manager.enqueue_job(QueuedJob(
                job_id=request.job_id,
                orchestration_id=context.orchestration_id,
                priority=analysis.priority,
                estimated_duration=analysis.estimated_duration,
            ))
        except Exception as e:
            message = e.message if isinstance(e, VideoOrchestratorError) else str(e)
            raise AsyncSetupError(request.job_id, context.orchestration_id, message) from e

        context.mark(OrchestrationState.QUEUED)
        position = await self.queue_manager.position_of(context.orchestration_id)
        estimated_completion = datetime.now(timezone.utc) + timedelta(
            seconds=queue_size * self.settings.average_queue_processing_time + analysis.estimated_duration
        )

        self.logger.info("Job queued", extra={
            "workflow_id": context.workflow_id,
            "queue_position": position,
            "queue_size": queue_size
        })
        await self._publish(events.JOB_QUEUED, {
            "job_id": request.job_id,
            "orchestration_id": context.orchestration_id,
            "workflow_id": context.workflow_id,
            "queue_position": position
        })

        return OrchestrationResult(
            status=OrchestrationStatus.QUEUED,
            job_id=request.job_id,
            orchestration_id=context.orchestration_id,
            estimated_completion=estimated_completion,
            workflow_id=context.workflow_id,
            resource_id=context.resources.resource_id,
            queue_position=position,
        )

    # Queue processing

    async def process_queue(self) -> Optional[str]:
        """
        Start the highest-priority queued job, if the system can take it.

        Returns:
            Orchestration id of the started job, or None
        """
        load = await self.resource_manager.get_current_system_load()
        if load.cpu > self.settings.overload_threshold or load.memory > self.settings.overload_threshold:
            self.logger.debug("Queue processing skipped, system overloaded", extra={"system_load": load.to_dict()})
            return None

        if not await self.load_balancer.get_available_services():
            return None

        queued = await self.queue_manager.dequeue_job()
        if queued is None:
            return None

        context = self.active_orchestrations.get(queued.orchestration_id)
        if context is None or context.state != OrchestrationState.QUEUED:
            self.logger.warning("Dequeued job has no queued orchestration", extra={
                "job_id": queued.job_id,
                "orchestration_id": queued.orchestration_id
            })
            return None

        context.mark(OrchestrationState.PROCESSING)
        task = asyncio.create_task(self._process_queued_job(context))
        self._job_tasks[context.orchestration_id] = task
        task.add_done_callback(lambda _, oid=context.orchestration_id: self._job_tasks.pop(oid, None))
        return context.orchestration_id

    async def _process_queued_job(self, context: OrchestrationContext):
        started = time.perf_counter()
        with LoggerContext(self.logger, job_id=context.job_request.job_id,
                           orchestration_id=context.orchestration_id):
            try:
                await self.resource_manager.activate_resources(context.resources.resource_id)
                service = await self.load_balancer.select_optimal_service(context.analysis)
                context.service_id = service.service_id

                workflow_result = await self.workflow_engine.execute_workflow(context.workflow_id, service.service_id)

            except asyncio.CancelledError:
                await self._cancel_orchestration_context(context, time.perf_counter() - started)
                raise
            except Exception as e:
                await self._fail_orchestration(context, e, time.perf_counter() - started)
                return

            await self._complete_orchestration(context, workflow_result, time.perf_counter() - started)

    # Outcomes

    async def _complete_orchestration(
        self,
        context: OrchestrationContext,
        workflow_result: WorkflowResult,
        processing_time: float
    ):
        await self._release(context, success=True, duration_seconds=processing_time)
        await self.fault_tolerance.record_success(self._take_gated_categories(context))
        await self._record_completion(context, {
            "success": True,
            "processing_time": processing_time,
            "result_url": workflow_result.result_url,
            "file_size": workflow_result.result.get("file_size"),
        })

        context.mark(OrchestrationState.COMPLETED)
        self._retire(context)

        self.logger.info("Job completed", extra={
            "workflow_id": context.workflow_id,
            "service_id": context.service_id,
            "processing_time": round(processing_time, 3)
        })
        await self._publish(events.JOB_COMPLETED, {
            "job_id": context.job_request.job_id,
            "orchestration_id": context.orchestration_id,
            "workflow_id": context.workflow_id,
            "result_url": workflow_result.result_url,
            "processing_time": processing_time
        })

    async def _fail_orchestration(self, context: OrchestrationContext, error: BaseException, duration: float):
        context.error = str(error)
        self.error_registry.record_error(error)
        self.logger.error("Orchestration failed", exc_info=error, extra={
            "workflow_id": context.workflow_id,
            "error_type": type(error).__name__
        })

        await self._release(context, success=False, duration_seconds=duration)
        await self._discard_workflow(context)
        category, severity = await self.fault_tolerance.record_failure(
            self._classification_target(error), self._take_gated_categories(context)
        )
        await self._record_completion(context, {
            "success": False,
            "processing_time": duration,
            "error": str(error),
        })

        context.mark(OrchestrationState.FAILED)
        self._retire(context)

        await self._publish(events.ORCHESTRATION_FAILED, {
            "job_id": context.job_request.job_id,
            "orchestration_id": context.orchestration_id,
            "workflow_id": context.workflow_id,
            "category": category.value,
            "severity": severity.value,
            "error": error.to_dict() if isinstance(error, VideoOrchestratorError) else {"message": str(error)}
        })

    async def _cancel_orchestration_context(self, context: OrchestrationContext, duration: float):
        await self._release(context, success=False, duration_seconds=duration)
        await self._discard_workflow(context)
        await self.fault_tolerance.release_admission(self._take_gated_categories(context))

        context.error = "cancelled"
        context.mark(OrchestrationState.CANCELLED)
        self._retire(context)
        self.logger.info("Orchestration cancelled", extra={"workflow_id": context.workflow_id})

    async def _release(self, context: OrchestrationContext, success: bool, duration_seconds: float):
        """Release the allocation and the service reservation, each exactly once."""
        if context.resources is not None and not context.resources_released:
            context.resources_released = True
            try:
                await self.resource_manager.release_resources(context.resources.resource_id)
            except Exception:
                self.logger.error("Failed to release resources", exc_info=True, extra={
                    "resource_id": context.resources.resource_id
                })

        if context.service_id is not None and not context.service_released:
            context.service_released = True
            await self.load_balancer.release_service(
                context.service_id, context.analysis, success, duration_seconds
            )

    async def _discard_workflow(self, context: OrchestrationContext):
        if not context.workflow_id:
            return
        try:
            await self.workflow_engine.cancel_workflow(context.workflow_id)
        except WorkflowNotFoundError:
            pass

    async def _record_completion(self, context: OrchestrationContext, result: Dict[str, Any]):
        try:
            await self.analytics.record_job_completion(context.job_request.job_id, context.analysis, result)
        except Exception:
            self.logger.error("Failed to record job completion", exc_info=True)

    @staticmethod
    def _take_gated_categories(context: OrchestrationContext) -> List[BackendCategory]:
        categories = [BackendCategory(value) for value in context.gated_categories]
        context.gated_categories = []
        return categories

    @staticmethod
    def _classification_target(error: BaseException) -> BaseException:
        """The workflow failure behind ``error`` if there is one, else ``error``."""
        current: Optional[BaseException] = error
        while current is not None:
            if isinstance(current, WorkflowError):
                return current
            current = current.__cause__
        return error

    def _retire(self, context: OrchestrationContext):
        self.active_orchestrations.pop(context.orchestration_id, None)
        self.finished_orchestrations[context.orchestration_id] = context.to_dict()
        while len(self.finished_orchestrations) > FINISHED_HISTORY_LIMIT:
            self.finished_orchestrations.popitem(last=False)

    # Lookup and cancellation

    async def cancel_orchestration(self, orchestration_id: str) -> bool:
        """
        Cancel a queued or running queued-path orchestration.

        Inline (immediate) orchestrations are bounded by their timeout and
        cannot be cancelled here.

        Returns:
            True if the orchestration was cancelled
        """
        context = self.active_orchestrations.get(orchestration_id)
        if context is None:
            return False

        if context.state == OrchestrationState.QUEUED:
            await self.queue_manager.remove_job(orchestration_id)
            await self._cancel_orchestration_context(context, 0.0)
            return True

        task = self._job_tasks.get(orchestration_id)
        if task is None:
            return False

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        return True

    async def get_orchestration_status(self, orchestration_id: str) -> Dict[str, Any]:
        """
        Status of an active or recently finished orchestration.

        Raises:
            OrchestratorError: If the orchestration id is unknown
        """
        context = self.active_orchestrations.get(orchestration_id)
        if context is None:
            finished = self.finished_orchestrations.get(orchestration_id)
            if finished is None:
                raise OrchestratorError("Orchestration not found", orchestration_id=orchestration_id)
            return dict(finished)

        status = context.to_dict()
        if context.state == OrchestrationState.QUEUED:
            status["queue_position"] = await self.queue_manager.position_of(orchestration_id)
        if context.workflow_id:
            try:
                workflow = self.workflow_engine.get_workflow(context.workflow_id)
                status["workflow_state"] = workflow.state.value
                status["completed_steps"] = workflow.metrics.completed_steps
            except WorkflowNotFoundError:
                pass
        return status

    async def wait_for_orchestration(
        self,
        orchestration_id: str,
        poll_interval: float = 0.5,
        timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        """Poll until the orchestration reaches a terminal state and return its status."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None
        terminal = {state.value for state in TERMINAL_STATES}
        while True:
            status = await self.get_orchestration_status(orchestration_id)
            if status["state"] in terminal:
                return status
            if deadline is not None and loop.time() >= deadline:
                raise OrchestratorError("Timed out waiting for orchestration", orchestration_id=orchestration_id)
            await asyncio.sleep(poll_interval)

    async def get_system_status(self) -> Dict[str, Any]:
        """Get overall system status."""
        by_state: Dict[str, int] = {}
        for context in self.active_orchestrations.values():
            by_state[context.state.value] = by_state.get(context.state.value, 0) + 1

        load = await self.resource_manager.get_current_system_load()
        health = await self.analytics.get_overall_health()

        return {
            "is_running": self._is_running,
            "accepting_jobs": self._accepting_jobs,
            "health": health.value,
            "active_orchestrations": len(self.active_orchestrations),
            "orchestrations_by_state": by_state,
            "system_load": load.to_dict(),
            "queue": await self.queue_manager.get_queue_statistics(),
            "load_balancer": await self.load_balancer.get_statistics(),
            "workflows": self.workflow_engine.get_statistics(),
            "circuit_breakers": await self.fault_tolerance.get_circuit_breaker_status(),
            "errors": self.error_registry.get_error_statistics(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    # Background loops

    async def _run_periodically(self, name: str, interval: float, action):
        while not self._shutdown_event.is_set():
            try:
                await asyncio.sleep(interval)
                await action()

            except asyncio.CancelledError:
                break
            except Exception:
                self.logger.error("Error in background loop", exc_info=True, extra={"loop": name})

    async def _report_component_health(self):
        stats = await self.load_balancer.get_statistics()
        if stats["total_services"] == 0:
            balancer_status = HealthStatus.DEGRADED
        elif stats["healthy_services"] == 0:
            balancer_status = HealthStatus.UNHEALTHY
        elif stats["healthy_services"] < stats["total_services"]:
            balancer_status = HealthStatus.DEGRADED
        else:
            balancer_status = HealthStatus.HEALTHY
        await self.analytics.report_component_health("load_balancer", balancer_status, stats)

        load = await self.resource_manager.get_current_system_load()
        resource_status = (
            HealthStatus.DEGRADED if max(load.cpu, load.memory) > self.settings.overload_threshold
            else HealthStatus.HEALTHY
        )
        await self.analytics.report_component_health("resource_manager", resource_status, load.to_dict())

        circuits = await self.fault_tolerance.get_circuit_breaker_status()
        open_circuits = [name for name, circuit in circuits.items() if circuit["state"] != "closed"]
        await self.analytics.report_component_health(
            "fault_tolerance",
            HealthStatus.DEGRADED if open_circuits else HealthStatus.HEALTHY,
            {"open_circuits": open_circuits}
        )

        await self.analytics.report_component_health(
            "orchestrator",
            HealthStatus.HEALTHY if self._accepting_jobs else HealthStatus.DEGRADED,
            {"active_orchestrations": len(self.active_orchestrations)}
        )

    async def _on_service_change(self, payload: Dict[str, Any]):
        if self._is_running:
            await self._report_component_health()

    async def _cleanup(self):
        removed = self.workflow_engine.cleanup_expired()
        if removed:
            self.logger.info("Expired workflows removed", extra={"removed": removed})

    # Shutdown

    async def shutdown(self, timeout: Optional[float] = None):
        """
        Stop admitting jobs, drain active work and stop all components.

        Args:
            timeout: Seconds to wait for running orchestrations, from the
                configuration when None
        """
        if not self._is_running:
            return

        timeout = self.settings.shutdown_timeout if timeout is None else timeout
        self.logger.info("Shutting down VideoJobOrchestrator", extra={
            "active_orchestrations": len(self.active_orchestrations),
            "timeout": timeout
        })
        self._accepting_jobs = False
        self._shutdown_event.set()

        for task in self._background_tasks:
            task.cancel()
        await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks = []

        await self._drain(timeout)

        for queued in await self.queue_manager.drain():
            context = self.active_orchestrations.get(queued.orchestration_id)
            if context is not None:
                await self._cancel_orchestration_context(context, 0.0)

        await self._stop_components()
        self._is_running = False
        self._stopped_event.set()
        self.logger.info("VideoJobOrchestrator stopped")

    async def _drain(self, timeout: float):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline and any(
            context.state == OrchestrationState.PROCESSING for context in self.active_orchestrations.values()
        ):
            await asyncio.sleep(0.1)

        remaining = list(self._job_tasks.values())
        if remaining:
            self.logger.warning("Cancelling orchestrations still running after drain", extra={
                "remaining": len(remaining)
            })
            for task in remaining:
                task.cancel()
            await asyncio.gather(*remaining, return_exceptions=True)

    async def _stop_components(self):
        results = await asyncio.gather(
            self.load_balancer.stop(),
            self.workflow_engine.shutdown(),
            self.analytics.stop(),
            return_exceptions=True
        )
        for result in results:
            if isinstance(result, Exception):
                self.logger.error("Error stopping component", exc_info=result)

        try:
            await self.resource_manager.shutdown()
        except Exception:
            self.logger.error("Error stopping resource manager", exc_info=True)

    async def _publish(self, event_name: str, payload: Dict[str, Any]):
        await self.event_bus.publish(event_name, payload)

    # Context manager support

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()
