import pytest

from video_job_orchestrator.core.exceptions import (
    AnalysisError,
    AsyncSetupError,
    ImmediateProcessingError,
    InitializationError,
    OrchestratorError,
    QueueError,
)
from video_job_orchestrator.core.orchestrator import VideoJobOrchestrator
from video_job_orchestrator.models.job import JobComplexity, JobRequest
from video_job_orchestrator.models.orchestration import OrchestrationStatus, ProcessingMode
from video_job_orchestrator.models.resources import SystemLoad
from video_job_orchestrator.models.workflow import StepType, WorkflowState
from video_job_orchestrator.services import event_bus as events
from video_job_orchestrator.services.fault_tolerance import BackendCategory
from video_job_orchestrator.services.health_probe import StaticHealthProbe
from video_job_orchestrator.services.load_balancer import LoadBalancerManager
from video_job_orchestrator.services.queue_manager import QueueManager
from video_job_orchestrator.services.resource_manager import LocalResourceManager
from video_job_orchestrator.services.workflow_engine import WorkflowEngine
from video_job_orchestrator.utils.config import ConfigurationManager, OrchestratorConfig, OrchestratorSettings

from factories import (
    RecordingSleep,
    failing_executor,
    make_enterprise_request,
    make_request,
    make_service,
    recording_executors,
    slow_executor,
)


class CountingResourceManager(LocalResourceManager):
    """Local pool that counts successful releases."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.releases = []

    async def release_resources(self, resource_id):
        released = await super().release_resources(resource_id)
        if released:
            self.releases.append(resource_id)
        return released


class BrokenResourceManager(LocalResourceManager):
    async def initialize(self):
        raise RuntimeError("pool unavailable")


class SaturatedResourceManager(CountingResourceManager):
    """Pool reporting a fixed system load."""

    def __init__(self, load, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.load = load

    async def get_current_system_load(self):
        return self.load


def build(event_bus, executors=None, resource_manager=None, config=None, queue_manager=None):
    config = config or OrchestratorConfig()
    calls = []
    engine = WorkflowEngine(
        config,
        executors=executors if executors is not None else recording_executors(calls),
        event_bus=event_bus,
        sleep=RecordingSleep(),
    )
    return VideoJobOrchestrator(
        config_manager=ConfigurationManager(config),
        resource_manager=resource_manager or CountingResourceManager(64, 256, 10000),
        load_balancer=LoadBalancerManager(config.load_balancing, health_probe=StaticHealthProbe(),
                                          event_bus=event_bus),
        workflow_engine=engine,
        queue_manager=queue_manager,
        event_bus=event_bus,
    )


async def started(orchestrator):
    await orchestrator.load_balancer.register_service(make_service("svc-basic"))
    await orchestrator.load_balancer.register_service(make_service(
        "svc-cluster",
        capabilities=["ffmpeg", "gpu_acceleration", "distributed_processing", "enterprise"],
        supported_complexity=list(JobComplexity),
    ))
    await orchestrator.start()
    return orchestrator


@pytest.mark.asyncio
async def test_simple_job_is_processed_immediately(event_bus, published):
    orchestrator = await started(build(event_bus))
    try:
        result = await orchestrator.orchestrate_video_job(make_request())

        assert result.status == OrchestrationStatus.IMMEDIATE
        assert result.result_url == "https://bucket/result.mp4"
        assert result.file_size == 1024
        assert orchestrator.active_orchestrations == {}
        status = await orchestrator.get_orchestration_status(result.orchestration_id)
        assert status["state"] == "completed"
        assert status["resources_released"] is True
        assert orchestrator.resource_manager.releases == [result.resource_id]
        names = [name for name, _ in published]
        assert events.JOB_RECEIVED in names
        assert events.WORKFLOW_COMPLETED in names
        assert names.index(events.JOB_RECEIVED) < names.index(events.JOB_COMPLETED)
    finally:
        await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_immediate_failure_releases_once_and_counts_against_processing(event_bus, published):
    calls = []
    executors = recording_executors(calls)
    executors[StepType.VIDEO_PROCESSING] = failing_executor(StepType.VIDEO_PROCESSING, calls)
    orchestrator = await started(build(event_bus, executors=executors))
    try:
        with pytest.raises(ImmediateProcessingError) as excinfo:
            await orchestrator.orchestrate_video_job(make_request())

        assert len(orchestrator.resource_manager.releases) == 1
        circuits = await orchestrator.fault_tolerance.get_circuit_breaker_status()
        assert circuits["processing"]["failure_count"] == 1
        assert circuits["storage"]["failure_count"] == 0
        status = await orchestrator.get_orchestration_status(excinfo.value.orchestration_id)
        assert status["state"] == "failed"
        failures = [payload for name, payload in published if name == events.ORCHESTRATION_FAILED]
        assert failures[-1]["category"] == "processing"
        service = await orchestrator.load_balancer.get_service(status["service_id"])
        assert service.load.active_jobs == 0
    finally:
        await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_enterprise_job_is_queued_then_processed(event_bus, published):
    orchestrator = await started(build(event_bus))
    try:
        result = await orchestrator.orchestrate_video_job(make_enterprise_request())

        assert result.status == OrchestrationStatus.QUEUED
        assert result.queue_position == 1
        assert result.estimated_completion is not None
        queued_status = await orchestrator.get_orchestration_status(result.orchestration_id)
        assert queued_status["state"] == "queued"
        assert queued_status["queue_position"] == 1

        assert await orchestrator.process_queue() == result.orchestration_id
        final = await orchestrator.wait_for_orchestration(result.orchestration_id, poll_interval=0.01, timeout=5)

        assert final["state"] == "completed"
        assert final["service_id"] == "svc-cluster"
        assert orchestrator.resource_manager.releases == [result.resource_id]
        assert events.JOB_QUEUED in [name for name, _ in published]
    finally:
        await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_processing_decision_lists_every_reason(event_bus):
    orchestrator = build(event_bus)
    analysis = await orchestrator.analyze(make_enterprise_request())

    decision = await orchestrator.make_processing_decision(analysis)

    assert decision.mode == ProcessingMode.QUEUED
    assert "enterprise complexity" in decision.reasons
    assert "no service with spare capacity" in decision.reasons
    assert any(reason.startswith("estimated duration") for reason in decision.reasons)


@pytest.mark.asyncio
async def test_open_processing_circuit_degrades_jobs(event_bus):
    orchestrator = await started(build(event_bus))
    try:
        for _ in range(5):
            await orchestrator.fault_tolerance.record_failure(
                ImmediateProcessingError("job_x", "orch_x", "encoder crashed"), [BackendCategory.PROCESSING]
            )

        result = await orchestrator.orchestrate_video_job(make_request())

        assert result.status == OrchestrationStatus.DEGRADED
        assert "processing" in result.message
        assert orchestrator.active_orchestrations == {}
        assert orchestrator.resource_manager.outstanding_allocations() == 0
    finally:
        await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_request_without_job_id_is_rejected(event_bus):
    orchestrator = await started(build(event_bus))
    try:
        with pytest.raises(AnalysisError):
            await orchestrator.orchestrate_video_job(JobRequest(job_id="", elements=()))

        assert orchestrator.active_orchestrations == {}
    finally:
        await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_cancel_queued_orchestration(event_bus):
    orchestrator = await started(build(event_bus))
    try:
        result = await orchestrator.orchestrate_video_job(make_enterprise_request())

        assert await orchestrator.cancel_orchestration(result.orchestration_id) is True
        assert await orchestrator.cancel_orchestration(result.orchestration_id) is False

        status = await orchestrator.get_orchestration_status(result.orchestration_id)
        assert status["state"] == "cancelled"
        assert orchestrator.queue_manager.size() == 0
        assert orchestrator.resource_manager.releases == [result.resource_id]
    finally:
        await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_unknown_orchestration_status(event_bus):
    orchestrator = build(event_bus)

    with pytest.raises(OrchestratorError):
        await orchestrator.get_orchestration_status("orch_missing")


@pytest.mark.asyncio
async def test_shutdown_cancels_queued_jobs_and_stops_admission(event_bus):
    orchestrator = await started(build(event_bus))
    result = await orchestrator.orchestrate_video_job(make_enterprise_request(job_id="job_late"))

    await orchestrator.shutdown(timeout=0.1)

    assert not orchestrator.is_running
    assert (await orchestrator.get_orchestration_status(result.orchestration_id))["state"] == "cancelled"
    assert orchestrator.resource_manager.outstanding_allocations() == 0
    with pytest.raises(OrchestratorError):
        await orchestrator.orchestrate_video_job(make_request())


@pytest.mark.asyncio
async def test_start_failure_raises_initialization_error(event_bus):
    orchestrator = build(event_bus, resource_manager=BrokenResourceManager(8, 32, 100))

    with pytest.raises(InitializationError) as excinfo:
        await orchestrator.start()

    assert excinfo.value.details["component"] == "resource_manager"
    assert not orchestrator.is_running


@pytest.mark.asyncio
async def test_system_status_snapshot(event_bus):
    orchestrator = await started(build(event_bus))
    try:
        await orchestrator.orchestrate_video_job(make_enterprise_request())

        status = await orchestrator.get_system_status()

        assert status["is_running"] is True
        assert status["orchestrations_by_state"] == {"queued": 1}
        assert status["queue"]["queue_size"] == 1
        assert status["load_balancer"]["total_services"] == 2
        assert set(status["circuit_breakers"]) == {c.value for c in BackendCategory}
    finally:
        await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_immediate_timeout_fails_hard_and_releases_once(event_bus):
    calls = []
    executors = recording_executors(calls)
    executors[StepType.VIDEO_PROCESSING] = slow_executor(StepType.VIDEO_PROCESSING, calls, delay=5)
    config = OrchestratorConfig(orchestrator=OrchestratorSettings(immediate_timeout=0.05))
    orchestrator = await started(build(event_bus, executors=executors, config=config))
    try:
        with pytest.raises(ImmediateProcessingError) as excinfo:
            await orchestrator.orchestrate_video_job(make_request())

        assert "timed out" in excinfo.value.message
        assert len(orchestrator.resource_manager.releases) == 1
        assert orchestrator.workflow_engine.get_workflow(excinfo.value.workflow_id).state == WorkflowState.CANCELLED
        status = await orchestrator.get_orchestration_status(excinfo.value.orchestration_id)
        assert status["state"] == "failed"
        assert "video_processing" not in calls
    finally:
        await orchestrator.shutdown()


@pytest.mark.asyncio
@pytest.mark.parametrize("load", [SystemLoad(cpu=0.95, memory=0.2), SystemLoad(cpu=0.2, memory=0.95)])
async def test_process_queue_skips_while_overloaded(event_bus, load):
    resource_manager = SaturatedResourceManager(load, 64, 256, 10000)
    orchestrator = await started(build(event_bus, resource_manager=resource_manager))
    try:
        result = await orchestrator.orchestrate_video_job(make_enterprise_request())

        assert await orchestrator.process_queue() is None
        assert orchestrator.queue_manager.size() == 1
        status = await orchestrator.get_orchestration_status(result.orchestration_id)
        assert status["state"] == "queued"
    finally:
        await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_async_setup_failure_releases_reservation(event_bus, published):
    orchestrator = await started(build(event_bus, queue_manager=QueueManager(max_size=0)))
    try:
        with pytest.raises(AsyncSetupError) as excinfo:
            await orchestrator.orchestrate_video_job(make_enterprise_request())

        assert isinstance(excinfo.value.__cause__, QueueError)
        assert len(orchestrator.resource_manager.releases) == 1
        assert orchestrator.resource_manager.outstanding_allocations() == 0
        assert orchestrator.active_orchestrations == {}
        status = await orchestrator.get_orchestration_status(excinfo.value.orchestration_id)
        assert status["state"] == "failed"
        assert events.ORCHESTRATION_FAILED in [name for name, _ in published]
    finally:
        await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_shutdown_waits_for_processing_orchestration(event_bus):
    calls = []
    executors = recording_executors(calls)
    executors[StepType.DATABASE_UPDATE] = slow_executor(StepType.DATABASE_UPDATE, calls, delay=0.1)
    orchestrator = await started(build(event_bus, executors=executors))
    result = await orchestrator.orchestrate_video_job(make_enterprise_request())
    assert await orchestrator.process_queue() == result.orchestration_id

    await orchestrator.shutdown(timeout=5)

    status = await orchestrator.get_orchestration_status(result.orchestration_id)
    assert status["state"] == "completed"
    assert "database_update" in calls
    assert orchestrator.resource_manager.releases == [result.resource_id]
    assert not orchestrator.is_running
