import asyncio

import pytest

from video_job_orchestrator.core.exceptions import (
    StepExecutionError,
    StepTimeoutError,
    WorkflowError,
    WorkflowNotFoundError,
)
from video_job_orchestrator.executors.base import CallableStepExecutor
from video_job_orchestrator.models.job import JobComplexity, ProcessingStrategy
from video_job_orchestrator.models.resources import ResourceAllocation
from video_job_orchestrator.models.workflow import (
    ResourceProfile,
    RetryPolicy,
    RollbackType,
    StepType,
    WorkflowState,
    WorkflowStepSpec,
    WorkflowTemplate,
)
from video_job_orchestrator.services import event_bus as events
from video_job_orchestrator.services.workflow_engine import WorkflowEngine
from video_job_orchestrator.services.workflow_templates import BALANCED_ASYNC, TemplateCatalog
from video_job_orchestrator.utils.config import (
    ConfigurationManager,
    OrchestratorConfig,
    RetryConfig,
    WorkflowsConfig,
)

from factories import (
    failing_executor,
    make_analysis,
    make_request,
    make_resources,
    recording_executors,
)


def template(name="pipeline", steps=None, retry_policy=None, max_duration=600):
    steps = steps or (
        WorkflowStepSpec("validate", StepType.VALIDATION, 5),
        WorkflowStepSpec("download", StepType.MEDIA_DOWNLOAD, 5, parallel=True),
        WorkflowStepSpec("analyze", StepType.ANALYSIS, 5, parallel=True),
        WorkflowStepSpec("notify", StepType.NOTIFICATION, 5, parallel=True),
        WorkflowStepSpec("process", StepType.VIDEO_PROCESSING, 5),
        WorkflowStepSpec("upload", StepType.S3_UPLOAD, 5),
    )
    return WorkflowTemplate(
        name=name,
        description="test pipeline",
        steps=tuple(steps),
        max_duration_seconds=max_duration,
        retry_policy=retry_policy or RetryPolicy(max_retries=0, backoff_seconds=1.0),
        resource_profile=ResourceProfile(cpu_cores=2, memory_gb=4, storage_gb=10, bandwidth_mbps=100),
    )


def engine_with(*templates, executors=None, config=None, sleep=None, event_bus=None):
    kwargs = {}
    if sleep is not None:
        kwargs["sleep"] = sleep
    return WorkflowEngine(
        config or OrchestratorConfig(),
        executors=executors,
        event_bus=event_bus,
        catalog=TemplateCatalog(templates or (template(),)),
        **kwargs,
    )


async def create(engine, name="pipeline"):
    return await engine.create_workflow(make_request(), make_resources(), template_name=name)


@pytest.mark.asyncio
async def test_sequential_steps_each_record_a_result():
    calls = []
    steps = [WorkflowStepSpec(f"step_{i}", StepType.DATABASE_UPDATE, 5) for i in range(4)]
    engine = engine_with(template(steps=steps), executors=recording_executors(calls))
    execution = await create(engine)

    result = await engine.execute_workflow(execution.workflow_id, service_id="svc-1")

    assert result.state == WorkflowState.COMPLETED
    assert set(result.step_results) == {"step_0", "step_1", "step_2", "step_3"}
    assert all(r.success and r.attempts == 1 for r in result.step_results.values())
    assert result.metrics.completed_steps == 4
    assert calls == ["database_update"] * 4
    assert execution.context.service_id == "svc-1"


@pytest.mark.asyncio
async def test_full_pipeline_returns_result_url():
    calls = []
    engine = engine_with(executors=recording_executors(calls))
    execution = await create(engine)

    result = await engine.execute_workflow(execution.workflow_id)

    assert result.result_url == "https://bucket/result.mp4"
    assert calls[0] == "validation"
    assert set(calls[1:4]) == {"media_download", "analysis", "notification"}
    assert calls[4:] == ["video_processing", "s3_upload"]
    assert result.metrics.resource_utilization["cpu_core_seconds"] >= 0


@pytest.mark.asyncio
async def test_adjacent_parallel_steps_are_grouped():
    steps = [
        WorkflowStepSpec("a", StepType.VALIDATION, 1),
        WorkflowStepSpec("b", StepType.MEDIA_DOWNLOAD, 1, parallel=True),
        WorkflowStepSpec("c", StepType.ANALYSIS, 1, parallel=True),
        WorkflowStepSpec("d", StepType.VIDEO_PROCESSING, 1),
        WorkflowStepSpec("e", StepType.S3_UPLOAD, 1, parallel=True),
    ]
    engine = engine_with(template(steps=steps), executors={})
    execution = await create(engine)

    groups = WorkflowEngine.group_parallel_steps(execution.definition.steps)

    assert [[step.name for step in group] for group in groups] == [["a"], ["b", "c"], ["d"], ["e"]]


@pytest.mark.asyncio
async def test_failed_parallel_step_keeps_sibling_results_and_stops_later_groups():
    calls = []
    executors = recording_executors(calls)
    executors[StepType.NOTIFICATION] = failing_executor(StepType.NOTIFICATION, calls)
    engine = engine_with(executors=executors)
    execution = await create(engine)

    with pytest.raises(WorkflowError) as excinfo:
        await engine.execute_workflow(execution.workflow_id)

    assert excinfo.value.step_name == "notify"
    assert excinfo.value.step_type == "notification"
    assert isinstance(excinfo.value.__cause__, StepExecutionError)

    results = execution.step_results
    assert results["download"].success
    assert results["analyze"].success
    assert not results["notify"].success
    assert "process" not in results
    assert "video_processing" not in calls
    assert execution.state == WorkflowState.FAILED
    assert execution.failed_step == "notify"


@pytest.mark.asyncio
async def test_zero_retries_means_single_invocation(fake_sleep):
    calls = []
    steps = [WorkflowStepSpec("download", StepType.MEDIA_DOWNLOAD, 5)]
    executors = recording_executors(calls)
    executors[StepType.MEDIA_DOWNLOAD] = failing_executor(StepType.MEDIA_DOWNLOAD, calls)
    engine = engine_with(template(steps=steps), executors=executors, sleep=fake_sleep)
    execution = await create(engine)

    with pytest.raises(WorkflowError):
        await engine.execute_workflow(execution.workflow_id)

    assert calls.count("media_download") == 1
    assert execution.step_results["download"].attempts == 1
    assert fake_sleep.delays == []


@pytest.mark.asyncio
async def test_critical_step_retries_with_capped_exponential_backoff(fake_sleep):
    calls = []
    steps = [WorkflowStepSpec("process", StepType.VIDEO_PROCESSING, 5)]
    executors = recording_executors(calls)
    executors[StepType.VIDEO_PROCESSING] = failing_executor(StepType.VIDEO_PROCESSING, calls, failures=3)
    policy = RetryPolicy(max_retries=2, backoff_seconds=1.0, backoff_multiplier=2.0, max_backoff_seconds=3.0)
    engine = engine_with(template(steps=steps, retry_policy=policy), executors=executors, sleep=fake_sleep)
    execution = await create(engine)

    result = await engine.execute_workflow(execution.workflow_id)

    assert result.state == WorkflowState.COMPLETED
    assert result.step_results["process"].attempts == 4
    assert fake_sleep.delays == [1.0, 2.0, 3.0]
    assert result.metrics.failed_steps == 3
    assert result.metrics.completed_steps == 1


@pytest.mark.asyncio
async def test_validation_steps_are_never_retried(fake_sleep):
    calls = []
    steps = [WorkflowStepSpec("validate", StepType.VALIDATION, 5)]
    executors = recording_executors(calls)
    executors[StepType.VALIDATION] = failing_executor(StepType.VALIDATION, calls)
    engine = engine_with(template(steps=steps, retry_policy=RetryPolicy(max_retries=3)),
                         executors=executors, sleep=fake_sleep)
    execution = await create(engine)

    with pytest.raises(WorkflowError):
        await engine.execute_workflow(execution.workflow_id)

    assert calls.count("validation") == 1


def test_global_max_retries_caps_template_policies():
    config = ConfigurationManager.load(environ={"VJO_MAX_RETRIES": "0"}).get_config()
    engine = engine_with(config=config)
    balanced = TemplateCatalog().get(BALANCED_ASYNC)

    assert balanced.retry_policy.max_retries == 3
    assert engine.step_retry_policy(StepType.MEDIA_DOWNLOAD, balanced.retry_policy).max_retries == 0
    critical = engine.step_retry_policy(StepType.VIDEO_PROCESSING, balanced.retry_policy)
    assert critical.max_retries == 1
    assert critical.backoff_seconds == balanced.retry_policy.backoff_seconds


@pytest.mark.asyncio
async def test_capped_retries_limit_step_attempts(fake_sleep):
    calls = []
    steps = [WorkflowStepSpec("download", StepType.MEDIA_DOWNLOAD, 5)]
    executors = recording_executors(calls)
    executors[StepType.MEDIA_DOWNLOAD] = failing_executor(StepType.MEDIA_DOWNLOAD, calls)
    config = OrchestratorConfig(global_retry_config=RetryConfig(max_retries=1))
    engine = engine_with(template(steps=steps, retry_policy=RetryPolicy(max_retries=3)),
                         executors=executors, config=config, sleep=fake_sleep)
    execution = await create(engine)

    with pytest.raises(WorkflowError):
        await engine.execute_workflow(execution.workflow_id)

    assert calls.count("media_download") == 2
    assert execution.definition.retry_policies["default"].max_retries == 1


@pytest.mark.asyncio
async def test_custom_template_without_retry_policy_uses_global_config(tmp_path):
    (tmp_path / "teaser.yaml").write_text(
        "name: teaser\n"
        "max_duration_seconds: 60\n"
        "steps:\n"
        "  - {name: process_video, type: video_processing, timeout_seconds: 30}\n",
        encoding="utf-8",
    )
    config = OrchestratorConfig(
        global_retry_config=RetryConfig(max_retries=2, backoff_seconds=4.0, max_backoff_seconds=20.0),
        workflows=WorkflowsConfig(enable_custom_templates=True, template_directory=str(tmp_path)),
    )
    engine = WorkflowEngine(config, executors={})

    await engine.initialize()

    policy = engine.catalog.get("teaser").retry_policy
    assert policy.max_retries == 2
    assert policy.backoff_seconds == 4.0
    assert policy.max_backoff_seconds == 20.0


@pytest.mark.asyncio
async def test_step_timeout_fails_the_attempt():
    async def slow(context, parameters):
        await asyncio.sleep(5)
        return {}

    steps = [WorkflowStepSpec("download", StepType.MEDIA_DOWNLOAD, 0.05)]
    executors = {StepType.MEDIA_DOWNLOAD: CallableStepExecutor(StepType.MEDIA_DOWNLOAD, slow)}
    engine = engine_with(template(steps=steps), executors=executors)
    execution = await create(engine)

    with pytest.raises(WorkflowError) as excinfo:
        await engine.execute_workflow(execution.workflow_id)

    assert isinstance(excinfo.value.__cause__, StepTimeoutError)
    assert "timed out" in execution.step_results["download"].error


@pytest.mark.asyncio
async def test_missing_executor_fails_without_attempts():
    engine = engine_with(executors={})
    execution = await create(engine)

    with pytest.raises(WorkflowError):
        await engine.execute_workflow(execution.workflow_id)

    assert execution.step_results["validate"].attempts == 0


@pytest.mark.asyncio
async def test_default_rollback_cleans_up_and_flags_release():
    calls = []
    executors = recording_executors(calls)
    executors[StepType.NOTIFICATION] = failing_executor(StepType.NOTIFICATION, calls)
    engine = engine_with(executors=executors)
    execution = await create(engine)

    with pytest.raises(WorkflowError):
        await engine.execute_workflow(execution.workflow_id)

    assert execution.rollback_actions == ["cleanup_temp_files", "release_resources"]
    assert execution.context.step_data["release_requested"] is True
    assert "cleanup" in calls


@pytest.mark.asyncio
async def test_checkpoint_rollback_records_last_checkpoint(fake_sleep):
    calls = []
    executors = recording_executors(calls)
    executors[StepType.VIDEO_PROCESSING] = failing_executor(StepType.VIDEO_PROCESSING, calls)
    engine = engine_with(executors=executors, sleep=fake_sleep)
    execution = await create(engine)

    with pytest.raises(WorkflowError):
        await engine.execute_workflow(execution.workflow_id, rollback_strategy="checkpoint")

    assert execution.context.step_data["last_checkpoint"] == "validation"
    assert execution.rollback_actions == ["cleanup_temp_files"]


@pytest.mark.asyncio
async def test_failing_rollback_action_is_recorded():
    calls = []
    executors = recording_executors(calls)
    executors[StepType.VALIDATION] = failing_executor(StepType.VALIDATION, calls)
    engine = engine_with(executors=executors)

    async def broken(execution):
        raise RuntimeError("release backend down")

    engine.register_rollback_action("release_resources", broken)
    execution = await create(engine)

    with pytest.raises(WorkflowError):
        await engine.execute_workflow(execution.workflow_id)

    assert execution.rollback_actions == ["cleanup_temp_files", "release_resources:failed"]


@pytest.mark.asyncio
async def test_events_published_for_completion_and_failure(event_bus, published, fake_sleep):
    calls = []
    engine = engine_with(executors=recording_executors(calls), event_bus=event_bus, sleep=fake_sleep)
    ok = await create(engine)
    await engine.execute_workflow(ok.workflow_id)

    engine.register_executor(StepType.S3_UPLOAD, failing_executor(StepType.S3_UPLOAD, calls))
    bad = await create(engine)
    with pytest.raises(WorkflowError):
        await engine.execute_workflow(bad.workflow_id)

    names = [name for name, _ in published]
    assert names == [events.WORKFLOW_COMPLETED, events.WORKFLOW_FAILED]
    assert published[0][1]["result"]["url"] == "https://bucket/result.mp4"
    assert published[1][1]["step_name"] == "upload"


@pytest.mark.asyncio
async def test_immediate_workflow_compresses_timeouts_and_drops_optional_steps():
    quick = template(
        name="quick_sync",
        steps=(
            WorkflowStepSpec("validate", StepType.VALIDATION, 5),
            WorkflowStepSpec("queue", StepType.QUEUE_OPERATION, 5),
            WorkflowStepSpec("analyze", StepType.ANALYSIS, 5),
            WorkflowStepSpec("process", StepType.VIDEO_PROCESSING, 300),
            WorkflowStepSpec("upload", StepType.S3_UPLOAD, 60),
            WorkflowStepSpec("notify", StepType.NOTIFICATION, 5),
        ),
        retry_policy=RetryPolicy(max_retries=3, backoff_seconds=5.0),
    )
    engine = engine_with(quick, executors={})

    execution = await engine.create_immediate_workflow(make_request(), make_resources())

    steps = execution.definition.steps
    assert [step.name for step in steps] == ["validate", "process", "upload"]
    assert all(step.timeout_seconds <= 10.0 for step in steps)
    assert all(step.retry_policy.max_retries <= 1 for step in steps)
    assert all(step.retry_policy.backoff_seconds == 0.5 for step in steps)
    assert list(execution.definition.rollback_strategies) == ["default"]
    assert execution.definition.rollback_strategies["default"].rollback_type == RollbackType.IMMEDIATE


@pytest.mark.asyncio
async def test_standard_workflow_carries_named_policies_and_strategies():
    engine = engine_with(executors={})
    execution = await create(engine)
    definition = execution.definition

    assert set(definition.retry_policies) == {"default", "critical_step", "non_critical"}
    assert set(definition.rollback_strategies) == {"default", "immediate", "checkpoint"}
    assert definition.timeouts["default"] == 600
    assert definition.environment["JOB_ID"] == "job_1"
    assert definition.environment["WORKFLOW_ID"] == execution.workflow_id


@pytest.mark.asyncio
async def test_step_parameters_are_resolved_per_workflow():
    engine = engine_with(executors={})
    execution = await create(engine)
    steps = {step.name: step for step in execution.definition.steps}
    workflow_id = execution.workflow_id

    assert steps["download"].parameters["download_path"] == f"/tmp/download_{workflow_id}"
    assert steps["download"].parameters["sources"] == ["s3://media/clip_0.mp4"]
    assert steps["process"].parameters["work_dir"] == f"/tmp/work_{workflow_id}"
    assert steps["upload"].parameters == {"bucket": "video-results", "key": "results/job_1/output.mp4"}


@pytest.mark.parametrize("cpu,memory,expected", [
    (4, 8, 100.0),
    (8, 16, 50.0),
    (1, 2, 200.0),
    (16, 2, 100 / 2.25),
])
def test_step_timeout_scales_with_allocation(cpu, memory, expected):
    allocation = ResourceAllocation(cpu_cores=cpu, memory_gb=memory, storage_gb=10, bandwidth_mbps=100)

    assert WorkflowEngine.resolve_step_timeout(100.0, allocation) == pytest.approx(expected)


def test_template_selection_prefers_the_analysis_strategy():
    engine = WorkflowEngine(executors={})
    distributed = make_resources(make_analysis(strategy=ProcessingStrategy.DISTRIBUTED))

    assert engine.select_template(distributed).name == "distributed"


def test_async_template_follows_complexity():
    engine = WorkflowEngine(executors={})

    simple = make_resources(make_analysis())
    complex_job = make_resources(make_analysis(complexity=JobComplexity.COMPLEX))
    enterprise = make_resources(make_analysis(complexity=JobComplexity.ENTERPRISE))

    assert engine.select_async_template(simple).name == "balanced_async"
    assert engine.select_async_template(complex_job).name == "resource_intensive"
    assert engine.select_async_template(enterprise).name == "distributed"


@pytest.mark.asyncio
async def test_builtin_quick_sync_runs_with_local_executors():
    engine = WorkflowEngine()
    execution = await engine.create_immediate_workflow(make_request(), make_resources())

    result = await engine.execute_workflow(execution.workflow_id)

    assert result.state == WorkflowState.COMPLETED
    assert result.result_url == "https://video-results.s3.amazonaws.com/results/job_1/output.mp4"
    assert result.result["file_size"] > 0
    await engine.shutdown()


@pytest.mark.asyncio
async def test_cancel_running_workflow():
    started = asyncio.Event()

    async def blocking(context, parameters):
        started.set()
        await asyncio.Event().wait()

    steps = [WorkflowStepSpec("process", StepType.VIDEO_PROCESSING, 30)]
    executors = {StepType.VIDEO_PROCESSING: CallableStepExecutor(StepType.VIDEO_PROCESSING, blocking)}
    engine = engine_with(template(steps=steps), executors=executors)
    execution = await create(engine)

    task = asyncio.create_task(engine.execute_workflow(execution.workflow_id))
    await started.wait()

    assert await engine.cancel_workflow(execution.workflow_id) is True
    assert execution.state == WorkflowState.CANCELLED
    assert task.cancelled()
    assert await engine.cancel_workflow(execution.workflow_id) is False


@pytest.mark.asyncio
async def test_cancelled_before_start_cannot_run():
    engine = engine_with(executors={})
    execution = await create(engine)

    assert await engine.cancel_workflow(execution.workflow_id) is True
    with pytest.raises(WorkflowError):
        await engine.execute_workflow(execution.workflow_id)


@pytest.mark.asyncio
async def test_unknown_workflow_raises():
    engine = engine_with(executors={})

    with pytest.raises(WorkflowNotFoundError):
        engine.get_workflow("wf_missing")
    with pytest.raises(WorkflowNotFoundError):
        await engine.execute_workflow("wf_missing")


@pytest.mark.asyncio
async def test_finished_workflows_are_discarded_after_retention():
    calls = []
    config = OrchestratorConfig(workflows=WorkflowsConfig(retention_seconds=0))
    engine = engine_with(executors=recording_executors(calls), config=config)
    execution = await create(engine)

    await engine.execute_workflow(execution.workflow_id)
    await asyncio.sleep(0.01)

    with pytest.raises(WorkflowNotFoundError):
        engine.get_workflow(execution.workflow_id)


@pytest.mark.asyncio
async def test_statistics_count_workflows_by_state():
    calls = []
    engine = engine_with(executors=recording_executors(calls))
    done = await create(engine)
    await engine.execute_workflow(done.workflow_id)
    await create(engine)

    stats = engine.get_statistics()

    assert stats["total_workflows"] == 2
    assert stats["by_state"]["completed"] == 1
    assert stats["by_state"]["initialized"] == 1
    assert stats["templates"] == ["pipeline"]
    await engine.shutdown()
