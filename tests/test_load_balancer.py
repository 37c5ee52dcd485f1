import httpx
import pytest

from video_job_orchestrator.core.exceptions import NoAvailableServicesError, ServiceNotFoundError
from video_job_orchestrator.models.job import JobComplexity, JobPriority
from video_job_orchestrator.models.service import HealthStatus, LoadBalancingStrategy
from video_job_orchestrator.services import event_bus as events
from video_job_orchestrator.services.health_probe import HealthProbe, HttpHealthProbe, ProbeResult
from video_job_orchestrator.services.load_balancer import LoadBalancerManager
from video_job_orchestrator.utils.config import LoadBalancingConfig

from factories import make_analysis, make_service


class ScriptedProbe(HealthProbe):
    """Answers with a fixed status per service id; raises for ids mapped to an exception."""

    def __init__(self, answers):
        self.answers = answers
        self.closed = False

    async def check(self, instance):
        answer = self.answers.get(instance.service_id, HealthStatus.HEALTHY)
        if isinstance(answer, Exception):
            raise answer
        return ProbeResult(answer, 50.0)

    async def close(self):
        self.closed = True


def balancer(strategy=LoadBalancingStrategy.ROUND_ROBIN, probe=None, event_bus=None, ai_scoring=True):
    config = LoadBalancingConfig(strategy=strategy, ai_scoring_enabled=ai_scoring)
    return LoadBalancerManager(config, health_probe=probe or ScriptedProbe({}), event_bus=event_bus)


async def register(lb, *services):
    for service in services:
        await lb.register_service(service)


@pytest.mark.asyncio
async def test_register_and_replace_service(event_bus, published):
    lb = balancer(event_bus=event_bus)

    assert await lb.register_service(make_service("svc-1")) is True
    assert await lb.register_service(make_service("svc-1", max_concurrent_jobs=4)) is False

    stats = await lb.get_statistics()
    assert stats["total_services"] == 1
    assert stats["service_groups"] == {"video-processor": ["svc-1"]}
    assert (await lb.get_service("svc-1")).capacity.max_concurrent_jobs == 4
    assert [name for name, _ in published] == [events.SERVICE_REGISTERED] * 2


@pytest.mark.asyncio
async def test_deregister_service(event_bus, published):
    lb = balancer(event_bus=event_bus)
    await register(lb, make_service("svc-1"))

    removed = await lb.deregister_service("svc-1")

    assert removed.service_id == "svc-1"
    assert lb.service_groups == {}
    assert published[-1][0] == events.SERVICE_DEREGISTERED
    with pytest.raises(ServiceNotFoundError):
        await lb.deregister_service("svc-1")
    with pytest.raises(ServiceNotFoundError):
        await lb.get_service("svc-1")


@pytest.mark.asyncio
async def test_no_eligible_service_raises():
    lb = balancer()
    await register(lb, make_service("sick", health_status=HealthStatus.UNHEALTHY),
                   make_service("busy", max_concurrent_jobs=10, active_jobs=9))

    with pytest.raises(NoAvailableServicesError):
        await lb.select_optimal_service(make_analysis())


@pytest.mark.asyncio
async def test_only_healthy_services_below_utilization_limit_are_selected():
    lb = balancer()
    await register(lb,
                   make_service("sick", health_status=HealthStatus.UNHEALTHY),
                   make_service("busy", max_concurrent_jobs=10, active_jobs=9),
                   make_service("ok", max_concurrent_jobs=10, active_jobs=8))

    for _ in range(3):
        service = await lb.select_optimal_service(make_analysis())
        assert service.service_id == "ok"
        await lb.release_service("ok", make_analysis(), True, 1.0)


@pytest.mark.asyncio
async def test_round_robin_rotates_through_services():
    lb = balancer()
    await register(lb, make_service("a"), make_service("b"), make_service("c"))

    picked = [(await lb.select_optimal_service(make_analysis())).service_id for _ in range(4)]

    assert picked == ["a", "b", "c", "a"]


@pytest.mark.asyncio
async def test_selection_reserves_and_release_undoes_load():
    lb = balancer()
    await register(lb, make_service("a"))
    analysis = make_analysis()

    service = await lb.select_optimal_service(analysis)
    assert service.load.active_jobs == 1
    assert service.load.resource_utilization.cpu == pytest.approx(0.1)

    await lb.release_service("a", analysis, success=True, duration_seconds=2.0)
    assert service.load.active_jobs == 0
    assert service.load.resource_utilization.cpu == pytest.approx(0.0)
    assert len(service.performance.samples) == 1
    assert service.performance.samples[0].duration_ms == 2000.0


@pytest.mark.asyncio
async def test_release_for_unknown_service_is_ignored():
    lb = balancer()

    await lb.release_service("ghost", make_analysis(), success=False, duration_seconds=1.0)


def test_strategy_choice_per_job():
    lb = balancer(strategy=LoadBalancingStrategy.WEIGHTED)

    critical = make_analysis(priority=JobPriority.CRITICAL, complexity=JobComplexity.ENTERPRISE)
    enterprise = make_analysis(complexity=JobComplexity.ENTERPRISE)
    ordinary = make_analysis()

    assert lb.select_strategy(critical, 3) == LoadBalancingStrategy.PERFORMANCE_BASED
    assert lb.select_strategy(enterprise, 3) == LoadBalancingStrategy.AI_DRIVEN
    assert lb.select_strategy(ordinary, 11) == LoadBalancingStrategy.LEAST_CONNECTIONS
    assert lb.select_strategy(ordinary, 10) == LoadBalancingStrategy.WEIGHTED


def test_enterprise_falls_back_without_scorer():
    lb = balancer(ai_scoring=False)

    enterprise = make_analysis(complexity=JobComplexity.ENTERPRISE)

    assert lb.select_strategy(enterprise, 3) == LoadBalancingStrategy.PERFORMANCE_BASED


@pytest.mark.asyncio
async def test_enterprise_jobs_prefer_enterprise_capable_services():
    lb = balancer()
    await register(lb,
                   make_service("basic", capabilities=["ffmpeg"]),
                   make_service("big", capabilities=["ffmpeg", "gpu_acceleration", "distributed_processing",
                                                     "enterprise"],
                                supported_complexity=[JobComplexity.ENTERPRISE]))

    analysis = make_analysis(complexity=JobComplexity.ENTERPRISE, gpu_required=True)

    assert (await lb.select_optimal_service(analysis)).service_id == "big"


@pytest.mark.asyncio
async def test_least_connections_for_large_pools():
    lb = balancer()
    services = [make_service(f"svc-{i}", active_jobs=3) for i in range(11)]
    services[7].load.active_jobs = 0
    await register(lb, *services)

    assert (await lb.select_optimal_service(make_analysis())).service_id == "svc-7"


@pytest.mark.asyncio
async def test_health_checks_apply_probe_results(event_bus, published):
    probe = ScriptedProbe({"b": HealthStatus.UNHEALTHY, "c": ConnectionError("refused")})
    lb = balancer(probe=probe, event_bus=event_bus)
    await register(lb, make_service("a"), make_service("b"), make_service("c"))
    published.clear()

    statuses = await lb.perform_health_checks()

    assert statuses == {"a": HealthStatus.HEALTHY, "b": HealthStatus.UNHEALTHY, "c": HealthStatus.UNHEALTHY}
    assert [s.service_id for s in await lb.get_available_services()] == ["a"]
    changed = [payload["service_id"] for name, payload in published if name == events.SERVICE_HEALTH_CHANGED]
    unavailable = [payload["service_id"] for name, payload in published if name == events.SERVICE_UNAVAILABLE]
    assert sorted(changed) == ["b", "c"]
    assert sorted(unavailable) == ["b", "c"]

    service_a = await lb.get_service("a")
    assert service_a.last_health_check is not None
    assert service_a.performance.health_checks_passed == 1


@pytest.mark.asyncio
async def test_performance_metrics_refresh_from_outcomes():
    lb = balancer(probe=ScriptedProbe({"a": HealthStatus.UNHEALTHY}))
    await register(lb, make_service("a"))
    analysis = make_analysis()
    for success in (True, True, True, False):
        await lb.release_service("a", analysis, success=success, duration_seconds=1.0)
    await lb.perform_health_checks()

    await lb.refresh_performance_metrics()

    metrics = (await lb.get_service("a")).performance.metrics
    assert metrics.success_rate == pytest.approx(75.0)
    assert metrics.error_rate == pytest.approx(25.0)
    assert metrics.throughput == 4.0
    assert metrics.availability == pytest.approx(0.0)


@pytest.mark.asyncio
async def test_start_and_stop_close_the_probe():
    probe = ScriptedProbe({})
    lb = balancer(probe=probe)
    await register(lb, make_service("a"))

    await lb.start()
    await lb.stop()

    assert probe.closed


@pytest.mark.asyncio
async def test_http_probe_reports_status_codes():
    def handler(request):
        if request.url.host == "down":
            return httpx.Response(503)
        if request.url.host == "gone":
            raise httpx.ConnectError("connection refused", request=request)
        assert request.url.path == "/health"
        return httpx.Response(200, json={"status": "ok"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    probe = HttpHealthProbe(client=client)

    up = await probe.check(make_service("up"))
    down = await probe.check(make_service("down"))
    gone = await probe.check(make_service("gone"))

    assert up.status == HealthStatus.HEALTHY
    assert down.status == HealthStatus.UNHEALTHY
    assert down.error == "HTTP 503"
    assert gone.status == HealthStatus.UNHEALTHY
    await client.aclose()
