import pytest

from video_job_orchestrator.core.exceptions import ResourceAllocationError
from video_job_orchestrator.models.resources import AllocationMode, AllocationStatus
from video_job_orchestrator.services.resource_manager import LocalResourceManager

from factories import make_analysis


def pool(**kwargs):
    defaults = dict(total_cpu_cores=8, total_memory_gb=32, total_storage_gb=100)
    defaults.update(kwargs)
    return LocalResourceManager(**defaults)


@pytest.mark.asyncio
async def test_immediate_allocation_counts_toward_load():
    manager = pool()

    allocated = await manager.allocate_resources_immediate(make_analysis(cpu_cores=4, memory_gb=8))

    assert allocated.mode == AllocationMode.IMMEDIATE
    assert allocated.status == AllocationStatus.ACTIVE
    load = await manager.get_current_system_load()
    assert load.cpu == pytest.approx(0.5)
    assert load.memory == pytest.approx(0.25)
    assert load.storage == pytest.approx(0.1)


@pytest.mark.asyncio
async def test_immediate_allocation_must_fit_free_capacity():
    manager = pool()
    await manager.allocate_resources_immediate(make_analysis(cpu_cores=6))

    with pytest.raises(ResourceAllocationError) as excinfo:
        await manager.allocate_resources_immediate(make_analysis(cpu_cores=4))
    assert excinfo.value.details["resource_type"] == "cpu_cores"
    assert excinfo.value.details["available"] == 2


@pytest.mark.asyncio
async def test_reservations_do_not_count_until_activated():
    manager = pool()

    reserved = await manager.allocate_resources_async(make_analysis(cpu_cores=8))
    assert reserved.status == AllocationStatus.RESERVED
    assert (await manager.get_current_system_load()).cpu == 0.0

    assert await manager.activate_resources(reserved.resource_id) is True
    assert (await manager.get_current_system_load()).cpu == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_reservations_may_oversubscribe_up_to_the_factor():
    manager = pool(oversubscription=2.0)
    await manager.allocate_resources_async(make_analysis(cpu_cores=8))
    await manager.allocate_resources_async(make_analysis(cpu_cores=8))

    with pytest.raises(ResourceAllocationError):
        await manager.allocate_resources_async(make_analysis(cpu_cores=1))


@pytest.mark.asyncio
async def test_release_returns_capacity_once():
    manager = pool()
    allocated = await manager.allocate_resources_immediate(make_analysis(cpu_cores=8))

    assert await manager.release_resources(allocated.resource_id) is True
    assert await manager.release_resources(allocated.resource_id) is False
    assert allocated.status == AllocationStatus.RELEASED
    assert allocated.released_at is not None
    assert manager.outstanding_allocations() == 0
    assert (await manager.get_current_system_load()).cpu == 0.0


@pytest.mark.asyncio
async def test_gpu_granted_only_when_available():
    analysis = make_analysis(gpu_required=True)

    without_gpu = await pool().allocate_resources_immediate(analysis)
    with_gpu = await pool(gpu_available=True).allocate_resources_immediate(analysis)

    assert without_gpu.allocation.gpu_enabled is False
    assert with_gpu.allocation.gpu_enabled is True


@pytest.mark.asyncio
async def test_activate_unknown_reservation():
    assert await pool().activate_resources("res_missing") is False


@pytest.mark.asyncio
async def test_optimize_reports_allocations_by_mode():
    manager = pool()
    await manager.allocate_resources_immediate(make_analysis())
    await manager.allocate_resources_async(make_analysis())

    summary = await manager.optimize_resource_usage()

    assert summary["allocations"] == {"immediate": 1, "async": 1}
    assert set(summary["load"]) == {"cpu", "memory", "storage"}


def test_pool_defaults_to_host_size():
    manager = LocalResourceManager()

    assert manager.total_cpu_cores >= 1
    assert manager.total_memory_gb > 0
    assert manager.total_storage_gb > 0
