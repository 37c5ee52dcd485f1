"""
Basic usage example for Video Job Orchestrator

This example demonstrates how to run the orchestrator in-process with the
local collaborators, register processing services and submit render jobs.
"""

import asyncio
import uuid

from video_job_orchestrator import (
    ContentElement,
    ConfigurationManager,
    EventBus,
    JobPriority,
    JobRequest,
    LoadBalancerManager,
    LocalResourceManager,
    OrchestrationStatus,
    ServiceCapacity,
    ServiceInstance,
    VideoJobOrchestrator,
    JobComplexity,
)
from video_job_orchestrator.services.health_probe import StaticHealthProbe


def build_orchestrator() -> VideoJobOrchestrator:
    config_manager = ConfigurationManager()
    event_bus = EventBus()
    load_balancer = LoadBalancerManager(
        config_manager.get_config().load_balancing,
        health_probe=StaticHealthProbe(),
        event_bus=event_bus
    )
    return VideoJobOrchestrator(
        config_manager=config_manager,
        resource_manager=LocalResourceManager(total_cpu_cores=64, total_memory_gb=256, total_storage_gb=4000),
        load_balancer=load_balancer,
        event_bus=event_bus
    )


async def register_services(orchestrator: VideoJobOrchestrator):
    services = [
        ServiceInstance(
            service_id="renderer-1",
            name="video-processor",
            endpoint="http://renderer-1:8080",
            capacity=ServiceCapacity(
                max_concurrent_jobs=4,
                capabilities=["ffmpeg"],
                supported_complexity=[JobComplexity.SIMPLE, JobComplexity.MODERATE]
            )
        ),
        ServiceInstance(
            service_id="renderer-cluster",
            name="video-processor-enterprise",
            endpoint="http://renderer-cluster:8080",
            capacity=ServiceCapacity(
                max_concurrent_jobs=8,
                capabilities=["ffmpeg", "gpu_acceleration", "distributed_processing", "enterprise"],
                supported_complexity=[JobComplexity.COMPLEX, JobComplexity.ENTERPRISE]
            )
        ),
    ]
    for service in services:
        await orchestrator.load_balancer.register_service(service)
        print(f"👷 Service registered: {service.service_id}")


async def basic_example():
    """Submit a short clip and a large 4K montage."""
    print("🚀 Starting Video Job Orchestrator Example")

    orchestrator = build_orchestrator()
    await register_services(orchestrator)
    await orchestrator.start()

    try:
        # A short social clip is processed inline
        clip = JobRequest(
            job_id=f"clip_{uuid.uuid4().hex[:8]}",
            elements=(ContentElement(source="s3://media/intro.mp4", duration=8.0),),
            width=1080,
            height=1920,
        )
        result = await orchestrator.orchestrate_video_job(clip)
        print(f"✅ {clip.job_id}: {result.status.value} -> {result.result_url}")

        # A 4K montage with effects is queued
        montage = JobRequest(
            job_id=f"montage_{uuid.uuid4().hex[:8]}",
            elements=tuple(
                ContentElement(source=f"s3://media/scene_{i:02d}.mov", track=i % 3,
                               duration=30.0, effects=("color_grade",))
                for i in range(15)
            ),
            width=3840,
            height=2160,
            priority=JobPriority.HIGH,
        )
        result = await orchestrator.orchestrate_video_job(montage)
        print(f"📝 {montage.job_id}: {result.status.value}, position {result.queue_position}")

        if result.status == OrchestrationStatus.QUEUED:
            await orchestrator.process_queue()
            status = await orchestrator.wait_for_orchestration(result.orchestration_id, timeout=60)
            print(f"📊 {montage.job_id} finished: {status['state']}")

        system = await orchestrator.get_system_status()
        print(f"🏥 System health: {system['health']}")
        print(f"📈 Workflows: {system['workflows']}")

    finally:
        await orchestrator.shutdown()
        print("🛑 Orchestrator stopped")


if __name__ == "__main__":
    asyncio.run(basic_example())
