"""
Main CLI entry point for the Video Job Orchestrator

Provides command-line interface for analyzing render jobs, inspecting
workflow templates and configuration, and submitting jobs to a local
orchestrator.
"""

import asyncio
import json
import sys
from datetime import datetime, timezone
from typing import Any, List, Optional

import click
import yaml

from ..core.exceptions import VideoOrchestratorError
from ..core.orchestrator import VideoJobOrchestrator
from ..models.job import JobRequest
from ..models.orchestration import OrchestrationStatus
from ..models.service import ServiceInstance
from ..services.event_bus import EventBus
from ..services.health_probe import StaticHealthProbe
from ..services.job_analyzer import JobAnalyzer
from ..services.load_balancer import LoadBalancerManager
from ..services.workflow_engine import WorkflowEngine
from ..utils.config import ConfigurationManager
from ..utils.logger import setup_logger

DEFAULT_SERVICES = [
    {
        "service_id": "video-processor-1",
        "name": "video-processor",
        "endpoint": "http://localhost:8081",
        "capacity": {"max_concurrent_jobs": 4, "capabilities": ["ffmpeg"],
                     "supported_complexity": ["simple", "moderate"]},
    },
    {
        "service_id": "video-processor-2",
        "name": "video-processor",
        "endpoint": "http://localhost:8082",
        "capacity": {"max_concurrent_jobs": 4, "capabilities": ["ffmpeg", "gpu_acceleration"],
                     "supported_complexity": ["simple", "moderate", "complex"]},
    },
    {
        "service_id": "video-processor-enterprise",
        "name": "video-processor-enterprise",
        "endpoint": "http://localhost:8090",
        "capacity": {"max_concurrent_jobs": 8,
                     "capabilities": ["ffmpeg", "gpu_acceleration", "distributed_processing", "enterprise"],
                     "supported_complexity": ["complex", "enterprise"]},
    },
]


@click.group()
@click.option('--config', '-c', type=click.Path(exists=True), help='Configuration file path')
@click.option('--log-level', '-l', default='WARNING', help='Log level')
@click.option('--verbose', '-v', is_flag=True, help='Verbose output')
@click.pass_context
def cli(ctx, config, log_level, verbose):
    """Video Job Orchestrator CLI"""

    # Ensure context object exists
    ctx.ensure_object(dict)

    # Set up logging
    setup_logger("video_job_orchestrator", level=log_level, structured=not verbose)

    try:
        ctx.obj['config_manager'] = ConfigurationManager.load(config)
    except VideoOrchestratorError as e:
        click.echo(f"Error loading configuration: {e.message}", err=True)
        sys.exit(1)

    ctx.obj['verbose'] = verbose


@cli.command('analyze')
@click.argument('job_file', type=click.Path(exists=True))
@click.pass_context
def analyze_job(ctx, job_file):
    """Analyze a job request file (JSON or YAML)"""

    async def _analyze():
        request = _load_job_request(job_file)
        analysis = await JobAnalyzer().analyze(request)
        click.echo(json.dumps(analysis.to_dict(), indent=2))

    try:
        asyncio.run(_analyze())
    except VideoOrchestratorError as e:
        click.echo(f"Error analyzing job: {e.message}", err=True)
        sys.exit(1)


@cli.command('templates')
@click.pass_context
def list_templates(ctx):
    """List workflow templates"""

    config = ctx.obj['config_manager'].get_config()
    engine = WorkflowEngine(config)

    try:
        asyncio.run(engine.initialize())
    except VideoOrchestratorError as e:
        click.echo(f"Error loading templates: {e.message}", err=True)
        sys.exit(1)

    templates = engine.list_templates()
    if ctx.obj['verbose']:
        click.echo(json.dumps([template.to_dict() for template in templates], indent=2))
        return

    click.echo(f"{'Template':<22} {'Steps':<6} {'Budget':<8} {'Retries':<8} {'Complexity'}")
    click.echo("-" * 64)
    for template in templates:
        click.echo(f"{template.name:<22} {len(template.steps):<6} "
                   f"{int(template.max_duration_seconds):<8} {template.retry_policy.max_retries:<8} "
                   f"{template.min_complexity.value}..{template.max_complexity.value}")


@cli.command('config')
@click.pass_context
def show_config(ctx):
    """Show the effective configuration"""

    click.echo(json.dumps(ctx.obj['config_manager'].to_dict(), indent=2))


@cli.command('submit')
@click.argument('job_file', type=click.Path(exists=True))
@click.option('--services', 'services_file', type=click.Path(exists=True),
              help='Service registry file (JSON or YAML list)')
@click.option('--probe', type=click.Choice(['static', 'http']), default='static',
              help='Health probe used for registered services')
@click.option('--wait', is_flag=True, help='Wait for queued jobs to finish')
@click.option('--timeout', type=float, default=600.0, help='Seconds to wait with --wait')
@click.pass_context
def submit_job(ctx, job_file, services_file, probe, wait, timeout):
    """Submit a job to a local orchestrator"""

    async def _submit():
        config_manager = ctx.obj['config_manager']
        config = config_manager.get_config()
        event_bus = EventBus()
        load_balancer = LoadBalancerManager(
            config.load_balancing,
            health_probe=StaticHealthProbe() if probe == 'static' else None,
            event_bus=event_bus
        )
        orchestrator = VideoJobOrchestrator(
            config_manager=config_manager,
            load_balancer=load_balancer,
            event_bus=event_bus
        )

        request = _load_job_request(job_file)
        services = _load_services(services_file)

        for service in services:
            await orchestrator.load_balancer.register_service(service)

        await orchestrator.start()
        try:
            result = await orchestrator.orchestrate_video_job(request)
            click.echo(json.dumps(result.to_dict(), indent=2))

            if wait and result.status == OrchestrationStatus.QUEUED:
                click.echo("Waiting for queued job...", err=True)
                status = await orchestrator.wait_for_orchestration(result.orchestration_id, timeout=timeout)
                click.echo(json.dumps(status, indent=2))
                if status["state"] != "completed":
                    return 1
        finally:
            await orchestrator.shutdown()
        return 0

    try:
        exit_code = asyncio.run(_submit())
    except VideoOrchestratorError as e:
        click.echo(f"Error submitting job: {e.message}", err=True)
        sys.exit(1)

    if exit_code:
        sys.exit(exit_code)


def _read_document(path: str) -> Any:
    """Read a JSON or YAML file."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise click.ClickException(f"Cannot read {path}: {e}")


def _load_job_request(path: str) -> JobRequest:
    data = _read_document(path)
    if not isinstance(data, dict):
        raise click.ClickException(f"{path} must contain a job mapping")

    data.setdefault('job_id', f"cli_{int(datetime.now(timezone.utc).timestamp())}")
    try:
        return JobRequest.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise click.ClickException(f"Invalid job request in {path}: {e}")


def _load_services(path: Optional[str]) -> List[ServiceInstance]:
    documents: Any = DEFAULT_SERVICES if path is None else _read_document(path)
    if isinstance(documents, dict):
        documents = documents.get('services', [])
    if not isinstance(documents, list):
        raise click.ClickException(f"{path} must contain a list of services")

    try:
        return [ServiceInstance.from_dict(document) for document in documents]
    except (KeyError, TypeError, ValueError) as e:
        raise click.ClickException(f"Invalid service definition: {e}")


def main():
    """Main CLI entry point"""
    cli()


if __name__ == '__main__':
    main()
