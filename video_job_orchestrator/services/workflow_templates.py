"""
Workflow template catalog.

Four built-in templates ordered by scale, plus optional custom templates
loaded from YAML files. Templates are read-only once the catalog is built.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ..core.exceptions import ConfigurationError, TemplateNotFoundError
from ..models.job import JobComplexity
from ..models.workflow import (
    ResourceProfile,
    RetryPolicy,
    StepType,
    WorkflowStepSpec,
    WorkflowTemplate,
)
from ..utils.logger import get_logger

QUICK_SYNC = "quick_sync"
BALANCED_ASYNC = "balanced_async"
RESOURCE_INTENSIVE = "resource_intensive"
DISTRIBUTED = "distributed"


def _step(name: str, step_type: StepType, timeout_seconds: float, parallel: bool = False) -> WorkflowStepSpec:
    return WorkflowStepSpec(name=name, step_type=step_type, timeout_seconds=timeout_seconds, parallel=parallel)


BUILTIN_TEMPLATES = (
    WorkflowTemplate(
        name=QUICK_SYNC,
        description="Inline processing for short, simple jobs",
        steps=(
            _step("validate_request", StepType.VALIDATION, 5),
            _step("allocate_resources", StepType.RESOURCE_ALLOCATION, 2),
            _step("download_media", StepType.MEDIA_DOWNLOAD, 10, parallel=True),
            _step("process_video", StepType.VIDEO_PROCESSING, 20),
            _step("upload_result", StepType.S3_UPLOAD, 8, parallel=True),
            _step("update_database", StepType.DATABASE_UPDATE, 2),
            _step("cleanup_resources", StepType.CLEANUP, 3),
        ),
        max_duration_seconds=60,
        retry_policy=RetryPolicy(max_retries=1, backoff_seconds=1.0),
        resource_profile=ResourceProfile(cpu_cores=2, memory_gb=4, storage_gb=10, bandwidth_mbps=100),
        min_complexity=JobComplexity.SIMPLE,
        max_complexity=JobComplexity.MODERATE,
    ),
    WorkflowTemplate(
        name=BALANCED_ASYNC,
        description="Queued processing with retries for moderate jobs",
        steps=(
            _step("validate_request", StepType.VALIDATION, 10),
            _step("create_job_record", StepType.DATABASE_UPDATE, 5),
            _step("queue_job", StepType.QUEUE_OPERATION, 3),
            _step("allocate_resources", StepType.RESOURCE_ALLOCATION, 10),
            _step("download_media", StepType.MEDIA_DOWNLOAD, 120, parallel=True),
            _step("analyze_content", StepType.ANALYSIS, 30),
            _step("process_video", StepType.VIDEO_PROCESSING, 480),
            _step("quality_check", StepType.VALIDATION, 15),
            _step("upload_result", StepType.S3_UPLOAD, 90, parallel=True),
            _step("update_job_status", StepType.DATABASE_UPDATE, 5),
            _step("send_notifications", StepType.NOTIFICATION, 10, parallel=True),
            _step("cleanup_resources", StepType.CLEANUP, 15),
        ),
        max_duration_seconds=900,
        retry_policy=RetryPolicy(max_retries=3, backoff_seconds=5.0, backoff_multiplier=2.0, max_backoff_seconds=30.0),
        resource_profile=ResourceProfile(cpu_cores=4, memory_gb=8, storage_gb=50, bandwidth_mbps=200),
        min_complexity=JobComplexity.MODERATE,
        max_complexity=JobComplexity.COMPLEX,
    ),
    WorkflowTemplate(
        name=RESOURCE_INTENSIVE,
        description="GPU-backed processing for complex jobs",
        steps=(
            _step("validate_request", StepType.VALIDATION, 15),
            _step("create_job_record", StepType.DATABASE_UPDATE, 5),
            _step("analyze_complexity", StepType.ANALYSIS, 45),
            _step("allocate_cluster_resources", StepType.RESOURCE_ALLOCATION, 30),
            _step("parallel_media_download", StepType.PARALLEL_DOWNLOAD, 180),
            _step("preprocess_media", StepType.VIDEO_PROCESSING, 300),
            _step("intensive_processing", StepType.VIDEO_PROCESSING, 1200),
            _step("post_processing", StepType.VIDEO_PROCESSING, 240),
            _step("quality_assurance", StepType.VALIDATION, 60),
            _step("upload_final_result", StepType.S3_UPLOAD, 180),
            _step("update_job_completion", StepType.DATABASE_UPDATE, 10),
            _step("cleanup_cluster", StepType.CLEANUP, 60),
        ),
        max_duration_seconds=2700,
        retry_policy=RetryPolicy(max_retries=2, backoff_seconds=15.0, backoff_multiplier=2.0, max_backoff_seconds=120.0),
        resource_profile=ResourceProfile(cpu_cores=8, memory_gb=16, storage_gb=200, bandwidth_mbps=500, gpu_required=True),
        min_complexity=JobComplexity.COMPLEX,
        max_complexity=JobComplexity.ENTERPRISE,
    ),
    WorkflowTemplate(
        name=DISTRIBUTED,
        description="Partitioned processing across a cluster for enterprise jobs",
        steps=(
            _step("validate_request", StepType.VALIDATION, 20),
            _step("create_job_record", StepType.DATABASE_UPDATE, 5),
            _step("analyze_complexity", StepType.ANALYSIS, 60),
            _step("partition_workload", StepType.WORKLOAD_PARTITIONING, 45),
            _step("allocate_cluster_resources", StepType.CLUSTER_ALLOCATION, 60),
            _step("setup_distributed_environment", StepType.CLUSTER_ALLOCATION, 120),
            _step("parallel_media_download", StepType.PARALLEL_DOWNLOAD, 300),
            _step("distributed_processing", StepType.DISTRIBUTED_VIDEO_PROCESSING, 2400),
            _step("intermediate_quality_check", StepType.VALIDATION, 180),
            _step("merge_results", StepType.RESULT_MERGING, 300),
            _step("final_quality_assurance", StepType.VALIDATION, 120),
            _step("upload_final_result", StepType.S3_UPLOAD, 300),
            _step("update_job_completion", StepType.DATABASE_UPDATE, 15),
            _step("cleanup_cluster", StepType.CLUSTER_CLEANUP, 180),
        ),
        max_duration_seconds=5400,
        retry_policy=RetryPolicy(max_retries=2, backoff_seconds=30.0, backoff_multiplier=1.5, max_backoff_seconds=300.0),
        resource_profile=ResourceProfile(cpu_cores=32, memory_gb=64, storage_gb=1000, bandwidth_mbps=1000, gpu_required=True),
        min_complexity=JobComplexity.ENTERPRISE,
        max_complexity=JobComplexity.ENTERPRISE,
    ),
)


class TemplateCatalog:
    """Name-indexed, read-only collection of workflow templates."""

    def __init__(self, templates=BUILTIN_TEMPLATES):
        self._templates: Dict[str, WorkflowTemplate] = {t.name: t for t in templates}
        self.logger = get_logger(__name__)

    def get(self, name: str) -> WorkflowTemplate:
        try:
            return self._templates[name]
        except KeyError:
            raise TemplateNotFoundError(name) from None

    def names(self) -> List[str]:
        return list(self._templates)

    def __contains__(self, name: str) -> bool:
        return name in self._templates

    def __iter__(self):
        return iter(self._templates.values())

    def __len__(self) -> int:
        return len(self._templates)

    def load_directory(self, directory: str, default_retry_policy: Optional[RetryPolicy] = None) -> int:
        """
        Add every ``*.yaml``/``*.yml`` template found in ``directory``.

        Built-in names cannot be overridden. Templates without a
        ``retry_policy`` get ``default_retry_policy``.

        Returns:
            Number of templates loaded

        Raises:
            ConfigurationError: If the directory or a template is invalid
        """
        path = Path(directory)
        if not path.is_dir():
            raise ConfigurationError("workflows.template_directory", f"{directory} is not a directory")

        loaded = 0
        for file_path in sorted(list(path.glob("*.yaml")) + list(path.glob("*.yml"))):
            try:
                with file_path.open("r", encoding="utf-8") as handle:
                    data = yaml.safe_load(handle)
            except (OSError, yaml.YAMLError) as e:
                raise ConfigurationError(str(file_path), f"cannot load template: {e}") from e

            template = template_from_dict(data, source=str(file_path), default_retry_policy=default_retry_policy)
            if template.name in self._templates:
                raise ConfigurationError(str(file_path), f"template '{template.name}' already exists")

            self._templates[template.name] = template
            loaded += 1
            self.logger.info("Custom workflow template loaded", extra={
                "template": template.name,
                "steps": len(template.steps),
                "file": str(file_path)
            })

        return loaded


def template_from_dict(
    data: Any,
    source: str = "template",
    default_retry_policy: Optional[RetryPolicy] = None
) -> WorkflowTemplate:
    """
    Build a template from its YAML/dict form.

    Example:
        name: social_clip
        max_duration_seconds: 120
        retry_policy: {max_retries: 1, backoff_seconds: 2}
        resource_profile: {cpu_cores: 2, memory_gb: 4, storage_gb: 10, bandwidth_mbps: 100}
        suitability: [simple, moderate]
        steps:
          - {name: validate_request, type: validation, timeout_seconds: 5}
          - {name: process_video, type: video_processing, timeout_seconds: 60}
    """
    if not isinstance(data, dict):
        raise ConfigurationError(source, "template must be a mapping")

    try:
        steps = tuple(
            WorkflowStepSpec(
                name=str(step["name"]),
                step_type=StepType(step["type"]),
                timeout_seconds=float(step["timeout_seconds"]),
                parallel=bool(step.get("parallel", False)),
            )
            for step in data["steps"]
        )
        profile = data.get("resource_profile", {})
        suitability: Optional[List[str]] = data.get("suitability")
        template = WorkflowTemplate(
            name=str(data["name"]),
            description=str(data.get("description", "")),
            steps=steps,
            max_duration_seconds=float(data["max_duration_seconds"]),
            retry_policy=(
                RetryPolicy.from_dict(data.get("retry_policy", {}))
                if "retry_policy" in data or default_retry_policy is None
                else default_retry_policy
            ),
            resource_profile=ResourceProfile(
                cpu_cores=int(profile.get("cpu_cores", 2)),
                memory_gb=int(profile.get("memory_gb", 4)),
                storage_gb=int(profile.get("storage_gb", 10)),
                bandwidth_mbps=int(profile.get("bandwidth_mbps", 100)),
                gpu_required=bool(profile.get("gpu_required", False)),
            ),
            min_complexity=JobComplexity(suitability[0]) if suitability else JobComplexity.SIMPLE,
            max_complexity=JobComplexity(suitability[-1]) if suitability else JobComplexity.ENTERPRISE,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigurationError(source, f"invalid template: {e}") from e

    if not template.steps:
        raise ConfigurationError(source, "template has no steps")
    return template
