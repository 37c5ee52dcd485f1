import pytest

from video_job_orchestrator.core.exceptions import ConfigurationError, TemplateNotFoundError
from video_job_orchestrator.models.job import JobComplexity
from video_job_orchestrator.models.workflow import RetryPolicy, StepType
from video_job_orchestrator.services.workflow_templates import (
    BALANCED_ASYNC,
    DISTRIBUTED,
    QUICK_SYNC,
    RESOURCE_INTENSIVE,
    TemplateCatalog,
    template_from_dict,
)

SOCIAL_CLIP = """
name: social_clip
description: Short vertical clips
max_duration_seconds: 120
retry_policy: {max_retries: 1, backoff_seconds: 2}
resource_profile: {cpu_cores: 2, memory_gb: 4, storage_gb: 10, bandwidth_mbps: 100}
suitability: [simple, moderate]
steps:
  - {name: validate_request, type: validation, timeout_seconds: 5}
  - {name: download_media, type: media_download, timeout_seconds: 30, parallel: true}
  - {name: process_video, type: video_processing, timeout_seconds: 60}
"""


def test_builtin_catalog():
    catalog = TemplateCatalog()

    assert catalog.names() == [QUICK_SYNC, BALANCED_ASYNC, RESOURCE_INTENSIVE, DISTRIBUTED]
    assert len(catalog) == 4
    assert QUICK_SYNC in catalog
    assert [step.step_type for step in catalog.get(QUICK_SYNC).steps] == [
        StepType.VALIDATION,
        StepType.RESOURCE_ALLOCATION,
        StepType.MEDIA_DOWNLOAD,
        StepType.VIDEO_PROCESSING,
        StepType.S3_UPLOAD,
        StepType.DATABASE_UPDATE,
        StepType.CLEANUP,
    ]


def test_unknown_template_raises():
    with pytest.raises(TemplateNotFoundError):
        TemplateCatalog().get("nonexistent")


@pytest.mark.parametrize("name,complexity,suits", [
    (QUICK_SYNC, JobComplexity.MODERATE, True),
    (QUICK_SYNC, JobComplexity.COMPLEX, False),
    (BALANCED_ASYNC, JobComplexity.SIMPLE, False),
    (RESOURCE_INTENSIVE, JobComplexity.ENTERPRISE, True),
    (DISTRIBUTED, JobComplexity.COMPLEX, False),
])
def test_suitability_bounds(name, complexity, suits):
    assert TemplateCatalog().get(name).suits(complexity) is suits


def test_builtins_grow_with_scale():
    templates = list(TemplateCatalog())

    durations = [template.max_duration_seconds for template in templates]
    cores = [template.resource_profile.cpu_cores for template in templates]
    assert durations == sorted(durations)
    assert cores == sorted(cores)


def test_load_custom_templates(tmp_path):
    (tmp_path / "social_clip.yaml").write_text(SOCIAL_CLIP, encoding="utf-8")
    (tmp_path / "notes.txt").write_text("not a template", encoding="utf-8")
    catalog = TemplateCatalog()

    assert catalog.load_directory(str(tmp_path)) == 1

    template = catalog.get("social_clip")
    assert template.retry_policy.max_retries == 1
    assert template.steps[1].parallel is True
    assert template.suits(JobComplexity.MODERATE)
    assert not template.suits(JobComplexity.COMPLEX)


def test_custom_template_cannot_replace_builtin(tmp_path):
    (tmp_path / "clash.yml").write_text(SOCIAL_CLIP.replace("social_clip", QUICK_SYNC), encoding="utf-8")

    with pytest.raises(ConfigurationError):
        TemplateCatalog().load_directory(str(tmp_path))


def test_missing_directory_raises(tmp_path):
    with pytest.raises(ConfigurationError):
        TemplateCatalog().load_directory(str(tmp_path / "absent"))


@pytest.mark.parametrize("data", [
    ["not", "a", "mapping"],
    {"name": "no_steps", "max_duration_seconds": 10, "steps": []},
    {"name": "bad_type", "max_duration_seconds": 10,
     "steps": [{"name": "s", "type": "teleport", "timeout_seconds": 1}]},
    {"name": "no_duration", "steps": [{"name": "s", "type": "validation", "timeout_seconds": 1}]},
])
def test_invalid_template_documents(data):
    with pytest.raises(ConfigurationError):
        template_from_dict(data)


def test_declared_retry_policy_wins_over_default():
    data = {
        "name": "clip",
        "max_duration_seconds": 30,
        "retry_policy": {"max_retries": 1},
        "steps": [{"name": "s", "type": "validation", "timeout_seconds": 1}],
    }
    fallback = RetryPolicy(max_retries=4, backoff_seconds=3.0)

    assert template_from_dict(data, default_retry_policy=fallback).retry_policy.max_retries == 1
    del data["retry_policy"]
    assert template_from_dict(data, default_retry_policy=fallback).retry_policy == fallback
    assert template_from_dict(data).retry_policy == RetryPolicy()
