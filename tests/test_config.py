import pytest

from video_job_orchestrator.core.exceptions import ConfigurationError
from video_job_orchestrator.models.service import LoadBalancingStrategy
from video_job_orchestrator.utils.config import ConfigurationManager


def test_defaults():
    config = ConfigurationManager().get_config()

    assert config.load_balancing.strategy == LoadBalancingStrategy.ROUND_ROBIN
    assert config.load_balancing.health_probe == "http"
    assert config.workflows.retention_seconds == 300.0
    assert config.workflows.result_bucket == "video-results"
    assert config.circuit_breaker.failure_threshold == 5
    assert config.circuit_breaker.recovery_timeout == 60.0
    assert config.orchestrator.immediate_timeout == 30.0
    assert set(config.load_balancing.model_dump()) == {
        "strategy",
        "health_check_interval",
        "performance_refresh_interval",
        "utilization_limit",
        "health_probe",
        "health_check_path",
        "health_check_timeout",
        "ai_scoring_enabled",
    }


def test_load_yaml_file(tmp_path):
    path = tmp_path / "orchestrator.yaml"
    path.write_text(
        "load_balancing:\n"
        "  strategy: least_connections\n"
        "  health_probe: static\n"
        "global_retry_config:\n"
        "  max_retries: 5\n"
        "workflows:\n"
        "  retention_seconds: 60\n",
        encoding="utf-8",
    )

    config = ConfigurationManager.load(path, environ={}).get_config()

    assert config.load_balancing.strategy == LoadBalancingStrategy.LEAST_CONNECTIONS
    assert config.load_balancing.health_probe == "static"
    assert config.global_retry_config.max_retries == 5
    assert config.workflows.retention_seconds == 60.0


def test_environment_overrides_file(tmp_path):
    path = tmp_path / "orchestrator.yaml"
    path.write_text("load_balancing:\n  strategy: weighted\n", encoding="utf-8")

    config = ConfigurationManager.load(path, environ={
        "VJO_LOAD_BALANCING_STRATEGY": "performance_based",
        "VJO_MAX_RETRIES": "1",
        "VJO_ENABLE_CUSTOM_TEMPLATES": "true",
        "VJO_TEMPLATE_DIRECTORY": "/etc/vjo/templates",
        "S3_BUCKET": "renders",
        "VJO_HEALTH_PROBE": "",
    }).get_config()

    assert config.load_balancing.strategy == LoadBalancingStrategy.PERFORMANCE_BASED
    assert config.load_balancing.health_probe == "http"
    assert config.global_retry_config.max_retries == 1
    assert config.workflows.enable_custom_templates is True
    assert config.workflows.template_directory == "/etc/vjo/templates"
    assert config.workflows.result_bucket == "renders"


def test_invalid_value_names_the_key():
    with pytest.raises(ConfigurationError) as excinfo:
        ConfigurationManager.load(environ={"VJO_HEALTH_CHECK_INTERVAL": "-5"})

    assert excinfo.value.details["config_key"] == "load_balancing.health_check_interval"


def test_unknown_probe_rejected():
    with pytest.raises(ConfigurationError):
        ConfigurationManager.load(environ={"VJO_HEALTH_PROBE": "icmp"})


@pytest.mark.parametrize("content", ["load_balancing: [unclosed\n", "- just\n- a list\n"])
def test_malformed_files_rejected(tmp_path, content):
    path = tmp_path / "broken.yaml"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigurationError):
        ConfigurationManager.load(path, environ={})


def test_missing_file_rejected(tmp_path):
    with pytest.raises(ConfigurationError):
        ConfigurationManager.load(tmp_path / "absent.yaml", environ={})


def test_to_dict_is_json_friendly():
    data = ConfigurationManager().to_dict()

    assert data["load_balancing"]["strategy"] == "round_robin"
    assert data["workflows"]["template_directory"] is None
