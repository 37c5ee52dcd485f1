"""
Configuration for the Video Job Orchestrator

Settings are validated with pydantic, optionally loaded from a YAML file and
then overridden from the environment. A ``ConfigurationManager`` is created
once and handed to each component that needs it.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator

from ..core.exceptions import ConfigurationError
from ..models.service import LoadBalancingStrategy
from .logger import get_logger


class LoadBalancingConfig(BaseModel):
    strategy: LoadBalancingStrategy = LoadBalancingStrategy.ROUND_ROBIN
    health_check_interval: float = Field(default=30.0, gt=0)
    performance_refresh_interval: float = Field(default=60.0, gt=0)
    utilization_limit: float = Field(default=0.9, gt=0, le=1)
    health_probe: str = "http"
    health_check_path: str = "/health"
    health_check_timeout: float = Field(default=5.0, gt=0)
    ai_scoring_enabled: bool = True

    @field_validator("health_probe")
    @classmethod
    def _known_probe(cls, value: str) -> str:
        if value not in ("http", "static"):
            raise ValueError("health_probe must be 'http' or 'static'")
        return value


class RetryConfig(BaseModel):
    """
    Global retry settings.

    ``max_retries`` caps every template policy; the whole section is the
    policy of custom templates that declare none.
    """
    max_retries: int = Field(default=3, ge=0)
    backoff_seconds: float = Field(default=1.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)
    max_backoff_seconds: float = Field(default=60.0, ge=0)


class WorkflowsConfig(BaseModel):
    enable_custom_templates: bool = False
    template_directory: Optional[str] = None
    retention_seconds: float = Field(default=300.0, ge=0)
    immediate_step_timeout: float = Field(default=10.0, gt=0)
    result_bucket: str = "video-results"
    download_root: str = "/tmp"


class CircuitBreakerSettings(BaseModel):
    failure_threshold: int = Field(default=5, ge=1)
    recovery_timeout: float = Field(default=60.0, gt=0)


class OrchestratorSettings(BaseModel):
    immediate_timeout: float = Field(default=30.0, gt=0)
    immediate_max_duration: float = Field(default=30.0, gt=0)
    immediate_load_ceiling: float = Field(default=0.8, gt=0)
    immediate_health_floor: float = Field(default=0.8, ge=0)
    service_headroom: float = Field(default=0.8, gt=0, le=1)
    overload_threshold: float = Field(default=0.9, gt=0, le=1)
    average_queue_processing_time: float = Field(default=60.0, ge=0)
    queue_poll_interval: float = Field(default=5.0, gt=0)
    health_check_interval: float = Field(default=30.0, gt=0)
    optimization_interval: float = Field(default=300.0, gt=0)
    analytics_interval: float = Field(default=600.0, gt=0)
    cleanup_interval: float = Field(default=3600.0, gt=0)
    shutdown_timeout: float = Field(default=30.0, ge=0)


class OrchestratorConfig(BaseModel):
    """Complete orchestrator configuration."""
    load_balancing: LoadBalancingConfig = Field(default_factory=LoadBalancingConfig)
    global_retry_config: RetryConfig = Field(default_factory=RetryConfig)
    workflows: WorkflowsConfig = Field(default_factory=WorkflowsConfig)
    circuit_breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)


# Environment variable -> (section, key)
ENV_OVERRIDES = {
    "VJO_LOAD_BALANCING_STRATEGY": ("load_balancing", "strategy"),
    "VJO_HEALTH_CHECK_INTERVAL": ("load_balancing", "health_check_interval"),
    "VJO_HEALTH_PROBE": ("load_balancing", "health_probe"),
    "VJO_MAX_RETRIES": ("global_retry_config", "max_retries"),
    "VJO_ENABLE_CUSTOM_TEMPLATES": ("workflows", "enable_custom_templates"),
    "VJO_TEMPLATE_DIRECTORY": ("workflows", "template_directory"),
    "S3_BUCKET": ("workflows", "result_bucket"),
}


class ConfigurationManager:
    """
    Loads, validates and serves the orchestrator configuration.

    Example:
        manager = ConfigurationManager.load("orchestrator.yaml")
        config = manager.get_config()
    """

    def __init__(self, config: Optional[OrchestratorConfig] = None):
        self._config = config or OrchestratorConfig()
        self.logger = get_logger(__name__)

    @classmethod
    def load(
        cls,
        path: Optional[Union[str, Path]] = None,
        environ: Optional[Dict[str, str]] = None
    ) -> 'ConfigurationManager':
        """
        Build a manager from an optional YAML file plus environment overrides.

        Args:
            path: YAML file to read; skipped when None
            environ: Environment mapping, defaults to ``os.environ``

        Returns:
            ConfigurationManager holding the validated configuration

        Raises:
            ConfigurationError: If the file is unreadable or a value is invalid
        """
        raw: Dict[str, Any] = {}
        if path is not None:
            raw = cls._read_yaml(Path(path))

        cls._apply_env_overrides(raw, os.environ if environ is None else environ)

        try:
            config = OrchestratorConfig.model_validate(raw)
        except PydanticValidationError as e:
            first = e.errors()[0]
            key = ".".join(str(part) for part in first.get("loc", ())) or "config"
            raise ConfigurationError(key, first.get("msg", str(e))) from e

        manager = cls(config)
        manager.logger.info("Configuration loaded", extra={
            "config_file": str(path) if path else None,
            "load_balancing_strategy": config.load_balancing.strategy.value,
            "custom_templates": config.workflows.enable_custom_templates
        })
        return manager

    def get_config(self) -> OrchestratorConfig:
        return self._config

    def to_dict(self) -> Dict[str, Any]:
        return self._config.model_dump(mode="json")

    @staticmethod
    def _read_yaml(path: Path) -> Dict[str, Any]:
        try:
            with path.open("r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle) or {}
        except OSError as e:
            raise ConfigurationError(str(path), f"cannot read file: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(str(path), f"invalid YAML: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(str(path), "top level must be a mapping")
        return data

    @staticmethod
    def _apply_env_overrides(raw: Dict[str, Any], environ) -> None:
        for variable, (section, key) in ENV_OVERRIDES.items():
            value = environ.get(variable)
            if value is None or value == "":
                continue
            section_data = raw.setdefault(section, {})
            if not isinstance(section_data, dict):
                raise ConfigurationError(section, "section must be a mapping")
            section_data[key] = value
