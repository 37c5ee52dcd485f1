"""
Utilities package for the Video Job Orchestrator

Contains structured logging and configuration loading.
"""

from .logger import setup_logger, get_logger, set_log_context, clear_log_context, LoggerContext
from .config import ConfigurationManager, OrchestratorConfig

__all__ = [
    "setup_logger",
    "get_logger",
    "set_log_context",
    "clear_log_context",
    "LoggerContext",
    "ConfigurationManager",
    "OrchestratorConfig"
]
