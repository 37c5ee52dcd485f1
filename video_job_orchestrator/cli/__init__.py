"""
CLI package for the Video Job Orchestrator

Provides command-line interface for analyzing and submitting render jobs.
"""

from .main import main, cli

__all__ = ["main", "cli"]
