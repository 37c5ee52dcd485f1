"""
Setup script for Video Job Orchestrator

Schedules and executes multi-step video rendering jobs across a pool of
processing services with adaptive load balancing, templated workflows,
per-step retries and category-level circuit breaking.
"""

from setuptools import setup, find_packages
import pathlib

here = pathlib.Path(__file__).parent.resolve()

# Get the long description from the README file
try:
    long_description = (here / "README.md").read_text(encoding="utf-8")
except FileNotFoundError:
    long_description = """
    Video Job Orchestrator

    Schedules and executes multi-step video rendering jobs across a pool of
    processing services, deciding per job between inline and queued
    processing and steering it through a templated workflow.
    """

setup(
    name="video-job-orchestrator",
    version="1.0.0",
    description="Orchestration engine for multi-step video rendering jobs",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="Video Job Orchestrator Team",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Multimedia :: Video",
        "Topic :: System :: Distributed Computing",
    ],
    keywords="video rendering, job orchestration, workflow, load balancing, circuit breaker, async",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        # Core dependencies
        "click>=8.0.0",
        "psutil>=5.8.0",

        # Networking
        "httpx>=0.24.0",

        # Configuration and serialization
        "pyyaml>=6.0",
        "pydantic>=2.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "black>=22.0.0",
            "isort>=5.10.0",
            "mypy>=1.0.0",
            "coverage>=6.0.0",
            "flake8>=5.0.0",
        ],
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "video-job-orchestrator=video_job_orchestrator.cli.main:main",
            "vjo=video_job_orchestrator.cli.main:main",
        ],
    },
)
