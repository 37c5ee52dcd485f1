"""
Health probes for service instances.

A probe answers whether an instance is alive and how long it took to say
so. ``HttpHealthProbe`` calls the instance's health endpoint with httpx;
``StaticHealthProbe`` reports the status the instance was registered with.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx

from ..models.service import HealthStatus, ServiceInstance
from ..utils.logger import get_logger


@dataclass(frozen=True)
class ProbeResult:
    status: HealthStatus
    response_time_ms: float
    error: Optional[str] = None


class HealthProbe(ABC):
    """Checks the liveness of one service instance."""

    async def close(self) -> None:
        """Release probe resources; default is a no-op."""

    @abstractmethod
    async def check(self, instance: ServiceInstance) -> ProbeResult:
        """Probe ``instance``. Must not raise for an unreachable instance."""


class HttpHealthProbe(HealthProbe):
    """GETs ``<endpoint><path>``; any 2xx answer means healthy."""

    def __init__(self, path: str = "/health", timeout: float = 5.0, client: Optional[httpx.AsyncClient] = None):
        self.path = path
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self.logger = get_logger(__name__)

    async def check(self, instance: ServiceInstance) -> ProbeResult:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)

        url = instance.endpoint.rstrip("/") + self.path
        started = time.perf_counter()
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            elapsed = (time.perf_counter() - started) * 1000
            self.logger.debug("Health probe failed", extra={
                "service_id": instance.service_id,
                "url": url,
                "error": str(e)
            })
            return ProbeResult(HealthStatus.UNHEALTHY, elapsed, str(e))

        elapsed = (time.perf_counter() - started) * 1000
        if response.is_success:
            return ProbeResult(HealthStatus.HEALTHY, elapsed)
        return ProbeResult(HealthStatus.UNHEALTHY, elapsed, f"HTTP {response.status_code}")

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class StaticHealthProbe(HealthProbe):
    """Keeps whatever status the registry already holds."""

    async def check(self, instance: ServiceInstance) -> ProbeResult:
        return ProbeResult(instance.health_status, instance.load.response_time_ms)
