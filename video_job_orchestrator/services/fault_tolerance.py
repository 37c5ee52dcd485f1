"""
Fault tolerance for the Video Job Orchestrator

Category-level circuit breakers. Failures are classified into a backend
category and a severity; a category whose high/critical failures reach the
threshold is opened and new work for it is rejected with a synthetic
service-unavailable error until the recovery timeout lets a probe through.

This layer is separate from the load balancer's per-instance health checks.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from ..core.exceptions import (
    AnalysisError,
    AsyncSetupError,
    CircuitOpenError,
    ImmediateProcessingError,
    NoAvailableServicesError,
    QueueError,
    ResourceAllocationError,
    StepExecutionError,
    ValidationError,
    WorkflowError,
)
from ..models.workflow import StepType
from ..utils.logger import get_logger, set_log_context
from . import event_bus as events


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class ErrorSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class BackendCategory(Enum):
    DATABASE = "database"
    STORAGE = "storage"
    PROCESSING = "processing"
    EXTERNAL_SERVICE = "external_service"
    GENERAL = "general"


TRIPPING_SEVERITIES = (ErrorSeverity.HIGH, ErrorSeverity.CRITICAL)

# Backends a render job depends on; checked before committing resources
JOB_CATEGORIES = (
    BackendCategory.PROCESSING,
    BackendCategory.STORAGE,
    BackendCategory.DATABASE,
)

STEP_TYPE_CATEGORIES = {
    StepType.DATABASE_UPDATE: BackendCategory.DATABASE,
    StepType.S3_UPLOAD: BackendCategory.STORAGE,
    StepType.MEDIA_DOWNLOAD: BackendCategory.EXTERNAL_SERVICE,
    StepType.PARALLEL_DOWNLOAD: BackendCategory.EXTERNAL_SERVICE,
    StepType.NOTIFICATION: BackendCategory.EXTERNAL_SERVICE,
    StepType.VIDEO_PROCESSING: BackendCategory.PROCESSING,
    StepType.DISTRIBUTED_VIDEO_PROCESSING: BackendCategory.PROCESSING,
    StepType.RESULT_MERGING: BackendCategory.PROCESSING,
    StepType.CLUSTER_ALLOCATION: BackendCategory.PROCESSING,
    StepType.RESOURCE_ALLOCATION: BackendCategory.PROCESSING,
}

# Exception type -> (category, severity); looked up along the MRO
ERROR_CLASSIFICATION: Dict[type, Tuple[BackendCategory, ErrorSeverity]] = {
    ValidationError: (BackendCategory.GENERAL, ErrorSeverity.LOW),
    AnalysisError: (BackendCategory.GENERAL, ErrorSeverity.MEDIUM),
    QueueError: (BackendCategory.GENERAL, ErrorSeverity.MEDIUM),
    ResourceAllocationError: (BackendCategory.GENERAL, ErrorSeverity.HIGH),
    NoAvailableServicesError: (BackendCategory.PROCESSING, ErrorSeverity.HIGH),
    ImmediateProcessingError: (BackendCategory.PROCESSING, ErrorSeverity.HIGH),
    AsyncSetupError: (BackendCategory.GENERAL, ErrorSeverity.HIGH),
    asyncio.TimeoutError: (BackendCategory.PROCESSING, ErrorSeverity.HIGH),
    ConnectionError: (BackendCategory.EXTERNAL_SERVICE, ErrorSeverity.HIGH),
}


def classify_error(error: BaseException) -> Tuple[BackendCategory, ErrorSeverity]:
    """
    Map an error to the backend category and severity it counts against.

    Workflow and step failures are attributed to the backend behind the
    failing step's type. A failure whose cause is a validation error is low
    severity regardless of where it surfaced.
    """
    cause = error.__cause__
    while cause is not None:
        if isinstance(cause, ValidationError):
            return BackendCategory.GENERAL, ErrorSeverity.LOW
        cause = cause.__cause__

    if isinstance(error, (WorkflowError, StepExecutionError)):
        try:
            step_type = StepType(error.step_type) if error.step_type else None
        except ValueError:
            step_type = None
        category = STEP_TYPE_CATEGORIES.get(step_type, BackendCategory.GENERAL)
        return category, ErrorSeverity.HIGH

    for klass in type(error).__mro__:
        if klass in ERROR_CLASSIFICATION:
            return ERROR_CLASSIFICATION[klass]

    return BackendCategory.GENERAL, ErrorSeverity.MEDIUM


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""
    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    half_open_max_calls: int = 1


class CircuitBreaker:
    """
    Circuit breaker for one backend category.

    Each high/critical failure increments the failure count; reaching the
    threshold opens the circuit. Once ``recovery_timeout`` seconds have passed
    since the last failure the circuit turns half-open and admits a single
    probe. A non-tripping outcome while half-open closes the circuit and
    resets the count; in any other state it changes nothing.
    """

    def __init__(
        self,
        category: BackendCategory,
        config: CircuitBreakerConfig,
        clock: Callable[[], float] = time.monotonic
    ):
        self.category = category
        self.config = config
        self.clock = clock
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_at: Optional[float] = None
        self._probes_in_flight = 0

    def allow_request(self) -> bool:
        """Whether a new request for this category may proceed."""
        if self.state == CircuitState.OPEN:
            if self.clock() - (self.last_failure_at or 0.0) < self.config.recovery_timeout:
                return False
            self.state = CircuitState.HALF_OPEN
            self._probes_in_flight = 0

        if self.state == CircuitState.HALF_OPEN:
            if self._probes_in_flight >= self.config.half_open_max_calls:
                return False
            self._probes_in_flight += 1

        return True

    def record_outcome(self, severity: Optional[ErrorSeverity] = None):
        """
        Record the outcome of a request.

        Args:
            severity: Severity of the failure, or None for a success
        """
        if severity in TRIPPING_SEVERITIES:
            self.failure_count += 1
            self.last_failure_at = self.clock()
            if self.failure_count >= self.config.failure_threshold:
                self.state = CircuitState.OPEN
                self._probes_in_flight = 0
        elif self.state == CircuitState.HALF_OPEN:
            self.state = CircuitState.CLOSED
            self.failure_count = 0
            self._probes_in_flight = 0

    def release_probe(self):
        """Give back a half-open probe slot without recording an outcome."""
        if self.state == CircuitState.HALF_OPEN and self._probes_in_flight > 0:
            self._probes_in_flight -= 1

    def retry_after(self) -> Optional[float]:
        """Seconds until an open circuit will admit a probe."""
        if self.state != CircuitState.OPEN or self.last_failure_at is None:
            return None
        return max(0.0, self.config.recovery_timeout - (self.clock() - self.last_failure_at))

    def reset(self):
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_at = None
        self._probes_in_flight = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "retry_after_seconds": self.retry_after(),
        }


class FaultToleranceService:
    """
    Owns one circuit breaker per backend category.

    Only the orchestrator calls the mutating methods. Access is serialized
    with an asyncio lock.
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        event_bus: Optional[events.EventBus] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize fault tolerance service.

        Args:
            config: Thresholds shared by all categories
            event_bus: Receives ``circuit_state_changed`` events
            clock: Monotonic time source in seconds
        """
        self.config = config or CircuitBreakerConfig()
        self.event_bus = event_bus
        self.circuit_breakers: Dict[BackendCategory, CircuitBreaker] = {
            category: CircuitBreaker(category, self.config, clock) for category in BackendCategory
        }
        self._lock = asyncio.Lock()
        self.logger = get_logger(__name__)
        set_log_context(self.logger, component="fault_tolerance")

    async def admit(self, categories: Iterable[BackendCategory] = JOB_CATEGORIES) -> List[BackendCategory]:
        """
        Admit a unit of work that depends on ``categories``.

        Returns:
            The categories admitted; pass them back to ``record_success`` or
            ``record_failure`` once the work finishes

        Raises:
            CircuitOpenError: If any category rejects the work
        """
        admitted: List[BackendCategory] = []
        async with self._lock:
            for category in categories:
                breaker = self.circuit_breakers[category]
                previous = breaker.state
                allowed = breaker.allow_request()
                await self._state_changed(breaker, previous)
                if not allowed:
                    for admitted_category in admitted:
                        self.circuit_breakers[admitted_category].release_probe()
                    raise CircuitOpenError(category.value, breaker.retry_after())
                admitted.append(category)
        return admitted

    async def release_admission(self, categories: Iterable[BackendCategory]):
        """Give back admitted probe slots for work that ended without an outcome."""
        async with self._lock:
            for category in categories:
                self.circuit_breakers[category].release_probe()

    async def record_success(self, categories: Iterable[BackendCategory]):
        async with self._lock:
            for category in categories:
                breaker = self.circuit_breakers[category]
                previous = breaker.state
                breaker.record_outcome(None)
                await self._state_changed(breaker, previous)

    async def record_failure(
        self,
        error: BaseException,
        categories: Iterable[BackendCategory] = ()
    ) -> Tuple[BackendCategory, ErrorSeverity]:
        """
        Record a failed unit of work.

        The failure counts against the category it is classified into; any
        other admitted category only gets its probe slot back.
        """
        category, severity = classify_error(error)
        async with self._lock:
            breaker = self.circuit_breakers[category]
            previous = breaker.state
            breaker.record_outcome(severity)
            await self._state_changed(breaker, previous)

            for other in categories:
                if other != category:
                    self.circuit_breakers[other].release_probe()

        self.logger.debug("Failure recorded", extra={
            "category": category.value,
            "severity": severity.value,
            "failure_count": breaker.failure_count
        })
        return category, severity

    async def get_circuit_breaker_status(self) -> Dict[str, Dict[str, Any]]:
        async with self._lock:
            return {category.value: breaker.to_dict() for category, breaker in self.circuit_breakers.items()}

    async def reset_circuit_breaker(self, category: BackendCategory):
        async with self._lock:
            breaker = self.circuit_breakers[category]
            previous = breaker.state
            breaker.reset()
            await self._state_changed(breaker, previous)
        self.logger.info("Circuit breaker reset", extra={"category": category.value})

    async def _state_changed(self, breaker: CircuitBreaker, previous: CircuitState):
        if breaker.state == previous:
            return

        log = self.logger.warning if breaker.state == CircuitState.OPEN else self.logger.info
        log("Circuit state changed", extra={
            "category": breaker.category.value,
            "previous_state": previous.value,
            "state": breaker.state.value,
            "failure_count": breaker.failure_count
        })

        if self.event_bus:
            await self.event_bus.publish(events.CIRCUIT_STATE_CHANGED, {
                "category": breaker.category.value,
                "previous_state": previous.value,
                "state": breaker.state.value,
            })
