"""
QueueManager for the Video Job Orchestrator

Priority queue of deferred jobs. Higher priority dequeues first; jobs of
equal priority dequeue in the order they were enqueued.
"""

import asyncio
import heapq
import itertools
from typing import Any, Dict, List, Optional, Tuple

from ..core.exceptions import QueueError
from ..models.orchestration import QueuedJob
from ..utils.logger import get_logger, set_log_context


class QueueManager:
    """
    Manages the deferred-job queue.

    Provides capabilities for:
    - Priority-ordered enqueue/dequeue with FIFO tie-break
    - Removal of a queued orchestration (cancellation)
    - Pausing and resuming dequeues
    - Queue statistics
    """

    def __init__(self, max_size: Optional[int] = None):
        """
        Initialize QueueManager.

        Args:
            max_size: Maximum number of queued jobs, unbounded when None
        """
        self.max_size = max_size
        # Entries are (-priority score, sequence, job); the sequence keeps equal priorities FIFO
        self._job_queue: List[Tuple[int, int, QueuedJob]] = []
        self._sequence = itertools.count()
        self._is_paused = False
        self._lock = asyncio.Lock()
        self._total_enqueued = 0
        self._total_dequeued = 0

        self.logger = get_logger(__name__)
        set_log_context(self.logger, component="queue_manager")

    async def enqueue_job(self, job: QueuedJob) -> int:
        """
        Add a job to the queue.

        Args:
            job: Job to enqueue

        Returns:
            Queue size after the insertion

        Raises:
            QueueError: If the queue is full or the orchestration is already queued
        """
        async with self._lock:
            if self.max_size is not None and len(self._job_queue) >= self.max_size:
                raise QueueError("enqueue", f"queue is full ({self.max_size} jobs)")
            if any(entry[2].orchestration_id == job.orchestration_id for entry in self._job_queue):
                raise QueueError("enqueue", f"orchestration {job.orchestration_id} is already queued")

            heapq.heappush(self._job_queue, (-job.priority.score, next(self._sequence), job))
            self._total_enqueued += 1
            size = len(self._job_queue)

        self.logger.info("Job enqueued", extra={
            "job_id": job.job_id,
            "orchestration_id": job.orchestration_id,
            "priority": job.priority.value,
            "queue_size": size
        })
        return size

    async def dequeue_job(self) -> Optional[QueuedJob]:
        """
        Take the highest-priority job off the queue.

        Returns:
            The job, or None if the queue is empty or paused
        """
        async with self._lock:
            if self._is_paused or not self._job_queue:
                return None
            _, _, job = heapq.heappop(self._job_queue)
            self._total_dequeued += 1
            remaining = len(self._job_queue)

        self.logger.info("Job dequeued", extra={
            "job_id": job.job_id,
            "orchestration_id": job.orchestration_id,
            "remaining_queue_size": remaining
        })
        return job

    async def peek(self) -> Optional[QueuedJob]:
        async with self._lock:
            return self._job_queue[0][2] if self._job_queue else None

    async def remove_job(self, orchestration_id: str) -> Optional[QueuedJob]:
        """Remove a queued orchestration; returns the removed entry, if any."""
        async with self._lock:
            for index, entry in enumerate(self._job_queue):
                if entry[2].orchestration_id == orchestration_id:
                    self._job_queue.pop(index)
                    heapq.heapify(self._job_queue)
                    return entry[2]
        return None

    async def position_of(self, orchestration_id: str) -> Optional[int]:
        """1-based position the orchestration would be dequeued at."""
        async with self._lock:
            ordered = sorted(self._job_queue)
        for position, entry in enumerate(ordered, start=1):
            if entry[2].orchestration_id == orchestration_id:
                return position
        return None

    def size(self) -> int:
        return len(self._job_queue)

    async def get_queue_statistics(self) -> Dict[str, Any]:
        """Get queue statistics."""
        async with self._lock:
            by_priority: Dict[str, int] = {}
            for _, _, job in self._job_queue:
                by_priority[job.priority.value] = by_priority.get(job.priority.value, 0) + 1

            return {
                "queue_size": len(self._job_queue),
                "by_priority": by_priority,
                "total_enqueued": self._total_enqueued,
                "total_dequeued": self._total_dequeued,
                "is_paused": self._is_paused
            }

    async def pause_processing(self):
        """Pause dequeues."""
        self._is_paused = True
        self.logger.info("Queue processing paused")

    async def resume_processing(self):
        """Resume dequeues."""
        self._is_paused = False
        self.logger.info("Queue processing resumed")

    async def drain(self) -> List[QueuedJob]:
        """Remove and return every queued job in dequeue order."""
        async with self._lock:
            jobs = [entry[2] for entry in sorted(self._job_queue)]
            self._job_queue.clear()
        return jobs
