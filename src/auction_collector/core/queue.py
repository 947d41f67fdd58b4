"""
Job Queue — prioritized backlog of collection jobs.

Ordering is (priority ascending, insertion sequence ascending): jobs in
the same tier come out in arrival order. Urgent jobs are placed in tier 0
ahead of everything already queued.
"""

import asyncio
import heapq
import itertools
import logging

from auction_collector.models.job import PRIORITY_URGENT, CollectionJob

logger = logging.getLogger(__name__)


class JobQueue:
    """
    Priority queue with idempotent enqueue.

    A job id is present at most once. Dequeued jobs stay "in flight" until
    the scheduler releases or requeues them; an in-flight id cannot be
    enqueued again.
    """

    def __init__(self):
        self._heap: list[tuple[int, int, str]] = []
        self._entries: dict[str, tuple[int, int, CollectionJob]] = {}
        self._in_flight: dict[str, tuple[int, int]] = {}
        self._seq = itertools.count()
        self._urgent_seq = itertools.count(-1, -1)
        self._available = asyncio.Event()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._entries

    @property
    def in_flight(self) -> set[str]:
        return set(self._in_flight)

    def _push(self, job: CollectionJob, priority: int, seq: int) -> None:
        self._entries[job.id] = (priority, seq, job)
        heapq.heappush(self._heap, (priority, seq, job.id))
        self._available.set()

    def enqueue(self, job: CollectionJob) -> bool:
        """
        Add a job at the tail of its priority tier.

        Returns False when the job is in flight. A job already queued keeps
        its place unless the new priority is more urgent, in which case it
        moves to the tail of the new tier. Queued jobs are never demoted.
        """
        if job.id in self._in_flight:
            logger.debug(f"Not enqueuing {job.id}: already being collected")
            return False

        existing = self._entries.get(job.id)
        if existing is not None:
            priority = existing[0]
            if priority <= job.priority:
                return True
            logger.debug(f"Re-prioritizing {job.id}: {priority} -> {job.priority}")

        self._push(job, job.priority, next(self._seq))
        return True

    def enqueue_urgent(self, job: CollectionJob) -> bool:
        """Put a job at the very front of the queue (tier 0)."""
        if job.id in self._in_flight:
            logger.info(f"Urgent request for {job.id} ignored: already being collected")
            return False

        urgent = job.with_priority(PRIORITY_URGENT)
        self._push(urgent, PRIORITY_URGENT, next(self._urgent_seq))
        logger.info(f"Urgent job queued: {urgent.label}")
        return True

    def dequeue(self) -> CollectionJob | None:
        """Pop the most urgent job, or None when the backlog is empty."""
        while self._heap:
            priority, seq, job_id = heapq.heappop(self._heap)
            entry = self._entries.get(job_id)
            # Skip heap items superseded by a later re-prioritization
            if entry is None or entry[:2] != (priority, seq):
                continue
            del self._entries[job_id]
            self._in_flight[job_id] = (priority, seq)
            return entry[2]
        return None

    def release(self, job_id: str) -> None:
        """Mark an in-flight job as finished with."""
        self._in_flight.pop(job_id, None)

    def requeue(self, job: CollectionJob, keep_position: bool = False) -> None:
        """
        Return an in-flight job to the backlog.

        With keep_position the job regains its original slot; otherwise it
        goes to the tail of its tier so other jobs get a turn.
        """
        original = self._in_flight.pop(job.id, None)
        priority = original[0] if original is not None else job.priority
        if job.priority != priority:
            job = job.with_priority(priority)
        if keep_position and original is not None:
            self._push(job, *original)
        else:
            self._push(job, priority, next(self._seq))

    def remove(self, job_id: str) -> bool:
        return self._entries.pop(job_id, None) is not None

    def snapshot(self) -> list[CollectionJob]:
        """Queued jobs in dequeue order."""
        ordered = sorted(self._entries.values(), key=lambda e: (e[0], e[1]))
        return [job for _, _, job in ordered]

    def position(self, job_id: str) -> int | None:
        for index, job in enumerate(self.snapshot()):
            if job.id == job_id:
                return index
        return None

    def wake(self) -> None:
        """Interrupt a pending wait()."""
        self._available.set()

    async def wait(self, timeout: float) -> bool:
        """Passively wait for a job to be enqueued. Returns True if one is available."""
        if self._entries:
            return True
        self._available.clear()
        try:
            await asyncio.wait_for(self._available.wait(), timeout)
        except asyncio.TimeoutError:
            pass
        return bool(self._entries)
