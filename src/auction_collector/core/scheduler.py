"""
Scheduler — run/stop lifecycle for automated collection.

The scheduler owns a single dequeue-dispatch loop. While RUNNING it pops
the most urgent job, hands it to the CollectorWorker and files the job
according to the outcome. stop() is cooperative: the worker notices it at
its next page boundary, so the Checkpoint always reflects the last page
that was actually collected.

Phases:
    IDLE --start()--> RUNNING --stop()--> STOPPING --worker returns--> IDLE
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum

from auction_collector.core.checkpoint import AuditEntry, Checkpoint
from auction_collector.core.collector import CollectionOutcome, CollectionResult, CollectorWorker
from auction_collector.core.config import CollectorSettings
from auction_collector.core.errors import CheckpointCorrupted, JobInFlight, UnknownJob
from auction_collector.core.queue import JobQueue
from auction_collector.models.job import DEFAULT_YEAR_FROM, CollectionJob
from auction_collector.stores.base import CheckpointStore

logger = logging.getLogger(__name__)


class SchedulerPhase(Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class SchedulerState:
    """Process-wide scheduler state, read by the status reporter."""

    phase: SchedulerPhase = SchedulerPhase.IDLE
    current_job: CollectionJob | None = None
    current_started_at: float | None = None
    last_processed_job: CollectionJob | None = None
    last_processed_at: float | None = None
    last_result: CollectionResult | None = None

    @property
    def running(self) -> bool:
        return self.phase is not SchedulerPhase.IDLE


@dataclass
class StatusEvent:
    """One entry of the status subscription channel."""

    kind: str  # phase, job_started, page_saved, job_finished, job_queued, restart
    job_id: str | None = None
    data: dict = field(default_factory=dict)
    at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "job_id": self.job_id, "data": self.data, "at": self.at}


@dataclass
class TriggerResult:
    """Result of a manual enqueue."""

    job: CollectionJob
    queued: bool  # False when the job is already being collected


class Scheduler:
    """
    Single-instance collection scheduler.

    Features:
    - Explicit IDLE / RUNNING / STOPPING state machine
    - Urgent operator jobs through the same queue as catalog jobs
    - Backlog rebuild on boot from catalog and stored checkpoints
    - Audited checkpoint resets and periodic refresh
    - Push-style status events for subscribers
    """

    def __init__(
        self,
        queue: JobQueue,
        store: CheckpointStore,
        worker: CollectorWorker,
        settings: CollectorSettings | None = None,
    ):
        self.queue = queue
        self.store = store
        self.worker = worker
        self.settings = settings or CollectorSettings()
        self.state = SchedulerState()
        self.attention: dict[str, str] = {}
        self.known_jobs: dict[str, CollectionJob] = {}

        self._refresh_due: dict[str, tuple[float, CollectionJob]] = {}
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._subscribers: list[asyncio.Queue] = []

        if worker.on_page is None:
            worker.on_page = self._on_page

    # ──────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────

    async def start(self) -> bool:
        """Enter RUNNING and spawn the loop. Returns False if already running."""
        if self.state.phase is SchedulerPhase.STOPPING:
            await self.join()
        if self.state.phase is not SchedulerPhase.IDLE:
            return False

        self._stop_event.clear()
        self._set_phase(SchedulerPhase.RUNNING)
        self._task = asyncio.create_task(self._run_loop(), name="collection-scheduler")
        logger.info(f"Scheduler started with {len(self.queue)} jobs queued")
        return True

    async def stop(self, wait: bool = False) -> bool:
        """
        Request a cooperative stop. Returns False if already idle.

        With wait=True, returns once the active worker has saved its last
        page and the scheduler is IDLE again.
        """
        if self.state.phase is SchedulerPhase.IDLE:
            return False

        if self.state.phase is SchedulerPhase.RUNNING:
            self._set_phase(SchedulerPhase.STOPPING)
            self._stop_event.set()
            self.queue.wake()
            logger.info("Scheduler stopping...")

        if wait:
            await self.join()
        return True

    async def join(self) -> None:
        """Wait for the loop task to finish."""
        if self._task is not None and not self._task.done():
            await asyncio.wait({self._task})

    # ──────────────────────────────────────────────
    # Loop
    # ──────────────────────────────────────────────

    async def _run_loop(self) -> None:
        try:
            while not self._stop_event.is_set():
                await self._enqueue_due_refreshes()

                job = self.queue.dequeue()
                if job is None:
                    if self._stop_event.is_set():
                        break
                    await self.queue.wait(self.settings.idle_wait)
                    continue

                outcome = await self._dispatch(job)
                if outcome.retry_after > 0 and not self._stop_event.is_set():
                    logger.info(f"Pausing dispatch for {outcome.retry_after:.0f}s ({outcome.reason})")
                    await self._pause(outcome.retry_after)
        finally:
            self._set_phase(SchedulerPhase.IDLE)
            logger.info("Scheduler idle")

    async def _dispatch(self, job: CollectionJob) -> CollectionOutcome:
        """Run one job through the worker and file it by outcome."""
        self.state.current_job = job
        self.state.current_started_at = time.time()
        self._publish("job_started", job)
        # Checkpoints record the job as it was registered, not its urgent copy
        descriptor = self.known_jobs.get(job.id, job)

        try:
            outcome = await self.worker.run(descriptor, self._stop_event)
        except asyncio.CancelledError:
            self.queue.requeue(job, keep_position=True)
            raise
        except Exception as e:
            logger.exception(f"Worker failed on {job.id}: {e}")
            outcome = CollectionOutcome(
                descriptor,
                CollectionResult.YIELDED,
                reason=str(e),
                retry_after=self.settings.backoff_base,
            )
        finally:
            self.state.current_job = None
            self.state.current_started_at = None

        try:
            self._file_outcome(outcome)
        except Exception as e:
            logger.exception(f"Failed to file outcome for {job.id}: {e}")
        return outcome

    def _file_outcome(self, outcome: CollectionOutcome) -> None:
        job = outcome.job
        self.state.last_result = outcome.result

        match outcome.result:
            case CollectionResult.COMPLETED:
                self.queue.release(job.id)
                self.state.last_processed_job = job
                self.state.last_processed_at = time.time()
                if job.refresh_interval:
                    self._refresh_due[job.id] = (time.time() + job.refresh_interval, job)
            case CollectionResult.YIELDED:
                self.queue.requeue(job)
            case CollectionResult.INTERRUPTED:
                self.queue.requeue(job, keep_position=True)
            case CollectionResult.NEEDS_ATTENTION:
                self.queue.release(job.id)
                self.attention[job.id] = outcome.reason or "checkpoint unusable"
                logger.error(f"Job {job.id} needs operator attention: {outcome.reason}")

        self._publish(
            "job_finished",
            job,
            result=outcome.result.value,
            pages=outcome.pages,
            records=outcome.records,
            reason=outcome.reason,
        )

    async def _pause(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    # ──────────────────────────────────────────────
    # Manual Triggers
    # ──────────────────────────────────────────────

    async def enqueue_urgent(self, job: CollectionJob) -> TriggerResult:
        """Queue a job ahead of everything else; may auto-start (see settings)."""
        queued = self.queue.enqueue_urgent(job)
        self.known_jobs.setdefault(job.id, job)
        self._publish("job_queued", job, urgent=True, queued=queued)
        await self._maybe_auto_start()
        return TriggerResult(job=job, queued=queued)

    async def start_make(
        self,
        make: str,
        model: str | None = None,
        year_from: int | None = None,
        year_to: int | None = None,
    ) -> TriggerResult:
        """Operator "collect this make now"."""
        job = CollectionJob(
            make=make,
            model=model,
            year_from=year_from or DEFAULT_YEAR_FROM,
            year_to=year_to,
        )
        return await self.enqueue_urgent(job)

    async def start_multiple(self, jobs: list[CollectionJob]) -> list[TriggerResult]:
        """Queue several urgent jobs; they run in the order given."""
        results = []
        # Each urgent insert lands in front of the previous one
        for job in reversed(jobs):
            queued = self.queue.enqueue_urgent(job)
            self.known_jobs.setdefault(job.id, job)
            self._publish("job_queued", job, urgent=True, queued=queued)
            results.append(TriggerResult(job=job, queued=queued))
        await self._maybe_auto_start()
        return list(reversed(results))

    async def _maybe_auto_start(self) -> None:
        if self.settings.auto_start_on_urgent and self.state.phase is SchedulerPhase.IDLE:
            logger.info("Auto-starting scheduler for urgent job")
            await self.start()

    # ──────────────────────────────────────────────
    # Backlog
    # ──────────────────────────────────────────────

    def enqueue(self, job: CollectionJob) -> bool:
        self.known_jobs.setdefault(job.id, job)
        return self.queue.enqueue(job)

    async def bootstrap(self, catalog: list[CollectionJob]) -> int:
        """
        Rebuild the backlog after a (re)start.

        Catalog jobs are queued at their catalog priority unless their
        checkpoint is complete; any other stored checkpoint that is not
        complete is queued from its recorded job. Returns the queue length.
        """
        checkpoints = {cp.scope_key: cp for cp in await self.store.list_checkpoints()}
        catalog_ids = set()

        for job in catalog:
            catalog_ids.add(job.id)
            self.known_jobs[job.id] = job
            self._file_on_boot(job, checkpoints.get(job.scope_key))

        for scope_key, checkpoint in checkpoints.items():
            if scope_key in catalog_ids:
                continue
            if checkpoint.job is None:
                logger.warning(f"Checkpoint {scope_key} has no job descriptor; not resuming")
                continue
            self.known_jobs[checkpoint.job.id] = checkpoint.job
            self._file_on_boot(checkpoint.job, checkpoint)

        logger.info(
            f"Backlog rebuilt: {len(self.queue)} queued, {len(self._refresh_due)} awaiting refresh, "
            f"{len(self.attention)} need attention"
        )
        return len(self.queue)

    def _file_on_boot(self, job: CollectionJob, checkpoint: Checkpoint | None) -> None:
        if checkpoint is not None and checkpoint.needs_attention:
            self.attention[job.id] = checkpoint.needs_attention
        elif checkpoint is not None and checkpoint.completed:
            if job.refresh_interval:
                due = (checkpoint.last_collected_at or 0.0) + job.refresh_interval
                self._refresh_due[job.id] = (due, job)
        else:
            self.queue.enqueue(job)

    async def _enqueue_due_refreshes(self) -> None:
        now = time.time()
        for job_id, (due, job) in list(self._refresh_due.items()):
            if due > now:
                continue
            del self._refresh_due[job_id]
            try:
                await self._reset(job.scope_key, job, reason="scheduled refresh", actor="scheduler")
            except Exception as e:
                logger.exception(
                    f"Scheduled refresh of {job_id} failed, "
                    f"retrying in {self.settings.backoff_max:.0f}s: {e}"
                )
                self._refresh_due[job_id] = (now + self.settings.backoff_max, job)

    # ──────────────────────────────────────────────
    # Audited Restart
    # ──────────────────────────────────────────────

    async def restart_make(
        self, scope_key: str, reason: str, actor: str = "operator"
    ) -> CollectionJob | None:
        """
        Rewind a job to page 0 on every provider and queue it again.

        This is the only operation that moves cursors backwards; each call
        writes an audit entry holding the replaced checkpoint.

        Raises:
            JobInFlight: the job is being collected right now.
            UnknownJob: nothing is known about scope_key.
        """
        if scope_key in self.queue.in_flight:
            raise JobInFlight(f"{scope_key} is being collected; stop the scheduler first")

        job = self.known_jobs.get(scope_key)
        exists = await self._reset(scope_key, job, reason=reason, actor=actor)
        if job is None and not exists:
            raise UnknownJob(f"No job or checkpoint for {scope_key}")
        return job or self.known_jobs.get(scope_key)

    async def _reset(
        self, scope_key: str, job: CollectionJob | None, reason: str, actor: str
    ) -> bool:
        previous: dict | None = None
        exists = True
        try:
            checkpoint = await self.store.load(scope_key)
            exists = checkpoint.job is not None or checkpoint.started
            previous = checkpoint.to_dict() if exists else None
            job = job or checkpoint.job
        except CheckpointCorrupted as e:
            logger.warning(f"Resetting corrupt checkpoint {scope_key}: {e}")

        if exists:
            await self.store.append_audit(
                AuditEntry(
                    scope_key=scope_key,
                    action="restart",
                    reason=reason,
                    actor=actor,
                    previous=previous,
                )
            )
            await self.store.delete(scope_key)
            logger.warning(f"Checkpoint {scope_key} reset by {actor}: {reason}")

        self.attention.pop(scope_key, None)
        self._refresh_due.pop(scope_key, None)
        if job is not None:
            self.known_jobs.setdefault(job.id, job)
            self.queue.enqueue(job)
        if exists or job is not None:
            self._publish("restart", job, scope_key=scope_key, actor=actor, reason=reason)
        return exists

    # ──────────────────────────────────────────────
    # Status Events
    # ──────────────────────────────────────────────

    def subscribe(self, maxsize: int = 100) -> asyncio.Queue:
        """Open a channel of StatusEvent objects. The oldest events are dropped when full."""
        channel: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._subscribers.append(channel)
        return channel

    def unsubscribe(self, channel: asyncio.Queue) -> None:
        if channel in self._subscribers:
            self._subscribers.remove(channel)

    def _publish(self, kind: str, job: CollectionJob | None = None, **data) -> None:
        event = StatusEvent(kind=kind, job_id=job.id if job else None, data=data)
        for channel in list(self._subscribers):
            try:
                if channel.full():
                    channel.get_nowait()
                channel.put_nowait(event)
            except (asyncio.QueueEmpty, asyncio.QueueFull) as e:
                logger.warning(f"Dropped {kind} event for a subscriber: {e!r}")

    def _set_phase(self, phase: SchedulerPhase) -> None:
        self.state.phase = phase
        self._publish("phase", phase=phase.value, queue_length=len(self.queue))

    def _on_page(self, job: CollectionJob, provider: str, checkpoint: Checkpoint) -> None:
        progress = checkpoint.progress(provider)
        self._publish(
            "page_saved",
            job,
            provider=provider,
            last_page=progress.last_page,
            completed=progress.completed,
            total_records=checkpoint.total_records_collected,
        )
