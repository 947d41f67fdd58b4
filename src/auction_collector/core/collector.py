"""
Collector Worker — drives one CollectionJob across every provider.

Each provider walks its own page cursor. The Checkpoint is saved after
every single page, so a crash or stop loses at most the page in flight,
and a restart resumes at the first page that was not saved.
"""

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from auction_collector.core.checkpoint import Checkpoint
from auction_collector.core.config import CollectorSettings
from auction_collector.core.errors import (
    CheckpointCorrupted,
    ProviderError,
    ProviderRateLimited,
)
from auction_collector.core.resilience import CircuitBreaker, ExponentialBackoff
from auction_collector.exporters.base import Exporter
from auction_collector.models.job import CollectionJob
from auction_collector.models.sale import SaleRecord
from auction_collector.providers.base import PageResult, ProviderClient, SaleQuery
from auction_collector.stores.base import CheckpointStore

logger = logging.getLogger(__name__)


class CollectionResult(Enum):
    """How a worker run ended."""

    COMPLETED = "completed"  # every provider exhausted
    INTERRUPTED = "interrupted"  # stop requested
    YIELDED = "yielded"  # page budget spent or providers unavailable
    NEEDS_ATTENTION = "needs_attention"  # checkpoint unusable, operator must restart


@dataclass
class CollectionOutcome:
    """Summary of one worker run."""

    job: CollectionJob
    result: CollectionResult
    pages: int = 0
    records: int = 0
    errors: list[str] = field(default_factory=list)
    reason: str | None = None
    retry_after: float = 0.0  # seconds the scheduler should wait before the next dispatch


class CollectorWorker:
    """
    Collects one job at a time.

    Features:
    - Per-page checkpointing
    - Concurrent page fetches across providers, applied one at a time
    - Per-provider cooldown and circuit breaker on failures
    - Cooperative stop and page budget at loop boundaries
    """

    def __init__(
        self,
        store: CheckpointStore,
        providers: dict[str, ProviderClient],
        exporters: list[Exporter] | None = None,
        settings: CollectorSettings | None = None,
        on_page: Callable[[CollectionJob, str, Checkpoint], None] | None = None,
    ):
        self.store = store
        self.providers = providers
        self.exporters = exporters or []
        self.settings = settings or CollectorSettings()
        self.on_page = on_page

        self.backoff = ExponentialBackoff.from_settings(self.settings)
        # Provider health outlives a single job
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=self.settings.failure_threshold,
            cooldown=self.settings.backoff_max,
        )

    # ──────────────────────────────────────────────
    # Main Run
    # ──────────────────────────────────────────────

    async def run(self, job: CollectionJob, stop_event: asyncio.Event) -> CollectionOutcome:
        """Collect pages for `job` until it completes, is stopped, or yields."""
        try:
            checkpoint = await self.store.load(job.scope_key)
        except CheckpointCorrupted as e:
            logger.error(f"Checkpoint for {job.id} is corrupt: {e}")
            return CollectionOutcome(job, CollectionResult.NEEDS_ATTENTION, reason=str(e))

        if checkpoint.needs_attention:
            return CollectionOutcome(
                job, CollectionResult.NEEDS_ATTENTION, reason=checkpoint.needs_attention
            )
        if checkpoint.job is None:
            checkpoint.job = job

        query = SaleQuery.from_job(job, page_size=self.settings.page_size)
        outcome = CollectionOutcome(job, CollectionResult.YIELDED)
        cooldown_until: dict[str, float] = {}
        failures: dict[str, int] = defaultdict(int)

        logger.info(
            f"Collecting {job.label} "
            + ", ".join(
                f"{name} from page {checkpoint.progress(name).next_page}"
                for name in self.providers
                if not checkpoint.progress(name).completed
            )
        )

        while True:
            pending = [name for name in self.providers if not checkpoint.progress(name).completed]
            if not pending:
                outcome.result = CollectionResult.COMPLETED
                break
            if stop_event.is_set():
                outcome.result = CollectionResult.INTERRUPTED
                break
            if outcome.pages >= self.settings.pages_per_run:
                outcome.result = CollectionResult.YIELDED
                outcome.reason = "page budget reached"
                break

            healthy = [name for name in pending if not self.circuit_breaker.is_open(name)]
            if not healthy:
                outcome.result = CollectionResult.YIELDED
                outcome.reason = "providers unavailable"
                outcome.retry_after = self.circuit_breaker.soonest_retry(pending)
                break

            now = time.monotonic()
            ready = [name for name in healthy if cooldown_until.get(name, 0.0) <= now]
            if not ready:
                delay = min(cooldown_until[name] for name in healthy) - now
                await self._pause(stop_event, delay)
                continue

            results = await asyncio.gather(
                *(self._fetch(name, query, checkpoint.progress(name).next_page) for name in ready)
            )

            for name, result in zip(ready, results):
                if isinstance(result, ProviderError):
                    failures[name] += 1
                    cooldown_until[name] = time.monotonic() + self._failure_delay(
                        result, failures[name]
                    )
                    self.circuit_breaker.record_failure(name)
                    outcome.errors.append(str(result))
                    logger.warning(f"{result} (page {checkpoint.progress(name).next_page} kept)")
                    continue

                failures[name] = 0
                self.circuit_breaker.record_success(name)

                if result.records and not await self._export(result.records):
                    cooldown_until[name] = time.monotonic() + self.backoff.delay(0)
                    outcome.errors.append(f"[{name}] export failed")
                    continue

                try:
                    checkpoint.record_page(
                        name, result.next_page, len(result.records), result.has_more
                    )
                except CheckpointCorrupted as e:
                    logger.error(f"Cursor regression for {job.id}/{name}: {e}")
                    await self._flag_attention(job, str(e))
                    outcome.result = CollectionResult.NEEDS_ATTENTION
                    outcome.reason = str(e)
                    return outcome

                if not await self._save(checkpoint):
                    outcome.result = CollectionResult.YIELDED
                    outcome.reason = "checkpoint save failed"
                    outcome.retry_after = self.backoff.delay(0)
                    return outcome

                outcome.pages += 1
                outcome.records += len(result.records)
                self._log_page(job, name, result, checkpoint)
                if self.on_page:
                    self.on_page(job, name, checkpoint)

        logger.info(
            f"Job {job.id} {outcome.result.value}: {outcome.pages} pages, "
            f"{outcome.records} records this run, {checkpoint.total_records_collected} total"
        )
        return outcome

    # ──────────────────────────────────────────────
    # Helpers
    # ──────────────────────────────────────────────

    async def _fetch(self, name: str, query: SaleQuery, page: int) -> PageResult | ProviderError:
        try:
            return await self.providers[name].fetch_page(query, page)
        except ProviderError as e:
            return e

    async def _export(self, records: list[SaleRecord]) -> bool:
        """Send a page to every exporter. Returns False if any of them failed."""
        for exporter in self.exporters:
            try:
                await exporter.export(records)
            except Exception as e:
                logger.error(f"Exporter error ({type(exporter).__name__}): {e}")
                return False
        return True

    async def _save(self, checkpoint: Checkpoint) -> bool:
        try:
            await self.store.save(checkpoint)
        except Exception as e:
            logger.error(f"Failed to save checkpoint {checkpoint.scope_key}: {e}")
            return False
        return True

    async def _flag_attention(self, job: CollectionJob, reason: str) -> None:
        """Persist the attention flag on the last good stored record."""
        try:
            stored = await self.store.load(job.scope_key)
        except CheckpointCorrupted:
            stored = Checkpoint.for_job(job)
        stored.needs_attention = reason
        await self._save(stored)

    def _failure_delay(self, error: ProviderError, failures: int) -> float:
        if isinstance(error, ProviderRateLimited):
            return self.backoff.throttled_delay(
                failures, self.settings.rate_limit_factor, error.retry_after
            )
        return self.backoff.delay(failures)

    @staticmethod
    async def _pause(stop_event: asyncio.Event, delay: float) -> None:
        """Sleep for `delay` seconds unless stop is requested first."""
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=max(delay, 0.0))
        except asyncio.TimeoutError:
            pass

    @staticmethod
    def _log_page(job: CollectionJob, name: str, result: PageResult, checkpoint: Checkpoint):
        progress = checkpoint.progress(name)
        state = "done" if progress.completed else f"next page {progress.next_page}"
        logger.debug(
            f"[{name}] {job.make} page {progress.last_page}: "
            f"{len(result.records)} records ({state})"
        )
