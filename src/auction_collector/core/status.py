"""
Status Reporter — read-only views over scheduler state and checkpoints.

Everything here is computed on demand; nothing is cached, so a poll always
reflects the last saved page.
"""

import time
from collections import defaultdict

from auction_collector.core.checkpoint import Checkpoint
from auction_collector.core.config import CollectorSettings
from auction_collector.core.scheduler import Scheduler
from auction_collector.models.job import CollectionJob
from auction_collector.stores.base import CheckpointStore

# Job activity labels
ACTIVE = "active"
STALLED = "stalled"
PAUSED = "paused"
PENDING = "pending"
COMPLETED = "completed"
ATTENTION = "attention"


class StatusReporter:
    """Builds the payloads behind the status, jobs and vehicle-progress views."""

    def __init__(
        self,
        scheduler: Scheduler,
        store: CheckpointStore | None = None,
        settings: CollectorSettings | None = None,
    ):
        self.scheduler = scheduler
        self.store = store or scheduler.store
        self.settings = settings or scheduler.settings

    # ──────────────────────────────────────────────
    # Derived Fields
    # ──────────────────────────────────────────────

    def percent_complete(self, checkpoint: Checkpoint) -> float:
        """
        Estimated completion across providers.

        The true page count is only known once a provider runs out, so an
        unfinished provider never reports more than 99%.
        """
        if not checkpoint.providers:
            return 0.0
        ceiling = max(self.settings.estimated_total_pages, 1)
        shares = [
            1.0 if p.completed else min(p.last_page / ceiling, 0.99)
            for p in checkpoint.providers.values()
        ]
        return round(100 * sum(shares) / len(shares), 1)

    def activity(self, checkpoint: Checkpoint, now: float | None = None) -> str:
        """Classify a job as completed, active, stalled, paused, pending or attention."""
        now = now or time.time()
        state = self.scheduler.state

        if checkpoint.scope_key in self.scheduler.attention or checkpoint.needs_attention:
            return ATTENTION
        if checkpoint.completed:
            return COMPLETED

        last = checkpoint.last_collected_at
        if last is not None and now - last < self.settings.stall_after:
            return ACTIVE

        current = state.current_job
        if current is not None and current.scope_key == checkpoint.scope_key:
            since = max(last or 0.0, state.current_started_at or 0.0)
            return ACTIVE if now - since < self.settings.stall_after else STALLED

        return PAUSED if checkpoint.started else PENDING

    # ──────────────────────────────────────────────
    # Views
    # ──────────────────────────────────────────────

    async def status(self) -> dict:
        """Snapshot polled by the admin UI."""
        state = self.scheduler.state
        return {
            "running": state.running,
            "phase": state.phase.value,
            "queue_length": len(self.scheduler.queue),
            "current_job": self._job_dict(state.current_job),
            "current_started_at": state.current_started_at,
            "last_processed_job": self._job_dict(state.last_processed_job),
            "last_processed_at": state.last_processed_at,
            "last_result": state.last_result.value if state.last_result else None,
            "next_job": self._job_dict(next(iter(self.scheduler.queue.snapshot()), None)),
            "attention": dict(self.scheduler.attention),
            "per_make_progress": await self.vehicle_progress(),
        }

    async def jobs(self) -> list[dict]:
        """Every known job with checkpoint-derived progress and queue position."""
        checkpoints = {cp.scope_key: cp for cp in await self.store.list_checkpoints()}
        queued = self.scheduler.queue.snapshot()
        positions = {job.id: index for index, job in enumerate(queued)}

        jobs: dict[str, CollectionJob] = dict(self.scheduler.known_jobs)
        for job in queued:
            jobs[job.id] = job
        for checkpoint in checkpoints.values():
            if checkpoint.job is not None:
                jobs.setdefault(checkpoint.scope_key, checkpoint.job)

        current = self.scheduler.state.current_job
        now = time.time()
        rows = []
        for job_id, job in jobs.items():
            checkpoint = checkpoints.get(job.scope_key) or Checkpoint.for_job(job)
            if current is not None and current.id == job_id:
                state = "running"
            elif job_id in positions:
                state = "queued"
            else:
                state = "idle"
            rows.append(
                {
                    **job.to_dict(),
                    "state": state,
                    "queue_position": positions.get(job_id),
                    "providers": {
                        name: {
                            "last_page": p.last_page,
                            "completed": p.completed,
                            "records": p.records,
                        }
                        for name, p in checkpoint.providers.items()
                    },
                    "completed": checkpoint.completed,
                    "total_records_collected": checkpoint.total_records_collected,
                    "last_collected_at": checkpoint.last_collected_at,
                    "percent_complete": self.percent_complete(checkpoint),
                    "activity": self.activity(checkpoint, now),
                    "attention": self.scheduler.attention.get(job_id)
                    or checkpoint.needs_attention,
                }
            )

        rows.sort(
            key=lambda r: (
                r["queue_position"] is None,
                r["queue_position"] if r["queue_position"] is not None else 0,
                r["priority"],
                r["id"],
            )
        )
        return rows

    async def vehicle_progress(self) -> list[dict]:
        """Per-make totals across every job of that make."""
        now = time.time()
        totals: dict[str, dict] = defaultdict(
            lambda: {
                "total_records": 0,
                "provider_records": defaultdict(int),
                "jobs": 0,
                "completed_jobs": 0,
                "percent": [],
                "activity": set(),
            }
        )

        for checkpoint in await self.store.list_checkpoints():
            make = checkpoint.job.make if checkpoint.job else checkpoint.scope_key.split(":")[0]
            row = totals[make]
            row["total_records"] += checkpoint.total_records_collected
            for name, progress in checkpoint.providers.items():
                row["provider_records"][name] += progress.records
            row["jobs"] += 1
            row["completed_jobs"] += int(checkpoint.completed)
            row["percent"].append(self.percent_complete(checkpoint))
            row["activity"].add(self.activity(checkpoint, now))

        result = []
        for make, row in sorted(totals.items()):
            result.append(
                {
                    "make": make,
                    "total_records": row["total_records"],
                    "copart_records": row["provider_records"].get("copart", 0),
                    "iaai_records": row["provider_records"].get("iaai", 0),
                    "completed": row["completed_jobs"] == row["jobs"],
                    "jobs": row["jobs"],
                    "percent_complete": round(sum(row["percent"]) / len(row["percent"]), 1),
                    "activity": self._summarize_activity(row["activity"]),
                }
            )
        return result

    @staticmethod
    def _summarize_activity(labels: set[str]) -> str:
        for label in (ATTENTION, STALLED, ACTIVE, PAUSED, PENDING):
            if label in labels:
                return label
        return COMPLETED

    @staticmethod
    def _job_dict(job: CollectionJob | None) -> dict | None:
        return job.to_dict() if job else None
