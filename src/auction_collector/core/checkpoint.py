"""
Checkpoint model for resumable collection.

One Checkpoint exists per scope key. It records, for every provider, the
last page that was fully collected and whether the provider has run out
of results, so an interrupted job resumes exactly where it stopped.
"""

import time
from dataclasses import dataclass, field

from auction_collector.core.errors import CheckpointCorrupted
from auction_collector.models.job import CollectionJob

PROVIDER_NAMES = ("copart", "iaai")


@dataclass
class ProviderProgress:
    """Page cursor and completion flag for one provider."""

    last_page: int = 0
    completed: bool = False
    records: int = 0

    @property
    def next_page(self) -> int:
        return self.last_page + 1

    def advance(self, next_page: int, records: int, has_more: bool) -> None:
        """Move the cursor so that `next_page` is the page fetched next."""
        new_last = next_page - 1
        if new_last <= self.last_page:
            raise CheckpointCorrupted(
                f"cursor would not move forward ({self.last_page} -> {new_last})"
            )
        self.last_page = new_last
        self.records += records
        if not has_more:
            self.completed = True


@dataclass
class Checkpoint:
    """Durable resume state for one CollectionJob."""

    scope_key: str
    job: CollectionJob | None = None
    providers: dict[str, ProviderProgress] = field(default_factory=dict)
    total_records_collected: int = 0
    last_collected_at: float | None = None
    needs_attention: str | None = None

    def __post_init__(self):
        for name in PROVIDER_NAMES:
            self.providers.setdefault(name, ProviderProgress())

    @classmethod
    def for_job(cls, job: CollectionJob) -> "Checkpoint":
        return cls(scope_key=job.scope_key, job=job)

    @property
    def completed(self) -> bool:
        return all(p.completed for p in self.providers.values())

    @property
    def started(self) -> bool:
        return self.last_collected_at is not None or any(
            p.last_page > 0 for p in self.providers.values()
        )

    def progress(self, provider: str) -> ProviderProgress:
        return self.providers.setdefault(provider, ProviderProgress())

    def record_page(
        self, provider: str, next_page: int, records: int, has_more: bool
    ) -> None:
        """Apply one successfully collected page."""
        self.progress(provider).advance(next_page, records, has_more)
        self.total_records_collected += records
        self.last_collected_at = time.time()

    def to_dict(self) -> dict:
        return {
            "scope_key": self.scope_key,
            "job": self.job.to_dict() if self.job else None,
            "providers": {
                name: {"last_page": p.last_page, "completed": p.completed, "records": p.records}
                for name, p in self.providers.items()
            },
            "total_records_collected": self.total_records_collected,
            "last_collected_at": self.last_collected_at,
            "needs_attention": self.needs_attention,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Checkpoint":
        """Rebuild a Checkpoint, raising CheckpointCorrupted on bad data."""
        try:
            job_data = data.get("job")
            providers = {
                name: ProviderProgress(
                    last_page=int(p.get("last_page", 0)),
                    completed=bool(p.get("completed", False)),
                    records=int(p.get("records", 0)),
                )
                for name, p in (data.get("providers") or {}).items()
            }
            checkpoint = cls(
                scope_key=data["scope_key"],
                job=CollectionJob.from_dict(job_data) if job_data else None,
                providers=providers,
                total_records_collected=int(data.get("total_records_collected", 0)),
                last_collected_at=data.get("last_collected_at"),
                needs_attention=data.get("needs_attention"),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise CheckpointCorrupted(f"Unreadable checkpoint: {e}") from e

        if any(p.last_page < 0 for p in checkpoint.providers.values()):
            raise CheckpointCorrupted(f"Negative page cursor in {checkpoint.scope_key}")
        return checkpoint

    def copy(self) -> "Checkpoint":
        return Checkpoint.from_dict(self.to_dict())


@dataclass
class AuditEntry:
    """Record of an operator action that rewinds a Checkpoint."""

    scope_key: str
    action: str
    reason: str
    actor: str = "operator"
    previous: dict | None = None
    at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "scope_key": self.scope_key,
            "action": self.action,
            "reason": self.reason,
            "actor": self.actor,
            "previous": self.previous,
            "at": self.at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AuditEntry":
        return cls(
            scope_key=data["scope_key"],
            action=data["action"],
            reason=data.get("reason", ""),
            actor=data.get("actor", "operator"),
            previous=data.get("previous"),
            at=data.get("at", 0.0),
        )
