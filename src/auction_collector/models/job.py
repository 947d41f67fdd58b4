"""
Collection Job Model.

A CollectionJob names one unit of backlog work: collect every sale record
for a vehicle make (optionally narrowed to one model) within a year range.
"""

import re
from dataclasses import asdict, dataclass, replace
from datetime import date

# Priority tiers, lower is more urgent
PRIORITY_URGENT = 0
PRIORITY_LUXURY = 1
PRIORITY_MAINSTREAM = 2
PRIORITY_CATALOG = 3

DEFAULT_YEAR_FROM = 2012
# Id marker for a range that runs up to the newest model year
OPEN_YEAR = "latest"


def default_year_to() -> int:
    return date.today().year


def _slug(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.strip().lower()).strip("-")


def make_job_id(make: str, model: str | None, year_from: int, year_to: int | None) -> str:
    """
    Build the stable identifier of a job.

    'Mercedes-Benz', None, 2012, 2025 -> 'mercedes-benz:all:2012-2025'
    'BMW', 'X5', 2012, None -> 'bmw:x5:2012-latest'

    An open-ended range keeps the same id across calendar years.
    """
    model_scope = _slug(model) if model else "all"
    return f"{_slug(make)}:{model_scope}:{year_from}-{year_to or OPEN_YEAR}"


@dataclass(frozen=True)
class CollectionJob:
    """One make (and optional model) to collect over an inclusive year range."""

    make: str
    model: str | None = None
    year_from: int = DEFAULT_YEAR_FROM
    year_to: int | None = None  # None (or 0) runs up to the current model year
    priority: int = PRIORITY_MAINSTREAM
    refresh_interval: float | None = None  # seconds; re-collect after completion

    def __post_init__(self):
        if not self.make or not self.make.strip():
            raise ValueError("CollectionJob.make is required")
        if not self.year_to:
            object.__setattr__(self, "year_to", None)
        if self.model is not None and not self.model.strip():
            object.__setattr__(self, "model", None)
        if self.year_to is not None and self.year_from > self.year_to:
            raise ValueError(f"year_from {self.year_from} is after year_to {self.year_to}")
        if self.priority < PRIORITY_URGENT:
            raise ValueError(f"Invalid priority: {self.priority}")

    @property
    def id(self) -> str:
        return make_job_id(self.make, self.model, self.year_from, self.year_to)

    @property
    def scope_key(self) -> str:
        """Key of the Checkpoint owned by this job."""
        return self.id

    @property
    def resolved_year_to(self) -> int:
        """Upper model year to query with, resolved at call time."""
        return self.year_to or default_year_to()

    @property
    def label(self) -> str:
        upper = self.year_to or OPEN_YEAR
        return f"{self.make} {self.model or 'all models'} ({self.year_from}-{upper})"

    def with_priority(self, priority: int) -> "CollectionJob":
        return replace(self, priority=priority)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["id"] = self.id
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "CollectionJob":
        return cls(
            make=data["make"],
            model=data.get("model"),
            year_from=int(data.get("year_from", DEFAULT_YEAR_FROM)),
            year_to=int(data["year_to"]) if data.get("year_to") else None,
            priority=int(data.get("priority", PRIORITY_MAINSTREAM)),
            refresh_interval=data.get("refresh_interval"),
        )
