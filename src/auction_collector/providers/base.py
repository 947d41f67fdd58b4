"""
Provider Protocol — one page of sale records from an auction data source.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from auction_collector.models.job import CollectionJob
from auction_collector.models.sale import SaleRecord


@dataclass(frozen=True)
class SaleQuery:
    """Search parameters sent to a provider for one job."""

    make: str
    model: str | None
    year_from: int
    year_to: int
    page_size: int = 50

    @classmethod
    def from_job(cls, job: CollectionJob, page_size: int = 50) -> "SaleQuery":
        return cls(
            make=job.make,
            model=job.model,
            year_from=job.year_from,
            year_to=job.resolved_year_to,
            page_size=page_size,
        )


@dataclass
class PageResult:
    """
    Outcome of fetching one page.

    `next_page` is the page to request next time, never the page that was
    just fetched, so it can be persisted as-is.
    """

    records: list[SaleRecord] = field(default_factory=list)
    has_more: bool = False
    next_page: int = 1
    skipped: int = 0  # rows dropped as malformed


@runtime_checkable
class ProviderClient(Protocol):
    """Protocol implemented by every auction data provider client."""

    name: str

    async def fetch_page(self, query: SaleQuery, page: int) -> PageResult:
        """
        Fetch one page of results.

        Raises:
            ProviderUnavailable: transport/HTTP failure after all retries.
            ProviderRateLimited: throttled through all retries.
            MalformedResponse: the response could not be understood.
        """
        ...

    async def close(self) -> None:
        ...
