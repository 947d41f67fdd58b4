"""Shared fixtures: fast settings, in-memory stores and scripted providers."""

import asyncio

import pytest

from auction_collector.core.config import CollectorSettings
from auction_collector.models.sale import SaleRecord
from auction_collector.providers.base import PageResult
from auction_collector.stores.memory import MemoryCheckpointStore


class FakeProvider:
    """
    Scripted provider.

    `pages` lists the record count of each page (page 1 first); the last
    page reports has_more=False. `failures` maps a page number to a list of
    exceptions raised (one per call) before that page succeeds.
    """

    def __init__(self, name, pages, failures=None, delay=0.0):
        self.name = name
        self.pages = pages
        self.failures = {page: list(errors) for page, errors in (failures or {}).items()}
        self.delay = delay
        self.calls: list[tuple[str, int]] = []

    @property
    def pages_requested(self) -> list[int]:
        return [page for _, page in self.calls]

    async def fetch_page(self, query, page):
        self.calls.append((query.make, page))
        if self.delay:
            await asyncio.sleep(self.delay)
        errors = self.failures.get(page)
        if errors:
            raise errors.pop(0)
        count = self.pages[page - 1] if page <= len(self.pages) else 0
        records = [
            SaleRecord(
                id=f"{self.name}:{query.make}-{page}-{i}",
                provider=self.name,
                site=1 if self.name == "copart" else 2,
                lot_id=page * 1000 + i,
                make=query.make,
            )
            for i in range(count)
        ]
        return PageResult(records=records, has_more=page < len(self.pages), next_page=page + 1)

    async def close(self):
        pass


@pytest.fixture
def settings():
    return CollectorSettings(
        page_size=50,
        pages_per_run=100,
        min_request_interval=0.0,
        max_retries=1,
        backoff_base=0.01,
        backoff_max=0.05,
        rate_limit_factor=2.0,
        failure_threshold=3,
        idle_wait=0.05,
        stall_after=60.0,
        estimated_total_pages=10,
        store="memory",
    )


@pytest.fixture
def store():
    return MemoryCheckpointStore()


@pytest.fixture
def fake_provider():
    return FakeProvider


@pytest.fixture
def eventually():
    """Poll an async-friendly predicate until it holds or the timeout expires."""

    async def _eventually(predicate, timeout=3.0, interval=0.01):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(interval)

    return _eventually
