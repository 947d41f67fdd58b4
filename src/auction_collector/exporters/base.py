"""
Exporter Protocol — Base interface for sale record sinks.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from auction_collector.models.sale import SaleRecord


@runtime_checkable
class Exporter(Protocol):
    """
    Protocol that all exporters must implement.

    Exporters receive normalized SaleRecord objects page by page. Pages can
    be delivered more than once after a restart, so exporters should treat
    SaleRecord.id as an idempotency key.
    """

    async def export(self, records: list[SaleRecord]) -> None:
        """Persist one page of sale records."""
        ...

    async def finalize(self) -> None:
        """Called when collection shuts down. Use for cleanup."""
        ...
