"""
Collector runtime — wires the store, providers, worker, queue, scheduler
and status reporter into one object shared by the CLI and the API.
"""

import logging
from dataclasses import dataclass

from auction_collector.core.collector import CollectorWorker
from auction_collector.core.config import CollectorSettings
from auction_collector.core.queue import JobQueue
from auction_collector.core.scheduler import Scheduler
from auction_collector.core.status import StatusReporter
from auction_collector.exporters.base import Exporter
from auction_collector.models.job import CollectionJob
from auction_collector.providers import build_providers
from auction_collector.providers.base import ProviderClient
from auction_collector.stores import get_store
from auction_collector.stores.base import CheckpointStore

logger = logging.getLogger(__name__)


@dataclass
class CollectorRuntime:
    settings: CollectorSettings
    store: CheckpointStore
    providers: dict[str, ProviderClient]
    exporters: list[Exporter]
    queue: JobQueue
    worker: CollectorWorker
    scheduler: Scheduler
    reporter: StatusReporter

    @classmethod
    def build(
        cls,
        settings: CollectorSettings,
        store: CheckpointStore | None = None,
        providers: dict[str, ProviderClient] | None = None,
        exporters: list[Exporter] | None = None,
    ) -> "CollectorRuntime":
        """Assemble a runtime; any component not passed in is built from settings."""
        store = store or get_store(
            settings.store, str(settings.store_path) if settings.store_path else None
        )
        if providers is None:
            providers = build_providers(settings)
        if exporters is None:
            exporters = []
        queue = JobQueue()
        worker = CollectorWorker(store, providers, exporters=exporters, settings=settings)
        scheduler = Scheduler(queue, store, worker, settings=settings)
        reporter = StatusReporter(scheduler, store, settings)
        return cls(settings, store, providers, exporters, queue, worker, scheduler, reporter)

    async def bootstrap(self, catalog: list[CollectionJob]) -> int:
        return await self.scheduler.bootstrap(catalog)

    async def aclose(self) -> None:
        """Stop collection and release every resource."""
        await self.scheduler.stop(wait=True)

        for name, provider in self.providers.items():
            try:
                await provider.close()
            except Exception as e:
                logger.error(f"Error closing provider {name}: {e}")

        for exporter in self.exporters:
            try:
                await exporter.finalize()
            except Exception as e:
                logger.error(f"Exporter finalization error: {e}")

        await self.store.close()
