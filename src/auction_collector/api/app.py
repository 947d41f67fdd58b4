"""Auction Collector — FastAPI application hosting the scheduler."""

import logging
from collections.abc import Sequence
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.params import Depends

from auction_collector import __version__
from auction_collector.api.routes import router
from auction_collector.core.runtime import CollectorRuntime
from auction_collector.models.job import CollectionJob

logger = logging.getLogger(__name__)


def create_app(
    runtime: CollectorRuntime,
    catalog: list[CollectionJob] | None = None,
    autostart: bool = False,
    dependencies: Sequence[Depends] | None = None,
) -> FastAPI:
    """
    Build the API app around a runtime.

    On startup the backlog is rebuilt from `catalog` plus stored checkpoints;
    on shutdown the scheduler is stopped cooperatively. `dependencies` gate
    every control endpoint (e.g. a collection-management capability check).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await runtime.bootstrap(catalog or [])
        if autostart:
            await runtime.scheduler.start()
        yield
        await runtime.aclose()

    app = FastAPI(
        title="Auction Collector",
        description="Scheduler control for Copart/IAAI sale history collection.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.runtime = runtime
    app.include_router(router, dependencies=list(dependencies or []))

    @app.get("/health", include_in_schema=False)
    def health():
        return {"status": "healthy"}

    return app
