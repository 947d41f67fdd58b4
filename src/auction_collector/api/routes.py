"""
Router for the data-collection control surface.

The scheduler runs in the background; these handlers only read state or
flip the lifecycle and never wait on provider calls. Access control is
applied by the embedding app through router dependencies.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from auction_collector.api.schemas import RestartRequest, SearchRequest, StartMultipleRequest
from auction_collector.core.errors import JobInFlight, UnknownJob
from auction_collector.core.runtime import CollectorRuntime
from auction_collector.models.job import DEFAULT_YEAR_FROM, CollectionJob

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/data-collection", tags=["data-collection"])


def get_runtime(request: Request) -> CollectorRuntime:
    return request.app.state.runtime


def _search_job(search: SearchRequest) -> CollectionJob:
    return CollectionJob(
        make=search.make,
        model=search.model,
        year_from=search.year_from or DEFAULT_YEAR_FROM,
        year_to=search.year_to,
    )


@router.get("/status")
async def get_status(runtime: CollectorRuntime = Depends(get_runtime)):
    """Scheduler phase, queue length, current/last job and per-make progress."""
    return {"success": True, "data": await runtime.reporter.status()}


@router.get("/jobs")
async def get_jobs(runtime: CollectorRuntime = Depends(get_runtime)):
    """All known jobs with checkpoint progress."""
    return {"success": True, "data": await runtime.reporter.jobs()}


@router.get("/vehicle-progress")
async def get_vehicle_progress(runtime: CollectorRuntime = Depends(get_runtime)):
    """Per-make totals: records, per-provider split, completion."""
    return {"success": True, "data": await runtime.reporter.vehicle_progress()}


@router.post("/start")
async def start_collection(runtime: CollectorRuntime = Depends(get_runtime)):
    started = await runtime.scheduler.start()
    message = "Data collection started" if started else "Data collection already running"
    return {
        "success": True,
        "message": message,
        "data": {"started": started, "queue_length": len(runtime.queue)},
    }


@router.post("/stop")
async def stop_collection(runtime: CollectorRuntime = Depends(get_runtime)):
    """Request a cooperative stop; the current page is finished and saved first."""
    stopping = await runtime.scheduler.stop()
    message = "Data collection stopping" if stopping else "Data collection is not running"
    return {
        "success": True,
        "message": message,
        "data": {"stopping": stopping, "phase": runtime.scheduler.state.phase.value},
    }


@router.post("/start-make")
async def start_make(search: SearchRequest, runtime: CollectorRuntime = Depends(get_runtime)):
    """Queue one make ahead of everything else."""
    result = await runtime.scheduler.enqueue_urgent(_search_job(search))
    logger.info(f"Manual collection requested for {result.job.label}")
    return {
        "success": True,
        "message": f"Queued {result.job.label}"
        if result.queued
        else f"{result.job.label} is already being collected",
        "data": {
            "job": result.job.to_dict(),
            "queued": result.queued,
            "running": runtime.scheduler.state.running,
        },
    }


@router.post("/start-multiple")
async def start_multiple(
    body: StartMultipleRequest, runtime: CollectorRuntime = Depends(get_runtime)
):
    """Queue several makes/models ahead of everything else, in the order given."""
    results = await runtime.scheduler.start_multiple([_search_job(s) for s in body.searches])
    searches = [
        {**r.job.to_dict(), "status": "queued" if r.queued else "in_progress"} for r in results
    ]
    return {
        "success": True,
        "message": f"Queued {sum(r.queued for r in results)} of {len(results)} requested collections",
        "searches": searches,
    }


@router.post("/restart-make")
async def restart_make(body: RestartRequest, runtime: CollectorRuntime = Depends(get_runtime)):
    """Audited reset of a job's checkpoint back to page 0."""
    try:
        job = await runtime.scheduler.restart_make(body.scope_key, body.reason, actor=body.actor)
    except JobInFlight as e:
        logger.warning(f"restart-make refused: {e}")
        return JSONResponse(status_code=409, content={"success": False, "message": str(e)})
    except UnknownJob as e:
        return JSONResponse(status_code=404, content={"success": False, "message": str(e)})
    return {
        "success": True,
        "message": f"Checkpoint {body.scope_key} reset",
        "data": {"job": job.to_dict() if job else None},
    }


@router.get("/audit")
async def get_audit(scope_key: str | None = None, runtime: CollectorRuntime = Depends(get_runtime)):
    entries = await runtime.store.audit_log(scope_key)
    return {"success": True, "data": [e.to_dict() for e in entries]}
