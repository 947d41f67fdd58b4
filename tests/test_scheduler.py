"""Tests for the scheduler lifecycle, manual triggers and audited restart."""

import asyncio

import pytest

from auction_collector.core.checkpoint import Checkpoint
from auction_collector.core.collector import CollectionResult
from auction_collector.core.errors import JobInFlight, UnknownJob
from auction_collector.core.runtime import CollectorRuntime
from auction_collector.core.scheduler import SchedulerPhase
from auction_collector.models.job import PRIORITY_URGENT, CollectionJob
from auction_collector.stores.memory import MemoryCheckpointStore

YEARS = {"year_from": 2012, "year_to": 2024}


def runtime_with(settings, store, copart, iaai):
    return CollectorRuntime.build(settings, store=store, providers={"copart": copart, "iaai": iaai})


def drain(channel):
    events = []
    while not channel.empty():
        events.append(channel.get_nowait())
    return events


class AuditFailingStore(MemoryCheckpointStore):
    """Checkpoint store whose audit log cannot be written."""

    async def append_audit(self, entry):
        raise OSError("disk full")


# ═══════════════════════════════════════════
# Lifecycle
# ═══════════════════════════════════════════


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_collects_queued_job_to_completion(
        self, settings, store, fake_provider, eventually
    ):
        runtime = runtime_with(
            settings, store, fake_provider("copart", [50, 50, 10]), fake_provider("iaai", [40, 5])
        )
        toyota = CollectionJob(make="Toyota", priority=1, **YEARS)
        runtime.scheduler.enqueue(toyota)

        assert await runtime.scheduler.start() is True
        await eventually(lambda: runtime.scheduler.state.last_processed_job is not None)

        state = runtime.scheduler.state
        assert state.last_processed_job == toyota
        assert state.last_result is CollectionResult.COMPLETED
        assert len(runtime.queue) == 0

        cp = await store.load(toyota.scope_key)
        assert cp.total_records_collected == 145
        assert cp.completed is True
        await runtime.aclose()
        assert state.phase is SchedulerPhase.IDLE

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, settings, store, fake_provider):
        runtime = runtime_with(settings, store, fake_provider("copart", []), fake_provider("iaai", []))
        assert await runtime.scheduler.start() is True
        assert await runtime.scheduler.start() is False
        await runtime.aclose()

    @pytest.mark.asyncio
    async def test_stop_when_idle(self, settings, store, fake_provider):
        runtime = runtime_with(settings, store, fake_provider("copart", []), fake_provider("iaai", []))
        assert await runtime.scheduler.stop() is False

    @pytest.mark.asyncio
    async def test_idle_loop_stops_promptly(self, settings, store, fake_provider):
        settings.idle_wait = 30
        runtime = runtime_with(settings, store, fake_provider("copart", []), fake_provider("iaai", []))
        await runtime.scheduler.start()
        await asyncio.sleep(0.01)

        await asyncio.wait_for(runtime.scheduler.stop(wait=True), timeout=1)
        assert runtime.scheduler.state.phase is SchedulerPhase.IDLE

    @pytest.mark.asyncio
    async def test_stop_mid_job_keeps_progress(self, settings, store, fake_provider, eventually):
        copart = fake_provider("copart", [10] * 20, delay=0.005)
        iaai = fake_provider("iaai", [10] * 20, delay=0.005)
        runtime = runtime_with(settings, store, copart, iaai)
        honda = CollectionJob(make="Honda", **YEARS)
        runtime.scheduler.enqueue(honda)

        await runtime.scheduler.start()

        async def total():
            return (await store.load(honda.scope_key)).total_records_collected

        totals = []
        await eventually(lambda: len(copart.calls) >= 4)
        await runtime.scheduler.stop(wait=True)

        assert runtime.scheduler.state.phase is SchedulerPhase.IDLE
        assert runtime.scheduler.state.last_result is CollectionResult.INTERRUPTED
        assert honda.id in runtime.queue
        totals.append(await total())
        cursor = (await store.load(honda.scope_key)).progress("copart").last_page
        assert totals[0] > 0

        await runtime.scheduler.start()
        await eventually(lambda: runtime.scheduler.state.last_processed_job is not None)
        totals.append(await total())
        resumed = await store.load(honda.scope_key)

        assert totals == sorted(totals)
        assert totals[-1] == 400
        assert resumed.progress("copart").last_page >= cursor
        assert copart.pages_requested == list(range(1, 21))
        assert iaai.pages_requested == list(range(1, 21))
        await runtime.aclose()

    @pytest.mark.asyncio
    async def test_yielded_job_goes_behind_same_tier(
        self, settings, store, fake_provider, eventually
    ):
        settings.pages_per_run = 2
        copart = fake_provider("copart", [1, 1, 1])
        iaai = fake_provider("iaai", [1, 1, 1])
        runtime = runtime_with(settings, store, copart, iaai)
        ford = CollectionJob(make="Ford", **YEARS)
        kia = CollectionJob(make="Kia", **YEARS)
        runtime.scheduler.enqueue(ford)
        runtime.scheduler.enqueue(kia)

        await runtime.scheduler.start()
        await eventually(lambda: len(runtime.queue) == 0 and not runtime.queue.in_flight)
        await runtime.aclose()

        makes = [make for make, _ in copart.calls]
        # Ford yields after its budget, so Kia gets a turn before Ford finishes
        assert makes[:2] == ["Ford", "Kia"]
        assert (await store.load(ford.scope_key)).completed is True
        assert (await store.load(kia.scope_key)).completed is True


# ═══════════════════════════════════════════
# Manual Triggers
# ═══════════════════════════════════════════


class TestManualTriggers:
    @pytest.mark.asyncio
    async def test_start_make_runs_before_backlog(self, settings, store, fake_provider, eventually):
        copart = fake_provider("copart", [1])
        runtime = runtime_with(settings, store, copart, fake_provider("iaai", [1]))
        for make, priority in [("Toyota", 1), ("Kia", 2), ("Mazda", 3)]:
            runtime.scheduler.enqueue(CollectionJob(make=make, priority=priority, **YEARS))

        result = await runtime.scheduler.start_make("BMW", year_from=2012, year_to=2024)
        assert result.queued is True
        assert result.job.priority == 2
        assert runtime.queue.snapshot()[0].make == "BMW"
        assert runtime.queue.snapshot()[0].priority == PRIORITY_URGENT
        assert runtime.scheduler.state.phase is SchedulerPhase.IDLE

        await runtime.scheduler.start()
        await eventually(lambda: len(copart.calls) == 4)
        await runtime.aclose()
        assert [make for make, _ in copart.calls] == ["BMW", "Toyota", "Kia", "Mazda"]

    @pytest.mark.asyncio
    async def test_auto_start_on_urgent(self, settings, store, fake_provider, eventually):
        settings.auto_start_on_urgent = True
        copart = fake_provider("copart", [2])
        runtime = runtime_with(settings, store, copart, fake_provider("iaai", [3]))

        result = await runtime.scheduler.start_make("Porsche", year_from=2012, year_to=2024)
        assert runtime.scheduler.state.running is True

        await eventually(lambda: runtime.scheduler.state.last_processed_job is not None)
        assert runtime.scheduler.state.last_processed_job.id == result.job.id
        assert (await store.load(result.job.scope_key)).total_records_collected == 5
        await runtime.aclose()

    @pytest.mark.asyncio
    async def test_start_make_default_years(self, settings, store, fake_provider):
        runtime = runtime_with(settings, store, fake_provider("copart", []), fake_provider("iaai", []))
        result = await runtime.scheduler.start_make("Tesla", model="Model Y")
        assert result.job.year_from == 2012
        assert result.job.model == "Model Y"

    @pytest.mark.asyncio
    async def test_start_multiple_keeps_order(self, settings, store, fake_provider):
        runtime = runtime_with(settings, store, fake_provider("copart", []), fake_provider("iaai", []))
        runtime.scheduler.enqueue(CollectionJob(make="Toyota", priority=1, **YEARS))
        jobs = [CollectionJob(make=make, **YEARS) for make in ("Audi", "Lexus", "Jeep")]

        results = await runtime.scheduler.start_multiple(jobs)

        assert [r.job.make for r in results] == ["Audi", "Lexus", "Jeep"]
        assert all(r.queued for r in results)
        assert [j.make for j in runtime.queue.snapshot()] == ["Audi", "Lexus", "Jeep", "Toyota"]

    @pytest.mark.asyncio
    async def test_urgent_request_for_running_job_not_duplicated(
        self, settings, store, fake_provider, eventually
    ):
        copart = fake_provider("copart", [1] * 50, delay=0.01)
        runtime = runtime_with(settings, store, copart, fake_provider("iaai", []))
        bmw = CollectionJob(make="BMW", **YEARS)
        runtime.scheduler.enqueue(bmw)
        await runtime.scheduler.start()
        await eventually(lambda: runtime.scheduler.state.current_job is not None)

        result = await runtime.scheduler.enqueue_urgent(bmw)
        assert result.queued is False
        assert bmw.id not in runtime.queue
        await runtime.aclose()


# ═══════════════════════════════════════════
# Bootstrap
# ═══════════════════════════════════════════


class TestBootstrap:
    @pytest.mark.asyncio
    async def test_rebuilds_backlog_from_catalog_and_checkpoints(
        self, settings, store, fake_provider
    ):
        done = CollectionJob(make="Audi", priority=1, **YEARS)
        partial = CollectionJob(make="Ford", priority=2, **YEARS)
        manual = CollectionJob(make="Rivian", priority=0, **YEARS)
        fresh = CollectionJob(make="Kia", priority=3, **YEARS)

        cp = Checkpoint.for_job(done)
        cp.record_page("copart", 2, 10, has_more=False)
        cp.record_page("iaai", 2, 10, has_more=False)
        await store.save(cp)
        cp = Checkpoint.for_job(partial)
        cp.record_page("copart", 3, 10, has_more=True)
        await store.save(cp)
        cp = Checkpoint.for_job(manual)
        cp.record_page("iaai", 2, 4, has_more=True)
        await store.save(cp)

        runtime = runtime_with(settings, store, fake_provider("copart", []), fake_provider("iaai", []))
        length = await runtime.bootstrap([done, partial, fresh])

        assert length == 3
        assert [j.make for j in runtime.queue.snapshot()] == ["Rivian", "Ford", "Kia"]

    @pytest.mark.asyncio
    async def test_flagged_checkpoint_not_queued(self, settings, store, fake_provider):
        job = CollectionJob(make="Dodge", **YEARS)
        cp = Checkpoint.for_job(job)
        cp.needs_attention = "cursor regression"
        await store.save(cp)

        runtime = runtime_with(settings, store, fake_provider("copart", []), fake_provider("iaai", []))
        await runtime.bootstrap([job])

        assert job.id not in runtime.queue
        assert runtime.scheduler.attention[job.id] == "cursor regression"

    @pytest.mark.asyncio
    async def test_due_refresh_resets_completed_job(
        self, settings, store, fake_provider, eventually
    ):
        job = CollectionJob(make="Mazda", refresh_interval=0.001, **YEARS)
        cp = Checkpoint.for_job(job)
        cp.record_page("copart", 2, 10, has_more=False)
        cp.record_page("iaai", 2, 10, has_more=False)
        cp.last_collected_at = 0.0
        await store.save(cp)

        copart = fake_provider("copart", [1])
        runtime = runtime_with(settings, store, copart, fake_provider("iaai", [1]))
        assert await runtime.bootstrap([job]) == 0

        await runtime.scheduler.start()
        await eventually(lambda: len(copart.calls) >= 1)
        await runtime.scheduler.stop(wait=True)

        audit = await store.audit_log(job.scope_key)
        assert audit[0].actor == "scheduler"
        assert audit[0].previous["total_records_collected"] == 20
        await runtime.aclose()


# ═══════════════════════════════════════════
# Restart
# ═══════════════════════════════════════════


class TestRestart:
    @pytest.mark.asyncio
    async def test_restart_rewinds_and_audits(self, settings, store, fake_provider):
        job = CollectionJob(make="Nissan", **YEARS)
        cp = Checkpoint.for_job(job)
        cp.record_page("copart", 6, 250, has_more=True)
        cp.record_page("iaai", 2, 50, has_more=False)
        await store.save(cp)

        runtime = runtime_with(settings, store, fake_provider("copart", []), fake_provider("iaai", []))
        restarted = await runtime.scheduler.restart_make(
            job.scope_key, reason="provider re-indexed", actor="alice"
        )

        assert restarted == job
        assert job.id in runtime.queue
        fresh = await store.load(job.scope_key)
        assert fresh.progress("copart").next_page == 1
        assert fresh.total_records_collected == 0

        (entry,) = await store.audit_log(job.scope_key)
        assert entry.actor == "alice"
        assert entry.reason == "provider re-indexed"
        assert entry.previous["providers"]["copart"]["last_page"] == 5

    @pytest.mark.asyncio
    async def test_restart_clears_attention(self, settings, store, fake_provider):
        job = CollectionJob(make="Dodge", **YEARS)
        cp = Checkpoint.for_job(job)
        cp.needs_attention = "cursor regression"
        await store.save(cp)
        runtime = runtime_with(settings, store, fake_provider("copart", []), fake_provider("iaai", []))
        await runtime.bootstrap([job])

        await runtime.scheduler.restart_make(job.scope_key, reason="fixed upstream")
        assert job.id not in runtime.scheduler.attention
        assert job.id in runtime.queue

    @pytest.mark.asyncio
    async def test_restart_unknown(self, settings, store, fake_provider):
        runtime = runtime_with(settings, store, fake_provider("copart", []), fake_provider("iaai", []))
        with pytest.raises(UnknownJob):
            await runtime.scheduler.restart_make("nope:all:2012-2024", reason="typo")
        assert await store.audit_log() == []

    @pytest.mark.asyncio
    async def test_restart_in_flight_rejected(self, settings, store, fake_provider, eventually):
        copart = fake_provider("copart", [1] * 50, delay=0.01)
        runtime = runtime_with(settings, store, copart, fake_provider("iaai", []))
        job = CollectionJob(make="Subaru", **YEARS)
        runtime.scheduler.enqueue(job)
        await runtime.scheduler.start()
        await eventually(lambda: len(copart.calls) >= 2)

        with pytest.raises(JobInFlight):
            await runtime.scheduler.restart_make(job.scope_key, reason="oops")
        await runtime.aclose()
        assert (await store.load(job.scope_key)).total_records_collected > 0


# ═══════════════════════════════════════════
# Status Events
# ═══════════════════════════════════════════


class TestStatusEvents:
    @pytest.mark.asyncio
    async def test_events_for_a_job(self, settings, store, fake_provider, eventually):
        runtime = runtime_with(settings, store, fake_provider("copart", [1]), fake_provider("iaai", [1]))
        channel = runtime.scheduler.subscribe()
        job = CollectionJob(make="Honda", **YEARS)
        runtime.scheduler.enqueue(job)

        await runtime.scheduler.start()
        await eventually(lambda: runtime.scheduler.state.last_processed_job is not None)
        await runtime.aclose()

        events = drain(channel)
        kinds = [e.kind for e in events]
        assert kinds[0] == "phase"
        assert kinds.index("job_started") < kinds.index("page_saved") < kinds.index("job_finished")
        finished = next(e for e in events if e.kind == "job_finished")
        assert finished.job_id == job.id
        assert finished.data["result"] == "completed"
        assert events[-1].data["phase"] == "idle"

    @pytest.mark.asyncio
    async def test_full_channel_drops_oldest(self, settings, store, fake_provider):
        runtime = runtime_with(settings, store, fake_provider("copart", []), fake_provider("iaai", []))
        channel = runtime.scheduler.subscribe(maxsize=2)
        for make in ("A1", "B2", "C3"):
            await runtime.scheduler.start_make(make, year_from=2012, year_to=2024)

        events = drain(channel)
        assert [e.job_id for e in events] == ["b2:all:2012-2024", "c3:all:2012-2024"]

        runtime.scheduler.unsubscribe(channel)
        await runtime.scheduler.start_make("D4", year_from=2012, year_to=2024)
        assert channel.empty()


# ═══════════════════════════════════════════
# Loop Resilience
# ═══════════════════════════════════════════


class TestLoopResilience:
    @pytest.mark.asyncio
    async def test_failed_refresh_does_not_kill_loop(self, settings, fake_provider, eventually):
        store = AuditFailingStore()
        copart = fake_provider("copart", [1])
        runtime = runtime_with(settings, store, copart, fake_provider("iaai", [1]))
        mazda = CollectionJob(make="Mazda", refresh_interval=0.01, **YEARS)
        runtime.scheduler.enqueue(mazda)

        await runtime.scheduler.start()
        await eventually(lambda: runtime.scheduler.state.last_processed_job == mazda)
        # Let the refresh fall due and fail at least once
        await asyncio.sleep(0.1)
        assert runtime.scheduler.state.phase is SchedulerPhase.RUNNING

        kia = CollectionJob(make="Kia", **YEARS)
        runtime.scheduler.enqueue(kia)
        await eventually(lambda: runtime.scheduler.state.last_processed_job == kia)

        assert (await store.load(kia.scope_key)).completed is True
        assert runtime.scheduler.state.phase is SchedulerPhase.RUNNING
        assert mazda.id in runtime.scheduler._refresh_due
        await runtime.aclose()

    @pytest.mark.asyncio
    async def test_failing_subscriber_channel_does_not_stop_dispatch(
        self, settings, store, fake_provider, eventually
    ):
        runtime = runtime_with(settings, store, fake_provider("copart", [1]), fake_provider("iaai", []))
        channel = runtime.scheduler.subscribe(maxsize=1)

        def refuse(event):
            raise asyncio.QueueFull()

        channel.put_nowait = refuse
        job = CollectionJob(make="Honda", **YEARS)
        runtime.scheduler.enqueue(job)

        await runtime.scheduler.start()
        await eventually(lambda: runtime.scheduler.state.last_processed_job == job)
        assert (await store.load(job.scope_key)).completed is True
        await runtime.aclose()


# ═══════════════════════════════════════════
# Stored Job Descriptor
# ═══════════════════════════════════════════


class TestStoredDescriptor:
    @pytest.mark.asyncio
    async def test_urgent_run_stores_registered_priority(
        self, settings, store, fake_provider, eventually
    ):
        settings.pages_per_run = 1
        copart = fake_provider("copart", [1, 1, 1])
        runtime = runtime_with(settings, store, copart, fake_provider("iaai", []))
        toyota = CollectionJob(make="Toyota", priority=1, **YEARS)
        await runtime.bootstrap([toyota])
        await runtime.scheduler.enqueue_urgent(toyota)
        assert runtime.queue.snapshot()[0].priority == PRIORITY_URGENT

        await runtime.scheduler.start()
        await eventually(lambda: len(copart.calls) >= 1)
        await runtime.aclose()

        stored = await store.load(toyota.scope_key)
        assert stored.job == toyota
        assert stored.job.priority == 1

    @pytest.mark.asyncio
    async def test_urgent_manual_job_resumes_at_normal_tier(
        self, settings, store, fake_provider, eventually
    ):
        settings.pages_per_run = 1
        copart = fake_provider("copart", [1] * 20, delay=0.02)
        runtime = runtime_with(settings, store, copart, fake_provider("iaai", []))
        result = await runtime.scheduler.start_make("BMW", year_from=2012, year_to=2024)

        await runtime.scheduler.start()
        await eventually(lambda: len(copart.calls) >= 1)
        await runtime.aclose()

        stored = await store.load(result.job.scope_key)
        assert stored.job.priority == result.job.priority != PRIORITY_URGENT

        rebooted = runtime_with(settings, store, fake_provider("copart", []), fake_provider("iaai", []))
        await rebooted.bootstrap([])
        (queued,) = rebooted.queue.snapshot()
        assert queued.id == result.job.id
        assert queued.priority == result.job.priority

    @pytest.mark.asyncio
    async def test_requeued_urgent_job_keeps_tier_zero(
        self, settings, store, fake_provider, eventually
    ):
        settings.pages_per_run = 1
        copart = fake_provider("copart", [1] * 20, delay=0.01)
        runtime = runtime_with(settings, store, copart, fake_provider("iaai", []))
        runtime.scheduler.enqueue(CollectionJob(make="Kia", priority=1, **YEARS))
        result = await runtime.scheduler.start_make("BMW", year_from=2012, year_to=2024)

        await runtime.scheduler.start()
        await eventually(lambda: len(copart.calls) >= 1)
        await runtime.scheduler.stop(wait=True)

        head = runtime.queue.snapshot()[0]
        assert head.id == result.job.id
        assert head.priority == PRIORITY_URGENT
        await runtime.aclose()
