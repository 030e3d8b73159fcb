import asyncio

from notesync.core.scheduler import AUTO_SYNC_JOB_ID, CONNECTIVITY_JOB_ID, SyncScheduler


def test_probe_marks_engine_offline(harness):
    harness.remote.offline = True
    scheduler = SyncScheduler(harness.engine)

    assert asyncio.run(scheduler.check_connectivity()) is False
    assert harness.engine.status.is_online is False


def test_reconnect_triggers_sync(harness):
    scheduler = SyncScheduler(harness.engine)

    async def scenario():
        await harness.notes.create_note("Written offline")
        harness.engine.set_online(False)
        online = await scheduler.check_connectivity()
        return online

    assert asyncio.run(scenario()) is True
    assert harness.engine.status.last_result.pushed == 1
    assert len(harness.remote.notes) == 1


def test_probe_while_online_does_not_sync(harness):
    scheduler = SyncScheduler(harness.engine)

    asyncio.run(scheduler.check_connectivity())
    assert harness.engine.status.last_result is None


def test_start_registers_jobs_and_stop_shuts_down(harness):
    scheduler = SyncScheduler(harness.engine, check_seconds=10, auto_sync_minutes=5)

    async def scenario():
        await scheduler.start()
        jobs = {job.id for job in scheduler.scheduler.get_jobs()}
        running = scheduler.is_running
        await scheduler.stop()
        return jobs, running

    jobs, running = asyncio.run(scenario())
    assert jobs == {CONNECTIVITY_JOB_ID, AUTO_SYNC_JOB_ID}
    assert running
    assert not scheduler.is_running


def test_periodic_sync_disabled_with_zero_interval(harness):
    scheduler = SyncScheduler(harness.engine, check_seconds=10, auto_sync_minutes=0)

    async def scenario():
        await scheduler.start()
        jobs = {job.id for job in scheduler.scheduler.get_jobs()}
        await scheduler.stop()
        return jobs

    assert asyncio.run(scenario()) == {CONNECTIVITY_JOB_ID}
