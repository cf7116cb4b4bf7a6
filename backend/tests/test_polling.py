import asyncio
import time

from conftest import make_state
from errors import InvalidState, StorageUnavailable
from polling import PollingSync, SyncState


def run(coro):
    return asyncio.run(coro)


async def poll_and_flush(sync):
    ok = await sync.poll_once()
    await asyncio.gather(*list(sync._writes))
    return ok


def test_poll_reconciles_and_writes_corrections(service, storage, clock, operator, projects):
    p1, p2 = projects
    storage.put_user_project_states(
        [
            make_state(p1.id, 0, clock.now - 10_000, user_id=operator.id),
            make_state(p2.id, 0, clock.now - 20_000, user_id=operator.id),
        ]
    )
    sync = PollingSync(service, operator.id, timeout=2)

    assert run(poll_and_flush(sync)) is True
    assert sync.state == SyncState.LIVE
    assert [r.project_id for r in sync.timers.running()] == [p2.id]
    assert sync.display[p2.id] == 20
    running = [s.project_id for s in storage.get_user_project_states(operator.id) if s.running_since is not None]
    assert running == [p2.id]


def test_tick_uses_cached_state(service, storage, clock, operator, projects):
    storage.put_user_project_state(make_state(projects[0].id, 100, clock.now, user_id=operator.id))
    seen = []
    sync = PollingSync(service, operator.id, on_tick=seen.append)
    assert sync.tick() == {}

    run(poll_and_flush(sync))
    clock.advance(5)
    assert sync.tick()[projects[0].id] == 105
    assert seen == [{projects[0].id: 105}]


def test_failed_poll_keeps_last_state(service, storage, clock, operator, projects, monkeypatch):
    storage.put_user_project_state(make_state(projects[0].id, 100, clock.now, user_id=operator.id))
    sync = PollingSync(service, operator.id)
    run(poll_and_flush(sync))

    def unavailable(user_id):
        raise StorageUnavailable("database is locked")

    monkeypatch.setattr(storage, "get_user_project_states", unavailable)
    assert run(sync.poll_once()) is False
    assert sync.failures == 1
    assert sync.state == SyncState.LIVE

    clock.advance(10)
    assert sync.tick()[projects[0].id] == 110


def test_first_poll_failure_stays_syncing(service, storage, operator, monkeypatch):
    def unavailable(user_id):
        raise StorageUnavailable("connection refused")

    monkeypatch.setattr(storage, "get_user_project_states", unavailable)
    sync = PollingSync(service, operator.id)
    assert run(sync.poll_once()) is False
    assert sync.state == SyncState.SYNCING
    assert sync.timers is None


def test_slow_storage_times_out(service, storage, operator, monkeypatch):
    def slow(user_id):
        time.sleep(0.3)
        return []

    monkeypatch.setattr(storage, "get_user_project_states", slow)
    sync = PollingSync(service, operator.id, timeout=0.05)
    assert run(sync.poll_once()) is False
    assert sync.failures == 1


def test_poll_runs_rollover(service, storage, clock, operator, projects):
    storage.init_day_marker(operator.id, "2024-05-31")
    storage.put_user_project_state(make_state(projects[0].id, 2400, user_id=operator.id))
    sync = PollingSync(service, operator.id)

    assert run(poll_and_flush(sync)) is True

    logs = storage.get_logs(operator.id)
    assert [(log.date, log.duration_seconds) for log in logs] == [("2024-05-31", 2400)]
    assert sync.display[projects[0].id] == 0
    assert storage.get_day_marker(operator.id) == "2024-06-01"


def test_start_and_stop_loops(service, storage, operator, projects):
    storage.put_user_project_state(make_state(projects[0].id, 30, user_id=operator.id))
    ticks = []
    sync = PollingSync(service, operator.id, poll_interval=0.01, tick_interval=0.01, on_tick=ticks.append)

    async def scenario():
        handle = sync.start()
        await asyncio.sleep(0.3)
        assert handle.running
        await handle.stop()
        return handle

    handle = run(scenario())
    assert not handle.running
    assert sync.state == SyncState.IDLE
    assert sync.last_synced_at is not None
    assert ticks


def test_repeated_logout_always_stops_both_loops(service, storage, operator, projects):
    """Stopping right as a storage call returns must still end the poll loop."""
    storage.put_user_project_state(make_state(projects[0].id, 30, user_id=operator.id))

    async def scenario():
        survivors = 0
        for i in range(30):
            sync = PollingSync(service, operator.id, poll_interval=0.002, tick_interval=0.002)
            handle = sync.start()
            await asyncio.sleep(0.001 * (i % 5))
            await asyncio.wait_for(handle.stop(), 2)
            if handle.running:
                survivors += 1
        return survivors

    assert run(scenario()) == 0


def test_rollover_error_does_not_fail_poll(service, operator, monkeypatch):
    def broken(user_id):
        raise InvalidState("Constraint violated")

    monkeypatch.setattr(service, "rollover_if_needed", broken)
    sync = PollingSync(service, operator.id)
    assert run(sync.poll_once()) is True
    assert sync.state == SyncState.LIVE


def test_poll_loop_survives_unexpected_errors(service, operator, monkeypatch):
    sync = PollingSync(service, operator.id, poll_interval=0.01, tick_interval=0.01)
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("boom")
        return True

    monkeypatch.setattr(sync, "poll_once", flaky)

    async def scenario():
        handle = sync.start()
        await asyncio.sleep(0.1)
        await handle.stop()
        return handle

    handle = run(scenario())
    assert len(calls) >= 2
    assert not handle.running
