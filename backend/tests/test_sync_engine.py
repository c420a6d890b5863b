"""Tests for the sync engine: ordering, isolation, coalescing, retry and backoff."""
import asyncio
from datetime import datetime, timedelta, timezone

from sipatrol.services.connectivity import ConnectivityMonitor
from sipatrol.services.offline_queue import RecordStatus
from sipatrol.services.patrol_agent import PatrolAgent
from sipatrol.services.report_client import (
    AmbiguousDeliveryError,
    AuthenticationError,
    ReportRejectedError,
    ServerError,
)
from sipatrol.services.sync_engine import SyncEngine, backoff_delay


def at(hour, minute):
    return datetime(2026, 3, 14, hour, minute, tzinfo=timezone.utc)


def capture(queue, captured_at, notes=None):
    return queue.enqueue(
        image_data=b"photo-" + captured_at.isoformat().encode(),
        latitude=51.5,
        longitude=-0.12,
        captured_at=captured_at,
        notes=notes,
    )


def make_engine(queue, api, monitor=None, **kwargs):
    params = {"interval": 0, "max_attempts": 5, "backoff_base": 0, "backoff_max": 0}
    params.update(kwargs)
    return SyncEngine(queue, api, monitor or ConnectivityMonitor(), **params)


class TestBackoffDelay:
    def test_exponential_and_capped(self):
        assert backoff_delay(0, 5, 900) == 0
        assert backoff_delay(1, 5, 900) == 5
        assert backoff_delay(2, 5, 900) == 10
        assert backoff_delay(4, 5, 900) == 40
        assert backoff_delay(20, 5, 900) == 900


class TestSyncPass:
    def test_delivers_in_capture_order(self, queue, fake_api):
        late = capture(queue, at(10, 5))
        early = capture(queue, at(10, 0))
        middle = capture(queue, at(10, 2))
        engine = make_engine(queue, fake_api)

        result = asyncio.run(engine.sync_now())

        assert fake_api.calls == [early.local_id, middle.local_id, late.local_id]
        assert result.synced == 3
        assert queue.list_all() == []
        assert engine.last_sync_at is not None

    def test_validation_failure_does_not_block_later_records(self, queue, fake_api):
        first = capture(queue, at(9, 0))
        second = capture(queue, at(9, 1))
        third = capture(queue, at(9, 2))
        fake_api.fail_next(second.local_id, ReportRejectedError("HTTP 422: latitude invalid", status_code=422))
        engine = make_engine(queue, fake_api)

        result = asyncio.run(engine.sync_now())

        assert result.synced == 2
        assert result.failed == 1
        assert result.halted is False
        assert fake_api.calls == [first.local_id, second.local_id, third.local_id]
        remaining = queue.list_all()
        assert [r.local_id for r in remaining] == [second.local_id]
        assert remaining[0].status == RecordStatus.FAILED
        assert remaining[0].attempt_count == 1
        assert "latitude invalid" in remaining[0].last_error

    def test_server_error_fails_only_that_record(self, queue, fake_api):
        first = capture(queue, at(9, 0))
        second = capture(queue, at(9, 1))
        fake_api.fail_next(first.local_id, ServerError("HTTP 503", status_code=503))
        engine = make_engine(queue, fake_api)

        result = asyncio.run(engine.sync_now())

        assert result.synced == 1
        assert [r.local_id for r in queue.list_all()] == [first.local_id]
        assert fake_api.calls == [first.local_id, second.local_id]

    def test_connectivity_failure_halts_pass(self, queue, fake_api):
        first = capture(queue, at(9, 0))
        second = capture(queue, at(9, 1))
        fake_api.unreachable = True
        engine = make_engine(queue, fake_api)

        result = asyncio.run(engine.sync_now())

        assert result.halted is True
        assert fake_api.calls == [first.local_id]
        by_id = {r.local_id: r for r in queue.list_all()}
        assert by_id[first.local_id].status == RecordStatus.FAILED
        assert by_id[first.local_id].attempt_count == 1
        assert by_id[second.local_id].status == RecordStatus.PENDING
        assert by_id[second.local_id].attempt_count == 0
        assert engine.last_sync_at is None
        assert "unreachable" in engine.last_error

    def test_authentication_failure_halts_pass(self, queue, fake_api):
        first = capture(queue, at(9, 0))
        capture(queue, at(9, 1))
        fake_api.fail_next(first.local_id, AuthenticationError("HTTP 401: Unauthorized", status_code=401))
        engine = make_engine(queue, fake_api)

        result = asyncio.run(engine.sync_now())

        assert result.halted is True
        assert fake_api.calls == [first.local_id]

    def test_sync_never_touches_captured_content(self, queue, fake_api):
        record = capture(queue, at(8, 0), notes="Original notes")
        fake_api.fail_next(record.local_id, ServerError("HTTP 500", status_code=500))
        engine = make_engine(queue, fake_api)

        asyncio.run(engine.sync_now())

        after = queue.get(record.local_id)
        assert after.image_data == record.image_data
        assert after.notes == "Original notes"
        assert (after.latitude, after.longitude, after.captured_at) == (
            record.latitude, record.longitude, record.captured_at,
        )

    def test_record_discarded_mid_pass_does_not_block_the_rest(self, queue, slow_api):
        a = capture(queue, at(7, 0))
        b = capture(queue, at(7, 1))
        c = capture(queue, at(7, 2))
        engine = make_engine(queue, slow_api)

        async def scenario():
            task = engine.trigger("manual")
            await asyncio.sleep(0.01)  # first delivery is still in flight
            queue.discard(b.local_id)
            return await task

        result = asyncio.run(scenario())

        assert slow_api.calls == [a.local_id, c.local_id]
        assert result.synced == 2
        assert result.skipped == 1
        assert result.attempted == 2
        assert result.halted is False
        assert queue.list_all() == []
        assert engine.last_sync_at is not None
        assert engine.last_error is None


class TestIdempotentRetry:
    def test_ambiguous_timeout_is_retried_with_same_key(self, queue, fake_api):
        record = capture(queue, at(12, 0))
        # The server commits the report but the response never arrives
        fake_api.fail_next(record.local_id, AmbiguousDeliveryError("read timeout"), commit=True)
        engine = make_engine(queue, fake_api)

        async def scenario():
            first = await engine.sync_now()
            after_first = queue.get(record.local_id)
            second = await engine.sync_now()
            return first, after_first, second

        first, after_first, second = asyncio.run(scenario())

        assert first.failed == 1 and first.halted is False
        assert after_first.status == RecordStatus.FAILED
        assert second.synced == 1
        assert fake_api.calls == [record.local_id, record.local_id]
        assert len(fake_api.created) == 1
        assert queue.list_all() == []

    def test_same_record_submitted_twice_creates_one_report(self, queue, fake_api):
        record = capture(queue, at(12, 0))

        async def scenario():
            await fake_api.submit_report(record)
            return await fake_api.submit_report(record)

        replay = asyncio.run(scenario())
        assert replay.duplicate is True
        assert len(fake_api.created) == 1


class TestCoalescing:
    def test_second_trigger_is_coalesced(self, queue, slow_api):
        api = slow_api
        capture(queue, at(7, 0))
        capture(queue, at(7, 1))
        engine = make_engine(queue, api)

        async def scenario():
            first = engine.trigger("manual")
            second = engine.trigger("manual")
            manual = await engine.sync_now()
            result = await first
            return first, second, manual, result

        first, second, manual, result = asyncio.run(scenario())

        assert first is not None
        assert second is None
        assert manual.coalesced is True
        assert api.max_in_flight == 1
        assert result.synced == 2
        assert len(api.calls) == 2

    def test_trigger_ignored_while_offline(self, queue, fake_api):
        capture(queue, at(7, 0))
        engine = make_engine(queue, fake_api, monitor=ConnectivityMonitor(initial_online=False))

        async def scenario():
            return engine.trigger("timer")

        assert asyncio.run(scenario()) is None
        assert fake_api.calls == []

    def test_manual_sync_runs_even_when_reported_offline(self, queue, fake_api):
        capture(queue, at(7, 0))
        engine = make_engine(queue, fake_api, monitor=ConnectivityMonitor(initial_online=False))
        result = asyncio.run(engine.sync_now())
        assert result.synced == 1


class TestReconnect:
    def test_offline_captures_flushed_on_reconnect(self, queue, fake_api):
        monitor = ConnectivityMonitor(initial_online=False)
        engine = make_engine(queue, fake_api, monitor=monitor)

        async def scenario():
            await engine.start()
            capture(queue, at(14, 0))
            capture(queue, at(14, 3))
            assert fake_api.calls == []
            monitor.report_signal(True)
            task = engine._current
            assert task is not None
            result = await task
            await engine.stop()
            return result

        result = asyncio.run(scenario())

        assert len(fake_api.calls) == 2
        assert result.synced == 2
        assert queue.list_all() == []
        assert engine.last_sync_at is not None

    def test_periodic_timer_flushes_while_online(self, queue, fake_api):
        engine = make_engine(queue, fake_api, interval=0.01)

        async def scenario():
            await engine.start()
            await asyncio.sleep(0.02)
            capture(queue, at(15, 0))
            await asyncio.sleep(0.1)
            await engine.stop()

        asyncio.run(scenario())
        assert len(fake_api.calls) == 1
        assert queue.list_all() == []

    def test_interrupted_pass_is_recovered_on_startup(self, queue, fake_api):
        record = capture(queue, at(6, 0))
        queue.mark_syncing(record.local_id)  # process died mid-delivery
        agent = PatrolAgent(queue=queue, client=fake_api, monitor=ConnectivityMonitor(initial_online=False),
                            probe_enabled=False)

        async def scenario():
            await agent.start()
            result = await agent.engine.sync_now()
            await agent.stop()
            return result

        result = asyncio.run(scenario())
        assert result.synced == 1
        assert fake_api.calls == [record.local_id]


class TestRetryPolicy:
    def test_backoff_window_skips_recent_failure(self, queue, fake_api):
        record = capture(queue, at(5, 0))
        fake_api.fail_next(record.local_id, ServerError("HTTP 502", status_code=502))
        offset = {"seconds": 0}
        engine = make_engine(
            queue, fake_api, backoff_base=30, backoff_max=300,
            clock=lambda: datetime.now(timezone.utc) + timedelta(seconds=offset["seconds"]),
        )

        async def scenario():
            await engine.sync_now()
            too_soon = await engine.sync_now()
            offset["seconds"] = 31
            later = await engine.sync_now()
            return too_soon, later

        too_soon, later = asyncio.run(scenario())

        assert too_soon.skipped == 1 and too_soon.attempted == 0
        assert later.synced == 1
        assert fake_api.calls == [record.local_id, record.local_id]

    def test_exhausted_record_is_surfaced_not_retried(self, queue, fake_api):
        record = capture(queue, at(5, 0))
        for _ in range(2):
            fake_api.fail_next(record.local_id, ReportRejectedError("HTTP 400: Missing required fields", 400))
        engine = make_engine(queue, fake_api, max_attempts=2)
        exhausted = []
        engine.on_exhausted(exhausted.append)

        async def scenario():
            await engine.sync_now()
            await engine.sync_now()
            return await engine.sync_now()

        third = asyncio.run(scenario())

        assert [r.local_id for r in exhausted] == [record.local_id]
        assert third.skipped == 1
        assert len(fake_api.calls) == 2
        assert queue.get(record.local_id).attempt_count == 2

    def test_officer_retry_restores_automatic_attempts(self, queue, fake_api):
        record = capture(queue, at(5, 0))
        fake_api.fail_next(record.local_id, ReportRejectedError("HTTP 400", 400))
        engine = make_engine(queue, fake_api, max_attempts=1)

        async def scenario():
            await engine.sync_now()
            queue.reset_attempts(record.local_id)
            return await engine.sync_now()

        result = asyncio.run(scenario())
        assert result.synced == 1
        assert queue.list_all() == []
