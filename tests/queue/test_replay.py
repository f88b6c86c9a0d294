import asyncio
from unittest.mock import patch

from kiosk.core.errors import DomainRejection, TransientError
from kiosk.core.models import FAILED, REPLAYED
from kiosk.queue.offline_queue import RedisOfflineQueue
from kiosk.queue.replay import replay


def _change(booking):
    return {
        "data": {"bookingId": booking, "oldRfid": "OLD00001", "newRfid": "NEW00001"},
        "steps": [
            {"action": "release", "params": {"bookingId": booking, "rfid": "OLD00001", "skipRfidCheck": True}},
            {"action": "assign", "params": {"bookingId": booking, "rfid": "NEW00001"}},
        ],
    }


def _checkin(booking):
    return {"data": {"bookingId": booking, "rfid": "AB12CD34"},
            "steps": [{"action": "release", "params": {"bookingId": booking, "rfid": "AB12CD34"}}]}


def test_replays_oldest_first_with_queued_keys(fake_redis, fakes):
    q = RedisOfflineQueue(redis=fake_redis, prefix="t")
    backend = fakes.Backend()

    async def scenario():
        a = await q.enqueue("CHANGE_GOWN", _change("bk-1"), "key-a")
        b = await q.enqueue("CHECK_IN_GOWN", _checkin("bk-2"), "key-b")
        summary = await replay(q, backend)
        return summary, (await q.get(a)).status, (await q.get(b)).status

    summary, status_a, status_b = asyncio.run(scenario())
    assert summary["replayed"] == 2
    assert status_a == REPLAYED and status_b == REPLAYED
    assert [(c[0], c[2]) for c in backend.calls] == [("release", "key-a"), ("assign", "key-a"), ("release", "key-b")]


def test_permanent_error_marks_failed_and_continues(fake_redis, fakes):
    q = RedisOfflineQueue(redis=fake_redis, prefix="t")
    backend = fakes.Backend()
    backend.errors["assign"] = DomainRejection("Gown already checked out")

    async def scenario():
        a = await q.enqueue("CHANGE_GOWN", _change("bk-1"), "key-a")
        await q.enqueue("CHECK_IN_GOWN", _checkin("bk-2"), "key-b")
        summary = await replay(q, backend)
        return summary, await q.get(a)

    summary, op = asyncio.run(scenario())
    assert summary["failed"] == 1
    assert summary["replayed"] == 1
    assert op.status == FAILED
    assert summary["errors"][0]["error"] == "Gown already checked out"


def test_transient_error_retries_until_max_attempts(fake_redis, fakes):
    q = RedisOfflineQueue(redis=fake_redis, prefix="t")
    backend = fakes.Backend()
    backend.errors["release"] = TransientError("Service unavailable", {"statusCode": 503})

    async def scenario():
        op_id = await q.enqueue("CHECK_IN_GOWN", _checkin("bk-1"), "key-a")
        results = []
        for _ in range(3):
            results.append(await replay(q, backend, max_attempts=3))
        return results, await q.get(op_id)

    with patch("kiosk.queue.replay.log"):
        results, op = asyncio.run(scenario())
    assert [r["retry"] for r in results] == [1, 1, 0]
    assert results[-1]["failed"] == 1
    assert op.status == FAILED
    assert op.attempts == 3


def test_transient_error_stops_the_batch(fake_redis, fakes):
    q = RedisOfflineQueue(redis=fake_redis, prefix="t")
    backend = fakes.Backend()
    backend.errors["assign"] = TransientError("timeout")

    async def scenario():
        await q.enqueue("CHANGE_GOWN", _change("bk-1"), "key-a")
        await q.enqueue("CHECK_IN_GOWN", _checkin("bk-2"), "key-b")
        return await replay(q, backend)

    summary = asyncio.run(scenario())
    assert summary["retry"] == 1
    assert summary["replayed"] == 0
    assert [c[0] for c in backend.calls] == ["release", "assign"]
