import asyncio
from types import SimpleNamespace

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from kiosk.core.connectivity import ConnectivityMonitor
from kiosk.core.executor import ConnectivityAwareExecutor
from kiosk.core.flow import FlowStateMachine, FlowTiming
from kiosk.core.models import EventContext, Found
from kiosk.settings import settings
from kiosk.surfaces.profiles import get_profile


@pytest.fixture(autouse=True)
def no_metrics(monkeypatch):
    monkeypatch.setattr(settings, "METRICS_ENABLED", False)


# ---------------------------------------------------------------------------
# Redis stand-in (only the commands the kiosk uses)
# ---------------------------------------------------------------------------
class FakePipeline:
    def __init__(self, r):
        self.r = r
        self.ops = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __getattr__(self, name):
        def _queue(*args, **kwargs):
            self.ops.append((name, args, kwargs))
            return self
        return _queue

    async def execute(self):
        if self.r.fail_exec:
            raise RedisConnectionError("EXEC failed")
        results = []
        for name, args, kwargs in self.ops:
            results.append(await getattr(self.r, name)(*args, **kwargs))
        self.ops = []
        return results


class FakeAsyncRedis:
    def __init__(self):
        self.kv = {}
        self.lists = {}
        self.ttl = {}
        self.pttl = {}
        self.published = []
        self.down = False
        self.fail_exec = False

    def _check(self):
        if self.down:
            raise RedisConnectionError("redis down")

    async def set(self, key, value, nx=False, ex=None, px=None):
        self._check()
        if nx and key in self.kv:
            return None
        self.kv[key] = value
        if ex is not None:
            self.ttl[key] = ex
        if px is not None:
            self.pttl[key] = px
        return True

    async def get(self, key):
        self._check()
        return self.kv.get(key)

    async def delete(self, *keys):
        self._check()
        n = 0
        for k in keys:
            if self.kv.pop(k, None) is not None:
                n += 1
            if self.lists.pop(k, None) is not None:
                n += 1
        return n

    async def rpush(self, key, *values):
        self._check()
        self.lists.setdefault(key, []).extend(values)
        return len(self.lists[key])

    async def lrange(self, key, start, end):
        self._check()
        items = self.lists.get(key, [])
        end = len(items) - 1 if end == -1 else end
        return items[start:end + 1]

    async def lrem(self, key, count, value):
        self._check()
        items = self.lists.get(key, [])
        kept = [x for x in items if x != value]
        self.lists[key] = kept
        return len(items) - len(kept)

    async def llen(self, key):
        self._check()
        return len(self.lists.get(key, []))

    async def publish(self, channel, message):
        self._check()
        self.published.append((channel, message))
        return 1

    async def eval(self, script, numkeys, *args):
        # the compare-and-delete / compare-and-pexpire scripts used by SurfaceClaim
        self._check()
        key, token = args[0], args[1]
        if self.kv.get(key) != token:
            return 0
        if "pexpire" in script:
            self.pttl[key] = int(args[2])
            return 1
        del self.kv[key]
        self.pttl.pop(key, None)
        return 1

    def expire_now(self, key):
        self.kv.pop(key, None)
        self.pttl.pop(key, None)

    def pipeline(self, transaction=True):
        return FakePipeline(self)


@pytest.fixture
def fake_redis():
    return FakeAsyncRedis()


# ---------------------------------------------------------------------------
# Flow collaborators
# ---------------------------------------------------------------------------
class FakeLookup:
    def __init__(self, result=None, delay=0.0, error=None):
        self.result = result
        self.delay = delay
        self.error = error
        self.calls = []

    async def lookup_by_identifier(self, identifier, event_context):
        self.calls.append(identifier)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class FakeBackend:
    def __init__(self, delay=0.0):
        self.delay = delay
        self.calls = []
        self.errors = {}
        self.results = {}

    async def perform(self, step, idempotency_key):
        self.calls.append((step.action, dict(step.params), idempotency_key))
        if self.delay:
            await asyncio.sleep(self.delay)
        err = self.errors.get(step.action)
        if err is not None:
            raise err
        return dict(self.results.get(step.action, {"ok": True}))


class FakeQueue:
    def __init__(self, delay=0.0, fail=None):
        self.delay = delay
        self.fail = fail
        self.entries = []

    async def enqueue(self, kind, payload, operation_key=""):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail is not None:
            raise self.fail
        op_id = f"op-{len(self.entries) + 1}"
        self.entries.append({"id": op_id, "kind": kind, "payload": payload, "operationKey": operation_key})
        return op_id


@pytest.fixture
def fast_timing():
    return FlowTiming(
        settle_ms=30,
        success_display_sec=0.1,
        error_display_sec=0.1,
        rejection_display_sec=0.1,
        watchdog_offline_sec=0.3,
        watchdog_online_sec=0.5,
        payment_status_timeout_sec=0.5,
        lookup_timeout_sec=1.0,
        exit_tap_window_sec=1.0,
    )


@pytest.fixture
def booking_record():
    def _record(**overrides):
        record = {
            "bookingId": "bk-100",
            "eventId": "evt-1",
            "eventName": "Spring Graduation",
            "contactId": "ct-7",
            "fullName": "Sam Student",
            "rfid": "AB12CD34",
            "ean": "4006381333931",
            "inStock": False,
            "orderType": "RENTAL",
            "bookingStatus": "checked_out",
            "dueDate": "2099-01-01T00:00:00Z",
            "images": [],
        }
        record.update(overrides)
        return record
    return _record


@pytest.fixture
def make_flow(fast_timing, booking_record):
    def _make(surface="returns", result=None, *, lookup=None, backend=None, queue=None,
              offline=False, mode="online", deadline=0.2, assigned=None, exit_confirmer=None, timing=None):
        lookup = lookup or FakeLookup(result if result is not None else Found(booking_record()))
        backend = backend or FakeBackend()
        queue = queue or FakeQueue()
        connectivity = ConnectivityMonitor(forced_offline=offline)
        executor = ConnectivityAwareExecutor(backend, queue, connectivity, mode=mode, online_deadline_sec=deadline)
        fsm = FlowStateMachine(
            get_profile(surface),
            EventContext(eventId="evt-1", eventName="Spring Graduation"),
            lookup,
            executor,
            kiosk_id="k1",
            assigned=assigned,
            exit_confirmer=exit_confirmer,
            timing=timing or fast_timing,
        )
        return SimpleNamespace(fsm=fsm, lookup=lookup, backend=backend, queue=queue,
                               connectivity=connectivity, executor=executor)
    return _make


@pytest.fixture
def fakes():
    return SimpleNamespace(Lookup=FakeLookup, Backend=FakeBackend, Queue=FakeQueue)
