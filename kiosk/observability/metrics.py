"""
Kiosk Metrics Snapshot
----------------------
Lightweight Redis counters/timers for the scan flow, plus one snapshot
function consumed by /admin/metrics. Every writer is best-effort: a kiosk
must keep working when Redis is unreachable, so failures are swallowed here
and nowhere else. Writers use the blocking client; async callers go
through emit() so a slow Redis never stalls the event loop.
"""
from __future__ import annotations
import time
from typing import Any, Callable, List, Tuple
from starlette.concurrency import run_in_threadpool
from kiosk.store.redis_conn import get_redis
from kiosk.settings import settings

K_EXEC_LAT = "metrics:exec:latencies"             # LPUSH ms
K_EXEC_OUTCOME = "metrics:exec:outcome:"          # INCR per outcome (online/queued/failed)
K_GUARD_REJECT = "metrics:guard:rejected"         # INCR
K_WATCHDOG = "metrics:watchdog:forced"            # INCR
K_WATCHDOG_RECENT = "metrics:watchdog:recent"     # LPUSH "surface:kioskId"
K_REPLAY_OK = "metrics:replay:delivered"          # INCR
K_REPLAY_FAIL = "metrics:replay:failed"           # INCR

_MAX_SAMPLES = 500

def _percentile(data: List[float], p: float) -> float:
    """Deterministic percentile (nearest-rank on sorted data)."""
    if not data:
        return 0.0
    d = sorted(data)
    k = max(1, int(round(p * len(d))))
    return float(d[k - 1])

def _now_s() -> int:
    return int(time.time())

def _writer():
    timeout = settings.METRICS_REDIS_TIMEOUT_SEC
    return get_redis(socket_timeout=timeout, socket_connect_timeout=timeout)

async def emit(writer: Callable[..., None], *args: Any) -> None:
    """Run one of the writers below in the threadpool."""
    if not settings.METRICS_ENABLED:
        return
    await run_in_threadpool(writer, *args)

def _incr(key: str) -> None:
    if not settings.METRICS_ENABLED:
        return
    try:
        _writer().incr(key, 1)
    except Exception:
        pass

def increment_execution_outcome(outcome: str) -> None:
    _incr(f"{K_EXEC_OUTCOME}{outcome}")

def increment_guard_rejected() -> None:
    _incr(K_GUARD_REJECT)

def increment_replay_delivered() -> None:
    _incr(K_REPLAY_OK)

def increment_replay_failed() -> None:
    _incr(K_REPLAY_FAIL)

def record_watchdog_forced(surface: str, kiosk_id: str) -> None:
    if not settings.METRICS_ENABLED:
        return
    try:
        r = _writer()
        r.incr(K_WATCHDOG, 1)
        r.lpush(K_WATCHDOG_RECENT, f"{surface}:{kiosk_id}")
        r.ltrim(K_WATCHDOG_RECENT, 0, 49)
    except Exception:
        pass

def record_execution_latency(ms: int) -> None:
    if not settings.METRICS_ENABLED:
        return
    try:
        r = _writer()
        r.lpush(K_EXEC_LAT, int(ms))
        r.ltrim(K_EXEC_LAT, 0, _MAX_SAMPLES - 1)
    except Exception:
        pass

def record_execution(outcome: str, ms: int) -> None:
    increment_execution_outcome(outcome)
    record_execution_latency(ms)

def _read_latency_list(r, key: str) -> List[float]:
    raw = r.lrange(key, 0, _MAX_SAMPLES - 1) or []
    out: List[float] = []
    for x in raw:
        try:
            out.append(float(x) / 1000.0)  # seconds
        except (TypeError, ValueError):
            continue
    return out

def _p50_p95(latencies_s: List[float]) -> Tuple[float, float]:
    if not latencies_s:
        return 0.0, 0.0
    return _percentile(latencies_s, 0.50), _percentile(latencies_s, 0.95)

def get_kiosk_snapshot() -> dict:
    """
    Return a dict shaped for /admin/metrics consumers.
    Fields:
      - executions: counts per outcome and queued_share (percent of cycles that went offline)
      - p50/p95 execution latency (seconds)
      - guard_rejections, watchdog_forced, recent_watchdog_kiosks
      - replay_delivered, replay_failed
    """
    r = get_redis()

    online = int(r.get(f"{K_EXEC_OUTCOME}online") or 0)
    queued = int(r.get(f"{K_EXEC_OUTCOME}queued") or 0)
    failed = int(r.get(f"{K_EXEC_OUTCOME}failed") or 0)
    total = online + queued + failed
    queued_share = (queued / total) * 100.0 if total else 0.0

    p50, p95 = _p50_p95(_read_latency_list(r, K_EXEC_LAT))

    return {
        "executions": {"online": online, "queued": queued, "failed": failed, "total": total},
        "queued_share": round(queued_share, 3),
        "p50_execution_latency": round(p50, 3),
        "p95_execution_latency": round(p95, 3),
        "guard_rejections": int(r.get(K_GUARD_REJECT) or 0),
        "watchdog_forced": int(r.get(K_WATCHDOG) or 0),
        "recent_watchdog_kiosks": list(r.lrange(K_WATCHDOG_RECENT, 0, 19) or []),
        "replay_delivered": int(r.get(K_REPLAY_OK) or 0),
        "replay_failed": int(r.get(K_REPLAY_FAIL) or 0),
        "snapshot_at": _now_s(),
    }
