import time
from datetime import datetime, timezone

def now_ms() -> int:
    return int(time.time() * 1000)

def parse_timestamp_ms(ts):
    """
    Normalize a backend timestamp to epoch milliseconds.
    Accepts epoch ms/seconds (int/float) or ISO-8601 strings (trailing 'Z' allowed).
    Returns None when the value is missing or unparseable.
    """
    try:
        if ts is None:
            return None
        if isinstance(ts, (int, float)):
            v = int(ts)
            # Heuristic: if looks like seconds (< 10^12), convert to ms.
            return v * 1000 if 0 < v < 10**12 else v
        if isinstance(ts, str):
            s = ts.strip()
            if not s:
                return None
            if s.endswith("Z"):
                s = s[:-1] + "+00:00"
            dt = datetime.fromisoformat(s)
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            return int(dt.timestamp() * 1000)
    except (TypeError, ValueError):
        return None
    return None
