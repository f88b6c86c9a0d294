import json
import time
from kiosk.settings import settings

# Credentials are always masked; payload-like fields are summarized
SECRET_KEYS = {"password", "credential", "adminKey", "apiKey"}
SENSITIVE_KEYS = {"payload", "record", "extra"}

def _redact_value(v):
    if isinstance(v, str) and len(v) > 0:
        return f"[REDACTED:{len(v)}chars]"
    if isinstance(v, dict):
        return {k: _redact_value(val) for k, val in v.items()}
    return v

def _summarize(v):
    if isinstance(v, dict):
        return {"keys": sorted(str(k) for k in v.keys())}
    return _redact_value(v)

def log(event: str, **fields):
    payload = {"ts": int(time.time()), "event": event}

    clean_fields = {}
    for k, v in fields.items():
        if k in SECRET_KEYS:
            clean_fields[k] = "[REDACTED]"
        elif settings.ENABLE_PII_REDACTION and k in SENSITIVE_KEYS:
            clean_fields[k] = _summarize(v)
        elif isinstance(v, dict):
            clean_fields[k] = {sk: ("[REDACTED]" if sk in SECRET_KEYS else sv) for sk, sv in v.items()}
        else:
            clean_fields[k] = v
    payload.update(clean_fields)

    print(json.dumps(payload, ensure_ascii=False, default=str))
