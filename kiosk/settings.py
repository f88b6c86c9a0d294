import os
from dotenv import load_dotenv

load_dotenv()

class Settings:
    API_KEY: str = os.getenv("API_KEY", "")
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "*")

    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    RQ_QUEUE_NAME: str = os.getenv("RQ_QUEUE_NAME", "kiosk-replay")

    # Backend service that owns bookings/gowns/inventory transactions
    BACKEND_BASE_URL: str = os.getenv("BACKEND_BASE_URL", "http://localhost:8080")
    BACKEND_API_KEY: str = os.getenv("BACKEND_API_KEY", "")
    BACKEND_TIMEOUT_SEC: float = float(os.getenv("BACKEND_TIMEOUT_SEC", "5"))
    LOOKUP_TIMEOUT_SEC: float = float(os.getenv("LOOKUP_TIMEOUT_SEC", "6"))

    # Default selected event for kiosks opened without an explicit event
    KIOSK_EVENT_ID: str = os.getenv("KIOSK_EVENT_ID", "")
    KIOSK_EVENT_NAME: str = os.getenv("KIOSK_EVENT_NAME", "")

    # Connectivity
    OFFLINE_MODE: bool = os.getenv("OFFLINE_MODE", "false").lower() == "true"
    CONNECTIVITY_CHECK_SEC: float = float(os.getenv("CONNECTIVITY_CHECK_SEC", "2"))
    # While the network-down signal is up, re-check backend health at most this often
    CONNECTIVITY_RECHECK_SEC: float = float(os.getenv("CONNECTIVITY_RECHECK_SEC", "10"))

    # Debounce settle windows per surface (milliseconds)
    SETTLE_MS_RETURNS: int = int(os.getenv("SETTLE_MS_RETURNS", "300"))
    SETTLE_MS_GOWN_CHANGE: int = int(os.getenv("SETTLE_MS_GOWN_CHANGE", "500"))
    SETTLE_MS_STAGE_QUEUE: int = int(os.getenv("SETTLE_MS_STAGE_QUEUE", "500"))
    SETTLE_MS_GALLERY: int = int(os.getenv("SETTLE_MS_GALLERY", "300"))

    # Terminal display delays before auto-reset to Idle (seconds)
    SUCCESS_DISPLAY_SEC: float = float(os.getenv("SUCCESS_DISPLAY_SEC", "5"))
    ERROR_DISPLAY_SEC: float = float(os.getenv("ERROR_DISPLAY_SEC", "2"))
    REJECTION_DISPLAY_SEC: float = float(os.getenv("REJECTION_DISPLAY_SEC", "2"))

    # Watchdog bounds on the Executing state
    WATCHDOG_OFFLINE_SEC: float = float(os.getenv("WATCHDOG_OFFLINE_SEC", "1.0"))
    WATCHDOG_ONLINE_SEC: float = float(os.getenv("WATCHDOG_ONLINE_SEC", "8.0"))
    PAYMENT_STATUS_TIMEOUT_SEC: float = float(os.getenv("PAYMENT_STATUS_TIMEOUT_SEC", "120"))

    # Execution modes:
    # - "online": call the backend, fail if it fails
    # - "hybrid": bounded online attempt, then durable offline queue as backup
    EXECUTION_MODE: str = os.getenv("EXECUTION_MODE", "hybrid").lower()
    ONLINE_ATTEMPT_DEADLINE_SEC: float = float(os.getenv("ONLINE_ATTEMPT_DEADLINE_SEC", "5.0"))

    # Exit gesture: three title activations inside this window
    EXIT_TAP_WINDOW_SEC: float = float(os.getenv("EXIT_TAP_WINDOW_SEC", "1.0"))

    # Offline queue replay
    REPLAY_MAX_ATTEMPTS: int = int(os.getenv("REPLAY_MAX_ATTEMPTS", "3"))
    REPLAY_BATCH_LIMIT: int = int(os.getenv("REPLAY_BATCH_LIMIT", "200"))
    OFFLINE_QUEUE_PREFIX: str = os.getenv("OFFLINE_QUEUE_PREFIX", "offline")

    # Offline lookup cache
    LOOKUP_CACHE_TTL_SEC: int = int(os.getenv("LOOKUP_CACHE_TTL_SEC", "43200"))

    # Cross-process claim on a kiosk surface instance; the holder refreshes it
    # well inside the TTL so a crashed process frees the kiosk within one TTL
    SURFACE_CLAIM_TTL_MS: int = int(os.getenv("SURFACE_CLAIM_TTL_MS", "60000"))
    SURFACE_CLAIM_REFRESH_SEC: float = float(os.getenv("SURFACE_CLAIM_REFRESH_SEC", "20"))

    # Subscribe to transaction:* status channels inside the API process
    REALTIME_LISTENER_ENABLED: bool = os.getenv("REALTIME_LISTENER_ENABLED", "true").lower() == "true"

    METRICS_ENABLED: bool = os.getenv("METRICS_ENABLED", "true").lower() == "true"
    # Socket timeout for best-effort metric writes
    METRICS_REDIS_TIMEOUT_SEC: float = float(os.getenv("METRICS_REDIS_TIMEOUT_SEC", "0.25"))

    # Security & Privacy
    ENABLE_PII_REDACTION: bool = os.getenv("ENABLE_PII_REDACTION", "true").lower() == "true"
    ADMIN_RBAC_ENABLED: bool = os.getenv("ADMIN_RBAC_ENABLED", "true").lower() == "true"
    ADMIN_API_KEY: str = os.getenv("ADMIN_API_KEY", "")

settings = Settings()
