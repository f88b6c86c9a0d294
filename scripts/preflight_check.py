#!/usr/bin/env python3
import sys
import os

print("Running preflight import check...")
try:
    # Set dummy env vars to avoid surprises during config load
    os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
    os.environ.setdefault("REALTIME_LISTENER_ENABLED", "false")

    import kiosk.main
    print("Import kiosk.main: OK")

    import kiosk.queue.jobs
    print("Import kiosk.queue.jobs: OK")

    from kiosk.surfaces.profiles import PROFILES
    print(f"Surfaces: {', '.join(sorted(PROFILES))}")

    print("Preflight check passed.")
    sys.exit(0)
except Exception as e:
    print(f"Preflight check FAILED: {e}")
    import traceback
    traceback.print_exc()
    sys.exit(1)
