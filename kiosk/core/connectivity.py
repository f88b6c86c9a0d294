import asyncio
import time
from typing import Awaitable, Callable, List, Optional

import httpx

from kiosk.settings import settings
from kiosk.observability.logging import log

RecoveryHook = Callable[[], Awaitable[None]]


class ConnectivityMonitor:
    """
    Online means: no explicit offline toggle AND no network-down signal.
    Transport failures seen by the lookup/executor raise the signal; a
    successful health check clears it. While the signal is up, recheck() checks again
    at most once per recheck_sec, and run() does the same in the background,
    so a network blip does not leave the kiosk offline.
    """

    def __init__(self, forced_offline: Optional[bool] = None, health_url: Optional[str] = None,
                 health_check: Optional[Callable[[], Awaitable[bool]]] = None,
                 recheck_sec: Optional[float] = None):
        self.forced_offline = settings.OFFLINE_MODE if forced_offline is None else bool(forced_offline)
        self.network_down = False
        self.health_url = health_url or f"{settings.BACKEND_BASE_URL.rstrip('/')}/health"
        self.health_check = health_check
        self.recheck_sec = float(settings.CONNECTIVITY_RECHECK_SEC if recheck_sec is None else recheck_sec)
        # awaited after every down -> up change
        self.on_recovered: List[RecoveryHook] = []
        self._last_check = 0.0
        self._task: Optional[asyncio.Task] = None

    def is_online(self) -> bool:
        return not (self.forced_offline or self.network_down)

    def set_forced_offline(self, value: bool) -> None:
        if self.forced_offline != bool(value):
            log(event="connectivity_toggle", forcedOffline=bool(value))
        self.forced_offline = bool(value)

    def mark_down(self, reason: str = "") -> None:
        if not self.network_down:
            log(event="connectivity_down", reason=reason)
            self._last_check = time.monotonic()
        self.network_down = True

    def mark_up(self) -> bool:
        """Clear the signal; True when this was a down -> up change."""
        if not self.network_down:
            return False
        log(event="connectivity_up")
        self.network_down = False
        return True

    async def _healthy(self) -> bool:
        if self.health_check is not None:
            try:
                return bool(await asyncio.wait_for(self.health_check(), timeout=settings.CONNECTIVITY_CHECK_SEC))
            except asyncio.TimeoutError:
                log(event="connectivity_check_failed", errorType="TimeoutError")
                return False
        try:
            async with httpx.AsyncClient(timeout=settings.CONNECTIVITY_CHECK_SEC) as client:
                resp = await client.get(self.health_url)
        except httpx.HTTPError as e:
            log(event="connectivity_check_failed", errorType=type(e).__name__)
            return False
        return 200 <= resp.status_code < 300

    async def check(self) -> bool:
        self._last_check = time.monotonic()
        ok = await self._healthy()
        if not ok:
            self.mark_down("health_check_failed")
            return False
        if self.mark_up():
            for hook in list(self.on_recovered):
                await hook()
        return True

    async def recheck(self) -> bool:
        """Re-check a network-down signal once recheck_sec has passed since the last attempt."""
        if self.forced_offline or not self.network_down:
            return self.is_online()
        if time.monotonic() - self._last_check < self.recheck_sec:
            return False
        await self.check()
        return self.is_online()

    async def run(self, interval_sec: Optional[float] = None) -> None:
        interval = float(interval_sec or self.recheck_sec or 1.0)
        log(event="connectivity_monitor_started", intervalSec=interval)
        while True:
            await asyncio.sleep(interval)
            try:
                await self.recheck()
            except Exception as e:
                log(event="connectivity_monitor_error", errorType=type(e).__name__, error=str(e)[:200])

    def start(self, interval_sec: Optional[float] = None) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.ensure_future(self.run(interval_sec))
        return self._task

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    def snapshot(self) -> dict:
        return {
            "online": self.is_online(),
            "forcedOffline": self.forced_offline,
            "networkDown": self.network_down,
        }
