import asyncio
from typing import Awaitable, Callable, Optional


class DebounceGate:
    """
    Restartable settle timer. Each on_change() cancels the pending timer and
    starts a new one; when the window elapses without another change the
    callback receives the last text, once.
    """

    def __init__(self, settle_ms: int, on_settle: Callable[[str], Awaitable[None]]):
        self.settle_ms = int(settle_ms)
        self._on_settle = on_settle
        self._handle: Optional[asyncio.TimerHandle] = None
        self._pending_text: Optional[str] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def on_change(self, text: str) -> None:
        self.cancel()
        self._pending_text = text
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.settle_ms / 1000.0, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._pending_text = None

    def _fire(self) -> None:
        text = self._pending_text
        self._handle = None
        self._pending_text = None
        if text is None:
            return
        asyncio.ensure_future(self._on_settle(text))
