"""
Scan vs. manual input classification.

An RFID reader emulates a keyboard but delivers its 8 characters faster than a
field observer sees individual keystrokes, so a single observation grows the
text by several characters. A human grows it by one. Once a single-character
increment is seen the cycle stays Manual until the session resets.
"""
import re
from enum import Enum
from typing import Optional

from kiosk.core.errors import FormatError
from kiosk.core.models import ScanEvent
from kiosk.utils.time import now_ms

IDENTIFIER_LENGTH = 8
IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9]{8}$")


class Classification(str, Enum):
    SCAN = "scan"
    MANUAL = "manual"


def classify(previous_text: str, new_text: str, previous: Optional[Classification] = None) -> Classification:
    if previous == Classification.MANUAL:
        return Classification.MANUAL
    prev_len = len(previous_text or "")
    new_len = len(new_text or "")
    if new_len > prev_len + 1:
        return Classification.SCAN
    # single-character append, deletion or in-place edit
    return Classification.MANUAL


def normalize_identifier(text: str) -> str:
    """
    Returns the canonical identifier (trimmed, upper-cased).
    Raises FormatError for anything that is not exactly 8 alphanumerics.
    """
    value = (text or "").strip()
    if not IDENTIFIER_RE.match(value):
        raise FormatError(
            "RFID must be exactly 8 letters or numbers.",
            {"length": len(value)},
        )
    return value.upper()


class InputTracker:
    """Holds the last observation and the sticky classification for one input cycle."""

    def __init__(self):
        self.text = ""
        self.classification: Optional[Classification] = None

    def observe(self, new_text: str, timestamp_ms: Optional[int] = None) -> ScanEvent:
        event = ScanEvent(
            text=new_text,
            timestampMs=timestamp_ms if timestamp_ms is not None else now_ms(),
            deltaLen=len(new_text) - len(self.text),
        )
        self.classification = classify(self.text, new_text, self.classification)
        self.text = new_text
        return event

    @property
    def is_scan(self) -> bool:
        return self.classification == Classification.SCAN

    def reset(self) -> None:
        self.text = ""
        self.classification = None
