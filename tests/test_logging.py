import json
from datetime import datetime

from kiosk.observability.logging import log
from kiosk.settings import settings


def _last_line(capsys):
    return json.loads(capsys.readouterr().out.strip().splitlines()[-1])


def test_values_json_cannot_encode_are_written_as_text(capsys):
    log(event="execution_outcome", at=datetime(2026, 5, 1, 12, 0), steps={"release", "assign"} - {"assign"})
    line = _last_line(capsys)
    assert line["event"] == "execution_outcome"
    assert line["at"] == "2026-05-01 12:00:00"
    assert line["steps"] == "{'release'}"


def test_secrets_are_masked_and_records_summarized(capsys, monkeypatch):
    monkeypatch.setattr(settings, "ENABLE_PII_REDACTION", True)
    log(event="backend_request", apiKey="k-123", record={"bookingId": "bk-1", "studentName": "A"},
        headers={"x-api-key": "k", "password": "p"})
    line = _last_line(capsys)
    assert line["apiKey"] == "[REDACTED]"
    assert line["record"] == {"keys": ["bookingId", "studentName"]}
    assert line["headers"] == {"x-api-key": "k", "password": "[REDACTED]"}
