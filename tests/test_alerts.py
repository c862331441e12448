import logging
from typing import Any

import pytest
import requests

from pdwrap import alerts
from pdwrap.alerts import Alert, DispatchResult, PagerDutyChannel, dispatch_alert
from pdwrap.execution import LineBuffer, Stream


class _FakeResponse:
    def __init__(self, status_code: int, reason: str) -> None:
        self.status_code = status_code
        self.reason = reason


class _FakeChannel:
    def __init__(self, result: DispatchResult) -> None:
        self.result = result
        self.sent: list[Alert] = []

    def send(self, alert: Alert) -> DispatchResult:
        self.sent.append(alert)
        return self.result


def _transcript() -> LineBuffer:
    buffer = LineBuffer()
    buffer.record(Stream.STDOUT, b"backup starting\n")
    buffer.record(Stream.STDERR, b"disk full\n")
    buffer.freeze()
    return buffer


def test_payload_matches_generic_events_format() -> None:
    channel = PagerDutyChannel(api_key="abc123")
    alert = Alert(description="Command exited with unexpected code 3: job", details="transcript\n")

    assert channel.build_payload(alert) == {
        "service_key": "abc123",
        "event_type": "trigger",
        "incident_key": None,
        "description": "Command exited with unexpected code 3: job",
        "details": "transcript\n",
    }


def test_send_posts_json_and_accepts_2xx(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[dict[str, Any]] = []

    def _post(url: str, **kwargs: Any) -> _FakeResponse:
        calls.append({"url": url, **kwargs})
        return _FakeResponse(202, "Accepted")

    monkeypatch.setattr(alerts.requests, "post", _post)
    channel = PagerDutyChannel(api_key="abc123", api_url="https://events.example.test/create", timeout_seconds=3)

    result = channel.send(Alert(description="boom", details=""))

    assert result == DispatchResult(ok=True)
    assert calls[0]["url"] == "https://events.example.test/create"
    assert calls[0]["json"]["description"] == "boom"
    assert calls[0]["timeout"] == 3


def test_send_reports_status_line_on_error_response(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(alerts.requests, "post", lambda url, **kwargs: _FakeResponse(400, "Bad Request"))

    result = PagerDutyChannel(api_key="abc123").send(Alert(description="boom", details=""))

    assert result == DispatchResult(ok=False, error="400 Bad Request")


def test_send_reports_network_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    def _post(url: str, **kwargs: Any) -> _FakeResponse:
        raise requests.ConnectionError("Name or service not known")

    monkeypatch.setattr(alerts.requests, "post", _post)

    result = PagerDutyChannel(api_key="abc123").send(Alert(description="boom", details=""))

    assert result.ok is False
    assert "Name or service not known" in (result.error or "")


def test_dispatch_sends_rendered_transcript() -> None:
    transcript = _transcript()
    channel = _FakeChannel(DispatchResult(ok=True))

    result = dispatch_alert("Command exceeded max runtime of 1s: sleep 5", transcript, channel)

    assert result.ok
    assert len(channel.sent) == 1
    sent = channel.sent[0]
    assert sent.event_type == "trigger"
    assert sent.description == "Command exceeded max runtime of 1s: sleep 5"
    assert sent.details == transcript.render()
    assert " STDOUT backup starting\n" in sent.details
    assert " STDERR disk full\n" in sent.details


def test_dispatch_returns_failure_without_raising() -> None:
    channel = _FakeChannel(DispatchResult(ok=False, error="503 Service Unavailable"))

    result = dispatch_alert("boom", _transcript(), channel)

    assert result == DispatchResult(ok=False, error="503 Service Unavailable")


def test_dispatch_failure_is_not_logged_as_warning(caplog: pytest.LogCaptureFixture) -> None:
    channel = _FakeChannel(DispatchResult(ok=False, error="503 Service Unavailable"))

    with caplog.at_level(logging.DEBUG, logger="pdwrap.alerts"):
        dispatch_alert("boom", _transcript(), channel)

    assert [record.levelno for record in caplog.records] == [logging.INFO]
    assert "503 Service Unavailable" in caplog.records[0].getMessage()
