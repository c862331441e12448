from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import requests

from .execution.transcript import LineBuffer

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://events.pagerduty.com/generic/2010-04-15/create_event.json"
EVENT_TYPE = "trigger"


@dataclass(frozen=True, slots=True)
class Alert:
    """Logical content of the single alert raised for a failed run.

    Example:
        ```python
        alert = Alert(description="Command exited with unexpected code 3: false", details="")
        ```
    """

    description: str
    details: str
    event_type: str = EVENT_TYPE

    @classmethod
    def from_transcript(cls, description: str, transcript: LineBuffer) -> "Alert":
        """Build an alert carrying the rendered transcript.

        Example:
            ```python
            alert = Alert.from_transcript("Command exceeded max runtime of 5s: sleep 10", buffer)
            ```
        """
        return cls(description=description, details=transcript.render())


@dataclass(frozen=True, slots=True)
class DispatchResult:
    """Outcome of one alert delivery attempt.

    Example:
        ```python
        result = DispatchResult(ok=False, error="503 Service Unavailable")
        ```
    """

    ok: bool
    error: str | None = None


class AlertChannel(Protocol):
    def send(self, alert: Alert) -> DispatchResult:
        """Deliver one alert and report success or the failure text.

        Example:
            ```python
            result = channel.send(alert)
            ```
        """
        ...


class PagerDutyChannel:
    """Send alerts to the PagerDuty generic events API over HTTPS.

    Example:
        ```python
        channel = PagerDutyChannel(api_key="0123456789abcdef")
        result = channel.send(alert)
        ```
    """

    def __init__(
        self,
        *,
        api_key: str,
        api_url: str = DEFAULT_API_URL,
        timeout_seconds: float = 10.0,
    ) -> None:
        """Store endpoint credentials.

        Example:
            ```python
            channel = PagerDutyChannel(api_key="abc123", api_url="https://events.example.test/create_event.json")
            ```
        """
        self._api_key = api_key
        self._api_url = api_url
        self._timeout_seconds = timeout_seconds

    def build_payload(self, alert: Alert) -> dict[str, Any]:
        """Return the JSON body for `alert`.

        Each run is independent, so no incident key is sent.

        Example:
            ```python
            body = channel.build_payload(alert)
            assert body["incident_key"] is None
            ```
        """
        return {
            "service_key": self._api_key,
            "event_type": alert.event_type,
            "incident_key": None,
            "description": alert.description,
            "details": alert.details,
        }

    def send(self, alert: Alert) -> DispatchResult:
        """POST the alert; anything other than a 2xx response is a failure.

        Example:
            ```python
            result = channel.send(alert)
            ```
        """
        try:
            response = requests.post(
                self._api_url,
                json=self.build_payload(alert),
                timeout=self._timeout_seconds,
            )
        except requests.RequestException as exc:
            return DispatchResult(ok=False, error=str(exc))
        if 200 <= response.status_code < 300:
            return DispatchResult(ok=True)
        return DispatchResult(ok=False, error=f"{response.status_code} {response.reason}".strip())


def dispatch_alert(description: str, transcript: LineBuffer, channel: AlertChannel) -> DispatchResult:
    """Build the alert for a failed run and hand it to `channel`.

    Delivery failures are returned, logged and never raised.

    Example:
        ```python
        result = dispatch_alert(verdict.description, buffer, PagerDutyChannel(api_key="abc123"))
        ```
    """
    alert = Alert.from_transcript(description, transcript)
    result = channel.send(alert)
    if result.ok:
        logger.info("Alert delivered: %s", description)
    else:
        logger.info("Alert delivery failed: %s", result.error)
    return result
