"""Job notifications: console block, Opsgenie alert API, or nothing."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

import httpx

from gemini_cli_job.config import NotificationConfig, Settings

_logger = logging.getLogger(__name__)

OPSGENIE_ALERTS_URL = "https://api.opsgenie.com/v2/alerts"
MAX_MESSAGE_CHARS = 130
MAX_DESCRIPTION_CHARS = 15_000
DEFAULT_TIMEOUT_SECONDS = 15.0
SUCCESS_PRIORITY = "P3"
FAILURE_PRIORITY = "P1"


class AlertDeliveryError(RuntimeError):
    """Alert could not be delivered to its sink."""


@dataclass(slots=True)
class AlertPayload:
    """Provider-neutral alert content."""

    message: str
    alias: str
    description: str | None = None
    priority: str = SUCCESS_PRIORITY
    tags: tuple[str, ...] = ()
    teams: tuple[str, ...] = ()
    details: dict[str, str] = field(default_factory=dict)
    entity: str | None = None


class AlertSink(Protocol):
    name: str

    async def send(self, payload: AlertPayload) -> None:
        """Deliver the alert or raise `AlertDeliveryError`."""


class ConsoleAlertSink:
    """Writes the alert as a log block."""

    name = "console"

    def __init__(self, *, logger: logging.Logger | None = None) -> None:
        self._logger = logger or _logger

    async def send(self, payload: AlertPayload) -> None:
        lines = [
            "=== NOTIFICATION ===",
            f"Message: {payload.message}",
            f"Alias: {payload.alias}",
        ]
        if payload.description:
            lines.append(f"Description: {payload.description}")
        if payload.entity:
            lines.append(f"Entity: {payload.entity}")
        if payload.priority:
            lines.append(f"Priority: {payload.priority}")
        if payload.teams:
            lines.append(f"Teams: {', '.join(payload.teams)}")
        if payload.tags:
            lines.append(f"Tags: {', '.join(payload.tags)}")
        lines.append("===================")
        for line in lines:
            self._logger.info("%s", line)


class DisabledAlertSink:
    name = "none"

    async def send(self, payload: AlertPayload) -> None:
        _logger.debug("Notification disabled, skipping alert %s", payload.alias)


class OpsgenieAlertSink:
    """Creates alerts through the Opsgenie REST API."""

    name = "opsgenie"

    def __init__(
        self,
        api_key: str,
        *,
        url: str = OPSGENIE_ALERTS_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise AlertDeliveryError("Opsgenie API key is required for Opsgenie notifications")
        self._api_key = api_key
        self._url = url
        self._timeout = httpx.Timeout(timeout_seconds, connect=5.0)
        self._transport = transport

    def build_body(self, payload: AlertPayload) -> dict[str, object]:
        body: dict[str, object] = {
            "message": payload.message[:MAX_MESSAGE_CHARS],
            "alias": payload.alias,
            "priority": payload.priority,
        }
        if payload.description:
            body["description"] = payload.description[:MAX_DESCRIPTION_CHARS]
        if payload.tags:
            body["tags"] = list(payload.tags)
        if payload.teams:
            body["responders"] = [{"name": team, "type": "team"} for team in payload.teams]
        if payload.details:
            body["details"] = dict(payload.details)
        if payload.entity:
            body["entity"] = payload.entity
        return body

    async def send(self, payload: AlertPayload) -> None:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                response = await client.post(
                    self._url,
                    json=self.build_body(payload),
                    headers={"Authorization": f"GenieKey {self._api_key}"},
                )
            except httpx.HTTPError as error:
                raise AlertDeliveryError(f"Opsgenie request failed: {error}") from error
        if not response.is_success:
            raise AlertDeliveryError(
                f"Opsgenie responded with HTTP {response.status_code}: {response.text[:200]}",
            )
        _logger.debug("Opsgenie accepted alert %s", payload.alias)


class Notifier:
    """Routes job alerts to the sink named in the job's notification config."""

    def __init__(
        self,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._logger = logger or _logger

    def sink_for(self, config: NotificationConfig | None) -> AlertSink:
        notification_type = config.type if config is not None else "console"
        if notification_type == "none":
            return DisabledAlertSink()
        if notification_type == "opsgenie":
            if not self._settings.notification_enabled:
                self._logger.debug("GEMINI_NOTIFICATION_ENABLED is off, skipping Opsgenie")
                return DisabledAlertSink()
            job_key = config.opsgenie_api_key if config else None
            api_key = job_key or self._settings.opsgenie_api_key
            return OpsgenieAlertSink(api_key or "", transport=self._transport)
        return ConsoleAlertSink(logger=self._logger)

    async def notify(self, config: NotificationConfig | None, payload: AlertPayload) -> bool:
        """Send the alert; delivery problems are logged and reported as False."""

        try:
            sink = self.sink_for(config)
            await sink.send(payload)
        except AlertDeliveryError as error:
            self._logger.error("Failed to send alert %s: %s", payload.alias, error)
            return False
        return True


def success_payload(
    job_name: str,
    config: NotificationConfig | None,
    *,
    preview: str,
    result_text: str,
    details: dict[str, str] | None = None,
) -> AlertPayload:
    base = (config.message if config else None) or f"Job {job_name} completed"
    description = result_text
    if config is not None and config.description:
        description = f"{config.description}\n\n{result_text}"
    return AlertPayload(
        message=f"{base}: {preview}",
        alias=(config.alias if config else None) or job_name,
        description=description,
        priority=(config.priority if config else None) or SUCCESS_PRIORITY,
        tags=config.tags if config else (),
        teams=config.teams if config else (),
        details=details or {},
        entity=config.entity if config else None,
    )


def failure_payload(
    job_name: str,
    config: NotificationConfig | None,
    *,
    error: str,
    details: dict[str, str] | None = None,
) -> AlertPayload:
    first_line = error.splitlines()[0] if error else "unknown error"
    alias = (config.alias if config else None) or job_name
    return AlertPayload(
        message=f"Job {job_name} failed: {first_line}",
        alias=f"{alias}-failure",
        description=error,
        priority=FAILURE_PRIORITY,
        tags=config.tags if config else (),
        teams=config.teams if config else (),
        details=details or {},
        entity=config.entity if config else None,
    )
