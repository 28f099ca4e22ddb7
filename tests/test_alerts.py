from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import allure
import httpx
import pytest

from gemini_cli_job.alerts import (
    FAILURE_PRIORITY,
    MAX_MESSAGE_CHARS,
    AlertDeliveryError,
    AlertPayload,
    ConsoleAlertSink,
    DisabledAlertSink,
    Notifier,
    OpsgenieAlertSink,
    failure_payload,
    success_payload,
)
from gemini_cli_job.config import NotificationConfig, Settings

pytestmark = [
    allure.epic("Notifications"),
    allure.feature("Alert Sinks"),
]


def _recording_transport(status_code: int = 202) -> tuple[httpx.MockTransport, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status_code, json={"result": "Request will be processed"})

    return httpx.MockTransport(handler), requests


def _payload() -> AlertPayload:
    return AlertPayload(
        message="x" * 200,
        alias="weekly",
        description="Full report",
        tags=("weekly",),
        teams=("ops",),
        details={"jobName": "weekly"},
    )


def test_opsgenie_sink_posts_alert_body() -> None:
    transport, requests = _recording_transport()
    sink = OpsgenieAlertSink("secret-key", transport=transport)

    asyncio.run(sink.send(_payload()))

    [request] = requests
    assert request.headers["Authorization"] == "GenieKey secret-key"
    body = json.loads(request.content)
    assert len(body["message"]) == MAX_MESSAGE_CHARS
    assert body["alias"] == "weekly"
    assert body["priority"] == "P3"
    assert body["responders"] == [{"name": "ops", "type": "team"}]
    assert body["tags"] == ["weekly"]
    assert body["details"] == {"jobName": "weekly"}


def test_opsgenie_sink_raises_on_error_status() -> None:
    transport, _ = _recording_transport(status_code=422)
    sink = OpsgenieAlertSink("secret-key", transport=transport)

    with pytest.raises(AlertDeliveryError, match="HTTP 422"):
        asyncio.run(sink.send(_payload()))


def test_opsgenie_sink_requires_api_key() -> None:
    with pytest.raises(AlertDeliveryError, match="API key is required"):
        OpsgenieAlertSink("")


def test_console_sink_logs_notification_block(caplog) -> None:
    logger = logging.getLogger("tests.alerts")
    caplog.set_level(logging.INFO, logger="tests.alerts")

    asyncio.run(ConsoleAlertSink(logger=logger).send(_payload()))

    assert "=== NOTIFICATION ===" in caplog.text
    assert "Alias: weekly" in caplog.text
    assert "Teams: ops" in caplog.text


def test_notifier_routes_by_type(tmp_path: Path) -> None:
    notifier = Notifier(Settings(home_dir=tmp_path, opsgenie_api_key="env-key"))

    assert isinstance(notifier.sink_for(None), ConsoleAlertSink)
    assert isinstance(notifier.sink_for(NotificationConfig(type="none")), DisabledAlertSink)
    assert isinstance(notifier.sink_for(NotificationConfig(type="opsgenie")), OpsgenieAlertSink)


def test_notifier_skips_opsgenie_when_disabled(tmp_path: Path) -> None:
    transport, requests = _recording_transport()
    settings = Settings(home_dir=tmp_path, opsgenie_api_key="key", notification_enabled=False)
    notifier = Notifier(settings, transport=transport)

    delivered = asyncio.run(notifier.notify(NotificationConfig(type="opsgenie"), _payload()))

    assert delivered is True
    assert requests == []


def test_notifier_prefers_job_api_key(tmp_path: Path) -> None:
    transport, requests = _recording_transport()
    notifier = Notifier(Settings(home_dir=tmp_path, opsgenie_api_key="env-key"), transport=transport)
    config = NotificationConfig(type="opsgenie", opsgenie_api_key="job-key")

    asyncio.run(notifier.notify(config, _payload()))

    assert requests[0].headers["Authorization"] == "GenieKey job-key"


def test_notifier_reports_delivery_failure_without_raising(tmp_path: Path, caplog) -> None:
    notifier = Notifier(Settings(home_dir=tmp_path))

    delivered = asyncio.run(notifier.notify(NotificationConfig(type="opsgenie"), _payload()))

    assert delivered is False
    assert "Failed to send alert weekly" in caplog.text


def test_success_payload_uses_config_fields() -> None:
    config = NotificationConfig(
        message="Weekly notes ready",
        alias="notes",
        description="Release notes",
        priority="P2",
        entity="release",
    )

    payload = success_payload("weekly", config, preview="Short", result_text="Full text")

    assert payload.message == "Weekly notes ready: Short"
    assert payload.alias == "notes"
    assert payload.description == "Release notes\n\nFull text"
    assert payload.priority == "P2"
    assert payload.entity == "release"


def test_failure_payload_is_high_priority() -> None:
    payload = failure_payload("weekly", None, error="gemini failed with exit code 1\nhint")

    assert payload.message == "Job weekly failed: gemini failed with exit code 1"
    assert payload.alias == "weekly-failure"
    assert payload.priority == FAILURE_PRIORITY
    assert payload.description == "gemini failed with exit code 1\nhint"
