"""Shared test fixtures."""

from __future__ import annotations

import os
import sys
import time
from pathlib import Path

import pytest

from gemini_cli_job.config import (
    GeminiOptions,
    JobConfig,
    NotificationConfig,
    PromptConfig,
    Settings,
)
from gemini_cli_job.logs import reset_logging

ECHO_AGENT_ARGS = ("-m", "gemini_cli_job.runner.echo_agent")

_ENV_VARS = (
    "GEMINI_CLI_JOB_HOME",
    "GOOGLE_CLOUD_PROJECT",
    "GEMINI_MODEL",
    "GEMINI_CLI_JOB_EXECUTABLE",
    "GEMINI_CLI_JOB_TIMEOUT_MS",
    "OPSGENIE_API_KEY",
    "GEMINI_NOTIFICATION_ENABLED",
    "GEMINI_CLI_JOB_LOG_RETENTION_DAYS",
    "DEBUG",
)


def echo_agent_options(mode: str, *extra: str, timeout_ms: int = 30_000) -> GeminiOptions:
    """Options that run the packaged echo agent instead of the real tool."""

    return GeminiOptions(
        executable=sys.executable,
        extra_args=(*ECHO_AGENT_ARGS, "--mode", mode, *extra),
        timeout_ms=timeout_ms,
    )


def make_job(  # noqa: PLR0913
    name: str = "weekly-report",
    *,
    mode: str = "json",
    extra: tuple[str, ...] = (),
    context_files: tuple[str, ...] = (),
    custom_prompt: str | None = "Summarize the week.",
    notification: NotificationConfig | None = None,
    timeout_ms: int = 30_000,
) -> JobConfig:
    return JobConfig(
        job_name=name,
        schedules=("0 9 * * 1",),
        prompt=PromptConfig(context_files=context_files, custom_prompt=custom_prompt),
        gemini_options=echo_agent_options(mode, *extra, timeout_ms=timeout_ms),
        notification=notification or NotificationConfig(type="none"),
    )


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch, tmp_path: Path):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("GEMINI_CLI_JOB_HOME", str(tmp_path / "home"))
    yield
    reset_logging()


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(home_dir=tmp_path / "home", google_cloud_project="demo-project")


def pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    stat = Path(f"/proc/{pid}/stat")
    if stat.exists():
        try:
            state = stat.read_text().rsplit(")", 1)[1].split()[0]
        except (OSError, IndexError):
            return False
        return state not in {"Z", "X"}
    return True


def wait_until(predicate, timeout: float = 10.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


def wait_for_pid_file(path: Path) -> int:
    assert wait_until(lambda: path.exists() and path.read_text().strip() != "")
    return int(path.read_text().strip())
