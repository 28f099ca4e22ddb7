from __future__ import annotations

import json
import os
import sys
import time
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner
from conftest import pid_alive, wait_for_pid_file, wait_until

from gemini_cli_job import __version__
from gemini_cli_job.main import gjob
from gemini_cli_job.runner import KILL_GRACE_SECONDS

pytestmark = [
    allure.epic("Command Line"),
    allure.feature("gjob Commands"),
]


def _write_echo_config(
    path: Path,
    mode: str = "json",
    *,
    extra: tuple[str, ...] = (),
    timeout_ms: int | None = None,
) -> Path:
    gemini_options: dict = {
        "executable": sys.executable,
        "extraArgs": ["-m", "gemini_cli_job.runner.echo_agent", "--mode", mode, *extra],
    }
    if timeout_ms is not None:
        gemini_options["timeoutMs"] = timeout_ms
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(
            {
                "jobs": [
                    {
                        "jobName": "Weekly",
                        "schedules": ["0 9 * * 1"],
                        "promptConfig": {"customPrompt": "Summarize the week."},
                        "geminiOptions": gemini_options,
                        "notificationConfig": {"type": "none"},
                    },
                ],
            },
        ),
        "utf-8",
    )
    return path


def test_version() -> None:
    result = CliRunner().invoke(gjob, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_init_writes_config_and_templates(tmp_path: Path) -> None:
    runner = CliRunner()

    result = runner.invoke(gjob, ["init"])

    assert result.exit_code == 0, result.output
    assert "Created config:" in result.output
    assert "+ about.md" in result.output
    assert (tmp_path / "home" / "config.json").exists()
    assert (tmp_path / "home" / "templates" / "release-notes-rules.md").exists()
    assert (tmp_path / "home" / "memory").is_dir()

    again = runner.invoke(gjob, ["init"])
    assert again.exit_code == 0
    assert "Config already exists" in again.output


def test_list_and_templates_after_init() -> None:
    runner = CliRunner()
    runner.invoke(gjob, ["init"])

    listed = runner.invoke(gjob, ["list"])
    templates = runner.invoke(gjob, ["templates"])

    assert listed.exit_code == 0
    assert "weekly-release-notes - ⏸️  disabled (0 9 * * 1)" in listed.output
    assert templates.exit_code == 0
    assert "  - templates/about.md" in templates.output


def test_list_without_config() -> None:
    result = CliRunner().invoke(gjob, ["list"])

    assert result.exit_code == 0
    assert "No jobs configured" in result.output


def test_run_job_and_inspect_memory(tmp_path: Path) -> None:
    config = _write_echo_config(tmp_path / "cfg" / "config.json")
    runner = CliRunner()

    result = runner.invoke(gjob, ["-c", str(config), "run", "weekly"])

    assert result.exit_code == 0, result.output
    assert "Job Weekly completed: mode=whole_text_json" in result.output
    assert "Done" in result.output

    shown = runner.invoke(gjob, ["-c", str(config), "memory", "show", "WEEKLY"])
    assert shown.exit_code == 0
    assert "Memory for job: Weekly" in shown.output
    assert 'v: "1.2.0"' in shown.output

    listed = runner.invoke(gjob, ["-c", str(config), "memory", "list"])
    assert "Weekly (keys=" in listed.output

    cleared = runner.invoke(gjob, ["-c", str(config), "memory", "clear", "weekly"])
    assert "Memory cleared for job: Weekly" in cleared.output
    assert "No memory found" in runner.invoke(gjob, ["-c", str(config), "memory", "show", "weekly"]).output


def test_failed_run_exits_non_zero(tmp_path: Path) -> None:
    config = _write_echo_config(tmp_path / "config.json", mode="fail")

    result = CliRunner().invoke(gjob, ["-c", str(config), "run", "Weekly"])

    assert result.exit_code == 1
    assert "Job Weekly failed (non_zero_exit)" in result.output


@pytest.mark.skipif(os.name == "nt", reason="process groups are POSIX only")
def test_timed_out_run_waits_for_kill_grace_before_exiting(tmp_path: Path) -> None:
    pid_file = tmp_path / "agent.pid"
    config = _write_echo_config(
        tmp_path / "config.json",
        mode="ignore-term",
        extra=("--pid-file", str(pid_file), "--sleep-seconds", "30"),
        timeout_ms=1_000,
    )

    started = time.monotonic()
    result = CliRunner().invoke(gjob, ["-c", str(config), "run", "Weekly"])
    elapsed = time.monotonic() - started

    assert result.exit_code == 1
    assert "Job Weekly failed (timed_out)" in result.output
    assert elapsed >= KILL_GRACE_SECONDS
    pid = wait_for_pid_file(pid_file)
    assert wait_until(lambda: not pid_alive(pid))


def test_unknown_job_lists_available_jobs(tmp_path: Path) -> None:
    config = _write_echo_config(tmp_path / "config.json")

    result = CliRunner().invoke(gjob, ["-c", str(config), "run", "nope"])

    assert result.exit_code == 1
    assert "Job not found: nope" in result.output
    assert "  - Weekly" in result.output


def test_invalid_config_is_reported(tmp_path: Path) -> None:
    config = tmp_path / "config.json"
    config.write_text("{oops", "utf-8")

    result = CliRunner().invoke(gjob, ["-c", str(config), "list"])

    assert result.exit_code == 1
    assert not isinstance(result.exception, ValueError)


def test_start_without_enabled_jobs() -> None:
    result = CliRunner().invoke(gjob, ["start"])

    assert result.exit_code == 0
    assert "No enabled jobs configured" in result.output


def test_logs_commands(tmp_path: Path) -> None:
    logs_dir = tmp_path / "home" / "logs"
    logs_dir.mkdir(parents=True)
    (logs_dir / "2000-01-01.log").write_text("old", "utf-8")
    runner = CliRunner()

    path_result = runner.invoke(gjob, ["logs", "path"])
    cleanup = runner.invoke(gjob, ["logs", "cleanup", "--days", "7"])

    assert f"Log directory: {logs_dir}" in path_result.output
    assert "Removed 1 log file(s) older than 7 day(s)" in cleanup.output
    assert not (logs_dir / "2000-01-01.log").exists()
