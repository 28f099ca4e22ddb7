"""Controllers for `gjob` CLI commands."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from gemini_cli_job.config import (
    AppConfig,
    JobConfig,
    JobDefaults,
    Settings,
    load_app_config,
    write_default_config,
)
from gemini_cli_job.executor import JobExecutor, JobOutcome
from gemini_cli_job.logs import cleanup_old_logs, configure_logging, today_log_path
from gemini_cli_job.memory import JobMemoryStore
from gemini_cli_job.scheduler import JobScheduler
from gemini_cli_job.templates import TemplateStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class InitCommand:
    """CLI inputs for the init command."""

    config_path: Path | None
    force: bool


@dataclass(slots=True)
class ConfigCommand:
    """CLI inputs for commands that only need the config file."""

    config_path: Path | None


@dataclass(slots=True)
class RunJobCommand:
    """CLI inputs for running one job now."""

    config_path: Path | None
    job_name: str


@dataclass(slots=True)
class MemoryCommand:
    """CLI inputs for memory inspection commands."""

    config_path: Path | None
    job_name: str | None = None


@dataclass(slots=True)
class LogsCleanupCommand:
    """CLI inputs for log retention cleanup."""

    days: int | None


@dataclass(slots=True)
class CommandResult:
    """Printable lines plus the exit status of one command."""

    lines: list[str] = field(default_factory=list)
    success: bool = True


class JobsCliController:
    """Coordinates job, memory and log command execution."""

    def init(self, command: InitCommand) -> CommandResult:
        settings, config_path = self._settings(command.config_path)
        lines: list[str] = []
        if write_default_config(config_path, overwrite=command.force):
            lines.append(f"Created config: {config_path}")
        else:
            lines.append(f"Config already exists: {config_path} (use --force to overwrite)")

        store = TemplateStore(config_path.parent)
        written = store.write_defaults(overwrite=command.force)
        lines.append(f"Templates: {store.templates_dir} ({len(written)} written)")
        lines.extend(f"  + {path.name}" for path in written)
        settings.memory_dir.mkdir(parents=True, exist_ok=True)
        lines.append("Edit the templates and config.json, then enable the jobs you need.")
        return CommandResult(lines=lines)

    def list_jobs(self, command: ConfigCommand) -> CommandResult:
        _, config = self._load(command.config_path)
        lines = ["Configured jobs:"]
        if not config.jobs:
            lines.append("No jobs configured. Run: gjob init")
            return CommandResult(lines=lines)
        for job in config.jobs:
            status = "✅ enabled" if job.enabled else "⏸️  disabled"
            schedules = f" ({', '.join(job.schedules)})" if job.schedules else " (manual)"
            lines.append(f"  {job.job_name} - {status}{schedules}")
        return CommandResult(lines=lines)

    def templates(self, command: ConfigCommand) -> CommandResult:
        _, config = self._load(command.config_path)
        store = TemplateStore(config.config_dir)
        lines = [
            f"Templates location: {store.templates_dir}",
            f"Config file: {config.path}",
        ]
        available = store.list_templates()
        if available:
            lines.append("Available templates:")
            lines.extend(
                f"  - {path.relative_to(config.config_dir).as_posix()}" for path in available
            )
        else:
            lines.append("No templates found. Run: gjob init")
        lines.append(
            'Usage: "contextFiles": ["templates/about.md", "templates/release-notes-rules.md"]',
        )
        return CommandResult(lines=lines)

    def run_job(self, command: RunJobCommand) -> CommandResult:
        settings, config = self._load(command.config_path)
        job = config.find_job(command.job_name)
        if job is None:
            return CommandResult(lines=_job_not_found(command.job_name, config), success=False)

        configure_logging(settings.logs_dir, debug=settings.debug, cli_mode=False)
        executor = _build_executor(settings, config)
        outcome = asyncio.run(_run_once(executor, job, config.defaults))
        return _outcome_result(outcome)

    def start(self, command: ConfigCommand) -> CommandResult:
        settings, config = self._load(command.config_path)
        enabled = config.enabled_jobs()
        if not enabled:
            return CommandResult(lines=["No enabled jobs configured. Run: gjob init"])

        configure_logging(settings.logs_dir, debug=settings.debug, cli_mode=False)
        cleanup_old_logs(settings.logs_dir, settings.log_retention_days)
        scheduler = JobScheduler(_build_executor(settings, config), config)
        logger.info("Starting job scheduler with configuration %s", config.path)
        asyncio.run(_serve(scheduler))
        return CommandResult(lines=["Scheduler stopped."])

    def memory_list(self, command: MemoryCommand) -> CommandResult:
        settings, _ = self._load(command.config_path)
        entries = JobMemoryStore(settings.memory_dir).list_entries()
        if not entries:
            return CommandResult(lines=["No job memories found."])
        lines = ["Jobs with memory:"]
        for entry in entries:
            lines.append(
                f"  {entry.job_name} (keys={entry.keys} updates={entry.update_count} "
                f"last_updated={entry.last_updated or '-'})",
            )
        return CommandResult(lines=lines)

    def memory_show(self, command: MemoryCommand) -> CommandResult:
        settings, config = self._load(command.config_path)
        job_name = _canonical_job_name(command.job_name or "", config)
        store = JobMemoryStore(settings.memory_dir)
        if not store.path_for(job_name).exists():
            return CommandResult(lines=[f"No memory found for job: {job_name}"])
        memory = store.load(job_name)
        lines = [f"Memory for job: {job_name}", "─" * 40]
        lines.extend(
            f"{key}: {json.dumps(value, ensure_ascii=False)}" for key, value in memory.items()
        )
        return CommandResult(lines=lines)

    def memory_clear(self, command: MemoryCommand) -> CommandResult:
        settings, config = self._load(command.config_path)
        job_name = _canonical_job_name(command.job_name or "", config)
        if JobMemoryStore(settings.memory_dir).clear(job_name):
            return CommandResult(lines=[f"Memory cleared for job: {job_name}"])
        return CommandResult(lines=[f"No memory found for job: {job_name}"])

    def logs_path(self) -> CommandResult:
        settings, _ = self._settings(None)
        return CommandResult(
            lines=[
                f"Log directory: {settings.logs_dir}",
                f"Today's log file: {today_log_path(settings.logs_dir)}",
            ],
        )

    def logs_cleanup(self, command: LogsCleanupCommand) -> CommandResult:
        settings, _ = self._settings(None)
        days = settings.log_retention_days if command.days is None else command.days
        removed = cleanup_old_logs(settings.logs_dir, days)
        return CommandResult(
            lines=[
                f"Removed {len(removed)} log file(s) older than {days} day(s) "
                f"from {settings.logs_dir}",
            ],
        )

    def _settings(self, config_path: Path | None) -> tuple[Settings, Path]:
        settings = Settings.from_env()
        configure_logging(settings.logs_dir, debug=settings.debug, cli_mode=True)
        resolved = config_path.expanduser().resolve() if config_path else settings.config_path
        if config_path is not None:
            logger.debug("Using config file: %s", resolved)
        return settings, resolved

    def _load(self, config_path: Path | None) -> tuple[Settings, AppConfig]:
        settings, resolved = self._settings(config_path)
        return settings, load_app_config(resolved)


async def _run_once(executor: JobExecutor, job: JobConfig, defaults: JobDefaults) -> JobOutcome:
    # A timed-out tool still gets its grace period before SIGKILL.
    outcome = await executor.execute_job(job, defaults)
    await executor.runner.wait_for_escalations()
    return outcome


async def _serve(scheduler: JobScheduler) -> None:
    scheduler.install_signal_handlers()
    logger.info("Scheduler started. Press Ctrl+C to stop.")
    await scheduler.run_forever()


def _build_executor(settings: Settings, config: AppConfig) -> JobExecutor:
    return JobExecutor(
        settings=settings,
        templates=TemplateStore(config.config_dir),
        memory=JobMemoryStore(settings.memory_dir),
    )


def _canonical_job_name(job_name: str, config: AppConfig) -> str:
    job: JobConfig | None = config.find_job(job_name)
    return job.job_name if job is not None else job_name


def _job_not_found(job_name: str, config: AppConfig) -> list[str]:
    lines = [f"Job not found: {job_name}"]
    if config.jobs:
        lines.append("Available jobs:")
        lines.extend(f"  - {job.job_name}" for job in config.jobs)
    else:
        lines.append("No jobs configured. Run: gjob init")
    return lines


def _outcome_result(outcome: JobOutcome) -> CommandResult:
    if not outcome.success:
        kind = outcome.failure_kind.value if outcome.failure_kind else "unknown"
        return CommandResult(
            lines=[f"Job {outcome.job_name} failed ({kind}): {outcome.error}"],
            success=False,
        )
    mode = outcome.recovery_mode.value if outcome.recovery_mode else "-"
    lines = [
        f"Job {outcome.job_name} completed: mode={mode} "
        f"duration={outcome.duration_seconds:.1f}s exit_code={outcome.exit_code}",
    ]
    lines.extend(f"Warning: {warning}" for warning in outcome.warnings)
    lines.append(outcome.result_text or "")
    return CommandResult(lines=lines)
