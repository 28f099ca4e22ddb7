"""CLI entrypoint for gemini-cli-job."""

from collections.abc import Callable
from pathlib import Path

import rich_click as click
from dotenv import load_dotenv

from gemini_cli_job import __version__
from gemini_cli_job.config import ConfigError
from gemini_cli_job.controllers import (
    CommandResult,
    ConfigCommand,
    InitCommand,
    JobsCliController,
    LogsCleanupCommand,
    MemoryCommand,
    RunJobCommand,
)

click.rich_click.USE_MARKDOWN = True
JOBS_CONTROLLER = JobsCliController()


@click.group()
@click.version_option(version=__version__, prog_name="gjob")
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Path to config.json (default: `~/.gemini-cli-job/config.json`).",
)
@click.pass_context
def gjob(ctx: click.Context, config_path: Path | None) -> None:
    """Run AI command-line jobs from templates, on demand or on a cron schedule."""

    load_dotenv()
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@gjob.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing config and templates.")
@click.pass_context
def init(ctx: click.Context, force: bool) -> None:
    """Write a starter `config.json` and the default templates."""

    _finish(
        lambda: JOBS_CONTROLLER.init(InitCommand(config_path=_config_path(ctx), force=force)),
    )


@gjob.command("list")
@click.pass_context
def list_jobs(ctx: click.Context) -> None:
    """List configured jobs with their status and schedules."""

    _finish(lambda: JOBS_CONTROLLER.list_jobs(ConfigCommand(config_path=_config_path(ctx))))


@gjob.command("templates")
@click.pass_context
def templates(ctx: click.Context) -> None:
    """Show the template directory and available templates."""

    _finish(lambda: JOBS_CONTROLLER.templates(ConfigCommand(config_path=_config_path(ctx))))


@gjob.command("run")
@click.argument("job_name")
@click.pass_context
def run(ctx: click.Context, job_name: str) -> None:
    """Run one job now (case-insensitive name lookup)."""

    _finish(
        lambda: JOBS_CONTROLLER.run_job(
            RunJobCommand(config_path=_config_path(ctx), job_name=job_name),
        ),
        failure_message=f"Run of {job_name} was not successful.",
    )


@gjob.command("start")
@click.pass_context
def start(ctx: click.Context) -> None:
    """Start the scheduler for enabled jobs; stop with Ctrl+C."""

    _finish(lambda: JOBS_CONTROLLER.start(ConfigCommand(config_path=_config_path(ctx))))


@gjob.group()
def memory() -> None:
    """Inspect and reset per-job memory."""


@memory.command("list")
@click.pass_context
def memory_list(ctx: click.Context) -> None:
    """List jobs that have stored memory."""

    _finish(lambda: JOBS_CONTROLLER.memory_list(MemoryCommand(config_path=_config_path(ctx))))


@memory.command("show")
@click.argument("job_name")
@click.pass_context
def memory_show(ctx: click.Context, job_name: str) -> None:
    """Print the stored memory of one job."""

    _finish(
        lambda: JOBS_CONTROLLER.memory_show(
            MemoryCommand(config_path=_config_path(ctx), job_name=job_name),
        ),
    )


@memory.command("clear")
@click.argument("job_name")
@click.pass_context
def memory_clear(ctx: click.Context, job_name: str) -> None:
    """Delete the stored memory of one job."""

    _finish(
        lambda: JOBS_CONTROLLER.memory_clear(
            MemoryCommand(config_path=_config_path(ctx), job_name=job_name),
        ),
    )


@gjob.group()
def logs() -> None:
    """Log file helpers."""


@logs.command("path")
def logs_path() -> None:
    """Print the log directory and today's log file."""

    _finish(JOBS_CONTROLLER.logs_path)


@logs.command("cleanup")
@click.option(
    "--days",
    type=click.IntRange(min=0),
    default=None,
    help="Keep this many days of logs (default: `GEMINI_CLI_JOB_LOG_RETENTION_DAYS`, 30).",
)
def logs_cleanup(days: int | None) -> None:
    """Delete daily log files older than the retention window."""

    _finish(lambda: JOBS_CONTROLLER.logs_cleanup(LogsCleanupCommand(days=days)))


def _config_path(ctx: click.Context) -> Path | None:
    return ctx.find_root().obj.get("config_path")


def _finish(action: Callable[[], CommandResult], *, failure_message: str | None = None) -> None:
    try:
        result = action()
    except ConfigError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException(failure_message or "Command failed.")


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    gjob()
