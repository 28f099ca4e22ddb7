"""Cron-driven scheduling of enabled jobs on the asyncio event loop."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from croniter import croniter

from gemini_cli_job.config import AppConfig, ConfigError, JobConfig
from gemini_cli_job.executor import JobExecutor, JobOutcome

_logger = logging.getLogger(__name__)

_SECONDS_FIELD_COUNT = 6


@dataclass(slots=True)
class ScheduleEntry:
    """One cron expression bound to one job."""

    job: JobConfig
    expression: str

    @property
    def has_seconds(self) -> bool:
        return len(self.expression.split()) == _SECONDS_FIELD_COUNT


def next_fire_time(expression: str, after: datetime) -> datetime:
    """Next fire time strictly after `after` (5 fields, or 6 with leading seconds)."""

    with_seconds = len(expression.split()) == _SECONDS_FIELD_COUNT
    try:
        iterator = croniter(expression, after, second_at_beginning=with_seconds)
    except (ValueError, KeyError) as error:
        raise ConfigError(f"Invalid cron expression {expression!r}: {error}") from error
    return iterator.get_next(datetime)


def build_schedule(config: AppConfig, *, now: datetime | None = None) -> list[ScheduleEntry]:
    """Validate and collect the schedules of every enabled job."""

    reference = now or datetime.now().astimezone()
    entries: list[ScheduleEntry] = []
    for job in config.enabled_jobs():
        for expression in job.schedules:
            next_fire_time(expression, reference)
            entries.append(ScheduleEntry(job=job, expression=expression))
    return entries


class JobScheduler:
    """Fires `execute_job` for enabled jobs on their cron schedules.

    Each schedule entry sleeps until its next fire time. A job has at most one
    in-flight run; ticks that arrive while it is still running are skipped.
    """

    def __init__(
        self,
        executor: JobExecutor,
        config: AppConfig,
        *,
        logger: logging.Logger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._executor = executor
        self._config = config
        self._logger = logger or _logger
        self._clock = clock or (lambda: datetime.now().astimezone())
        self._entries = build_schedule(config, now=self._clock())
        self._in_flight: dict[str, asyncio.Task[JobOutcome]] = {}
        self._stop = asyncio.Event()

    @property
    def entries(self) -> list[ScheduleEntry]:
        return list(self._entries)

    def stop(self) -> None:
        self._stop.set()

    async def run_forever(self) -> None:
        """Run until `stop()` is called, then let in-flight jobs finish."""

        if not self._entries:
            self._logger.info("No enabled jobs with schedules found")
            return
        for entry in self._entries:
            self._logger.info("Scheduled %s: %s", entry.job.job_name, entry.expression)

        tickers = [asyncio.create_task(self._tick(entry)) for entry in self._entries]
        try:
            await self._stop.wait()
        finally:
            for ticker in tickers:
                ticker.cancel()
            await asyncio.gather(*tickers, return_exceptions=True)
            if self._in_flight:
                self._logger.info("Waiting for %d running job(s) to finish", len(self._in_flight))
                await asyncio.gather(*self._in_flight.values(), return_exceptions=True)
            await self._executor.runner.wait_for_escalations()
        self._logger.info("Scheduler stopped")

    def fire(self, job: JobConfig) -> asyncio.Task[JobOutcome] | None:
        """Start a run of `job` unless one is already in flight."""

        key = job.job_name.lower()
        running = self._in_flight.get(key)
        if running is not None and not running.done():
            self._logger.warning(
                "Skipping scheduled run of %s: previous run still in progress",
                job.job_name,
            )
            return None
        task = asyncio.create_task(self._executor.execute_job(job, self._config.defaults))
        self._in_flight[key] = task
        task.add_done_callback(lambda _: self._forget(key, task))
        return task

    def install_signal_handlers(self) -> None:
        """Stop on SIGINT/SIGTERM."""

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._request_stop, sig)
            except (NotImplementedError, RuntimeError):
                # Signal handlers can only be installed in main thread.
                with contextlib.suppress(ValueError):
                    signal.signal(
                        sig,
                        lambda signum, _frame: loop.call_soon_threadsafe(
                            self._request_stop,
                            signum,
                        ),
                    )

    def _request_stop(self, signum: int) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        self._logger.info("Received %s, shutting down gracefully...", name)
        self._stop.set()

    async def _tick(self, entry: ScheduleEntry) -> None:
        last_fire: datetime | None = None
        while not self._stop.is_set():
            now = self._clock()
            # The sleep may wake marginally early; never fire the same slot twice.
            fire_at = next_fire_time(entry.expression, max(now, last_fire) if last_fire else now)
            last_fire = fire_at
            delay = max(0.0, (fire_at - now).total_seconds())
            self._logger.debug("Next run of %s at %s", entry.job.job_name, fire_at.isoformat())
            await asyncio.sleep(delay)
            if self._stop.is_set():
                return
            self.fire(entry.job)

    def _forget(self, key: str, task: asyncio.Task[JobOutcome]) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._logger.error("Scheduled run of %s crashed: %s", key, error)
            return
        outcome = task.result()
        if not outcome.success:
            self._logger.error("Scheduled run of %s failed: %s", outcome.job_name, outcome.error)
