"""End-to-end execution of one configured job."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from gemini_cli_job.alerts import Notifier, failure_payload, success_payload
from gemini_cli_job.config import (
    JobConfig,
    JobDefaults,
    ResolvedGeminiOptions,
    Settings,
    resolve_gemini_options,
)
from gemini_cli_job.diagnostics import empty_output_message, non_zero_exit_message, sanitize_preview
from gemini_cli_job.logs import log_job_execution
from gemini_cli_job.memory import METADATA_KEY, JobMemoryStore
from gemini_cli_job.prompts import build_job_prompt
from gemini_cli_job.recovery import RecoveredResponse, RecoveryMode, recover_job_response
from gemini_cli_job.runner import (
    ExecutionRequest,
    ExecutionResult,
    ProcessLaunchError,
    ProcessRunner,
    ProcessTimeoutError,
)
from gemini_cli_job.templates import TemplateStore

_logger = logging.getLogger(__name__)

PREVIEW_CHARS = 200
MISSING_JOB_RESULT_WARNING = (
    "AI response was a JSON object without a usable jobResult; using the raw output"
)


class FailureKind(str, Enum):
    """Why a job run failed."""

    LAUNCH_FAILED = "launch_failed"
    TIMED_OUT = "timed_out"
    NON_ZERO_EXIT = "non_zero_exit"
    EMPTY_OUTPUT = "empty_output"
    JOB_ERROR = "job_error"


@dataclass(slots=True)
class JobOutcome:
    """Result of one job run as seen by the CLI and the scheduler."""

    job_name: str
    success: bool
    result_text: str | None = None
    preview: str = ""
    recovery_mode: RecoveryMode | None = None
    failure_kind: FailureKind | None = None
    error: str | None = None
    memory_updates: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    exit_code: int | None = None
    duration_seconds: float = 0.0


class _JobFailure(Exception):
    def __init__(
        self,
        kind: FailureKind,
        message: str,
        *,
        result: ExecutionResult | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.result = result


def make_preview(text: str, limit: int = PREVIEW_CHARS) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit]}..."


class JobExecutor:
    """Runs jobs: prompt assembly, tool invocation, recovery, memory, alerts.

    Job-level failures never escape `execute_job`; they come back as a failed
    `JobOutcome` after a failure delta has been written to the job's memory.
    Runs of the same job name inside one process are serialized.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        settings: Settings,
        templates: TemplateStore,
        runner: ProcessRunner | None = None,
        memory: JobMemoryStore | None = None,
        notifier: Notifier | None = None,
        logger: logging.Logger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings
        self._templates = templates
        self._logger = logger or _logger
        self._runner = runner or ProcessRunner(logger=self._logger)
        self._memory = memory or JobMemoryStore(settings.memory_dir)
        self._notifier = notifier or Notifier(settings, logger=self._logger)
        self._clock = clock or (lambda: datetime.now(tz=UTC))
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def runner(self) -> ProcessRunner:
        return self._runner

    async def execute_job(self, job: JobConfig, defaults: JobDefaults) -> JobOutcome:
        lock = self._locks.setdefault(job.job_name.lower(), asyncio.Lock())
        if lock.locked():
            self._logger.info("Job %s is already running, waiting for it to finish", job.job_name)
        async with lock:
            started = time.monotonic()
            log_job_execution(self._logger, "Starting job: %s", job.job_name)
            try:
                return await self._run(job, defaults, started)
            except _JobFailure as failure:
                return await self._handle_failure(job, failure, started)
            except Exception as error:  # noqa: BLE001
                self._logger.exception("Unexpected error running job %s", job.job_name)
                return await self._handle_failure(
                    job,
                    _JobFailure(FailureKind.JOB_ERROR, f"{type(error).__name__}: {error}"),
                    started,
                )

    async def _run(self, job: JobConfig, defaults: JobDefaults, started: float) -> JobOutcome:
        options = resolve_gemini_options(job, defaults, self._settings)
        try:
            prompt = self._build_prompt(job)
        except (OSError, ValueError) as error:
            raise _JobFailure(FailureKind.JOB_ERROR, str(error)) from error

        self._logger.debug(
            "Environment for %s: project=%s, model=%s",
            job.job_name,
            options.google_cloud_project or "<unset>",
            options.model,
        )
        result = await self._invoke(prompt, options)

        if result.exit_code != 0:
            raise _JobFailure(
                FailureKind.NON_ZERO_EXIT,
                non_zero_exit_message(
                    executable=options.executable,
                    exit_code=result.exit_code,
                    stdout=result.stdout,
                    stderr=result.stderr,
                ),
                result=result,
            )
        if not result.stdout:
            raise _JobFailure(
                FailureKind.EMPTY_OUTPUT,
                empty_output_message(project=options.google_cloud_project, stderr=result.stderr),
                result=result,
            )

        recovered = recover_job_response(result.stdout)
        warnings: list[str] = []
        result_text = recovered.job_result
        if not recovered.has_job_result:
            self._logger.warning("%s (job %s)", MISSING_JOB_RESULT_WARNING, job.job_name)
            warnings.append(MISSING_JOB_RESULT_WARNING)
            result_text = result.stdout
        elif recovered.recovery_mode is RecoveryMode.PLAIN_TEXT_FALLBACK:
            self._logger.info(
                "No JSON object found in output of %s, using plain text",
                job.job_name,
            )

        delta = self._success_delta(recovered, result.stdout)
        try:
            self._memory.update(job.job_name, delta)
        except (OSError, TypeError, ValueError) as error:
            message = f"Failed to persist memory for job {job.job_name}: {error}"
            self._logger.warning(message)
            warnings.append(message)

        preview = make_preview(result_text or "")
        duration = time.monotonic() - started
        log_job_execution(
            self._logger,
            "Job %s completed successfully in %.1fs (%s)",
            job.job_name,
            duration,
            recovered.recovery_mode.value,
        )
        self._logger.info("Generated output preview:\n%s", preview)
        await self._notifier.notify(
            job.notification,
            success_payload(
                job.job_name,
                job.notification,
                preview=preview,
                result_text=result_text or "",
                details={
                    "jobName": job.job_name,
                    "recoveryMode": recovered.recovery_mode.value,
                    "durationSeconds": f"{duration:.1f}",
                },
            ),
        )
        return JobOutcome(
            job_name=job.job_name,
            success=True,
            result_text=result_text,
            preview=preview,
            recovery_mode=recovered.recovery_mode,
            memory_updates=delta,
            warnings=warnings,
            exit_code=result.exit_code,
            duration_seconds=duration,
        )

    def _build_prompt(self, job: JobConfig) -> str:
        self._logger.info(
            "Running job %s using templates: [%s]",
            job.job_name,
            ", ".join(job.prompt.context_files),
        )
        prior_memory = self._memory.load(job.job_name)
        template_content = self._templates.load(job.prompt.context_files)
        memory_section = self._memory.render_for_prompt(job.job_name, prior_memory)
        prompt = build_job_prompt(template_content, memory_section, job.prompt.custom_prompt)
        self._logger.debug("Generated prompt for %s (%d chars)", job.job_name, len(prompt))
        return prompt

    async def _invoke(self, prompt: str, options: ResolvedGeminiOptions) -> ExecutionResult:
        environment = {"GEMINI_MODEL": options.model}
        if options.google_cloud_project:
            environment["GOOGLE_CLOUD_PROJECT"] = options.google_cloud_project
        request = ExecutionRequest(
            prompt_text=prompt,
            executable=options.executable,
            arguments=(*options.extra_args, "-m", options.model),
            environment_overrides=environment,
            timeout_ms=options.timeout_ms,
            working_directory=options.working_directory,
        )
        try:
            return await self._runner.run(request)
        except ProcessLaunchError as error:
            raise _JobFailure(FailureKind.LAUNCH_FAILED, str(error), result=error.result) from error
        except ProcessTimeoutError as error:
            raise _JobFailure(FailureKind.TIMED_OUT, str(error), result=error.result) from error

    def _success_delta(self, recovered: RecoveredResponse, stdout: str) -> dict[str, Any]:
        delta = {
            key: value
            for key, value in recovered.job_memory_updates.items()
            if key != METADATA_KEY
        }
        delta.update(
            {
                "lastExecutionTime": self._clock().isoformat(),
                "lastExecutionSuccess": True,
                "lastOutputLength": len(stdout),
                "lastResponseType": recovered.recovery_mode.value,
            },
        )
        return delta

    async def _handle_failure(
        self,
        job: JobConfig,
        failure: _JobFailure,
        started: float,
    ) -> JobOutcome:
        self._logger.error("Error running job %s: %s", job.job_name, failure.message)
        delta = {
            "lastExecutionTime": self._clock().isoformat(),
            "lastExecutionSuccess": False,
            "lastError": sanitize_preview(failure.message),
            "lastFailureKind": failure.kind.value,
        }
        warnings: list[str] = []
        try:
            self._memory.update(job.job_name, delta)
        except (OSError, TypeError, ValueError) as error:
            message = f"Failed to persist failure memory for job {job.job_name}: {error}"
            self._logger.error(message)
            warnings.append(message)

        await self._notifier.notify(
            job.notification,
            failure_payload(
                job.job_name,
                job.notification,
                error=failure.message,
                details={"jobName": job.job_name, "failureKind": failure.kind.value},
            ),
        )
        return JobOutcome(
            job_name=job.job_name,
            success=False,
            failure_kind=failure.kind,
            error=failure.message,
            memory_updates=delta,
            warnings=warnings,
            exit_code=failure.result.exit_code if failure.result else None,
            duration_seconds=time.monotonic() - started,
        )
