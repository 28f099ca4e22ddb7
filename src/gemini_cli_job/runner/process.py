"""Asyncio subprocess runner for the external AI command-line tool."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import shutil
import sys
import time
from collections.abc import Callable

from gemini_cli_job.runner.base import (
    ExecutionOutcome,
    ExecutionRequest,
    ExecutionResult,
    ProcessLaunchError,
    ProcessTimeoutError,
    Settlement,
)
from gemini_cli_job.runner.termination import (
    FORCEFUL_SIGNAL,
    GRACEFUL_SIGNAL,
    ProcessTreeTerminator,
    select_terminator,
)

_logger = logging.getLogger(__name__)

KILL_GRACE_SECONDS = 5.0
_READ_CHUNK_BYTES = 64 * 1024
_CHUNK_PREVIEW_CHARS = 200


class ProcessRunner:
    """Run one external tool invocation per request and settle it exactly once.

    The prompt goes to stdin, stdout/stderr are accumulated until the child
    exits. On timeout the process tree gets SIGTERM and the call settles right
    away; a background task escalates to SIGKILL after `kill_grace_seconds`.
    """

    def __init__(
        self,
        *,
        terminator: ProcessTreeTerminator | None = None,
        kill_grace_seconds: float = KILL_GRACE_SECONDS,
        logger: logging.Logger | None = None,
        on_settled: Callable[[ExecutionResult], None] | None = None,
    ) -> None:
        self._terminator = terminator or select_terminator()
        self._kill_grace_seconds = kill_grace_seconds
        self._logger = logger or _logger
        self._on_settled = on_settled
        self._escalations: set[asyncio.Task[None]] = set()

    @property
    def terminator(self) -> ProcessTreeTerminator:
        return self._terminator

    @property
    def pending_escalations(self) -> int:
        return len(self._escalations)

    async def run(self, request: ExecutionRequest) -> ExecutionResult:
        """Execute the request; raise on launch failure or timeout."""

        settlement = Settlement(on_settled=self._on_settled)
        env = request.build_environment()
        executable = _resolve_executable(request.executable, env.get("PATH"))
        self._logger.debug(
            "Command: %s %s (prompt via stdin, %d chars, timeout %dms)",
            executable,
            " ".join(request.arguments),
            len(request.prompt_text),
            request.timeout_ms,
        )

        started = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                executable,
                *request.arguments,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(request.working_directory) if request.working_directory else None,
                env=env,
                **self._terminator.spawn_options(),
            )
        except OSError as error:
            result = ExecutionResult(
                outcome=ExecutionOutcome.LAUNCH_FAILED,
                stderr=str(error),
                duration_seconds=time.monotonic() - started,
            )
            settlement.settle(result)
            message = describe_launch_failure(request.executable, error)
            self._logger.error(message)
            raise ProcessLaunchError(message, result=result) from error

        settlement.mark_running()
        self._logger.debug("Process %s started, waiting for response...", process.pid)

        stdout_chunks: list[bytes] = []
        stderr_chunks: list[bytes] = []
        io_tasks = [
            asyncio.create_task(self._feed_stdin(process, request.prompt_text)),
            asyncio.create_task(self._drain(process.stdout, stdout_chunks, "STDOUT")),
            asyncio.create_task(self._drain(process.stderr, stderr_chunks, "STDERR")),
        ]
        try:
            await asyncio.wait_for(
                asyncio.gather(*io_tasks, process.wait()),
                timeout=request.timeout_seconds,
            )
        except TimeoutError:
            self._logger.debug(
                "Timeout after %dms, sending SIGTERM to %s via %s",
                request.timeout_ms,
                process.pid,
                self._terminator.name,
            )
            self._terminator.terminate_tree(process, GRACEFUL_SIGNAL)
            result = ExecutionResult(
                outcome=ExecutionOutcome.TIMED_OUT,
                stdout=_decode(stdout_chunks),
                stderr=_decode(stderr_chunks),
                exit_code=process.returncode,
                duration_seconds=time.monotonic() - started,
            )
            settlement.settle(result)
            self._schedule_escalation(process)
            raise ProcessTimeoutError(
                f"{request.executable} execution timed out after {request.timeout_ms}ms",
                result=result,
            ) from None
        except BaseException:
            self._terminator.terminate_tree(process, FORCEFUL_SIGNAL)
            raise
        finally:
            for task in io_tasks:
                if not task.done():
                    task.cancel()

        # Reach descendants the tool may have left behind.
        if self._terminator.terminate_tree(process, GRACEFUL_SIGNAL):
            self._logger.debug("Signalled leftover processes of %s", process.pid)

        result = ExecutionResult(
            outcome=ExecutionOutcome.COMPLETED,
            stdout=_decode(stdout_chunks),
            stderr=_decode(stderr_chunks),
            exit_code=process.returncode,
            duration_seconds=time.monotonic() - started,
        )
        settlement.settle(result)
        self._logger.debug(
            "Process %s exited with code %s (stdout %d chars, stderr %d chars)",
            process.pid,
            result.exit_code,
            len(result.stdout),
            len(result.stderr),
        )
        return result

    async def wait_for_escalations(self) -> None:
        """Wait until every pending SIGKILL escalation has finished."""

        if self._escalations:
            await asyncio.gather(*self._escalations, return_exceptions=True)

    def _schedule_escalation(self, process: asyncio.subprocess.Process) -> None:
        task = asyncio.create_task(self._escalate(process))
        self._escalations.add(task)
        task.add_done_callback(self._escalations.discard)

    async def _escalate(self, process: asyncio.subprocess.Process) -> None:
        try:
            await asyncio.wait_for(process.wait(), timeout=self._kill_grace_seconds)
        except TimeoutError:
            self._logger.debug("Process %s still running, sending SIGKILL", process.pid)
            self._terminator.terminate_tree(process, FORCEFUL_SIGNAL)
            return
        except asyncio.CancelledError:
            self._terminator.terminate_tree(process, FORCEFUL_SIGNAL)
            raise
        self._terminator.terminate_tree(process, FORCEFUL_SIGNAL)

    async def _feed_stdin(self, process: asyncio.subprocess.Process, prompt_text: str) -> None:
        stdin = process.stdin
        if stdin is None:
            return
        try:
            stdin.write(prompt_text.encode("utf-8"))
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            self._logger.debug("Process %s closed stdin before reading the prompt", process.pid)
        finally:
            stdin.close()
        with contextlib.suppress(BrokenPipeError, ConnectionResetError):
            await stdin.wait_closed()

    async def _drain(
        self,
        stream: asyncio.StreamReader | None,
        chunks: list[bytes],
        label: str,
    ) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.read(_READ_CHUNK_BYTES)
            if not chunk:
                return
            chunks.append(chunk)
            if self._logger.isEnabledFor(logging.DEBUG):
                text = chunk.decode("utf-8", errors="replace")
                suffix = "..." if len(text) > _CHUNK_PREVIEW_CHARS else ""
                self._logger.debug("[%s] %s%s", label, text[:_CHUNK_PREVIEW_CHARS], suffix)


def describe_launch_failure(
    executable: str,
    error: OSError,
    *,
    platform: str | None = None,
) -> str:
    """Failure message with install/PATH guidance for missing executables."""

    message = f"Failed to execute {executable}: {error}"
    if isinstance(error, PermissionError):
        return f"{message}\nCheck that {executable} is executable by the current user."
    if not isinstance(error, FileNotFoundError):
        return message

    current_platform = platform or sys.platform
    install = (
        "npm install -g @google/gemini-cli"
        if executable == "gemini"
        else f"install {executable}"
    )
    if current_platform.startswith("win"):
        hint = (
            f"'{executable}' was not found. Run `{install}` and make sure "
            "%APPDATA%\\npm is listed in PATH, then open a new terminal."
        )
    elif current_platform == "darwin":
        hint = (
            f"'{executable}' was not found. Run `{install}` (or `brew install gemini-cli`) "
            "and make sure the npm global bin directory is in PATH."
        )
    else:
        hint = (
            f"'{executable}' was not found. Run `{install}` and make sure "
            "`$(npm config get prefix)/bin` is in PATH for the user running jobs."
        )
    return f"{message}\n{hint}"


def _resolve_executable(executable: str, search_path: str | None) -> str:
    return shutil.which(executable, path=search_path) or executable


def _decode(chunks: list[bytes]) -> str:
    return b"".join(chunks).decode("utf-8", errors="replace").strip()
