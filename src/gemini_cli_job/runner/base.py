"""Request/result types and settlement bookkeeping for the process runner."""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

DEFAULT_TIMEOUT_MS = 300_000


class ExecutionOutcome(str, Enum):
    """Terminal outcomes of one subprocess invocation."""

    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    LAUNCH_FAILED = "launch_failed"


class RunState(str, Enum):
    """Lifecycle states of one invocation."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    LAUNCH_FAILED = "launch_failed"


@dataclass(slots=True)
class ExecutionRequest:
    """Inputs required to run the external tool once."""

    prompt_text: str
    executable: str
    arguments: tuple[str, ...] = ()
    environment_overrides: dict[str, str] = field(default_factory=dict)
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    working_directory: Path | None = None

    def __post_init__(self) -> None:
        if self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be > 0, got {self.timeout_ms}")
        if not self.executable.strip():
            raise ValueError("executable must not be empty")

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000

    def build_environment(self, base: Mapping[str, str] | None = None) -> dict[str, str]:
        """Inherited environment with overrides layered on top."""

        env = dict(os.environ if base is None else base)
        env.update(self.environment_overrides)
        return env


@dataclass(slots=True)
class ExecutionResult:
    """Execution outcome, produced exactly once per request."""

    outcome: ExecutionOutcome
    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.outcome is ExecutionOutcome.COMPLETED and self.exit_code == 0


class ProcessRunError(RuntimeError):
    """Terminal runner failure carrying the settled result."""

    def __init__(self, message: str, *, result: ExecutionResult) -> None:
        super().__init__(message)
        self.result = result


class ProcessLaunchError(ProcessRunError):
    """The external tool could not be started."""


class ProcessTimeoutError(ProcessRunError):
    """The external tool exceeded its time budget and was terminated."""


class Settlement:
    """Single-assignment holder for the terminal result of one invocation."""

    def __init__(self, on_settled: Callable[[ExecutionResult], None] | None = None) -> None:
        self._result: ExecutionResult | None = None
        self._on_settled = on_settled
        self.state = RunState.NOT_STARTED

    @property
    def settled(self) -> bool:
        return self._result is not None

    @property
    def result(self) -> ExecutionResult:
        if self._result is None:
            raise RuntimeError("Invocation has not settled yet.")
        return self._result

    def mark_running(self) -> None:
        if self.state is RunState.NOT_STARTED:
            self.state = RunState.RUNNING

    def settle(self, result: ExecutionResult) -> bool:
        """Record the terminal result; return False if already settled."""

        if self._result is not None:
            return False
        self._result = result
        self.state = RunState(result.outcome.value)
        if self._on_settled is not None:
            self._on_settled(result)
        return True
