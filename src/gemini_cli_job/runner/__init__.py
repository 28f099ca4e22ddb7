"""Subprocess execution of the external AI command-line tool."""

from gemini_cli_job.runner.base import (
    DEFAULT_TIMEOUT_MS,
    ExecutionOutcome,
    ExecutionRequest,
    ExecutionResult,
    ProcessLaunchError,
    ProcessRunError,
    ProcessTimeoutError,
    RunState,
    Settlement,
)
from gemini_cli_job.runner.process import KILL_GRACE_SECONDS, ProcessRunner, describe_launch_failure
from gemini_cli_job.runner.termination import (
    DirectChildTerminator,
    ProcessGroupTerminator,
    ProcessTreeTerminator,
    select_terminator,
)

__all__ = [
    "DEFAULT_TIMEOUT_MS",
    "KILL_GRACE_SECONDS",
    "DirectChildTerminator",
    "ExecutionOutcome",
    "ExecutionRequest",
    "ExecutionResult",
    "ProcessGroupTerminator",
    "ProcessLaunchError",
    "ProcessRunError",
    "ProcessRunner",
    "ProcessTimeoutError",
    "ProcessTreeTerminator",
    "RunState",
    "Settlement",
    "describe_launch_failure",
    "select_terminator",
]
