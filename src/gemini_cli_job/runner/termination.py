"""Platform strategies for signalling a spawned process tree."""

from __future__ import annotations

import asyncio
import os
import signal
from typing import Any, Protocol

GRACEFUL_SIGNAL = signal.SIGTERM
FORCEFUL_SIGNAL = getattr(signal, "SIGKILL", signal.SIGTERM)


class ProcessTreeTerminator(Protocol):
    """Spawns children so that their whole tree can be signalled later."""

    name: str

    def spawn_options(self) -> dict[str, Any]:
        """Extra keyword arguments for `asyncio.create_subprocess_exec`."""

    def terminate_tree(self, process: asyncio.subprocess.Process, sig: int) -> bool:
        """Send `sig` to the tree; return False when nothing was left to signal."""


class ProcessGroupTerminator:
    """POSIX: child leads a new session, the whole group is signalled."""

    name = "process_group"

    def spawn_options(self) -> dict[str, Any]:
        return {"start_new_session": True}

    def terminate_tree(self, process: asyncio.subprocess.Process, sig: int) -> bool:
        # The child is its own session leader, so its pid is the group id.
        try:
            os.killpg(process.pid, sig)
        except ProcessLookupError:
            return False
        except PermissionError:
            return _signal_child(process, sig)
        return True


class DirectChildTerminator:
    """Platforms without process groups: only the direct child is reached."""

    name = "direct_child"

    def spawn_options(self) -> dict[str, Any]:
        return {}

    def terminate_tree(self, process: asyncio.subprocess.Process, sig: int) -> bool:
        return _signal_child(process, sig)


def select_terminator(os_name: str | None = None) -> ProcessTreeTerminator:
    """Pick the termination strategy for the current platform."""

    current_os_name = os_name or os.name
    if current_os_name == "nt" or not hasattr(os, "killpg"):
        return DirectChildTerminator()
    return ProcessGroupTerminator()


def _signal_child(process: asyncio.subprocess.Process, sig: int) -> bool:
    if process.returncode is not None:
        return False
    try:
        if sig == FORCEFUL_SIGNAL and sig != GRACEFUL_SIGNAL:
            process.kill()
        elif sig == GRACEFUL_SIGNAL:
            process.terminate()
        else:
            process.send_signal(sig)
    except ProcessLookupError:
        return False
    return True
