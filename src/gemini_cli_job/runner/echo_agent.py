"""Local stand-in for the AI tool, used by subprocess integration tests."""

from __future__ import annotations

import argparse
import json
import os
import signal
import subprocess
import sys
import time
from pathlib import Path

MODES = (
    "json",
    "embedded",
    "prose",
    "echo",
    "env",
    "empty",
    "fail",
    "hang",
    "spawn",
    "ignore-term",
    "detach",
)


def main(argv: list[str] | None = None) -> int:
    """Read the prompt from stdin and answer according to `--mode`."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--mode", choices=MODES, default="json")
    parser.add_argument("-m", "--model", default="")
    parser.add_argument("--result", default="Done")
    parser.add_argument("--exit-code", type=int, default=1)
    parser.add_argument("--sleep-seconds", type=float, default=60.0)
    parser.add_argument("--pid-file", default=None)
    args = parser.parse_args(argv)

    prompt = sys.stdin.read()

    if args.mode == "json":
        _emit({"jobResult": args.result, "jobMemory": {"v": "1.2.0", "model": args.model}})
    elif args.mode == "embedded":
        print("Here is your report:")
        _emit({"jobResult": args.result})
        print("End of output.")
    elif args.mode == "prose":
        print(f"{args.result} without any structure at all.")
    elif args.mode == "echo":
        _emit({"jobResult": prompt})
    elif args.mode == "env":
        _emit(
            {
                "jobResult": "env",
                "jobMemory": {
                    "model": os.getenv("GEMINI_MODEL", ""),
                    "project": os.getenv("GOOGLE_CLOUD_PROJECT", ""),
                    "cwd": str(Path.cwd()),
                },
            },
        )
    elif args.mode == "empty":
        print("warming up", file=sys.stderr)
    elif args.mode == "fail":
        print("Error: permission denied for project", file=sys.stderr)
        return args.exit_code
    elif args.mode == "spawn":
        child = subprocess.Popen(  # noqa: S603
            [sys.executable, "-c", f"import time; time.sleep({args.sleep_seconds})"],
        )
        if args.pid_file:
            Path(args.pid_file).write_text(str(child.pid), "utf-8")
        time.sleep(args.sleep_seconds)
    elif args.mode == "ignore-term":
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
        if args.pid_file:
            Path(args.pid_file).write_text(str(os.getpid()), "utf-8")
        time.sleep(args.sleep_seconds)
    elif args.mode == "detach":
        child = subprocess.Popen(  # noqa: S603
            [sys.executable, "-c", f"import time; time.sleep({args.sleep_seconds})"],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
        if args.pid_file:
            Path(args.pid_file).write_text(str(child.pid), "utf-8")
        _emit({"jobResult": args.result})
    else:
        time.sleep(args.sleep_seconds)
    return 0


def _emit(payload: dict[str, object]) -> None:
    print(json.dumps(payload), flush=True)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
