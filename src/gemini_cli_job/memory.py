"""Per-job key-value memory persisted as JSON between runs."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

METADATA_KEY = "_metadata"
MEMORY_FILE_SUFFIX = ".memory.json"
_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")

_FIRST_RUN_EXAMPLE = {
    "jobResult": "Your main response here",
    "jobMemory": {
        "lastUpdatedTime": "2025-08-27T10:30:00Z",
        "lastProcessedVersion": "v1.2.3",
        "lastCheckpoint": "feature-x-completed",
        "noteForNextRun": "Remember to check the new API endpoints",
    },
}


@dataclass(slots=True)
class MemoryEntry:
    """Summary of one stored memory file."""

    job_name: str
    path: Path
    keys: int
    update_count: int
    last_updated: str | None


def sanitize_job_name(job_name: str) -> str:
    return _UNSAFE_NAME_CHARS.sub("_", job_name)


class JobMemoryStore:
    """Reads and writes `<memory_dir>/<job>.memory.json` files."""

    def __init__(self, memory_dir: Path) -> None:
        self.memory_dir = memory_dir

    def path_for(self, job_name: str) -> Path:
        return self.memory_dir / f"{sanitize_job_name(job_name)}{MEMORY_FILE_SUFFIX}"

    def load(self, job_name: str) -> dict[str, Any]:
        """Return stored memory; missing or corrupt files read as empty."""

        path = self.path_for(job_name)
        if not path.exists():
            logger.debug("No existing memory found for job: %s", job_name)
            return {}
        try:
            payload = json.loads(path.read_text("utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as error:
            logger.warning("Ignoring unreadable memory for job %s (%s): %s", job_name, path, error)
            return {}
        if not isinstance(payload, dict):
            logger.warning("Ignoring non-object memory for job %s (%s)", job_name, path)
            return {}
        logger.debug("Loaded memory for job %s: %d entries", job_name, len(payload))
        return payload

    def save(self, job_name: str, memory: dict[str, Any]) -> dict[str, Any]:
        """Write memory with refreshed `_metadata`; return what was written."""

        previous = memory.get(METADATA_KEY)
        previous_count = previous.get("updateCount", 0) if isinstance(previous, dict) else 0
        if not isinstance(previous_count, int) or isinstance(previous_count, bool):
            previous_count = 0
        document = {key: value for key, value in memory.items() if key != METADATA_KEY}
        document[METADATA_KEY] = {
            "jobName": job_name,
            "lastUpdated": datetime.now(tz=UTC).isoformat(),
            "updateCount": previous_count + 1,
        }

        path = self.path_for(job_name)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(document, indent=2, ensure_ascii=False), "utf-8")
        os.replace(tmp, path)
        logger.debug("Saved memory for job %s: %d entries", job_name, len(document) - 1)
        return document

    def update(self, job_name: str, updates: dict[str, Any]) -> dict[str, Any]:
        """Load, shallow-merge `updates` on top, save; return the merged memory."""

        merged = {**self.load(job_name), **updates}
        return self.save(job_name, merged)

    def render_for_prompt(self, job_name: str, memory: dict[str, Any]) -> str:
        """Memory section inserted into the job prompt."""

        path = self.path_for(job_name)
        visible = {key: value for key, value in memory.items() if not key.startswith("_")}
        if not visible:
            example = json.dumps(_FIRST_RUN_EXAMPLE, indent=2)
            return (
                f"## Job Memory ({job_name})\n"
                "No previous memory found. This is the first run or memory was cleared.\n\n"
                f"Memory file: {path}\n\n"
                'You can update memory by including a "jobMemory" object in your JSON '
                "response with key-value pairs. For example:\n"
                f"{example}"
            )

        entries = "\n".join(
            f"- {key}: {json.dumps(value, ensure_ascii=False)}" for key, value in visible.items()
        )
        return (
            f"## Job Memory ({job_name})\n"
            "Current memory state:\n"
            f"{entries}\n\n"
            f"Memory file: {path}\n\n"
            'You can update memory by including a "jobMemory" object in your JSON '
            "response with new key-value pairs.\n"
            "Existing values can be updated or new ones added as needed."
        )

    def clear(self, job_name: str) -> bool:
        path = self.path_for(job_name)
        if not path.exists():
            return False
        path.unlink()
        logger.info("Cleared memory for job: %s", job_name)
        return True

    def list_entries(self) -> list[MemoryEntry]:
        if not self.memory_dir.is_dir():
            return []
        entries: list[MemoryEntry] = []
        for path in sorted(self.memory_dir.glob(f"*{MEMORY_FILE_SUFFIX}")):
            stem = path.name.removesuffix(MEMORY_FILE_SUFFIX)
            try:
                payload = json.loads(path.read_text("utf-8"))
            except (OSError, UnicodeDecodeError, json.JSONDecodeError) as error:
                logger.warning("Skipping unreadable memory file %s: %s", path, error)
                continue
            if not isinstance(payload, dict):
                continue
            metadata = payload.get(METADATA_KEY)
            metadata = metadata if isinstance(metadata, dict) else {}
            entries.append(
                MemoryEntry(
                    job_name=str(metadata.get("jobName") or stem),
                    path=path,
                    keys=sum(1 for key in payload if not key.startswith("_")),
                    update_count=int(metadata.get("updateCount") or 0),
                    last_updated=metadata.get("lastUpdated"),
                ),
            )
        return entries
