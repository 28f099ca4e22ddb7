"""Best-effort recovery of the job response object from AI tool stdout."""

from __future__ import annotations

import json
import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

JOB_RESULT_KEY = "jobResult"
JOB_MEMORY_KEY = "jobMemory"

_FLAT_OBJECT_WITH_RESULT = re.compile(r'\{[^{}]*"jobResult"[^{}]*\}')
_ONE_LEVEL_OBJECT = re.compile(r"\{(?:[^{}]|\{[^{}]*\})*\}")
_GREEDY_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)

_DECODER = json.JSONDecoder()


class RecoveryMode(str, Enum):
    """Strategy that produced a recovered response."""

    WHOLE_TEXT_JSON = "whole_text_json"
    EMBEDDED_JSON = "embedded_json"
    LINE_JSON = "line_json"
    PLAIN_TEXT_FALLBACK = "plain_text_fallback"


@dataclass(slots=True)
class RecoveredResponse:
    """Structured view of one AI tool response.

    `job_result` is always a non-empty string for the embedded and line modes
    and the raw text for the plain-text fallback. Whole-text JSON is accepted
    without a `jobResult` key, so `job_result` may be `None` there.
    """

    job_result: str | None
    recovery_mode: RecoveryMode
    job_memory_updates: dict[str, Any] = field(default_factory=dict)
    payload: dict[str, Any] | None = None

    @property
    def has_job_result(self) -> bool:
        return isinstance(self.job_result, str) and bool(self.job_result)


def recover_job_response(raw_text: str) -> RecoveredResponse:
    """Recover a `RecoveredResponse` from arbitrary tool output. Never raises."""

    text = raw_text.strip()

    whole = _try_load_dict(text)
    if whole is not None:
        return _from_payload(whole, RecoveryMode.WHOLE_TEXT_JSON)

    for candidate in _embedded_candidates(text):
        payload = _try_load_dict(candidate)
        if payload is not None and _has_valid_result(payload):
            return _from_payload(payload, RecoveryMode.EMBEDDED_JSON)

    for line in text.splitlines():
        stripped = line.strip()
        if not stripped.startswith("{") or JOB_RESULT_KEY not in stripped:
            continue
        payload = _try_load_dict(stripped)
        if payload is not None and _has_valid_result(payload):
            return _from_payload(payload, RecoveryMode.LINE_JSON)

    # Deeply nested objects spread over several lines, next to stray braces.
    for payload in _raw_decode_objects(text):
        if _has_valid_result(payload):
            return _from_payload(payload, RecoveryMode.EMBEDDED_JSON)

    return RecoveredResponse(
        job_result=raw_text,
        recovery_mode=RecoveryMode.PLAIN_TEXT_FALLBACK,
    )


def _embedded_candidates(text: str) -> Iterator[str]:
    for match in _FLAT_OBJECT_WITH_RESULT.finditer(text):
        yield match.group(0)
    for match in _ONE_LEVEL_OBJECT.finditer(text):
        yield match.group(0)
    greedy = _GREEDY_OBJECT.search(text)
    if greedy is not None:
        yield greedy.group(0)
    for match in _FENCED_JSON.finditer(text):
        yield match.group(1)


def _raw_decode_objects(text: str) -> Iterator[dict[str, Any]]:
    """Yield every JSON object that starts at some `{` in the text."""

    start = text.find("{")
    while start != -1:
        try:
            parsed, _end = _DECODER.raw_decode(text, start)
        except (json.JSONDecodeError, RecursionError):
            parsed = None
        if isinstance(parsed, dict):
            yield parsed
        start = text.find("{", start + 1)


def _try_load_dict(raw: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, RecursionError):
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def _has_valid_result(payload: dict[str, Any]) -> bool:
    value = payload.get(JOB_RESULT_KEY)
    return isinstance(value, str) and bool(value)


def _from_payload(payload: dict[str, Any], mode: RecoveryMode) -> RecoveredResponse:
    result = payload.get(JOB_RESULT_KEY)
    memory = payload.get(JOB_MEMORY_KEY)
    return RecoveredResponse(
        job_result=result if isinstance(result, str) else None,
        recovery_mode=mode,
        job_memory_updates=dict(memory) if isinstance(memory, dict) else {},
        payload=payload,
    )
