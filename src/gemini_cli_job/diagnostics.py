"""Failure hints and redaction for AI tool diagnostics shown in logs and alerts."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

_MAX_PREVIEW_CHARS = 2_000


class FailureCategory(str, Enum):
    """Coarse cause of a failed tool invocation, derived from its output."""

    ACCESS_OR_AUTH = "access_or_auth"
    BILLING_OR_QUOTA = "billing_or_quota"
    MODEL_NOT_AVAILABLE = "model_not_available"
    NETWORK = "network"
    UNKNOWN = "unknown"


_BILLING_OR_QUOTA_PATTERNS: tuple[str, ...] = (
    "quota",
    "resource_exhausted",
    "resource exhausted",
    "billing",
    "too many requests",
    "rate limit",
    "429",
)
_ACCESS_OR_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "unauthenticated",
    "forbidden",
    "permission denied",
    "invalid api key",
    "api key not valid",
    "authentication",
    "application-default",
    "login",
)
_MODEL_NOT_AVAILABLE_PATTERNS: tuple[str, ...] = (
    "model not found",
    "unknown model",
    "unsupported model",
    "invalid model",
    "is not found for api version",
    "not available in your region",
)
_NETWORK_PATTERNS: tuple[str, ...] = (
    "temporarily unavailable",
    "connection reset",
    "connection refused",
    "network error",
    "getaddrinfo",
    "could not resolve host",
    "etimedout",
    "econnreset",
)

_REMEDIATION: dict[FailureCategory, str] = {
    FailureCategory.ACCESS_OR_AUTH: (
        "Authentication issues - check that you are logged in "
        "(`gcloud auth application-default login`) and that your account has "
        "Generative AI permissions."
    ),
    FailureCategory.BILLING_OR_QUOTA: (
        "Quota or billing limits - verify that the Gemini API is enabled for the "
        "project and that its quota is not exhausted."
    ),
    FailureCategory.MODEL_NOT_AVAILABLE: (
        "Model not available - check the configured model name and its availability "
        "for the project region."
    ),
    FailureCategory.NETWORK: "Network problems - the tool could not reach its API.",
    FailureCategory.UNKNOWN: "",
}

_EMPTY_OUTPUT_CHECKLIST = (
    "1. Authentication issues - check if you're logged in with "
    "'gcloud auth application-default login'\n"
    "2. Project access - verify project '{project}' exists and has Gemini API enabled\n"
    "3. API permissions - ensure your account has Generative AI permissions"
)


@dataclass(slots=True)
class FailureHint:
    """Normalized failure classification result."""

    category: FailureCategory
    matched_pattern: str | None
    remediation: str


def classify_failure(*, stdout: str, stderr: str) -> FailureHint:
    """Classify a failed invocation from its captured output."""

    haystack = f"{stderr}\n{stdout}".lower()
    for category, patterns in (
        (FailureCategory.BILLING_OR_QUOTA, _BILLING_OR_QUOTA_PATTERNS),
        (FailureCategory.ACCESS_OR_AUTH, _ACCESS_OR_AUTH_PATTERNS),
        (FailureCategory.MODEL_NOT_AVAILABLE, _MODEL_NOT_AVAILABLE_PATTERNS),
        (FailureCategory.NETWORK, _NETWORK_PATTERNS),
    ):
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return FailureHint(
                category=category,
                matched_pattern=pattern,
                remediation=_REMEDIATION[category],
            )
    return FailureHint(
        category=FailureCategory.UNKNOWN,
        matched_pattern=None,
        remediation="",
    )


def empty_output_message(*, project: str | None, stderr: str) -> str:
    """Explain an exit-0 run that produced no stdout."""

    checklist = _EMPTY_OUTPUT_CHECKLIST.format(project=project or "<unset>")
    return (
        "AI tool returned no output. This may indicate:\n"
        f"{checklist}\n\n"
        f"Stderr: {sanitize_preview(stderr) or '<empty>'}"
    )


def non_zero_exit_message(
    *,
    executable: str,
    exit_code: int | None,
    stdout: str,
    stderr: str,
) -> str:
    """Describe a non-zero exit, with a remediation hint when one matches."""

    message = f"{executable} failed with exit code {exit_code}: {sanitize_preview(stderr)}"
    hint = classify_failure(stdout=stdout, stderr=stderr)
    if hint.remediation:
        message = f"{message}\n{hint.remediation}"
    return message


# Credentials the Gemini CLI, gcloud or Opsgenie may echo into stderr.
_SECRET_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(
            r"-----BEGIN [A-Z ]*PRIVATE KEY-----.*?-----END [A-Z ]*PRIVATE KEY-----",
            re.DOTALL,
        ),
        "[redacted-private-key]",
    ),
    (
        re.compile(r'"(private_key|client_secret|refresh_token|access_token)"\s*:\s*"[^"]*"'),
        r'"\1": "[redacted]"',
    ),
    (
        re.compile(r"\b(GEMINI_API_KEY|GOOGLE_API_KEY|OPSGENIE_API_KEY)\s*[=:]\s*\S+"),
        r"\1=[redacted]",
    ),
    (re.compile(r"(?i)\bGenieKey\s+[0-9a-f-]{8,}"), "GenieKey [redacted]"),
    (re.compile(r"(?i)\bBearer\s+[\w.~+/-]{8,}=*"), "Bearer [redacted]"),
    (re.compile(r"\bAIza[\w-]{20,}"), "[redacted-api-key]"),
    (re.compile(r"\bya29\.[\w.-]+"), "[redacted-oauth-token]"),
    (re.compile(r"\b1//[\w-]{20,}"), "[redacted-refresh-token]"),
    (
        re.compile(r"[\w.+-]+@[\w-]+\.iam\.gserviceaccount\.com"),
        "[redacted-service-account]",
    ),
)


def sanitize_preview(text: str, *, max_chars: int = _MAX_PREVIEW_CHARS) -> str:
    """Mask credentials in tool output before it reaches logs, memory or alerts.

    The result is stripped and clamped to `max_chars`.
    """

    redacted = text.strip()
    for pattern, replacement in _SECRET_PATTERNS:
        redacted = pattern.sub(replacement, redacted)
    return redacted[:max_chars]


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
