"""Runtime configuration: environment settings and the jobs config file."""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_EXECUTABLE = "gemini"
DEFAULT_TIMEOUT_MS = 300_000
DEFAULT_LOG_RETENTION_DAYS = 30
CONFIG_FILE_NAME = "config.json"
NOTIFICATION_TYPES = ("console", "opsgenie", "none")
ALERT_PRIORITIES = ("P1", "P2", "P3", "P4", "P5")


class ConfigError(ValueError):
    """Invalid environment or config file content."""


def default_home_dir() -> Path:
    return Path.home() / ".gemini-cli-job"


@dataclass(slots=True)
class Settings:
    """Process-wide settings resolved from the environment."""

    home_dir: Path = field(default_factory=default_home_dir)
    google_cloud_project: str | None = None
    gemini_model: str = DEFAULT_MODEL
    executable: str = DEFAULT_EXECUTABLE
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    opsgenie_api_key: str | None = None
    notification_enabled: bool = True
    debug: bool = False
    log_retention_days: int = DEFAULT_LOG_RETENTION_DAYS

    @property
    def config_path(self) -> Path:
        return self.home_dir / CONFIG_FILE_NAME

    @property
    def templates_dir(self) -> Path:
        return self.home_dir / "templates"

    @property
    def memory_dir(self) -> Path:
        return self.home_dir / "memory"

    @property
    def logs_dir(self) -> Path:
        return self.home_dir / "logs"

    @classmethod
    def from_env(cls, home_dir: Path | None = None) -> Settings:
        """Load settings from environment with defaults for local use."""

        raw_home = os.getenv("GEMINI_CLI_JOB_HOME", "").strip()
        env_home = Path(raw_home).expanduser() if raw_home else default_home_dir()
        resolved_home = home_dir or env_home
        settings = cls(
            home_dir=resolved_home,
            google_cloud_project=_env_optional("GOOGLE_CLOUD_PROJECT"),
            gemini_model=_env_optional("GEMINI_MODEL") or DEFAULT_MODEL,
            executable=_env_optional("GEMINI_CLI_JOB_EXECUTABLE") or DEFAULT_EXECUTABLE,
            timeout_ms=_env_int("GEMINI_CLI_JOB_TIMEOUT_MS", DEFAULT_TIMEOUT_MS),
            opsgenie_api_key=_env_optional("OPSGENIE_API_KEY"),
            notification_enabled=_env_bool("GEMINI_NOTIFICATION_ENABLED", default=True),
            debug=_env_bool("DEBUG", default=False),
            log_retention_days=_env_int(
                "GEMINI_CLI_JOB_LOG_RETENTION_DAYS",
                DEFAULT_LOG_RETENTION_DAYS,
            ),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.timeout_ms <= 0:
            raise ConfigError("GEMINI_CLI_JOB_TIMEOUT_MS must be > 0.")
        if self.log_retention_days < 0:
            raise ConfigError("GEMINI_CLI_JOB_LOG_RETENTION_DAYS must be >= 0.")


@dataclass(slots=True)
class GeminiOptions:
    """Tool options; unset fields fall through to the next layer."""

    model: str | None = None
    timeout_ms: int | None = None
    executable: str | None = None
    extra_args: tuple[str, ...] | None = None
    working_directory: Path | None = None

    @classmethod
    def from_dict(cls, data: Any, *, where: str) -> GeminiOptions:
        if data is None:
            return cls()
        payload = _expect_object(data, where)
        timeout_ms = payload.get("timeoutMs")
        if timeout_ms is not None and (
            isinstance(timeout_ms, bool) or not isinstance(timeout_ms, int) or timeout_ms <= 0
        ):
            raise ConfigError(f"{where}.timeoutMs must be a positive integer, got {timeout_ms!r}")
        extra_args = payload.get("extraArgs")
        working_directory = _optional_str(payload, "workingDirectory", where)
        return cls(
            model=_optional_str(payload, "model", where),
            timeout_ms=timeout_ms,
            executable=_optional_str(payload, "executable", where),
            extra_args=(
                None if extra_args is None else _str_tuple(extra_args, f"{where}.extraArgs")
            ),
            working_directory=Path(working_directory).expanduser() if working_directory else None,
        )


@dataclass(slots=True)
class PromptConfig:
    """Template files plus an optional custom instruction block."""

    context_files: tuple[str, ...] = ()
    custom_prompt: str | None = None


@dataclass(slots=True)
class NotificationConfig:
    """Per-job alert routing."""

    type: str = "console"
    message: str | None = None
    alias: str | None = None
    description: str | None = None
    priority: str | None = None
    tags: tuple[str, ...] = ()
    teams: tuple[str, ...] = ()
    entity: str | None = None
    opsgenie_api_key: str | None = None

    @classmethod
    def from_dict(cls, data: Any, *, where: str) -> NotificationConfig:
        payload = _expect_object(data, where)
        notification_type = payload.get("type", "console")
        if notification_type not in NOTIFICATION_TYPES:
            raise ConfigError(
                f"{where}.type must be one of {', '.join(NOTIFICATION_TYPES)}, "
                f"got {notification_type!r}",
            )
        priority = _optional_str(payload, "priority", where)
        if priority is not None and priority not in ALERT_PRIORITIES:
            raise ConfigError(f"{where}.priority must be one of P1..P5, got {priority!r}")
        teams_raw = payload.get("teams", [])
        if not isinstance(teams_raw, list):
            raise ConfigError(f"{where}.teams must be a list")
        teams = tuple(
            team["name"] if isinstance(team, dict) and "name" in team else str(team)
            for team in teams_raw
        )
        return cls(
            type=notification_type,
            message=_optional_str(payload, "message", where),
            alias=_optional_str(payload, "alias", where),
            description=_optional_str(payload, "description", where),
            priority=priority,
            tags=_str_tuple(payload.get("tags", []), f"{where}.tags"),
            teams=teams,
            entity=_optional_str(payload, "entity", where),
            opsgenie_api_key=_optional_str(payload, "opsgenieApiKey", where),
        )


@dataclass(slots=True)
class JobConfig:
    """One configured job."""

    job_name: str
    enabled: bool = True
    schedules: tuple[str, ...] = ()
    prompt: PromptConfig = field(default_factory=PromptConfig)
    gemini_options: GeminiOptions = field(default_factory=GeminiOptions)
    notification: NotificationConfig | None = None

    @classmethod
    def from_dict(cls, data: Any, *, index: int) -> JobConfig:
        where = f"jobs[{index}]"
        payload = _expect_object(data, where)
        job_name = payload.get("jobName")
        if not isinstance(job_name, str) or not job_name.strip():
            raise ConfigError(f"{where}.jobName must be a non-empty string")
        enabled = payload.get("enabled", True)
        if not isinstance(enabled, bool):
            raise ConfigError(f"{where}.enabled must be true or false")
        prompt_raw = _expect_object(payload.get("promptConfig", {}), f"{where}.promptConfig")
        notification_raw = payload.get("notificationConfig")
        return cls(
            job_name=job_name.strip(),
            enabled=enabled,
            schedules=_str_tuple(payload.get("schedules", []), f"{where}.schedules"),
            prompt=PromptConfig(
                context_files=_str_tuple(
                    prompt_raw.get("contextFiles", []),
                    f"{where}.promptConfig.contextFiles",
                ),
                custom_prompt=_optional_str(prompt_raw, "customPrompt", f"{where}.promptConfig"),
            ),
            gemini_options=GeminiOptions.from_dict(
                payload.get("geminiOptions"),
                where=f"{where}.geminiOptions",
            ),
            notification=(
                None
                if notification_raw is None
                else NotificationConfig.from_dict(
                    notification_raw,
                    where=f"{where}.notificationConfig",
                )
            ),
        )


@dataclass(slots=True)
class JobDefaults:
    """Global options from the config file applied under job-level options."""

    gemini_options: GeminiOptions = field(default_factory=GeminiOptions)
    google_cloud_project: str | None = None


@dataclass(slots=True)
class AppConfig:
    """Parsed config file."""

    path: Path
    defaults: JobDefaults = field(default_factory=JobDefaults)
    jobs: list[JobConfig] = field(default_factory=list)

    @property
    def config_dir(self) -> Path:
        return self.path.parent

    def find_job(self, job_name: str) -> JobConfig | None:
        wanted = job_name.strip().lower()
        for job in self.jobs:
            if job.job_name.lower() == wanted:
                return job
        return None

    def enabled_jobs(self) -> list[JobConfig]:
        return [job for job in self.jobs if job.enabled]


@dataclass(slots=True)
class ResolvedGeminiOptions:
    """Effective options for one run after layering."""

    model: str
    timeout_ms: int
    executable: str
    extra_args: tuple[str, ...]
    working_directory: Path
    google_cloud_project: str | None


def load_app_config(path: Path) -> AppConfig:
    """Parse the config file; a missing file means no jobs."""

    if not path.exists():
        return AppConfig(path=path)
    try:
        payload = json.loads(path.read_text("utf-8"))
    except json.JSONDecodeError as error:
        raise ConfigError(f"Invalid JSON in {path}: {error}") from error
    root = _expect_object(payload, str(path))

    jobs_raw = root.get("jobs", [])
    if not isinstance(jobs_raw, list):
        raise ConfigError(f"{path}: jobs must be a list")
    jobs = [JobConfig.from_dict(item, index=index) for index, item in enumerate(jobs_raw)]

    seen: set[str] = set()
    for job in jobs:
        key = job.job_name.lower()
        if key in seen:
            raise ConfigError(f"{path}: duplicate jobName {job.job_name!r}")
        seen.add(key)

    project = root.get("googleCloudProject")
    if project is not None and not isinstance(project, str):
        raise ConfigError(f"{path}: googleCloudProject must be a string")
    return AppConfig(
        path=path,
        defaults=JobDefaults(
            gemini_options=GeminiOptions.from_dict(
                root.get("geminiOptions"),
                where="geminiOptions",
            ),
            google_cloud_project=project or None,
        ),
        jobs=jobs,
    )


def resolve_gemini_options(
    job: JobConfig,
    defaults: JobDefaults,
    settings: Settings,
) -> ResolvedGeminiOptions:
    """Layer job > config-file defaults > environment > built-in defaults."""

    job_options = job.gemini_options
    global_options = defaults.gemini_options
    extra_args = job_options.extra_args
    if extra_args is None:
        extra_args = global_options.extra_args or ()
    return ResolvedGeminiOptions(
        model=job_options.model or global_options.model or settings.gemini_model,
        timeout_ms=job_options.timeout_ms or global_options.timeout_ms or settings.timeout_ms,
        executable=job_options.executable or global_options.executable or settings.executable,
        extra_args=extra_args,
        working_directory=(
            job_options.working_directory
            or global_options.working_directory
            or Path(tempfile.gettempdir())
        ),
        google_cloud_project=defaults.google_cloud_project or settings.google_cloud_project,
    )


def default_config_document() -> dict[str, Any]:
    """Starter config written by `gjob init`."""

    return {
        "googleCloudProject": "",
        "geminiOptions": {"model": DEFAULT_MODEL, "timeoutMs": DEFAULT_TIMEOUT_MS},
        "jobs": [
            {
                "jobName": "weekly-release-notes",
                "enabled": False,
                "schedules": ["0 9 * * 1"],
                "promptConfig": {
                    "contextFiles": [
                        "templates/about.md",
                        "templates/release-notes-rules.md",
                    ],
                    "customPrompt": "Summarize the changes released during the last week.",
                },
                "notificationConfig": {
                    "type": "console",
                    "alias": "weekly-release-notes",
                    "tags": ["release-notes"],
                },
            },
        ],
    }


def write_default_config(path: Path, *, overwrite: bool = False) -> bool:
    """Write the starter config; return False when a config already exists."""

    if path.exists() and not overwrite:
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(default_config_document(), indent=2) + "\n", "utf-8")
    return True


def _expect_object(value: Any, where: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ConfigError(f"{where} must be a JSON object")
    return value


def _optional_str(payload: dict[str, Any], key: str, where: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{where}.{key} must be a string")
    return value or None


def _str_tuple(value: Any, where: str) -> tuple[str, ...]:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"{where} must be a list of strings")
    return tuple(value)


def _env_optional(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError as error:
        raise ConfigError(f"Invalid integer value for {name}: {raw!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ConfigError(f"Invalid boolean value for {name}: {value!r}")
