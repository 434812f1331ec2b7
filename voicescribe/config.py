"""
Runtime settings.

All options come from environment variables.  An unset or empty variable
means "use the default", so a deployment can blank a value out without
deleting it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from .encoding import FALLBACK_MODES, FALLBACK_MP3
from .errors import ConfigurationError
from .models import DEFAULT_LANGUAGE_CODE, DEFAULT_MODEL

BUCKET_SUFFIX = "-voicescribe-temp"


@dataclass(frozen=True)
class Settings:
    credentials_json: Optional[str]
    project_id: Optional[str]
    temp_bucket: Optional[str]
    bucket_location: str
    retention_days: int
    default_language_code: str
    default_model: str
    encoding_fallback: str
    poll_interval_seconds: float
    poll_timeout_seconds: float
    poll_backoff: float
    poll_max_interval_seconds: float
    upload_url_ttl_seconds: int
    log_level: str
    port: int

    def bucket_name(self, project_id: Optional[str]) -> str:
        """Temp bucket name, derived from the project when not set explicitly."""
        if self.temp_bucket:
            return self.temp_bucket
        project = project_id or self.project_id
        if not project:
            raise ConfigurationError("TEMP_BUCKET is not set and no project id is available")
        return f"{project}{BUCKET_SUFFIX}"


def _getenv_str(name: str, default: Optional[str]) -> Optional[str]:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _getenv_int(name: str, default: int) -> int:
    value = _getenv_str(name, None)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from exc


def _getenv_float(name: str, default: float) -> float:
    value = _getenv_str(name, None)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from exc


def load_settings() -> Settings:
    fallback = (_getenv_str("ENCODING_FALLBACK", FALLBACK_MP3) or FALLBACK_MP3).lower()
    if fallback not in FALLBACK_MODES:
        raise ConfigurationError(
            f"ENCODING_FALLBACK must be one of {', '.join(FALLBACK_MODES)}, got {fallback!r}"
        )

    settings = Settings(
        # Not stripped by _getenv_str: the raw JSON is passed through as-is.
        credentials_json=os.environ.get("GOOGLE_CREDENTIALS") or None,
        project_id=_getenv_str("GOOGLE_CLOUD_PROJECT", None),
        temp_bucket=_getenv_str("TEMP_BUCKET", None),
        bucket_location=_getenv_str("BUCKET_LOCATION", "US") or "US",
        retention_days=_getenv_int("RETENTION_DAYS", 1),
        default_language_code=_getenv_str("DEFAULT_LANGUAGE_CODE", DEFAULT_LANGUAGE_CODE)
        or DEFAULT_LANGUAGE_CODE,
        default_model=_getenv_str("DEFAULT_MODEL", DEFAULT_MODEL) or DEFAULT_MODEL,
        encoding_fallback=fallback,
        poll_interval_seconds=_getenv_float("POLL_INTERVAL_SECONDS", 5.0),
        poll_timeout_seconds=_getenv_float("POLL_TIMEOUT_SECONDS", 540.0),
        poll_backoff=_getenv_float("POLL_BACKOFF", 1.0),
        poll_max_interval_seconds=_getenv_float("POLL_MAX_INTERVAL_SECONDS", 30.0),
        upload_url_ttl_seconds=_getenv_int("UPLOAD_URL_TTL_SECONDS", 900),
        log_level=(_getenv_str("LOG_LEVEL", "INFO") or "INFO").upper(),
        port=_getenv_int("PORT", 8080),
    )
    if settings.retention_days < 1:
        raise ConfigurationError("RETENTION_DAYS must be at least 1")
    if settings.poll_interval_seconds <= 0 or settings.poll_timeout_seconds <= 0:
        raise ConfigurationError("Polling interval and timeout must be positive")
    return settings
