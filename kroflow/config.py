"""Configuration loading from environment variables."""

from __future__ import annotations

import os

from kroflow.models.config import (
    DeploymentConfig,
    EventsConfig,
    KroflowConfig,
    LogConfig,
    RetryPolicy,
)


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"KROFLOW_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float, min_val: float | None = None, max_val: float | None = None) -> float:
    val = float(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def load_config() -> KroflowConfig:
    """Load configuration from KROFLOW_* environment variables."""
    return KroflowConfig(
        deployment=DeploymentConfig(
            wait_for_ready=_env_bool("WAIT_FOR_READY", True),
            readiness_timeout_seconds=_env_float("READINESS_TIMEOUT", 300.0, min_val=1.0, max_val=3600.0),
            poll_interval_seconds=_env_float("POLL_INTERVAL", 2.0, min_val=0.1, max_val=60.0),
            deployment_timeout_seconds=_env_float("DEPLOYMENT_TIMEOUT", 0.0, min_val=0.0),
            max_concurrency=_env_int("MAX_CONCURRENCY", 8, min_val=1, max_val=64),
            rollback_on_failure=_env_bool("ROLLBACK_ON_FAILURE", False),
            dry_run=_env_bool("DRY_RUN", False),
            namespace=_env("NAMESPACE", ""),
        ),
        retry=RetryPolicy(
            max_retries=_env_int("RETRY_MAX_RETRIES", 3, min_val=0, max_val=10),
            initial_delay=_env_float("RETRY_INITIAL_DELAY", 1.0, min_val=0.0),
            backoff_multiplier=_env_float("RETRY_BACKOFF_MULTIPLIER", 2.0, min_val=1.0),
            max_delay=_env_float("RETRY_MAX_DELAY", 10.0, min_val=0.0),
        ),
        events=EventsConfig(
            webhook_url_ref=_env("EVENTS_WEBHOOK_SECRET_REF", ""),
            webhook_timeout_seconds=_env_float("EVENTS_WEBHOOK_TIMEOUT", 10.0, min_val=1.0, max_val=60.0),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
            format=_env("LOG_FORMAT", "json").lower(),
        ),
    )
