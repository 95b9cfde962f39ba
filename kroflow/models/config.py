"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff for transient apply failures (delays in seconds)."""

    max_retries: int = 3
    initial_delay: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay: float = 10.0

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number *attempt* (1-based)."""
        return min(self.initial_delay * self.backoff_multiplier ** (attempt - 1), self.max_delay)


@dataclass
class DeploymentConfig:
    """Direct deployment behaviour."""

    wait_for_ready: bool = True
    readiness_timeout_seconds: float = 300.0
    poll_interval_seconds: float = 2.0
    deployment_timeout_seconds: float = 0.0  # 0 disables the deployment-wide ceiling
    max_concurrency: int = 8
    rollback_on_failure: bool = False
    dry_run: bool = False
    namespace: str = ""

    def __post_init__(self) -> None:
        if self.max_concurrency < 1:
            raise ValueError(f"max_concurrency must be at least 1, got {self.max_concurrency}")
        if self.poll_interval_seconds <= 0:
            raise ValueError(f"poll_interval_seconds must be positive, got {self.poll_interval_seconds}")
        if self.readiness_timeout_seconds < 0 or self.deployment_timeout_seconds < 0:
            raise ValueError("timeouts must not be negative")


@dataclass
class EventsConfig:
    """Deployment event delivery."""

    webhook_url_ref: str = ""
    webhook_timeout_seconds: float = 10.0


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"
    format: str = "json"  # json | console


@dataclass
class KroflowConfig:
    """Top-level kroflow configuration."""

    deployment: DeploymentConfig = field(default_factory=DeploymentConfig)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    events: EventsConfig = field(default_factory=EventsConfig)
    log: LogConfig = field(default_factory=LogConfig)
