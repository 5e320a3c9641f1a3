"""Retry and retention policies, built from config."""

from __future__ import annotations

from dataclasses import dataclass

from medtour.config import AppConfig, config as default_config


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay_ms: int = 5000
    backoff_multiplier: float = 2.0
    max_delay_ms: int = 300000
    processing_timeout_ms: int = 30 * 60 * 1000

    def retry_delay_ms(self, attempts: int) -> int:
        """
        Backoff before the next attempt, given how many attempts have run.

        attempts=1 -> initial delay, attempts=2 -> initial * multiplier, ...
        capped at max_delay_ms.
        """
        exponent = max(attempts - 1, 0)
        delay = self.initial_delay_ms * (self.backoff_multiplier ** exponent)
        return int(min(delay, self.max_delay_ms))

    @classmethod
    def from_config(cls, cfg: AppConfig = default_config) -> "RetryPolicy":
        return cls(
            max_attempts=cfg.JOB_MAX_ATTEMPTS,
            initial_delay_ms=cfg.RETRY_INITIAL_DELAY_MS,
            backoff_multiplier=cfg.RETRY_BACKOFF_MULTIPLIER,
            max_delay_ms=cfg.RETRY_MAX_DELAY_MS,
            processing_timeout_ms=cfg.PROCESSING_TIMEOUT_MS,
        )


@dataclass(frozen=True)
class RetentionPolicy:
    completed_job_ttl_seconds: int = 24 * 60 * 60
    dead_job_ttl_seconds: int = 30 * 24 * 60 * 60
    batch_ttl_seconds: int = 7 * 24 * 60 * 60
    stats_ttl_seconds: int = 90 * 24 * 60 * 60
    completed_history_size: int = 100

    @classmethod
    def from_config(cls, cfg: AppConfig = default_config) -> "RetentionPolicy":
        return cls(
            completed_job_ttl_seconds=cfg.COMPLETED_JOB_TTL_SECONDS,
            dead_job_ttl_seconds=cfg.DEAD_JOB_TTL_SECONDS,
            batch_ttl_seconds=cfg.BATCH_TTL_SECONDS,
            stats_ttl_seconds=cfg.STATS_TTL_SECONDS,
            completed_history_size=cfg.COMPLETED_HISTORY_SIZE,
        )
