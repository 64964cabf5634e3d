import logging
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Document store (SQL adapter)
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Driver limits
    RECONCILE_CONCURRENCY: int = 20
    RECONCILE_PAGE_SIZE: int = 200
    RECONCILE_MAX_DURATION_SECONDS: float = 480.0  # platform hard limit is 540s
    RECONCILE_MAX_ATTEMPTS: int = 3
    RECONCILE_BACKOFF_BASE_SECONDS: float = 0.5
    RECONCILE_BACKOFF_MAX_SECONDS: float = 8.0

    # Streaks
    STREAK_TIMEZONE: str = "UTC"
    STREAK_GRACE_HOURS: int = 12

    # Notifications retention
    NOTIFICATION_RETENTION_DAYS: int = 30
    NOTIFICATION_PRUNE_LIMIT: int = 500

    # Shared secret sent by the scheduler on HTTP triggers (unset = open)
    SCHEDULER_TOKEN: Optional[str] = None

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("reconciler")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    problems = []
    if not getattr(cfg, "DATABASE_URL", None):
        problems.append("Missing required configuration: DATABASE_URL")

    try:
        ZoneInfo(cfg.STREAK_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        problems.append(f"Unknown STREAK_TIMEZONE: {cfg.STREAK_TIMEZONE}")

    for key in ("RECONCILE_CONCURRENCY", "RECONCILE_PAGE_SIZE", "RECONCILE_MAX_ATTEMPTS", "NOTIFICATION_PRUNE_LIMIT"):
        if int(getattr(cfg, key)) <= 0:
            problems.append(f"{key} must be positive")

    if not 0 <= cfg.STREAK_GRACE_HOURS <= 24:
        problems.append("STREAK_GRACE_HOURS must be between 0 and 24")

    for message in problems:
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return not problems
