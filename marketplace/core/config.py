import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Admin access (X-Admin-Key)
    ADMIN_KEY: Optional[str] = None

    # Subscription engine
    SUBSCRIPTION_TIMEZONE: str = "UTC"  # reference timezone for daily usage keys
    SUBSCRIPTION_EXPIRY_WARNING_DAYS: int = 3  # fallback when settings store has none
    SUBSCRIPTION_LIST_PAGE_SIZE: int = 20
    SUBSCRIPTION_LIST_MAX_PAGE_SIZE: int = 100

    # Sweep workers (seconds between runs in loop mode)
    SUBSCRIPTION_EXPIRATION_SWEEP_SECONDS: int = 3600
    SUBSCRIPTION_WARNING_SWEEP_SECONDS: int = 86400
    SUBSCRIPTION_RECONCILE_SWEEP_SECONDS: int = 86400

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
    log = logger or logging.getLogger("marketplace")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "ADMIN_KEY",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    try:
        from zoneinfo import ZoneInfo
        ZoneInfo(cfg.SUBSCRIPTION_TIMEZONE)
    except Exception:
        message = f"Unknown SUBSCRIPTION_TIMEZONE: {cfg.SUBSCRIPTION_TIMEZONE}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    if cfg.SUBSCRIPTION_EXPIRY_WARNING_DAYS < 0:
        message = "SUBSCRIPTION_EXPIRY_WARNING_DAYS must be >= 0"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
