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

    # Reasoning provider (Groq)
    GROQ_API_KEY: Optional[str] = None
    FREE_MODEL: Optional[str] = "llama-3.1-8b-instant"
    PAID_MODEL: Optional[str] = "llama-3.3-70b-versatile"
    PROVIDER_TIMEOUT_SECONDS: float = 60.0
    PROVIDER_TEMPERATURE: float = 0.1
    PROVIDER_MAX_TOKENS: int = 1500

    # Identity (tokens are issued upstream, only verified here)
    JWT_SECRET: Optional[str] = None
    ADMIN_KEY: Optional[str] = None

    # Entitlements
    TRIAL_QUESTION_LIMIT: int = 5
    TRIAL_DAYS: int = 7
    FREE_DAILY_LIMIT: int = 5
    HOBBY_MONTHLY_LIMIT: int = 100
    OCCASIONAL_MONTHLY_LIMIT: int = 300
    PROFESSIONAL_MONTHLY_LIMIT: int = 600
    ENTERPRISE_MONTHLY_LIMIT: int = 5000

    # Admission control (per process, fixed windows)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_UNAUTH_MAX: int = 10
    RATE_LIMIT_UNAUTH_WINDOW_SECONDS: int = 3600
    RATE_LIMIT_FREE_MAX: int = 50
    RATE_LIMIT_FREE_WINDOW_SECONDS: int = 900
    RATE_LIMIT_PAID_MAX: int = 500
    RATE_LIMIT_PAID_WINDOW_SECONDS: int = 900
    # Honour X-Forwarded-For only behind a proxy that overwrites it
    TRUST_FORWARDED_FOR: bool = False

    # HTTP
    CORS_ORIGINS: str = "http://localhost:3000"  # comma-separated

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def cors_origins(cfg: Optional[Settings] = None) -> list[str]:
    raw = (cfg or settings).CORS_ORIGINS or ""
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("askmoe")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "GROQ_API_KEY",
        "JWT_SECRET",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
