from dataclasses import dataclass, field
import os


def _as_bool(value: str) -> bool:
    return value.lower() in ("1", "true", "yes")


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    db_host: str = os.getenv("DB_HOST", "")
    db_port: int = int(os.getenv("DB_PORT", "5432"))
    db_name: str = os.getenv("DB_NAME", "")
    db_user: str = os.getenv("DB_USER", "")
    db_password: str = os.getenv("DB_PASSWORD", "")
    auto_migrate: bool = _as_bool(os.getenv("AUTO_MIGRATE", "false"))
    cors_allow_origins: list[str] = field(
        default_factory=lambda: _split_csv(os.getenv("CORS_ALLOW_ORIGINS", "*"))
    )
    cors_allow_methods: list[str] = field(
        default_factory=lambda: _split_csv(os.getenv("CORS_ALLOW_METHODS", "*"))
    )
    cors_allow_headers: list[str] = field(
        default_factory=lambda: _split_csv(os.getenv("CORS_ALLOW_HEADERS", "*"))
    )
    expose_errors: bool = _as_bool(os.getenv("EXPOSE_ERRORS", "true"))
    reservation_minutes: int = int(os.getenv("RESERVATION_MINUTES", "10"))
    sweep_enabled: bool = _as_bool(os.getenv("SWEEP_ENABLED", "false"))
    sweep_interval_minutes: float = float(os.getenv("SWEEP_INTERVAL_MINUTES", "2"))
    allocation_max_attempts: int = int(os.getenv("ALLOCATION_MAX_ATTEMPTS", "5"))
    max_tickets_per_purchase: int = int(os.getenv("MAX_TICKETS_PER_PURCHASE", "250"))
    storage_retry_attempts: int = int(os.getenv("STORAGE_RETRY_ATTEMPTS", "3"))
    storage_retry_backoff_seconds: float = float(
        os.getenv("STORAGE_RETRY_BACKOFF_SECONDS", "0.5")
    )


settings = Settings()


def db_configured() -> bool:
    return all([settings.db_host, settings.db_name, settings.db_user, settings.db_password])
