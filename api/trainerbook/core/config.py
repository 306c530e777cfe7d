"""Application configuration from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    app_name: str = "TrainerBook"
    debug: bool = True
    api_prefix: str = "/api/v1"
    log_level: str = "INFO"

    # Database
    database_url: str = "postgresql+asyncpg://trainerbook:trainerbook@db:5432/trainerbook"
    database_echo: bool = False

    # Booking defaults (the effective policy can override the cancellation window)
    default_cancellation_window_hours: int = 4
    default_capacity_per_slot: int = 1

    # Whether completing a class charges the student again for pairs that are
    # not linked through a teacher portfolio
    completion_consumes_credit: bool = True

    # Notifications / SMTP
    notifications_enabled: bool = False
    smtp_host: str = "localhost"
    smtp_port: int = 1025
    smtp_from: str = "noreply@trainerbook.io"

    model_config = {"env_prefix": "TB_", "env_file": ".env", "extra": "ignore"}


settings = Settings()
