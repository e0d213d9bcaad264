from __future__ import annotations
from pydantic_settings import BaseSettings
from pydantic import Field

class Settings(BaseSettings):
    database_url: str = Field(..., alias="DATABASE_URL")

    auth_jwks_url: str = Field(..., alias="AUTH_JWKS_URL")
    token_issuer: str = Field("authentication-svc", alias="TOKEN_ISSUER")

    cors_origins: str = Field(
        "http://localhost:8081,http://127.0.0.1:8081,http://localhost:19006",
        alias="CORS_ORIGINS",
    )
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # QR signage
    qr_scheme_prefix: str = Field("pawpals", alias="QR_SCHEME_PREFIX")
    qr_base_url: str = Field("https://www.pawpals.yadbarzel.info/garden", alias="QR_BASE_URL")

    # Redis
    redis_url: str = Field("redis://127.0.0.1:6379/0", alias="REDIS_URL")
    rl_enabled: bool = Field(default=True, alias="RL_ENABLED")
    rl_window_seconds: int = Field(default=60, alias="RL_WINDOW_SECONDS")
    rl_max_reqs: int = Field(default=30, alias="RL_MAX_REQS")

    # NATS
    nats_urls: str = Field("nats://127.0.0.1:4222", alias="NATS_URLS")
    nats_subject_prefix: str = Field("visits", alias="NATS_SUBJECT_PREFIX")
    enable_events: bool = Field(default=True, alias="ENABLE_EVENTS")
    event_publish_timeout: float = Field(default=1.0, alias="EVENT_PUBLISH_TIMEOUT")

    # Scheduler
    enable_scheduler: bool = Field(default=True, alias="ENABLE_SCHEDULER")
    visit_reminder_after_minutes: int = Field(default=120, alias="VISIT_REMINDER_AFTER_MINUTES")
    reminder_interval_seconds: int = Field(default=1800, alias="REMINDER_INTERVAL_SECONDS")
    occupancy_reconcile_seconds: int = Field(default=900, alias="OCCUPANCY_RECONCILE_SECONDS")

    class Config:
        env_file = ".env"
        env_prefix = ""
        case_sensitive = False

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

_settings: Settings | None = None
def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
