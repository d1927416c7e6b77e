from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.domain.enums import AssignmentMode

DEV_ACTOR_AUTH_SECRET = "local-dev-actor-auth-secret-change-me"


class Settings(BaseSettings):
    app_env: str = "local"
    api_port: int = 8000
    log_level: str = "INFO"

    postgres_host: str = "127.0.0.1"
    postgres_port: int = 5432
    postgres_db: str = "conversation_routing"
    postgres_user: str = "routing_user"
    postgres_password: str = "routing_password"
    database_url_override: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL_OVERRIDE", "DATABASE_URL"),
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_auto_create: bool = False

    routing_default_mode: AssignmentMode = AssignmentMode.LOAD_BALANCED
    routing_auto_assign_on_create: bool = False
    routing_queue_default_limit: int = Field(default=50, ge=1)
    routing_queue_max_limit: int = Field(default=200, ge=1)
    routing_store_timeout_seconds: float = Field(default=5.0, gt=0)
    routing_retry_attempts: int = Field(default=3, ge=1)
    routing_retry_base_delay_seconds: float = Field(default=0.05, ge=0)
    routing_publish_timeout_seconds: float = Field(default=2.0, gt=0)
    # Per-socket send bound; stays below the publish bound so fan-out finishes.
    realtime_send_timeout_seconds: float = Field(default=1.0, gt=0)
    routing_reset_availability_on_startup: bool = False

    actor_auth_secret: str = DEV_ACTOR_AUTH_SECRET
    actor_auth_token_ttl_minutes: int = 480
    cors_allowed_origins_raw: str = "http://127.0.0.1:5173,http://localhost:5173"
    trusted_hosts_raw: str = "127.0.0.1,localhost"
    force_https: bool = False

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def cors_allowed_origins(self) -> list[str]:
        return [
            origin.strip()
            for origin in self.cors_allowed_origins_raw.split(",")
            if origin.strip()
        ]

    @property
    def trusted_hosts(self) -> list[str]:
        return [
            host.strip() for host in self.trusted_hosts_raw.split(",") if host.strip()
        ]

    @property
    def auto_assign_mode(self) -> AssignmentMode | None:
        if not self.routing_auto_assign_on_create:
            return None
        return self.routing_default_mode

    def validate_security_settings(self) -> None:
        if self.realtime_send_timeout_seconds >= self.routing_publish_timeout_seconds:
            raise ValueError(
                "REALTIME_SEND_TIMEOUT_SECONDS must be below ROUTING_PUBLISH_TIMEOUT_SECONDS."
            )
        if self.app_env.lower() != "production":
            return

        if self.actor_auth_secret == DEV_ACTOR_AUTH_SECRET:
            raise ValueError("ACTOR_AUTH_SECRET must be overridden in production.")
        if len(self.actor_auth_secret) < 32:
            raise ValueError(
                "ACTOR_AUTH_SECRET must be at least 32 characters in production."
            )
        if not self.cors_allowed_origins or "*" in self.cors_allowed_origins:
            raise ValueError(
                "CORS_ALLOWED_ORIGINS_RAW must define explicit origins in production."
            )
        if not self.trusted_hosts or "*" in self.trusted_hosts:
            raise ValueError(
                "TRUSTED_HOSTS_RAW must define explicit hosts in production."
            )
        if self.routing_queue_default_limit > self.routing_queue_max_limit:
            raise ValueError(
                "ROUTING_QUEUE_DEFAULT_LIMIT cannot exceed ROUTING_QUEUE_MAX_LIMIT."
            )


@lru_cache
def get_settings() -> Settings:
    return Settings()
