from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.domain.enums import AssignmentMode


def _split_csv(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseSettings):
    app_env: str = "local"
    api_port: int = 8000
    log_level: str = "INFO"

    # Database
    postgres_host: str = "127.0.0.1"
    postgres_port: int = 5432
    postgres_db: str = "help_chat"
    postgres_user: str = "chat_user"
    postgres_password: str = "chat_password"
    database_url_override: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL_OVERRIDE", "DATABASE_URL"),
    )
    db_pool_size: int = Field(default=10, ge=1)
    db_max_overflow: int = Field(default=20, ge=0)
    db_pool_timeout: int = Field(default=30, ge=1)
    db_auto_create: bool = False
    db_seed_defaults: bool = True

    # Help chat
    help_chat_store: Literal["sql", "memory"] = "sql"
    help_chat_max_message_length: int = Field(default=2000, ge=1)
    help_chat_rate_limit: int = Field(default=30, ge=1)
    help_chat_rate_limit_window_seconds: int = Field(default=60, ge=1)
    help_chat_default_assignment_mode: AssignmentMode = AssignmentMode.AUTO

    # HTTP edge
    cors_allowed_origins_raw: str = "http://127.0.0.1:5173,http://localhost:5173"
    trusted_hosts_raw: str = "127.0.0.1,localhost,testserver"
    force_https: bool = False

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"

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
        return _split_csv(self.cors_allowed_origins_raw)

    @property
    def trusted_hosts(self) -> list[str]:
        return _split_csv(self.trusted_hosts_raw)

    def validate_security_settings(self) -> None:
        """Refuse to boot a production process with development-only settings."""
        if not self.is_production:
            return

        if self.help_chat_store == "memory":
            raise ValueError(
                "HELP_CHAT_STORE=memory loses every conversation on restart "
                "and is not allowed in production."
            )
        for name, values in (
            ("CORS_ALLOWED_ORIGINS_RAW", self.cors_allowed_origins),
            ("TRUSTED_HOSTS_RAW", self.trusted_hosts),
        ):
            if not values:
                raise ValueError(f"{name} must list explicit entries in production.")
            if "*" in values:
                raise ValueError(f"{name} may not contain a wildcard in production.")


@lru_cache
def get_settings() -> Settings:
    return Settings()
