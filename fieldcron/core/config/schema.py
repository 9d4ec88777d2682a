"""fieldcron configuration schema: YAML + Pydantic + env override."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from fieldcron.core.cron.types import TimezoneName


# ════════════════════════════════════════════════════════════
# SUB-CONFIGS (nested BaseModel)
# ════════════════════════════════════════════════════════════


class OwnerConfig(BaseModel):
    """Owner (default admin user) configuration."""

    username: str
    name: str = ""


class MarketplaceConfig(BaseModel):
    """Field Nation API access."""

    base_url: str = "https://api.fieldnation.com"
    client_id: str = ""
    client_secret: str = ""
    timeout_s: float = 30.0
    requests_per_minute: int = 120
    page_size: int = 50


class SchedulerConfig(BaseModel):
    """Recurring dispatcher."""

    enabled: bool = True
    interval_minutes: int = 5
    max_workers: int = 4
    timezone: TimezoneName = "UTC"  # working-window reference zone when a cron sets none


# Auth
class RateLimitConfig(BaseModel):
    enabled: bool = True
    requests_per_minute: int = 60


class AuthConfig(BaseModel):
    """Bearer token verification. Empty jwt_secret_key = auth disabled."""

    jwt_secret_key: str = ""
    jwt_algorithm: str = "HS256"
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)


# Database
class DatabaseConfig(BaseModel):
    path: str = "data/fieldcron.db"


# ════════════════════════════════════════════════════════════
# ROOT CONFIG (BaseSettings: env + .env support)
# ════════════════════════════════════════════════════════════


class Config(BaseSettings):
    """
    Root configuration.

    Priority: env vars > .env > YAML (init kwargs) > defaults. Init kwargs
    carry the YAML file, so they rank below the environment here.

    Env override examples:
        FIELDCRON_SCHEDULER__INTERVAL_MINUTES=10
        FIELDCRON_DATABASE__PATH=data/prod.db
        FIELDCRON_MARKETPLACE__CLIENT_SECRET=...
    """

    model_config = SettingsConfigDict(
        env_prefix="FIELDCRON_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    owner: OwnerConfig | None = None
    marketplace: MarketplaceConfig = Field(default_factory=MarketplaceConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    # ── Computed properties ─────────────────────────────────

    @property
    def auth_enabled(self) -> bool:
        """True when JWT secret is set (auth active)."""
        return bool(self.auth.jwt_secret_key)

    @property
    def owner_user_id(self) -> str | None:
        return self.owner.username if self.owner else None

    @property
    def db_path(self) -> Path:
        return Path(self.database.path)
