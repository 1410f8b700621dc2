"""Application Configuration — environment-driven settings via pydantic-settings.

Invariants:
    - All secrets come from environment variables (never hardcoded)
    - get_settings() is cached (lru_cache) — single instance per process
    - link_config() is the only bridge from settings to the pure Link Codec

Design Decisions:
    - pydantic-settings over raw os.environ: validation, type coercion, .env file support
    - Defaults provided for all non-secret settings: works out-of-the-box with docker-compose
    - Carrier limits are settings, not constants: tag stock changes per deployment
"""

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from taplink.core.link_codec import LinkConfig


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Database
    database_url: str = (
        "postgresql+asyncpg://taplink:taplink@db:5432/taplink"
    )

    @field_validator("database_url", mode="before")
    @classmethod
    def convert_postgres_url(cls, v: str) -> str:
        """Hosting platforms provide postgresql:// but asyncpg needs postgresql+asyncpg://."""
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Links
    app_scheme: str = "zaptap"
    legacy_schemes: list[str] = ["shortcuts-like"]
    web_domain: str = "https://zaptap.cloud"
    ignored_url_markers: list[str] = [
        "expo-development-client", "exp+zaptap://",
    ]

    # Carrier capacity
    qr_max_chars: int = 4296
    nfc_max_bytes: int = 888  # NTAG216 user memory

    # Resolver
    resolver_timeout_seconds: float = 10.0
    resolver_max_retries: int = 2
    resolver_base_delay_ms: int = 500
    resolver_max_delay_ms: int = 5_000

    # Fallback interpreter
    fallback_max_delay_seconds: float = 30.0
    fallback_location_timeout_seconds: float = 10.0

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: list[str] = ["http://localhost:5173"]

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"

    def link_config(self) -> LinkConfig:
        return LinkConfig(
            app_scheme=self.app_scheme,
            legacy_schemes=tuple(self.legacy_schemes),
            web_domain=self.web_domain,
            ignored_markers=tuple(self.ignored_url_markers),
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
