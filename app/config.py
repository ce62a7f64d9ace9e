from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")

    # External API Keys
    alchemy_api_key: str = Field(default="", description="Alchemy API key")
    coingecko_api_key: str = Field(default="", description="Coingecko API key")

    # Upstream endpoints
    coingecko_base_url: str = Field(
        default="https://api.coingecko.com/api/v3",
        description="Coingecko API base URL (use the pro host with a pro key)",
    )
    blockstream_base_url: str = Field(
        default="https://blockstream.info/api",
        description="Esplora-compatible Bitcoin explorer base URL",
    )

    # Provider Toggles
    enable_alchemy: bool = Field(default=True, description="Enable Alchemy provider")
    enable_coingecko: bool = Field(default=True, description="Enable Coingecko provider")
    enable_blockstream: bool = Field(default=True, description="Enable Blockstream provider")

    # Request limits
    max_concurrent_requests: int = Field(default=10, ge=1, description="Max concurrent upstream calls per batch")
    request_timeout_seconds: float = Field(default=30, gt=0, description="Per-call upstream timeout")
    provider_max_retries: int = Field(default=1, ge=0, description="Retries on upstream 429 responses")
    provider_retry_backoff_seconds: float = Field(default=2.0, ge=0, description="Delay before a 429 retry")

    # Price cache (opt-in decorator around the price provider)
    enable_price_cache: bool = Field(default=False, description="Cache upstream price lookups")
    cache_ttl_seconds: int = Field(default=60, ge=1, description="Price cache TTL in seconds")
    max_cache_size: int = Field(default=1000, ge=1, description="Maximum cache size")

    @property
    def has_alchemy_key(self) -> bool:
        return bool(self.alchemy_api_key)

    @property
    def has_coingecko_key(self) -> bool:
        return bool(self.coingecko_api_key)


# Global settings instance
settings = Settings()
