# agrolink/settings.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    BLOCKCHAIN_PROVIDER_URL: Optional[str] = None
    MARKETPLACE_CONTRACT_ADDRESS: Optional[str] = None
    # kept as text so a bad value degrades to "start at head" instead of a crash
    BLOCKCHAIN_START_BLOCK: Optional[str] = None
    BLOCKCHAIN_POLL_INTERVAL_MS: int = 10_000
    BLOCKCHAIN_MAX_BLOCK_RANGE: int = 2000
    BLOCKCHAIN_QUERY_RETRIES: int = 3
    BLOCKCHAIN_RECONNECT_MAX_SECONDS: float = 60.0

    DATABASE_URL: str = "sqlite:///./data.db"
    LOG_LEVEL: str = "INFO"

    PINATA_JWT: str | None = None
    PINATA_API_KEY: str | None = None
    PINATA_API_SECRET: str | None = None
    CERTIFICATE_IMAGE_BASE_URL: str = "https://agrolink.app/certificates"


settings = Settings()
