from typing import List, Optional

from databases import Database
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from producer.crawlers.models import ProviderInstance


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    LOG_LEVEL: Optional[str] = "DEBUG"
    DATABASE_TYPE: Optional[str] = "sqlite"
    DATABASE_URL: Optional[str] = "username:password@hostname:port"
    DATABASE_PATH: Optional[str] = "data/producer.db"
    HTTP_CLIENT_LIMIT: Optional[int] = 100
    HTTP_CLIENT_LIMIT_PER_HOST: Optional[int] = 20
    HTTP_CLIENT_TIMEOUT_TOTAL: Optional[int] = 30
    HTTP_CLIENT_TTL_DNS_CACHE: Optional[int] = 300
    HTTP_CLIENT_KEEPALIVE_TIMEOUT: Optional[int] = 15
    HTTP_CLIENT_USER_AGENT: Optional[str] = "knightcrawler-producer/1.0"
    CRAWLER_START_CURSOR: Optional[str] = None
    TORRENTIO_INSTANCES: List[ProviderInstance] = [
        ProviderInstance(name="Official", url="https://torrentio.strem.fun")
    ]

    @field_validator("DATABASE_TYPE")
    def normalize_database_type(cls, v):
        if v is None:
            return "sqlite"
        v = v.lower()
        if v == "postgres":
            return "postgresql"
        return v

    @field_validator("CRAWLER_START_CURSOR")
    def empty_cursor_to_none(cls, v):
        if v is not None and v.strip() == "":
            return None
        return v


settings = AppSettings()

if settings.DATABASE_TYPE == "sqlite":
    database_url = f"sqlite:///{settings.DATABASE_PATH}"
else:
    database_url = f"postgresql+asyncpg://{settings.DATABASE_URL}"

database = Database(database_url)
