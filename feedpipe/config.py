from pathlib import Path
from typing import Annotated, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DOTENV = Path(__file__).parent / ".env"


class Settings(BaseSettings):
    DB_URL: str
    FETCH_INTERVAL_SEC: float = Field(default=10, gt=0)
    FETCH_CONCURRENCY: int = Field(default=10, gt=0)
    FETCH_TIMEOUT_SEC: float = Field(default=15, gt=0)
    USER_AGENT: str = "feedpipe/1.0"
    ARTICLES_PER_PAGE: int = Field(default=20, gt=0)
    WORKER_ENABLED: bool = True
    SEED_FEEDS: Annotated[List[str], NoDecode] = []
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=str(DOTENV) if DOTENV.exists() else None,
        env_file_encoding="utf-8",
    )

    @field_validator("SEED_FEEDS", mode="before")
    @classmethod
    def split_feeds(cls, value):
        if isinstance(value, str):
            return [u.strip() for u in value.split(",") if u.strip()]
        return value
