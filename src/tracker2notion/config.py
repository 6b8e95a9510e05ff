"""Configuration management using pydantic-settings."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from tracker2notion.models import SourceOfTruth


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
    )

    # Notion configuration
    notion_token: str | None = Field(default=None, alias="NOTION_TOKEN")
    database_id: str | None = Field(default=None, alias="DATABASE_ID")
    notion_version: str = Field(default="2022-06-28", alias="NOTION_VERSION")

    # Notion public integration (OAuth)
    notion_client_id: str | None = Field(default=None, alias="NOTION_CLIENT_ID")
    notion_client_secret: str | None = Field(default=None, alias="NOTION_CLIENT_SECRET")
    notion_redirect_uri: str | None = Field(default=None, alias="NOTION_REDIRECT_URI")

    # Local store
    store_path: Path = Field(default=Path("tracker2notion.json"), alias="TRACKER_STORE_PATH")
    user_id: str = Field(default="local", alias="TRACKER_USER_ID")

    # Sync behaviour
    source_of_truth: SourceOfTruth = Field(default=SourceOfTruth.REMOTE, alias="SOURCE_OF_TRUTH")
    max_query_pages: int = Field(default=1000, ge=1, alias="TRACKER_MAX_QUERY_PAGES")
    page_size: int = Field(default=100, ge=1, le=100, alias="TRACKER_PAGE_SIZE")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
