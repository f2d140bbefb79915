"""Configuration for the HTML Archive Manager."""
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    upload_dir: Path = Path("./uploads")  # Managed storage, served under uploads_url_prefix
    upload_pending_dir: Path = Path("./uploads/pending")  # Staging area for one upload request
    database_path: Path = Path("./data/documents.db")

    # Public prefix the static route serves managed storage from
    uploads_url_prefix: str = "/uploads"

    # Upload limits
    max_upload_bytes: int = 100 * 1024 * 1024
    max_bulk_files: int = 100

    # Listing / search pagination
    default_page_size: int = 10
    max_page_size: int = 100

    cors_origins: list[str] = ["*"]
    log_level: str = "INFO"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
