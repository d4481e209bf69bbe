from __future__ import annotations

from pathlib import Path

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings

DEFAULT_TEMPLATE_PATH = str(Path(__file__).resolve().parent / "templates")


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    bind_address: str = Field("localhost", alias="PEANUTS_BIND_ADDRESS")
    bind_port: int = Field(8166, alias="PEANUTS_BIND_PORT")

    database_url: str = Field("sqlite:////tmp/peanuts.db", alias="DATABASE_URL")
    db_create_all: bool = Field(False, alias="DB_CREATE_ALL")

    base_url: str = Field(
        "http://localhost:8166",
        alias="PEANUTS_BASE_URL",
        description="Gallery base URL used for absolute links in the sitemap",
    )
    default_photos_per_page: int = Field(
        10, alias="PEANUTS_DEFAULT_PHOTOS_PER_PAGE"
    )
    max_photos_per_page: int = Field(100, alias="PEANUTS_MAX_PHOTOS_PER_PAGE")
    template_path: str = Field(
        DEFAULT_TEMPLATE_PATH,
        alias="PEANUTS_TEMPLATE_PATH",
        description="Directory holding the Jinja2 templates",
    )

    s3_bucket: str = "peanuts"
    s3_endpoint: str | None = None
    s3_region: str = "us-east-1"
    s3_access_key: str | None = None
    s3_secret_key: str | None = None
    static_host: str | None = Field(
        None,
        alias="PEANUTS_STATIC_HOST",
        description="Host prefix for URLs of files uploaded to S3",
    )

    model_config = ConfigDict(
        extra="ignore",
        env_file=".env",
        case_sensitive=False,
        populate_by_name=True,
    )
