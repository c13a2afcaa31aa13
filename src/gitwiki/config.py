"""Application configuration."""

from pathlib import Path

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class GitSettings(BaseModel):
    """Git remote and commit identity (``GITWIKI_GIT__*``)."""

    url: str | None = None
    push: bool = False
    push_timeout: float = 10.0
    author_name: str = "GitWiki"
    author_email: str = "gitwiki@localhost"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    data_dir: Path = Path("data/pages")
    index_dir: Path = Path("data/index")
    file_extension: str = ".md"
    debug: bool = False
    app_title: str = "GitWiki"
    git: GitSettings = GitSettings()

    model_config = SettingsConfigDict(
        env_prefix="GITWIKI_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
    )


settings = Settings()
