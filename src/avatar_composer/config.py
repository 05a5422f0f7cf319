import sys
from functools import lru_cache
from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic import Field
from pydantic_settings import BaseSettings


class AppSettings(BaseSettings):
    """Runtime configuration loaded from environment variables."""

    app_name: str = Field(default="avatar-composer")
    log_level: str = Field(default="INFO")
    aws_region: str = Field(default="us-east-1")
    output_bucket: Optional[str] = None
    work_dir: Path = Field(default=Path("/tmp/avatar-composer"))
    assets_dir: Path = Field(default=Path("assets"))
    default_avatar: str = Field(default="DefaultAvatar")
    export_filename: str = Field(default="custom_avatar.glb")
    document_filename: str = Field(default="custom_avatar.gltf")

    model_config = {
        "env_file": (".env", ".env.local", str(Path(__file__).parent.parent.parent / ".env")),
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """Return cached application settings."""

    settings = AppSettings()
    settings.work_dir.mkdir(parents=True, exist_ok=True)
    return settings


def configure_logging(settings: AppSettings) -> None:
    """Route loguru output to stderr at the configured level."""

    logger.remove()
    logger.add(sys.stderr, level=settings.log_level.upper())
