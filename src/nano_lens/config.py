"""Application configuration."""

import os

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    openai_api_key: str
    openai_model: str = "gpt-5.2"
    openai_reasoning_effort: str | None = None
    openai_store: bool = False
    analysis_timeout_seconds: float = Field(default=60.0, gt=0)
    edit_timeout_seconds: float = Field(default=120.0, gt=0)
    video_sample_frames: int = Field(default=6, ge=1)
    camera_index: int = 0
    camera_width: int = 1920
    camera_height: int = 1080
    camera_fps: float = 30.0
    camera_max_zoom: float = 5.0
    still_quality: float = Field(default=0.9, gt=0, le=1)
    history_dir: str = "data"
    history_key: str = "nanoLensHistory"
    history_limit: int = Field(default=50, ge=1)
    log_level: str = "INFO"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )
