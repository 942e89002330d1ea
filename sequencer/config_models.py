"""Configuration models for the sequencer."""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .scenario.models import MAX_THRESHOLD


class HelperConfig(BaseModel):
    """Configuration for the native helper process."""

    path: Optional[Path] = Field(default=None, description="Path to the native helper binary")
    request_timeout_ms: int = Field(default=10000, description="Default request timeout in milliseconds")

    @field_validator("request_timeout_ms")
    @classmethod
    def timeout_must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Request timeout must be positive")
        return v


class PlaybackConfig(BaseModel):
    """Configuration for scenario execution and recording."""

    pixel_wait_timeout_ms: int = Field(
        default=60000,
        description="How long the helper polls for a pixel condition before giving up"
    )
    default_threshold: float = Field(
        default=15,
        description="Color distance threshold for newly recorded pixel steps"
    )

    @field_validator("pixel_wait_timeout_ms")
    @classmethod
    def pixel_timeout_must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Pixel wait timeout must be positive")
        return v

    @field_validator("default_threshold")
    @classmethod
    def threshold_in_range(cls, v: float) -> float:
        if not 0 <= v <= MAX_THRESHOLD:
            raise ValueError(f"Threshold must be between 0 and {MAX_THRESHOLD}")
        return v


class PathsConfig(BaseModel):
    """Configuration for file system paths."""

    data_dir: Path = Field(
        default=Path.home() / ".config" / "smart-sequencer",
        description="Directory for scenarios and settings"
    )
    log_dir: Path = Field(default=Path("logs"), description="Directory for log files")

    @field_validator("data_dir", "log_dir", mode="before")
    @classmethod
    def expand_path(cls, v: str | Path) -> Path:
        return Path(v).expanduser()


class LoggingConfig(BaseModel):
    """Configuration for the logging framework."""

    level: str = Field(default="INFO", description="Log level")
    format_console: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(session_id)s - %(message)s",
        description="Console log format"
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"Level must be one of {valid_levels}")
        return v.upper()


class SystemConfig(BaseModel):
    """Main system configuration."""

    helper: HelperConfig = Field(default_factory=HelperConfig)
    playback: PlaybackConfig = Field(default_factory=PlaybackConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
