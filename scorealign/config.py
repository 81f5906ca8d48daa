"""Score Alignment Service Configuration."""

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Score Alignment Service Configuration"""

    model_config = SettingsConfigDict(
        env_prefix="SCOREALIGN_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service info
    service_name: str = "score-alignment-service"
    service_version: str = "1.0.0"

    # Score storage
    score_directory: str = Field(
        default="scores",
        description="Directory holding one sub-directory of artifacts per score",
    )

    # Verovio
    verovio_resource_path: Optional[str] = Field(
        default=None,
        description="Verovio data directory; None uses the bundled resources",
    )

    # Timeline construction
    default_meter: str = "4/4"
    max_fraction_denominator: int = 256  # Quantization grid for timemap values
    min_pitch: int = 21  # A0
    max_pitch: int = 108  # C8

    # Alignment plugin
    aligner_service_url: str = Field(
        default="http://aligner:8010",
        description="Base URL for the external score aligner service",
    )
    alignment_transform_id: str = Field(
        default="",
        description="Preferred alignment transform; empty picks the first available",
    )
    alignment_output: str = "chordonsets"

    # Performance
    max_workers: int = 2
    request_timeout: int = 300
    aligner_health_timeout: float = 5.0

    # API configuration
    host: str = "0.0.0.0"
    port: int = 8010

    # Logging
    log_level: str = "INFO"

    def get_score_directory(self) -> Path:
        """Get the score directory as a Path."""
        return Path(self.score_directory)


settings = Settings()
