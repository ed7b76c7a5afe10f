from dataclasses import dataclass

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    # --- Server ---
    port: int = 8080
    environment: str = "production"  # "development" exposes codec error detail

    # --- Upload Limits ---
    max_file_size_mb: int = 10
    max_file_size_bytes: int = 0  # Computed in model_post_init
    max_files_per_request: int = 20

    # --- Geometry ---
    default_dpi: int = 300
    max_grid_copies: int = 36

    # --- Size-targeted compression ---
    compression_max_trials: int = 10
    compression_tolerance: float = 0.05
    compression_min_quality: int = 10
    compression_max_quality: int = 100
    compression_time_budget_seconds: float = 20.0  # 0 = no deadline

    # --- Memory ---
    gc_sweep_interval_seconds: int = 300  # 0 = disabled
    max_image_pixels: int = 89_478_485  # Pillow's default bomb threshold

    # --- Collaborators ---
    tool_timeout_seconds: int = 60
    ocr_default_language: str = "eng"

    # --- Security ---
    allowed_origins: str = "*"

    # --- Logging ---
    log_level: str = "ERROR"

    model_config = {"env_prefix": "", "case_sensitive": False}

    def model_post_init(self, __context) -> None:
        if self.max_file_size_bytes == 0:
            self.max_file_size_bytes = self.max_file_size_mb * 1024 * 1024

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"


@dataclass(frozen=True)
class CodecConfig:
    """Immutable codec settings applied once at process start.

    Replaces ambient mutation of the imaging library's globals: the
    lifecycle manager receives one of these and applies it a single time.
    """

    cache_enabled: bool = False
    max_image_pixels: int = 89_478_485
    load_truncated_images: bool = False

    @classmethod
    def from_settings(cls, s: Settings) -> "CodecConfig":
        return cls(
            cache_enabled=False,
            max_image_pixels=s.max_image_pixels,
            load_truncated_images=False,
        )


settings = Settings()
