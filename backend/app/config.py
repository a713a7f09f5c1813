"""Application configuration."""

from functools import lru_cache
from typing import List

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings


KNOWN_STRATEGIES = ("motion_fingerprint", "pose_based")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Drill Loop Analyzer"
    debug: bool = False

    # Redis (Celery broker + result backend)
    redis_url: str = "redis://localhost:6379/0"

    # Storage
    upload_dir: str = "./uploads"
    max_video_size_mb: int = 200  # Drill clips are a few minutes at most

    # Frame sampling
    analysis_sample_fps: float = 10.0  # 10 FPS catches fast drills without blowing the frame budget
    analysis_max_frames: int = 300
    analysis_raster_width: int = 320  # Frames are downscaled before fingerprinting
    analysis_raster_height: int = 240
    seek_timeout_seconds: float = 0.5

    # Fingerprint & motion
    fingerprint_block_size: int = 8
    fingerprint_luminance_threshold: float = 128.0  # Mid-gray
    motion_sample_stride: int = 16  # Every 16th pixel

    # Repetition detection
    frame_similarity_threshold: float = 0.7
    window_similarity_threshold: float = 0.75
    cycle_start_motion_threshold: float = 0.05
    use_cycle_starts: bool = True
    window_size_fractions: List[float] = [1 / 15, 1 / 10, 1 / 5]  # Fast, medium, slow drills
    min_window_frames: int = 5
    min_analysis_frames: int = 10
    candidate_dedup_tolerance: int = 5
    cycle_duration_tolerance: int = 5
    key_frame_percentile: float = 0.75

    # Loop selection
    max_loop_fraction: float = 1 / 3
    fallback_loop_start_fraction: float = 0.2
    fallback_loop_end_fraction: float = 0.8

    # Timeouts
    analysis_timeout_seconds: float = 120.0
    render_timeout_seconds: float = 30.0

    # Loop rendering
    render_fps: float = 30.0
    loop_repeat_count: int = 3  # Three passes hide minor boundary artifacts
    thumbnail_width: int = 320
    thumbnail_jpeg_quality: int = 80

    # Strategies, tried in order
    analysis_strategies: List[str] = ["motion_fingerprint"]

    # Pose estimation (pose_based strategy only)
    pose_model_complexity: int = 0  # 0=lite, 1=full, 2=heavy
    pose_model_dir: str = "./models"
    pose_detection_confidence: float = 0.5

    class Config:
        env_file = ".env"
        extra = "ignore"

    @field_validator(
        "frame_similarity_threshold",
        "window_similarity_threshold",
        "cycle_start_motion_threshold",
        "key_frame_percentile",
        "max_loop_fraction",
        "pose_detection_confidence",
    )
    @classmethod
    def validate_unit_interval(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"must be within [0, 1], got {v}")
        return v

    @field_validator("analysis_sample_fps", "render_fps")
    @classmethod
    def validate_positive_rate(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"must be positive, got {v}")
        return v

    @field_validator(
        "analysis_timeout_seconds",
        "render_timeout_seconds",
        "seek_timeout_seconds",
    )
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"must not be negative, got {v}")
        return v

    @field_validator(
        "analysis_max_frames",
        "analysis_raster_width",
        "analysis_raster_height",
        "fingerprint_block_size",
        "motion_sample_stride",
        "min_window_frames",
        "loop_repeat_count",
        "thumbnail_width",
    )
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"must be at least 1, got {v}")
        return v

    @field_validator("window_size_fractions")
    @classmethod
    def validate_window_fractions(cls, v: List[float]) -> List[float]:
        if not v:
            raise ValueError("at least one window size fraction is required")
        if any(f <= 0 or f > 1 for f in v):
            raise ValueError(f"window size fractions must be within (0, 1], got {v}")
        return v

    @field_validator("analysis_strategies")
    @classmethod
    def validate_strategies(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("at least one analysis strategy is required")
        unknown = [s for s in v if s not in KNOWN_STRATEGIES]
        if unknown:
            raise ValueError(f"unknown strategies {unknown}, must be one of: {list(KNOWN_STRATEGIES)}")
        return v

    @model_validator(mode="after")
    def validate_fallback_window(self) -> "Settings":
        start = self.fallback_loop_start_fraction
        end = self.fallback_loop_end_fraction
        if not 0.0 <= start < end <= 1.0:
            raise ValueError(f"fallback loop window must satisfy 0 <= start < end <= 1, got [{start}, {end}]")
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
