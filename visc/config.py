"""Configuration management for visc."""

from enum import Enum
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StrictnessLevel(str, Enum):
    """Calibration strictness presets."""
    LOW = "low"  # Tolerances widened by 1.5x
    MEDIUM = "medium"  # Observed drift used as-is
    HIGH = "high"  # Tolerances tightened to 0.7x

    @property
    def multiplier(self) -> float:
        """Factor applied to observed drift when deriving tolerances."""
        if self is StrictnessLevel.LOW:
            return 1.5
        if self is StrictnessLevel.HIGH:
            return 0.7
        return 1.0


class Settings(BaseSettings):
    """Engine defaults loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="VISC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Semantic grouping
    grouping_threshold: float = Field(20.0, description="Proximity distance (px) for grouping nodes")
    importance_threshold: float = Field(10.0, description="Min node importance to participate in grouping")
    viewport_only: bool = Field(False, description="Drop nodes entirely outside the viewport")
    max_group_area_ratio: float = Field(0.8, description="Nodes larger than this share of the page are skipped")
    label_max_length: int = Field(50, description="Max characters of a group label")

    # Overflow / fixed-dimension detection
    detect_overflow: bool = Field(True, description="Run the overflow grouping pass")
    min_scroll_ratio: float = Field(0.1, description="Min hidden share of content for a scroll region")
    overflow_nesting_depth: int = Field(3, description="Max depth of nested scroll regions")

    # Raw element comparison
    element_tolerance: float = Field(2.0, description="Bounds delta (px) tolerated in raw mode")
    ignore_text: bool = Field(False, description="Skip text comparison in raw mode")

    # Group comparison
    position_threshold: float = Field(5.0, description="Group position delta (px) tolerated")
    size_threshold: float = Field(5.0, description="Group size delta (px) tolerated")
    group_importance_threshold: float = Field(10.0, description="Group importance delta tolerated")
    text_similarity_threshold: float = Field(0.8, description="Min text similarity before flagging a change")
    match_by_root_selector: bool = Field(True, description="Pair moved groups by root selector")
    match_unpaired: bool = Field(False, description="Pair leftover groups via correspondence")

    # Correspondence
    viewport_width: int = Field(1920, description="Reference viewport width for distance normalisation")
    viewport_height: int = Field(1080, description="Reference viewport height for distance normalisation")
    correspondence_min_score: float = Field(0.5, description="Min score to accept a correspondence")
    correspondence_strategy: str = Field(
        "sequential", description="Group pairing: sequential, best_first or accessibility"
    )

    # Flakiness
    flakiness_threshold: float = Field(0.2, description="Variance above which a property is flaky")
    flaky_position_bucket: float = Field(5.0, description="Bucket size (px) for position samples")
    flaky_size_bucket: float = Field(5.0, description="Bucket size (px) for size samples")

    # Calibration
    strictness: StrictnessLevel = Field(StrictnessLevel.MEDIUM, description="Calibration strictness")
    detect_dynamic_elements: bool = Field(True, description="Emit ignore selectors for dynamic elements")
    dynamic_threshold: float = Field(50.0, description="Flakiness score marking an element dynamic")

    # Logging
    log_level: str = Field("INFO", description="Log level")
    log_json: bool = Field(False, description="Render logs as JSON")


def get_settings() -> Settings:
    """Get engine settings."""
    return Settings()
