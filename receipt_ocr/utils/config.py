"""Configuration management for the receipt OCR pipeline.

Loads and validates YAML configuration with sensible defaults
for preprocessing, OCR, and field extraction settings.
"""

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


class PreprocessingConfig(BaseModel):
    """Configuration for the image preprocessing passes."""

    contrast_factor: float = 1.5
    sharpen_enabled: bool = True
    perspective_enabled: bool = True
    min_quad_area_ratio: float = 0.25
    adaptive_block_size: int = 31
    adaptive_c: int = 10
    scratch_dir: str | None = None

    @field_validator("adaptive_block_size")
    @classmethod
    def _odd_block_size(cls, value: int) -> int:
        if value < 3 or value % 2 == 0:
            raise ValueError("adaptive_block_size must be an odd number >= 3")
        return value


class OCRConfig(BaseModel):
    """Configuration for the Tesseract engine and pipeline time budgets."""

    tesseract_cmd: str | None = None
    default_lang: str = "eng"
    psm: int = 6
    tessdata_dir: str | None = None
    language_asset_dir: str | None = None
    standard_timeout_s: float = 10.0
    enhanced_timeout_s: float = 15.0
    max_workers: int = 2


class ExtractionConfig(BaseModel):
    """Configuration for amount, date, and merchant extraction."""

    decimal_separator: str = "auto"
    day_first: bool = True
    standard_validation_years: int = 1
    date_validation_years: int = 3
    multi_pass_threshold: float = 0.7
    multi_pass_rotations: list[int] = Field(default_factory=lambda: [90, 180, 270])
    merchant_match_threshold: float = 0.7
    max_merchant_lines: int = 10
    extra_merchants: list[str] = Field(default_factory=list)

    @field_validator("decimal_separator")
    @classmethod
    def _known_separator(cls, value: str) -> str:
        if value not in ("auto", ".", ","):
            raise ValueError("decimal_separator must be 'auto', '.' or ','")
        return value

    @field_validator("multi_pass_rotations")
    @classmethod
    def _right_angle_rotations(cls, value: list[int]) -> list[int]:
        unsupported = [r for r in value if r not in (90, 180, 270)]
        if unsupported:
            raise ValueError(
                f"multi_pass_rotations must be 90, 180 or 270, got {unsupported}"
            )
        return value


class AppConfig(BaseModel):
    """Top-level application configuration."""

    preprocessing: PreprocessingConfig = Field(default_factory=PreprocessingConfig)
    ocr: OCRConfig = Field(default_factory=OCRConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    log_level: str = "INFO"


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file.
            Defaults to configs/config.yaml.

    Returns:
        Validated application configuration.
    """
    if path is None:
        path = Path("configs/config.yaml")

    if path.exists():
        logger.info("Loading configuration from %s", path)
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        return AppConfig(**raw)

    logger.info("No config file found at %s, using defaults", path)
    return AppConfig()
