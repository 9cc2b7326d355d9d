"""Tuning for the transaction matcher and the recurring pattern engine.

Both configs are immutable and passed explicitly into each call. Defaults
can be overridden by config/engine.yaml and then by environment variables.
"""

import os
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from ledgermatch.logger import get_logger
from ledgermatch.services.errors import ValidationFailure

logger = get_logger(__name__)

CONFIG_PATH = Path(__file__).resolve().parents[2] / "config" / "engine.yaml"


@dataclass(frozen=True)
class MatchingConfig:
    """Runtime configuration for statement matching."""

    amount_tolerance: Decimal = Decimal("0.01")
    use_description_matching: bool = True
    use_date_range_matching: bool = True
    date_tolerance_days: int = 2
    # Wider window used only by the description-assisted tier
    description_window_days: int = 7
    description_similarity_threshold: float = 0.8
    # Window start when a session has no statement start date
    default_window_days: int = 30


@dataclass(frozen=True)
class DetectionConfig:
    """Runtime configuration for recurring pattern detection and lifecycle."""

    lookback_months: int = 6
    min_occurrences: int = 2
    min_confidence: float = 0.5
    merge_similarity_threshold: float = 0.8
    pattern_match_threshold: float = 0.8
    amount_tolerance_ratio: float = 0.2
    cancel_after_misses: int = 2


DEFAULT_MATCHING_CONFIG = MatchingConfig()
DEFAULT_DETECTION_CONFIG = DetectionConfig()

_matching_cache: MatchingConfig | None = None
_detection_cache: DetectionConfig | None = None


def validate_matching_config(config: MatchingConfig) -> MatchingConfig:
    """Reject malformed matching settings before any matching executes."""
    if config.amount_tolerance < 0:
        raise ValidationFailure("amount_tolerance must not be negative")
    if config.date_tolerance_days < 0:
        raise ValidationFailure("date_tolerance_days must not be negative")
    if config.description_window_days < 0:
        raise ValidationFailure("description_window_days must not be negative")
    if config.default_window_days < 0:
        raise ValidationFailure("default_window_days must not be negative")
    if not 0 <= config.description_similarity_threshold <= 1:
        raise ValidationFailure("description_similarity_threshold must be between 0 and 1")
    return config


def validate_detection_config(config: DetectionConfig) -> DetectionConfig:
    if config.lookback_months < 1:
        raise ValidationFailure("lookback_months must be at least 1")
    if config.min_occurrences < 2:
        raise ValidationFailure("min_occurrences must be at least 2")
    for name in ("min_confidence", "merge_similarity_threshold", "pattern_match_threshold"):
        value = getattr(config, name)
        if not 0 <= value <= 1:
            raise ValidationFailure(f"{name} must be between 0 and 1")
    if config.amount_tolerance_ratio < 0:
        raise ValidationFailure("amount_tolerance_ratio must not be negative")
    if config.cancel_after_misses < 1:
        raise ValidationFailure("cancel_after_misses must be at least 1")
    return config


def _read_yaml_section(section: str) -> dict[str, Any]:
    if not CONFIG_PATH.exists():
        return {}
    try:
        raw = yaml.safe_load(CONFIG_PATH.read_text()) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(
            "Failed to read engine config - using defaults",
            config_path=str(CONFIG_PATH),
            error=str(e),
            error_type=type(e).__name__,
        )
        return {}
    return raw.get(section) or {}


def load_matching_config(force_reload: bool = False) -> MatchingConfig:
    """Load matching configuration, cached after the first read."""
    global _matching_cache
    if _matching_cache is not None and not force_reload:
        return _matching_cache

    config = DEFAULT_MATCHING_CONFIG
    section = _read_yaml_section("matching")
    try:
        config = MatchingConfig(
            amount_tolerance=Decimal(str(section.get("amount_tolerance", config.amount_tolerance))),
            use_description_matching=bool(section.get("use_description_matching", config.use_description_matching)),
            use_date_range_matching=bool(section.get("use_date_range_matching", config.use_date_range_matching)),
            date_tolerance_days=int(section.get("date_tolerance_days", config.date_tolerance_days)),
            description_window_days=int(section.get("description_window_days", config.description_window_days)),
            description_similarity_threshold=float(
                section.get("description_similarity_threshold", config.description_similarity_threshold)
            ),
            default_window_days=int(section.get("default_window_days", config.default_window_days)),
        )
    except (InvalidOperation, TypeError, ValueError) as e:
        logger.warning(
            "Invalid matching config - using defaults",
            error=str(e),
            error_type=type(e).__name__,
        )
        config = DEFAULT_MATCHING_CONFIG

    tolerance_env = os.getenv("LEDGERMATCH_AMOUNT_TOLERANCE")
    date_days_env = os.getenv("LEDGERMATCH_DATE_TOLERANCE_DAYS")
    if tolerance_env:
        config = replace(config, amount_tolerance=Decimal(tolerance_env))
    if date_days_env:
        config = replace(config, date_tolerance_days=int(date_days_env))

    _matching_cache = validate_matching_config(config)
    return _matching_cache


def load_detection_config(force_reload: bool = False) -> DetectionConfig:
    """Load recurring detection configuration, cached after the first read."""
    global _detection_cache
    if _detection_cache is not None and not force_reload:
        return _detection_cache

    config = DEFAULT_DETECTION_CONFIG
    section = _read_yaml_section("recurring")
    try:
        config = DetectionConfig(
            lookback_months=int(section.get("lookback_months", config.lookback_months)),
            min_occurrences=int(section.get("min_occurrences", config.min_occurrences)),
            min_confidence=float(section.get("min_confidence", config.min_confidence)),
            merge_similarity_threshold=float(
                section.get("merge_similarity_threshold", config.merge_similarity_threshold)
            ),
            pattern_match_threshold=float(section.get("pattern_match_threshold", config.pattern_match_threshold)),
            amount_tolerance_ratio=float(section.get("amount_tolerance_ratio", config.amount_tolerance_ratio)),
            cancel_after_misses=int(section.get("cancel_after_misses", config.cancel_after_misses)),
        )
    except (TypeError, ValueError) as e:
        logger.warning(
            "Invalid recurring config - using defaults",
            error=str(e),
            error_type=type(e).__name__,
        )
        config = DEFAULT_DETECTION_CONFIG

    lookback_env = os.getenv("LEDGERMATCH_LOOKBACK_MONTHS")
    min_confidence_env = os.getenv("LEDGERMATCH_MIN_CONFIDENCE")
    if lookback_env:
        config = replace(config, lookback_months=int(lookback_env))
    if min_confidence_env:
        config = replace(config, min_confidence=float(min_confidence_env))

    _detection_cache = validate_detection_config(config)
    return _detection_cache
