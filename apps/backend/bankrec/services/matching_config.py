"""Tuning knobs for matching, pattern learning and ledger tolerances."""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass, fields, replace
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from bankrec.logger import get_logger

logger = get_logger(__name__)

CONFIG_PATH = Path(__file__).resolve().parents[2] / "config" / "matching.yaml"


@dataclass(frozen=True)
class MatchingConfig:
    """Runtime configuration for the matching engine and reconciliation ledger."""

    weight_amount: Decimal
    weight_date: Decimal
    weight_description: Decimal
    weight_reference: Decimal
    auto_confirm_threshold: int
    tie_margin: int
    display_threshold: int
    exact_threshold: int
    high_threshold: int
    medium_threshold: int
    fuzzy_min_similarity: Decimal
    reference_exact_score: int
    reference_normalized_score: int
    pattern_initial_strength: int
    pattern_strength_increment: int
    pattern_strength_decrement: int
    pattern_strength_max: int
    pattern_deactivation_floor: int
    pattern_template_similarity: Decimal
    pattern_recurring_months: int
    rounding_tolerance: int
    lookup_timeout_seconds: float


DEFAULT_CONFIG = MatchingConfig(
    weight_amount=Decimal("0.40"),
    weight_date=Decimal("0.20"),
    weight_description=Decimal("0.25"),
    weight_reference=Decimal("0.15"),
    auto_confirm_threshold=95,
    tie_margin=5,
    display_threshold=30,
    exact_threshold=100,
    high_threshold=85,
    medium_threshold=70,
    fuzzy_min_similarity=Decimal("0.80"),
    reference_exact_score=100,
    reference_normalized_score=90,
    pattern_initial_strength=10,
    pattern_strength_increment=10,
    pattern_strength_decrement=15,
    pattern_strength_max=100,
    pattern_deactivation_floor=5,
    pattern_template_similarity=Decimal("0.90"),
    pattern_recurring_months=3,
    rounding_tolerance=0,
    lookup_timeout_seconds=2.0,
)

# (section, key) in matching.yaml -> config field
_YAML_FIELDS: dict[tuple[str, str], str] = {
    ("weights", "amount"): "weight_amount",
    ("weights", "date"): "weight_date",
    ("weights", "description"): "weight_description",
    ("weights", "reference"): "weight_reference",
    ("thresholds", "auto_confirm"): "auto_confirm_threshold",
    ("thresholds", "tie_margin"): "tie_margin",
    ("thresholds", "display"): "display_threshold",
    ("confidence", "exact"): "exact_threshold",
    ("confidence", "high"): "high_threshold",
    ("confidence", "medium"): "medium_threshold",
    ("description", "fuzzy_min_similarity"): "fuzzy_min_similarity",
    ("reference", "exact_score"): "reference_exact_score",
    ("reference", "normalized_score"): "reference_normalized_score",
    ("patterns", "initial_strength"): "pattern_initial_strength",
    ("patterns", "strength_increment"): "pattern_strength_increment",
    ("patterns", "strength_decrement"): "pattern_strength_decrement",
    ("patterns", "strength_max"): "pattern_strength_max",
    ("patterns", "deactivation_floor"): "pattern_deactivation_floor",
    ("patterns", "template_similarity"): "pattern_template_similarity",
    ("patterns", "recurring_months"): "pattern_recurring_months",
    ("ledger", "rounding_tolerance"): "rounding_tolerance",
    ("collaborators", "lookup_timeout_seconds"): "lookup_timeout_seconds",
}

_ENV_OVERRIDES: dict[str, str] = {
    "BANKREC_AUTO_CONFIRM_THRESHOLD": "auto_confirm_threshold",
    "BANKREC_TIE_MARGIN": "tie_margin",
    "BANKREC_DISPLAY_THRESHOLD": "display_threshold",
    "BANKREC_PATTERN_STRENGTH_INCREMENT": "pattern_strength_increment",
    "BANKREC_PATTERN_STRENGTH_DECREMENT": "pattern_strength_decrement",
    "BANKREC_PATTERN_DEACTIVATION_FLOOR": "pattern_deactivation_floor",
    "BANKREC_FUZZY_MIN_SIMILARITY": "fuzzy_min_similarity",
    "BANKREC_ROUNDING_TOLERANCE": "rounding_tolerance",
    "BANKREC_LOOKUP_TIMEOUT_SECONDS": "lookup_timeout_seconds",
}

_CASTS: dict[type, Callable[[Any], Any]] = {
    Decimal: lambda value: Decimal(str(value)),
    int: int,
    float: float,
}

_FIELD_TYPES: dict[str, type] = {
    field.name: type(getattr(DEFAULT_CONFIG, field.name)) for field in fields(MatchingConfig)
}

_config_cache: MatchingConfig | None = None


def _coerce(field_name: str, value: Any) -> Any:
    return _CASTS[_FIELD_TYPES[field_name]](value)


def _apply_yaml(config: MatchingConfig, raw: dict[str, Any]) -> MatchingConfig:
    updates: dict[str, Any] = {}
    for (section, key), field_name in _YAML_FIELDS.items():
        section_values = raw.get(section) or {}
        if key in section_values:
            updates[field_name] = _coerce(field_name, section_values[key])
    return replace(config, **updates)


def load_matching_config(force_reload: bool = False, path: Path | None = None) -> MatchingConfig:
    """Load matching configuration from YAML, then apply environment overrides.

    Caches the result to avoid repeated disk I/O.
    """
    global _config_cache
    if _config_cache is not None and not force_reload:
        return _config_cache

    config = DEFAULT_CONFIG
    config_path = path or CONFIG_PATH

    if config_path.exists():
        try:
            raw = yaml.safe_load(config_path.read_text()) or {}
            config = _apply_yaml(config, raw)
        except (yaml.YAMLError, AttributeError, ValueError, TypeError, ArithmeticError) as e:
            logger.warning(
                "Failed to load matching config - using defaults",
                config_path=str(config_path),
                error=str(e),
                error_type=type(e).__name__,
            )
            config = DEFAULT_CONFIG

    for env_name, field_name in _ENV_OVERRIDES.items():
        raw_value = os.getenv(env_name)
        if raw_value:
            config = replace(config, **{field_name: _coerce(field_name, raw_value)})

    _config_cache = config
    return config
