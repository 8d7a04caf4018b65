import math
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal

from statement_auditor.core import settings
from statement_auditor.errors import ConfigurationError
from statement_auditor.logger import get_logger
from statement_auditor.models import AnalysisConfig, AnomalyType, DetectionThresholds

ValueType = Literal["int", "float", "bool"]

logger = get_logger(__name__)

WEIGHT_SUM_TOLERANCE = 1e-6


@dataclass(frozen=True)
class ConfigField:
    key: str
    label: str
    description: str
    path: tuple[str, str]
    category: str
    value_type: ValueType = "float"
    min_value: float | int | None = None
    max_value: float | int | None = None
    min_exclusive: bool = False


THRESHOLD_FIELDS: tuple[ConfigField, ...] = (
    ConfigField(
        key="SIMILARITY_WEIGHT_AMOUNT",
        label="Amount weight",
        description="Share of the composite score taken by amount similarity.",
        path=("similarity", "amount"),
        category="Similarity",
        min_value=0.0,
        max_value=1.0,
    ),
    ConfigField(
        key="SIMILARITY_WEIGHT_TEXT",
        label="Text weight",
        description="Share of the composite score taken by description similarity.",
        path=("similarity", "text"),
        category="Similarity",
        min_value=0.0,
        max_value=1.0,
    ),
    ConfigField(
        key="SIMILARITY_WEIGHT_TIME",
        label="Time weight",
        description="Share of the composite score taken by temporal proximity.",
        path=("similarity", "time"),
        category="Similarity",
        min_value=0.0,
        max_value=1.0,
    ),
    ConfigField(
        key="DUPLICATE_SIMILARITY_THRESHOLD",
        label="Duplicate similarity threshold",
        description="Minimum composite score for two fees to be duplicates.",
        path=("duplicate", "similarity_threshold"),
        category="Duplicates",
        min_value=0.0,
        max_value=1.0,
    ),
    ConfigField(
        key="DUPLICATE_TIME_WINDOW_DAYS",
        label="Duplicate time window",
        description="Maximum number of days between two duplicate fees.",
        path=("duplicate", "time_window_days"),
        category="Duplicates",
        value_type="int",
        min_value=0,
    ),
    ConfigField(
        key="DUPLICATE_AMOUNT_TOLERANCE",
        label="Duplicate amount tolerance",
        description="Relative amount difference still considered identical.",
        path=("duplicate", "amount_tolerance"),
        category="Duplicates",
        min_value=0.0,
        max_value=1.0,
    ),
    ConfigField(
        key="DUPLICATE_HALF_LIFE_DAYS",
        label="Temporal half-life",
        description="Days after which the temporal weight halves.",
        path=("duplicate", "half_life_days"),
        category="Duplicates",
        min_value=0.0,
        min_exclusive=True,
    ),
    ConfigField(
        key="GHOST_ENTROPY_THRESHOLD",
        label="Ghost fee entropy threshold",
        description="Descriptions at or above this entropy are never ghost fees.",
        path=("ghost_fee", "entropy_threshold"),
        category="Ghost fees",
        min_value=0.0,
        min_exclusive=True,
    ),
    ConfigField(
        key="GHOST_ORPHAN_WINDOW_DAYS",
        label="Orphan window",
        description="Days searched around a fee for its underlying service.",
        path=("ghost_fee", "orphan_window_days"),
        category="Ghost fees",
        value_type="int",
        min_value=0,
    ),
    ConfigField(
        key="GHOST_MIN_CONFIDENCE",
        label="Ghost fee minimum confidence",
        description="Minimum weighted suspicion before a ghost fee is reported.",
        path=("ghost_fee", "min_confidence"),
        category="Ghost fees",
        min_value=0.0,
        max_value=1.0,
    ),
    ConfigField(
        key="GHOST_RECURRENCE_WINDOW_MONTHS",
        label="Recurrence window",
        description="Months around a fee searched for recurrences of the same fee code.",
        path=("ghost_fee", "recurrence_window_months"),
        category="Ghost fees",
        value_type="int",
        min_value=1,
    ),
    ConfigField(
        key="GHOST_MIN_RECURRENCES",
        label="Minimum recurrences",
        description="Occurrences of the same fee code required inside the window.",
        path=("ghost_fee", "min_recurrences"),
        category="Ghost fees",
        value_type="int",
        min_value=1,
    ),
    ConfigField(
        key="OVERCHARGE_TOLERANCE",
        label="Overcharge tolerance",
        description="Relative margin above the expected fee before flagging.",
        path=("overcharge", "tolerance_percentage"),
        category="Overcharges",
        min_value=0.0,
    ),
    ConfigField(
        key="OVERCHARGE_USE_HISTORICAL_BASELINE",
        label="Use historical baseline",
        description="Fall back to past charges when no tariff covers a fee.",
        path=("overcharge", "use_historical_baseline"),
        category="Overcharges",
        value_type="bool",
    ),
    ConfigField(
        key="OVERCHARGE_BASELINE_STATEMENTS",
        label="Baseline statements",
        description="Number of prior monthly statements averaged for the baseline.",
        path=("overcharge", "baseline_statements"),
        category="Overcharges",
        value_type="int",
        min_value=1,
    ),
    ConfigField(
        key="INTEREST_TOLERANCE_AMOUNT",
        label="Interest tolerance (amount)",
        description="Absolute difference tolerated on recomputed interest.",
        path=("interest", "tolerance_amount"),
        category="Interest",
        min_value=0.0,
    ),
    ConfigField(
        key="INTEREST_TOLERANCE_PERCENTAGE",
        label="Interest tolerance (relative)",
        description="Relative difference tolerated on recomputed interest.",
        path=("interest", "tolerance_percentage"),
        category="Interest",
        min_value=0.0,
        max_value=1.0,
    ),
    ConfigField(
        key="INTEREST_REPORT_UNDERCHARGES",
        label="Report undercharged interest",
        description="Also report interest charged below the recomputed amount.",
        path=("interest", "report_undercharges"),
        category="Interest",
        value_type="bool",
    ),
    ConfigField(
        key="VALUE_DATE_MAX_CREDIT_DAYS",
        label="Maximum credit value days",
        description="Business days a credit may be value-dated after booking.",
        path=("value_date", "max_credit_value_days"),
        category="Value dates",
        value_type="int",
        min_value=0,
    ),
    ConfigField(
        key="VALUE_DATE_MAX_DEBIT_BACKDATE_DAYS",
        label="Maximum debit backdating",
        description="Business days a debit may be value-dated before booking.",
        path=("value_date", "max_debit_backdate_days"),
        category="Value dates",
        value_type="int",
        min_value=0,
    ),
)


def _check_bounds(field: ConfigField, value: float | int) -> str | None:
    if not math.isfinite(value):
        return "Must be a finite number."
    if field.min_value is not None:
        if field.min_exclusive and value <= field.min_value:
            return f"Must be greater than {field.min_value}."
        if value < field.min_value:
            return f"Must be at least {field.min_value}."
    if field.max_value is not None and value > field.max_value:
        return f"Must be at most {field.max_value}."
    return None


def _validate_value(field: ConfigField, raw_value: str) -> tuple[Any, str | None]:
    value = raw_value.strip()

    if field.value_type == "bool":
        lowered = value.lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True, None
        if lowered in {"0", "false", "no", "off"}:
            return False, None
        return value, "Must be true or false."

    if field.value_type == "int":
        try:
            parsed: float | int = int(value)
        except ValueError:
            return value, "Must be a whole number."
    else:
        try:
            parsed = float(value)
        except ValueError:
            return value, "Must be a number."

    error = _check_bounds(field, parsed)
    if error:
        return value, error
    return parsed, None


def load_thresholds(values: Mapping[str, str] | None = None) -> DetectionThresholds:
    """
    Build thresholds from ``values`` (the process environment by default).

    Unset keys keep their defaults. Every invalid key is reported at once
    through a single ConfigurationError.
    """
    source = os.environ if values is None else values
    errors: dict[str, str] = {}
    sections: dict[str, dict[str, Any]] = {}

    for field in THRESHOLD_FIELDS:
        raw_value = source.get(field.key)
        if raw_value is None or not raw_value.strip():
            continue
        parsed, error = _validate_value(field, raw_value)
        if error:
            errors[field.key] = error
            continue
        section, name = field.path
        sections.setdefault(section, {})[name] = parsed

    if errors:
        raise ConfigurationError(errors)

    defaults = DetectionThresholds()
    updates = {
        section: getattr(defaults, section).model_copy(update=overrides)
        for section, overrides in sections.items()
    }
    thresholds = defaults.model_copy(update=updates)
    validate_thresholds(thresholds)
    return thresholds


def validate_thresholds(thresholds: DetectionThresholds) -> None:
    errors: dict[str, str] = {}
    for field in THRESHOLD_FIELDS:
        section, name = field.path
        value = getattr(getattr(thresholds, section), name)
        if field.value_type == "bool":
            continue
        error = _check_bounds(field, value)
        if error:
            errors[field.key] = error

    weights = thresholds.similarity
    total = weights.amount + weights.text + weights.time
    if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
        errors["SIMILARITY_WEIGHTS"] = f"Weights must sum to 1 (got {total:.4f})."

    if errors:
        raise ConfigurationError(errors)


def load_enabled_detectors(values: Mapping[str, str] | None = None) -> frozenset[AnomalyType]:
    source = os.environ if values is None else values
    raw = source.get("ENABLED_DETECTORS")
    if not raw or not raw.strip():
        return AnalysisConfig().enabled_detectors

    enabled: set[AnomalyType] = set()
    unknown: list[str] = []
    for name in (item.strip().upper() for item in raw.split(",")):
        if not name:
            continue
        try:
            enabled.add(AnomalyType(name))
        except ValueError:
            unknown.append(name)
    if unknown:
        allowed = ", ".join(member.value for member in AnomalyType)
        raise ConfigurationError({"ENABLED_DETECTORS": f"Unknown detector(s) {', '.join(unknown)}; expected {allowed}."})
    return frozenset(enabled)


def validate_analysis_config(config: AnalysisConfig) -> None:
    validate_thresholds(config.thresholds)
    errors: dict[str, str] = {}
    if not config.enabled_detectors:
        errors["ENABLED_DETECTORS"] = "At least one detector must be enabled."
    if config.start_date and config.end_date and config.start_date > config.end_date:
        errors["DATE_RANGE"] = "Start date must not be after end date."
    if config.review_timeout_seconds <= 0:
        errors["AI_REVIEW_TIMEOUT"] = "Must be greater than 0."
    if errors:
        raise ConfigurationError(errors)


def build_analysis_config(**overrides: Any) -> AnalysisConfig:
    """Assemble an AnalysisConfig from the environment, then apply ``overrides``."""
    config = AnalysisConfig(
        thresholds=load_thresholds(),
        enabled_detectors=load_enabled_detectors(),
        parallel=settings.get_env_bool("PARALLEL_DETECTORS", False),
        review_timeout_seconds=settings.get_env_float(
            "AI_REVIEW_TIMEOUT", settings.DEFAULT_REVIEW_TIMEOUT_SECONDS
        ),
    )
    if overrides:
        config = config.model_copy(update=overrides)
    logger.debug("[CONFIG] Analysis config built: %s", config.model_dump(mode="json"))
    return config


def _group_fields() -> list[tuple[str, list[ConfigField]]]:
    categories: list[str] = []
    grouped: dict[str, list[ConfigField]] = {}
    for field in THRESHOLD_FIELDS:
        if field.category not in grouped:
            grouped[field.category] = []
            categories.append(field.category)
        grouped[field.category].append(field)
    return [(category, grouped[category]) for category in categories]


def build_threshold_context(thresholds: DetectionThresholds | None = None) -> dict[str, object]:
    """Describe every threshold with its current value, grouped by category."""
    thresholds = thresholds or load_thresholds()
    sections: list[dict[str, object]] = []
    env_override_count = 0

    for category, fields in _group_fields():
        section_fields: list[dict[str, object]] = []
        for field in fields:
            env_override = settings.is_env_override(field.key)
            if env_override:
                env_override_count += 1
            section, name = field.path
            section_fields.append(
                {
                    "key": field.key,
                    "label": field.label,
                    "description": field.description,
                    "value": getattr(getattr(thresholds, section), name),
                    "value_type": field.value_type,
                    "min_value": field.min_value,
                    "max_value": field.max_value,
                    "env_override": env_override,
                }
            )
        sections.append({"name": category, "fields": section_fields})

    return {
        "config_path": settings.get_config_path() or "Not configured",
        "sections": sections,
        "env_override_count": env_override_count,
    }
