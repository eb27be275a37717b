"""Range checks applied to readings before they reach the store."""

from __future__ import annotations

from typing import Dict, Optional, Tuple

from models.records import Parameter, ReadingDraft, RiskTier
from services.errors import ValidationError

PARAMETER_RANGES: Dict[Parameter, Tuple[float, float]] = {
    Parameter.ph_level: (0.0, 14.0),
    Parameter.turbidity: (0.0, 1000.0),
    Parameter.temperature: (-10.0, 50.0),
    Parameter.bacterial_count: (0.0, 10000.0),
    Parameter.dissolved_oxygen: (0.0, 20.0),
    Parameter.chlorine_level: (0.0, 10.0),
    Parameter.tds_level: (0.0, 3000.0),
}

PARAMETER_LABELS: Dict[Parameter, str] = {
    Parameter.ph_level: "pH Level",
    Parameter.turbidity: "Turbidity",
    Parameter.temperature: "Temperature",
    Parameter.bacterial_count: "Bacterial Count",
    Parameter.dissolved_oxygen: "Dissolved Oxygen",
    Parameter.chlorine_level: "Chlorine Level",
    Parameter.tds_level: "TDS Level",
}


def validate_draft(draft: ReadingDraft, require_source: bool = True) -> ReadingDraft:
    """Reject drafts with missing required fields or out-of-range values.

    Values are never clamped; the first violation raises ``ValidationError``.
    """
    if require_source and draft.source_id is None:
        raise ValidationError("Missing required field: water_source_id", field="water_source_id")
    if not draft.location or not draft.location.strip():
        raise ValidationError("Missing required field: location", field="location")

    for parameter, (low, high) in PARAMETER_RANGES.items():
        value = draft.value(parameter)
        if value is None:
            continue
        if value != value or value < low or value > high:
            raise ValidationError(
                f"{PARAMETER_LABELS[parameter]} must be between {low:g} and {high:g}",
                field=parameter.value,
            )
    return draft


def parse_severity(value: Optional[str]) -> RiskTier:
    """Map a submitted severity onto a tier; blank or unknown values are rejected."""
    candidate = (value or "").strip().lower()
    if not candidate:
        raise ValidationError("Missing required field: severity", field="severity")
    try:
        return RiskTier(candidate)
    except ValueError as exc:
        raise ValidationError(
            "Severity must be one of: low, medium, high", field="severity"
        ) from exc
