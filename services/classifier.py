"""Deterministic risk-tier classification for sensor readings.

Two policies exist because the table/export views and the map markers use
different granularities. Callers pick one explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Protocol, Union

from models.records import ReadingDraft, RiskTier, SensorReading

DEFAULT_PH = 7.0
DEFAULT_TDS = 300.0

Classifiable = Union[SensorReading, ReadingDraft]


class RiskPolicy(Protocol):
    name: str

    def classify(self, reading: Classifiable) -> RiskTier:
        ...


def _ph_and_tds(reading: Classifiable) -> tuple[float, float]:
    # Defaults apply to classification only; the reading itself is untouched.
    ph = reading.ph_level if reading.ph_level is not None else DEFAULT_PH
    tds = reading.tds_level if reading.tds_level is not None else DEFAULT_TDS
    return ph, tds


@dataclass(frozen=True)
class ThreeTierPolicy:
    """low / medium / high tiers used by tables, exports and source cards."""

    name: str = "three_tier"

    def classify(self, reading: Classifiable) -> RiskTier:
        ph, tds = _ph_and_tds(reading)
        if ph < 6.5 or ph > 8.5 or tds > 1000:
            return RiskTier.high
        if ph < 7.0 or ph > 8.0 or tds > 500:
            return RiskTier.medium
        return RiskTier.low


@dataclass(frozen=True)
class TwoTierPolicy:
    """low / high tiers used for map-marker colouring."""

    name: str = "two_tier"

    def classify(self, reading: Classifiable) -> RiskTier:
        ph, tds = _ph_and_tds(reading)
        if 6.5 <= ph <= 8.5 and tds < 500:
            return RiskTier.low
        return RiskTier.high


THREE_TIER = ThreeTierPolicy()
TWO_TIER = TwoTierPolicy()

_POLICIES: Dict[str, RiskPolicy] = {
    THREE_TIER.name: THREE_TIER,
    TWO_TIER.name: TWO_TIER,
}


def get_policy(name: str) -> RiskPolicy:
    try:
        return _POLICIES[name.strip().lower()]
    except KeyError as exc:
        raise ValueError(
            f"Unknown risk policy {name!r}; expected one of {', '.join(sorted(_POLICIES))}."
        ) from exc


def classify(reading: Classifiable, policy: RiskPolicy = THREE_TIER) -> RiskTier:
    """Return the risk tier of ``reading`` under ``policy``."""
    return policy.classify(reading)
