"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class RiskTier(str, Enum):
    """Risk classification assigned to a reading."""

    low = "low"
    medium = "medium"
    high = "high"


class SourceStatus(str, Enum):
    active = "active"
    maintenance = "maintenance"
    inactive = "inactive"


class Parameter(str, Enum):
    """Numeric water-quality parameters carried by a reading."""

    ph_level = "ph_level"
    turbidity = "turbidity"
    temperature = "temperature"
    bacterial_count = "bacterial_count"
    dissolved_oxygen = "dissolved_oxygen"
    chlorine_level = "chlorine_level"
    tds_level = "tds_level"


PARAMETERS: tuple[Parameter, ...] = tuple(Parameter)


@dataclass(frozen=True, slots=True)
class SensorReading:
    """A single timestamped measurement set from a water source.

    Any parameter may be ``None`` when it was not measured.
    """

    id: int
    source_id: Optional[int]
    location: str
    timestamp: datetime
    ph_level: Optional[float] = None
    turbidity: Optional[float] = None
    temperature: Optional[float] = None
    bacterial_count: Optional[float] = None
    dissolved_oxygen: Optional[float] = None
    chlorine_level: Optional[float] = None
    tds_level: Optional[float] = None

    def value(self, parameter: Parameter | str) -> Optional[float]:
        return getattr(self, Parameter(parameter).value)


@dataclass(frozen=True, slots=True)
class ReadingDraft:
    """A reading awaiting validation and insertion into the store."""

    source_id: Optional[int]
    location: str
    timestamp: Optional[datetime] = None
    ph_level: Optional[float] = None
    turbidity: Optional[float] = None
    temperature: Optional[float] = None
    bacterial_count: Optional[float] = None
    dissolved_oxygen: Optional[float] = None
    chlorine_level: Optional[float] = None
    tds_level: Optional[float] = None

    def value(self, parameter: Parameter | str) -> Optional[float]:
        return getattr(self, Parameter(parameter).value)


@dataclass(frozen=True, slots=True)
class WaterSource:
    """A monitored physical water point."""

    id: int
    name: str
    location: str
    status: SourceStatus = SourceStatus.active
    source_type: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


@dataclass(frozen=True, slots=True)
class CommunityReport:
    """A resident's free-text account of a water-quality concern."""

    id: int
    description: str
    severity: RiskTier
    reported_by: str
    created_at: datetime
    notes: Optional[str] = None
