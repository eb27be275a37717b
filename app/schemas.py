"""Pydantic schemas shared by the services and the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from models.records import (
    CommunityReport,
    ReadingDraft,
    RiskTier,
    SensorReading,
    SourceStatus,
    WaterSource,
)


class AnalysisStatus(str, Enum):
    """Terminal states of one orchestration."""

    succeeded = "succeeded"
    fallback_applied = "fallback_applied"
    failed = "failed"


class ImportStatus(str, Enum):
    processed = "processed"
    partial = "partial"
    failed = "failed"


class AnalysisResult(BaseModel):
    """Bilingual narrative returned by the language model."""

    causes_en: str
    precautions_en: str
    causes_te: str
    precautions_te: str
    risk_level: RiskTier
    confidence: Optional[float] = Field(
        default=None, ge=0, le=100, description="Model-reported confidence in percent, if any."
    )


class AnalysisOutcome(BaseModel):
    """Result of one orchestration for one reading."""

    status: AnalysisStatus
    reading_id: int
    result: Optional[AnalysisResult] = None
    error: Optional[str] = None
    latency_ms: Optional[int] = Field(
        default=None, description="Duration of the completion call in milliseconds."
    )
    completed_at: datetime


class ReadingRecord(BaseModel):
    """Serialized form of a stored sensor reading."""

    id: int
    water_source_id: Optional[int] = None
    location: str
    created_at: datetime
    ph_level: Optional[float] = None
    turbidity: Optional[float] = None
    temperature: Optional[float] = None
    bacterial_count: Optional[float] = None
    dissolved_oxygen: Optional[float] = None
    chlorine_level: Optional[float] = None
    tds_level: Optional[float] = None

    @classmethod
    def from_reading(cls, reading: SensorReading) -> "ReadingRecord":
        return cls(
            id=reading.id,
            water_source_id=reading.source_id,
            location=reading.location,
            created_at=reading.timestamp,
            ph_level=reading.ph_level,
            turbidity=reading.turbidity,
            temperature=reading.temperature,
            bacterial_count=reading.bacterial_count,
            dissolved_oxygen=reading.dissolved_oxygen,
            chlorine_level=reading.chlorine_level,
            tds_level=reading.tds_level,
        )

    def to_reading(self) -> SensorReading:
        return SensorReading(
            id=self.id,
            source_id=self.water_source_id,
            location=self.location,
            timestamp=self.created_at,
            ph_level=self.ph_level,
            turbidity=self.turbidity,
            temperature=self.temperature,
            bacterial_count=self.bacterial_count,
            dissolved_oxygen=self.dissolved_oxygen,
            chlorine_level=self.chlorine_level,
            tds_level=self.tds_level,
        )


class ReadingView(ReadingRecord):
    """A reading as listed by the API, tagged with its classifier tier."""

    risk_level: RiskTier


class ReadingCreate(BaseModel):
    """Manual data-entry payload; range checks happen in the processor."""

    water_source_id: Optional[int] = None
    location: str = ""
    created_at: Optional[datetime] = None
    ph_level: Optional[float] = None
    turbidity: Optional[float] = None
    temperature: Optional[float] = None
    bacterial_count: Optional[float] = None
    dissolved_oxygen: Optional[float] = None
    chlorine_level: Optional[float] = None
    tds_level: Optional[float] = None

    def to_draft(self) -> ReadingDraft:
        return ReadingDraft(
            source_id=self.water_source_id,
            location=self.location,
            timestamp=self.created_at,
            ph_level=self.ph_level,
            turbidity=self.turbidity,
            temperature=self.temperature,
            bacterial_count=self.bacterial_count,
            dissolved_oxygen=self.dissolved_oxygen,
            chlorine_level=self.chlorine_level,
            tds_level=self.tds_level,
        )


class SourceRecord(BaseModel):
    id: int
    name: str
    location: str
    status: SourceStatus = SourceStatus.active
    source_type: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @classmethod
    def from_source(cls, source: WaterSource) -> "SourceRecord":
        return cls(
            id=source.id,
            name=source.name,
            location=source.location,
            status=source.status,
            source_type=source.source_type,
            latitude=source.latitude,
            longitude=source.longitude,
        )

    def to_source(self) -> WaterSource:
        return WaterSource(
            id=self.id,
            name=self.name,
            location=self.location,
            status=self.status,
            source_type=self.source_type,
            latitude=self.latitude,
            longitude=self.longitude,
        )


class SourceCreate(BaseModel):
    name: str = Field(..., min_length=1)
    location: str = Field(..., min_length=1)
    status: SourceStatus = SourceStatus.active
    source_type: Optional[str] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)


class ReportRecord(BaseModel):
    """Serialized form of a stored community report."""

    id: int
    description: str
    severity: RiskTier
    reported_by: str
    notes: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_report(cls, report: CommunityReport) -> "ReportRecord":
        return cls(
            id=report.id,
            description=report.description,
            severity=report.severity,
            reported_by=report.reported_by,
            notes=report.notes,
            created_at=report.created_at,
        )

    def to_report(self) -> CommunityReport:
        return CommunityReport(
            id=self.id,
            description=self.description,
            severity=self.severity,
            reported_by=self.reported_by,
            notes=self.notes,
            created_at=self.created_at,
        )


class ReportCreate(BaseModel):
    """Community report payload; required fields are checked by the processor."""

    description: str = ""
    severity: Optional[str] = None
    reported_by: str = ""
    notes: Optional[str] = None


class ParameterStatsResponse(BaseModel):
    count: int = Field(..., ge=0)
    mean: Optional[float] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    available: bool


class SummaryResponse(BaseModel):
    reading_count: int = Field(..., ge=0)
    source_count: int = Field(..., ge=0)
    first_timestamp: Optional[datetime] = None
    last_timestamp: Optional[datetime] = None
    parameters: Dict[str, ParameterStatsResponse] = Field(default_factory=dict)


class SourceComparisonResponse(BaseModel):
    source_id: int
    name: str
    reading_count: int = Field(..., ge=0)
    latest_timestamp: Optional[datetime] = None
    means: Dict[str, Optional[float]] = Field(default_factory=dict)


class ChartPointResponse(BaseModel):
    label: str
    timestamp: datetime
    location: str
    values: Dict[str, Optional[float]] = Field(default_factory=dict)


class ImportRowError(BaseModel):
    """Details about a CSV row that was skipped during import."""

    row_number: int = Field(..., ge=1)
    reason: str


class ImportResult(BaseModel):
    status: ImportStatus
    imported_count: int = Field(..., ge=0)
    reading_ids: List[int] = Field(default_factory=list)
    errors: List[ImportRowError] = Field(default_factory=list)
