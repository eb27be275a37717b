from __future__ import annotations

import json
import logging
from dataclasses import replace
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional

from app.schemas import ReadingRecord, ReportRecord, SourceRecord
from datastore.feed import ReadingFeed
from models.records import (
    CommunityReport,
    ReadingDraft,
    RiskTier,
    SensorReading,
    SourceStatus,
    WaterSource,
)
from settings import get_settings

logger = logging.getLogger(__name__)


class ReadingStore:
    """Readings and water sources, optionally persisted to a JSON file.

    Every successful ``insert`` is published on ``feed``.
    """

    def __init__(
        self,
        persistence_path: Optional[Path] = None,
        feed: Optional[ReadingFeed] = None,
    ) -> None:
        self.persistence_path = persistence_path
        self.feed = feed or ReadingFeed()
        self._readings: List[SensorReading] = []
        self._sources: Dict[int, WaterSource] = {}
        self._reports: List[CommunityReport] = []
        self._next_reading_id = 1
        self._next_source_id = 1
        self._next_report_id = 1
        self._lock = Lock()
        # Held across publish so listeners see inserts in order.
        self._insert_lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def insert(self, draft: ReadingDraft) -> SensorReading:
        """Store a reading and notify feed subscribers."""
        with self._insert_lock:
            with self._lock:
                reading = SensorReading(
                    id=self._next_reading_id,
                    source_id=draft.source_id,
                    location=draft.location.strip(),
                    timestamp=_normalize_timestamp(draft.timestamp),
                    ph_level=draft.ph_level,
                    turbidity=draft.turbidity,
                    temperature=draft.temperature,
                    bacterial_count=draft.bacterial_count,
                    dissolved_oxygen=draft.dissolved_oxygen,
                    chlorine_level=draft.chlorine_level,
                    tds_level=draft.tds_level,
                )
                self._next_reading_id += 1
                self._readings.append(reading)
                self._persist()

            logger.info(
                "Reading stored",
                extra={"reading_id": reading.id, "source_id": reading.source_id},
            )
            self.feed.publish(reading)
        return reading

    def query(
        self, source_id: Optional[int] = None, limit: Optional[int] = None
    ) -> List[SensorReading]:
        """Return readings newest first, optionally for one source."""
        with self._lock:
            items = list(self._readings)
        if source_id is not None:
            items = [reading for reading in items if reading.source_id == source_id]
        items.sort(key=lambda reading: (reading.timestamp, reading.id), reverse=True)
        if limit is not None:
            items = items[:limit]
        return items

    def get(self, reading_id: int) -> Optional[SensorReading]:
        with self._lock:
            for reading in self._readings:
                if reading.id == reading_id:
                    return reading
        return None

    def add_source(
        self,
        name: str,
        location: str,
        status: SourceStatus = SourceStatus.active,
        source_type: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> WaterSource:
        with self._lock:
            source = WaterSource(
                id=self._next_source_id,
                name=name,
                location=location,
                status=status,
                source_type=source_type,
                latitude=latitude,
                longitude=longitude,
            )
            self._next_source_id += 1
            self._sources[source.id] = source
            self._persist()
        return source

    def set_source_status(self, source_id: int, status: SourceStatus) -> WaterSource:
        with self._lock:
            source = self._sources.get(source_id)
            if source is None:
                raise KeyError(f"Water source {source_id!r} not found.")
            updated = replace(source, status=status)
            self._sources[source_id] = updated
            self._persist()
        return updated

    def get_source(self, source_id: int) -> Optional[WaterSource]:
        with self._lock:
            return self._sources.get(source_id)

    def sources(self) -> Dict[int, WaterSource]:
        with self._lock:
            return dict(self._sources)

    def add_report(
        self,
        description: str,
        severity: RiskTier,
        reported_by: str,
        notes: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> CommunityReport:
        with self._lock:
            report = CommunityReport(
                id=self._next_report_id,
                description=description,
                severity=severity,
                reported_by=reported_by,
                notes=notes,
                created_at=_normalize_timestamp(created_at),
            )
            self._next_report_id += 1
            self._reports.append(report)
            self._persist()
        logger.info(
            "Community report stored",
            extra={"report_id": report.id, "severity": report.severity.value},
        )
        return report

    def reports(self) -> List[CommunityReport]:
        """Return community reports newest first."""
        with self._lock:
            items = list(self._reports)
        items.sort(key=lambda report: (report.created_at, report.id), reverse=True)
        return items

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = {
            "readings": [
                ReadingRecord.from_reading(reading).model_dump(mode="json")
                for reading in self._readings
            ],
            "sources": [
                SourceRecord.from_source(source).model_dump(mode="json")
                for source in self._sources.values()
            ],
            "reports": [
                ReportRecord.from_report(report).model_dump(mode="json")
                for report in self._reports
            ],
        }
        self.persistence_path.write_text(json.dumps(payload, indent=2, sort_keys=True))

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            logger.warning("Ignoring unreadable store file %s", self.persistence_path)
            data = {}

        for payload in data.get("readings", []):
            self._readings.append(ReadingRecord.model_validate(payload).to_reading())
        for payload in data.get("sources", []):
            source = SourceRecord.model_validate(payload).to_source()
            self._sources[source.id] = source
        for payload in data.get("reports", []):
            self._reports.append(ReportRecord.model_validate(payload).to_report())

        if self._readings:
            self._next_reading_id = max(reading.id for reading in self._readings) + 1
        if self._sources:
            self._next_source_id = max(self._sources) + 1
        if self._reports:
            self._next_report_id = max(report.id for report in self._reports) + 1


def _normalize_timestamp(value: Optional[datetime]) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@lru_cache
def build_default_store(path: Optional[str] = None) -> ReadingStore:
    settings = get_settings()
    store_path = settings.store_path if path is None else path
    persistence = Path(store_path) if store_path else None
    return ReadingStore(persistence_path=persistence)
