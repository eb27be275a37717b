"""Manual entry, community CSV import and community reports."""

from __future__ import annotations

import csv
import io
import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Dict, Optional

from app.schemas import ImportResult, ImportRowError, ImportStatus, ReportCreate
from datastore.readings_store import ReadingStore, build_default_store
from models.records import PARAMETERS, CommunityReport, Parameter, ReadingDraft, SensorReading
from services.errors import ValidationError
from services.validation import parse_severity, validate_draft

logger = logging.getLogger(__name__)

_SOURCE_COLUMNS = ("water_source_id", "source_id")
_TIMESTAMP_COLUMNS = ("created_at", "timestamp")


class ReadingProcessor:
    """Validates incoming readings before they reach the store."""

    def __init__(self, store: ReadingStore, require_source: bool = True) -> None:
        self.store = store
        self.require_source = require_source

    def submit(self, draft: ReadingDraft) -> SensorReading:
        """Validate and store one manually entered reading.

        Raises ``ValidationError`` on missing fields or out-of-range values.
        """
        try:
            validate_draft(draft, require_source=self.require_source)
        except ValidationError as exc:
            logger.warning(
                "Rejected reading: %s",
                exc.message,
                extra={"source_id": draft.source_id, "reason": exc.field},
            )
            raise
        return self.store.insert(draft)

    def submit_report(self, payload: ReportCreate) -> CommunityReport:
        """Validate and store a community report.

        Description, severity and reporter name are required; notes are not.
        """
        try:
            for name in ("description", "reported_by"):
                if not getattr(payload, name).strip():
                    raise ValidationError(f"Missing required field: {name}", field=name)
            severity = parse_severity(payload.severity)
        except ValidationError as exc:
            logger.warning("Rejected community report: %s", exc.message, extra={"reason": exc.field})
            raise
        notes = (payload.notes or "").strip() or None
        return self.store.add_report(
            description=payload.description.strip(),
            severity=severity,
            reported_by=payload.reported_by.strip(),
            notes=notes,
        )

    def import_csv(self, contents: bytes | str) -> ImportResult:
        """Import a community CSV, skipping rows that fail validation."""
        if isinstance(contents, bytes):
            try:
                contents = contents.decode("utf-8-sig")
            except UnicodeDecodeError as exc:
                raise ValidationError("File is not valid UTF-8.") from exc
        if not contents.strip():
            raise ValidationError("Uploaded file is empty.")

        reader = csv.DictReader(io.StringIO(contents))
        if not reader.fieldnames:
            raise ValidationError("CSV file is missing a header row.")

        normalized = {name.lower().strip(): name for name in reader.fieldnames if name}
        if "location" not in normalized:
            return ImportResult(
                status=ImportStatus.failed,
                imported_count=0,
                errors=[ImportRowError(row_number=1, reason="CSV missing required columns: location")],
            )

        source_col = _first_present(normalized, _SOURCE_COLUMNS)
        timestamp_col = _first_present(normalized, _TIMESTAMP_COLUMNS)
        parameter_cols = {
            parameter: normalized[parameter.value]
            for parameter in PARAMETERS
            if parameter.value in normalized
        }

        errors: list[ImportRowError] = []
        reading_ids: list[int] = []
        for row_number, row in enumerate(reader, start=2):
            try:
                draft = self._parse_row(
                    row, normalized["location"], source_col, timestamp_col, parameter_cols
                )
                validate_draft(draft, require_source=False)
            except ValidationError as exc:
                logger.warning(
                    "Skipping row %s: %s",
                    row_number,
                    exc.message,
                    extra={"row_number": row_number, "reason": exc.message},
                )
                errors.append(ImportRowError(row_number=row_number, reason=exc.message))
                continue
            reading_ids.append(self.store.insert(draft).id)

        if not reading_ids and errors:
            status = ImportStatus.failed
        elif errors:
            status = ImportStatus.partial
        else:
            status = ImportStatus.processed

        logger.info(
            "CSV import finished",
            extra={
                "status": status.value,
                "row_count": len(reading_ids),
                "error_count": len(errors),
            },
        )
        return ImportResult(
            status=status,
            imported_count=len(reading_ids),
            reading_ids=reading_ids,
            errors=errors,
        )

    def _parse_row(
        self,
        row: Dict[str, Optional[str]],
        location_col: str,
        source_col: Optional[str],
        timestamp_col: Optional[str],
        parameter_cols: Dict[Parameter, str],
    ) -> ReadingDraft:
        location = (row.get(location_col) or "").strip()
        if not location:
            raise ValidationError("missing location", field="location")

        source_id: Optional[int] = None
        source_raw = (row.get(source_col) or "").strip() if source_col else ""
        if source_raw:
            try:
                source_id = int(source_raw)
            except ValueError as exc:
                raise ValidationError("invalid water_source_id", field="water_source_id") from exc

        timestamp: Optional[datetime] = None
        timestamp_raw = (row.get(timestamp_col) or "").strip() if timestamp_col else ""
        if timestamp_raw:
            try:
                timestamp = self._parse_timestamp(timestamp_raw)
            except ValueError as exc:
                raise ValidationError("invalid timestamp", field="created_at") from exc

        values: Dict[str, Optional[float]] = {}
        for parameter, column in parameter_cols.items():
            raw = (row.get(column) or "").strip()
            if not raw or raw.upper() == "N/A":
                continue
            try:
                values[parameter.value] = float(raw)
            except ValueError as exc:
                raise ValidationError(
                    f"invalid numeric value for {parameter.value}", field=parameter.value
                ) from exc

        return ReadingDraft(source_id=source_id, location=location, timestamp=timestamp, **values)

    @staticmethod
    def _parse_timestamp(value: str) -> datetime:
        candidate = value.strip()
        if not candidate:
            raise ValueError("Timestamp is empty.")

        if candidate.endswith("Z"):
            candidate = candidate[:-1] + "+00:00"

        try:
            parsed = datetime.fromisoformat(candidate)
        except ValueError as exc:
            raise ValueError("Invalid timestamp format") from exc

        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)

        return parsed.astimezone(timezone.utc)


def _first_present(normalized: Dict[str, str], candidates: tuple[str, ...]) -> Optional[str]:
    for name in candidates:
        if name in normalized:
            return normalized[name]
    return None


@lru_cache
def build_default_processor() -> ReadingProcessor:
    """Factory that wires the processor to the default store."""
    return ReadingProcessor(store=build_default_store())
