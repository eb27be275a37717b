"""Filtering, sorting and summary statistics over sensor readings."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

from models.records import PARAMETERS, Parameter, SensorReading, WaterSource
from services.classifier import THREE_TIER, RiskPolicy

ALL_SOURCES = "all"
UNKNOWN_SOURCE = "Unknown Source"
MISSING_VALUE = "N/A"

SourceFilter = Union[int, str]
DateBound = Union[date, datetime]

CSV_HEADERS = (
    "Date & Time",
    "Water Source",
    "Location",
    "pH Level",
    "Turbidity (NTU)",
    "Temperature (°C)",
    "Bacterial Count (CFU/ml)",
    "TDS (ppm)",
    "Dissolved Oxygen (mg/L)",
    "Chlorine (mg/L)",
    "Risk Level",
)

# Column order of the parameter cells in the export.
CSV_PARAMETERS = (
    Parameter.ph_level,
    Parameter.turbidity,
    Parameter.temperature,
    Parameter.bacterial_count,
    Parameter.tds_level,
    Parameter.dissolved_oxygen,
    Parameter.chlorine_level,
)

_SORT_ALIASES = {"created_at": "timestamp"}
_ORDERS = ("asc", "desc")


@dataclass(frozen=True)
class ReadingQuery:
    """Immutable filter/sort configuration for a reading view."""

    start: Optional[DateBound] = None
    end: Optional[DateBound] = None
    source_id: SourceFilter = ALL_SOURCES
    sort_field: str = "timestamp"
    order: str = "desc"


@dataclass
class ParameterStats:
    """Statistics for one parameter; ``None`` values mean unavailable."""

    count: int = 0
    mean: float | None = None
    min_value: float | None = None
    max_value: float | None = None

    @property
    def available(self) -> bool:
        return self.count > 0


@dataclass
class ReadingSummary:
    reading_count: int = 0
    source_count: int = 0
    first_timestamp: datetime | None = None
    last_timestamp: datetime | None = None
    parameters: Dict[Parameter, ParameterStats] = field(default_factory=dict)


@dataclass
class SourceComparison:
    source_id: int
    name: str
    reading_count: int = 0
    latest_timestamp: datetime | None = None
    means: Dict[Parameter, Optional[float]] = field(default_factory=dict)


@dataclass
class ChartPoint:
    label: str
    timestamp: datetime
    location: str
    values: Dict[Parameter, Optional[float]] = field(default_factory=dict)


def _as_datetime(bound: DateBound) -> datetime:
    if isinstance(bound, datetime):
        return bound if bound.tzinfo else bound.replace(tzinfo=timezone.utc)
    return datetime.combine(bound, time.min, tzinfo=timezone.utc)


def round_half_up(value: float, places: int) -> float:
    """Round halves away from zero on the exact binary value of ``value``.

    Matches ``Number.toFixed``: 7.25 rounds to 7.3 and 250.5 to 251.
    """
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(value).quantize(quantum, rounding=ROUND_HALF_UP))


def format_value(value: Optional[float]) -> str:
    if value is None:
        return MISSING_VALUE
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def locale_timestamp(moment: datetime) -> str:
    """Render ``moment`` the way an en-US ``toLocaleString`` does."""
    hour = moment.hour % 12 or 12
    meridiem = "AM" if moment.hour < 12 else "PM"
    return (
        f"{moment.month}/{moment.day}/{moment.year}, "
        f"{hour}:{moment.minute:02d}:{moment.second:02d} {meridiem}"
    )


def chart_label(moment: datetime) -> str:
    hour = moment.hour % 12 or 12
    meridiem = "AM" if moment.hour < 12 else "PM"
    return f"{moment.strftime('%b')} {moment.day}, {hour:02d}:{moment.minute:02d} {meridiem}"


def export_filename(today: date) -> str:
    return f"water_quality_data_{today.isoformat()}.csv"


def resolve_source_name(
    source_id: Optional[int], sources: Mapping[int, WaterSource]
) -> str:
    if source_id is None:
        return UNKNOWN_SOURCE
    source = sources.get(source_id)
    return source.name if source is not None else UNKNOWN_SOURCE


class AggregationEngine:
    """Pure view computations; inputs are never mutated."""

    def filter_by_date_range(
        self,
        readings: Iterable[SensorReading],
        start: Optional[DateBound] = None,
        end: Optional[DateBound] = None,
    ) -> List[SensorReading]:
        items = list(readings)
        # Filtering only applies when both bounds are supplied.
        if start is None or end is None:
            return items
        lower = _as_datetime(start)
        upper = _as_datetime(end)
        return [reading for reading in items if lower <= reading.timestamp <= upper]

    def filter_by_source(
        self, readings: Iterable[SensorReading], source_id: SourceFilter = ALL_SOURCES
    ) -> List[SensorReading]:
        items = list(readings)
        if source_id == ALL_SOURCES:
            return items
        wanted = str(source_id).strip()
        return [
            reading
            for reading in items
            if reading.source_id is not None and str(reading.source_id) == wanted
        ]

    def sort_by(
        self,
        readings: Iterable[SensorReading],
        field_name: str = "timestamp",
        order: str = "desc",
    ) -> List[SensorReading]:
        key_name = _SORT_ALIASES.get(field_name, field_name)
        if order not in _ORDERS:
            raise ValueError(f"Unsupported sort order {order!r}; expected 'asc' or 'desc'.")

        if key_name == "timestamp":
            def sort_key(reading: SensorReading):
                return reading.timestamp
        else:
            try:
                parameter = Parameter(key_name)
            except ValueError as exc:
                raise ValueError(f"Unsupported sort field {field_name!r}.") from exc

            def sort_key(reading: SensorReading):
                value = reading.value(parameter)
                return 0.0 if value is None else value

        return sorted(readings, key=sort_key, reverse=order == "desc")

    def apply(self, readings: Iterable[SensorReading], query: ReadingQuery) -> List[SensorReading]:
        filtered = self.filter_by_date_range(readings, query.start, query.end)
        filtered = self.filter_by_source(filtered, query.source_id)
        return self.sort_by(filtered, query.sort_field, query.order)

    def summarize(self, readings: Iterable[SensorReading]) -> ReadingSummary:
        summary = ReadingSummary(
            parameters={parameter: ParameterStats() for parameter in PARAMETERS}
        )
        totals = {parameter: 0.0 for parameter in PARAMETERS}
        sources: set[int] = set()

        for reading in readings:
            summary.reading_count += 1
            if reading.source_id is not None:
                sources.add(reading.source_id)
            if summary.first_timestamp is None or reading.timestamp < summary.first_timestamp:
                summary.first_timestamp = reading.timestamp
            if summary.last_timestamp is None or reading.timestamp > summary.last_timestamp:
                summary.last_timestamp = reading.timestamp

            for parameter in PARAMETERS:
                value = reading.value(parameter)
                if value is None:
                    continue
                stats = summary.parameters[parameter]
                stats.count += 1
                totals[parameter] += value
                if stats.min_value is None or value < stats.min_value:
                    stats.min_value = value
                if stats.max_value is None or value > stats.max_value:
                    stats.max_value = value

        for parameter, stats in summary.parameters.items():
            if stats.count:
                stats.mean = totals[parameter] / stats.count

        summary.source_count = len(sources)
        return summary

    def to_csv(
        self,
        readings: Iterable[SensorReading],
        sources: Mapping[int, WaterSource],
        policy: RiskPolicy = THREE_TIER,
    ) -> str:
        """Render readings as comma-joined rows.

        Cells are not quoted, so a comma inside a location or source name
        shifts the columns of that row. Consumers rely on this plain format.
        """
        lines = [",".join(CSV_HEADERS)]
        for reading in readings:
            cells = [
                locale_timestamp(reading.timestamp),
                resolve_source_name(reading.source_id, sources),
                reading.location,
            ]
            cells.extend(format_value(reading.value(parameter)) for parameter in CSV_PARAMETERS)
            cells.append(policy.classify(reading).value)
            lines.append(",".join(cells))
        return "\n".join(lines)

    def compare_sources(
        self,
        readings: Iterable[SensorReading],
        source_ids: Sequence[int],
        sources: Optional[Mapping[int, WaterSource]] = None,
    ) -> List[SourceComparison]:
        known = sources or {}
        items = list(readings)
        comparisons: List[SourceComparison] = []

        for source_id in source_ids:
            matching = [reading for reading in items if reading.source_id == source_id]
            source = known.get(source_id)
            comparison = SourceComparison(
                source_id=source_id,
                name=source.name if source is not None else f"Source {source_id}",
                reading_count=len(matching),
            )
            if matching:
                comparison.latest_timestamp = max(reading.timestamp for reading in matching)

            stats = self.summarize(matching).parameters
            for parameter in PARAMETERS:
                mean = stats[parameter].mean
                if mean is None:
                    comparison.means[parameter] = None
                elif parameter is Parameter.tds_level:
                    comparison.means[parameter] = round_half_up(mean, 0)
                else:
                    comparison.means[parameter] = round_half_up(mean, 1)
            comparisons.append(comparison)

        return comparisons

    def latest_reading(self, readings: Iterable[SensorReading]) -> Optional[SensorReading]:
        """Newest reading by timestamp; the higher id wins a tie."""
        return max(readings, key=lambda reading: (reading.timestamp, reading.id), default=None)

    def chart_series(self, readings: Iterable[SensorReading], limit: int = 20) -> List[ChartPoint]:
        ordered = self.sort_by(readings, "timestamp", "asc")
        if limit > 0:
            ordered = ordered[-limit:]
        return [
            ChartPoint(
                label=chart_label(reading.timestamp),
                timestamp=reading.timestamp,
                location=reading.location,
                values={parameter: reading.value(parameter) for parameter in PARAMETERS},
            )
            for reading in ordered
        ]
