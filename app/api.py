"""HTTP route definitions for the service."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from fastapi.responses import PlainTextResponse

from app.schemas import (
    AnalysisOutcome,
    AnalysisStatus,
    ChartPointResponse,
    ImportResult,
    ParameterStatsResponse,
    ReadingCreate,
    ReadingRecord,
    ReadingView,
    ReportCreate,
    ReportRecord,
    SourceComparisonResponse,
    SourceCreate,
    SourceRecord,
    SummaryResponse,
)
from datastore.readings_store import ReadingStore, build_default_store
from models.records import SensorReading
from services.aggregator import ALL_SOURCES, AggregationEngine, ReadingQuery, export_filename
from services.classifier import get_policy
from services.errors import NoDataError, ValidationError
from services.monitor import ReadingMonitor, build_default_monitor
from services.processor import ReadingProcessor, build_default_processor

router = APIRouter()

_aggregator = AggregationEngine()


def get_store() -> ReadingStore:
    return build_default_store()


def get_processor() -> ReadingProcessor:
    return build_default_processor()


def get_monitor() -> ReadingMonitor:
    return build_default_monitor()


def _reading_query(
    start: Optional[datetime] = Query(None, description="Inclusive lower bound; needs end."),
    end: Optional[datetime] = Query(None, description="Inclusive upper bound; needs start."),
    source_id: str = Query(ALL_SOURCES, description="Water source id or 'all'."),
    sort_by: str = Query("timestamp", description="timestamp or a parameter name."),
    order: str = Query("desc", pattern="^(asc|desc)$"),
) -> ReadingQuery:
    return ReadingQuery(start=start, end=end, source_id=source_id, sort_field=sort_by, order=order)


def _apply(readings: List[SensorReading], query: ReadingQuery) -> List[SensorReading]:
    try:
        return _aggregator.apply(readings, query)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.get("/sources", response_model=List[SourceRecord], summary="List water sources.")
async def list_sources(store: ReadingStore = Depends(get_store)) -> List[SourceRecord]:
    return [SourceRecord.from_source(source) for source in store.sources().values()]


@router.post(
    "/sources",
    status_code=status.HTTP_201_CREATED,
    response_model=SourceRecord,
    summary="Register a water source.",
)
async def create_source(
    payload: SourceCreate, store: ReadingStore = Depends(get_store)
) -> SourceRecord:
    source = store.add_source(**payload.model_dump())
    return SourceRecord.from_source(source)


@router.post(
    "/readings",
    status_code=status.HTTP_201_CREATED,
    response_model=ReadingRecord,
    summary="Record a manually entered reading.",
)
def create_reading(
    payload: ReadingCreate,
    processor: ReadingProcessor = Depends(get_processor),
) -> ReadingRecord:
    try:
        reading = processor.submit(payload.to_draft())
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc
    return ReadingRecord.from_reading(reading)


@router.post(
    "/readings/import",
    response_model=ImportResult,
    summary="Import community readings from a CSV file.",
)
def import_readings(
    file: UploadFile = File(..., description="CSV file containing sensor readings."),
    processor: ReadingProcessor = Depends(get_processor),
) -> ImportResult:
    try:
        contents = file.file.read()
        return processor.import_csv(contents)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc
    finally:
        file.file.close()


@router.post(
    "/reports",
    status_code=status.HTTP_201_CREATED,
    response_model=ReportRecord,
    summary="Submit a community water-quality report.",
)
def create_report(
    payload: ReportCreate,
    processor: ReadingProcessor = Depends(get_processor),
) -> ReportRecord:
    try:
        report = processor.submit_report(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc
    return ReportRecord.from_report(report)


@router.get("/reports", response_model=List[ReportRecord], summary="Community reports, newest first.")
def list_reports(store: ReadingStore = Depends(get_store)) -> List[ReportRecord]:
    return [ReportRecord.from_report(report) for report in store.reports()]


@router.get("/readings", response_model=List[ReadingView], summary="Filtered, sorted readings.")
def list_readings(
    query: ReadingQuery = Depends(_reading_query),
    policy: str = Query("three_tier", description="three_tier or two_tier."),
    monitor: ReadingMonitor = Depends(get_monitor),
) -> List[ReadingView]:
    try:
        risk_policy = get_policy(policy)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    readings = _apply(monitor.snapshot(), query)
    return [
        ReadingView(
            **ReadingRecord.from_reading(reading).model_dump(),
            risk_level=risk_policy.classify(reading),
        )
        for reading in readings
    ]


@router.get("/readings/summary", response_model=SummaryResponse, summary="Summary statistics.")
def summarize_readings(
    query: ReadingQuery = Depends(_reading_query),
    monitor: ReadingMonitor = Depends(get_monitor),
) -> SummaryResponse:
    summary = _aggregator.summarize(_apply(monitor.snapshot(), query))
    return SummaryResponse(
        reading_count=summary.reading_count,
        source_count=summary.source_count,
        first_timestamp=summary.first_timestamp,
        last_timestamp=summary.last_timestamp,
        parameters={
            parameter.value: ParameterStatsResponse(
                count=stats.count,
                mean=stats.mean,
                min_value=stats.min_value,
                max_value=stats.max_value,
                available=stats.available,
            )
            for parameter, stats in summary.parameters.items()
        },
    )


@router.get(
    "/readings/export",
    response_class=PlainTextResponse,
    summary="Export the filtered readings as CSV.",
)
def export_readings(
    query: ReadingQuery = Depends(_reading_query),
    monitor: ReadingMonitor = Depends(get_monitor),
    store: ReadingStore = Depends(get_store),
) -> PlainTextResponse:
    body = _aggregator.to_csv(_apply(monitor.snapshot(), query), store.sources())
    filename = export_filename(datetime.now(timezone.utc).date())
    return PlainTextResponse(
        body,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get(
    "/readings/chart",
    response_model=List[ChartPointResponse],
    summary="Chronological points for the trends chart.",
)
def chart_readings(
    query: ReadingQuery = Depends(_reading_query),
    limit: int = Query(20, ge=1, le=500),
    monitor: ReadingMonitor = Depends(get_monitor),
) -> List[ChartPointResponse]:
    points = _aggregator.chart_series(_apply(monitor.snapshot(), query), limit=limit)
    return [
        ChartPointResponse(
            label=point.label,
            timestamp=point.timestamp,
            location=point.location,
            values={parameter.value: value for parameter, value in point.values.items()},
        )
        for point in points
    ]


@router.get(
    "/sources/compare",
    response_model=List[SourceComparisonResponse],
    summary="Compare parameter averages across sources.",
)
def compare_sources(
    source_id: List[int] = Query(..., description="Repeat for each source to compare."),
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    monitor: ReadingMonitor = Depends(get_monitor),
    store: ReadingStore = Depends(get_store),
) -> List[SourceComparisonResponse]:
    readings = _aggregator.filter_by_date_range(monitor.snapshot(), start, end)
    comparisons = _aggregator.compare_sources(readings, source_id, store.sources())
    return [
        SourceComparisonResponse(
            source_id=comparison.source_id,
            name=comparison.name,
            reading_count=comparison.reading_count,
            latest_timestamp=comparison.latest_timestamp,
            means={parameter.value: mean for parameter, mean in comparison.means.items()},
        )
        for comparison in comparisons
    ]


@router.post(
    "/analysis",
    response_model=AnalysisOutcome,
    summary="Analyse the most recent reading with the language model.",
)
def run_analysis(monitor: ReadingMonitor = Depends(get_monitor)) -> AnalysisOutcome:
    try:
        outcome = monitor.request_analysis(timeout=monitor.orchestrator.config.timeout_seconds + 5)
    except NoDataError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message) from exc
    if outcome.status is AnalysisStatus.failed:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Analysis unavailable: {outcome.error}",
        )
    return outcome


@router.get(
    "/analysis/latest",
    response_model=AnalysisOutcome,
    summary="Most recent analysis outcome for the current reading set.",
)
def latest_analysis(monitor: ReadingMonitor = Depends(get_monitor)) -> AnalysisOutcome:
    outcome = monitor.latest_outcome
    if outcome is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No analysis has been produced yet.",
        )
    return outcome


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
