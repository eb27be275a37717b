"""In-memory working set fed by the reading feed, with analysis refresh."""

from __future__ import annotations

import logging
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from functools import lru_cache
from threading import Lock
from typing import Callable, Dict, List, Optional

from app.schemas import AnalysisOutcome
from datastore.feed import ReadingFeed
from datastore.readings_store import ReadingStore, build_default_store
from models.records import RiskTier, SensorReading
from services.aggregator import AggregationEngine
from services.analysis import AnalysisOrchestrator, build_default_orchestrator
from services.classifier import THREE_TIER, RiskPolicy
from services.errors import NoDataError
from settings import get_settings

logger = logging.getLogger(__name__)


class ReadingMonitor:
    """Keeps the displayed reading set and its analysis current.

    Analysis runs on a single worker so at most one completion request is in
    flight. Scheduling a newer reading cancels a queued stale job, and the
    result of a stale job that already started is discarded.
    """

    def __init__(
        self,
        orchestrator: AnalysisOrchestrator,
        policy: RiskPolicy = THREE_TIER,
        aggregator: Optional[AggregationEngine] = None,
        analyze_on_insert: bool = True,
        initial: Optional[List[SensorReading]] = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.policy = policy
        self.aggregator = aggregator or AggregationEngine()
        self.analyze_on_insert = analyze_on_insert
        self.executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="analysis")
        self._readings: List[SensorReading] = list(initial or [])
        self._tiers: Dict[int, RiskTier] = {
            reading.id: policy.classify(reading) for reading in self._readings
        }
        self._target_id: Optional[int] = None
        self._future: Optional[Future[Optional[AnalysisOutcome]]] = None
        self._latest_outcome: Optional[AnalysisOutcome] = None
        self._lock = Lock()
        self._unsubscribe: Optional[Callable[[], None]] = None

    def attach(self, feed: ReadingFeed) -> None:
        """Start receiving pushed readings from ``feed``."""
        self.detach()
        self._unsubscribe = feed.subscribe(self.on_reading)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def on_reading(self, reading: SensorReading) -> RiskTier:
        """Append a pushed reading, tag it, and refresh the analysis."""
        tier = self.policy.classify(reading)
        with self._lock:
            self._readings.append(reading)
            self._tiers[reading.id] = tier
        logger.info(
            "Reading received",
            extra={
                "reading_id": reading.id,
                "source_id": reading.source_id,
                "status": tier.value,
                "policy": self.policy.name,
            },
        )
        if self.analyze_on_insert:
            self.refresh()
        return tier

    def refresh(self) -> Optional[Future[Optional[AnalysisOutcome]]]:
        """Schedule analysis of the newest reading in the working set.

        A backdated reading never displaces the newest one as the target.
        """
        latest = self.aggregator.latest_reading(self.snapshot())
        if latest is None:
            return None
        return self.schedule_analysis(latest)

    def snapshot(self) -> List[SensorReading]:
        """Return the working set, newest first."""
        with self._lock:
            items = list(self._readings)
        return self.aggregator.sort_by(items, "timestamp", "desc")

    def tier_for(self, reading_id: int) -> Optional[RiskTier]:
        with self._lock:
            return self._tiers.get(reading_id)

    @property
    def latest_tier(self) -> Optional[RiskTier]:
        latest = self.aggregator.latest_reading(self.snapshot())
        return None if latest is None else self.tier_for(latest.id)

    @property
    def latest_outcome(self) -> Optional[AnalysisOutcome]:
        with self._lock:
            return self._latest_outcome

    @property
    def target_reading_id(self) -> Optional[int]:
        with self._lock:
            return self._target_id

    def schedule_analysis(
        self, reading: SensorReading, force: bool = False
    ) -> Future[Optional[AnalysisOutcome]]:
        """Queue an analysis of ``reading``, superseding any older target.

        A reading that is already the target reuses its job; ``force`` only
        starts a new job once that one has finished.
        """
        with self._lock:
            current = self._future
            if self._target_id == reading.id and current is not None:
                if not force or not current.done():
                    return current
            self._target_id = reading.id
            future = self.executor.submit(self._run_analysis, reading)
            self._future = future

        if current is not None and not current.done() and current.cancel():
            logger.info("Cancelled queued stale analysis", extra={"reading_id": reading.id})
        return future

    def request_analysis(self, timeout: Optional[float] = None) -> AnalysisOutcome:
        """Analyse the most recent reading and wait for the outcome.

        Raises ``NoDataError`` when the working set is empty.
        """
        latest = self.aggregator.latest_reading(self.snapshot())
        if latest is None:
            raise NoDataError("No sensor readings available for analysis.")
        future = self.schedule_analysis(latest, force=True)
        try:
            outcome = future.result(timeout=timeout)
        except CancelledError:
            outcome = None
        if outcome is None:
            # Superseded by a fresher reading before it ran.
            outcome = self.wait_for_analysis(timeout=timeout)
        if outcome is None:
            raise NoDataError("Analysis was superseded before it produced a result.")
        return outcome

    def wait_for_analysis(self, timeout: Optional[float] = None) -> Optional[AnalysisOutcome]:
        with self._lock:
            future = self._future
        if future is None:
            return None
        try:
            future.result(timeout=timeout)
        except CancelledError:
            pass
        return self.latest_outcome

    def shutdown(self) -> None:
        self.detach()
        self.executor.shutdown(wait=False, cancel_futures=True)
        self.orchestrator.close()

    def _run_analysis(self, reading: SensorReading) -> Optional[AnalysisOutcome]:
        with self._lock:
            if self._target_id != reading.id:
                return None
        outcome = self.orchestrator.analyze(reading)
        with self._lock:
            if self._target_id != reading.id:
                logger.info(
                    "Discarding stale analysis",
                    extra={"reading_id": reading.id, "outcome": outcome.status.value},
                )
                return outcome
            self._latest_outcome = outcome
        return outcome


@lru_cache
def build_default_monitor() -> ReadingMonitor:
    """Factory that wires the monitor to the default store and endpoint."""
    store: ReadingStore = build_default_store()
    monitor = ReadingMonitor(
        orchestrator=build_default_orchestrator(),
        analyze_on_insert=get_settings().analyze_on_insert,
        initial=store.query(),
    )
    monitor.attach(store.feed)
    if monitor.analyze_on_insert:
        monitor.refresh()
    return monitor
