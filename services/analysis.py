"""Language-model orchestration for bilingual water-safety narratives.

One call to ``analyze`` issues at most one chat-completion request and always
ends in one of three states:

* ``succeeded``: the model returned the five-field JSON object.
* ``fallback_applied``: the model answered, but the answer could not be used;
  a fixed conservative narrative with a ``medium`` tier is returned instead.
* ``failed``: the endpoint could not be reached, timed out, or returned an
  error status. No narrative is produced.

Retries are left to the caller.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from app.schemas import AnalysisOutcome, AnalysisResult, AnalysisStatus
from models.records import RiskTier, SensorReading
from services.aggregator import AggregationEngine
from services.errors import ContractViolation, NoDataError, UpstreamFailure
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = (
    "You are a water quality expert helping rural communities understand water safety. "
    "Provide accurate, actionable advice in both English and Telugu. "
    "Always respond with valid JSON only."
)

FALLBACK_RESULT = AnalysisResult(
    causes_en="Unable to analyze water quality data at this time.",
    precautions_en=(
        "Please ensure water is properly treated before consumption. "
        "Boil water for at least 1 minute if unsure about quality."
    ),
    causes_te="ఈ సమయంలో నీటి నాణ్యతను విశ్లేషించలేకపోతున్నాము.",
    precautions_te="నీటి నాణ్యత గురించి అనుమానం ఉంటే తాగే ముందు కనీసం 1 నిమిషం ఉడకబెట్టండి.",
    risk_level=RiskTier.medium,
)

_PROMPT_TEMPLATE = """Analyze the following water quality reading and provide causes and precautions in both English and Telugu:

Water Quality Data:
- pH Level: {ph_level}
- Turbidity: {turbidity} NTU
- Temperature: {temperature}°C
- Bacterial Count: {bacterial_count} CFU/ml
- Dissolved Oxygen: {dissolved_oxygen} mg/L
- Chlorine Level: {chlorine_level} ppm
- TDS Level: {tds_level} ppm

Provide a JSON response with the following structure:
{{
  "causes_en": "Detailed explanation of potential causes in English",
  "precautions_en": "Specific precautions and recommendations in English",
  "causes_te": "Detailed explanation of potential causes in Telugu",
  "precautions_te": "Specific precautions and recommendations in Telugu",
  "risk_level": "low|medium|high"
}}

Consider WHO water quality standards:
- pH: 6.5-8.5 (safe range)
- TDS: <500 ppm (good), 500-1000 ppm (acceptable), >1000 ppm (poor)
- Turbidity: <1 NTU (excellent), 1-4 NTU (good)
- Chlorine: 0.2-0.5 ppm (safe for treated water)

Be specific about health risks and actionable precautions. Use clear, simple language that rural communities can understand."""


@dataclass(frozen=True)
class LLMConfig:
    """Connection and sampling settings for the completion endpoint."""

    base_url: str
    model: str
    api_key: Optional[str] = None
    temperature: float = 0.3
    max_tokens: int = 1500
    timeout_seconds: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "LLMConfig":
        return cls(
            base_url=settings.llm_base_url,
            model=settings.llm_model,
            api_key=settings.llm_api_key,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            timeout_seconds=settings.llm_timeout_seconds,
        )


def _prompt_value(value: Optional[float]) -> str:
    if value is None:
        return "N/A"
    return str(int(value)) if float(value).is_integer() else str(value)


def build_prompt(reading: SensorReading) -> str:
    return _PROMPT_TEMPLATE.format(
        ph_level=_prompt_value(reading.ph_level),
        turbidity=_prompt_value(reading.turbidity),
        temperature=_prompt_value(reading.temperature),
        bacterial_count=_prompt_value(reading.bacterial_count),
        dissolved_oxygen=_prompt_value(reading.dissolved_oxygen),
        chlorine_level=_prompt_value(reading.chlorine_level),
        tds_level=_prompt_value(reading.tds_level),
    )


def parse_completion(payload: Any) -> AnalysisResult:
    """Extract and validate the five-field analysis from a completion payload.

    Raises ``ContractViolation`` when the envelope or its content is unusable.
    """
    try:
        content = payload["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ContractViolation("Completion response has no message content.") from exc
    if not isinstance(content, str) or not content.strip():
        raise ContractViolation("Completion message content is empty.")

    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        raise ContractViolation("Completion content is not valid JSON.") from exc
    if not isinstance(data, dict):
        raise ContractViolation("Completion content is not a JSON object.")

    risk = data.get("risk_level")
    if isinstance(risk, str):
        data["risk_level"] = risk.strip().lower()

    # Confidence is optional; an unusable value is dropped, not fatal.
    confidence = data.get("confidence")
    if confidence is not None and (
        isinstance(confidence, bool)
        or not isinstance(confidence, (int, float))
        or not 0 <= confidence <= 100
    ):
        data.pop("confidence")

    try:
        return AnalysisResult.model_validate(data)
    except PydanticValidationError as exc:
        raise ContractViolation(f"Completion content does not match the analysis schema: {exc}") from exc


class AnalysisOrchestrator:
    """Request a narrative risk assessment for a reading from a language model."""

    def __init__(
        self,
        config: LLMConfig,
        client: Optional[httpx.Client] = None,
        aggregator: Optional[AggregationEngine] = None,
    ) -> None:
        self.config = config
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=config.timeout_seconds)
        self._aggregator = aggregator or AggregationEngine()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def analyze_latest(self, readings: Iterable[SensorReading]) -> AnalysisOutcome:
        """Analyse the most recent of ``readings``.

        Raises ``NoDataError`` without contacting the endpoint when empty.
        """
        latest = self._aggregator.latest_reading(readings)
        if latest is None:
            raise NoDataError("No sensor readings available for analysis.")
        return self.analyze(latest)

    def analyze(self, reading: SensorReading) -> AnalysisOutcome:
        start_time = time.perf_counter()
        try:
            result = self._request(reading)
        except UpstreamFailure as exc:
            logger.error(
                "Analysis unavailable: %s",
                exc.message,
                extra={
                    "reading_id": reading.id,
                    "outcome": AnalysisStatus.failed.value,
                    "status_code": exc.status_code,
                },
            )
            return self._outcome(reading, AnalysisStatus.failed, start_time, error=exc.message)
        except ContractViolation as exc:
            logger.warning(
                "Applying fallback analysis: %s",
                exc.message,
                extra={"reading_id": reading.id, "outcome": AnalysisStatus.fallback_applied.value},
            )
            return self._outcome(
                reading,
                AnalysisStatus.fallback_applied,
                start_time,
                result=FALLBACK_RESULT.model_copy(deep=True),
                error=exc.message,
            )

        outcome = self._outcome(reading, AnalysisStatus.succeeded, start_time, result=result)
        logger.info(
            "Analysis completed",
            extra={
                "reading_id": reading.id,
                "outcome": outcome.status.value,
                "latency_ms": outcome.latency_ms,
            },
        )
        return outcome

    def build_request(self, reading: SensorReading) -> Dict[str, Any]:
        return {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": SYSTEM_INSTRUCTION},
                {"role": "user", "content": build_prompt(reading)},
            ],
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
            "response_format": {"type": "json_object"},
        }

    def _request(self, reading: SensorReading) -> AnalysisResult:
        headers = {
            "Content-Type": "application/json",
            "X-Title": "AquaGuard Water Analysis",
        }
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"

        url = f"{self.config.base_url.rstrip('/')}/chat/completions"
        try:
            response = self._client.post(
                url,
                json=self.build_request(reading),
                headers=headers,
                timeout=self.config.timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            raise UpstreamFailure(
                f"Language model request timed out after {self.config.timeout_seconds:g}s."
            ) from exc
        except httpx.TransportError as exc:
            raise UpstreamFailure(f"Language model endpoint unreachable: {exc}") from exc
        except httpx.RequestError as exc:
            # Undecodable bodies and redirect loops.
            raise UpstreamFailure(f"Language model request failed: {exc}") from exc

        if response.is_error:
            raise UpstreamFailure(
                f"Language model endpoint returned status {response.status_code}.",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ContractViolation("Completion response body is not JSON.") from exc
        return parse_completion(payload)

    @staticmethod
    def _outcome(
        reading: SensorReading,
        status: AnalysisStatus,
        start_time: float,
        result: Optional[AnalysisResult] = None,
        error: Optional[str] = None,
    ) -> AnalysisOutcome:
        return AnalysisOutcome(
            status=status,
            reading_id=reading.id,
            result=result,
            error=error,
            latency_ms=int((time.perf_counter() - start_time) * 1000),
            completed_at=datetime.now(timezone.utc),
        )


def build_default_orchestrator() -> AnalysisOrchestrator:
    return AnalysisOrchestrator(LLMConfig.from_settings(get_settings()))
