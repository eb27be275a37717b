from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Callable, List

import httpx
import pytest

from app.schemas import AnalysisStatus
from models.records import RiskTier, SensorReading
from services.analysis import (
    FALLBACK_RESULT,
    AnalysisOrchestrator,
    LLMConfig,
    build_prompt,
    parse_completion,
)
from services.errors import ContractViolation, NoDataError

_VALID_ANALYSIS = {
    "causes_en": "High alkalinity and dissolved salts.",
    "precautions_en": "Do not drink without treatment.",
    "causes_te": "అధిక క్షారత.",
    "precautions_te": "శుద్ధి చేయకుండా తాగవద్దు.",
    "risk_level": "high",
}


def _reading(reading_id: int = 1, **params) -> SensorReading:
    return SensorReading(
        id=reading_id,
        source_id=1,
        location="Community Well A",
        timestamp=datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc),
        **params,
    )


def _completion(content) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class RecordingHandler:
    """MockTransport handler that records requests and replays one response."""

    def __init__(self, responder: Callable[[httpx.Request], httpx.Response]) -> None:
        self.responder = responder
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)


def _orchestrator(handler: RecordingHandler, **overrides) -> AnalysisOrchestrator:
    config = LLMConfig(
        base_url="https://llm.test/api/v1",
        model="test-model",
        api_key="secret-key",
        **overrides,
    )
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return AnalysisOrchestrator(config, client=client)


def test_successful_analysis_returns_parsed_result() -> None:
    handler = RecordingHandler(
        lambda _request: httpx.Response(200, json=_completion(json.dumps(_VALID_ANALYSIS)))
    )
    orchestrator = _orchestrator(handler)

    outcome = orchestrator.analyze(_reading(ph_level=9.1, tds_level=1200.0))

    assert outcome.status is AnalysisStatus.succeeded
    assert outcome.reading_id == 1
    assert outcome.result is not None
    assert outcome.result.risk_level is RiskTier.high
    assert outcome.result.causes_te == _VALID_ANALYSIS["causes_te"]
    assert outcome.error is None
    assert len(handler.requests) == 1


def test_request_pins_model_settings_and_thresholds() -> None:
    handler = RecordingHandler(
        lambda _request: httpx.Response(200, json=_completion(json.dumps(_VALID_ANALYSIS)))
    )
    orchestrator = _orchestrator(handler)

    orchestrator.analyze(_reading(ph_level=7.2, tds_level=320.0))

    request = handler.requests[0]
    assert request.url == "https://llm.test/api/v1/chat/completions"
    assert request.headers["authorization"] == "Bearer secret-key"
    body = json.loads(request.content)
    assert body["model"] == "test-model"
    assert body["temperature"] == 0.3
    assert body["max_tokens"] == 1500
    assert body["response_format"] == {"type": "json_object"}
    system, user = body["messages"]
    assert system["role"] == "system"
    assert "Telugu" in system["content"]
    assert "pH Level: 7.2" in user["content"]
    assert "TDS Level: 320 ppm" in user["content"]
    assert "Chlorine Level: N/A ppm" in user["content"]
    assert "pH: 6.5-8.5" in user["content"]
    assert "500-1000 ppm (acceptable)" in user["content"]
    assert "Turbidity: <1 NTU (excellent), 1-4 NTU (good)" in user["content"]
    assert "Chlorine: 0.2-0.5 ppm" in user["content"]
    for key in _VALID_ANALYSIS:
        assert f'"{key}"' in user["content"]


def test_prompt_keeps_zero_values() -> None:
    prompt = build_prompt(_reading(turbidity=0.0, chlorine_level=0.25))

    assert "Turbidity: 0 NTU" in prompt
    assert "Chlorine Level: 0.25 ppm" in prompt
    assert "pH Level: N/A" in prompt


@pytest.mark.parametrize(
    "content",
    [
        "this is not json",
        json.dumps(["not", "an", "object"]),
        json.dumps({k: v for k, v in _VALID_ANALYSIS.items() if k != "causes_te"}),
        json.dumps({**_VALID_ANALYSIS, "risk_level": "catastrophic"}),
        "",
    ],
)
def test_unusable_content_applies_fallback(content: str) -> None:
    handler = RecordingHandler(lambda _request: httpx.Response(200, json=_completion(content)))
    orchestrator = _orchestrator(handler)

    outcome = orchestrator.analyze(_reading(ph_level=7.0))

    assert outcome.status is AnalysisStatus.fallback_applied
    assert outcome.result == FALLBACK_RESULT
    assert outcome.result.risk_level is RiskTier.medium
    assert "Boil water for at least 1 minute" in outcome.result.precautions_en
    assert "1 నిమిషం ఉడకబెట్టండి" in outcome.result.precautions_te
    assert outcome.error


@pytest.mark.parametrize(
    "payload",
    [{}, {"choices": []}, {"choices": [{"message": None}]}, {"choices": [{"text": "hi"}]}],
)
def test_malformed_envelope_applies_fallback(payload: dict) -> None:
    handler = RecordingHandler(lambda _request: httpx.Response(200, json=payload))

    outcome = _orchestrator(handler).analyze(_reading())

    assert outcome.status is AnalysisStatus.fallback_applied
    assert outcome.result.risk_level is RiskTier.medium


def test_non_json_body_applies_fallback() -> None:
    handler = RecordingHandler(lambda _request: httpx.Response(200, text="<html>oops</html>"))

    outcome = _orchestrator(handler).analyze(_reading())

    assert outcome.status is AnalysisStatus.fallback_applied


def test_error_status_fails_without_narrative(caplog) -> None:
    handler = RecordingHandler(lambda _request: httpx.Response(429, json={"error": "rate limited"}))

    with caplog.at_level(logging.ERROR, logger="services.analysis"):
        outcome = _orchestrator(handler).analyze(_reading(reading_id=7))

    assert outcome.status is AnalysisStatus.failed
    assert outcome.result is None
    assert "429" in outcome.error
    assert any(getattr(record, "status_code", None) == 429 for record in caplog.records)
    assert any(getattr(record, "reading_id", None) == 7 for record in caplog.records)


def test_transport_error_fails() -> None:
    def raise_connect(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    outcome = _orchestrator(RecordingHandler(raise_connect)).analyze(_reading())

    assert outcome.status is AnalysisStatus.failed
    assert outcome.result is None
    assert "unreachable" in outcome.error


def test_timeout_fails() -> None:
    def raise_timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    outcome = _orchestrator(RecordingHandler(raise_timeout), timeout_seconds=2.0).analyze(_reading())

    assert outcome.status is AnalysisStatus.failed
    assert "timed out after 2s" in outcome.error


def test_analyze_latest_without_readings_makes_no_call() -> None:
    handler = RecordingHandler(lambda _request: httpx.Response(200, json=_completion("{}")))
    orchestrator = _orchestrator(handler)

    with pytest.raises(NoDataError):
        orchestrator.analyze_latest([])

    assert handler.requests == []


def test_analyze_latest_picks_most_recent_reading() -> None:
    handler = RecordingHandler(
        lambda _request: httpx.Response(200, json=_completion(json.dumps(_VALID_ANALYSIS)))
    )
    older = _reading(reading_id=1, ph_level=7.0)
    newer = SensorReading(
        id=2,
        source_id=1,
        location="Community Well A",
        timestamp=datetime(2024, 1, 2, tzinfo=timezone.utc),
        ph_level=9.0,
    )

    outcome = _orchestrator(handler).analyze_latest([older, newer])

    assert outcome.reading_id == 2
    assert "pH Level: 9" in json.loads(handler.requests[0].content)["messages"][1]["content"]


def test_parse_completion_normalizes_risk_case() -> None:
    result = parse_completion(_completion(json.dumps({**_VALID_ANALYSIS, "risk_level": " Medium "})))

    assert result.risk_level is RiskTier.medium


def test_parse_completion_raises_contract_violation() -> None:
    with pytest.raises(ContractViolation):
        parse_completion({"choices": [{"message": {"content": 42}}]})


def test_undecodable_body_fails() -> None:
    handler = RecordingHandler(
        lambda _request: httpx.Response(
            200, content=b"not gzip", headers={"content-encoding": "gzip"}
        )
    )

    outcome = _orchestrator(handler).analyze(_reading())

    assert outcome.status is AnalysisStatus.failed
    assert outcome.result is None
    assert outcome.error.startswith("Language model request failed")


def test_redirect_loop_fails() -> None:
    handler = RecordingHandler(
        lambda request: httpx.Response(302, headers={"location": str(request.url)})
    )
    config = LLMConfig(base_url="https://llm.test/api/v1", model="test-model")
    client = httpx.Client(transport=httpx.MockTransport(handler), follow_redirects=True)

    outcome = AnalysisOrchestrator(config, client=client).analyze(_reading())

    assert outcome.status is AnalysisStatus.failed


@pytest.mark.parametrize(
    ("confidence", "expected"),
    [(82, 82.0), (None, None), (250, None), ("very", None)],
)
def test_parse_completion_keeps_only_usable_confidence(confidence, expected) -> None:
    answer = dict(_VALID_ANALYSIS)
    if confidence is not None:
        answer["confidence"] = confidence

    result = parse_completion(_completion(json.dumps(answer)))

    assert result.confidence == expected
    assert result.risk_level is RiskTier.high


def test_fallback_has_no_confidence() -> None:
    assert FALLBACK_RESULT.confidence is None
