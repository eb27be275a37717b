from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Sequence

import httpx
import pytest
import typer
from typer.testing import CliRunner

from cli.app import app
from cli.client import ApiClient
from cli.config import CLIConfig, load_config


class StubClient:
    def __init__(self, config) -> None:
        self.config = config
        self.added: List[Dict[str, Any]] = []
        self.imported_path: Path | None = None
        self.list_params: Dict[str, Any] | None = None
        self.compared: List[int] = []
        self.reports: List[Dict[str, Any]] = []
        self.analysis_payload: Dict[str, Any] = {
            "status": "succeeded",
            "reading_id": 2,
            "latency_ms": 840,
            "completed_at": "2024-01-15T11:30:01Z",
            "error": None,
            "result": {
                "causes_en": "High alkalinity from mineral deposits.",
                "precautions_en": "Avoid drinking until treated.",
                "causes_te": "ఖనిజ నిక్షేపాల వల్ల అధిక క్షారత.",
                "precautions_te": "శుద్ధి చేసే వరకు తాగవద్దు.",
                "risk_level": "high",
            },
        }
        self.closed = False

    def add_reading(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.added.append(payload)
        return {"id": 7, **payload}

    def import_file(self, path: Path) -> Dict[str, Any]:
        self.imported_path = path
        return {
            "status": "partial",
            "imported_count": 1,
            "reading_ids": [1],
            "errors": [{"row_number": 3, "reason": "invalid numeric value for ph_level"}],
        }

    def list_readings(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        self.list_params = params
        return [
            {
                "id": 2,
                "created_at": "2024-01-15T11:30:00Z",
                "location": "Sector 1",
                "ph_level": 9.1,
                "tds_level": None,
                "risk_level": "high",
            }
        ]

    def summary(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "reading_count": 2,
            "source_count": 1,
            "first_timestamp": "2024-01-15T10:30:00Z",
            "last_timestamp": "2024-01-15T11:30:00Z",
            "parameters": {
                "ph_level": {"count": 2, "mean": 8.15, "min_value": 7.2, "max_value": 9.1, "available": True},
                "chlorine_level": {"count": 0, "mean": None, "min_value": None, "max_value": None, "available": False},
            },
        }

    def export_csv(self, params: Dict[str, Any]) -> tuple[str, str]:
        return "water_quality_data_2024-01-15.csv", "Date & Time,Water Source\n"

    def compare(self, source_ids: Sequence[int]) -> List[Dict[str, Any]]:
        self.compared = list(source_ids)
        return [
            {
                "source_id": sid,
                "name": f"Source {sid}",
                "reading_count": 0,
                "latest_timestamp": None,
                "means": {"ph_level": None},
            }
            for sid in source_ids
        ]

    def add_report(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.reports.append(payload)
        return {"id": 3, **payload}

    def list_reports(self) -> List[Dict[str, Any]]:
        return [
            {
                "id": 3,
                "created_at": "2024-01-16T09:00:00Z",
                "description": "Brown water from the tap",
                "severity": "high",
                "reported_by": "Lakshmi",
                "notes": "Started after the rains",
            }
        ]

    def analyze(self) -> Dict[str, Any]:
        return self.analysis_payload

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def stub(monkeypatch) -> StubClient:
    client = StubClient(config=None)

    def factory(config):
        client.config = config
        return client

    monkeypatch.setattr("cli.app.ApiClient", factory)
    return client


def test_add_reading(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["add", "--source-id", "1", "--location", "Sector 1", "--ph", "7.2"])

    assert result.exit_code == 0
    assert "Reading recorded. id=7" in result.stdout
    assert stub.added[0]["ph_level"] == 7.2
    assert stub.added[0]["tds_level"] is None
    assert stub.closed is True


def test_import_reports_row_errors(runner: CliRunner, stub: StubClient, tmp_path) -> None:
    csv_path = tmp_path / "readings.csv"
    csv_path.write_text("location,ph_level\nSector 1,7.0\n")

    result = runner.invoke(app, ["import", str(csv_path)])

    assert result.exit_code == 0
    assert stub.imported_path == csv_path
    assert "status: partial" in result.stdout
    assert "row 3: invalid numeric value for ph_level" in result.stdout


def test_readings_lists_tiers(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["readings", "--source", "1", "--policy", "two_tier"])

    assert result.exit_code == 0
    assert "Readings (1)" in result.stdout
    assert "pH=9.1 TDS=N/A" in result.stdout
    assert "HIGH" in result.stdout
    assert stub.list_params["source_id"] == "1"
    assert stub.list_params["policy"] == "two_tier"


def test_summary_marks_unavailable_parameters(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["summary"])

    assert result.exit_code == 0
    assert "ph_level: mean=8.15" in result.stdout
    assert "chlorine_level: unavailable" in result.stdout


def test_export_writes_named_file(runner: CliRunner, stub: StubClient, tmp_path) -> None:
    result = runner.invoke(app, ["export", "--output-dir", str(tmp_path / "out")])

    assert result.exit_code == 0
    target = tmp_path / "out" / "water_quality_data_2024-01-15.csv"
    assert target.read_text(encoding="utf-8").startswith("Date & Time")


def test_compare_sources(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["compare", "1", "3"])

    assert result.exit_code == 0
    assert stub.compared == [1, 3]
    assert "Source 3 (id=3): 0 readings, last update N/A" in result.stdout


@pytest.mark.parametrize(
    ("language", "expected"),
    [("en", "High alkalinity from mineral deposits."), ("te", "శుద్ధి చేసే వరకు తాగవద్దు.")],
)
def test_analyze_renders_requested_language(
    runner: CliRunner, stub: StubClient, language: str, expected: str
) -> None:
    result = runner.invoke(app, ["analyze", "--language", language])

    assert result.exit_code == 0
    assert "risk_level: HIGH" in result.stdout
    assert expected in result.stdout


def test_analyze_flags_fallback(runner: CliRunner, stub: StubClient) -> None:
    stub.analysis_payload["status"] = "fallback_applied"

    result = runner.invoke(app, ["analyze"])

    assert result.exit_code == 0
    assert "conservative guidance" in result.stdout


def test_base_url_option_reaches_client(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["--base-url", "http://aqua.test:9000/", "analyze"])

    assert result.exit_code == 0
    assert stub.config.base_url == "http://aqua.test:9000"


def test_load_config_reads_environment(monkeypatch) -> None:
    monkeypatch.setenv("API_BASE_URL", "http://env.test/")
    monkeypatch.setenv("CLI_TIMEOUT", "-3")

    config = load_config()

    assert config == CLIConfig(base_url="http://env.test", timeout=60.0)


def test_api_client_surfaces_error_detail(capsys) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"detail": "No sensor readings available for analysis."})

    client = ApiClient(CLIConfig(base_url="http://aqua.test"))
    client._client.close()
    client._client = httpx.Client(base_url="http://aqua.test", transport=httpx.MockTransport(handler))

    with pytest.raises(typer.Exit):
        client.analyze()
    client.close()

    assert "No sensor readings available" in capsys.readouterr().err


def test_api_client_export_uses_disposition_filename() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            text="Date & Time\n",
            headers={"Content-Disposition": 'attachment; filename="water_quality_data_2024-02-01.csv"'},
        )

    client = ApiClient(CLIConfig(base_url="http://aqua.test"))
    client._client.close()
    client._client = httpx.Client(base_url="http://aqua.test", transport=httpx.MockTransport(handler))

    filename, body = client.export_csv({"source_id": "all", "start": None})
    client.close()

    assert filename == "water_quality_data_2024-02-01.csv"
    assert body == "Date & Time\n"


def test_analyze_shows_confidence_when_reported(runner: CliRunner, stub: StubClient) -> None:
    stub.analysis_payload["result"]["confidence"] = 82.5

    result = runner.invoke(app, ["analyze"])

    assert result.exit_code == 0
    assert "confidence: 82.5%" in result.stdout


def test_report_submits_community_report(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(
        app,
        ["report", "--description", "Brown water", "--severity", "high", "--by", "Lakshmi"],
    )

    assert result.exit_code == 0
    assert "Report submitted. id=3" in result.stdout
    assert stub.reports == [
        {"description": "Brown water", "severity": "high", "reported_by": "Lakshmi", "notes": None}
    ]


def test_reports_lists_community_reports(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["reports"])

    assert result.exit_code == 0
    assert "Community Reports (1)" in result.stdout
    assert "by Lakshmi HIGH" in result.stdout
    assert "notes: Started after the rains" in result.stdout
