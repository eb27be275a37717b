from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the water-quality service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.timeout)

    def close(self) -> None:
        self._client.close()

    def add_reading(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/readings", json=payload)

    def import_file(self, path: Path) -> Dict[str, Any]:
        if not path.is_file():
            raise typer.BadParameter(f"Path {path} is not a file.")
        with path.open("rb") as handle:
            return self._request(
                "POST",
                "/readings/import",
                files={"file": (path.name, handle, "text/csv")},
            )

    def list_readings(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        return self._request("GET", "/readings", params=_clean(params))

    def summary(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("GET", "/readings/summary", params=_clean(params))

    def export_csv(self, params: Dict[str, Any]) -> tuple[str, str]:
        """Return ``(filename, body)`` for the CSV export."""
        response = self._send("GET", "/readings/export", params=_clean(params))
        disposition = response.headers.get("content-disposition", "")
        filename = "water_quality_data.csv"
        if "filename=" in disposition:
            filename = disposition.split("filename=", 1)[1].strip().strip('"')
        return filename, response.text

    def compare(self, source_ids: Sequence[int]) -> List[Dict[str, Any]]:
        return self._request(
            "GET", "/sources/compare", params=[("source_id", str(sid)) for sid in source_ids]
        )

    def add_report(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/reports", json=payload)

    def list_reports(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/reports")

    def analyze(self) -> Dict[str, Any]:
        return self._request("POST", "/analysis")

    def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        return self._send(method, url, **kwargs).json()

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.TransportError as exc:
            typer.secho(f"Could not reach {self._config.base_url}: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1) from exc
        return response

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: Optional[str] = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except Exception:  # noqa: BLE001 - best effort parsing
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


def _clean(params: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in params.items() if value is not None}
