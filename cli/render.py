from __future__ import annotations

from typing import Any, Dict, Iterable, List

import typer

_TIER_COLORS = {
    "low": typer.colors.GREEN,
    "medium": typer.colors.YELLOW,
    "high": typer.colors.RED,
}


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def _display(value: Any) -> Any:
    return "N/A" if value is None else value


def render_readings(rows: List[Dict[str, Any]]) -> None:
    echo_heading(f"Readings ({len(rows)})")
    if not rows:
        typer.echo("No readings match the filters.")
        return
    for row in rows:
        tier = row.get("risk_level", "")
        typer.echo(
            f"  #{row.get('id')} {row.get('created_at')} {row.get('location')} "
            f"pH={_display(row.get('ph_level'))} TDS={_display(row.get('tds_level'))} ",
            nl=False,
        )
        typer.secho(str(tier).upper(), fg=_TIER_COLORS.get(tier))


def render_summary(payload: Dict[str, Any]) -> None:
    echo_heading("Summary")
    echo_key_values(
        [
            ("reading_count", payload.get("reading_count")),
            ("source_count", payload.get("source_count")),
            ("first_timestamp", _display(payload.get("first_timestamp"))),
            ("last_timestamp", _display(payload.get("last_timestamp"))),
        ]
    )
    typer.echo()
    echo_heading("Parameters")
    for name, stats in (payload.get("parameters") or {}).items():
        if stats.get("available"):
            typer.echo(
                f"  - {name}: mean={stats.get('mean'):.2f} "
                f"min={stats.get('min_value')} max={stats.get('max_value')} n={stats.get('count')}"
            )
        else:
            typer.echo(f"  - {name}: unavailable")


def render_comparison(rows: List[Dict[str, Any]]) -> None:
    echo_heading("Source Comparison")
    for row in rows:
        typer.echo(
            f"{row.get('name')} (id={row.get('source_id')}): "
            f"{row.get('reading_count')} readings, last update {_display(row.get('latest_timestamp'))}"
        )
        for name, mean in (row.get("means") or {}).items():
            typer.echo(f"  - {name}: {_display(mean)}")


def render_analysis(payload: Dict[str, Any], language: str = "en") -> None:
    echo_heading("AI Water Quality Analysis")
    echo_key_values(
        [
            ("reading_id", payload.get("reading_id")),
            ("status", payload.get("status")),
            ("latency_ms", payload.get("latency_ms")),
        ]
    )
    result = payload.get("result") or {}
    if not result:
        typer.echo("No analysis available.")
        return
    tier = result.get("risk_level", "")
    typer.echo("risk_level: ", nl=False)
    typer.secho(str(tier).upper(), fg=_TIER_COLORS.get(tier), bold=True)
    if result.get("confidence") is not None:
        typer.echo(f"confidence: {result['confidence']:g}%")
    typer.echo()
    echo_heading("Potential Causes" if language == "en" else "సంభావ్య కారణాలు")
    typer.echo(result.get(f"causes_{language}", ""))
    typer.echo()
    echo_heading("Recommended Precautions" if language == "en" else "సిఫార్సు చేయబడిన జాగ్రత్తలు")
    typer.echo(result.get(f"precautions_{language}", ""))


def render_import(payload: Dict[str, Any]) -> None:
    echo_heading("Import Result")
    echo_key_values(
        [
            ("status", payload.get("status")),
            ("imported_count", payload.get("imported_count")),
        ]
    )
    errors = payload.get("errors") or []
    if errors:
        typer.echo()
        echo_heading("Errors")
        for error in errors:
            typer.echo(f"  - row {error.get('row_number')}: {error.get('reason')}")


def render_reports(rows: List[Dict[str, Any]]) -> None:
    echo_heading(f"Community Reports ({len(rows)})")
    for row in rows:
        severity = row.get("severity", "")
        typer.echo(f"  #{row.get('id')} {row.get('created_at')} by {row.get('reported_by')} ", nl=False)
        typer.secho(str(severity).upper(), fg=_TIER_COLORS.get(severity))
        typer.echo(f"    {row.get('description')}")
        if row.get("notes"):
            typer.echo(f"    notes: {row.get('notes')}")
