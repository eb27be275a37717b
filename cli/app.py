from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import (
    echo_key_values,
    render_analysis,
    render_comparison,
    render_import,
    render_readings,
    render_reports,
    render_summary,
)


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Record water-quality readings, inspect aggregates and request AI analysis.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Service base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for each request.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("add")
def add_command(
    ctx: typer.Context,
    source_id: int = typer.Option(..., "--source-id", "-s", help="Water source id."),
    location: str = typer.Option(..., "--location", "-l", help="Where the sample was taken."),
    ph: Optional[float] = typer.Option(None, "--ph", help="pH level (0-14)."),
    turbidity: Optional[float] = typer.Option(None, "--turbidity", help="Turbidity in NTU."),
    temperature: Optional[float] = typer.Option(None, "--temperature", help="Temperature in °C."),
    bacteria: Optional[float] = typer.Option(None, "--bacteria", help="Bacterial count in CFU/ml."),
    oxygen: Optional[float] = typer.Option(None, "--oxygen", help="Dissolved oxygen in mg/L."),
    chlorine: Optional[float] = typer.Option(None, "--chlorine", help="Chlorine in ppm."),
    tds: Optional[float] = typer.Option(None, "--tds", help="Total dissolved solids in ppm."),
) -> None:
    """Record a manually measured reading."""
    state = _get_state(ctx)
    payload = state.client.add_reading(
        {
            "water_source_id": source_id,
            "location": location,
            "ph_level": ph,
            "turbidity": turbidity,
            "temperature": temperature,
            "bacterial_count": bacteria,
            "dissolved_oxygen": oxygen,
            "chlorine_level": chlorine,
            "tds_level": tds,
        }
    )
    typer.secho(f"Reading recorded. id={payload.get('id')}", fg=typer.colors.GREEN)


@app.command("import")
def import_command(
    ctx: typer.Context,
    file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="Path to CSV file."),
) -> None:
    """Import community readings from a CSV file."""
    state = _get_state(ctx)
    typer.echo(f"Importing {file} to {state.config.base_url} ...")
    render_import(state.client.import_file(file))


@app.command("readings")
def readings_command(
    ctx: typer.Context,
    source: str = typer.Option("all", "--source", help="Source id or 'all'."),
    start: Optional[str] = typer.Option(None, "--start", help="ISO start (needs --end)."),
    end: Optional[str] = typer.Option(None, "--end", help="ISO end (needs --start)."),
    sort_by: str = typer.Option("timestamp", "--sort-by", help="timestamp or a parameter name."),
    order: str = typer.Option("desc", "--order", help="asc or desc."),
    policy: str = typer.Option("three_tier", "--policy", help="three_tier or two_tier."),
) -> None:
    """List readings with their risk tier."""
    state = _get_state(ctx)
    rows = state.client.list_readings(
        {
            "source_id": source,
            "start": start,
            "end": end,
            "sort_by": sort_by,
            "order": order,
            "policy": policy,
        }
    )
    render_readings(rows)


@app.command("summary")
def summary_command(
    ctx: typer.Context,
    source: str = typer.Option("all", "--source", help="Source id or 'all'."),
    start: Optional[str] = typer.Option(None, "--start"),
    end: Optional[str] = typer.Option(None, "--end"),
) -> None:
    """Show per-parameter statistics."""
    state = _get_state(ctx)
    render_summary(state.client.summary({"source_id": source, "start": start, "end": end}))


@app.command("export")
def export_command(
    ctx: typer.Context,
    output_dir: Path = typer.Option(Path("."), "--output-dir", "-o", file_okay=False),
    source: str = typer.Option("all", "--source", help="Source id or 'all'."),
    start: Optional[str] = typer.Option(None, "--start"),
    end: Optional[str] = typer.Option(None, "--end"),
) -> None:
    """Download the filtered readings as CSV."""
    state = _get_state(ctx)
    filename, body = state.client.export_csv({"source_id": source, "start": start, "end": end})
    output_dir.mkdir(parents=True, exist_ok=True)
    target = output_dir / filename
    target.write_text(body, encoding="utf-8")
    typer.secho(f"Wrote {target}", fg=typer.colors.GREEN)


@app.command("compare")
def compare_command(
    ctx: typer.Context,
    source_ids: List[int] = typer.Argument(..., help="Source ids to compare."),
) -> None:
    """Compare parameter averages across sources."""
    state = _get_state(ctx)
    render_comparison(state.client.compare(source_ids))


@app.command("analyze")
def analyze_command(
    ctx: typer.Context,
    language: str = typer.Option("en", "--language", help="en or te."),
) -> None:
    """Request an AI analysis of the most recent reading."""
    state = _get_state(ctx)
    if language not in {"en", "te"}:
        raise typer.BadParameter("language must be 'en' or 'te'.")
    payload = state.client.analyze()
    if payload.get("status") == "fallback_applied":
        echo_key_values([("note", "model answer unusable; showing conservative guidance")])
    render_analysis(payload, language=language)


@app.command("report")
def report_command(
    ctx: typer.Context,
    description: str = typer.Option(..., "--description", "-d", help="What was observed."),
    severity: str = typer.Option(..., "--severity", help="low, medium or high."),
    reported_by: str = typer.Option(..., "--by", help="Name of the person reporting."),
    notes: Optional[str] = typer.Option(None, "--notes", help="Additional observations."),
) -> None:
    """Submit a community water-quality report."""
    state = _get_state(ctx)
    payload = state.client.add_report(
        {
            "description": description,
            "severity": severity,
            "reported_by": reported_by,
            "notes": notes,
        }
    )
    typer.secho(f"Report submitted. id={payload.get('id')}", fg=typer.colors.GREEN)


@app.command("reports")
def reports_command(ctx: typer.Context) -> None:
    """List community reports, newest first."""
    state = _get_state(ctx)
    render_reports(state.client.list_reports())
