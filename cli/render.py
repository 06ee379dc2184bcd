from __future__ import annotations

from typing import Any, Dict, Iterable, Sequence

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def render_readings(readings: Iterable[Sequence[Any]]) -> None:
    rows = list(readings)
    echo_heading(f"Recent readings ({len(rows)})")
    if not rows:
        typer.echo("No readings stored yet.")
        return
    for timestamp, consumption in rows:
        typer.echo(f"  {timestamp}  {consumption} kW")


def render_acknowledgement(payload: Dict[str, Any]) -> None:
    status = payload.get("status")
    color = typer.colors.GREEN if status == "success" else typer.colors.YELLOW
    typer.secho(f"{status}: {payload.get('message')}", fg=color)
