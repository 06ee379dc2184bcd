from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import paho.mqtt.publish as mqtt_publish
import typer
import uvicorn

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_acknowledgement, render_readings
from logging_config import configure_logging
from settings import get_settings


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Run and query the energy monitor service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        typer.secho("CLI state is uninitialized.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Service base URL (defaults to API_BASE_URL env or http://localhost:8080).",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("serve")
def serve_command(
    host: str = typer.Option("0.0.0.0", "--host", help="Interface to bind."),
    port: int = typer.Option(8080, "--port", "-p", help="Port to listen on."),
) -> None:
    """Start ingestion and the HTTP API in this process."""
    configure_logging()
    uvicorn.run("app.main:app", host=host, port=port, log_config=None)


@app.command("energy")
def energy_command(
    ctx: typer.Context,
    limit: Optional[int] = typer.Option(
        None, "--limit", "-n", min=1, help="Show at most this many readings."
    ),
) -> None:
    """Show the most recent readings, newest first."""
    state = _get_state(ctx)
    readings = state.client.get_energy()
    if limit is not None:
        readings = readings[:limit]
    render_readings(readings)


@app.command("alert")
def alert_command(
    ctx: typer.Context,
    message: str = typer.Argument(..., help="Alert text to submit."),
) -> None:
    """Submit an alert to the service."""
    if not message.strip():
        raise typer.BadParameter("Alert message must not be empty.", param_hint="MESSAGE")
    state = _get_state(ctx)
    render_acknowledgement(state.client.send_alert(message))


@app.command("publish")
def publish_command(
    value: str = typer.Argument(..., help="Consumption value in kW, sent verbatim."),
    topic: Optional[str] = typer.Option(None, "--topic", "-t", help="Override MQTT_TOPIC."),
    host: Optional[str] = typer.Option(None, "--host", help="Override MQTT_HOST."),
    port: Optional[int] = typer.Option(None, "--port", help="Override MQTT_PORT."),
) -> None:
    """Publish one reading to the broker, acting as a telemetry producer."""
    settings = get_settings()
    target_topic = topic or settings.mqtt_topic
    target_host = host or settings.mqtt_host
    try:
        mqtt_publish.single(
            target_topic,
            payload=value,
            qos=settings.mqtt_qos,
            hostname=target_host,
            port=port or settings.mqtt_port,
        )
    except OSError as exc:
        typer.secho(f"Publish to {target_host} failed: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    typer.secho(f"Published {value!r} to {target_topic}", fg=typer.colors.GREEN)
