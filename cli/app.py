from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import List, Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import (
    render_reading,
    render_readings,
    render_sensor,
    render_sensors,
    render_stations,
)
from datastore.ordered_store import OrderedStore, StoreUnavailableError, build_default_store
from logging_config import configure_logging
from services.provisioning import provision_stations
from settings import get_settings
from transport.mqtt_subscriber import build_default_subscriber, build_mqtt_client
from transport.simulator import SIMULATED_STATIONS, SensorSimulator


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for the station telemetry service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        typer.secho("CLI state is uninitialized.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return state


def _open_store() -> OrderedStore:
    try:
        return build_default_store()
    except StoreUnavailableError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Telemetry API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    poll_interval: Optional[float] = typer.Option(
        None,
        "--poll-interval",
        help="Seconds between checks when watching a sensor.",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Maximum seconds to watch a sensor.",
    ),
) -> None:
    """Entry point for the CLI."""
    try:
        config = load_config(
            base_url=base_url,
            poll_interval=poll_interval,
            watch_timeout=timeout,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--base-url") from exc
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("stations")
def stations_command(ctx: typer.Context) -> None:
    """List provisioned stations."""
    state = _get_state(ctx)
    render_stations(state.client.list_stations())


@app.command("sensors")
def sensors_command(
    ctx: typer.Context,
    station_id: str = typer.Argument(..., help="Station id as returned by `stations`."),
) -> None:
    """List a station's sensors with their latest values."""
    state = _get_state(ctx)
    render_sensors(state.client.list_sensors(station_id))


@app.command("sensor")
def sensor_command(
    ctx: typer.Context,
    sensor_id: str = typer.Argument(..., help="Sensor id."),
) -> None:
    """Show one sensor and its latest value."""
    state = _get_state(ctx)
    render_sensor(state.client.get_sensor(sensor_id))


@app.command("readings")
def readings_command(
    ctx: typer.Context,
    sensor_id: str = typer.Argument(..., help="Sensor id."),
    from_minutes: Optional[int] = typer.Option(
        None, "--from-minutes", min=0, help="Window start, in minutes before now."
    ),
    to_minutes: Optional[int] = typer.Option(
        None, "--to-minutes", min=0, help="Window end, in minutes before now."
    ),
    limit: Optional[int] = typer.Option(None, "--limit", min=1, help="Page size."),
    cursor: Optional[str] = typer.Option(None, "--cursor", help="Resume from a previous page."),
) -> None:
    """Show a sensor's readings inside a time window."""
    state = _get_state(ctx)
    payload = state.client.get_readings(
        sensor_id,
        from_minutes=from_minutes,
        to_minutes=to_minutes,
        limit=limit,
        cursor=cursor,
    )
    render_readings(payload)


@app.command("watch")
def watch_command(
    ctx: typer.Context,
    sensor_id: str = typer.Argument(..., help="Sensor id."),
) -> None:
    """Print a sensor's latest value whenever it changes."""
    state = _get_state(ctx)
    typer.echo(
        f"Watching {sensor_id} (interval={state.config.poll_interval}s, "
        f"timeout={state.config.watch_timeout}s)..."
    )
    for reading in state.client.watch_latest(
        sensor_id,
        interval=state.config.poll_interval,
        timeout=state.config.watch_timeout,
    ):
        render_reading(reading)


@app.command("seed")
def seed_command(
    names: Optional[List[str]] = typer.Argument(
        None, help="Station names. Defaults to SEED_STATIONS, then the simulator's stations."
    ),
) -> None:
    """Provision stations in the local store."""
    configure_logging()
    requested = names or list(get_settings().seed_stations) or list(SIMULATED_STATIONS)
    stations = provision_stations(_open_store(), requested)
    for station in stations:
        typer.echo(f"{station.name}: {station.id}")


@app.command("consume")
def consume_command() -> None:
    """Subscribe to the broker and ingest readings into the local store."""
    configure_logging()
    settings = get_settings()
    provision_stations(_open_store(), settings.seed_stations)
    subscriber = build_default_subscriber()
    subscriber.start()
    typer.echo(f"Consuming {subscriber.subscription} from {settings.mqtt_host}:{settings.mqtt_port}")
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        typer.echo("Stopping...")
    finally:
        subscriber.stop()


@app.command("simulate")
def simulate_command(
    interval: float = typer.Option(5.0, "--interval", min=0.0, help="Seconds between rounds."),
    rounds: Optional[int] = typer.Option(
        None, "--rounds", min=1, help="Stop after this many rounds (default: run forever)."
    ),
) -> None:
    """Publish random values for the simulated sensors."""
    configure_logging()
    settings = get_settings()
    client = build_mqtt_client(f"{settings.mqtt_client_id}-simulator")
    client.connect(settings.mqtt_host, settings.mqtt_port)
    client.loop_start()
    simulator = SensorSimulator(
        publish=lambda topic, payload: client.publish(topic, payload, qos=1),
        topic_prefix=settings.topic_prefix,
    )
    try:
        completed = simulator.run(interval=interval, rounds=rounds)
    except KeyboardInterrupt:
        completed = None
    finally:
        client.disconnect()
        client.loop_stop()
    if completed is not None:
        typer.echo(f"Published {completed} rounds to {len(simulator.topics)} topics.")
