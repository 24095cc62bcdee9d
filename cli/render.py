from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

import typer

from datastore.keys import split_reading_key


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def _format_reading(reading: Optional[Dict[str, Any]]) -> str:
    if not reading:
        return "no readings"
    return f"{reading.get('value')} @ {reading.get('recorded_at')}"


def _describe_cursor(cursor: str) -> str:
    try:
        _, resumes_at = split_reading_key(cursor)
    except ValueError:
        return "More readings available"
    return f"More readings from {resumes_at.isoformat()}"


def render_stations(stations: Iterable[Dict[str, Any]]) -> None:
    echo_heading("Stations")
    rows = list(stations)
    if not rows:
        typer.echo("No stations provisioned.")
        return
    for station in rows:
        typer.echo(f"  - {station.get('name')} ({station.get('id')})")


def render_sensors(sensors: Iterable[Dict[str, Any]]) -> None:
    echo_heading("Sensors")
    rows = list(sensors)
    if not rows:
        typer.echo("No sensors recorded for this station.")
        return
    for entry in rows:
        sensor = entry.get("sensor") or {}
        typer.echo(
            f"  - {sensor.get('display_name')} ({sensor.get('id')}): "
            f"{_format_reading(entry.get('latest'))}"
        )


def render_sensor(payload: Dict[str, Any]) -> None:
    sensor = payload.get("sensor") or {}
    echo_heading("Sensor")
    echo_key_values(
        [
            ("id", sensor.get("id")),
            ("station_id", sensor.get("station_id")),
            ("display_name", sensor.get("display_name")),
            ("latest", _format_reading(payload.get("latest"))),
        ]
    )


def render_readings(payload: Dict[str, Any]) -> None:
    sensor = payload.get("sensor") or {}
    echo_heading(f"Readings for {sensor.get('display_name', 'sensor')}")
    readings = payload.get("readings") or []
    if readings:
        for reading in readings:
            typer.echo(f"  {reading.get('recorded_at')}  {reading.get('value')}")
    else:
        typer.echo("No readings in this window.")
    cursor = payload.get("next_cursor")
    if cursor:
        typer.echo()
        typer.echo(f"{_describe_cursor(cursor)}; next_cursor={cursor}")


def render_reading(reading: Dict[str, Any]) -> None:
    typer.echo(f"{reading.get('recorded_at')}  {reading.get('value')}")
