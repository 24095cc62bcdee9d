from __future__ import annotations

import time
from typing import Any, Dict, Iterator, List, Optional

import httpx
import typer

from cli.config import CLIConfig

_API_PREFIX = "/api/v1"


class ApiClient:
    """Minimal HTTP client for the telemetry query API."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.request_timeout)

    def close(self) -> None:
        self._client.close()

    def list_stations(self) -> List[Dict[str, Any]]:
        return self._get("/stations", not_found="Stations endpoint was not found.")

    def list_sensors(self, station_id: str) -> List[Dict[str, Any]]:
        return self._get(
            f"/stations/{station_id}/sensors",
            not_found=f"Station {station_id} was not found.",
        )

    def get_sensor(self, sensor_id: str) -> Dict[str, Any]:
        return self._get(f"/sensors/{sensor_id}", not_found=f"Sensor {sensor_id} was not found.")

    def get_readings(
        self,
        sensor_id: str,
        from_minutes: Optional[int] = None,
        to_minutes: Optional[int] = None,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> Dict[str, Any]:
        params = {
            name: value
            for name, value in (
                ("from_minutes", from_minutes),
                ("to_minutes", to_minutes),
                ("limit", limit),
                ("cursor", cursor),
            )
            if value is not None
        }
        return self._get(
            f"/sensors/{sensor_id}/readings",
            params=params,
            not_found=f"Sensor {sensor_id} was not found.",
        )

    def watch_latest(
        self, sensor_id: str, interval: float, timeout: float
    ) -> Iterator[Dict[str, Any]]:
        """Yield the sensor's latest reading each time it changes, until ``timeout``."""
        deadline = time.monotonic() + timeout
        last_seen: Optional[str] = None
        while time.monotonic() <= deadline:
            latest = self.get_sensor(sensor_id).get("latest")
            if latest and latest.get("recorded_at") != last_seen:
                last_seen = latest.get("recorded_at")
                yield latest
            time.sleep(interval)

    def _get(
        self,
        path: str,
        not_found: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        try:
            response = self._client.get(f"{_API_PREFIX}{path}", params=params)
            if response.status_code == 404:
                raise typer.BadParameter(not_found)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: str | None = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except ValueError:
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
