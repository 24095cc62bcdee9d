"""HTTP route definitions for the service."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from app.schemas import HealthStatus, SensorReadings, SensorWithLatest, Station
from models.records import Between, TimeSpec
from services.errors import InvalidWindowError
from services.ingestion import IngestionPipeline, build_default_pipeline
from services.query import QueryService, build_default_query_service

router = APIRouter(prefix="/api/v1")
health_router = APIRouter()


def get_query_service() -> QueryService:
    return build_default_query_service()


def get_pipeline() -> IngestionPipeline:
    return build_default_pipeline()


def _window_side(absolute: Optional[datetime], minutes: Optional[int]) -> TimeSpec:
    if absolute is not None:
        return absolute
    if minutes is not None:
        return timedelta(minutes=minutes)
    return None


def _not_found(exc: KeyError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.args[0])


@router.get(
    "/stations",
    response_model=List[Station],
    summary="List all provisioned stations.",
)
async def list_stations(
    queries: QueryService = Depends(get_query_service),
) -> List[Station]:
    return queries.list_stations()


@router.get(
    "/stations/{station_id}",
    response_model=Station,
    summary="Fetch a single station.",
)
async def get_station(
    station_id: str,
    queries: QueryService = Depends(get_query_service),
) -> Station:
    try:
        return queries.get_station(station_id)
    except KeyError as exc:
        raise _not_found(exc) from exc


@router.get(
    "/stations/{station_id}/sensors",
    response_model=List[SensorWithLatest],
    summary="List a station's sensors with their latest reading.",
)
async def list_station_sensors(
    station_id: str,
    queries: QueryService = Depends(get_query_service),
) -> List[SensorWithLatest]:
    try:
        return queries.list_sensors_by_station(station_id)
    except KeyError as exc:
        raise _not_found(exc) from exc


@router.get(
    "/sensors/{sensor_id}",
    response_model=SensorWithLatest,
    summary="Fetch a sensor with its latest reading.",
)
async def get_sensor(
    sensor_id: str,
    queries: QueryService = Depends(get_query_service),
) -> SensorWithLatest:
    try:
        return queries.get_sensor(sensor_id)
    except KeyError as exc:
        raise _not_found(exc) from exc


@router.get(
    "/sensors/{sensor_id}/readings",
    response_model=SensorReadings,
    summary="Fetch a sensor's readings inside a time window.",
)
async def get_sensor_readings(
    sensor_id: str,
    start: Optional[datetime] = Query(None, description="Absolute window start (inclusive)."),
    end: Optional[datetime] = Query(None, description="Absolute window end (exclusive)."),
    from_minutes: Optional[int] = Query(
        None, ge=0, description="Window start as minutes before now; ignored if start is set."
    ),
    to_minutes: Optional[int] = Query(
        None, ge=0, description="Window end as minutes before now; ignored if end is set."
    ),
    limit: Optional[int] = Query(None, ge=1, le=10_000),
    cursor: Optional[str] = Query(None, description="next_cursor from a previous page."),
    queries: QueryService = Depends(get_query_service),
) -> SensorReadings:
    spec = Between(
        start=_window_side(start, from_minutes),
        end=_window_side(end, to_minutes),
    )
    try:
        sensor = queries.get_sensor(sensor_id).sensor
        page = queries.get_sensor_readings_in_window(
            sensor_id, spec, limit=limit, cursor=cursor
        )
    except KeyError as exc:
        raise _not_found(exc) from exc
    except InvalidWindowError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return SensorReadings(sensor=sensor, readings=page.readings, next_cursor=page.next_cursor)


@health_router.get(
    "/health",
    response_model=HealthStatus,
    summary="Health check reflecting store availability for ingestion.",
)
async def healthcheck(
    request: Request,
    response: Response,
    pipeline: IngestionPipeline = Depends(get_pipeline),
) -> HealthStatus:
    subscriber = getattr(request.app.state, "subscriber", None)
    healthy = pipeline.healthy
    if not healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return HealthStatus(
        status="ok" if healthy else "degraded",
        consecutive_store_failures=pipeline.consecutive_store_failures,
        subscriber_connected=subscriber.connected if subscriber is not None else None,
    )


@health_router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
