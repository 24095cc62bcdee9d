from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import health_router, router
from datastore.ordered_store import build_default_store
from logging_config import configure_logging
from services.ingestion import build_default_pipeline
from services.provisioning import provision_stations
from settings import get_settings
from transport.mqtt_subscriber import build_default_subscriber

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    provision_stations(build_default_store(), settings.seed_stations)
    pipeline = build_default_pipeline()
    subscriber = None
    if settings.mqtt_enabled:
        subscriber = build_default_subscriber(pipeline)
        subscriber.start()
    else:
        logger.info("MQTT ingestion disabled; serving queries only")
    app.state.subscriber = subscriber
    try:
        yield
    finally:
        if subscriber is not None:
            subscriber.stop()
        else:
            pipeline.shutdown()
        app.state.subscriber = None
        build_default_pipeline.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Station Telemetry",
        description="Ingests station sensor readings from MQTT and serves time-windowed queries.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    app.include_router(health_router)
    return app

app = create_app()
