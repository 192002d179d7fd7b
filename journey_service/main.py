"""Main application entry point."""
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
import uvicorn

from journey_service.api.routes import router, journey_error_handler
from journey_service.business.notification_service import (
    NullNotificationDispatcher,
    SmsService,
)
from journey_service.config import config
from journey_service.events.consumer import build_journey_consumer
from journey_service.events.event_queue import EventQueue
from journey_service.flow_control.journey.engine import JourneyEngine
from journey_service.flow_control.journey.errors import JourneyError
from journey_service.logging_config import setup_logging, get_logger
from journey_service.scheduler.sweeper import TimeWindowSweeper

logger = get_logger(__name__)


def build_engine() -> JourneyEngine:
    """Create an engine wired with the configured notification dispatcher."""
    notifier = SmsService() if config.notifications.enabled else NullNotificationDispatcher()
    return JourneyEngine(notifier=notifier)


def create_app(
    engine: Optional[JourneyEngine] = None,
    event_queue: Optional[EventQueue] = None,
    definitions_dir: Optional[Path] = None,
) -> FastAPI:
    """
    Build the FastAPI application around one engine instance.

    Journey definitions are loaded and the background dispatcher and
    sweeper threads are started when the application starts up.
    """
    engine = engine or build_engine()
    event_queue = event_queue or EventQueue()
    definitions_dir = Path(definitions_dir or config.journeys.definitions_dir)
    sweeper = TimeWindowSweeper(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting User Journey Service")

        if definitions_dir.is_dir():
            engine.initialize(definitions_dir)
        else:
            logger.warning("Journey definitions directory not found", directory=str(definitions_dir))

        consumer_handle = event_queue.register_consumer(build_journey_consumer(engine))
        event_queue.start()
        sweeper.start()

        logger.info(
            "All services started successfully",
            journeys=len(engine.list_journeys()),
            sweep_interval_seconds=sweeper.interval_seconds,
        )

        yield

        logger.info("Shutting down User Journey Service")
        sweeper.stop(timeout=5)
        event_queue.stop(timeout=5)
        event_queue.unregister_consumer(consumer_handle)
        logger.info("Shutdown complete")

    app = FastAPI(title="User Journey Service", version="0.1.0", lifespan=lifespan)
    app.state.engine = engine
    app.state.event_queue = event_queue
    app.state.sweeper = sweeper

    app.add_exception_handler(JourneyError, journey_error_handler)
    app.include_router(router)

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {"status": "ok", "service": "user-journey-service"}

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


def main():
    """Run the application."""
    setup_logging()
    logger.info("Starting FastAPI server", host=config.api.host, port=config.api.port)
    uvicorn.run(
        create_app(),
        host=config.api.host,
        port=config.api.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
