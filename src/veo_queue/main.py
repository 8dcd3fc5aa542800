"""Main FastAPI application entry point."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from veo_queue import __version__
from veo_queue.api.routes import router
from veo_queue.core.config import settings
from veo_queue.core.logging import configure_logging
from veo_queue.services.events import Event, EventKind
from veo_queue.services.queue import VideoQueue

logger = structlog.get_logger()


def log_notifications(event: Event) -> None:
    """Surface user-facing events in the log."""
    if event.kind == EventKind.NOTIFICATION:
        logger.info("notification", title=event.payload["title"], body=event.payload["body"])
    elif event.kind == EventKind.PAUSED_BY_CAP:
        logger.warning("queue_paused_by_cost_cap", cap=event.payload["cap"])
    elif event.kind == EventKind.PAUSED_BY_QUOTA:
        logger.warning("queue_paused_by_quota", reason=event.payload["reason"])
    elif event.kind == EventKind.COOLDOWN_ENDED:
        logger.info("quota_cooldown_ended", concurrency=event.payload.get("concurrency"))


def create_app(queue: VideoQueue | None = None) -> FastAPI:
    """Create the application, building a queue from settings if none is given."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Application lifespan manager."""
        configure_logging(debug=settings.debug, json=settings.log_json)
        logger.info("Starting Veo Queue", version=__version__)

        video_queue = queue or VideoQueue(settings)
        unsubscribe = video_queue.events.subscribe(log_notifications)
        app.state.queue = video_queue
        await video_queue.open()

        yield

        await video_queue.close()
        unsubscribe()
        logger.info("Veo Queue shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        description="Concurrency-bounded queue for Veo video generation",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app


app = create_app()


def run() -> None:
    """Run the API server with uvicorn."""
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)
