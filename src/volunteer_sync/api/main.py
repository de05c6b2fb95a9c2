"""FastAPI application factory."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from volunteer_sync.api.routes import records, sync as sync_routes

logger = logging.getLogger(__name__)


def create_app(start_scheduler: bool = False) -> FastAPI:
    """Build and return the FastAPI app.

    Args:
        start_scheduler: run the periodic/cleanup/delta sync jobs inside the
            API process (used when the API is the only process).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        scheduler = None
        unsubscribe = None
        if start_scheduler:
            from volunteer_sync.bootstrap import get_services
            from volunteer_sync.scheduler.jobs import attach_delta_trigger, build_scheduler

            services = get_services()
            scheduler = build_scheduler(services.service)
            unsubscribe = attach_delta_trigger(scheduler, services.service, services.store)
            scheduler.start()
            logger.info("Sync scheduler started inside API process")
        yield
        if scheduler is not None:
            unsubscribe()
            scheduler.shutdown(wait=False)

    app = FastAPI(
        title="Volunteer Sync API",
        description="Offline-first volunteer attendance store synced to Google Sheets",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])
    app.include_router(records.router, prefix="/records", tags=["records"])

    return app


# Module-level app instance for uvicorn
app = create_app(start_scheduler=True)
