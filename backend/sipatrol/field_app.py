"""
SiPatrol field service.
Runs on the officer's device next to the capture UI: reports are queued
locally and delivered to the report API whenever it is reachable.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from .core.config import settings
from .api import offline_reports
from .services.patrol_agent import PatrolAgent

logging.basicConfig(level=settings.LOG_LEVEL)


def create_field_app(agent: Optional[PatrolAgent] = None) -> FastAPI:
    """Build the field app around an agent that lives as long as the app does."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await app.state.agent.start()
        try:
            yield
        finally:
            await app.state.agent.stop()

    app = FastAPI(
        title=f"{settings.APP_NAME} Field Service",
        description="Offline report capture and background delivery for patrol devices.",
        version=settings.VERSION,
        lifespan=lifespan,
    )
    app.state.agent = agent or PatrolAgent()
    app.include_router(offline_reports.router, prefix="/api/v1")

    @app.get("/health")
    def health_check():
        return {"status": "healthy", "service": "SiPatrol Field Service", "version": settings.VERSION}

    return app


def run():
    """Entry point for ``sipatrol-field``; the factory builds a fresh agent in the server process."""
    uvicorn.run(
        "sipatrol.field_app:create_field_app",
        factory=True,
        host=settings.FIELD_HOST,
        port=settings.FIELD_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )
