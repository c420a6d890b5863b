"""
SiPatrol - Security Patrol Reporting API
Receives geotagged photo reports from field devices, including reports
captured offline and delivered later by the device's sync engine.
"""
import logging

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .core.config import settings
from .models.base import Base, engine
from .models import profile, report  # noqa: F401  registers the tables
from .api import profile as profile_api, reports
from .seed_demo import seed_demo_data

logging.basicConfig(level=settings.LOG_LEVEL)

# Create all database tables
# NOTE: In production, use Alembic migrations instead of create_all()
Base.metadata.create_all(bind=engine)

# Seed a demo unit and profiles (idempotent)
if settings.SEED_DEMO_DATA:
    seed_demo_data()

app = FastAPI(
    title=f"{settings.APP_NAME} Report API",
    description=(
        "Role-gated security-patrol reporting. Security officers submit "
        "geotagged photo reports; submissions are idempotent so field devices "
        "can safely retry deliveries whose outcome is unknown."
    ),
    version=settings.VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(profile_api.router, prefix="/api/v1")
app.include_router(reports.router, prefix="/api/v1")


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "SiPatrol API", "version": settings.VERSION}


def run():
    """Entry point for ``sipatrol-api``."""
    uvicorn.run("sipatrol.main:app", host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())
