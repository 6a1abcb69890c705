"""Main FastAPI application: the host adapter and composition root."""
from fastapi import FastAPI
from contextlib import asynccontextmanager
import redis

from shield_study.api import health, lifecycle
from shield_study.config import build_study_config, get_settings
from shield_study.database import Base, SessionLocal, engine
from shield_study.middleware.logging import (
    PREF_LOGGING_LEVEL,
    LoggingMiddleware,
    configure_logging,
    get_logger,
)
from shield_study.models import StudyRecord  # noqa: F401  registers the table
from shield_study.services.coordinator import LifecycleCoordinator
from shield_study.services.feature import BaseFeature
from shield_study.services.prefs import PrefStore
from shield_study.services.study_utils import StudyUtils
from shield_study.services.telemetry import TelemetryClient

settings = get_settings()
logger = get_logger()


def build_coordinator(prefs: PrefStore, telemetry: TelemetryClient) -> LifecycleCoordinator:
    """
    Wire the study service, feature and config into a coordinator.

    The study service gets no uninstall hook: over HTTP the host learns that
    the study ended from `uninstall_requested` in the lifecycle response, then
    uninstalls the add-on and reports it with shutdown(UNINSTALL). Eligibility
    follows the `enrollment_open` setting.
    """
    study_service = StudyUtils(
        session_factory=SessionLocal,
        prefs=prefs,
        telemetry=telemetry
    )
    return LifecycleCoordinator(
        config=build_study_config(settings),
        study_service=study_service,
        feature_factory=BaseFeature,
        prefs=prefs
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown."""
    redis_client = redis.from_url(settings.redis_url)
    prefs = PrefStore(redis_client)
    configure_logging(prefs.get_int_pref(PREF_LOGGING_LEVEL, settings.logging_level))

    Base.metadata.create_all(bind=engine)
    logger.info("database_tables_ready")

    telemetry = TelemetryClient(
        base_url=settings.telemetry_url,
        timeout=settings.telemetry_timeout,
        enabled=settings.telemetry_enabled
    )
    app.state.coordinator = build_coordinator(prefs, telemetry)
    logger.info("coordinator_ready", study_name=settings.study_name)

    yield  # App runs here

    # Shutdown
    await telemetry.close()
    redis_client.close()
    logger.info("shutting_down", study_name=settings.study_name)


app = FastAPI(
    title="Shield Study Host",
    description="Lifecycle coordination for add-on shield studies",
    version="0.1.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan
)

# Logging middleware
app.add_middleware(LoggingMiddleware)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(lifecycle.router, tags=["lifecycle"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Shield Study Host",
        "version": "0.1.0",
        "docs": "/docs" if settings.debug else "disabled",
        "endpoints": {
            "health": "/health",
            "lifecycle": "POST /addon/{install,startup,shutdown,uninstall}",
            "info": "GET /study/info"
        }
    }


# uvicorn shield_study.main:app --reload
