"""
FastAPI app entrypoint.

Admin API for notification triggers, scheduled notifications and throttling, plus the
background job that delivers due notifications and evaluates triggers.
"""
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from apscheduler.schedulers.background import BackgroundScheduler
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load .env from backend/ before any app code
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from portal.api.routes import notifications, push, throttle, triggers
from portal.config import settings
from portal.core.constants import TRIGGER_JOB_ID
from portal.scheduler.trigger_job import run_trigger_job

logger = logging.getLogger(__name__)

# Scheduler: deliver due notifications / evaluate triggers every poll interval
_scheduler = BackgroundScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.scheduler_enabled:
        _scheduler.add_job(
            run_trigger_job,
            "interval",
            seconds=settings.trigger_poll_interval_seconds,
            id=TRIGGER_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        _scheduler.start()
        app.state.scheduler = _scheduler
        logger.info(
            "Trigger job scheduled every %ss (provider=%s)",
            settings.trigger_poll_interval_seconds,
            settings.push_provider,
        )
    else:
        logger.info("Scheduler disabled (SCHEDULER_ENABLED=false); use POST /notifications/process")
    yield
    if _scheduler.running:
        _scheduler.shutdown(wait=False)


app = FastAPI(title="Portal Trigger Engine", version="0.1.0", lifespan=lifespan)

# CORS: admin dev origins + optional CORS_ORIGINS env (comma-separated) for the deployed admin UI
_cors_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
_cors_extra = os.getenv("CORS_ORIGINS", "")
if _cors_extra:
    _cors_origins.extend(o.strip() for o in _cors_extra.split(",") if o.strip())
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(triggers.router, tags=["triggers"])
app.include_router(notifications.router, tags=["notifications"])
app.include_router(throttle.router, tags=["throttle"])
app.include_router(push.router, tags=["push"])


@app.get("/", include_in_schema=False)
def root():
    """Root: point to API docs and health."""
    return {"message": "Portal Trigger Engine", "docs": "/docs", "health": "/health"}


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
