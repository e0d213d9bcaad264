from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .db import init_db, async_session_maker
from .routers import dogs, gardens, visits
from .core.config import get_settings
from .core.logging import configure_logging
from .core.redis import ping_redis
from .core.nats import nats_connect, nats_close
from .services.occupancy import reconcile_all
from .services.reminders import send_visit_reminders

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)
scheduler = AsyncIOScheduler()

async def run_visit_reminders():
    try:
        async with async_session_maker() as db:
            await send_visit_reminders(db, after_minutes=settings.visit_reminder_after_minutes)
    except Exception:
        logger.exception("visit reminder job failed")

async def run_occupancy_reconcile():
    try:
        async with async_session_maker() as db:
            fixed = await reconcile_all(db)
        if fixed:
            logger.warning("occupancy drift repaired for %d gardens", fixed)
    except Exception:
        logger.exception("occupancy reconcile job failed")

@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    # best-effort connect to infra; service still runs if these fail
    if settings.enable_events:
        try:
            await nats_connect()
        except Exception:
            logger.warning("nats unavailable at startup; visit events will be retried per publish")
    if not await ping_redis():
        logger.warning("redis unavailable at startup; rate limiting fails open")

    if settings.enable_scheduler:
        scheduler.add_job(run_visit_reminders, "interval", seconds=settings.reminder_interval_seconds)
        scheduler.add_job(run_occupancy_reconcile, "interval", seconds=settings.occupancy_reconcile_seconds)
        scheduler.start()

    yield

    if scheduler.running:
        scheduler.shutdown(wait=False)
    await nats_close()

app = FastAPI(title="pawpals-visits-svc", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(visits.router)
app.include_router(gardens.router)
app.include_router(dogs.router)

@app.get("/health")
async def health():
    return {"status": "ok", "service": "pawpals-visits-svc"}

Instrumentator().instrument(app).expose(app)
