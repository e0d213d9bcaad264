from __future__ import annotations
import asyncio
import logging
from datetime import datetime, timezone

from ..core import nats as bus
from ..core.config import get_settings
from ..models import Visit, as_utc

logger = logging.getLogger(__name__)
settings = get_settings()

def _iso(dt: datetime) -> str:
    return as_utc(dt).astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

def visit_event(event: str, visit: Visit, at: datetime) -> dict:
    evt = {
        "visit_id": visit.id,
        "user_id": visit.user_id,
        "garden_id": visit.garden_id,
        "dog_ids": visit.dog_ids,
        "status": visit.status.value,
        "at": _iso(at),
        "idempotency_key": f"{visit.id}:{event}",
    }
    if visit.duration_minutes is not None:
        evt["duration_minutes"] = visit.duration_minutes
    return evt

async def dispatch(event: str, visit: Visit, at: datetime) -> bool:
    """
    Publish after the visit change is committed. Awaited inline but capped at
    ``event_publish_timeout`` seconds; a slow or failed publish never undoes
    the visit change.
    """
    if not settings.enable_events:
        return False
    try:
        await asyncio.wait_for(
            bus.publish_visit_event(event, visit_event(event, visit, at)), timeout=settings.event_publish_timeout
        )
    except Exception:
        logger.warning("failed to publish %s for visit %s", event, visit.id, exc_info=True)
        return False
    return True
