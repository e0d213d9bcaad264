from __future__ import annotations
import json
import logging
from typing import Sequence
from nats.aio.client import Client as NATS
from .config import get_settings

logger = logging.getLogger(__name__)

_settings = get_settings()
_nats = NATS()

async def nats_connect():
    if not _nats.is_connected:
        servers: Sequence[str] = [u.strip() for u in _settings.nats_urls.split(",") if u.strip()]
        await _nats.connect(servers=servers, allow_reconnect=True, connect_timeout=2, max_reconnect_attempts=3)

async def nats_close():
    try:
        if _nats.is_connected:
            await _nats.drain()
    except Exception:
        logger.warning("nats drain failed", exc_info=True)

def subject_for(event: str) -> str:
    return f"{_settings.nats_subject_prefix}.{event}"

async def publish_visit_event(event: str, evt: dict):
    """
    event in {"checked_in", "checked_out", "cancelled", "reminder"}
    evt = {
      "visit_id": str,
      "user_id": str,
      "garden_id": str,
      "dog_ids": [str],
      "at": iso8601,
      "idempotency_key": "visit_id:event"
    }
    """
    await nats_connect()
    await _nats.publish(subject_for(event), json.dumps(evt).encode("utf-8"))
