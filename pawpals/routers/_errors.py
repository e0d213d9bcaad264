from __future__ import annotations
import logging
from typing import Any, Callable
from fastapi import HTTPException

from ..errors import AlreadyCheckedIn, VisitError

logger = logging.getLogger(__name__)

def to_http_error(exc: VisitError, *, serialize_visit: Callable[[Any], dict] | None = None) -> HTTPException:
    """Translate a domain outcome into the HTTP error the client decodes by ``code``."""
    detail = exc.to_detail()
    if isinstance(exc, AlreadyCheckedIn) and exc.active_visit is not None and serialize_visit:
        detail["active_visit"] = serialize_visit(exc.active_visit)
    logger.info("visit request refused: %s", exc.code)
    return HTTPException(status_code=exc.status_code, detail=detail)
