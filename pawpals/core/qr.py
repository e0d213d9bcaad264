from __future__ import annotations
import json
import re
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Dict
from urllib.parse import parse_qs, unquote, urlsplit

from ..errors import QRParseError
from .config import get_settings
settings = get_settings()

MAX_QR_LEN = 2048

_OBJECT_ID_RE = re.compile(r"^[0-9a-f]{24}$", re.IGNORECASE)
_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE
)
_TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]{6,64}$")
# any prefix must use ":" separators; our own prefix may also use "-" or "_"
_SCHEME_RE = re.compile(
    r"^(?P<prefix>[a-z][a-z0-9+.]*):(?:garden|park):(?P<id>[A-Za-z0-9_-]+)$", re.IGNORECASE
)
_OWN_SCHEME_RE = re.compile(
    rf"^{re.escape(settings.qr_scheme_prefix)}[:_-](?:garden|park)[:_-](?P<id>[A-Za-z0-9_-]+)$", re.IGNORECASE
)

_JSON_ID_KEYS = ("gardenId", "garden_id", "id", "parkId", "park_id")
_JSON_NAME_KEYS = ("gardenName", "garden_name", "name")
_URL_QUERY_KEYS = ("gardenId", "garden_id", "id")

@dataclass(frozen=True)
class GardenReference:
    garden_id: str
    garden_name: str | None = None
    type: str = "checkin"
    format: str = "bare"  # json / url / scheme / bare

def _normalize_id(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not _TOKEN_RE.match(value) and not _UUID_RE.match(value):
        return None
    if _OBJECT_ID_RE.match(value) or _UUID_RE.match(value):
        return value.lower()
    return value

def _from_json(obj: Dict[str, Any]) -> GardenReference:
    raw_id = next((obj[k] for k in _JSON_ID_KEYS if obj.get(k)), None)
    nested = obj.get("garden")
    if raw_id is None and isinstance(nested, dict):
        raw_id = nested.get("_id") or nested.get("id")
    garden_id = _normalize_id(raw_id)
    if garden_id is None:
        raise QRParseError("QR JSON carries no usable garden id")
    name = next((obj[k] for k in _JSON_NAME_KEYS if isinstance(obj.get(k), str) and obj.get(k)), None)
    if name is None and isinstance(nested, dict) and isinstance(nested.get("name"), str):
        name = nested["name"]
    kind = obj.get("type") if isinstance(obj.get("type"), str) else "checkin"
    return GardenReference(garden_id=garden_id, garden_name=name, type=kind, format="json")

def _from_url(text: str) -> GardenReference | None:
    try:
        parts = urlsplit(text)
    except ValueError:
        return None
    if parts.scheme.lower() not in ("http", "https") or not parts.netloc:
        return None
    segments = [unquote(s) for s in parts.path.split("/") if s]
    candidate = segments[-1] if segments else None
    if candidate is None:
        query = parse_qs(parts.query)
        candidate = next((query[k][0] for k in _URL_QUERY_KEYS if query.get(k)), None)
    garden_id = _normalize_id(candidate)
    if garden_id is None:
        return None
    return GardenReference(garden_id=garden_id, format="url")

def _from_scheme(text: str) -> GardenReference | None:
    m = _OWN_SCHEME_RE.match(text) or _SCHEME_RE.match(text)
    if not m:
        return None
    garden_id = _normalize_id(m.group("id"))
    if garden_id is None:
        return None
    return GardenReference(garden_id=garden_id, format="scheme")

def parse_qr(raw: str) -> GardenReference:
    """Decode scanned QR text into a garden reference.

    Formats are tried in order: JSON object, http(s) URL, ``<prefix>:garden:<id>``,
    bare object id / UUID. Raises ``QRParseError`` when none applies; whether the
    garden exists is for the caller to find out.
    """
    if not isinstance(raw, str):
        raise QRParseError("QR payload must be text")
    text = raw.strip()
    if not text:
        raise QRParseError("Empty QR code")
    if len(text) > MAX_QR_LEN:
        raise QRParseError("QR payload too long")

    # a) structured JSON
    if text.startswith("{"):
        try:
            obj = json.loads(text)
        except ValueError:
            obj = None
        if isinstance(obj, dict):
            return _from_json(obj)

    # b) URL, c) custom scheme
    for attempt in (_from_url, _from_scheme):
        ref = attempt(text)
        if ref is not None:
            return ref

    # d) bare id
    if _OBJECT_ID_RE.match(text) or _UUID_RE.match(text):
        return GardenReference(garden_id=text.lower(), format="bare")

    raise QRParseError()

# --- signage helpers

def build_qr_text(garden_id: str) -> str:
    return f"{settings.qr_scheme_prefix}:garden:{garden_id}"

def build_qr_url(garden_id: str) -> str:
    return f"{settings.qr_base_url.rstrip('/')}/{garden_id}"

def render_qr_png(text: str) -> bytes:
    import qrcode
    img = qrcode.make(text)
    b = BytesIO(); img.save(b, format="PNG")
    return b.getvalue()
