from __future__ import annotations
import logging
from typing import Any, Sequence
import httpx

from ..errors import AlreadyCheckedIn, ServerConnectionError, error_from_detail
from ..schemas import ActiveVisitResponse, QRParseRead, VisitList, VisitRead

logger = logging.getLogger(__name__)

class ApiError(Exception):
    """Non-domain HTTP failure (5xx, auth, malformed body)."""

    def __init__(self, status_code: int, detail: Any = None):
        super().__init__(f"HTTP {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail

class VisitsApi:
    """
    Thin async wrapper over the visits REST surface.

    Domain refusals come back as the matching ``VisitError`` subclass; transport
    failures as ``ServerConnectionError``, which callers must treat as "unknown
    outcome" and re-query.
    """

    def __init__(self, client: httpx.AsyncClient, token: str | None = None):
        self._client = client
        self._headers = {"Authorization": f"Bearer {token}"} if token else {}

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        try:
            r = await self._client.request(method, url, headers=self._headers, **kwargs)
        except httpx.TransportError as exc:
            logger.warning("%s %s failed: %s", method, url, exc)
            raise ServerConnectionError(str(exc)) from exc
        if r.is_success:
            return r.json() if r.content else None
        try:
            detail = r.json().get("detail")
        except (ValueError, AttributeError):
            detail = r.text
        err = error_from_detail(detail)
        if isinstance(err, AlreadyCheckedIn) and isinstance(err.active_visit, dict):
            err.active_visit = VisitRead.model_validate(err.active_visit)
        if err is not None:
            raise err
        raise ApiError(r.status_code, detail)

    async def get_active_visit(self) -> VisitRead | None:
        data = await self._request("GET", "/visits/active")
        return ActiveVisitResponse.model_validate(data or {}).visit

    async def check_in(self, garden_id: str, dog_ids: Sequence[str], notes: str | None = None) -> VisitRead:
        body = {"garden_id": garden_id, "dog_ids": list(dog_ids), "notes": notes}
        return VisitRead.model_validate(await self._request("POST", "/visits", json=body))

    async def scan(self, qr: str, dog_ids: Sequence[str], notes: str | None = None) -> VisitRead:
        body = {"qr": qr, "dog_ids": list(dog_ids), "notes": notes}
        return VisitRead.model_validate(await self._request("POST", "/visits/scan", json=body))

    async def parse_qr(self, qr: str) -> QRParseRead:
        return QRParseRead.model_validate(await self._request("POST", "/visits/qr/parse", json={"qr": qr}))

    async def check_out(self, visit_id: str, notes: str | None = None) -> VisitRead:
        body = {"notes": notes} if notes else None
        return VisitRead.model_validate(await self._request("POST", f"/visits/{visit_id}/checkout", json=body))

    async def my_visits(self, **params: Any) -> VisitList:
        query = {k: v for k, v in params.items() if v is not None}
        return VisitList.model_validate(await self._request("GET", "/visits/me", params=query))
