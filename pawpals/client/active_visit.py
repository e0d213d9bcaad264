from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Sequence

from ..core.identity import GuestIdentity, Identity
from ..errors import (
    ActionInProgress,
    AlreadyCheckedIn,
    GuestNotAllowed,
    ServerConnectionError,
    VisitAlreadyClosed,
)
from ..schemas import VisitRead
from .api import ApiError, VisitsApi

logger = logging.getLogger(__name__)

class VisitState(str, Enum):
    UNKNOWN = "unknown"
    LOADING = "loading"
    NO_ACTIVE_VISIT = "no_active_visit"
    HAS_ACTIVE_VISIT = "has_active_visit"

@dataclass(frozen=True)
class Snapshot:
    state: VisitState
    visit: VisitRead | None = None

class ActiveVisitTracker:
    """
    Client-side view of "my current active visit".

    Every mutation is applied optimistically and then confirmed with a fresh
    ``GET /visits/active``; after a failed mutation the re-queried state wins.
    Only one check-in/check-out may be outstanding at a time.
    """

    def __init__(self, api: VisitsApi, identity: Identity):
        self._api = api
        self._identity = identity
        self._busy = False
        self._listeners: list[Callable[[Snapshot], None]] = []
        self._snapshot = Snapshot(VisitState.NO_ACTIVE_VISIT if self.is_guest else VisitState.UNKNOWN)

    # ---- read side
    @property
    def is_guest(self) -> bool:
        return isinstance(self._identity, GuestIdentity)

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def state(self) -> VisitState:
        return self._snapshot.state

    @property
    def visit(self) -> VisitRead | None:
        return self._snapshot.visit

    @property
    def busy(self) -> bool:
        return self._busy

    def subscribe(self, listener: Callable[[Snapshot], None]) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _set(self, state: VisitState, visit: VisitRead | None = None) -> None:
        self._snapshot = Snapshot(state, visit)
        for listener in list(self._listeners):
            listener(self._snapshot)

    # ---- queries
    async def refresh(self) -> Snapshot:
        """Load the authoritative state. On failure the state drops to UNKNOWN and the error propagates."""
        if self.is_guest:
            self._set(VisitState.NO_ACTIVE_VISIT)
            return self._snapshot
        self._set(VisitState.LOADING, self.visit)
        try:
            visit = await self._api.get_active_visit()
        except (ServerConnectionError, ApiError):
            self._set(VisitState.UNKNOWN)
            raise
        if visit is None:
            self._set(VisitState.NO_ACTIVE_VISIT)
        else:
            self._set(VisitState.HAS_ACTIVE_VISIT, visit)
        return self._snapshot

    async def _reconcile(self, *, keep_optimistic: bool) -> None:
        before = self._snapshot
        try:
            await self.refresh()
        except (ServerConnectionError, ApiError) as exc:
            logger.warning("active visit re-sync failed: %s", exc)
            if keep_optimistic:
                self._set(before.state, before.visit)

    @asynccontextmanager
    async def _mutation(self):
        if self.is_guest:
            raise GuestNotAllowed()
        if self._busy:
            raise ActionInProgress()
        self._busy = True
        try:
            yield
        finally:
            self._busy = False

    # ---- mutations
    async def check_in(self, garden_id: str, dog_ids: Sequence[str], notes: str | None = None) -> VisitRead:
        async with self._mutation():
            return await self._after_check_in(self._api.check_in(garden_id, dog_ids, notes))

    async def scan_and_check_in(self, qr: str, dog_ids: Sequence[str], notes: str | None = None) -> VisitRead:
        async with self._mutation():
            return await self._after_check_in(self._api.scan(qr, dog_ids, notes))

    async def _after_check_in(self, call) -> VisitRead:
        try:
            visit = await call
        except AlreadyCheckedIn as exc:
            if isinstance(exc.active_visit, VisitRead):
                self._set(VisitState.HAS_ACTIVE_VISIT, exc.active_visit)
            await self._reconcile(keep_optimistic=True)
            raise
        except Exception:
            await self._reconcile(keep_optimistic=False)
            raise
        self._set(VisitState.HAS_ACTIVE_VISIT, visit)
        await self._reconcile(keep_optimistic=True)
        return visit

    async def check_out(self, notes: str | None = None) -> VisitRead | None:
        """
        End the current visit. Returns the completed visit, or None when there
        was nothing to end (already closed elsewhere, or no active visit).
        """
        async with self._mutation():
            if self.visit is None:
                await self.refresh()
                if self.visit is None:
                    return None
            visit_id = self.visit.id
            try:
                done = await self._api.check_out(visit_id, notes)
            except VisitAlreadyClosed:
                # double tap or another device: the re-queried state is the answer
                await self._reconcile(keep_optimistic=False)
                return None
            except Exception:
                await self._reconcile(keep_optimistic=False)
                raise
            self._set(VisitState.NO_ACTIVE_VISIT)
            await self._reconcile(keep_optimistic=True)
            return done
