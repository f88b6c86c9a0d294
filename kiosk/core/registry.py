import asyncio
from typing import Any, Callable, Dict, Optional, Tuple

from redis.exceptions import RedisError

from kiosk.backend.lookup import LookupService, SurfaceLookup
from kiosk.core.errors import KioskError
from kiosk.core.flow import ExitConfirmer, FlowStateMachine
from kiosk.core.models import EventContext
from kiosk.observability.logging import log
from kiosk.settings import settings
from kiosk.surfaces.profiles import get_profile
from kiosk.utils.lock import SurfaceClaim


class SurfaceClaimed(KioskError):
    category = "conflict"


class SessionRegistry:
    """
    One FlowStateMachine per (surface, kioskId) in this process, with a Redis
    claim so a second process cannot drive the same kiosk at the same time.
    Claims are short-lived; start_claim_refresh() keeps the held ones alive.
    """

    def __init__(self, lookup_service: LookupService, executor,
                 claim_factory: Optional[Callable[[str, str], SurfaceClaim]] = None):
        self.lookup_service = lookup_service
        self.executor = executor
        self._claim_factory = claim_factory or (
            lambda surface, kiosk_id: SurfaceClaim(surface, kiosk_id, settings.SURFACE_CLAIM_TTL_MS)
        )
        self._machines: Dict[Tuple[str, str], FlowStateMachine] = {}
        self._claims: Dict[Tuple[str, str], SurfaceClaim] = {}
        self._refresh_task: Optional[asyncio.Task] = None

    async def open(self, surface: str, kiosk_id: str, event_context: EventContext,
                   assigned: Optional[Dict[str, Any]] = None,
                   exit_confirmer: Optional[ExitConfirmer] = None) -> FlowStateMachine:
        profile = get_profile(surface)
        key = (surface, kiosk_id)

        if key not in self._claims:
            claim = self._claim_factory(surface, kiosk_id)
            if not await claim.acquire():
                log(event="surface_claim_conflict", surface=surface, kioskId=kiosk_id)
                raise SurfaceClaimed(
                    "This kiosk is already running somewhere else.",
                    {"surface": surface, "kioskId": kiosk_id},
                )
            self._claims[key] = claim

        previous = self._machines.pop(key, None)
        if previous is not None:
            await previous.close()

        machine = FlowStateMachine(
            profile,
            event_context,
            SurfaceLookup(self.lookup_service, profile),
            self.executor,
            kiosk_id=kiosk_id,
            assigned=assigned,
            exit_confirmer=exit_confirmer,
        )
        self._machines[key] = machine
        log(event="surface_opened", surface=surface, kioskId=kiosk_id, eventId=event_context.eventId,
            replaced=previous is not None)
        return machine

    def get(self, surface: str, kiosk_id: str) -> Optional[FlowStateMachine]:
        return self._machines.get((surface, kiosk_id))

    def find_by_transaction(self, transaction_id: str) -> Optional[FlowStateMachine]:
        for machine in self._machines.values():
            if machine.session.transactionId == transaction_id:
                return machine
        return None

    async def close(self, surface: str, kiosk_id: str) -> bool:
        key = (surface, kiosk_id)
        machine = self._machines.pop(key, None)
        if machine is not None:
            await machine.close()
        claim = self._claims.pop(key, None)
        if claim is not None:
            await self._release(surface, kiosk_id, claim)
        if machine is not None:
            log(event="surface_closed", surface=surface, kioskId=kiosk_id)
        return machine is not None

    async def close_all(self) -> None:
        await self.stop_claim_refresh()
        for surface, kiosk_id in list(self._machines.keys()):
            await self.close(surface, kiosk_id)
        for surface, kiosk_id in list(self._claims.keys()):
            await self._release(surface, kiosk_id, self._claims.pop((surface, kiosk_id)))

    async def _release(self, surface: str, kiosk_id: str, claim: SurfaceClaim) -> None:
        try:
            await claim.release()
        except RedisError as e:
            # the claim still expires on its own
            log(event="surface_claim_release_failed", surface=surface, kioskId=kiosk_id,
                errorType=type(e).__name__)

    async def refresh_claims(self) -> int:
        """Extend every held claim; a claim lost to expiry closes its machine."""
        refreshed = 0
        for (surface, kiosk_id), claim in list(self._claims.items()):
            try:
                held = await claim.refresh()
            except RedisError as e:
                log(event="surface_claim_refresh_failed", surface=surface, kioskId=kiosk_id,
                    errorType=type(e).__name__)
                continue
            if held:
                refreshed += 1
                continue
            log(event="surface_claim_lost", anomaly=True, surface=surface, kioskId=kiosk_id)
            self._claims.pop((surface, kiosk_id), None)
            machine = self._machines.pop((surface, kiosk_id), None)
            if machine is not None:
                await machine.close()
        return refreshed

    async def _refresh_loop(self, interval_sec: float) -> None:
        while True:
            await asyncio.sleep(interval_sec)
            await self.refresh_claims()

    def start_claim_refresh(self, interval_sec: Optional[float] = None) -> asyncio.Task:
        if self._refresh_task is None or self._refresh_task.done():
            interval = float(interval_sec or settings.SURFACE_CLAIM_REFRESH_SEC)
            self._refresh_task = asyncio.ensure_future(self._refresh_loop(interval))
        return self._refresh_task

    async def stop_claim_refresh(self) -> None:
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
            self._refresh_task = None

    def snapshot(self) -> Dict[str, Any]:
        return {f"{s}:{k}": m.state for (s, k), m in self._machines.items()}
