# floorapp/reconciler.py
"""Sync pass: confirm queued mutations against the server.

One pass walks IDLE -> FETCHING -> CLASSIFYING -> EXECUTING -> REPORTING
and back to IDLE. The occupancy snapshot is read once per pass; slots handed
out during the pass go into a shared exclusion set before the call that
uses them is dispatched.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Protocol, Sequence

from floorapp.allocation import find_next_available, merge_occupancy, pick_hall_slot
from floorapp.errors import ConnectivityError, FloorAPIError, FloorNotFound
from floorapp.location_codes import normalize_lot
from floorapp.models import HallMove, ScanAssign, utc_now
from floorapp.mutation_store import MutationStore
from floorapp.schemas import (
    DeletedLotItem,
    MoveRequest,
    PositionItem,
    ScanSyncItem,
    normalized_lots,
)
from floorapp.storage import LAST_SYNC_KEY, OCCUPIED_KEY, STATIC_LOCATIONS_KEY, BlobStore

logger = logging.getLogger(__name__)

NO_FREE_SLOT = "no free slot"


class SyncState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    CLASSIFYING = "classifying"
    EXECUTING = "executing"
    REPORTING = "reporting"


class SyncServer(Protocol):
    async def get_deleted_lots(self) -> list[DeletedLotItem]: ...

    async def get_positions(self) -> list[PositionItem]: ...

    async def move_position(self, move: MoveRequest) -> dict: ...

    async def scan_sync(self, items: Sequence[ScanSyncItem]) -> dict: ...


@dataclass
class SyncFailure:
    mutation_id: str
    lot_code: str
    message: str


@dataclass
class SyncReport:
    succeeded: list[str] = field(default_factory=list)
    recovered: list[str] = field(default_factory=list)
    skipped_exported: list[str] = field(default_factory=list)
    failed: list[SyncFailure] = field(default_factory=list)
    destinations: dict[str, str] = field(default_factory=dict)

    @property
    def resolved_ids(self) -> list[str]:
        return [*self.succeeded, *self.recovered, *self.skipped_exported]

    def fail(self, mutation: ScanAssign | HallMove, message: str) -> None:
        self.destinations.pop(mutation.id, None)
        self.failed.append(SyncFailure(mutation.id, mutation.lot_code, message))

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": list(self.succeeded),
            "recovered": list(self.recovered),
            "skipped_exported": list(self.skipped_exported),
            "failed": [asdict(f) for f in self.failed],
            "destinations": dict(self.destinations),
        }


class Reconciler:
    def __init__(
        self,
        client: SyncServer,
        store: MutationStore,
        blob: BlobStore,
        *,
        batch_size: int = 5,
        batch_delay_s: float = 0.5,
        clock: Callable[[], Any] = utc_now,
    ):
        self.client = client
        self.store = store
        self.blob = blob
        self.batch_size = max(1, int(batch_size))
        self.batch_delay_s = max(0.0, float(batch_delay_s))
        self._clock = clock
        self._state = SyncState.IDLE
        self._running = False

    @property
    def state(self) -> SyncState:
        return self._state

    def _set_state(self, state: SyncState) -> None:
        if state is not self._state:
            logger.debug("Sync state %s -> %s", self._state.value, state.value)
        self._state = state

    async def run(self) -> SyncReport:
        if self._running:
            raise RuntimeError("sync pass already running")
        self._running = True
        try:
            return await self._run()
        finally:
            self._running = False
            self._set_state(SyncState.IDLE)

    async def _fetch(self) -> tuple[set[str], list[PositionItem]]:
        self._set_state(SyncState.FETCHING)
        try:
            deleted, positions = await asyncio.gather(
                self.client.get_deleted_lots(),
                self.client.get_positions(),
            )
        except ConnectivityError:
            logger.warning("Sync aborted: server unreachable")
            raise
        except FloorAPIError as exc:
            logger.warning("Sync aborted: server state unavailable: %s", exc)
            raise ConnectivityError(f"Server state unavailable: {exc}", status_code=exc.status_code) from exc
        return normalized_lots(deleted), positions

    async def _run(self) -> SyncReport:
        report = SyncReport()
        pending = self.store.list_all()
        if not pending:
            logger.info("Sync: nothing pending")
            return report

        deleted, positions = await self._fetch()

        self._set_state(SyncState.CLASSIFYING)
        still_pending: list[ScanAssign | HallMove] = []
        for mutation in pending:
            if mutation.lot_key in deleted:
                report.skipped_exported.append(mutation.id)
            else:
                still_pending.append(mutation)

        self._set_state(SyncState.EXECUTING)
        occupied = merge_occupancy([p.pos_code for p in positions if p.pos_code], still_pending)
        exclusion: set[str] = set()

        moves = [m for m in still_pending if isinstance(m, HallMove)]
        scans = [m for m in still_pending if isinstance(m, ScanAssign)]
        await self._execute_moves(moves, occupied, exclusion, report)
        await self._confirm_scans(scans, occupied, exclusion, report)

        self._set_state(SyncState.REPORTING)
        self._apply(still_pending, report)

        logger.info(
            "Sync pass done: succeeded=%s recovered=%s skipped_exported=%s failed=%s",
            len(report.succeeded),
            len(report.recovered),
            len(report.skipped_exported),
            len(report.failed),
        )
        return report

    async def _move_one(self, mutation: HallMove, dest: str, report: SyncReport) -> None:
        move = MoveRequest(
            from_pos=mutation.original_position,
            to_pos=dest,
            lot_code=mutation.lot_code,
            moved_by=mutation.actor,
        )
        try:
            await self.client.move_position(move)
        except FloorNotFound:
            # origin already vacated: the move happened in an earlier pass
            logger.info("Lot %s no longer at %s, counted as recovered", mutation.lot_code, mutation.original_position)
            report.destinations.pop(mutation.id, None)
            report.recovered.append(mutation.id)
        except FloorAPIError as exc:
            logger.warning("Move of lot %s to %s failed: %s", mutation.lot_code, dest, exc)
            report.fail(mutation, str(exc))
        else:
            report.succeeded.append(mutation.id)

    async def _execute_moves(
        self,
        moves: list[HallMove],
        occupied: set[str],
        exclusion: set[str],
        report: SyncReport,
    ) -> None:
        for start in range(0, len(moves), self.batch_size):
            if start:
                await asyncio.sleep(self.batch_delay_s)
            tasks = []
            for mutation in moves[start:start + self.batch_size]:
                if not mutation.original_position:
                    report.fail(mutation, "missing original position")
                    continue
                dest = pick_hall_slot(mutation.target_warehouse, occupied, exclusion)
                if dest is None:
                    report.fail(mutation, NO_FREE_SLOT)
                    continue
                exclusion.add(dest.upper())
                report.destinations[mutation.id] = dest
                tasks.append(self._move_one(mutation, dest, report))
            if tasks:
                await asyncio.gather(*tasks)

    async def _confirm_scans(
        self,
        scans: list[ScanAssign],
        occupied: set[str],
        exclusion: set[str],
        report: SyncReport,
    ) -> None:
        if not scans:
            return

        locations = [loc for loc in self.blob.get_list(STATIC_LOCATIONS_KEY) if isinstance(loc, str)]
        ready: list[tuple[ScanAssign, str]] = []
        for mutation in scans:
            position = mutation.position
            if not position and mutation.target is not None:
                target = mutation.target
                taken = occupied | exclusion
                if target.is_hall:
                    position = pick_hall_slot(str(target.warehouse), taken) or ""
                else:
                    position = find_next_available(
                        target.warehouse, target.zone, target.row, target.level, locations, taken
                    )
            if not position:
                report.fail(mutation, NO_FREE_SLOT)
                continue
            exclusion.add(position.upper())
            report.destinations[mutation.id] = position
            ready.append((mutation, position))

        if not ready:
            return

        items = [
            ScanSyncItem.from_datetime(code=m.lot_code, position=pos, quantity=m.quantity, ts=m.created_at)
            for m, pos in ready
        ]
        try:
            await self.client.scan_sync(items)
        except FloorAPIError as exc:
            logger.warning("Scan sync of %s item(s) failed: %s", len(items), exc)
            for mutation, _ in ready:
                report.fail(mutation, str(exc))
            return
        report.succeeded.extend(m.id for m, _ in ready)

    def _apply(self, mutations: list[ScanAssign | HallMove], report: SyncReport) -> None:
        resolved = report.resolved_ids
        if resolved:
            self.store.remove_many(resolved)

        done = set(report.succeeded)
        confirmed = [m for m in mutations if m.id in done and m.id in report.destinations]
        if confirmed:
            occupied = self.blob.get_dict(OCCUPIED_KEY)
            for mutation in confirmed:
                if isinstance(mutation, HallMove):
                    origin = mutation.original_position.upper()
                    for pos in [p for p in occupied if p.upper() == origin]:
                        del occupied[pos]
                lot = mutation.lot_code
                for pos in [p for p, held in occupied.items() if normalize_lot(held) == mutation.lot_key]:
                    del occupied[pos]
                occupied[report.destinations[mutation.id]] = lot
            self.blob.set(OCCUPIED_KEY, occupied)

        if resolved:
            self.blob.set(LAST_SYNC_KEY, self._clock().isoformat())


__all__ = [
    "NO_FREE_SLOT",
    "Reconciler",
    "SyncFailure",
    "SyncReport",
    "SyncServer",
    "SyncState",
]
