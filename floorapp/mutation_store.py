# floorapp/mutation_store.py
"""Durable queue of pending local mutations.

The queue is the only place offline work lives until the reconciler confirms
it against the server. Every change is persisted before the call returns.
"""

from __future__ import annotations

import logging
import threading
from typing import Iterable, Protocol, Sequence

from floorapp.allocation import find_next_available, merge_occupancy, pick_hall_slot
from floorapp.errors import LotAlreadyQueued, LotNotOnOrder, MutationNotFound
from floorapp.location_codes import extract_scan_code, normalize_lot
from floorapp.models import (
    AUTO_WAREHOUSE,
    DEFAULT_ACTOR,
    HallMove,
    ScanAssign,
    WorkTarget,
    mutation_from_dict,
    mutation_to_dict,
)
from floorapp.schemas import ExportOrder
from floorapp.storage import PENDING_MOVES_KEY, BlobStore

logger = logging.getLogger(__name__)

Mutation = ScanAssign | HallMove


class QueueAdapter(Protocol):
    def load(self) -> list[dict]: ...

    def save(self, payload: list[dict]) -> None: ...


class BlobQueueAdapter:
    """Keeps the queue as one JSON list under a blob key."""

    def __init__(self, blob: BlobStore, key: str = PENDING_MOVES_KEY):
        self.blob = blob
        self.key = key

    def load(self) -> list[dict]:
        return [entry for entry in self.blob.get_list(self.key) if isinstance(entry, dict)]

    def save(self, payload: list[dict]) -> None:
        self.blob.set(self.key, payload)


class MutationStore:
    def __init__(self, adapter: QueueAdapter):
        self._adapter = adapter
        self._lock = threading.RLock()
        self._items: list[Mutation] = []
        # raw entries this build cannot read; written back untouched on every save
        self._unreadable: list[dict] = []
        self.reload()

    def reload(self) -> None:
        items: list[Mutation] = []
        unreadable: list[dict] = []
        for raw in self._adapter.load():
            mutation = mutation_from_dict(raw)
            if mutation is None:
                unreadable.append(raw)
            else:
                items.append(mutation)
        with self._lock:
            self._items = items
            self._unreadable = unreadable
        if unreadable:
            logger.warning("Keeping %s unreadable pending entries as-is", len(unreadable))
        logger.debug("Loaded %s pending mutations", len(items))

    def _persist(self, items: list[Mutation]) -> None:
        self._adapter.save([*self._unreadable, *(mutation_to_dict(m) for m in items)])
        self._items = items

    def append(self, mutation: Mutation) -> Mutation:
        with self._lock:
            self._persist([*self._items, mutation])
        logger.info("Queued %s %s for lot %s", mutation.kind, mutation.id, mutation.lot_code)
        return mutation

    def replace(self, old_id: str, mutation: Mutation) -> Mutation:
        """Drop ``old_id`` and append ``mutation`` in a single write."""

        with self._lock:
            self._persist([*(m for m in self._items if m.id != old_id), mutation])
        logger.info("Re-queued %s %s as %s for lot %s", mutation.kind, old_id, mutation.id, mutation.lot_code)
        return mutation

    def remove_many(self, ids: Iterable[str]) -> int:
        """Drop the given ids; unknown ids are ignored. Returns how many were removed."""

        drop = {str(i) for i in ids}
        if not drop:
            return 0
        with self._lock:
            kept = [m for m in self._items if m.id not in drop]
            removed = len(self._items) - len(kept)
            if removed:
                self._persist(kept)
        return removed

    def list_all(self) -> list[Mutation]:
        with self._lock:
            return list(self._items)

    def get(self, mutation_id: str) -> Mutation | None:
        with self._lock:
            return next((m for m in self._items if m.id == mutation_id), None)

    def pending_for_context(self, context_id: str) -> list[Mutation]:
        with self._lock:
            return [m for m in self._items if m.context_id == context_id]

    def unreadable(self) -> list[dict]:
        with self._lock:
            return [dict(raw) for raw in self._unreadable]

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


def record_scan(
    store: MutationStore,
    raw_code: str,
    target: WorkTarget | None,
    locations: Sequence[str],
    occupied: Iterable[str],
    *,
    actor: str = DEFAULT_ACTOR,
    quantity: float = 1,
) -> ScanAssign:
    """Queue a scanned lot, choosing its slot from the current work target.

    A lot that is already queued keeps its position and moves to the end of
    the queue. The returned mutation has an empty position when no free slot
    was found.
    """

    lot_code = extract_scan_code(raw_code)
    if not lot_code:
        raise ValueError("empty scan")

    key = normalize_lot(lot_code)
    pending = store.list_all()
    existing = next(
        (m for m in pending if isinstance(m, ScanAssign) and m.lot_key == key),
        None,
    )

    if existing is not None:
        mutation = ScanAssign(
            lot_code=existing.lot_code,
            position=existing.position,
            target=existing.target,
            quantity=existing.quantity,
            context_id=existing.context_id,
            actor=actor,
        )
        return store.replace(existing.id, mutation)

    position = ""
    if target is not None:
        effective = merge_occupancy(list(occupied), pending)
        if target.is_hall:
            position = pick_hall_slot(str(target.warehouse), effective) or ""
        else:
            position = find_next_available(
                target.warehouse, target.zone, target.row, target.level, locations, effective
            )
        if not position:
            logger.info("No free slot for lot %s at %s", lot_code, target)

    return store.append(
        ScanAssign(lot_code=lot_code, position=position, target=target, quantity=quantity, actor=actor)
    )


def queue_hall_move(
    store: MutationStore,
    order: ExportOrder,
    raw_code: str,
    target_warehouse: str = AUTO_WAREHOUSE,
    *,
    actor: str = DEFAULT_ACTOR,
) -> HallMove:
    """Queue taking one lot of a work order down to the Hall."""

    key = normalize_lot(extract_scan_code(raw_code))
    index = next((i for i, lot in enumerate(order.lot_codes) if normalize_lot(lot) == key), None)
    if not key or index is None:
        raise LotNotOnOrder(f"Lot {raw_code!r} is not on order {order.id}")

    if any(m.lot_key == key for m in store.pending_for_context(order.id)):
        raise LotAlreadyQueued(f"Lot {order.lot_codes[index]} is already queued for order {order.id}")

    original = order.locations[index] if index < len(order.locations) else ""
    return store.append(
        HallMove(
            lot_code=order.lot_codes[index],
            original_position=original,
            target_warehouse=target_warehouse,
            context_id=order.id,
            actor=actor,
        )
    )


def reassign_scan(
    store: MutationStore,
    mutation_id: str,
    position: str,
    *,
    actor: str | None = None,
) -> ScanAssign:
    """Point a queued scan at another slot (typically a picked suggestion).

    The old entry is replaced by a new one at the end of the queue.
    """

    position = (position or "").strip()
    if not position:
        raise ValueError("position is required")

    current = store.get(mutation_id)
    if current is None:
        raise MutationNotFound(f"No pending mutation {mutation_id}")
    if not isinstance(current, ScanAssign):
        raise ValueError(f"Pending mutation {mutation_id} is not a scan")

    return store.replace(
        current.id,
        ScanAssign(
            lot_code=current.lot_code,
            position=position,
            target=current.target,
            quantity=current.quantity,
            context_id=current.context_id,
            actor=actor or current.actor,
        ),
    )


def discard(store: MutationStore, ids: Iterable[str]) -> int:
    ids = list(ids)
    removed = store.remove_many(ids)
    if removed:
        logger.info("Discarded %s pending mutation(s): %s", removed, ", ".join(ids))
    return removed


__all__ = [
    "BlobQueueAdapter",
    "MutationStore",
    "QueueAdapter",
    "discard",
    "queue_hall_move",
    "reassign_scan",
    "record_scan",
]
