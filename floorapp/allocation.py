# floorapp/allocation.py
"""Deterministic slot allocation.

All functions here are pure: they read an occupancy snapshot and never
mutate their inputs. The caller owns any exclusion set and adds the
returned slot to it before the next call.
"""

from __future__ import annotations

import re
from typing import Iterable, Mapping

from floorapp.location_codes import HALL_ZONE, WAREHOUSES, decode, hall_code
from floorapp.models import AUTO_WAREHOUSE, HallMove, ScanAssign

SHELF_PALLETS = 8
HALL_CAPACITY = 100


def _upper_set(positions: Iterable[str]) -> set[str]:
    return {p.strip().upper() for p in positions if isinstance(p, str) and p.strip()}


def merge_occupancy(
    server_snapshot: Mapping[str, str] | Iterable[str],
    pending_queue: Iterable[ScanAssign | HallMove],
) -> set[str]:
    """Positions taken on the server plus the ones already claimed locally.

    Only scan-assigns claim a slot before sync; a queued Hall-move gets its
    destination when the reconciler runs.
    """

    occupied = _upper_set(server_snapshot.keys() if isinstance(server_snapshot, Mapping) else server_snapshot)
    for mutation in pending_queue:
        if isinstance(mutation, ScanAssign) and mutation.position:
            occupied.add(mutation.position.upper())
    return occupied


def _token_pattern(tokens: Iterable[str]) -> list[re.Pattern[str]]:
    # "D1" must not match inside "D12"
    return [re.compile(re.escape(tok) + r"(?!\d)") for tok in tokens]


def _matches_slot(location: str, warehouse: int, zone: str, row: int, level: int, pos: int) -> bool:
    slot = decode(location)
    if slot is not None:
        return (
            slot.warehouse == warehouse
            and slot.zone == zone
            and slot.row == row
            and slot.level == level
            and slot.pos == pos
        )
    text = location.upper()
    patterns = _token_pattern([zone, f"K{warehouse}", f"D{row}", f"T{level}", f"PL{pos}"])
    return all(p.search(text) for p in patterns)


def find_next_available(
    warehouse: int,
    zone: str,
    row: int | None,
    level: int | None,
    locations: Iterable[str],
    occupancy: Iterable[str],
) -> str:
    """First known PL1..PL8 slot on the given shelf level that is not occupied.

    Returns the location as spelled in ``locations``, or ``""`` when the level
    is full or the shelf is not fully specified.
    """

    if not row or not level:
        return ""
    zone = (zone or "").strip().upper()
    if not zone or zone == HALL_ZONE:
        return ""

    known = [loc for loc in locations if isinstance(loc, str) and loc.strip()]
    taken = _upper_set(occupancy)

    for pos in range(1, SHELF_PALLETS + 1):
        match = next(
            (loc for loc in known if _matches_slot(loc, warehouse, zone, row, level, pos)),
            None,
        )
        if match and match.strip().upper() not in taken:
            return match
    return ""


def find_empty_hall_slots(
    warehouse: int,
    count: int,
    occupied: Iterable[str],
    exclude: Iterable[str] = (),
) -> list[str]:
    """Up to ``count`` free Hall codes of one warehouse, lowest pallet first."""

    if count <= 0:
        return []
    taken = _upper_set(occupied) | _upper_set(exclude)
    found: list[str] = []
    for pos in range(1, HALL_CAPACITY + 1):
        code = hall_code(warehouse, pos)
        if code.upper() in taken:
            continue
        found.append(code)
        if len(found) >= count:
            break
    return found


def pick_hall_slot(target: str, occupied: Iterable[str], exclude: Iterable[str] = ()) -> str | None:
    """One free Hall slot for a Hall-move target (``"1"``..``"3"`` or ``AUTO``)."""

    target = str(target or AUTO_WAREHOUSE).strip().upper()
    if target == AUTO_WAREHOUSE:
        candidates: tuple[int, ...] = WAREHOUSES
    else:
        try:
            candidates = (int(target.lstrip("K")),)
        except ValueError:
            return None

    occupied = list(occupied)
    exclude = list(exclude)
    for warehouse in candidates:
        slots = find_empty_hall_slots(warehouse, 1, occupied, exclude)
        if slots:
            return slots[0]
    return None


__all__ = [
    "HALL_CAPACITY",
    "SHELF_PALLETS",
    "find_empty_hall_slots",
    "find_next_available",
    "merge_occupancy",
    "pick_hall_slot",
]
