# floorapp/offline_index.py
"""Offline lot lookup built from the last downloaded snapshots.

The index is a disposable cache: it is rebuilt from scratch after every
download and never edited in place.

Positions held by the server come in several spellings, so ``lookup``
resolves them in a fixed order:

1. canonical decode (``A-K1D2T3.PL4`` / ``S-K1.PL4``), warehouse explicit;
2. liberal token extraction (``KHO|K|W`` warehouse, ``A|B|S`` zone,
   ``D|R|DAY`` rack, ``T|L|TANG`` level, ``P|VT`` pallet), ``.`` read as a
   separator; a missing warehouse means warehouses 1, 2, 3 in turn;
3. for each warehouse, the rack/level as written, then zero-padded.

Hall positions are looked up under the zone of the code first and then
under any other zone that has a Hall in the same warehouse.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from floorapp.location_codes import HALL_ZONE, WAREHOUSES, decode, normalize_lot
from floorapp.models import OfflineItem, ProductDetail
from floorapp.schemas import WarehouseItem, WarehouseZone, parse_warehouse_status
from floorapp.storage import OCCUPIED_KEY, BlobStore, warehouse_status_key

logger = logging.getLogger(__name__)

_LIBERAL_RE = re.compile(
    r"(?:(?:KHO|K|W)?(\d+)[^A-Z0-9]*)?"
    r"([ABS])"
    r"(?:[^A-Z0-9]*(?:D|R|DAY)?(\d+))?"
    r"(?:[^A-Z0-9]*(?:T|L|TANG)?(\d+))?"
    r"(?:[^A-Z0-9]*(?:P|VT)?(\d+))"
)


def shelf_signature(warehouse: int | str, zone: str, rack: str, level: int | str, pos: int | str) -> str:
    return f"{warehouse}-{zone}-{rack}-{level}-{pos}".upper()


def hall_signature(warehouse: int | str, zone: str, pos: int | str) -> str:
    return f"{warehouse}-{zone}-HALL-{pos}".upper()


def _detail(item: WarehouseItem) -> ProductDetail:
    return ProductDetail(
        product_code=item.code,
        product_name=item.name,
        unit=item.unit,
        quantity=item.quantity,
    )


def _variants(raw: str | int) -> list[str]:
    """Spelling as written first, then unpadded, then two-digit padded."""

    text = str(raw).strip()
    out = [text]
    if text.isdigit():
        plain = str(int(text))
        out.extend([plain, plain.zfill(2)])
    seen: list[str] = []
    for v in out:
        if v not in seen:
            seen.append(v)
    return seen


@dataclass
class OfflineIndex:
    lot_to_position: dict[str, str] = field(default_factory=dict)
    position_to_detail: dict[str, ProductDetail] = field(default_factory=dict)
    hall_zones: dict[int, list[str]] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.lot_to_position)

    def _hall_detail(self, warehouse: int, zone: str, pos: int) -> ProductDetail | None:
        zones = [zone] + [z for z in self.hall_zones.get(warehouse, []) if z != zone]
        for z in zones:
            detail = self.position_to_detail.get(hall_signature(warehouse, z, pos))
            if detail is not None:
                return detail
        return None

    def _shelf_detail(self, warehouse: int, zone: str, rack: str | int, level: str | int, pos: int) -> ProductDetail | None:
        for r in _variants(rack):
            for lvl in _variants(level):
                detail = self.position_to_detail.get(shelf_signature(warehouse, zone, r, lvl, pos))
                if detail is not None:
                    return detail
        return None

    def _resolve(self, position: str) -> ProductDetail | None:
        slot = decode(position)
        if slot is not None:
            if slot.is_hall:
                return self._hall_detail(slot.warehouse, slot.zone, slot.pos)
            return self._shelf_detail(slot.warehouse, slot.zone, slot.row or 0, slot.level or 0, slot.pos)

        text = position.upper().replace(".", "-")
        m = _LIBERAL_RE.search(text)
        if not m:
            return None

        wh_raw, zone, rack, level, pos_raw = m.groups()
        pos = int(pos_raw) if pos_raw else 0
        warehouses = (int(wh_raw),) if wh_raw else WAREHOUSES

        if zone == HALL_ZONE or (zone == "B" and not rack):
            for w in warehouses:
                detail = self._hall_detail(w, zone, pos)
                if detail is not None:
                    return detail
            return None

        for w in warehouses:
            detail = self._shelf_detail(w, zone, rack or "0", level or "0", pos)
            if detail is not None:
                return detail
        return None

    def lookup(self, lot_code: str) -> OfflineItem | None:
        """Product sitting under ``lot_code`` per the last snapshot; never raises."""

        key = normalize_lot(lot_code)
        position = self.lot_to_position.get(key)
        if not position:
            return None
        try:
            detail = self._resolve(position)
        except ValueError:
            logger.warning("Unreadable position %r for lot %s", position, key)
            return None
        if detail is None:
            return None
        return OfflineItem(lot_code=key, position=position, **detail.model_dump())


def rebuild(
    warehouse_status: Mapping[int, Iterable[WarehouseZone]],
    occupied_map: Mapping[str, str],
) -> OfflineIndex:
    index = OfflineIndex()

    for pos, lot in occupied_map.items():
        if isinstance(lot, str) and lot.strip():
            index.lot_to_position[normalize_lot(lot)] = pos

    for warehouse, zones in warehouse_status.items():
        for zone in zones:
            for rack in zone.racks:
                for level in rack.levels:
                    for item in level.items:
                        sig = shelf_signature(warehouse, zone.id, rack.name, level.level_number, item.position)
                        index.position_to_detail[sig] = _detail(item)
            if zone.hall and zone.hall.items:
                index.hall_zones.setdefault(int(warehouse), []).append(zone.id.upper())
                for item in zone.hall.items:
                    index.position_to_detail[hall_signature(warehouse, zone.id, item.position)] = _detail(item)

    logger.info(
        "Offline index rebuilt: %s lots, %s positions",
        len(index.lot_to_position),
        len(index.position_to_detail),
    )
    return index


def load_offline_index(blob: BlobStore) -> OfflineIndex:
    """Rebuild the index from the snapshots cached in the blob store."""

    status = {w: parse_warehouse_status(blob.get(warehouse_status_key(w))) for w in WAREHOUSES}
    return rebuild(status, blob.get_dict(OCCUPIED_KEY))


__all__ = [
    "OfflineIndex",
    "hall_signature",
    "load_offline_index",
    "rebuild",
    "shelf_signature",
]
