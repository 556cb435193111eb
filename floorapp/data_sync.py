# floorapp/data_sync.py
"""Download every snapshot the device needs to keep working offline."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Iterable

from floorapp.api_client import FloorClient
from floorapp.errors import FloorAPIError
from floorapp.location_codes import HALL_ZONE, WAREHOUSES, normalize_lot
from floorapp.schemas import (
    ExportOrder,
    PositionItem,
    WarehouseZone,
    normalized_lots,
    parse_items,
    parse_warehouse_status,
)
from floorapp.storage import (
    DATA_LAST_UPDATED_KEY,
    OCCUPIED_KEY,
    OFFLINE_ORDERS_KEY,
    STATIC_LOCATIONS_KEY,
    BlobStore,
    warehouse_status_key,
)

logger = logging.getLogger(__name__)

EXPORTED_STATUS = "EXPORTED"


@dataclass(frozen=True)
class DownloadSummary:
    locations: int
    occupied: int
    orders: int
    warehouses: int
    updated_at_ms: int


def annotate_orders(
    orders: Iterable[ExportOrder],
    deleted_lots: set[str],
    positions: Iterable[PositionItem],
) -> list[ExportOrder]:
    """Attach per-lot live status: exported, or the Hall slot it already sits in."""

    current: dict[str, str] = {}
    for item in positions:
        if item.lot_code:
            current[normalize_lot(item.lot_code)] = item.pos_code

    annotated: list[ExportOrder] = []
    for order in orders:
        status: list[str | None] = []
        for lot in order.lot_codes:
            key = normalize_lot(lot)
            pos = current.get(key)
            if key in deleted_lots:
                status.append(EXPORTED_STATUS)
            elif pos and pos.upper().startswith(f"{HALL_ZONE}-"):
                status.append(pos)
            else:
                status.append(None)
        annotated.append(order.model_copy(update={"realtime_status": status}))
    return annotated


def cached_orders(blob: BlobStore) -> list[ExportOrder]:
    return parse_items(ExportOrder, blob.get_list(OFFLINE_ORDERS_KEY))


class DataDownloader:
    def __init__(self, client: FloorClient, blob: BlobStore):
        self.client = client
        self.blob = blob

    async def _download_locations(self) -> int:
        locations = await self.client.get_static_locations()
        self.blob.set(STATIC_LOCATIONS_KEY, locations)
        return len(locations)

    async def _download_occupied(self) -> int:
        occupied = await self.client.get_occupied_map()
        self.blob.set(OCCUPIED_KEY, occupied)
        return len(occupied)

    async def _download_orders(self) -> int:
        orders, deleted, positions = await asyncio.gather(
            self.client.get_export_orders(status="New"),
            self.client.get_deleted_lots(),
            self.client.get_positions(),
        )
        processed = annotate_orders(orders, normalized_lots(deleted), positions)
        self.blob.set(OFFLINE_ORDERS_KEY, [o.model_dump(by_alias=True) for o in processed])
        return len(processed)

    async def _download_warehouse(self, warehouse_id: int) -> None:
        zones = await self.client.get_warehouse_status(warehouse_id)
        self._cache_warehouse(warehouse_id, zones)

    def _cache_warehouse(self, warehouse_id: int, zones: list[WarehouseZone]) -> None:
        self.blob.set(warehouse_status_key(warehouse_id), [z.model_dump(by_alias=True) for z in zones])

    async def download_all(self) -> DownloadSummary:
        """Fetch all snapshots concurrently; nothing is stamped unless all succeed."""

        results = await asyncio.gather(
            self._download_locations(),
            self._download_occupied(),
            self._download_orders(),
            *(self._download_warehouse(w) for w in WAREHOUSES),
        )
        locations, occupied, orders = results[:3]

        now_ms = int(time.time() * 1000)
        self.blob.set(DATA_LAST_UPDATED_KEY, str(now_ms))
        logger.info(
            "Offline data downloaded: locations=%s occupied=%s orders=%s warehouses=%s",
            locations,
            occupied,
            orders,
            len(WAREHOUSES),
        )
        return DownloadSummary(
            locations=locations,
            occupied=occupied,
            orders=orders,
            warehouses=len(WAREHOUSES),
            updated_at_ms=now_ms,
        )

    async def load_warehouse_status(self, warehouse_id: int) -> tuple[list[WarehouseZone], bool]:
        """Live tree for one warehouse, or the cached one when the server fails.

        The second element is True when the cached copy was used.
        """

        try:
            zones = await self.client.get_warehouse_status(warehouse_id)
        except FloorAPIError as exc:
            cached = self.blob.get(warehouse_status_key(warehouse_id))
            if cached is None:
                raise
            logger.warning("Warehouse %s status from cache: %s", warehouse_id, exc)
            return parse_warehouse_status(cached), True

        self._cache_warehouse(warehouse_id, zones)
        return zones, False

    def last_updated_ms(self) -> int | None:
        raw = self.blob.get(DATA_LAST_UPDATED_KEY)
        try:
            return int(raw) if raw is not None else None
        except (TypeError, ValueError):
            return None


__all__ = [
    "DataDownloader",
    "DownloadSummary",
    "EXPORTED_STATUS",
    "annotate_orders",
    "cached_orders",
]
