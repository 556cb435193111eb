# floorapp/api_client.py
"""HTTP client for the warehouse server (REST, JSON bodies)."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Dict, Sequence
from urllib.parse import quote

import httpx

from floorapp.errors import AuthError, ConnectivityError, FloorAPIError, FloorNotFound
from floorapp.schemas import (
    DeletedLotItem,
    ExportOrder,
    LegacyWorkMove,
    LoginResponse,
    LotHeader,
    LotLine,
    MoveRequest,
    PositionItem,
    ScanLogItem,
    ScanSyncItem,
    WarehouseZone,
    parse_items,
    parse_warehouse_status,
)

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def _error_message(data: Any) -> str | None:
    if isinstance(data, dict):
        msg = data.get("message") or data.get("error")
        return str(msg) if msg else None
    return None


@dataclass
class FloorClient:
    base_url: str
    timeout_s: float = 30.0
    backoffs: Sequence[float] = (0.5, 1.0, 2.0)
    transport: httpx.AsyncBaseTransport | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")
        self._http_client = httpx.AsyncClient(
            timeout=self.timeout_s,
            transport=self.transport,
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )

    async def aclose(self) -> None:
        await self._http_client.aclose()

    def _url(self, path: str) -> str:
        suffix = path if path.startswith("/") else f"/{path}"
        return f"{self.base_url}{suffix}"

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: Dict[str, Any] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        url = self._url(path)
        try:
            return await self._http_client.request(method, url, params=params, json=json)
        except httpx.TransportError as exc:
            logger.warning("%s %s failed: %s", method, url, exc)
            raise ConnectivityError(f"Server unreachable: {exc}") from exc
        except httpx.HTTPError as exc:
            # redirect loops, undecodable bodies
            logger.warning("%s %s failed: %s", method, url, exc)
            raise FloorAPIError(f"{method} {path} failed: {exc}") from exc

    def _decode(self, method: str, path: str, r: httpx.Response) -> Any:
        status = r.status_code
        try:
            data = r.json()
        except ValueError:
            data = None

        if status == 404:
            logger.info("%s %s -> HTTP 404", method, path)
            raise FloorNotFound(_error_message(data) or f"{path} not found", status_code=status)
        if status >= 400:
            logger.warning("%s %s -> HTTP %s: %s", method, path, status, data if data is not None else r.text[:500])
            raise FloorAPIError(
                f"HTTP {status} on {path}: {_error_message(data) or r.text[:200]}",
                status_code=status,
            )
        if data is None:
            logger.error("%s %s -> JSON decode failed: %r", method, path, r.text[:500])
            raise FloorAPIError(f"Invalid JSON from {path}", status_code=status)
        return data

    async def get(self, path: str, params: Dict[str, Any] | None = None) -> Any:
        """GET with retry on transport errors and 429/5xx.

        Only reads are retried here; writes go out exactly once.
        """

        max_attempts = len(self.backoffs) + 1
        for attempt in range(1, max_attempts + 1):
            try:
                r = await self._send("GET", path, params=params)
            except ConnectivityError:
                if attempt >= max_attempts:
                    raise
                delay = self.backoffs[attempt - 1] + random.uniform(0, 0.25 * self.backoffs[attempt - 1])
                logger.warning("GET %s retry %s/%s in %.2fs", path, attempt, max_attempts, delay)
                await asyncio.sleep(delay)
                continue

            if r.status_code in _RETRYABLE_STATUS and attempt < max_attempts:
                delay = self.backoffs[attempt - 1]
                logger.warning("GET %s retry %s/%s on HTTP %s", path, attempt, max_attempts, r.status_code)
                await asyncio.sleep(delay)
                continue

            return self._decode("GET", path, r)

        raise ConnectivityError(f"GET {path} gave up")  # pragma: no cover

    async def post(self, path: str, json: Any) -> Any:
        r = await self._send("POST", path, json=json)
        return self._decode("POST", path, r)

    # ---------- Occupancy / lots ----------

    async def get_positions(self) -> list[PositionItem]:
        data = await self.get("locations/positions")
        return parse_items(PositionItem, data.get("items") if isinstance(data, dict) else data)

    async def get_deleted_lots(self) -> list[DeletedLotItem]:
        data = await self.get("lots/deleted", params={"all": 1})
        return parse_items(DeletedLotItem, data.get("items") if isinstance(data, dict) else data)

    async def move_position(self, move: MoveRequest) -> Dict[str, Any]:
        """Move a lot between positions. Not idempotent: a vacated ``fromPos`` answers 404."""

        data = await self.post("locations/positions/move", move.model_dump(by_alias=True))
        return data if isinstance(data, dict) else {}

    async def get_static_locations(self) -> list[str]:
        data = await self.get("scanner/locations")
        if not isinstance(data, dict) or not data.get("ok"):
            raise FloorAPIError(_error_message(data) or "Location list unavailable")
        locations = data.get("locations")
        if not isinstance(locations, list):
            return []
        return [str(loc) for loc in locations if isinstance(loc, str) and loc.strip()]

    async def get_occupied_map(self) -> Dict[str, str]:
        data = await self.get("scanner/occupied")
        if not isinstance(data, dict) or not data.get("ok"):
            raise FloorAPIError(_error_message(data) or "Occupancy map unavailable")
        occupied = data.get("occupied")
        if not isinstance(occupied, dict):
            return {}
        return {str(pos): str(lot) for pos, lot in occupied.items() if isinstance(lot, str)}

    async def get_lot_lines(self, lot_code: str) -> tuple[list[LotLine], LotHeader | None]:
        data = await self.get(f"lots/{quote(lot_code, safe='')}/lines")
        if not isinstance(data, dict):
            return [], None
        header_raw = data.get("header")
        header = LotHeader.model_validate(header_raw) if isinstance(header_raw, dict) else None
        return parse_items(LotLine, data.get("items")), header

    async def export_lot(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = await self.post("lots/export", payload)
        if not isinstance(data, dict) or not data.get("ok"):
            raise FloorAPIError(_error_message(data) or "Export rejected")
        return data

    # ---------- Work orders ----------

    async def get_export_orders(self, *, status: str = "New", warehouse: str | None = None) -> list[ExportOrder]:
        params: Dict[str, Any] = {"status": status}
        if warehouse:
            params["warehouse"] = warehouse
        data = await self.get("export-orders", params=params)
        return parse_items(ExportOrder, data.get("items") if isinstance(data, dict) else data)

    async def get_export_order(self, order_id: str) -> ExportOrder | None:
        data = await self.get("export-orders", params={"id": order_id})
        raw = data.get("item") if isinstance(data, dict) else None
        return ExportOrder.model_validate(raw) if isinstance(raw, dict) else None

    async def legacy_work_sync(self, moves: Sequence[LegacyWorkMove]) -> Dict[str, Any]:
        """Bulk move endpoint of older server builds; the reconciler moves lots one by one instead."""

        data = await self.post("work/sync", {"moves": [m.model_dump(by_alias=True) for m in moves]})
        if not isinstance(data, dict) or not data.get("ok"):
            raise FloorAPIError(_error_message(data) or "Work sync rejected")
        return data

    # ---------- Scans ----------

    async def scan_sync(self, items: Sequence[ScanSyncItem]) -> Dict[str, Any]:
        data = await self.post("scan/sync", {"items": [item.model_dump() for item in items]})
        if not isinstance(data, dict) or not data.get("ok"):
            raise FloorAPIError(_error_message(data) or "Scan sync rejected")
        return data

    async def push_scans(self, scans: Sequence[ScanLogItem]) -> Dict[str, Any]:
        """Upload raw scan-log rows (no position) to the same endpoint."""

        data = await self.post("scan/sync", {"scans": [s.model_dump(by_alias=True) for s in scans]})
        if not isinstance(data, dict) or not data.get("ok"):
            raise FloorAPIError(_error_message(data) or "Scan sync rejected")
        return data

    # ---------- Warehouse tree ----------

    async def get_warehouse_status(self, warehouse_id: int) -> list[WarehouseZone]:
        data = await self.get(f"warehouse-status/{int(warehouse_id)}")
        return parse_warehouse_status(data)

    # ---------- Auth ----------

    async def login(self, username: str, password: str) -> LoginResponse:
        try:
            data = await self.post("login", {"username": username, "password": password})
        except FloorAPIError as exc:
            if isinstance(exc, ConnectivityError):
                raise
            raise AuthError(str(exc), status_code=exc.status_code) from exc
        resp = LoginResponse.model_validate(data if isinstance(data, dict) else {})
        if not resp.ok:
            raise AuthError(resp.message or "Login failed")
        return resp


__all__ = ["FloorClient"]
