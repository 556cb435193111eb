# floorapp/lots.py
from __future__ import annotations

import logging
from typing import Any, Callable, Sequence

from pydantic import BaseModel, Field

from floorapp.api_client import FloorClient
from floorapp.errors import ExportValidationError, FloorAPIError
from floorapp.location_codes import extract_scan_code
from floorapp.models import DEFAULT_ACTOR
from floorapp.offline_index import OfflineIndex
from floorapp.schemas import LotHeader

logger = logging.getLogger(__name__)


class ExportLine(BaseModel):
    lot_code: str
    product_code: str = ""
    product_name: str = ""
    quantity: float = 0
    unit: str = ""
    # None means the operator has to type the quantity
    export_qty: float | None = None


class LotDetails(BaseModel):
    lot_code: str
    lines: list[ExportLine] = Field(default_factory=list)
    header: LotHeader | None = None
    offline: bool = False


class LotService:
    def __init__(self, client: FloorClient, index: Callable[[], OfflineIndex]):
        self.client = client
        self._index = index

    async def fetch_lot_details(self, raw_code: str) -> LotDetails | None:
        """Lines of a lot from the server, or one line from the offline index.

        Offline lines carry no export quantity so the operator has to confirm it.
        """

        code = extract_scan_code(raw_code)
        if not code:
            return None

        try:
            lines, header = await self.client.get_lot_lines(code)
        except FloorAPIError as exc:
            logger.info("Online lookup of lot %s failed (%s), trying offline index", code, exc)
            item = self._index().lookup(code)
            if item is None:
                return None
            return LotDetails(
                lot_code=code,
                lines=[
                    ExportLine(
                        lot_code=code,
                        product_code=item.product_code,
                        product_name=item.product_name,
                        quantity=item.quantity,
                        unit=item.unit,
                    )
                ],
                offline=True,
            )

        if not lines:
            return None
        return LotDetails(
            lot_code=code,
            lines=[
                ExportLine(
                    lot_code=line.lot_code or code,
                    product_code=line.product_code,
                    product_name=line.product_name,
                    quantity=line.quantity,
                    unit=line.unit,
                    export_qty=line.quantity,
                )
                for line in lines
            ],
            header=header,
        )

    async def export_lot(
        self,
        lot_code: str,
        *,
        mode: str,
        reason: str,
        lines: Sequence[ExportLine] = (),
        actor: str = DEFAULT_ACTOR,
    ) -> dict[str, Any]:
        lot_code = (lot_code or "").strip()
        if not lot_code:
            raise ExportValidationError("Lot code is required")
        if not (reason or "").strip():
            raise ExportValidationError("Export reason is required")
        mode = (mode or "").strip().upper()
        if mode not in ("FULL", "PARTIAL"):
            raise ExportValidationError(f"Unknown export mode {mode!r}")

        payload: dict[str, Any] = {
            "lotCode": lot_code,
            "deletedBy": actor,
            "mode": mode,
            "reason": reason,
        }
        if mode == "PARTIAL":
            items = [
                {"lineIndex": idx, "quantity": line.export_qty, "unit": line.unit}
                for idx, line in enumerate(lines)
                if line.export_qty is not None and line.export_qty > 0
            ]
            if not items:
                raise ExportValidationError("Enter a quantity for at least one line")
            payload["items"] = items

        result = await self.client.export_lot(payload)
        logger.info("Lot %s exported (%s) by %s", lot_code, mode, actor)
        return result


__all__ = ["ExportLine", "LotDetails", "LotService"]
