"""Response/request shapes of the warehouse server.

Payloads are validated once here; the rest of the core only sees these
models. Unknown fields are ignored and loosely typed numbers are coerced.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

_Model = TypeVar("_Model", bound=BaseModel)

_BOUNDARY = ConfigDict(extra="ignore", populate_by_name=True, protected_namespaces=())


def _to_float(value: Any) -> float:
    try:
        return float(str(value).replace(",", ".")) if value not in (None, "") else 0.0
    except (TypeError, ValueError):
        return 0.0


def _to_str(value: Any) -> Any:
    if value is None:
        return value
    return str(value).strip()


def parse_items(model: Type[_Model], raw_items: Any) -> list[_Model]:
    """Validate a list payload, skipping entries that do not fit the model."""

    if not isinstance(raw_items, list):
        return []
    parsed: list[_Model] = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            continue
        try:
            parsed.append(model.model_validate(raw))
        except ValidationError as exc:
            logger.warning("Skipping malformed %s payload: %s", model.__name__, exc)
    return parsed


class PositionItem(BaseModel):
    pos_code: str = Field(alias="posCode")
    lot_code: str | None = Field(default=None, alias="lotCode")

    model_config = _BOUNDARY

    @field_validator("pos_code", "lot_code", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> Any:
        return _to_str(value)


class DeletedLotItem(BaseModel):
    lot_code: str = Field(alias="lotCode")

    model_config = _BOUNDARY

    @field_validator("lot_code", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> Any:
        return _to_str(value)


class ExportOrder(BaseModel):
    id: str
    date: str | None = None
    warehouse: str | None = None
    status: str | None = None
    locations: list[str] = Field(default_factory=list)
    lot_codes: list[str] = Field(default_factory=list, alias="lotCodes")
    realtime_status: list[str | None] | None = Field(default=None, alias="realtimeStatus")

    model_config = _BOUNDARY

    @field_validator("id", "warehouse", "date", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> Any:
        return _to_str(value)

    def position_of(self, lot_code: str) -> str | None:
        try:
            idx = self.lot_codes.index(lot_code)
        except ValueError:
            return None
        return self.locations[idx] if idx < len(self.locations) else None


class WarehouseItem(BaseModel):
    position: int
    code: str = ""
    name: str = ""
    unit: str = ""
    quantity: float = 0
    lot_code: str | None = Field(default=None, alias="lotCode")

    model_config = _BOUNDARY

    @field_validator("quantity", mode="before")
    @classmethod
    def _coerce_quantity(cls, value: Any) -> float:
        return _to_float(value)

    @field_validator("code", "name", "unit", mode="before")
    @classmethod
    def _blank_none(cls, value: Any) -> Any:
        return "" if value is None else str(value)


class WarehouseLevel(BaseModel):
    level_number: int = Field(alias="levelNumber")
    items: list[WarehouseItem] = Field(default_factory=list)

    model_config = _BOUNDARY


class WarehouseRack(BaseModel):
    name: str
    levels: list[WarehouseLevel] = Field(default_factory=list)

    model_config = _BOUNDARY

    @field_validator("name", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> Any:
        return _to_str(value)


class WarehouseHall(BaseModel):
    items: list[WarehouseItem] = Field(default_factory=list)

    model_config = _BOUNDARY


class WarehouseZone(BaseModel):
    id: str
    racks: list[WarehouseRack] = Field(default_factory=list)
    hall: WarehouseHall | None = None

    model_config = _BOUNDARY

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> Any:
        return _to_str(value)


def parse_warehouse_status(payload: Any) -> list[WarehouseZone]:
    """Accept the bare zone list or a ``{"zones": [...]}`` / ``{"items": [...]}`` wrapper."""

    if isinstance(payload, dict):
        payload = payload.get("zones") if "zones" in payload else payload.get("items")
    return parse_items(WarehouseZone, payload)


class ScanSyncItem(BaseModel):
    code: str
    position: str
    quantity: float = 1
    timestamp: int

    @classmethod
    def from_datetime(cls, *, code: str, position: str, quantity: float, ts: datetime) -> "ScanSyncItem":
        return cls(code=code, position=position, quantity=quantity, timestamp=int(ts.timestamp() * 1000))


class ScanLogItem(BaseModel):
    code: str
    quantity: float = 1
    timestamp: int
    device_id: str = Field(serialization_alias="deviceId")


class MoveRequest(BaseModel):
    from_pos: str = Field(serialization_alias="fromPos")
    to_pos: str = Field(serialization_alias="toPos")
    lot_code: str = Field(serialization_alias="lotCode")
    moved_by: str = Field(serialization_alias="movedBy")


class LegacyWorkMove(BaseModel):
    export_order_id: str | None = Field(default=None, serialization_alias="exportOrderId")
    lot_code: str = Field(serialization_alias="lotCode")
    original_position: str = Field(serialization_alias="originalPosition")
    target_warehouse: str = Field(serialization_alias="targetWarehouse")
    moved_by: str = Field(serialization_alias="movedBy")
    timestamp: int


class LotLine(BaseModel):
    lot_code: str = Field(default="", alias="lotCode")
    product_code: str = Field(default="", alias="productCode")
    product_name: str = Field(default="", alias="productName")
    product_type: str | None = Field(default=None, alias="productType")
    quantity: float = 0
    unit: str = ""
    image_url: str | None = Field(default=None, alias="imageUrl")

    model_config = _BOUNDARY

    @field_validator("quantity", mode="before")
    @classmethod
    def _coerce_quantity(cls, value: Any) -> float:
        return _to_float(value)


class LotHeader(BaseModel):
    peel_date: str | None = Field(default=None, alias="peelDate")
    pack_date: str | None = Field(default=None, alias="packDate")
    qc: str | None = None

    model_config = _BOUNDARY


class LoginResponse(BaseModel):
    ok: bool = False
    username: str = ""
    name: str | None = None
    role: str | None = None
    roles: list[str] = Field(default_factory=list)
    avatar: str | None = None
    message: str | None = None

    model_config = _BOUNDARY


def normalized_lots(items: Iterable[DeletedLotItem]) -> set[str]:
    return {item.lot_code.strip().upper() for item in items if item.lot_code and item.lot_code.strip()}


__all__ = [
    "DeletedLotItem",
    "ExportOrder",
    "LegacyWorkMove",
    "LoginResponse",
    "LotHeader",
    "LotLine",
    "MoveRequest",
    "PositionItem",
    "ScanLogItem",
    "ScanSyncItem",
    "WarehouseHall",
    "WarehouseItem",
    "WarehouseLevel",
    "WarehouseRack",
    "WarehouseZone",
    "normalized_lots",
    "parse_items",
    "parse_warehouse_status",
]
