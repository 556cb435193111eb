"""Domain types shared across the sync core.

Pending mutations are immutable: a correction is modelled as removing the
old entry and appending a new one, never as a field update.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from floorapp.location_codes import HALL_ZONE, WAREHOUSES, normalize_lot

logger = logging.getLogger(__name__)

AUTO_WAREHOUSE = "AUTO"
DEFAULT_ACTOR = "mobile_user"


def new_mutation_id() -> str:
    return uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class WorkTarget(BaseModel):
    """Where the operator is currently putting pallets away."""

    warehouse: int = 1
    zone: str = "A"
    row: int | None = None
    level: int | None = None

    model_config = ConfigDict(frozen=True)

    @field_validator("zone", mode="before")
    @classmethod
    def _upper_zone(cls, value: Any) -> Any:
        return str(value).strip().upper() if value is not None else value

    @property
    def is_hall(self) -> bool:
        return self.zone == HALL_ZONE


class _MutationBase(BaseModel):
    id: str = Field(default_factory=new_mutation_id)
    lot_code: str
    context_id: str | None = None
    actor: str = DEFAULT_ACTOR
    created_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(frozen=True, extra="ignore")

    @field_validator("lot_code", mode="before")
    @classmethod
    def _strip_lot(cls, value: Any) -> Any:
        return str(value).strip() if value is not None else value

    @property
    def lot_key(self) -> str:
        return normalize_lot(self.lot_code)


class ScanAssign(_MutationBase):
    """A scanned lot paired with the slot chosen for it on the device."""

    kind: Literal["scan_assign"] = "scan_assign"
    position: str = ""
    quantity: float = 1
    target: WorkTarget | None = None

    @field_validator("position", mode="before")
    @classmethod
    def _strip_position(cls, value: Any) -> Any:
        return str(value).strip() if value is not None else ""


class HallMove(_MutationBase):
    """A lot taken down from its shelf to the Hall of a warehouse."""

    kind: Literal["hall_move"] = "hall_move"
    original_position: str
    target_warehouse: str = AUTO_WAREHOUSE

    @field_validator("target_warehouse", mode="before")
    @classmethod
    def _normalize_target(cls, value: Any) -> str:
        text = str(value if value is not None else AUTO_WAREHOUSE).strip().upper()
        if text == AUTO_WAREHOUSE:
            return text
        try:
            number = int(text.lstrip("K"))
        except ValueError:
            raise ValueError(f"unknown target warehouse {value!r}") from None
        if number not in WAREHOUSES:
            raise ValueError(f"unknown target warehouse {value!r}")
        return str(number)


PendingMutation = Annotated[Union[ScanAssign, HallMove], Field(discriminator="kind")]

_MUTATION_ADAPTER: TypeAdapter = TypeAdapter(PendingMutation)


def _from_legacy_move(payload: dict) -> dict:
    """Map the camelCase pending-move layout written by older installs."""

    ts = payload.get("timestamp")
    created_at: Any = None
    if isinstance(ts, (int, float)):
        created_at = datetime.fromtimestamp(ts / 1000, tz=timezone.utc)
    return {
        "kind": "hall_move",
        "id": payload.get("id") or new_mutation_id(),
        "lot_code": payload.get("lotCode"),
        "context_id": payload.get("exportOrderId"),
        "actor": payload.get("movedBy") or DEFAULT_ACTOR,
        "original_position": payload.get("originalPosition") or "",
        "target_warehouse": payload.get("targetWarehouse") or AUTO_WAREHOUSE,
        **({"created_at": created_at} if created_at else {}),
    }


def mutation_from_dict(payload: Any) -> ScanAssign | HallMove | None:
    if not isinstance(payload, dict):
        return None
    if "kind" not in payload and "lotCode" in payload:
        payload = _from_legacy_move(payload)
    try:
        return _MUTATION_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        logger.warning("Skipping unreadable pending mutation %s: %s", payload.get("id"), exc)
        return None


def mutation_to_dict(mutation: ScanAssign | HallMove) -> dict:
    return mutation.model_dump(mode="json")


class ProductDetail(BaseModel):
    product_code: str = ""
    product_name: str = ""
    unit: str = ""
    quantity: float = 0


class OfflineItem(ProductDetail):
    lot_code: str
    position: str


__all__ = [
    "AUTO_WAREHOUSE",
    "DEFAULT_ACTOR",
    "HallMove",
    "OfflineItem",
    "PendingMutation",
    "ProductDetail",
    "ScanAssign",
    "WorkTarget",
    "mutation_from_dict",
    "mutation_to_dict",
    "new_mutation_id",
    "utc_now",
]
