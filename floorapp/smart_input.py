# floorapp/smart_input.py
"""Parse a typed or dictated work target.

Accepts compact codes (``AK3D4``, ``a k3 d4 t1``) and Vietnamese phrases
(``kho 2 khu b dãy 4 tầng 2``, ``sảnh``), including spelled-out numbers
from một (1) to mười (10).
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass

from floorapp.location_codes import HALL_ZONE, WAREHOUSES
from floorapp.models import WorkTarget

_NUMBER_WORDS = {
    "một": "1",
    "hai": "2",
    "ba": "3",
    "bốn": "4",
    "năm": "5",
    "lăm": "5",
    "sáu": "6",
    "bảy": "7",
    "tám": "8",
    "chín": "9",
    "mười": "10",
}
_NUMBER_RE = re.compile(r"\b(" + "|".join(_NUMBER_WORDS) + r")\b")

_COMPACT_RE = re.compile(r"([a-z])\s*k(\d+)\s*d(\d+)(?:\s*t(\d+))?")
_WAREHOUSE_RE = re.compile(r"(?:kho|khô|ko)\s*(\d+)")
_ZONE_RE = re.compile(r"(?:khu|ku)\s*([a-zs])\b")
_ROW_RE = re.compile(r"(?:dãy|day|dạy|dai)\s*(\d+)")
_LEVEL_RE = re.compile(r"(?:tầng|tang|tần|tan)\s*(\d+)")

_ZONES = ("A", "B", HALL_ZONE)


@dataclass(frozen=True)
class TargetPatch:
    """Fields recognised in the input; ``None`` means not mentioned."""

    warehouse: int | None = None
    zone: str | None = None
    row: int | None = None
    level: int | None = None

    @property
    def is_empty(self) -> bool:
        return self.warehouse is None and self.zone is None and self.row is None and self.level is None

    def apply(self, target: WorkTarget) -> WorkTarget:
        data = target.model_dump()
        for name in ("warehouse", "zone", "row", "level"):
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        if data["zone"] == HALL_ZONE:
            data["row"] = None
            data["level"] = None
        return WorkTarget(**data)


def _normalize(text: str) -> str:
    s = unicodedata.normalize("NFC", text or "").lower()
    return _NUMBER_RE.sub(lambda m: _NUMBER_WORDS[m.group(1)], s)


def parse_work_target(text: str) -> TargetPatch:
    s = _normalize(text)
    fields: dict[str, object] = {}

    compact = _COMPACT_RE.search(s)
    if compact:
        zone = compact.group(1).upper()
        warehouse = int(compact.group(2))
        if zone in _ZONES:
            fields["zone"] = zone
        if warehouse in WAREHOUSES:
            fields["warehouse"] = warehouse
        fields["row"] = int(compact.group(3))
        if compact.group(4):
            fields["level"] = int(compact.group(4))
    else:
        m = _WAREHOUSE_RE.search(s)
        if m and int(m.group(1)) in WAREHOUSES:
            fields["warehouse"] = int(m.group(1))

        m = _ZONE_RE.search(s)
        if m and m.group(1).upper() in _ZONES:
            fields["zone"] = m.group(1).upper()
        elif "sảnh" in s:
            fields["zone"] = HALL_ZONE

        m = _ROW_RE.search(s)
        if m:
            fields["row"] = int(m.group(1))

    # level is often said separately, e.g. "AK3D4 tầng 2"
    m = _LEVEL_RE.search(s)
    if m:
        fields["level"] = int(m.group(1))

    if fields.get("zone") == HALL_ZONE:
        fields.pop("row", None)
        fields.pop("level", None)

    return TargetPatch(**fields)


__all__ = ["TargetPatch", "parse_work_target"]
