"""Canonical warehouse location codes.

Two grammars are recognised::

    A-K3D4T2.PL6   shelf zone A/B: warehouse 3, row (D) 4, level (T) 2, pallet 6
    S-K3.PL12      Hall (zone S): warehouse 3, pallet 12, no row/level

The module also hosts the free-text helpers built on top of the grammar:
fuzzy autocomplete over a location list and extraction of lot codes from
scanned QR payloads.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping
from urllib.parse import unquote, urlparse

HALL_ZONE = "S"
SHELF_ZONES = ("A", "B")
WAREHOUSES = (1, 2, 3)

_SHELF_RE = re.compile(r"^(A|B)-K(\d+)D(\d+)T(\d+)\.PL(\d+)$", re.IGNORECASE)
_HALL_RE = re.compile(r"^S-K(\d+)\.PL(\d+)$", re.IGNORECASE)
_SEPARATORS_RE = re.compile(r"[.\-]")


@dataclass(frozen=True, slots=True)
class Slot:
    """A physical pallet position. Hall slots never carry row/level."""

    warehouse: int
    zone: str
    pos: int
    row: int | None = None
    level: int | None = None

    @property
    def is_hall(self) -> bool:
        return self.zone == HALL_ZONE

    @property
    def code(self) -> str:
        return encode(self)


@dataclass(frozen=True, slots=True)
class Suggestion:
    code: str
    score: int
    lot_code: str | None = None


def encode(slot: Slot) -> str:
    if slot.zone == HALL_ZONE:
        return f"S-K{slot.warehouse}.PL{slot.pos}"
    row = slot.row or 0
    level = slot.level or 0
    return f"{slot.zone}-K{slot.warehouse}D{row}T{level}.PL{slot.pos}"


def _coerce_warehouse(raw: str) -> int:
    # Legacy fallback: unknown warehouse numbers are read as warehouse 1.
    value = int(raw)
    return value if value in WAREHOUSES else 1


def decode(code: Any) -> Slot | None:
    """Parse a canonical code; ``None`` for anything that is not one."""

    if not isinstance(code, str):
        return None
    text = code.strip()

    m = _SHELF_RE.match(text)
    if m:
        return Slot(
            warehouse=_coerce_warehouse(m.group(2)),
            zone=m.group(1).upper(),
            row=int(m.group(3)),
            level=int(m.group(4)),
            pos=int(m.group(5)),
        )

    m = _HALL_RE.match(text)
    if m:
        return Slot(warehouse=_coerce_warehouse(m.group(1)), zone=HALL_ZONE, pos=int(m.group(2)))

    return None


def hall_code(warehouse: int, pos: int) -> str:
    return encode(Slot(warehouse=warehouse, zone=HALL_ZONE, pos=pos))


def normalize_lot(lot_code: Any) -> str:
    """Lot codes compare trimmed and case-insensitively."""

    if lot_code is None:
        return ""
    return str(lot_code).strip().upper()


def _strip_separators(text: str) -> str:
    return _SEPARATORS_RE.sub("", text)


def _score(query: str, query_normalized: str, code_upper: str) -> int:
    code_normalized = _strip_separators(code_upper)
    if code_normalized == query_normalized:
        return 1000
    if code_upper == query:
        return 950
    if code_normalized.startswith(query_normalized):
        return 900
    if code_upper.startswith(query):
        return 850
    if query_normalized in code_normalized:
        return 700
    if query in code_upper:
        return 650
    parts = [p for p in re.split(r"[-.]", code_upper) if p]
    if any(p.startswith(query) for p in parts):
        return 500
    if any(query in p for p in parts):
        return 300
    return 0


def suggest_locations(
    query: str,
    locations: Iterable[str],
    occupancy: Mapping[str, str] | None = None,
    *,
    limit: int = 5,
) -> list[Suggestion]:
    """Rank known location codes against a partially typed one.

    Separators are ignored for the strongest matches, so ``ak1d1`` finds
    ``A-K1D1T1.PL1``. Each suggestion carries the lot currently occupying it.
    """

    if not (query or "").strip():
        return []

    q = query.upper()
    q_normalized = _strip_separators(q)
    occupancy = occupancy or {}

    matches: list[Suggestion] = []
    for code in locations:
        if not isinstance(code, str):
            continue
        code_upper = code.upper()
        score = _score(q, q_normalized, code_upper)
        if score > 0:
            lot = occupancy.get(code) or occupancy.get(code_upper)
            matches.append(Suggestion(code=code, score=score, lot_code=lot))

    matches.sort(key=lambda s: s.score, reverse=True)
    return matches[: max(0, limit)]


def extract_scan_code(raw: Any) -> str:
    """Return the lot code carried by a scanned payload.

    Labels printed by the web app encode ``https://host/qr/<LOT>?...``; the
    lot is the path segment after ``qr``. Anything else is used as-is.
    """

    code = str(raw or "").strip()
    if "/qr/" not in code:
        return code

    parsed = urlparse(code)
    if not parsed.scheme or not parsed.netloc:
        return code

    parts = parsed.path.split("/")
    try:
        idx = parts.index("qr")
    except ValueError:
        return code
    if idx + 1 < len(parts) and parts[idx + 1]:
        return unquote(parts[idx + 1])
    return code


__all__ = [
    "HALL_ZONE",
    "SHELF_ZONES",
    "Slot",
    "Suggestion",
    "WAREHOUSES",
    "decode",
    "encode",
    "extract_scan_code",
    "hall_code",
    "normalize_lot",
    "suggest_locations",
]
