# floorapp/storage.py
"""Key/value blob store for offline snapshots and device state.

Each key is one JSON file under the storage root, written atomically and
fsync'ed before ``set`` returns, so a killed process never loses a recorded
change and never leaves a half-written file behind.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Key names match the ones used by existing installs of the mobile app.
USER_KEY = "user_data"
PENDING_MOVES_KEY = "work_pending_moves"
LAST_SYNC_KEY = "work_last_sync"
OFFLINE_ORDERS_KEY = "work_offline_orders"
OCCUPIED_KEY = "offline_occupied_locations"
STATIC_LOCATIONS_KEY = "offline_static_locations"
DATA_LAST_UPDATED_KEY = "offline_data_last_updated"

_KEY_RE = re.compile(r"^[A-Za-z0-9_\-]+$")


def warehouse_status_key(warehouse_id: int) -> str:
    return f"offline_warehouse_status_{int(warehouse_id)}"


def _storage_root() -> Path:
    p = (os.getenv("STORAGE_DIR") or "").strip()
    if p:
        return Path(p)

    for env_name in ("RENDER_DISK_PATH", "PERSIST_DIR", "PERSISTENT_DIR"):
        v = (os.getenv(env_name) or "").strip()
        if v:
            return Path(v)

    return Path("data")


def _json_default(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _write_json_atomic(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", delete=False, dir=path.parent, encoding="utf-8") as tmp:
        json.dump(data, tmp, ensure_ascii=False, indent=2, default=_json_default)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_path = Path(tmp.name)
    tmp_path.replace(path)


class BlobStore:
    def __init__(self, root: str | Path | None = None):
        self.root = Path(root) if root else _storage_root()
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    def _path(self, key: str) -> Path:
        if not _KEY_RE.match(key or ""):
            raise ValueError(f"invalid storage key {key!r}")
        return self.root / f"{key}.json"

    def get(self, key: str, default: Any = None) -> Any:
        path = self._path(key)
        with self._lock:
            try:
                raw = path.read_text(encoding="utf-8").strip()
            except FileNotFoundError:
                return default
            if not raw:
                return default
            try:
                return json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Corrupted blob %s, treating as empty", path)
                return default

    def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        with self._lock:
            _write_json_atomic(path, value)

    def remove(self, key: str) -> None:
        path = self._path(key)
        with self._lock:
            path.unlink(missing_ok=True)

    def get_dict(self, key: str) -> dict:
        value = self.get(key)
        return value if isinstance(value, dict) else {}

    def get_list(self, key: str) -> list:
        value = self.get(key)
        return value if isinstance(value, list) else []


__all__ = [
    "BlobStore",
    "DATA_LAST_UPDATED_KEY",
    "LAST_SYNC_KEY",
    "OCCUPIED_KEY",
    "OFFLINE_ORDERS_KEY",
    "PENDING_MOVES_KEY",
    "STATIC_LOCATIONS_KEY",
    "USER_KEY",
    "warehouse_status_key",
]
