# floorapp/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _env(*names: str, default: str = "") -> str:
    """
    First non-empty value among the given environment variables.
    """
    for n in names:
        v = (os.getenv(n) or "").strip()
        if v:
            return v
    return (default or "").strip()


def _env_float(name: str, default: float) -> float:
    try:
        return float(_env(name, default=str(default)))
    except Exception:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(_env(name, default=str(default)))
    except Exception:
        return default


@dataclass(frozen=True, slots=True)
class FloorConfig:
    base_url: str
    timeout_s: float
    storage_dir: Path
    database_url: str
    sync_batch_size: int
    sync_batch_delay_s: float
    device_id: str


def load_config() -> FloorConfig:
    base_url = _env("FLOOR_API_BASE_URL", default="https://sarita.click/api").rstrip("/")

    # STORAGE_DIR wins; the Render disk names are kept for older deployments
    storage_dir = Path(
        _env("STORAGE_DIR", "RENDER_DISK_PATH", "PERSIST_DIR", default="data")
    )

    database_url = _env(
        "DATABASE_URL",
        default=f"sqlite+aiosqlite:///{(storage_dir / 'floor.db').as_posix()}",
    )

    batch_size = _env_int("SYNC_BATCH_SIZE", 5)
    if batch_size < 1:
        batch_size = 5

    return FloorConfig(
        base_url=base_url,
        timeout_s=_env_float("FLOOR_HTTP_TIMEOUT_S", 30.0),
        storage_dir=storage_dir,
        database_url=database_url,
        sync_batch_size=batch_size,
        sync_batch_delay_s=max(0.0, _env_float("SYNC_BATCH_DELAY_S", 0.5)),
        device_id=_env("FLOOR_DEVICE_ID", default="mobile-app-1"),
    )


__all__ = ["FloorConfig", "load_config"]
