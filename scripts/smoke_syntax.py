#!/usr/bin/env python3
"""Lightweight syntax smoke test runner.

Runs compileall for the repository, then imports the core modules and
exercises a few pure helpers without touching the network.
"""
from __future__ import annotations

import asyncio
import subprocess
import sys
import tempfile
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


def _run(cmd: list[str], *, cwd: Path) -> None:
    print("Running:", " ".join(cmd))
    result = subprocess.run(cmd, cwd=cwd)
    if result.returncode != 0:
        sys.exit(result.returncode)


def _smoke_imports() -> None:
    """Ensure core modules import without side effects or network calls."""

    import floorapp.reconciler  # noqa: F401
    import floorapp.data_sync  # noqa: F401
    import floorapp.scan_log  # noqa: F401


def _smoke_codes() -> None:
    from floorapp.location_codes import Slot, decode, encode, suggest_locations

    slot = Slot(warehouse=2, zone="B", row=3, level=1, pos=4)
    assert decode(encode(slot)) == slot
    assert suggest_locations("bk2d3", [encode(slot)])[0].code == "B-K2D3T1.PL4"


def _smoke_queue() -> None:
    from floorapp.models import WorkTarget
    from floorapp.mutation_store import BlobQueueAdapter, MutationStore, record_scan
    from floorapp.storage import BlobStore

    with tempfile.TemporaryDirectory() as tmp:
        store = MutationStore(BlobQueueAdapter(BlobStore(tmp)))
        item = record_scan(
            store,
            "https://sarita.click/qr/LOT-1",
            WorkTarget(warehouse=1, zone="A", row=1, level=1),
            ["A-K1D1T1.PL1", "A-K1D1T1.PL2"],
            ["A-K1D1T1.PL1"],
        )
        assert item.position == "A-K1D1T1.PL2"
        assert len(MutationStore(BlobQueueAdapter(BlobStore(tmp)))) == 1


def _smoke_empty_sync() -> None:
    from floorapp.mutation_store import BlobQueueAdapter, MutationStore
    from floorapp.reconciler import Reconciler
    from floorapp.storage import BlobStore

    class _Offline:
        async def get_deleted_lots(self):
            raise AssertionError("empty queue must not reach the server")

        get_positions = get_deleted_lots

    with tempfile.TemporaryDirectory() as tmp:
        blob = BlobStore(tmp)
        report = asyncio.run(Reconciler(_Offline(), MutationStore(BlobQueueAdapter(blob)), blob).run())
        assert not report.resolved_ids


def main() -> None:
    _run([sys.executable, "-m", "compileall", "-q", str(REPO_ROOT / "floorapp")], cwd=REPO_ROOT)
    _smoke_imports()
    _smoke_codes()
    _smoke_queue()
    _smoke_empty_sync()


if __name__ == "__main__":
    main()
