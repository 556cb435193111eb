import asyncio
import tempfile
import unittest
from pathlib import Path

from floorapp.errors import ConnectivityError, FloorAPIError, FloorNotFound
from floorapp.models import HallMove, ScanAssign, WorkTarget
from floorapp.mutation_store import BlobQueueAdapter, MutationStore
from floorapp.reconciler import NO_FREE_SLOT, Reconciler, SyncState
from floorapp.schemas import DeletedLotItem, PositionItem
from floorapp.storage import LAST_SYNC_KEY, OCCUPIED_KEY, STATIC_LOCATIONS_KEY, BlobStore


class FakeServer:
    def __init__(self, *, deleted=(), positions=None, move_errors=None, scan_error=None, fetch_error=None):
        self.deleted = list(deleted)
        self.positions = dict(positions or {})
        self.move_errors = dict(move_errors or {})
        self.scan_error = scan_error
        self.fetch_error = fetch_error
        self.moves = []
        self.scan_batches = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def get_deleted_lots(self):
        if self.fetch_error:
            raise self.fetch_error
        return [DeletedLotItem(lot_code=lot) for lot in self.deleted]

    async def get_positions(self):
        return [PositionItem(pos_code=pos, lot_code=lot) for pos, lot in self.positions.items()]

    async def move_position(self, move):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            self.moves.append(move)
            error = self.move_errors.get(move.lot_code)
            if error:
                raise error
            return {"ok": True}
        finally:
            self.in_flight -= 1

    async def scan_sync(self, items):
        if self.scan_error:
            raise self.scan_error
        self.scan_batches.append(list(items))
        return {"ok": True}


class ReconcilerTest(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.blob = BlobStore(Path(self._tmp.name))
        self.store = MutationStore(BlobQueueAdapter(self.blob))

    def tearDown(self):
        self._tmp.cleanup()

    def _run(self, server, **kwargs):
        kwargs.setdefault("batch_delay_s", 0)
        reconciler = Reconciler(server, self.store, self.blob, **kwargs)
        report = asyncio.run(reconciler.run())
        self.assertEqual(reconciler.state, SyncState.IDLE)
        return report

    def test_exported_lots_are_dropped_without_a_move(self):
        move = self.store.append(HallMove(lot_code="lot-x", original_position="A-K1D1T1.PL1"))
        scan = self.store.append(ScanAssign(lot_code="LOT-Y", position="A-K1D1T1.PL2"))
        server = FakeServer(deleted=["LOT-X", " lot-y "])

        report = self._run(server)

        self.assertEqual(report.skipped_exported, [move.id, scan.id])
        self.assertEqual(server.moves, [])
        self.assertEqual(server.scan_batches, [])
        self.assertEqual(self.store.list_all(), [])
        self.assertIsNotNone(self.blob.get(LAST_SYNC_KEY))

    def test_not_found_counts_as_recovered(self):
        move = self.store.append(HallMove(lot_code="LOT-1", original_position="A-K1D1T1.PL1"))
        server = FakeServer(move_errors={"LOT-1": FloorNotFound("gone", status_code=404)})

        report = self._run(server)

        self.assertEqual(report.recovered, [move.id])
        self.assertEqual(report.failed, [])
        self.assertNotIn(move.id, report.destinations)
        self.assertEqual(self.store.list_all(), [])

    def test_auto_routing_without_collisions(self):
        first = self.store.append(HallMove(lot_code="LOT-1", original_position="A-K1D1T1.PL1", target_warehouse="AUTO"))
        second = self.store.append(HallMove(lot_code="LOT-2", original_position="A-K1D1T1.PL2", target_warehouse="2"))
        third = self.store.append(HallMove(lot_code="LOT-3", original_position="A-K1D1T1.PL3", target_warehouse="AUTO"))
        server = FakeServer(positions={"S-K1.PL1": "OTHER", "A-K1D1T1.PL1": "LOT-1"})

        report = self._run(server)

        self.assertEqual(report.destinations[first.id], "S-K1.PL2")
        self.assertEqual(report.destinations[second.id], "S-K2.PL1")
        self.assertEqual(report.destinations[third.id], "S-K1.PL3")
        self.assertEqual(sorted(report.succeeded), sorted([first.id, second.id, third.id]))
        targets = [m.to_pos for m in server.moves]
        self.assertEqual(len(targets), len(set(targets)))
        self.assertEqual(self.store.list_all(), [])

        occupied = self.blob.get_dict(OCCUPIED_KEY)
        self.assertEqual(occupied.get("S-K1.PL2"), "LOT-1")
        self.assertEqual(occupied.get("S-K2.PL1"), "LOT-2")

    def test_auto_routing_spills_into_next_warehouse(self):
        moves = [
            self.store.append(
                HallMove(lot_code=f"LOT-{i}", original_position=f"A-K1D1T1.PL{i}", target_warehouse="AUTO")
            )
            for i in range(1, 4)
        ]
        # warehouse 1 has a single free Hall slot left
        taken = {f"S-K1.PL{pos}": f"OLD-{pos}" for pos in range(1, 100)}
        server = FakeServer(positions=taken)

        report = self._run(server)

        dests = [report.destinations[m.id] for m in moves]
        self.assertEqual(dests, ["S-K1.PL100", "S-K2.PL1", "S-K2.PL2"])
        self.assertEqual(len(set(dests)), 3)
        self.assertEqual(sum(d.startswith("S-K1.") for d in dests), 1)
        self.assertEqual(sum(d.startswith("S-K2.") for d in dests), 2)
        self.assertEqual(sorted(m.to_pos for m in server.moves), sorted(dests))
        self.assertEqual(self.store.list_all(), [])

    def test_move_payload(self):
        self.store.append(HallMove(lot_code="LOT-1", original_position="B-K2D1T1.PL4", target_warehouse="3", actor="anna"))
        server = FakeServer()

        self._run(server)

        body = server.moves[0].model_dump(by_alias=True)
        self.assertEqual(
            body,
            {"fromPos": "B-K2D1T1.PL4", "toPos": "S-K3.PL1", "lotCode": "LOT-1", "movedBy": "anna"},
        )

    def test_connectivity_failure_leaves_queue_untouched(self):
        self.store.append(HallMove(lot_code="LOT-1", original_position="A-K1D1T1.PL1"))
        before = self.store.list_all()
        server = FakeServer(fetch_error=ConnectivityError("offline"))

        with self.assertRaises(ConnectivityError):
            self._run(server)

        self.assertEqual(self.store.list_all(), before)
        self.assertIsNone(self.blob.get(LAST_SYNC_KEY))

    def test_server_error_while_fetching_is_reported_as_connectivity(self):
        self.store.append(HallMove(lot_code="LOT-1", original_position="A-K1D1T1.PL1"))
        server = FakeServer(fetch_error=FloorAPIError("boom", status_code=500))

        with self.assertRaises(ConnectivityError):
            self._run(server)
        self.assertEqual(len(self.store), 1)

    def test_partial_failure_keeps_failed_mutations(self):
        ok = self.store.append(HallMove(lot_code="LOT-1", original_position="A-K1D1T1.PL1"))
        bad = self.store.append(HallMove(lot_code="LOT-2", original_position="A-K1D1T1.PL2"))
        server = FakeServer(move_errors={"LOT-2": FloorAPIError("HTTP 500", status_code=500)})

        report = self._run(server)

        self.assertEqual(report.succeeded, [ok.id])
        self.assertEqual([f.mutation_id for f in report.failed], [bad.id])
        self.assertIn("HTTP 500", report.failed[0].message)
        self.assertEqual([m.id for m in self.store.list_all()], [bad.id])

    def test_no_free_hall_slot(self):
        move = self.store.append(HallMove(lot_code="LOT-1", original_position="A-K1D1T1.PL1", target_warehouse="1"))
        server = FakeServer(positions={f"S-K1.PL{i}": f"L{i}" for i in range(1, 101)})

        report = self._run(server)

        self.assertEqual(report.failed[0].message, NO_FREE_SLOT)
        self.assertEqual(server.moves, [])
        self.assertEqual([m.id for m in self.store.list_all()], [move.id])
        self.assertIsNone(self.blob.get(LAST_SYNC_KEY))

    def test_batches_bound_concurrency(self):
        for i in range(7):
            self.store.append(HallMove(lot_code=f"LOT-{i}", original_position=f"A-K1D1T1.PL{i + 1}"))
        server = FakeServer()

        report = self._run(server, batch_size=3)

        self.assertEqual(len(report.succeeded), 7)
        self.assertLessEqual(server.max_in_flight, 3)
        self.assertEqual(len({m.to_pos for m in server.moves}), 7)

    def test_scan_assigns_confirmed_in_one_call(self):
        self.blob.set(STATIC_LOCATIONS_KEY, [f"A-K1D1T1.PL{i}" for i in range(1, 9)])
        placed = self.store.append(ScanAssign(lot_code="LOT-1", position="A-K1D1T1.PL1", quantity=2))
        unplaced = self.store.append(ScanAssign(lot_code="LOT-2", target=WorkTarget(warehouse=1, zone="A", row=1, level=1)))
        stray = self.store.append(ScanAssign(lot_code="LOT-3"))
        server = FakeServer(positions={"A-K1D1T1.PL2": "OTHER"})

        report = self._run(server)

        self.assertEqual(len(server.scan_batches), 1)
        sent = {item.code: item for item in server.scan_batches[0]}
        self.assertEqual(sent["LOT-1"].position, "A-K1D1T1.PL1")
        self.assertEqual(sent["LOT-1"].quantity, 2)
        self.assertEqual(sent["LOT-2"].position, "A-K1D1T1.PL3")
        self.assertNotIn("LOT-3", sent)
        self.assertEqual(sorted(report.succeeded), sorted([placed.id, unplaced.id]))
        self.assertEqual(report.failed[0].mutation_id, stray.id)
        self.assertEqual(report.failed[0].message, NO_FREE_SLOT)
        self.assertEqual([m.id for m in self.store.list_all()], [stray.id])

    def test_rejected_scan_sync_keeps_scans(self):
        scan = self.store.append(ScanAssign(lot_code="LOT-1", position="A-K1D1T1.PL1"))
        server = FakeServer(scan_error=FloorAPIError("Sync failed"))

        report = self._run(server)

        self.assertEqual(report.failed[0].mutation_id, scan.id)
        self.assertEqual(len(self.store), 1)

    def test_empty_queue_skips_server(self):
        server = FakeServer(fetch_error=ConnectivityError("should not be called"))
        report = self._run(server)
        self.assertEqual(report.resolved_ids, [])


if __name__ == "__main__":
    unittest.main()
