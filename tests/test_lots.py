import asyncio
import unittest

from floorapp.errors import ConnectivityError, ExportValidationError
from floorapp.lots import ExportLine, LotService
from floorapp.offline_index import rebuild
from floorapp.schemas import LotHeader, LotLine, parse_warehouse_status

ZONES = [
    {
        "id": "A",
        "racks": [
            {
                "name": "1",
                "levels": [
                    {
                        "levelNumber": 1,
                        "items": [{"position": 2, "code": "P-7", "name": "Mango", "unit": "kg", "quantity": 12}],
                    }
                ],
            }
        ],
    }
]


class _Client:
    def __init__(self, *, lines=(), header=None, error=None):
        self.lines = list(lines)
        self.header = header
        self.error = error
        self.requested = []
        self.exports = []

    async def get_lot_lines(self, code):
        self.requested.append(code)
        if self.error:
            raise self.error
        return self.lines, self.header

    async def export_lot(self, payload):
        self.exports.append(payload)
        return {"ok": True}


def _index():
    return rebuild({1: parse_warehouse_status(ZONES)}, {"A-K1D1T1.PL2": "LOT-7"})


class FetchLotDetailsTest(unittest.TestCase):
    def test_online_lines_prefill_export_quantity(self):
        client = _Client(
            lines=[LotLine(product_code="P-1", product_name="Durian", quantity=4, unit="kg")],
            header=LotHeader(qc="passed"),
        )
        service = LotService(client, _index)

        details = asyncio.run(service.fetch_lot_details("https://web.test/qr/LOT-1?x=1"))

        self.assertEqual(client.requested, ["LOT-1"])
        self.assertFalse(details.offline)
        self.assertEqual(details.lines[0].lot_code, "LOT-1")
        self.assertEqual(details.lines[0].export_qty, 4)
        self.assertEqual(details.header.qc, "passed")

    def test_unknown_lot_online(self):
        service = LotService(_Client(lines=[]), _index)
        self.assertIsNone(asyncio.run(service.fetch_lot_details("LOT-404")))

    def test_offline_fallback_from_index(self):
        service = LotService(_Client(error=ConnectivityError("offline")), _index)

        details = asyncio.run(service.fetch_lot_details("lot-7"))

        self.assertTrue(details.offline)
        line = details.lines[0]
        self.assertEqual((line.product_code, line.product_name, line.quantity), ("P-7", "Mango", 12))
        self.assertIsNone(line.export_qty)

    def test_offline_unknown_lot(self):
        service = LotService(_Client(error=ConnectivityError("offline")), _index)
        self.assertIsNone(asyncio.run(service.fetch_lot_details("LOT-8")))

    def test_blank_code(self):
        client = _Client()
        self.assertIsNone(asyncio.run(LotService(client, _index).fetch_lot_details("  ")))
        self.assertEqual(client.requested, [])


class ExportLotTest(unittest.TestCase):
    def test_full_export_payload(self):
        client = _Client()
        asyncio.run(LotService(client, _index).export_lot(" LOT-1 ", mode="full", reason="sold", actor="anna"))
        self.assertEqual(
            client.exports,
            [{"lotCode": "LOT-1", "deletedBy": "anna", "mode": "FULL", "reason": "sold"}],
        )

    def test_partial_export_lists_positive_lines(self):
        client = _Client()
        lines = [
            ExportLine(lot_code="LOT-1", quantity=5, unit="kg", export_qty=2),
            ExportLine(lot_code="LOT-1", quantity=3, unit="box", export_qty=0),
            ExportLine(lot_code="LOT-1", quantity=1, unit="kg", export_qty=1),
        ]

        asyncio.run(LotService(client, _index).export_lot("LOT-1", mode="PARTIAL", reason="sample", lines=lines))

        self.assertEqual(
            client.exports[0]["items"],
            [{"lineIndex": 0, "quantity": 2, "unit": "kg"}, {"lineIndex": 2, "quantity": 1, "unit": "kg"}],
        )

    def test_validation(self):
        service = LotService(_Client(), _index)
        cases = [
            ("", "FULL", "reason", ()),
            ("LOT-1", "FULL", "  ", ()),
            ("LOT-1", "HALF", "reason", ()),
            ("LOT-1", "PARTIAL", "reason", [ExportLine(lot_code="LOT-1", quantity=2)]),
        ]
        for lot, mode, reason, lines in cases:
            with self.subTest(lot=lot, mode=mode):
                with self.assertRaises(ExportValidationError):
                    asyncio.run(service.export_lot(lot, mode=mode, reason=reason, lines=lines))
        self.assertEqual(service.client.exports, [])


if __name__ == "__main__":
    unittest.main()
