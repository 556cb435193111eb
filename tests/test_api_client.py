import asyncio
import json
import unittest

import httpx

from floorapp.api_client import FloorClient
from floorapp.errors import AuthError, ConnectivityError, FloorAPIError, FloorNotFound
from floorapp.schemas import MoveRequest, ScanSyncItem


def _client(handler):
    return FloorClient(
        base_url="https://floor.test/api/",
        backoffs=(0, 0),
        transport=httpx.MockTransport(handler),
    )


async def _call(client, method, *args, **kwargs):
    try:
        return await getattr(client, method)(*args, **kwargs)
    finally:
        await client.aclose()


class FloorClientTest(unittest.TestCase):
    def test_positions_are_parsed_and_malformed_rows_skipped(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            return httpx.Response(
                200,
                json={"items": [{"posCode": "S-K1.PL1", "lotCode": "L1"}, {"lotCode": "no-pos"}, "junk"]},
            )

        items = asyncio.run(_call(_client(handler), "get_positions"))
        self.assertEqual(seen["url"], "https://floor.test/api/locations/positions")
        self.assertEqual([(i.pos_code, i.lot_code) for i in items], [("S-K1.PL1", "L1")])

    def test_deleted_lots_request_all(self):
        def handler(request):
            self.assertEqual(request.url.params.get("all"), "1")
            return httpx.Response(200, json={"ok": True, "items": [{"lotCode": " l1 "}]})

        items = asyncio.run(_call(_client(handler), "get_deleted_lots"))
        self.assertEqual(items[0].lot_code, "l1")

    def test_move_404_raises_not_found(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(404, json={"error": "position empty"})

        move = MoveRequest(from_pos="A-K1D1T1.PL1", to_pos="S-K1.PL1", lot_code="L1", moved_by="u")
        with self.assertRaises(FloorNotFound) as ctx:
            asyncio.run(_call(_client(handler), "move_position", move))
        self.assertEqual(ctx.exception.status_code, 404)
        self.assertEqual(bodies, [{"fromPos": "A-K1D1T1.PL1", "toPos": "S-K1.PL1", "lotCode": "L1", "movedBy": "u"}])

    def test_post_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request.method)
            return httpx.Response(503, json={"message": "busy"})

        move = MoveRequest(from_pos="a", to_pos="b", lot_code="c", moved_by="d")
        with self.assertRaises(FloorAPIError) as ctx:
            asyncio.run(_call(_client(handler), "move_position", move))
        self.assertEqual(ctx.exception.status_code, 503)
        self.assertEqual(calls, ["POST"])

    def test_get_retries_on_server_error(self):
        calls = []

        def handler(request):
            calls.append(request.method)
            if len(calls) < 3:
                return httpx.Response(502, text="bad gateway")
            return httpx.Response(200, json={"ok": True, "locations": ["A-K1D1T1.PL1", "", 5]})

        locations = asyncio.run(_call(_client(handler), "get_static_locations"))
        self.assertEqual(locations, ["A-K1D1T1.PL1"])
        self.assertEqual(len(calls), 3)

    def test_transport_error_becomes_connectivity_error(self):
        calls = []

        def handler(request):
            calls.append(1)
            raise httpx.ConnectError("refused", request=request)

        with self.assertRaises(ConnectivityError):
            asyncio.run(_call(_client(handler), "get_occupied_map"))
        self.assertEqual(len(calls), 3)

    def test_snapshot_endpoints_reject_not_ok(self):
        def handler(request):
            return httpx.Response(200, json={"ok": False, "message": "maintenance"})

        for method in ("get_static_locations", "get_occupied_map"):
            with self.subTest(method=method):
                with self.assertRaises(FloorAPIError) as ctx:
                    asyncio.run(_call(_client(handler), method))
                self.assertNotIsInstance(ctx.exception, ConnectivityError)
                self.assertIn("maintenance", str(ctx.exception))

    def test_redirect_loop_becomes_api_error(self):
        calls = []

        def handler(request):
            calls.append(request.method)
            raise httpx.TooManyRedirects("redirect loop", request=request)

        move = MoveRequest(from_pos="a", to_pos="b", lot_code="c", moved_by="d")
        with self.assertRaises(FloorAPIError) as ctx:
            asyncio.run(_call(_client(handler), "move_position", move))
        self.assertNotIsInstance(ctx.exception, ConnectivityError)
        self.assertEqual(calls, ["POST"])

    def test_invalid_json(self):
        def handler(request):
            return httpx.Response(200, text="<html>")

        with self.assertRaises(FloorAPIError):
            asyncio.run(_call(_client(handler), "get_positions"))

    def test_scan_sync_rejected(self):
        def handler(request):
            payload = json.loads(request.content)
            self.assertEqual(payload["items"][0]["position"], "A-K1D1T1.PL1")
            return httpx.Response(200, json={"ok": False, "message": "Sync failed"})

        items = [ScanSyncItem(code="L1", position="A-K1D1T1.PL1", quantity=1, timestamp=1)]
        with self.assertRaises(FloorAPIError) as ctx:
            asyncio.run(_call(_client(handler), "scan_sync", items))
        self.assertIn("Sync failed", str(ctx.exception))

    def test_warehouse_status_tree(self):
        def handler(request):
            self.assertTrue(str(request.url).endswith("/warehouse-status/2"))
            return httpx.Response(
                200,
                json=[
                    {
                        "id": "A",
                        "racks": [{"name": 1, "levels": [{"levelNumber": 1, "items": [{"position": 1, "code": "P", "quantity": "3"}]}]}],
                    }
                ],
            )

        zones = asyncio.run(_call(_client(handler), "get_warehouse_status", 2))
        self.assertEqual(zones[0].racks[0].name, "1")
        self.assertEqual(zones[0].racks[0].levels[0].items[0].quantity, 3.0)

    def test_lot_lines_quote_code(self):
        def handler(request):
            self.assertEqual(request.url.raw_path, b"/api/lots/LOT%2F1/lines")
            return httpx.Response(
                200,
                json={"items": [{"lotCode": "LOT/1", "productCode": "P1", "quantity": "4", "unit": "kg"}], "header": {"qc": "ok"}},
            )

        lines, header = asyncio.run(_call(_client(handler), "get_lot_lines", "LOT/1"))
        self.assertEqual(lines[0].product_code, "P1")
        self.assertEqual(lines[0].quantity, 4.0)
        self.assertEqual(header.qc, "ok")

    def test_login_rejected(self):
        def handler(request):
            return httpx.Response(200, json={"ok": False, "message": "wrong password"})

        with self.assertRaises(AuthError) as ctx:
            asyncio.run(_call(_client(handler), "login", "anna", "x"))
        self.assertIn("wrong password", str(ctx.exception))

    def test_login_unauthorized_status(self):
        def handler(request):
            return httpx.Response(401, json={"ok": False, "message": "nope"})

        with self.assertRaises(AuthError):
            asyncio.run(_call(_client(handler), "login", "anna", "x"))


if __name__ == "__main__":
    unittest.main()
