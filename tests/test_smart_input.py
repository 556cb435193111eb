import unittest

from floorapp.models import WorkTarget
from floorapp.smart_input import TargetPatch, parse_work_target


class ParseWorkTargetTest(unittest.TestCase):
    def test_compact_code(self):
        self.assertEqual(parse_work_target("AK3D4T1"), TargetPatch(warehouse=3, zone="A", row=4, level=1))

    def test_compact_code_with_spoken_level(self):
        self.assertEqual(parse_work_target("b k2 d7 tầng 3"), TargetPatch(warehouse=2, zone="B", row=7, level=3))

    def test_compact_code_unknown_warehouse_ignored(self):
        patch = parse_work_target("AK9D4")
        self.assertIsNone(patch.warehouse)
        self.assertEqual(patch.row, 4)

    def test_spoken_phrase(self):
        patch = parse_work_target("Kho 2 khu B dãy 5 tầng 2")
        self.assertEqual(patch, TargetPatch(warehouse=2, zone="B", row=5, level=2))

    def test_number_words(self):
        patch = parse_work_target("kho hai khu a dãy mười tầng ba")
        self.assertEqual(patch, TargetPatch(warehouse=2, zone="A", row=10, level=3))

    def test_unaccented_variants(self):
        patch = parse_work_target("ko 1 ku a day 3 tang 4")
        self.assertEqual(patch, TargetPatch(warehouse=1, zone="A", row=3, level=4))

    def test_hall_clears_row_and_level(self):
        patch = parse_work_target("kho 3 sảnh dãy 2 tầng 1")
        self.assertEqual(patch, TargetPatch(warehouse=3, zone="S"))

    def test_nothing_recognised(self):
        self.assertTrue(parse_work_target("xin chào").is_empty)

    def test_apply_keeps_unmentioned_fields(self):
        current = WorkTarget(warehouse=1, zone="A", row=2, level=3)
        updated = parse_work_target("tầng 5").apply(current)
        self.assertEqual(updated, WorkTarget(warehouse=1, zone="A", row=2, level=5))

    def test_apply_hall_drops_shelf_fields(self):
        current = WorkTarget(warehouse=1, zone="A", row=2, level=3)
        updated = parse_work_target("sảnh").apply(current)
        self.assertEqual(updated, WorkTarget(warehouse=1, zone="S"))


if __name__ == "__main__":
    unittest.main()
