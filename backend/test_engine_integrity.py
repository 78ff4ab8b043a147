from __future__ import annotations

import unittest
from types import MappingProxyType
from unittest.mock import patch

from backend import engine_integrity
from backend.chart_engine import DignityRule, PLANET_DIGNITY


class TestEngineIntegrity(unittest.TestCase):
    def test_shipped_tables_pass(self) -> None:
        self.assertTrue(engine_integrity.validate_engine_integrity())

    def test_version_lock(self) -> None:
        with patch.object(engine_integrity, "ENGINE_VERSION", "9.9.9"):
            with self.assertRaisesRegex(RuntimeError, "Version mismatch"):
                engine_integrity.validate_engine_integrity()

    def test_overlapping_dignity_sets_fail(self) -> None:
        broken = dict(PLANET_DIGNITY)
        broken["Mercury"] = DignityRule(6, 12, frozenset({3, 6}))
        with patch.object(engine_integrity, "PLANET_DIGNITY", MappingProxyType(broken)):
            with self.assertRaisesRegex(RuntimeError, "Mercury own-sign set overlaps"):
                engine_integrity.validate_engine_integrity()

    def test_duplicate_grid_cell_fails(self) -> None:
        broken = {sign_id: (0, 1) if sign_id == 2 else pos for sign_id, pos in engine_integrity.SIGN_GRID_POSITIONS.items()}
        with patch.object(engine_integrity, "SIGN_GRID_POSITIONS", broken):
            with self.assertRaisesRegex(RuntimeError, "two signs to one cell"):
                engine_integrity.validate_engine_integrity()

    def test_centre_cell_in_ring_fails(self) -> None:
        broken = dict(engine_integrity.SIGN_GRID_POSITIONS)
        broken[4] = (1, 2)
        with patch.object(engine_integrity, "SIGN_GRID_POSITIONS", broken):
            with self.assertRaisesRegex(RuntimeError, "centre label cell"):
                engine_integrity.validate_engine_integrity()

    def test_aspect_offsets_in_range(self) -> None:
        with patch.object(engine_integrity, "PLANET_ASPECTS", {"Mars": (4, 13)}):
            with self.assertRaisesRegex(RuntimeError, "Aspect offsets for Mars"):
                engine_integrity.validate_engine_integrity()


if __name__ == "__main__":
    unittest.main()
