#!/usr/bin/env python3
import unittest
from pathlib import Path
import sys


SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPT_DIR))

import spawn_points as sp
from field_data import INACTIVE_GATEWAY_ID, Gateway, Vertex
from install_common import MissingCrossReference


MAP_LIST = ["startmap", "md1_1", "md1_2"]


def _gateway(destination_field_id: int, x: int = 256, y: int = -512, triangle: int = 1, direction: int = 0) -> Gateway:
    origin = Vertex(0, 0, 0)
    return Gateway((origin, origin), Vertex(x, y, triangle), destination_field_id, direction)


def _scales(**factors: float) -> sp.ScaleFactorTable:
    builder = sp.ScaleFactorTableBuilder()
    for name, factor in factors.items():
        builder.set(MAP_LIST.index(name), factor)
    return builder.freeze()


class NamingTests(unittest.TestCase):
    def test_topological_and_script_names(self) -> None:
        gateway = _gateway(2)
        self.assertEqual(sp.spawn_point_name(sp.SpawnPointRecord(1, 3, gateway), MAP_LIST), "Spawn_md1_1_3")
        record = sp.SpawnPointRecord(1, 1234, gateway, sp.SpawnOrigin.SCRIPT, "cloud", "on_talk")
        self.assertEqual(sp.spawn_point_name(record, MAP_LIST), "md1_1_cloud_on_talk_addr_1234")

    def test_unknown_ids_and_names(self) -> None:
        with self.assertRaises(MissingCrossReference):
            sp.map_name(MAP_LIST, 3)
        with self.assertRaises(MissingCrossReference):
            sp.field_id_for(MAP_LIST, "nowhere")
        self.assertEqual(sp.field_id_for(MAP_LIST, "md1_2"), 2)


class BuilderTests(unittest.TestCase):
    def test_inactive_gateways_are_not_recorded(self) -> None:
        builder = sp.SpawnPointDbBuilder()
        added = builder.add_gateways(1, [_gateway(2), _gateway(INACTIVE_GATEWAY_ID), _gateway(0)])
        database = builder.freeze()
        self.assertEqual(added, 2)
        self.assertEqual(len(database), 2)
        self.assertEqual(database.targets(), [0, 2])
        self.assertEqual(database.records_for(2)[0].gateway_index_or_address, 0)
        self.assertEqual(database.records_for(0)[0].gateway_index_or_address, 2)
        self.assertEqual(database.records_for(1), ())

    def test_inactive_gateway_id_is_configurable(self) -> None:
        builder = sp.SpawnPointDbBuilder(inactive_gateway_id=5)
        self.assertEqual(builder.add_gateways(1, [_gateway(5), _gateway(INACTIVE_GATEWAY_ID)]), 1)
        self.assertEqual(builder.freeze().targets(), [INACTIVE_GATEWAY_ID])
        self.assertFalse(_gateway(5).is_active(5))
        self.assertTrue(_gateway(5).is_active())

    def test_frozen_builders_refuse_writes(self) -> None:
        spawns = sp.SpawnPointDbBuilder()
        spawns.freeze()
        with self.assertRaises(sp.FrozenDatabaseError):
            spawns.add(0, sp.SpawnPointRecord(1, 0, _gateway(0)))
        scales = sp.ScaleFactorTableBuilder()
        scales.freeze()
        with self.assertRaises(sp.FrozenDatabaseError):
            scales.set(0, 1.0)

    def test_animation_names_are_normalized(self) -> None:
        builder = sp.ModelAnimationDbBuilder()
        builder.add("AAAA.HRC", ["ACFE.yos", "field\\ACGD.ACB", "acfe"])
        database = builder.freeze()
        self.assertEqual(database.animations("aaaa.hrc"), frozenset({"acfe.a", "acgd.a"}))
        self.assertIn("AAAA.hrc", database)
        self.assertEqual(database.animations("other.hrc"), frozenset())

    def test_missing_scale_factor(self) -> None:
        with self.assertRaises(MissingCrossReference):
            _scales(md1_1=1.0).get(2)


class ResolveTests(unittest.TestCase):
    def _database(self, *records) -> sp.SpawnPointDatabase:
        builder = sp.SpawnPointDbBuilder()
        for record in records:
            builder.add(record.gateway.destination_field_id, record)
        return builder.freeze()

    def test_positions_use_destination_scale(self) -> None:
        database = self._database(sp.SpawnPointRecord(1, 0, _gateway(2, direction=51)))
        points, default = sp.resolve_entry_points(
            "md1_2", 2, MAP_LIST, database, _scales(md1_1=1.0, md1_2=2.0), [5.0, 7.5]
        )
        self.assertEqual(points, [sp.EntryPoint("Spawn_md1_1_0", (1.0, -2.0, 7.5), 72.0)])
        self.assertEqual(default, (1.0, -2.0, 7.5))

    def test_out_of_range_triangle_is_clamped_once(self) -> None:
        database = self._database(
            sp.SpawnPointRecord(0, 0, _gateway(2, triangle=9)),
            sp.SpawnPointRecord(1, 1, _gateway(2, triangle=0)),
        )
        warnings = []
        points, _ = sp.resolve_entry_points("md1_2", 2, MAP_LIST, database, _scales(md1_2=1.0), [3.0], warnings.append)
        self.assertEqual(warnings, ["In field md1_2: Map jump triangle (9) out of bounds (1)"])
        self.assertEqual([point.position[2] for point in points], [3.0, 3.0])

    def test_default_position_skips_origin_points(self) -> None:
        database = self._database(
            sp.SpawnPointRecord(0, 0, _gateway(1, x=0, y=0, triangle=0)),
            sp.SpawnPointRecord(2, 4, _gateway(1, x=128, y=128, triangle=0)),
        )
        points, default = sp.resolve_entry_points("md1_1", 1, MAP_LIST, database, _scales(md1_1=1.0), [], lambda _: None)
        self.assertEqual([point.name for point in points], ["Spawn_startmap_0", "Spawn_md1_2_4"])
        self.assertEqual(points[0].position, sp.ORIGIN)
        self.assertEqual(default, (1.0, 1.0, 0.0))

    def test_unreferenced_map_has_no_points(self) -> None:
        points, default = sp.resolve_entry_points("startmap", 0, MAP_LIST, self._database(), _scales(), [1.0])
        self.assertEqual((points, default), ([], sp.ORIGIN))


if __name__ == "__main__":
    unittest.main()
