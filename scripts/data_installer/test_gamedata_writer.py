#!/usr/bin/env python3
import tempfile
import unittest
from pathlib import Path
import sys


SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPT_DIR))

import gamedata_writer as writer
from kernel_data import CommandRecord, KeyItemRecord, MateriaRecord, target_flags


def _command(index: int, name: str) -> CommandRecord:
    return CommandRecord(
        id=index,
        name=name,
        description='Use "it"',
        cursor_action=1,
        target_raw=0x01,
        unknown=0xFFFF,
        camera_single=2,
        camera_multiple=3,
        target=target_flags(0x01),
    )


class LuaValueTests(unittest.TestCase):
    def test_scalars(self) -> None:
        self.assertEqual(writer.lua_value(True), "true")
        self.assertEqual(writer.lua_value(7), "7")
        self.assertEqual(writer.lua_value(0.5), "0.5")
        self.assertEqual(writer.lua_value(None), "nil")
        self.assertEqual(writer.lua_value('a "b"'), "\"a 'b'\"")

    def test_lists_and_comments(self) -> None:
        self.assertEqual(writer.lua_value([1, 2]), "{ 1, 2 }")
        self.assertEqual(writer.lua_value([]), "{}")
        self.assertEqual(writer.lua_value(writer.LuaComment(3, "Fire")), "3 --[[ Fire ]]")

    def test_unsupported_type_raises(self) -> None:
        with self.assertRaises(TypeError):
            writer.lua_value(object())


class GameDataWriterTests(unittest.TestCase):
    def test_commands_written_in_id_order(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = writer.GameDataWriter(Path(tmp) / "gamedata").write_commands(
                [_command(1, "Magic"), _command(0, "Attack")]
            )
            text = path.read_text(encoding="utf-8")
        self.assertEqual(path.name, "commands.lua")
        self.assertTrue(text.startswith("Game = Game or {}\nGame.Commands = Game.Commands or {}\n"))
        self.assertLess(text.index("Game.Commands[0]"), text.index("Game.Commands[1]"))
        self.assertIn('    name = "Attack",', text)
        self.assertIn("description = \"Use 'it'\",", text)
        self.assertIn("        selection_enabled = true,", text)

    def test_output_is_deterministic(self) -> None:
        records = [KeyItemRecord(id=i, name=f"Key {i}", description="") for i in range(3)]
        with tempfile.TemporaryDirectory() as tmp:
            first = writer.GameDataWriter(Path(tmp) / "a").write_key_items(records).read_bytes()
            second = writer.GameDataWriter(Path(tmp) / "b").write_key_items(list(reversed(records))).read_bytes()
        self.assertEqual(first, second)

    def test_materia_spells_carry_names(self) -> None:
        record = MateriaRecord(
            id=0,
            name="Fire",
            description="",
            ap_levels=[0, 0, 0, 0],
            equip_effect=0,
            status_raw=0,
            element_raw=0,
            type_raw=0x9,
            attributes=[0, 0xFF],
            type="MAGIC",
            element="FIRE",
            attack_names=[(0, "Fire")],
        )
        body = writer.materia_table(record)
        self.assertNotIn("attributes", body)
        self.assertIn("--[[ Fire ]]", writer.lua_value(body, 0))

    def test_missing_growth_writes_empty_table(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            text = writer.GameDataWriter(Path(tmp)).write_growth(None).read_text(encoding="utf-8")
        self.assertEqual(text, "Game = Game or {}\nGame.Growth = Game.Growth or {}\n")


if __name__ == "__main__":
    unittest.main()
