#!/usr/bin/env python3
import json
import tempfile
import unittest
from pathlib import Path
import sys


SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPT_DIR))

import data_installer as di
from install_config import ConfigError, InstallerConfig, load_config
from kernel_text import DEFAULT_GLYPH_TABLE


class LoadConfigTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _write(self, document) -> Path:
        path = self.root / "config.json"
        path.write_text(json.dumps(document), encoding="utf-8")
        return path

    def test_defaults_without_file(self) -> None:
        config = load_config()
        self.assertEqual(config, InstallerConfig())
        self.assertEqual(config.glyph_table, DEFAULT_GLYPH_TABLE)

    def test_overrides(self) -> None:
        config = load_config(
            self._write(
                {
                    "inactive_gateway_id": 5,
                    "glyph_table": {"0x21": "Z"},
                    "sound_names": {"3": "Save", "4": ["Buzzer", "Invalid choice."]},
                    "name_lookup": {"models": {"aaaa": "cloud"}},
                }
            )
        )
        self.assertEqual(config.inactive_gateway_id, 5)
        self.assertEqual(config.glyph_table[0x21], "Z")
        self.assertEqual(config.glyph_table[0x22], DEFAULT_GLYPH_TABLE[0x22])
        self.assertEqual(config.sound_names[3], ("Save", ""))
        self.assertEqual(config.sound_names[4], ("Buzzer", "Invalid choice."))
        self.assertEqual(config.name_lookup, {"models": {"aaaa": "cloud"}})

    def test_malformed_tables_raise_config_error(self) -> None:
        documents = [
            {"sound_names": {"cursor": "Cursor"}},
            {"sound_names": {"1": {"name": "Cursor"}}},
            {"sound_names": ["Cursor"]},
            {"name_lookup": {"models": ["aaaa"]}},
            {"name_lookup": {"models": {"aaaa": 1}}},
            {"glyph_table": {"0x100": "A"}},
            {"glyph_table": {"A": "A"}},
            {"inactive_gateway_id": "32767"},
        ]
        for document in documents:
            with self.subTest(document=document):
                with self.assertRaises(ConfigError):
                    load_config(self._write(document))

    def test_main_rejects_malformed_config(self) -> None:
        (self.root / "input").mkdir()
        config = self._write({"sound_names": {"cursor": "Cursor"}})
        argv = [
            "--input-root", str(self.root / "input"),
            "--output-root", str(self.root / "out"),
            "--config", str(config),
        ]
        self.assertEqual(di.main(argv), 1)


if __name__ == "__main__":
    unittest.main()
