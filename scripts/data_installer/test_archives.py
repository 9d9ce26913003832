#!/usr/bin/env python3
import tempfile
import unittest
from pathlib import Path
import sys


SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPT_DIR))

import archives
from install_common import OutOfRange


class LgpArchiveTests(unittest.TestCase):
    def setUp(self) -> None:
        self.raw = archives.LgpArchive.build(
            [("maplist", b"\x00\x00"), ("md1_1", b"field data"), ("aaaa.hrc", b"skeleton")]
        )
        self.archive = archives.LgpArchive(self.raw, "flevel.lgp")

    def test_lists_entries_in_table_order(self) -> None:
        self.assertEqual(self.archive.list_entries(), ["maplist", "md1_1", "aaaa.hrc"])
        self.assertEqual(self.archive.list_entries("md"), ["md1_1"])

    def test_open_is_case_insensitive(self) -> None:
        self.assertEqual(self.archive.open("MD1_1"), b"field data")

    def test_missing_entry_raises(self) -> None:
        with self.assertRaises(archives.ArchiveError):
            self.archive.open("nope")

    def test_matching(self) -> None:
        self.assertEqual(self.archive.matching("*.hrc"), ["aaaa.hrc"])

    def test_truncated_data_raises(self) -> None:
        truncated = archives.LgpArchive(self.raw[: len(self.raw) - 30], "flevel.lgp")
        with self.assertRaises(OutOfRange):
            truncated.open("aaaa.hrc")

    def test_rejects_foreign_files(self) -> None:
        with self.assertRaises(archives.ArchiveError):
            archives.LgpArchive(b"PK\x03\x04" + bytes(32))


class DirectoryArchiveTests(unittest.TestCase):
    def test_groups_are_sub_directories(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "menu").mkdir()
            (root / "menu" / "b.tex").write_bytes(b"b")
            (root / "menu" / "a.tex").write_bytes(b"a")
            (root / "top.bin").write_bytes(b"t")
            archive = archives.open_archive(root)
            self.assertIsInstance(archive, archives.DirectoryArchive)
            self.assertEqual(archive.list_entries(), ["top.bin"])
            self.assertEqual(archive.list_entries("menu"), ["menu/a.tex", "menu/b.tex"])
            self.assertEqual(archive.open("menu/a.tex"), b"a")
            self.assertEqual(archive.list_entries("missing"), [])

    def test_extract_all_flattens_names(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            lgp = root / "char.lgp"
            lgp.write_bytes(archives.LgpArchive.build([("aaaa.hrc", b"h"), ("acfe.a", b"a")]))
            written = archives.open_archive(lgp).extract_all(root / "out")
            self.assertEqual(sorted(path.name for path in written), ["aaaa.hrc", "acfe.a"])
            self.assertEqual((root / "out" / "acfe.a").read_bytes(), b"a")

    def test_missing_path_raises(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(archives.ArchiveError):
                archives.open_archive(Path(tmp) / "absent.lgp")


if __name__ == "__main__":
    unittest.main()
