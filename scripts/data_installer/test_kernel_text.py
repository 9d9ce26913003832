#!/usr/bin/env python3
import struct
import unittest
from pathlib import Path
import sys


SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPT_DIR))

import kernel_text as text
from install_common import OutOfRange


def _section(offsets, body_at, body):
    data = bytearray(body_at + len(body))
    for index, offset in enumerate(offsets):
        struct.pack_into("<H", data, index * 2, offset)
    data[body_at:body_at + len(body)] = body
    return bytes(data)


class DecodeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.codec = text.TextCodec()

    def test_first_record_decodes_from_offset_table(self) -> None:
        data = _section([0x10, 0x1A], 0x10, bytes([0x21, 0x22, 0xFF]))
        self.assertEqual(self.codec.read_string(data, 0), "AB")
        self.assertEqual(self.codec.string_count(data), 8)

    def test_back_reference_repeats_earlier_bytes(self) -> None:
        raw = bytes([0x21, 0x22, 0x23, 0x24, 0xF9, 0x03, 0xFF])
        self.assertEqual(self.codec.decode_at(raw, 0), "ABCDABCD")

    def test_back_reference_length_uses_top_bits(self) -> None:
        # 0x45: length 1*2+4 = 6, offset 5 -> source = 6 - 1 - 5 = 0
        raw = bytes([0x21, 0x22, 0x23, 0x24, 0x25, 0x26, 0xF9, 0x45, 0xFF])
        self.assertEqual(self.codec.decode_at(raw, 0), "ABCDEFABCDEF")

    def test_unknown_glyph_is_marked(self) -> None:
        codec = text.TextCodec({0x21: "A"})
        self.assertEqual(codec.decode_at(bytes([0x21, 0xE0, 0xFF]), 0), "A[UNKNOWN 0xE0]")

    def test_unterminated_string_raises(self) -> None:
        with self.assertRaises(OutOfRange):
            self.codec.decode_at(bytes([0x21, 0x22]), 0)

    def test_back_reference_before_section_start_raises(self) -> None:
        with self.assertRaises(OutOfRange):
            self.codec.decode_at(bytes([0x21, 0xF9, 0x3F, 0xFF]), 0)

    def test_offset_outside_table_raises(self) -> None:
        with self.assertRaises(OutOfRange):
            self.codec.read_string(b"\x02\x00", 4)

    def test_ellipsis_glyph(self) -> None:
        self.assertEqual(self.codec.glyph(0xA9), "…")


class EncodeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.codec = text.TextCodec()

    def test_compressed_string_round_trips(self) -> None:
        encoded = self.codec.encode("Potion Potion", compress=True)
        self.assertIn(text.BACK_REFERENCE, encoded)
        self.assertLess(len(encoded), len("Potion Potion") + 1)
        self.assertEqual(self.codec.decode_at(encoded, 0), "Potion Potion")

    def test_table_round_trips(self) -> None:
        strings = ["Cloud", "", "Barret", "Cure Cure Cure"]
        section = self.codec.encode_table(strings, compress=True)
        self.assertEqual(self.codec.read_all(section), strings)

    def test_character_without_glyph_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.codec.encode("☺")

    def test_lua_safe(self) -> None:
        self.assertEqual(text.lua_safe('Say "hi"'), "Say 'hi'")


if __name__ == "__main__":
    unittest.main()
