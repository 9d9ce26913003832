#!/usr/bin/env python3
import struct
import tempfile
import unittest
from pathlib import Path
import sys


SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPT_DIR))

import field_data as fd
from install_common import FieldFormatError, OutOfRange


def _gateway(destination_field_id: int, x: int = 100, y: int = 200, triangle: int = 3, direction: int = 64):
    origin = fd.Vertex(0, 0, 0)
    return fd.Gateway((origin, fd.Vertex(10, 0, 0)), fd.Vertex(x, y, triangle), destination_field_id, direction)


class LzsTests(unittest.TestCase):
    def test_literal_stream_round_trips(self) -> None:
        payload = bytes(range(50))
        self.assertEqual(fd.lzs_decompress(fd.lzs_compress_literal(payload)), payload)

    def test_reference_copies_from_window(self) -> None:
        # three literals, then a 3-byte reference to output position 0
        body = bytes([0x07, 0x41, 0x42, 0x43, 0xEE, 0xF0])
        self.assertEqual(fd.lzs_decompress(struct.pack("<I", len(body)) + body), b"ABCABC")

    def test_reference_before_output_reads_zero(self) -> None:
        body = bytes([0x00, 0x00, 0x00])
        self.assertEqual(fd.lzs_decompress(struct.pack("<I", len(body)) + body), b"\x00\x00\x00")

    def test_zero_distance_reaches_back_a_full_window(self) -> None:
        # the reference lands on the next output byte, which wraps to 4096 back
        body = bytes([0x07, 0x41, 0x42, 0x43, 0xF1, 0xF0])
        self.assertEqual(fd.lzs_decompress(struct.pack("<I", len(body)) + body), b"ABC\x00\x00\x00")

    def test_corrupt_field_entry_is_a_format_error(self) -> None:
        data = struct.pack("<I", 3) + bytes([0x00, 0xEE, 0xF0])
        self.assertEqual(fd.lzs_decompress(data), b"\x00\x00\x00")
        with self.assertRaises(FieldFormatError):
            fd.FieldFile.from_compressed("md1_2", data)

    def test_header_length_mismatch_raises(self) -> None:
        with self.assertRaises(FieldFormatError):
            fd.lzs_decompress(struct.pack("<I", 10) + b"\x01A")


class SectionTests(unittest.TestCase):
    def test_sections_round_trip(self) -> None:
        sections = [b"script", b"", b"xyz"]
        self.assertEqual(fd.split_sections(fd.encode_flevel(sections)), sections)

    def test_truncated_field_file_raises_format_error(self) -> None:
        data = fd.lzs_compress_literal(struct.pack("<HI", 0, 9))
        with self.assertRaises(FieldFormatError):
            fd.FieldFile.from_compressed("md1_1", data)


class ScriptHeaderTests(unittest.TestCase):
    def test_header_fields(self) -> None:
        raw = fd.encode_script_section(["cloud", "door"], scale=1024, name="md1_1", creator="Square")
        header = fd.parse_script_header(raw)
        self.assertEqual(header.entity_names, ["cloud", "door"])
        self.assertEqual(header.scale_factor, 2.0)
        self.assertEqual((header.name, header.creator), ("md1_1", "Square"))
        self.assertEqual(len(header.entity_scripts), 2)

    def test_music_tracks_found_by_akao_scan(self) -> None:
        raw = fd.encode_script_section(["dir"], music_tracks=[5, 12])
        self.assertEqual(fd.extract_music_tracks(raw), [5, 12])
        self.assertEqual(fd.parse_script_header(raw).akao_count, 2)

    def test_no_akao_no_tracks(self) -> None:
        self.assertEqual(fd.extract_music_tracks(b"\x00" * 64), [])


class TriggerTests(unittest.TestCase):
    def test_gateways_and_rotation(self) -> None:
        raw = fd.encode_triggers_section([_gateway(117)], control=192, camera_range=fd.CameraRange(-160, -120, 160, 120))
        triggers = fd.parse_triggers(raw)
        self.assertEqual(len(triggers.gateways), fd.GATEWAY_COUNT)
        self.assertEqual(triggers.gateways[0], _gateway(117))
        self.assertTrue(triggers.gateways[0].is_active())
        self.assertFalse(triggers.gateways[1].is_active())
        self.assertEqual(triggers.movement_rotation, 90.0)
        self.assertEqual(triggers.camera_range.right, 160)

    def test_walkmesh_round_trip(self) -> None:
        triangle = fd.WalkmeshTriangle(fd.Vertex(0, 0, 5), fd.Vertex(10, 0, 6), fd.Vertex(0, 10, 7), (1, 0xFFFF, 2))
        self.assertEqual(fd.parse_walkmesh(fd.encode_walkmesh_section([triangle])), [triangle])

    def test_model_list_round_trip(self) -> None:
        model = fd.ModelDescription("Cloud", fd.ModelType.PLAYER, "AAAA.HRC", "512", ["ACFE.yos", "AAFF.yos"])
        parsed = fd.parse_model_list(fd.encode_model_list_section([model], scale=640))
        self.assertEqual(parsed.scale, 640)
        self.assertEqual(parsed.models, [model])

    def test_map_list_keeps_empty_slots(self) -> None:
        self.assertEqual(fd.parse_map_list(fd.encode_map_list(["startmap", "", "md1_1"])), ["startmap", "", "md1_1"])


class FieldFileTests(unittest.TestCase):
    def test_sections_parse_lazily(self) -> None:
        data = fd.encode_field_file(
            fd.encode_script_section(["cloud"], scale=256, music_tracks=[3]),
            fd.encode_triggers_section([_gateway(2)]),
        )
        field_file = fd.FieldFile.from_compressed("md1_1", data)
        self.assertEqual(field_file.scale_factor, 0.5)
        self.assertEqual(field_file.music_tracks, [3])
        self.assertEqual(field_file.triggers.gateways[0].destination_field_id, 2)
        self.assertEqual(field_file.walkmesh, [])
        self.assertEqual(field_file.model_list.models, [])


class FieldTextWriterTests(unittest.TestCase):
    def setUp(self) -> None:
        self.writer = fd.FieldTextWriter()

    def _render(self, dialog: bytes) -> str:
        return self.writer.render_dialog(dialog, 0)

    def test_control_codes(self) -> None:
        dialog = bytes([0x28, 0x49, 0xE7, 0xFE, 0xD4, 0x58, 0xFE, 0xD9, 0xFE, 0xD9, 0xE8, 0xEA, 0xF4, 0xF6, 0xFF])
        self.assertEqual(
            self._render(dialog),
            'Hi\n<colour value="1.0 0.0 0.0">x</colour><next_page /><character id="0" />'
            '<party pos="1" /><image sprite="ButtonCircle" />',
        )

    def test_unclosed_colour_is_closed_at_end(self) -> None:
        self.assertEqual(self._render(bytes([0xFE, 0xD3, 0x21, 0xFF])), '<colour value="0.0 0.0 1.0">A</colour>')

    def test_pauses_ellipsis_and_escaping(self) -> None:
        dialog = bytes([0x1C, 0x02, 0xA9, 0xFE, 0xDD, 0x10, 0x00, 0xFE, 0xDC, 0xFE, 0x01, 0xFF])
        self.assertEqual(
            self._render(dialog),
            '&lt;&quot;...<pause time="16" /><pause_ok />[MISSING 0xFE 01]',
        )

    def test_custom_glyph_table(self) -> None:
        writer = fd.FieldTextWriter({0x21: "Z"})
        self.assertEqual(writer.render_dialog(bytes([0x21, 0x22, 0xFF]), 0), "Z[MISSING CHAR 22]")

    def test_render_document(self) -> None:
        raw = fd.encode_script_section(["cloud"], dialogs=[bytes([0x21, 0xFF]), bytes([0x22, 0xFF])])
        self.assertEqual(
            self.writer.render("md1_1", raw),
            '<texts>\n<dialog name="md1_1_0">A</dialog>\n\n<dialog name="md1_1_1">B</dialog>\n\n</texts>\n',
        )

    def test_bad_table_leaves_empty_document(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "text.xml"
            with self.assertRaises(OutOfRange):
                self.writer.write(path, "md1_1", bytes([0, 0, 0, 0, 0xFF, 0x00]))
            self.assertEqual(path.read_text(encoding="utf-8"), "<texts>\n</texts>\n")


if __name__ == "__main__":
    unittest.main()
