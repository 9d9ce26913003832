#!/usr/bin/env python3
"""
field_data.py
=============

Parsers for the per-map field files found in ``flevel.lgp``.

A field file is LZS-compressed. Once decompressed it starts with a small
section table (u16 version, u32 section count, u32 absolute offsets); every
section is a u32 length followed by its payload:

* 0 script and dialogs     * 3 palette        * 6 encounters
* 1 camera matrix          * 4 walkmesh       * 7 triggers / gateways
* 2 model loader           * 5 tile map       * 8 background

Only the sections the installer needs are decoded here (script header,
triggers, walkmesh, model loader). The others are kept as raw bytes for the
asset exporter.

Example usage:

    field = FieldFile.from_compressed("md1_1", archive.open("md1_1"))
    print(field.script_header.scale_factor)
    for gateway in field.triggers.gateways:
        print(gateway.destination_field_id, gateway.destination)

The module also carries the ``encode_*`` helpers that build well-formed
sections; tests use them to assemble fixture maps.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from functools import cached_property
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple
from xml.sax.saxutils import escape

from install_common import FieldFormatError, OutOfRange
from kernel_data import BinaryCursor
from kernel_text import DEFAULT_GLYPH_TABLE


LZS_HEADER_SIZE = 4
LZS_WINDOW_MASK = 0xFFF
LZS_WINDOW_SIZE = 0x1000
LZS_WINDOW_START = 18
LZS_MIN_MATCH = 3

SCRIPT_MAGIC = 0x0502
SCRIPT_HEADER_SIZE = 32
ENTITY_NAME_SIZE = 8
ENTITY_SCRIPT_SLOTS = 32
SCALE_DIVISOR = 512.0

GATEWAY_COUNT = 12
TRIGGER_COUNT = 12
ARROW_COUNT = 12
INACTIVE_GATEWAY_ID = 32767
TRIGGERS_NAME_SIZE = 9
TRIGGERS_UNKNOWN_SIZE = 24
MOVEMENT_ROTATION_CENTER = 128

HRC_NAME_SIZE = 8
MODEL_SCALE_SIZE = 4
MODEL_LIGHT_DATA_SIZE = 3 * (3 + 6) + 3

MAP_NAME_SIZE = 32
AKAO_MAGIC = b"AKAO"
AKAO_TRACK_BIAS = 2


class FieldSection(IntEnum):
    SCRIPT = 0
    CAMERA = 1
    MODEL_LOADER = 2
    PALETTE = 3
    WALKMESH = 4
    TILE_MAP = 5
    ENCOUNTER = 6
    TRIGGERS = 7
    BACKGROUND = 8


SECTION_COUNT = len(FieldSection)


# ---------------------------------------------------------------------------
# LZS
# ---------------------------------------------------------------------------


def lzs_decompress(data: bytes) -> bytes:
    """Decompress an LZS stream prefixed by its u32 compressed length.

    Each control byte describes the next eight items, LSB first: a set bit
    is a literal byte, a clear bit a two-byte reference into the 4 KiB
    sliding window. Window positions before the start of the output read
    as zero.
    """
    if len(data) < LZS_HEADER_SIZE:
        raise FieldFormatError("LZS stream shorter than its header")
    length = struct.unpack_from("<I", data, 0)[0]
    if length + LZS_HEADER_SIZE != len(data):
        raise FieldFormatError(
            f"LZS header says {length} bytes but {len(data) - LZS_HEADER_SIZE} follow"
        )

    out = bytearray()
    pos = LZS_HEADER_SIZE
    end = len(data)
    while pos < end:
        control = data[pos]
        pos += 1
        for bit in range(8):
            if pos >= end:
                break
            if control & (1 << bit):
                out.append(data[pos])
                pos += 1
                continue
            if pos + 1 >= end:
                raise FieldFormatError("LZS reference truncated")
            low, high = data[pos], data[pos + 1]
            pos += 2
            offset = low | ((high & 0xF0) << 4)
            count = (high & 0x0F) + LZS_MIN_MATCH
            # distance 0 wraps to a full window
            distance = (len(out) - LZS_WINDOW_START - offset) & LZS_WINDOW_MASK or LZS_WINDOW_SIZE
            start = len(out) - distance
            for index in range(start, start + count):
                out.append(out[index] if index >= 0 else 0)
    return bytes(out)


def lzs_compress_literal(data: bytes) -> bytes:
    """Wrap *data* as an LZS stream made only of literals."""
    body = bytearray()
    for chunk_start in range(0, len(data), 8):
        chunk = data[chunk_start:chunk_start + 8]
        body.append((1 << len(chunk)) - 1)
        body += chunk
    return struct.pack("<I", len(body)) + bytes(body)


# ---------------------------------------------------------------------------
# Section table
# ---------------------------------------------------------------------------


def split_sections(data: bytes) -> List[bytes]:
    cursor = BinaryCursor(data)
    cursor.read_u16_le()  # version, always 0
    count = cursor.read_u32_le()
    offsets = [cursor.read_u32_le() for _ in range(count)]
    sections: List[bytes] = []
    for index, offset in enumerate(offsets):
        cursor.seek(offset)
        declared = cursor.read_u32_le()
        if index + 1 < count:
            size = offsets[index + 1] - offset - 4
        else:
            size = declared
        if size < 0:
            raise FieldFormatError(f"Section {index} has a negative size")
        sections.append(cursor.read_bytes(size))
    return sections


def encode_flevel(sections: Sequence[bytes]) -> bytes:
    header_size = 2 + 4 + 4 * len(sections)
    offsets: List[int] = []
    body = bytearray()
    for payload in sections:
        offsets.append(header_size + len(body))
        body += struct.pack("<I", len(payload)) + payload
    header = struct.pack("<HI", 0, len(sections)) + b"".join(
        struct.pack("<I", offset) for offset in offsets
    )
    return header + bytes(body)


# ---------------------------------------------------------------------------
# Script header
# ---------------------------------------------------------------------------


def _fixed_string(raw: bytes) -> str:
    return raw.split(b"\x00", 1)[0].decode("ascii", errors="replace")


@dataclass
class ScriptHeader:
    entity_count: int
    model_count: int
    string_offset: int
    akao_count: int
    scale: int
    creator: str
    name: str
    entity_names: List[str] = field(default_factory=list)
    akao_offsets: List[int] = field(default_factory=list)
    entity_scripts: List[List[int]] = field(default_factory=list)

    @property
    def scale_factor(self) -> float:
        return self.scale / SCALE_DIVISOR


def parse_script_header(data: bytes) -> ScriptHeader:
    cursor = BinaryCursor(data)
    magic = cursor.read_u16_le()
    if magic != SCRIPT_MAGIC:
        logging.debug("Unexpected script magic 0x%04X", magic)
    entity_count = cursor.read_u8()
    model_count = cursor.read_u8()
    string_offset = cursor.read_u16_le()
    akao_count = cursor.read_u16_le()
    scale = cursor.read_u16_le()
    cursor.read_bytes(6)
    creator = _fixed_string(cursor.read_bytes(8))
    name = _fixed_string(cursor.read_bytes(8))
    header = ScriptHeader(
        entity_count=entity_count,
        model_count=model_count,
        string_offset=string_offset,
        akao_count=akao_count,
        scale=scale,
        creator=creator,
        name=name,
    )
    header.entity_names = [
        _fixed_string(cursor.read_bytes(ENTITY_NAME_SIZE)) for _ in range(entity_count)
    ]
    header.akao_offsets = [cursor.read_u32_le() for _ in range(akao_count)]
    header.entity_scripts = [
        [cursor.read_u16_le() for _ in range(ENTITY_SCRIPT_SLOTS)]
        for _ in range(entity_count)
    ]
    return header


def extract_music_tracks(raw_script: bytes) -> List[int]:
    """Track ids of the AKAO blocks embedded in a script section, in file order."""
    tracks: List[int] = []
    start = raw_script.find(AKAO_MAGIC)
    while start != -1 and start + len(AKAO_MAGIC) < len(raw_script) - 1:
        tracks.append(raw_script[start + len(AKAO_MAGIC)] - AKAO_TRACK_BIAS)
        start = raw_script.find(AKAO_MAGIC, start + 1)
    return tracks


def encode_script_section(
    entity_names: Sequence[str],
    scale: int = 512,
    dialogs: Sequence[bytes] = (),
    music_tracks: Sequence[int] = (),
    model_count: int = 0,
    name: str = "",
    creator: str = "",
) -> bytes:
    """Build a script section with empty entity scripts.

    *dialogs* are raw dialog byte strings (terminator included).
    """
    entity_count = len(entity_names)
    table_start = (
        SCRIPT_HEADER_SIZE
        + ENTITY_NAME_SIZE * entity_count
        + 4 * len(music_tracks)
        + 2 * ENTITY_SCRIPT_SLOTS * entity_count
    )
    dialog_table = bytearray(struct.pack("<H", len(dialogs)))
    cursor = 2 + 2 * len(dialogs)
    for dialog in dialogs:
        dialog_table += struct.pack("<H", cursor)
        cursor += len(dialog)
    dialog_block = bytes(dialog_table) + b"".join(dialogs)

    akao_start = table_start + len(dialog_block)
    akao_blocks = bytearray()
    akao_offsets: List[int] = []
    for track in music_tracks:
        akao_offsets.append(akao_start + len(akao_blocks))
        akao_blocks += AKAO_MAGIC + struct.pack("<H", track + AKAO_TRACK_BIAS) + bytes(10)

    out = bytearray(
        struct.pack(
            "<HBBHHH",
            SCRIPT_MAGIC,
            entity_count,
            model_count,
            table_start,
            len(music_tracks),
            scale,
        )
    )
    out += bytes(6)
    out += creator.encode("ascii")[:8].ljust(8, b"\x00")
    out += name.encode("ascii")[:8].ljust(8, b"\x00")
    for entity in entity_names:
        out += entity.encode("ascii")[:ENTITY_NAME_SIZE].ljust(ENTITY_NAME_SIZE, b"\x00")
    for offset in akao_offsets:
        out += struct.pack("<I", offset)
    out += bytes(2 * ENTITY_SCRIPT_SLOTS * entity_count)
    out += dialog_block
    out += akao_blocks
    return bytes(out)


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Vertex:
    x: int
    y: int
    z: int

    def scaled(self, divisor: float) -> Tuple[float, float, float]:
        return (self.x / divisor, self.y / divisor, self.z / divisor)


@dataclass(frozen=True)
class Gateway:
    exit_line: Tuple[Vertex, Vertex]
    destination: Vertex
    destination_field_id: int
    dir: int

    def is_active(self, inactive_id: int = INACTIVE_GATEWAY_ID) -> bool:
        return self.destination_field_id != inactive_id


@dataclass(frozen=True)
class CameraRange:
    left: int
    top: int
    right: int
    bottom: int


@dataclass
class Triggers:
    name: str
    control: int
    focus_height: int
    camera_range: CameraRange
    gateways: List[Gateway] = field(default_factory=list)

    @property
    def movement_rotation(self) -> float:
        return 180.0 * (self.control - MOVEMENT_ROTATION_CENTER) / MOVEMENT_ROTATION_CENTER


def _read_vertex(cursor: BinaryCursor) -> Vertex:
    return Vertex(cursor.read_s16_le(), cursor.read_s16_le(), cursor.read_s16_le())


def parse_triggers(data: bytes) -> Triggers:
    cursor = BinaryCursor(data)
    name = _fixed_string(cursor.read_bytes(TRIGGERS_NAME_SIZE))
    control = cursor.read_u8()
    focus_height = cursor.read_s16_le()
    camera_range = CameraRange(
        cursor.read_s16_le(), cursor.read_s16_le(), cursor.read_s16_le(), cursor.read_s16_le()
    )
    cursor.read_bytes(4)  # background layer flags
    cursor.read_bytes(8)  # layer 3/4 sizes
    cursor.read_bytes(TRIGGERS_UNKNOWN_SIZE)
    gateways: List[Gateway] = []
    for _ in range(GATEWAY_COUNT):
        line = (_read_vertex(cursor), _read_vertex(cursor))
        destination = _read_vertex(cursor)
        field_id = cursor.read_u16_le()
        direction = cursor.read_u8()
        cursor.read_bytes(3)
        gateways.append(Gateway(line, destination, field_id, direction))
    # Triggers, arrow flags and arrows are not used by the converter.
    return Triggers(
        name=name,
        control=control,
        focus_height=focus_height,
        camera_range=camera_range,
        gateways=gateways,
    )


def _pack_vertex(vertex: Vertex) -> bytes:
    return struct.pack("<hhh", vertex.x, vertex.y, vertex.z)


def encode_triggers_section(
    gateways: Sequence[Gateway],
    control: int = MOVEMENT_ROTATION_CENTER,
    camera_range: CameraRange = CameraRange(0, 0, 0, 0),
    name: str = "",
) -> bytes:
    """Build a triggers section; missing gateway slots are inactive."""
    out = bytearray(name.encode("ascii")[:TRIGGERS_NAME_SIZE].ljust(TRIGGERS_NAME_SIZE, b"\x00"))
    out += struct.pack(
        "<Bhhhhh",
        control,
        0,
        camera_range.left,
        camera_range.top,
        camera_range.right,
        camera_range.bottom,
    )
    out += bytes(4 + 8 + TRIGGERS_UNKNOWN_SIZE)
    origin = Vertex(0, 0, 0)
    slots = list(gateways) + [
        Gateway((origin, origin), origin, INACTIVE_GATEWAY_ID, 0)
    ] * (GATEWAY_COUNT - len(gateways))
    for gateway in slots[:GATEWAY_COUNT]:
        out += _pack_vertex(gateway.exit_line[0]) + _pack_vertex(gateway.exit_line[1])
        out += _pack_vertex(gateway.destination)
        out += struct.pack("<HBBBB", gateway.destination_field_id, gateway.dir, gateway.dir, gateway.dir, gateway.dir)
    out += bytes(TRIGGER_COUNT * 16)
    out += bytes(ARROW_COUNT)
    out += bytes(ARROW_COUNT * 16)
    return bytes(out)


# ---------------------------------------------------------------------------
# Walkmesh
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WalkmeshTriangle:
    a: Vertex
    b: Vertex
    c: Vertex
    access: Tuple[int, int, int]


def parse_walkmesh(data: bytes) -> List[WalkmeshTriangle]:
    cursor = BinaryCursor(data)
    count = cursor.read_u32_le()
    corners: List[Tuple[Vertex, Vertex, Vertex]] = []
    for _ in range(count):
        points = []
        for _ in range(3):
            points.append(_read_vertex(cursor))
            cursor.read_s16_le()  # padding
        corners.append((points[0], points[1], points[2]))
    triangles: List[WalkmeshTriangle] = []
    for a, b, c in corners:
        access = (cursor.read_u16_le(), cursor.read_u16_le(), cursor.read_u16_le())
        triangles.append(WalkmeshTriangle(a, b, c, access))
    return triangles


def encode_walkmesh_section(triangles: Sequence[WalkmeshTriangle]) -> bytes:
    out = bytearray(struct.pack("<I", len(triangles)))
    for triangle in triangles:
        for vertex in (triangle.a, triangle.b, triangle.c):
            out += _pack_vertex(vertex) + struct.pack("<h", 0)
    for triangle in triangles:
        out += struct.pack("<HHH", *triangle.access)
    return bytes(out)


# ---------------------------------------------------------------------------
# Model loader
# ---------------------------------------------------------------------------


class ModelType(IntEnum):
    PLAYER = 0
    NPC = 1
    UNKNOWN = 2


@dataclass
class ModelDescription:
    name: str
    type: ModelType
    hrc_name: str
    scale: str
    animations: List[str] = field(default_factory=list)


@dataclass
class ModelList:
    scale: int
    models: List[ModelDescription] = field(default_factory=list)


def parse_model_list(data: bytes) -> ModelList:
    cursor = BinaryCursor(data)
    cursor.read_u16_le()
    count = cursor.read_u16_le()
    model_list = ModelList(scale=cursor.read_u16_le())
    for _ in range(count):
        name = _fixed_string(cursor.read_bytes(cursor.read_u16_le()))
        raw_type = cursor.read_u16_le()
        model_type = ModelType(raw_type) if raw_type in (0, 1) else ModelType.UNKNOWN
        hrc_name = _fixed_string(cursor.read_bytes(HRC_NAME_SIZE))
        scale = _fixed_string(cursor.read_bytes(MODEL_SCALE_SIZE))
        animation_count = cursor.read_u16_le()
        cursor.read_bytes(MODEL_LIGHT_DATA_SIZE)
        animations: List[str] = []
        for _ in range(animation_count):
            animations.append(_fixed_string(cursor.read_bytes(cursor.read_u16_le())))
            cursor.read_u16_le()
        model_list.models.append(
            ModelDescription(name, model_type, hrc_name, scale, animations)
        )
    return model_list


def encode_model_list_section(models: Sequence[ModelDescription], scale: int = 512) -> bytes:
    out = bytearray(struct.pack("<HHH", 0, len(models), scale))
    for model in models:
        name = model.name.encode("ascii")
        out += struct.pack("<H", len(name)) + name
        out += struct.pack("<H", int(model.type))
        out += model.hrc_name.encode("ascii")[:HRC_NAME_SIZE].ljust(HRC_NAME_SIZE, b"\x00")
        out += model.scale.encode("ascii")[:MODEL_SCALE_SIZE].ljust(MODEL_SCALE_SIZE, b"\x00")
        out += struct.pack("<H", len(model.animations))
        out += bytes(MODEL_LIGHT_DATA_SIZE)
        for animation in model.animations:
            raw = animation.encode("ascii")
            out += struct.pack("<H", len(raw)) + raw + struct.pack("<H", 0)
    return bytes(out)


# ---------------------------------------------------------------------------
# Map list
# ---------------------------------------------------------------------------


def parse_map_list(data: bytes) -> List[str]:
    """Map names indexed by field id. Empty slots keep their position."""
    cursor = BinaryCursor(data)
    count = cursor.read_u16_le()
    return [_fixed_string(cursor.read_bytes(MAP_NAME_SIZE)) for _ in range(count)]


def encode_map_list(names: Sequence[str]) -> bytes:
    out = bytearray(struct.pack("<H", len(names)))
    for name in names:
        out += name.encode("ascii")[:MAP_NAME_SIZE].ljust(MAP_NAME_SIZE, b"\x00")
    return bytes(out)


# ---------------------------------------------------------------------------
# Field file
# ---------------------------------------------------------------------------


class FieldFile:
    """A decompressed field map with lazily parsed sections."""

    def __init__(self, name: str, sections: Sequence[bytes]) -> None:
        if len(sections) < SECTION_COUNT:
            raise FieldFormatError(
                f"Field {name} has {len(sections)} sections, expected {SECTION_COUNT}"
            )
        self.name = name
        self.sections = list(sections)

    @classmethod
    def from_compressed(cls, name: str, data: bytes) -> "FieldFile":
        try:
            return cls(name, split_sections(lzs_decompress(data)))
        except OutOfRange as exc:
            raise FieldFormatError(f"Field {name} is truncated: {exc}") from exc

    def section(self, section: FieldSection) -> bytes:
        return self.sections[int(section)]

    @property
    def raw_script(self) -> bytes:
        return self.section(FieldSection.SCRIPT)

    @cached_property
    def script_header(self) -> ScriptHeader:
        return parse_script_header(self.raw_script)

    @cached_property
    def triggers(self) -> Triggers:
        return parse_triggers(self.section(FieldSection.TRIGGERS))

    @cached_property
    def walkmesh(self) -> List[WalkmeshTriangle]:
        return parse_walkmesh(self.section(FieldSection.WALKMESH))

    @cached_property
    def model_list(self) -> ModelList:
        return parse_model_list(self.section(FieldSection.MODEL_LOADER))

    @property
    def scale_factor(self) -> float:
        return self.script_header.scale_factor

    @property
    def music_tracks(self) -> List[int]:
        return extract_music_tracks(self.raw_script)


def encode_field_file(
    script: bytes,
    triggers: bytes,
    walkmesh: bytes = b"\x00\x00\x00\x00",
    model_list: bytes = b"\x00\x00\x00\x00\x00\x02",
) -> bytes:
    """Build a compressed field file; unused sections are left empty."""
    sections = [b""] * SECTION_COUNT
    sections[FieldSection.SCRIPT] = script
    sections[FieldSection.MODEL_LOADER] = model_list
    sections[FieldSection.WALKMESH] = walkmesh
    sections[FieldSection.TRIGGERS] = triggers
    return lzs_compress_literal(encode_flevel(sections))


# ---------------------------------------------------------------------------
# Dialogs
# ---------------------------------------------------------------------------

DIALOG_TABLE_POINTER = 0x04
DIALOG_END = 0xFF
DIALOG_ELLIPSIS = 0xA9
DIALOG_NEWLINE = 0xE7
DIALOG_PAGE = 0xE8
DIALOG_FUNCTION = 0xFE
DIALOG_PAUSE_TIMED = 0xDD

DIALOG_SPACES: Dict[int, str] = {0xE0: " " * 10, 0xE1: " " * 4, 0xE2: ", "}
DIALOG_BUTTONS: Dict[int, str] = {
    0xF6: "ButtonCircle",
    0xF7: "ButtonTriangle",
    0xF8: "ButtonSquare",
    0xF9: "ButtonCross",
}
DIALOG_COLOURS: Dict[int, str] = {
    0xD2: "0.6 0.6 0.6",
    0xD3: "0.0 0.0 1.0",
    0xD4: "1.0 0.0 0.0",
    0xD5: "1.0 0.2 0.8",
    0xD6: "0.0 1.0 0.0",
    0xD7: "0.0 1.0 0.8",
    0xD8: "1.0 1.0 0.4",
}
DIALOG_COLOUR_RESET = 0xD9
DIALOG_IGNORED_FUNCTIONS = (0xDA, 0xDB)
DIALOG_PAUSE_OK = 0xDC


class FieldTextWriter:
    """Render field dialogs as ``text.xml`` markup.

    Colour codes open a tag that the dialog may never close, so the output
    is assembled as text and any colour still open at the end of a dialog
    is closed there.
    """

    def __init__(self, glyph_table: Optional[Mapping[int, str]] = None) -> None:
        self.glyph_table = dict(DEFAULT_GLYPH_TABLE if glyph_table is None else glyph_table)
        self.glyph_table.pop(DIALOG_ELLIPSIS, None)

    def dialog_offsets(self, raw_script: bytes) -> List[int]:
        cursor = BinaryCursor(raw_script)
        table = cursor.peek_u16_le(DIALOG_TABLE_POINTER)
        count = cursor.peek_u16_le(table)
        return [table + cursor.peek_u16_le(table + 2 + 2 * index) for index in range(count)]

    def render_dialog(self, raw_script: bytes, start: int) -> str:
        cursor = BinaryCursor(raw_script, start)
        pieces: List[str] = []
        text: List[str] = []
        open_colours = 0

        def flush() -> None:
            if text:
                pieces.append(escape("".join(text), {'"': "&quot;", "'": "&apos;"}))
                text.clear()

        def tag(markup: str) -> None:
            flush()
            pieces.append(markup)

        while True:
            code = cursor.read_u8()
            if code == DIALOG_END:
                break
            if code in DIALOG_SPACES:
                text.append(DIALOG_SPACES[code])
            elif code == DIALOG_NEWLINE:
                text.append("\n")
            elif code == DIALOG_PAGE:
                tag("<next_page />")
            elif 0xEA <= code <= 0xF2:
                tag(f'<character id="{code - 0xEA}" />')
            elif 0xF3 <= code <= 0xF5:
                tag(f'<party pos="{code - 0xF3}" />')
            elif code in DIALOG_BUTTONS:
                tag(f'<image sprite="{DIALOG_BUTTONS[code]}" />')
            elif code == DIALOG_FUNCTION:
                function = cursor.read_u8()
                if function in DIALOG_COLOURS:
                    tag(f'<colour value="{DIALOG_COLOURS[function]}">')
                    open_colours += 1
                elif function == DIALOG_COLOUR_RESET:
                    if open_colours > 0:
                        tag("</colour>")
                        open_colours -= 1
                elif function in DIALOG_IGNORED_FUNCTIONS:
                    pass
                elif function == DIALOG_PAUSE_OK:
                    tag("<pause_ok />")
                elif function == DIALOG_PAUSE_TIMED:
                    tag(f'<pause time="{cursor.read_u16_le()}" />')
                else:
                    tag(f"[MISSING 0xFE {function:02X}]")
            elif code == DIALOG_ELLIPSIS:
                text.append("...")
            elif code in self.glyph_table:
                text.append(self.glyph_table[code])
            else:
                tag(f"[MISSING CHAR {code:02X}]")
        flush()
        pieces.extend("</colour>" for _ in range(open_colours))
        return "".join(pieces)

    def render(self, field_name: str, raw_script: bytes) -> str:
        lines = ["<texts>\n"]
        for index, offset in enumerate(self.dialog_offsets(raw_script)):
            body = self.render_dialog(raw_script, offset)
            lines.append(f'<dialog name="{field_name}_{index}">{body}</dialog>\n\n')
        lines.append("</texts>\n")
        return "".join(lines)

    def write(self, path: Path, field_name: str, raw_script: bytes) -> int:
        """Write ``text.xml``; returns the dialog count.

        A dialog table that runs past the section still leaves a valid,
        empty document behind before the error propagates.
        """
        try:
            document = self.render(field_name, raw_script)
        except OutOfRange:
            path.write_text("<texts>\n</texts>\n", encoding="utf-8")
            raise
        path.write_text(document, encoding="utf-8")
        return document.count("<dialog ")
