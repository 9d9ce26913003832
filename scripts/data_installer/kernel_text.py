#!/usr/bin/env python3
"""
kernel_text.py
==============

Codec for the compressed text stored in the game-data sections of
``KERNEL.BIN`` (item names, descriptions, battle text...).

A text section starts with a table of little-endian u16 offsets, one per
string. Each string is a run of glyph bytes terminated by ``0xFF``. Byte
``0xF9`` introduces a back-reference: the byte after it is ``aaoooooo`` and
means "decode ``aa * 2 + 4`` bytes starting ``oooooo + 1`` bytes before the
escape". Only descriptions use it in practice, but the decoder accepts it
anywhere.

Example usage:

    codec = TextCodec()
    names = codec.read_all(section_bytes)
    print(codec.read_string(section_bytes, 3))
"""

from __future__ import annotations

import logging
import struct
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from install_common import OutOfRange


STRING_TERMINATOR = 0xFF
BACK_REFERENCE = 0xF9
MAX_BACK_REFERENCE_OFFSET = 0x3F
BACK_REFERENCE_LENGTHS = (10, 8, 6, 4)

_EXTENDED_ROWS: Tuple[Tuple[int, str], ...] = (
    (0x60, "ÄÅÇÉÑÖÜáàâäãåçéè"),
    (0x70, "êëíìîïñóòôöõúùûü"),
    (0x80, "⌘°¢£ÙÛ¶ß®©™´¨≠ÆØ"),
    (0x90, "∞±≤≥¥µ∂ΣΠπ⌡ªºΩæø"),
    (0xA0, "¿¡¬√ƒ≈∆«»… ÀÃÕŒœ"),
    (0xB0, "–—“”‘’÷◊ÿŸ⁄¤‹›ﬁﬂ"),
    (0xC0, "■▪‚„‰ÂÊÁËÈÍÎÏÌÓÔ"),
)


def build_default_glyph_table() -> Dict[int, str]:
    """Western glyph table: ASCII 0x20-0x7E first, then the extended Latin rows."""
    table: Dict[int, str] = {code: chr(code + 0x20) for code in range(0x00, 0x5F)}
    for row_start, glyphs in _EXTENDED_ROWS:
        for offset, glyph in enumerate(glyphs):
            table[row_start + offset] = glyph
    return table


DEFAULT_GLYPH_TABLE: Dict[int, str] = build_default_glyph_table()


def unknown_glyph_marker(code: int) -> str:
    return f"[UNKNOWN 0x{code:02X}]"


def lua_safe(text: str) -> str:
    """Make *text* safe to embed in a double-quoted Lua string literal."""
    return text.replace("\\", "/").replace('"', "'")


class TextCodec:
    def __init__(self, glyph_table: Optional[Mapping[int, str]] = None) -> None:
        self.glyph_table: Dict[int, str] = dict(
            DEFAULT_GLYPH_TABLE if glyph_table is None else glyph_table
        )
        self._reverse: Dict[str, int] = {}
        for code in sorted(self.glyph_table):
            self._reverse.setdefault(self.glyph_table[code], code)

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def glyph(self, code: int) -> str:
        text = self.glyph_table.get(code)
        if text is None:
            logging.debug("No glyph for byte 0x%02X", code)
            return unknown_glyph_marker(code)
        return text

    def decode_at(self, data: bytes, start: int) -> str:
        """Decode the string beginning at absolute offset *start*."""
        pieces: List[str] = []
        pos = start
        size = len(data)
        while True:
            if pos >= size:
                raise OutOfRange(f"Unterminated string starting at 0x{start:X}")
            code = data[pos]
            if code == STRING_TERMINATOR:
                break
            if code == BACK_REFERENCE:
                if pos + 1 >= size:
                    raise OutOfRange(f"Truncated back-reference at 0x{pos:X}")
                control = data[pos + 1]
                count = (control >> 6) * 2 + 4
                source = pos - 1 - (control & MAX_BACK_REFERENCE_OFFSET)
                if source < 0 or source + count > size:
                    raise OutOfRange(
                        f"Back-reference at 0x{pos:X} points outside the section"
                    )
                for code_ref in data[source:source + count]:
                    pieces.append(self.glyph(code_ref))
                pos += 2
                continue
            pieces.append(self.glyph(code))
            pos += 1
        return "".join(pieces)

    @staticmethod
    def string_offset(data: bytes, index: int) -> int:
        table_pos = index * 2
        if index < 0 or table_pos + 2 > len(data):
            raise OutOfRange(f"String index {index} outside the offset table")
        return struct.unpack_from("<H", data, table_pos)[0]

    @staticmethod
    def string_count(data: bytes) -> int:
        """Number of strings in a section; the first offset marks the end of the table."""
        if len(data) < 2:
            return 0
        return struct.unpack_from("<H", data, 0)[0] // 2

    def read_string(self, data: bytes, index: int) -> str:
        return self.decode_at(data, self.string_offset(data, index))

    def read_all(self, data: bytes) -> List[str]:
        return [self.read_string(data, index) for index in range(self.string_count(data))]

    # ------------------------------------------------------------------
    # Encoding (fixtures and round-trip checks)
    # ------------------------------------------------------------------

    def encode(self, text: str, compress: bool = False) -> bytes:
        """Encode *text* as glyph bytes plus terminator.

        With *compress*, repeated runs inside the string are replaced by
        back-references to earlier literal bytes.
        """
        codes: List[int] = []
        for char in text:
            code = self._reverse.get(char)
            if code is None or code in (STRING_TERMINATOR, BACK_REFERENCE):
                raise ValueError(f"Character {char!r} has no glyph")
            codes.append(code)

        out = bytearray()
        literal = []  # parallel to out: True where the byte is a plain glyph
        index = 0
        while index < len(codes):
            reference = self._find_reference(out, literal, codes, index) if compress else None
            if reference is not None:
                length, offset = reference
                control = ((length - 4) // 2) << 6 | offset
                out.extend((BACK_REFERENCE, control))
                literal.extend((False, False))
                index += length
                continue
            out.append(codes[index])
            literal.append(True)
            index += 1
        out.append(STRING_TERMINATOR)
        return bytes(out)

    @staticmethod
    def _find_reference(
        out: bytearray, literal: Sequence[bool], codes: Sequence[int], index: int
    ) -> Optional[Tuple[int, int]]:
        escape_pos = len(out)
        for length in BACK_REFERENCE_LENGTHS:
            wanted = bytes(codes[index:index + length])
            if len(wanted) < length:
                continue
            for offset in range(MAX_BACK_REFERENCE_OFFSET + 1):
                source = escape_pos - 1 - offset
                if source < 0 or source + length > escape_pos:
                    continue
                if not all(literal[source:source + length]):
                    continue
                if bytes(out[source:source + length]) == wanted:
                    return length, offset
        return None

    def encode_table(self, strings: Sequence[str], compress: bool = False) -> bytes:
        """Build a complete text section: offset table followed by the strings."""
        bodies = [self.encode(text, compress=compress) for text in strings]
        offset = len(bodies) * 2
        table = bytearray()
        for body in bodies:
            table += struct.pack("<H", offset)
            offset += len(body)
        return bytes(table) + b"".join(bodies)
