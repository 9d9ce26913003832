#!/usr/bin/env python3
"""
tex_image.py
============

Decoder for the legacy ``.tex`` images shipped in the menu and character
archives, with PNG export of arbitrary sub-rectangles.

The header is 59 little-endian u32 values. After it comes either a set of
BGRA palettes followed by one u8 index per pixel, or (when the image has no
palette) ``palette_size`` ignored u32 values followed by BGRA pixels.

Example usage:

    tex = TexImage.parse(archive.open("cloud.tex"), "cloud.tex")
    tex.save_png(Path("images/characters/0.png"), crop=(0, 0, 83, 95))
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np
from PIL import Image

from install_common import InstallerError, OutOfRange


TEX_HEADER_WORDS = 59
TEX_HEADER_SIZE = TEX_HEADER_WORDS * 4
TEX_VERSION = 1

HEADER_VERSION = 0
HEADER_PALETTE_COLOURS = 13
HEADER_WIDTH = 15
HEADER_HEIGHT = 16
HEADER_HAS_PALETTE = 19
HEADER_PALETTE_SIZE = 22


class TexFormatError(InstallerError):
    pass


Crop = Tuple[int, int, int, int]


@dataclass
class TexImage:
    name: str
    width: int
    height: int
    palettes: Optional[np.ndarray]  # (count, colours, 4) RGBA
    indices: Optional[np.ndarray]  # (height, width) u8
    pixels: Optional[np.ndarray]  # (height, width, 4) RGBA

    @property
    def palette_count(self) -> int:
        return 0 if self.palettes is None else int(self.palettes.shape[0])

    @classmethod
    def parse(cls, data: bytes, name: str = "image.tex") -> "TexImage":
        if len(data) < TEX_HEADER_SIZE:
            raise OutOfRange(f"{name}: header truncated")
        header = struct.unpack_from(f"<{TEX_HEADER_WORDS}I", data, 0)
        if header[HEADER_VERSION] != TEX_VERSION:
            raise TexFormatError(f"{name}: unsupported TEX version {header[HEADER_VERSION]}")
        width = header[HEADER_WIDTH]
        height = header[HEADER_HEIGHT]
        palette_size = header[HEADER_PALETTE_SIZE]
        pixel_count = width * height
        pos = TEX_HEADER_SIZE

        if header[HEADER_HAS_PALETTE] == 0:
            pos += palette_size * 4
            end = pos + pixel_count * 4
            if end > len(data):
                raise OutOfRange(f"{name}: pixel data truncated")
            bgra = np.frombuffer(data, dtype=np.uint8, count=pixel_count * 4, offset=pos)
            pixels = bgra.reshape(height, width, 4)[:, :, [2, 1, 0, 3]]
            return cls(name, width, height, None, None, pixels)

        colours = header[HEADER_PALETTE_COLOURS]
        if colours == 0:
            raise TexFormatError(f"{name}: palette with no colours")
        palette_count = palette_size // colours
        palette_bytes = palette_count * colours * 4
        end = pos + palette_bytes + pixel_count
        if end > len(data):
            raise OutOfRange(f"{name}: palette or index data truncated")
        bgra = np.frombuffer(data, dtype=np.uint8, count=palette_bytes, offset=pos)
        palettes = bgra.reshape(palette_count, colours, 4)[:, :, [2, 1, 0, 3]]
        indices = np.frombuffer(
            data, dtype=np.uint8, count=pixel_count, offset=pos + palette_bytes
        ).reshape(height, width)
        return cls(name, width, height, palettes, indices, None)

    def rgba(self, palette: int = 0) -> np.ndarray:
        """Full image as an RGBA array; indices past the palette end are transparent."""
        if self.pixels is not None:
            return self.pixels
        if self.palettes is None or self.indices is None:
            raise TexFormatError(f"{self.name}: neither pixels nor a palette")
        if not 0 <= palette < self.palette_count:
            raise OutOfRange(
                f"{self.name}: palette {palette} of {self.palette_count} requested"
            )
        table = self.palettes[palette]
        valid = self.indices < table.shape[0]
        safe = np.where(valid, self.indices, 0)
        image = table[safe]
        image[~valid] = 0
        return image

    def crop(self, crop: Optional[Crop] = None, palette: int = 0) -> np.ndarray:
        """Sub-rectangle ``(x, y, w, h)``; the part outside the image stays transparent."""
        full = self.rgba(palette)
        if crop is None:
            return full.copy()
        x, y, w, h = crop
        canvas = np.zeros((h, w, 4), dtype=np.uint8)
        source = full[y:min(y + h, self.height), x:min(x + w, self.width)]
        canvas[: source.shape[0], : source.shape[1]] = source
        return canvas

    def to_image(self, crop: Optional[Crop] = None, palette: int = 0) -> Image.Image:
        return Image.fromarray(np.ascontiguousarray(self.crop(crop, palette)))

    def save_png(self, path: Path, crop: Optional[Crop] = None, palette: int = 0) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        self.to_image(crop, palette).save(path, format="PNG")
        logging.debug("Saved %s from %s (palette %d)", path, self.name, palette)


def build_tex(
    width: int,
    height: int,
    palettes: Optional[List[List[Tuple[int, int, int, int]]]] = None,
    indices: Optional[List[int]] = None,
    pixels: Optional[List[Tuple[int, int, int, int]]] = None,
) -> bytes:
    """Assemble a TEX file from RGBA colours (stored BGRA)."""
    header = [0] * TEX_HEADER_WORDS
    header[HEADER_VERSION] = TEX_VERSION
    header[HEADER_WIDTH] = width
    header[HEADER_HEIGHT] = height
    body = bytearray()
    if palettes:
        colours = len(palettes[0])
        header[HEADER_HAS_PALETTE] = 1
        header[HEADER_PALETTE_COLOURS] = colours
        header[HEADER_PALETTE_SIZE] = colours * len(palettes)
        for palette in palettes:
            for r, g, b, a in palette:
                body += bytes((b, g, r, a))
        body += bytes(indices or [0] * (width * height))
    else:
        for r, g, b, a in pixels or [(0, 0, 0, 0)] * (width * height):
            body += bytes((b, g, r, a))
    return struct.pack(f"<{TEX_HEADER_WORDS}I", *header) + bytes(body)
