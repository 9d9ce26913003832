#!/usr/bin/env python3
import tempfile
import unittest
from pathlib import Path
import sys

import numpy as np
from PIL import Image


SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPT_DIR))

import tex_image
from install_common import OutOfRange


RED = (255, 0, 0, 255)
BLUE = (0, 0, 255, 255)
GREEN = (0, 255, 0, 255)


class TexImageTests(unittest.TestCase):
    def test_paletted_image_uses_selected_palette(self) -> None:
        data = tex_image.build_tex(2, 1, palettes=[[RED, BLUE], [GREEN, RED]], indices=[0, 1])
        tex = tex_image.TexImage.parse(data, "test.tex")
        self.assertEqual(tex.palette_count, 2)
        self.assertEqual(tex.rgba(0).tolist(), [[list(RED), list(BLUE)]])
        self.assertEqual(tex.rgba(1).tolist(), [[list(GREEN), list(RED)]])

    def test_index_past_palette_is_transparent(self) -> None:
        tex = tex_image.TexImage.parse(tex_image.build_tex(2, 1, palettes=[[RED]], indices=[0, 7]))
        self.assertEqual(tex.rgba(0)[0, 1].tolist(), [0, 0, 0, 0])

    def test_missing_palette_raises(self) -> None:
        tex = tex_image.TexImage.parse(tex_image.build_tex(1, 1, palettes=[[RED]], indices=[0]))
        with self.assertRaises(OutOfRange):
            tex.rgba(3)

    def test_direct_colour_image(self) -> None:
        tex = tex_image.TexImage.parse(tex_image.build_tex(1, 2, pixels=[GREEN, BLUE]))
        self.assertIsNone(tex.palettes)
        self.assertEqual(tex.rgba().tolist(), [[list(GREEN)], [list(BLUE)]])

    def test_crop_past_edge_is_padded(self) -> None:
        tex = tex_image.TexImage.parse(tex_image.build_tex(2, 2, pixels=[RED, BLUE, GREEN, RED]))
        cropped = tex.crop((1, 1, 2, 2))
        self.assertEqual(cropped.shape, (2, 2, 4))
        self.assertEqual(cropped[0, 0].tolist(), list(RED))
        self.assertFalse(np.any(cropped[1]))

    def test_truncated_and_foreign_data(self) -> None:
        data = tex_image.build_tex(4, 4, pixels=[RED] * 16)
        with self.assertRaises(OutOfRange):
            tex_image.TexImage.parse(data[:-1])
        with self.assertRaises(tex_image.TexFormatError):
            tex_image.TexImage.parse(b"\x02" + data[1:])

    def test_save_png(self) -> None:
        tex = tex_image.TexImage.parse(tex_image.build_tex(2, 1, palettes=[[RED, BLUE]], indices=[1, 0]))
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "images" / "window" / "corner.png"
            tex.save_png(path, crop=(0, 0, 1, 1))
            with Image.open(path) as image:
                self.assertEqual(image.size, (1, 1))
                self.assertEqual(image.mode, "RGBA")
                self.assertEqual(image.getpixel((0, 0)), BLUE)


if __name__ == "__main__":
    unittest.main()
