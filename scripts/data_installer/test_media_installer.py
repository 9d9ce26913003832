#!/usr/bin/env python3
import tempfile
import unittest
import xml.etree.ElementTree as ET
from pathlib import Path
import sys


SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPT_DIR))

import media_installer as media
from archives import DirectoryArchive
from collaborators import AudioConverter, ToolError
from install_common import OutputChannel
from install_config import InstallerConfig, InstallOptions, SpriteCrop
from tex_image import build_tex


class FakeAudio(AudioConverter):
    """Encodes by prefixing the source bytes; the bank splitter fills chosen slots."""

    def __init__(self, slots=(), broken=()):
        self.slots = slots
        self.broken = set(broken)

    def convert(self, source, target):
        if source.name in self.broken:
            raise ToolError(f"encode {source.name}: exit code 1")
        target = target.with_suffix(".ogg")
        target.write_bytes(b"ogg:" + source.read_bytes())
        return target

    def render_midi(self, source, target):
        return self.convert(source, target)

    def dump_sounds(self, fmt_path, dat_path, target_dir):
        target_dir.mkdir(parents=True, exist_ok=True)
        for slot in self.slots:
            (target_dir / f"{slot}.wav").write_bytes(b"wav%d" % slot)


class MediaInstallerTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.input_root = Path(self._tmp.name) / "input"
        self.output_root = Path(self._tmp.name) / "output"
        self.input_root.mkdir()
        self.lines = []

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _installer(self, audio, config=None, options=None, **archives):
        return media.MediaInstaller(
            self.input_root,
            self.output_root,
            config or InstallerConfig(),
            options or InstallOptions(),
            audio,
            channel=OutputChannel(self.lines.append),
            **archives,
        )

    def _write_input(self, relative: str, data: bytes) -> Path:
        path = self.input_root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path


class SoundTests(MediaInstallerTestCase):
    def setUp(self) -> None:
        super().setUp()
        self._write_input("data/sound/audio.fmt", b"fmt")
        self._write_input("data/sound/audio.dat", b"dat")
        self.config = InstallerConfig(total_sounds=3, sound_names={0: ("Cursor", "Cursor movement.")})

    def _install(self, installer):
        for index in range(installer.install_sounds_init()):
            installer.install_sound(index)
        return installer.write_sound_index()

    def test_empty_slots_are_invalid(self) -> None:
        installer = self._installer(FakeAudio(slots=(0, 2)), self.config)
        index_path = self._install(installer)
        self.assertEqual(
            installer.sounds, ["audio/sounds/0.ogg", media.INVALID_SOUND, "audio/sounds/2.ogg"]
        )
        self.assertEqual(installer.stats.sounds_converted, 2)
        self.assertEqual(index_path.name, "_sounds.xml")
        root = ET.parse(index_path).getroot()
        self.assertEqual([s.get("name") for s in root], ["0", "Cursor", "1", "2"])
        self.assertEqual(root[1].get("description"), "Cursor movement.")

    def test_originals_removed_unless_kept(self) -> None:
        self._install(self._installer(FakeAudio(slots=(0,)), self.config))
        self.assertFalse((self.output_root / "audio/sounds/0.wav").exists())
        self.assertEqual((self.output_root / "audio/sounds/0.ogg").read_bytes(), b"ogg:wav0")

        self._install(self._installer(FakeAudio(slots=(1,)), self.config, InstallOptions(keep_originals=True)))
        self.assertTrue((self.output_root / "audio/sounds/1.wav").exists())

    def test_encoder_failure_is_counted(self) -> None:
        installer = self._installer(FakeAudio(slots=(0, 1), broken={"1.wav"}), self.config)
        self._install(installer)
        self.assertEqual(installer.sounds[1], media.INVALID_SOUND)
        self.assertEqual(installer.stats.audio_failed, 1)
        self.assertEqual(installer.stats.warnings, 1)

    def test_missing_sound_bank(self) -> None:
        (self.input_root / "data/sound/audio.dat").unlink()
        installer = self._installer(FakeAudio(slots=(0,)), self.config)
        self._install(installer)
        self.assertEqual(installer.sounds, [media.INVALID_SOUND] * 3)
        self.assertTrue(self.lines[0].startswith("[WARNING] Sound bank not found"))


class MusicTests(MediaInstallerTestCase):
    def setUp(self) -> None:
        super().setUp()
        self._write_input("data/music/music.idx", b"oa\r\naseri\r\n")
        self._write_input("data/midi/aseri.mid", b"mid-aseri")
        self._write_input("data/midi/extra.mid", b"mid-extra")
        self.config = InstallerConfig(music_defaults={1: "initial"}, hq_musics=("aseri", "wind"))

    def _installer(self, audio=None, config=None, options=None, **archives):
        archives.setdefault("midi_archive", DirectoryArchive(self.input_root / "data/midi"))
        return super()._installer(audio or FakeAudio(), config or self.config, options, **archives)

    def _install(self, installer):
        for index in range(installer.install_musics_init()):
            installer.install_music(index)

    def test_index_file_lines_are_ids(self) -> None:
        names = media.read_music_index(self.input_root / "data/music/music.idx")
        self.assertEqual(names, {0: "oa", 1: "aseri"})
        self.assertEqual(media.read_music_index(self.input_root / "missing.idx"), {})

    def test_ids_come_from_the_index(self) -> None:
        installer = self._installer()
        self._install(installer)
        self.assertEqual(
            installer.musics, [(1, "audio/musics/1.ogg"), (1001, "audio/musics/1001.ogg")]
        )
        self.assertEqual((self.output_root / "audio/musics/1.ogg").read_bytes(), b"ogg:mid-aseri")
        self.assertFalse((self.output_root / "audio/musics/1.mid").exists())

    def test_high_quality_recordings_replace_midi(self) -> None:
        self._write_input("musics/aseri.wav", b"hq")
        self._write_input("musics/wind.wav", b"breeze")
        installer = self._installer()
        self._install(installer)
        self.assertEqual(installer.install_hq_musics(), 2)
        self.assertEqual(
            sorted(installer.musics),
            [(1, "audio/musics/1.ogg"), (1001, "audio/musics/1001.ogg"), (2000, "audio/musics/2000.ogg")],
        )
        self.assertEqual((self.output_root / "audio/musics/1.ogg").read_bytes(), b"ogg:hq")

    def test_musics_index(self) -> None:
        installer = self._installer()
        self._install(installer)
        index_path = installer.write_musics_index()
        self.assertEqual(index_path.name, "_musics.xml")
        entries = [music.attrib for music in ET.parse(index_path).getroot()]
        self.assertEqual(
            entries,
            [
                {"file_name": "audio/musics/1.ogg", "name": "1", "loop": "0", "default": "initial"},
                {"file_name": "audio/musics/1.ogg", "name": "aseri", "loop": "0"},
                {"file_name": "audio/musics/1001.ogg", "name": "1001", "loop": "0"},
            ],
        )

    def test_without_index_ids_are_positional(self) -> None:
        (self.input_root / "data/music/music.idx").unlink()
        installer = self._installer()
        self._install(installer)
        self.assertEqual([music_id for music_id, _ in installer.musics], [1000, 1001])
        self.assertIn("[WARNING] Music index not found, tracks keep generic ids", self.lines)


class ImageTests(MediaInstallerTestCase):
    def test_crops_written_as_png(self) -> None:
        red, blue = (255, 0, 0, 255), (0, 0, 255, 255)
        self._write_input("menu/corner.tex", build_tex(2, 2, palettes=[[red, blue]], indices=[0, 1, 1, 0]))
        self._write_input("menu/broken.tex", b"\x01")
        self._write_input("menu/unused.tex", b"")
        config = InstallerConfig(
            sprite_crops={
                "corner.tex": (SpriteCrop("window/c_tl.png", 0, 0, 1, 1), SpriteCrop("window/c_br.png", 1, 1, 1, 1)),
                "broken.tex": (SpriteCrop("window/none.png", 0, 0, 1, 1),),
            }
        )
        installer = self._installer(FakeAudio(), config, menu_archive=DirectoryArchive(self.input_root / "menu"))
        self.assertEqual(installer.install_images(), 2)
        self.assertTrue((self.output_root / "images/window/c_tl.png").is_file())
        self.assertTrue((self.output_root / "images/window/c_br.png").is_file())
        self.assertEqual(installer.stats.images_failed, 1)
        self.assertTrue(self.lines[0].startswith("[WARNING] Tried to read an invalid TEX file broken.tex"))


if __name__ == "__main__":
    unittest.main()
