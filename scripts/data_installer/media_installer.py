#!/usr/bin/env python3
"""
media_installer.py
==================

Menu images, sound effects and music.

* Images: selected ``.tex`` files of ``menu_us.lgp`` are cut into the
  portraits, icons, window borders, fonts and reels listed in the sprite
  crop table, one PNG per crop.
* Sounds: the sound bank (``audio.fmt`` + ``audio.dat``) is split into
  numbered WAV files by the sound bank splitter, then every slot is
  encoded one at a time. ``audio/sounds/_sounds.xml`` lists every slot by
  number plus any friendly names.
* Music: every MIDI file of ``midi.lgp`` is rendered and encoded; the id
  comes from ``music.idx``. The high quality recordings shipped as WAV
  replace their MIDI counterparts. ``audio/musics/_musics.xml`` is the index.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from archives import ArchiveError, ArchiveSource
from collaborators import AudioConverter, ToolError
from install_common import InstallStats, OutOfRange, OutputChannel
from install_config import (
    HQ_MUSIC_DIR,
    MUSIC_INDEX,
    SOUND_DATA,
    SOUND_FORMAT,
    UNINDEXED_HQ_MUSIC_ID,
    UNINDEXED_MUSIC_BASE,
    InstallerConfig,
    InstallOptions,
)
from tex_image import TexFormatError, TexImage
from field_installer import write_xml


SOUNDS_DIR = "audio/sounds"
MUSICS_DIR = "audio/musics"
INVALID_SOUND = f"{SOUNDS_DIR}/INVALID.ogg"


def read_music_index(path: Path) -> Dict[int, str]:
    """Music names by id, one per line; DOS line endings are tolerated."""
    if not path.is_file():
        return {}
    names: Dict[int, str] = {}
    for index, line in enumerate(path.read_bytes().decode("ascii", "replace").splitlines()):
        names[index] = line.strip("\r\n")
    return names


class MediaInstaller:
    def __init__(
        self,
        input_root: Path,
        output_root: Path,
        config: InstallerConfig,
        options: InstallOptions,
        audio: AudioConverter,
        channel: Optional[OutputChannel] = None,
        menu_archive: Optional[ArchiveSource] = None,
        midi_archive: Optional[ArchiveSource] = None,
    ) -> None:
        self.input_root = input_root
        self.output_root = output_root
        self.config = config
        self.options = options
        self.audio = audio
        self.channel = channel or OutputChannel()
        self.menu_archive = menu_archive
        self.midi_archive = midi_archive

        self.sounds: List[str] = []
        self.music_names: Dict[int, str] = {}
        self.midi_entries: List[str] = []
        self.musics: List[Tuple[int, str]] = []

    @property
    def stats(self) -> InstallStats:
        return self.channel.stats

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def install_images(self) -> int:
        if self.menu_archive is None:
            self.channel.warning("No menu archive, images skipped")
            return 0
        images_dir = self.output_root / "images"
        images_dir.mkdir(parents=True, exist_ok=True)
        written = 0
        for entry in self.menu_archive.list_entries():
            crops = self.config.sprite_crops.get(Path(entry).name)
            if not crops:
                continue
            try:
                raw = self.menu_archive.open(entry)
                tex = TexImage.parse(raw, entry)
            except (ArchiveError, OutOfRange, TexFormatError) as exc:
                self.stats.images_failed += 1
                self.channel.warning(f"Tried to read an invalid TEX file {entry}: {exc}")
                continue
            if self.options.keep_originals:
                (images_dir / Path(entry).name).write_bytes(raw)
            for crop in crops:
                try:
                    tex.save_png(images_dir / crop.target, crop.box, crop.palette)
                except (OutOfRange, OSError) as exc:
                    self.stats.images_failed += 1
                    self.channel.warning(f"{entry}: {crop.target} not written: {exc}")
                    continue
                written += 1
        self.stats.images_converted += written
        logging.info("Wrote %d menu images", written)
        return written

    # ------------------------------------------------------------------
    # Sounds
    # ------------------------------------------------------------------

    def install_sounds_init(self) -> int:
        sounds_dir = self.output_root / SOUNDS_DIR
        fmt_path = self.input_root / SOUND_FORMAT
        dat_path = self.input_root / SOUND_DATA
        if fmt_path.is_file() and dat_path.is_file():
            try:
                self.audio.dump_sounds(fmt_path, dat_path, sounds_dir)
            except ToolError as exc:
                self.channel.warning(f"Sound bank not split: {exc}")
        else:
            self.channel.warning(f"Sound bank not found under {fmt_path.parent}")
        self.sounds = []
        return self.config.total_sounds

    def install_sound(self, index: int) -> None:
        wav = self.output_root / SOUNDS_DIR / f"{index}.wav"
        if not wav.is_file():
            self.sounds.append(INVALID_SOUND)
            logging.debug("Sound slot %d is empty", index)
            return
        try:
            target = self.audio.convert(wav, wav.with_suffix(".ogg"))
        except ToolError as exc:
            self.stats.audio_failed += 1
            self.channel.warning(f"Sound {index} not converted: {exc}")
            self.sounds.append(INVALID_SOUND)
            return
        if target != wav and not self.options.keep_originals:
            wav.unlink(missing_ok=True)
        self.sounds.append(f"{SOUNDS_DIR}/{target.name}")
        self.stats.sounds_converted += 1

    def write_sound_index(self) -> Path:
        root = ET.Element("sounds")
        for sound_id, path in enumerate(self.sounds):
            ET.SubElement(root, "sound", {"file_name": path, "name": str(sound_id)})
            friendly = self.config.sound_names.get(sound_id)
            if friendly and friendly[0]:
                ET.SubElement(
                    root,
                    "sound",
                    {"file_name": path, "name": friendly[0], "description": friendly[1]},
                )
        index_path = self.output_root / SOUNDS_DIR / "_sounds.xml"
        write_xml(root, index_path)
        return index_path

    # ------------------------------------------------------------------
    # Music
    # ------------------------------------------------------------------

    def install_musics_init(self) -> int:
        self.music_names = read_music_index(self.input_root / MUSIC_INDEX)
        if not self.music_names:
            self.channel.warning("Music index not found, tracks keep generic ids")
        self.midi_entries = self.midi_archive.list_entries() if self.midi_archive else []
        self.musics = []
        return len(self.midi_entries)

    def music_id(self, file_name: str, position: int) -> int:
        for music_id, name in sorted(self.music_names.items()):
            if f"{name}.mid" == file_name:
                return music_id
        return UNINDEXED_MUSIC_BASE + position

    def install_music(self, index: int) -> None:
        if self.midi_archive is None or index >= len(self.midi_entries):
            return
        entry = self.midi_entries[index]
        music_id = self.music_id(entry, index)
        musics_dir = self.output_root / MUSICS_DIR
        musics_dir.mkdir(parents=True, exist_ok=True)
        midi = musics_dir / f"{music_id}.mid"
        try:
            midi.write_bytes(self.midi_archive.open(entry))
            target = self.audio.render_midi(midi, midi.with_suffix(".ogg"))
        except (ArchiveError, OutOfRange, ToolError) as exc:
            self.stats.audio_failed += 1
            self.channel.warning(f"Music {entry} not converted: {exc}")
            return
        if target != midi and not self.options.keep_originals:
            midi.unlink(missing_ok=True)
        self.musics.append((music_id, f"{MUSICS_DIR}/{target.name}"))
        self.stats.musics_converted += 1

    def install_hq_musics(self) -> int:
        converted = 0
        musics_dir = self.output_root / MUSICS_DIR
        musics_dir.mkdir(parents=True, exist_ok=True)
        names = {name: music_id for music_id, name in sorted(self.music_names.items(), reverse=True)}
        for name in self.config.hq_musics:
            source = self.input_root / HQ_MUSIC_DIR / f"{name}.wav"
            if not source.is_file():
                logging.debug("No high quality recording for %s", name)
                continue
            music_id = names.get(name, UNINDEXED_HQ_MUSIC_ID)
            try:
                target = self.audio.convert(source, musics_dir / f"{music_id}.ogg")
            except ToolError as exc:
                self.stats.audio_failed += 1
                self.channel.warning(f"High quality music {name} not converted: {exc}")
                continue
            path = f"{MUSICS_DIR}/{target.name}"
            self.musics = [(mid, p) for mid, p in self.musics if mid != music_id]
            self.musics.append((music_id, path))
            converted += 1
        return converted

    def write_musics_index(self) -> Path:
        root = ET.Element("musics")
        for music_id, path in sorted(self.musics):
            attributes = {"file_name": path, "name": str(music_id), "loop": "0"}
            default = self.config.music_defaults.get(music_id)
            if default:
                attributes["default"] = default
            ET.SubElement(root, "music", attributes)
            name = self.music_names.get(music_id)
            if name:
                ET.SubElement(root, "music", {"file_name": path, "name": name, "loop": "0"})
        index_path = self.output_root / MUSICS_DIR / "_musics.xml"
        write_xml(root, index_path)
        return index_path
