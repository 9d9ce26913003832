#!/usr/bin/env python3
"""
data_installer.py
=================

Incremental installer that turns an original game installation into the
engine's data directory.

The installation is a linear sequence of `InstallationState`s. Each call to
`DataInstaller.progress()` performs one bounded unit of work (a single
action, or one substep of a multi-unit state such as "convert field N") and
returns a weighted completion estimate, so a polling caller such as a GUI
timer never blocks for long. Skipped phases are jumps chosen by
`next_state()`; the weight table itself never changes.

Example usage:

    python data_installer.py \
        --input-root /games/ff7 \
        --output-root ./data \
        --decompiler ./tools/field-decompiler \
        --exporter ./tools/asset-exporter \
        --audio-converter ffmpeg \
        --report install_report.json
"""

from __future__ import annotations

import argparse
import json
import logging
import shutil
import sys
import threading
from dataclasses import asdict, dataclass
from enum import IntEnum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from archives import ArchiveError, ArchiveSource, open_archive
from collaborators import (
    AssetExporter,
    AudioConverter,
    CopyAudioConverter,
    ExternalAssetExporter,
    ExternalAudioConverter,
    ExternalScriptDecompiler,
    FieldNameLookup,
    NullScriptDecompiler,
    RawCopyExporter,
    ScriptDecompiler,
)
from field_installer import FieldInstaller
from gamedata_writer import GameDataWriter
from install_common import (
    DirectoryCreationError,
    InstallationCancelled,
    InstallerError,
    InstallStats,
    KernelFormatError,
    OutOfRange,
    OutputChannel,
)
from install_config import (
    CHAR_ARCHIVE,
    FIELD_ARCHIVE,
    KERNEL_PATH,
    MENU_ARCHIVE,
    MIDI_ARCHIVE,
    ConfigError,
    InstallerConfig,
    InstallOptions,
    load_config,
)
from kernel_data import KernelArchive, KernelReader
from kernel_text import TextCodec
from media_installer import MediaInstaller


class InstallationState(IntEnum):
    IDLE = 0
    CREATE_DIRECTORIES = 1
    INITIALIZE = 2
    KERNEL_COMMANDS = 3
    KERNEL_ATTACKS = 4
    KERNEL_CHARACTERS = 5
    KERNEL_ITEMS = 6
    KERNEL_GROWTH = 7
    KERNEL_WEAPONS = 8
    KERNEL_ARMORS = 9
    KERNEL_ACCESSORIES = 10
    KERNEL_MATERIA = 11
    KERNEL_KEY_ITEMS = 12
    KERNEL_SUMMON_NAMES = 13
    KERNEL_SAVEMAP = 14
    MEDIA_IMAGES = 15
    MEDIA_SOUNDS_INIT = 16
    MEDIA_SOUNDS = 17
    MEDIA_SOUNDS_INDEX = 18
    MEDIA_MUSICS_INIT = 19
    MEDIA_MUSICS = 20
    MEDIA_MUSICS_HQ = 21
    MEDIA_MUSICS_INDEX = 22
    FIELD_SPAWN_POINTS_AND_SCALE_FACTORS_INIT = 23
    FIELD_SPAWN_POINTS_AND_SCALE_FACTORS = 24
    FIELD_CONVERT = 25
    FIELD_WRITE_INIT = 26
    FIELD_WRITE = 27
    FIELD_WRITE_END = 28
    FIELD_CONVERT_MODELS_INIT = 29
    FIELD_CONVERT_MODELS = 30
    CLEAN = 31
    DONE = 32


S = InstallationState

# (first state of the phase, state to resume at, option flag, label)
PHASE_SKIPS: Tuple[Tuple[InstallationState, InstallationState, str, str], ...] = (
    (S.KERNEL_COMMANDS, S.MEDIA_IMAGES, "skip_kernel", "kernel data"),
    (S.MEDIA_IMAGES, S.MEDIA_SOUNDS_INIT, "skip_images", "image"),
    (S.MEDIA_SOUNDS_INIT, S.MEDIA_MUSICS_INIT, "skip_sounds", "sound"),
    (S.MEDIA_MUSICS_INIT, S.FIELD_SPAWN_POINTS_AND_SCALE_FACTORS_INIT, "skip_music", "music"),
    (S.FIELD_SPAWN_POINTS_AND_SCALE_FACTORS_INIT, S.CLEAN, "skip_fields", "field"),
    (S.FIELD_CONVERT_MODELS_INIT, S.CLEAN, "skip_field_models", "field model"),
)

# state -> (status line, reader method, writer method)
KERNEL_STEPS: Dict[InstallationState, Tuple[str, str, str]] = {
    S.KERNEL_COMMANDS: ("Extracting command data...", "read_commands", "write_commands"),
    S.KERNEL_ATTACKS: ("Extracting attack data...", "read_attacks", "write_attacks"),
    S.KERNEL_CHARACTERS: ("Extracting character data...", "read_characters", "write_characters"),
    S.KERNEL_ITEMS: ("Extracting item data...", "read_items", "write_items"),
    S.KERNEL_GROWTH: ("Extracting growth data...", "read_growth", "write_growth"),
    S.KERNEL_WEAPONS: ("Extracting weapon data...", "read_weapons", "write_weapons"),
    S.KERNEL_ARMORS: ("Extracting armor data...", "read_armors", "write_armors"),
    S.KERNEL_ACCESSORIES: ("Extracting accessory data...", "read_accessories", "write_accessories"),
    S.KERNEL_MATERIA: ("Extracting materia data...", "read_materia", "write_materia"),
    S.KERNEL_KEY_ITEMS: ("Extracting key item data...", "read_key_items", "write_key_items"),
    S.KERNEL_SUMMON_NAMES: ("Extracting summon names...", "read_summon_names", "write_summon_names"),
    S.KERNEL_SAVEMAP: ("Extracting initial save map...", "read_initial_savemap", "write_initial_savemap"),
}


def next_state(state: InstallationState, options: InstallOptions) -> InstallationState:
    """State that follows *state*, jumping over every phase *options* skips."""
    if state is InstallationState.DONE:
        return state
    candidate = InstallationState(state + 1)
    jumped = True
    while jumped:
        jumped = False
        for first, resume, flag, _label in PHASE_SKIPS:
            if candidate == first and getattr(options, flag):
                candidate = resume
                jumped = True
    return candidate


@dataclass
class SubstepCursor:
    index: int = 0
    total: int = 0

    @property
    def finished(self) -> bool:
        return self.index >= self.total

    @property
    def fraction(self) -> float:
        if self.total <= 0:
            return 0.0
        return min(self.index, self.total) / self.total


def calc_progress(weights: Sequence[int], current: int, fraction: float) -> float:
    """Percentage for the state at position *current*, *fraction* of the way through it."""
    total = sum(weights)
    if total <= 0:
        return 0.0
    completed = sum(weights[:current])
    return 100.0 * (completed + weights[current] * fraction) / total


class WeightedProgressEstimator:
    """Weighted estimate, capped below 100 until done and never moving backwards."""

    CEILING = 99.9

    def __init__(self, config: InstallerConfig) -> None:
        self.weights: List[int] = [config.weight(state.name) for state in InstallationState]
        self.last = 0.0

    def estimate(self, state: InstallationState, cursor: SubstepCursor) -> float:
        if state is InstallationState.DONE:
            self.last = 100.0
            return 100.0
        value = min(calc_progress(self.weights, int(state), cursor.fraction), self.CEILING)
        self.last = max(self.last, value)
        return self.last


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class DataInstaller:
    def __init__(
        self,
        input_root: Path,
        output_root: Path,
        options: Optional[InstallOptions] = None,
        config: Optional[InstallerConfig] = None,
        write_output_line: Optional[Callable[[str], None]] = None,
        decompiler: Optional[ScriptDecompiler] = None,
        exporter: Optional[AssetExporter] = None,
        audio: Optional[AudioConverter] = None,
        naming: Optional[FieldNameLookup] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> None:
        self.input_root = input_root
        self.output_root = output_root
        self.options = options or InstallOptions()
        self.config = config or load_config()
        self.stats = InstallStats()
        self.channel = OutputChannel(write_output_line, self.stats)
        self.decompiler = decompiler or NullScriptDecompiler()
        self.exporter = exporter or RawCopyExporter()
        self.audio = audio or CopyAudioConverter()
        self.naming = naming or FieldNameLookup.from_tables(self.config.name_lookup)
        self.cancel_token = cancel_token or CancellationToken()

        self.state = InstallationState.IDLE
        self.cursor = SubstepCursor()
        self.estimator = WeightedProgressEstimator(self.config)

        self.kernel_reader: Optional[KernelReader] = None
        self.gamedata: Optional[GameDataWriter] = None
        self.media: Optional[MediaInstaller] = None
        self.fields: Optional[FieldInstaller] = None

        # Single actions; an int result sizes the substep state that follows.
        self._actions: Dict[InstallationState, Callable[[], Optional[int]]] = {
            S.IDLE: lambda: None,
            S.CREATE_DIRECTORIES: self.create_directories,
            S.INITIALIZE: self.initialize,
            S.MEDIA_IMAGES: self.media_images,
            S.MEDIA_SOUNDS_INIT: self.media_sounds_init,
            S.MEDIA_SOUNDS_INDEX: self.media_sounds_index,
            S.MEDIA_MUSICS_INIT: self.media_musics_init,
            S.MEDIA_MUSICS_HQ: self.media_musics_hq,
            S.MEDIA_MUSICS_INDEX: self.media_musics_index,
            S.FIELD_SPAWN_POINTS_AND_SCALE_FACTORS_INIT: self.field_collect_init,
            S.FIELD_WRITE_INIT: self.field_write_init,
            S.FIELD_WRITE_END: self.field_write_end,
            S.FIELD_CONVERT_MODELS_INIT: self.field_models_init,
            S.CLEAN: self.clean,
        }
        for state in KERNEL_STEPS:
            self._actions[state] = self._kernel_action(state)
        self._substeps: Dict[InstallationState, Callable[[int], None]] = {
            S.MEDIA_SOUNDS: self._media_step("install_sound"),
            S.MEDIA_MUSICS: self._media_step("install_music"),
            S.FIELD_SPAWN_POINTS_AND_SCALE_FACTORS: self._field_step("collect"),
            S.FIELD_CONVERT: self._field_step("convert"),
            S.FIELD_WRITE: self._field_step("write"),
            S.FIELD_CONVERT_MODELS: self._field_step("convert_model"),
        }

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    def progress(self) -> float:
        """Run one unit of work and return the completion percentage."""
        if self.cancel_token.cancelled:
            raise InstallationCancelled(f"Installation cancelled at {self.state.name}")
        state = self.state
        if state is InstallationState.DONE:
            return 100.0

        step = self._substeps.get(state)
        if step is not None:
            if not self.cursor.finished:
                step(self.cursor.index)
                self.cursor.index += 1
            if self.cursor.finished:
                self._advance()
        else:
            total = self._actions[state]()
            self._advance()
            if total is not None:
                self.cursor = SubstepCursor(0, total)
        return self.estimator.estimate(self.state, self.cursor)

    def run(self) -> InstallStats:
        """Drive `progress()` until the installation is done."""
        last_reported = -1
        while self.progress() < 100.0:
            percent = int(self.estimator.last)
            if percent != last_reported:
                logging.debug("Progress: %d%% (%s)", percent, self.state.name)
                last_reported = percent
        return self.stats

    def _advance(self) -> None:
        previous = self.state
        self.cursor = SubstepCursor()
        self.state = next_state(previous, self.options)
        for first, _resume, flag, label in PHASE_SKIPS:
            if previous < first < self.state and getattr(self.options, flag):
                self.channel.line(f"Skipping {label} installation...")
        if self.state is S.FIELD_CONVERT and self.fields is not None:
            self.fields.finish_collect()
            self.cursor = SubstepCursor(0, len(self.fields.entries))
            self.channel.line("Converting fields...")
        elif self.state is S.DONE:
            self.channel.line("Installation complete")

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def create_directories(self) -> None:
        self.channel.line("Creating directories...")
        for relative in self.config.output_directories:
            path = self.output_root / relative
            try:
                path.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise DirectoryCreationError(f"Failed to create directory {path}: {exc}") from exc

    def _open(self, relative: str, needed: bool) -> Optional[ArchiveSource]:
        if not needed:
            return None
        try:
            return open_archive(self.input_root / relative)
        except (ArchiveError, OSError) as exc:
            self.channel.error(f"Cannot open {relative}: {exc}")
            return None

    def initialize(self) -> None:
        self.channel.line("Initializing installers...")
        options = self.options
        if not options.skip_kernel:
            try:
                archive = KernelArchive.from_path(self.input_root / KERNEL_PATH)
            except OSError as exc:
                self.channel.error(f"Cannot open {KERNEL_PATH}: {exc}")
            else:
                self.kernel_reader = KernelReader(
                    archive,
                    record_counts=self.config.record_counts,
                    codec=TextCodec(self.config.glyph_table),
                    channel=self.channel,
                )
                self.gamedata = GameDataWriter(self.output_root / "gamedata")

        self.media = MediaInstaller(
            self.input_root,
            self.output_root,
            self.config,
            options,
            self.audio,
            channel=self.channel,
            menu_archive=self._open(MENU_ARCHIVE, not options.skip_images),
            midi_archive=self._open(MIDI_ARCHIVE, not options.skip_music),
        )

        if not options.skip_fields:
            field_archive = self._open(FIELD_ARCHIVE, True)
            if field_archive is not None:
                self.fields = FieldInstaller(
                    self.output_root,
                    field_archive,
                    self.config,
                    options,
                    self.decompiler,
                    self.exporter,
                    naming=self.naming,
                    channel=self.channel,
                    char_archive=self._open(CHAR_ARCHIVE, not options.skip_field_models),
                )

    # ------------------------------------------------------------------
    # Kernel
    # ------------------------------------------------------------------

    def _kernel_action(self, state: InstallationState) -> Callable[[], None]:
        status, read_name, write_name = KERNEL_STEPS[state]

        def action() -> None:
            self.channel.line(status)
            if self.kernel_reader is None or self.gamedata is None:
                return
            try:
                records = getattr(self.kernel_reader, read_name)()
                getattr(self.gamedata, write_name)(records)
            except (KernelFormatError, OutOfRange) as exc:
                self.channel.error(f"{state.name}: {exc}")
                return
            self.stats.gamedata_files_written += 1

        return action

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    def _media_step(self, method: str) -> Callable[[int], None]:
        def step(index: int) -> None:
            if self.media is not None:
                getattr(self.media, method)(index)

        return step

    def media_images(self) -> None:
        self.channel.line("Extracting images...")
        if self.media is not None:
            self.media.install_images()

    def media_sounds_init(self) -> int:
        self.channel.line("Extracting sounds...")
        return self.media.install_sounds_init() if self.media is not None else 0

    def media_sounds_index(self) -> None:
        if self.media is not None:
            self.media.write_sound_index()

    def media_musics_init(self) -> int:
        self.channel.line("Extracting music...")
        return self.media.install_musics_init() if self.media is not None else 0

    def media_musics_hq(self) -> None:
        if self.media is not None:
            self.media.install_hq_musics()

    def media_musics_index(self) -> None:
        if self.media is not None:
            self.media.write_musics_index()

    # ------------------------------------------------------------------
    # Fields
    # ------------------------------------------------------------------

    def _field_step(self, method: str) -> Callable[[int], None]:
        def step(index: int) -> None:
            if self.fields is not None:
                getattr(self.fields, method)(index)

        return step

    def field_collect_init(self) -> int:
        self.channel.line("Collecting spawn points and scale factors...")
        if self.fields is None:
            return 0
        try:
            return self.fields.collect_init()
        except (InstallerError, OSError) as exc:
            self.channel.error(f"Cannot read the field map list: {exc}")
            return 0

    def field_write_init(self) -> int:
        self.channel.line("Writing map list...")
        return self.fields.write_init() if self.fields is not None else 0

    def field_write_end(self) -> None:
        if self.fields is not None:
            self.fields.write_end()

    def field_models_init(self) -> int:
        self.channel.line("Converting field models...")
        return self.fields.convert_models_init() if self.fields is not None else 0

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def clean(self) -> None:
        self.channel.line("Cleaning up...")
        if self.options.keep_originals:
            return
        temp_dir = self.output_root / "temp"
        if temp_dir.exists():
            try:
                shutil.rmtree(temp_dir)
            except OSError as exc:
                self.channel.warning(f"Failed to remove {temp_dir}: {exc}")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Convert an original game installation into engine data files."
    )
    parser.add_argument(
        "--input-root",
        type=Path,
        required=True,
        help="Root of the original installation (the directory holding data/).",
    )
    parser.add_argument(
        "--output-root",
        type=Path,
        required=True,
        help="Directory that receives the converted data.",
    )
    parser.add_argument("--config", type=Path, default=None, help="JSON file overriding the default tables")
    parser.add_argument(
        "--decompiler",
        type=Path,
        default=None,
        help="Field script decompiler executable. Without one, scripts only hold gateway stubs.",
    )
    parser.add_argument(
        "--decompiler-arg",
        action="append",
        default=[],
        help="Extra argument for the decompiler (repeatable)",
    )
    parser.add_argument(
        "--exporter",
        type=Path,
        default=None,
        help="Background and model exporter executable. Without one, raw data is copied.",
    )
    parser.add_argument(
        "--exporter-arg",
        action="append",
        default=[],
        help="Extra argument for the exporter (repeatable)",
    )
    parser.add_argument(
        "--audio-converter",
        default=None,
        help="ffmpeg executable used to encode audio. Without one, audio keeps its source format.",
    )
    parser.add_argument("--midi-renderer", default="timidity", help="MIDI renderer (default: %(default)s)")
    parser.add_argument("--sound-dumper", default=None, help="Sound bank splitter executable")
    parser.add_argument("--skip-kernel", action="store_true", help="Do not convert KERNEL.BIN")
    parser.add_argument("--skip-images", action="store_true", help="Do not convert menu images")
    parser.add_argument("--skip-sounds", action="store_true", help="Do not convert sound effects")
    parser.add_argument("--skip-music", action="store_true", help="Do not convert music")
    parser.add_argument("--skip-fields", action="store_true", help="Do not convert field maps")
    parser.add_argument("--skip-field-models", action="store_true", help="Do not convert field models")
    parser.add_argument(
        "--keep-originals",
        action="store_true",
        help="Keep extracted intermediate files (temp/, WAV, MIDI, TEX).",
    )
    parser.add_argument(
        "--only-test-fields",
        action="store_true",
        help="Only convert the maps of the opening sequence.",
    )
    parser.add_argument("--force", action="store_true", help="Install into a non-empty output directory")
    parser.add_argument("--report", type=Path, default=None, help="Path for JSON installation report")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    return parser.parse_args(argv)


def options_from_args(args: argparse.Namespace) -> InstallOptions:
    return InstallOptions(
        skip_kernel=args.skip_kernel,
        skip_images=args.skip_images,
        skip_sounds=args.skip_sounds,
        skip_music=args.skip_music,
        skip_fields=args.skip_fields,
        skip_field_models=args.skip_field_models,
        keep_originals=args.keep_originals,
        only_test_fields=args.only_test_fields,
        force=args.force,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
    )

    input_root = args.input_root.resolve()
    output_root = args.output_root.resolve()
    if not input_root.is_dir():
        logging.error("Input root does not exist: %s", input_root)
        return 1
    if output_root.is_dir() and any(output_root.iterdir()) and not args.force:
        logging.error("Output root %s is not empty; use --force to install over it.", output_root)
        return 1

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        logging.error("%s", exc)
        return 1

    decompiler: Optional[ScriptDecompiler] = None
    if args.decompiler is not None:
        decompiler = ExternalScriptDecompiler(args.decompiler, args.decompiler_arg)
    else:
        logging.warning("No script decompiler provided; field scripts will only hold gateway stubs.")
    exporter: Optional[AssetExporter] = None
    if args.exporter is not None:
        exporter = ExternalAssetExporter(args.exporter, args.exporter_arg)
    audio: Optional[AudioConverter] = None
    if args.audio_converter:
        audio = ExternalAudioConverter(
            ffmpeg=args.audio_converter,
            timidity=args.midi_renderer or None,
            sound_dumper=args.sound_dumper,
        )

    installer = DataInstaller(
        input_root,
        output_root,
        options=options_from_args(args),
        config=config,
        decompiler=decompiler,
        exporter=exporter,
        audio=audio,
    )
    try:
        stats = installer.run()
    except DirectoryCreationError as exc:
        logging.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        installer.cancel_token.cancel()
        logging.error("Installation interrupted at %s", installer.state.name)
        return 1

    if args.report:
        args.report.parent.mkdir(parents=True, exist_ok=True)
        report_payload: Dict[str, object] = {
            "input_root": str(input_root),
            "output_root": str(output_root),
            "options": asdict(options_from_args(args)),
            "stats": stats.as_dict(),
            "failures": stats.failures,
        }
        args.report.write_text(json.dumps(report_payload, indent=2), encoding="utf-8")
        logging.info("Wrote installation report to %s", args.report)

    logging.info(
        "Kernel: %d records / %d failed | Images: %d ok / %d failed | "
        "Audio: %d sounds / %d musics / %d failed | "
        "Fields: %d converted / %d failed / %d skipped | Models: %d ok / %d failed",
        stats.kernel_records_read,
        stats.kernel_records_failed,
        stats.images_converted,
        stats.images_failed,
        stats.sounds_converted,
        stats.musics_converted,
        stats.audio_failed,
        stats.maps_converted,
        stats.maps_failed,
        stats.maps_skipped,
        stats.models_exported,
        stats.models_failed,
    )
    if stats.failures:
        logging.warning("%d problem(s) reported; see the log or report for details.", len(stats.failures))
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
