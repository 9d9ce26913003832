#!/usr/bin/env python3
import json
import tempfile
import unittest
from dataclasses import replace
from pathlib import Path
import sys


SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPT_DIR))

import data_installer as di
import field_data as fd
from install_common import DirectoryCreationError, InstallationCancelled
from install_config import InstallerConfig, InstallOptions
from kernel_data import KernelArchive, KernelSection
from kernel_text import TextCodec


S = di.InstallationState

SKIP_ALL = InstallOptions(
    skip_kernel=True,
    skip_images=True,
    skip_sounds=True,
    skip_music=True,
    skip_fields=True,
    skip_field_models=True,
)
MEDIA_SKIPPED = InstallOptions(skip_images=True, skip_sounds=True, skip_music=True)
ONE_COMMAND = {
    "commands": 1, "attacks": 0, "characters": 0, "items": 0, "weapons": 0,
    "armors": 0, "accessories": 0, "materia": 0, "key_items": 0, "summon_names": 0,
}


class ProgressTests(unittest.TestCase):
    def test_weighted_progress(self) -> None:
        self.assertAlmostEqual(di.calc_progress([1, 3], 1, 0.4), 55.0)
        self.assertAlmostEqual(di.calc_progress([1, 3], 0, 0.0), 0.0)
        self.assertAlmostEqual(di.calc_progress([1, 3], 1, 1.0), 100.0)
        self.assertEqual(di.calc_progress([0, 0], 1, 0.5), 0.0)

    def test_cursor_fraction(self) -> None:
        self.assertEqual(di.SubstepCursor(1, 4).fraction, 0.25)
        self.assertEqual(di.SubstepCursor(0, 0).fraction, 0.0)
        self.assertTrue(di.SubstepCursor(0, 0).finished)

    def test_estimate_is_capped_and_monotonic(self) -> None:
        estimator = di.WeightedProgressEstimator(InstallerConfig())
        late = estimator.estimate(S.CLEAN, di.SubstepCursor(0, 0))
        self.assertLessEqual(late, di.WeightedProgressEstimator.CEILING)
        self.assertEqual(estimator.estimate(S.INITIALIZE, di.SubstepCursor()), late)
        self.assertEqual(estimator.estimate(S.DONE, di.SubstepCursor()), 100.0)


class NextStateTests(unittest.TestCase):
    def test_linear_without_skips(self) -> None:
        options = InstallOptions()
        self.assertEqual(di.next_state(S.IDLE, options), S.CREATE_DIRECTORIES)
        self.assertEqual(di.next_state(S.KERNEL_SAVEMAP, options), S.MEDIA_IMAGES)
        self.assertEqual(di.next_state(S.FIELD_SPAWN_POINTS_AND_SCALE_FACTORS, options), S.FIELD_CONVERT)
        self.assertEqual(di.next_state(S.DONE, options), S.DONE)

    def test_skipped_phases_are_jumped(self) -> None:
        self.assertEqual(di.next_state(S.INITIALIZE, InstallOptions(skip_kernel=True)), S.MEDIA_IMAGES)
        self.assertEqual(di.next_state(S.MEDIA_MUSICS_INDEX, InstallOptions(skip_fields=True)), S.CLEAN)
        self.assertEqual(di.next_state(S.FIELD_WRITE_END, InstallOptions(skip_field_models=True)), S.CLEAN)
        self.assertEqual(di.next_state(S.MEDIA_IMAGES, InstallOptions(skip_sounds=True)), S.MEDIA_MUSICS_INIT)

    def test_consecutive_skips_chain(self) -> None:
        self.assertEqual(
            di.next_state(S.INITIALIZE, InstallOptions(skip_kernel=True, skip_images=True, skip_sounds=True)),
            S.MEDIA_MUSICS_INIT,
        )
        self.assertEqual(di.next_state(S.INITIALIZE, SKIP_ALL), S.CLEAN)


class DataInstallerTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.input_root = Path(self._tmp.name) / "input"
        self.output_root = Path(self._tmp.name) / "output"
        self.input_root.mkdir()
        self.lines = []

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _installer(self, options, config=None, **kwargs):
        return di.DataInstaller(
            self.input_root,
            self.output_root,
            options=options,
            config=config or InstallerConfig(),
            write_output_line=self.lines.append,
            **kwargs,
        )

    def _drive(self, installer):
        values = []
        while not values or values[-1] < 100.0:
            values.append(installer.progress())
            self.assertLess(len(values), 10000)
        return values

    def test_all_phases_skipped(self) -> None:
        installer = self._installer(SKIP_ALL)
        values = self._drive(installer)
        self.assertEqual(installer.state, S.DONE)
        self.assertEqual(values, sorted(values))
        self.assertTrue(all(value <= 99.9 for value in values[:-1]))
        self.assertEqual(installer.progress(), 100.0)
        self.assertEqual(
            self.lines,
            [
                "Creating directories...",
                "Initializing installers...",
                "Skipping kernel data installation...",
                "Skipping image installation...",
                "Skipping sound installation...",
                "Skipping music installation...",
                "Skipping field installation...",
                "Skipping field model installation...",
                "Cleaning up...",
                "Installation complete",
            ],
        )
        self.assertTrue((self.output_root / "gamedata").is_dir())
        self.assertFalse((self.output_root / "temp").exists())

    def test_keep_originals_keeps_temp(self) -> None:
        options = replace(SKIP_ALL, keep_originals=True)
        self._drive(self._installer(options))
        self.assertTrue((self.output_root / "temp" / "char").is_dir())

    def test_kernel_phase_writes_gamedata(self) -> None:
        sections = [b""] * len(KernelSection)
        sections[KernelSection.COMMAND_DATA] = bytes([1, 0x01, 0xFF, 0xFF, 0, 0, 0, 0])
        sections[KernelSection.COMMAND_NAMES] = TextCodec().encode_table(["Attack"])
        kernel = self.input_root / "data" / "kernel" / "KERNEL.BIN"
        kernel.parent.mkdir(parents=True)
        kernel.write_bytes(KernelArchive.build(sections))
        options = replace(SKIP_ALL, skip_kernel=False)
        installer = self._installer(options, InstallerConfig(record_counts=dict(ONE_COMMAND)))
        self._drive(installer)
        self.assertEqual(installer.stats.gamedata_files_written, 12)
        self.assertEqual(installer.stats.kernel_records_read, 1)
        self.assertIn('name = "Attack"', (self.output_root / "gamedata" / "commands.lua").read_text(encoding="utf-8"))
        self.assertIn("Extracting command data...", self.lines)

    def test_missing_kernel_is_reported(self) -> None:
        options = replace(SKIP_ALL, skip_kernel=False)
        installer = self._installer(options)
        self._drive(installer)
        self.assertEqual(installer.stats.gamedata_files_written, 0)
        self.assertTrue(installer.stats.failures[0].startswith("Cannot open data/kernel/KERNEL.BIN"))

    def test_field_phase(self) -> None:
        field_dir = self.input_root / "data" / "field" / "flevel.lgp"
        field_dir.mkdir(parents=True)
        (field_dir / "maplist").write_bytes(fd.encode_map_list(["md1_1"]))
        (field_dir / "md1_1").write_bytes(
            fd.encode_field_file(fd.encode_script_section(["dir"]), fd.encode_triggers_section([]))
        )
        installer = self._installer(replace(MEDIA_SKIPPED, skip_kernel=True))
        values = self._drive(installer)
        self.assertEqual(values, sorted(values))
        self.assertEqual(installer.stats.maps_converted, 1)
        self.assertIn("Converting fields...", self.lines)
        self.assertTrue((self.output_root / "fields" / "md1_1" / "map.xml").is_file())
        self.assertTrue((self.output_root / "maps.xml").is_file())

    def test_cancel_leaves_state_unchanged(self) -> None:
        token = di.CancellationToken()
        installer = self._installer(SKIP_ALL, cancel_token=token)
        installer.progress()
        installer.progress()
        state = installer.state
        token.cancel()
        with self.assertRaises(InstallationCancelled):
            installer.progress()
        self.assertEqual(installer.state, state)

    def test_directory_creation_failure(self) -> None:
        self.output_root.write_bytes(b"not a directory")
        installer = self._installer(SKIP_ALL)
        installer.progress()
        with self.assertRaises(DirectoryCreationError):
            installer.progress()
        self.assertEqual(installer.state, S.CREATE_DIRECTORIES)


class MainTests(unittest.TestCase):
    def test_main_writes_report(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "input").mkdir()
            report = root / "report.json"
            skips = ["--skip-kernel", "--skip-images", "--skip-sounds", "--skip-music", "--skip-fields"]
            argv = ["--input-root", str(root / "input"), "--output-root", str(root / "out"), "--report", str(report)]
            self.assertEqual(di.main(argv + skips), 0)
            payload = json.loads(report.read_text(encoding="utf-8"))
            self.assertTrue(payload["options"]["skip_fields"])
            self.assertEqual(payload["stats"]["maps_converted"], 0)
            self.assertEqual(payload["failures"], [])

            # the output directory now holds the install
            self.assertEqual(di.main(argv + skips), 1)
            self.assertEqual(di.main(argv + skips + ["--force"]), 0)

    def test_missing_input(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            argv = ["--input-root", str(Path(tmp) / "absent"), "--output-root", str(Path(tmp) / "out")]
            self.assertEqual(di.main(argv), 1)


if __name__ == "__main__":
    unittest.main()
