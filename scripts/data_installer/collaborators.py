#!/usr/bin/env python3
"""
collaborators.py
================

External collaborators of the installer: the field-script decompiler, the
asset exporter (backgrounds, field models), the audio tools and the naming
lookup shared by all of them.

Every collaborator has a subprocess-backed implementation that shells out
to a configured command, and a fallback that needs no external tool:

* `ExternalScriptDecompiler` / `NullScriptDecompiler`
* `ExternalAssetExporter` / `RawCopyExporter`
* `ExternalAudioConverter` / `CopyAudioConverter`

The external decompiler is invoked as

    <command> [args] --mode decompile|map-jumps --name <map> --names names.json input.bin

and must print a JSON document on stdout:

    {"script": "...lua...",
     "lines": [{"name": "L0", "point_a": [x, y, z], "point_b": [x, y, z]}],
     "entities": [{"name": "cl", "index": 0, "char_id": 0}],
     "map_jumps": [{"target_field_id": 3, "entity": "dir", "function": "main",
                    "address": 120, "x": 10, "y": 20, "triangle": 4, "direction": 64}]}
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from field_data import FieldFile, FieldSection, Gateway, Vertex, parse_script_header
from install_common import DecompilerError, InstallerError, OutOfRange


class ToolError(InstallerError):
    """An external tool exited with an error."""


# ---------------------------------------------------------------------------
# Naming
# ---------------------------------------------------------------------------


class FieldNameLookup:
    """Friendly names for script variables, entities, functions and models.

    Every lookup falls back to the raw identifier.
    """

    def __init__(
        self,
        variables: Optional[Mapping[str, str]] = None,
        entities: Optional[Mapping[str, str]] = None,
        functions: Optional[Mapping[str, str]] = None,
        animations: Optional[Mapping[str, str]] = None,
        models: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.variables = dict(variables or {})
        self.entities = dict(entities or {})
        self.functions = dict(functions or {})
        self.animations = dict(animations or {})
        self.models = dict(models or {})

    def variable_name(self, bank: int, address: int) -> str:
        key = f"{bank}_{address}"
        return self.variables.get(key, f"var_{key}")

    def entity_name(self, name: str) -> str:
        return self.entities.get(name, name)

    def function_name(self, entity: str, function: str) -> str:
        return self.functions.get(f"{entity}.{function}", function)

    def animation_name(self, model: str, index: int) -> str:
        return self.animations.get(f"{model}.{index}", str(index))

    def model_name(self, base_name: str) -> str:
        return self.models.get(base_name.lower(), base_name.lower())

    def model_file_name(self, hrc_name: str) -> str:
        """Converted mesh file name of a field model (``aaaa.hrc`` -> ``cloud.mesh``)."""
        base = Path(hrc_name).name.split(".", 1)[0]
        return f"{self.model_name(base)}.mesh"

    def to_json(self) -> Dict[str, Dict[str, str]]:
        return {
            "variables": self.variables,
            "entities": self.entities,
            "functions": self.functions,
            "animations": self.animations,
            "models": self.models,
        }

    @classmethod
    def from_tables(cls, tables: Mapping[str, Mapping[str, str]]) -> "FieldNameLookup":
        known = ("variables", "entities", "functions", "animations", "models")
        unknown = sorted(set(tables) - set(known))
        if unknown:
            logging.warning("Ignoring unknown name tables: %s", ", ".join(unknown))
        return cls(**{name: tables[name] for name in known if name in tables})


# ---------------------------------------------------------------------------
# Script decompiler
# ---------------------------------------------------------------------------

Point = Tuple[float, float, float]


@dataclass(frozen=True)
class Line:
    name: str
    point_a: Point
    point_b: Point


@dataclass(frozen=True)
class FieldEntity:
    name: str
    index: int
    char_id: int = -1

    @property
    def has_model(self) -> bool:
        return self.char_id != -1


@dataclass(frozen=True)
class MapJump:
    target_field_id: int
    entity_name: str
    function_name: str
    address: int
    destination: Vertex
    direction: int

    def as_gateway(self) -> Gateway:
        origin = Vertex(0, 0, 0)
        return Gateway((origin, origin), self.destination, self.target_field_id, self.direction)


@dataclass
class DecompiledScript:
    source_text: str
    lines: List[Line] = field(default_factory=list)
    entities: List[FieldEntity] = field(default_factory=list)


class ScriptDecompiler:
    def decompile(
        self,
        name: str,
        raw_script: bytes,
        naming: FieldNameLookup,
        prelude: str = "",
        epilogue: str = "",
    ) -> DecompiledScript:
        raise NotImplementedError

    def collect_map_jumps(
        self, name: str, raw_script: bytes, naming: FieldNameLookup
    ) -> List[MapJump]:
        raise NotImplementedError


class NullScriptDecompiler(ScriptDecompiler):
    """Emits only the prelude and epilogue; entities come from the script header."""

    def decompile(self, name, raw_script, naming, prelude="", epilogue=""):
        try:
            names = parse_script_header(raw_script).entity_names
        except OutOfRange as exc:
            raise DecompilerError(f"{name}: script header unreadable: {exc}") from exc
        entities = [
            FieldEntity(naming.entity_name(entity), index) for index, entity in enumerate(names)
        ]
        return DecompiledScript(prelude + epilogue, [], entities)

    def collect_map_jumps(self, name, raw_script, naming):
        return []


def _point(raw: Sequence[float]) -> Point:
    x, y, z = (float(value) for value in raw)
    return (x, y, z)


class ExternalScriptDecompiler(ScriptDecompiler):
    def __init__(self, command: Path, args: Sequence[str] = (), timeout: float = 120.0) -> None:
        self.command = command
        self.args = list(args)
        self.timeout = timeout

    def _run(self, mode: str, name: str, raw_script: bytes, naming: FieldNameLookup) -> dict:
        with tempfile.TemporaryDirectory(prefix="decompile_") as tmp:
            work = Path(tmp)
            script_path = work / f"{name}.bin"
            names_path = work / "names.json"
            script_path.write_bytes(raw_script)
            names_path.write_text(json.dumps(naming.to_json(), sort_keys=True), encoding="utf-8")
            cmd = [str(self.command)] + self.args + [
                "--mode", mode, "--name", name, "--names", str(names_path), str(script_path)
            ]
            logging.debug("Executing decompiler: %s", " ".join(cmd))
            try:
                completed = subprocess.run(
                    cmd, check=False, capture_output=True, text=True, timeout=self.timeout
                )
            except (OSError, subprocess.TimeoutExpired) as exc:
                raise DecompilerError(f"{name}: decompiler could not run: {exc}") from exc
        if completed.returncode != 0:
            raise DecompilerError(
                f"{name}: decompiler exit code {completed.returncode}\n{completed.stderr}"
            )
        try:
            document = json.loads(completed.stdout)
        except json.JSONDecodeError as exc:
            raise DecompilerError(f"{name}: decompiler printed invalid JSON: {exc}") from exc
        if not isinstance(document, dict):
            raise DecompilerError(f"{name}: decompiler output is not a JSON object")
        return document

    def decompile(self, name, raw_script, naming, prelude="", epilogue=""):
        document = self._run("decompile", name, raw_script, naming)
        try:
            lines = [
                Line(item["name"], _point(item["point_a"]), _point(item["point_b"]))
                for item in document.get("lines", [])
            ]
            entities = [
                FieldEntity(item["name"], int(item["index"]), int(item.get("char_id", -1)))
                for item in document.get("entities", [])
            ]
        except (KeyError, TypeError, ValueError) as exc:
            raise DecompilerError(f"{name}: malformed decompiler output: {exc}") from exc
        return DecompiledScript(prelude + document.get("script", "") + epilogue, lines, entities)

    def collect_map_jumps(self, name, raw_script, naming):
        document = self._run("map-jumps", name, raw_script, naming)
        try:
            return [
                MapJump(
                    target_field_id=int(item["target_field_id"]),
                    entity_name=item["entity"],
                    function_name=item["function"],
                    address=int(item["address"]),
                    destination=Vertex(int(item["x"]), int(item["y"]), int(item["triangle"])),
                    direction=int(item["direction"]),
                )
                for item in document.get("map_jumps", [])
            ]
        except (KeyError, TypeError, ValueError) as exc:
            raise DecompilerError(f"{name}: malformed map jump list: {exc}") from exc


# ---------------------------------------------------------------------------
# Asset exporter
# ---------------------------------------------------------------------------


def run_tool(cmd: Sequence[str], what: str, timeout: Optional[float] = None) -> None:
    logging.debug("Executing %s: %s", what, " ".join(cmd))
    try:
        completed = subprocess.run(
            list(cmd), check=False, capture_output=True, text=True, timeout=timeout
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise ToolError(f"{what}: could not run {cmd[0]}: {exc}") from exc
    if completed.returncode != 0:
        raise ToolError(f"{what}: exit code {completed.returncode}\n{completed.stderr}")


class AssetExporter:
    def export_background(self, field_file: FieldFile, target_dir: Path) -> Path:
        """Write the background atlas of a map; returns the image path."""
        raise NotImplementedError

    def export_model(
        self, model_name: str, animations: Sequence[str], source_dir: Path, target_dir: Path
    ) -> List[Path]:
        raise NotImplementedError


class ExternalAssetExporter(AssetExporter):
    def __init__(self, command: Path, args: Sequence[str] = ()) -> None:
        self.command = command
        self.args = list(args)

    def export_background(self, field_file, target_dir):
        target_dir.mkdir(parents=True, exist_ok=True)
        image = target_dir / "tiles.png"
        with tempfile.TemporaryDirectory(prefix="background_") as tmp:
            work = Path(tmp)
            for section in (FieldSection.PALETTE, FieldSection.BACKGROUND):
                (work / f"{section.name.lower()}.bin").write_bytes(field_file.section(section))
            cmd = [str(self.command)] + self.args + [
                "background",
                str(work / "palette.bin"),
                str(work / "background.bin"),
                str(image),
            ]
            run_tool(cmd, f"background of {field_file.name}")
        return image

    def export_model(self, model_name, animations, source_dir, target_dir):
        target_dir.mkdir(parents=True, exist_ok=True)
        cmd = [str(self.command)] + self.args + [
            "model",
            str(source_dir / model_name),
            str(target_dir),
        ]
        for animation in sorted(animations):
            cmd += ["--animation", str(source_dir / animation)]
        run_tool(cmd, f"model {model_name}")
        stem = Path(model_name).stem
        return sorted(target_dir.glob(f"{stem}*"))


class RawCopyExporter(AssetExporter):
    """Keeps the raw legacy data next to the converted maps."""

    def export_background(self, field_file, target_dir):
        target_dir.mkdir(parents=True, exist_ok=True)
        raw = target_dir / "tiles.bin"
        raw.write_bytes(
            field_file.section(FieldSection.PALETTE) + field_file.section(FieldSection.BACKGROUND)
        )
        return raw

    def export_model(self, model_name, animations, source_dir, target_dir):
        target_dir.mkdir(parents=True, exist_ok=True)
        written: List[Path] = []
        for name in [model_name] + sorted(animations):
            source = source_dir / name
            if not source.is_file():
                logging.debug("Raw model part missing: %s", source)
                continue
            destination = target_dir / name
            shutil.copyfile(source, destination)
            written.append(destination)
        if not written:
            raise ToolError(f"model {model_name}: no source files under {source_dir}")
        return written


# ---------------------------------------------------------------------------
# Audio
# ---------------------------------------------------------------------------


class AudioConverter:
    target_extension = ".ogg"

    def convert(self, source: Path, target: Path) -> Path:
        raise NotImplementedError

    def render_midi(self, source: Path, target: Path) -> Path:
        raise NotImplementedError

    def dump_sounds(self, fmt_path: Path, dat_path: Path, target_dir: Path) -> None:
        raise NotImplementedError


class ExternalAudioConverter(AudioConverter):
    """ffmpeg for encoding, TiMidity++ for MIDI and an sfxdump-compatible sound splitter."""

    def __init__(
        self,
        ffmpeg: str = "ffmpeg",
        timidity: Optional[str] = "timidity",
        sound_dumper: Optional[str] = None,
    ) -> None:
        self.ffmpeg = ffmpeg
        self.timidity = timidity
        self.sound_dumper = sound_dumper

    def convert(self, source, target):
        target = target.with_suffix(self.target_extension)
        run_tool(
            [self.ffmpeg, "-hide_banner", "-loglevel", "panic", "-y", "-i", str(source), str(target)],
            f"encode {source.name}",
        )
        return target

    def render_midi(self, source, target):
        if not self.timidity:
            raise ToolError(f"render {source.name}: no MIDI renderer configured")
        wav = target.with_suffix(".wav")
        run_tool(
            [self.timidity, "--quiet=3", str(source), "-Ow", "-o", str(wav)],
            f"render {source.name}",
        )
        try:
            return self.convert(wav, target)
        finally:
            wav.unlink(missing_ok=True)

    def dump_sounds(self, fmt_path, dat_path, target_dir):
        if not self.sound_dumper:
            raise ToolError("no sound bank splitter configured")
        target_dir.mkdir(parents=True, exist_ok=True)
        run_tool(
            [self.sound_dumper, str(fmt_path), str(dat_path), str(target_dir)],
            "split sound bank",
        )


class CopyAudioConverter(AudioConverter):
    """Leaves audio in its source format."""

    target_extension = ""

    def convert(self, source, target):
        target = target.with_suffix(source.suffix)
        if source.resolve() != target.resolve():
            shutil.copyfile(source, target)
        return target

    def render_midi(self, source, target):
        return self.convert(source, target)

    def dump_sounds(self, fmt_path, dat_path, target_dir):
        raise ToolError("no sound bank splitter configured")
