#!/usr/bin/env python3
"""
field_installer.py
==================

Converts the field maps of ``flevel.lgp`` into ``fields/<map>/`` folders.

The work is split in small steps so the driver can report progress between
them:

1. ``collect(i)`` - pass 1 over every map: scale factor, gateways and
   script map jumps go into the spawn point / scale factor builders.
2. ``finish_collect()`` - the builders are frozen.
3. ``convert(i)`` - pass 2: ``script.lua``, ``text.xml``, ``map.xml``,
   ``wm.xml``, ``bg.xml`` and the background image of one map.
4. ``write_init()`` / ``write(i)`` / ``write_end()`` - the ``maps.xml``
   index of every converted map.
5. ``convert_models_init()`` / ``convert_model(i)`` - every field model
   used by a converted map goes through the asset exporter with the
   animations the maps reference.

Output layout per map:

    fields/<map>/map.xml      entity points, triggers, models, tracks
    fields/<map>/script.lua   decompiled script plus gateway entities
    fields/<map>/text.xml     dialogs
    fields/<map>/wm.xml       walkmesh triangles
    fields/<map>/bg.xml       background description
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Set

from archives import ArchiveError, ArchiveSource
from collaborators import (
    AssetExporter,
    DecompiledScript,
    FieldNameLookup,
    ScriptDecompiler,
    ToolError,
)
from field_data import (
    FieldFile,
    FieldTextWriter,
    ModelType,
    Triggers,
    WalkmeshTriangle,
    parse_map_list,
)
from install_common import (
    DecompilerError,
    FieldFormatError,
    InstallerError,
    InstallStats,
    MissingCrossReference,
    OutOfRange,
    OutputChannel,
)
from install_config import MAP_LIST_ENTRY, InstallerConfig, InstallOptions
from spawn_points import (
    GATEWAY_UNITS,
    ModelAnimationDatabase,
    ModelAnimationDbBuilder,
    ScaleFactorTable,
    ScaleFactorTableBuilder,
    SpawnOrigin,
    SpawnPointDatabase,
    SpawnPointDbBuilder,
    SpawnPointRecord,
    field_id_for,
    map_name,
    resolve_entry_points,
)


FIELD_MAPS_DIR = "fields"
FIELD_MODELS_DIR = "models/fields/entities"
LINE_SCALE_FACTOR = 0.0078124970964
SCRIPT_PRELUDE = "EntityContainer = {}\n\n"

MODEL_SCALE = "0.03125 0.03125 0.03125"
MODEL_ROOT_ORIENTATION = "0.7071067811865476 0.7071067811865476 0 0"

BG_SCALE_UP_FACTOR = 3
BG_SCREEN_WIDTH = 320
BG_SCREEN_HEIGHT = 240


def format_number(value: float) -> str:
    return f"{value:.6g}"


def format_vector(values: Iterable[float]) -> str:
    return " ".join(format_number(value) for value in values)


def format_fixed(values: Iterable[float]) -> str:
    return " ".join(f"{value:f}" for value in values)


def gateway_script(entity_name: str, target_map: str, spawn_point: str) -> str:
    """Lua entity that requests a map change when the player walks into the gateway."""
    return (
        f'\nEntityContainer[ "{entity_name}" ] = {{\n\n'
        "    on_start = function(self)\n"
        "        return 0\n"
        "    end,\n\n"
        "    on_approach = function(self, entity)\n"
        "        return 0\n"
        "    end,\n\n"
        "    on_cross = function(self, entity)\n"
        "        return 0\n"
        "    end,\n\n"
        "    on_near = function(self, entity)\n"
        '        if entity == "Cloud" then\n'
        "            if not FFVII.Data.DisableGateways then\n"
        f'                load_field_map_request("{target_map}", "{spawn_point}")\n'
        "            end\n"
        "        end\n"
        "        return 0\n"
        "    end,\n\n"
        "    on_leave = function(self, entity)\n"
        "        return 0\n"
        "    end,\n"
        "}\n\n"
    )


def write_xml(root: ET.Element, path: Path) -> None:
    ET.indent(root)
    path.parent.mkdir(parents=True, exist_ok=True)
    ET.ElementTree(root).write(path, encoding="utf-8", xml_declaration=True)


def walkmesh_xml(triangles: Sequence[WalkmeshTriangle]) -> ET.Element:
    root = ET.Element("walkmesh")
    for triangle in triangles:
        ET.SubElement(
            root,
            "triangle",
            {
                "a": format_vector((triangle.a.x, triangle.a.y, triangle.a.z)),
                "b": format_vector((triangle.b.x, triangle.b.y, triangle.b.z)),
                "c": format_vector((triangle.c.x, triangle.c.y, triangle.c.z)),
                "a_b": str(triangle.access[0]),
                "b_c": str(triangle.access[1]),
                "c_a": str(triangle.access[2]),
            },
        )
    return root


def background_xml(field_name: str, triggers: Triggers) -> ET.Element:
    camera = triggers.camera_range
    limits = (camera.left, camera.top, camera.right, camera.bottom)
    return ET.Element(
        "background2d",
        {
            "image": f"{FIELD_MAPS_DIR}/{field_name}/tiles.png",
            "range": " ".join(str(value * BG_SCALE_UP_FACTOR) for value in limits),
            "clip": f"{BG_SCREEN_WIDTH * BG_SCALE_UP_FACTOR} {BG_SCREEN_HEIGHT * BG_SCALE_UP_FACTOR}",
        },
    )


class FieldInstaller:
    def __init__(
        self,
        output_root: Path,
        field_archive: ArchiveSource,
        config: InstallerConfig,
        options: InstallOptions,
        decompiler: ScriptDecompiler,
        exporter: AssetExporter,
        naming: Optional[FieldNameLookup] = None,
        channel: Optional[OutputChannel] = None,
        char_archive: Optional[ArchiveSource] = None,
    ) -> None:
        self.output_root = output_root
        self.field_archive = field_archive
        self.char_archive = char_archive
        self.config = config
        self.options = options
        self.decompiler = decompiler
        self.exporter = exporter
        self.naming = naming or FieldNameLookup()
        self.channel = channel or OutputChannel()
        self.text_writer = FieldTextWriter(config.glyph_table)

        self.entries: List[str] = []
        self.map_list: List[str] = []
        self.converted_maps: List[str] = []
        self.models: List[str] = []

        self.spawn_builder = SpawnPointDbBuilder(config.inactive_gateway_id)
        self.scale_builder = ScaleFactorTableBuilder()
        self.model_builder = ModelAnimationDbBuilder()
        self.spawn_db: Optional[SpawnPointDatabase] = None
        self.scale_factors: Optional[ScaleFactorTable] = None
        self.model_db: Optional[ModelAnimationDatabase] = None

        self._maps_xml: Optional[ET.Element] = None

    @property
    def stats(self) -> InstallStats:
        return self.channel.stats

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def is_selected(self, name: str) -> bool:
        if not self.config.is_field_entry(name) or self.config.will_crash(name):
            return False
        if self.options.only_test_fields and not self.config.is_test_field(name):
            return False
        return name in self.map_list

    def _load(self, name: str) -> FieldFile:
        return FieldFile.from_compressed(name, self.field_archive.open(name))

    # ------------------------------------------------------------------
    # Pass 1
    # ------------------------------------------------------------------

    def collect_init(self) -> int:
        self.entries = self.field_archive.list_entries()
        self.map_list = parse_map_list(self.field_archive.open(MAP_LIST_ENTRY))
        logging.info("Field archive: %d entries, %d maps listed", len(self.entries), len(self.map_list))
        return len(self.entries)

    def collect(self, index: int) -> None:
        if index >= len(self.entries):
            return
        name = self.entries[index]
        if not self.is_selected(name):
            return
        try:
            field_file = self._load(name)
            field_id = field_id_for(self.map_list, name)
            self.scale_builder.set(field_id, field_file.scale_factor)
            self.spawn_builder.add_gateways(field_id, field_file.triggers.gateways)
        except (ArchiveError, FieldFormatError, OutOfRange, MissingCrossReference) as exc:
            self.stats.maps_failed += 1
            self.channel.error(f"Failed to read field {name}: {exc}")
            return
        try:
            jumps = self.decompiler.collect_map_jumps(name, field_file.raw_script, self.naming)
        except DecompilerError as exc:
            self.stats.scripts_failed += 1
            self.channel.error(f"Map jumps of field {name} not collected: {exc}")
            jumps = []
        for jump in jumps:
            self.spawn_builder.add(
                jump.target_field_id,
                SpawnPointRecord(
                    source_field_id=field_id,
                    gateway_index_or_address=jump.address,
                    gateway=jump.as_gateway(),
                    origin=SpawnOrigin.SCRIPT,
                    entity_name=jump.entity_name,
                    function_name=jump.function_name,
                ),
            )
        self.stats.maps_collected += 1

    def finish_collect(self) -> None:
        self.spawn_db = self.spawn_builder.freeze()
        self.scale_factors = self.scale_builder.freeze()
        logging.info(
            "Collected %d spawn points for %d maps, %d scale factors",
            len(self.spawn_db),
            len(self.spawn_db.targets()),
            len(self.scale_factors),
        )

    # ------------------------------------------------------------------
    # Pass 2
    # ------------------------------------------------------------------

    def convert(self, index: int) -> None:
        if index >= len(self.entries):
            return
        name = self.entries[index]
        if not self.config.is_field_entry(name):
            return
        if self.config.will_crash(name):
            self.stats.maps_skipped += 1
            self.channel.error(f"Skip field {name} due to crash or hang issue.")
            return
        if not self.is_selected(name):
            return
        if self.spawn_db is None:
            self.finish_collect()
        self.channel.line(f" - Converting field: {name}")
        try:
            self.convert_field(self._load(name))
        except (ArchiveError, FieldFormatError, OutOfRange, MissingCrossReference) as exc:
            self.stats.maps_failed += 1
            self.channel.error(f"Failed to convert field {name}: {exc}")
            return
        self.converted_maps.append(name)
        self.stats.maps_converted += 1

    def convert_field(self, field_file: FieldFile) -> None:
        name = field_file.name
        map_dir = self.output_root / FIELD_MAPS_DIR / name
        map_dir.mkdir(parents=True, exist_ok=True)

        gateways = field_file.triggers.gateways
        epilogue = "".join(
            gateway_script(
                f"Gateway{index}",
                map_name(self.map_list, gateway.destination_field_id),
                f"Spawn_{name}_{index}",
            )
            for index, gateway in enumerate(gateways)
            if gateway.is_active(self.config.inactive_gateway_id)
        )
        decompiled = self._decompile(field_file, epilogue)
        if decompiled is None:
            decompiled = DecompiledScript(SCRIPT_PRELUDE + epilogue)
        else:
            self._write_texts(field_file, map_dir)

        map_root = self.map_xml(field_file, decompiled)
        write_xml(map_root, map_dir / "map.xml")
        write_xml(walkmesh_xml(field_file.walkmesh), map_dir / "wm.xml")
        self._export_background(field_file, map_dir)

    def _decompile(self, field_file: FieldFile, epilogue: str) -> Optional[DecompiledScript]:
        """Write script.lua; None when the decompiler fails and the map gets no script or texts."""
        name = field_file.name
        try:
            decompiled = self.decompiler.decompile(
                name, field_file.raw_script, self.naming, SCRIPT_PRELUDE, epilogue
            )
        except DecompilerError as exc:
            self.stats.scripts_failed += 1
            self.channel.error(f"Internal decompiler error in field {name}: {exc}")
            return None
        script_path = self.output_root / FIELD_MAPS_DIR / name / "script.lua"
        script_path.write_text(decompiled.source_text, encoding="utf-8")
        return decompiled

    def _write_texts(self, field_file: FieldFile, map_dir: Path) -> None:
        try:
            self.text_writer.write(map_dir / "text.xml", field_file.name, field_file.raw_script)
        except OutOfRange as exc:
            self.channel.error(f"Failed to read texts from field {field_file.name}: {exc}")

    def _export_background(self, field_file: FieldFile, map_dir: Path) -> None:
        try:
            self.exporter.export_background(field_file, map_dir)
        except (ToolError, OSError) as exc:
            self.channel.error(f"Background of field {field_file.name} not exported: {exc}")
        write_xml(background_xml(field_file.name, field_file.triggers), map_dir / "bg.xml")

    def _clamp_warning(self, text: str) -> None:
        self.stats.spawn_points_clamped += 1
        self.channel.warning(text)

    def map_xml(self, field_file: FieldFile, decompiled: DecompiledScript) -> ET.Element:
        if self.spawn_db is None or self.scale_factors is None:
            self.finish_collect()
        name = field_file.name
        base = f"{FIELD_MAPS_DIR}/{name}"
        root = ET.Element("map")
        ET.SubElement(root, "script", {"file_name": f"{base}/script.lua"})
        ET.SubElement(root, "background2d", {"file_name": f"{base}/bg.xml"})
        ET.SubElement(root, "texts", {"file_name": f"{base}/text.xml"})
        ET.SubElement(root, "walkmesh", {"file_name": f"{base}/wm.xml"})
        ET.SubElement(
            root, "movement_rotation", {"degree": f"{field_file.triggers.movement_rotation:f}"}
        )

        field_id = field_id_for(self.map_list, name)
        points, default_position = resolve_entry_points(
            name,
            field_id,
            self.map_list,
            self.spawn_db,
            self.scale_factors,
            [float(triangle.a.z) for triangle in field_file.walkmesh],
            self._clamp_warning,
        )
        for point in points:
            ET.SubElement(
                root,
                "entity_point",
                {
                    "name": point.name,
                    "position": format_vector(point.position),
                    "rotation": f"{point.rotation:f}",
                },
            )
        self.stats.spawn_points_written += len(points)

        line_names: Set[str] = set()
        for line in decompiled.lines:
            line_names.add(line.name)
            ET.SubElement(
                root,
                "entity_trigger",
                {
                    "name": line.name,
                    "point1": format_fixed(value * LINE_SCALE_FACTOR for value in line.point_a),
                    "point2": format_fixed(value * LINE_SCALE_FACTOR for value in line.point_b),
                    "enabled": "true",
                },
            )

        for entity in decompiled.entities:
            if entity.name in line_names:
                continue
            models = field_file.model_list.models if entity.has_model else []
            if entity.has_model and 0 <= entity.char_id < len(models):
                description = models[entity.char_id]
                self.model_builder.add(description.hrc_name, description.animations)
                position = default_position if description.type is ModelType.PLAYER else (0.0, 0.0, 0.0)
                ET.SubElement(
                    root,
                    "entity_model",
                    {
                        "name": entity.name,
                        "file_name": f"{FIELD_MODELS_DIR}/{self.naming.model_file_name(description.hrc_name)}",
                        "index": str(entity.index),
                        "position": format_vector(position),
                        "direction": "0",
                        "scale": MODEL_SCALE,
                        "root_orientation": MODEL_ROOT_ORIENTATION,
                    },
                )
                continue
            if entity.has_model:
                self.channel.warning(
                    f"In field {name}: entity {entity.name} uses unknown model {entity.char_id}"
                )
            ET.SubElement(root, "entity_script", {"name": entity.name})

        downscale = GATEWAY_UNITS * self.scale_factors.get(field_id)
        for index, gateway in enumerate(field_file.triggers.gateways):
            if not gateway.is_active(self.config.inactive_gateway_id):
                continue
            first, second = gateway.exit_line
            ET.SubElement(
                root,
                "entity_trigger",
                {
                    "name": f"Gateway{index}",
                    "point1": format_vector(first.scaled(downscale)),
                    "point2": format_vector(second.scaled(downscale)),
                    "enabled": "true",
                },
            )

        tracks = ET.SubElement(root, "tracks")
        for index, track in enumerate(field_file.music_tracks):
            ET.SubElement(tracks, "track", {"id": str(index), "track_id": str(track)})
        return root

    # ------------------------------------------------------------------
    # maps.xml
    # ------------------------------------------------------------------

    def write_init(self) -> int:
        self._maps_xml = ET.Element("maps")
        return len(self.converted_maps)

    def write(self, index: int) -> None:
        if self._maps_xml is None or index >= len(self.converted_maps):
            return
        name = self.converted_maps[index]
        ET.SubElement(
            self._maps_xml,
            "map",
            {"name": name, "file_name": f"{FIELD_MAPS_DIR}/{name}/map.xml"},
        )

    def write_end(self) -> Path:
        root = self._maps_xml if self._maps_xml is not None else ET.Element("maps")
        path = self.output_root / "maps.xml"
        write_xml(root, path)
        self._maps_xml = None
        return path

    # ------------------------------------------------------------------
    # Field models
    # ------------------------------------------------------------------

    def convert_models_init(self) -> int:
        self.model_db = self.model_builder.freeze()
        self.models = self.model_db.models()
        if self.char_archive is not None:
            try:
                extracted = self.char_archive.extract_all(self.output_root / "temp" / "char")
                logging.info("Extracted %d field model files", len(extracted))
            except (InstallerError, OSError) as exc:
                self.channel.error(f"Failed to extract field models: {exc}")
        return len(self.models)

    def convert_model(self, index: int) -> None:
        if self.model_db is None or index >= len(self.models):
            return
        model = self.models[index]
        try:
            self.exporter.export_model(
                model,
                sorted(self.model_db.animations(model)),
                self.output_root / "temp" / "char",
                self.output_root / FIELD_MODELS_DIR,
            )
        except (ToolError, OSError) as exc:
            self.stats.models_failed += 1
            self.channel.error(f"Exception converting model {model}: {exc}")
            return
        self.stats.models_exported += 1
