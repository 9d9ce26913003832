#!/usr/bin/env python3
"""
install_config.py
=================

Static tables and user switches of the data installer.

`InstallerConfig` bundles every table the converters consult (step weights,
maps known to break the converter, sprite crops, sound names...). It is
built once by `load_config()` and handed to each component; nothing reads
these tables from module globals at run time.

Example override file (every key is optional):

    {
        "step_weights": {"FIELD_CONVERT": 5},
        "test_fields": ["md1_1", "md1_2"],
        "known_crash_fields": ["del3"],
        "name_lookup": {"models": {"aaaa": "cloud"}}
    }
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from field_data import INACTIVE_GATEWAY_ID
from install_common import InstallerError
from kernel_data import DEFAULT_RECORD_COUNTS
from kernel_text import DEFAULT_GLYPH_TABLE


class ConfigError(InstallerError):
    pass


DEFAULT_STEP_WEIGHTS: Dict[str, int] = {
    "IDLE": 0,
    "MEDIA_IMAGES": 3,
    "MEDIA_SOUNDS": 8,
    "MEDIA_MUSICS": 9,
    "MEDIA_MUSICS_HQ": 2,
    "FIELD_SPAWN_POINTS_AND_SCALE_FACTORS": 3,
    "FIELD_CONVERT": 3,
    "FIELD_WRITE": 2,
    "FIELD_CONVERT_MODELS": 3,
}
DEFAULT_STEP_WEIGHT = 1

# Maps whose background or script takes the converter down.
KNOWN_CRASH_FIELDS: Tuple[str, ...] = (
    "bugin1a",
    "frcyo",
    "fr_e",
    "las4_2",
    "las4_3",
    "lastmap",
    "md_e1",
    "trnad_3",
    "bonevil2",
    "coloin1",
    "del3",
    "elmin4_2",
)

# Opening sequence; converted alone with --only-test-fields.
TEST_FIELDS: Tuple[str, ...] = (
    "startmap",
    "md1stin",
    "md1_1",
    "md1_2",
    "md8_1",
    "nmkin_1",
    "nmkin_2",
    "nmkin_3",
    "nmkin_4",
    "nmkin_5",
    "nrthmk",
    "elevtr1",
    "tin_1",
    "tin_2",
    "rootmap",
    "md8_4",
)

NON_FIELD_SUFFIXES: Tuple[str, ...] = (".tex", ".tut", ".siz")
MAP_LIST_ENTRY = "maplist"

OUTPUT_DIRECTORIES: Tuple[str, ...] = (
    "audio/musics",
    "audio/sounds",
    "fields",
    "fonts",
    "temp",
    "temp/char",
    "gamedata",
    "images/icons",
    "images/other",
    "images/characters",
    "images/fonts",
    "images/reels",
    "images/window",
    "models/fields/entities",
)

# Input locations, relative to the input root.
KERNEL_PATH = "data/kernel/KERNEL.BIN"
FIELD_ARCHIVE = "data/field/flevel.lgp"
CHAR_ARCHIVE = "data/field/char.lgp"
MENU_ARCHIVE = "data/menu/menu_us.lgp"
MIDI_ARCHIVE = "data/midi/midi.lgp"
MUSIC_INDEX = "data/music/music.idx"
SOUND_FORMAT = "data/sound/audio.fmt"
SOUND_DATA = "data/sound/audio.dat"
HQ_MUSIC_DIR = "musics"


@dataclass(frozen=True)
class SpriteCrop:
    target: str
    x: int
    y: int
    width: int
    height: int
    palette: int = 0

    @property
    def box(self) -> Tuple[int, int, int, int]:
        return (self.x, self.y, self.width, self.height)


def _portraits() -> Dict[str, Tuple[SpriteCrop, ...]]:
    portraits = {
        "cloud.tex": 0, "barre.tex": 1, "tifa.tex": 2, "earith.tex": 3, "red.tex": 4,
        "yufi.tex": 5, "ketc.tex": 6, "bins.tex": 7, "cido.tex": 8, "pcloud.tex": 9,
        "pcefi.tex": 10,
    }
    crops = {
        name: (SpriteCrop(f"characters/{index}.png", 0, 0, 83, 95),)
        for name, index in portraits.items()
    }
    crops["buster.tex"] = (SpriteCrop("other/begin_menu.png", 0, 0, 150, 150),)
    crops["choco.tex"] = (SpriteCrop("other/choco.png", 0, 0, 83, 95),)
    return crops


def _fonts() -> Tuple[SpriteCrop, ...]:
    crops: List[SpriteCrop] = []
    for palette in range(16):
        crops.append(SpriteCrop(f"fonts/digits_{palette}.png", 16, 0, 156, 16, palette))
        crops.append(SpriteCrop(f"fonts/timer_{palette}.png", 32, 160, 224, 90, palette))
    crops.append(SpriteCrop("fonts/digits.png", 16, 0, 156, 16, 7))
    crops.append(SpriteCrop("fonts/timer.png", 32, 160, 224, 90, 12))
    return tuple(crops)


def default_sprite_crops() -> Dict[str, Tuple[SpriteCrop, ...]]:
    crops = _portraits()
    weapon_icons = tuple(
        SpriteCrop(f"icons/item_weapon_{index + 1}.png", 192 + 32 * (index % 2), 32 * (index // 2), 32, 32, 1)
        for index in range(8)
    )
    crops["btl_win_c_l.tex"] = weapon_icons + (
        SpriteCrop("icons/item_armor.png", 192, 128, 32, 32, 1),
        SpriteCrop("icons/item_accessory.png", 224, 128, 32, 32, 1),
        SpriteCrop("icons/battle_death.png", 64, 192, 64, 20, 2),
        SpriteCrop("window/b_t.png", 0, 192, 32, 16),
        SpriteCrop("window/b_b.png", 32, 208, 32, 16),
        SpriteCrop("window/b_l.png", 0, 224, 16, 32),
        SpriteCrop("window/b_r.png", 48, 224, 16, 32),
        SpriteCrop("window/c_tl.png", 0, 208, 16, 16),
        SpriteCrop("window/c_tr.png", 16, 208, 16, 16),
        SpriteCrop("window/c_bl.png", 32, 192, 16, 16),
        SpriteCrop("window/c_br.png", 48, 192, 16, 16),
    ) + tuple(
        SpriteCrop(f"icons/pointer_gateway_{index}.png", 96 + 32 * index, 160, 18, 12, 9)
        for index in range(5)
    ) + tuple(
        SpriteCrop(f"icons/pointer_ladder_{index}.png", 96 + 32 * index, 160, 18, 12, 4)
        for index in range(5)
    )
    crops["btl_win_a_h.tex"] = (
        SpriteCrop("icons/item_item.png", 192, 223, 32, 32, 1),
        SpriteCrop("icons/item_weapon_0.png", 220, 223, 32, 32, 1),
        SpriteCrop("icons/battle_bar.png", 32, 0, 76, 18, 1),
        SpriteCrop("icons/battle_limit.png", 112, 0, 48, 10, 1),
        SpriteCrop("icons/battle_hp.png", 160, 0, 28, 10, 1),
        SpriteCrop("icons/battle_mp.png", 192, 0, 30, 10, 1),
        SpriteCrop("icons/battle_barrier.png", 112, 16, 76, 10, 1),
        SpriteCrop("icons/battle_wait.png", 192, 16, 44, 10, 1),
        SpriteCrop("icons/battle_mp_needed.png", 0, 40, 80, 24, 1),
        SpriteCrop("icons/battle_all.png", 240, 32, 16, 16, 7),
        SpriteCrop("icons/battle_x.png", 240, 16, 16, 16, 7),
        SpriteCrop("icons/materia_slot_no_growth.png", 224, 63, 24, 24, 1),
        SpriteCrop("icons/materia_slot_link.png", 227, 95, 14, 24, 1),
        SpriteCrop("icons/bt_up.png", 160, 70, 26, 20, 7),
        SpriteCrop("icons/bt_down.png", 192, 70, 26, 20, 7),
        SpriteCrop("icons/bt_right.png", 160, 102, 26, 20, 7),
        SpriteCrop("icons/bt_left.png", 192, 102, 26, 20, 7),
        SpriteCrop("icons/cursor_crossed.png", 80, 32, 48, 32, 7),
        SpriteCrop("icons/settings_music.png", 101, 131, 30, 30, 1),
        SpriteCrop("icons/settings_fx.png", 133, 131, 30, 30, 1),
    ) + tuple(
        SpriteCrop(f"icons/battle_{index + 1}.png", 130 + 16 * index, 34, 10, 12, 1)
        for index in range(5)
    )
    materia_palettes = (4, 5, 8, 9, 10)
    crops["btl_win_b_h.tex"] = (
        SpriteCrop("icons/slash.png", 176, 0, 8, 16, 1),
        SpriteCrop("icons/battle_name.png", 0, 32, 52, 10, 1),
        SpriteCrop("icons/battle_status.png", 0, 48, 64, 10, 1),
        SpriteCrop("icons/pointer_up.png", 198, 0, 22, 16, 1),
        SpriteCrop("icons/pointer_down.png", 230, 0, 22, 16, 1),
        SpriteCrop("icons/materia_slot.png", 0, 95, 24, 24, 1),
        SpriteCrop("icons/battle_inf.png", 36, 194, 26, 14, 7),
        SpriteCrop("icons/pointer_right.png", 4, 16, 10, 16, 7),
        SpriteCrop("icons/battle_bar_barriers.png", 64, 32, 76, 24, 1),
        SpriteCrop("icons/menu_bar.png", 16, 16, 126, 16, 1),
        SpriteCrop("reels/yeah.png", 64, 64, 64, 30, 11),
        SpriteCrop("reels/luck.png", 64, 98, 64, 30, 11),
        SpriteCrop("reels/hit.png", 128, 64, 64, 30, 11),
        SpriteCrop("reels/bar.png", 128, 97, 64, 30, 11),
        SpriteCrop("reels/miss.png", 192, 64, 64, 30, 11),
        SpriteCrop("reels/choso.png", 192, 98, 64, 30, 11),
    ) + tuple(
        SpriteCrop(f"icons/materia_{index + 1}.png", 3, 67, 18, 18, palette)
        for index, palette in enumerate(materia_palettes)
    ) + tuple(
        SpriteCrop(f"icons/materia_star_{index + 1}.png", 32, 64, 23, 26, palette)
        for index, palette in enumerate(materia_palettes)
    ) + tuple(
        SpriteCrop(f"icons/materia_star_empty_{index + 1}.png", 32, 96, 23, 26, palette)
        for index, palette in enumerate(materia_palettes)
    ) + _fonts()
    crops["btl_win_b_l.tex"] = (
        SpriteCrop("icons/cursor.png", 192, 16, 48, 32, 1),
        SpriteCrop("icons/cursor_left.png", 144, 16, 48, 32, 1),
        SpriteCrop("icons/pointer_position.png", 0, 192, 32, 26, 1),
    )
    return crops


TOTAL_SOUNDS = 750

SOUND_NAMES: Dict[int, Tuple[str, str]] = {
    0: ("Cursor", "Cursor movement in windows and menus."),
    1: ("Window|SaveReady", "Opening some windows, memory cards available on the save menu."),
    2: ("Error|InvalidChoice", "Failure or error, selecting a greyed out option in a choice list."),
    3: ("Back|Cancel", "Cancel button on choices, closing menus."),
    4: ("Miss", "Hit miss during battle."),
    5: ("Cure|Potion", "Cure spell or Potion during battle."),
    6: ("HighPotion", "Hi-Potion during battle."),
    7: ("Cure2|XPotion", "Cure2 or X-Potion during battle."),
    8: ("Fire", "Fire spell."),
    9: ("Fire2", "Fire 2 spell."),
    10: ("Bolt", "Bolt spell."),
    11: ("Bolt2|Thunder", "Bolt2 spell, sometimes thunder on fields."),
    12: ("MagicPrep", "Light around a character about to cast magic."),
    13: ("LeviathanWave", "Part of Leviathan summoning."),
    14: ("GunHit", "Gun sound, heard on fields and battles."),
    15: ("BarretShoot", "Barret's chain gun."),
    16: ("LeviathanScream", "Part of Leviathan summoning."),
    17: ("CloudHit", "Cloud sword hit."),
    19: ("Grenade", "Grenade item in battle."),
    20: ("Ladder|BattleItem", "Grabbing a ladder on fields, reaching for an item in battle."),
    21: ("EnemyDeath", "When most enemies die."),
    22: ("AeriCriticalHit", "Aeris staff critical hit."),
    23: ("Ice", "Ice spell."),
    24: ("Bite", "Enemy bite-type attack."),
    25: ("Flee", "Footsteps escaping from battle."),
    26: ("CloudCriticalHit", "Cloud sword critical hit."),
    27: ("FieldPunch", "Punch sound on fields."),
    28: ("Ice3", "Ice3 spell."),
    29: ("Demi", "Demi sound after dark matter launched."),
    31: ("GateDecipher", "Deciphered gate opening."),
    32: ("MeteoStrike", "Tifa's Meteo Strike limit."),
    33: ("HealingWind", "Aeris' Healing Wind limit."),
    34: ("Punch", "Enemy punch-type attack."),
    35: ("LimitAura", "Orange aura before any limit."),
    36: ("ReactorCore", "Ambient sound in deeper reactor areas."),
    37: ("ReactorBackground", "Ambient sound in less deep reactor areas."),
    38: ("UnderwaterReactor", "Ambient sound in the underwater reactor."),
    39: ("BigShot", "Barret's Big Shot limit."),
    40: ("SummonVanish", "The party disappears before a summon."),
    41: ("Elevator", "Elevator moving."),
    42: ("BattleSwirl", "Screen swirl before battles."),
    43: ("ReelStop", "A reel slot stops."),
    44: ("Load", "Loading a game."),
    45: ("BarretCriticalHit", "Barret's critical gun hit."),
    46: ("BarretMiss|StealMiss", "Barret missing a hit, unsuccessful steal."),
}

MUSIC_DEFAULTS: Dict[int, str] = {
    1: "initial",
    6: "battle",
    9: "boss",
    13: "world_map",
    43: "chocobo_battle",
    45: "victory",
    46: "airship",
    50: "chocobo_ride",
    57: "game_over",
    70: "world_map_danger",
    84: "submarine",
}
HQ_MUSICS: Tuple[str, ...] = ("hearth", "sato", "sensui", "wind")
UNINDEXED_MUSIC_BASE = 1000
UNINDEXED_HQ_MUSIC_ID = 2000


@dataclass(frozen=True)
class InstallerConfig:
    step_weights: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_STEP_WEIGHTS))
    default_step_weight: int = DEFAULT_STEP_WEIGHT
    known_crash_fields: Tuple[str, ...] = KNOWN_CRASH_FIELDS
    test_fields: Tuple[str, ...] = TEST_FIELDS
    inactive_gateway_id: int = INACTIVE_GATEWAY_ID
    glyph_table: Dict[int, str] = field(default_factory=lambda: dict(DEFAULT_GLYPH_TABLE))
    record_counts: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_RECORD_COUNTS))
    output_directories: Tuple[str, ...] = OUTPUT_DIRECTORIES
    sprite_crops: Dict[str, Tuple[SpriteCrop, ...]] = field(default_factory=default_sprite_crops)
    total_sounds: int = TOTAL_SOUNDS
    sound_names: Dict[int, Tuple[str, str]] = field(default_factory=lambda: dict(SOUND_NAMES))
    music_defaults: Dict[int, str] = field(default_factory=lambda: dict(MUSIC_DEFAULTS))
    hq_musics: Tuple[str, ...] = HQ_MUSICS
    name_lookup: Dict[str, Dict[str, str]] = field(default_factory=dict)

    def weight(self, state_name: str) -> int:
        return self.step_weights.get(state_name, self.default_step_weight)

    def is_field_entry(self, name: str) -> bool:
        return name != MAP_LIST_ENTRY and not name.endswith(NON_FIELD_SUFFIXES)

    def will_crash(self, name: str) -> bool:
        return name in self.known_crash_fields

    def is_test_field(self, name: str) -> bool:
        return name in self.test_fields


@dataclass(frozen=True)
class InstallOptions:
    skip_kernel: bool = False
    skip_images: bool = False
    skip_sounds: bool = False
    skip_music: bool = False
    skip_fields: bool = False
    skip_field_models: bool = False
    keep_originals: bool = False
    only_test_fields: bool = False
    force: bool = False


def _string_tuple(value: object, key: str) -> Tuple[str, ...]:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"'{key}' must be a list of strings")
    return tuple(value)


def _int_map(value: object, key: str) -> Dict[str, int]:
    if not isinstance(value, dict) or not all(isinstance(item, int) for item in value.values()):
        raise ConfigError(f"'{key}' must map names to integers")
    return dict(value)


def _id_key(raw_id: str, key: str) -> int:
    """JSON object keys are strings; ids may be written in decimal or hex."""
    try:
        return int(raw_id, 0)
    except ValueError as exc:
        raise ConfigError(f"'{key}' has a non-numeric id {raw_id!r}") from exc


def _sound_names(value: object) -> Dict[int, Tuple[str, str]]:
    if not isinstance(value, dict):
        raise ConfigError("'sound_names' must map sound ids to names")
    names: Dict[int, Tuple[str, str]] = {}
    for raw_id, entry in value.items():
        if isinstance(entry, str):
            entry = [entry]
        if not isinstance(entry, list) or not 1 <= len(entry) <= 2:
            raise ConfigError(f"'sound_names' entry {raw_id} must be a name or [name, description]")
        name, description = (entry + [""])[:2]
        names[_id_key(raw_id, "sound_names")] = (str(name), str(description))
    return names


def _glyph_table(value: object) -> Dict[int, str]:
    if not isinstance(value, dict) or not all(isinstance(glyph, str) for glyph in value.values()):
        raise ConfigError("'glyph_table' must map byte codes to strings")
    table = {_id_key(raw_code, "glyph_table"): glyph for raw_code, glyph in value.items()}
    if not all(0 <= code <= 0xFF for code in table):
        raise ConfigError("'glyph_table' codes must be single bytes")
    return table


def _name_lookup(value: object) -> Dict[str, Dict[str, str]]:
    if not isinstance(value, dict):
        raise ConfigError("'name_lookup' must be an object of tables")
    lookup: Dict[str, Dict[str, str]] = {}
    for table, values in value.items():
        if not isinstance(values, dict) or not all(isinstance(item, str) for item in values.values()):
            raise ConfigError(f"'name_lookup' table {table} must map names to strings")
        lookup[table] = dict(values)
    return lookup


def load_config(path: Optional[Path] = None) -> InstallerConfig:
    """Module defaults, optionally overridden by the JSON file at *path*."""
    config = InstallerConfig()
    if path is None:
        return config
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Cannot read config {path}: {exc}") from exc
    if not isinstance(document, dict):
        raise ConfigError(f"Config {path} must hold a JSON object")

    changes: Dict[str, object] = {}
    if "step_weights" in document:
        weights = dict(config.step_weights)
        weights.update(_int_map(document["step_weights"], "step_weights"))
        changes["step_weights"] = weights
    if "record_counts" in document:
        counts = dict(config.record_counts)
        counts.update(_int_map(document["record_counts"], "record_counts"))
        changes["record_counts"] = counts
    for key in ("known_crash_fields", "test_fields", "hq_musics"):
        if key in document:
            changes[key] = _string_tuple(document[key], key)
    for key in ("inactive_gateway_id", "total_sounds", "default_step_weight"):
        if key in document:
            if not isinstance(document[key], int):
                raise ConfigError(f"'{key}' must be an integer")
            changes[key] = document[key]
    if "sound_names" in document:
        names = dict(config.sound_names)
        names.update(_sound_names(document["sound_names"]))
        changes["sound_names"] = names
    if "glyph_table" in document:
        glyphs = dict(config.glyph_table)
        glyphs.update(_glyph_table(document["glyph_table"]))
        changes["glyph_table"] = glyphs
    if "name_lookup" in document:
        changes["name_lookup"] = _name_lookup(document["name_lookup"])

    unknown = sorted(set(document) - set(changes))
    if unknown:
        logging.warning("Ignoring unknown config keys: %s", ", ".join(unknown))
    logging.debug("Loaded config overrides from %s: %s", path, ", ".join(sorted(changes)))
    return replace(config, **changes)
