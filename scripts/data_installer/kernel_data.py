#!/usr/bin/env python3
"""
kernel_data.py
==============

Reader for the legacy game-data blob ``KERNEL.BIN``.

The blob is a sequence of gzip-compressed sections, each preceded by a
6-byte header (compressed length, uncompressed length, file type; all u16
LE). Sections 0-8 hold fixed-width binary records, 9-16 their descriptions,
17-24 their names, 25 the battle text and 26 the summon attack names.

`KernelReader` turns those sections into plain record dataclasses. Raw
fields are kept next to the values derived from them (target flags, element
and status lists, damage formula...) so writers can emit either.

Example usage:

    archive = KernelArchive.from_path(Path("data/kernel/KERNEL.BIN"))
    reader = KernelReader(archive)
    for item in reader.read_items():
        print(item.id, item.name)
"""

from __future__ import annotations

import gzip
import logging
import struct
import zlib
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from install_common import InstallStats, KernelFormatError, OutOfRange, OutputChannel
from kernel_text import TextCodec


SECTION_HEADER_SIZE = 6
GZIP_MAGIC = b"\x1f\x8b\x08"

T = TypeVar("T")


class KernelSection(IntEnum):
    COMMAND_DATA = 0
    ATTACK_DATA = 1
    BATTLE_AND_GROWTH_DATA = 2
    INITIAL_SAVEMAP = 3
    ITEM_DATA = 4
    WEAPON_DATA = 5
    ARMOR_DATA = 6
    ACCESSORY_DATA = 7
    MATERIA_DATA = 8
    COMMAND_DESCRIPTIONS = 9
    ATTACK_DESCRIPTIONS = 10
    ITEM_DESCRIPTIONS = 11
    WEAPON_DESCRIPTIONS = 12
    ARMOR_DESCRIPTIONS = 13
    ACCESSORY_DESCRIPTIONS = 14
    MATERIA_DESCRIPTIONS = 15
    KEY_ITEM_DESCRIPTIONS = 16
    COMMAND_NAMES = 17
    ATTACK_NAMES = 18
    ITEM_NAMES = 19
    WEAPON_NAMES = 20
    ARMOR_NAMES = 21
    ACCESSORY_NAMES = 22
    MATERIA_NAMES = 23
    KEY_ITEM_NAMES = 24
    BATTLE_TEXT = 25
    SUMMON_ATTACK_NAMES = 26


DEFAULT_RECORD_COUNTS: Dict[str, int] = {
    "commands": 32,
    "attacks": 128,
    "characters": 9,
    "items": 128,
    "weapons": 128,
    "armors": 32,
    "accessories": 32,
    "materia": 91,
    "key_items": 64,
    "summon_names": 16,
}

# Record sizes in bytes.
COMMAND_SIZE = 8
ATTACK_SIZE = 28
CHARACTER_SIZE = 56
ITEM_SIZE = 28
WEAPON_SIZE = 44
ARMOR_SIZE = 36
ACCESSORY_SIZE = 16
MATERIA_SIZE = 20
SAVE_CHARACTER_SIZE = 132

SAVEMAP_CHARACTERS = 9
SAVEMAP_ITEM_SLOTS = 320
SAVEMAP_MATERIA_SLOTS = 200
EMPTY_ITEM_SLOT = 0xFFFF
EMPTY_MATERIA_SLOT = 0xFFFFFFFF
GROWTH_CURVE_COUNT = 64
NO_STATUS_CHANGE = 0xFF
NO_STAT = 0xFF


# ---------------------------------------------------------------------------
# Binary cursor
# ---------------------------------------------------------------------------


class BinaryCursor:
    """Bounds-checked little-endian reader over an immutable byte buffer."""

    def __init__(self, data: bytes, offset: int = 0) -> None:
        self.data = data
        self.offset = offset

    def _unpack(self, fmt: str, size: int) -> int:
        if self.offset < 0 or self.offset + size > len(self.data):
            raise OutOfRange(
                f"Read of {size} byte(s) at 0x{self.offset:X} past end (0x{len(self.data):X})"
            )
        value = struct.unpack_from(fmt, self.data, self.offset)[0]
        self.offset += size
        return value

    def read_u8(self) -> int:
        return self._unpack("<B", 1)

    def read_s8(self) -> int:
        return self._unpack("<b", 1)

    def read_u16_le(self) -> int:
        return self._unpack("<H", 2)

    def read_s16_le(self) -> int:
        return self._unpack("<h", 2)

    def read_u32_le(self) -> int:
        return self._unpack("<I", 4)

    def read_s32_le(self) -> int:
        return self._unpack("<i", 4)

    def read_bytes(self, count: int) -> bytes:
        if count < 0 or self.offset + count > len(self.data):
            raise OutOfRange(
                f"Read of {count} byte(s) at 0x{self.offset:X} past end (0x{len(self.data):X})"
            )
        chunk = self.data[self.offset:self.offset + count]
        self.offset += count
        return chunk

    def read_u8_list(self, count: int) -> List[int]:
        return list(self.read_bytes(count))

    def peek_u8(self, offset: int) -> int:
        if offset < 0 or offset >= len(self.data):
            raise OutOfRange(f"Peek at 0x{offset:X} past end (0x{len(self.data):X})")
        return self.data[offset]

    def peek_u16_le(self, offset: int) -> int:
        if offset < 0 or offset + 2 > len(self.data):
            raise OutOfRange(f"Peek at 0x{offset:X} past end (0x{len(self.data):X})")
        return struct.unpack_from("<H", self.data, offset)[0]

    def seek(self, offset: int) -> None:
        self.offset = offset

    def tell(self) -> int:
        return self.offset

    def remaining(self) -> int:
        return max(0, len(self.data) - self.offset)


# ---------------------------------------------------------------------------
# Container
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KernelSectionEntry:
    index: int
    offset: int
    compressed_size: int
    uncompressed_size: int
    file_type: int


class KernelArchive:
    def __init__(self, raw: bytes, name: str = "KERNEL.BIN") -> None:
        self.raw = raw
        self.name = name
        self.entries: List[KernelSectionEntry] = self._scan(raw)
        self._cache: Dict[int, bytes] = {}
        if not self.entries:
            logging.warning("%s does not look like a gzip section archive", name)

    @classmethod
    def from_path(cls, path: Path) -> "KernelArchive":
        return cls(path.read_bytes(), name=path.name)

    @staticmethod
    def _scan(raw: bytes) -> List[KernelSectionEntry]:
        entries: List[KernelSectionEntry] = []
        pos = 0
        while pos + SECTION_HEADER_SIZE <= len(raw):
            compressed, uncompressed, file_type = struct.unpack_from("<HHH", raw, pos)
            data_offset = pos + SECTION_HEADER_SIZE
            if data_offset + compressed > len(raw):
                logging.warning("Truncated kernel section %d at 0x%X", len(entries), pos)
                break
            entries.append(
                KernelSectionEntry(
                    index=len(entries),
                    offset=data_offset,
                    compressed_size=compressed,
                    uncompressed_size=uncompressed,
                    file_type=file_type,
                )
            )
            pos = data_offset + compressed
        return entries

    def __len__(self) -> int:
        return len(self.entries)

    def section(self, index: int) -> bytes:
        """Decompressed payload of section *index*."""
        cached = self._cache.get(index)
        if cached is not None:
            return cached
        if index < 0 or index >= len(self.entries):
            raise KernelFormatError(
                f"{self.name} has no section {index} ({len(self.entries)} present)"
            )
        entry = self.entries[index]
        payload = self.raw[entry.offset:entry.offset + entry.compressed_size]
        if not payload.startswith(GZIP_MAGIC):
            raise KernelFormatError(f"{self.name} section {index} is not gzip data")
        try:
            data = gzip.decompress(payload)
        except (OSError, EOFError, zlib.error) as exc:
            raise KernelFormatError(f"{self.name} section {index}: {exc}") from exc
        if entry.uncompressed_size and len(data) != entry.uncompressed_size:
            logging.debug(
                "Section %d size mismatch: header %d, actual %d",
                index,
                entry.uncompressed_size,
                len(data),
            )
        self._cache[index] = data
        return data

    @staticmethod
    def build(sections: Sequence[bytes], file_types: Optional[Sequence[int]] = None) -> bytes:
        """Pack raw sections into the on-disk layout (used to build fixtures)."""
        out = bytearray()
        for index, data in enumerate(sections):
            compressed = gzip.compress(data, mtime=0)
            file_type = file_types[index] if file_types else 0
            out += struct.pack("<HHH", len(compressed), len(data), file_type)
            out += compressed
        return bytes(out)


# ---------------------------------------------------------------------------
# Flag decoding
# ---------------------------------------------------------------------------


TARGET_FLAGS: Tuple[Tuple[int, str], ...] = (
    (0x01, "selection_enabled"),
    (0x02, "default_enemy"),
    (0x04, "default_multiple"),
    (0x08, "toggle_multiple"),
    (0x10, "fixed_row"),
    (0x20, "short_range"),
    (0x40, "all_rows"),
    (0x80, "random"),
)

ELEMENT_NAMES: Tuple[str, ...] = (
    "FIRE", "ICE", "BOLT", "EARTH", "POISON", "GRAVITY", "WATER", "WIND",
    "HOLY", "RESTORATIVE", "CUT", "HIT", "PUNCH", "SHOOT", "SHOUT", "HIDDEN",
)

STATUS_NAMES: Tuple[str, ...] = (
    "DEATH", "NEAR_DEATH", "SLEEP", "POISONED", "SADNESS", "FURY", "CONFU", "SILENCE",
    "HASTE", "SLOW", "STOP", "FROG", "SMALL", "SLOW_NUMB", "PETRIFY", "REGEN",
    "BARRIER", "M_BARRIER", "REFLECT", "DUAL", "SHIELD", "D_SENTENCE", "MANIPULATE",
    "BERSERK", "PEERLESS", "PARALYSIS", "DARKNESS", "DUAL_DRAIN", "DEATH_FORCE",
    "RESIST", "LUCKY_GIRL", "IMPRISONED",
)

EQUIP_CHARACTERS: Tuple[str, ...] = (
    "CLOUD", "BARRET", "TIFA", "AERITH", "RED_XIII", "YUFFIE", "CAIT_SITH",
    "VINCENT", "CID", "YOUNG_CLOUD", "SEPHIROTH",
)

STAT_NAMES: Dict[int, str] = {
    0: "STR", 1: "VIT", 2: "MAG", 3: "SPR", 4: "DEX", 5: "LCK",
    8: "HP", 9: "MP",
}

RESTORE_TYPES: Dict[int, str] = {0: "HP", 1: "MP", 2: "STATUS"}

MATERIA_TYPES: Dict[int, str] = {
    0x0: "INDEPENDENT", 0x1: "INDEPENDENT", 0x2: "SUPPORT", 0x3: "COMMAND",
    0x4: "COMMAND", 0x5: "SUPPORT", 0x6: "INDEPENDENT", 0x7: "COMMAND",
    0x8: "COMMAND", 0x9: "MAGIC", 0xA: "MAGIC", 0xB: "SUMMON", 0xC: "SUMMON",
    0xD: "SUPPORT",
}

ALL_ELEMENTS = 0xFFFF
AP_MULTIPLIER = 100


def decode_flags(raw: int, table: Sequence[Tuple[int, str]]) -> List[str]:
    """Names of the bits of *raw* that are set, in table order."""
    return [name for mask, name in table if raw & mask]


def bit_table(names: Sequence[str]) -> Tuple[Tuple[int, str], ...]:
    return tuple((1 << index, name) for index, name in enumerate(names))


ELEMENT_FLAGS = bit_table(ELEMENT_NAMES)
STATUS_FLAGS = bit_table(STATUS_NAMES)
EQUIP_FLAGS = bit_table(EQUIP_CHARACTERS)


def target_flags(raw: int) -> Dict[str, bool]:
    set_flags = set(decode_flags(raw, TARGET_FLAGS))
    return {name: name in set_flags for _, name in TARGET_FLAGS}


def decode_elements(raw: int) -> List[str]:
    # Every bit set marks a non-elemental entry.
    if raw == ALL_ELEMENTS:
        return []
    return decode_flags(raw, ELEMENT_FLAGS)


def restore_type(condition: int) -> str:
    return RESTORE_TYPES.get(condition, "NONE")


def split_damage(raw: int) -> Tuple[int, int]:
    """(formula, modifier): upper and lower nybble."""
    return raw >> 4, raw & 0x0F


@dataclass(frozen=True)
class StatusChange:
    mode: str
    chance: int
    statuses: Tuple[str, ...]


def decode_status_change(change_raw: int, status_raw: int) -> StatusChange:
    """Mode, chance (out of 63) and statuses of a status-change byte pair.

    ``0xFF`` marks records that change no status; they carry every status
    bit set, so the list is dropped for them.
    """
    if change_raw == NO_STATUS_CHANGE:
        return StatusChange(mode="NONE", chance=0, statuses=())
    if change_raw & 0x80:
        mode = "TOGGLE"
    elif change_raw & 0x40:
        mode = "CURE"
    else:
        mode = "INFLICT"
    return StatusChange(
        mode=mode,
        chance=change_raw & 0x3F,
        statuses=tuple(decode_flags(status_raw, STATUS_FLAGS)),
    )


def decode_restrictions(raw: int) -> Tuple[bool, bool, bool]:
    """(sellable, usable in battle, usable in menu); each bit set forbids one."""
    return not raw & 0x01, not raw & 0x02, not raw & 0x04


def decode_stat_bonuses(stats: Sequence[int], bonuses: Sequence[int]) -> List[Tuple[str, int]]:
    result: List[Tuple[str, int]] = []
    for stat, bonus in zip(stats, bonuses):
        if stat == NO_STAT:
            continue
        result.append((STAT_NAMES.get(stat, f"STAT_{stat}"), bonus))
    return result


def decode_slots(raw_slots: Sequence[int]) -> List[str]:
    """Materia slot kinds: 0 none, 1/5 unlinked, 2/6 left-linked, 3/7 right-linked."""
    kinds = {1: "UNLINKED", 5: "UNLINKED", 2: "LINKED", 3: "LINKED", 6: "LINKED", 7: "LINKED"}
    return [kinds[slot & 0x07] for slot in raw_slots if slot & 0x07 in kinds]


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class CommandRecord:
    id: int
    name: str
    description: str
    cursor_action: int
    target_raw: int
    unknown: int
    camera_single: int
    camera_multiple: int
    target: Dict[str, bool] = field(default_factory=dict)


@dataclass
class AttackRecord:
    id: int
    name: str
    description: str
    accuracy: int
    impact_effect: int
    hurt_animation: int
    unknown: int
    mp: int
    sound: int
    camera_single: int
    camera_multiple: int
    target_raw: int
    effect: int
    damage_raw: int
    power: int
    condition_raw: int
    status_change_raw: int
    additional_effect: int
    additional_effect_modifier: int
    status_raw: int
    element_raw: int
    special_raw: int
    target: Dict[str, bool] = field(default_factory=dict)
    damage_formula: int = 0
    damage_modifier: int = 0
    restore_type: str = "NONE"
    status: StatusChange = StatusChange("NONE", 0, ())
    elements: List[str] = field(default_factory=list)


@dataclass
class ItemRecord:
    id: int
    name: str
    description: str
    unknown: bytes
    camera: int
    restrict_raw: int
    target_raw: int
    effect: int
    damage_raw: int
    power: int
    condition_raw: int
    status_change_raw: int
    additional_effect: int
    additional_effect_modifier: int
    status_raw: int
    element_raw: int
    special_raw: int
    sellable: bool = True
    usable_battle: bool = True
    usable_menu: bool = True
    target: Dict[str, bool] = field(default_factory=dict)
    damage_formula: int = 0
    damage_modifier: int = 0
    restore_type: str = "NONE"
    status: StatusChange = StatusChange("NONE", 0, ())
    elements: List[str] = field(default_factory=list)


@dataclass
class WeaponRecord:
    id: int
    name: str
    description: str
    target_raw: int
    damage_raw: int
    power: int
    status_raw: int
    growth: int
    critical: int
    accuracy: int
    model: int
    alignment: int
    high_sound: int
    camera: int
    equip_raw: int
    element_raw: int
    stats: List[int]
    bonuses: List[int]
    slots_raw: List[int]
    sound: int
    critical_sound: int
    miss_sound: int
    effect: int
    special_raw: int
    restrict_raw: int
    target: Dict[str, bool] = field(default_factory=dict)
    damage_formula: int = 0
    damage_modifier: int = 0
    equip: List[str] = field(default_factory=list)
    elements: List[str] = field(default_factory=list)
    stat_bonuses: List[Tuple[str, int]] = field(default_factory=list)
    slots: List[str] = field(default_factory=list)
    sellable: bool = True
    usable_battle: bool = True
    usable_menu: bool = True


@dataclass
class ArmorRecord:
    id: int
    name: str
    description: str
    element_defense_mode: int
    defense: int
    magic_defense: int
    evasion: int
    magic_evasion: int
    status_raw: int
    slots_raw: List[int]
    growth: int
    equip_raw: int
    element_raw: int
    stats: List[int]
    bonuses: List[int]
    restrict_raw: int
    equip: List[str] = field(default_factory=list)
    elements: List[str] = field(default_factory=list)
    stat_bonuses: List[Tuple[str, int]] = field(default_factory=list)
    slots: List[str] = field(default_factory=list)
    sellable: bool = True
    usable_battle: bool = True
    usable_menu: bool = True


@dataclass
class AccessoryRecord:
    id: int
    name: str
    description: str
    stats: List[int]
    bonuses: List[int]
    element_defense_mode: int
    effect: int
    element_raw: int
    status_raw: int
    equip_raw: int
    restrict_raw: int
    equip: List[str] = field(default_factory=list)
    elements: List[str] = field(default_factory=list)
    statuses: List[str] = field(default_factory=list)
    stat_bonuses: List[Tuple[str, int]] = field(default_factory=list)
    sellable: bool = True
    usable_battle: bool = True
    usable_menu: bool = True


@dataclass
class MateriaRecord:
    id: int
    name: str
    description: str
    ap_levels: List[int]
    equip_effect: int
    status_raw: int
    element_raw: int
    type_raw: int
    attributes: List[int]
    type: str = "INDEPENDENT"
    element: Optional[str] = None
    statuses: List[str] = field(default_factory=list)
    # attack id -> display name, for magic/summon materia.
    attack_names: List[Tuple[int, str]] = field(default_factory=list)


@dataclass
class CharacterRecord:
    id: int
    curves: List[int]
    initial_level: int
    limits: List[int]
    limit_kills: List[int]
    limit_uses: List[int]
    limit_divisors: List[int]


@dataclass
class StatCurve:
    gradients: List[int]
    bases: List[int]


@dataclass
class GrowthRecord:
    bonus_stat: List[int]
    bonus_hp: List[int]
    bonus_mp: List[int]
    curves: List[StatCurve]


@dataclass
class KeyItemRecord:
    id: int
    name: str
    description: str


@dataclass
class SummonNameRecord:
    id: int
    name: str


@dataclass
class SaveCharacter:
    id: int
    name: str
    level: int
    stats: Dict[str, int]
    bonuses: Dict[str, int]
    limit_level: int
    limit_bar: int
    weapon: int
    armor: int
    accessory: int
    status: int
    row: int
    level_progress: int
    learned_limits: int
    kills: int
    limit_uses: List[int]
    hp: int
    base_hp: int
    mp: int
    base_mp: int
    max_hp: int
    max_mp: int
    exp: int
    weapon_materia: List[int]
    armor_materia: List[int]
    exp_to_next: int


@dataclass
class InitialSaveState:
    characters: List[SaveCharacter]
    party: List[int]
    items: List[Tuple[int, int]]
    materia: List[Tuple[int, int]]


# ---------------------------------------------------------------------------
# Reader
# ---------------------------------------------------------------------------


PRIMARY_STATS = ("str", "vit", "mag", "spr", "dex", "lck")


class KernelReader:
    """Reads every record table of a `KernelArchive`.

    Failures are handled per record: the record is skipped, the problem is
    reported on the output channel and reading continues with the next one.
    """

    def __init__(
        self,
        archive: KernelArchive,
        codec: Optional[TextCodec] = None,
        record_counts: Optional[Dict[str, int]] = None,
        channel: Optional[OutputChannel] = None,
    ) -> None:
        self.archive = archive
        self.codec = codec or TextCodec()
        self.record_counts = dict(DEFAULT_RECORD_COUNTS)
        if record_counts:
            self.record_counts.update(record_counts)
        self.channel = channel or OutputChannel()
        self.command_names: Dict[int, str] = {}
        self.attack_names: Dict[int, str] = {}
        self.item_names: Dict[int, str] = {}

    @property
    def stats(self) -> InstallStats:
        return self.channel.stats

    # -- helpers -------------------------------------------------------

    def _text(self, section: KernelSection, index: int) -> str:
        data = self.archive.section(section)
        if index >= self.codec.string_count(data):
            return ""
        return self.codec.read_string(data, index)

    def _read_table(
        self,
        kind: str,
        record_size: int,
        data: bytes,
        parse: Callable[[int, BinaryCursor], Optional[T]],
    ) -> List[T]:
        records: List[T] = []
        count = self.record_counts[kind]
        for index in range(count):
            cursor = BinaryCursor(data, index * record_size)
            try:
                record = parse(index, cursor)
            except OutOfRange as exc:
                self.stats.kernel_records_failed += 1
                self.channel.warning(f"Skipping {kind} record {index}: {exc}")
                continue
            if record is None:
                break
            records.append(record)
            self.stats.kernel_records_read += 1
        logging.debug("Read %d %s record(s)", len(records), kind)
        return records

    # -- commands ------------------------------------------------------

    def read_commands(self) -> List[CommandRecord]:
        data = self.archive.section(KernelSection.COMMAND_DATA)

        def parse(index: int, cursor: BinaryCursor) -> CommandRecord:
            record = CommandRecord(
                id=index,
                name=self._text(KernelSection.COMMAND_NAMES, index),
                description=self._text(KernelSection.COMMAND_DESCRIPTIONS, index),
                cursor_action=cursor.read_u8(),
                target_raw=cursor.read_u8(),
                unknown=cursor.read_u16_le(),
                camera_single=cursor.read_u16_le(),
                camera_multiple=cursor.read_u16_le(),
            )
            record.target = target_flags(record.target_raw)
            return record

        commands = self._read_table("commands", COMMAND_SIZE, data, parse)
        self.command_names = {record.id: record.name for record in commands}
        return commands

    # -- attacks -------------------------------------------------------

    def read_attacks(self) -> List[AttackRecord]:
        data = self.archive.section(KernelSection.ATTACK_DATA)

        def parse(index: int, cursor: BinaryCursor) -> AttackRecord:
            record = AttackRecord(
                id=index,
                name=self._text(KernelSection.ATTACK_NAMES, index),
                description=self._text(KernelSection.ATTACK_DESCRIPTIONS, index),
                accuracy=cursor.read_u8(),
                impact_effect=cursor.read_u8(),
                hurt_animation=cursor.read_u8(),
                unknown=cursor.read_u8(),
                mp=cursor.read_u16_le(),
                sound=cursor.read_u16_le(),
                camera_single=cursor.read_u16_le(),
                camera_multiple=cursor.read_u16_le(),
                target_raw=cursor.read_u8(),
                effect=cursor.read_u8(),
                damage_raw=cursor.read_u8(),
                power=cursor.read_u8(),
                condition_raw=cursor.read_u8(),
                status_change_raw=cursor.read_u8(),
                additional_effect=cursor.read_u8(),
                additional_effect_modifier=cursor.read_u8(),
                status_raw=cursor.read_u32_le(),
                element_raw=cursor.read_u16_le(),
                special_raw=cursor.read_u16_le(),
            )
            record.target = target_flags(record.target_raw)
            record.damage_formula, record.damage_modifier = split_damage(record.damage_raw)
            record.restore_type = restore_type(record.condition_raw)
            record.status = decode_status_change(record.status_change_raw, record.status_raw)
            record.elements = decode_elements(record.element_raw)
            return record

        attacks = self._read_table("attacks", ATTACK_SIZE, data, parse)
        self.attack_names = {record.id: record.name for record in attacks}
        return attacks

    # -- characters and growth -----------------------------------------

    def read_characters(self) -> List[CharacterRecord]:
        data = self.archive.section(KernelSection.BATTLE_AND_GROWTH_DATA)

        def parse(index: int, cursor: BinaryCursor) -> CharacterRecord:
            curves = cursor.read_u8_list(9)
            cursor.read_u8()
            initial_level = cursor.read_u8()
            cursor.read_u8()
            limits = cursor.read_u8_list(12)
            kills = [cursor.read_u16_le() for _ in range(2)]
            uses = [cursor.read_u16_le() for _ in range(6)]
            divisors = [cursor.read_u32_le() for _ in range(4)]
            return CharacterRecord(
                id=index,
                curves=curves,
                initial_level=initial_level,
                limits=limits,
                limit_kills=kills,
                limit_uses=uses,
                limit_divisors=divisors,
            )

        return self._read_table("characters", CHARACTER_SIZE, data, parse)

    def read_growth(self) -> Optional[GrowthRecord]:
        data = self.archive.section(KernelSection.BATTLE_AND_GROWTH_DATA)
        cursor = BinaryCursor(data, self.record_counts["characters"] * CHARACTER_SIZE)
        try:
            bonus_stat = cursor.read_u8_list(12)
            bonus_hp = cursor.read_u8_list(12)
            bonus_mp = cursor.read_u8_list(12)
            curves = []
            for _ in range(GROWTH_CURVE_COUNT):
                gradients = cursor.read_u8_list(8)
                bases = [cursor.read_s8() for _ in range(8)]
                curves.append(StatCurve(gradients=gradients, bases=bases))
        except OutOfRange as exc:
            self.stats.kernel_records_failed += 1
            self.channel.warning(f"Growth tables unreadable: {exc}")
            return None
        self.stats.kernel_records_read += 1
        return GrowthRecord(bonus_stat=bonus_stat, bonus_hp=bonus_hp, bonus_mp=bonus_mp, curves=curves)

    # -- items ---------------------------------------------------------

    def read_items(self) -> List[ItemRecord]:
        data = self.archive.section(KernelSection.ITEM_DATA)

        def parse(index: int, cursor: BinaryCursor) -> Optional[ItemRecord]:
            name = self._text(KernelSection.ITEM_NAMES, index)
            if not name:
                return None
            record = ItemRecord(
                id=index,
                name=name,
                description=self._text(KernelSection.ITEM_DESCRIPTIONS, index),
                unknown=cursor.read_bytes(8),
                camera=cursor.read_u16_le(),
                restrict_raw=cursor.read_u16_le(),
                target_raw=cursor.read_u8(),
                effect=cursor.read_u8(),
                damage_raw=cursor.read_u8(),
                power=cursor.read_u8(),
                condition_raw=cursor.read_u8(),
                status_change_raw=cursor.read_u8(),
                additional_effect=cursor.read_u8(),
                additional_effect_modifier=cursor.read_u8(),
                status_raw=cursor.read_u32_le(),
                element_raw=cursor.read_u16_le(),
                special_raw=cursor.read_u16_le(),
            )
            record.sellable, record.usable_battle, record.usable_menu = decode_restrictions(
                record.restrict_raw
            )
            record.target = target_flags(record.target_raw)
            record.damage_formula, record.damage_modifier = split_damage(record.damage_raw)
            record.restore_type = restore_type(record.condition_raw)
            record.status = decode_status_change(record.status_change_raw, record.status_raw)
            record.elements = decode_elements(record.element_raw)
            return record

        items = self._read_table("items", ITEM_SIZE, data, parse)
        self.item_names = {record.id: record.name for record in items}
        return items

    # -- equipment -----------------------------------------------------

    def read_weapons(self) -> List[WeaponRecord]:
        data = self.archive.section(KernelSection.WEAPON_DATA)

        def parse(index: int, cursor: BinaryCursor) -> WeaponRecord:
            target_raw = cursor.read_u8()
            cursor.read_u8()
            damage_raw = cursor.read_u8()
            cursor.read_u8()
            power = cursor.read_u8()
            status_raw = cursor.read_u8()
            growth = cursor.read_u8()
            critical = cursor.read_u8()
            accuracy = cursor.read_u8()
            model = cursor.read_u8()
            alignment = cursor.read_u8()
            high_sound = cursor.read_u8()
            camera = cursor.read_u16_le()
            equip_raw = cursor.read_u16_le()
            element_raw = cursor.read_u16_le()
            cursor.read_u16_le()
            record = WeaponRecord(
                id=index,
                name=self._text(KernelSection.WEAPON_NAMES, index),
                description=self._text(KernelSection.WEAPON_DESCRIPTIONS, index),
                target_raw=target_raw,
                damage_raw=damage_raw,
                power=power,
                status_raw=status_raw,
                growth=growth,
                critical=critical,
                accuracy=accuracy,
                model=model,
                alignment=alignment,
                high_sound=high_sound,
                camera=camera,
                equip_raw=equip_raw,
                element_raw=element_raw,
                stats=cursor.read_u8_list(4),
                bonuses=cursor.read_u8_list(4),
                slots_raw=cursor.read_u8_list(8),
                sound=cursor.read_u8(),
                critical_sound=cursor.read_u8(),
                miss_sound=cursor.read_u8(),
                effect=cursor.read_u8(),
                special_raw=cursor.read_u16_le(),
                restrict_raw=cursor.read_u16_le(),
            )
            record.target = target_flags(record.target_raw)
            record.damage_formula, record.damage_modifier = split_damage(record.damage_raw)
            record.equip = decode_flags(record.equip_raw, EQUIP_FLAGS)
            record.elements = decode_elements(record.element_raw)
            record.stat_bonuses = decode_stat_bonuses(record.stats, record.bonuses)
            record.slots = decode_slots(record.slots_raw)
            record.sellable, record.usable_battle, record.usable_menu = decode_restrictions(
                record.restrict_raw
            )
            return record

        return self._read_table("weapons", WEAPON_SIZE, data, parse)

    def read_armors(self) -> List[ArmorRecord]:
        data = self.archive.section(KernelSection.ARMOR_DATA)

        def parse(index: int, cursor: BinaryCursor) -> ArmorRecord:
            cursor.read_u8()
            element_defense_mode = cursor.read_u8()
            defense = cursor.read_u8()
            magic_defense = cursor.read_u8()
            evasion = cursor.read_u8()
            magic_evasion = cursor.read_u8()
            status_raw = cursor.read_u8()
            cursor.read_u16_le()
            slots_raw = cursor.read_u8_list(8)
            growth = cursor.read_u8()
            equip_raw = cursor.read_u16_le()
            element_raw = cursor.read_u16_le()
            cursor.read_u16_le()
            stats = cursor.read_u8_list(4)
            bonuses = cursor.read_u8_list(4)
            restrict_raw = cursor.read_u16_le()
            cursor.read_u16_le()
            record = ArmorRecord(
                id=index,
                name=self._text(KernelSection.ARMOR_NAMES, index),
                description=self._text(KernelSection.ARMOR_DESCRIPTIONS, index),
                element_defense_mode=element_defense_mode,
                defense=defense,
                magic_defense=magic_defense,
                evasion=evasion,
                magic_evasion=magic_evasion,
                status_raw=status_raw,
                slots_raw=slots_raw,
                growth=growth,
                equip_raw=equip_raw,
                element_raw=element_raw,
                stats=stats,
                bonuses=bonuses,
                restrict_raw=restrict_raw,
            )
            record.equip = decode_flags(equip_raw, EQUIP_FLAGS)
            record.elements = decode_elements(element_raw)
            record.stat_bonuses = decode_stat_bonuses(stats, bonuses)
            record.slots = decode_slots(slots_raw)
            record.sellable, record.usable_battle, record.usable_menu = decode_restrictions(
                restrict_raw
            )
            return record

        return self._read_table("armors", ARMOR_SIZE, data, parse)

    def read_accessories(self) -> List[AccessoryRecord]:
        data = self.archive.section(KernelSection.ACCESSORY_DATA)

        def parse(index: int, cursor: BinaryCursor) -> AccessoryRecord:
            record = AccessoryRecord(
                id=index,
                name=self._text(KernelSection.ACCESSORY_NAMES, index),
                description=self._text(KernelSection.ACCESSORY_DESCRIPTIONS, index),
                stats=cursor.read_u8_list(2),
                bonuses=cursor.read_u8_list(2),
                element_defense_mode=cursor.read_u8(),
                effect=cursor.read_u8(),
                element_raw=cursor.read_u16_le(),
                status_raw=cursor.read_u32_le(),
                equip_raw=cursor.read_u16_le(),
                restrict_raw=cursor.read_u16_le(),
            )
            record.equip = decode_flags(record.equip_raw, EQUIP_FLAGS)
            record.elements = decode_elements(record.element_raw)
            record.statuses = decode_flags(record.status_raw, STATUS_FLAGS)
            record.stat_bonuses = decode_stat_bonuses(record.stats, record.bonuses)
            record.sellable, record.usable_battle, record.usable_menu = decode_restrictions(
                record.restrict_raw
            )
            return record

        return self._read_table("accessories", ACCESSORY_SIZE, data, parse)

    # -- materia -------------------------------------------------------

    def read_materia(self) -> List[MateriaRecord]:
        data = self.archive.section(KernelSection.MATERIA_DATA)
        if not self.attack_names:
            # Magic and summon materia name their spells.
            self.read_attacks()

        def parse(index: int, cursor: BinaryCursor) -> MateriaRecord:
            ap_levels = [cursor.read_u16_le() * AP_MULTIPLIER for _ in range(4)]
            equip_effect = cursor.read_u8()
            status_bytes = cursor.read_bytes(3)
            status_raw = status_bytes[0] | status_bytes[1] << 8 | status_bytes[2] << 16
            element_raw = cursor.read_u8()
            type_raw = cursor.read_u8()
            attributes = cursor.read_u8_list(6)
            record = MateriaRecord(
                id=index,
                name=self._text(KernelSection.MATERIA_NAMES, index),
                description=self._text(KernelSection.MATERIA_DESCRIPTIONS, index),
                ap_levels=ap_levels,
                equip_effect=equip_effect,
                status_raw=status_raw,
                element_raw=element_raw,
                type_raw=type_raw,
                attributes=attributes,
            )
            record.type = MATERIA_TYPES.get(type_raw & 0x0F, "INDEPENDENT")
            if element_raw < len(ELEMENT_NAMES):
                record.element = ELEMENT_NAMES[element_raw]
            record.statuses = decode_flags(status_raw, STATUS_FLAGS)
            if record.type in ("MAGIC", "SUMMON"):
                record.attack_names = [
                    (attack, self.attack_names.get(attack, f"attack {attack}"))
                    for attack in attributes
                    if attack != NO_STAT
                ]
            return record

        return self._read_table("materia", MATERIA_SIZE, data, parse)

    # -- names only ----------------------------------------------------

    def read_key_items(self) -> List[KeyItemRecord]:
        names = self.archive.section(KernelSection.KEY_ITEM_NAMES)
        count = min(self.record_counts["key_items"], self.codec.string_count(names))
        records: List[KeyItemRecord] = []
        for index in range(count):
            try:
                record = KeyItemRecord(
                    id=index,
                    name=self.codec.read_string(names, index),
                    description=self._text(KernelSection.KEY_ITEM_DESCRIPTIONS, index),
                )
            except OutOfRange as exc:
                self.stats.kernel_records_failed += 1
                self.channel.warning(f"Skipping key item {index}: {exc}")
                continue
            records.append(record)
            self.stats.kernel_records_read += 1
        return records

    def read_summon_names(self) -> List[SummonNameRecord]:
        names = self.archive.section(KernelSection.SUMMON_ATTACK_NAMES)
        count = min(self.record_counts["summon_names"], self.codec.string_count(names))
        records: List[SummonNameRecord] = []
        for index in range(count):
            try:
                records.append(SummonNameRecord(id=index, name=self.codec.read_string(names, index)))
            except OutOfRange as exc:
                self.stats.kernel_records_failed += 1
                self.channel.warning(f"Skipping summon name {index}: {exc}")
                continue
            self.stats.kernel_records_read += 1
        return records

    # -- initial savemap -----------------------------------------------

    def _read_save_character(self, cursor: BinaryCursor) -> SaveCharacter:
        char_id = cursor.read_u8()
        level = cursor.read_u8()
        stats = {name: cursor.read_u8() for name in PRIMARY_STATS}
        bonuses = {name: cursor.read_u8() for name in PRIMARY_STATS}
        limit_level = cursor.read_u8()
        limit_bar = cursor.read_u8()
        raw_name = cursor.read_bytes(12)
        terminator = raw_name.find(b"\xff")
        name_bytes = raw_name if terminator < 0 else raw_name[:terminator]
        name = self.codec.decode_at(name_bytes + b"\xff", 0)
        weapon = cursor.read_u8()
        armor = cursor.read_u8()
        accessory = cursor.read_u8()
        status = cursor.read_u8()
        row = cursor.read_u8()
        level_progress = cursor.read_u8()
        learned_limits = cursor.read_u16_le()
        kills = cursor.read_u16_le()
        limit_uses = [cursor.read_u16_le() for _ in range(3)]
        hp = cursor.read_u16_le()
        base_hp = cursor.read_u16_le()
        mp = cursor.read_u16_le()
        base_mp = cursor.read_u16_le()
        cursor.read_u32_le()
        max_hp = cursor.read_u16_le()
        max_mp = cursor.read_u16_le()
        exp = cursor.read_u32_le()
        weapon_materia = [cursor.read_u32_le() for _ in range(8)]
        armor_materia = [cursor.read_u32_le() for _ in range(8)]
        exp_to_next = cursor.read_u32_le()
        return SaveCharacter(
            id=char_id,
            name=name,
            level=level,
            stats=stats,
            bonuses=bonuses,
            limit_level=limit_level,
            limit_bar=limit_bar,
            weapon=weapon,
            armor=armor,
            accessory=accessory,
            status=status,
            row=row,
            level_progress=level_progress,
            learned_limits=learned_limits,
            kills=kills,
            limit_uses=limit_uses,
            hp=hp,
            base_hp=base_hp,
            mp=mp,
            base_mp=base_mp,
            max_hp=max_hp,
            max_mp=max_mp,
            exp=exp,
            weapon_materia=weapon_materia,
            armor_materia=armor_materia,
            exp_to_next=exp_to_next,
        )

    def read_initial_savemap(self) -> Optional[InitialSaveState]:
        data = self.archive.section(KernelSection.INITIAL_SAVEMAP)
        cursor = BinaryCursor(data)
        characters: List[SaveCharacter] = []
        try:
            for index in range(SAVEMAP_CHARACTERS):
                cursor.seek(index * SAVE_CHARACTER_SIZE)
                characters.append(self._read_save_character(cursor))
            cursor.seek(SAVEMAP_CHARACTERS * SAVE_CHARACTER_SIZE)
            party = cursor.read_u8_list(3)
            cursor.read_u8()
            items: List[Tuple[int, int]] = []
            for _ in range(SAVEMAP_ITEM_SLOTS):
                raw = cursor.read_u16_le()
                if raw == EMPTY_ITEM_SLOT:
                    continue
                items.append((raw & 0x01FF, raw >> 9))
            materia: List[Tuple[int, int]] = []
            for _ in range(SAVEMAP_MATERIA_SLOTS):
                raw = cursor.read_u32_le()
                if raw == EMPTY_MATERIA_SLOT:
                    continue
                materia.append((raw & 0xFF, raw >> 8))
        except OutOfRange as exc:
            self.stats.kernel_records_failed += 1
            self.channel.warning(f"Initial savemap truncated: {exc}")
            return None
        self.stats.kernel_records_read += 1
        return InitialSaveState(characters=characters, party=party, items=items, materia=materia)
