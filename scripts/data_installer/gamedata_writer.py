#!/usr/bin/env python3
"""
gamedata_writer.py
==================

Renders kernel records as Lua data scripts the engine loads at start-up:

    Game = Game or {}
    Game.Items = Game.Items or {}

    Game.Items[0] = {
        name = "Potion",
        ...
    }

Output is deterministic: records are written in id order and every table
lists its keys in a fixed order, so two runs over the same input produce
byte-identical files.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from kernel_data import (
    AccessoryRecord,
    ArmorRecord,
    AttackRecord,
    CharacterRecord,
    CommandRecord,
    GrowthRecord,
    InitialSaveState,
    ItemRecord,
    KeyItemRecord,
    MateriaRecord,
    StatusChange,
    SummonNameRecord,
    WeaponRecord,
)
from kernel_text import lua_safe


INDENT = "    "


class LuaComment:
    """A value rendered followed by an inline block comment."""

    def __init__(self, value: object, comment: str) -> None:
        self.value = value
        self.comment = comment


def lua_value(value: object, depth: int = 1) -> str:
    if isinstance(value, LuaComment):
        comment = value.comment.replace("]]", "] ]")
        return f"{lua_value(value.value, depth)} --[[ {comment} ]]"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return f"{value:.6g}"
    if isinstance(value, str):
        return f'"{lua_safe(value)}"'
    if isinstance(value, bytes):
        return lua_value(list(value), depth)
    if isinstance(value, Mapping):
        if not value:
            return "{}"
        pad = INDENT * (depth + 1)
        lines = [f"{pad}{key} = {lua_value(item, depth + 1)}," for key, item in value.items()]
        return "{\n" + "\n".join(lines) + "\n" + INDENT * depth + "}"
    if isinstance(value, (list, tuple)):
        if not value:
            return "{}"
        return "{ " + ", ".join(lua_value(item, depth + 1) for item in value) + " }"
    if value is None:
        return "nil"
    raise TypeError(f"Cannot render {type(value).__name__} as Lua")


def render_lua_table(table: str, entries: Iterable[Tuple[object, Mapping[str, object]]]) -> str:
    """Full Lua script assigning each entry into ``Game.<table>``."""
    lines = ["Game = Game or {}", f"Game.{table} = Game.{table} or {{}}", ""]
    for key, body in entries:
        index = lua_value(key)
        lines.append(f"Game.{table}[{index}] = {lua_value(body, 0)}")
        lines.append("")
    return "\n".join(lines)


def write_lua_table(
    path: Path, table: str, entries: Iterable[Tuple[object, Mapping[str, object]]]
) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_lua_table(table, entries), encoding="utf-8")
    logging.debug("Wrote %s", path)
    return path


# ---------------------------------------------------------------------------
# Record -> Lua table bodies
# ---------------------------------------------------------------------------


def _status(status: StatusChange) -> Dict[str, object]:
    return {"mode": status.mode, "chance": status.chance, "list": list(status.statuses)}


def _bonuses(pairs: Sequence[Tuple[str, int]]) -> Dict[str, object]:
    return {stat.lower(): bonus for stat, bonus in pairs}


def command_table(record: CommandRecord) -> Dict[str, object]:
    return {
        "name": record.name,
        "description": record.description,
        "cursor_action": record.cursor_action,
        "camera_single": record.camera_single,
        "camera_multiple": record.camera_multiple,
        "target": dict(record.target),
    }


def attack_table(record: AttackRecord) -> Dict[str, object]:
    return {
        "name": record.name,
        "description": record.description,
        "accuracy": record.accuracy,
        "impact_effect": record.impact_effect,
        "hurt_animation": record.hurt_animation,
        "mp": record.mp,
        "sound": record.sound,
        "camera_single": record.camera_single,
        "camera_multiple": record.camera_multiple,
        "effect": record.effect,
        "damage_formula": record.damage_formula,
        "damage_modifier": record.damage_modifier,
        "power": record.power,
        "restore": record.restore_type,
        "additional_effect": record.additional_effect,
        "additional_effect_modifier": record.additional_effect_modifier,
        "special": record.special_raw,
        "target": dict(record.target),
        "status": _status(record.status),
        "elements": list(record.elements),
    }


def character_table(record: CharacterRecord) -> Dict[str, object]:
    return {
        "curves": {
            name: curve
            for name, curve in zip(
                ("str", "vit", "mag", "spr", "dex", "lck", "hp", "mp", "exp"), record.curves
            )
        },
        "initial_level": record.initial_level,
        "limits": [record.limits[level * 3:level * 3 + 3] for level in range(4)],
        "limit_kills": record.limit_kills,
        "limit_uses": record.limit_uses,
        "limit_divisors": record.limit_divisors,
    }


def growth_tables(record: GrowthRecord) -> List[Tuple[object, Mapping[str, object]]]:
    entries: List[Tuple[object, Mapping[str, object]]] = [
        (
            "bonus",
            {
                "stat": record.bonus_stat,
                "hp": record.bonus_hp,
                "mp": record.bonus_mp,
            },
        )
    ]
    for index, curve in enumerate(record.curves):
        entries.append((index, {"gradients": curve.gradients, "bases": curve.bases}))
    return entries


def item_table(record: ItemRecord) -> Dict[str, object]:
    return {
        "name": record.name,
        "description": record.description,
        "camera": record.camera,
        "sellable": record.sellable,
        "usable_battle": record.usable_battle,
        "usable_menu": record.usable_menu,
        "effect": record.effect,
        "damage_formula": record.damage_formula,
        "damage_modifier": record.damage_modifier,
        "power": record.power,
        "restore": record.restore_type,
        "additional_effect": record.additional_effect,
        "additional_effect_modifier": record.additional_effect_modifier,
        "special": record.special_raw,
        "target": dict(record.target),
        "status": _status(record.status),
        "elements": list(record.elements),
    }


def weapon_table(record: WeaponRecord) -> Dict[str, object]:
    return {
        "name": record.name,
        "description": record.description,
        "damage_formula": record.damage_formula,
        "damage_modifier": record.damage_modifier,
        "power": record.power,
        "status": record.status_raw,
        "growth": record.growth,
        "critical": record.critical,
        "accuracy": record.accuracy,
        "model": record.model,
        "alignment": record.alignment,
        "camera": record.camera,
        "sound": record.sound,
        "critical_sound": record.critical_sound,
        "miss_sound": record.miss_sound,
        "high_sound": record.high_sound,
        "effect": record.effect,
        "special": record.special_raw,
        "sellable": record.sellable,
        "usable_battle": record.usable_battle,
        "usable_menu": record.usable_menu,
        "target": dict(record.target),
        "equip": list(record.equip),
        "elements": list(record.elements),
        "stat_bonus": _bonuses(record.stat_bonuses),
        "slots": list(record.slots),
    }


def armor_table(record: ArmorRecord) -> Dict[str, object]:
    return {
        "name": record.name,
        "description": record.description,
        "element_defense_mode": record.element_defense_mode,
        "defense": record.defense,
        "magic_defense": record.magic_defense,
        "evasion": record.evasion,
        "magic_evasion": record.magic_evasion,
        "status": record.status_raw,
        "growth": record.growth,
        "sellable": record.sellable,
        "usable_battle": record.usable_battle,
        "usable_menu": record.usable_menu,
        "equip": list(record.equip),
        "elements": list(record.elements),
        "stat_bonus": _bonuses(record.stat_bonuses),
        "slots": list(record.slots),
    }


def accessory_table(record: AccessoryRecord) -> Dict[str, object]:
    return {
        "name": record.name,
        "description": record.description,
        "element_defense_mode": record.element_defense_mode,
        "effect": record.effect,
        "sellable": record.sellable,
        "usable_battle": record.usable_battle,
        "usable_menu": record.usable_menu,
        "equip": list(record.equip),
        "elements": list(record.elements),
        "statuses": list(record.statuses),
        "stat_bonus": _bonuses(record.stat_bonuses),
    }


def materia_table(record: MateriaRecord) -> Dict[str, object]:
    body: Dict[str, object] = {
        "name": record.name,
        "description": record.description,
        "type": record.type,
        "ap": record.ap_levels,
        "equip_effect": record.equip_effect,
        "element": record.element,
        "statuses": list(record.statuses),
    }
    if record.attack_names:
        body["attacks"] = [LuaComment(attack, name) for attack, name in record.attack_names]
    else:
        body["attributes"] = record.attributes
    return body


def key_item_table(record: KeyItemRecord) -> Dict[str, object]:
    return {"name": record.name, "description": record.description}


def summon_table(record: SummonNameRecord) -> Dict[str, object]:
    return {"name": record.name}


def savemap_tables(state: InitialSaveState) -> List[Tuple[object, Mapping[str, object]]]:
    entries: List[Tuple[object, Mapping[str, object]]] = []
    for character in state.characters:
        entries.append(
            (
                f"character_{character.id}",
                {
                    "id": character.id,
                    "name": character.name,
                    "level": character.level,
                    "stats": dict(character.stats),
                    "bonus": dict(character.bonuses),
                    "limit_level": character.limit_level,
                    "limit_bar": character.limit_bar,
                    "weapon": character.weapon,
                    "armor": character.armor,
                    "accessory": character.accessory,
                    "status": character.status,
                    "row": character.row,
                    "level_progress": character.level_progress,
                    "learned_limits": character.learned_limits,
                    "kills": character.kills,
                    "limit_uses": character.limit_uses,
                    "hp": character.hp,
                    "base_hp": character.base_hp,
                    "max_hp": character.max_hp,
                    "mp": character.mp,
                    "base_mp": character.base_mp,
                    "max_mp": character.max_mp,
                    "exp": character.exp,
                    "exp_to_next": character.exp_to_next,
                    "weapon_materia": character.weapon_materia,
                    "armor_materia": character.armor_materia,
                },
            )
        )
    entries.append(("party", {"members": state.party}))
    entries.append(
        ("items", {f"slot_{slot}": [item, qty] for slot, (item, qty) in enumerate(state.items)})
    )
    entries.append(
        ("materia", {f"slot_{slot}": [mat, ap] for slot, (mat, ap) in enumerate(state.materia)})
    )
    return entries


def records_by_id(records: Iterable[object], render) -> List[Tuple[object, Mapping[str, object]]]:
    return [(record.id, render(record)) for record in sorted(records, key=lambda r: r.id)]


class GameDataWriter:
    """Writes each kernel table to ``<output>/<file>.lua``."""

    def __init__(self, output_dir: Path) -> None:
        self.output_dir = output_dir

    def _write(self, file_name: str, table: str, entries) -> Path:
        return write_lua_table(self.output_dir / file_name, table, entries)

    def write_commands(self, records: Sequence[CommandRecord]) -> Path:
        return self._write("commands.lua", "Commands", records_by_id(records, command_table))

    def write_attacks(self, records: Sequence[AttackRecord]) -> Path:
        return self._write("attacks.lua", "Attacks", records_by_id(records, attack_table))

    def write_characters(self, records: Sequence[CharacterRecord]) -> Path:
        return self._write("characters.lua", "Characters", records_by_id(records, character_table))

    def write_growth(self, record: Optional[GrowthRecord]) -> Path:
        entries = growth_tables(record) if record is not None else []
        return self._write("growth.lua", "Growth", entries)

    def write_items(self, records: Sequence[ItemRecord]) -> Path:
        return self._write("items.lua", "Items", records_by_id(records, item_table))

    def write_weapons(self, records: Sequence[WeaponRecord]) -> Path:
        return self._write("weapons.lua", "Weapons", records_by_id(records, weapon_table))

    def write_armors(self, records: Sequence[ArmorRecord]) -> Path:
        return self._write("armors.lua", "Armors", records_by_id(records, armor_table))

    def write_accessories(self, records: Sequence[AccessoryRecord]) -> Path:
        return self._write(
            "accessories.lua", "Accessories", records_by_id(records, accessory_table)
        )

    def write_materia(self, records: Sequence[MateriaRecord]) -> Path:
        return self._write("materia.lua", "Materia", records_by_id(records, materia_table))

    def write_key_items(self, records: Sequence[KeyItemRecord]) -> Path:
        return self._write("key_items.lua", "KeyItems", records_by_id(records, key_item_table))

    def write_summon_names(self, records: Sequence[SummonNameRecord]) -> Path:
        return self._write("summons.lua", "Summons", records_by_id(records, summon_table))

    def write_initial_savemap(self, state: Optional[InitialSaveState]) -> Path:
        entries = savemap_tables(state) if state is not None else []
        return self._write("initial_savemap.lua", "InitialSave", entries)
