#!/usr/bin/env python3
"""
spawn_points.py
===============

Cross-map spawn point resolution.

Entering a map through a gateway or a script map jump must place the
player on the destination map, but the destination coordinates are stored
in the *source* map, in the destination map's units. Resolution therefore
takes two passes over the map set:

1. Collect: every map contributes its scale factor and, for every gateway
   and map jump it owns, one `SpawnPointRecord` keyed by the destination
   map id. Collection goes through the builder types below.
2. Resolve: the builders are frozen into read-only databases and each map
   turns the records that target it into named entry points.

Example usage:

    spawns = SpawnPointDbBuilder()
    scales = ScaleFactorTableBuilder()
    ...  # pass 1
    spawn_db, scale_table = spawns.freeze(), scales.freeze()
    points, default = resolve_entry_points("md1_1", 117, map_list, spawn_db,
                                           scale_table, triangle_zs, warn)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from types import MappingProxyType
from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from field_data import INACTIVE_GATEWAY_ID, Gateway
from install_common import InstallerError, MissingCrossReference


GATEWAY_UNITS = 128.0
DIRECTION_STEPS = 255.0

Vector3 = Tuple[float, float, float]
ORIGIN: Vector3 = (0.0, 0.0, 0.0)


class FrozenDatabaseError(InstallerError, RuntimeError):
    """A builder was written to after its snapshot was taken."""


class SpawnOrigin(Enum):
    TOPOLOGICAL = "topological"
    SCRIPT = "script"


@dataclass(frozen=True)
class SpawnPointRecord:
    source_field_id: int
    gateway_index_or_address: int
    gateway: Gateway
    origin: SpawnOrigin = SpawnOrigin.TOPOLOGICAL
    entity_name: str = ""
    function_name: str = ""


def map_name(map_list: Sequence[str], field_id: int) -> str:
    if not 0 <= field_id < len(map_list):
        raise MissingCrossReference(f"No map with id {field_id}")
    return map_list[field_id]


def field_id_for(map_list: Sequence[str], name: str) -> int:
    try:
        return list(map_list).index(name)
    except ValueError:
        raise MissingCrossReference(f"No id found for field name {name}") from None


def spawn_point_name(record: SpawnPointRecord, map_list: Sequence[str]) -> str:
    source = map_name(map_list, record.source_field_id)
    if record.origin is SpawnOrigin.SCRIPT:
        return (
            f"{source}_{record.entity_name}_{record.function_name}"
            f"_addr_{record.gateway_index_or_address}"
        )
    return f"Spawn_{source}_{record.gateway_index_or_address}"


# ---------------------------------------------------------------------------
# Read-only snapshots
# ---------------------------------------------------------------------------


class SpawnPointDatabase:
    def __init__(self, records: Mapping[int, Tuple[SpawnPointRecord, ...]]) -> None:
        self._records = MappingProxyType(dict(records))

    def records_for(self, target_field_id: int) -> Tuple[SpawnPointRecord, ...]:
        return self._records.get(target_field_id, ())

    def targets(self) -> List[int]:
        return sorted(self._records)

    def __contains__(self, target_field_id: object) -> bool:
        return target_field_id in self._records

    def __len__(self) -> int:
        return sum(len(records) for records in self._records.values())


class ScaleFactorTable:
    def __init__(self, factors: Mapping[int, float]) -> None:
        self._factors = MappingProxyType(dict(factors))

    def get(self, field_id: int) -> float:
        try:
            return self._factors[field_id]
        except KeyError:
            raise MissingCrossReference(f"Scale factor not found for field id {field_id}") from None

    def __contains__(self, field_id: object) -> bool:
        return field_id in self._factors

    def __len__(self) -> int:
        return len(self._factors)


class ModelAnimationDatabase:
    def __init__(self, models: Mapping[str, FrozenSet[str]]) -> None:
        self._models = MappingProxyType(dict(models))

    def animations(self, model_name: str) -> FrozenSet[str]:
        return self._models.get(model_name.lower(), frozenset())

    def models(self) -> List[str]:
        return sorted(self._models)

    def __contains__(self, model_name: object) -> bool:
        return isinstance(model_name, str) and model_name.lower() in self._models

    def __len__(self) -> int:
        return len(self._models)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


class _Builder:
    def __init__(self) -> None:
        self.frozen = False

    def _check_writable(self) -> None:
        if self.frozen:
            raise FrozenDatabaseError(f"{type(self).__name__} is frozen")


class SpawnPointDbBuilder(_Builder):
    def __init__(self, inactive_gateway_id: int = INACTIVE_GATEWAY_ID) -> None:
        super().__init__()
        self.inactive_gateway_id = inactive_gateway_id
        self._records: Dict[int, List[SpawnPointRecord]] = {}

    def add(self, target_field_id: int, record: SpawnPointRecord) -> None:
        self._check_writable()
        self._records.setdefault(target_field_id, []).append(record)

    def add_gateways(self, source_field_id: int, gateways: Sequence[Gateway]) -> int:
        """Record every active gateway of a map; returns how many were added."""
        added = 0
        for index, gateway in enumerate(gateways):
            if not gateway.is_active(self.inactive_gateway_id):
                continue
            self.add(
                gateway.destination_field_id,
                SpawnPointRecord(source_field_id, index, gateway, SpawnOrigin.TOPOLOGICAL),
            )
            added += 1
        return added

    def freeze(self) -> SpawnPointDatabase:
        self.frozen = True
        return SpawnPointDatabase(
            {target: tuple(records) for target, records in self._records.items()}
        )


class ScaleFactorTableBuilder(_Builder):
    def __init__(self) -> None:
        super().__init__()
        self._factors: Dict[int, float] = {}

    def set(self, field_id: int, factor: float) -> None:
        self._check_writable()
        self._factors[field_id] = factor

    def freeze(self) -> ScaleFactorTable:
        self.frozen = True
        return ScaleFactorTable(self._factors)


def normalize_animation_name(name: str) -> str:
    """Animation file name without directory or extension, lowercased, with ``.a``."""
    stem = PurePosixPath(name.replace("\\", "/")).name.split(".", 1)[0]
    return f"{stem.lower()}.a"


class ModelAnimationDbBuilder(_Builder):
    def __init__(self) -> None:
        super().__init__()
        self._models: Dict[str, Set[str]] = {}

    def add(self, model_name: str, animations: Iterable[str]) -> None:
        self._check_writable()
        used = self._models.setdefault(model_name.lower(), set())
        used.update(normalize_animation_name(animation) for animation in animations)

    def freeze(self) -> ModelAnimationDatabase:
        self.frozen = True
        return ModelAnimationDatabase(
            {model: frozenset(animations) for model, animations in self._models.items()}
        )


# ---------------------------------------------------------------------------
# Pass 2
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EntryPoint:
    name: str
    position: Vector3
    rotation: float


def gateway_rotation(direction: int) -> float:
    return 360.0 * direction / DIRECTION_STEPS


def resolve_entry_points(
    field_name: str,
    field_id: int,
    map_list: Sequence[str],
    spawn_db: SpawnPointDatabase,
    scale_factors: ScaleFactorTable,
    triangle_zs: Sequence[float],
    warn: Optional[Callable[[str], None]] = None,
) -> Tuple[List[EntryPoint], Vector3]:
    """Entry points of *field_name* in record order, plus the default player position.

    The default position is the first non-zero entry point position, or the
    origin when there is none.
    """
    report = warn if warn is not None else logging.warning
    points: List[EntryPoint] = []
    default_position = ORIGIN
    for record in spawn_db.records_for(field_id):
        gateway = record.gateway
        downscale = GATEWAY_UNITS * scale_factors.get(gateway.destination_field_id)
        triangle = gateway.destination.z
        if not 0 <= triangle < len(triangle_zs):
            report(
                f"In field {field_name}: Map jump triangle ({triangle}) "
                f"out of bounds ({len(triangle_zs)})"
            )
            triangle = 0
        z = float(triangle_zs[triangle]) if triangle_zs else 0.0
        position: Vector3 = (
            gateway.destination.x / downscale,
            gateway.destination.y / downscale,
            z,
        )
        if default_position == ORIGIN and position != ORIGIN:
            default_position = position
        points.append(
            EntryPoint(
                name=spawn_point_name(record, map_list),
                position=position,
                rotation=gateway_rotation(gateway.dir),
            )
        )
    return points, default_position
