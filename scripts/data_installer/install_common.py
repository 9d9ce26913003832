#!/usr/bin/env python3
"""
install_common.py
=================

Shared pieces of the data installer: the exception hierarchy, the runtime
statistics collected while converting, and the progress-text channel every
step reports through.

Recoverable problems (a record past the end of its section, a map that
references an unknown destination, a script the decompiler cannot handle)
are caught at the smallest unit of work, logged, reported on the output
channel and counted. Only directory creation failures and cancellation stop
an installation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields as dataclass_fields
from typing import Callable, List, Optional


class InstallerError(Exception):
    pass


class OutOfRange(InstallerError, IndexError):
    """A read went past the end of a binary buffer."""


class MissingCrossReference(InstallerError, KeyError):
    """A map or record references an id no database knows about."""

    def __str__(self) -> str:  # KeyError quotes its message otherwise.
        return str(self.args[0]) if self.args else ""


class DecompilerError(InstallerError):
    pass


class DirectoryCreationError(InstallerError, OSError):
    pass


class KernelFormatError(InstallerError):
    pass


class FieldFormatError(InstallerError):
    pass


class InstallationCancelled(InstallerError):
    pass


@dataclass
class InstallStats:
    kernel_records_read: int = 0
    kernel_records_failed: int = 0
    gamedata_files_written: int = 0
    images_converted: int = 0
    images_failed: int = 0
    sounds_converted: int = 0
    musics_converted: int = 0
    audio_failed: int = 0
    maps_collected: int = 0
    maps_converted: int = 0
    maps_failed: int = 0
    maps_skipped: int = 0
    scripts_failed: int = 0
    spawn_points_written: int = 0
    spawn_points_clamped: int = 0
    models_exported: int = 0
    models_failed: int = 0
    warnings: int = 0
    failures: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            f.name: getattr(self, f.name)
            for f in dataclass_fields(InstallStats)
            if f.name != "failures"
        }


class OutputChannel:
    """Line-oriented progress text shown to the user.

    Status lines go through untouched; warnings and errors are tagged,
    logged and counted so the final report can summarise them.
    """

    def __init__(
        self,
        write_line: Optional[Callable[[str], None]] = None,
        stats: Optional[InstallStats] = None,
    ) -> None:
        self._write_line = write_line
        self.stats = stats if stats is not None else InstallStats()

    def line(self, text: str) -> None:
        logging.info("%s", text)
        if self._write_line is not None:
            self._write_line(text)

    def warning(self, text: str) -> None:
        logging.warning("%s", text)
        self.stats.warnings += 1
        if self._write_line is not None:
            self._write_line(f"[WARNING] {text}")

    def error(self, text: str) -> None:
        logging.error("%s", text)
        self.stats.failures.append(text)
        if self._write_line is not None:
            self._write_line(f"[ERROR] {text}")
