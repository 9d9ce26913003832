#!/usr/bin/env python3
"""
archives.py
===========

Named-blob providers for the legacy archives.

`LgpArchive` reads the SQUARESOFT ``.lgp`` container directly: a 12-byte
creator tag, a u32 file count and a table of 27-byte entries (20-byte name,
u32 data offset, u8 check code, u16 conflict index). Each data block starts
with the 20-byte name again and a u32 length. `DirectoryArchive` serves the
same interface from an already extracted directory tree, where groups are
sub-directories.

Example usage:

    archive = open_archive(Path("data/field/flevel.lgp"))
    for name in archive.list_entries():
        payload = archive.open(name)
"""

from __future__ import annotations

import fnmatch
import logging
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

from install_common import InstallerError, OutOfRange


LGP_CREATOR = b"\x00\x00SQUARESOFT"
LGP_NAME_SIZE = 20
LGP_TABLE_ENTRY_SIZE = 27
LGP_LOOKUP_TABLE_SIZE = 3600
LGP_TERMINATOR = b"FINAL FANTASY7"


class ArchiveError(InstallerError):
    pass


class ArchiveSource:
    """Minimal interface the installers use to pull files out of archives."""

    name = "archive"

    def list_entries(self, group: str = "") -> List[str]:
        raise NotImplementedError

    def open(self, name: str) -> bytes:
        raise NotImplementedError

    def matching(self, pattern: str, group: str = "") -> List[str]:
        return [entry for entry in self.list_entries(group) if fnmatch.fnmatch(entry, pattern)]

    def extract_all(self, target_dir: Path, group: str = "") -> List[Path]:
        target_dir.mkdir(parents=True, exist_ok=True)
        written: List[Path] = []
        for entry in self.list_entries(group):
            destination = target_dir / Path(entry).name
            destination.write_bytes(self.open(entry))
            written.append(destination)
        return written


class DirectoryArchive(ArchiveSource):
    def __init__(self, root: Path) -> None:
        self.root = root
        self.name = root.name

    def list_entries(self, group: str = "") -> List[str]:
        base = self.root / group if group else self.root
        if not base.is_dir():
            return []
        prefix = f"{group}/" if group else ""
        return sorted(prefix + path.name for path in base.iterdir() if path.is_file())

    def open(self, name: str) -> bytes:
        path = self.root / name
        if not path.is_file():
            raise ArchiveError(f"{name} not found under {self.root}")
        return path.read_bytes()


@dataclass(frozen=True)
class LgpEntry:
    name: str
    offset: int
    check: int
    conflict: int


class LgpArchive(ArchiveSource):
    def __init__(self, raw: bytes, name: str = "archive.lgp") -> None:
        self.raw = raw
        self.name = name
        self.entries: List[LgpEntry] = self._read_table(raw)
        self._by_name: Dict[str, LgpEntry] = {}
        for entry in self.entries:
            self._by_name.setdefault(entry.name.lower(), entry)

    @classmethod
    def from_path(cls, path: Path) -> "LgpArchive":
        return cls(path.read_bytes(), path.name)

    @staticmethod
    def _read_table(raw: bytes) -> List[LgpEntry]:
        if len(raw) < 16 or not raw[:12].endswith(b"SQUARESOFT"):
            raise ArchiveError("Not an LGP archive (missing creator tag)")
        count = struct.unpack_from("<I", raw, 12)[0]
        entries: List[LgpEntry] = []
        pos = 16
        for _ in range(count):
            if pos + LGP_TABLE_ENTRY_SIZE > len(raw):
                raise OutOfRange(f"LGP table entry at 0x{pos:X} past end")
            name = raw[pos:pos + LGP_NAME_SIZE].split(b"\x00", 1)[0].decode("ascii", "replace")
            offset, check, conflict = struct.unpack_from("<IBH", raw, pos + LGP_NAME_SIZE)
            entries.append(LgpEntry(name, offset, check, conflict))
            pos += LGP_TABLE_ENTRY_SIZE
        return entries

    def list_entries(self, group: str = "") -> List[str]:
        return [entry.name for entry in self.entries if entry.name.startswith(group)]

    def open(self, name: str) -> bytes:
        entry = self._by_name.get(name.lower())
        if entry is None:
            raise ArchiveError(f"{name} not found in {self.name}")
        header_end = entry.offset + LGP_NAME_SIZE + 4
        if header_end > len(self.raw):
            raise OutOfRange(f"{name}: data header past end of {self.name}")
        length = struct.unpack_from("<I", self.raw, entry.offset + LGP_NAME_SIZE)[0]
        if header_end + length > len(self.raw):
            raise OutOfRange(f"{name}: {length} bytes declared past end of {self.name}")
        return self.raw[header_end:header_end + length]

    @staticmethod
    def build(files: Sequence[Tuple[str, bytes]]) -> bytes:
        """Assemble an LGP archive; the lookup table is left zeroed."""
        table_end = 16 + LGP_TABLE_ENTRY_SIZE * len(files)
        data_start = table_end + LGP_LOOKUP_TABLE_SIZE + 2
        table = bytearray()
        data = bytearray()
        for name, payload in files:
            encoded = name.encode("ascii")[:LGP_NAME_SIZE].ljust(LGP_NAME_SIZE, b"\x00")
            table += encoded + struct.pack("<IBH", data_start + len(data), 0, 0)
            data += encoded + struct.pack("<I", len(payload)) + payload
        header = LGP_CREATOR + struct.pack("<I", len(files))
        lookup = bytes(LGP_LOOKUP_TABLE_SIZE + 2)
        return header + bytes(table) + lookup + bytes(data) + LGP_TERMINATOR


def open_archive(path: Path) -> ArchiveSource:
    """Open *path* as an extracted directory or as an LGP file."""
    if path.is_dir():
        logging.debug("Using extracted directory %s", path)
        return DirectoryArchive(path)
    if path.is_file():
        return LgpArchive.from_path(path)
    raise ArchiveError(f"Archive not found: {path}")
