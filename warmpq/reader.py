from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, List, Optional, Tuple, Union

from .attributes import parse_attributes
from .constants import (
    ATTR_CRC32,
    ATTR_MD5,
    ATTRIBUTES_NAME,
    BLOCK_ENTRY_SIZE,
    FILE_COMPRESS,
    FILE_DELETE_MARKER,
    FILE_ENCRYPTED,
    FILE_FIX_KEY,
    FILE_SINGLE_UNIT,
    HASH_ENTRY_SIZE,
    LISTFILE_NAME,
    LOCALE_NEUTRAL,
    PLATFORM_NEUTRAL,
    PSEUDO_FILES,
    SIGNATURE_NAME,
)
from .crypto import derive_file_key
from .errors import FormatError, IoFailure, MpqError, NotFound, TableBoundsError
from .hashutil import crc32, md5_16, normalize_path
from .layout import Header, find_header, read_header
from .listfile import KNOWN_NAMES, parse_listfile
from .pathutil import archive_name, display_name, safe_relpath
from .sectors import decode_file, read_sector
from .signature import verify_archive_signature
from .tables import BlockTable, HashTable

if TYPE_CHECKING:
    from Cryptodome.PublicKey.RSA import RsaKey

log = logging.getLogger(__name__)

_PSEUDO_KEYS = {normalize_path(p) for p in PSEUDO_FILES}


@dataclass(frozen=True)
class FileInfo:
    path: str  # forward-slash form
    name: str  # stored form
    locale: int
    platform: int
    block_index: int
    file_offset: int  # relative to the header
    compressed_size: int
    file_size: int
    flags: int

    @property
    def compressed(self) -> bool:
        return bool(self.flags & FILE_COMPRESS)

    @property
    def encrypted(self) -> bool:
        return bool(self.flags & FILE_ENCRYPTED)

    @property
    def single_unit(self) -> bool:
        return bool(self.flags & FILE_SINGLE_UNIT)


class MpqReader:
    """Read-only view of an archive held in memory.

    The header is located (skipping any prefix), both tables are decrypted and
    bounds-checked up front; file data is decoded on demand.
    """

    def __init__(self, data: Union[bytes, bytearray, memoryview], name: Optional[str] = None):
        self.data = bytes(data)
        self.name = name or "<memory>"
        self.header: Header = read_header(self.data, find_header(self.data))
        base = self.header.offset
        h = self.header
        self.hash_table = HashTable.unpack(
            self.data[base + h.hash_table_offset:base + h.hash_table_offset + h.hash_table_count * HASH_ENTRY_SIZE],
            h.hash_table_count,
        )
        self.block_table = BlockTable.unpack(
            self.data[base + h.block_table_offset:base + h.block_table_offset + h.block_table_count * BLOCK_ENTRY_SIZE],
            h.block_table_count,
        )
        log.debug(
            "opened %s: header at %d, %d hash slots, %d blocks",
            self.name,
            base,
            h.hash_table_count,
            h.block_table_count,
        )

    @classmethod
    def from_path(cls, path: Union[str, os.PathLike]) -> "MpqReader":
        try:
            with open(path, "rb") as fh:
                data = fh.read()
        except OSError as exc:
            raise IoFailure(f"Failed to read {os.fspath(path)}: {exc}", path=os.fspath(path)) from exc
        return cls(data, name=os.fspath(path))

    @property
    def sector_size(self) -> int:
        return self.header.sector_size

    # lookup
    def has_file(self, path: str, locale: int = LOCALE_NEUTRAL, platform: int = PLATFORM_NEUTRAL) -> bool:
        try:
            self.file_info(path, locale, platform)
        except NotFound:
            return False
        return True

    def file_info(self, path: str, locale: int = LOCALE_NEUTRAL, platform: int = PLATFORM_NEUTRAL) -> FileInfo:
        try:
            name = archive_name(path)
        except ValueError:
            raise NotFound(f"File not found: {path!r}", path=path) from None
        slot = self.hash_table.find_slot(name, locale, platform)
        if slot is None:
            raise NotFound(f"File not found: {display_name(name)}", path=display_name(name))
        info = self._info_for(name, slot)
        if info is None:
            raise NotFound(f"File not found: {display_name(name)}", path=display_name(name))
        return info

    def read_file(self, path: str, locale: int = LOCALE_NEUTRAL, platform: int = PLATFORM_NEUTRAL) -> bytes:
        return self.read_entry(self.file_info(path, locale, platform))

    def read_raw(self, path: str, locale: int = LOCALE_NEUTRAL, platform: int = PLATFORM_NEUTRAL) -> bytes:
        """Stored bytes of ``path`` exactly as they sit in the archive."""
        return self.read_raw_entry(self.file_info(path, locale, platform))

    def read_sector(
        self,
        path: str,
        index: int,
        locale: int = LOCALE_NEUTRAL,
        platform: int = PLATFORM_NEUTRAL,
    ) -> bytes:
        info = self.file_info(path, locale, platform)
        try:
            return read_sector(
                self.read_raw_entry(info),
                info.flags,
                info.file_size,
                self.sector_size,
                index,
                self._file_key(info),
            )
        except FormatError as exc:
            if exc.path is None:
                exc.path = info.path
            raise

    def read_raw_entry(self, info: FileInfo) -> bytes:
        start = self.header.offset + info.file_offset
        return self.data[start:start + info.compressed_size]

    def read_entry(self, info: FileInfo) -> bytes:
        try:
            return decode_file(
                self.read_raw_entry(info),
                info.flags,
                info.file_size,
                self.sector_size,
                self._file_key(info),
            )
        except FormatError as exc:
            if exc.path is None:
                exc.path = info.path
            raise

    # enumeration
    def list_files(self, extra_names: Iterable[str] = ()) -> List[str]:
        """Known file paths (``/`` separators), pseudo-files excluded."""
        return [display_name(n) for n in self._names(extra_names)]

    def entries(self, extra_names: Iterable[str] = ()) -> List[FileInfo]:
        """Every live locale/platform variant of every enumerable file."""
        out: List[FileInfo] = []
        for name in self._names(extra_names):
            for slot in self.hash_table.find_slots(name):
                info = self._info_for(name, slot)
                if info is not None:
                    out.append(info)
        return out

    def extract_to(self, directory: Union[str, os.PathLike], extra_names: Iterable[str] = ()) -> List[str]:
        """Write every enumerable file below ``directory``; returns the paths written."""
        directory = os.fspath(directory)
        names = self.list_files(extra_names)
        targets: List[Tuple[str, str]] = []
        for name in names:
            rel = safe_relpath(name)
            targets.append((name, os.path.join(directory, *rel.split("/"))))
        written: List[str] = []
        for name, target in targets:
            data = self.read_file(name)
            try:
                os.makedirs(os.path.dirname(target) or ".", exist_ok=True)
                with open(target, "wb") as fh:
                    fh.write(data)
            except OSError as exc:
                raise IoFailure(f"Failed to write {target}: {exc}", path=target) from exc
            written.append(target)
        log.debug("extracted %d file(s) from %s to %s", len(written), self.name, directory)
        return written

    # integrity
    def verify(self) -> bool:
        """
        Check the archive's internal consistency.

        - every live hash row points at an existing block inside the archive
        - stored ranges of existing blocks do not overlap
        - every enumerable file decodes, and matches the CRC32/MD5 recorded in
          ``(attributes)`` when that file is present
        """
        nblocks = len(self.block_table)
        for e in self.hash_table.live_entries():
            if e.block_index >= nblocks or not self.block_table[e.block_index].exists:
                log.warning("hash row points at missing block %d", e.block_index)
                return False
        ranges = []
        for b in self.block_table:
            if not b.exists or b.compressed_size == 0:
                continue
            end = b.file_offset + b.compressed_size
            if self.header.offset + end > len(self.data):
                log.warning("block at %d runs past the end of the archive", b.file_offset)
                return False
            ranges.append((b.file_offset, end))
        ranges.sort()
        for (_s1, e1), (s2, _e2) in zip(ranges, ranges[1:]):
            if s2 < e1:
                log.warning("stored ranges overlap at offset %d", s2)
                return False

        attrs = None
        if self.has_file(ATTRIBUTES_NAME):
            try:
                attrs = parse_attributes(self.read_file(ATTRIBUTES_NAME), nblocks)
            except FormatError as exc:
                log.warning("attributes unreadable: %s", exc)
                return False
        try:
            checked = self.entries()
            if self.has_file(LISTFILE_NAME):
                checked.append(self.file_info(LISTFILE_NAME))
        except MpqError as exc:
            log.warning("enumeration failed: %s", exc)
            return False
        for info in checked:
            try:
                data = self.read_entry(info)
            except MpqError as exc:
                log.warning("%s: %s", info.path, exc)
                return False
            if attrs is None:
                continue
            if attrs.flags & ATTR_CRC32 and attrs.crc32[info.block_index] != crc32(data):
                log.warning("%s: CRC32 mismatch", info.path)
                return False
            if attrs.flags & ATTR_MD5 and attrs.md5[info.block_index] != md5_16(data):
                log.warning("%s: MD5 mismatch", info.path)
                return False
        return True

    def verify_signature(self, public_key: "RsaKey") -> bool:
        """Check ``(signature)`` against ``public_key``; NotFound when unsigned."""
        info = self.file_info(SIGNATURE_NAME)
        start = self.header.offset
        region = self.data[start:start + self.header.archive_size]
        stored = self.read_entry(info)
        return verify_archive_signature(region, info.file_offset, stored, public_key)

    # internals
    def _file_key(self, info: FileInfo) -> Optional[int]:
        if not info.flags & FILE_ENCRYPTED:
            return None
        return derive_file_key(info.name, info.file_offset, info.file_size, bool(info.flags & FILE_FIX_KEY))

    def _info_for(self, name: str, slot: int) -> Optional[FileInfo]:
        e = self.hash_table.entries[slot]
        if e.block_index >= len(self.block_table):
            raise TableBoundsError(
                f"Block index {e.block_index} outside block table", path=display_name(name)
            )
        b = self.block_table[e.block_index]
        if not b.exists or b.flags & FILE_DELETE_MARKER:
            return None
        if self.header.offset + b.file_offset + b.compressed_size > len(self.data):
            raise TableBoundsError("Stored file exceeds archive bounds", path=display_name(name))
        return FileInfo(
            path=display_name(name),
            name=name,
            locale=e.locale,
            platform=e.platform,
            block_index=e.block_index,
            file_offset=b.file_offset,
            compressed_size=b.compressed_size,
            file_size=b.file_size,
            flags=b.flags,
        )

    def _names(self, extra_names: Iterable[str]) -> List[str]:
        if self.has_file(LISTFILE_NAME):
            candidates = parse_listfile(self.read_file(LISTFILE_NAME))
        else:
            candidates = list(KNOWN_NAMES)
        candidates.extend(extra_names)
        seen = set()
        names: List[str] = []
        for c in candidates:
            name = c.replace("/", "\\")
            if not name:
                continue
            key = normalize_path(name)
            if key in seen or key in _PSEUDO_KEYS:
                continue
            seen.add(key)
            if any(self._info_for(name, slot) is not None for slot in self.hash_table.find_slots(name)):
                names.append(name)
        return names
