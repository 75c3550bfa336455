from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import List, Tuple

from .constants import (
    HEADER_MAGIC,
    USER_DATA_MAGIC,
    HEADER_SIZE,
    HEADER_ALIGNMENT,
    HEADER_SCAN_LIMIT,
    FORMAT_VERSION,
    SUPPORTED_VERSIONS,
    HASH_ENTRY_SIZE,
    BLOCK_ENTRY_SIZE,
    MAX_SECTOR_SHIFT,
)
from .errors import FormatError, HeaderNotFoundError, TableBoundsError
from .tables import is_power_of_two


_HEADER_STRUCT = struct.Struct("<4sIIHHIIII")
# Fields (little endian):
# magic[4], header_size u32, archive_size u32, format_version u16,
# sector_shift u16, hash_table_offset u32, block_table_offset u32,
# hash_table_count u32, block_table_count u32
_USER_DATA_STRUCT = struct.Struct("<4sIII")
# magic[4], user_data_size u32, header_offset u32, user_data_header_size u32


@dataclass
class Header:
    archive_size: int
    sector_shift: int
    hash_table_offset: int
    block_table_offset: int
    hash_table_count: int
    block_table_count: int
    header_size: int = HEADER_SIZE
    format_version: int = FORMAT_VERSION
    offset: int = 0  # position of the header in the byte stream

    @property
    def sector_size(self) -> int:
        return 512 << self.sector_shift


def pack_header(h: Header) -> bytes:
    return _HEADER_STRUCT.pack(
        HEADER_MAGIC,
        h.header_size,
        h.archive_size,
        h.format_version,
        h.sector_shift,
        h.hash_table_offset,
        h.block_table_offset,
        h.hash_table_count,
        h.block_table_count,
    )


def find_header(data: bytes, limit: int = HEADER_SCAN_LIMIT) -> int:
    """Offset of the archive header, scanning 512-byte boundaries.

    A user-data header met on the way redirects to the header offset it
    declares.
    """
    end = min(len(data), limit)
    for off in range(0, end, HEADER_ALIGNMENT):
        magic = data[off:off + 4]
        if magic == HEADER_MAGIC:
            return off
        if magic == USER_DATA_MAGIC and off + _USER_DATA_STRUCT.size <= len(data):
            _m, _size, header_offset, _hsize = _USER_DATA_STRUCT.unpack_from(data, off)
            target = off + header_offset
            if header_offset and data[target:target + 4] == HEADER_MAGIC:
                return target
    raise HeaderNotFoundError("Archive header not found")


def read_header(data: bytes, offset: int) -> Header:
    """Parse and bounds-check the header at ``offset``."""
    raw = data[offset:offset + _HEADER_STRUCT.size]
    if len(raw) != _HEADER_STRUCT.size:
        raise FormatError("Archive header too short")
    (magic, header_size, archive_size, version, shift,
     hash_off, block_off, hash_count, block_count) = _HEADER_STRUCT.unpack(raw)
    if magic != HEADER_MAGIC:
        raise FormatError("Bad archive header magic")
    if version not in SUPPORTED_VERSIONS:
        raise FormatError(f"Unsupported format version {version}")
    if header_size < HEADER_SIZE:
        raise FormatError(f"Header size {header_size} below minimum {HEADER_SIZE}")
    if shift > MAX_SECTOR_SHIFT:
        raise FormatError(f"Sector size shift {shift} out of range")
    available = len(data) - offset
    if not is_power_of_two(hash_count):
        raise TableBoundsError(f"Hash table count {hash_count} is not a power of two")
    if hash_off + hash_count * HASH_ENTRY_SIZE > available:
        raise TableBoundsError("Hash table exceeds archive bounds")
    if block_off + block_count * BLOCK_ENTRY_SIZE > available:
        raise TableBoundsError("Block table exceeds archive bounds")
    return Header(
        archive_size=archive_size,
        sector_shift=shift,
        hash_table_offset=hash_off,
        block_table_offset=block_off,
        hash_table_count=hash_count,
        block_table_count=block_count,
        header_size=header_size,
        format_version=version,
        offset=offset,
    )


def plan_layout(sizes: List[int], hash_count: int, header_size: int = HEADER_SIZE) -> Tuple[List[int], int, int, int]:
    """Assign payload offsets in order; tables follow the payload region.

    Returns ``(file_offsets, hash_table_offset, block_table_offset,
    end_of_payload)``; every offset is relative to the header.
    """
    offsets: List[int] = []
    pos = header_size
    for size in sizes:
        offsets.append(pos)
        pos += size
    hash_off = pos
    block_off = hash_off + hash_count * HASH_ENTRY_SIZE
    return offsets, hash_off, block_off, pos


def pad_prefix(prefix: bytes) -> bytes:
    """Pad prefix data so the header lands on a 512-byte boundary."""
    rem = len(prefix) % HEADER_ALIGNMENT
    if rem:
        prefix += b"\x00" * (HEADER_ALIGNMENT - rem)
    return prefix
