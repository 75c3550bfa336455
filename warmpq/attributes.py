from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .constants import ATTRIBUTES_VERSION, ATTR_CRC32, ATTR_FILETIME, ATTR_MD5
from .errors import FormatError
from .hashutil import crc32, md5_16


_ATTR_HDR_STRUCT = struct.Struct("<II")
_ZERO_MD5 = b"\x00" * 16


@dataclass
class Attributes:
    """Per-block checksums stored in the ``(attributes)`` pseudo-file.

    Columns are indexed by block index; absent columns are empty lists.
    """

    flags: int
    crc32: List[int] = field(default_factory=list)
    filetime: List[int] = field(default_factory=list)
    md5: List[bytes] = field(default_factory=list)
    version: int = ATTRIBUTES_VERSION


def build_attributes(blocks: Sequence[Optional[bytes]], flags: int = ATTR_CRC32 | ATTR_MD5) -> bytes:
    """Serialize checksums for ``blocks`` (``None`` = no data, e.g. the attributes file itself).

    File times are never written so identical inputs give identical archives.
    """
    if flags & ATTR_FILETIME:
        raise ValueError("File times are not recorded")
    out = [_ATTR_HDR_STRUCT.pack(ATTRIBUTES_VERSION, flags)]
    if flags & ATTR_CRC32:
        out.append(struct.pack(f"<{len(blocks)}I", *[crc32(b) if b is not None else 0 for b in blocks]))
    if flags & ATTR_MD5:
        out.extend(md5_16(b) if b is not None else _ZERO_MD5 for b in blocks)
    return b"".join(out)


def parse_attributes(data: bytes, block_count: int) -> Attributes:
    if len(data) < _ATTR_HDR_STRUCT.size:
        raise FormatError("Attributes file too short")
    version, flags = _ATTR_HDR_STRUCT.unpack_from(data, 0)
    if version != ATTRIBUTES_VERSION:
        raise FormatError(f"Unsupported attributes version {version}")
    attrs = Attributes(flags=flags, version=version)
    pos = _ATTR_HDR_STRUCT.size
    if flags & ATTR_CRC32:
        size = 4 * block_count
        if pos + size > len(data):
            raise FormatError("Attributes CRC32 column truncated")
        attrs.crc32 = list(struct.unpack_from(f"<{block_count}I", data, pos))
        pos += size
    if flags & ATTR_FILETIME:
        size = 8 * block_count
        if pos + size > len(data):
            raise FormatError("Attributes file time column truncated")
        attrs.filetime = list(struct.unpack_from(f"<{block_count}Q", data, pos))
        pos += size
    if flags & ATTR_MD5:
        size = 16 * block_count
        if pos + size > len(data):
            raise FormatError("Attributes MD5 column truncated")
        attrs.md5 = [data[pos + 16 * i:pos + 16 * (i + 1)] for i in range(block_count)]
    return attrs
