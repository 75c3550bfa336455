from __future__ import annotations

import bz2
import zlib
from typing import Iterable, Optional

from .constants import CODEC_NONE, CODEC_ZLIB, CODEC_PKWARE, CODEC_BZIP2, CODEC_DECODE_ORDER
from .errors import SectorDataError, UnknownCodecError
from .implode import implode, explode


class Codec:
    def __init__(self, codec_id: int, level: Optional[int] = None):
        self.codec_id = codec_id
        self.level = level

    def compress(self, data: bytes) -> bytes:
        if self.codec_id == CODEC_NONE:
            return data
        if self.codec_id == CODEC_ZLIB:
            return zlib.compress(data, self.level if self.level is not None else 9)
        if self.codec_id == CODEC_BZIP2:
            return bz2.compress(data, self.level if self.level is not None else 9)
        if self.codec_id == CODEC_PKWARE:
            return implode(data)
        # Unknown/unsupported codec: fail fast
        raise UnknownCodecError(f"unsupported codec id: 0x{self.codec_id:02x}")

    def decompress(self, data: bytes) -> bytes:
        if self.codec_id == CODEC_NONE:
            return data
        try:
            if self.codec_id == CODEC_ZLIB:
                return zlib.decompress(data)
            if self.codec_id == CODEC_BZIP2:
                return bz2.decompress(data)
            if self.codec_id == CODEC_PKWARE:
                return explode(data)
        except (zlib.error, OSError, EOFError, ValueError) as exc:
            raise SectorDataError(f"codec 0x{self.codec_id:02x} failed: {exc}") from exc
        raise UnknownCodecError(f"unsupported codec id: 0x{self.codec_id:02x}")


def compress_sector(raw: bytes, codecs: Iterable[int]) -> bytes:
    """Compress one sector with the best of ``codecs``.

    Returns the mask-prefixed stream, or ``raw`` unchanged when no codec makes
    the sector smaller.
    """
    best = raw
    for codec_id in codecs:
        if codec_id == CODEC_NONE:
            continue
        packed = bytes([codec_id]) + Codec(codec_id).compress(raw)
        if len(packed) < len(best):
            best = packed
    return best


def decompress_sector(stored: bytes, raw_len: int) -> bytes:
    """Inverse of :func:`compress_sector` for a sector of known raw length."""
    if len(stored) == raw_len:
        return stored
    if not stored:
        raise SectorDataError("Empty compressed sector")
    mask = stored[0]
    known = 0
    for codec_id in CODEC_DECODE_ORDER:
        known |= codec_id
    if mask == CODEC_NONE or mask & ~known:
        raise UnknownCodecError(f"unknown codec mask: 0x{mask:02x}")
    data = stored[1:]
    for codec_id in CODEC_DECODE_ORDER:
        if mask & codec_id:
            data = Codec(codec_id).decompress(data)
    if len(data) != raw_len:
        raise SectorDataError("Sector length mismatch after decompress")
    return data
