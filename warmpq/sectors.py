"""
Sector layout of a stored file.

A compressed file is cut into ``sector_size`` pieces that are compressed
independently. The stored region starts with the sector offset table
(``n + 1`` u32 offsets relative to the start of the region) so any sector can
be decoded on its own. Files flagged SINGLE_UNIT are one sector without a
table; uncompressed files are stored raw and only use sectors for their
encryption keys.
"""

from __future__ import annotations

import struct
from typing import Iterable, List, Optional, Tuple

from .codec import compress_sector, decompress_sector
from .constants import (
    FILE_COMPRESS,
    FILE_IMPLODE,
    FILE_ENCRYPTED,
    FILE_SINGLE_UNIT,
    FILE_SECTOR_CRC,
)
from .crypto import encrypt_block, decrypt_block
from .errors import SectorTableError, SectorDataError
from .implode import explode

_U32 = 0xFFFFFFFF


def sector_count(file_size: int, sector_size: int) -> int:
    return (file_size + sector_size - 1) // sector_size


def split_sectors(payload: bytes, sector_size: int) -> List[bytes]:
    return [payload[i:i + sector_size] for i in range(0, len(payload), sector_size)]


def compress_sectors(payload: bytes, sector_size: int, codecs: Iterable[int]) -> Tuple[List[int], List[bytes]]:
    """Compress ``payload`` sector by sector.

    Returns the sector offset table (length = sectors + 1, first entry = size
    of the table itself, last entry = total stored length) and the stored
    sectors.
    """
    codecs = tuple(codecs)
    stored = [compress_sector(raw, codecs) for raw in split_sectors(payload, sector_size)]
    offsets = [(len(stored) + 1) * 4]
    for s in stored:
        offsets.append(offsets[-1] + len(s))
    return offsets, stored


def pack_sectors(table: List[int], sectors: List[bytes]) -> bytes:
    return struct.pack(f"<{len(table)}I", *table) + b"".join(sectors)


def decompress_sectors(table: List[int], stored: bytes, sector_size: int, file_size: int) -> bytes:
    """Inverse of :func:`compress_sectors` (no encryption)."""
    _check_table(table, sector_count(file_size, sector_size), len(stored), crc_present=False)
    out = bytearray()
    for i in range(len(table) - 1):
        raw_len = _raw_len(i, file_size, sector_size)
        out += decompress_sector(stored[table[i]:table[i + 1]], raw_len)
    return bytes(out)


def encode_file(
    data: bytes,
    flags: int,
    sector_size: int,
    codecs: Iterable[int],
    key: Optional[int] = None,
) -> bytes:
    """Produce the stored region of a file for the given block flags."""
    if not data:
        return b""
    encrypted = bool(flags & FILE_ENCRYPTED)
    if encrypted and key is None:
        raise ValueError("Encrypted file requires a key")
    if flags & FILE_IMPLODE:
        raise ValueError("Writing IMPLODE files is not supported; use COMPRESS with the PKWARE codec")
    if flags & FILE_SINGLE_UNIT:
        stored = compress_sector(data, codecs) if flags & FILE_COMPRESS else data
        return encrypt_block(stored, key) if encrypted else stored
    if flags & FILE_COMPRESS:
        table, sectors = compress_sectors(data, sector_size, codecs)
        if not encrypted:
            return pack_sectors(table, sectors)
        table_raw = encrypt_block(struct.pack(f"<{len(table)}I", *table), (key - 1) & _U32)
        return table_raw + b"".join(encrypt_block(s, (key + i) & _U32) for i, s in enumerate(sectors))
    if encrypted:
        return b"".join(
            encrypt_block(s, (key + i) & _U32) for i, s in enumerate(split_sectors(data, sector_size))
        )
    return data


def read_sector_table(stored: bytes, flags: int, file_size: int, sector_size: int, key: Optional[int] = None) -> List[int]:
    """Load and validate the sector offset table of a compressed file."""
    n = sector_count(file_size, sector_size)
    crc_present = bool(flags & FILE_SECTOR_CRC)
    entries = n + 1 + (1 if crc_present else 0)
    size = entries * 4
    if len(stored) < size:
        raise SectorTableError("Sector table exceeds stored file size")
    raw = stored[:size]
    if flags & FILE_ENCRYPTED:
        raw = decrypt_block(raw, (key - 1) & _U32)
    table = list(struct.unpack(f"<{entries}I", raw))
    _check_table(table, n, len(stored), crc_present=crc_present)
    return table[: n + 1]


def decode_file(
    stored: bytes,
    flags: int,
    file_size: int,
    sector_size: int,
    key: Optional[int] = None,
) -> bytes:
    """Decode a whole stored region back to the file's bytes."""
    if file_size == 0:
        return b""
    if flags & FILE_ENCRYPTED and key is None:
        raise ValueError("Encrypted file requires a key")
    if flags & FILE_SINGLE_UNIT:
        return _decode_sector(stored, file_size, flags, key)
    if flags & (FILE_COMPRESS | FILE_IMPLODE):
        table = read_sector_table(stored, flags, file_size, sector_size, key)
        out = bytearray()
        for i in range(len(table) - 1):
            sector_key = None if key is None else (key + i) & _U32
            out += _decode_sector(stored[table[i]:table[i + 1]], _raw_len(i, file_size, sector_size), flags, sector_key)
        return bytes(out)
    if len(stored) < file_size:
        raise SectorDataError("Stored file is shorter than its declared size")
    data = stored[:file_size]
    if flags & FILE_ENCRYPTED:
        return b"".join(
            decrypt_block(s, (key + i) & _U32) for i, s in enumerate(split_sectors(data, sector_size))
        )
    return data


def read_sector(
    stored: bytes,
    flags: int,
    file_size: int,
    sector_size: int,
    index: int,
    key: Optional[int] = None,
) -> bytes:
    """Decode sector ``index`` without touching the others."""
    n = 1 if flags & FILE_SINGLE_UNIT else sector_count(file_size, sector_size)
    if index < 0 or index >= n:
        raise IndexError(f"sector index {index} out of range (0..{n - 1})")
    if flags & FILE_SINGLE_UNIT:
        return decode_file(stored, flags, file_size, sector_size, key)
    sector_key = None if key is None else (key + index) & _U32
    raw_len = _raw_len(index, file_size, sector_size)
    if flags & (FILE_COMPRESS | FILE_IMPLODE):
        table = read_sector_table(stored, flags, file_size, sector_size, key)
        return _decode_sector(stored[table[index]:table[index + 1]], raw_len, flags, sector_key)
    start = index * sector_size
    if len(stored) < start + raw_len:
        raise SectorDataError("Stored file is shorter than its declared size")
    return _decode_sector(stored[start:start + raw_len], raw_len, flags & ~FILE_COMPRESS, sector_key)


# internals
def _raw_len(index: int, file_size: int, sector_size: int) -> int:
    return min(sector_size, file_size - index * sector_size)


def _check_table(table: List[int], n: int, stored_len: int, *, crc_present: bool) -> None:
    expected = n + 1 + (1 if crc_present else 0)
    if len(table) != expected:
        raise SectorTableError(f"Sector table has {len(table)} entries, expected {expected}")
    if table[0] != expected * 4:
        raise SectorTableError("Sector table does not start after itself")
    for i in range(n):
        if table[i + 1] <= table[i]:
            raise SectorTableError("Sector table offsets are not strictly increasing")
    end = table[-1]
    if crc_present and end < table[n]:
        raise SectorTableError("Sector checksum table offset precedes sector data end")
    if end != stored_len:
        raise SectorTableError("Sector table end does not match stored file size")


def _decode_sector(chunk: bytes, raw_len: int, flags: int, key: Optional[int]) -> bytes:
    if flags & FILE_ENCRYPTED:
        chunk = decrypt_block(chunk, key)
    if flags & FILE_COMPRESS:
        return decompress_sector(chunk, raw_len)
    if flags & FILE_IMPLODE and len(chunk) < raw_len:
        try:
            chunk = explode(chunk)
        except ValueError as exc:
            raise SectorDataError(f"implode stream invalid: {exc}") from exc
    if len(chunk) != raw_len:
        raise SectorDataError("Sector length mismatch")
    return chunk
