from __future__ import annotations

import zlib
from typing import Tuple

from Cryptodome.Hash import MD5

from .constants import HASH_TABLE_OFFSET, HASH_NAME_A, HASH_NAME_B
from .crypto import crypt_table

_U32 = 0xFFFFFFFF

# ASCII-only upper-casing; bytes >= 0x80 pass through untouched
_UPPER = bytes(
    (b - 0x20) if 0x61 <= b <= 0x7A else (0x5C if b == 0x2F else b)
    for b in range(256)
)


def normalize_path(p: str) -> str:
    """Canonical hashing form: backslash separators, ASCII upper case."""
    return p.encode("utf-8").translate(_UPPER).decode("utf-8")


def hash_string(p: str, hash_type: int) -> int:
    table = crypt_table()
    seed1 = 0x7FED7FED
    seed2 = 0xEEEEEEEE
    base = hash_type << 8
    for ch in p.encode("utf-8").translate(_UPPER):
        seed1 = table[base + ch] ^ ((seed1 + seed2) & _U32)
        seed2 = (ch + seed1 + seed2 + (seed2 << 5) + 3) & _U32
    return seed1


def hash_path(p: str) -> Tuple[int, int, int]:
    """Return ``(name_a, name_b, table_hash)`` for an archive path."""
    return (
        hash_string(p, HASH_NAME_A),
        hash_string(p, HASH_NAME_B),
        hash_string(p, HASH_TABLE_OFFSET),
    )


def crc32(data: bytes) -> int:
    return zlib.crc32(data) & _U32


def md5_16(data: bytes) -> bytes:
    return MD5.new(data).digest()
