"""
MPQ stream cipher.

The crypt table is 0x500 pseudorandom 32-bit words generated from a fixed
linear-congruential sequence. It drives both path hashing (see hashutil) and
the block cipher below. The table is built on first use and never mutated,
so it is shared freely between threads.
"""

from __future__ import annotations

import struct
from functools import lru_cache
from typing import Tuple

_U32 = 0xFFFFFFFF


@lru_cache(maxsize=None)
def crypt_table() -> Tuple[int, ...]:
    table = [0] * 0x500
    seed = 0x00100001
    for index1 in range(0x100):
        index2 = index1
        for _ in range(5):
            seed = (seed * 125 + 3) % 0x2AAAAB
            temp1 = (seed & 0xFFFF) << 0x10
            seed = (seed * 125 + 3) % 0x2AAAAB
            temp2 = seed & 0xFFFF
            table[index2] = temp1 | temp2
            index2 += 0x100
    return tuple(table)


def _words(data: bytes) -> Tuple[int, int]:
    n = len(data) // 4
    return n, n * 4


def encrypt_block(data: bytes, key: int) -> bytes:
    """Encrypt whole 32-bit words of ``data``; a trailing partial word stays clear."""
    n, cut = _words(data)
    if n == 0:
        return bytes(data)
    table = crypt_table()
    words = struct.unpack(f"<{n}I", data[:cut])
    out = [0] * n
    key &= _U32
    seed = 0xEEEEEEEE
    for i, plain in enumerate(words):
        seed = (seed + table[0x400 + (key & 0xFF)]) & _U32
        out[i] = plain ^ ((key + seed) & _U32)
        key = ((((~key) << 0x15) + 0x11111111) & _U32) | (key >> 0x0B)
        seed = (plain + seed + (seed << 5) + 3) & _U32
    return struct.pack(f"<{n}I", *out) + bytes(data[cut:])


def decrypt_block(data: bytes, key: int) -> bytes:
    """Inverse of :func:`encrypt_block`."""
    n, cut = _words(data)
    if n == 0:
        return bytes(data)
    table = crypt_table()
    words = struct.unpack(f"<{n}I", data[:cut])
    out = [0] * n
    key &= _U32
    seed = 0xEEEEEEEE
    for i, cipher in enumerate(words):
        seed = (seed + table[0x400 + (key & 0xFF)]) & _U32
        plain = cipher ^ ((key + seed) & _U32)
        out[i] = plain
        key = ((((~key) << 0x15) + 0x11111111) & _U32) | (key >> 0x0B)
        seed = (plain + seed + (seed << 5) + 3) & _U32
    return struct.pack(f"<{n}I", *out) + bytes(data[cut:])


def derive_file_key(path: str, file_offset: int, file_size: int, fix_key: bool) -> int:
    """Per-file key: hash of the plain file name, optionally bound to its placement."""
    from .hashutil import hash_string
    from .constants import HASH_FILE_KEY

    name = path.replace("/", "\\").rsplit("\\", 1)[-1]
    key = hash_string(name, HASH_FILE_KEY)
    if fix_key:
        key = ((key + file_offset) & _U32) ^ file_size
    return key


HASH_TABLE_KEY = 0xC3AF3770   # hash_string("(hash table)", HASH_FILE_KEY)
BLOCK_TABLE_KEY = 0xEC83B3A3  # hash_string("(block table)", HASH_FILE_KEY)
