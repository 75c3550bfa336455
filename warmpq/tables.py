from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Iterator, List, Optional

from .constants import (
    DEFAULT_LOAD_FACTOR,
    FILE_EXISTS,
    HASH_ENTRY_DELETED,
    HASH_ENTRY_EMPTY,
    LOCALE_NEUTRAL,
    PLATFORM_NEUTRAL,
)
from .crypto import BLOCK_TABLE_KEY, HASH_TABLE_KEY, decrypt_block, encrypt_block
from .errors import FormatError
from .hashutil import hash_path


_HASH_ENTRY_STRUCT = struct.Struct("<IIHHI")
_BLOCK_ENTRY_STRUCT = struct.Struct("<IIII")

PROBE_DOUBLE = "double"
PROBE_LINEAR = "linear"


def is_power_of_two(n: int) -> bool:
    return n > 0 and (n & (n - 1)) == 0


def next_power_of_two(n: int) -> int:
    size = 1
    while size < n:
        size <<= 1
    return size


def hash_table_size_for(n: int, load_factor: float = DEFAULT_LOAD_FACTOR) -> int:
    """Smallest power of two ``s`` with ``n / s`` strictly below ``load_factor``."""
    if not 0.0 < load_factor <= 1.0:
        raise ValueError("load_factor must be in (0, 1]")
    size = 1
    while n / size >= load_factor:
        size <<= 1
    return size


@dataclass
class HashEntry:
    name_a: int = 0xFFFFFFFF
    name_b: int = 0xFFFFFFFF
    locale: int = 0xFFFF
    platform: int = 0xFFFF
    block_index: int = HASH_ENTRY_EMPTY

    @property
    def empty(self) -> bool:
        return self.block_index == HASH_ENTRY_EMPTY

    @property
    def deleted(self) -> bool:
        return self.block_index == HASH_ENTRY_DELETED

    @property
    def live(self) -> bool:
        return not (self.empty or self.deleted)


@dataclass
class BlockEntry:
    file_offset: int = 0
    compressed_size: int = 0
    file_size: int = 0
    flags: int = 0

    @property
    def exists(self) -> bool:
        return bool(self.flags & FILE_EXISTS)


class HashTable:
    """Open-addressed index from a hashed path to a block index.

    Probing starts at ``table_hash % size`` and steps by an odd stride taken
    from the path's second name hash, so every slot of a power-of-two table is
    reachable. ``probe="linear"`` steps by one, which is what classic tools
    write; lookups on a double-hashed table fall back to the linear sequence
    so either kind of archive resolves.
    """

    def __init__(self, size: int, probe: str = PROBE_DOUBLE):
        if not is_power_of_two(size):
            raise ValueError(f"Hash table size must be a power of two, got {size}")
        if probe not in (PROBE_DOUBLE, PROBE_LINEAR):
            raise ValueError(f"Unknown probe mode: {probe}")
        self.probe = probe
        self.entries: List[HashEntry] = [HashEntry() for _ in range(size)]

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def size(self) -> int:
        return len(self.entries)

    def live_entries(self) -> List[HashEntry]:
        return [e for e in self.entries if e.live]

    def insert(self, path: str, block_index: int, locale: int = LOCALE_NEUTRAL, platform: int = PLATFORM_NEUTRAL) -> int:
        """Place ``path``; an existing row for the same path/locale/platform is replaced."""
        if block_index in (HASH_ENTRY_EMPTY, HASH_ENTRY_DELETED):
            raise ValueError("Block index collides with a hash table sentinel")
        name_a, name_b, table_hash = hash_path(path)
        target: Optional[int] = None
        first_free: Optional[int] = None
        for slot in self._slots(name_b, table_hash, self._stride(name_b)):
            e = self.entries[slot]
            if e.empty:
                target = slot if first_free is None else first_free
                break
            if e.deleted:
                if first_free is None:
                    first_free = slot
                continue
            if e.name_a == name_a and e.name_b == name_b and e.locale == locale and e.platform == platform:
                target = slot
                break
        if target is None:
            if first_free is None:
                raise FormatError("Hash table is full", path=path)
            target = first_free
        self.entries[target] = HashEntry(name_a, name_b, locale, platform, block_index)
        return target

    def lookup(self, path: str, locale: int = LOCALE_NEUTRAL, platform: int = PLATFORM_NEUTRAL) -> Optional[int]:
        slot = self.find_slot(path, locale, platform)
        if slot is None:
            return None
        return self.entries[slot].block_index

    def find_slot(
        self,
        path: str,
        locale: int = LOCALE_NEUTRAL,
        platform: int = PLATFORM_NEUTRAL,
        *,
        exact: bool = False,
    ) -> Optional[int]:
        """Return the slot holding ``path``.

        An exact locale/platform match wins; otherwise the neutral row is
        returned unless ``exact`` is set. A neutral-locale query with no
        neutral row falls back to the first stored variant.
        """
        name_a, name_b, table_hash = hash_path(path)
        any_variant: Optional[int] = None
        for stride in self._strides(name_b):
            neutral: Optional[int] = None
            for slot in self._slots(name_b, table_hash, stride):
                e = self.entries[slot]
                if e.empty:
                    break
                if e.deleted or e.name_a != name_a or e.name_b != name_b:
                    continue
                if e.locale == locale and e.platform == platform:
                    return slot
                if neutral is None and e.locale == LOCALE_NEUTRAL and e.platform in (platform, PLATFORM_NEUTRAL):
                    neutral = slot
                if any_variant is None and e.platform in (platform, PLATFORM_NEUTRAL):
                    any_variant = slot
            if neutral is not None and not exact:
                return neutral
        if exact or locale != LOCALE_NEUTRAL:
            return None
        return any_variant

    def find_all(self, path: str) -> List[HashEntry]:
        """Every live row for ``path`` across locales/platforms."""
        return [self.entries[slot] for slot in self.find_slots(path)]

    def find_slots(self, path: str) -> List[int]:
        name_a, name_b, table_hash = hash_path(path)
        found: List[int] = []
        for stride in self._strides(name_b):
            for slot in self._slots(name_b, table_hash, stride):
                e = self.entries[slot]
                if e.empty:
                    break
                if slot in found or not e.live:
                    continue
                if e.name_a == name_a and e.name_b == name_b:
                    found.append(slot)
        return found

    def delete(self, path: str, locale: int = LOCALE_NEUTRAL, platform: int = PLATFORM_NEUTRAL) -> bool:
        slot = self.find_slot(path, locale, platform, exact=True)
        if slot is None:
            return False
        self.entries[slot] = HashEntry(block_index=HASH_ENTRY_DELETED)
        return True

    def pack(self, key: int = HASH_TABLE_KEY) -> bytes:
        raw = b"".join(
            _HASH_ENTRY_STRUCT.pack(e.name_a, e.name_b, e.locale, e.platform, e.block_index) for e in self.entries
        )
        return encrypt_block(raw, key)

    @classmethod
    def unpack(cls, data: bytes, count: int, probe: str = PROBE_DOUBLE, key: int = HASH_TABLE_KEY) -> "HashTable":
        raw = decrypt_block(data[: count * _HASH_ENTRY_STRUCT.size], key)
        if len(raw) != count * _HASH_ENTRY_STRUCT.size:
            raise FormatError("Hash table truncated")
        table = cls(count, probe=probe)
        table.entries = [HashEntry(*fields) for fields in _HASH_ENTRY_STRUCT.iter_unpack(raw)]
        return table

    # internals
    def _stride(self, name_b: int) -> int:
        if self.probe == PROBE_LINEAR:
            return 1
        return (name_b % self.size) | 1

    def _strides(self, name_b: int) -> List[int]:
        stride = self._stride(name_b)
        return [stride] if stride == 1 else [stride, 1]

    def _slots(self, name_b: int, table_hash: int, stride: int) -> Iterator[int]:
        mask = self.size - 1
        slot = table_hash & mask
        for _ in range(self.size):
            yield slot
            slot = (slot + stride) & mask


class BlockTable:
    """Per-file metadata indexed by block index."""

    def __init__(self, entries: Optional[List[BlockEntry]] = None):
        self.entries: List[BlockEntry] = list(entries or [])

    def __len__(self) -> int:
        return len(self.entries)

    def __getitem__(self, index: int) -> BlockEntry:
        return self.entries[index]

    def __iter__(self) -> Iterator[BlockEntry]:
        return iter(self.entries)

    def append(self, entry: BlockEntry) -> int:
        self.entries.append(entry)
        return len(self.entries) - 1

    def pad_to(self, count: int) -> None:
        """Grow to ``count`` entries with absent (flags 0) rows."""
        while len(self.entries) < count:
            self.entries.append(BlockEntry())

    def pack(self, key: int = BLOCK_TABLE_KEY) -> bytes:
        raw = b"".join(
            _BLOCK_ENTRY_STRUCT.pack(e.file_offset, e.compressed_size, e.file_size, e.flags) for e in self.entries
        )
        return encrypt_block(raw, key)

    @classmethod
    def unpack(cls, data: bytes, count: int, key: int = BLOCK_TABLE_KEY) -> "BlockTable":
        raw = decrypt_block(data[: count * _BLOCK_ENTRY_STRUCT.size], key)
        if len(raw) != count * _BLOCK_ENTRY_STRUCT.size:
            raise FormatError("Block table truncated")
        return cls([BlockEntry(*fields) for fields in _BLOCK_ENTRY_STRUCT.iter_unpack(raw)])
