from __future__ import annotations

import unittest
from collections import defaultdict

from warmpq.constants import FILE_COMPRESS, FILE_EXISTS, HASH_ENTRY_DELETED
from warmpq.errors import FormatError, TableBoundsError
from warmpq.hashutil import hash_path
from warmpq.layout import Header, find_header, pack_header, pad_prefix, plan_layout, read_header
from warmpq.tables import (
    PROBE_LINEAR,
    BlockEntry,
    BlockTable,
    HashTable,
    hash_table_size_for,
    next_power_of_two,
)


def _colliding_names(size: int, count: int = 2):
    """Names whose probe sequences start at the same slot of a ``size`` table."""
    buckets = defaultdict(list)
    for i in range(1000):
        name = f"file{i}.txt"
        bucket = buckets[hash_path(name)[2] & (size - 1)]
        bucket.append(name)
        if len(bucket) == count:
            return bucket
    raise AssertionError("no collision found")


class SizingTests(unittest.TestCase):
    def test_hash_table_size(self):
        self.assertEqual(hash_table_size_for(0), 1)
        self.assertEqual(hash_table_size_for(1), 2)
        self.assertEqual(hash_table_size_for(3), 8)
        self.assertEqual(hash_table_size_for(5), 8)
        self.assertEqual(hash_table_size_for(6), 16)
        self.assertEqual(hash_table_size_for(100), 256)
        self.assertEqual(hash_table_size_for(3, load_factor=1.0), 4)
        with self.assertRaises(ValueError):
            hash_table_size_for(3, load_factor=0)

    def test_next_power_of_two(self):
        self.assertEqual([next_power_of_two(n) for n in (0, 1, 2, 3, 5, 16, 17)], [1, 1, 2, 4, 8, 16, 32])

    def test_size_must_be_power_of_two(self):
        with self.assertRaises(ValueError):
            HashTable(6)
        with self.assertRaises(ValueError):
            HashTable(8, probe="quadratic")


class HashTableTests(unittest.TestCase):
    def test_insert_lookup(self):
        t = HashTable(16)
        names = ["war3map.j", "war3map.w3i", "units\\a.mdx", "(listfile)"]
        for i, n in enumerate(names):
            t.insert(n, i)
        for i, n in enumerate(names):
            self.assertEqual(t.lookup(n), i)
            self.assertEqual(t.lookup(n.upper().replace("\\", "/")), i)
        self.assertIsNone(t.lookup("missing.txt"))
        self.assertEqual(len(t.live_entries()), 4)

    def test_reinsert_replaces(self):
        t = HashTable(4)
        t.insert("a", 0)
        t.insert("A", 3)
        self.assertEqual(t.lookup("a"), 3)
        self.assertEqual(len(t.live_entries()), 1)

    def test_deleted_slot_does_not_end_probe(self):
        for probe in ("double", PROBE_LINEAR):
            first, second = _colliding_names(4)
            t = HashTable(4, probe=probe)
            s1 = t.insert(first, 0)
            s2 = t.insert(second, 1)
            self.assertNotEqual(s1, s2)
            self.assertTrue(t.delete(first))
            self.assertEqual(t.entries[s1].block_index, HASH_ENTRY_DELETED)
            self.assertIsNone(t.lookup(first))
            self.assertEqual(t.lookup(second), 1)
            # The tombstone is reused
            self.assertEqual(t.insert(first, 5), s1)

    def test_full_table(self):
        t = HashTable(2)
        t.insert("a", 0)
        t.insert("b", 1)
        with self.assertRaises(FormatError):
            t.insert("c", 2)
        self.assertEqual(t.lookup("a"), 0)
        self.assertEqual(t.lookup("b"), 1)
        self.assertIsNone(t.lookup("c"))

    def test_locales(self):
        t = HashTable(8)
        t.insert("war3map.wts", 0)
        t.insert("war3map.wts", 1, locale=0x409)
        self.assertEqual(t.lookup("war3map.wts"), 0)
        self.assertEqual(t.lookup("war3map.wts", locale=0x409), 1)
        self.assertEqual(t.lookup("war3map.wts", locale=0x407), 0)
        self.assertIsNone(t.find_slot("war3map.wts", locale=0x407, exact=True))
        self.assertEqual(sorted(e.block_index for e in t.find_all("war3map.wts")), [0, 1])

    def test_locale_only_row_found_by_neutral_lookup(self):
        t = HashTable(8)
        t.insert("war3map.wts", 3, locale=0x409)
        self.assertEqual(t.lookup("war3map.wts"), 3)
        self.assertIsNone(t.find_slot("war3map.wts", exact=True))
        self.assertIsNone(t.lookup("war3map.wts", locale=0x407))
        self.assertFalse(t.delete("war3map.wts"))
        self.assertTrue(t.delete("war3map.wts", locale=0x409))

    def test_double_hash_stride_is_odd(self):
        t = HashTable(64)
        for i in range(40):
            t.insert(f"f{i}", i)
        for i in range(40):
            self.assertEqual(t.lookup(f"f{i}"), i)

    def test_linear_table_read_back_as_default(self):
        t = HashTable(16, probe=PROBE_LINEAR)
        names = [f"file{i}.txt" for i in range(12)]
        for i, n in enumerate(names):
            t.insert(n, i)
        loaded = HashTable.unpack(t.pack(), 16)
        for i, n in enumerate(names):
            self.assertEqual(loaded.lookup(n), i)

    def test_pack_unpack(self):
        t = HashTable(8)
        t.insert("a", 0)
        t.insert("b", 1, locale=0x409)
        data = t.pack()
        self.assertEqual(len(data), 8 * 16)
        loaded = HashTable.unpack(data, 8)
        self.assertEqual(loaded.entries, t.entries)
        with self.assertRaises(FormatError):
            HashTable.unpack(data[:-16], 8)


class BlockTableTests(unittest.TestCase):
    def test_pack_unpack_and_padding(self):
        b = BlockTable()
        b.append(BlockEntry(32, 100, 200, FILE_EXISTS | FILE_COMPRESS))
        b.append(BlockEntry(132, 10, 10, FILE_EXISTS))
        b.pad_to(4)
        self.assertEqual(len(b), 4)
        self.assertFalse(b[3].exists)
        loaded = BlockTable.unpack(b.pack(), 4)
        self.assertEqual(list(loaded), list(b))
        self.assertTrue(loaded[0].exists)


class LayoutTests(unittest.TestCase):
    def test_plan_layout(self):
        offsets, hash_off, block_off, end = plan_layout([10, 0, 5], 4)
        self.assertEqual(offsets, [32, 42, 42])
        self.assertEqual(end, 47)
        self.assertEqual(hash_off, 47)
        self.assertEqual(block_off, 47 + 64)

    def test_header_roundtrip_with_prefix(self):
        h = Header(
            archive_size=32 + 16 + 16,
            sector_shift=3,
            hash_table_offset=32,
            block_table_offset=48,
            hash_table_count=1,
            block_table_count=1,
        )
        prefix = pad_prefix(b"HM3W")
        self.assertEqual(len(prefix), 512)
        data = prefix + pack_header(h) + b"\x00" * 32
        off = find_header(data)
        self.assertEqual(off, 512)
        got = read_header(data, off)
        self.assertEqual(got.sector_size, 4096)
        self.assertEqual(got.offset, 512)

    def test_table_bounds(self):
        h = Header(
            archive_size=64,
            sector_shift=3,
            hash_table_offset=32,
            block_table_offset=48,
            hash_table_count=1,
            block_table_count=4,
        )
        data = pack_header(h) + b"\x00" * 32
        with self.assertRaises(TableBoundsError):
            read_header(data, 0)


if __name__ == "__main__":
    unittest.main()
