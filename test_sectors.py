from __future__ import annotations

import os
import struct
import unittest

from warmpq.constants import (
    CODEC_BZIP2,
    CODEC_PKWARE,
    CODEC_ZLIB,
    FILE_COMPRESS,
    FILE_ENCRYPTED,
    FILE_EXISTS,
    FILE_SINGLE_UNIT,
)
from warmpq.errors import SectorDataError, SectorTableError
from warmpq.sectors import (
    compress_sectors,
    decode_file,
    decompress_sectors,
    encode_file,
    pack_sectors,
    read_sector,
    read_sector_table,
    sector_count,
)

COMPRESSED = FILE_EXISTS | FILE_COMPRESS


def _payload(size: int) -> bytes:
    return (b"function main takes nothing returns nothing\n" * (size // 44 + 1))[:size]


class SectorLayoutTests(unittest.TestCase):
    def test_offsets_for_ten_thousand_bytes(self):
        payload = _payload(10000)
        table, stored = compress_sectors(payload, 1024, (CODEC_ZLIB,))
        self.assertEqual(sector_count(10000, 1024), 10)
        self.assertEqual(len(table), 11)
        self.assertEqual(table[0], 44)
        self.assertEqual(table[-1], 44 + sum(len(s) for s in stored))
        for a, b in zip(table, table[1:]):
            self.assertLess(a, b)
        self.assertEqual(decompress_sectors(table, pack_sectors(table, stored), 1024, 10000), payload)

    def test_incompressible_sectors_stored_raw(self):
        payload = os.urandom(3000)
        table, stored = compress_sectors(payload, 1024, (CODEC_ZLIB,))
        self.assertEqual([len(s) for s in stored], [1024, 1024, 952])
        self.assertEqual(b"".join(stored), payload)
        self.assertEqual(decompress_sectors(table, pack_sectors(table, stored), 1024, 3000), payload)

    def test_mixed_codecs(self):
        payload = _payload(9000) + os.urandom(2000)
        stored = encode_file(payload, COMPRESSED, 4096, (CODEC_ZLIB, CODEC_BZIP2, CODEC_PKWARE))
        self.assertEqual(decode_file(stored, COMPRESSED, len(payload), 4096), payload)


class FileEncodingTests(unittest.TestCase):
    def test_roundtrip_flag_combinations(self):
        payload = _payload(12345)
        key = 0xDEADBEEF
        for flags in (
            FILE_EXISTS,
            COMPRESSED,
            COMPRESSED | FILE_ENCRYPTED,
            FILE_EXISTS | FILE_ENCRYPTED,
        ):
            k = key if flags & FILE_ENCRYPTED else None
            stored = encode_file(payload, flags, 4096, (CODEC_ZLIB,), k)
            self.assertEqual(decode_file(stored, flags, len(payload), 4096, k), payload, hex(flags))

    def test_uncompressed_has_no_table(self):
        payload = _payload(5000)
        self.assertEqual(encode_file(payload, FILE_EXISTS, 4096, (CODEC_ZLIB,)), payload)

    def test_single_unit(self):
        payload = _payload(3000)
        flags = COMPRESSED | FILE_SINGLE_UNIT
        stored = encode_file(payload, flags, 4096, (CODEC_ZLIB,))
        self.assertEqual(stored[0], CODEC_ZLIB)
        self.assertEqual(decode_file(stored, flags, 3000, 4096), payload)
        self.assertEqual(read_sector(stored, flags, 3000, 4096, 0), payload)

    def test_empty_file(self):
        self.assertEqual(encode_file(b"", COMPRESSED, 4096, (CODEC_ZLIB,)), b"")
        self.assertEqual(decode_file(b"", COMPRESSED, 0, 4096), b"")

    def test_encrypted_table_uses_key_minus_one(self):
        payload = _payload(9000)
        flags = COMPRESSED | FILE_ENCRYPTED
        stored = encode_file(payload, flags, 4096, (CODEC_ZLIB,), 1000)
        table = read_sector_table(stored, flags, 9000, 4096, 1000)
        self.assertEqual(table[0], 16)
        self.assertEqual(table[-1], len(stored))
        with self.assertRaises(SectorTableError):
            read_sector_table(stored, flags, 9000, 4096, 1001)

    def test_random_access(self):
        payload = _payload(10000)
        for flags, key in ((COMPRESSED, None), (FILE_EXISTS, None), (COMPRESSED | FILE_ENCRYPTED, 77)):
            stored = encode_file(payload, flags, 1024, (CODEC_ZLIB,), key)
            for i in (0, 4, 9):
                self.assertEqual(read_sector(stored, flags, 10000, 1024, i, key), payload[i * 1024:(i + 1) * 1024])
            with self.assertRaises(IndexError):
                read_sector(stored, flags, 10000, 1024, 10, key)


class SectorErrorTests(unittest.TestCase):
    def _stored(self):
        payload = _payload(10000)
        return payload, bytearray(encode_file(payload, COMPRESSED, 1024, (CODEC_ZLIB,)))

    def test_table_not_starting_after_itself(self):
        _payload_, stored = self._stored()
        struct.pack_into("<I", stored, 0, 40)
        with self.assertRaises(SectorTableError):
            decode_file(bytes(stored), COMPRESSED, 10000, 1024)

    def test_table_end_mismatch(self):
        _payload_, stored = self._stored()
        with self.assertRaises(SectorTableError):
            decode_file(bytes(stored) + b"\x00", COMPRESSED, 10000, 1024)

    def test_table_not_increasing(self):
        _payload_, stored = self._stored()
        first = struct.unpack_from("<I", stored, 4)[0]
        struct.pack_into("<I", stored, 8, first)
        with self.assertRaises(SectorTableError):
            decode_file(bytes(stored), COMPRESSED, 10000, 1024)

    def test_truncated_uncompressed(self):
        with self.assertRaises(SectorDataError):
            decode_file(b"abc", FILE_EXISTS, 10, 4096)

    def test_corrupt_sector(self):
        _payload_, stored = self._stored()
        table = read_sector_table(bytes(stored), COMPRESSED, 10000, 1024)
        stored[table[0] + 3] ^= 0xFF
        with self.assertRaises(SectorDataError):
            decode_file(bytes(stored), COMPRESSED, 10000, 1024)


if __name__ == "__main__":
    unittest.main()
