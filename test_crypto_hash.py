from __future__ import annotations

import os
import unittest

from warmpq.constants import HASH_FILE_KEY, HASH_NAME_A, HASH_NAME_B, HASH_TABLE_OFFSET
from warmpq.crypto import (
    BLOCK_TABLE_KEY,
    HASH_TABLE_KEY,
    crypt_table,
    decrypt_block,
    derive_file_key,
    encrypt_block,
)
from warmpq.hashutil import crc32, hash_path, hash_string, md5_16, normalize_path
from warmpq.pathutil import archive_name, display_name, safe_relpath
from warmpq.errors import UnsafePathError


class CryptTableTests(unittest.TestCase):
    def test_shape_and_first_word(self):
        table = crypt_table()
        self.assertEqual(len(table), 0x500)
        self.assertIsInstance(table, tuple)
        self.assertEqual(table[0], 0x55C636E2)
        self.assertTrue(all(0 <= w <= 0xFFFFFFFF for w in table))

    def test_built_once(self):
        self.assertIs(crypt_table(), crypt_table())


class HashTests(unittest.TestCase):
    def test_table_keys(self):
        self.assertEqual(hash_string("(hash table)", HASH_FILE_KEY), HASH_TABLE_KEY)
        self.assertEqual(hash_string("(block table)", HASH_FILE_KEY), BLOCK_TABLE_KEY)

    def test_case_and_separator_insensitive(self):
        for hash_type in (HASH_TABLE_OFFSET, HASH_NAME_A, HASH_NAME_B, HASH_FILE_KEY):
            self.assertEqual(
                hash_string("Units\\UnitData.slk", hash_type),
                hash_string("units/unitdata.SLK", hash_type),
            )

    def test_normalization_idempotent(self):
        for p in ("war3map.j", "Scripts/Blizzard.j", "a\\B/c", "Ünïcode/ß.txt"):
            self.assertEqual(hash_path(p), hash_path(normalize_path(p)))
            self.assertEqual(normalize_path(normalize_path(p)), normalize_path(p))

    def test_non_ascii_left_alone(self):
        self.assertEqual(normalize_path("ä/b"), "ä\\B")

    def test_hash_types_differ(self):
        name_a, name_b, table_hash = hash_path("war3map.j")
        self.assertEqual(len({name_a, name_b, table_hash}), 3)

    def test_checksums(self):
        self.assertEqual(crc32(b"123456789"), 0xCBF43926)
        self.assertEqual(md5_16(b"").hex(), "d41d8cd98f00b204e9800998ecf8427e")


class CipherTests(unittest.TestCase):
    def test_roundtrip(self):
        data = os.urandom(4096)
        enc = encrypt_block(data, 0x12345678)
        self.assertNotEqual(enc, data)
        self.assertEqual(decrypt_block(enc, 0x12345678), data)

    def test_trailing_partial_word_clear(self):
        data = bytes(range(11))
        enc = encrypt_block(data, HASH_TABLE_KEY)
        self.assertEqual(len(enc), 11)
        self.assertEqual(enc[8:], data[8:])
        self.assertNotEqual(enc[:8], data[:8])
        self.assertEqual(decrypt_block(enc, HASH_TABLE_KEY), data)

    def test_short_input_untouched(self):
        self.assertEqual(encrypt_block(b"abc", 1), b"abc")
        self.assertEqual(encrypt_block(b"", 1), b"")

    def test_wrong_key_garbles(self):
        data = b"\x00" * 64
        self.assertNotEqual(decrypt_block(encrypt_block(data, 1), 2), data)

    def test_file_key(self):
        base = hash_string("war3map.j", HASH_FILE_KEY)
        self.assertEqual(derive_file_key("scripts\\war3map.j", 0, 0, False), base)
        self.assertEqual(derive_file_key("scripts/war3map.j", 0, 0, False), base)
        self.assertEqual(
            derive_file_key("war3map.j", 0x200, 0x1000, True),
            ((base + 0x200) & 0xFFFFFFFF) ^ 0x1000,
        )


class PathTests(unittest.TestCase):
    def test_archive_name(self):
        self.assertEqual(archive_name("/units//foo/./bar.txt/"), "units\\foo\\bar.txt")
        self.assertEqual(display_name("units\\foo"), "units/foo")
        with self.assertRaises(ValueError):
            archive_name("//")

    def test_safe_relpath(self):
        self.assertEqual(safe_relpath("a\\b\\c.txt"), "a/b/c.txt")
        for bad in ("/etc/passwd", "\\abs", "C:\\x", "a/../../b", ".."):
            with self.assertRaises(UnsafePathError):
                safe_relpath(bad)


if __name__ == "__main__":
    unittest.main()
