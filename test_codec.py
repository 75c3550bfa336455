from __future__ import annotations

import os
import random
import unittest
import zlib

from warmpq.codec import Codec, compress_sector, decompress_sector
from warmpq.constants import CODEC_BZIP2, CODEC_NONE, CODEC_PKWARE, CODEC_ZLIB
from warmpq.errors import SectorDataError, UnknownCodecError
from warmpq.implode import explode, implode


def _text(size: int) -> bytes:
    rng = random.Random(7)
    words = [b"unit", b"hero", b"footman", b"call", b"set", b"udg_", b"endfunction", b"\r\n"]
    out = bytearray()
    while len(out) < size:
        out += rng.choice(words) + b" "
    return bytes(out[:size])


class ImplodeTests(unittest.TestCase):
    def test_known_stream(self):
        # Reference stream from the DCL format notes
        self.assertEqual(explode(bytes.fromhex("00048224258f807f")), b"AIAIAIAIAIAIA")

    def test_roundtrip_dictionary_sizes(self):
        data = _text(20000)
        for bits in (4, 5, 6):
            packed = implode(data, dict_bits=bits)
            self.assertLess(len(packed), len(data))
            self.assertEqual(explode(packed), data)

    def test_roundtrip_edge_inputs(self):
        for data in (b"", b"a", b"ab", b"aaa", b"a" * 600, bytes(range(256)) * 3, os.urandom(3000)):
            self.assertEqual(explode(implode(data)), data)

    def test_long_runs(self):
        data = b"\x00" * 5000 + b"xyz" * 400 + b"\xff" * 700
        self.assertEqual(explode(implode(data)), data)

    def test_invalid(self):
        with self.assertRaises(ValueError):
            explode(b"\x00")
        with self.assertRaises(ValueError):
            explode(b"\x02\x06\x00")
        with self.assertRaises(ValueError):
            explode(b"\x00\x09\x00")
        with self.assertRaises(ValueError):
            implode(b"abc", dict_bits=7)


class CodecTests(unittest.TestCase):
    def test_codec_roundtrips(self):
        data = _text(10000)
        for codec_id in (CODEC_NONE, CODEC_ZLIB, CODEC_BZIP2, CODEC_PKWARE):
            c = Codec(codec_id)
            self.assertEqual(c.decompress(c.compress(data)), data)

    def test_unknown_codec(self):
        with self.assertRaises(UnknownCodecError):
            Codec(0x40).compress(b"abc")

    def test_corrupt_stream(self):
        with self.assertRaises(SectorDataError):
            Codec(CODEC_ZLIB).decompress(b"not zlib at all")


class SectorCodecTests(unittest.TestCase):
    def test_picks_smallest(self):
        data = _text(4096)
        stored = compress_sector(data, (CODEC_ZLIB, CODEC_BZIP2, CODEC_PKWARE))
        sizes = {
            c: 1 + len(Codec(c).compress(data)) for c in (CODEC_ZLIB, CODEC_BZIP2, CODEC_PKWARE)
        }
        self.assertEqual(len(stored), min(sizes.values()))
        self.assertEqual(decompress_sector(stored, len(data)), data)

    def test_store_fallback(self):
        data = os.urandom(4096)
        stored = compress_sector(data, (CODEC_ZLIB,))
        self.assertEqual(stored, data)
        self.assertEqual(decompress_sector(stored, len(data)), data)

    def test_mask_prefix(self):
        data = b"a" * 4096
        stored = compress_sector(data, (CODEC_ZLIB,))
        self.assertEqual(stored[0], CODEC_ZLIB)
        self.assertEqual(zlib.decompress(stored[1:]), data)

    def test_unknown_mask(self):
        with self.assertRaises(UnknownCodecError):
            decompress_sector(b"\x40" + zlib.compress(b"a" * 100), 100)

    def test_length_mismatch(self):
        stored = compress_sector(b"a" * 100, (CODEC_ZLIB,))
        with self.assertRaises(SectorDataError):
            decompress_sector(stored, 99)


if __name__ == "__main__":
    unittest.main()
