"""
PKWARE Data Compression Library ("implode"/"explode") in pure Python.

Stream layout: one byte literal mode (0 = raw 8-bit literals, 1 = Huffman
coded literals), one byte dictionary bits (4, 5 or 6 -> 1, 2 or 4 KiB
window), then an LSB-first bit stream of literals and length/distance pairs
ending with the length code 519. The length and distance trees are fixed
and given below in run-length form.
"""

from __future__ import annotations

from typing import Dict, List, Tuple

_MAXBITS = 13
_LITLEN_RLE = bytes([
    11, 124, 8, 7, 28, 7, 188, 13, 76, 4, 10, 8, 12, 10, 12, 10, 8, 23, 8, 9, 7, 6, 7, 8, 7, 6, 55, 8, 23,
    24, 12, 11, 7, 9, 11, 12, 6, 7, 22, 5, 7, 24, 6, 11, 9, 6, 7, 22, 7, 11, 38, 7, 9, 8, 25, 11, 8, 11,
    9, 12, 8, 12, 5, 38, 5, 38, 5, 11, 7, 5, 6, 21, 6, 10, 53, 8, 7, 24, 10, 27, 44, 253, 253, 253, 252, 252,
    252, 13, 12, 45, 12, 45, 12, 61, 12, 45, 44, 173,
])
_LENLEN_RLE = bytes([2, 35, 36, 53, 38, 23])
_DISTLEN_RLE = bytes([2, 20, 53, 230, 247, 151, 248])
_LEN_BASE = (3, 2, 4, 5, 6, 7, 8, 9, 10, 12, 16, 24, 40, 72, 136, 264)
_LEN_EXTRA = (0, 0, 0, 0, 0, 0, 0, 0, 1, 2, 3, 4, 5, 6, 7, 8)

END_OF_STREAM = 519
MIN_MATCH = 3
MAX_MATCH = END_OF_STREAM - 1
LITERAL_BINARY = 0
LITERAL_ASCII = 1
DEFAULT_DICT_BITS = 6
_MAX_CHAIN = 48


def _expand_rle(rle: bytes, n: int) -> List[int]:
    out: List[int] = []
    for b in rle:
        out.extend([b & 0x0F] * ((b >> 4) + 1))
        if len(out) >= n:
            break
    return out[:n]


class _Huffman:
    """Canonical code as consumed by the decoder (counts per length, symbols in code order)."""

    __slots__ = ("count", "symbol", "lengths")

    def __init__(self, rle: bytes, n_syms: int):
        self.lengths = _expand_rle(rle, n_syms)
        self.count = [0] * (_MAXBITS + 1)
        self.symbol = [0] * n_syms
        for ln in self.lengths:
            if ln:
                self.count[ln] += 1
        offs = [0] * (_MAXBITS + 2)
        for ln in range(1, _MAXBITS + 1):
            offs[ln + 1] = offs[ln] + self.count[ln]
        for sym, ln in enumerate(self.lengths):
            if ln:
                self.symbol[offs[ln]] = sym
                offs[ln] += 1

    def encoder(self) -> Dict[int, Tuple[int, int]]:
        """Map symbol -> (bits to emit LSB-first, bit count).

        The decoder inverts every bit and accumulates MSB-first, so each code
        is emitted inverted and in reading order.
        """
        codes: Dict[int, Tuple[int, int]] = {}
        code = 0
        index = 0
        for ln in range(1, _MAXBITS + 1):
            for _ in range(self.count[ln]):
                sym = self.symbol[index]
                value = 0
                for i in range(ln):
                    bit = (code >> (ln - 1 - i)) & 1
                    value |= (bit ^ 1) << i
                codes[sym] = (value, ln)
                code += 1
                index += 1
            code <<= 1
        return codes


_LIT_TREE = _Huffman(_LITLEN_RLE, 256)
_LEN_TREE = _Huffman(_LENLEN_RLE, 16)
_DIST_TREE = _Huffman(_DISTLEN_RLE, 64)
_LEN_CODES = _LEN_TREE.encoder()
_DIST_CODES = _DIST_TREE.encoder()


def _length_symbol(ln: int) -> Tuple[int, int, int]:
    for sym in range(16):
        base = _LEN_BASE[sym]
        if base <= ln < base + (1 << _LEN_EXTRA[sym]):
            return sym, ln - base, _LEN_EXTRA[sym]
    raise ValueError(f"implode: length {ln} out of range")


_LENGTH_TABLE = {ln: _length_symbol(ln) for ln in range(2, END_OF_STREAM + 1)}


class _BitReader:
    __slots__ = ("src", "i", "bitbuf", "bitcnt")

    def __init__(self, data: bytes):
        self.src = data
        self.i = 0
        self.bitbuf = 0
        self.bitcnt = 0

    def need(self, n: int) -> None:
        while self.bitcnt < n:
            if self.i >= len(self.src):
                raise ValueError("implode: out of input")
            self.bitbuf |= self.src[self.i] << self.bitcnt
            self.i += 1
            self.bitcnt += 8

    def bits(self, n: int) -> int:
        if n == 0:
            return 0
        self.need(n)
        v = self.bitbuf & ((1 << n) - 1)
        self.bitbuf >>= n
        self.bitcnt -= n
        return v

    def decode(self, h: _Huffman) -> int:
        code = first = index = 0
        for ln in range(1, _MAXBITS + 1):
            code |= self.bits(1) ^ 1
            cnt = h.count[ln]
            if code - cnt < first:
                return h.symbol[index + (code - first)]
            index += cnt
            first = (first + cnt) << 1
            code <<= 1
        raise ValueError("implode: invalid code")


class _BitWriter:
    __slots__ = ("out", "acc", "nbits")

    def __init__(self, prefix: bytes = b""):
        self.out = bytearray(prefix)
        self.acc = 0
        self.nbits = 0

    def put(self, value: int, n: int) -> None:
        self.acc |= value << self.nbits
        self.nbits += n
        while self.nbits >= 8:
            self.out.append(self.acc & 0xFF)
            self.acc >>= 8
            self.nbits -= 8

    def getvalue(self) -> bytes:
        if self.nbits:
            return bytes(self.out) + bytes([self.acc & 0xFF])
        return bytes(self.out)


def explode(data: bytes) -> bytes:
    """Decompress a PKWARE DCL stream."""
    if len(data) < 2:
        raise ValueError("implode: input too short")
    lit_flag, dict_bits = data[0], data[1]
    if lit_flag not in (LITERAL_BINARY, LITERAL_ASCII):
        raise ValueError(f"implode: invalid literal flag {lit_flag}")
    if dict_bits not in (4, 5, 6):
        raise ValueError(f"implode: invalid dictionary bits {dict_bits}")
    bs = _BitReader(data[2:])
    out = bytearray()
    while True:
        if bs.bits(1) == 0:
            if lit_flag == LITERAL_BINARY:
                out.append(bs.bits(8))
            else:
                out.append(bs.decode(_LIT_TREE))
            continue
        sym = bs.decode(_LEN_TREE)
        ln = _LEN_BASE[sym] + bs.bits(_LEN_EXTRA[sym])
        if ln == END_OF_STREAM:
            break
        extra = 2 if ln == 2 else dict_bits
        dist = (bs.decode(_DIST_TREE) << extra) + bs.bits(extra) + 1
        if dist > len(out):
            raise ValueError(f"implode: invalid distance {dist} > {len(out)}")
        src = len(out) - dist
        for _ in range(ln):
            out.append(out[src])
            src += 1
    return bytes(out)


def implode(data: bytes, dict_bits: int = DEFAULT_DICT_BITS) -> bytes:
    """Compress ``data`` into a PKWARE DCL stream with binary literals.

    Greedy LZ77 over hash chains of 3-byte prefixes.
    """
    if dict_bits not in (4, 5, 6):
        raise ValueError(f"implode: invalid dictionary bits {dict_bits}")
    window = 64 << dict_bits
    w = _BitWriter(bytes([LITERAL_BINARY, dict_bits]))
    n = len(data)
    chains: Dict[bytes, List[int]] = {}
    i = 0
    while i < n:
        best_len = 0
        best_dist = 0
        if i + MIN_MATCH <= n:
            key = data[i:i + MIN_MATCH]
            cands = chains.get(key)
            if cands:
                limit = min(MAX_MATCH, n - i)
                tries = 0
                for p in reversed(cands):
                    dist = i - p
                    if dist > window or tries >= _MAX_CHAIN:
                        break
                    tries += 1
                    ln = MIN_MATCH
                    while ln < limit and data[p + ln] == data[i + ln]:
                        ln += 1
                    if ln > best_len:
                        best_len, best_dist = ln, dist
                        if ln == limit:
                            break
        if best_len >= MIN_MATCH:
            sym, extra_val, extra_bits = _LENGTH_TABLE[best_len]
            w.put(1, 1)
            w.put(*_LEN_CODES[sym])
            w.put(extra_val, extra_bits)
            d = best_dist - 1
            w.put(*_DIST_CODES[d >> dict_bits])
            w.put(d & ((1 << dict_bits) - 1), dict_bits)
            step = best_len
        else:
            w.put(0, 1)
            w.put(data[i], 8)
            step = 1
        for j in range(i, min(i + step, n - MIN_MATCH + 1)):
            bucket = chains.setdefault(data[j:j + MIN_MATCH], [])
            bucket.append(j)
            if len(bucket) > 4 * _MAX_CHAIN:
                del bucket[: len(bucket) - _MAX_CHAIN]
        i += step
    sym, extra_val, extra_bits = _LENGTH_TABLE[END_OF_STREAM]
    w.put(1, 1)
    w.put(*_LEN_CODES[sym])
    w.put(extra_val, extra_bits)
    return w.getvalue()
