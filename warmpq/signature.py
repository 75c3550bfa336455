"""
Archive signature stored in the ``(signature)`` pseudo-file.

Layout: 8 zero bytes followed by an RSA PKCS#1 v1.5 signature (byte order
reversed, i.e. little-endian) over the MD5 digest of the archive from its
header to its end, with the signature file's own bytes taken as zeros.
"""

from __future__ import annotations

from Cryptodome.Hash import MD5
from Cryptodome.PublicKey import RSA
from Cryptodome.Signature import pkcs1_15


SIGNATURE_PAD = 8


def signature_size(key: RSA.RsaKey) -> int:
    return SIGNATURE_PAD + key.size_in_bytes()


def _digest(archive: bytes, sig_start: int, sig_len: int) -> MD5.MD5Hash:
    h = MD5.new()
    h.update(archive[:sig_start])
    h.update(b"\x00" * sig_len)
    h.update(archive[sig_start + sig_len:])
    return h


def sign_archive(archive: bytearray, sig_start: int, sig_len: int, key: RSA.RsaKey) -> None:
    """Fill the signature region of ``archive`` in place.

    ``archive`` spans the header to the archive end; ``sig_start`` is relative
    to it.
    """
    if not key.has_private():
        raise ValueError("Signing requires a private key")
    if sig_len != signature_size(key):
        raise ValueError("Signature region does not match key size")
    sig = pkcs1_15.new(key).sign(_digest(bytes(archive), sig_start, sig_len))
    archive[sig_start:sig_start + sig_len] = b"\x00" * SIGNATURE_PAD + sig[::-1]


def verify_archive_signature(archive: bytes, sig_start: int, stored: bytes, public_key: RSA.RsaKey) -> bool:
    if len(stored) != signature_size(public_key):
        return False
    sig = stored[SIGNATURE_PAD:][::-1]
    try:
        pkcs1_15.new(public_key).verify(_digest(archive, sig_start, len(stored)), sig)
    except ValueError:
        return False
    return True
