"""
warmpq: read and write MPQ archives, the container format of Warcraft III maps.

Features:

- Deterministic builder: identical inputs give identical archive bytes.
- Per-sector compression (zlib, bzip2, PKWARE DCL implode) with store fallback.
- Classic MPQ file encryption, including offset-bound (FIX_KEY) keys.
- Generated (listfile), (attributes) and RSA (signature) pseudo-files.
- Merge archives with later sources taking precedence; atomic writes.

Quick use::

    b = warmpq.create()
    b.add("war3map.j", script)
    b.write("map.w3x")

    r = warmpq.open("map.w3x")
    r.read_file("war3map.j")
"""

from __future__ import annotations

import os
from typing import Union

from .builder import AddOptions, FinalizedArchive, MpqBuilder
from .errors import (
    AlreadyFinalized,
    FormatError,
    IoFailure,
    MpqError,
    NotFound,
)
from .reader import FileInfo, MpqReader

__version__ = "0.1"

__all__ = [
    "create",
    "open",
    "open_bytes",
    "MpqBuilder",
    "MpqReader",
    "AddOptions",
    "FileInfo",
    "FinalizedArchive",
    "MpqError",
    "IoFailure",
    "FormatError",
    "NotFound",
    "AlreadyFinalized",
]


def create(**kwargs) -> MpqBuilder:
    """New empty builder; keyword arguments go to :class:`MpqBuilder`."""
    return MpqBuilder(**kwargs)


def open(path: Union[str, os.PathLike]) -> MpqReader:
    return MpqReader.from_path(path)


def open_bytes(data: bytes, name: str = None) -> MpqReader:
    return MpqReader(data, name=name)
