from __future__ import annotations

import logging
import os
import stat
import tempfile
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple, Union

from .attributes import build_attributes
from .constants import (
    ATTRIBUTES_NAME,
    DEFAULT_CODECS,
    DEFAULT_LOAD_FACTOR,
    DEFAULT_SECTOR_SHIFT,
    FILE_COMPRESS,
    FILE_ENCRYPTED,
    FILE_EXISTS,
    FILE_FIX_KEY,
    FILE_SINGLE_UNIT,
    HEADER_SIZE,
    LISTFILE_NAME,
    LOCALE_NEUTRAL,
    MAX_SECTOR_SHIFT,
    PLATFORM_NEUTRAL,
    PSEUDO_FILES,
    SIGNATURE_NAME,
    STORAGE_FLAGS,
    BLOCK_ENTRY_SIZE,
)
from .crypto import derive_file_key
from .errors import AlreadyFinalized, FormatError, IoFailure
from .hashutil import normalize_path
from .layout import Header, pack_header, pad_prefix, plan_layout
from .listfile import build_listfile
from .pathutil import archive_name
from .sectors import encode_file
from .signature import sign_archive, signature_size
from .tables import PROBE_DOUBLE, BlockEntry, BlockTable, HashTable, hash_table_size_for, next_power_of_two

if TYPE_CHECKING:
    from Cryptodome.PublicKey.RSA import RsaKey
    from .reader import MpqReader

log = logging.getLogger(__name__)

SOURCE_BYTES = "bytes"
SOURCE_DISK = "disk"
SOURCE_ARCHIVE = "archive"

_PSEUDO_KEYS = {normalize_path(p) for p in PSEUDO_FILES}


@dataclass(frozen=True)
class AddOptions:
    """How a file is stored. ``None`` anywhere an options argument is taken means these defaults."""

    encrypt: bool = False
    compress: bool = True
    include_in_listfile: bool = True
    codecs: Tuple[int, ...] = DEFAULT_CODECS
    fix_key: bool = False
    single_unit: bool = False
    locale: int = LOCALE_NEUTRAL
    platform: int = PLATFORM_NEUTRAL

    def block_flags(self, file_size: int, sector_size: int) -> int:
        flags = FILE_EXISTS
        if self.compress:
            flags |= FILE_COMPRESS
        if self.encrypt:
            flags |= FILE_ENCRYPTED
            if self.fix_key:
                flags |= FILE_FIX_KEY
        if self.single_unit and file_size <= sector_size:
            flags |= FILE_SINGLE_UNIT
        return flags


@dataclass(frozen=True)
class StoredCopy:
    """Stored bytes of a file as found in a source archive."""

    raw: bytes
    flags: int
    sector_size: int


@dataclass
class PendingEntry:
    path: str  # stored form (backslash separators)
    data: bytes
    options: AddOptions
    source: str = SOURCE_BYTES
    origin: Optional[str] = None  # disk path or source archive name
    stored: Optional[StoredCopy] = None

    @property
    def key(self) -> Tuple[str, int, int]:
        return normalize_path(self.path), self.options.locale, self.options.platform


@dataclass(frozen=True)
class FinalizedArchive:
    """Immutable result of :meth:`MpqBuilder.finalize`."""

    data: bytes
    header: Header
    names: Tuple[str, ...]  # stored paths in block order

    def write(self, path: Union[str, os.PathLike]) -> None:
        """Persist atomically: temp file in the target directory, then rename."""
        target = os.path.abspath(os.fspath(path))
        directory = os.path.dirname(target) or "."
        try:
            fd, temp_path = tempfile.mkstemp(prefix=".warmpq-", suffix=".tmp", dir=directory)
        except OSError as exc:
            raise IoFailure(f"Cannot create archive in {directory}: {exc}", path=target) from exc
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(self.data)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(temp_path, _target_mode(target))
            os.replace(temp_path, target)
        except OSError as exc:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise IoFailure(f"Failed to write archive {target}: {exc}", path=target) from exc
        log.debug("wrote %d bytes to %s", len(self.data), target)


class MpqBuilder:
    """Accumulates files and turns them into one archive.

    Adds may come in any order; a later add for the same path (and
    locale/platform) replaces the earlier one. :meth:`finalize` caches the
    serialized archive until the next mutation. A successful :meth:`write`
    locks the builder: further mutation raises :class:`AlreadyFinalized`
    until :meth:`reset`, while repeated writes reproduce identical bytes.
    """

    def __init__(
        self,
        sector_shift: int = DEFAULT_SECTOR_SHIFT,
        *,
        load_factor: float = DEFAULT_LOAD_FACTOR,
        probe: str = PROBE_DOUBLE,
        listfile: bool = True,
        attributes: bool = True,
        prefix: bytes = b"",
        signing_key: Optional["RsaKey"] = None,
    ):
        if not 0 <= sector_shift <= MAX_SECTOR_SHIFT:
            raise ValueError(f"sector_shift must be in 0..{MAX_SECTOR_SHIFT}")
        hash_table_size_for(0, load_factor)  # validates load_factor
        HashTable(1, probe=probe)  # validates probe
        if signing_key is not None and not signing_key.has_private():
            raise ValueError("signing_key must be a private key")
        self.sector_shift = sector_shift
        self.load_factor = load_factor
        self.probe = probe
        self.listfile = listfile
        self.attributes = attributes
        self.prefix = pad_prefix(bytes(prefix))
        self.signing_key = signing_key
        self.pending: Dict[Tuple[str, int, int], PendingEntry] = {}
        self._snapshot: Optional[FinalizedArchive] = None
        self._written = False

    @property
    def sector_size(self) -> int:
        return 512 << self.sector_shift

    @property
    def finalized(self) -> bool:
        """True once an archive has been written from the current state."""
        return self._written

    def __len__(self) -> int:
        return len(self.pending)

    def __contains__(self, path: str) -> bool:
        key = normalize_path(archive_name(path))
        return any(k[0] == key for k in self.pending)

    def paths(self) -> List[str]:
        return [e.path for e in self.pending.values()]

    def add(self, path: str, data: Union[bytes, bytearray, memoryview, str], options: Optional[AddOptions] = None):
        """Add ``data`` under ``path``; text is stored as UTF-8."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._put(PendingEntry(path=archive_name(path), data=bytes(data), options=options or AddOptions()))

    def add_from_disk(self, archive_path: str, disk_path: Union[str, os.PathLike], options: Optional[AddOptions] = None):
        """Read ``disk_path`` now and add it under ``archive_path``."""
        self._check_mutable()
        name = archive_name(archive_path)
        data = _read_disk_file(disk_path)
        self._put(
            PendingEntry(
                path=name,
                data=data,
                options=options or AddOptions(),
                source=SOURCE_DISK,
                origin=os.fspath(disk_path),
            )
        )

    def add_from_directory(self, root: Union[str, os.PathLike], options: Optional[AddOptions] = None) -> int:
        """Add every file below ``root``, named by its path relative to ``root``.

        Nothing is added if any part of the walk or any read fails.
        """
        self._check_mutable()
        root = os.fspath(root)
        if not os.path.isdir(root):
            raise IoFailure(f"Not a directory: {root}", path=root)
        errors: List[OSError] = []
        staged: List[PendingEntry] = []
        opts = options or AddOptions()
        for dirpath, dirnames, filenames in os.walk(root, onerror=errors.append):
            dirnames.sort()
            for fn in sorted(filenames):
                fs_path = os.path.join(dirpath, fn)
                rel = os.path.relpath(fs_path, root)
                staged.append(
                    PendingEntry(
                        path=archive_name(rel.replace(os.sep, "\\")),
                        data=_read_disk_file(fs_path),
                        options=opts,
                        source=SOURCE_DISK,
                        origin=fs_path,
                    )
                )
        if errors:
            exc = errors[0]
            raise IoFailure(f"Failed to walk {root}: {exc}", path=getattr(exc, "filename", None) or root) from exc
        for entry in staged:
            self._put(entry)
        log.debug("added %d file(s) from directory %s", len(staged), root)
        return len(staged)

    def add_from_archive(self, reader: "MpqReader", options: Optional[AddOptions] = None) -> int:
        """Copy every enumerable file (all locale variants) of ``reader``.

        Stored bytes are reused when they are already laid out the way
        ``options`` asks for; otherwise the file is decoded and re-encoded.
        """
        self._check_mutable()
        opts = options or AddOptions()
        staged: List[PendingEntry] = []
        for info in reader.entries():
            staged.append(
                PendingEntry(
                    path=info.name,
                    data=reader.read_entry(info),
                    options=replace(opts, locale=info.locale, platform=info.platform),
                    source=SOURCE_ARCHIVE,
                    origin=reader.name,
                    stored=StoredCopy(raw=reader.read_raw_entry(info), flags=info.flags, sector_size=reader.sector_size),
                )
            )
        for entry in staged:
            self._put(entry)
        log.debug("added %d file(s) from archive %s", len(staged), reader.name)
        return len(staged)

    def remove(self, path: str, locale: int = LOCALE_NEUTRAL, platform: int = PLATFORM_NEUTRAL) -> bool:
        self._check_mutable()
        removed = self.pending.pop((normalize_path(archive_name(path)), locale, platform), None) is not None
        if removed:
            self._snapshot = None
        return removed

    def reset(self):
        """Drop the finalized result and allow mutation again."""
        self._snapshot = None
        self._written = False

    def finalize(self) -> FinalizedArchive:
        """Lay out, encode and serialize the pending set (cached until the next mutation)."""
        if self._snapshot is None:
            self._snapshot = self._build()
        return self._snapshot

    def to_bytes(self) -> bytes:
        return self.finalize().data

    def write(self, path: Union[str, os.PathLike]) -> FinalizedArchive:
        final = self.finalize()
        final.write(path)
        self._written = True
        return final

    # internals
    def _check_mutable(self):
        if self._written:
            raise AlreadyFinalized("Builder was already written; call reset() before modifying it")

    def _put(self, entry: PendingEntry):
        self._check_mutable()
        key = entry.key
        if self.pending.pop(key, None) is not None:
            log.debug("replacing pending entry %s", entry.path)
        self.pending[key] = entry
        self._snapshot = None

    def _entries_for_layout(self) -> List[PendingEntry]:
        entries = list(self.pending.values())
        listed: List[str] = []
        seen = set(_PSEUDO_KEYS)
        for e in entries:
            key = normalize_path(e.path)
            if e.options.include_in_listfile and key not in seen:
                seen.add(key)
                listed.append(e.path)
        generated = set()
        if self.listfile and listed:
            generated.add(normalize_path(LISTFILE_NAME))
        if self.attributes and entries:
            generated.add(normalize_path(ATTRIBUTES_NAME))
        if self.signing_key is not None:
            generated.add(normalize_path(SIGNATURE_NAME))
        entries = [e for e in entries if normalize_path(e.path) not in generated]
        if self.listfile and listed:
            entries.append(
                PendingEntry(path=LISTFILE_NAME, data=build_listfile(listed), options=AddOptions(include_in_listfile=False))
            )
        return entries

    def _build(self) -> FinalizedArchive:
        entries = self._entries_for_layout()
        with_attributes = self.attributes and bool(self.pending)
        count = len(entries) + (1 if with_attributes else 0) + (1 if self.signing_key is not None else 0)
        block_count = next_power_of_two(max(count, 1))
        hash_count = hash_table_size_for(count, self.load_factor)
        if with_attributes:
            plain: List[Optional[bytes]] = [e.data for e in entries]
            plain += [None] * (block_count - len(plain))
            entries.append(
                PendingEntry(
                    path=ATTRIBUTES_NAME,
                    data=build_attributes(plain),
                    options=AddOptions(include_in_listfile=False),
                )
            )
        if self.signing_key is not None:
            entries.append(
                PendingEntry(
                    path=SIGNATURE_NAME,
                    data=b"\x00" * signature_size(self.signing_key),
                    options=AddOptions(compress=False, include_in_listfile=False),
                )
            )

        blocks = BlockTable()
        payloads: List[bytes] = []
        pos = HEADER_SIZE
        for e in entries:
            flags = e.options.block_flags(len(e.data), self.sector_size)
            stored = self._reuse_stored(e, flags)
            if stored is None:
                key = None
                if flags & FILE_ENCRYPTED:
                    key = derive_file_key(e.path, pos, len(e.data), bool(flags & FILE_FIX_KEY))
                stored = encode_file(e.data, flags, self.sector_size, e.options.codecs, key)
            else:
                flags = e.stored.flags
            blocks.append(BlockEntry(pos, len(stored), len(e.data), flags))
            payloads.append(stored)
            pos += len(stored)
        blocks.pad_to(block_count)

        offsets, hash_off, block_off, _end = plan_layout([len(p) for p in payloads], hash_count)
        hashes = HashTable(hash_count, probe=self.probe)
        for index, e in enumerate(entries):
            if offsets[index] != blocks[index].file_offset:
                raise FormatError("Layout drifted while encoding", path=e.path)
            hashes.insert(e.path, index, e.options.locale, e.options.platform)

        archive_size = block_off + block_count * BLOCK_ENTRY_SIZE
        if len(self.prefix) + archive_size > 0xFFFFFFFF:
            raise FormatError("Archive exceeds 4 GiB")
        header = Header(
            archive_size=archive_size,
            sector_shift=self.sector_shift,
            hash_table_offset=hash_off,
            block_table_offset=block_off,
            hash_table_count=hash_count,
            block_table_count=block_count,
            offset=len(self.prefix),
        )
        region = bytearray(pack_header(header))
        for p in payloads:
            region += p
        region += hashes.pack()
        region += blocks.pack()
        if self.signing_key is not None:
            sig = blocks[len(entries) - 1]
            sign_archive(region, sig.file_offset, sig.compressed_size, self.signing_key)
        log.debug(
            "finalized %d file(s): hash table %d, block table %d, %d bytes",
            len(entries),
            hash_count,
            block_count,
            len(region),
        )
        return FinalizedArchive(
            data=self.prefix + bytes(region),
            header=header,
            names=tuple(e.path for e in entries),
        )

    def _reuse_stored(self, e: PendingEntry, flags: int) -> Optional[bytes]:
        if e.stored is None:
            return None
        src = e.stored
        if (src.flags & STORAGE_FLAGS) != (flags & STORAGE_FLAGS):
            log.debug("re-encoding %s: stored flags 0x%08x differ from 0x%08x", e.path, src.flags, flags)
            return None
        if flags & FILE_FIX_KEY:
            log.debug("re-encoding %s: key is bound to the old file offset", e.path)
            return None
        if src.sector_size != self.sector_size and not flags & FILE_SINGLE_UNIT and len(e.data) > 0:
            if flags & (FILE_COMPRESS | FILE_ENCRYPTED):
                log.debug("re-encoding %s: sector size %d differs", e.path, src.sector_size)
                return None
        return src.raw


def _read_disk_file(disk_path: Union[str, os.PathLike]) -> bytes:
    try:
        with open(disk_path, "rb") as fh:
            return fh.read()
    except OSError as exc:
        raise IoFailure(f"Failed to read {os.fspath(disk_path)}: {exc}", path=os.fspath(disk_path)) from exc


def _target_mode(target: str) -> int:
    """Permission bits for a new archive: those of the file it replaces, else 0o666 under the umask."""
    try:
        st = os.stat(target)
    except OSError:
        st = None
    if st is not None and stat.S_ISREG(st.st_mode):
        return stat.S_IMODE(st.st_mode)
    umask = os.umask(0)
    os.umask(umask)
    return 0o666 & ~umask
