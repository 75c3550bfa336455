from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import List, Optional, Sequence

from Cryptodome.PublicKey import RSA

from warmpq.builder import AddOptions, MpqBuilder
from warmpq.constants import (
    ATTRIBUTES_NAME,
    CODEC_NAMES,
    CODEC_ZLIB,
    DEFAULT_SECTOR_SHIFT,
    FILE_COMPRESS,
    FILE_ENCRYPTED,
    FILE_FIX_KEY,
    FILE_IMPLODE,
    FILE_SECTOR_CRC,
    FILE_SINGLE_UNIT,
    LISTFILE_NAME,
    SIGNATURE_NAME,
)
from warmpq.errors import MpqError
from warmpq.reader import MpqReader


def _load_key(path: Optional[str]):
    if not path:
        return None
    with open(path, "rb") as fh:
        return RSA.import_key(fh.read())


def _flag_names(flags: int) -> str:
    names = []
    for bit, name in (
        (FILE_IMPLODE, "implode"),
        (FILE_COMPRESS, "compress"),
        (FILE_ENCRYPTED, "encrypted"),
        (FILE_FIX_KEY, "fix-key"),
        (FILE_SINGLE_UNIT, "single-unit"),
        (FILE_SECTOR_CRC, "sector-crc"),
    ):
        if flags & bit:
            names.append(name)
    return ",".join(names) or "-"


def _builder(
    *,
    sector_shift: int,
    listfile: bool,
    attributes: bool,
    prefix: Optional[str],
    sign: Optional[str],
) -> MpqBuilder:
    prefix_data = b""
    if prefix:
        with open(prefix, "rb") as fh:
            prefix_data = fh.read()
    return MpqBuilder(
        sector_shift,
        listfile=listfile,
        attributes=attributes,
        prefix=prefix_data,
        signing_key=_load_key(sign),
    )


def _options(*, encrypt: bool, compress: bool, codecs: Optional[Sequence[str]]) -> AddOptions:
    chosen = tuple(CODEC_NAMES[c] for c in codecs) if codecs else (CODEC_ZLIB,)
    return AddOptions(encrypt=encrypt, compress=compress, codecs=chosen)


def cmd_list(archive: str, *, long: bool = False, names: Optional[List[str]] = None) -> bool:
    """List archive files.

    Args:
        archive: Path to an .mpq/.w3x file.
        long: Also print sizes and storage flags.
        names: Extra candidate names probed when the archive has no listfile.
    """
    r = MpqReader.from_path(archive)
    if long:
        for info in r.entries(names or ()):
            print(f"{info.file_size}\t{info.compressed_size}\t{_flag_names(info.flags)}\t{info.locale}\t{info.path}")
    else:
        for path in r.list_files(names or ()):
            print(path)
    return True


def cmd_info(archive: str) -> bool:
    r = MpqReader.from_path(archive)
    h = r.header
    live = [b for b in r.block_table if b.exists]
    print(f"Archive: {archive}")
    print(f"  Header offset: {h.offset}")
    print(f"  Format version: {h.format_version}")
    print(f"  Archive size: {h.archive_size}")
    print(f"  Sector size: {h.sector_size}")
    print(f"  Hash table: {h.hash_table_count} slots at {h.hash_table_offset}")
    print(f"  Block table: {h.block_table_count} entries at {h.block_table_offset}")
    print(f"  Files: {len(live)}")
    print(f"    Named: {len(r.list_files())}")
    print(f"    Stored bytes: {sum(b.compressed_size for b in live)}")
    print(f"    Raw bytes: {sum(b.file_size for b in live)}")
    print(f"  Listfile: {'yes' if r.has_file(LISTFILE_NAME) else 'no'}")
    print(f"  Attributes: {'yes' if r.has_file(ATTRIBUTES_NAME) else 'no'}")
    print(f"  Signed: {'yes' if r.has_file(SIGNATURE_NAME) else 'no'}")
    return True


def cmd_cat(archive: str, path: str) -> bool:
    data = MpqReader.from_path(archive).read_file(path)
    out = getattr(sys.stdout, "buffer", None)
    if out is None:
        sys.stdout.write(data.decode("utf-8", errors="replace"))
    else:
        out.write(data)
        out.flush()
    return True


def cmd_extract(archive: str, *, outdir: str = ".", names: Optional[List[str]] = None, quiet: bool = False) -> bool:
    """Extract every named file of ``archive`` below ``outdir``."""
    written = MpqReader.from_path(archive).extract_to(outdir, names or ())
    if not quiet:
        for path in written:
            print(path)
    print(f"Extracted {len(written)} file(s) to {outdir}")
    return True


def cmd_pack(
    output: str,
    inputs: List[str],
    *,
    sector_shift: int = DEFAULT_SECTOR_SHIFT,
    listfile: bool = True,
    attributes: bool = True,
    encrypt: bool = False,
    compress: bool = True,
    codecs: Optional[Sequence[str]] = None,
    prefix: Optional[str] = None,
    sign: Optional[str] = None,
) -> bool:
    """Pack directories (walked recursively) and single files into ``output``.

    Files named directly are stored under their base name; later inputs win
    over earlier ones for the same archive path.
    """
    b = _builder(sector_shift=sector_shift, listfile=listfile, attributes=attributes, prefix=prefix, sign=sign)
    opts = _options(encrypt=encrypt, compress=compress, codecs=codecs)
    for src in inputs:
        if os.path.isdir(src):
            b.add_from_directory(src, opts)
        else:
            b.add_from_disk(os.path.basename(src), src, opts)
    final = b.write(output)
    print(f"Wrote {output}: {len(final.names)} file(s), {len(final.data)} bytes")
    return True


def cmd_merge(
    output: str,
    archives: List[str],
    *,
    sector_shift: int = DEFAULT_SECTOR_SHIFT,
    listfile: bool = True,
    attributes: bool = True,
    encrypt: bool = False,
    compress: bool = True,
    codecs: Optional[Sequence[str]] = None,
    prefix: Optional[str] = None,
    sign: Optional[str] = None,
) -> bool:
    """Merge ``archives`` into ``output``; files of later archives win."""
    b = _builder(sector_shift=sector_shift, listfile=listfile, attributes=attributes, prefix=prefix, sign=sign)
    opts = _options(encrypt=encrypt, compress=compress, codecs=codecs)
    for src in archives:
        b.add_from_archive(MpqReader.from_path(src), opts)
    final = b.write(output)
    print(f"Wrote {output}: {len(final.names)} file(s), {len(final.data)} bytes")
    return True


def cmd_verify(archive: str, *, public_key: Optional[str] = None) -> bool:
    """Verify archive integrity.

    Prints:
        "OK" on success, "FAIL" on mismatch.
    """
    r = MpqReader.from_path(archive)
    ok = r.verify()
    if ok and public_key:
        ok = r.verify_signature(_load_key(public_key))
        if not ok:
            print("Signature mismatch", file=sys.stderr)
    print("OK" if ok else "FAIL")
    return ok


def _add_build_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--sector-shift", type=int, default=DEFAULT_SECTOR_SHIFT, help="Sector size is 512 << shift (default 3 = 4096)")
    p.add_argument("--no-listfile", action="store_true", help="Do not write (listfile)")
    p.add_argument("--no-attributes", action="store_true", help="Do not write (attributes)")
    p.add_argument("--encrypt", action="store_true", help="Encrypt stored files")
    p.add_argument("--no-compress", action="store_true", help="Store files uncompressed")
    p.add_argument(
        "--codec",
        action="append",
        choices=sorted(CODEC_NAMES),
        help="Candidate codec per sector; repeat to try several (default: zlib)",
    )
    p.add_argument("--prefix", help="File written before the archive header (e.g. a map header)")
    p.add_argument("--sign", help="PEM private key used to write (signature)")


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="warmpq",
        description="Read and write MPQ archives (Warcraft III maps)",
        epilog="Codecs: " + ", ".join(sorted(CODEC_NAMES)),
    )
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_list = sub.add_parser("list", help="List archive files")
    ap_list.add_argument("archive", help="Archive path")
    ap_list.add_argument("-l", "--long", action="store_true", help="Show sizes, flags and locale")
    ap_list.add_argument("--name", action="append", dest="names", help="Extra file name to probe")

    ap_info = sub.add_parser("info", help="Show archive information")
    ap_info.add_argument("archive", help="Archive path")

    ap_cat = sub.add_parser("cat", help="Write one file to stdout")
    ap_cat.add_argument("archive", help="Archive path")
    ap_cat.add_argument("path", help="Path inside the archive")

    ap_extract = sub.add_parser("extract", help="Extract files")
    ap_extract.add_argument("archive", help="Archive path")
    ap_extract.add_argument("--outdir", default=".", help="Output directory")
    ap_extract.add_argument("--name", action="append", dest="names", help="Extra file name to probe")
    ap_extract.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_pack = sub.add_parser("pack", help="Pack files/directories into an archive")
    ap_pack.add_argument("output", help="Output archive path")
    ap_pack.add_argument("inputs", nargs="+", help="Input files/directories")
    _add_build_args(ap_pack)

    ap_merge = sub.add_parser("merge", help="Merge archives; later archives win")
    ap_merge.add_argument("output", help="Output archive path")
    ap_merge.add_argument("archives", nargs="+", help="Source archives")
    _add_build_args(ap_merge)

    ap_verify = sub.add_parser("verify", help="Verify archive integrity")
    ap_verify.add_argument("archive", help="Archive path")
    ap_verify.add_argument("--public-key", help="PEM public key to check (signature) against")

    args = ap.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        if args.cmd == "list":
            cmd_list(args.archive, long=args.long, names=args.names)
        elif args.cmd == "info":
            cmd_info(args.archive)
        elif args.cmd == "cat":
            cmd_cat(args.archive, args.path)
        elif args.cmd == "extract":
            cmd_extract(args.archive, outdir=args.outdir, names=args.names, quiet=args.quiet)
        elif args.cmd in ("pack", "merge"):
            build = cmd_pack if args.cmd == "pack" else cmd_merge
            build(
                args.output,
                args.inputs if args.cmd == "pack" else args.archives,
                sector_shift=args.sector_shift,
                listfile=not args.no_listfile,
                attributes=not args.no_attributes,
                encrypt=args.encrypt,
                compress=not args.no_compress,
                codecs=args.codec,
                prefix=args.prefix,
                sign=args.sign,
            )
        elif args.cmd == "verify":
            ok = cmd_verify(args.archive, public_key=args.public_key)
            sys.exit(0 if ok else 1)
        else:
            raise RuntimeError("Unknown command")
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except (MpqError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
