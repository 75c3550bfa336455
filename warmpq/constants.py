from __future__ import annotations


# Magic and version
HEADER_MAGIC = b"MPQ\x1a"       # 4 bytes: "MPQ\x1A"
USER_DATA_MAGIC = b"MPQ\x1b"    # 4 bytes: "MPQ\x1B"

FORMAT_VERSION = 0
SUPPORTED_VERSIONS = (0, 1)
HEADER_SIZE = 32
HEADER_ALIGNMENT = 512
HEADER_SCAN_LIMIT = 16 * 1024 * 1024

# Sector size is 512 << shift
DEFAULT_SECTOR_SHIFT = 3  # 4096 bytes
MAX_SECTOR_SHIFT = 15

# Block table flags
FILE_IMPLODE = 0x00000100
FILE_COMPRESS = 0x00000200
FILE_ENCRYPTED = 0x00010000
FILE_FIX_KEY = 0x00020000
FILE_SINGLE_UNIT = 0x01000000
FILE_DELETE_MARKER = 0x02000000
FILE_SECTOR_CRC = 0x04000000
FILE_EXISTS = 0x80000000

# Flags that change how the stored bytes of a file are laid out
STORAGE_FLAGS = (
    FILE_IMPLODE
    | FILE_COMPRESS
    | FILE_ENCRYPTED
    | FILE_FIX_KEY
    | FILE_SINGLE_UNIT
    | FILE_SECTOR_CRC
)

# Hash table sentinels (block index column)
HASH_ENTRY_EMPTY = 0xFFFFFFFF
HASH_ENTRY_DELETED = 0xFFFFFFFE

HASH_ENTRY_SIZE = 16
BLOCK_ENTRY_SIZE = 16

# Locale/platform wildcard
LOCALE_NEUTRAL = 0
PLATFORM_NEUTRAL = 0

# Hash types (seed offsets into the crypt table, in units of 0x100)
HASH_TABLE_OFFSET = 0
HASH_NAME_A = 1
HASH_NAME_B = 2
HASH_FILE_KEY = 3

# Codec masks (one byte prefixed to compressed sectors)
CODEC_NONE = 0x00
CODEC_ZLIB = 0x02
CODEC_PKWARE = 0x08
CODEC_BZIP2 = 0x10

# Decompression order for sectors compressed with several codecs
CODEC_DECODE_ORDER = (CODEC_BZIP2, CODEC_PKWARE, CODEC_ZLIB)

CODEC_NAMES = {
    "zlib": CODEC_ZLIB,
    "pkware": CODEC_PKWARE,
    "bzip2": CODEC_BZIP2,
}

DEFAULT_CODECS = (CODEC_ZLIB,)

# Hash table sizing
DEFAULT_LOAD_FACTOR = 0.75

# Pseudo-files
LISTFILE_NAME = "(listfile)"
ATTRIBUTES_NAME = "(attributes)"
SIGNATURE_NAME = "(signature)"
PSEUDO_FILES = (LISTFILE_NAME, ATTRIBUTES_NAME, SIGNATURE_NAME)

ATTRIBUTES_VERSION = 100
ATTR_CRC32 = 0x00000001
ATTR_FILETIME = 0x00000002
ATTR_MD5 = 0x00000004
