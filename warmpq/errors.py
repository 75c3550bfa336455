from __future__ import annotations

from typing import Optional


class MpqError(Exception):
    """Base class for warmpq errors.

    ``kind`` names the failure family and ``path`` the offending archive or
    filesystem path, when there is one.
    """

    kind = "MpqError"

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class IoFailure(MpqError):
    kind = "IoFailure"


class NotFound(MpqError):
    kind = "NotFound"


class AlreadyFinalized(MpqError):
    kind = "AlreadyFinalized"


# Format/consistency
class FormatError(MpqError):
    kind = "FormatError"


class HeaderNotFoundError(FormatError):
    pass


class TableBoundsError(FormatError):
    pass


class SectorTableError(FormatError):
    pass


class SectorDataError(FormatError):
    pass


class UnknownCodecError(FormatError):
    pass


class UnsafePathError(FormatError):
    pass
