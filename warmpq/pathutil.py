from __future__ import annotations

from .errors import UnsafePathError


def archive_name(p: str) -> str:
    """Normalize a caller path to the stored archive form.

    Rules:
    - Convert forward slashes to backslashes
    - Strip leading/trailing separators
    - Remove empty and '.' segments
    - Case is preserved; hashing is case-insensitive
    """
    p = p.replace("/", "\\").strip("\\")
    parts = [q for q in p.split("\\") if q not in ("", ".")]
    if not parts:
        raise ValueError("Archive path may not be empty")
    return "\\".join(parts)


def display_name(p: str) -> str:
    """Stored backslash form -> forward-slash form used for enumeration."""
    return p.replace("\\", "/")


def safe_relpath(p: str) -> str:
    """Return a relative forward-slash path that is safe to create on disk."""
    q = p.replace("\\", "/")
    if q.startswith("/") or (len(q) > 1 and q[1] == ":"):
        raise UnsafePathError(f"Absolute path in archive: {p}", path=p)
    parts = [s for s in q.split("/") if s not in ("", ".")]
    for s in parts:
        if s == "..":
            raise UnsafePathError(f"Path may not contain '..': {p}", path=p)
    if not parts:
        raise UnsafePathError("Empty path in archive", path=p)
    return "/".join(parts)
