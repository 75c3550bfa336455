from __future__ import annotations

import re
from typing import Iterable, List

from .constants import LISTFILE_NAME, ATTRIBUTES_NAME, SIGNATURE_NAME


# Names probed when an archive carries no (listfile): the pseudo-files plus
# the files every Warcraft III map is expected to contain.
KNOWN_NAMES = (
    LISTFILE_NAME,
    ATTRIBUTES_NAME,
    SIGNATURE_NAME,
    "war3map.j",
    "scripts\\war3map.j",
    "war3map.lua",
    "scripts\\war3map.lua",
    "war3map.w3i",
    "war3map.w3e",
    "war3map.wpm",
    "war3map.doo",
    "war3mapUnits.doo",
    "war3map.w3r",
    "war3map.w3c",
    "war3map.w3s",
    "war3map.w3u",
    "war3map.w3t",
    "war3map.w3a",
    "war3map.w3b",
    "war3map.w3d",
    "war3map.w3q",
    "war3map.w3h",
    "war3map.mmp",
    "war3map.shd",
    "war3map.imp",
    "war3map.wts",
    "war3map.wct",
    "war3map.wtg",
    "war3mapMap.blp",
    "war3mapMap.tga",
    "war3mapPreview.tga",
    "war3mapPath.tga",
    "war3mapMisc.txt",
    "war3mapSkin.txt",
    "war3mapExtra.txt",
)

_SPLIT = re.compile(r"[\r\n;]+")


def build_listfile(names: Iterable[str]) -> bytes:
    """One stored (backslash) path per line, in the given order."""
    return "\n".join(names).encode("utf-8")


def parse_listfile(data: bytes) -> List[str]:
    """Split listfile content into unique names, keeping first-seen order."""
    text = data.decode("utf-8", errors="replace")
    seen = set()
    names: List[str] = []
    for line in _SPLIT.split(text):
        name = line.strip()
        if not name or name in seen:
            continue
        seen.add(name)
        names.append(name)
    return names
