"""
Pointer files - vendor channel names and the version each one announces.

Devices poll names such as LATEST.6 or NEWESTa7.stable and expect a single
line "<version> <build>\\n". This table is the only place that decides which
branch a name resolves to.
"""
from collections.abc import Mapping
from typing import Dict, Iterator, Optional, Tuple

PointerValue = Tuple[str, int]

V6_STABLE_POINTERS = ("LATEST.6", "NEWEST6.stable", "NEWESTa6.stable", "NEWESTa6.long-term")
V6_UPGRADE_POINTERS = ("NEWEST6.upgrade", "NEWESTa6.upgrade")
V7_FIXED_POINTERS = ("NEWEST7.stable",)
V7_LATEST_POINTERS = ("NEWESTa7.stable", "LATEST.7")
CHANNELS = ("development", "testing", "release-candidate")
CHANNEL_PREFIXES = ("NEWESTa6", "NEWEST6", "NEWESTa7", "NEWEST7")

_POINTER_PREFIXES = ("latest.", "newest6", "newest7", "newesta6", "newesta7")
_BARE_CHANNEL_WORDS = ("stable", "long-term", "testing", "development")


class PointerMap(Mapping):
    """Case-insensitive mapping of pointer name -> (version, build).

    Iteration yields the canonical vendor spelling, which is what gets
    written to disk.
    """

    def __init__(self, entries: Dict[str, PointerValue]):
        self._canonical = {name.lower(): name for name in entries}
        self._values = {name.lower(): value for name, value in entries.items()}

    def __getitem__(self, name: str) -> PointerValue:
        return self._values[name.lower()]

    def __contains__(self, name) -> bool:
        return isinstance(name, str) and name.lower() in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._canonical.values())

    def __len__(self) -> int:
        return len(self._values)

    def get(self, name, default=None) -> Optional[PointerValue]:
        if not isinstance(name, str):
            return default
        return self._values.get(name.lower(), default)

    def canonical_name(self, name: str) -> Optional[str]:
        return self._canonical.get(name.lower())


def build_pointer_map(v6: str, v6_build: int,
                      v7_fixed: str, v7_fixed_build: int,
                      v7_latest: str, v7_latest_build: int) -> PointerMap:
    v6_value = (v6, v6_build)
    fixed_value = (v7_fixed, v7_fixed_build)
    latest_value = (v7_latest, v7_latest_build)

    entries: Dict[str, PointerValue] = {}
    for name in V6_STABLE_POINTERS:
        entries[name] = v6_value
    # v6 devices upgrading to v7 go straight to the latest line
    for name in V6_UPGRADE_POINTERS:
        entries[name] = latest_value
    for name in V7_FIXED_POINTERS:
        entries[name] = fixed_value
    for name in V7_LATEST_POINTERS:
        entries[name] = latest_value
    for channel in CHANNELS:
        for prefix in CHANNEL_PREFIXES:
            entries[f"{prefix}.{channel}"] = latest_value

    return PointerMap(entries)


def is_pointer_file(filename: str) -> bool:
    """Heuristic used by the file resolver to route pointer requests."""
    if not filename:
        return False
    lower = filename.lower()
    if lower.startswith(_POINTER_PREFIXES):
        return True
    return '.' not in lower and any(word in lower for word in _BARE_CHANNEL_WORDS)


def pointer_content(version: str, build: int) -> str:
    return f"{version} {build}\n"
