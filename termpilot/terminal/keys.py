"""Per-platform key mappings and symbolic key substitution."""

from __future__ import annotations

import re
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

_POSIX_KEYS = {
    "Enter": "\n",
    "Tab": "\t",
    "Escape": "\x1b",
    "ArrowUp": "\x1b[A",
    "ArrowDown": "\x1b[B",
    "ArrowRight": "\x1b[C",
    "ArrowLeft": "\x1b[D",
}

BUILTIN_KEY_MAPPINGS: dict[str, dict[str, str]] = {
    "win32": {**_POSIX_KEYS, "Enter": "\r\n"},
    "darwin": dict(_POSIX_KEYS),
    "linux": dict(_POSIX_KEYS),
}

FALLBACK_PLATFORM = "linux"

_TOKEN_RE = re.compile(r"\{([A-Za-z][A-Za-z0-9]*)\}")


@dataclass(frozen=True)
class KeyMapping:
    """Immutable lookup from symbolic key name to the bytes a terminal expects."""

    platform: str
    keys: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "keys", MappingProxyType(dict(self.keys)))

    @classmethod
    def for_platform(
        cls,
        platform: str | None = None,
        overrides: Mapping[str, Mapping[str, str]] | None = None,
    ) -> KeyMapping:
        """Select the table for a platform, falling back to linux."""
        name = platform or sys.platform
        if name not in BUILTIN_KEY_MAPPINGS:
            name = FALLBACK_PLATFORM
        table = dict(BUILTIN_KEY_MAPPINGS[name])
        if overrides:
            table.update(overrides.get(name, {}))
        return cls(platform=name, keys=table)

    def lookup(self, key: str) -> str:
        """Sequence for a key name; unknown names are returned unchanged."""
        return self.keys.get(key, key)

    def substitute(self, text: str) -> str:
        """Replace {KeyName} tokens; unmapped tokens pass through literally."""

        def _replace(match: re.Match[str]) -> str:
            return self.keys.get(match.group(1), match.group(0))

        return _TOKEN_RE.sub(_replace, text)
