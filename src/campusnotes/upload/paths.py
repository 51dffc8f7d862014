"""Storage path derivation: ``{owner_id}/{millis}_{sanitized_name}``."""

from __future__ import annotations

import re
import time
from collections.abc import Callable

_UNSAFE_RUN_RE = re.compile(r"[^a-z0-9.]+")


def sanitize_file_name(raw_name: str) -> str:
    """Lowercase *raw_name* and collapse every run of characters other than
    ``[a-z0-9.]`` into a single underscore.

    >>> sanitize_file_name("My Notes (Final).PDF")
    'my_notes_final_.pdf'
    """
    cleaned = _UNSAFE_RUN_RE.sub("_", raw_name.lower())
    return cleaned or "file"


class PathNamer:
    """Derive collision-free object keys.

    The millisecond timestamp is forced to be strictly increasing per
    instance, so two derivations never produce the same key even when they
    happen within one millisecond.

    Parameters
    ----------
    clock:
        Returns the current time in milliseconds.
    """

    def __init__(self, clock: Callable[[], int] | None = None) -> None:
        self._clock = clock or (lambda: time.time_ns() // 1_000_000)
        self._last_ms = 0

    def _next_millis(self) -> int:
        now = self._clock()
        if now <= self._last_ms:
            now = self._last_ms + 1
        self._last_ms = now
        return now

    def derive_path(self, owner_id: str, raw_file_name: str) -> str:
        if not owner_id or "/" in owner_id:
            raise ValueError(f"Invalid owner id for storage path: {owner_id!r}")
        return f"{owner_id}/{self._next_millis()}_{sanitize_file_name(raw_file_name)}"
