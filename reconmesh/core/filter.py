"""Thread-safe seen-set used to suppress duplicate work."""

from __future__ import annotations

import threading
from typing import Set


class StringFilter:
    """A concurrent-safe set of previously seen strings.

    :meth:`duplicate` tests and inserts in one step, so two callers racing on
    the same key can never both observe ``False``.

    Example::

        seen = StringFilter()
        assert seen.duplicate("www.example.com") is False
        assert seen.duplicate("www.example.com") is True
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._seen: Set[str] = set()

    def duplicate(self, key: str) -> bool:
        """Return ``True`` if *key* was seen before, recording it otherwise.

        Args:
            key: The string to check.

        Returns:
            ``False`` on the first call for *key*, ``True`` on every later call.
        """
        with self._lock:
            if key in self._seen:
                return True
            self._seen.add(key)
            return False

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._seen

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)

    def __repr__(self) -> str:
        return f"StringFilter(size={len(self)})"
