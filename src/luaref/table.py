"""Table storage for runtime values."""

from __future__ import annotations

import math
from typing import Any, Iterator

from luaref.errors import RuntimeFault


class LuaTable:
    """Associative storage for one runtime table.

    Entries keep their insertion order, which is the traversal order seen
    by ``next``. Assigning nil to a key leaves a dead entry in place so a
    traversal positioned on that key can still advance; dead entries are
    reclaimed when new keys are inserted.
    """

    # Dead entries tolerated before an insertion compacts the table
    COMPACT_MIN = 8

    def __init__(self) -> None:
        self._entries: list[list[Any]] = []  # [key, value]; value None = dead
        self._positions: dict[Any, int] = {}
        self._live = 0
        self.metatable: LuaTable | None = None

    @staticmethod
    def _normalize(key: Any) -> Any:
        """Floats with an integral value are stored under the integer key."""
        if isinstance(key, float) and key.is_integer():
            return int(key)
        return key

    @staticmethod
    def _hash_key(key: Any) -> Any:
        # Keep booleans apart from the integers 0 and 1
        if isinstance(key, bool):
            return (bool, key)
        return key

    def _position(self, key: Any) -> int | None:
        if key is None:
            return None
        return self._positions.get(self._hash_key(self._normalize(key)))

    def rawget(self, key: Any) -> Any:
        """Get the value stored under a key, or None."""
        pos = self._position(key)
        if pos is None:
            return None
        return self._entries[pos][1]

    def rawset(self, key: Any, value: Any) -> None:
        """Store a value under a key. Storing None removes the entry."""
        if key is None:
            raise RuntimeFault("index is nil")
        if isinstance(key, float) and math.isnan(key):
            raise RuntimeFault("index is NaN")

        key = self._normalize(key)
        hkey = self._hash_key(key)
        pos = self._positions.get(hkey)
        if pos is not None:
            entry = self._entries[pos]
            if entry[1] is None and value is not None:
                self._live += 1
            elif entry[1] is not None and value is None:
                self._live -= 1
            entry[1] = value
            return

        if value is None:
            return

        if len(self._entries) - self._live > max(self.COMPACT_MIN, self._live):
            self._compact()
        self._positions[hkey] = len(self._entries)
        self._entries.append([key, value])
        self._live += 1

    def _compact(self) -> None:
        """Drop dead entries and renumber positions."""
        self._entries = [entry for entry in self._entries if entry[1] is not None]
        self._positions = {
            self._hash_key(entry[0]): i for i, entry in enumerate(self._entries)
        }

    def next(self, key: Any) -> tuple[Any, Any] | None:
        """Return the entry after ``key`` (the first entry for None), or None at the end."""
        if key is None:
            start = 0
        else:
            pos = self._position(key)
            if pos is None:
                raise RuntimeFault("invalid key to 'next'")
            start = pos + 1
        for i in range(start, len(self._entries)):
            entry_key, entry_value = self._entries[i]
            if entry_value is not None:
                return entry_key, entry_value
        return None

    def border(self) -> int:
        """Return the length of the sequence part: n with t[n] set and t[n+1] nil."""
        n = 0
        while self.rawget(n + 1) is not None:
            n += 1
        return n

    @property
    def count(self) -> int:
        """Return the number of live entries."""
        return self._live

    def items(self) -> Iterator[tuple[Any, Any]]:
        """Iterate over live entries in traversal order."""
        for key, value in list(self._entries):
            if value is not None:
                yield key, value

    def __repr__(self) -> str:
        return f"<LuaTable at 0x{id(self):x}>"
