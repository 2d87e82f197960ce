"""Registry of pinned runtime values."""

from __future__ import annotations

from typing import Any

from luaref.errors import ReleasedHandleError

# Handle of an explicit nil; never occupies a slot
REFNIL = -1

# Handle meaning "no slot at all"
NOREF = -2

_FREE = object()


class Registry:
    """Maps small integer handles to runtime values.

    A value stays reachable for as long as a handle to it is registered.
    Released handles go onto a free list and are reused by later
    registrations.
    """

    def __init__(self) -> None:
        self._slots: list[Any] = []
        self._free: list[int] = []
        self._live = 0

    def ref(self, value: Any) -> int:
        """Register a value and return its handle. nil maps to REFNIL."""
        if value is None:
            return REFNIL
        if self._free:
            handle = self._free.pop()
            self._slots[handle] = value
        else:
            handle = len(self._slots)
            self._slots.append(value)
        self._live += 1
        return handle

    def get(self, handle: int) -> Any:
        """Get the value registered under a handle."""
        if handle == REFNIL:
            return None
        if not self.is_live(handle):
            raise ReleasedHandleError(f"Registry slot {handle} is not in use")
        return self._slots[handle]

    def unref(self, handle: int) -> None:
        """Release a handle. Sentinel handles are ignored."""
        if handle < 0:
            return
        if not self.is_live(handle):
            raise ReleasedHandleError(f"Registry slot {handle} is not in use")
        self._slots[handle] = _FREE
        self._free.append(handle)
        self._live -= 1

    def is_live(self, handle: int) -> bool:
        """Check whether a handle currently holds a value."""
        return 0 <= handle < len(self._slots) and self._slots[handle] is not _FREE

    @property
    def live_count(self) -> int:
        """Return the number of registered values."""
        return self._live

    def clear(self) -> None:
        """Drop every registration."""
        self._slots.clear()
        self._free.clear()
        self._live = 0
