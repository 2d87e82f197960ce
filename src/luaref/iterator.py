"""Single-pass cursors over table entries."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from luaref import convert
from luaref.handles import OwnedHandle, StackPop
from luaref.ref import LuaRef

if TYPE_CHECKING:
    from luaref.state import LuaState


@dataclass(frozen=True, eq=False)
class Positioned:
    """A cursor resting on one entry; both slots are owned by the cursor."""

    key: OwnedHandle
    value: OwnedHandle

    def release(self) -> None:
        self.key.release()
        self.value.release()


class _Exhausted:
    def __repr__(self) -> str:
        return "EXHAUSTED"


EXHAUSTED = _Exhausted()


class TableIterator:
    """A forward cursor driven by the runtime's ``next``.

    The cursor is either ``Positioned`` on an entry or ``EXHAUSTED``.
    Traversal order is whatever the runtime's ``next`` yields. Removing the
    current key or changing existing values during a pass is fine; adding
    keys is not.

    Example:
        cursor = table.begin()
        while cursor != table.end():
            print(cursor.key(), cursor.value())
            cursor.advance()
    """

    __hash__ = None  # type: ignore[assignment]

    def __init__(self, table_ref: LuaRef, is_end: bool = False) -> None:
        table_ref.check_table()
        self._table = table_ref._handle.borrow()
        self._position: Positioned | _Exhausted = EXHAUSTED
        if not is_end:
            self._step(None)

    @property
    def state(self) -> LuaState:
        return self._table.state

    @property
    def position(self) -> Positioned | _Exhausted:
        return self._position

    def is_end(self) -> bool:
        return self._position is EXHAUSTED

    def _step(self, key: OwnedHandle | None) -> None:
        state = self.state
        with StackPop(state):
            self._table.push()
            if key is None:
                state.push(None)
            else:
                key.push()
            if state.next(-2):
                value_handle = OwnedHandle.from_stack_top(state)
                key_handle = OwnedHandle.from_stack_top(state)
                position: Positioned | _Exhausted = Positioned(key_handle, value_handle)
            else:
                position = EXHAUSTED

        old = self._position
        self._position = position
        if isinstance(old, Positioned):
            old.release()

    def advance(self) -> TableIterator:
        """Move to the next entry. Advancing an exhausted cursor does nothing."""
        if isinstance(self._position, Positioned):
            self._step(self._position.key)
        return self

    def _positioned(self) -> Positioned:
        if not isinstance(self._position, Positioned):
            raise IndexError("cursor is exhausted")
        return self._position

    def _convert(self, handle: OwnedHandle, as_type: Any) -> Any:
        state = self.state
        with StackPop(state):
            handle.push()
            return convert.get(state, -1, as_type)

    def key(self, as_type: Any = object) -> Any:
        """Return the current key converted to ``as_type``."""
        return self._convert(self._positioned().key, as_type)

    def value(self, as_type: Any = object) -> Any:
        """Return the current value converted to ``as_type``."""
        return self._convert(self._positioned().value, as_type)

    def key_ref(self) -> LuaRef:
        return LuaRef._from_handle(self._positioned().key.duplicate())

    def value_ref(self) -> LuaRef:
        return LuaRef._from_handle(self._positioned().value.duplicate())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TableIterator):
            return NotImplemented
        if self._table.owner.state is not other._table.owner.state:
            return False
        mine, theirs = self._position, other._position
        if not isinstance(mine, Positioned) or not isinstance(theirs, Positioned):
            return mine is theirs
        state = self.state
        with StackPop(state):
            mine.key.push()
            theirs.key.push()
            return state.raw_equal(-2, -1)

    def __ne__(self, other: object) -> bool:
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    def copy(self) -> TableIterator:
        """Duplicate the cursor at its current position; it does not rewind."""
        cursor = TableIterator.__new__(TableIterator)
        cursor._table = self._table
        if isinstance(self._position, Positioned):
            cursor._position = Positioned(
                self._position.key.duplicate(), self._position.value.duplicate()
            )
        else:
            cursor._position = EXHAUSTED
        return cursor

    def release(self) -> None:
        """Release the current entry's slots; the cursor becomes exhausted."""
        old = self._position
        self._position = EXHAUSTED
        if isinstance(old, Positioned):
            old.release()

    def __enter__(self) -> TableIterator:
        return self

    def __exit__(self, *args: Any) -> None:
        self.release()

    def __repr__(self) -> str:
        if isinstance(self._position, Positioned):
            return f"TableIterator(key_slot={self._position.key.slot})"
        return "TableIterator(EXHAUSTED)"
