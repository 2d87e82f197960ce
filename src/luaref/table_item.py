"""Deferred table field locations."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from luaref import convert
from luaref.handles import OwnedHandle, StackPop
from luaref.ref import LuaRef
from luaref.types import LuaType

if TYPE_CHECKING:
    from luaref.state import LuaState


class TableItem:
    """The location ``table[key]``.

    Holds a borrowed handle on the table and an owned handle on the key.
    Nothing is cached: every read and every write is a separate round trip
    through the runtime, with metamethods honoured unless a raw variant is
    used.
    """

    __hash__ = None  # type: ignore[assignment]

    def __init__(self, table_ref: LuaRef, key: Any) -> None:
        state = table_ref._live_state()
        self._table = table_ref._handle.borrow()
        with StackPop(state):
            convert.push(state, key)
            self._key = OwnedHandle.from_stack_top(state)

    @property
    def state(self) -> LuaState:
        return self._table.state

    def _push_field(self, raw: bool = False) -> None:
        # Leaves the table and the field value on the stack
        state = self.state
        self._table.push()
        self._key.push()
        if raw:
            state.raw_get(-2)
        else:
            state.get_table(-2)

    def push(self) -> None:
        """Push the field's current value."""
        state = self.state
        with StackPop(state):
            self._push_field()
            value = state.value_at(-1)
        state.push(value)

    def value(self, as_type: Any = object) -> Any:
        """Read the field and convert it to ``as_type``."""
        state = self.state
        with StackPop(state):
            self._push_field()
            return convert.get(state, -1, as_type)

    def rawget(self, as_type: Any = object) -> Any:
        """Read the field without running metamethods."""
        state = self.state
        with StackPop(state):
            self._push_field(raw=True)
            return convert.get(state, -1, as_type)

    def key(self, as_type: Any = object) -> Any:
        """Return the key this item addresses."""
        state = self.state
        with StackPop(state):
            self._key.push()
            return convert.get(state, -1, as_type)

    def type(self) -> LuaType:
        state = self.state
        with StackPop(state):
            self._push_field()
            return state.type_at(-1)

    def is_nil(self) -> bool:
        return self.type() is LuaType.NIL

    def ref(self) -> LuaRef:
        """Materialize the field's current value as a LuaRef."""
        state = self.state
        with StackPop(state):
            self._push_field()
            return LuaRef.from_stack_top(state)

    def set(self, value: Any) -> TableItem:
        """Write the field. Another TableItem copies that field's current value."""
        if isinstance(value, TableItem):
            value = value.value(LuaRef)
        state = self.state
        with StackPop(state):
            self._table.push()
            self._key.push()
            convert.push(state, value)
            state.set_table(-3)
        return self

    def rawset(self, value: Any) -> TableItem:
        """Write the field without running metamethods."""
        if isinstance(value, TableItem):
            value = value.rawget(LuaRef)
        state = self.state
        with StackPop(state):
            self._table.push()
            self._key.push()
            convert.push(state, value)
            state.raw_set(-3)
        return self

    # -- nested access -------------------------------------------------------

    def __getitem__(self, key: Any) -> TableItem:
        # The nested item borrows the materialized ref's handle, which keeps it alive
        return self.ref()[key]

    def __setitem__(self, key: Any, value: Any) -> None:
        with self.ref() as table:
            table.set(key, value)

    def __call__(self, *args: Any) -> LuaRef:
        with self.ref() as fn:
            return fn(*args)

    def __eq__(self, other: object) -> bool:
        with self.ref() as mine:
            return mine == other

    def __ne__(self, other: object) -> bool:
        return not self.__eq__(other)

    def __lt__(self, other: Any) -> bool:
        with self.ref() as mine:
            return mine < other

    def __le__(self, other: Any) -> bool:
        with self.ref() as mine:
            return mine <= other

    def __gt__(self, other: Any) -> bool:
        with self.ref() as mine:
            return mine > other

    def __ge__(self, other: Any) -> bool:
        with self.ref() as mine:
            return mine >= other

    def __str__(self) -> str:
        with self.ref() as mine:
            return mine.tostring()

    # -- ownership -----------------------------------------------------------

    def copy(self) -> TableItem:
        """Return a second item for the same location with its own key slot."""
        item = TableItem.__new__(TableItem)
        item._table = self._table
        item._key = self._key.duplicate()
        return item

    def move(self) -> TableItem:
        """Transfer the key slot to a new item; this one can no longer be used."""
        item = TableItem.__new__(TableItem)
        item._table = self._table
        item._key = self._key
        self._key = OwnedHandle.empty()
        return item

    def release(self) -> None:
        self._key.release()

    def __repr__(self) -> str:
        if self._key.is_empty:
            return "TableItem(released)"
        return f"TableItem(key_slot={self._key.slot})"
