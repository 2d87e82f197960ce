"""References that pin runtime values from Python."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterator

from luaref import convert
from luaref.errors import ConversionFailure, ReleasedHandleError, RuntimeFault, TypeMismatch
from luaref.handles import OwnedHandle, StackPop
from luaref.state import CompareOp
from luaref.types import LuaFunction, LuaType

if TYPE_CHECKING:
    from luaref.iterator import TableIterator
    from luaref.state import LuaState
    from luaref.table_item import TableItem

_MISSING = object()


class LuaRef:
    """Reference to a value living in a LuaState.

    A LuaRef owns one registry slot and keeps the referenced value alive
    until it is released, reassigned or garbage collected. A LuaRef built
    without a state is *empty*: it reports ``LuaType.NONE`` and is distinct
    from a reference to nil.

    Table access is deferred: ``ref[key]`` returns a ``TableItem`` that reads
    or writes the field on demand.
    """

    __hash__ = None  # type: ignore[assignment]

    def __init__(self, state: LuaState | None = None, value: Any = None) -> None:
        """Create a reference to a Python value converted into ``state``.

        Args:
            state: The owning state, or None for an empty reference.
            value: Converted with the conversion layer. None gives a reference to nil.
        """
        if state is None:
            self._handle = OwnedHandle.empty()
            return
        with StackPop(state):
            convert.push(state, value)
            self._handle = OwnedHandle.from_stack_top(state)

    @classmethod
    def _from_handle(cls, handle: OwnedHandle) -> LuaRef:
        ref = cls.__new__(cls)
        ref._handle = handle
        return ref

    @classmethod
    def from_stack_top(cls, state: LuaState) -> LuaRef:
        """Register the value on top of the stack and pop it."""
        return cls._from_handle(OwnedHandle.from_stack_top(state))

    @classmethod
    def from_stack(cls, state: LuaState, index: int) -> LuaRef:
        """Register the value at a stack index, leaving the stack unchanged."""
        return cls._from_handle(OwnedHandle.from_stack(state, index))

    @classmethod
    def from_slot(cls, state: LuaState, slot: int) -> LuaRef:
        """Take ownership of an existing registry slot."""
        return cls._from_handle(OwnedHandle(state, slot))

    @classmethod
    def from_global(cls, state: LuaState, name: str) -> LuaRef:
        """Look up a global by plain or dotted name.

        Missing names (or missing intermediate tables) give a reference to
        nil. Indexing a value that is neither a table nor indexable raises
        RuntimeFault.
        """
        parts = name.split(".")
        with StackPop(state):
            state.get_global(parts[0])
            for part in parts[1:]:
                if state.type_at(-1) is LuaType.NIL:
                    break
                state.get_field(-1, part)
            return cls.from_stack_top(state)

    @classmethod
    def new_table(cls, state: LuaState) -> LuaRef:
        """Create a new empty table."""
        with StackPop(state):
            state.new_table()
            return cls.from_stack_top(state)

    # -- identity ------------------------------------------------------------

    @property
    def state(self) -> LuaState | None:
        return self._handle.state

    @property
    def slot(self) -> int:
        return self._handle.slot

    def _live_state(self) -> LuaState:
        state = self._handle.state
        if state is None:
            raise ReleasedHandleError("reference is empty")
        state.check_open()
        return state

    def push(self) -> None:
        """Push the referenced value onto its state's stack."""
        self._handle.push()

    def _raw(self) -> Any:
        state = self._live_state()
        with StackPop(state):
            self.push()
            return state.value_at(-1)

    # -- type queries --------------------------------------------------------

    def type(self) -> LuaType:
        if self._handle.is_empty:
            return LuaType.NONE
        if self._handle.is_nil:
            return LuaType.NIL
        state = self._live_state()
        with StackPop(state):
            self.push()
            return state.type_at(-1)

    def type_name(self) -> str:
        return self.type().type_name

    def is_empty(self) -> bool:
        return self._handle.is_empty

    def is_nil(self) -> bool:
        return self.type() is LuaType.NIL

    def is_bool(self) -> bool:
        return self.type() is LuaType.BOOLEAN

    def is_number(self) -> bool:
        return self.type() is LuaType.NUMBER

    def is_string(self) -> bool:
        return self.type() is LuaType.STRING

    def is_table(self) -> bool:
        return self.type() is LuaType.TABLE

    def is_function(self) -> bool:
        return self.type() is LuaType.FUNCTION

    def is_userdata(self) -> bool:
        return self.type() is LuaType.USERDATA

    def is_light_userdata(self) -> bool:
        return self.type() is LuaType.LIGHTUSERDATA

    def is_thread(self) -> bool:
        return self.type() is LuaType.THREAD

    def is_callable(self) -> bool:
        """Check for a function or a value whose metatable has ``__call``."""
        if self._handle.is_empty or self._handle.is_nil:
            return False
        raw = self._raw()
        if isinstance(raw, LuaFunction):
            return True
        return self._live_state().metamethod(raw, "__call") is not None

    def check_type(self, expected: LuaType, context: str | None = None) -> LuaRef:
        """Return self if the value has type ``expected``, else raise TypeMismatch."""
        actual = self.type()
        if actual is not expected:
            raise TypeMismatch(expected.type_name, actual.type_name, context)
        return self

    def check_table(self) -> LuaRef:
        return self.check_type(LuaType.TABLE)

    def check_function(self) -> LuaRef:
        return self.check_type(LuaType.FUNCTION)

    # -- conversion ----------------------------------------------------------

    def value(self, as_type: Any = object) -> Any:
        """Convert the referenced value to ``as_type``."""
        state = self._live_state()
        with StackPop(state):
            self.push()
            return convert.get(state, -1, as_type)

    def cast(self, as_type: Any) -> Any:
        return self.value(as_type)

    def is_convertible(self, as_type: Any) -> bool:
        """Check whether ``value(as_type)`` would succeed."""
        state = self._live_state()
        with StackPop(state):
            self.push()
            return convert.is_convertible(state, -1, as_type)

    # -- table access --------------------------------------------------------

    def _lookup(self, key: Any, default: Any, as_type: Any, raw: bool) -> Any:
        self.check_table()
        if as_type is None:
            as_type = object if default is _MISSING else convert.target_for(default)
        state = self._live_state()
        with StackPop(state):
            self.push()
            convert.push(state, key)
            if raw:
                state.raw_get(-2)
            else:
                state.get_table(-2)
            if default is _MISSING:
                return convert.get(state, -1, as_type)
            if state.type_at(-1) is LuaType.NIL or not convert.is_convertible(state, -1, as_type):
                return default
            return convert.get(state, -1, as_type)

    def get(self, key: Any, default: Any = _MISSING, as_type: Any = None) -> Any:
        """Read ``t[key]``, honouring ``__index``.

        Args:
            key: The field key, converted with the conversion layer.
            default: Returned when the field is nil or cannot be converted.
            as_type: Conversion target. Defaults to the type of ``default``
                when one is given, else ``object``.
        """
        return self._lookup(key, default, as_type, raw=False)

    def rawget(self, key: Any, default: Any = _MISSING, as_type: Any = None) -> Any:
        """Read ``t[key]`` without running metamethods."""
        return self._lookup(key, default, as_type, raw=True)

    def set(self, key: Any, value: Any) -> None:
        """Write ``t[key] = value``, honouring ``__newindex``."""
        self.check_table()
        state = self._live_state()
        with StackPop(state):
            self.push()
            convert.push(state, key)
            convert.push(state, value)
            state.set_table(-3)

    def rawset(self, key: Any, value: Any) -> None:
        """Write ``t[key] = value`` without running metamethods."""
        self.check_table()
        state = self._live_state()
        with StackPop(state):
            self.push()
            convert.push(state, key)
            convert.push(state, value)
            state.raw_set(-3)

    def has(self, key: Any) -> bool:
        """Check whether the table holds a non-nil raw value under ``key``."""
        self.check_table()
        state = self._live_state()
        with StackPop(state):
            self.push()
            convert.push(state, key)
            state.raw_get(-2)
            return state.type_at(-1) is not LuaType.NIL

    def remove(self, key: Any) -> None:
        """Set ``t[key]`` to nil through the metamethods."""
        self.set(key, None)

    def len(self) -> Any:
        """Evaluate the length operator (``__len`` honoured)."""
        state = self._live_state()
        with StackPop(state):
            self.push()
            state.length(-1)
            return convert.get(state, -1)

    def rawlen(self) -> int:
        state = self._live_state()
        with StackPop(state):
            self.push()
            return state.raw_len(-1)

    def append(self, *values: Any) -> None:
        """Append values after the current sequence border."""
        self.check_table()
        state = self._live_state()
        with StackPop(state):
            self.push()
            n = state.raw_len(-1)
            for value in values:
                n += 1
                convert.push(state, n)
                convert.push(state, value)
                state.raw_set(-3)

    def item(self, key: Any) -> TableItem:
        """Return a deferred proxy for ``t[key]``."""
        from luaref.table_item import TableItem

        return TableItem(self, key)

    def __getitem__(self, key: Any) -> TableItem:
        return self.item(key)

    def __setitem__(self, key: Any, value: Any) -> None:
        self.set(key, value)

    def __delitem__(self, key: Any) -> None:
        self.remove(key)

    # -- metatables ----------------------------------------------------------

    def get_metatable(self) -> LuaRef:
        """Return the metatable, or a reference to nil."""
        state = self._live_state()
        with StackPop(state):
            self.push()
            if state.get_metatable(-1):
                return LuaRef.from_stack_top(state)
            return LuaRef(state)

    def set_metatable(self, metatable: Any) -> None:
        """Set (or with None, clear) the metatable."""
        state = self._live_state()
        with StackPop(state):
            self.push()
            convert.push(state, metatable)
            state.set_metatable(-2)

    # -- calls ---------------------------------------------------------------

    def call(self, *args: Any) -> list[LuaRef]:
        """Call the referenced value and return every result."""
        if not self.is_callable():
            raise TypeMismatch("function", self.type_name(), "call")
        state = self._live_state()
        with StackPop(state):
            base = state.get_top()
            self.push()
            for arg in args:
                convert.push(state, arg)
            count = state.call(len(args))
            return [LuaRef.from_stack(state, base + 1 + i) for i in range(count)]

    def __call__(self, *args: Any) -> LuaRef:
        """Call the referenced value and return its first result (nil if none)."""
        results = self.call(*args)
        if not results:
            return LuaRef(self.state)
        for extra in results[1:]:
            extra.release()
        return results[0]

    # -- strings -------------------------------------------------------------

    def tostring(self) -> str:
        """Convert with the runtime's ``tostring`` (``__tostring`` honoured)."""
        if self._handle.is_empty:
            return LuaType.NONE.type_name
        state = self._live_state()
        return state.tostring(self._raw())

    def __str__(self) -> str:
        return self.tostring()

    def __repr__(self) -> str:
        if self._handle.is_empty:
            return "LuaRef(empty)"
        if self._handle.state.closed:
            return "LuaRef(closed)"
        return f"LuaRef({self.type_name()}, slot={self.slot})"

    # -- comparison ----------------------------------------------------------

    def _is_nil_like(self) -> bool:
        return self._handle.is_empty or self._handle.is_nil

    def _compare(self, other: Any, op: CompareOp, swap: bool = False) -> bool:
        state = self.state
        if state is None and other is not None and not _is_python_scalar(other):
            state = getattr(other, "state", None)
        if state is None:
            if op is CompareOp.EQ:
                return True
            raise RuntimeFault("attempt to compare two nil values")
        state.check_open()
        with StackPop(state):
            if self._handle.is_empty:
                state.push(None)
            else:
                self.push()
            convert.push(state, other)
            if swap:
                return state.compare(-1, -2, op)
            return state.compare(-2, -1, op)

    def __eq__(self, other: object) -> bool:
        other_nil_like = _is_nil_like_value(other)
        if self._is_nil_like() or other_nil_like:
            return self._is_nil_like() and other_nil_like
        try:
            return self._compare(other, CompareOp.EQ)
        except ConversionFailure:
            return NotImplemented

    def __ne__(self, other: object) -> bool:
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    def __lt__(self, other: Any) -> bool:
        return self._compare(other, CompareOp.LT)

    def __le__(self, other: Any) -> bool:
        return self._compare(other, CompareOp.LE)

    def __gt__(self, other: Any) -> bool:
        return self._compare(other, CompareOp.LT, swap=True)

    def __ge__(self, other: Any) -> bool:
        return self._compare(other, CompareOp.LE, swap=True)

    def compare(self, other: Any) -> int:
        """Three-way comparison through the runtime: -1, 0 or 1."""
        if self == other:
            return 0
        return -1 if self < other else 1

    def is_identical_to(self, other: Any) -> bool:
        """Raw identity: the same runtime object, no metamethods involved."""
        other_nil_like = _is_nil_like_value(other)
        if self._is_nil_like() or other_nil_like:
            return self._is_nil_like() and other_nil_like
        state = self._live_state()
        with StackPop(state):
            self.push()
            convert.push(state, other)
            return state.raw_equal(-2, -1)

    # -- ownership -----------------------------------------------------------

    def copy(self) -> LuaRef:
        """Return an independent reference to the same value."""
        return LuaRef._from_handle(self._handle.duplicate())

    def __copy__(self) -> LuaRef:
        return self.copy()

    def move(self) -> LuaRef:
        """Transfer ownership to a new reference; this one becomes empty."""
        moved = LuaRef._from_handle(self._handle)
        self._handle = OwnedHandle.empty()
        return moved

    def assign(self, value: Any, state: LuaState | None = None) -> LuaRef:
        """Point this reference at a new value, releasing the old slot.

        The new value is registered before the old slot is released, so
        assigning a reference to itself is safe.
        """
        if isinstance(value, LuaRef):
            handle = value._handle.duplicate()
        else:
            state = state or self.state
            if state is None:
                raise ReleasedHandleError("reference is empty")
            state.check_open()
            with StackPop(state):
                convert.push(state, value)
                handle = OwnedHandle.from_stack_top(state)
        old, self._handle = self._handle, handle
        old.release()
        return self

    def release(self) -> None:
        """Release the slot; the reference becomes empty."""
        self._handle.release()

    def __enter__(self) -> LuaRef:
        return self

    def __exit__(self, *args: Any) -> None:
        self.release()

    # -- traversal -----------------------------------------------------------

    def begin(self) -> TableIterator:
        """Return a cursor on the first entry."""
        from luaref.iterator import TableIterator

        return TableIterator(self)

    def end(self) -> TableIterator:
        """Return an exhausted cursor."""
        from luaref.iterator import TableIterator

        return TableIterator(self, is_end=True)

    def pairs(self, key_type: Any = object, value_type: Any = object) -> Iterator[tuple[Any, Any]]:
        """Iterate over the table's entries in runtime order."""
        cursor = self.begin()
        try:
            while not cursor.is_end():
                yield cursor.key(key_type), cursor.value(value_type)
                cursor.advance()
        finally:
            cursor.release()


def _is_python_scalar(value: Any) -> bool:
    return isinstance(value, (bool, int, float, str))


def _is_nil_like_value(value: Any) -> bool:
    """None, an empty or nil reference, or a field that currently holds nil."""
    from luaref.table_item import TableItem

    if value is None:
        return True
    if isinstance(value, LuaRef):
        return value._is_nil_like()
    if isinstance(value, TableItem):
        return value.is_nil()
    return False
