"""Conversion between Python values and runtime values.

Python to runtime:

    None -> nil, bool -> boolean, int/float -> number, str -> string,
    dict -> new table, list/tuple -> new sequence table (1-based),
    LuaRef/TableItem -> the value they denote, other callables -> function.

Runtime to Python is driven by a target type; ``object`` yields the natural
Python value for scalars and a ``LuaRef`` for everything else.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any, Callable

from luaref.errors import ConversionFailure
from luaref.table import LuaTable
from luaref.types import (
    HostFunction,
    LightUserdata,
    LuaFunction,
    LuaThread,
    Userdata,
    format_number,
    is_number,
    parse_number,
    truthy,
    type_name,
)

if TYPE_CHECKING:
    from luaref.state import LuaState

_RUNTIME_KINDS = (LuaTable, LuaFunction, Userdata, LightUserdata, LuaThread)

# Targets a default value can select in ``target_for``
_INFERRED_TARGETS = (bool, int, float, str, list, dict)


def to_runtime(state: LuaState, value: Any) -> Any:
    """Convert a Python value to a raw runtime value for ``state``."""
    from luaref.handles import StackPop
    from luaref.ref import LuaRef
    from luaref.table_item import TableItem

    if value is None or isinstance(value, (bool, str, float)):
        return value
    if isinstance(value, int):
        # Integers outside the 64-bit range become floats
        return value if -(2**63) <= value < 2**63 else float(value)
    if isinstance(value, _RUNTIME_KINDS):
        return value
    if isinstance(value, (LuaRef, TableItem)):
        if value.state is None:
            return None
        if value.state is not state:
            raise ConversionFailure("runtime value", "foreign reference")
        with StackPop(state):
            value.push()
            return state.value_at(-1)
    if isinstance(value, dict):
        table = LuaTable()
        for key, item in value.items():
            raw_key = to_runtime(state, key)
            if raw_key is None or (isinstance(raw_key, float) and math.isnan(raw_key)):
                raise ConversionFailure("table key", repr(key))
            table.rawset(raw_key, to_runtime(state, item))
        return table
    if isinstance(value, (list, tuple)):
        table = LuaTable()
        for i, item in enumerate(value, 1):
            table.rawset(i, to_runtime(state, item))
        return table
    if callable(value):
        return _wrap_callable(value)
    raise ConversionFailure("runtime value", type(value).__name__)


def _wrap_callable(fn: Callable[..., Any]) -> HostFunction:
    """Expose a plain Python callable; arguments and results are converted naturally."""

    def call(state: LuaState, *args: Any) -> Any:
        result = fn(*(from_runtime(state, arg) for arg in args))
        if isinstance(result, tuple):
            return tuple(to_runtime(state, item) for item in result)
        return to_runtime(state, result)

    return HostFunction(call, getattr(fn, "__name__", "?"))


def from_runtime(state: LuaState, raw: Any, as_type: Any = object) -> Any:
    """Convert a raw runtime value to ``as_type``.

    Raises ConversionFailure when the value has no representation in the
    target type, and TypeError for an unsupported target.
    """
    from luaref.ref import LuaRef

    if as_type is object:
        if raw is None or isinstance(raw, (bool, int, float, str)):
            return raw
        return _make_ref(state, raw)
    if as_type is LuaRef:
        return _make_ref(state, raw)
    if as_type is bool:
        return truthy(raw)
    if as_type is int:
        number = _coerce_number(raw)
        if number is None or (isinstance(number, float) and not number.is_integer()):
            raise ConversionFailure("int", type_name(raw))
        return int(number)
    if as_type is float:
        number = _coerce_number(raw)
        if number is None:
            raise ConversionFailure("float", type_name(raw))
        return float(number)
    if as_type is str:
        if isinstance(raw, str):
            return raw
        if is_number(raw):
            return format_number(raw)
        raise ConversionFailure("str", type_name(raw))
    if as_type is list:
        if not isinstance(raw, LuaTable):
            raise ConversionFailure("list", type_name(raw))
        return [from_runtime(state, raw.rawget(i)) for i in range(1, raw.border() + 1)]
    if as_type is dict:
        if not isinstance(raw, LuaTable):
            raise ConversionFailure("dict", type_name(raw))
        result = {}
        for key, item in raw.items():
            if not isinstance(key, (bool, int, float, str)):
                raise ConversionFailure("dict key", type_name(key))
            result[key] = from_runtime(state, item)
        return result
    raise TypeError(f"unsupported conversion target {as_type!r}")


def _coerce_number(raw: Any) -> int | float | None:
    if is_number(raw):
        return raw
    if isinstance(raw, str):
        return parse_number(raw)
    return None


def _make_ref(state: LuaState, raw: Any) -> Any:
    from luaref.ref import LuaRef

    state.push(raw)
    return LuaRef.from_stack_top(state)


def push(state: LuaState, value: Any) -> None:
    """Convert a Python value and push it."""
    state.push(to_runtime(state, value))


def get(state: LuaState, index: int, as_type: Any = object) -> Any:
    """Convert the value at a stack index. The stack is left unchanged."""
    return from_runtime(state, state.value_at(index), as_type)


def is_convertible(state: LuaState, index: int, as_type: Any) -> bool:
    """Check whether the value at a stack index converts to ``as_type``."""
    try:
        value = get(state, index, as_type)
    except ConversionFailure:
        return False
    release = getattr(value, "release", None)
    if release is not None:
        release()
    return True


def target_for(default: Any) -> Any:
    """Pick the conversion target implied by a default value."""
    if type(default) in _INFERRED_TARGETS:
        return type(default)
    return object
