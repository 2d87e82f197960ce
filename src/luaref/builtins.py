"""Base library installed into the globals table of a new state."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable

from luaref.errors import ConversionFailure, RuntimeFault, TypeMismatch
from luaref.table import LuaTable
from luaref.types import HostFunction, is_number, raw_equals, truthy, type_name

if TYPE_CHECKING:
    from luaref.state import LuaState

logger = logging.getLogger(__name__)

VERSION = "Lua 5.4"

# name -> implementation; each receives the state followed by the call arguments
BASE_FUNCTIONS: dict[str, Callable[..., Any]] = {}

_MISSING = object()


def _builtin(name: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def register(fn: Callable[..., Any]) -> Callable[..., Any]:
        BASE_FUNCTIONS[name] = fn
        return fn

    return register


def _check_table(value: Any, fname: str, position: int = 1) -> LuaTable:
    if not isinstance(value, LuaTable):
        raise TypeMismatch("table", type_name(value), f"bad argument #{position} to '{fname}'")
    return value


@_builtin("assert")
def lua_assert(state: LuaState, value: Any = None, message: Any = _MISSING, *rest: Any) -> tuple:
    if not truthy(value):
        raise RuntimeFault("assertion failed!" if message is _MISSING else message)
    if message is _MISSING:
        return (value,)
    return (value, message) + rest


@_builtin("error")
def lua_error(state: LuaState, value: Any = None, level: Any = 1) -> None:
    raise RuntimeFault(value)


@_builtin("pcall")
def lua_pcall(state: LuaState, fn: Any = None, *args: Any) -> tuple:
    try:
        results = state.call_value(fn, list(args))
    except RuntimeFault as exc:
        return (False, exc.value)
    except (TypeMismatch, ConversionFailure) as exc:
        return (False, str(exc))
    return (True, *results)


@_builtin("type")
def lua_type(state: LuaState, value: Any = _MISSING) -> str:
    if value is _MISSING:
        raise RuntimeFault("bad argument #1 to 'type' (value expected)")
    return type_name(value)


@_builtin("tostring")
def lua_tostring(state: LuaState, value: Any = None) -> str:
    return state.tostring(value)


@_builtin("tonumber")
def lua_tonumber(state: LuaState, value: Any = None, base: Any = None) -> Any:
    if base is None:
        return state.to_number(value)
    if not isinstance(value, str):
        raise TypeMismatch("string", type_name(value), "bad argument #1 to 'tonumber'")
    if not is_number(base) or not 2 <= base <= 36:
        raise RuntimeFault("bad argument #2 to 'tonumber' (base out of range)")
    try:
        return int(value.strip(), int(base))
    except ValueError:
        return None


@_builtin("rawget")
def lua_rawget(state: LuaState, table: Any = None, key: Any = None) -> Any:
    return _check_table(table, "rawget").rawget(key)


@_builtin("rawset")
def lua_rawset(state: LuaState, table: Any = None, key: Any = None, value: Any = None) -> Any:
    _check_table(table, "rawset").rawset(key, value)
    return table


@_builtin("rawequal")
def lua_rawequal(state: LuaState, a: Any = None, b: Any = None) -> bool:
    return raw_equals(a, b)


@_builtin("rawlen")
def lua_rawlen(state: LuaState, value: Any = None) -> int:
    if isinstance(value, LuaTable):
        return value.border()
    if isinstance(value, str):
        return len(value.encode("utf-8"))
    raise TypeMismatch("table or string", type_name(value), "bad argument #1 to 'rawlen'")


@_builtin("setmetatable")
def lua_setmetatable(state: LuaState, table: Any = None, metatable: Any = None) -> Any:
    _check_table(table, "setmetatable")
    if metatable is not None and not isinstance(metatable, LuaTable):
        raise TypeMismatch("nil or table", type_name(metatable), "bad argument #2 to 'setmetatable'")
    if table.metatable is not None and table.metatable.rawget("__metatable") is not None:
        raise RuntimeFault("cannot change a protected metatable")
    table.metatable = metatable
    return table


@_builtin("getmetatable")
def lua_getmetatable(state: LuaState, value: Any = None) -> Any:
    metatable = state.metatable_of(value)
    if metatable is None:
        return None
    protected = metatable.rawget("__metatable")
    return metatable if protected is None else protected


@_builtin("next")
def lua_next(state: LuaState, table: Any = None, key: Any = None) -> Any:
    entry = _check_table(table, "next").next(key)
    if entry is None:
        return None
    return entry


@_builtin("pairs")
def lua_pairs(state: LuaState, value: Any = None) -> tuple:
    handler = state.metamethod(value, "__pairs")
    if handler is not None:
        results = state.call_value(handler, [value]) + [None, None, None]
        return tuple(results[:3])
    _check_table(value, "pairs")
    return (state.index(state.globals, "next"), value, None)


def _ipairs_step(state: LuaState, table: Any, index: int) -> Any:
    index += 1
    value = state.index(table, index)
    if value is None:
        return None
    return (index, value)


_IPAIRS_STEP = HostFunction(_ipairs_step, "ipairs_iterator")


@_builtin("ipairs")
def lua_ipairs(state: LuaState, value: Any = _MISSING) -> tuple:
    if value is _MISSING:
        raise RuntimeFault("bad argument #1 to 'ipairs' (table expected, got no value)")
    return (_IPAIRS_STEP, value, 0)


@_builtin("select")
def lua_select(state: LuaState, n: Any = None, *args: Any) -> Any:
    if n == "#":
        return len(args)
    index = state.to_number(n)
    if index is None or index != int(index):
        raise RuntimeFault("bad argument #1 to 'select' (number expected)")
    index = int(index)
    if index < 0:
        index = len(args) + index
        if index < 0:
            raise RuntimeFault("bad argument #1 to 'select' (index out of range)")
        return args[index:]
    if index == 0:
        raise RuntimeFault("bad argument #1 to 'select' (index out of range)")
    return args[index - 1:]


@_builtin("print")
def lua_print(state: LuaState, *args: Any) -> None:
    logger.info("\t".join(state.tostring(arg) for arg in args))


def open_base(state: LuaState) -> None:
    """Install the base library into ``state.globals``."""
    for name, fn in BASE_FUNCTIONS.items():
        state.globals.rawset(name, HostFunction(fn, name))
    state.globals.rawset("_G", state.globals)
    state.globals.rawset("_VERSION", VERSION)
