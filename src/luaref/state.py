"""Runtime state: value stack, registry, globals and primitive operations."""

from __future__ import annotations

import logging
import math
from enum import Enum
from typing import Any

from luaref.config import DEFAULT_STATE_CONFIG, StateConfig
from luaref.errors import RuntimeFault, StateClosedError, TypeMismatch
from luaref.registry import Registry
from luaref.table import LuaTable
from luaref.types import (
    HostFunction,
    LightUserdata,
    LuaFunction,
    LuaThread,
    LuaType,
    Userdata,
    format_number,
    is_number,
    parse_number,
    raw_equals,
    truthy,
    type_name,
    type_of,
    wrap_integer,
)

logger = logging.getLogger(__name__)


class CompareOp(Enum):
    """Relational operators understood by ``LuaState.compare``."""

    EQ = "=="
    LT = "<"
    LE = "<="


# Arithmetic operator -> metamethod event
ARITH_EVENTS = {
    "+": "__add",
    "-": "__sub",
    "*": "__mul",
    "/": "__div",
    "%": "__mod",
    "^": "__pow",
    "//": "__idiv",
    "unm": "__unm",
}


class LuaState:
    """One embedded runtime instance.

    Owns the value stack, the registry and the globals table. Stack
    indices follow the runtime convention: positive indices count from the
    bottom (1 is the first value) and negative indices count from the top
    (-1 is the top).

    A state must only be used from one thread at a time.
    """

    def __init__(self, config: StateConfig = DEFAULT_STATE_CONFIG) -> None:
        self.config = config
        self.registry = Registry()
        self.globals = LuaTable()
        self._stack: list[Any] = []
        self._call_depth = 0
        self._closed = False

        if config.open_builtins:
            from luaref.builtins import open_base

            open_base(self)
        logger.debug("Opened state 0x%x", id(self))

    # -- lifecycle ---------------------------------------------------------

    @property
    def closed(self) -> bool:
        """Return whether the state has been torn down."""
        return self._closed

    def check_open(self) -> None:
        """Raise StateClosedError if the state has been closed."""
        if self._closed:
            raise StateClosedError()

    def close(self) -> None:
        """Tear the state down, invalidating every outstanding handle."""
        if self._closed:
            return
        live = self.registry.live_count
        if live:
            logger.debug("Closing state 0x%x with %d live registry slots", id(self), live)
        else:
            logger.debug("Closing state 0x%x", id(self))
        self._stack.clear()
        self.registry.clear()
        self.globals = LuaTable()
        self._closed = True

    def __enter__(self) -> LuaState:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    # -- stack -------------------------------------------------------------

    def get_top(self) -> int:
        """Return the number of values on the stack."""
        return len(self._stack)

    def set_top(self, top: int) -> None:
        """Grow (with nils) or shrink the stack to exactly ``top`` values."""
        if top < 0:
            raise IndexError(f"invalid stack top {top}")
        current = len(self._stack)
        if top < current:
            del self._stack[top:]
        elif top > current:
            self._check_room(top - current)
            self._stack.extend([None] * (top - current))

    def pop(self, n: int = 1) -> None:
        """Pop ``n`` values."""
        self.set_top(len(self._stack) - n)

    def abs_index(self, index: int) -> int:
        """Convert a relative index into an absolute one."""
        top = len(self._stack)
        pos = index if index > 0 else top + 1 + index
        if not 1 <= pos <= top:
            raise IndexError(f"invalid stack index {index}")
        return pos

    def value_at(self, index: int) -> Any:
        """Return the raw value at a stack index."""
        return self._stack[self.abs_index(index) - 1]

    def type_at(self, index: int) -> LuaType:
        """Return the type tag at an index, or NONE for an invalid index."""
        try:
            return type_of(self.value_at(index))
        except IndexError:
            return LuaType.NONE

    def _check_room(self, n: int) -> None:
        if len(self._stack) + n > self.config.max_stack:
            raise RuntimeFault("stack overflow")

    def push(self, value: Any) -> None:
        """Push a raw runtime value."""
        self.check_open()
        type_of(value)
        self._check_room(1)
        self._stack.append(value)

    def push_value(self, index: int) -> None:
        """Push a copy of the value at ``index``."""
        self.push(self.value_at(index))

    def new_table(self) -> LuaTable:
        """Push and return a new empty table."""
        table = LuaTable()
        self.push(table)
        return table

    def new_userdata(self, payload: Any = None) -> Userdata:
        """Push and return a new full userdata."""
        userdata = Userdata(payload)
        self.push(userdata)
        return userdata

    def push_light_userdata(self, pointer: Any) -> None:
        """Push a light userdata wrapping a host object."""
        self.push(LightUserdata(pointer))

    def new_thread(self) -> LuaThread:
        """Push and return a new thread value."""
        thread = LuaThread(self)
        self.push(thread)
        return thread

    # -- stack primitives --------------------------------------------------
    #
    # Each primitive computes its result before touching the stack, so a
    # fault leaves the operands in place for the caller's guard to drop.

    def _table_at(self, index: int, context: str) -> LuaTable:
        value = self.value_at(index)
        if not isinstance(value, LuaTable):
            raise TypeMismatch("table", type_name(value), context)
        return value

    def get_table(self, index: int) -> None:
        """Replace the key on top with ``t[key]`` (metamethods honoured)."""
        obj = self.value_at(index)
        value = self.index(obj, self.value_at(-1))
        self._stack[-1] = value

    def get_field(self, index: int, name: str) -> None:
        """Push ``t[name]`` (metamethods honoured)."""
        obj = self.value_at(index)
        self.push(self.index(obj, name))

    def set_table(self, index: int) -> None:
        """Do ``t[k] = v`` with k, v the two topmost values, then pop both."""
        obj = self.value_at(index)
        self.new_index(obj, self.value_at(-2), self.value_at(-1))
        self.pop(2)

    def set_field(self, index: int, name: str) -> None:
        """Do ``t[name] = v`` with v on top, then pop it."""
        obj = self.value_at(index)
        self.new_index(obj, name, self.value_at(-1))
        self.pop(1)

    def raw_get(self, index: int) -> None:
        """Replace the key on top with ``t[key]``, bypassing metamethods."""
        table = self._table_at(index, "raw_get")
        self._stack[-1] = table.rawget(self.value_at(-1))

    def raw_set(self, index: int) -> None:
        """Raw ``t[k] = v`` with k, v the two topmost values, then pop both."""
        table = self._table_at(index, "raw_set")
        table.rawset(self.value_at(-2), self.value_at(-1))
        self.pop(2)

    def raw_len(self, index: int) -> int:
        """Return the primitive length of the value at ``index``."""
        value = self.value_at(index)
        if isinstance(value, str):
            return len(value.encode("utf-8"))
        if isinstance(value, LuaTable):
            return value.border()
        return 0

    def length(self, index: int) -> None:
        """Push the length of the value at ``index`` (``__len`` honoured)."""
        self.push(self.len_of(self.value_at(index)))

    def next(self, index: int) -> bool:
        """Advance a traversal of the table at ``index``.

        Pops a key and pushes the following key and value, returning True.
        When the table has no more entries nothing is pushed and False is
        returned.
        """
        table = self._table_at(index, "next")
        entry = table.next(self.value_at(-1))
        if entry is None:
            self.pop(1)
            return False
        self._check_room(1)
        self._stack[-1] = entry[0]
        self._stack.append(entry[1])
        return True

    def get_global(self, name: str) -> None:
        """Push the value of a global."""
        self.push(self.index(self.globals, name))

    def set_global(self, name: str) -> None:
        """Pop a value into a global."""
        self.new_index(self.globals, name, self.value_at(-1))
        self.pop(1)

    def raw_equal(self, index1: int, index2: int) -> bool:
        """Primitive equality of two stack values."""
        return raw_equals(self.value_at(index1), self.value_at(index2))

    def compare(self, index1: int, index2: int, op: CompareOp) -> bool:
        """Compare two stack values, possibly running metamethods."""
        a = self.value_at(index1)
        b = self.value_at(index2)
        if op is CompareOp.EQ:
            return self.equals(a, b)
        if op is CompareOp.LT:
            return self.less_than(a, b)
        return self.less_equal(a, b)

    def set_metatable(self, index: int) -> None:
        """Pop a table (or nil) and make it the metatable of the value at ``index``."""
        obj = self.value_at(index)
        mt = self.value_at(-1)
        if mt is not None and not isinstance(mt, LuaTable):
            raise TypeMismatch("nil or table", type_name(mt), "set_metatable")
        if not isinstance(obj, (LuaTable, Userdata)):
            raise TypeMismatch("table or userdata", type_name(obj), "set_metatable")
        obj.metatable = mt
        self.pop(1)

    def get_metatable(self, index: int) -> bool:
        """Push the metatable of the value at ``index`` if it has one."""
        mt = self.metatable_of(self.value_at(index))
        if mt is None:
            return False
        self.push(mt)
        return True

    def call(self, nargs: int, nresults: int = -1) -> int:
        """Call the function below the ``nargs`` topmost values.

        The function and its arguments are replaced by the results,
        adjusted to ``nresults`` (-1 keeps them all). Returns the number of
        results pushed.
        """
        base = len(self._stack) - nargs - 1
        if base < 0:
            raise IndexError("not enough values on the stack for call")
        fn = self._stack[base]
        results = self.call_value(fn, self._stack[base + 1:])
        if nresults >= 0:
            results = (results + [None] * nresults)[:nresults]
        self._check_room(len(results) - nargs - 1)
        del self._stack[base:]
        self._stack.extend(results)
        return len(results)

    # -- registry ----------------------------------------------------------

    def ref(self) -> int:
        """Pop the top value into the registry and return its handle."""
        handle = self.registry.ref(self.value_at(-1))
        self.pop(1)
        return handle

    def unref(self, handle: int) -> None:
        """Release a registry handle. A no-op once the state is closed."""
        if self._closed:
            return
        self.registry.unref(handle)

    def push_ref(self, handle: int) -> None:
        """Push the value registered under a handle."""
        self.check_open()
        self.push(self.registry.get(handle))

    # -- value semantics ---------------------------------------------------

    def metatable_of(self, value: Any) -> LuaTable | None:
        if isinstance(value, (LuaTable, Userdata)):
            return value.metatable
        return None

    def metamethod(self, value: Any, event: str) -> Any:
        """Return a metamethod of a value, or None."""
        mt = self.metatable_of(value)
        if mt is None:
            return None
        return mt.rawget(event)

    def call_value(self, fn: Any, args: list[Any]) -> list[Any]:
        """Call a runtime value with raw arguments and return its results."""
        if not isinstance(fn, LuaFunction):
            handler = self.metamethod(fn, "__call")
            if handler is None:
                raise RuntimeFault(f"attempt to call a {type_name(fn)} value")
            return self.call_value(handler, [fn] + list(args))

        if self._call_depth >= self.config.max_call_depth:
            raise RuntimeFault("stack overflow")
        self._call_depth += 1
        try:
            return fn.invoke(self, list(args))
        except RecursionError as exc:
            raise RuntimeFault("stack overflow") from exc
        finally:
            self._call_depth -= 1

    def _first(self, results: list[Any]) -> Any:
        return results[0] if results else None

    def index(self, obj: Any, key: Any) -> Any:
        """Evaluate ``obj[key]`` with ``__index`` metamethods."""
        for _ in range(self.config.max_meta_chain):
            if isinstance(obj, LuaTable):
                value = obj.rawget(key)
                if value is not None:
                    return value
                handler = self.metamethod(obj, "__index")
                if handler is None:
                    return None
            else:
                handler = self.metamethod(obj, "__index")
                if handler is None:
                    raise RuntimeFault(f"attempt to index a {type_name(obj)} value")
            if isinstance(handler, LuaFunction):
                return self._first(self.call_value(handler, [obj, key]))
            obj = handler
        raise RuntimeFault("'__index' chain too long; possibly a loop")

    def new_index(self, obj: Any, key: Any, value: Any) -> None:
        """Evaluate ``obj[key] = value`` with ``__newindex`` metamethods."""
        for _ in range(self.config.max_meta_chain):
            if isinstance(obj, LuaTable):
                if obj.rawget(key) is not None:
                    obj.rawset(key, value)
                    return
                handler = self.metamethod(obj, "__newindex")
                if handler is None:
                    obj.rawset(key, value)
                    return
            else:
                handler = self.metamethod(obj, "__newindex")
                if handler is None:
                    raise RuntimeFault(f"attempt to index a {type_name(obj)} value")
            if isinstance(handler, LuaFunction):
                self.call_value(handler, [obj, key, value])
                return
            obj = handler
        raise RuntimeFault("'__newindex' chain too long; possibly a loop")

    def len_of(self, value: Any) -> Any:
        """Evaluate ``#value``."""
        if isinstance(value, str):
            return len(value.encode("utf-8"))
        handler = self.metamethod(value, "__len")
        if handler is not None:
            return self._first(self.call_value(handler, [value]))
        if isinstance(value, LuaTable):
            return value.border()
        raise RuntimeFault(f"attempt to get length of a {type_name(value)} value")

    def equals(self, a: Any, b: Any) -> bool:
        """Evaluate ``a == b``; ``__eq`` is tried for two tables or two userdata."""
        if raw_equals(a, b):
            return True
        same_kind = (isinstance(a, LuaTable) and isinstance(b, LuaTable)) or (
            isinstance(a, Userdata) and isinstance(b, Userdata)
        )
        if not same_kind:
            return False
        handler = self.metamethod(a, "__eq") or self.metamethod(b, "__eq")
        if handler is None:
            return False
        return truthy(self._first(self.call_value(handler, [a, b])))

    def _compare_error(self, a: Any, b: Any) -> RuntimeFault:
        ta, tb = type_name(a), type_name(b)
        if ta == tb:
            return RuntimeFault(f"attempt to compare two {ta} values")
        return RuntimeFault(f"attempt to compare {ta} with {tb}")

    def less_than(self, a: Any, b: Any) -> bool:
        """Evaluate ``a < b``."""
        if is_number(a) and is_number(b):
            return a < b
        if isinstance(a, str) and isinstance(b, str):
            return a < b
        handler = self.metamethod(a, "__lt") or self.metamethod(b, "__lt")
        if handler is None:
            raise self._compare_error(a, b)
        return truthy(self._first(self.call_value(handler, [a, b])))

    def less_equal(self, a: Any, b: Any) -> bool:
        """Evaluate ``a <= b``."""
        if is_number(a) and is_number(b):
            return a <= b
        if isinstance(a, str) and isinstance(b, str):
            return a <= b
        handler = self.metamethod(a, "__le") or self.metamethod(b, "__le")
        if handler is None:
            raise self._compare_error(a, b)
        return truthy(self._first(self.call_value(handler, [a, b])))

    def to_number(self, value: Any) -> int | float | None:
        """Coerce a number or numeric string, or return None."""
        if is_number(value):
            return value
        if isinstance(value, str):
            return parse_number(value)
        return None

    def arith(self, op: str, a: Any, b: Any = None) -> Any:
        """Evaluate an arithmetic operator; ``unm`` is unary minus."""
        x = self.to_number(a)
        y = x if op == "unm" else self.to_number(b)
        if x is not None and y is not None:
            return self._arith_numbers(op, x, y)

        event = ARITH_EVENTS[op]
        handler = self.metamethod(a, event)
        if handler is None and op != "unm":
            handler = self.metamethod(b, event)
        if handler is None:
            bad = b if x is not None else a
            raise RuntimeFault(f"attempt to perform arithmetic on a {type_name(bad)} value")
        return self._first(self.call_value(handler, [a, a if op == "unm" else b]))

    def _arith_numbers(self, op: str, x: int | float, y: int | float) -> int | float:
        both_int = isinstance(x, int) and isinstance(y, int)
        if op == "unm":
            return wrap_integer(-x) if isinstance(x, int) else -x
        if op == "+":
            return wrap_integer(x + y) if both_int else float(x) + float(y)
        if op == "-":
            return wrap_integer(x - y) if both_int else float(x) - float(y)
        if op == "*":
            return wrap_integer(x * y) if both_int else float(x) * float(y)
        if op == "/":
            return _float_div(float(x), float(y))
        if op == "//":
            if both_int:
                if y == 0:
                    raise RuntimeFault("attempt to perform 'n//0'")
                return wrap_integer(x // y)
            quotient = _float_div(float(x), float(y))
            return float(math.floor(quotient)) if math.isfinite(quotient) else quotient
        if op == "%":
            if both_int:
                if y == 0:
                    raise RuntimeFault("attempt to perform 'n%0'")
                return x % y
            if y == 0:
                return math.nan
            if math.isinf(y) and math.isfinite(x):
                return float(x) if (x >= 0) == (y > 0) else float(y)
            return float(x) % float(y)
        if op == "^":
            try:
                return math.pow(float(x), float(y))
            except (ValueError, OverflowError):
                return math.nan
        raise ValueError(f"unknown arithmetic operator {op!r}")

    def concat(self, a: Any, b: Any) -> Any:
        """Evaluate ``a .. b``."""
        if isinstance(a, (str, int, float)) and not isinstance(a, bool) and isinstance(
            b, (str, int, float)
        ) and not isinstance(b, bool):
            return self.tostring(a) + self.tostring(b)
        handler = self.metamethod(a, "__concat") or self.metamethod(b, "__concat")
        if handler is None:
            bad = a if not isinstance(a, (str, int, float)) or isinstance(a, bool) else b
            raise RuntimeFault(f"attempt to concatenate a {type_name(bad)} value")
        return self._first(self.call_value(handler, [a, b]))

    def tostring(self, value: Any) -> str:
        """Convert a value to a string the way the runtime's ``tostring`` does."""
        handler = self.metamethod(value, "__tostring")
        if handler is not None:
            result = self._first(self.call_value(handler, [value]))
            if not isinstance(result, str):
                raise RuntimeFault("'__tostring' must return a string")
            return result
        if value is None:
            return "nil"
        if value is True:
            return "true"
        if value is False:
            return "false"
        if is_number(value):
            return format_number(value)
        if isinstance(value, str):
            return value
        if isinstance(value, HostFunction):
            return f"function: builtin: 0x{id(value):x}"
        return f"{type_name(value)}: 0x{id(value):x}"

    # -- chunks ------------------------------------------------------------

    def load_string(self, source: str, name: str = "chunk") -> LuaFunction:
        """Compile source text into a function value without running it."""
        from luaref.interpreter import compile_chunk

        return compile_chunk(self, source, name)

    def do_string(self, source: str, name: str = "chunk") -> list[Any]:
        """Compile and run source text, returning its raw results."""
        return self.call_value(self.load_string(source, name), [])


def _float_div(x: float, y: float) -> float:
    if y == 0.0:
        if x == 0.0 or math.isnan(x):
            return math.nan
        return math.copysign(math.inf, x) * math.copysign(1.0, y)
    return x / y
