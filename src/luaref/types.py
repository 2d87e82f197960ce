"""Runtime value kinds and the helpers shared by every layer."""

from __future__ import annotations

import math
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from luaref.table import LuaTable

if TYPE_CHECKING:
    from luaref.state import LuaState


class LuaType(Enum):
    """Type tags of runtime values.

    ``NONE`` is not a runtime type: it marks an empty reference or an
    invalid stack index, and is distinct from ``NIL``.
    """

    NONE = -1
    NIL = 0
    BOOLEAN = 1
    LIGHTUSERDATA = 2
    NUMBER = 3
    STRING = 4
    TABLE = 5
    FUNCTION = 6
    USERDATA = 7
    THREAD = 8

    @property
    def type_name(self) -> str:
        """Return the name the runtime's ``type()`` reports for this tag."""
        names = {
            LuaType.NONE: "no value",
            LuaType.NIL: "nil",
            LuaType.BOOLEAN: "boolean",
            LuaType.LIGHTUSERDATA: "userdata",
            LuaType.NUMBER: "number",
            LuaType.STRING: "string",
            LuaType.TABLE: "table",
            LuaType.FUNCTION: "function",
            LuaType.USERDATA: "userdata",
            LuaType.THREAD: "thread",
        }
        return names[self]


class LuaFunction:
    """Base class for callable runtime values."""

    name: str = "?"

    def invoke(self, state: LuaState, args: list[Any]) -> list[Any]:
        raise NotImplementedError


class HostFunction(LuaFunction):
    """A function implemented in Python.

    ``fn`` receives the state followed by the raw runtime arguments. Its
    return value becomes the result list: ``None`` means no results, a tuple
    means several results, anything else a single result.
    """

    def __init__(self, fn: Callable[..., Any], name: str | None = None) -> None:
        self.fn = fn
        self.name = name or getattr(fn, "__name__", "?")

    def invoke(self, state: LuaState, args: list[Any]) -> list[Any]:
        from luaref.errors import LuaError, RuntimeFault

        try:
            result = self.fn(state, *args)
        except LuaError:
            raise
        except Exception as exc:
            raise RuntimeFault(f"{self.name}: {exc}") from exc
        if result is None:
            return []
        if isinstance(result, tuple):
            return list(result)
        return [result]

    def __repr__(self) -> str:
        return f"HostFunction({self.name!r})"


class Userdata:
    """A full userdata: an opaque host payload with its own metatable."""

    def __init__(self, payload: Any = None, metatable: LuaTable | None = None) -> None:
        self.payload = payload
        self.metatable = metatable

    def __repr__(self) -> str:
        return f"Userdata({self.payload!r})"


class LightUserdata:
    """A bare host pointer. Two light userdata are equal when they wrap the same object."""

    __slots__ = ("pointer",)

    def __init__(self, pointer: Any) -> None:
        self.pointer = pointer

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LightUserdata):
            return NotImplemented
        return self.pointer is other.pointer

    def __hash__(self) -> int:
        return id(self.pointer)

    def __repr__(self) -> str:
        return f"LightUserdata(0x{id(self.pointer):x})"


class LuaThread:
    """A runtime thread value. Threads are opaque to this layer."""

    def __init__(self, state: LuaState) -> None:
        self.state = state

    def __repr__(self) -> str:
        return f"<LuaThread at 0x{id(self):x}>"


def type_of(value: Any) -> LuaType:
    """Return the type tag of a raw runtime value."""
    if value is None:
        return LuaType.NIL
    if isinstance(value, bool):
        return LuaType.BOOLEAN
    if isinstance(value, (int, float)):
        return LuaType.NUMBER
    if isinstance(value, str):
        return LuaType.STRING
    if isinstance(value, LuaTable):
        return LuaType.TABLE
    if isinstance(value, LuaFunction):
        return LuaType.FUNCTION
    if isinstance(value, Userdata):
        return LuaType.USERDATA
    if isinstance(value, LightUserdata):
        return LuaType.LIGHTUSERDATA
    if isinstance(value, LuaThread):
        return LuaType.THREAD
    raise TypeError(f"{type(value).__name__} is not a runtime value")


def type_name(value: Any) -> str:
    """Return the runtime's name for the type of a raw value."""
    return type_of(value).type_name


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def truthy(value: Any) -> bool:
    """Runtime truthiness: only nil and false are false."""
    return value is not None and value is not False


def raw_equals(a: Any, b: Any) -> bool:
    """Primitive equality, never consulting metamethods."""
    ta = type_of(a)
    if ta is not type_of(b):
        return False
    if ta in (LuaType.NIL, LuaType.BOOLEAN, LuaType.NUMBER, LuaType.STRING, LuaType.LIGHTUSERDATA):
        return a == b
    return a is b


def format_number(value: int | float) -> str:
    """Format a number the way the runtime's ``tostring`` does."""
    if isinstance(value, int):
        return str(value)
    if math.isnan(value):
        return "nan" if math.copysign(1.0, value) > 0 else "-nan"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    text = "%.14g" % value
    if all(ch in "-0123456789" for ch in text):
        text += ".0"
    return text


def wrap_integer(value: int) -> int:
    """Wrap an integer to the runtime's signed 64-bit range."""
    value &= 0xFFFFFFFFFFFFFFFF
    if value >= 0x8000000000000000:
        value -= 0x10000000000000000
    return value


def parse_number(text: str) -> int | float | None:
    """Convert a numeric string the way the runtime does, or return None."""
    text = text.strip()
    if not text or "_" in text:
        return None
    body = text[1:] if text[0] in "+-" else text
    if body[:2].lower() == "0x":
        try:
            value = int(body[2:], 16)
        except ValueError:
            return None
        value = wrap_integer(value)
        return -value if text[0] == "-" else value
    if body.lower() in ("inf", "infinity", "nan"):
        return None
    try:
        value = int(text)
    except ValueError:
        pass
    else:
        # Decimal integers outside the 64-bit range read as floats
        return value if -(2**63) <= value < 2**63 else float(value)
    try:
        return float(text)
    except ValueError:
        return None
