"""Exception types raised by the runtime and the reference layer."""

from __future__ import annotations

from typing import Any


class LuaError(Exception):
    """Base class for all luaref errors."""


class TypeMismatch(LuaError, TypeError):
    """A value's runtime type does not match what an operation requires."""

    def __init__(self, expected: str, actual: str, context: str | None = None) -> None:
        self.expected = expected
        self.actual = actual
        self.context = context
        message = f"{expected} expected, got {actual}"
        if context:
            message = f"{context}: {message}"
        super().__init__(message)


class ConversionFailure(LuaError, ValueError):
    """A runtime value cannot be converted to the requested Python type."""

    def __init__(self, target: str, actual: str) -> None:
        self.target = target
        self.actual = actual
        super().__init__(f"cannot convert {actual} value to {target}")


class RuntimeFault(LuaError, RuntimeError):
    """An error raised inside the runtime.

    ``value`` holds the runtime error object (usually the message string,
    but ``error()`` accepts any value).
    """

    def __init__(self, value: Any) -> None:
        self.value = value
        super().__init__(value if isinstance(value, str) else f"runtime error ({value!r})")


class ReleasedHandleError(LuaError, ReferenceError):
    """A registry slot was used after its owner released it."""


class StateClosedError(LuaError):
    """A handle was used after its owning state was closed."""

    def __init__(self) -> None:
        super().__init__("state is closed")
