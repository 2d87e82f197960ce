"""Registry slot ownership and the stack guard.

An ``OwnedHandle`` is responsible for releasing its registry slot. A
``BorrowedHandle`` reads through an owner and never releases anything;
the only way to get one is ``OwnedHandle.borrow()``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from luaref.errors import ReleasedHandleError
from luaref.registry import NOREF, REFNIL

if TYPE_CHECKING:
    from luaref.state import LuaState


class StackPop:
    """Restores the stack top on exit, whatever was pushed in between."""

    def __init__(self, state: LuaState) -> None:
        self.state = state
        self.top = state.get_top()

    def __enter__(self) -> StackPop:
        return self

    def __exit__(self, *args: Any) -> None:
        if not self.state.closed:
            self.state.set_top(self.top)


class OwnedHandle:
    """A registry slot owned by exactly one holder."""

    __slots__ = ("state", "slot")

    def __init__(self, state: LuaState | None, slot: int) -> None:
        self.state = state
        self.slot = slot

    @classmethod
    def empty(cls) -> OwnedHandle:
        return cls(None, NOREF)

    @classmethod
    def from_stack_top(cls, state: LuaState) -> OwnedHandle:
        """Pop the stack top into a new slot."""
        state.check_open()
        return cls(state, state.ref())

    @classmethod
    def from_stack(cls, state: LuaState, index: int) -> OwnedHandle:
        """Register a copy of the value at ``index``; the stack is unchanged."""
        state.push_value(index)
        return cls.from_stack_top(state)

    @property
    def is_empty(self) -> bool:
        return self.state is None

    @property
    def is_nil(self) -> bool:
        return self.slot == REFNIL

    def push(self) -> None:
        """Push the registered value."""
        if self.state is None:
            raise ReleasedHandleError("reference is empty")
        self.state.push_ref(self.slot)

    def duplicate(self) -> OwnedHandle:
        """Register a second slot for the same value."""
        if self.state is None:
            return OwnedHandle.empty()
        self.push()
        return OwnedHandle.from_stack_top(self.state)

    def borrow(self) -> BorrowedHandle:
        return BorrowedHandle(self)

    def release(self) -> None:
        """Release the slot. Safe to call more than once."""
        state, slot = self.state, self.slot
        self.state = None
        self.slot = NOREF
        if state is not None:
            state.unref(slot)

    def __del__(self) -> None:
        state = getattr(self, "state", None)
        if state is not None and not state.closed:
            self.release()

    def __repr__(self) -> str:
        if self.state is None:
            return "OwnedHandle(empty)"
        return f"OwnedHandle(slot={self.slot})"


class BorrowedHandle:
    """A read-only view of another holder's slot."""

    __slots__ = ("owner",)

    def __init__(self, owner: OwnedHandle) -> None:
        self.owner = owner

    def _check(self) -> None:
        if self.owner.is_empty:
            raise ReleasedHandleError("borrowed reference has been released by its owner")

    @property
    def state(self) -> LuaState:
        self._check()
        return self.owner.state  # type: ignore[return-value]

    @property
    def slot(self) -> int:
        self._check()
        return self.owner.slot

    def push(self) -> None:
        self._check()
        self.owner.push()

    def __repr__(self) -> str:
        return f"BorrowedHandle({self.owner!r})"
