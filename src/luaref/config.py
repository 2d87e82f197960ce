"""Tunable limits for a runtime state."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class StateConfig:
    """Limits and options for a LuaState."""

    # Maximum number of values on the value stack
    max_stack: int = 1_000_000
    # Maximum nesting of runtime calls (functions and metamethods)
    max_call_depth: int = 100
    # Maximum length of an __index / __newindex chain
    max_meta_chain: int = 2000
    # Install the base library into the globals table
    open_builtins: bool = True


DEFAULT_STATE_CONFIG = StateConfig()
