"""Shared fixtures."""

import pytest

from luaref import LuaState


@pytest.fixture
def state():
    """A fresh state with the base library installed."""
    with LuaState() as state:
        yield state
