"""Tests for the runtime state and its primitives."""

import dataclasses
import logging
import math

import pytest

from luaref import LuaState, StateConfig
from luaref.errors import RuntimeFault, StateClosedError, TypeMismatch
from luaref.state import CompareOp
from luaref.table import LuaTable
from luaref.types import HostFunction, LuaType


class TestStack:
    """Tests for the value stack."""

    def test_push_and_pop(self, state):
        """Test basic stack movement."""
        state.push(1)
        state.push("two")

        assert state.get_top() == 2
        assert state.value_at(-1) == "two"
        assert state.value_at(1) == 1

        state.pop()
        assert state.get_top() == 1

    def test_set_top_pads_with_nil(self, state):
        """Test growing the stack."""
        state.set_top(3)

        assert state.get_top() == 3
        assert state.type_at(-1) is LuaType.NIL

    def test_invalid_index(self, state):
        """Test indices outside the stack."""
        state.push(1)

        with pytest.raises(IndexError):
            state.value_at(2)
        assert state.type_at(5) is LuaType.NONE

    def test_push_rejects_python_objects(self, state):
        """Test that only runtime values can be pushed."""
        with pytest.raises(TypeError):
            state.push(object())

    def test_stack_overflow(self):
        """Test the configured stack bound."""
        with LuaState(StateConfig(max_stack=3)) as state:
            for i in range(3):
                state.push(i)
            with pytest.raises(RuntimeFault, match="stack overflow"):
                state.push(4)


class TestTablePrimitives:
    """Tests for table get/set primitives."""

    def test_get_and_set_field(self, state):
        """Test set_field/get_field."""
        state.new_table()
        state.push(42)
        state.set_field(-2, "answer")
        state.get_field(-1, "answer")

        assert state.value_at(-1) == 42
        assert state.get_top() == 2

    def test_raw_get_requires_table(self, state):
        """Test that raw access on a non-table raises."""
        state.push(5)
        state.push("k")

        with pytest.raises(TypeMismatch, match="table expected, got number"):
            state.raw_get(-2)
        assert state.get_top() == 2

    def test_next(self, state):
        """Test stepping through a table."""
        table = state.new_table()
        table.rawset("a", 1)
        state.push(None)

        assert state.next(-2)
        assert state.value_at(-2) == "a"
        assert state.value_at(-1) == 1
        state.pop()
        assert not state.next(-2)
        assert state.get_top() == 1

    def test_globals(self, state):
        """Test global get/set."""
        state.push("value")
        state.set_global("g")
        state.get_global("g")
        state.get_global("missing")

        assert state.value_at(-2) == "value"
        assert state.value_at(-1) is None

    def test_index_chain_limit(self):
        """Test that an __index loop is cut off."""
        with LuaState(StateConfig(max_meta_chain=50)) as state:
            meta = LuaTable()
            loop = LuaTable()
            loop.metatable = meta
            meta.rawset("__index", loop)

            with pytest.raises(RuntimeFault, match="chain too long"):
                state.index(loop, "x")


class TestCall:
    """Tests for calling functions."""

    def test_call_host_function(self, state):
        """Test calling through the stack."""
        state.push(HostFunction(lambda s, a, b: a + b))
        state.push(2)
        state.push(3)

        assert state.call(2) == 1
        assert state.value_at(-1) == 5
        assert state.get_top() == 1

    def test_call_adjusts_results(self, state):
        """Test padding and truncating results."""
        state.push(HostFunction(lambda s: (1, 2, 3)))
        assert state.call(0, 1) == 1
        assert state.get_top() == 1

        state.push(HostFunction(lambda s: None))
        assert state.call(0, 2) == 2
        assert state.get_top() == 3

    def test_call_non_function(self, state):
        """Test calling a value that is not callable."""
        state.push(5)

        with pytest.raises(RuntimeFault, match="attempt to call a number value"):
            state.call(0)


class TestSemantics:
    """Tests for arithmetic, comparison and conversion to strings."""

    def test_arithmetic(self, state):
        """Test the arithmetic operators."""
        assert state.arith("+", 1, 2) == 3
        assert state.arith("/", 1, 2) == 0.5
        assert state.arith("//", 7, 2) == 3
        assert state.arith("%", -1, 3) == 2
        assert state.arith("^", 2, 10) == 1024.0
        assert state.arith("unm", 5) == -5
        assert state.arith("+", "10", 1) == 11

    def test_integer_overflow_wraps(self, state):
        """Test 64-bit integer wraparound."""
        assert state.arith("+", 2**63 - 1, 1) == -(2**63)

    def test_division_by_zero(self, state):
        """Test integer and float division by zero."""
        with pytest.raises(RuntimeFault, match="n//0"):
            state.arith("//", 1, 0)
        with pytest.raises(RuntimeFault, match="n%0"):
            state.arith("%", 1, 0)
        assert state.arith("/", 1, 0) == math.inf
        assert math.isnan(state.arith("/", 0, 0))

    def test_arithmetic_on_table(self, state):
        """Test arithmetic without a metamethod."""
        with pytest.raises(RuntimeFault, match="arithmetic on a table value"):
            state.arith("+", LuaTable(), 1)

    def test_compare(self, state):
        """Test comparison primitives."""
        state.push(1)
        state.push(2)

        assert state.compare(-2, -1, CompareOp.LT)
        assert state.compare(-2, -1, CompareOp.LE)
        assert not state.compare(-2, -1, CompareOp.EQ)
        assert state.raw_equal(-1, -1)

    def test_cross_type_ordering(self, state):
        """Test that ordering values of different types raises."""
        with pytest.raises(RuntimeFault, match="attempt to compare number with string"):
            state.less_than(1, "x")
        with pytest.raises(RuntimeFault, match="attempt to compare two table values"):
            state.less_than(LuaTable(), LuaTable())

    def test_tostring(self, state):
        """Test string conversion of values."""
        assert state.tostring(None) == "nil"
        assert state.tostring(True) == "true"
        assert state.tostring(3) == "3"
        assert state.tostring(3.0) == "3.0"
        assert state.tostring(LuaTable()).startswith("table: 0x")

    def test_concat(self, state):
        """Test string concatenation."""
        assert state.concat("a", 1) == "a1"
        with pytest.raises(RuntimeFault, match="concatenate a nil value"):
            state.concat("a", None)


class TestLifecycle:
    """Tests for opening and closing states."""

    def test_close(self):
        """Test that a closed state rejects use."""
        state = LuaState()
        state.close()

        assert state.closed
        with pytest.raises(StateClosedError):
            state.push(1)
        state.close()

    def test_context_manager(self):
        """Test closing on exit."""
        with LuaState() as state:
            assert not state.closed
        assert state.closed

    def test_without_builtins(self):
        """Test a bare state."""
        with LuaState(StateConfig(open_builtins=False)) as state:
            state.get_global("print")
            assert state.value_at(-1) is None

    def test_config_is_frozen(self):
        """Test that configuration cannot be mutated."""
        config = StateConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.max_stack = 1

    def test_close_logs_live_slots(self, caplog):
        """Test the debug record written when closing with live slots."""
        with caplog.at_level(logging.DEBUG, logger="luaref.state"):
            state = LuaState()
            state.push("pinned")
            state.ref()
            state.close()

        assert any("1 live registry slots" in record.getMessage() for record in caplog.records)
