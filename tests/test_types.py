"""Tests for runtime value kinds and helpers."""

import math

import pytest

from luaref.errors import RuntimeFault
from luaref.table import LuaTable
from luaref.types import (
    HostFunction,
    LightUserdata,
    LuaType,
    Userdata,
    format_number,
    parse_number,
    raw_equals,
    truthy,
    type_name,
    type_of,
    wrap_integer,
)


class TestTypeOf:
    """Tests for type tags."""

    def test_scalars(self):
        """Test tags of scalar values."""
        assert type_of(None) is LuaType.NIL
        assert type_of(False) is LuaType.BOOLEAN
        assert type_of(0) is LuaType.NUMBER
        assert type_of(1.5) is LuaType.NUMBER
        assert type_of("") is LuaType.STRING

    def test_objects(self):
        """Test tags of reference values."""
        assert type_of(LuaTable()) is LuaType.TABLE
        assert type_of(HostFunction(lambda state: None)) is LuaType.FUNCTION
        assert type_of(Userdata()) is LuaType.USERDATA
        assert type_of(LightUserdata(object())) is LuaType.LIGHTUSERDATA

    def test_names(self):
        """Test the names reported by type()."""
        assert type_name(None) == "nil"
        assert type_name(LightUserdata(object())) == "userdata"
        assert LuaType.NONE.type_name == "no value"

    def test_not_a_runtime_value(self):
        """Test that arbitrary Python objects are rejected."""
        with pytest.raises(TypeError):
            type_of(object())


class TestEquality:
    """Tests for truthiness and raw equality."""

    def test_truthy(self):
        """Test that only nil and false are false."""
        assert not truthy(None)
        assert not truthy(False)
        assert truthy(0)
        assert truthy("")

    def test_raw_equals(self):
        """Test primitive equality."""
        table = LuaTable()
        assert raw_equals(1, 1.0)
        assert raw_equals("a", "a")
        assert raw_equals(table, table)
        assert not raw_equals(table, LuaTable())
        assert not raw_equals(1, "1")
        assert not raw_equals(True, 1)
        assert not raw_equals(math.nan, math.nan)

    def test_light_userdata_identity(self):
        """Test that light userdata compare by wrapped object."""
        target = object()
        assert raw_equals(LightUserdata(target), LightUserdata(target))
        assert not raw_equals(LightUserdata(target), LightUserdata(object()))


class TestNumbers:
    """Tests for number formatting and parsing."""

    def test_format(self):
        """Test tostring formatting of numbers."""
        assert format_number(10) == "10"
        assert format_number(1.0) == "1.0"
        assert format_number(1.5) == "1.5"
        assert format_number(-0.25) == "-0.25"
        assert format_number(1e100) == "1e+100"
        assert format_number(math.inf) == "inf"
        assert format_number(-math.inf) == "-inf"

    def test_parse(self):
        """Test numeric string conversion."""
        assert parse_number("42") == 42
        assert parse_number("  7  ") == 7
        assert parse_number("1.5") == 1.5
        assert parse_number("1e3") == 1000.0
        assert parse_number("0x1F") == 31
        assert parse_number("-0x10") == -16

    def test_parse_rejects(self):
        """Test strings that are not numbers."""
        assert parse_number("") is None
        assert parse_number("abc") is None
        assert parse_number("1_000") is None
        assert parse_number("inf") is None
        assert parse_number("nan") is None

    def test_parse_large_integer_becomes_float(self):
        """Test that decimal integers beyond 64 bits read as floats."""
        assert parse_number("99999999999999999999") == 1e20

    def test_wrap_integer(self):
        """Test wrapping to the signed 64-bit range."""
        assert wrap_integer(2**63) == -(2**63)
        assert wrap_integer(-(2**63) - 1) == 2**63 - 1
        assert wrap_integer(5) == 5


class TestHostFunction:
    """Tests for Python-implemented functions."""

    def test_result_mapping(self, state):
        """Test how return values become result lists."""
        assert HostFunction(lambda s: None).invoke(state, []) == []
        assert HostFunction(lambda s: (1, 2)).invoke(state, []) == [1, 2]
        assert HostFunction(lambda s, x: x).invoke(state, ["a"]) == ["a"]

    def test_python_errors_wrapped(self, state):
        """Test that Python exceptions become runtime faults."""

        def broken(s):
            raise ValueError("bad input")

        with pytest.raises(RuntimeFault, match="broken: bad input") as exc_info:
            HostFunction(broken).invoke(state, [])
        assert isinstance(exc_info.value.__cause__, ValueError)
