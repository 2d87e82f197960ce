"""Tests for LuaRef."""

import pytest

from luaref import LuaRef, LuaState
from luaref.errors import (
    ConversionFailure,
    ReleasedHandleError,
    RuntimeFault,
    StateClosedError,
    TypeMismatch,
)
from luaref.types import LuaType


def live(state):
    return state.registry.live_count


class TestOwnership:
    """Tests for slot accounting."""

    def test_each_ref_owns_one_slot(self, state):
        """Test that construction, copy and release balance."""
        a = LuaRef(state, {})
        assert live(state) == 1

        b = a.copy()
        assert live(state) == 2

        b.release()
        assert live(state) == 1
        assert b.is_empty()

        del a
        assert live(state) == 0

    def test_nil_uses_no_slot(self, state):
        """Test that a reference to nil occupies nothing."""
        ref = LuaRef(state)

        assert live(state) == 0
        assert ref.is_nil()
        assert not ref.is_empty()

    def test_release_is_idempotent(self, state):
        """Test double release."""
        ref = LuaRef(state, "x")
        ref.release()
        ref.release()

        assert live(state) == 0

    def test_copy_is_independent(self, state):
        """Test that a copy survives the original."""
        original = LuaRef(state, {"a": 1})
        duplicate = original.copy()
        original.release()

        assert duplicate.value(dict) == {"a": 1}

    def test_move_empties_source(self, state):
        """Test ownership transfer."""
        source = LuaRef(state, [1, 2])
        moved = source.move()

        assert source.is_empty()
        assert source.type() is LuaType.NONE
        assert moved.value(list) == [1, 2]
        assert live(state) == 1

    def test_move_keeps_borrowers_working(self, state):
        """Test that items borrowed before a move follow the new owner."""
        table = LuaRef(state, {"a": 1})
        item = table["a"]
        moved = table.move()

        assert item.value() == 1
        assert moved.get("a") == 1

    def test_assign(self, state):
        """Test re-pointing a reference."""
        ref = LuaRef(state, "old")
        ref.assign(5)

        assert ref.value() == 5
        assert live(state) == 1

        other = LuaRef(state, "shared")
        ref.assign(other)
        assert ref.value() == "shared"
        assert live(state) == 2

    def test_assign_to_self(self, state):
        """Test that self-assignment keeps the value."""
        ref = LuaRef(state, {"k": "v"})
        ref.assign(ref)

        assert ref.get("k") == "v"
        assert live(state) == 1

    def test_context_manager(self, state):
        """Test releasing on exit."""
        with LuaRef(state, {}) as table:
            table.set("x", 1)
            assert live(state) == 1

        assert table.is_empty()
        assert live(state) == 0

    def test_closed_state(self):
        """Test that a reference into a closed state refuses to work."""
        state = LuaState()
        ref = LuaRef(state, 5)
        state.close()

        with pytest.raises(StateClosedError):
            ref.value()
        assert repr(ref) == "LuaRef(closed)"
        ref.release()

    def test_item_outlived_by_nothing(self, state):
        """Test that an item borrowed from a released ref raises."""
        table = LuaRef(state, {"a": 1})
        item = table["a"]
        table.release()

        with pytest.raises(ReleasedHandleError):
            item.value()

    def test_empty_reference(self):
        """Test a reference built without a state."""
        ref = LuaRef()

        assert ref.is_empty()
        assert ref.type() is LuaType.NONE
        assert ref.type_name() == "no value"
        assert ref.tostring() == "no value"
        assert repr(ref) == "LuaRef(empty)"
        with pytest.raises(ReleasedHandleError):
            ref.value()


class TestTypes:
    """Tests for type queries."""

    def test_scalars(self, state):
        """Test scalar type tags."""
        assert LuaRef(state, None).type() is LuaType.NIL
        assert LuaRef(state, True).is_bool()
        assert LuaRef(state, 1).is_number()
        assert LuaRef(state, 1.5).is_number()
        assert LuaRef(state, "s").is_string()
        assert LuaRef(state, {}).is_table()
        assert LuaRef(state, print).is_function()

    def test_userdata_kinds(self, state):
        """Test full and light userdata and threads."""
        state.new_userdata("payload")
        full = LuaRef.from_stack_top(state)
        state.push_light_userdata(object())
        light = LuaRef.from_stack_top(state)
        state.new_thread()
        thread = LuaRef.from_stack_top(state)

        assert full.is_userdata()
        assert light.is_light_userdata()
        assert light.type_name() == "userdata"
        assert thread.is_thread()
        assert state.get_top() == 0

    def test_check_type(self, state):
        """Test type assertions."""
        number = LuaRef(state, 1)

        assert number.check_type(LuaType.NUMBER) is number
        with pytest.raises(TypeMismatch, match="table expected, got number"):
            number.check_table()
        with pytest.raises(TypeMismatch, match="function expected, got number"):
            number.check_function()

    def test_is_callable(self, state):
        """Test callability with and without __call."""
        [callable_table] = state.do_string(
            "return setmetatable({}, {__call = function() return 1 end})"
        )

        assert LuaRef(state, callable_table).is_callable()
        assert LuaRef(state, len).is_callable()
        assert not LuaRef(state, {}).is_callable()
        assert not LuaRef(state).is_callable()

    def test_from_stack_leaves_stack(self, state):
        """Test registering a stack value without popping it."""
        state.push("kept")
        ref = LuaRef.from_stack(state, -1)

        assert state.get_top() == 1
        assert ref.value() == "kept"


class TestGlobals:
    """Tests for global lookup."""

    def test_plain_and_dotted(self, state):
        """Test global names with and without dots."""
        state.do_string("app = {config = {name = 'demo'}} answer = 42")

        assert LuaRef.from_global(state, "answer").value() == 42
        assert LuaRef.from_global(state, "app.config.name").value() == "demo"
        assert state.get_top() == 0

    def test_missing_name_is_nil(self, state):
        """Test that missing globals and missing tables give nil."""
        assert LuaRef.from_global(state, "nothing").is_nil()
        assert LuaRef.from_global(state, "nothing.deeper.still").is_nil()

    def test_indexing_a_number(self, state):
        """Test that walking through a number raises."""
        state.do_string("x = 5")

        with pytest.raises(RuntimeFault, match="attempt to index a number value"):
            LuaRef.from_global(state, "x.y")
        assert state.get_top() == 0


class TestTableAccess:
    """Tests for reading and writing fields."""

    def test_get_and_set(self, state):
        """Test plain reads and writes."""
        table = LuaRef.new_table(state)
        table.set("name", "abc")
        table["n"] = 5

        assert table.get("name") == "abc"
        assert table.get("n") == 5
        assert table.get("missing") is None

    def test_get_defaults(self, state):
        """Test defaults for missing and unconvertible fields."""
        table = LuaRef(state, {"name": "abc", "n": 5})

        assert table.get("missing", 7) == 7
        assert table.get("name", 0) == 0
        assert table.get("n", 0) == 5
        assert table.get("n", as_type=str) == "5"
        assert table.get("n", "none") == "5"

    def test_get_without_default_raises(self, state):
        """Test that a failed conversion raises without a default."""
        table = LuaRef(state, {"name": "abc"})

        with pytest.raises(ConversionFailure):
            table.get("name", as_type=int)

    def test_nested_tables_are_refs(self, state):
        """Test that table fields convert to references."""
        table = LuaRef(state, {"inner": {"x": 1}})
        inner = table.get("inner")

        assert isinstance(inner, LuaRef)
        assert inner.get("x") == 1

    def test_access_on_non_table(self, state):
        """Test that field access requires a table."""
        with pytest.raises(TypeMismatch):
            LuaRef(state, "s").get("x")
        with pytest.raises(TypeMismatch):
            LuaRef(state, 1).set("x", 1)

    def test_raw_bypasses_metamethods(self, state):
        """Test raw access next to __index and __newindex."""
        [raw] = state.do_string(
            """
            return setmetatable({}, {
                __index = function(t, k) return "default" end,
                __newindex = function(t, k, v) rawset(t, k, v * 2) end,
            })
            """
        )
        table = LuaRef(state, raw)

        assert table.get("x") == "default"
        assert table.rawget("x") is None
        assert not table.has("x")

        table.set("y", 2)
        table.rawset("z", 2)
        assert table.rawget("y") == 4
        assert table.rawget("z") == 2
        assert table.has("y")

    def test_remove(self, state):
        """Test removing fields."""
        table = LuaRef(state, {"a": 1, "b": 2})
        table.remove("a")
        del table["b"]

        assert not table.has("a")
        assert not table.has("b")
        assert table.value(dict) == {}

    def test_length(self, state):
        """Test len and rawlen."""
        assert LuaRef(state, [1, 2, 3]).len() == 3
        assert LuaRef(state, "héllo").len() == 6
        assert LuaRef(state, "héllo").rawlen() == 6

        [raw] = state.do_string("return setmetatable({1}, {__len = function() return 99 end})")
        table = LuaRef(state, raw)
        assert table.len() == 99
        assert table.rawlen() == 1

    def test_append(self, state):
        """Test appending after the border."""
        table = LuaRef(state, [1])
        table.append(2, 3)

        assert table.value(list) == [1, 2, 3]

    def test_runtime_error_in_index(self, state):
        """Test that an __index error surfaces with its value and a balanced stack."""
        [raw] = state.do_string("return setmetatable({}, {__index = function() error('nope') end})")
        table = LuaRef(state, raw)
        top = state.get_top()

        with pytest.raises(RuntimeFault) as exc_info:
            table.get("x")

        assert exc_info.value.value == "nope"
        assert state.get_top() == top

    def test_pairs(self, state):
        """Test Python iteration over entries."""
        table = LuaRef(state, {"1": 10, "2": 20})

        assert list(table.pairs()) == [("1", 10), ("2", 20)]
        assert dict(table.pairs(int, str)) == {1: "10", 2: "20"}
        assert live(state) == 1

    def test_pairs_closed_early(self, state):
        """Test that abandoning iteration releases the cursor."""
        table = LuaRef(state, {"a": 1, "b": 2})
        entries = table.pairs()
        next(entries)
        entries.close()

        assert live(state) == 1


class TestConversion:
    """Tests for value()."""

    def test_natural(self, state):
        """Test the default conversion."""
        assert LuaRef(state, 5).value() == 5
        assert LuaRef(state, "s").value() == "s"
        assert LuaRef(state).value() is None
        assert isinstance(LuaRef(state, {}).value(), LuaRef)

    def test_targets(self, state):
        """Test explicit targets."""
        assert LuaRef(state, "42").value(int) == 42
        assert LuaRef(state, 2.0).value(int) == 2
        assert LuaRef(state, 1).value(str) == "1"
        assert LuaRef(state, 0).value(bool) is True
        assert LuaRef(state, [1, 2]).cast(list) == [1, 2]

    def test_is_convertible(self, state):
        """Test probing a conversion without performing it."""
        before = state.registry.live_count
        table = LuaRef(state, {})

        assert LuaRef(state, "42").is_convertible(int)
        assert not LuaRef(state, "x").is_convertible(int)
        assert table.is_convertible(dict)
        assert table.is_convertible(object)
        assert not table.is_convertible(str)
        assert state.registry.live_count == before + 1
        assert state.get_top() == 0

    def test_failure(self, state):
        """Test an impossible conversion."""
        with pytest.raises(ConversionFailure, match="cannot convert table value to int"):
            LuaRef(state, {}).value(int)

    def test_huge_integer(self, state):
        """Test that integers beyond 64 bits become floats."""
        assert LuaRef(state, 2**70).value() == float(2**70)


class TestCalls:
    """Tests for calling referenced functions."""

    def test_multiple_results(self, state):
        """Test call() returning every result."""
        [fn] = state.do_string("return function(a, b) return a + b, a * b end")
        results = LuaRef(state, fn).call(3, 4)

        assert [result.value() for result in results] == [7, 12]

    def test_first_result(self, state):
        """Test __call__ returning the first result."""
        [fn] = state.do_string("return function() return 1, 2, 3 end")
        ref = LuaRef(state, fn)
        result = ref()

        assert result.value() == 1
        assert live(state) == 2

    def test_no_results_gives_nil(self, state):
        """Test calling a function that returns nothing."""
        [fn] = state.do_string("return function() end")

        assert LuaRef(state, fn)().is_nil()

    def test_call_metamethod(self, state):
        """Test calling a table with __call."""
        [raw] = state.do_string("return setmetatable({}, {__call = function(self, x) return x + 1 end})")

        assert LuaRef(state, raw)(41).value() == 42

    def test_python_callable(self, state):
        """Test a Python function passed into the runtime."""
        add = LuaRef(state, lambda a, b: a + b)

        assert add(2, 3).value() == 5

    def test_not_callable(self, state):
        """Test calling a number."""
        with pytest.raises(TypeMismatch, match="call: function expected, got number"):
            LuaRef(state, 5)()

    def test_error_propagates(self, state):
        """Test that a runtime error leaves the stack balanced."""
        [fn] = state.do_string("return function() error('failed') end")

        with pytest.raises(RuntimeFault, match="failed"):
            LuaRef(state, fn).call()
        assert state.get_top() == 0


class TestMetatables:
    """Tests for metatable access."""

    def test_get_and_set(self, state):
        """Test setting and reading a metatable."""
        table = LuaRef(state, {})
        metatable = LuaRef(state, {"__index": {"x": 1}})

        assert table.get_metatable().is_nil()

        table.set_metatable(metatable)
        assert table.get_metatable().is_identical_to(metatable)
        assert table.get("x") == 1

        table.set_metatable(None)
        assert table.get("x") is None

    def test_set_on_number(self, state):
        """Test that only tables and userdata take metatables."""
        with pytest.raises(TypeMismatch):
            LuaRef(state, 1).set_metatable({})
        assert state.get_top() == 0


class TestStrings:
    """Tests for string forms."""

    def test_tostring(self, state):
        """Test runtime string conversion."""
        assert LuaRef(state, 1.0).tostring() == "1.0"
        assert str(LuaRef(state, True)) == "true"
        assert str(LuaRef(state)) == "nil"
        assert str(LuaRef(state, {})).startswith("table: 0x")

    def test_tostring_metamethod(self, state):
        """Test __tostring."""
        [raw] = state.do_string("return setmetatable({}, {__tostring = function() return 'obj' end})")

        assert str(LuaRef(state, raw)) == "obj"

    def test_repr(self, state):
        """Test the debugging form."""
        assert repr(LuaRef(state, 1)).startswith("LuaRef(number, slot=")


class TestComparison:
    """Tests for equality and ordering."""

    def test_equality(self, state):
        """Test equality against Python values and refs."""
        one = LuaRef(state, 1)

        assert one == 1
        assert one == 1.0
        assert one == LuaRef(state, 1)
        assert one != "1"
        assert one != 2
        assert one != object()

    def test_nil_identity(self, state):
        """Test that nil and empty references compare equal to None."""
        assert LuaRef(state) == None  # noqa: E711
        assert LuaRef() == None  # noqa: E711
        assert LuaRef() == LuaRef(state)
        assert LuaRef(state, 0) != None  # noqa: E711
        assert LuaRef(state, False) != LuaRef(state)

    def test_tables(self, state):
        """Test table identity."""
        table = LuaRef(state, {})

        assert table == table.copy()
        assert table != LuaRef(state, {})

    def test_eq_metamethod(self, state):
        """Test that __eq is honoured while is_identical_to is raw."""
        a_raw, b_raw = state.do_string(
            """
            local mt = {__eq = function() return true end}
            return setmetatable({}, mt), setmetatable({}, mt)
            """
        )
        a, b = LuaRef(state, a_raw), LuaRef(state, b_raw)

        assert a == b
        assert not a.is_identical_to(b)
        assert a.is_identical_to(a.copy())

    def test_ordering(self, state):
        """Test ordering of numbers and strings."""
        assert LuaRef(state, 1) < 2
        assert LuaRef(state, 2) > 1
        assert LuaRef(state, 2) >= 2
        assert LuaRef(state, 1) <= LuaRef(state, 1)
        assert LuaRef(state, "a") < "b"

    def test_mixed_ordering(self, state):
        """Test that ordering different types raises."""
        with pytest.raises(RuntimeFault, match="attempt to compare number with string"):
            LuaRef(state, 1) < "x"  # noqa: B015
        assert state.get_top() == 0

    def test_compare(self, state):
        """Test three-way comparison."""
        one = LuaRef(state, 1)

        assert one.compare(2) == -1
        assert one.compare(1) == 0
        assert one.compare(0) == 1

    def test_unhashable(self, state):
        """Test that references cannot be dict keys."""
        with pytest.raises(TypeError):
            hash(LuaRef(state, 1))
