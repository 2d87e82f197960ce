"""
Tree-walking interpreter for runtime source chunks.

Evaluates the AST produced by ``ChunkParser`` against a ``LuaState``. Every
index, call, comparison and arithmetic step goes through the state's
metamethod-aware primitives, so chunks and host code observe the same
semantics.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from luaref.errors import RuntimeFault
from luaref.parsing.chunk_parser import (
    Assign,
    BinOp,
    Block,
    Break,
    Call,
    CallStatement,
    ChunkParser,
    Constant,
    Do,
    FunctionBody,
    GenericFor,
    If,
    Index,
    Local,
    LocalFunction,
    MethodCall,
    Name,
    NumericFor,
    Paren,
    Repeat,
    Return,
    TableConstructor,
    UnOp,
    Vararg,
    While,
)
from luaref.table import LuaTable
from luaref.types import LuaFunction, truthy

if TYPE_CHECKING:
    from luaref.state import LuaState


@dataclass
class Scope:
    """
    A single scope containing local variable bindings.

    Scopes form a chain via ``parent``. Names not bound anywhere in the
    chain are globals.
    """

    variables: dict[str, Any] = field(default_factory=dict)
    parent: Scope | None = None
    varargs: list[Any] | None = None

    def child(self) -> Scope:
        """Create a nested block scope."""
        return Scope(parent=self, varargs=self.varargs)

    def find(self, name: str) -> Scope | None:
        """Return the innermost scope binding ``name``."""
        scope: Scope | None = self
        while scope is not None:
            if name in scope.variables:
                return scope
            scope = scope.parent
        return None


class _BreakLoop(Exception):
    pass


class _ReturnValues(Exception):
    def __init__(self, values: list[Any]) -> None:
        super().__init__()
        self.values = values


class LuaClosure(LuaFunction):
    """A function defined in source, closed over the scope that created it."""

    def __init__(self, interpreter: Interpreter, node: FunctionBody, scope: Scope) -> None:
        self.interpreter = interpreter
        self.node = node
        self.scope = scope
        self.name = node.name

    def invoke(self, state: LuaState, args: list[Any]) -> list[Any]:
        params = self.node.params
        scope = Scope(
            parent=self.scope,
            varargs=args[len(params):] if self.node.is_vararg else None,
        )
        for i, param in enumerate(params):
            scope.variables[param] = args[i] if i < len(args) else None
        try:
            self.interpreter.execute_block(self.node.body, scope)
        except _ReturnValues as ret:
            return ret.values
        except _BreakLoop:
            raise RuntimeFault(f"{self.name}: break outside a loop") from None
        return []

    def __repr__(self) -> str:
        return f"LuaClosure({self.name!r})"


class Interpreter:
    """
    Tree-walking interpreter bound to one state.

    Evaluates AST nodes by dispatching to type-specific methods.
    """

    def __init__(self, state: LuaState) -> None:
        self.state = state

    # -- statements ----------------------------------------------------------

    def execute_block(self, block: Block, scope: Scope) -> Scope:
        """Execute a block's statements, returning the innermost scope it declared into."""
        for stmt in block.statements:
            if isinstance(stmt, (Local, LocalFunction)):
                scope = self._execute_declaration(stmt, scope)
            else:
                self._execute_statement(stmt, scope)
        return scope

    def _execute_statement(self, stmt: Any, scope: Scope) -> None:
        """Execute a statement."""
        if isinstance(stmt, Assign):
            self._execute_assign(stmt, scope)
        elif isinstance(stmt, CallStatement):
            self.evaluate_multi(stmt.call, scope)
        elif isinstance(stmt, Return):
            raise _ReturnValues(self.evaluate_list(stmt.values, scope))
        elif isinstance(stmt, Break):
            raise _BreakLoop()
        elif isinstance(stmt, Do):
            self.execute_block(stmt.body, scope.child())
        elif isinstance(stmt, If):
            self._execute_if(stmt, scope)
        elif isinstance(stmt, While):
            self._execute_while(stmt, scope)
        elif isinstance(stmt, Repeat):
            self._execute_repeat(stmt, scope)
        elif isinstance(stmt, NumericFor):
            self._execute_numeric_for(stmt, scope)
        elif isinstance(stmt, GenericFor):
            self._execute_generic_for(stmt, scope)
        else:
            raise RuntimeError(f"Unknown statement type: {type(stmt).__name__}")

    def _execute_declaration(self, stmt: Local | LocalFunction, scope: Scope) -> Scope:
        """Declare locals. Redeclaring a name opens a fresh scope so earlier closures keep the old variable."""
        if isinstance(stmt, Local):
            values = self.evaluate_list(stmt.values, scope)
            names = stmt.names
        else:
            values = []
            names = [stmt.name]

        if any(name in scope.variables for name in names):
            scope = scope.child()

        if isinstance(stmt, LocalFunction):
            # Bound before the closure is created so the function can recurse
            scope.variables[stmt.name] = None
            scope.variables[stmt.name] = LuaClosure(self, stmt.func, scope)
        else:
            for i, name in enumerate(names):
                scope.variables[name] = values[i] if i < len(values) else None
        return scope

    def _execute_assign(self, stmt: Assign, scope: Scope) -> None:
        """Execute a (possibly multiple) assignment."""
        targets = []
        for target in stmt.targets:
            if isinstance(target, Index):
                targets.append((self.evaluate(target.obj, scope), self.evaluate(target.key, scope)))
            else:
                targets.append(target)

        values = self.evaluate_list(stmt.values, scope)
        for i, target in enumerate(targets):
            value = values[i] if i < len(values) else None
            if isinstance(target, tuple):
                obj, key = target
                self.state.new_index(obj, key, value)
            else:
                self._assign_name(target.name, value, scope)

    def _assign_name(self, name: str, value: Any, scope: Scope) -> None:
        owner = scope.find(name)
        if owner is not None:
            owner.variables[name] = value
        else:
            self.state.new_index(self.state.globals, name, value)

    def _execute_if(self, stmt: If, scope: Scope) -> None:
        for condition, body in stmt.clauses:
            if truthy(self.evaluate(condition, scope)):
                self.execute_block(body, scope.child())
                return
        if stmt.orelse is not None:
            self.execute_block(stmt.orelse, scope.child())

    def _execute_while(self, stmt: While, scope: Scope) -> None:
        while truthy(self.evaluate(stmt.condition, scope)):
            try:
                self.execute_block(stmt.body, scope.child())
            except _BreakLoop:
                break

    def _execute_repeat(self, stmt: Repeat, scope: Scope) -> None:
        while True:
            try:
                # The condition sees the body's locals
                inner = self.execute_block(stmt.body, scope.child())
            except _BreakLoop:
                break
            if truthy(self.evaluate(stmt.condition, inner)):
                break

    def _for_number(self, value: Any, what: str) -> int | float:
        number = self.state.to_number(value)
        if number is None:
            raise RuntimeFault(f"'for' {what} must be a number")
        return number

    def _execute_numeric_for(self, stmt: NumericFor, scope: Scope) -> None:
        """Execute ``for v = start, stop[, step]``."""
        start = self._for_number(self.evaluate(stmt.start, scope), "initial value")
        stop = self._for_number(self.evaluate(stmt.stop, scope), "limit")
        step = 1
        if stmt.step is not None:
            step = self._for_number(self.evaluate(stmt.step, scope), "step")
        if step == 0:
            raise RuntimeFault("'for' step is zero")

        if not (isinstance(start, int) and isinstance(step, int)):
            start, stop, step = float(start), float(stop), float(step)
        elif isinstance(stop, float):
            # An integer loop with a float limit runs up to the limit's floor (or ceiling)
            if math.isnan(stop):
                return
            if not math.isinf(stop):
                stop = math.floor(stop) if step > 0 else math.ceil(stop)

        current = start
        while (current <= stop) if step > 0 else (current >= stop):
            inner = scope.child()
            inner.variables[stmt.var] = current
            try:
                self.execute_block(stmt.body, inner)
            except _BreakLoop:
                break
            current += step

    def _execute_generic_for(self, stmt: GenericFor, scope: Scope) -> None:
        """Execute ``for k, v in explist`` using the iterator call protocol."""
        values = self.evaluate_list(stmt.exprs, scope) + [None, None, None]
        func, invariant, control = values[0], values[1], values[2]
        while True:
            results = self.state.call_value(func, [invariant, control])
            results = results + [None] * (len(stmt.names) - len(results))
            if results[0] is None:
                break
            control = results[0]
            inner = scope.child()
            for i, name in enumerate(stmt.names):
                inner.variables[name] = results[i]
            try:
                self.execute_block(stmt.body, inner)
            except _BreakLoop:
                break

    # -- expressions ---------------------------------------------------------

    def evaluate_list(self, exprs: list[Any], scope: Scope) -> list[Any]:
        """Evaluate an expression list; only the last expression may expand to several values."""
        values = [self.evaluate(expr, scope) for expr in exprs[:-1]]
        if exprs:
            values.extend(self.evaluate_multi(exprs[-1], scope))
        return values

    def evaluate_multi(self, expr: Any, scope: Scope) -> list[Any]:
        """Evaluate an expression that may produce several values."""
        if isinstance(expr, Call):
            func = self.evaluate(expr.func, scope)
            return self.state.call_value(func, self.evaluate_list(expr.args, scope))
        if isinstance(expr, MethodCall):
            obj = self.evaluate(expr.obj, scope)
            method = self.state.index(obj, expr.method)
            return self.state.call_value(method, [obj] + self.evaluate_list(expr.args, scope))
        if isinstance(expr, Vararg):
            return list(self._varargs(scope))
        return [self.evaluate(expr, scope)]

    def evaluate(self, expr: Any, scope: Scope) -> Any:
        """Evaluate an expression to a single value."""
        if isinstance(expr, Constant):
            return expr.value
        elif isinstance(expr, Name):
            owner = scope.find(expr.name)
            if owner is not None:
                return owner.variables[expr.name]
            return self.state.index(self.state.globals, expr.name)
        elif isinstance(expr, Index):
            return self.state.index(self.evaluate(expr.obj, scope), self.evaluate(expr.key, scope))
        elif isinstance(expr, (Call, MethodCall)):
            results = self.evaluate_multi(expr, scope)
            return results[0] if results else None
        elif isinstance(expr, Vararg):
            varargs = self._varargs(scope)
            return varargs[0] if varargs else None
        elif isinstance(expr, Paren):
            return self.evaluate(expr.expr, scope)
        elif isinstance(expr, BinOp):
            return self._eval_binop(expr, scope)
        elif isinstance(expr, UnOp):
            return self._eval_unop(expr, scope)
        elif isinstance(expr, FunctionBody):
            return LuaClosure(self, expr, scope)
        elif isinstance(expr, TableConstructor):
            return self._eval_table(expr, scope)
        else:
            raise RuntimeError(f"Unknown expression type: {type(expr).__name__}")

    def _varargs(self, scope: Scope) -> list[Any]:
        if scope.varargs is None:
            raise RuntimeFault("cannot use '...' outside a vararg function")
        return scope.varargs

    def _eval_binop(self, expr: BinOp, scope: Scope) -> Any:
        """Evaluate a binary operation."""
        op = expr.op
        left = self.evaluate(expr.left, scope)
        if op == "and":
            return self.evaluate(expr.right, scope) if truthy(left) else left
        if op == "or":
            return left if truthy(left) else self.evaluate(expr.right, scope)

        right = self.evaluate(expr.right, scope)
        state = self.state
        if op == "==":
            return state.equals(left, right)
        if op == "~=":
            return not state.equals(left, right)
        if op == "<":
            return state.less_than(left, right)
        if op == "<=":
            return state.less_equal(left, right)
        if op == ">":
            return state.less_than(right, left)
        if op == ">=":
            return state.less_equal(right, left)
        if op == "..":
            return state.concat(left, right)
        return state.arith(op, left, right)

    def _eval_unop(self, expr: UnOp, scope: Scope) -> Any:
        """Evaluate a unary operation."""
        operand = self.evaluate(expr.operand, scope)
        if expr.op == "not":
            return not truthy(operand)
        if expr.op == "#":
            return self.state.len_of(operand)
        return self.state.arith("unm", operand)

    def _eval_table(self, expr: TableConstructor, scope: Scope) -> LuaTable:
        """Evaluate a table constructor."""
        table = LuaTable()
        position = 1
        last = len(expr.fields) - 1
        for i, table_field in enumerate(expr.fields):
            if table_field.key is not None:
                key = self.evaluate(table_field.key, scope)
                value = self.evaluate(table_field.value, scope)
                if value is not None:
                    table.rawset(key, value)
                elif key is None:
                    raise RuntimeFault("index is nil")
                continue

            if i == last:
                values = self.evaluate_multi(table_field.value, scope)
            else:
                values = [self.evaluate(table_field.value, scope)]
            for value in values:
                if value is not None:
                    table.rawset(position, value)
                position += 1
        return table


_parser: ChunkParser | None = None


def _get_parser() -> ChunkParser:
    global _parser
    if _parser is None:
        _parser = ChunkParser()
        _parser.build(debug=False, write_tables=False)
    return _parser


def compile_chunk(state: LuaState, source: str, name: str = "chunk") -> LuaClosure:
    """Parse source text into a vararg function closed over an empty scope."""
    block = _get_parser().parse(source)
    node = FunctionBody(params=[], is_vararg=True, body=block, name=name)
    return LuaClosure(Interpreter(state), node, Scope())
