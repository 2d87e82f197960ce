"""Parser for runtime source chunks."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import ply.yacc as yacc

from luaref.parsing.chunk_lexer import ChunkLexer


# -- expressions ---------------------------------------------------------------


@dataclass
class Constant:
    """A literal nil, boolean, number or string."""

    value: Any


@dataclass
class Vararg:
    """The ``...`` expression."""


@dataclass
class Name:
    """A variable reference."""

    name: str


@dataclass
class Index:
    """``obj[key]``; ``obj.name`` is parsed as an Index with a string key."""

    obj: Any
    key: Any


@dataclass
class Call:
    """A function call."""

    func: Any
    args: list[Any]


@dataclass
class MethodCall:
    """``obj:method(args)``."""

    obj: Any
    method: str
    args: list[Any]


@dataclass
class Paren:
    """A parenthesised expression; truncates multiple results to one."""

    expr: Any


@dataclass
class BinOp:
    """A binary operator, including ``and`` and ``or``."""

    op: str
    left: Any
    right: Any


@dataclass
class UnOp:
    """A unary operator: ``-``, ``not`` or ``#``."""

    op: str
    operand: Any


@dataclass
class TableField:
    """One field of a table constructor. ``key`` is None for positional fields."""

    key: Any
    value: Any


@dataclass
class TableConstructor:
    fields: list[TableField] = field(default_factory=list)


@dataclass
class Block:
    statements: list[Any] = field(default_factory=list)


@dataclass
class FunctionBody:
    """A function literal."""

    params: list[str]
    is_vararg: bool
    body: Block
    name: str = "anonymous"


# -- statements ----------------------------------------------------------------


@dataclass
class Assign:
    targets: list[Any]
    values: list[Any]


@dataclass
class Local:
    names: list[str]
    values: list[Any]


@dataclass
class LocalFunction:
    name: str
    func: FunctionBody


@dataclass
class CallStatement:
    call: Any


@dataclass
class Return:
    values: list[Any]


@dataclass
class Break:
    pass


@dataclass
class Do:
    body: Block


@dataclass
class While:
    condition: Any
    body: Block


@dataclass
class Repeat:
    body: Block
    condition: Any


@dataclass
class If:
    """``if``/``elseif`` clauses as (condition, block) pairs plus an optional else block."""

    clauses: list[tuple[Any, Block]]
    orelse: Block | None = None


@dataclass
class NumericFor:
    var: str
    start: Any
    stop: Any
    step: Any
    body: Block


@dataclass
class GenericFor:
    names: list[str]
    exprs: list[Any]
    body: Block


class ChunkParser:
    """Parser for source chunks."""

    tokens = ChunkLexer.tokens

    # Operator precedence
    precedence = (
        ("left", "OR"),
        ("left", "AND"),
        ("left", "LT", "GT", "LE", "GE", "NE", "EQ"),
        ("right", "CONCAT"),
        ("left", "PLUS", "MINUS"),
        ("left", "TIMES", "DIVIDE", "IDIV", "MOD"),
        ("right", "NOT", "HASH", "UMINUS"),
        ("right", "POW"),
    )

    def __init__(self) -> None:
        self.lexer = ChunkLexer()
        self.lexer.build()
        self.parser: yacc.LRParser = None  # type: ignore

    def p_chunk(self, p: yacc.YaccProduction) -> None:
        """chunk : block"""
        p[0] = p[1]

    def p_block(self, p: yacc.YaccProduction) -> None:
        """block : stat_list"""
        p[0] = Block(statements=p[1])

    def p_block_return(self, p: yacc.YaccProduction) -> None:
        """block : stat_list retstat"""
        p[0] = Block(statements=p[1] + [p[2]])

    def p_stat_list_empty(self, p: yacc.YaccProduction) -> None:
        """stat_list : empty"""
        p[0] = []

    def p_stat_list(self, p: yacc.YaccProduction) -> None:
        """stat_list : stat_list stat"""
        p[0] = p[1]
        if p[2] is not None:
            p[0].append(p[2])

    def p_empty(self, p: yacc.YaccProduction) -> None:
        """empty :"""
        p[0] = None

    def p_retstat(self, p: yacc.YaccProduction) -> None:
        """retstat : RETURN
                   | RETURN SEMI"""
        p[0] = Return(values=[])

    def p_retstat_values(self, p: yacc.YaccProduction) -> None:
        """retstat : RETURN exp_list
                   | RETURN exp_list SEMI"""
        p[0] = Return(values=p[2])

    def p_stat_semi(self, p: yacc.YaccProduction) -> None:
        """stat : SEMI"""
        p[0] = None

    def p_stat_assign(self, p: yacc.YaccProduction) -> None:
        """stat : var_list ASSIGN exp_list"""
        p[0] = Assign(targets=p[1], values=p[3])

    def p_stat_call(self, p: yacc.YaccProduction) -> None:
        """stat : functioncall"""
        p[0] = CallStatement(call=p[1])

    def p_stat_break(self, p: yacc.YaccProduction) -> None:
        """stat : BREAK"""
        p[0] = Break()

    def p_stat_do(self, p: yacc.YaccProduction) -> None:
        """stat : DO block END"""
        p[0] = Do(body=p[2])

    def p_stat_while(self, p: yacc.YaccProduction) -> None:
        """stat : WHILE exp DO block END"""
        p[0] = While(condition=p[2], body=p[4])

    def p_stat_repeat(self, p: yacc.YaccProduction) -> None:
        """stat : REPEAT block UNTIL exp"""
        p[0] = Repeat(body=p[2], condition=p[4])

    def p_stat_if(self, p: yacc.YaccProduction) -> None:
        """stat : IF exp THEN block elseif_list else_part END"""
        p[0] = If(clauses=[(p[2], p[4])] + p[5], orelse=p[6])

    def p_elseif_list_empty(self, p: yacc.YaccProduction) -> None:
        """elseif_list : empty"""
        p[0] = []

    def p_elseif_list(self, p: yacc.YaccProduction) -> None:
        """elseif_list : elseif_list ELSEIF exp THEN block"""
        p[0] = p[1] + [(p[3], p[5])]

    def p_else_part(self, p: yacc.YaccProduction) -> None:
        """else_part : empty
                     | ELSE block"""
        p[0] = p[2] if len(p) == 3 else None

    def p_stat_numeric_for(self, p: yacc.YaccProduction) -> None:
        """stat : FOR NAME ASSIGN exp COMMA exp DO block END"""
        p[0] = NumericFor(var=p[2], start=p[4], stop=p[6], step=None, body=p[8])

    def p_stat_numeric_for_step(self, p: yacc.YaccProduction) -> None:
        """stat : FOR NAME ASSIGN exp COMMA exp COMMA exp DO block END"""
        p[0] = NumericFor(var=p[2], start=p[4], stop=p[6], step=p[8], body=p[10])

    def p_stat_generic_for(self, p: yacc.YaccProduction) -> None:
        """stat : FOR name_list IN exp_list DO block END"""
        p[0] = GenericFor(names=p[2], exprs=p[4], body=p[6])

    def p_stat_function(self, p: yacc.YaccProduction) -> None:
        """stat : FUNCTION funcname funcbody"""
        target, name = p[2]
        p[3].name = name
        p[0] = Assign(targets=[target], values=[p[3]])

    def p_stat_method(self, p: yacc.YaccProduction) -> None:
        """stat : FUNCTION funcname COLON NAME funcbody"""
        owner, name = p[2]
        func = p[5]
        func.params = ["self"] + func.params
        func.name = f"{name}:{p[4]}"
        p[0] = Assign(targets=[Index(obj=owner, key=Constant(p[4]))], values=[func])

    def p_stat_local_function(self, p: yacc.YaccProduction) -> None:
        """stat : LOCAL FUNCTION NAME funcbody"""
        p[4].name = p[3]
        p[0] = LocalFunction(name=p[3], func=p[4])

    def p_stat_local(self, p: yacc.YaccProduction) -> None:
        """stat : LOCAL name_list"""
        p[0] = Local(names=p[2], values=[])

    def p_stat_local_assign(self, p: yacc.YaccProduction) -> None:
        """stat : LOCAL name_list ASSIGN exp_list"""
        p[0] = Local(names=p[2], values=p[4])

    def p_funcname(self, p: yacc.YaccProduction) -> None:
        """funcname : NAME"""
        p[0] = (Name(p[1]), p[1])

    def p_funcname_dotted(self, p: yacc.YaccProduction) -> None:
        """funcname : funcname DOT NAME"""
        owner, name = p[1]
        p[0] = (Index(obj=owner, key=Constant(p[3])), f"{name}.{p[3]}")

    def p_funcbody(self, p: yacc.YaccProduction) -> None:
        """funcbody : LPAREN RPAREN block END"""
        p[0] = FunctionBody(params=[], is_vararg=False, body=p[3])

    def p_funcbody_params(self, p: yacc.YaccProduction) -> None:
        """funcbody : LPAREN par_list RPAREN block END"""
        params, is_vararg = p[2]
        p[0] = FunctionBody(params=params, is_vararg=is_vararg, body=p[4])

    def p_par_list(self, p: yacc.YaccProduction) -> None:
        """par_list : name_list"""
        p[0] = (p[1], False)

    def p_par_list_vararg(self, p: yacc.YaccProduction) -> None:
        """par_list : name_list COMMA ELLIPSIS"""
        p[0] = (p[1], True)

    def p_par_list_only_vararg(self, p: yacc.YaccProduction) -> None:
        """par_list : ELLIPSIS"""
        p[0] = ([], True)

    def p_name_list_single(self, p: yacc.YaccProduction) -> None:
        """name_list : NAME"""
        p[0] = [p[1]]

    def p_name_list_multiple(self, p: yacc.YaccProduction) -> None:
        """name_list : name_list COMMA NAME"""
        p[0] = p[1] + [p[3]]

    def p_var_list_single(self, p: yacc.YaccProduction) -> None:
        """var_list : var"""
        p[0] = [p[1]]

    def p_var_list_multiple(self, p: yacc.YaccProduction) -> None:
        """var_list : var_list COMMA var"""
        p[0] = p[1] + [p[3]]

    def p_exp_list_single(self, p: yacc.YaccProduction) -> None:
        """exp_list : exp"""
        p[0] = [p[1]]

    def p_exp_list_multiple(self, p: yacc.YaccProduction) -> None:
        """exp_list : exp_list COMMA exp"""
        p[0] = p[1] + [p[3]]

    def p_var_name(self, p: yacc.YaccProduction) -> None:
        """var : NAME"""
        p[0] = Name(p[1])

    def p_var_index(self, p: yacc.YaccProduction) -> None:
        """var : prefixexp LBRACKET exp RBRACKET"""
        p[0] = Index(obj=p[1], key=p[3])

    def p_var_field(self, p: yacc.YaccProduction) -> None:
        """var : prefixexp DOT NAME"""
        p[0] = Index(obj=p[1], key=Constant(p[3]))

    def p_prefixexp(self, p: yacc.YaccProduction) -> None:
        """prefixexp : var
                     | functioncall"""
        p[0] = p[1]

    def p_prefixexp_paren(self, p: yacc.YaccProduction) -> None:
        """prefixexp : LPAREN exp RPAREN"""
        p[0] = Paren(expr=p[2])

    def p_functioncall(self, p: yacc.YaccProduction) -> None:
        """functioncall : prefixexp args"""
        p[0] = Call(func=p[1], args=p[2])

    def p_functioncall_method(self, p: yacc.YaccProduction) -> None:
        """functioncall : prefixexp COLON NAME args"""
        p[0] = MethodCall(obj=p[1], method=p[3], args=p[4])

    def p_args_empty(self, p: yacc.YaccProduction) -> None:
        """args : LPAREN RPAREN"""
        p[0] = []

    def p_args(self, p: yacc.YaccProduction) -> None:
        """args : LPAREN exp_list RPAREN"""
        p[0] = p[2]

    def p_args_table(self, p: yacc.YaccProduction) -> None:
        """args : tableconstructor"""
        p[0] = [p[1]]

    def p_args_string(self, p: yacc.YaccProduction) -> None:
        """args : STRING"""
        p[0] = [Constant(p[1])]

    def p_exp_nil(self, p: yacc.YaccProduction) -> None:
        """exp : NIL"""
        p[0] = Constant(None)

    def p_exp_true(self, p: yacc.YaccProduction) -> None:
        """exp : TRUE"""
        p[0] = Constant(True)

    def p_exp_false(self, p: yacc.YaccProduction) -> None:
        """exp : FALSE"""
        p[0] = Constant(False)

    def p_exp_literal(self, p: yacc.YaccProduction) -> None:
        """exp : NUMBER
               | STRING"""
        p[0] = Constant(p[1])

    def p_exp_vararg(self, p: yacc.YaccProduction) -> None:
        """exp : ELLIPSIS"""
        p[0] = Vararg()

    def p_exp_function(self, p: yacc.YaccProduction) -> None:
        """exp : FUNCTION funcbody"""
        p[0] = p[2]

    def p_exp_prefix(self, p: yacc.YaccProduction) -> None:
        """exp : prefixexp
               | tableconstructor"""
        p[0] = p[1]

    def p_exp_binop(self, p: yacc.YaccProduction) -> None:
        """exp : exp OR exp
               | exp AND exp
               | exp LT exp
               | exp GT exp
               | exp LE exp
               | exp GE exp
               | exp NE exp
               | exp EQ exp
               | exp CONCAT exp
               | exp PLUS exp
               | exp MINUS exp
               | exp TIMES exp
               | exp DIVIDE exp
               | exp IDIV exp
               | exp MOD exp
               | exp POW exp"""
        p[0] = BinOp(op=p[2], left=p[1], right=p[3])

    def p_exp_unary(self, p: yacc.YaccProduction) -> None:
        """exp : NOT exp
               | HASH exp
               | MINUS exp %prec UMINUS"""
        p[0] = UnOp(op=p[1], operand=p[2])

    def p_tableconstructor_empty(self, p: yacc.YaccProduction) -> None:
        """tableconstructor : LBRACE RBRACE"""
        p[0] = TableConstructor(fields=[])

    def p_tableconstructor(self, p: yacc.YaccProduction) -> None:
        """tableconstructor : LBRACE field_list RBRACE
                            | LBRACE field_list fieldsep RBRACE"""
        p[0] = TableConstructor(fields=p[2])

    def p_field_list_single(self, p: yacc.YaccProduction) -> None:
        """field_list : field"""
        p[0] = [p[1]]

    def p_field_list_multiple(self, p: yacc.YaccProduction) -> None:
        """field_list : field_list fieldsep field"""
        p[0] = p[1] + [p[3]]

    def p_fieldsep(self, p: yacc.YaccProduction) -> None:
        """fieldsep : COMMA
                    | SEMI"""
        p[0] = p[1]

    def p_field_keyed(self, p: yacc.YaccProduction) -> None:
        """field : LBRACKET exp RBRACKET ASSIGN exp"""
        p[0] = TableField(key=p[2], value=p[5])

    def p_field_named(self, p: yacc.YaccProduction) -> None:
        """field : NAME ASSIGN exp"""
        p[0] = TableField(key=Constant(p[1]), value=p[3])

    def p_field_positional(self, p: yacc.YaccProduction) -> None:
        """field : exp"""
        p[0] = TableField(key=None, value=p[1])

    def p_error(self, p: yacc.YaccProduction) -> None:
        if p:
            raise SyntaxError(f"Syntax error at '{p.value}' (line {p.lineno})")
        else:
            raise SyntaxError("Syntax error at end of input")

    def build(self, **kwargs: Any) -> None:
        """Build the parser."""
        kwargs.setdefault("errorlog", yacc.NullLogger())
        self.parser = yacc.yacc(module=self, **kwargs)

    def parse(self, data: str) -> Block:
        """Parse a chunk and return its top-level block."""
        if self.parser is None:
            self.build(debug=False, write_tables=False)

        self.lexer.lexer.lineno = 1
        block = self.parser.parse(data, lexer=self.lexer.lexer)
        if block is None:
            block = Block()
        return block
