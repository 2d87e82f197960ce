"""Lexer for runtime source chunks."""

import re

import ply.lex as lex

from luaref.types import wrap_integer

_ESCAPES = {
    "a": "\a",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "v": "\v",
    "\\": "\\",
    '"': '"',
    "'": "'",
    "\n": "\n",
}

_ESCAPE_RE = re.compile(r"\\(?:x[0-9a-fA-F]{2}|u\{[0-9a-fA-F]+\}|\d{1,3}|z\s*|.|\n)", re.DOTALL)


def _unescape(body: str, lineno: int) -> str:
    """Replace escape sequences in a quoted string body."""

    def replace(match: re.Match[str]) -> str:
        seq = match.group(0)[1:]
        if seq[0] == "x":
            return chr(int(seq[1:], 16))
        if seq[0] == "u":
            return chr(int(seq[2:-1], 16))
        if seq[0].isdigit():
            code = int(seq)
            if code > 255:
                raise SyntaxError(f"decimal escape too large at line {lineno}")
            return chr(code)
        if seq[0] == "z":
            return ""
        if seq in _ESCAPES:
            return _ESCAPES[seq]
        raise SyntaxError(f"invalid escape sequence '\\{seq}' at line {lineno}")

    return _ESCAPE_RE.sub(replace, body)


class ChunkLexer:
    """Lexer for tokenizing source chunks."""

    # Reserved keywords
    reserved = {
        "and": "AND",
        "break": "BREAK",
        "do": "DO",
        "else": "ELSE",
        "elseif": "ELSEIF",
        "end": "END",
        "false": "FALSE",
        "for": "FOR",
        "function": "FUNCTION",
        "if": "IF",
        "in": "IN",
        "local": "LOCAL",
        "nil": "NIL",
        "not": "NOT",
        "or": "OR",
        "repeat": "REPEAT",
        "return": "RETURN",
        "then": "THEN",
        "true": "TRUE",
        "until": "UNTIL",
        "while": "WHILE",
    }

    # Token list
    tokens = [
        "NAME",
        "NUMBER",
        "STRING",
        "PLUS",
        "MINUS",
        "TIMES",
        "DIVIDE",
        "IDIV",
        "MOD",
        "POW",
        "HASH",
        "EQ",
        "NE",
        "LE",
        "GE",
        "LT",
        "GT",
        "ASSIGN",
        "LPAREN",
        "RPAREN",
        "LBRACE",
        "RBRACE",
        "LBRACKET",
        "RBRACKET",
        "SEMI",
        "COLON",
        "COMMA",
        "DOT",
        "CONCAT",
        "ELLIPSIS",
    ] + list(reserved.values())

    # Simple tokens
    t_PLUS = r"\+"
    t_MINUS = r"-"
    t_TIMES = r"\*"
    t_DIVIDE = r"/"
    t_IDIV = r"//"
    t_MOD = r"%"
    t_POW = r"\^"
    t_HASH = r"\#"
    t_EQ = r"=="
    t_NE = r"~="
    t_LE = r"<="
    t_GE = r">="
    t_LT = r"<"
    t_GT = r">"
    t_ASSIGN = r"="
    t_LPAREN = r"\("
    t_RPAREN = r"\)"
    t_LBRACE = r"\{"
    t_RBRACE = r"\}"
    t_LBRACKET = r"\["
    t_RBRACKET = r"\]"
    t_SEMI = r";"
    t_COLON = r":"
    t_COMMA = r","
    t_DOT = r"\."
    t_CONCAT = r"\.\."
    t_ELLIPSIS = r"\.\.\."

    # Ignored characters
    t_ignore = " \t\r"

    def __init__(self) -> None:
        self.lexer: lex.LexToken = None  # type: ignore

    def _read_long_bracket(self, t: lex.LexToken) -> str:
        """Consume the body of a long bracket whose opener is in t.value."""
        level = t.value.count("=")
        close = "]" + "=" * level + "]"
        data = t.lexer.lexdata
        start = t.lexer.lexpos
        end = data.find(close, start)
        if end < 0:
            raise SyntaxError(f"unfinished long bracket at line {t.lineno}")
        body = data[start:end]
        t.lexer.lineno += body.count("\n")
        t.lexer.lexpos = end + len(close)
        # A newline right after the opener is not part of the body
        if body.startswith("\r\n"):
            body = body[2:]
        elif body.startswith("\n"):
            body = body[1:]
        return body

    def t_LONGCOMMENT(self, t: lex.LexToken) -> None:
        r"--\[=*\["
        self._read_long_bracket(t)

    def t_COMMENT(self, t: lex.LexToken) -> None:
        r"--[^\n]*"

    def t_LONGSTRING(self, t: lex.LexToken) -> lex.LexToken:
        r"\[=*\["
        t.value = self._read_long_bracket(t)
        t.type = "STRING"
        return t

    def t_NUMBER(self, t: lex.LexToken) -> lex.LexToken:
        r"0[xX][0-9a-fA-F]+|(?:\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?"
        text = t.value
        if text[:2].lower() == "0x":
            t.value = wrap_integer(int(text, 16))
        elif any(ch in text for ch in ".eE"):
            t.value = float(text)
        else:
            value = int(text)
            # Decimal literals that overflow become floats
            t.value = value if value < 2**63 else float(text)
        return t

    def t_STRING(self, t: lex.LexToken) -> lex.LexToken:
        r'"(?:[^"\\\n]|\\(?:.|\n))*"|\'(?:[^\'\\\n]|\\(?:.|\n))*\''
        t.lexer.lineno += t.value.count("\n")
        t.value = _unescape(t.value[1:-1], t.lineno)
        return t

    def t_NAME(self, t: lex.LexToken) -> lex.LexToken:
        r"[a-zA-Z_][a-zA-Z0-9_]*"
        # Check if it's a reserved word
        t.type = self.reserved.get(t.value, "NAME")
        return t

    def t_NEWLINE(self, t: lex.LexToken) -> None:
        r"\n+"
        t.lexer.lineno += len(t.value)

    def t_error(self, t: lex.LexToken) -> None:
        raise SyntaxError(f"Illegal character '{t.value[0]}' at line {t.lineno}")

    def build(self, **kwargs) -> None:  # type: ignore
        """Build the lexer."""
        self.lexer = lex.lex(module=self, **kwargs)

    def input(self, data: str) -> None:
        """Set the input string to tokenize."""
        self.lexer.lineno = 1
        self.lexer.input(data)

    def token(self) -> lex.LexToken | None:
        """Return the next token."""
        return self.lexer.token()

    def tokenize(self, data: str) -> list[lex.LexToken]:
        """Tokenize the input and return all tokens."""
        self.input(data)
        tokens = []
        while True:
            tok = self.token()
            if tok is None:
                break
            tokens.append(tok)
        return tokens
