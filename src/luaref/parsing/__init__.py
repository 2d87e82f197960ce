"""Parsing module for runtime source chunks."""

from luaref.parsing.chunk_lexer import ChunkLexer
from luaref.parsing.chunk_parser import Block, ChunkParser, FunctionBody

__all__ = [
    "Block",
    "ChunkLexer",
    "ChunkParser",
    "FunctionBody",
]
