"""Syntactic analysis for Vyper: indentation-aware lexer, recursive descent parser, lark-compatible trees."""

from .config import ParserConfig
from .errors import DisambiguationError, LexError, ParseError, VyperSyntaxError
from .lexer_rd import Lexer, tokenize
from .parser_rd import ParseResult, Parser, parse_expr_fragment, parse_source, parse_with_diagnostics
from .token_types import TT, Span, Tok
from .tree import Node, SUPERTYPES, find_all, find_first, kinds_of, source_text, walk

__all__ = [
    "DisambiguationError",
    "LexError",
    "Lexer",
    "Node",
    "ParseError",
    "ParseResult",
    "Parser",
    "ParserConfig",
    "SUPERTYPES",
    "Span",
    "TT",
    "Tok",
    "VyperSyntaxError",
    "find_all",
    "find_first",
    "kinds_of",
    "parse_expr_fragment",
    "parse_source",
    "parse_with_diagnostics",
    "source_text",
    "tokenize",
    "walk",
]
