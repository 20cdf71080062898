"""
Token Types for the Vyper Parser

Shared between lexer, parser and tree so none of them import each other.
"""

from typing import Optional
from dataclasses import dataclass
from enum import Enum, auto


class TT(Enum):
    """Token Types - one per terminal of the grammar"""

    # Literals
    INTEGER = auto()
    DECIMAL = auto()
    STRING = auto()
    DOCSTRING = auto()
    IDENT = auto()

    # Keywords
    DEF = auto()
    IF = auto()
    ELIF = auto()
    ELSE = auto()
    FOR = auto()
    IN = auto()
    NOT = auto()
    AND = auto()
    OR = auto()
    RETURN = auto()
    PASS = auto()
    BREAK = auto()
    CONTINUE = auto()
    ASSERT = auto()
    RAISE = auto()
    LOG = auto()
    STRUCT = auto()
    INTERFACE = auto()
    EVENT = auto()
    ENUM = auto()
    FLAG = auto()
    IMPORT = auto()
    FROM = auto()
    AS = auto()
    IMPLEMENTS = auto()
    EXPORTS = auto()
    EXTCALL = auto()
    STATICCALL = auto()
    TRUE = auto()
    FALSE = auto()

    # Arithmetic
    PLUS = auto()
    MINUS = auto()
    STAR = auto()
    SLASH = auto()
    FLOORDIV = auto()
    MOD = auto()
    POW = auto()

    # Bitwise
    LSHIFT = auto()
    RSHIFT = auto()
    AMP = auto()
    CARET = auto()
    PIPE = auto()
    TILDE = auto()

    # Comparison
    EQ = auto()
    NEQ = auto()
    LT = auto()
    LTE = auto()
    GT = auto()
    GTE = auto()

    # Assignment
    ASSIGN = auto()  # =
    WALRUS = auto()  # :=
    PLUSEQ = auto()
    MINUSEQ = auto()
    STAREQ = auto()
    SLASHEQ = auto()
    FLOORDIVEQ = auto()
    MODEQ = auto()
    POWEQ = auto()
    LSHIFTEQ = auto()
    RSHIFTEQ = auto()
    AMPEQ = auto()
    CARETEQ = auto()
    PIPEEQ = auto()

    # Punctuation
    LPAR = auto()
    RPAR = auto()
    LSQB = auto()
    RSQB = auto()
    LBRACE = auto()
    RBRACE = auto()
    DOT = auto()
    COMMA = auto()
    COLON = auto()
    SEMI = auto()
    AT = auto()
    ARROW = auto()  # ->

    # Directives
    PRAGMA = auto()

    # Structure
    NEWLINE = auto()
    INDENT = auto()
    DEDENT = auto()
    EOF = auto()

    # Trivia (never reaches the parser)
    WHITESPACE = auto()
    COMMENT = auto()
    NL = auto()
    CONTINUATION = auto()


TRIVIA = frozenset({TT.WHITESPACE, TT.COMMENT, TT.NL, TT.CONTINUATION})
STRUCTURAL = frozenset({TT.NEWLINE, TT.INDENT, TT.DEDENT})


@dataclass(frozen=True)
class Span:
    """Half-open source range [start, end) with 1-based line/column of both ends"""

    start: int
    end: int
    line: int
    column: int
    end_line: int
    end_column: int

    def covers(self, other: "Span") -> bool:
        return self.start <= other.start and other.end <= self.end

    def __repr__(self):
        return f"Span({self.line}:{self.column}-{self.end_line}:{self.end_column})"


@dataclass
class Tok:
    """Token with position info"""

    type: TT
    value: str
    line: int = 0
    column: int = 0
    start: int = 0
    end: int = 0
    end_line: int = 0
    end_column: int = 0
    depth: Optional[int] = None  # indentation width, structural tokens only

    @property
    def span(self) -> Span:
        return Span(self.start, self.end, self.line, self.column, self.end_line, self.end_column)

    @property
    def is_trivia(self) -> bool:
        return self.type in TRIVIA

    def __repr__(self):
        return f"Tok({self.type.name}, {self.value!r}, {self.line}:{self.column})"
