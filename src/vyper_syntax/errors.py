"""
Error kinds raised while turning Vyper source into a tree.

LexError aborts the token it was raised on. ParseError may be collected
by the parser's recovery mode. DisambiguationError is a ParseError
raised when a starred target shows up outside an assignment pattern.
"""

from __future__ import annotations

from typing import FrozenSet, Iterable, Optional

from .token_types import Span, Tok


class VyperSyntaxError(Exception):
    """Base class: message plus the offending span"""

    def __init__(self, message: str, span: Optional[Span] = None, source_id: Optional[str] = None):
        self.message = message
        self.span = span
        self.source_id = source_id
        super().__init__(self._render())

    @property
    def line(self) -> int:
        return self.span.line if self.span else 0

    @property
    def column(self) -> int:
        return self.span.column if self.span else 0

    def _render(self) -> str:
        where = self.source_id or "<source>"
        if self.span is None:
            return f"{where}: {self.message}"
        return f"{where}:{self.span.line}:{self.span.column}: {self.message}"

    def with_source(self, source_id: Optional[str]) -> "VyperSyntaxError":
        """Attach a source identifier after the fact (lexer errors are raised without one)"""
        if source_id is not None and self.source_id is None:
            self.source_id = source_id
            self.args = (self._render(),)
        return self


class LexError(VyperSyntaxError):
    """Lexical analysis error"""
    pass


class ParseError(VyperSyntaxError):
    """Parse error with position info and the tokens that would have been accepted"""

    def __init__(
        self,
        message: str,
        token: Optional[Tok] = None,
        expected: Iterable[str] = (),
        span: Optional[Span] = None,
        source_id: Optional[str] = None,
    ):
        self.token = token
        self.expected: FrozenSet[str] = frozenset(expected)
        if span is None and token is not None:
            span = token.span
        super().__init__(message, span, source_id)

    def _render(self) -> str:
        text = super()._render()
        if self.expected:
            text += f" (expected one of: {', '.join(sorted(self.expected))})"
        return text


class DisambiguationError(ParseError):
    """A pattern-only construct used as an expression, or the reverse"""
    pass
