"""
Lexer for Vyper - Recursive Descent Parser

Tokenizes Vyper source code into a stream of tokens.

Features:
- Pull model: tokens are produced on demand (next_token / iteration)
- Indentation-aware (emits NEWLINE/INDENT/DEDENT)
- Lossless: whitespace, comments and non-logical newlines come out as
  trivia tokens, so the concatenated token texts equal the source
- Position tracking (offset, line, column)
"""

from typing import Deque, Iterator, List, Optional, Tuple
from collections import deque
import logging
import re

from .errors import LexError
from .token_types import TT, Tok, Span, TRIVIA, STRUCTURAL

logger = logging.getLogger(__name__)

Mark = Tuple[int, int, int]  # (offset, line, column)

_HEX = re.compile(r'0[xX][0-9a-fA-F_]+')
_OCT = re.compile(r'0[oO][0-7_]+')
_BIN = re.compile(r'0[bB][01_]+')
_EXP = r'[eE][+-]?\d[\d_]*'
_DECIMAL = re.compile(
    rf'\d[\d_]*\.\d[\d_]*(?:{_EXP})?'
    rf'|\.\d[\d_]*(?:{_EXP})?'
    rf'|\d[\d_]*{_EXP}'
    rf'|\d[\d_]*\.{_EXP}'
    r'|\d[\d_]*\.(?![\w.])'
)
_INTEGER = re.compile(r'\d[\d_]*')
_PRAGMA = re.compile(r'#\s*(?:pragma[ \t]+|@version\b)')

STRING_PREFIX_CHARS = frozenset('bBxXfFrRuU')
QUOTES = ('"', "'")
OPEN_BRACKETS = {'(': ')', '[': ']', '{': '}'}
CLOSE_BRACKETS = frozenset(OPEN_BRACKETS.values())

# Previous significant token kinds after which a triple-quoted string is a docstring
STATEMENT_START = frozenset({None, TT.NEWLINE, TT.INDENT, TT.DEDENT})

# ============================================================================
# Lexer Implementation
# ============================================================================

class Lexer:
    """
    Vyper lexer with indentation handling.

    Based on Python's indentation model:
    - Track stack of indentation widths, starting at 0
    - Emit INDENT when width increases
    - Emit one DEDENT per popped level when width decreases
    - Suppress all of it inside brackets and after a backslash continuation
    """

    # Keyword mapping
    KEYWORDS = {
        'def': TT.DEF,
        'if': TT.IF,
        'elif': TT.ELIF,
        'else': TT.ELSE,
        'for': TT.FOR,
        'in': TT.IN,
        'not': TT.NOT,
        'and': TT.AND,
        'or': TT.OR,
        'return': TT.RETURN,
        'pass': TT.PASS,
        'break': TT.BREAK,
        'continue': TT.CONTINUE,
        'assert': TT.ASSERT,
        'raise': TT.RAISE,
        'log': TT.LOG,
        'struct': TT.STRUCT,
        'interface': TT.INTERFACE,
        'event': TT.EVENT,
        'enum': TT.ENUM,
        'flag': TT.FLAG,
        'import': TT.IMPORT,
        'from': TT.FROM,
        'as': TT.AS,
        'implements': TT.IMPLEMENTS,
        'exports': TT.EXPORTS,
        'extcall': TT.EXTCALL,
        'staticcall': TT.STATICCALL,
        'True': TT.TRUE,
        'False': TT.FALSE,
    }

    # Operator mapping: longest matches first to handle prefixes correctly
    OPERATORS = [
        # Three-character operators
        ('//=', TT.FLOORDIVEQ),
        ('**=', TT.POWEQ),
        ('<<=', TT.LSHIFTEQ),
        ('>>=', TT.RSHIFTEQ),

        # Two-character operators
        ('==', TT.EQ),
        ('!=', TT.NEQ),
        ('<=', TT.LTE),
        ('>=', TT.GTE),
        ('<<', TT.LSHIFT),
        ('>>', TT.RSHIFT),
        (':=', TT.WALRUS),
        ('->', TT.ARROW),
        ('+=', TT.PLUSEQ),
        ('-=', TT.MINUSEQ),
        ('*=', TT.STAREQ),
        ('/=', TT.SLASHEQ),
        ('%=', TT.MODEQ),
        ('&=', TT.AMPEQ),
        ('^=', TT.CARETEQ),
        ('|=', TT.PIPEEQ),
        ('//', TT.FLOORDIV),
        ('**', TT.POW),

        # Single-character operators
        ('+', TT.PLUS),
        ('-', TT.MINUS),
        ('*', TT.STAR),
        ('/', TT.SLASH),
        ('%', TT.MOD),
        ('&', TT.AMP),
        ('^', TT.CARET),
        ('|', TT.PIPE),
        ('~', TT.TILDE),
        ('<', TT.LT),
        ('>', TT.GT),
        ('=', TT.ASSIGN),
        ('(', TT.LPAR),
        (')', TT.RPAR),
        ('[', TT.LSQB),
        (']', TT.RSQB),
        ('{', TT.LBRACE),
        ('}', TT.RBRACE),
        ('.', TT.DOT),
        (',', TT.COMMA),
        (':', TT.COLON),
        (';', TT.SEMI),
        ('@', TT.AT),
    ]

    def __init__(self, source: str, tab_width: int = 8):
        self.source = source
        self.pos = 0
        self.line = 1
        self.column = 1
        self.tab_width = tab_width
        self.pending: Deque[Tok] = deque()
        self.eof: Optional[Tok] = None

        # Indentation tracking. alt_stack measures tabs as width 1 so that
        # ambiguous tab/space mixes can be detected (same rule as CPython).
        self.indent_stack = [0]
        self.alt_stack = [0]
        self.at_line_start = True
        self.line_has_content = False
        self.brackets: List[Tok] = []
        self.last_significant: Optional[TT] = None

    # ========================================================================
    # Pull Interface
    # ========================================================================

    def next_token(self) -> Tok:
        """Produce the next token, scanning only as much source as needed"""
        while not self.pending:
            if self.eof is not None:
                return self.eof
            self.scan_token()
        return self.pending.popleft()

    def __iter__(self) -> Iterator[Tok]:
        while True:
            tok = self.next_token()
            yield tok
            if tok.type == TT.EOF:
                return

    def tokenize(self) -> List[Tok]:
        """Tokenize entire source, return token list"""
        return list(self)

    # ========================================================================
    # Main Tokenization
    # ========================================================================

    def scan_token(self):
        """Scan next token(s) into the pending queue"""
        if self.pos >= len(self.source):
            self.finish()
            return

        # Byte-order mark is kept as trivia so offsets stay exact
        if self.pos == 0 and self.peek() == '\ufeff':
            start = self.mark()
            self.advance()
            self.emit(TT.WHITESPACE, start)
            return

        # Handle indentation at line start
        if self.at_line_start:
            self.handle_indentation()
            return

        ch = self.peek()

        # Whitespace (not newlines)
        if ch in (' ', '\t', '\f'):
            self.scan_whitespace()
            return

        # Comments and directives
        if ch == '#':
            self.scan_comment()
            return

        # Newlines
        if ch in ('\n', '\r'):
            self.scan_newline()
            return

        # Explicit line continuation
        if ch == '\\':
            self.scan_continuation()
            return

        # String literals (optionally prefixed)
        prefix_len = self.string_prefix_len()
        if prefix_len >= 0:
            self.scan_string(prefix_len)
            return

        # Numbers
        if ch.isdigit() or (ch == '.' and self.peek(1).isdigit()):
            self.scan_number()
            return

        # Identifiers and keywords
        if ch.isalpha() or ch == '_':
            self.scan_identifier()
            return

        # Operators and punctuation
        self.scan_operator()

    def finish(self):
        """Close the last logical line, unwind indentation, emit EOF"""
        if self.brackets:
            opener = self.brackets[-1]
            raise LexError(f"Unclosed '{opener.value}' at end of input", opener.span)

        start = self.mark()
        if self.line_has_content:
            self.emit(TT.NEWLINE, start)

        while len(self.indent_stack) > 1:
            self.pop_indent()
            self.emit(TT.DEDENT, start, depth=self.indent_stack[-1])

        self.emit(TT.EOF, start)
        self.eof = self.pending[-1]

    # ========================================================================
    # Indentation Handling
    # ========================================================================

    def handle_indentation(self):
        """
        Handle indentation at start of a logical line.
        Emit INDENT/DEDENT tokens as needed.
        """
        start = self.mark()
        width = 0
        alt = 0
        while self.peek() in (' ', '\t', '\f') and self.pos < len(self.source):
            ch = self.advance()
            if ch == ' ':
                width += 1
                alt += 1
            elif ch == '\t':
                width = (width // self.tab_width + 1) * self.tab_width
                alt += 1
            else:
                # Form feed resets the count
                width = alt = 0

        self.at_line_start = False
        if self.pos > start[0]:
            self.emit(TT.WHITESPACE, start)

        # Blank and comment-only lines never touch the stack
        if self.pos >= len(self.source) or self.peek() in ('\n', '\r', '#'):
            return

        here = self.mark()
        top = self.indent_stack[-1]
        alt_top = self.alt_stack[-1]

        if width > top:
            if alt <= alt_top:
                self.inconsistent_tabs(start)
            self.indent_stack.append(width)
            self.alt_stack.append(alt)
            logger.debug("push indent %d (depth %d)", width, len(self.indent_stack) - 1)
            self.emit(TT.INDENT, here, depth=width)
            return

        if width < top:
            while width < self.indent_stack[-1]:
                self.pop_indent()
                self.emit(TT.DEDENT, here, depth=self.indent_stack[-1])

            if width != self.indent_stack[-1]:
                raise LexError(
                    f"Indentation mismatch at line {self.line}: width {width} matches no enclosing block",
                    self.span_from(start),
                )

        if alt != self.alt_stack[-1]:
            self.inconsistent_tabs(start)

    def pop_indent(self) -> int:
        if len(self.indent_stack) <= 1:
            raise LexError("Indentation stack underflow", self.span_from(self.mark()))
        width = self.indent_stack.pop()
        self.alt_stack.pop()
        logger.debug("pop indent %d (back to %d)", width, self.indent_stack[-1])
        return width

    def inconsistent_tabs(self, start: Mark):
        raise LexError(
            f"Inconsistent use of tabs and spaces in indentation at line {start[1]}",
            self.span_from(start),
        )

    # ========================================================================
    # Token Scanners
    # ========================================================================

    def scan_whitespace(self):
        start = self.mark()
        while self.pos < len(self.source) and self.peek() in (' ', '\t', '\f'):
            self.advance()
        self.emit(TT.WHITESPACE, start)

    def scan_comment(self):
        """Comment until end of line; a line-leading #pragma / # @version is a directive"""
        start = self.mark()
        while self.pos < len(self.source) and self.peek() not in ('\n', '\r'):
            self.advance()

        text = self.source[start[0]:self.pos]
        if not self.line_has_content and not self.brackets and _PRAGMA.match(text):
            self.emit(TT.PRAGMA, start)
            return
        self.emit(TT.COMMENT, start)

    def scan_newline(self):
        """Scan newline; only the end of a non-empty logical line is a NEWLINE token"""
        start = self.mark()
        if self.peek() == '\r' and self.peek(1) == '\n':
            self.advance(2)  # consume CRLF
        else:
            self.advance()

        if self.brackets or not self.line_has_content:
            self.emit(TT.NL, start)
        else:
            self.emit(TT.NEWLINE, start)
            self.line_has_content = False

        self.at_line_start = not self.brackets

    def scan_continuation(self):
        """Backslash immediately before a newline joins the two physical lines"""
        start = self.mark()
        nxt = self.peek(1)
        if self.pos + 1 >= len(self.source) or nxt not in ('\n', '\r'):
            raise LexError("Unexpected character '\\'", self.span_from(start, 1))

        self.advance()
        if self.peek() == '\r' and self.peek(1) == '\n':
            self.advance(2)
        else:
            self.advance()
        self.emit(TT.CONTINUATION, start)

    def string_prefix_len(self) -> int:
        """Length of the string prefix before a quote, or -1 if no string starts here"""
        for n in range(3):
            ch = self.peek(n)
            if ch in QUOTES and self.pos + n < len(self.source):
                return n
            if ch not in STRING_PREFIX_CHARS:
                return -1
        return -1

    def scan_string(self, prefix_len: int):
        """Scan string literal: [prefix]"..." '...' \"\"\"...\"\"\" '''...'''"""
        start = self.mark()
        self.advance(prefix_len)
        quote = self.peek()
        triple = self.source.startswith(quote * 3, self.pos)
        delim = quote * 3 if triple else quote
        self.advance(len(delim))

        while True:
            if self.pos >= len(self.source):
                raise LexError(f"Unterminated string at line {start[1]}", self.span_from(start))
            ch = self.peek()
            if ch == '\\':
                # Keep escape sequence as-is; an escaped CRLF is one line break
                width = 3 if self.source.startswith('\r\n', self.pos + 1) else 2
                self.advance(min(width, len(self.source) - self.pos))
            elif self.source.startswith(delim, self.pos):
                self.advance(len(delim))
                break
            elif ch in ('\n', '\r') and not triple:
                raise LexError(f"Unterminated string at line {start[1]}", self.span_from(start))
            else:
                self.advance()

        is_doc = (
            triple
            and prefix_len == 0
            and not self.brackets
            and self.last_significant in STATEMENT_START
        )
        self.emit(TT.DOCSTRING if is_doc else TT.STRING, start)

    def scan_number(self):
        """Scan number literal; radix forms win over decimals (longest match)"""
        start = self.mark()
        tt = TT.INTEGER
        match = _HEX.match(self.source, self.pos) or _OCT.match(self.source, self.pos) \
            or _BIN.match(self.source, self.pos)

        if match is None:
            dec = _DECIMAL.match(self.source, self.pos)
            whole = _INTEGER.match(self.source, self.pos)
            if dec is not None and (whole is None or dec.end() > whole.end()):
                match, tt = dec, TT.DECIMAL
            else:
                match = whole

        if match is None:
            raise LexError("Invalid number literal", self.span_from(start, 1))

        text = match.group(0)
        self.advance(len(text))

        nxt = self.peek()
        if self.pos < len(self.source) and (nxt.isalnum() or nxt == '_'):
            raise LexError(f"Invalid number suffix '{nxt}'", self.span_from(start))
        digits = text[2:] if tt == TT.INTEGER and text[:2].lower() in ('0x', '0o', '0b') else text
        if '__' in text or digits.startswith('_') or text.endswith('_'):
            raise LexError("Invalid underscore in number literal", self.span_from(start))

        self.emit(tt, start)

    def scan_identifier(self):
        """Scan identifier or keyword"""
        start = self.mark()
        while self.pos < len(self.source) and (self.peek().isalnum() or self.peek() == '_'):
            self.advance()

        value = self.source[start[0]:self.pos]
        self.emit(self.KEYWORDS.get(value, TT.IDENT), start)

    def scan_operator(self):
        """Scan operators and punctuation, tracking bracket nesting"""
        start = self.mark()
        for op_str, op_type in self.OPERATORS:
            if self.source.startswith(op_str, self.pos):
                self.advance(len(op_str))
                tok = self.emit(op_type, start)
                if op_str in OPEN_BRACKETS:
                    self.brackets.append(tok)
                elif op_str in CLOSE_BRACKETS and self.brackets:
                    self.brackets.pop()
                return

        ch = self.peek()
        raise LexError(
            f"Unexpected character '{ch}' at line {self.line}, col {self.column}",
            self.span_from(start, 1),
        )

    # ========================================================================
    # Utilities
    # ========================================================================

    def peek(self, offset: int = 0) -> str:
        """Look ahead at character"""
        idx = self.pos + offset
        if idx < len(self.source):
            return self.source[idx]
        return '\0'

    def advance(self, n: int = 1) -> str:
        """Consume n characters and return them as a string"""
        if n < 0:
            raise ValueError(f"advance() requires n >= 0, got {n}")
        result = self.source[self.pos:self.pos + n]
        for i, ch in enumerate(result):
            if ch == '\n' or (ch == '\r' and self.source[self.pos + i + 1:self.pos + i + 2] != '\n'):
                self.line += 1
                self.column = 1
            else:
                self.column += 1
        self.pos += len(result)
        return result

    def mark(self) -> Mark:
        return (self.pos, self.line, self.column)

    def span_from(self, start: Mark, length: Optional[int] = None) -> Span:
        if length is not None:
            return Span(start[0], start[0] + length, start[1], start[2], start[1], start[2] + length)
        return Span(start[0], self.pos, start[1], start[2], self.line, self.column)

    def emit(self, token_type: TT, start: Mark, depth: Optional[int] = None) -> Tok:
        """Emit a token covering source[start:pos]"""
        tok = Tok(
            type=token_type,
            value=self.source[start[0]:self.pos],
            line=start[1],
            column=start[2],
            start=start[0],
            end=self.pos,
            end_line=self.line,
            end_column=self.column,
            depth=depth,
        )
        self.pending.append(tok)

        if token_type not in TRIVIA:
            self.last_significant = token_type
            if token_type not in STRUCTURAL and token_type != TT.EOF:
                self.line_has_content = True
        return tok


# ============================================================================
# Convenience
# ============================================================================

def tokenize(source: str, tab_width: int = 8, include_trivia: bool = True) -> List[Tok]:
    """Convenience function to tokenize source"""
    tokens = Lexer(source, tab_width=tab_width).tokenize()
    if include_trivia:
        return tokens
    return [tok for tok in tokens if tok.type not in TRIVIA]
