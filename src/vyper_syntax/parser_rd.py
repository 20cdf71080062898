"""
Recursive Descent Parser for Vyper

Structure:
- Lexer: tokens pulled on demand, trivia dropped here
- Parser: recursive descent for declarations and statements,
  precedence climbing for expressions
- Tree: lark-compatible Node objects with field names and spans

Ambiguity at statement start (assignment target vs. expression) is
resolved one token late by patterns.finalize.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, List, Optional, Tuple, Union
import logging
import re

from lark import Token

from . import patterns
from .config import ParserConfig
from .errors import DisambiguationError, LexError, ParseError, VyperSyntaxError
from .lexer_rd import Lexer
from .token_types import TT, Tok, Span, TRIVIA, STRUCTURAL
from .tree import Node, leaf, make_meta

logger = logging.getLogger(__name__)

Part = Tuple[Optional[str], Union[None, Node, Token, Tok, List[Node]]]

# ============================================================================
# Grammar Tables
# ============================================================================

# Tokens that can begin an expression
EXPRESSION_START = frozenset({
    TT.IDENT, TT.INTEGER, TT.DECIMAL, TT.STRING, TT.TRUE, TT.FALSE,
    TT.LPAR, TT.LSQB, TT.LBRACE, TT.PLUS, TT.MINUS, TT.TILDE, TT.NOT,
    TT.EXTCALL, TT.STATICCALL, TT.STAR,
})

MODULE_START = frozenset({
    TT.PRAGMA, TT.IMPORT, TT.FROM, TT.IMPLEMENTS, TT.EXPORTS, TT.STRUCT,
    TT.INTERFACE, TT.EVENT, TT.ENUM, TT.FLAG, TT.DEF, TT.AT, TT.IDENT, TT.DOCSTRING,
})

COMPARE_OPS = frozenset({TT.EQ, TT.NEQ, TT.LT, TT.LTE, TT.GT, TT.GTE, TT.IN})

AUGMENTED_OPS = frozenset({
    TT.PLUSEQ, TT.MINUSEQ, TT.STAREQ, TT.SLASHEQ, TT.FLOORDIVEQ, TT.MODEQ,
    TT.POWEQ, TT.LSHIFTEQ, TT.RSHIFTEQ, TT.AMPEQ, TT.CARETEQ, TT.PIPEEQ,
})

# Left-associative binary levels, loosest first
BINARY_LEVELS: Tuple[frozenset, ...] = (
    frozenset({TT.PIPE}),
    frozenset({TT.CARET}),
    frozenset({TT.AMP}),
    frozenset({TT.LSHIFT, TT.RSHIFT}),
    frozenset({TT.PLUS, TT.MINUS}),
    frozenset({TT.STAR, TT.SLASH, TT.FLOORDIV, TT.MOD}),
)

UNARY_OPS = frozenset({TT.PLUS, TT.MINUS, TT.TILDE})

TYPE_MODIFIERS = frozenset({"public", "constant", "immutable", "transient", "indexed"})
BYTESTRING_TYPES = frozenset({"String", "Bytes"})

BUILTIN_CALLS = frozenset({
    "create_copy_of", "create_from_blueprint", "raw_call", "send",
    "len", "min", "max", "method_id",
})
SPECIAL_CALLS = frozenset({"empty", "convert", "abi_decode", "_abi_decode"}) | BUILTIN_CALLS

# Keyword arguments whose value is a type, not an expression
TYPE_KEYWORDS = frozenset({"output_type"})

MODULE_DIRECTIVES = frozenset({"uses", "initializes"})

_PRAGMA_RE = re.compile(
    r'#\s*(?:pragma[ \t]+(?P<name>[A-Za-z_][\w-]*)|@(?P<legacy>version))'
    r'(?:[ \t]+(?P<value>.*?))?[ \t]*$'
)
_VERSION_RE = re.compile(r'(?P<op>\^|~=|~|>=|<=|==|!=|>|<)?[ \t]*(?P<version>\d[\w.+-]*)$')
VERSION_PRAGMAS = frozenset({"version"})


def _names(types) -> List[str]:
    return sorted(tt.name for tt in types)


# ============================================================================
# Parser
# ============================================================================

class Parser:
    """
    Recursive descent parser for Vyper.

    Expression precedence (lowest to highest):
    1. walrus (:=)
    2. ternary (a if c else b)
    3. or
    4. and
    5. not
    6. compare (==, !=, <, <=, >, >=, in, not in), chained into one node
    7. bitwise or (|)
    8. bitwise xor (^)
    9. bitwise and (&)
    10. shift (<<, >>)
    11. add (+, -)
    12. mul (*, /, //, %)
    13. unary (+, -, ~)
    14. pow (**), right associative
    15. postfix (.attr, [index], (call))
    16. primary (literals, identifiers, groups, special calls)

    In strict mode the first error propagates. Otherwise errors are
    collected in ``self.errors`` and parsing resumes at the next
    statement boundary.
    """

    def __init__(self, source: str, config: Optional[ParserConfig] = None):
        self.config = config or ParserConfig()
        self.source = source
        self.lexer = Lexer(source, tab_width=self.config.tab_width)
        self.buffer: Deque[Tok] = deque()
        self.last_content: Optional[Tok] = None
        self.errors: List[VyperSyntaxError] = []
        self.allow_splat = False
        self.seen_declaration = False

    # ========================================================================
    # Token Navigation
    # ========================================================================

    def peek(self, offset: int = 0) -> Tok:
        """Look ahead at significant token"""
        while len(self.buffer) <= offset:
            if self.buffer and self.buffer[-1].type == TT.EOF:
                return self.buffer[-1]
            tok = self.lexer.next_token()
            if tok.type not in TRIVIA:
                self.buffer.append(tok)
        return self.buffer[offset]

    @property
    def current(self) -> Tok:
        return self.peek()

    def advance(self) -> Tok:
        """Consume current token and move to next"""
        tok = self.peek()
        if tok.type != TT.EOF:
            self.buffer.popleft()
        if tok.type not in STRUCTURAL and tok.type != TT.EOF:
            self.last_content = tok
        return tok

    def check(self, *types: TT) -> bool:
        """Check if current token matches any of the given types"""
        return self.current.type in types

    def match(self, *types: TT) -> bool:
        """Check and consume if current token matches"""
        if self.check(*types):
            self.advance()
            return True
        return False

    def expect(self, token_type: TT, message: Optional[str] = None, also: Tuple[TT, ...] = ()) -> Tok:
        """Consume token of expected type or raise error"""
        if not self.check(token_type):
            msg = message or f"Expected {token_type.name}, got {self.current.type.name}"
            raise ParseError(msg, self.current, expected=_names((token_type,) + also))
        return self.advance()

    def expect_line_end(self) -> Tok:
        return self.expect(TT.NEWLINE, f"Expected end of line, got {self.current.type.name}")

    def starts_expression(self) -> bool:
        return self.current.type in EXPRESSION_START

    # ========================================================================
    # Node Construction
    # ========================================================================

    def span_from(self, start: Union[Tok, Node, Token]) -> Span:
        """Span from the first token of a production to the last content token consumed"""
        if isinstance(start, Node):
            first = start.span
            begin = (first.start, first.line, first.column)
        elif isinstance(start, Token):
            begin = (start.start_pos, start.line, start.column)
        else:
            begin = (start.start, start.line, start.column)

        end = self.last_content
        if end is None or end.end < begin[0]:
            return Span(begin[0], begin[0], begin[1], begin[2], begin[1], begin[2])
        return Span(begin[0], end.end, begin[1], begin[2], end.end_line, end.end_column)

    def build(self, kind: str, start: Union[Tok, Node, Token], parts: List[Part]) -> Node:
        """Assemble a node from (field, child) pairs; None children are skipped"""
        children: List[Union[Node, Token]] = []
        names: List[Optional[str]] = []
        for name, child in parts:
            if child is None:
                continue
            items = child if isinstance(child, list) else [child]
            for item in items:
                if isinstance(item, Tok):
                    item = leaf(item)
                children.append(item)
                names.append(name)
        return Node(kind, children, names, make_meta(self.span_from(start)))

    def leaf_node(self, kind: str, tok: Tok) -> Node:
        """Single-token node spanning exactly that token"""
        return Node(kind, [leaf(tok)], [None], make_meta(tok.span))

    def identifier(self, message: Optional[str] = None) -> Node:
        return self.leaf_node("identifier", self.expect(TT.IDENT, message))

    # ========================================================================
    # Top-Level Parsing
    # ========================================================================

    def parse(self) -> Node:
        """Parse entire module"""
        logger.debug("parse start (%d chars, strict=%s)", len(self.source), self.config.strict)
        decls: List[Node] = []

        while not self.check(TT.EOF):
            if self.errors and self.check(TT.DEDENT):
                # leftover block exit of a declaration abandoned by recovery
                self.advance()
                continue
            before = self.current
            try:
                decls.append(self.parse_top_level())
            except ParseError as err:
                self.recover(err, before)

        eof = self.current
        span = Span(0, len(self.source), 1, 1, eof.end_line, eof.end_column)
        module = Node("module", decls, [None] * len(decls), make_meta(span))
        logger.debug("parse done: %d top-level nodes, %d errors", len(decls), len(self.errors))
        return module

    def parse_top_level(self) -> Node:
        """
        Parse one module-level construct:
        pragma, import, implements/exports/uses/initializes,
        struct/interface/event/enum/flag, variable, function, docstring
        """
        tok = self.current

        if tok.type == TT.PRAGMA:
            if self.seen_declaration:
                raise ParseError(
                    "Pragma directive must precede all other top-level constructs", tok
                )
            node = self.parse_pragma()
            self.expect_line_end()
            return node

        if tok.type == TT.INDENT:
            raise ParseError("Unexpected indent", tok)

        self.seen_declaration = True

        match tok.type:
            case TT.AT | TT.DEF:
                return self.parse_function_def()
            case TT.IMPORT:
                return self.parse_import()
            case TT.FROM:
                return self.parse_import_from()
            case TT.IMPLEMENTS:
                return self.parse_directive(TT.IMPLEMENTS, "implements_declaration")
            case TT.EXPORTS:
                return self.parse_directive(TT.EXPORTS, "exports_declaration")
            case TT.STRUCT:
                return self.parse_member_decl("struct_declaration", self.parse_field_member)
            case TT.EVENT:
                return self.parse_member_decl("event_declaration", self.parse_field_member)
            case TT.INTERFACE:
                return self.parse_member_decl("interface_declaration", self.parse_interface_member)
            case TT.ENUM:
                return self.parse_member_decl("enum_declaration", self.parse_name_member)
            case TT.FLAG:
                return self.parse_member_decl("flag_declaration", self.parse_name_member)
            case TT.DOCSTRING:
                return self.parse_docstring()
            case TT.IDENT if self.peek(1).type == TT.COLON:
                if tok.value in MODULE_DIRECTIVES:
                    return self.parse_directive(TT.IDENT, f"{tok.value}_declaration")
                return self.parse_variable_decl()

        raise ParseError(
            f"Expected a module-level declaration, got {tok.type.name}",
            tok,
            expected=_names(MODULE_START),
        )

    def parse_pragma(self) -> Node:
        """
        Parse pragma directive text:
        #pragma NAME [VALUE] | # @version CONSTRAINT
        The version value becomes a version_constraint node.
        """
        tok = self.advance()
        m = _PRAGMA_RE.match(tok.value)
        if m is None:
            raise ParseError("Malformed pragma directive", tok, expected=["pragma NAME VALUE"])

        group = "legacy" if m.group("legacy") else "name"
        name = self._sub_token(tok, m, group, "PRAGMA_NAME")
        value: Union[None, Node, Token] = None

        if m.group("value"):
            if m.group(group) in VERSION_PRAGMAS:
                value = self._version_constraint(tok, m)
            else:
                value = self._sub_token(tok, m, "value", "PRAGMA_VALUE")
        elif m.group(group) in VERSION_PRAGMAS:
            raise ParseError("Version pragma needs a version constraint", tok)

        return self.build("pragma", tok, [("name", name), ("value", value)])

    def _sub_token(self, tok: Tok, m: "re.Match[str]", group: str, kind: str, base: int = 0) -> Token:
        """Positioned token for a regex group inside a single-line directive"""
        start = base + m.start(group)
        text = m.group(group)
        return Token(
            kind, text,
            tok.start + start, tok.line, tok.column + start,
            tok.line, tok.column + start + len(text), tok.start + start + len(text),
        )

    def _version_constraint(self, tok: Tok, m: "re.Match[str]") -> Node:
        raw = m.group("value")
        vm = _VERSION_RE.match(raw)
        if vm is None:
            raise ParseError(f"Invalid version constraint '{raw}'", tok, expected=["VERSION"])

        base = m.start("value")
        op = self._sub_token(tok, vm, "op", "VERSION_OP", base) if vm.group("op") else None
        version = self._sub_token(tok, vm, "version", "VERSION", base)

        first = op or version
        span = Span(
            first.start_pos, version.end_pos, tok.line, first.column, tok.line, version.end_column
        )
        children: List[Union[Node, Token]] = [version] if op is None else [op, version]
        names: List[Optional[str]] = ["value"] if op is None else ["operator", "value"]
        return Node("version_constraint", children, names, make_meta(span))

    # ========================================================================
    # Module Declarations
    # ========================================================================

    def parse_dotted_name(self) -> Node:
        """Parse dotted module path: a.b.c"""
        first = self.identifier("Expected module name")
        parts = [first]
        while self.check(TT.DOT) and self.peek(1).type == TT.IDENT:
            self.advance()
            parts.append(self.identifier())
        return self.build("dotted_name", first, [(None, parts)])

    def parse_import(self) -> Node:
        """Parse import statement: import a.b [as c]"""
        start = self.expect(TT.IMPORT)
        module = self.parse_dotted_name()
        alias = self.identifier("Expected alias name after 'as'") if self.match(TT.AS) else None
        self.expect_line_end()
        return self.build("import_statement", start, [(None, start), ("module", module), ("alias", alias)])

    def parse_import_from(self) -> Node:
        """
        Parse from-import:
        from [.]* [a.b] import x [as y], ...
        from a import (x, y)
        """
        start = self.expect(TT.FROM)
        module: Optional[Node] = None

        if self.check(TT.DOT):
            dots: List[Tok] = []
            while self.check(TT.DOT):
                dots.append(self.advance())
            path = self.parse_dotted_name() if self.check(TT.IDENT) else None
            module = self.build("relative_import", dots[0], [("prefix", dots), ("name", path)])
        else:
            module = self.parse_dotted_name()

        import_tok = self.expect(TT.IMPORT, also=(TT.DOT,))
        grouped = self.match(TT.LPAR)

        names: List[Node] = [self.parse_import_name()]
        while self.match(TT.COMMA):
            if grouped and self.check(TT.RPAR):
                break
            names.append(self.parse_import_name())

        if grouped:
            self.expect(TT.RPAR, also=(TT.COMMA,))
        self.expect_line_end()
        return self.build(
            "import_from", start,
            [(None, start), ("module", module), (None, import_tok), ("name", names)],
        )

    def parse_import_name(self) -> Node:
        name = self.identifier("Expected imported name")
        if not self.match(TT.AS):
            return name
        alias = self.identifier("Expected alias name after 'as'")
        return self.build("aliased_import", name, [("name", name), ("alias", alias)])

    def parse_directive(self, keyword: TT, kind: str) -> Node:
        """Parse 'keyword: expr' module directive (implements, exports, uses, initializes)"""
        start = self.expect(keyword)
        self.expect(TT.COLON)
        value = self.parse_expression_list()
        self.expect_line_end()
        return self.build(kind, start, [(None, start), ("value", value)])

    def parse_docstring(self) -> Node:
        node = self.leaf_node("docstring", self.advance())
        self.expect_line_end()
        return node

    def parse_variable_decl(self) -> Node:
        """Parse module variable: name: type [= value]"""
        name = self.identifier()
        self.expect(TT.COLON)
        var_type = self.parse_type()
        value = self.parse_expr() if self.match(TT.ASSIGN) else None
        self.expect_line_end()
        return self.build(
            "variable_declaration", name, [("name", name), ("type", var_type), ("value", value)]
        )

    def parse_member_decl(self, kind: str, parse_member) -> Node:
        """
        Parse struct/interface/event/enum/flag:
        KEYWORD Name: NEWLINE INDENT member+ DEDENT
        """
        start = self.advance()
        label = start.value
        name = self.identifier(f"Expected {label} name")
        self.expect(TT.COLON)

        if self.check(TT.PASS):
            raise ParseError(f"{label} declaration requires at least one member", self.current)
        self.expect_line_end()
        if not self.check(TT.INDENT):
            raise ParseError(
                f"{label} declaration requires at least one member",
                self.current,
                expected=["INDENT"],
            )
        self.advance()

        members: List[Node] = []
        while not self.check(TT.DEDENT, TT.EOF):
            if self.check(TT.PASS):
                raise ParseError(f"{label} declaration requires at least one member", self.current)
            members.append(parse_member())
        self.expect(TT.DEDENT)

        return self.build(kind, start, [(None, start), ("name", name), ("body", members)])

    def parse_field_member(self) -> Node:
        """Struct or event member: name: type"""
        name = self.identifier("Expected member name")
        self.expect(TT.COLON)
        member_type = self.parse_type()
        self.expect_line_end()
        return self.build("member", name, [("name", name), ("type", member_type)])

    def parse_name_member(self) -> Node:
        """Enum or flag member: bare name"""
        name = self.identifier("Expected member name")
        self.expect_line_end()
        return self.build("member", name, [("name", name)])

    def parse_interface_member(self) -> Node:
        """Interface function: def name(params) [-> type]: mutability"""
        start = self.expect(TT.DEF, "Expected 'def' in interface body")
        name = self.identifier("Expected function name")
        params = self.parse_parameters()
        ret = self.parse_type() if self.match(TT.ARROW) else None
        self.expect(TT.COLON)
        mutability = self.identifier("Expected state mutability")
        self.expect_line_end()
        return self.build(
            "interface_function", start,
            [(None, start), ("name", name), ("parameters", params),
             ("return_type", ret), ("mutability", mutability)],
        )

    # ========================================================================
    # Functions
    # ========================================================================

    def parse_decorator(self) -> Node:
        """Parse decorator line: @expr NEWLINE"""
        at = self.expect(TT.AT)
        value = self.parse_postfix_expr()
        self.expect_line_end()
        return self.build("decorator", at, [("value", value)])

    def parse_function_def(self) -> Node:
        """
        Parse function definition:
        @decorator*
        def name(param: type [= default], ...) [-> type]: block
        """
        start = self.current
        decorators: List[Node] = []
        while self.check(TT.AT):
            decorators.append(self.parse_decorator())

        def_tok = self.expect(TT.DEF, also=(TT.AT,))
        name = self.identifier("Expected function name")
        params = self.parse_parameters()
        ret = self.parse_type() if self.match(TT.ARROW) else None
        self.expect(TT.COLON, also=(TT.ARROW,))
        body = self.parse_block()

        return self.build(
            "function_definition", start,
            [("decorator", decorators), (None, def_tok), ("name", name),
             ("parameters", params), ("return_type", ret), ("body", body)],
        )

    def parse_parameters(self) -> Node:
        """Parse parameter list: (name: type [= default], ...)"""
        start = self.expect(TT.LPAR)
        params: List[Node] = []

        while not self.check(TT.RPAR):
            name = self.identifier("Expected parameter name")
            self.expect(TT.COLON, "Parameters need a type annotation")
            param_type = self.parse_type()
            default = self.parse_expr() if self.match(TT.ASSIGN) else None
            params.append(self.build(
                "parameter", name, [("name", name), ("type", param_type), ("value", default)]
            ))
            if not self.match(TT.COMMA):
                break

        self.expect(TT.RPAR, also=(TT.COMMA,))
        return self.build("parameters", start, [(None, params)])

    # ========================================================================
    # Types
    # ========================================================================

    def parse_type(self) -> Node:
        """
        Parse type expression:
        T | mod.T | T[N] | DynArray[T, N] | String[N] | Bytes[N]
        | HashMap[K, V] | (T, U) | public(T) | constant(T) | ...
        """
        tok = self.current

        if tok.type == TT.LPAR:
            node = self.parse_tuple_type()
        elif tok.type == TT.IDENT:
            node = self.parse_named_type()
        else:
            raise ParseError(f"Expected a type, got {tok.type.name}", tok, expected=["IDENT", "LPAR"])

        # static array suffixes
        while self.check(TT.LSQB):
            self.advance()
            size = self.parse_expr()
            self.expect(TT.RSQB)
            node = self.build("array_type", node, [("type", node), ("size", size)])

        return node

    def parse_tuple_type(self) -> Node:
        start = self.expect(TT.LPAR)
        members = [self.parse_type()]
        while self.match(TT.COMMA):
            if self.check(TT.RPAR):
                break
            members.append(self.parse_type())
        self.expect(TT.RPAR, also=(TT.COMMA,))
        return self.build("tuple_type", start, [(None, members)])

    def parse_named_type(self) -> Node:
        tok = self.advance()
        name = tok.value

        if name in TYPE_MODIFIERS and self.check(TT.LPAR):
            self.advance()
            inner = self.parse_type()
            self.expect(TT.RPAR)
            return self.build("type_modifier", tok, [("modifier", tok), ("type", inner)])

        if name == "HashMap" and self.check(TT.LSQB):
            self.advance()
            key = self.parse_type()
            self.expect(TT.COMMA, "HashMap needs a key and a value type")
            value = self.parse_type()
            self.match(TT.COMMA)
            self.expect(TT.RSQB)
            return self.build("hashmap_type", tok, [(None, tok), ("key", key), ("value", value)])

        if name == "DynArray" and self.check(TT.LSQB):
            self.advance()
            elem = self.parse_type()
            self.expect(TT.COMMA, "DynArray needs an element type and a bound")
            size = self.parse_expr()
            self.match(TT.COMMA)
            self.expect(TT.RSQB)
            return self.build("dynamic_array_type", tok, [(None, tok), ("type", elem), ("size", size)])

        if name in BYTESTRING_TYPES and self.check(TT.LSQB):
            self.advance()
            size = self.parse_expr()
            self.expect(TT.RSQB)
            return self.build("bytestring_type", tok, [("name", tok), ("size", size)])

        node = self.leaf_node("type_identifier", tok)
        while self.check(TT.DOT) and self.peek(1).type == TT.IDENT:
            self.advance()
            attr = self.identifier()
            node = self.build("qualified_type", node, [("object", node), ("attribute", attr)])
        return node

    # ========================================================================
    # Blocks & Statements
    # ========================================================================

    def parse_block(self) -> Node:
        """
        Parse body after colon:
        - Indented block: NEWLINE INDENT stmt+ DEDENT
        - Single line: simple_stmt (; simple_stmt)* NEWLINE
        """
        if not self.match(TT.NEWLINE):
            stmts = self.parse_simple_statements()
            return self.build("block", stmts[0], [(None, stmts)])

        if not self.check(TT.INDENT):
            raise ParseError("Expected an indented block", self.current, expected=["INDENT"])
        self.advance()

        stmts: List[Node] = []
        before = self.current
        while not self.check(TT.DEDENT, TT.EOF):
            before = self.current
            try:
                stmts.extend(self.parse_statement())
            except ParseError as err:
                self.recover(err, before)
        self.expect(TT.DEDENT)

        if not stmts:
            # only reachable when every statement failed and was recovered
            return Node("block", [], [], make_meta(self.span_from(self.last_content or before)))
        return self.build("block", stmts[0], [(None, stmts)])

    def parse_statement(self) -> List[Node]:
        """Parse one logical line of statements (compound or simple)"""
        tok = self.current

        match tok.type:
            case TT.IF:
                return [self.parse_if_stmt()]
            case TT.FOR:
                return [self.parse_for_stmt()]
            case TT.PRAGMA:
                raise ParseError("Pragma directive is only allowed at the top of a module", tok)
            case TT.DEF | TT.AT:
                raise ParseError("Function definitions are only allowed at module level", tok)
            case TT.INDENT:
                raise ParseError("Unexpected indent", tok)

        return self.parse_simple_statements()

    def parse_simple_statements(self) -> List[Node]:
        """simple_stmt (; simple_stmt)* [;] NEWLINE"""
        stmts = [self.parse_simple_statement()]
        while self.match(TT.SEMI):
            if self.check(TT.NEWLINE):
                break
            stmts.append(self.parse_simple_statement())
        self.expect_line_end()
        return stmts

    def parse_simple_statement(self) -> Node:
        tok = self.current

        match tok.type:
            case TT.PASS:
                return self.leaf_statement("pass_statement")
            case TT.BREAK:
                return self.leaf_statement("break_statement")
            case TT.CONTINUE:
                return self.leaf_statement("continue_statement")
            case TT.RETURN:
                return self.parse_return_stmt()
            case TT.ASSERT:
                return self.parse_assert_stmt()
            case TT.RAISE:
                return self.parse_raise_stmt()
            case TT.LOG:
                return self.parse_log_stmt()
            case TT.DOCSTRING:
                return self.leaf_node("docstring", self.advance())
            case TT.IDENT if self.peek(1).type == TT.COLON:
                return self.parse_annotated_assignment()

        if not self.starts_expression():
            raise ParseError(
                f"Expected a statement, got {tok.type.name}",
                tok,
                expected=_names(EXPRESSION_START | {TT.PASS, TT.RETURN, TT.IF, TT.FOR, TT.LOG}),
            )
        return self.parse_expression_statement()

    def leaf_statement(self, kind: str) -> Node:
        tok = self.advance()
        return self.build(kind, tok, [(None, tok)])

    def parse_return_stmt(self) -> Node:
        """Parse return: return [expr_list]"""
        start = self.expect(TT.RETURN)
        value = self.parse_expression_list() if self.starts_expression() else None
        return self.build("return_statement", start, [(None, start), ("value", value)])

    def parse_assert_stmt(self) -> Node:
        """Parse assert: assert cond [, reason]"""
        start = self.expect(TT.ASSERT)
        cond = self.parse_expr()
        reason = self.parse_expr() if self.match(TT.COMMA) else None
        return self.build("assert_statement", start, [(None, start), ("condition", cond), ("value", reason)])

    def parse_raise_stmt(self) -> Node:
        start = self.expect(TT.RAISE)
        value = self.parse_expr() if self.starts_expression() else None
        return self.build("raise_statement", start, [(None, start), ("value", value)])

    def parse_log_stmt(self) -> Node:
        """Parse log: log Event(args)"""
        start = self.expect(TT.LOG)
        event = self.parse_postfix_expr()
        if event.data != "call":
            raise ParseError("log expects an event call", span=event.span, expected=["LPAR"])
        return self.build("log_statement", start, [(None, start), ("value", event)])

    def parse_annotated_assignment(self) -> Node:
        """Parse local declaration: name: type [= value]"""
        name = self.identifier()
        self.expect(TT.COLON)
        var_type = self.parse_type()
        value = self.parse_expression_list() if self.match(TT.ASSIGN) else None
        return self.build(
            "annotated_assignment", name, [("left", name), ("type", var_type), ("right", value)]
        )

    def parse_expression_statement(self) -> Node:
        """
        Parse statement starting with an expression list:
        - target = [target =]* value
        - target op= value
        - expr
        The list is read once and settled by the token that follows it.
        """
        first = self.parse_target_list()

        if self.check(TT.ASSIGN):
            sides = [first]
            while self.match(TT.ASSIGN):
                sides.append(self.parse_target_list())
            value = patterns.finalize(sides.pop(), self.current)
            node = value
            for target in reversed(sides):
                node = self.build(
                    "assignment", target,
                    [("left", patterns.finalize_pattern(target)), ("right", node)],
                )
            return node

        if self.check(*AUGMENTED_OPS):
            target = patterns.require_single_target(first)
            op = self.advance()
            value = self.parse_expression_list()
            return self.build(
                "augmented_assignment", target,
                [("left", target), ("operator", op), ("right", value)],
            )

        expr = patterns.finalize(first, self.current)
        return self.build("expression_statement", expr, [("value", expr)])

    def parse_target_list(self) -> Node:
        """Expression list in which provisional *splats are tolerated"""
        saved = self.allow_splat
        self.allow_splat = True
        try:
            return self.parse_expression_list()
        finally:
            self.allow_splat = saved

    def parse_if_stmt(self) -> Node:
        """
        Parse if statement:
        if cond: body
        elif cond: body
        else: body
        """
        start = self.expect(TT.IF)
        cond = self.parse_expr()
        self.expect(TT.COLON)
        body = self.parse_block()

        alternatives: List[Node] = []
        while self.check(TT.ELIF):
            elif_tok = self.advance()
            elif_cond = self.parse_expr()
            self.expect(TT.COLON)
            elif_body = self.parse_block()
            alternatives.append(self.build(
                "elif_clause", elif_tok,
                [(None, elif_tok), ("condition", elif_cond), ("consequence", elif_body)],
            ))

        if self.check(TT.ELSE):
            else_tok = self.advance()
            self.expect(TT.COLON)
            else_body = self.parse_block()
            alternatives.append(self.build("else_clause", else_tok, [(None, else_tok), ("body", else_body)]))

        return self.build(
            "if_statement", start,
            [(None, start), ("condition", cond), ("consequence", body), ("alternative", alternatives)],
        )

    def parse_for_stmt(self) -> Node:
        """Parse for loop: for name[: type] in iterable: body"""
        start = self.expect(TT.FOR)
        target = self.identifier("Expected loop variable name")
        loop_type = self.parse_type() if self.match(TT.COLON) else None
        in_tok = self.expect(TT.IN, also=() if loop_type else (TT.COLON,))
        iterable = self.parse_expr()
        self.expect(TT.COLON)
        body = self.parse_block()
        return self.build(
            "for_statement", start,
            [(None, start), ("left", target), ("type", loop_type), (None, in_tok),
             ("right", iterable), ("body", body)],
        )

    # ========================================================================
    # Recovery
    # ========================================================================

    def recover(self, err: ParseError, before: Tok) -> None:
        """Record error (or re-raise in strict mode) and skip to a statement boundary"""
        if self.config.strict:
            raise err
        self.errors.append(err.with_source(self.config.source_id))

        skipped = self.synchronize()
        if self.current is before and not self.check(TT.EOF):
            self.advance()
            skipped += 1
        logger.debug("recovered from %r, skipped %d tokens", err.message, skipped)

    def synchronize(self) -> int:
        """
        Skip to the next statement-aligned NEWLINE or block exit.
        Nested INDENT/DEDENT pairs inside the skipped region are balanced.
        """
        depth = 0
        skipped = 0
        while not self.check(TT.EOF):
            tok = self.current
            if tok.type == TT.DEDENT:
                if depth == 0:
                    return skipped
                self.advance()
                skipped += 1
                depth -= 1
                if depth == 0:
                    return skipped
                continue

            self.advance()
            skipped += 1
            if tok.type == TT.INDENT:
                depth += 1
            elif tok.type == TT.NEWLINE and depth == 0 and not self.check(TT.INDENT):
                return skipped
        return skipped

    # ========================================================================
    # Expressions - Precedence Climbing
    # ========================================================================

    def parse_expression_list(self) -> Node:
        """expr (, expr)* [,] - a bare tuple when a comma appears"""
        first = self.parse_expr()
        if not self.check(TT.COMMA):
            return first

        items = [first]
        while self.match(TT.COMMA):
            if not self.starts_expression():
                break
            items.append(self.parse_expr())
        return self.build("tuple", first, [(None, items)])

    def parse_expr(self) -> Node:
        """Parse expression (top level, walrus included)"""
        return self.parse_named_expr()

    def parse_named_expr(self) -> Node:
        """Parse assignment expression: name := value"""
        if self.check(TT.IDENT) and self.peek(1).type == TT.WALRUS:
            name = self.identifier()
            op = self.advance()
            value = self.parse_ternary_expr()
            return self.build("named_expression", name, [("name", name), ("operator", op), ("value", value)])
        return self.parse_ternary_expr()

    def parse_ternary_expr(self) -> Node:
        """Parse ternary: body if cond else orelse (right associative)"""
        body = self.parse_or_expr()
        if not self.check(TT.IF):
            return body

        if_tok = self.advance()
        cond = self.parse_or_expr()
        else_tok = self.expect(TT.ELSE, "Expected 'else' in conditional expression")
        orelse = self.parse_ternary_expr()
        return self.build(
            "conditional_expression", body,
            [("consequence", body), (None, if_tok), ("condition", cond),
             (None, else_tok), ("alternative", orelse)],
        )

    def parse_or_expr(self) -> Node:
        """Parse logical or: expr or expr"""
        return self._parse_boolean(TT.OR, self.parse_and_expr)

    def parse_and_expr(self) -> Node:
        """Parse logical and: expr and expr"""
        return self._parse_boolean(TT.AND, self.parse_not_expr)

    def _parse_boolean(self, op_type: TT, operand) -> Node:
        left = operand()
        while self.check(op_type):
            op = self.advance()
            right = operand()
            left = self.build("boolean_operator", left, [("left", left), ("operator", op), ("right", right)])
        return left

    def parse_not_expr(self) -> Node:
        """Parse logical not: not expr"""
        if not self.check(TT.NOT):
            return self.parse_compare_expr()
        op = self.advance()
        value = self.parse_not_expr()
        return self.build("not_operator", op, [("operator", op), ("value", value)])

    def parse_compare_expr(self) -> Node:
        """
        Parse comparison chain as one node:
        a < b <= c  ->  comparison_operator(left a, < , right b, <=, right c)
        """
        left = self.parse_binary_expr(0)
        if not self.is_compare_op():
            return left

        parts: List[Part] = [("left", left)]
        while self.is_compare_op():
            parts.append(("operator", self.parse_compare_op()))
            parts.append(("right", self.parse_binary_expr(0)))
        return self.build("comparison_operator", left, parts)

    def is_compare_op(self) -> bool:
        """Check if current token is a comparison operator"""
        if self.check(*COMPARE_OPS):
            return True
        return self.check(TT.NOT) and self.peek(1).type == TT.IN

    def parse_compare_op(self) -> Token:
        """Comparison operator token; 'not in' is folded into one"""
        op = self.advance()
        if op.type != TT.NOT:
            return leaf(op)
        in_tok = self.expect(TT.IN)
        return Token(
            "NOT_IN", self.source[op.start:in_tok.end],
            op.start, op.line, op.column, in_tok.end_line, in_tok.end_column, in_tok.end,
        )

    def parse_binary_expr(self, level: int) -> Node:
        """Left-associative binary levels from | down to * / // %"""
        if level == len(BINARY_LEVELS):
            return self.parse_unary_expr()

        ops = BINARY_LEVELS[level]
        left = self.parse_binary_expr(level + 1)
        while self.current.type in ops:
            op = self.advance()
            right = self.parse_binary_expr(level + 1)
            left = self.build("binary_operator", left, [("left", left), ("operator", op), ("right", right)])
        return left

    def parse_unary_expr(self) -> Node:
        """Parse unary operators: +expr, -expr, ~expr (and 'not' in operand position)"""
        if self.check(TT.NOT):
            return self.parse_not_expr()
        if not self.check(*UNARY_OPS):
            return self.parse_pow_expr()
        op = self.advance()
        value = self.parse_unary_expr()
        return self.build("unary_operator", op, [("operator", op), ("value", value)])

    def parse_pow_expr(self) -> Node:
        """Parse exponentiation: expr ** expr (right associative)"""
        base = self.parse_postfix_expr()
        if not self.check(TT.POW):
            return base
        op = self.advance()
        exp = self.parse_unary_expr()  # -x and a ** b ** c both bind here
        return self.build("binary_operator", base, [("left", base), ("operator", op), ("right", exp)])

    def parse_postfix_expr(self) -> Node:
        """
        Parse postfix chain, left to right:
        .attr, [index], (args)
        """
        expr = self.parse_primary_expr()

        while True:
            if self.check(TT.DOT):
                self.advance()
                attr = self.identifier("Expected attribute name after '.'")
                expr = self.build("attribute", expr, [("object", expr), ("attribute", attr)])
            elif self.check(TT.LSQB):
                self.advance()
                with_splat = self.allow_splat
                self.allow_splat = False
                try:
                    index = self.parse_expression_list()
                finally:
                    self.allow_splat = with_splat
                self.expect(TT.RSQB, also=(TT.COMMA,))
                expr = self.build("subscript", expr, [("value", expr), ("index", index)])
            elif self.check(TT.LPAR):
                args = self.parse_argument_list()
                expr = self.build("call", expr, [("function", expr), ("arguments", args)])
            else:
                return expr

    def parse_argument_list(self, type_keywords: frozenset = frozenset()) -> Node:
        """Parse call arguments: (expr, name=expr, ...)"""
        start = self.expect(TT.LPAR)
        with_splat = self.allow_splat
        self.allow_splat = False
        try:
            args: List[Node] = []
            while not self.check(TT.RPAR):
                args.append(self.parse_argument(type_keywords))
                if not self.match(TT.COMMA):
                    break
            self.expect(TT.RPAR, also=(TT.COMMA,))
        finally:
            self.allow_splat = with_splat
        return self.build("argument_list", start, [(None, args)])

    def parse_argument(self, type_keywords: frozenset = frozenset()) -> Node:
        if self.check(TT.IDENT) and self.peek(1).type == TT.ASSIGN:
            name = self.identifier()
            self.advance()
            value = self.parse_type() if name.children[0] in type_keywords else self.parse_expr()
            return self.build("keyword_argument", name, [("name", name), ("value", value)])
        return self.parse_expr()

    def parse_primary_expr(self) -> Node:
        """
        Parse primary expression:
        - Literals (numbers, strings, True, False)
        - Identifiers and special call forms
        - Parenthesized groups and tuples, lists, dicts
        - extcall / staticcall
        - Provisional *splat (statement-start target lists only)
        """
        tok = self.current

        match tok.type:
            case TT.IDENT:
                if tok.value in SPECIAL_CALLS and self.peek(1).type == TT.LPAR:
                    return self.parse_special_call()
                return self.leaf_node("identifier", self.advance())
            case TT.INTEGER:
                return self.leaf_node("integer", self.advance())
            case TT.DECIMAL:
                return self.leaf_node("decimal", self.advance())
            case TT.STRING:
                return self.leaf_node("string", self.advance())
            case TT.TRUE:
                return self.leaf_node("true", self.advance())
            case TT.FALSE:
                return self.leaf_node("false", self.advance())
            case TT.LPAR:
                return self.parse_paren_group()
            case TT.LSQB:
                return self.parse_list()
            case TT.LBRACE:
                return self.parse_dict()
            case TT.EXTCALL:
                return self.parse_external_call("extcall_expression")
            case TT.STATICCALL:
                return self.parse_external_call("staticcall_expression")
            case TT.STAR:
                return self.parse_splat()

        raise ParseError(
            f"Unexpected token in expression: {tok.type.name}",
            tok,
            expected=_names(EXPRESSION_START - {TT.STAR}),
        )

    def parse_splat(self) -> Node:
        """*target inside a statement-start group; anywhere else it is an error"""
        star = self.current
        if not self.allow_splat:
            raise DisambiguationError(
                "Starred target is only valid inside an assignment pattern", star
            )
        self.advance()
        value = self.parse_postfix_expr()
        return self.build("splat_pattern", star, [("operator", star), ("value", value)])

    def parse_paren_group(self) -> Node:
        """
        Parse parenthesized form:
        () -> empty tuple, (x) -> parenthesized, (x,) and (x, y) -> tuple
        """
        start = self.expect(TT.LPAR)
        if self.match(TT.RPAR):
            return self.build("tuple", start, [])

        first = self.parse_expr()
        if self.match(TT.RPAR):
            return self.build("parenthesized_expression", start, [("value", first)])

        items = [first]
        while self.match(TT.COMMA):
            if self.check(TT.RPAR):
                break
            items.append(self.parse_expr())
        self.expect(TT.RPAR, also=(TT.COMMA,))
        return self.build("tuple", start, [(None, items)])

    def parse_list(self) -> Node:
        """Parse list literal: [a, b, ...]"""
        start = self.expect(TT.LSQB)
        items: List[Node] = []
        while not self.check(TT.RSQB):
            items.append(self.parse_expr())
            if not self.match(TT.COMMA):
                break
        self.expect(TT.RSQB, also=(TT.COMMA,))
        return self.build("list", start, [(None, items)])

    def parse_dict(self) -> Node:
        """Parse dict literal: {key: value, ...}"""
        start = self.expect(TT.LBRACE)
        pairs: List[Node] = []
        with_splat = self.allow_splat
        self.allow_splat = False
        try:
            while not self.check(TT.RBRACE):
                key = self.parse_expr()
                self.expect(TT.COLON)
                value = self.parse_expr()
                pairs.append(self.build("pair", key, [("key", key), ("value", value)]))
                if not self.match(TT.COMMA):
                    break
            self.expect(TT.RBRACE, also=(TT.COMMA,))
        finally:
            self.allow_splat = with_splat
        return self.build("dict", start, [(None, pairs)])

    def parse_external_call(self, kind: str) -> Node:
        """Parse extcall/staticcall: keyword followed by a call expression"""
        start = self.advance()
        value = self.parse_postfix_expr()
        if value.data != "call":
            raise ParseError(
                f"{start.value} must be followed by a call expression",
                span=value.span,
                expected=["LPAR"],
            )
        return self.build(kind, start, [(None, start), ("value", value)])

    def parse_special_call(self) -> Node:
        """
        Parse builtin forms whose arguments include types:
        empty(T), convert(x, T), abi_decode(x, T, ...), builtins with output_type=T
        """
        name_tok = self.advance()
        callee = self.leaf_node("identifier", name_tok)
        name = name_tok.value

        if name in BUILTIN_CALLS:
            args = self.parse_argument_list(TYPE_KEYWORDS)
            return self.build("builtin_call", callee, [("function", callee), ("arguments", args)])

        self.expect(TT.LPAR)
        with_splat = self.allow_splat
        self.allow_splat = False
        try:
            if name == "empty":
                typ = self.parse_type()
                self.match(TT.COMMA)
                self.expect(TT.RPAR, also=(TT.COMMA,))
                return self.build("empty_expression", callee, [("function", callee), ("type", typ)])

            value = self.parse_expr()
            self.expect(TT.COMMA, f"{name} needs a value and a target type")
            typ = self.parse_type()

            if name == "convert":
                self.match(TT.COMMA)
                self.expect(TT.RPAR, also=(TT.COMMA,))
                return self.build(
                    "convert_expression", callee, [("function", callee), ("value", value), ("type", typ)]
                )

            extra: List[Node] = []
            while self.match(TT.COMMA):
                if self.check(TT.RPAR):
                    break
                extra.append(self.parse_argument())
            self.expect(TT.RPAR, also=(TT.COMMA,))
            return self.build(
                "abi_decode_expression", callee,
                [("function", callee), ("value", value), ("type", typ), ("arguments", extra)],
            )
        finally:
            self.allow_splat = with_splat


# ============================================================================
# Entry Points
# ============================================================================

@dataclass
class ParseResult:
    """Outcome of a recovering parse: a tree when clean, errors otherwise"""

    tree: Optional[Node] = None
    errors: List[VyperSyntaxError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def _decode(source: Union[str, bytes]) -> str:
    if isinstance(source, bytes):
        try:
            return source.decode("utf-8")
        except UnicodeDecodeError as exc:
            head = source[:exc.start]
            line = head.count(b"\n") + 1
            column = exc.start - (head.rfind(b"\n") + 1) + 1
            span = Span(exc.start, exc.end, line, column, line, column + exc.end - exc.start)
            raise LexError(f"Source is not valid UTF-8: {exc.reason}", span) from exc
    return source


def parse_source(
    source: Union[str, bytes],
    source_id: Optional[str] = None,
    config: Optional[ParserConfig] = None,
) -> Node:
    """
    Parse Vyper source code to a tree, raising the first error.

    Args:
        source: Source text, or UTF-8 bytes
        source_id: Name reported in error messages
        config: Parser settings; strict mode is forced
    """
    config = (config or ParserConfig()).with_source(source_id)
    try:
        text = _decode(source)
        parser = Parser(text, _strict(config, True))
        return parser.parse()
    except VyperSyntaxError as err:
        raise err.with_source(config.source_id)


def parse_with_diagnostics(
    source: Union[str, bytes],
    source_id: Optional[str] = None,
    config: Optional[ParserConfig] = None,
) -> ParseResult:
    """
    Parse with error recovery. Syntax errors are collected and parsing
    resumes at the next statement; a lexical error ends the parse.
    """
    config = _strict((config or ParserConfig()).with_source(source_id), False)
    parser: Optional[Parser] = None
    try:
        parser = Parser(_decode(source), config)
        tree = parser.parse()
    except LexError as err:
        errors = parser.errors if parser is not None else []
        errors.append(err.with_source(config.source_id))
        return ParseResult(errors=errors)

    if parser.errors:
        return ParseResult(errors=parser.errors)
    return ParseResult(tree=tree)


def parse_expr_fragment(source: str, config: Optional[ParserConfig] = None) -> Node:
    """Parse a standalone expression (one logical line)."""
    parser = Parser(source, _strict(config or ParserConfig(), True))
    expr = parser.parse_expression_list()
    if not parser.check(TT.NEWLINE, TT.EOF):
        raise ParseError("Unexpected tokens after expression fragment", parser.current)
    parser.match(TT.NEWLINE)
    if not parser.check(TT.EOF):
        raise ParseError("Unexpected tokens after expression fragment", parser.current, expected=["EOF"])
    return expr


def _strict(config: ParserConfig, strict: bool) -> ParserConfig:
    if config.strict == strict:
        return config
    return ParserConfig(tab_width=config.tab_width, strict=strict, source_id=config.source_id)
