"""Syntax-tree nodes and the helpers consumers use to walk them.

Nodes are lark ``Tree`` objects, so lark's ``Visitor``/``Interpreter``
dispatch on ``node.data`` works unchanged. On top of that a ``Node``
carries a field name per child and a source span in ``meta``, and answers
supertype queries (expression / statement / pattern / type) from a
read-only table instead of a class hierarchy.
"""
from __future__ import annotations

from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Set, Tuple, Union

from lark import Token, Tree
from lark.tree import Meta
from typing_extensions import TypeAlias, TypeGuard

from .token_types import Span, Tok

# ---------- Supertype table ----------

EXPRESSION = "expression"
STATEMENT = "statement"
PATTERN = "pattern"
TYPE = "type"
DECLARATION = "declaration"

_EXPRESSION_KINDS = {
    "identifier", "integer", "decimal", "string", "true", "false",
    "binary_operator", "unary_operator", "not_operator", "boolean_operator",
    "comparison_operator", "conditional_expression", "named_expression",
    "call", "attribute", "subscript", "parenthesized_expression",
    "tuple", "list", "dict",
    "empty_expression", "convert_expression", "abi_decode_expression",
    "extcall_expression", "staticcall_expression", "builtin_call",
}

_PATTERN_KINDS = {
    "identifier", "attribute", "subscript",
    "tuple_pattern", "list_pattern", "splat_pattern",
}

_STATEMENT_KINDS = {
    "expression_statement", "docstring", "assert_statement", "raise_statement",
    "return_statement", "pass_statement", "break_statement", "continue_statement",
    "log_statement", "assignment", "augmented_assignment", "annotated_assignment",
    "if_statement", "for_statement",
}

_TYPE_KINDS = {
    "type_identifier", "qualified_type", "array_type", "dynamic_array_type",
    "bytestring_type", "hashmap_type", "tuple_type", "type_modifier",
}

_DECLARATION_KINDS = {
    "pragma", "import_statement", "import_from", "implements_declaration",
    "exports_declaration", "uses_declaration", "initializes_declaration",
    "struct_declaration", "interface_declaration", "event_declaration",
    "enum_declaration", "flag_declaration", "variable_declaration",
    "function_definition", "docstring",
}


def _build_supertypes() -> Mapping[str, frozenset]:
    table: Dict[str, Set[str]] = {}
    for category, kinds in (
        (EXPRESSION, _EXPRESSION_KINDS),
        (PATTERN, _PATTERN_KINDS),
        (STATEMENT, _STATEMENT_KINDS),
        (TYPE, _TYPE_KINDS),
        (DECLARATION, _DECLARATION_KINDS),
    ):
        for kind in kinds:
            table.setdefault(kind, set()).add(category)
    return MappingProxyType({kind: frozenset(cats) for kind, cats in table.items()})


# kind -> categories; shared by every parse, never mutated
SUPERTYPES: Mapping[str, frozenset] = _build_supertypes()


def kinds_of(category: str) -> frozenset:
    """Every concrete node kind belonging to a supertype category."""
    return frozenset(kind for kind, cats in SUPERTYPES.items() if category in cats)


# ---------- Nodes ----------

def leaf(tok: Tok) -> Token:
    """Turn a lexer token into a positioned lark Token for the tree."""
    return Token(
        tok.type.name, tok.value,
        tok.start, tok.line, tok.column,
        tok.end_line, tok.end_column, tok.end,
    )


def make_meta(span: Span) -> Meta:
    meta = Meta()
    meta.empty = False
    meta.start_pos = span.start
    meta.end_pos = span.end
    meta.line = span.line
    meta.column = span.column
    meta.end_line = span.end_line
    meta.end_column = span.end_column
    return meta


class Node(Tree):
    """One concrete grammar rule: kind in ``data``, named children, source span in ``meta``."""

    def __init__(
        self,
        data: str,
        children: List[Union[Node, Token]],
        field_names: Optional[List[Optional[str]]] = None,
        meta: Optional[Meta] = None,
    ):
        super().__init__(data, children, meta)
        if field_names is None:
            field_names = [None] * len(children)
        if len(field_names) != len(children):
            raise ValueError(f"{data}: {len(children)} children but {len(field_names)} field names")
        self.field_names = field_names

    @property
    def kind(self) -> str:
        return self.data

    @property
    def span(self) -> Optional[Span]:
        meta = self.meta
        if meta.empty:
            return None
        return Span(meta.start_pos, meta.end_pos, meta.line, meta.column, meta.end_line, meta.end_column)

    # supertype membership

    @property
    def supertypes(self) -> frozenset:
        return SUPERTYPES.get(self.data, frozenset())

    @property
    def is_expression(self) -> bool:
        return EXPRESSION in self.supertypes

    @property
    def is_statement(self) -> bool:
        return STATEMENT in self.supertypes

    @property
    def is_pattern(self) -> bool:
        return PATTERN in self.supertypes

    @property
    def is_type(self) -> bool:
        return TYPE in self.supertypes

    @property
    def is_declaration(self) -> bool:
        return DECLARATION in self.supertypes

    # field access

    def child_by_field(self, name: str) -> Optional[Union[Node, Token]]:
        for field, child in zip(self.field_names, self.children):
            if field == name:
                return child
        return None

    def children_by_field(self, name: str) -> List[Union[Node, Token]]:
        return [child for field, child in zip(self.field_names, self.children) if field == name]

    @property
    def named_children(self) -> List[Tuple[str, Union[Node, Token]]]:
        return [(field, child) for field, child in zip(self.field_names, self.children) if field]

    @property
    def child_nodes(self) -> List[Node]:
        return [child for child in self.children if isinstance(child, Node)]

    @property
    def text(self) -> str:
        """Leaf texts under this node joined by single spaces (trivia excluded).

        Not the source text: `a.b` reads "a b". Use source_text() for the exact slice.
        """
        return " ".join(str(tok) for tok in self.scan_values(lambda v: isinstance(v, Token)))

    def sexp(self) -> str:
        """Compact s-expression of the node, fields labelled, leaf text quoted."""
        parts: List[str] = [self.data]
        has_node_child = any(isinstance(ch, Node) for ch in self.children)

        for field, child in zip(self.field_names, self.children):
            label = f"{field}: " if field else ""
            if isinstance(child, Node):
                parts.append(label + child.sexp())
            elif field or not has_node_child:
                parts.append(f"{label}{str(child)!r}")

        return "(" + " ".join(parts) + ")"


NodeOrToken: TypeAlias = Union[Node, Token]


# ---------- Helpers ----------

def is_node(node: Any) -> TypeGuard[Node]:
    return isinstance(node, Node)


def is_token(node: Any) -> TypeGuard[Token]:
    return isinstance(node, Token)


def node_kind(node: NodeOrToken) -> Optional[str]:
    return node.data if is_node(node) else None


def walk(node: NodeOrToken) -> Iterator[Node]:
    """Pre-order iteration over every Node below (and including) ``node``."""
    if not is_node(node):
        return
    stack: List[Node] = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.child_nodes))


def find_all(node: NodeOrToken, kinds: Iterable[str]) -> List[Node]:
    lookup = set(kinds)
    return [n for n in walk(node) if n.data in lookup]


def find_first(node: NodeOrToken, kinds: Iterable[str]) -> Optional[Node]:
    lookup = set(kinds)
    for n in walk(node):
        if n.data in lookup:
            return n
    return None


def source_text(node: NodeOrToken, source: str) -> str:
    """Exact source slice covered by a node or token, trivia included."""
    if is_token(node):
        return source[node.start_pos:node.end_pos]
    span = node.span
    if span is None:
        return ""
    return source[span.start:span.end]


def unwrap_parens(node: NodeOrToken) -> NodeOrToken:
    """Strip any number of parenthesized_expression wrappers."""
    while is_node(node) and node.data == "parenthesized_expression":
        node = node.child_by_field("value")
    return node
