from __future__ import annotations

import sys
import textwrap
from pathlib import Path
from typing import List, Optional, Sequence

import pytest
from lark import Token

BASE_DIR = Path(__file__).resolve().parent.parent.parent
SRC_DIR = (BASE_DIR / "src").resolve()
FIXTURES_DIR = BASE_DIR / "tests" / "fixtures"

if str(BASE_DIR) not in sys.path:
    sys.path.append(str(BASE_DIR))
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from vyper_syntax.errors import VyperSyntaxError
from vyper_syntax.lexer_rd import tokenize
from vyper_syntax.parser_rd import parse_expr_fragment, parse_source
from vyper_syntax.token_types import TT, Tok
from vyper_syntax.tree import Node, walk

STRUCTURAL_TYPES = (TT.NEWLINE, TT.INDENT, TT.DEDENT, TT.EOF)


def dedent(code: str) -> str:
    return textwrap.dedent(code).lstrip("\n")


def parse_module(code: str) -> Node:
    """Parse a (dedented) module and check the root covers the whole input."""
    source = dedent(code)
    tree = parse_source(source)
    assert tree.data == "module"
    assert tree.meta.start_pos == 0
    assert tree.meta.end_pos == len(source)
    return tree


def parse_expr(code: str) -> Node:
    return parse_expr_fragment(code)


def parse_body(code: str) -> List[Node]:
    """Parse statements as the body of a function and return the body's statements."""
    source = "def f():\n" + textwrap.indent(dedent(code), "    ")
    tree = parse_source(source)
    fn = tree.children[0]
    assert isinstance(fn, Node) and fn.data == "function_definition"
    body = fn.child_by_field("body")
    assert isinstance(body, Node) and body.data == "block"
    return body.child_nodes


def parse_stmt(code: str) -> Node:
    stmts = parse_body(code)
    assert len(stmts) == 1, [stmt.data for stmt in stmts]
    return stmts[0]


def top_level(code: str) -> List[Node]:
    return parse_module(code).child_nodes


def significant_types(source: str) -> List[TT]:
    return [tok.type for tok in tokenize(source, include_trivia=False) if tok.type != TT.EOF]


def token_types(source: str) -> List[TT]:
    return [tok.type for tok in tokenize(source) if tok.type != TT.EOF]


def count_nodes(tree: Node, name: str) -> int:
    return sum(1 for node in walk(tree) if node.data == name)


def kinds(nodes: Sequence[object]) -> List[Optional[str]]:
    return [node.data if isinstance(node, Node) else None for node in nodes]


def field(node: Node, name: str) -> Node:
    """Field child that must exist and be a node."""
    child = node.child_by_field(name)
    assert isinstance(child, Node), f"{node.data}.{name} is {child!r}"
    return child


def assert_syntax_error(
    code: str,
    exc: type[VyperSyntaxError],
    msg: str,
    line: Optional[int] = None,
    column: Optional[int] = None,
) -> VyperSyntaxError:
    with pytest.raises(exc) as info:
        parse_source(dedent(code))
    err = info.value
    assert msg in err.message
    if line is not None:
        assert err.line == line
    if column is not None:
        assert err.column == column
    return err


def reconstruct(tokens: Sequence[Tok]) -> str:
    return "".join(tok.value for tok in tokens)


def load_fixture(name: str) -> str:
    return (FIXTURES_DIR / name).read_text(encoding="utf-8")


def lisp(node: object) -> str:
    """
    Prefix rendering of an expression, parentheses dropped:
    "1 + 2 * 3" -> "(+ 1 (* 2 3))"
    """
    if isinstance(node, Token):
        return str(node)
    assert isinstance(node, Node)

    match node.data:
        case "identifier" | "integer" | "decimal" | "string" | "true" | "false":
            return str(node.children[0])
        case "parenthesized_expression":
            return lisp(node.child_by_field("value"))
        case "binary_operator" | "boolean_operator":
            op = node.child_by_field("operator")
            return f"({op} {lisp(node.child_by_field('left'))} {lisp(node.child_by_field('right'))})"
        case "unary_operator" | "not_operator":
            op = node.child_by_field("operator")
            return f"({op} {lisp(node.child_by_field('value'))})"
        case "comparison_operator":
            return "(cmp " + " ".join(lisp(child) for child in node.children) + ")"
        case "conditional_expression":
            parts = [node.child_by_field(name) for name in ("condition", "consequence", "alternative")]
            return "(if " + " ".join(lisp(part) for part in parts) + ")"
        case "named_expression":
            return f"(:= {lisp(node.child_by_field('name'))} {lisp(node.child_by_field('value'))})"
        case _:
            inner = " ".join(lisp(child) for child in node.child_nodes)
            return f"({node.data} {inner})" if inner else f"({node.data})"
