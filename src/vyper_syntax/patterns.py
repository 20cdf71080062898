"""
Pattern / expression disambiguation.

At the start of a statement the parser cannot know whether ``a, (b, c)``
or ``[x, *rest]`` is going to be assigned to or evaluated. It parses the
token run once, in the expression family's shapes (identifier, tuple,
list, parenthesized_expression), allowing provisional ``*name`` splats.
The token after the run then settles it:

- ``=``  -> finalize_pattern: tuple/list become tuple_pattern/list_pattern,
            parentheses around a single target disappear
- other  -> finalize_expression: the tree is kept, but any pattern-only
            node left in it is an error

Nothing here mutates a node; converted nodes are rebuilt with the
original meta, so spans survive.
"""

from __future__ import annotations

from typing import List, Optional

from .errors import DisambiguationError, ParseError
from .token_types import TT, Tok
from .tree import Node, NodeOrToken, is_node, walk

# Kinds that may stand alone on the left of '=' or '+='
TARGET_KINDS = frozenset({"identifier", "attribute", "subscript"})

# Kinds only valid inside an assignment pattern
PATTERN_ONLY_KINDS = frozenset({"splat_pattern", "tuple_pattern", "list_pattern"})

_GROUP_TO_PATTERN = {
    "tuple": "tuple_pattern",
    "list": "list_pattern",
}


def finalize(node: Node, next_tok: Tok) -> Node:
    """Settle a family-neutral tree by the token that follows it."""
    if next_tok.type == TT.ASSIGN:
        return finalize_pattern(node)
    return finalize_expression(node)


def finalize_expression(node: Node) -> Node:
    """Confirm expression role; starred targets cannot be evaluated."""
    for sub in walk(node):
        if sub.data in PATTERN_ONLY_KINDS:
            raise DisambiguationError(
                _expression_misuse(sub),
                span=sub.span,
                expected=("ASSIGN",),
            )
    return node


def finalize_pattern(node: Node) -> Node:
    """Confirm pattern role, rebuilding groups as pattern nodes."""
    match node.data:
        case "identifier" | "tuple_pattern" | "list_pattern":
            return node

        case "attribute" | "subscript":
            # object / index parts are ordinary expressions
            for child in node.child_nodes:
                finalize_expression(child)
            return node

        case "parenthesized_expression":
            inner = node.child_by_field("value")
            assert is_node(inner)
            return finalize_pattern(inner)

        case "tuple" | "list":
            return _group_pattern(node)

        case "splat_pattern":
            operand = node.child_by_field("value")
            assert is_node(operand)
            target = finalize_pattern(operand)
            if target.data not in TARGET_KINDS:
                raise ParseError(
                    f"Starred target must be a name, attribute or subscript, not {describe(target)}",
                    span=target.span,
                )
            return _rebuild(node, node.data, [target if ch is operand else ch for ch in node.children])

        case _:
            raise ParseError(f"Cannot assign to {describe(node)}", span=node.span)


def require_single_target(node: Node) -> Node:
    """Augmented assignment and annotated targets take exactly one target."""
    target = finalize_pattern(node)
    if target.data not in TARGET_KINDS:
        raise ParseError(
            f"Augmented assignment needs a single target, not {describe(target)}",
            span=target.span,
        )
    return target


def describe(node: NodeOrToken) -> str:
    if not is_node(node):
        return f"'{node}'"
    return node.data.replace("_", " ")


# ---------- internals ----------

def _group_pattern(node: Node) -> Node:
    children: List[NodeOrToken] = []
    splat: Optional[Node] = None

    for child in node.children:
        if not is_node(child):
            children.append(child)
            continue

        item = finalize_pattern(child)
        if item.data == "splat_pattern":
            if splat is not None:
                raise DisambiguationError(
                    "Multiple starred targets in one pattern",
                    span=item.span,
                )
            splat = item
        children.append(item)

    return _rebuild(node, _GROUP_TO_PATTERN[node.data], children)


def _rebuild(node: Node, kind: str, children: List[NodeOrToken]) -> Node:
    return Node(kind, children, list(node.field_names), meta=node.meta)


def _expression_misuse(node: Node) -> str:
    if node.data == "splat_pattern":
        return "Starred target is only valid inside an assignment pattern"
    return f"{describe(node)} used where an expression is required"
