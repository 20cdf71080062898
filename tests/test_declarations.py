from __future__ import annotations

import pytest

from vyper_syntax import Parser
from vyper_syntax.errors import ParseError, VyperSyntaxError
from vyper_syntax.tree import source_text
from tests.support.harness import (
    assert_syntax_error,
    dedent,
    field,
    kinds,
    lisp,
    parse_module,
    top_level,
)


# ---------- pragmas ----------

def test_version_pragma() -> None:
    source = "#pragma version ^0.4.0\n"
    (pragma,) = top_level(source)
    assert pragma.data == "pragma"
    assert str(pragma.child_by_field("name")) == "version"

    constraint = field(pragma, "value")
    assert constraint.data == "version_constraint"
    op = constraint.child_by_field("operator")
    version = constraint.child_by_field("value")
    assert (str(op), str(version)) == ("^", "0.4.0")
    assert source_text(op, source) == "^"
    assert source_text(version, source) == "0.4.0"
    assert source_text(constraint, source) == "^0.4.0"


def test_legacy_version_pragma() -> None:
    (pragma,) = top_level("# @version 0.3.10\n")
    assert str(pragma.child_by_field("name")) == "version"
    constraint = field(pragma, "value")
    assert constraint.child_by_field("operator") is None
    assert str(constraint.child_by_field("value")) == "0.3.10"


@pytest.mark.parametrize(
    "source,name,value",
    [
        ("#pragma optimize gas\n", "optimize", "gas"),
        ("#pragma evm-version cancun\n", "evm-version", "cancun"),
        ("#  pragma nonreentrancy on  \n", "nonreentrancy", "on"),
    ],
    ids=["optimize", "evm-version", "loose-spacing"],
)
def test_setting_pragmas(source: str, name: str, value: str) -> None:
    (pragma,) = top_level(source)
    assert str(pragma.child_by_field("name")) == name
    token = pragma.child_by_field("value")
    assert token.type == "PRAGMA_VALUE"
    assert str(token) == value
    assert source_text(token, source) == value


def test_leading_pragma_run() -> None:
    decls = top_level(
        """
        #pragma version >=0.4.0
        #pragma optimize codesize

        # regular comment
        x: uint256
        """
    )
    assert kinds(decls) == ["pragma", "pragma", "variable_declaration"]


@pytest.mark.parametrize(
    "source,msg",
    [
        ("x: uint256\n#pragma version 0.4.0\n", "must precede all other top-level constructs"),
        ('"""doc"""\n#pragma version 0.4.0\n', "must precede all other top-level constructs"),
        ("#pragma version\n", "needs a version constraint"),
        ("#pragma version latest\n", "Invalid version constraint"),
        ("#pragma 9lives\n", "Malformed pragma directive"),
    ],
    ids=["after-variable", "after-docstring", "missing-version", "bad-version", "bad-name"],
)
def test_pragma_errors(source: str, msg: str) -> None:
    assert_syntax_error(source, ParseError, msg)


def test_late_pragma_error_position() -> None:
    err = assert_syntax_error("x: uint256\n\n#pragma version 0.4.0\n", ParseError, "must precede")
    assert (err.line, err.column) == (3, 1)


# ---------- imports and module directives ----------

def test_import() -> None:
    (stmt,) = top_level("import math\n")
    assert stmt.data == "import_statement"
    module = field(stmt, "module")
    assert module.data == "dotted_name"
    assert stmt.child_by_field("alias") is None


def test_import_dotted_with_alias() -> None:
    (stmt,) = top_level("import ethereum.ercs.IERC20 as erc20\n")
    assert kinds(field(stmt, "module").children) == ["identifier"] * 3
    assert lisp(field(stmt, "alias")) == "erc20"


def test_from_import() -> None:
    (stmt,) = top_level("from ethereum.ercs import IERC20, IERC721 as nft\n")
    assert stmt.data == "import_from"
    assert field(stmt, "module").data == "dotted_name"
    names = stmt.children_by_field("name")
    assert kinds(names) == ["identifier", "aliased_import"]
    assert lisp(field(names[1], "alias")) == "nft"


@pytest.mark.parametrize(
    "source,dots,has_path",
    [
        ("from . import lib\n", 1, False),
        ("from .. import lib\n", 2, False),
        ("from ..pkg.sub import lib\n", 2, True),
    ],
    ids=["dot", "dot-dot", "dot-dot-path"],
)
def test_relative_import(source: str, dots: int, has_path: bool) -> None:
    (stmt,) = top_level(source)
    module = field(stmt, "module")
    assert module.data == "relative_import"
    assert len(module.children_by_field("prefix")) == dots
    assert (module.child_by_field("name") is not None) == has_path


def test_parenthesized_from_import() -> None:
    (stmt,) = top_level("from lib import (\n    a,\n    b,\n)\n")
    assert len(stmt.children_by_field("name")) == 2


@pytest.mark.parametrize(
    "source,kind,value_kind",
    [
        ("implements: IERC20\n", "implements_declaration", "identifier"),
        ("implements: ercs.IERC20\n", "implements_declaration", "attribute"),
        ("exports: token.transfer\n", "exports_declaration", "attribute"),
        ("exports: (token.transfer, token.approve)\n", "exports_declaration", "tuple"),
        ("uses: ownable\n", "uses_declaration", "identifier"),
        ("initializes: ownable\n", "initializes_declaration", "identifier"),
        ("initializes: token[ownable := ownable]\n", "initializes_declaration", "subscript"),
    ],
    ids=["implements", "implements-dotted", "exports", "exports-tuple", "uses", "initializes", "initializes-deps"],
)
def test_module_directives(source: str, kind: str, value_kind: str) -> None:
    (decl,) = top_level(source)
    assert decl.data == kind
    assert decl.is_declaration
    assert field(decl, "value").data == value_kind


def test_initializes_dependency_is_named_expression() -> None:
    (decl,) = top_level("initializes: token[ownable := ownable]\n")
    index = field(field(decl, "value"), "index")
    assert index.data == "named_expression"


# ---------- member declarations ----------

def test_struct() -> None:
    (decl,) = top_level(
        """
        struct Point:
            x: int128
            y: DynArray[int128, 2]
        """
    )
    assert decl.data == "struct_declaration"
    assert lisp(field(decl, "name")) == "Point"
    members = decl.children_by_field("body")
    assert kinds(members) == ["member", "member"]
    assert field(members[1], "type").data == "dynamic_array_type"


def test_event_with_indexed_members() -> None:
    (decl,) = top_level(
        """
        event Transfer:
            sender: indexed(address)
            value: uint256
        """
    )
    assert decl.data == "event_declaration"
    members = decl.children_by_field("body")
    indexed = field(members[0], "type")
    assert indexed.data == "type_modifier"
    assert str(indexed.child_by_field("modifier")) == "indexed"


@pytest.mark.parametrize("keyword,kind", [("enum", "enum_declaration"), ("flag", "flag_declaration")])
def test_enum_and_flag(keyword: str, kind: str) -> None:
    (decl,) = top_level(f"{keyword} Roles:\n    ADMIN\n    MINTER\n    USER\n")
    assert decl.data == kind
    members = decl.children_by_field("body")
    assert [lisp(field(member, "name")) for member in members] == ["ADMIN", "MINTER", "USER"]


def test_interface() -> None:
    (decl,) = top_level(
        """
        interface Receiver:
            def on_received(sender: address, amount: uint256) -> bool: nonpayable
            def version() -> String[8]: view
            def poke(): payable
        """
    )
    assert decl.data == "interface_declaration"
    members = decl.children_by_field("body")
    assert kinds(members) == ["interface_function"] * 3
    assert [lisp(field(member, "mutability")) for member in members] == ["nonpayable", "view", "payable"]
    assert field(members[1], "return_type").data == "bytestring_type"
    assert members[2].child_by_field("return_type") is None
    assert len(field(members[0], "parameters").children) == 2


@pytest.mark.parametrize("keyword", ["struct", "interface", "event", "enum", "flag"])
@pytest.mark.parametrize(
    "body",
    [": pass\n", ":\n    pass\n", ":\n"],
    ids=["inline-pass", "block-pass", "no-body"],
)
def test_empty_member_list_rejected(keyword: str, body: str) -> None:
    assert_syntax_error(f"{keyword} Empty{body}", ParseError, "requires at least one member")


def test_interface_member_must_be_def() -> None:
    assert_syntax_error("interface I:\n    x: uint256\n", ParseError, "Expected 'def' in interface body")


# ---------- variables and types ----------

TYPE_CASES = [
    ("uint256", "type_identifier"),
    ("lib.Point", "qualified_type"),
    ("uint256[3]", "array_type"),
    ("DynArray[address, 100]", "dynamic_array_type"),
    ("String[64]", "bytestring_type"),
    ("Bytes[1024]", "bytestring_type"),
    ("HashMap[address, uint256]", "hashmap_type"),
    ("(uint256, bool)", "tuple_type"),
    ("public(uint256)", "type_modifier"),
    ("constant(uint256)", "type_modifier"),
    ("immutable(address)", "type_modifier"),
    ("transient(uint256)", "type_modifier"),
]


@pytest.mark.parametrize("text,kind", TYPE_CASES, ids=[case[0] for case in TYPE_CASES])
def test_variable_types(text: str, kind: str) -> None:
    (decl,) = top_level(f"value: {text}\n")
    assert decl.data == "variable_declaration"
    var_type = field(decl, "type")
    assert var_type.data == kind
    assert var_type.is_type


def test_nested_type_modifiers() -> None:
    (decl,) = top_level("allowance: public(HashMap[address, HashMap[address, uint256]])\n")
    outer = field(decl, "type")
    assert outer.data == "type_modifier"
    hashmap = field(outer, "type")
    assert hashmap.data == "hashmap_type"
    assert field(hashmap, "key").data == "type_identifier"
    assert field(hashmap, "value").data == "hashmap_type"


def test_multi_dimensional_array() -> None:
    (decl,) = top_level("grid: uint256[3][4]\n")
    outer = field(decl, "type")
    assert outer.data == "array_type"
    assert lisp(field(outer, "size")) == "4"
    inner = field(outer, "type")
    assert inner.data == "array_type"
    assert lisp(field(inner, "size")) == "3"


def test_constant_with_value() -> None:
    (decl,) = top_level("MAX_SUPPLY: constant(uint256) = 10 ** 18 * 1000\n")
    assert lisp(field(decl, "value")) == "(* (** 10 18) 1000)"


def test_type_modifier_name_as_plain_type() -> None:
    (decl,) = top_level("x: public\n")
    assert field(decl, "type").data == "type_identifier"


@pytest.mark.parametrize(
    "source,msg",
    [
        ("x: = 1\n", "Expected a type"),
        ("x: HashMap[address]\n", "HashMap needs a key and a value type"),
        ("x: DynArray[uint256]\n", "DynArray needs an element type and a bound"),
        ("x = 1\n", "Expected a module-level declaration"),
        ("1\n", "Expected a module-level declaration"),
        ("x: uint256\n    y: uint256\n", "Unexpected indent"),
    ],
    ids=["missing-type", "hashmap-arity", "dynarray-arity", "bare-assignment", "bare-expression", "stray-indent"],
)
def test_module_errors(source: str, msg: str) -> None:
    assert_syntax_error(source, ParseError, msg)


def test_module_error_expected_set() -> None:
    err = assert_syntax_error("1\n", ParseError, "module-level")
    assert {"DEF", "STRUCT", "PRAGMA", "IMPORT"} <= err.expected


# ---------- functions ----------

def test_function_definition() -> None:
    (fn,) = top_level(
        """
        @external
        @nonreentrant("lock")
        def transfer(to: address, amount: uint256 = 0) -> bool:
            return True
        """
    )
    assert fn.data == "function_definition"
    decorators = fn.children_by_field("decorator")
    assert [field(d, "value").data for d in decorators] == ["identifier", "call"]
    assert lisp(field(fn, "name")) == "transfer"

    params = field(fn, "parameters").child_nodes
    assert kinds(params) == ["parameter", "parameter"]
    assert params[0].child_by_field("value") is None
    assert lisp(field(params[1], "value")) == "0"
    assert field(params[1], "type").data == "type_identifier"

    assert field(fn, "return_type").data == "type_identifier"
    assert kinds(field(fn, "body").children) == ["return_statement"]


def test_function_span_starts_at_decorator() -> None:
    source = dedent(
        """
        x: uint256

        @view
        def get() -> uint256: return self.x
        """
    )
    tree = parse_module(source)
    fn = tree.children[1]
    assert source_text(fn, source) == "@view\ndef get() -> uint256: return self.x"


def test_function_returning_tuple() -> None:
    (fn,) = top_level("def f() -> (uint256, address):\n    return 1, self\n")
    assert field(fn, "return_type").data == "tuple_type"
    assert field(fn, "return_type").child_nodes[1].data == "type_identifier"


def test_function_with_docstring() -> None:
    (fn,) = top_level('def f():\n    """\n    Does a thing.\n    """\n    pass\n')
    assert kinds(field(fn, "body").children) == ["docstring", "pass_statement"]


def test_module_docstring() -> None:
    decls = top_level('"""\nModule docs.\n"""\nx: uint256\n')
    assert kinds(decls) == ["docstring", "variable_declaration"]


@pytest.mark.parametrize(
    "source,msg",
    [
        ("def f(x):\n    pass\n", "Parameters need a type annotation"),
        ("def f(x: uint256\n", "Unclosed '('"),
        ("def (x: uint256):\n    pass\n", "Expected function name"),
        ("def f():\n", "Expected an indented block"),
        ("@external\nx: uint256\n", "Expected DEF"),
    ],
    ids=["untyped-param", "unclosed-params", "missing-name", "empty-body", "decorator-without-def"],
)
def test_function_errors(source: str, msg: str) -> None:
    assert_syntax_error(source, VyperSyntaxError, msg)


# ---------- trivial input ----------

@pytest.mark.parametrize("source", ["", "\n\n", "# only a comment\n", "   \n"], ids=["empty", "blank", "comment", "spaces"])
def test_trivial_input(source: str) -> None:
    assert top_level(source) == []


def test_parser_instance_accepts_trivial_input() -> None:
    parser = Parser("pass_through: bool\n")
    tree = parser.parse()
    assert kinds(tree.children) == ["variable_declaration"]
    assert parser.errors == []
