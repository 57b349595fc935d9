"""Tests for the parsed tree models and the JSON tree loader."""

import json

import pytest
from pydantic import ValidationError

from semcheck.kernel.errors import ParseError
from semcheck.kernel.tree import (
    FnDecl,
    ImplDecl,
    ModDecl,
    ParsedCrate,
    UseDecl,
    Visibility,
    is_doc_hidden,
    parse_visibility,
)
from semcheck._internal.io.tree_loader import load_tree_from_dict, load_tree_from_path


def create_tree_dict():
    return {
        "name": "my-crate",
        "version": "1.2.0",
        "items": [
            {"kind": "fn", "name": "run", "vis": "pub", "params": [{"name": "n", "type": "u32"}]},
            {"kind": "mod", "name": "util", "items": [
                {"kind": "use", "path": "crate::run", "vis": "pub(crate)"},
            ]},
            {"kind": "impl", "self_type": "Foo", "trait": "Clone", "items": []},
        ],
    }


@pytest.mark.parametrize("text,expected", [
    ("pub", Visibility.PUBLIC),
    ("", Visibility.PRIVATE),
    ("pub(self)", Visibility.PRIVATE),
    ("pub(crate)", Visibility.CRATE),
    ("crate", Visibility.CRATE),
    ("pub(super)", Visibility.RESTRICTED),
    ("pub(in crate::a)", Visibility.RESTRICTED),
    ("pub ( crate )", Visibility.CRATE),
])
def test_parse_visibility(text, expected):
    assert parse_visibility(text) is expected


def test_visibility_rank_orders_private_to_public():
    ordered = [Visibility.PRIVATE, Visibility.RESTRICTED, Visibility.CRATE, Visibility.PUBLIC]
    assert [v.rank for v in ordered] == [0, 1, 2, 3]


def test_parsed_crate_structure():
    tree = ParsedCrate.model_validate(create_tree_dict())

    assert tree.name == "my_crate"
    run, util, impl = tree.items
    assert isinstance(run, FnDecl) and run.visibility is Visibility.PUBLIC
    assert isinstance(util, ModDecl)
    assert isinstance(util.items[0], UseDecl)
    assert isinstance(impl, ImplDecl) and impl.trait_ == "Clone"


def test_use_declaration_helpers():
    aliased = UseDecl(kind="use", path="a::b::C", alias="D")
    module_self = UseDecl(kind="use", path="a::b::self")
    star = UseDecl(kind="use", path="a::b::*")

    assert aliased.bound_name == "D"
    assert module_self.bound_name == "b"
    assert star.glob and star.path == "a::b"


def test_invalid_declarations_rejected():
    with pytest.raises(ValidationError):
        UseDecl(kind="use", path="a::*", alias="x")
    with pytest.raises(ValidationError):
        ParsedCrate.model_validate({"name": "c", "items": [{"kind": "fn", "name": "f", "vis": "public"}]})
    with pytest.raises(ValidationError):
        ParsedCrate.model_validate({"name": "c", "items": [{"kind": "struct", "name": "S", "shape": "unit",
                                                            "fields": [{"name": "x", "type": "u8"}]}]})
    with pytest.raises(ValidationError):
        ParsedCrate.model_validate({"name": "c", "items": [{"kind": "enum", "name": "E",
                                                            "variants": [{"name": "A"}, {"name": "A"}]}]})
    with pytest.raises(ValidationError):
        ParsedCrate.model_validate({"name": "c", "unexpected": True})


def test_doc_hidden_detection():
    tree = ParsedCrate.model_validate({"name": "c", "items": [
        {"kind": "fn", "name": "f", "attrs": [{"name": "doc", "args": [{"name": "hidden"}]}]},
        {"kind": "fn", "name": "g", "attrs": [{"name": "doc", "value": "hidden"}]},
    ]})
    assert is_doc_hidden(tree.items[0].attrs)
    assert not is_doc_hidden(tree.items[1].attrs)


def test_load_tree_from_path(tmp_path):
    path = tmp_path / "tree.json"
    path.write_text(json.dumps(create_tree_dict()), encoding="utf-8")

    tree = load_tree_from_path(path)
    assert tree.version == "1.2.0"
    assert tree == load_tree_from_dict(create_tree_dict())


def test_missing_file_is_parse_error(tmp_path):
    missing = tmp_path / "absent.json"
    with pytest.raises(ParseError) as excinfo:
        load_tree_from_path(missing)
    assert excinfo.value.path == str(missing)


def test_invalid_json_is_parse_error(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ParseError, match="Invalid JSON"):
        load_tree_from_path(path)


def test_malformed_tree_names_location():
    data = create_tree_dict()
    data["items"][0]["params"][0]["type"] = 7
    with pytest.raises(ParseError) as excinfo:
        load_tree_from_dict(data, origin="old.json")
    assert excinfo.value.path.startswith("old.json:items.0")


def test_non_object_is_parse_error():
    with pytest.raises(ParseError):
        load_tree_from_dict(["not", "a", "tree"])
