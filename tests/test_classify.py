"""Classification scenarios: one change in, one severity and reason out."""

import pytest

from semcheck.api import classify
from semcheck.codes import WarningCode
from semcheck.kernel.classify import ClassifyOptions, classify_change, missing_rules
from semcheck.kernel.diff import Change, ChangeKind, DeltaKind
from semcheck.kernel.errors import ClassificationGap
from semcheck.kernel.extract import extract
from semcheck.kernel.model import Severity
from semcheck.kernel.tree import ParsedCrate


def create_crate(*items):
    return {"name": "demo", "items": list(items)}


def fn(name, params=(), ret=None, vis="pub", **extra):
    return {
        "kind": "fn",
        "name": name,
        "vis": vis,
        "params": [{"name": f"a{i}", "type": t} for i, t in enumerate(params)],
        "ret": ret,
        **extra,
    }


def struct(name, fields=(), vis="pub", **extra):
    return {
        "kind": "struct",
        "name": name,
        "vis": vis,
        "fields": [{"name": n, "type": t, "vis": v} for n, t, v in fields],
        **extra,
    }


def enum(name, variants, **extra):
    return {"kind": "enum", "name": name, "vis": "pub", "variants": [{"name": v} for v in variants], **extra}


def trait(name, *methods, **extra):
    return {"kind": "trait", "name": name, "vis": "pub", "items": list(methods), **extra}


def method(name, has_body=False, **extra):
    return {"kind": "fn", "name": name, "receiver": "&self", "has_body": has_body, **extra}


NON_EXHAUSTIVE = {"name": "non_exhaustive"}
SEALED = {"name": "sealed"}
DEPRECATED = {"name": "deprecated"}


def compare(old_items, new_items, **config):
    """Classify old_items -> new_items; return the result."""
    return classify(create_crate(*old_items), create_crate(*new_items), config or None)


def only_change(result):
    assert len(result.changes) == 1, [c.path for c in result.changes]
    return result.changes[0]


# ---------------------------------------------------------------------------
# Core scenarios
# ---------------------------------------------------------------------------

def test_parameter_added_is_major():
    result = compare([fn("f", ["i32"])], [fn("f", ["i32", "i32"])])

    change = only_change(result)
    assert change.path == "demo::f"
    assert change.change.kind is ChangeKind.MODIFIED
    assert change.severity is Severity.MAJOR
    assert "parameter count changed" in change.reason
    assert result.overall is Severity.MAJOR


def test_new_function_is_minor():
    result = compare([fn("f")], [fn("f"), fn("g")])

    change = only_change(result)
    assert change.change.kind is ChangeKind.ADDED
    assert change.severity is Severity.MINOR
    assert change.rule == "function:added"
    assert result.overall is Severity.MINOR


def test_variant_added_depends_on_non_exhaustive():
    marked = compare(
        [enum("E", ["A"], attrs=[NON_EXHAUSTIVE])],
        [enum("E", ["A", "B"], attrs=[NON_EXHAUSTIVE])],
    )
    plain = compare([enum("E", ["A"])], [enum("E", ["A", "B"])])

    assert only_change(marked).severity is Severity.MINOR
    assert only_change(plain).severity is Severity.MAJOR
    assert only_change(plain).rule == "variant_added:major"


def test_identical_trees_have_no_changes():
    items = [fn("f", ["i32"]), struct("S", [("x", "u8", "pub")]), enum("E", ["A"])]
    result = compare(items, items)

    assert result.changes == ()
    assert result.overall is Severity.NONE


def test_required_trait_method_added_is_major():
    result = compare([trait("T", method("a"))], [trait("T", method("a"), method("b"))])

    change = only_change(result)
    assert change.severity is Severity.MAJOR
    assert change.rule == "trait_method_added:major"


# ---------------------------------------------------------------------------
# Traits
# ---------------------------------------------------------------------------

def test_defaulted_trait_method_added_is_minor():
    result = compare([trait("T", method("a"))], [trait("T", method("a"), method("b", has_body=True))])
    assert only_change(result).severity is Severity.MINOR


def test_required_method_added_to_sealed_trait_is_minor():
    result = compare(
        [trait("T", method("a"), attrs=[SEALED])],
        [trait("T", method("a"), method("b"), attrs=[SEALED])],
    )
    assert only_change(result).severity is Severity.MINOR


def test_trait_becoming_sealed_is_major():
    result = compare([trait("T")], [trait("T", attrs=[SEALED])])
    assert only_change(result).rule == "sealed_added:major"


def test_default_body_removed_is_major():
    result = compare([trait("T", method("a", has_body=True))], [trait("T", method("a"))])
    assert only_change(result).rule == "default_body_removed:major"


def test_trait_method_bound_widened_is_major():
    old = trait("T", method("a", generics={"params": [{"name": "X", "bounds": ["Clone + Send"]}]}))
    new = trait("T", method("a", generics={"params": [{"name": "X", "bounds": ["Clone"]}]}))
    result = compare([old], [new])

    change = only_change(result)
    assert change.severity is Severity.MAJOR
    assert change.details[0].delta.method == "a"


def test_supertrait_added_is_major_unless_sealed():
    open_result = compare([trait("T")], [trait("T", supertraits=["Clone"])])
    sealed_result = compare(
        [trait("T", attrs=[SEALED])],
        [trait("T", supertraits=["Clone"], attrs=[SEALED])],
    )
    assert only_change(open_result).severity is Severity.MAJOR
    assert only_change(sealed_result).severity is Severity.MINOR


# ---------------------------------------------------------------------------
# Functions and generics
# ---------------------------------------------------------------------------

def test_function_bound_widened_is_minor_and_narrowed_major():
    loose = fn("f", ["T"], generics={"params": [{"name": "T", "bounds": ["Clone"]}]})
    tight = fn("f", ["T"], generics={"params": [{"name": "T", "bounds": ["Clone + Debug"]}]})

    assert only_change(compare([tight], [loose])).severity is Severity.MINOR
    assert only_change(compare([loose], [tight])).severity is Severity.MAJOR


def test_maybe_sized_bound_works_in_reverse():
    sized = fn("f", ["&T"], generics={"params": [{"name": "T"}]})
    unsized = fn("f", ["&T"], generics={"params": [{"name": "T", "bounds": ["?Sized"]}]})

    assert only_change(compare([sized], [unsized])).rule == "bound_widened:minor"
    assert only_change(compare([unsized], [sized])).rule == "bound_narrowed:major"


def test_generic_with_default_added_is_minor():
    old = struct("Buf", [("data", "Vec<u8>", "pub")], generics={"params": [{"name": "T"}]})
    new = struct(
        "Buf",
        [("data", "Vec<u8>", "pub")],
        generics={"params": [{"name": "T"}, {"name": "A", "default": "Global"}]},
    )
    assert only_change(compare([old], [new])).severity is Severity.MINOR


def test_generic_without_default_added_is_major():
    old = fn("f")
    new = fn("f", generics={"params": [{"name": "T"}]})
    assert only_change(compare([old], [new])).rule == "generic_added:major"


def test_return_type_change_is_major():
    assert only_change(compare([fn("f", ret="u8")], [fn("f", ret="u16")])).rule == "return_type_changed:major"


def test_lifetime_renames_are_not_changes():
    old = fn("first", ["&'a str"], "&'a str")
    new = fn("first", ["&'s str"], "&'s str")
    assert compare([old], [new]).changes == ()


def test_unsafe_and_const_changes():
    assert only_change(compare([fn("f")], [fn("f", unsafe=True)])).severity is Severity.MAJOR
    assert only_change(compare([fn("f", unsafe=True)], [fn("f")])).severity is Severity.MINOR
    assert only_change(compare([fn("f")], [fn("f", const=True)])).severity is Severity.MINOR
    assert only_change(compare([fn("f", const=True)], [fn("f")])).severity is Severity.MAJOR


# ---------------------------------------------------------------------------
# Structs and enums
# ---------------------------------------------------------------------------

def test_public_field_added_to_exhaustive_struct_is_major():
    old = struct("S", [("x", "u8", "pub")])
    new = struct("S", [("x", "u8", "pub"), ("y", "u8", "pub")])
    assert only_change(compare([old], [new])).severity is Severity.MAJOR


def test_public_field_added_to_non_exhaustive_struct_is_minor():
    old = struct("S", [("x", "u8", "pub")], attrs=[NON_EXHAUSTIVE])
    new = struct("S", [("x", "u8", "pub"), ("y", "u8", "pub")], attrs=[NON_EXHAUSTIVE])
    assert only_change(compare([old], [new])).severity is Severity.MINOR


def test_struct_with_private_field_behaves_non_exhaustive():
    old = struct("S", [("x", "u8", "pub"), ("_p", "u8", "private")])
    new = struct("S", [("x", "u8", "pub"), ("_p", "u8", "private"), ("y", "u8", "pub")])
    assert only_change(compare([old], [new])).severity is Severity.MINOR


def test_private_field_only_change_is_patch():
    old = struct("S", [("x", "u8", "pub"), ("_p", "u8", "private")])
    new = struct("S", [("x", "u8", "pub"), ("_p", "u16", "private")])
    assert only_change(compare([old], [new])).severity is Severity.PATCH


def test_removing_last_private_field_is_minor():
    old = struct("S", [("a", "u8", "pub"), ("b", "u8", "private")])
    new = struct("S", [("a", "u8", "pub")])

    change = only_change(compare([old], [new]))
    assert change.severity is Severity.MINOR
    assert "built with a literal" in change.reason


def test_removing_one_of_several_private_fields_is_patch():
    old = struct("S", [("a", "u8", "pub"), ("b", "u8", "private"), ("c", "u8", "private")])
    new = struct("S", [("a", "u8", "pub"), ("b", "u8", "private")])
    assert only_change(compare([old], [new])).severity is Severity.PATCH


def test_removing_last_private_field_of_non_exhaustive_struct_is_patch():
    old = struct("S", [("a", "u8", "pub"), ("b", "u8", "private")], attrs=[NON_EXHAUSTIVE])
    new = struct("S", [("a", "u8", "pub")], attrs=[NON_EXHAUSTIVE])
    assert only_change(compare([old], [new])).severity is Severity.PATCH


def test_field_removed_and_narrowed_are_major():
    old = struct("S", [("x", "u8", "pub"), ("y", "u8", "pub")])
    removed = struct("S", [("x", "u8", "pub")])
    narrowed = struct("S", [("x", "u8", "pub"), ("y", "u8", "pub(crate)")])

    assert only_change(compare([old], [removed])).rule == "field_removed:major"
    assert only_change(compare([old], [narrowed])).rule == "field_visibility_narrowed:major"
    assert only_change(compare([narrowed], [old])).rule == "field_visibility_widened:minor"


def test_non_exhaustive_marker_added_is_major():
    result = compare([enum("E", ["A"])], [enum("E", ["A"], attrs=[NON_EXHAUSTIVE])])
    assert only_change(result).rule == "non_exhaustive_added:major"


def test_variant_removed_is_major():
    assert only_change(compare([enum("E", ["A", "B"])], [enum("E", ["A"])])).severity is Severity.MAJOR


# ---------------------------------------------------------------------------
# Item-level changes
# ---------------------------------------------------------------------------

def test_removed_item_is_major():
    change = only_change(compare([fn("f"), fn("g")], [fn("f")]))
    assert change.change.kind is ChangeKind.REMOVED
    assert change.rule == "function:removed"
    assert change.severity is Severity.MAJOR


def test_visibility_narrowed_through_reexport_is_major():
    old = [struct("S")]
    new = [
        {"kind": "mod", "name": "inner", "items": [struct("S", vis="pub(crate)")]},
        {"kind": "use", "path": "inner::S", "vis": "pub"},
    ]
    change = only_change(compare(old, new))
    assert change.rule == "visibility_narrowed:major"


def test_kind_change_is_major_and_flags_alias_ambiguity():
    old = [struct("Id", [("0", "u32", "pub")], shape="tuple")]
    new = [{"kind": "type", "name": "Id", "vis": "pub", "target": "u32"}]
    result = compare(old, new)

    change = only_change(result)
    assert change.change.kind is ChangeKind.KIND_CHANGED
    assert change.severity is Severity.MAJOR
    assert [w.code for w in result.warnings] == [WarningCode.AMBIGUOUS_KIND_CHANGE]


def test_deprecation_is_patch_by_default_and_configurable():
    old, new = [fn("f")], [fn("f", attrs=[DEPRECATED])]

    assert compare(old, new).overall is Severity.PATCH
    quiet = compare(old, new, treat_deprecation_as="none")
    assert only_change(quiet).severity is Severity.NONE
    assert quiet.overall is Severity.NONE


def test_doc_change_is_patch():
    old = [fn("f", attrs=[{"name": "doc", "value": "Adds."}])]
    new = [fn("f", attrs=[{"name": "doc", "value": "Adds two numbers."}])]
    assert only_change(compare(old, new)).rule == "docs_changed:patch"


def test_cfg_coverage_changes():
    everywhere = fn("f")
    unix_only = fn("f", attrs=[{"name": "cfg", "args": [{"name": "unix"}]}])

    assert only_change(compare([everywhere], [unix_only])).rule == "cfg_narrowed:major"
    assert only_change(compare([unix_only], [everywhere])).rule == "cfg_widened:minor"


def test_derived_trait_impl_removed_is_major():
    old = [struct("P", attrs=[{"name": "derive", "args": [{"name": "Clone"}]}])]
    new = [struct("P")]
    change = only_change(compare(old, new))

    assert change.path == "impl core::clone::Clone for demo::P"
    assert change.rule == "trait_impl:removed"


def test_const_to_static_is_minor():
    old = [{"kind": "const", "name": "MAX", "vis": "pub", "type": "u32"}]
    new = [{"kind": "static", "name": "MAX", "vis": "pub", "type": "u32"}]
    assert only_change(compare(old, new)).severity is Severity.MINOR
    assert only_change(compare(new, old)).severity is Severity.MAJOR


def test_const_to_static_mut_is_major_both_ways():
    old = [{"kind": "const", "name": "MAX", "vis": "pub", "type": "u32"}]
    new = [{"kind": "static", "name": "MAX", "vis": "pub", "type": "u32", "mutable": True}]

    forward = only_change(compare(old, new))
    assert forward.severity is Severity.MAJOR
    assert forward.rule == "mutability_changed:major"
    assert only_change(compare(new, old)).severity is Severity.MAJOR


def test_static_mutability_change_is_major():
    old = [{"kind": "static", "name": "COUNT", "vis": "pub", "type": "u32"}]
    new = [{"kind": "static", "name": "COUNT", "vis": "pub", "type": "u32", "mutable": True}]
    assert only_change(compare(old, new)).severity is Severity.MAJOR


def test_macro_arm_removed_is_major():
    old = [{"kind": "macro", "name": "m", "attrs": [{"name": "macro_export"}], "arms": ["()", "($e:expr)"]}]
    new = [{"kind": "macro", "name": "m", "attrs": [{"name": "macro_export"}], "arms": ["()"]}]
    change = only_change(compare(old, new))
    assert change.path == "demo::m!"
    assert change.severity is Severity.MAJOR


def test_modified_reason_lists_top_severity_deltas():
    old = [fn("f", ["u8"], attrs=[{"name": "doc", "value": "a"}])]
    new = [fn("f", ["u16"], attrs=[{"name": "doc", "value": "b"}])]
    change = only_change(compare(old, new))

    assert change.severity is Severity.MAJOR
    assert "documentation changed" not in change.reason
    assert {v.delta.kind for v in change.details} == {DeltaKind.PARAM_TYPE_CHANGED, DeltaKind.DOCS_CHANGED}


def test_changes_ordered_by_severity_then_path():
    old = [fn("a"), fn("b", ["u8"]), fn("c")]
    new = [fn("b", ["u16"]), fn("c", attrs=[DEPRECATED]), fn("d")]
    result = compare(old, new)

    assert [(c.path, c.severity) for c in result.changes] == [
        ("demo::a", Severity.MAJOR),
        ("demo::b", Severity.MAJOR),
        ("demo::d", Severity.MINOR),
        ("demo::c", Severity.PATCH),
    ]


# ---------------------------------------------------------------------------
# Rule table
# ---------------------------------------------------------------------------

def test_rule_table_is_exhaustive():
    assert missing_rules() == []


def test_modified_change_without_deltas_is_a_gap():
    item = extract(ParsedCrate.model_validate(create_crate(fn("f")))).get("demo::f")
    change = Change("demo::f", ChangeKind.MODIFIED, before=item, after=item, deltas=())

    with pytest.raises(ClassificationGap) as excinfo:
        classify_change(change, ClassifyOptions())
    assert excinfo.value.path == "demo::f"
