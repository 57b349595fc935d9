"""Tests for the semcheck public API and its exit-code contract."""

import json

import pytest

import semcheck
from semcheck.api import (
    EXIT_FAILURE,
    EXIT_INSUFFICIENT_BUMP,
    EXIT_OK,
    build_report,
    check_release,
    classify,
    diff,
    extract,
    parse,
)
from semcheck.contracts import Report
from semcheck.kernel.diff import ChangeKind
from semcheck.kernel.errors import ConfigError, ParseError, UnresolvedReexportError
from semcheck.kernel.model import ApiModel, Severity
from semcheck.kernel.tree import ParsedCrate


def fn(name, params=(), ret=None):
    return {
        "kind": "fn",
        "name": name,
        "vis": "pub",
        "params": [{"name": f"a{i}", "type": t} for i, t in enumerate(params)],
        "ret": ret,
    }


def create_crate(*items, version=None):
    crate = {"name": "demo", "items": list(items)}
    if version is not None:
        crate["version"] = version
    return crate


def write_tree(tmp_path, name, tree):
    path = tmp_path / name
    path.write_text(json.dumps(tree), encoding="utf-8")
    return path


def test_parse_accepts_path_str_dict_and_tree(tmp_path):
    tree = create_crate(fn("f"))
    path = write_tree(tmp_path, "tree.json", tree)

    from_path = parse(path)
    assert isinstance(from_path, ParsedCrate)
    assert parse(str(path)) == from_path
    assert parse(tree) == from_path
    assert parse(from_path) is from_path


def test_parse_missing_file(tmp_path):
    with pytest.raises(ParseError) as excinfo:
        parse(tmp_path / "absent.json")
    assert "absent.json" in excinfo.value.path


def test_extract_and_diff_wrappers():
    old = extract(create_crate(fn("f"), fn("g")))
    new = extract(create_crate(fn("f", ["u8"])))

    assert isinstance(old, ApiModel)
    changes = diff(old, new)
    assert [(c.path, c.kind) for c in changes] == [
        ("demo::f", ChangeKind.MODIFIED),
        ("demo::g", ChangeKind.REMOVED),
    ]


def test_extract_honours_fatal_reexport_config():
    tree = create_crate({"kind": "use", "path": "crate::missing::Thing", "vis": "pub"})

    assert extract(tree).warnings
    with pytest.raises(UnresolvedReexportError):
        extract(tree, {"fail_on_unresolved_reexport": True})


def test_classify_with_dict_config():
    deprecated = dict(fn("f"), attrs=[{"name": "deprecated"}])
    result = classify(create_crate(fn("f")), create_crate(deprecated), {"treat_deprecation_as": "none"})

    assert result.overall is Severity.NONE
    assert len(result) == 1


def test_classify_rejects_unsupported_config_type():
    with pytest.raises(ConfigError):
        classify(create_crate(), create_crate(), config=["shard_count", 2])


def test_check_release_ok(tmp_path):
    old = write_tree(tmp_path, "old.json", create_crate(fn("f"), version="1.2.0"))
    new = write_tree(tmp_path, "new.json", create_crate(fn("f"), fn("g"), version="1.3.0"))

    code, report = check_release(old, new)

    assert code == EXIT_OK
    assert report.verdict == "ok"
    assert report.required_bump == "minor"
    assert report.actual_bump == "minor"
    assert [e.path for e in report.entries] == ["demo::g"]


def test_check_release_insufficient_bump(tmp_path):
    old = write_tree(tmp_path, "old.json", create_crate(fn("f"), fn("g")))
    new = write_tree(tmp_path, "new.json", create_crate(fn("f")))

    code, report = check_release(old, new, old_version="1.0.0", new_version="1.0.1")

    assert code == EXIT_INSUFFICIENT_BUMP
    assert report.verdict == "insufficient"
    assert report.required_bump == "major"
    assert report.actual_bump == "patch"
    assert report.entries[0].rule == "function:removed"


def test_check_release_zero_major_convention():
    code, report = check_release(
        create_crate(fn("f"), version="0.3.1"),
        create_crate(version="0.4.0"),
    )
    assert code == EXIT_OK
    assert report.actual_bump == "major"


def test_check_release_without_versions_is_unchecked():
    code, report = check_release(create_crate(fn("f")), create_crate())

    assert code == EXIT_OK
    assert report.verdict == "unchecked"
    assert report.required_bump == "major"
    assert report.actual_bump is None


def test_check_release_missing_tree(tmp_path):
    new = write_tree(tmp_path, "new.json", create_crate())

    code, report = check_release(tmp_path / "old.json", new)

    assert code == EXIT_FAILURE
    assert report.verdict == "error"
    assert report.required_bump is None
    assert report.entries == []
    assert report.error["code"] == "PARSE_ERROR"
    assert report.error["path"].endswith("old.json")


def test_check_release_malformed_tree():
    code, report = check_release(create_crate(), {"name": "demo", "items": [{"kind": "fn"}]})

    assert code == EXIT_FAILURE
    assert report.error["code"] == "PARSE_ERROR"
    assert report.error["path"].startswith("<dict>:items.0")


def test_check_release_malformed_signature():
    broken = fn("f", ["Vec<$T>"])
    code, report = check_release(create_crate(), create_crate(broken))

    assert code == EXIT_FAILURE
    assert report.verdict == "error"
    assert report.error["code"] == "INVALID_SIGNATURE"
    assert report.error["path"] == "demo::f"


def test_check_release_accepts_non_ascii_identifiers():
    old = create_crate({"kind": "struct", "name": "Größe", "vis": "pub"}, version="1.0.0")
    new = create_crate(
        {"kind": "struct", "name": "Größe", "vis": "pub"},
        fn("messen", ["Größe"]),
        version="1.1.0",
    )
    code, report = check_release(old, new)

    assert code == EXIT_OK
    assert [e.path for e in report.entries] == ["demo::messen"]


def test_check_release_downgrade_is_an_error():
    code, report = check_release(create_crate(version="2.0.0"), create_crate(version="1.9.0"))

    assert code == EXIT_FAILURE
    assert report.crate == "demo"
    assert report.error["code"] == "INVALID_VERSION"


def test_check_release_invalid_config():
    code, report = check_release(create_crate(), create_crate(), {"shard_count": 0})

    assert code == EXIT_FAILURE
    assert report.error["code"] == "INVALID_CONFIG"
    assert report.error["path"] == "shard_count"


def test_report_warnings_carry_side():
    tree = create_crate({"kind": "use", "path": "crate::missing::Thing", "vis": "pub"})
    _, report = check_release(tree, create_crate())

    assert [(w.code, w.side) for w in report.warnings] == [("UNRESOLVED_REEXPORT", "old")]


def test_canonical_json_is_stable_and_sorted():
    old = create_crate(fn("b"), fn("a"), version="1.0.0")
    new = create_crate(fn("c"), version="2.0.0")

    _, first = check_release(old, new)
    _, second = check_release(old, new, config={"shard_count": 3})
    text = first.to_canonical_json()

    assert text == second.to_canonical_json()
    assert " " not in text.split('"entries"')[0]
    payload = json.loads(text)
    assert list(payload) == sorted(payload)
    assert [e["path"] for e in payload["entries"]] == ["demo::a", "demo::b", "demo::c"]
    assert Report.model_validate(payload) == first


def test_build_report_without_versions():
    result = classify(create_crate(), create_crate(fn("f")))
    report = build_report(result, "demo")

    assert report.verdict == "unchecked"
    assert report.entries[0].change_kind == "added"
    assert report.entries[0].item_kind == "function"
    assert report.entries[0].severity == "minor"


def test_public_exports():
    for name in semcheck.__all__:
        assert hasattr(semcheck, name), name
    assert semcheck.check_release is check_release
    assert isinstance(semcheck.__version__, str)
