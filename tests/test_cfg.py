"""Tests for #[cfg] predicates and coverage comparison."""

import pytest

from semcheck.kernel import cfg
from semcheck.kernel.errors import InvalidCfgError
from semcheck.kernel.tree import MetaItem

UNIX = cfg.TargetProperty("target_family", "unix")
WINDOWS = cfg.TargetProperty("target_family", "windows")
STD = cfg.Feature("std")


def meta(name, value=None, *args) -> MetaItem:
    return MetaItem(name=name, value=value, args=list(args))


def test_cfg_from_attrs():
    attrs = [
        meta("doc", "text"),
        meta("cfg", None, meta("all", None, meta("unix"), meta("feature", "std"))),
    ]
    assert cfg.cfg_from_attrs(attrs) == cfg.All((UNIX, STD))
    assert cfg.cfg_from_attrs([]) == cfg.TRUE


def test_target_keys_and_flags():
    assert cfg.cfg_from_meta(meta("target_os", "linux")) == cfg.TargetProperty("target_os", "linux")
    assert cfg.cfg_from_meta(meta("test")) == cfg.Flag("test")
    assert cfg.cfg_from_meta(meta("not", None, meta("windows"))) == cfg.Not(WINDOWS)


def test_invalid_cfg_rejected():
    with pytest.raises(InvalidCfgError):
        cfg.cfg_from_meta(meta("not", None, meta("unix"), meta("windows")))
    with pytest.raises(InvalidCfgError):
        cfg.cfg_from_attrs([meta("cfg")])


def test_simplify():
    assert cfg.conjoin(cfg.TRUE, STD) == STD
    assert cfg.union(STD, cfg.TRUE) == cfg.TRUE
    assert cfg.conjoin(STD, STD) == STD
    assert cfg.simplify(cfg.Not(cfg.Not(STD))) == STD
    assert cfg.simplify(cfg.All((cfg.All((UNIX, STD)), STD))) == cfg.All((UNIX, STD))


def test_target_values_are_mutually_exclusive():
    assert not cfg.intersects(UNIX, WINDOWS)
    assert cfg.intersects(UNIX, STD)
    assert cfg.intersects(cfg.Feature("a"), cfg.Feature("b"))


def test_subset_and_equivalence():
    assert cfg.subset(cfg.All((UNIX, STD)), UNIX)
    assert not cfg.subset(UNIX, cfg.All((UNIX, STD)))
    assert cfg.equivalent(cfg.AnyOf((UNIX, STD)), cfg.AnyOf((STD, UNIX)))
    assert cfg.equivalent(cfg.Not(cfg.AnyOf((UNIX, STD))), cfg.All((cfg.Not(UNIX), cfg.Not(STD))))


@pytest.mark.parametrize("before,after,expected", [
    (cfg.TRUE, cfg.TRUE, None),
    (cfg.TRUE, UNIX, "narrowed"),
    (UNIX, cfg.TRUE, "widened"),
    (UNIX, cfg.AnyOf((UNIX, WINDOWS)), "widened"),
    (UNIX, WINDOWS, "changed"),
    (cfg.All((UNIX, STD)), cfg.All((STD, UNIX)), None),
])
def test_compare_coverage(before, after, expected):
    assert cfg.compare_coverage(before, after) == expected


def test_describe():
    assert cfg.describe(cfg.TRUE) == "always available"
    assert cfg.describe(cfg.All((UNIX, STD))) == '#[cfg(all(target_family="unix", feature="std"))]'
