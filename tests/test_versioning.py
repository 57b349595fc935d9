"""Tests for release version arithmetic."""

import pytest

from semcheck.kernel.errors import InvalidVersionError
from semcheck.kernel.model import Severity
from semcheck.kernel.versioning import actual_bump, satisfies


@pytest.mark.parametrize("old,new,expected", [
    ("1.2.3", "2.0.0", Severity.MAJOR),
    ("1.2.3", "1.3.0", Severity.MINOR),
    ("1.2.3", "1.2.4", Severity.PATCH),
    ("1.2.3", "1.2.3", Severity.NONE),
    ("0.3.1", "0.4.0", Severity.MAJOR),
    ("0.3.1", "0.3.2", Severity.MINOR),
    ("0.0.3", "0.0.4", Severity.MAJOR),
    ("0.3.1", "1.0.0", Severity.MAJOR),
    ("1.0.0rc1", "1.0.0", Severity.PATCH),
])
def test_actual_bump(old, new, expected):
    assert actual_bump(old, new) is expected


def test_downgrade_rejected():
    with pytest.raises(InvalidVersionError, match="lower"):
        actual_bump("2.0.0", "1.9.9")


def test_invalid_version_rejected():
    with pytest.raises(InvalidVersionError):
        actual_bump("one", "2.0.0")


def test_satisfies():
    assert satisfies(Severity.MAJOR, Severity.MINOR)
    assert satisfies(Severity.PATCH, Severity.PATCH)
    assert not satisfies(Severity.PATCH, Severity.MINOR)
    assert satisfies(Severity.NONE, Severity.NONE)
