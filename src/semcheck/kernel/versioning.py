"""Release version arithmetic with Cargo's compatibility convention.

Cargo treats the leftmost non-zero component of a version as its major
component: ``0.3.1 -> 0.4.0`` is a breaking release, ``0.3.1 -> 0.3.2`` is
compatible, and for ``0.0.x`` every release is breaking.
"""

from packaging.version import InvalidVersion, Version

from .errors import InvalidVersionError
from .model import Severity


def parse_version(text: str) -> Version:
    try:
        return Version(text)
    except InvalidVersion:
        raise InvalidVersionError(f"Invalid version '{text}'") from None


def _release(version: Version) -> tuple:
    return (version.major, version.minor, version.micro)


def actual_bump(old_version: str, new_version: str) -> Severity:
    """Bump a version pair represents.

    Raises:
        InvalidVersionError: if either version cannot be parsed, or the new
            version is lower than the old one
    """
    old, new = parse_version(old_version), parse_version(new_version)
    if new < old:
        raise InvalidVersionError(f"New version '{new_version}' is lower than '{old_version}'")
    if new == old:
        return Severity.NONE

    old_release, new_release = _release(old), _release(new)
    major_position = next((i for i, part in enumerate(old_release) if part != 0), 2)
    changed = next((i for i in range(3) if old_release[i] != new_release[i]), None)
    if changed is None:
        # pre-release, post-release or local segment only
        return Severity.PATCH
    if changed <= major_position:
        return Severity.MAJOR
    if changed == major_position + 1:
        return Severity.MINOR
    return Severity.PATCH


def satisfies(actual: Severity, required: Severity) -> bool:
    return actual >= required
