"""Aggregation of classified changes into one result.

The overall bump is the maximum severity, and the change list is sorted by
severity (descending), then path, change kind and rule. Both are independent
of input order, so results computed per shard combine with ``merge`` in any
order and grouping.
"""

from dataclasses import dataclass
from itertools import chain
from typing import Iterable, Tuple

from .classify import ClassifiedChange
from .model import ExtractionWarning, Severity


@dataclass(frozen=True, order=True)
class Gap:
    """A change the rule table could not classify (classified Major)."""

    path: str
    detail: str


@dataclass(frozen=True)
class ClassificationResult:
    overall: Severity
    changes: Tuple[ClassifiedChange, ...] = ()
    warnings: Tuple[ExtractionWarning, ...] = ()
    gaps: Tuple[Gap, ...] = ()

    def __len__(self) -> int:
        return len(self.changes)

    def count_by_severity(self) -> dict:
        counts = {severity.label: 0 for severity in Severity}
        for change in self.changes:
            counts[change.severity.label] += 1
        return counts


def _change_order(change: ClassifiedChange):
    return (-int(change.severity), change.path, change.change.kind.value, change.rule)


def _warning_order(warning: ExtractionWarning):
    return (warning.side, warning.path, warning.code.value, warning.message)


def aggregate(
    classified: Iterable[ClassifiedChange],
    warnings: Iterable[ExtractionWarning] = (),
    gaps: Iterable[Gap] = (),
) -> ClassificationResult:
    ordered = tuple(sorted(classified, key=_change_order))
    overall = max((change.severity for change in ordered), default=Severity.NONE)
    return ClassificationResult(
        overall=overall,
        changes=ordered,
        warnings=tuple(sorted(warnings, key=_warning_order)),
        gaps=tuple(sorted(gaps)),
    )


def merge(*results: ClassificationResult) -> ClassificationResult:
    """Combine shard results; associative and commutative."""
    return aggregate(
        chain.from_iterable(r.changes for r in results),
        chain.from_iterable(r.warnings for r in results),
        chain.from_iterable(r.gaps for r in results),
    )
