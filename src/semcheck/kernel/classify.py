"""Severity classification of API changes.

Every change is classified through two tables: ``_CHANGE_RULES`` keyed on
``(ChangeKind, ItemKind)``, and ``_DELTA_RULES`` keyed on ``DeltaKind`` for the
deltas of a Modified change. A Modified change takes the highest severity of
its deltas. ``missing_rules()`` checks both tables against the full variant
space; a lookup miss at runtime raises ``ClassificationGap``.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from .diff import Change, ChangeKind, Delta, DeltaKind
from .errors import ClassificationGap
from .model import EnumDef, ItemKind, Severity, StructDef

MAJOR = Severity.MAJOR
MINOR = Severity.MINOR
PATCH = Severity.PATCH


@dataclass(frozen=True)
class ClassifyOptions:
    """Severity knobs for changes that never affect compilation."""

    treat_deprecation_as: Severity = Severity.PATCH
    treat_docs_as: Severity = Severity.PATCH


@dataclass(frozen=True)
class DeltaVerdict:
    delta: Delta
    severity: Severity
    rule: str
    reason: str


@dataclass(frozen=True)
class ClassifiedChange:
    change: Change
    severity: Severity
    reason: str
    rule: str
    details: Tuple[DeltaVerdict, ...] = ()

    @property
    def path(self) -> str:
        return self.change.path


@dataclass(frozen=True)
class _Context:
    change: Change
    options: ClassifyOptions

    @property
    def sealed(self) -> bool:
        """Whether downstream crates could implement the trait before the change."""
        return self.change.before is not None and self.change.before.sealed

    @property
    def before_payload(self):
        return self.change.before.payload

    @property
    def after_payload(self):
        return self.change.after.payload


Verdict = Tuple[Severity, str]
DeltaRule = Callable[[Delta, _Context], Verdict]


def _fixed(severity: Severity, reason: str) -> DeltaRule:
    return lambda delta, ctx: (severity, reason)


# ---------------------------------------------------------------------------
# Delta rules with context
# ---------------------------------------------------------------------------

def _signature(reason: str) -> DeltaRule:
    return _fixed(MAJOR, reason)


def _unsafe_removed(delta: Delta, ctx: _Context) -> Verdict:
    if delta.method is not None:
        return MAJOR, "trait method no longer unsafe; unsafe implementations stop compiling"
    if ctx.change.item_kind is ItemKind.TRAIT:
        if ctx.sealed:
            return MINOR, "sealed trait no longer unsafe"
        return MAJOR, "trait no longer unsafe; existing `unsafe impl` blocks stop compiling"
    return MINOR, "function no longer unsafe"


def _const_added(delta: Delta, ctx: _Context) -> Verdict:
    return MINOR, "function became const"


def _default_body_removed(delta: Delta, ctx: _Context) -> Verdict:
    if ctx.sealed:
        return MINOR, "default body removed from a method of a sealed trait"
    return MAJOR, "default body removed; implementors must now provide the method"


def _generic_added(delta: Delta, ctx: _Context) -> Verdict:
    if delta.method is not None:
        return MAJOR, "generic parameter added to a trait method"
    if delta.after.default is not None:
        return MINOR, "generic parameter with a default added"
    return MAJOR, "generic parameter without a default added"


def _bound_widened(delta: Delta, ctx: _Context) -> Verdict:
    if delta.method is not None:
        return MAJOR, "trait method bound relaxed; implementations must match the new signature"
    return MINOR, "bound relaxed"


def _effectively_non_exhaustive(payload: StructDef) -> bool:
    return payload.non_exhaustive or payload.has_hidden_field


def _field_added(delta: Delta, ctx: _Context) -> Verdict:
    payload = ctx.before_payload
    if delta.after.is_public:
        if _effectively_non_exhaustive(payload):
            return MINOR, "public field added to a struct that cannot be built with a literal"
        return MAJOR, "public field added; struct literals and exhaustive patterns break"
    if _effectively_non_exhaustive(payload):
        return PATCH, "non-public field added"
    return MAJOR, "non-public field added to an all-public struct; struct literals break"


def _field_removed(delta: Delta, ctx: _Context) -> Verdict:
    if delta.before.is_public:
        return MAJOR, "public field removed"
    if not _effectively_non_exhaustive(ctx.after_payload):
        return MINOR, "last non-public field removed; struct can now be built with a literal"
    return PATCH, "non-public field removed"


def _field_renamed(delta: Delta, ctx: _Context) -> Verdict:
    if delta.before.is_public or delta.after.is_public:
        return MAJOR, "public field renamed or moved"
    return PATCH, "non-public field renamed"


def _field_type_changed(delta: Delta, ctx: _Context) -> Verdict:
    if delta.before.is_public:
        return MAJOR, "public field type changed"
    return PATCH, "non-public field type changed"


def _field_visibility_narrowed(delta: Delta, ctx: _Context) -> Verdict:
    if delta.before.is_public:
        return MAJOR, "field visibility narrowed from public"
    return PATCH, "non-public field visibility narrowed"


def _field_visibility_widened(delta: Delta, ctx: _Context) -> Verdict:
    if delta.after.is_public:
        return MINOR, "field became public"
    return PATCH, "non-public field visibility widened"


def _variant_added(delta: Delta, ctx: _Context) -> Verdict:
    payload: EnumDef = ctx.before_payload
    if payload.non_exhaustive:
        return MINOR, "variant added to a non-exhaustive enum"
    return MAJOR, "variant added to an exhaustive enum; exhaustive matches break"


def _variant_field_added(delta: Delta, ctx: _Context) -> Verdict:
    name = delta.member.split(".", 1)[0]
    payload: EnumDef = ctx.before_payload
    variant = next((v for v in payload.variants if v.name == name), None)
    if variant is not None and variant.non_exhaustive:
        return MINOR, "field appended to a non-exhaustive variant"
    return MAJOR, "field added to an enum variant; constructors and patterns break"


def _sealed_relaxed(minor: str, major: str) -> DeltaRule:
    def rule(delta: Delta, ctx: _Context) -> Verdict:
        if ctx.sealed:
            return MINOR, minor
        return MAJOR, major
    return rule


def _trait_method_added(delta: Delta, ctx: _Context) -> Verdict:
    if delta.after.has_default:
        return MINOR, "method with a default body added to trait"
    if ctx.sealed:
        return MINOR, "required method added to a sealed trait"
    return MAJOR, "required method added to trait; existing implementors break"


def _assoc_type_added(delta: Delta, ctx: _Context) -> Verdict:
    if delta.after.has_default:
        return MINOR, "associated type with a default added to trait"
    if ctx.sealed:
        return MINOR, "associated type added to a sealed trait"
    return MAJOR, "associated type added to trait; existing implementors break"


def _deprecation(reason: str) -> DeltaRule:
    return lambda delta, ctx: (ctx.options.treat_deprecation_as, reason)


def _docs(delta: Delta, ctx: _Context) -> Verdict:
    return ctx.options.treat_docs_as, "documentation changed"


_DELTA_RULES: Dict[DeltaKind, DeltaRule] = {
    DeltaKind.VISIBILITY_NARROWED: _fixed(MAJOR, "visibility narrowed from public to restricted"),
    DeltaKind.VISIBILITY_WIDENED: _fixed(MINOR, "visibility widened to public"),
    DeltaKind.DEPRECATION_ADDED: _deprecation("deprecation added"),
    DeltaKind.DEPRECATION_REMOVED: _deprecation("deprecation removed"),
    DeltaKind.DOCS_CHANGED: _docs,
    DeltaKind.CFG_NARROWED: _fixed(MAJOR, "available under fewer build configurations"),
    DeltaKind.CFG_WIDENED: _fixed(MINOR, "available under more build configurations"),
    DeltaKind.CFG_CHANGED: _fixed(MAJOR, "build configurations changed; some lose the item"),

    DeltaKind.PARAM_COUNT_CHANGED: _signature("parameter count changed"),
    DeltaKind.PARAM_TYPE_CHANGED: _signature("parameter type or order changed"),
    DeltaKind.RETURN_TYPE_CHANGED: _signature("return type changed"),
    DeltaKind.UNSAFE_ADDED: _fixed(MAJOR, "became unsafe; callers and implementors break"),
    DeltaKind.UNSAFE_REMOVED: _unsafe_removed,
    DeltaKind.CONST_ADDED: _const_added,
    DeltaKind.CONST_REMOVED: _fixed(MAJOR, "function no longer const; const contexts break"),
    DeltaKind.ABI_CHANGED: _fixed(MAJOR, "calling convention changed"),
    DeltaKind.DEFAULT_BODY_ADDED: _fixed(MINOR, "default body added to trait method"),
    DeltaKind.DEFAULT_BODY_REMOVED: _default_body_removed,

    DeltaKind.GENERIC_ADDED: _generic_added,
    DeltaKind.GENERIC_REMOVED: _fixed(MAJOR, "generic parameter removed"),
    DeltaKind.GENERIC_RENAMED: _fixed(MAJOR, "generic parameter renamed or reordered"),
    DeltaKind.GENERIC_KIND_CHANGED: _fixed(MAJOR, "generic parameter kind changed"),
    DeltaKind.GENERIC_DEFAULT_ADDED: _fixed(MINOR, "default added to generic parameter"),
    DeltaKind.GENERIC_DEFAULT_REMOVED: _fixed(MAJOR, "default removed from generic parameter"),
    DeltaKind.GENERIC_DEFAULT_CHANGED: _fixed(MAJOR, "generic parameter default changed"),
    DeltaKind.BOUND_NARROWED: _fixed(MAJOR, "bound tightened; some callers no longer satisfy it"),
    DeltaKind.BOUND_WIDENED: _bound_widened,

    DeltaKind.SHAPE_CHANGED: _fixed(MAJOR, "struct shape changed"),
    DeltaKind.NON_EXHAUSTIVE_ADDED: _fixed(MAJOR, "#[non_exhaustive] added"),
    DeltaKind.NON_EXHAUSTIVE_REMOVED: _fixed(MINOR, "#[non_exhaustive] removed"),
    DeltaKind.FIELD_ADDED: _field_added,
    DeltaKind.FIELD_REMOVED: _field_removed,
    DeltaKind.FIELD_RENAMED: _field_renamed,
    DeltaKind.FIELD_TYPE_CHANGED: _field_type_changed,
    DeltaKind.FIELD_VISIBILITY_NARROWED: _field_visibility_narrowed,
    DeltaKind.FIELD_VISIBILITY_WIDENED: _field_visibility_widened,
    DeltaKind.VARIANT_ADDED: _variant_added,
    DeltaKind.VARIANT_REMOVED: _fixed(MAJOR, "enum variant removed"),
    DeltaKind.VARIANT_RENAMED: _fixed(MAJOR, "enum variant renamed or moved"),
    DeltaKind.VARIANT_SHAPE_CHANGED: _fixed(MAJOR, "enum variant shape changed"),
    DeltaKind.VARIANT_FIELD_ADDED: _variant_field_added,
    DeltaKind.VARIANT_FIELD_REMOVED: _fixed(MAJOR, "field removed from enum variant"),
    DeltaKind.VARIANT_FIELD_CHANGED: _fixed(MAJOR, "enum variant field changed"),

    DeltaKind.SEALED_ADDED: _fixed(MAJOR, "trait became sealed; downstream implementations break"),
    DeltaKind.SEALED_REMOVED: _fixed(MINOR, "trait no longer sealed"),
    DeltaKind.TRAIT_METHOD_ADDED: _trait_method_added,
    DeltaKind.TRAIT_METHOD_REMOVED: _fixed(MAJOR, "trait method removed"),
    DeltaKind.ASSOC_TYPE_ADDED: _assoc_type_added,
    DeltaKind.ASSOC_TYPE_REMOVED: _fixed(MAJOR, "associated type removed"),
    DeltaKind.ASSOC_TYPE_BOUNDS_CHANGED: _fixed(MAJOR, "associated type bounds changed"),
    DeltaKind.ASSOC_TYPE_DEFAULT_ADDED: _fixed(MINOR, "default added to associated type"),
    DeltaKind.ASSOC_TYPE_DEFAULT_REMOVED: _sealed_relaxed(
        "default removed from associated type of a sealed trait",
        "default removed from associated type; implementors must now define it",
    ),
    DeltaKind.SUPERTRAIT_ADDED: _sealed_relaxed(
        "supertrait added to a sealed trait",
        "supertrait added; existing implementors may not satisfy it",
    ),
    DeltaKind.SUPERTRAIT_REMOVED: _fixed(MAJOR, "supertrait removed; callers relying on it break"),

    DeltaKind.TARGET_CHANGED: _fixed(MAJOR, "type alias target changed"),
    DeltaKind.VALUE_TYPE_CHANGED: _fixed(MAJOR, "constant type changed"),
    DeltaKind.CONST_BECAME_STATIC: _fixed(MINOR, "const became static"),
    DeltaKind.STATIC_BECAME_CONST: _fixed(MAJOR, "static became const; references to it lose their address"),
    DeltaKind.MUTABILITY_CHANGED: _fixed(MAJOR, "static mutability changed"),
    DeltaKind.MACRO_ARM_ADDED: _fixed(MINOR, "macro arm added"),
    DeltaKind.MACRO_ARM_REMOVED: _fixed(MAJOR, "macro arm removed; some invocations stop matching"),
}


# ---------------------------------------------------------------------------
# Change rules
# ---------------------------------------------------------------------------

ChangeRule = Callable[[Change, _Context], Tuple[Severity, str, str, Tuple[DeltaVerdict, ...]]]


def _removed(change: Change, ctx: _Context):
    return MAJOR, f"{change.item_kind.value}:removed", f"{change.before.describe()} removed", ()


def _added(change: Change, ctx: _Context):
    return MINOR, f"{change.item_kind.value}:added", f"{change.after.describe()} added", ()


def _kind_changed(change: Change, ctx: _Context):
    reason = (
        f"{change.before.kind.value} became {change.after.kind.value}; "
        "treated as removed and re-added"
    )
    return MAJOR, f"{change.item_kind.value}:kind_changed", reason, ()


def _modified(change: Change, ctx: _Context):
    if not change.deltas:
        raise ClassificationGap(change.path, "a modified change without deltas")
    verdicts = []
    for delta in change.deltas:
        rule = _DELTA_RULES.get(delta.kind)
        if rule is None:
            raise ClassificationGap(change.path, f"delta {delta.kind.value} on {change.item_kind.value}")
        severity, reason = rule(delta, ctx)
        detail = delta.describe()
        verdicts.append(DeltaVerdict(
            delta=delta,
            severity=severity,
            rule=f"{delta.kind.value}:{severity.label}",
            reason=f"{reason} [{detail}]",
        ))
    top = max(v.severity for v in verdicts)
    leading = [v for v in verdicts if v.severity == top]
    reason = "; ".join(v.reason for v in leading)
    return top, leading[0].rule, reason, tuple(verdicts)


_CHANGE_RULES: Dict[Tuple[ChangeKind, ItemKind], ChangeRule] = {}
for _item_kind in ItemKind:
    _CHANGE_RULES[(ChangeKind.REMOVED, _item_kind)] = _removed
    _CHANGE_RULES[(ChangeKind.ADDED, _item_kind)] = _added
    _CHANGE_RULES[(ChangeKind.KIND_CHANGED, _item_kind)] = _kind_changed
    _CHANGE_RULES[(ChangeKind.MODIFIED, _item_kind)] = _modified


def missing_rules() -> List[str]:
    """Combinations with no rule; empty when the tables are exhaustive."""
    missing = [
        f"{change_kind.value}:{item_kind.value}"
        for change_kind in ChangeKind
        for item_kind in ItemKind
        if (change_kind, item_kind) not in _CHANGE_RULES
    ]
    missing.extend(f"delta:{kind.value}" for kind in DeltaKind if kind not in _DELTA_RULES)
    return missing


def classify_change(change: Change, options: Optional[ClassifyOptions] = None) -> ClassifiedChange:
    """Classify one change.

    Raises:
        ClassificationGap: if no rule covers the change
    """
    options = options or ClassifyOptions()
    rule = _CHANGE_RULES.get((change.kind, change.item_kind))
    if rule is None:
        raise ClassificationGap(change.path, f"{change.kind.value} {change.item_kind.value}")
    severity, rule_id, reason, details = rule(change, _Context(change, options))
    return ClassifiedChange(
        change=change,
        severity=severity,
        reason=reason,
        rule=rule_id,
        details=details,
    )
