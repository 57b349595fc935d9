"""Structural diff of two API models.

Keys present on one side only become Added/Removed changes; shared keys whose
kind differs become KindChanged; shared keys of the same kind are compared
field by field and wrapped in a Modified change when any delta is found.
Parameter, generic, field and variant lists compare positionally. Trait members
compare by name.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from semcheck.codes import WarningCode

from . import cfg as cfg_mod
from .model import (
    ApiModel,
    ConstantDef,
    EnumDef,
    ExtractionWarning,
    FunctionSig,
    GenericParam,
    ItemKind,
    MacroDef,
    ModuleDef,
    PublicItem,
    StructDef,
    TraitDef,
    TraitImplDef,
    TypeAliasDef,
)


class ChangeKind(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    KIND_CHANGED = "kind_changed"
    MODIFIED = "modified"


class DeltaKind(str, Enum):
    # Common to every item
    VISIBILITY_NARROWED = "visibility_narrowed"
    VISIBILITY_WIDENED = "visibility_widened"
    DEPRECATION_ADDED = "deprecation_added"
    DEPRECATION_REMOVED = "deprecation_removed"
    DOCS_CHANGED = "docs_changed"
    CFG_NARROWED = "cfg_narrowed"
    CFG_WIDENED = "cfg_widened"
    CFG_CHANGED = "cfg_changed"

    # Signatures
    PARAM_COUNT_CHANGED = "param_count_changed"
    PARAM_TYPE_CHANGED = "param_type_changed"
    RETURN_TYPE_CHANGED = "return_type_changed"
    UNSAFE_ADDED = "unsafe_added"
    UNSAFE_REMOVED = "unsafe_removed"
    CONST_ADDED = "const_added"
    CONST_REMOVED = "const_removed"
    ABI_CHANGED = "abi_changed"
    DEFAULT_BODY_ADDED = "default_body_added"
    DEFAULT_BODY_REMOVED = "default_body_removed"

    # Generics and bounds
    GENERIC_ADDED = "generic_added"
    GENERIC_REMOVED = "generic_removed"
    GENERIC_RENAMED = "generic_renamed"
    GENERIC_KIND_CHANGED = "generic_kind_changed"
    GENERIC_DEFAULT_ADDED = "generic_default_added"
    GENERIC_DEFAULT_REMOVED = "generic_default_removed"
    GENERIC_DEFAULT_CHANGED = "generic_default_changed"
    BOUND_NARROWED = "bound_narrowed"
    BOUND_WIDENED = "bound_widened"

    # Structs and enums
    SHAPE_CHANGED = "shape_changed"
    NON_EXHAUSTIVE_ADDED = "non_exhaustive_added"
    NON_EXHAUSTIVE_REMOVED = "non_exhaustive_removed"
    FIELD_ADDED = "field_added"
    FIELD_REMOVED = "field_removed"
    FIELD_RENAMED = "field_renamed"
    FIELD_TYPE_CHANGED = "field_type_changed"
    FIELD_VISIBILITY_NARROWED = "field_visibility_narrowed"
    FIELD_VISIBILITY_WIDENED = "field_visibility_widened"
    VARIANT_ADDED = "variant_added"
    VARIANT_REMOVED = "variant_removed"
    VARIANT_RENAMED = "variant_renamed"
    VARIANT_SHAPE_CHANGED = "variant_shape_changed"
    VARIANT_FIELD_ADDED = "variant_field_added"
    VARIANT_FIELD_REMOVED = "variant_field_removed"
    VARIANT_FIELD_CHANGED = "variant_field_changed"

    # Traits
    SEALED_ADDED = "sealed_added"
    SEALED_REMOVED = "sealed_removed"
    TRAIT_METHOD_ADDED = "trait_method_added"
    TRAIT_METHOD_REMOVED = "trait_method_removed"
    ASSOC_TYPE_ADDED = "assoc_type_added"
    ASSOC_TYPE_REMOVED = "assoc_type_removed"
    ASSOC_TYPE_BOUNDS_CHANGED = "assoc_type_bounds_changed"
    ASSOC_TYPE_DEFAULT_ADDED = "assoc_type_default_added"
    ASSOC_TYPE_DEFAULT_REMOVED = "assoc_type_default_removed"
    SUPERTRAIT_ADDED = "supertrait_added"
    SUPERTRAIT_REMOVED = "supertrait_removed"

    # Aliases, constants, macros
    TARGET_CHANGED = "target_changed"
    VALUE_TYPE_CHANGED = "value_type_changed"
    CONST_BECAME_STATIC = "const_became_static"
    STATIC_BECAME_CONST = "static_became_const"
    MUTABILITY_CHANGED = "mutability_changed"
    MACRO_ARM_ADDED = "macro_arm_added"
    MACRO_ARM_REMOVED = "macro_arm_removed"


_INVERSE_PAIRS = [
    (DeltaKind.VISIBILITY_NARROWED, DeltaKind.VISIBILITY_WIDENED),
    (DeltaKind.DEPRECATION_ADDED, DeltaKind.DEPRECATION_REMOVED),
    (DeltaKind.CFG_NARROWED, DeltaKind.CFG_WIDENED),
    (DeltaKind.UNSAFE_ADDED, DeltaKind.UNSAFE_REMOVED),
    (DeltaKind.CONST_ADDED, DeltaKind.CONST_REMOVED),
    (DeltaKind.DEFAULT_BODY_ADDED, DeltaKind.DEFAULT_BODY_REMOVED),
    (DeltaKind.GENERIC_ADDED, DeltaKind.GENERIC_REMOVED),
    (DeltaKind.GENERIC_DEFAULT_ADDED, DeltaKind.GENERIC_DEFAULT_REMOVED),
    (DeltaKind.BOUND_NARROWED, DeltaKind.BOUND_WIDENED),
    (DeltaKind.NON_EXHAUSTIVE_ADDED, DeltaKind.NON_EXHAUSTIVE_REMOVED),
    (DeltaKind.FIELD_ADDED, DeltaKind.FIELD_REMOVED),
    (DeltaKind.FIELD_VISIBILITY_NARROWED, DeltaKind.FIELD_VISIBILITY_WIDENED),
    (DeltaKind.VARIANT_ADDED, DeltaKind.VARIANT_REMOVED),
    (DeltaKind.VARIANT_FIELD_ADDED, DeltaKind.VARIANT_FIELD_REMOVED),
    (DeltaKind.SEALED_ADDED, DeltaKind.SEALED_REMOVED),
    (DeltaKind.TRAIT_METHOD_ADDED, DeltaKind.TRAIT_METHOD_REMOVED),
    (DeltaKind.ASSOC_TYPE_ADDED, DeltaKind.ASSOC_TYPE_REMOVED),
    (DeltaKind.ASSOC_TYPE_DEFAULT_ADDED, DeltaKind.ASSOC_TYPE_DEFAULT_REMOVED),
    (DeltaKind.SUPERTRAIT_ADDED, DeltaKind.SUPERTRAIT_REMOVED),
    (DeltaKind.CONST_BECAME_STATIC, DeltaKind.STATIC_BECAME_CONST),
    (DeltaKind.MACRO_ARM_ADDED, DeltaKind.MACRO_ARM_REMOVED),
]

INVERSE: Dict[DeltaKind, DeltaKind] = {}
for _a, _b in _INVERSE_PAIRS:
    INVERSE[_a] = _b
    INVERSE[_b] = _a
for _kind in DeltaKind:
    INVERSE.setdefault(_kind, _kind)  # self-inverse: before/after swap only


@dataclass(frozen=True)
class Delta:
    """One field-level difference inside a Modified change.

    ``member`` names the part of the item that changed (a field, variant,
    bound or parameter position); ``method`` is set for deltas inside a trait
    method signature.
    """

    kind: DeltaKind
    member: str = ""
    before: Any = None
    after: Any = None
    method: Optional[str] = None

    def inverse(self) -> "Delta":
        return Delta(INVERSE[self.kind], self.member, self.after, self.before, self.method)

    def describe(self) -> str:
        label = self.kind.value.replace("_", " ")
        where = f"{self.method}: {self.member}" if self.method else self.member
        return f"{label} ({where})" if where else label


@dataclass(frozen=True)
class Change:
    path: str
    kind: ChangeKind
    before: Optional[PublicItem] = None
    after: Optional[PublicItem] = None
    deltas: Tuple[Delta, ...] = ()

    @property
    def item_kind(self) -> ItemKind:
        """Kind of the item the change is about (the old kind for KindChanged)."""
        item = self.before if self.before is not None else self.after
        return item.kind

    def inverse(self) -> "Change":
        kind = {
            ChangeKind.ADDED: ChangeKind.REMOVED,
            ChangeKind.REMOVED: ChangeKind.ADDED,
        }.get(self.kind, self.kind)
        return Change(
            path=self.path,
            kind=kind,
            before=self.after,
            after=self.before,
            deltas=tuple(d.inverse() for d in self.deltas),
        )


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------

def _flag(deltas: List[Delta], before: bool, after: bool, added: DeltaKind, removed: DeltaKind, member: str = "") -> None:
    if before == after:
        return
    deltas.append(Delta(added if after else removed, member, before, after))


def _diff_bound_sets(before: FrozenSet[str], after: FrozenSet[str], prefix: str = "") -> List[Delta]:
    """Added bounds narrow, removed bounds widen; `?Sized` works the other way."""
    deltas = []
    for bound in sorted(before | after):
        if bound in before and bound in after:
            continue
        added = bound in after
        relaxes = (bound == "?Sized") == added
        deltas.append(Delta(
            DeltaKind.BOUND_WIDENED if relaxes else DeltaKind.BOUND_NARROWED,
            prefix + bound,
            None if added else bound,
            bound if added else None,
        ))
    return deltas


def _diff_generics(before: Sequence[GenericParam], after: Sequence[GenericParam]) -> List[Delta]:
    deltas = []
    for index in range(max(len(before), len(after))):
        if index >= len(before):
            deltas.append(Delta(DeltaKind.GENERIC_ADDED, after[index].name, None, after[index]))
            continue
        if index >= len(after):
            deltas.append(Delta(DeltaKind.GENERIC_REMOVED, before[index].name, before[index], None))
            continue
        old, new = before[index], after[index]
        position = f"generic {index}"
        if old.name != new.name:
            deltas.append(Delta(DeltaKind.GENERIC_RENAMED, position, old.name, new.name))
            continue
        if old.kind != new.kind or old.const_type != new.const_type:
            deltas.append(Delta(DeltaKind.GENERIC_KIND_CHANGED, position, old, new))
        if old.default != new.default:
            if old.default is None:
                kind = DeltaKind.GENERIC_DEFAULT_ADDED
            elif new.default is None:
                kind = DeltaKind.GENERIC_DEFAULT_REMOVED
            else:
                kind = DeltaKind.GENERIC_DEFAULT_CHANGED
            deltas.append(Delta(kind, position, old.default, new.default))
        deltas.extend(_diff_bound_sets(old.bounds, new.bounds, prefix=f"{new.name}: "))
    return deltas


def _diff_generic_item(before, after) -> List[Delta]:
    deltas = _diff_generics(before.generics, after.generics)
    deltas.extend(_diff_bound_sets(before.where_bounds, after.where_bounds))
    return deltas


# ---------------------------------------------------------------------------
# Kind-specific comparisons
# ---------------------------------------------------------------------------

def diff_function(before: FunctionSig, after: FunctionSig) -> List[Delta]:
    deltas = []
    if len(before.params) != len(after.params):
        deltas.append(Delta(DeltaKind.PARAM_COUNT_CHANGED, "params", before.params, after.params))
    else:
        for index, (old, new) in enumerate(zip(before.params, after.params)):
            if old != new:
                deltas.append(Delta(DeltaKind.PARAM_TYPE_CHANGED, f"param {index}", old, new))
    if before.ret != after.ret:
        deltas.append(Delta(DeltaKind.RETURN_TYPE_CHANGED, "return", before.ret, after.ret))
    deltas.extend(_diff_generic_item(before, after))
    _flag(deltas, before.unsafe, after.unsafe, DeltaKind.UNSAFE_ADDED, DeltaKind.UNSAFE_REMOVED)
    _flag(deltas, before.const, after.const, DeltaKind.CONST_ADDED, DeltaKind.CONST_REMOVED)
    if before.abi != after.abi:
        deltas.append(Delta(DeltaKind.ABI_CHANGED, "abi", before.abi, after.abi))
    if before.is_trait_method or after.is_trait_method:
        _flag(
            deltas, before.has_default, after.has_default,
            DeltaKind.DEFAULT_BODY_ADDED, DeltaKind.DEFAULT_BODY_REMOVED,
        )
    return deltas


def _diff_struct(before: StructDef, after: StructDef) -> List[Delta]:
    deltas = []
    if before.shape != after.shape:
        deltas.append(Delta(DeltaKind.SHAPE_CHANGED, "shape", before.shape, after.shape))
    _flag(
        deltas, before.non_exhaustive, after.non_exhaustive,
        DeltaKind.NON_EXHAUSTIVE_ADDED, DeltaKind.NON_EXHAUSTIVE_REMOVED,
    )
    for index in range(max(len(before.fields), len(after.fields))):
        if index >= len(before.fields):
            field = after.fields[index]
            deltas.append(Delta(DeltaKind.FIELD_ADDED, field.name, None, field))
            continue
        if index >= len(after.fields):
            field = before.fields[index]
            deltas.append(Delta(DeltaKind.FIELD_REMOVED, field.name, field, None))
            continue
        old, new = before.fields[index], after.fields[index]
        if old.name != new.name:
            deltas.append(Delta(DeltaKind.FIELD_RENAMED, f"field {index}", old, new))
            continue
        if old.type != new.type:
            deltas.append(Delta(DeltaKind.FIELD_TYPE_CHANGED, old.name, old, new))
        if old.visibility != new.visibility:
            kind = (
                DeltaKind.FIELD_VISIBILITY_WIDENED
                if new.visibility.rank > old.visibility.rank
                else DeltaKind.FIELD_VISIBILITY_NARROWED
            )
            deltas.append(Delta(kind, old.name, old, new))
    deltas.extend(_diff_generic_item(before, after))
    return deltas


def _diff_enum(before: EnumDef, after: EnumDef) -> List[Delta]:
    deltas = []
    _flag(
        deltas, before.non_exhaustive, after.non_exhaustive,
        DeltaKind.NON_EXHAUSTIVE_ADDED, DeltaKind.NON_EXHAUSTIVE_REMOVED,
    )
    for index in range(max(len(before.variants), len(after.variants))):
        if index >= len(before.variants):
            variant = after.variants[index]
            deltas.append(Delta(DeltaKind.VARIANT_ADDED, variant.name, None, variant))
            continue
        if index >= len(after.variants):
            variant = before.variants[index]
            deltas.append(Delta(DeltaKind.VARIANT_REMOVED, variant.name, variant, None))
            continue
        old, new = before.variants[index], after.variants[index]
        if old.name != new.name:
            deltas.append(Delta(DeltaKind.VARIANT_RENAMED, f"variant {index}", old, new))
            continue
        _flag(
            deltas, old.non_exhaustive, new.non_exhaustive,
            DeltaKind.NON_EXHAUSTIVE_ADDED, DeltaKind.NON_EXHAUSTIVE_REMOVED, member=old.name,
        )
        if old.shape != new.shape:
            deltas.append(Delta(DeltaKind.VARIANT_SHAPE_CHANGED, old.name, old, new))
            continue
        for position in range(max(len(old.fields), len(new.fields))):
            if position >= len(old.fields):
                field = new.fields[position]
                deltas.append(Delta(DeltaKind.VARIANT_FIELD_ADDED, f"{old.name}.{field.name}", None, field))
            elif position >= len(new.fields):
                field = old.fields[position]
                deltas.append(Delta(DeltaKind.VARIANT_FIELD_REMOVED, f"{old.name}.{field.name}", field, None))
            elif old.fields[position] != new.fields[position]:
                deltas.append(Delta(
                    DeltaKind.VARIANT_FIELD_CHANGED,
                    f"{old.name}.{position}",
                    old.fields[position],
                    new.fields[position],
                ))
    deltas.extend(_diff_generic_item(before, after))
    return deltas


def _diff_trait(before: TraitDef, after: TraitDef) -> List[Delta]:
    deltas = []
    _flag(deltas, before.sealed, after.sealed, DeltaKind.SEALED_ADDED, DeltaKind.SEALED_REMOVED)
    _flag(deltas, before.unsafe, after.unsafe, DeltaKind.UNSAFE_ADDED, DeltaKind.UNSAFE_REMOVED)

    old_methods, new_methods = before.method_map(), after.method_map()
    for name in sorted(set(old_methods) | set(new_methods)):
        if name not in old_methods:
            deltas.append(Delta(DeltaKind.TRAIT_METHOD_ADDED, name, None, new_methods[name]))
        elif name not in new_methods:
            deltas.append(Delta(DeltaKind.TRAIT_METHOD_REMOVED, name, old_methods[name], None))
        else:
            deltas.extend(
                replace(d, method=name)
                for d in diff_function(old_methods[name], new_methods[name])
            )

    old_types, new_types = before.assoc_type_map(), after.assoc_type_map()
    for name in sorted(set(old_types) | set(new_types)):
        if name not in old_types:
            deltas.append(Delta(DeltaKind.ASSOC_TYPE_ADDED, name, None, new_types[name]))
        elif name not in new_types:
            deltas.append(Delta(DeltaKind.ASSOC_TYPE_REMOVED, name, old_types[name], None))
        else:
            old, new = old_types[name], new_types[name]
            if old.bounds != new.bounds:
                deltas.append(Delta(DeltaKind.ASSOC_TYPE_BOUNDS_CHANGED, name, old.bounds, new.bounds))
            _flag(
                deltas, old.has_default, new.has_default,
                DeltaKind.ASSOC_TYPE_DEFAULT_ADDED, DeltaKind.ASSOC_TYPE_DEFAULT_REMOVED, member=name,
            )

    for bound in sorted(before.supertraits | after.supertraits):
        if bound not in before.supertraits:
            deltas.append(Delta(DeltaKind.SUPERTRAIT_ADDED, bound, None, bound))
        elif bound not in after.supertraits:
            deltas.append(Delta(DeltaKind.SUPERTRAIT_REMOVED, bound, bound, None))

    deltas.extend(_diff_generic_item(before, after))
    return deltas


def _diff_type_alias(before: TypeAliasDef, after: TypeAliasDef) -> List[Delta]:
    deltas = []
    if before.target != after.target:
        deltas.append(Delta(DeltaKind.TARGET_CHANGED, "target", before.target, after.target))
    deltas.extend(_diff_generic_item(before, after))
    return deltas


def _diff_constant(before: ConstantDef, after: ConstantDef) -> List[Delta]:
    deltas = []
    if before.is_static != after.is_static:
        kind = DeltaKind.CONST_BECAME_STATIC if after.is_static else DeltaKind.STATIC_BECAME_CONST
        deltas.append(Delta(kind, "item", before.is_static, after.is_static))
    if before.mutable != after.mutable:
        deltas.append(Delta(DeltaKind.MUTABILITY_CHANGED, "mut", before.mutable, after.mutable))
    if before.type != after.type:
        deltas.append(Delta(DeltaKind.VALUE_TYPE_CHANGED, "type", before.type, after.type))
    return deltas


def _diff_module(before: ModuleDef, after: ModuleDef) -> List[Delta]:
    return []


def _diff_trait_impl(before: TraitImplDef, after: TraitImplDef) -> List[Delta]:
    return _diff_generic_item(before, after)


def _diff_macro(before: MacroDef, after: MacroDef) -> List[Delta]:
    deltas = []
    old_arms, new_arms = set(before.arms), set(after.arms)
    for arm in sorted(old_arms | new_arms):
        if arm not in old_arms:
            deltas.append(Delta(DeltaKind.MACRO_ARM_ADDED, arm, None, arm))
        elif arm not in new_arms:
            deltas.append(Delta(DeltaKind.MACRO_ARM_REMOVED, arm, arm, None))
    return deltas


_PAYLOAD_DIFFERS: Dict[ItemKind, Callable[[Any, Any], List[Delta]]] = {
    ItemKind.FUNCTION: diff_function,
    ItemKind.STRUCT: _diff_struct,
    ItemKind.ENUM: _diff_enum,
    ItemKind.TRAIT: _diff_trait,
    ItemKind.TYPE_ALIAS: _diff_type_alias,
    ItemKind.CONSTANT: _diff_constant,
    ItemKind.MODULE: _diff_module,
    ItemKind.TRAIT_IMPL: _diff_trait_impl,
    ItemKind.MACRO: _diff_macro,
}

_COVERAGE_DELTAS = {
    "widened": DeltaKind.CFG_WIDENED,
    "narrowed": DeltaKind.CFG_NARROWED,
    "changed": DeltaKind.CFG_CHANGED,
}


def diff_items(before: PublicItem, after: PublicItem) -> List[Delta]:
    """Deltas between two items of the same kind."""
    deltas = list(_PAYLOAD_DIFFERS[before.kind](before.payload, after.payload))

    if before.visibility != after.visibility:
        kind = (
            DeltaKind.VISIBILITY_WIDENED
            if after.visibility > before.visibility
            else DeltaKind.VISIBILITY_NARROWED
        )
        deltas.append(Delta(kind, "", before.visibility, after.visibility))
    _flag(
        deltas, before.deprecated, after.deprecated,
        DeltaKind.DEPRECATION_ADDED, DeltaKind.DEPRECATION_REMOVED,
    )
    if before.doc_digest != after.doc_digest:
        deltas.append(Delta(DeltaKind.DOCS_CHANGED, "", before.doc_digest, after.doc_digest))
    coverage = cfg_mod.compare_coverage(before.cfg, after.cfg)
    if coverage is not None:
        deltas.append(Delta(
            _COVERAGE_DELTAS[coverage], "",
            cfg_mod.describe(before.cfg), cfg_mod.describe(after.cfg),
        ))
    return deltas


def diff_models(old: ApiModel, new: ApiModel, keys: Optional[Iterable[str]] = None) -> List[Change]:
    """Changes between two models, ordered by path.

    When keys is given only those paths are compared (one shard of the key
    space); the union of the shards' results equals the unsharded result.
    """
    if keys is None:
        paths = old.paths() | new.paths()
    else:
        paths = frozenset(keys)

    changes = []
    for path in sorted(paths):
        before, after = old.get(path), new.get(path)
        if before is None and after is None:
            continue
        if before is None:
            changes.append(Change(path, ChangeKind.ADDED, after=after))
        elif after is None:
            changes.append(Change(path, ChangeKind.REMOVED, before=before))
        elif before.kind != after.kind:
            changes.append(Change(path, ChangeKind.KIND_CHANGED, before=before, after=after))
        else:
            deltas = diff_items(before, after)
            if deltas:
                changes.append(Change(path, ChangeKind.MODIFIED, before, after, tuple(deltas)))
    return changes


_ALIAS_LIKE = frozenset({ItemKind.TYPE_ALIAS, ItemKind.STRUCT, ItemKind.ENUM})


def kind_change_warnings(changes: Iterable[Change]) -> List[ExtractionWarning]:
    """Warn about kind changes that may be renames through a type alias."""
    warnings = []
    for change in changes:
        if change.kind is not ChangeKind.KIND_CHANGED:
            continue
        kinds = {change.before.kind, change.after.kind}
        if ItemKind.TYPE_ALIAS in kinds and kinds <= _ALIAS_LIKE:
            warnings.append(ExtractionWarning(
                code=WarningCode.AMBIGUOUS_KIND_CHANGE,
                path=change.path,
                message=(
                    f"{change.before.kind.value} became {change.after.kind.value}; "
                    "treated as removed and re-added"
                ),
            ))
    return warnings
