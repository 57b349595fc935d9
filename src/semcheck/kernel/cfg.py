"""`#[cfg]` predicates as boolean expression trees.

An item declared under ``#[cfg(...)]`` only exists for some build
configurations. Comparing two versions of an item therefore also compares the
set of configurations it exists in: shrinking that set removes the item for
some consumers.

Satisfiability is decided by enumerating assignments of the free variables.
Target properties with the same key are mutually exclusive (a target has one
``target_os``), features and flags are independent booleans.
"""

from dataclasses import dataclass
from itertools import product
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple, Union

from .errors import InvalidCfgError
from .tree import MetaItem


@dataclass(frozen=True)
class Const:
    value: bool

    def __str__(self) -> str:
        return "always available" if self.value else "never available"


@dataclass(frozen=True)
class Feature:
    name: str

    def __str__(self) -> str:
        return f'feature="{self.name}"'


@dataclass(frozen=True)
class TargetProperty:
    key: str
    value: str

    def __str__(self) -> str:
        return f'{self.key}="{self.value}"'


@dataclass(frozen=True)
class Flag:
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Not:
    inner: "Config"

    def __str__(self) -> str:
        return f"not({self.inner})"


@dataclass(frozen=True)
class All:
    items: Tuple["Config", ...]

    def __str__(self) -> str:
        return "all(" + ", ".join(str(i) for i in self.items) + ")"


@dataclass(frozen=True)
class AnyOf:
    items: Tuple["Config", ...]

    def __str__(self) -> str:
        return "any(" + ", ".join(str(i) for i in self.items) + ")"


Config = Union[Const, Feature, TargetProperty, Flag, Not, All, AnyOf]
FreeVar = Union[Feature, TargetProperty, Flag]

TRUE = Const(True)
FALSE = Const(False)

_TARGET_KEYS = frozenset({
    "target_arch", "target_os", "target_family", "target_env",
    "target_endian", "target_pointer_width", "target_vendor",
})


def describe(config: Config) -> str:
    """Human-readable form, wrapped in #[cfg] when conditional."""
    if isinstance(config, Const):
        return str(config)
    return f"#[cfg({config})]"


# ---------------------------------------------------------------------------
# Construction from attributes
# ---------------------------------------------------------------------------

def cfg_from_meta(meta: MetaItem) -> Config:
    """Convert one cfg predicate meta item into a Config."""
    if meta.name in ("all", "any"):
        items = tuple(cfg_from_meta(arg) for arg in meta.args)
        return All(items) if meta.name == "all" else AnyOf(items)
    if meta.name == "not":
        if len(meta.args) != 1:
            raise InvalidCfgError(f"Non-unary #[cfg(not(...))] with {len(meta.args)} arguments")
        return Not(cfg_from_meta(meta.args[0]))
    if meta.args:
        raise InvalidCfgError(f"Unknown #[cfg] list: {meta.name}(...)")
    if meta.value is None:
        if meta.name in ("unix", "windows"):
            return TargetProperty("target_family", meta.name)
        return Flag(meta.name)
    if meta.name == "feature":
        return Feature(meta.value)
    if meta.name in _TARGET_KEYS:
        return TargetProperty(meta.name, meta.value)
    # target_has_atomic and unknown keys may hold for several values at once
    return Flag(f'{meta.name}="{meta.value}"')


def cfg_from_attrs(attrs: Iterable[MetaItem]) -> Config:
    """Conjunction of every #[cfg] attribute in attrs (TRUE if none)."""
    found: List[Config] = []
    for attr in attrs:
        if attr.name != "cfg":
            continue
        if len(attr.args) != 1:
            raise InvalidCfgError(f"Non-unary #[cfg] with {len(attr.args)} arguments")
        found.append(cfg_from_meta(attr.args[0]))
    if not found:
        return TRUE
    if len(found) == 1:
        return found[0]
    return All(tuple(found))


# ---------------------------------------------------------------------------
# Combinators
# ---------------------------------------------------------------------------

def conjoin(left: Config, right: Config) -> Config:
    return simplify(All((left, right)))


def union(left: Config, right: Config) -> Config:
    return simplify(AnyOf((left, right)))


def simplify(config: Config) -> Config:
    """Flatten nested all/any and drop neutral elements."""
    if isinstance(config, Not):
        inner = simplify(config.inner)
        if isinstance(inner, Const):
            return Const(not inner.value)
        if isinstance(inner, Not):
            return inner.inner
        return Not(inner)
    if isinstance(config, (All, AnyOf)):
        is_all = isinstance(config, All)
        neutral, absorbing = (TRUE, FALSE) if is_all else (FALSE, TRUE)
        flat: List[Config] = []
        for item in config.items:
            item = simplify(item)
            if item == absorbing:
                return absorbing
            if item == neutral:
                continue
            if type(item) is type(config):
                members = item.items
            else:
                members = (item,)
            for member in members:
                if member not in flat:
                    flat.append(member)
        if not flat:
            return neutral
        if len(flat) == 1:
            return flat[0]
        return All(tuple(flat)) if is_all else AnyOf(tuple(flat))
    return config


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def _free_vars(config: Config, out: set) -> None:
    if isinstance(config, Not):
        _free_vars(config.inner, out)
    elif isinstance(config, (All, AnyOf)):
        for item in config.items:
            _free_vars(item, out)
    elif not isinstance(config, Const):
        out.add(config)


def evaluate(config: Config, assignment: FrozenSet[FreeVar]) -> bool:
    if isinstance(config, Const):
        return config.value
    if isinstance(config, Not):
        return not evaluate(config.inner, assignment)
    if isinstance(config, All):
        return all(evaluate(i, assignment) for i in config.items)
    if isinstance(config, AnyOf):
        return any(evaluate(i, assignment) for i in config.items)
    return config in assignment


def _assignments(configs: Sequence[Config]):
    """Yield every consistent assignment of the free variables of configs."""
    free: set = set()
    for config in configs:
        _free_vars(config, free)

    groups: Dict[object, List[FreeVar]] = {}
    for var in sorted(free, key=lambda v: (type(v).__name__, str(v))):
        key = ("target", var.key) if isinstance(var, TargetProperty) else var
        groups.setdefault(key, []).append(var)

    # Each group contributes nothing or exactly one of its members.
    options = [[None] + members for members in groups.values()]
    for choice in product(*options):
        yield frozenset(var for var in choice if var is not None)


def _exists(configs: Sequence[Config], predicate: Callable[[FrozenSet[FreeVar]], bool]) -> bool:
    return any(predicate(assignment) for assignment in _assignments(configs))


def subset(inner: Config, outer: Config) -> bool:
    """True if outer holds in every configuration where inner holds."""
    if outer == TRUE:
        return True
    return not _exists(
        (inner, outer),
        lambda a: evaluate(inner, a) and not evaluate(outer, a),
    )


def intersects(left: Config, right: Config) -> bool:
    """True if some configuration satisfies both predicates."""
    if left == TRUE or right == TRUE:
        return True
    return _exists(
        (left, right),
        lambda a: evaluate(left, a) and evaluate(right, a),
    )


def equivalent(left: Config, right: Config) -> bool:
    if left == right:
        return True
    return not _exists(
        (left, right),
        lambda a: evaluate(left, a) != evaluate(right, a),
    )


def compare_coverage(before: Config, after: Config) -> Optional[str]:
    """Classify a coverage change: None, "widened", "narrowed" or "changed"."""
    if equivalent(before, after):
        return None
    if subset(before, after):
        return "widened"
    if subset(after, before):
        return "narrowed"
    return "changed"
