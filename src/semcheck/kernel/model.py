"""API model: the public surface of one crate version.

An ``ApiModel`` maps canonical public paths to ``PublicItem``s. Each item is
a closed tagged variant: ``kind`` selects exactly one payload type, and the
pairing is checked at construction so the classifier can dispatch on
``(change kind, item kind)`` without open-ended polymorphism.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from types import MappingProxyType
from typing import Callable, Dict, FrozenSet, Iterator, Mapping, Optional, Tuple, Union

from semcheck.codes import WarningCode

from . import cfg as cfg_mod
from .cfg import Config
from .tree import ParsedCrate, Visibility


class Severity(IntEnum):
    """Version bump levels, totally ordered."""

    NONE = 0
    PATCH = 1
    MINOR = 2
    MAJOR = 3

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: Union["Severity", int, str]) -> "Severity":
        if isinstance(value, Severity):
            return value
        if isinstance(value, int):
            return cls(value)
        try:
            return cls[value.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown severity '{value}'") from None


class ItemKind(str, Enum):
    FUNCTION = "function"
    STRUCT = "struct"
    ENUM = "enum"
    TRAIT = "trait"
    TYPE_ALIAS = "type_alias"
    CONSTANT = "constant"
    MODULE = "module"
    TRAIT_IMPL = "trait_impl"
    MACRO = "macro"


class VisibilityClass(IntEnum):
    """How an item is reachable. Higher is wider."""

    RESTRICTED = 0  # declared restricted, reachable through a public re-export
    PUBLIC = 1

    @property
    def label(self) -> str:
        return self.name.lower()


# ---------------------------------------------------------------------------
# Payload building blocks
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GenericParam:
    name: str
    kind: str = "type"  # "type" | "const"
    bounds: FrozenSet[str] = frozenset()
    default: Optional[str] = None
    const_type: Optional[str] = None


@dataclass(frozen=True)
class Field:
    name: str
    type: str
    visibility: Visibility = Visibility.PUBLIC

    @property
    def is_public(self) -> bool:
        return self.visibility.is_public


@dataclass(frozen=True)
class Variant:
    name: str
    shape: str = "unit"
    fields: Tuple[Field, ...] = ()
    non_exhaustive: bool = False


@dataclass(frozen=True)
class AssocType:
    name: str
    bounds: FrozenSet[str] = frozenset()
    has_default: bool = False


# ---------------------------------------------------------------------------
# Kind-specific payloads
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FunctionSig:
    params: Tuple[str, ...] = ()
    ret: str = "()"
    generics: Tuple[GenericParam, ...] = ()
    where_bounds: FrozenSet[str] = frozenset()
    is_trait_method: bool = False
    has_default: bool = False
    unsafe: bool = False
    const: bool = False
    abi: str = "Rust"


@dataclass(frozen=True)
class StructDef:
    shape: str = "named"
    fields: Tuple[Field, ...] = ()
    non_exhaustive: bool = False
    generics: Tuple[GenericParam, ...] = ()
    where_bounds: FrozenSet[str] = frozenset()

    @property
    def has_hidden_field(self) -> bool:
        return any(not f.is_public for f in self.fields)


@dataclass(frozen=True)
class EnumDef:
    variants: Tuple[Variant, ...] = ()
    non_exhaustive: bool = False
    generics: Tuple[GenericParam, ...] = ()
    where_bounds: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class TraitDef:
    methods: Tuple[Tuple[str, FunctionSig], ...] = ()
    assoc_types: Tuple[AssocType, ...] = ()
    supertraits: FrozenSet[str] = frozenset()
    sealed: bool = False
    unsafe: bool = False
    generics: Tuple[GenericParam, ...] = ()
    where_bounds: FrozenSet[str] = frozenset()

    def method_map(self) -> Dict[str, FunctionSig]:
        return dict(self.methods)

    def assoc_type_map(self) -> Dict[str, AssocType]:
        return {a.name: a for a in self.assoc_types}


@dataclass(frozen=True)
class TypeAliasDef:
    target: str
    generics: Tuple[GenericParam, ...] = ()
    where_bounds: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class ConstantDef:
    type: str
    is_static: bool = False
    mutable: bool = False


@dataclass(frozen=True)
class ModuleDef:
    pass


@dataclass(frozen=True)
class TraitImplDef:
    self_type: str
    trait_path: str
    generics: Tuple[GenericParam, ...] = ()
    where_bounds: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class MacroDef:
    arms: Tuple[str, ...] = ()


Payload = Union[
    FunctionSig, StructDef, EnumDef, TraitDef, TypeAliasDef,
    ConstantDef, ModuleDef, TraitImplDef, MacroDef,
]

PAYLOAD_TYPES: Mapping[ItemKind, type] = MappingProxyType({
    ItemKind.FUNCTION: FunctionSig,
    ItemKind.STRUCT: StructDef,
    ItemKind.ENUM: EnumDef,
    ItemKind.TRAIT: TraitDef,
    ItemKind.TYPE_ALIAS: TypeAliasDef,
    ItemKind.CONSTANT: ConstantDef,
    ItemKind.MODULE: ModuleDef,
    ItemKind.TRAIT_IMPL: TraitImplDef,
    ItemKind.MACRO: MacroDef,
})


@dataclass(frozen=True)
class PublicItem:
    """One publicly reachable item at one canonical path."""

    path: str
    kind: ItemKind
    payload: Payload
    declared_path: str = ""
    visibility: VisibilityClass = VisibilityClass.PUBLIC
    deprecated: bool = False
    doc_digest: Optional[str] = None
    cfg: Config = cfg_mod.TRUE

    def __post_init__(self):
        expected = PAYLOAD_TYPES[self.kind]
        if not isinstance(self.payload, expected):
            raise TypeError(
                f"Item '{self.path}' of kind {self.kind.value} needs a "
                f"{expected.__name__} payload, got {type(self.payload).__name__}"
            )
        if not self.declared_path:
            object.__setattr__(self, "declared_path", self.path)

    @property
    def non_exhaustive(self) -> bool:
        return bool(getattr(self.payload, "non_exhaustive", False))

    @property
    def sealed(self) -> bool:
        return bool(getattr(self.payload, "sealed", False))

    def describe(self) -> str:
        return f"{self.kind.value.replace('_', ' ')} {self.path}"


@dataclass(frozen=True)
class ExtractionWarning:
    code: WarningCode
    path: str
    message: str
    side: str = ""  # "old" | "new" once attached to a comparison

    def to_dict(self) -> dict:
        return {"code": self.code.value, "path": self.path, "message": self.message, "side": self.side}


def shard_key(path: str) -> str:
    """Partition key for a canonical path: its top-level module."""
    if path.startswith("impl "):
        return "impl"
    segments = path.split("::")
    if len(segments) < 2:
        return ""
    return segments[1].split("#", 1)[0]


@dataclass(frozen=True)
class ApiModel:
    """Read-only mapping from canonical path to PublicItem."""

    crate: str
    items: Mapping[str, PublicItem] = field(default_factory=dict)
    warnings: Tuple[ExtractionWarning, ...] = ()

    def __post_init__(self):
        for path, item in self.items.items():
            if path != item.path:
                raise ValueError(f"Model key '{path}' does not match item path '{item.path}'")
        object.__setattr__(self, "items", MappingProxyType(dict(self.items)))

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self.items))

    def __contains__(self, path: object) -> bool:
        return path in self.items

    def get(self, path: str) -> Optional[PublicItem]:
        return self.items.get(path)

    def paths(self) -> FrozenSet[str]:
        return frozenset(self.items)

    def partition(self, key: Callable[[str], str] = shard_key) -> Dict[str, "ApiModel"]:
        """Split into sub-models by key; warnings stay on the whole model."""
        buckets: Dict[str, Dict[str, PublicItem]] = {}
        for path, item in self.items.items():
            buckets.setdefault(key(path), {})[path] = item
        return {name: ApiModel(crate=self.crate, items=items) for name, items in buckets.items()}


@dataclass(frozen=True)
class CrateVersion:
    """One release of a library: name, version string and parsed tree."""

    name: str
    version: str
    tree: ParsedCrate
