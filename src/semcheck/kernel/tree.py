"""Pydantic models for the parsed source tree handed over by a provider.

A provider turns one crate version into a ``ParsedCrate``: a module tree of
item declarations with their signatures and attributes. Types, bounds and
paths are carried as source-level strings; the extractor normalizes them.
Nothing here interprets visibility or re-exports, it only validates shape.
"""

from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Visibility(str, Enum):
    """Declared visibility of an item, use declaration or field."""

    PUBLIC = "pub"
    CRATE = "pub(crate)"
    RESTRICTED = "pub(restricted)"  # pub(super), pub(in path)
    PRIVATE = "private"

    @property
    def is_public(self) -> bool:
        return self is Visibility.PUBLIC

    @property
    def is_importable(self) -> bool:
        """True if glob imports elsewhere in the crate can see the binding."""
        return self is not Visibility.PRIVATE

    @property
    def rank(self) -> int:
        """Ordering from private (0) to pub (3)."""
        return _VISIBILITY_RANK[self]


_VISIBILITY_RANK = {
    Visibility.PRIVATE: 0,
    Visibility.RESTRICTED: 1,
    Visibility.CRATE: 2,
    Visibility.PUBLIC: 3,
}


def parse_visibility(text: str) -> Visibility:
    """Parse a source-level visibility qualifier.

    Accepts ``pub``, ``pub(crate)``, ``crate``, ``pub(super)``,
    ``pub(in path)``, ``pub(self)`` and the empty/``private`` default.
    """
    compact = "".join(text.split())
    if compact == "pub":
        return Visibility.PUBLIC
    if compact in ("", "private", "inherited", "pub(self)"):
        return Visibility.PRIVATE
    if compact in ("pub(crate)", "crate"):
        return Visibility.CRATE
    if compact == "pub(super)" or compact.startswith("pub(in"):
        return Visibility.RESTRICTED
    raise ValueError(f"Unrecognized visibility qualifier '{text}'")


class MetaItem(BaseModel):
    """An attribute or nested attribute argument.

    ``#[non_exhaustive]`` is ``{"name": "non_exhaustive"}``,
    ``#[doc = "text"]`` is ``{"name": "doc", "value": "text"}`` and
    ``#[cfg(all(unix, feature = "x"))]`` nests through ``args``.
    """

    name: str
    value: Optional[str] = None
    args: List["MetaItem"] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")


MetaItem.model_rebuild()


def has_attr(attrs: List[MetaItem], name: str) -> bool:
    return any(attr.name == name for attr in attrs)


def is_doc_hidden(attrs: List[MetaItem]) -> bool:
    """True for ``#[doc(hidden)]``."""
    return any(
        attr.name == "doc" and any(arg.name == "hidden" for arg in attr.args)
        for attr in attrs
    )


class _Node(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class _Declared(_Node):
    """Fields shared by every named declaration."""

    name: str
    vis: str = "private"
    attrs: List[MetaItem] = Field(default_factory=list)

    @field_validator("vis")
    @classmethod
    def validate_vis(cls, v: str) -> str:
        parse_visibility(v)
        return v

    @property
    def visibility(self) -> Visibility:
        return parse_visibility(self.vis)


class GenericParamDecl(_Node):
    """A generic parameter: type, lifetime or const."""

    name: str
    kind: Literal["type", "lifetime", "const"] = "type"
    bounds: List[str] = Field(default_factory=list)
    default: Optional[str] = None
    const_type: Optional[str] = None


class WherePredicate(_Node):
    """``bounded: bound + bound`` from a where clause."""

    bounded: str
    bounds: List[str]


class Generics(_Node):
    params: List[GenericParamDecl] = Field(default_factory=list)
    where: List[WherePredicate] = Field(default_factory=list)

    @field_validator("params")
    @classmethod
    def validate_unique_names(cls, v: List[GenericParamDecl]) -> List[GenericParamDecl]:
        seen = set()
        for param in v:
            if param.name in seen:
                raise ValueError(f"Duplicate generic parameter '{param.name}'")
            seen.add(param.name)
        return v


class Param(_Node):
    name: str = "_"
    type: str


class FnDecl(_Declared):
    """A free function, inherent method or trait method."""

    kind: Literal["fn"]
    receiver: Optional[str] = None  # "self", "&self", "&mut self", "self: Box<Self>"
    params: List[Param] = Field(default_factory=list)
    ret: Optional[str] = None
    generics: Generics = Field(default_factory=Generics)
    unsafe: bool = False
    const: bool = False
    abi: Optional[str] = None
    has_body: bool = True


class FieldDecl(_Node):
    name: str
    type: str
    vis: str = "private"
    attrs: List[MetaItem] = Field(default_factory=list)

    @field_validator("vis")
    @classmethod
    def validate_vis(cls, v: str) -> str:
        parse_visibility(v)
        return v

    @property
    def visibility(self) -> Visibility:
        return parse_visibility(self.vis)


Shape = Literal["named", "tuple", "unit"]


def _check_shape(shape: str, fields: List[FieldDecl], owner: str) -> None:
    if shape == "unit" and fields:
        raise ValueError(f"Unit-shaped '{owner}' cannot declare fields")


class StructDecl(_Declared):
    kind: Literal["struct"]
    shape: Shape = "named"
    fields: List[FieldDecl] = Field(default_factory=list)
    generics: Generics = Field(default_factory=Generics)

    @model_validator(mode="after")
    def validate_shape(self) -> "StructDecl":
        _check_shape(self.shape, self.fields, self.name)
        return self


class VariantDecl(_Node):
    """An enum variant. Variant fields are always public."""

    name: str
    shape: Shape = "unit"
    fields: List[FieldDecl] = Field(default_factory=list)
    discriminant: Optional[str] = None
    attrs: List[MetaItem] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_shape(self) -> "VariantDecl":
        _check_shape(self.shape, self.fields, self.name)
        return self


class EnumDecl(_Declared):
    kind: Literal["enum"]
    variants: List[VariantDecl] = Field(default_factory=list)
    generics: Generics = Field(default_factory=Generics)

    @field_validator("variants")
    @classmethod
    def validate_unique_variants(cls, v: List[VariantDecl]) -> List[VariantDecl]:
        names = [variant.name for variant in v]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate enum variants not allowed: {duplicates}")
        return v


class AssocTypeDecl(_Node):
    """An associated type in a trait (bounds, optional default) or impl
    (``default`` holds the definition)."""

    kind: Literal["type"]
    name: str
    bounds: List[str] = Field(default_factory=list)
    default: Optional[str] = None
    attrs: List[MetaItem] = Field(default_factory=list)


AssocItem = Annotated[Union[FnDecl, AssocTypeDecl], Field(discriminator="kind")]


class TraitDecl(_Declared):
    kind: Literal["trait"]
    items: List[AssocItem] = Field(default_factory=list)
    supertraits: List[str] = Field(default_factory=list)
    generics: Generics = Field(default_factory=Generics)
    unsafe: bool = False


class TypeAliasDecl(_Declared):
    kind: Literal["type"]
    target: str
    generics: Generics = Field(default_factory=Generics)


class ConstDecl(_Declared):
    kind: Literal["const"]
    type: str


class StaticDecl(_Declared):
    kind: Literal["static"]
    type: str
    mutable: bool = False


class MacroDecl(_Declared):
    """A ``macro_rules!`` definition; ``arms`` are the matcher patterns."""

    kind: Literal["macro"]
    arms: List[str] = Field(default_factory=list)


class UseDecl(_Node):
    """A ``use`` declaration, flattened to one path per declaration."""

    kind: Literal["use"]
    path: str
    alias: Optional[str] = None
    glob: bool = False
    vis: str = "private"
    attrs: List[MetaItem] = Field(default_factory=list)

    @field_validator("vis")
    @classmethod
    def validate_vis(cls, v: str) -> str:
        parse_visibility(v)
        return v

    @model_validator(mode="after")
    def validate_use(self) -> "UseDecl":
        if not self.path.strip():
            raise ValueError("Use declaration path must not be empty")
        # `a::b::*` is the same declaration as `a::b` with glob set
        stripped = self.path.strip()
        if stripped.endswith("::*"):
            self.path = stripped[:-3]
            self.glob = True
        if self.glob and self.alias:
            raise ValueError(f"Glob use of '{self.path}' cannot be renamed")
        return self

    @property
    def visibility(self) -> Visibility:
        return parse_visibility(self.vis)

    @property
    def segments(self) -> List[str]:
        return [s.strip() for s in self.path.split("::")]

    @property
    def bound_name(self) -> str:
        """Name the declaration binds in its module (alias or last segment)."""
        if self.alias:
            return self.alias
        last = self.segments[-1]
        # `use foo::{self}` arrives flattened as `foo::self`
        if last == "self" and len(self.segments) > 1:
            return self.segments[-2]
        return last


class ImplDecl(_Node):
    """An inherent (``trait_`` unset) or trait implementation block."""

    kind: Literal["impl"]
    self_type: str
    trait_: Optional[str] = Field(default=None, alias="trait")
    generics: Generics = Field(default_factory=Generics)
    items: List[AssocItem] = Field(default_factory=list)
    negative: bool = False
    unsafe: bool = False
    attrs: List[MetaItem] = Field(default_factory=list)


class ModDecl(_Declared):
    kind: Literal["mod"]
    items: List["Item"] = Field(default_factory=list)


Item = Annotated[
    Union[
        FnDecl,
        StructDecl,
        EnumDecl,
        TraitDecl,
        TypeAliasDecl,
        ConstDecl,
        StaticDecl,
        MacroDecl,
        UseDecl,
        ImplDecl,
        ModDecl,
    ],
    Field(discriminator="kind"),
]

ModDecl.model_rebuild()


class ParsedCrate(_Node):
    """Root of a parsed source tree: the crate's root module."""

    name: str
    version: Optional[str] = None
    attrs: List[MetaItem] = Field(default_factory=list)
    items: List[Item] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Crate names map `-` to `_` in paths, as Cargo does."""
        normalized = v.strip().replace("-", "_")
        if not normalized or not normalized.replace("_", "a").isalnum():
            raise ValueError(f"Crate name '{v}' is not a valid identifier")
        return normalized
