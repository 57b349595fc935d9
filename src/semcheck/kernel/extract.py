"""Symbol extraction: parsed crate -> ApiModel."""

import hashlib
import re
from contextlib import contextmanager
from dataclasses import replace
from typing import Callable, Dict, FrozenSet, List, Optional, Set, Tuple

import structlog

from semcheck.codes import WarningCode

from . import cfg as cfg_mod
from .errors import InvalidSignatureError
from .model import (
    ApiModel,
    AssocType,
    ConstantDef,
    EnumDef,
    Field,
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
    Variant,
    VisibilityClass,
)
from .resolve import FOREIGN, FOUND, TYPE_NS, VALUE_NS, CrateIndex, Decl, PublicPath
from .tree import (
    ConstDecl,
    EnumDecl,
    FnDecl,
    Generics,
    ImplDecl,
    MacroDecl,
    MetaItem,
    ModDecl,
    ParsedCrate,
    StaticDecl,
    StructDecl,
    TraitDecl,
    TypeAliasDecl,
    Visibility,
    has_attr,
    is_doc_hidden,
)
from .types import PathResolver, TypeSyntaxError, normalize_bound, normalize_type, split_bounds

logger = structlog.get_logger()

_SELF_RE = re.compile(r"\bself\b")

# Prelude and derivable traits, so `Debug`, `fmt::Debug` and `core::fmt::Debug`
# name the same capability in trait impl keys.
_STD_TRAITS = {
    "Clone": "core::clone::Clone",
    "Copy": "core::marker::Copy",
    "Send": "core::marker::Send",
    "Sync": "core::marker::Sync",
    "Unpin": "core::marker::Unpin",
    "Debug": "core::fmt::Debug",
    "Display": "core::fmt::Display",
    "Default": "core::default::Default",
    "PartialEq": "core::cmp::PartialEq",
    "Eq": "core::cmp::Eq",
    "PartialOrd": "core::cmp::PartialOrd",
    "Ord": "core::cmp::Ord",
    "Hash": "core::hash::Hash",
    "From": "core::convert::From",
    "Into": "core::convert::Into",
    "AsRef": "core::convert::AsRef",
    "Iterator": "core::iter::Iterator",
    "Drop": "core::ops::Drop",
    "Error": "core::error::Error",
}
_STD_TRAIT_PATHS = frozenset(_STD_TRAITS.values())


def canonical_trait(path: str) -> str:
    """Spell well-known standard library traits by their `core` path."""
    name, sep, args = path.partition("<")
    if name in _STD_TRAITS:
        return _STD_TRAITS[name] + sep + args
    for prefix in ("std::", "alloc::"):
        if name.startswith(prefix) and "core::" + name[len(prefix):] in _STD_TRAIT_PATHS:
            return "core::" + name[len(prefix):] + sep + args
    return path


def doc_digest(attrs: List[MetaItem]) -> Optional[str]:
    """Short digest of the doc comments, whitespace-insensitive per line."""
    docs = [attr.value for attr in attrs if attr.name == "doc" and attr.value is not None]
    if not docs:
        return None
    text = "\n".join(line.strip() for doc in docs for line in doc.splitlines())
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


def _abi(abi: Optional[str]) -> str:
    if abi is None:
        return "Rust"
    abi = abi.strip().strip('"')
    return abi or "C"


@contextmanager
def _declared_at(path: str):
    """Report malformed type text against the declaration it came from."""
    try:
        yield
    except TypeSyntaxError as e:
        raise InvalidSignatureError(str(e), path=path) from e


def _receiver_type(receiver: str, norm: Callable[[str], str]) -> str:
    """``&'a mut self`` -> ``&mut Self``; ``self: Box<Self>`` -> ``Box<Self>``."""
    text = receiver.strip()
    if ":" in text:
        return norm(text.split(":", 1)[1])
    if text.startswith("mut "):
        text = text[4:]
    return norm(_SELF_RE.sub("Self", text))


class _ModelBuilder:
    """Turns the public paths of a CrateIndex into PublicItems."""

    def __init__(self, index: CrateIndex):
        self.index = index
        self.items: Dict[str, PublicItem] = {}
        self._namespaces: Dict[str, str] = {}

    def build(self) -> ApiModel:
        for public in self.index.public_paths:
            decl = self.index.decls[public.target]
            with _declared_at(decl.path):
                item = self._item_for(public, decl)
            self._add(item, public.namespace)
        self._add_inherent_methods()
        self._add_trait_impls()
        self._add_derived_impls()
        return ApiModel(crate=self.index.crate, items=self.items, warnings=tuple(self.index.warnings))

    # ------------------------------------------------------------------
    # Key management
    # ------------------------------------------------------------------

    def _add(self, item: PublicItem, namespace: str) -> None:
        existing = self.items.get(item.path)
        if existing is None:
            self.items[item.path] = item
            self._namespaces[item.path] = namespace
            return
        if existing.declared_path == item.declared_path and existing.kind == item.kind:
            self.items[item.path] = replace(existing, cfg=cfg_mod.union(existing.cfg, item.cfg))
            return

        path = item.path
        if namespace == VALUE_NS:
            value_item = item
        elif self._namespaces[path] == VALUE_NS:
            value_item = existing
            self.items[path] = item
            self._namespaces[path] = namespace
        else:
            logger.debug("duplicate_public_path", path=path, kept=existing.declared_path)
            return

        keyed = f"{path}#value"
        self.index.warn(
            WarningCode.PATH_COLLISION,
            path,
            f"Type and value items share this path; the {value_item.kind.value} is keyed '{keyed}'",
        )
        self.items[keyed] = replace(value_item, path=keyed)
        self._namespaces[keyed] = VALUE_NS

    # ------------------------------------------------------------------
    # Signature helpers
    # ------------------------------------------------------------------

    def _generics(
        self,
        generics: Generics,
        resolve: PathResolver,
        outer_names: FrozenSet[str] = frozenset(),
    ) -> Tuple[Tuple[GenericParam, ...], FrozenSet[str], FrozenSet[str]]:
        own = [p for p in generics.params if p.kind != "lifetime"]
        names = outer_names | frozenset(p.name for p in own)

        def bounds_of(raw_bounds: List[str]) -> Set[str]:
            out = set()
            for raw in raw_bounds:
                for part in split_bounds(raw):
                    bound = normalize_bound(part, resolve, names)
                    if bound:
                        out.add(bound)
            return out

        param_bounds = {p.name: bounds_of(p.bounds) for p in own}
        where: Set[str] = set()
        for predicate in generics.where:
            if predicate.bounded.strip().startswith("'"):
                continue
            bounds = bounds_of(predicate.bounds)
            bounded = normalize_type(predicate.bounded, resolve, names)
            # `where T: Bound` on an own parameter is the same as `T: Bound`
            if bounded in param_bounds:
                param_bounds[bounded] |= bounds
            else:
                where.update(f"{bounded}: {b}" for b in bounds)

        params = tuple(
            GenericParam(
                name=p.name,
                kind=p.kind,
                bounds=frozenset(param_bounds[p.name]),
                default=normalize_type(p.default, resolve, names) if p.default else None,
                const_type=normalize_type(p.const_type, resolve, names) if p.const_type else None,
            )
            for p in own
        )
        return params, frozenset(where), names

    def _function_sig(
        self,
        fn: FnDecl,
        resolve: PathResolver,
        outer_names: FrozenSet[str] = frozenset(),
        trait_method: bool = False,
    ) -> FunctionSig:
        generics, where, names = self._generics(fn.generics, resolve, outer_names)

        def norm(text: str) -> str:
            return normalize_type(text, resolve, names)

        params = []
        if fn.receiver:
            params.append(_receiver_type(fn.receiver, norm))
        params.extend(norm(p.type) for p in fn.params)
        return FunctionSig(
            params=tuple(params),
            ret=norm(fn.ret) if fn.ret and fn.ret.strip() else "()",
            generics=generics,
            where_bounds=where,
            is_trait_method=trait_method,
            has_default=trait_method and fn.has_body,
            unsafe=fn.unsafe,
            const=fn.const,
            abi=_abi(fn.abi),
        )

    def _visibility_class(self, decl: Decl) -> VisibilityClass:
        node = decl.node
        if isinstance(node, MacroDecl) and has_attr(node.attrs, "macro_export"):
            return VisibilityClass.PUBLIC
        return VisibilityClass.PUBLIC if node.visibility.is_public else VisibilityClass.RESTRICTED

    def _public_type_name(self, module_key: str, text: str, resolve: PathResolver, names: FrozenSet[str]) -> Optional[str]:
        """Normalized type or trait, or None when it names a private local item."""
        lookup = self.index.lookup_type(module_key, text)
        if lookup.status == FOUND:
            binding = lookup.first
            if binding.target is not None and self.index.preferred_path(binding.target) is None:
                return None
        return normalize_type(text, resolve, names)

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def _item_for(self, public: PublicPath, decl: Decl) -> PublicItem:
        node = decl.node
        resolve = self.index.type_resolver(decl.module)
        kind, payload = self._payload(node, decl, resolve)
        return PublicItem(
            path=public.path,
            kind=kind,
            payload=payload,
            declared_path=decl.path,
            visibility=self._visibility_class(decl),
            deprecated=has_attr(node.attrs, "deprecated"),
            doc_digest=doc_digest(node.attrs),
            cfg=cfg_mod.conjoin(public.cfg, decl.cfg),
        )

    def _payload(self, node, decl: Decl, resolve: PathResolver):
        if isinstance(node, FnDecl):
            return ItemKind.FUNCTION, self._function_sig(node, resolve)

        if isinstance(node, StructDecl):
            generics, where, names = self._generics(node.generics, resolve)
            fields = tuple(
                Field(f.name, normalize_type(f.type, resolve, names), f.visibility)
                for f in node.fields
            )
            return ItemKind.STRUCT, StructDef(
                shape=node.shape,
                fields=fields,
                non_exhaustive=has_attr(node.attrs, "non_exhaustive"),
                generics=generics,
                where_bounds=where,
            )

        if isinstance(node, EnumDecl):
            generics, where, names = self._generics(node.generics, resolve)
            variants = tuple(
                Variant(
                    name=v.name,
                    shape=v.shape,
                    fields=tuple(
                        Field(f.name, normalize_type(f.type, resolve, names), Visibility.PUBLIC)
                        for f in v.fields
                    ),
                    non_exhaustive=has_attr(v.attrs, "non_exhaustive"),
                )
                for v in node.variants
            )
            return ItemKind.ENUM, EnumDef(
                variants=variants,
                non_exhaustive=has_attr(node.attrs, "non_exhaustive"),
                generics=generics,
                where_bounds=where,
            )

        if isinstance(node, TraitDecl):
            return ItemKind.TRAIT, self._trait(node, decl, resolve)

        if isinstance(node, TypeAliasDecl):
            generics, where, names = self._generics(node.generics, resolve)
            return ItemKind.TYPE_ALIAS, TypeAliasDef(
                target=normalize_type(node.target, resolve, names),
                generics=generics,
                where_bounds=where,
            )

        if isinstance(node, ConstDecl):
            return ItemKind.CONSTANT, ConstantDef(type=normalize_type(node.type, resolve))

        if isinstance(node, StaticDecl):
            return ItemKind.CONSTANT, ConstantDef(
                type=normalize_type(node.type, resolve), is_static=True, mutable=node.mutable
            )

        if isinstance(node, ModDecl):
            return ItemKind.MODULE, ModuleDef()

        if isinstance(node, MacroDecl):
            return ItemKind.MACRO, MacroDef(arms=tuple(" ".join(arm.split()) for arm in node.arms))

        raise TypeError(f"Unexpected declaration {type(node).__name__} at {decl.path}")

    def _trait(self, node: TraitDecl, decl: Decl, resolve: PathResolver) -> TraitDef:
        generics, where, names = self._generics(node.generics, resolve)
        methods = []
        assoc_types = []
        for member in node.items:
            if isinstance(member, FnDecl):
                methods.append((member.name, self._function_sig(member, resolve, names, trait_method=True)))
                continue
            bounds = set()
            for raw in member.bounds:
                for part in split_bounds(raw):
                    bound = normalize_bound(part, resolve, names)
                    if bound:
                        bounds.add(bound)
            assoc_types.append(AssocType(member.name, frozenset(bounds), member.default is not None))

        supertraits = set()
        sealed = has_attr(node.attrs, "sealed")
        for raw in node.supertraits:
            for part in split_bounds(raw):
                lookup = self.index.lookup_type(decl.module, part)
                binding = lookup.first if lookup.status == FOUND else None
                if binding is not None and binding.target is not None and self.index.preferred_path(binding.target) is None:
                    sealed = True
                    continue
                bound = normalize_bound(part, resolve, names)
                if bound:
                    supertraits.add(bound)

        return TraitDef(
            methods=tuple(sorted(methods, key=lambda m: m[0])),
            assoc_types=tuple(sorted(assoc_types, key=lambda a: a.name)),
            supertraits=frozenset(supertraits),
            sealed=sealed,
            unsafe=node.unsafe,
            generics=generics,
            where_bounds=where,
        )

    # ------------------------------------------------------------------
    # Impl blocks
    # ------------------------------------------------------------------

    def _add_inherent_methods(self) -> None:
        for module_key, impl, impl_cfg in self.index.impls:
            if impl.trait_ is not None:
                continue
            with _declared_at(f"{module_key}::impl {impl.self_type}"):
                self._add_inherent_impl(module_key, impl, impl_cfg)

    def _add_inherent_impl(self, module_key: str, impl: ImplDecl, impl_cfg: cfg_mod.Config) -> None:
        methods = [
            m for m in impl.items
            if isinstance(m, FnDecl) and m.visibility.is_public and not is_doc_hidden(m.attrs)
        ]
        if not methods:
            return

        lookup = self.index.lookup_type(module_key, impl.self_type)
        if lookup.status != FOUND or lookup.first.target is None:
            if lookup.status != FOREIGN:
                self.index.warn(
                    WarningCode.UNRESOLVED_IMPL_TARGET,
                    f"{module_key}::impl {impl.self_type}",
                    f"Self type '{impl.self_type}' of an inherent impl cannot be resolved",
                )
            return

        type_id = lookup.first.target
        type_decl = self.index.decls[type_id]
        resolve = self.index.type_resolver(module_key)
        impl_generics, impl_where, names = self._generics(impl.generics, resolve)
        impl_bounds = set(impl_where)
        for param in impl_generics:
            impl_bounds.update(f"{param.name}: {b}" for b in param.bounds)

        for public in self.index.public_paths_of(type_id):
            for method in methods:
                sig = self._function_sig(method, resolve, names)
                sig = replace(sig, where_bounds=sig.where_bounds | frozenset(impl_bounds))
                cfg = cfg_mod.conjoin(
                    cfg_mod.conjoin(public.cfg, impl_cfg),
                    cfg_mod.cfg_from_attrs(method.attrs),
                )
                self._add(
                    PublicItem(
                        path=f"{public.path}::{method.name}",
                        kind=ItemKind.FUNCTION,
                        payload=sig,
                        declared_path=f"{type_decl.path}::{method.name}",
                        visibility=self._visibility_class(type_decl),
                        deprecated=has_attr(method.attrs, "deprecated"),
                        doc_digest=doc_digest(method.attrs),
                        cfg=cfg,
                    ),
                    VALUE_NS,
                )

    def _add_trait_impls(self) -> None:
        for module_key, impl, impl_cfg in self.index.impls:
            if impl.trait_ is None or impl.negative:
                continue
            with _declared_at(f"{module_key}::impl {impl.trait_} for {impl.self_type}"):
                resolve = self.index.type_resolver(module_key)
                generics, where, names = self._generics(impl.generics, resolve)
                trait_path = self._public_type_name(module_key, impl.trait_, resolve, names)
                self_type = self._public_type_name(module_key, impl.self_type, resolve, names)
            if trait_path is None or self_type is None:
                continue
            trait_path = canonical_trait(trait_path)
            key = f"impl {trait_path} for {self_type}"
            self._add(
                PublicItem(
                    path=key,
                    kind=ItemKind.TRAIT_IMPL,
                    payload=TraitImplDef(self_type, trait_path, generics, where),
                    cfg=impl_cfg,
                ),
                TYPE_NS,
            )

    def _add_derived_impls(self) -> None:
        for decl in self.index.decls.values():
            node = decl.node
            if not isinstance(node, (StructDecl, EnumDecl)):
                continue
            path = self.index.preferred_path(decl.id)
            if path is None:
                continue
            with _declared_at(decl.path):
                self._add_derived(decl, node, path)

    def _add_derived(self, decl: Decl, node, path: str) -> None:
        resolve = self.index.type_resolver(decl.module)
        generics, _, _ = self._generics(node.generics, resolve)
        type_params = [p.name for p in generics if p.kind == "type"]
        args = [p.name for p in generics]
        self_type = f"{path}<{', '.join(args)}>" if args else path
        for attr in node.attrs:
            if attr.name != "derive":
                continue
            for arg in attr.args:
                trait_path = canonical_trait(normalize_type(arg.name, resolve))
                key = f"impl {trait_path} for {self_type}"
                self._add(
                    PublicItem(
                        path=key,
                        kind=ItemKind.TRAIT_IMPL,
                        payload=TraitImplDef(
                            self_type,
                            trait_path,
                            tuple(replace(p, bounds=frozenset()) for p in generics),
                            frozenset(f"{name}: {trait_path}" for name in type_params),
                        ),
                        cfg=decl.cfg,
                    ),
                    TYPE_NS,
                )


def extract(tree: ParsedCrate, fail_on_unresolved_reexport: bool = False) -> ApiModel:
    """Build the API model of one parsed crate.

    Raises:
        AmbiguousDefinitionError: a name is defined twice under overlapping cfgs
        UnresolvedReexportError: a public re-export cannot be resolved and
            fail_on_unresolved_reexport is set
        InvalidCfgError: a #[cfg] attribute cannot be interpreted
        InvalidSignatureError: a type or bound is not valid Rust syntax
    """
    index = CrateIndex(tree, fail_on_unresolved_reexport=fail_on_unresolved_reexport)
    model = _ModelBuilder(index).build()
    logger.debug("api_model_built", crate=model.crate, items=len(model), warnings=len(model.warnings))
    return model
