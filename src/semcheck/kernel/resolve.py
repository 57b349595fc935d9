"""Name resolution over a parsed crate.

``CrateIndex`` builds the declaration arena and one scope per module, resolves
``use`` declarations by fixpoint iteration, then walks the ``pub`` bindings
from the crate root to enumerate the public paths, shortest first. Resolution never recurses
through re-exports: a use whose target is not resolvable yet is simply retried
in the next round, so chains and cycles of re-exports need no special casing.
"""

import heapq
import itertools
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Set, Tuple

import structlog

from semcheck.codes import WarningCode

from . import cfg as cfg_mod
from .cfg import Config, cfg_from_attrs
from .errors import AmbiguousDefinitionError, UnresolvedReexportError
from .model import ExtractionWarning
from .tree import (
    ImplDecl,
    MacroDecl,
    ModDecl,
    ParsedCrate,
    UseDecl,
    Visibility,
    has_attr,
    is_doc_hidden,
)
from .types import PathResolver, base_path

logger = structlog.get_logger()

TYPE_NS = "type"
VALUE_NS = "value"
MACRO_NS = "macro"
NAMESPACES = (TYPE_NS, VALUE_NS, MACRO_NS)

# Members of a module are listed under at most this many of its public paths
# (the shortest ones); further routes only add the module path itself.
MAX_MODULE_ROUTES = 16

_NAMESPACE_BY_KIND = {
    "mod": TYPE_NS,
    "struct": TYPE_NS,
    "enum": TYPE_NS,
    "trait": TYPE_NS,
    "type": TYPE_NS,
    "fn": VALUE_NS,
    "const": VALUE_NS,
    "static": VALUE_NS,
    "macro": MACRO_NS,
}

DeclId = Tuple[str, str]  # (namespace, declaration path)
ScopeKey = Tuple[str, str]  # (namespace, bound name)


def _narrower(a: Visibility, b: Visibility) -> Visibility:
    return a if a.rank <= b.rank else b


def _wider(a: Visibility, b: Visibility) -> bool:
    return a.rank > b.rank


@dataclass
class Decl:
    """One declaration in the arena."""

    id: DeclId
    node: object
    module: str  # key of the module whose scope resolves names for this declaration
    cfg: Config
    hidden: bool = False

    @property
    def namespace(self) -> str:
        return self.id[0]

    @property
    def path(self) -> str:
        return self.id[1]

    @property
    def is_module(self) -> bool:
        return isinstance(self.node, ModDecl)


@dataclass(frozen=True)
class Binding:
    """A name bound in a module scope, to a local declaration or a foreign path."""

    vis: Visibility
    cfg: Config
    target: Optional[DeclId] = None
    foreign: Optional[str] = None
    via_use: bool = False
    glob: bool = False
    hidden: bool = False

    def same_target(self, other: "Binding") -> bool:
        return self.target == other.target and self.foreign == other.foreign


@dataclass
class ModuleScope:
    key: str
    parent: Optional[str]
    bindings: Dict[ScopeKey, Binding] = field(default_factory=dict)
    uses: List[Tuple[UseDecl, Config]] = field(default_factory=list)
    ambiguous: Set[ScopeKey] = field(default_factory=set)

    def is_within(self, other: str) -> bool:
        return self.key == other or self.key.startswith(other + "::")


FOUND = "found"
PENDING = "pending"
FOREIGN = "foreign"
IGNORED = "ignored"
INVALID = "invalid"


@dataclass(frozen=True)
class Lookup:
    """Outcome of resolving a path from inside a module."""

    status: str
    bindings: Tuple[Tuple[str, Binding], ...] = ()
    foreign: Optional[str] = None

    @property
    def first(self) -> Optional[Binding]:
        return self.bindings[0][1] if self.bindings else None


@dataclass(frozen=True)
class PublicPath:
    """One path reached by the public walk."""

    path: str
    namespace: str
    binding: Binding
    cfg: Config
    via_reexport: bool = False

    @property
    def target(self) -> DeclId:
        return self.binding.target


class CrateIndex:
    """Declarations, scopes and public paths of one parsed crate."""

    def __init__(self, tree: ParsedCrate, fail_on_unresolved_reexport: bool = False):
        self.crate = tree.name
        self.root = tree.name
        self.fail_on_unresolved_reexport = fail_on_unresolved_reexport
        self.decls: Dict[DeclId, Decl] = {}
        self.modules: Dict[str, ModuleScope] = {}
        self.impls: List[Tuple[str, ImplDecl, Config]] = []
        self.warnings: List[ExtractionWarning] = []
        self.public_paths: List[PublicPath] = []
        self.public_modules: Set[str] = set()
        self._paths_by_decl: Dict[DeclId, List[PublicPath]] = {}
        self._unresolved: List[Tuple[str, UseDecl]] = []
        self._foreign_globs: List[Tuple[str, UseDecl]] = []

        root_cfg = cfg_from_attrs(tree.attrs)
        root_node = ModDecl(kind="mod", name=tree.name, vis="pub", attrs=tree.attrs)
        root_id = (TYPE_NS, self.root)
        self.decls[root_id] = Decl(root_id, root_node, self.root, root_cfg)
        self.modules[self.root] = ModuleScope(self.root, None)

        self._collect(self.root, tree.items, root_cfg)
        self._resolve_uses()
        root_binding = Binding(vis=Visibility.PUBLIC, cfg=root_cfg, target=root_id)
        self._record(PublicPath(self.root, TYPE_NS, root_binding, root_cfg))
        self._walk(root_cfg)
        self._report_unresolved()
        logger.debug(
            "crate_indexed",
            crate=self.crate,
            declarations=len(self.decls),
            modules=len(self.modules),
            public_paths=len(self.public_paths),
        )

    # ------------------------------------------------------------------
    # Warnings
    # ------------------------------------------------------------------

    def warn(self, code: WarningCode, path: str, message: str) -> None:
        self.warnings.append(ExtractionWarning(code=code, path=path, message=message))
        logger.warning("extraction_warning", code=code.value, path=path, detail=message)

    # ------------------------------------------------------------------
    # Arena
    # ------------------------------------------------------------------

    def _collect(self, module_key: str, items: list, module_cfg: Config) -> None:
        scope = self.modules[module_key]
        for item in items:
            if isinstance(item, UseDecl):
                scope.uses.append((item, cfg_mod.conjoin(module_cfg, cfg_from_attrs(item.attrs))))
                continue
            if isinstance(item, ImplDecl):
                self.impls.append((module_key, item, cfg_mod.conjoin(module_cfg, cfg_from_attrs(item.attrs))))
                continue

            namespace = _NAMESPACE_BY_KIND[item.kind]
            item_cfg = cfg_mod.conjoin(module_cfg, cfg_from_attrs(item.attrs))
            hidden = is_doc_hidden(item.attrs)
            owner = scope
            vis = item.visibility
            if isinstance(item, MacroDecl) and has_attr(item.attrs, "macro_export"):
                owner = self.modules[self.root]
                vis = Visibility.PUBLIC

            decl_id = (namespace, f"{owner.key}::{item.name}")
            existing = self.decls.get(decl_id)
            if existing is not None:
                if cfg_mod.intersects(existing.cfg, item_cfg):
                    raise AmbiguousDefinitionError(decl_id[1], namespace)
                existing.cfg = cfg_mod.union(existing.cfg, item_cfg)
                key = (namespace, item.name)
                owner.bindings[key] = replace(owner.bindings[key], cfg=existing.cfg)
                logger.debug("cfg_variants_merged", path=decl_id[1], namespace=namespace)
            else:
                self.decls[decl_id] = Decl(decl_id, item, module_key, item_cfg, hidden)
                owner.bindings[(namespace, item.name)] = Binding(
                    vis=vis, cfg=item_cfg, target=decl_id, hidden=hidden
                )

            if isinstance(item, ModDecl):
                if decl_id[1] not in self.modules:
                    self.modules[decl_id[1]] = ModuleScope(decl_id[1], module_key)
                self._collect(decl_id[1], item.items, item_cfg)

    # ------------------------------------------------------------------
    # Path lookup
    # ------------------------------------------------------------------

    def _visible(self, binding: Binding, origin: str, owner: str) -> bool:
        if binding.vis.is_importable:
            return True
        return self.modules[origin].is_within(owner)

    def _lookup(self, origin: str, segments, namespaces=NAMESPACES) -> Lookup:
        segs = [s for s in segments]
        if len(segs) > 1 and segs[-1] == "self":
            segs = segs[:-1]
            namespaces = (TYPE_NS,)
        if not segs:
            return Lookup(INVALID)

        head = segs[0]
        if head == "":
            return Lookup(FOREIGN, foreign="::".join(segs[1:]))
        if head == "crate":
            current, rest = self.root, segs[1:]
        elif head in ("self", "super"):
            current, rest = origin, segs
            if rest[0] == "self":
                rest = rest[1:]
            while rest and rest[0] == "super":
                parent = self.modules[current].parent
                if parent is None:
                    return Lookup(INVALID)
                current, rest = parent, rest[1:]
        else:
            current, rest = origin, segs

        if not rest:
            module_id = (TYPE_NS, current)
            return Lookup(FOUND, ((TYPE_NS, Binding(vis=Visibility.PUBLIC, cfg=self.decls[module_id].cfg, target=module_id)),))

        for index, segment in enumerate(rest):
            scope = self.modules[current]
            if index == len(rest) - 1:
                found = []
                for namespace in namespaces:
                    binding = scope.bindings.get((namespace, segment))
                    if binding is not None and self._visible(binding, origin, current):
                        found.append((namespace, binding))
                return Lookup(FOUND, tuple(found)) if found else Lookup(PENDING)

            binding = scope.bindings.get((TYPE_NS, segment))
            if binding is None or not self._visible(binding, origin, current):
                return Lookup(PENDING)
            if binding.foreign is not None:
                return Lookup(FOREIGN, foreign="::".join([binding.foreign] + rest[index + 1:]))
            decl = self.decls[binding.target]
            if not decl.is_module:
                # enum variants and associated items are not part of the scope graph
                return Lookup(IGNORED)
            current = decl.path
        return Lookup(INVALID)

    def lookup_type(self, module_key: str, text: str) -> Lookup:
        """Resolve the nominal type (or trait) behind a type string."""
        segments = base_path(text)
        if segments is None:
            return Lookup(IGNORED)
        return self._lookup(module_key, segments, (TYPE_NS,))

    def type_resolver(self, module_key: str) -> PathResolver:
        """Path resolver for signatures declared in module_key."""

        def resolve(segments: Tuple[str, ...]) -> Optional[str]:
            result = self._lookup(module_key, list(segments), (TYPE_NS,))
            if result.status == FOREIGN:
                return result.foreign
            if result.status != FOUND:
                return None
            binding = result.first
            if binding.foreign is not None:
                return binding.foreign
            return self.preferred_path(binding.target) or binding.target[1]

        return resolve

    # ------------------------------------------------------------------
    # Use resolution
    # ------------------------------------------------------------------

    def _resolve_uses(self) -> None:
        pending: Dict[str, List[Tuple[UseDecl, Config]]] = {}
        globs: Dict[str, List[Tuple[UseDecl, Config]]] = {}
        for key, scope in self.modules.items():
            pending[key] = [(u, c) for u, c in scope.uses if not u.glob]
            globs[key] = [(u, c) for u, c in scope.uses if u.glob]

        while True:
            self._fixpoint(pending, globs)
            if not self._bind_foreign(pending):
                break

        for module_key in sorted(pending):
            for use, _ in pending[module_key]:
                self._unresolved.append((module_key, use))
        for module_key in sorted(globs):
            for use, _ in globs[module_key]:
                self._check_glob_source(module_key, use)

    def _fixpoint(self, pending, globs) -> None:
        rounds = 0
        changed = True
        while changed:
            changed = False
            rounds += 1
            for module_key in sorted(pending):
                remaining = []
                for use, use_cfg in pending[module_key]:
                    result = self._lookup(module_key, use.segments)
                    if result.status == PENDING:
                        remaining.append((use, use_cfg))
                        continue
                    self._apply_use(module_key, use, use_cfg, result)
                    changed = True
                pending[module_key] = remaining
            for module_key in sorted(globs):
                for use, use_cfg in globs[module_key]:
                    if self._expand_glob(module_key, use, use_cfg):
                        changed = True
        logger.debug("uses_resolved", crate=self.crate, rounds=rounds)

    def _is_local_head(self, module_key: str, head: str) -> bool:
        if head in ("crate", "self", "super"):
            return True
        scope = self.modules[module_key]
        return any(
            (ns, head) in scope.bindings or (ns, head) in scope.ambiguous
            for ns in NAMESPACES
        )

    def _bind_foreign(self, pending) -> bool:
        """Bind stalled uses whose first segment names another crate."""
        bound = False
        for module_key in sorted(pending):
            remaining = []
            for use, use_cfg in pending[module_key]:
                if self._is_local_head(module_key, use.segments[0]):
                    remaining.append((use, use_cfg))
                    continue
                segments = use.segments
                if len(segments) > 1 and segments[-1] == "self":
                    segments = segments[:-1]
                self._apply_use(module_key, use, use_cfg, Lookup(FOREIGN, foreign="::".join(segments)))
                bound = True
            pending[module_key] = remaining
        return bound

    def _apply_use(self, module_key: str, use: UseDecl, use_cfg: Config, result: Lookup) -> None:
        hidden = is_doc_hidden(use.attrs)
        if result.status == FOUND:
            for namespace, target in result.bindings:
                self._bind(
                    module_key,
                    namespace,
                    use.bound_name,
                    Binding(
                        vis=use.visibility,
                        cfg=cfg_mod.conjoin(use_cfg, target.cfg),
                        target=target.target,
                        foreign=target.foreign,
                        via_use=True,
                        hidden=hidden or target.hidden,
                    ),
                )
        elif result.status == FOREIGN:
            self._bind(
                module_key,
                TYPE_NS,
                use.bound_name,
                Binding(vis=use.visibility, cfg=use_cfg, foreign=result.foreign, via_use=True, hidden=hidden),
            )
        elif result.status == IGNORED:
            logger.debug("use_not_modeled", module=module_key, target=use.path)
        else:
            self._unresolved.append((module_key, use))

    def _bind(self, module_key: str, namespace: str, name: str, binding: Binding) -> None:
        scope = self.modules[module_key]
        key = (namespace, name)
        current = scope.bindings.get(key)
        if current is None or current.glob:
            scope.bindings[key] = binding
            return
        if current.same_target(binding):
            if _wider(binding.vis, current.vis):
                scope.bindings[key] = replace(current, vis=binding.vis, hidden=current.hidden and binding.hidden)
            return
        if cfg_mod.intersects(current.cfg, binding.cfg):
            raise AmbiguousDefinitionError(f"{module_key}::{name}", namespace)
        # cfg-exclusive alternatives: the first binding stands for both
        scope.bindings[key] = replace(current, cfg=cfg_mod.union(current.cfg, binding.cfg))

    def _glob_source(self, module_key: str, use: UseDecl) -> Optional[ModuleScope]:
        result = self._lookup(module_key, use.segments, (TYPE_NS,))
        if result.status != FOUND:
            return None
        source = result.first
        if source.foreign is not None or not self.decls[source.target].is_module:
            return None
        return self.modules[source.target[1]]

    def _expand_glob(self, module_key: str, use: UseDecl, use_cfg: Config) -> bool:
        source = self._glob_source(module_key, use)
        if source is None or source.key == module_key:
            return False
        scope = self.modules[module_key]
        hidden = is_doc_hidden(use.attrs)
        changed = False
        for key, member in sorted(source.bindings.items()):
            if key in scope.ambiguous or not self._visible(member, module_key, source.key):
                continue
            candidate = Binding(
                vis=_narrower(use.visibility, member.vis),
                cfg=cfg_mod.conjoin(use_cfg, member.cfg),
                target=member.target,
                foreign=member.foreign,
                via_use=True,
                glob=True,
                hidden=hidden or member.hidden,
            )
            current = scope.bindings.get(key)
            if current is None:
                scope.bindings[key] = candidate
                changed = True
            elif not current.glob:
                continue  # explicit names shadow glob imports
            elif current.same_target(candidate):
                if _wider(candidate.vis, current.vis):
                    scope.bindings[key] = replace(current, vis=candidate.vis)
                    changed = True
            else:
                del scope.bindings[key]
                scope.ambiguous.add(key)
                changed = True
                self.warn(
                    WarningCode.GLOB_CONFLICT,
                    f"{module_key}::{key[1]}",
                    f"Glob imports bring different {key[0]} items named '{key[1]}'; name is unusable",
                )
        return changed

    def _check_glob_source(self, module_key: str, use: UseDecl) -> None:
        if self._glob_source(module_key, use) is not None:
            return
        result = self._lookup(module_key, use.segments, (TYPE_NS,))
        if result.status in (FOUND, IGNORED):
            return  # enum variants or a foreign module bound by name
        if result.status == FOREIGN or not self._is_local_head(module_key, use.segments[0]):
            if use.visibility.is_public and not is_doc_hidden(use.attrs):
                self._foreign_globs.append((module_key, use))
            return
        self._unresolved.append((module_key, use))

    # ------------------------------------------------------------------
    # Public walk
    # ------------------------------------------------------------------

    def _walk(self, root_cfg: Config) -> None:
        """Breadth-first walk over public module routes, shortest paths first.

        Each module is expanded along at most MAX_MODULE_ROUTES routes, so
        re-export fan-out cannot multiply the model.
        """
        order = itertools.count()
        queue = [(0, self.root, next(order), self.root, (self.root,), root_cfg, False)]
        expanded: Dict[str, int] = {}
        while queue:
            _, prefix, _, module_key, chain, acc_cfg, via_reexport = heapq.heappop(queue)
            routes = expanded.get(module_key, 0)
            expanded[module_key] = routes + 1
            if routes == MAX_MODULE_ROUTES:
                self.warn(
                    WarningCode.MODULE_ROUTE_LIMIT,
                    prefix,
                    f"Module '{module_key}' is reachable through more than {MAX_MODULE_ROUTES} "
                    "public paths; its members are listed under the shortest ones only",
                )
            if routes >= MAX_MODULE_ROUTES:
                continue
            for sub in self._walk_module(module_key, prefix, chain, acc_cfg, via_reexport):
                sub_prefix = sub[0]
                heapq.heappush(queue, (sub_prefix.count("::"), sub_prefix, next(order)) + sub[1:])

    def _walk_module(self, module_key: str, prefix: str, chain: Tuple[str, ...], acc_cfg: Config, via_reexport: bool) -> list:
        """Record the public bindings of one module route; return its submodule routes."""
        self.public_modules.add(module_key)
        submodules = []

        for (namespace, name), binding in sorted(self.modules[module_key].bindings.items()):
            if not binding.vis.is_public or binding.hidden:
                continue
            path = f"{prefix}::{name}!" if namespace == MACRO_NS else f"{prefix}::{name}"
            reexported = via_reexport or binding.via_use
            path_cfg = cfg_mod.conjoin(acc_cfg, binding.cfg)
            if binding.foreign is not None:
                self.warn(
                    WarningCode.EXTERNAL_REEXPORT,
                    path,
                    f"Re-export of external item '{binding.foreign}' is not part of this crate's surface",
                )
                continue

            self._record(PublicPath(path, namespace, binding, path_cfg, reexported))
            decl = self.decls[binding.target]
            if namespace != TYPE_NS or not decl.is_module:
                continue
            if decl.path in chain:
                logger.debug("reexport_cycle", path=path, module=decl.path)
                continue
            submodules.append((path, decl.path, chain + (decl.path,), path_cfg, reexported))
        return submodules

    def _record(self, public: PublicPath) -> None:
        self.public_paths.append(public)
        self._paths_by_decl.setdefault(public.target, []).append(public)

    def _report_unresolved(self) -> None:
        for module_key, use in self._foreign_globs:
            if module_key in self.public_modules:
                self.warn(
                    WarningCode.EXTERNAL_REEXPORT,
                    f"{module_key}::*",
                    f"Glob re-export of external module '{use.path}' is not part of this crate's surface",
                )
        for module_key, use in self._unresolved:
            if not use.visibility.is_public or is_doc_hidden(use.attrs) or module_key not in self.public_modules:
                logger.debug("use_unresolved", module=module_key, target=use.path)
                continue
            if self.fail_on_unresolved_reexport:
                raise UnresolvedReexportError(module_key, use.path)
            self.warn(
                WarningCode.UNRESOLVED_REEXPORT,
                f"{module_key}::{'*' if use.glob else use.bound_name}",
                f"Re-export target '{use.path}' cannot be resolved; item excluded",
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def public_paths_of(self, decl_id: DeclId) -> List[PublicPath]:
        return list(self._paths_by_decl.get(decl_id, ()))

    def preferred_path(self, decl_id: DeclId) -> Optional[str]:
        """Shortest public path of a declaration, ties broken lexically."""
        paths = self._paths_by_decl.get(decl_id)
        if not paths:
            return None
        return min(paths, key=lambda p: (p.path.count("::"), p.path)).path
