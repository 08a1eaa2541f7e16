# kegworks/dependencies.py
"""
dependencies.py - dependency and requirement expansion

Features:
- Dependency (another formula) and Requirement (environment precondition) with tags
- Post-order DFS expansion: if a depends on b, b comes before a
- Memoisation: a shared transitive dependency is listed once (tags merged)
- Per-edge filter returning an Expansion action (keep / prune / skip /
  keep-but-prune-recursive-deps) or a plain bool
- Default filter prunes optional/recommended edges the dependent was not built with
- Back-edge detection raising CyclicDependency naming the cycle
"""

from __future__ import annotations

import shutil
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Union

from kegworks.exceptions import CyclicDependency
from kegworks.logging import get_logger

logger = get_logger("dependencies")

TAGS = ("build", "optional", "recommended", "run")


class Expansion(Enum):
    KEEP = "keep"
    PRUNE = "prune"
    SKIP = "skip"
    KEEP_BUT_PRUNE_RECURSIVE_DEPS = "keep_but_prune_recursive_deps"


EdgeFilter = Callable[[Any, Any], Union[Expansion, bool, None]]

# -----------------------
# Types
# -----------------------
class _Tagged:
    def __init__(self, name: str, tags: Iterable[str] = ()):
        self.name = name
        self.tags: List[str] = []
        for t in tags:
            self.add_tag(t)

    def add_tag(self, tag: str):
        tag = str(tag).lstrip(":")
        if tag not in self.tags:
            self.tags.append(tag)

    @property
    def build(self) -> bool:
        return "build" in self.tags

    @property
    def optional(self) -> bool:
        return "optional" in self.tags

    @property
    def recommended(self) -> bool:
        return "recommended" in self.tags

    @property
    def required(self) -> bool:
        return not (self.optional or self.recommended)

    def __str__(self):
        return self.name


class Dependency(_Tagged):
    """A dependency on another formula, e.g. Dependency("pkg-config", ["build"])."""

    @classmethod
    def from_declaration(cls, decl: Union[str, Dict[str, Any], "Dependency"]) -> "Dependency":
        """Accept "name", {"name": [tags]}, {"name": ..., "tags": [...]} or a Dependency."""
        if isinstance(decl, Dependency):
            return decl
        if isinstance(decl, str):
            return cls(decl)
        if isinstance(decl, dict):
            if "name" in decl:
                return cls(decl["name"], decl.get("tags") or [])
            if len(decl) == 1:
                (name, tags), = decl.items()
                if isinstance(tags, str):
                    tags = [tags]
                return cls(name, tags or [])
        raise ValueError(f"unsupported dependency declaration: {decl!r}")

    def __eq__(self, other):
        if not isinstance(other, Dependency):
            return NotImplemented
        return self.name == other.name and sorted(self.tags) == sorted(other.tags)

    def __hash__(self):
        return hash(self.name)

    def __repr__(self):
        return f"Dependency({self.name!r}, {self.tags!r})"


class Requirement(_Tagged):
    """
    A non-formula precondition (a system tool, a minimum OS version, ...).

    The base class is always satisfied; subclasses override satisfied().
    """

    fatal = True

    def satisfied(self) -> bool:
        return True

    def message(self) -> str:
        return f"{self.name} is required"

    def _key(self):
        return (type(self).__name__, self.name)

    def __eq__(self, other):
        if not isinstance(other, Requirement):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self):
        return hash(self._key())

    def __repr__(self):
        return f"{type(self).__name__}({self.name!r}, {self.tags!r})"


class ExecutableRequirement(Requirement):
    """Satisfied when `executable` is on PATH."""

    def __init__(self, name: str, executable: Optional[str] = None, tags: Iterable[str] = ()):
        super().__init__(name, tags)
        self.executable = executable or name

    def satisfied(self) -> bool:
        return shutil.which(self.executable) is not None

    def message(self) -> str:
        return f"{self.name} requires the `{self.executable}` executable on PATH"


def requirement_from_declaration(decl: Union[str, Dict[str, Any], Requirement]) -> Requirement:
    if isinstance(decl, Requirement):
        return decl
    if isinstance(decl, str):
        return Requirement(decl)
    if isinstance(decl, dict) and "name" in decl:
        tags = decl.get("tags") or []
        if decl.get("executable"):
            return ExecutableRequirement(decl["name"], decl["executable"], tags)
        return Requirement(decl["name"], tags)
    raise ValueError(f"unsupported requirement declaration: {decl!r}")

# -----------------------
# Expansion
# -----------------------
def _default_action(dependent: Any, edge: _Tagged) -> Expansion:
    if edge.optional or edge.recommended:
        build = getattr(dependent, "build", None)
        if build is None or not build.with_(edge.name):
            return Expansion.PRUNE
    return Expansion.KEEP

def _action(dependent: Any, edge: _Tagged, edge_filter: Optional[EdgeFilter]) -> Expansion:
    if edge_filter is None:
        return _default_action(dependent, edge)
    res = edge_filter(dependent, edge)
    if res is None or res is True:
        return Expansion.KEEP
    if res is False:
        return Expansion.PRUNE
    return res

def _merge_repeats(deps: Sequence[Dependency]) -> List[Dependency]:
    """Keep the first occurrence of each name, folding in the tags of later ones."""
    seen: Dict[str, Dependency] = {}
    out: List[Dependency] = []
    for d in deps:
        if d.name in seen:
            for t in d.tags:
                seen[d.name].add_tag(t)
            continue
        merged = Dependency(d.name, d.tags)
        seen[d.name] = merged
        out.append(merged)
    return out


def expand_dependencies(root: Any, resolve: Callable[[Dependency], Any],
                        edge_filter: Optional[EdgeFilter] = None) -> List[Dependency]:
    """
    Flatten root's dependency graph into an installable order.

    `resolve` maps a Dependency to the formula it names (anything with
    `.name`, `.deps` and `.build`). Raises CyclicDependency on a back edge;
    nothing is returned in that case.
    """
    memo: Dict[str, List[Dependency]] = {}
    path: List[str] = [root.name]

    def visit(dependent: Any) -> List[Dependency]:
        if dependent.name in memo:
            return memo[dependent.name]
        expanded: List[Dependency] = []
        for dep in dependent.deps:
            action = _action(dependent, dep, edge_filter)
            if action is Expansion.PRUNE:
                continue
            if dep.name in path:
                cycle = path[path.index(dep.name):] + [dep.name]
                raise CyclicDependency(cycle)
            if action is Expansion.KEEP_BUT_PRUNE_RECURSIVE_DEPS:
                expanded.append(dep)
                continue
            path.append(dep.name)
            try:
                children = visit(resolve(dep))
            finally:
                path.pop()
            expanded.extend(children)
            if action is not Expansion.SKIP:
                expanded.append(dep)
        result = _merge_repeats(expanded)
        memo[dependent.name] = result
        return result

    result = visit(root)
    logger.debug("expanded %d dependencies for %s", len(result), root.name)
    return result


def expand_requirements(root: Any, resolve: Callable[[Dependency], Any],
                        edge_filter: Optional[EdgeFilter] = None) -> List[Requirement]:
    """
    Requirements of root and of every formula in its expanded dependency list.

    The same edge filter prunes requirements (called as filter(formula, req)).
    Order: root first, then dependencies in install order; duplicates dropped.
    """
    formulae = [root] + [resolve(d) for d in expand_dependencies(root, resolve, edge_filter)]
    seen: Set[Requirement] = set()
    out: List[Requirement] = []
    for f in formulae:
        for req in f.requirements:
            if _action(f, req, edge_filter) in (Expansion.PRUNE, Expansion.SKIP):
                continue
            if req in seen:
                continue
            seen.add(req)
            out.append(req)
    return out
