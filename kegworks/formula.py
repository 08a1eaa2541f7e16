# kegworks/formula.py
"""
formula.py - formula definitions and the per-build Formula object

Features:
- FormulaDefinition: immutable description of a package, loaded from a
  YAML/JSON mapping (FormulaDefinition.from_dict)
- Formula: one build session of a definition. Chooses the active spec,
  computes pkg_version, resolves build options, and exposes the read
  accessors installers use (url, deps, requirements, prefix, ...)
- Formula.brew(buildpath, step): patch, then run the build step; on failure
  known auxiliary logs (config.log, CMakeCache.txt) are kept in the log dir
- Formula.run_test(step): run a test step inside a temporary directory
- BuildContext / TestContext: what a build or test step is handed
"""

from __future__ import annotations

import os
import re
import copy
import shutil
import tempfile
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

from kegworks.build_config import write_build_config
from kegworks.compilers import Compiler, CompilerFailure, is_incompatible
from kegworks.config import get_build_config
from kegworks.dependencies import (Dependency, EdgeFilter, Requirement, expand_dependencies,
                                   expand_requirements)
from kegworks.download import Downloader
from kegworks.exceptions import (BottleSpecificationError, BuildCommandFailed, FormulaUnavailableError,
                                 InvalidSpecificationAttribute, PatchApplicationFailed)
from kegworks.executor import SupervisedExecutor
from kegworks.logging import get_logger
from kegworks.options import BuildMode, BuildOptions, resolve_build_options
from kegworks.patches import PatchList, PatchPipeline, Runner
from kegworks.specs import Bottle, HeadSoftwareSpec, Resource, SoftwareSpec, select_active_spec
from kegworks.version import PkgVersion, compute_version

logger = get_logger("formula")

_WHITESPACE = re.compile(r"\s")

_STABLE_KEYS = ("url", "version", "mirrors", "sha1", "sha256")

# -----------------------------------------------------------------------
# Definition
# -----------------------------------------------------------------------
@dataclass(frozen=True)
class FormulaConflict:
    name: str
    reason: Optional[str] = None


def _parse_failure(decl: Any) -> CompilerFailure:
    if isinstance(decl, CompilerFailure):
        return decl
    if isinstance(decl, str):
        return CompilerFailure.create(decl)
    d = dict(decl)
    version, build, cause = d.pop("version", None), d.pop("build", None), d.pop("cause", None)
    if "compiler" in d:
        name = d.pop("compiler")
        major = d.pop("major_version", None)
        spec: Union[str, Dict[str, Any]] = {name: major} if major is not None else name
    else:
        spec = d
    return CompilerFailure.create(spec, version=version, build=build, cause=cause)

def _parse_options(decl: Any) -> Tuple[Tuple[str, Optional[str]], ...]:
    out: List[Tuple[str, Optional[str]]] = []
    if isinstance(decl, dict):
        return tuple((str(k), v) for k, v in decl.items())
    for o in decl or []:
        if isinstance(o, dict):
            out.append((str(o["name"]), o.get("description")))
        elif isinstance(o, (list, tuple)):
            out.append((str(o[0]), o[1] if len(o) > 1 else None))
        else:
            out.append((str(o), None))
    return tuple(out)

def _parse_conflicts(decl: Any) -> Tuple[FormulaConflict, ...]:
    out = []
    for c in decl or []:
        if isinstance(c, dict):
            out.append(FormulaConflict(c["name"], c.get("because") or c.get("reason")))
        else:
            out.append(FormulaConflict(str(c)))
    return tuple(out)


@dataclass(frozen=True)
class FormulaDefinition:
    name: str
    path: Optional[str] = None
    homepage: Optional[str] = None
    revision: int = 0
    stable: Optional[SoftwareSpec] = None
    devel: Optional[SoftwareSpec] = None
    head: Optional[HeadSoftwareSpec] = None
    bottle: Optional[Bottle] = None
    options: Tuple[Tuple[str, Optional[str]], ...] = ()
    conflicts: Tuple[FormulaConflict, ...] = ()
    cc_failures: FrozenSet[CompilerFailure] = frozenset()
    patches: Any = None
    keg_only_reason: Optional[str] = None
    pour_bottle: bool = True
    universal_deps: bool = False
    skip_clean_paths: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def specs(self) -> List[SoftwareSpec]:
        return [s for s in (self.stable, self.devel, self.head, self.bottle) if s is not None]

    @classmethod
    def from_dict(cls, d: Dict[str, Any], path: Optional[str] = None) -> "FormulaDefinition":
        """
        Build a definition from a mapping such as

          name: libfoo
          url: https://example.org/libfoo-1.2.tar.gz
          sha256: ...
          devel: {url: ..., sha256: ...}
          head: https://example.org/libfoo.git
          bottle: {root_url: ..., sha256: {linux_x86_64: ...}}
          depends_on: [pkg-config: build, {openssl: [recommended]}]
          fails_with: [clang, {gcc: "4.8", version: "4.8.1"}]

        Top-level url/version/mirrors/sha* describe the stable spec;
        depends_on, requirements and resources apply to every spec.
        """
        if not d.get("name"):
            raise InvalidSpecificationAttribute("name", d.get("name"))
        stable_d = dict(d.get("stable") or {})
        for k in _STABLE_KEYS:
            if k in d and k not in stable_d:
                stable_d[k] = d[k]

        stable = SoftwareSpec.from_dict(stable_d) if stable_d else None
        devel = SoftwareSpec.from_dict(d["devel"]) if d.get("devel") else None
        head = HeadSoftwareSpec.from_dict(d["head"]) if d.get("head") else None
        bottle = Bottle.from_dict(d["bottle"]) if d.get("bottle") else None

        for spec in (stable, devel, head, bottle):
            if spec is None:
                continue
            for rname, rd in (d.get("resources") or {}).items():
                spec.add_resource(Resource.from_dict(rname, rd))
            for dep in d.get("depends_on") or []:
                spec.depends_on(dep)
            for req in d.get("requirements") or []:
                spec.requirement(req)

        keg_only = d.get("keg_only")
        if isinstance(keg_only, dict):
            keg_only = keg_only.get("reason")
        return cls(
            name=str(d["name"]),
            path=path,
            homepage=d.get("homepage"),
            revision=int(d.get("revision") or 0),
            stable=stable,
            devel=devel,
            head=head,
            bottle=bottle,
            options=_parse_options(d.get("options")),
            conflicts=_parse_conflicts(d.get("conflicts_with") or d.get("conflicts")),
            cc_failures=frozenset(_parse_failure(f) for f in d.get("fails_with") or []),
            patches=d.get("patches"),
            keg_only_reason=str(keg_only) if keg_only else None,
            pour_bottle=bool(d.get("pour_bottle", True)),
            universal_deps=bool(d.get("require_universal_deps", False)),
            skip_clean_paths=frozenset(str(p) for p in d.get("skip_clean") or []),
        )


def validate_attributes(obj: Any, *attrs: str):
    """Each attribute must render non-empty and without whitespace."""
    for attr in attrs:
        value = getattr(obj, attr)
        s = "" if value is None else str(value)
        if not s or _WHITESPACE.search(s):
            raise InvalidSpecificationAttribute(attr, s)


def _contradicts(build: BuildOptions, flag: str) -> bool:
    opp = BuildOptions.opposite_of(flag)
    return opp is not None and opp.flag in build.args


def install_bottle(formula: "Formula") -> bool:
    """Default bottle policy: pour unless building from source or the formula opts out."""
    if formula.mode.build_from_source or not formula.definition.pour_bottle:
        return False
    return formula.bottle is not None and formula.bottle.usable

# -----------------------------------------------------------------------
# Contexts
# -----------------------------------------------------------------------
class BuildContext:
    """Handed to a build step; commands run in `buildpath`."""

    def __init__(self, formula: "Formula", buildpath: str):
        self.formula = formula
        self.buildpath = str(buildpath)

    @property
    def prefix(self) -> str:
        return self.formula.prefix

    @property
    def build(self) -> BuildOptions:
        return self.formula.build

    @property
    def std_cmake_args(self) -> List[str]:
        return self.formula.std_cmake_args

    def system(self, cmd: str, *args: Any) -> str:
        return self.formula.executor.run(cmd, *args, cwd=self.buildpath)


class TestContext(BuildContext):
    """Handed to a test step; `testpath` is a scratch directory removed afterwards."""

    __test__ = False  # not a pytest class

    def __init__(self, formula: "Formula", testpath: str, build: Optional[BuildOptions] = None):
        super().__init__(formula, testpath)
        self._build = build

    @property
    def build(self) -> BuildOptions:
        return self._build if self._build is not None else self.formula.build

    @property
    def testpath(self) -> str:
        return self.buildpath

# -----------------------------------------------------------------------
# Formula
# -----------------------------------------------------------------------
class Formula:
    def __init__(self, definition: FormulaDefinition, mode: Optional[BuildMode] = None,
                 bottle_installable: Optional[Callable[["Formula"], bool]] = None,
                 executor: Optional[SupervisedExecutor] = None, formulary: Any = None,
                 logs_dir: Optional[str] = None):
        self.definition = definition
        self.name = definition.name
        self.path = definition.path
        self.homepage = definition.homepage
        self.revision = definition.revision
        self.mode = mode or BuildMode.from_environ()
        self.formulary = formulary

        self.stable = self._usable_copy(definition.stable)
        self.devel = self._usable_copy(definition.devel)
        self.head = self._usable_copy(definition.head)
        self.bottle: Optional[Bottle] = None
        if definition.bottle is not None and definition.bottle.declared:
            if self.stable is None:
                raise BottleSpecificationError(self.name)
            if self.stable.version is None:
                raise InvalidSpecificationAttribute("version", "")
            self.bottle = copy.deepcopy(definition.bottle)
            self.bottle.validate(self.name, self.stable.version, self.revision)

        installable = bottle_installable or install_bottle
        self.active_spec = select_active_spec(self.stable, self.devel, self.head, self.bottle,
                                              self.mode, lambda: installable(self), self.name)
        validate_attributes(self, "url", "name", "version")

        self.build = resolve_build_options(definition.options, self.active_spec.build)
        self.build.set_args(self.mode.args)
        if definition.universal_deps:
            self.build.universal = True
        self.pkg_version: PkgVersion = compute_version(self.active_spec, self.revision)

        self.executor = executor or SupervisedExecutor(
            self.name, logs_dir, verbose=self.mode.verbose,
            config_writer=lambda fh: write_build_config(fh, self),
        )
        logger.debug("%s: using %s spec %s", self.name, self.spec_name, self.pkg_version)

    @staticmethod
    def _usable_copy(spec: Optional[SoftwareSpec]) -> Optional[SoftwareSpec]:
        if spec is None or not spec.usable:
            return None
        return copy.deepcopy(spec)

    # ----------------------
    # read accessors
    # ----------------------
    @property
    def spec_name(self) -> str:
        for n in ("head", "devel", "bottle", "stable"):
            if getattr(self, n) is self.active_spec:
                return n
        return "stable"

    @property
    def url(self) -> Optional[str]:
        return self.active_spec.url

    @property
    def version(self):
        return self.active_spec.version

    @property
    def mirrors(self) -> List[str]:
        return self.active_spec.mirrors

    @property
    def deps(self) -> List[Dependency]:
        return self.active_spec.deps

    @property
    def requirements(self) -> List[Requirement]:
        return self.active_spec.requirements

    @property
    def resources(self) -> List[Resource]:
        return list(self.active_spec.resources.values())

    def resource(self, name: str) -> Resource:
        return self.active_spec.resource(name)

    @property
    def conflicts(self) -> Tuple[FormulaConflict, ...]:
        return self.definition.conflicts

    @property
    def keg_only(self) -> bool:
        return bool(self.definition.keg_only_reason)

    @property
    def keg_only_reason(self) -> Optional[str]:
        return self.definition.keg_only_reason

    @property
    def default_build(self) -> bool:
        return not self.build.used_options

    @property
    def prefix(self) -> str:
        cellar = get_build_config().get("cellar") or "~/.kegworks/Cellar"
        return os.path.join(os.path.expanduser(cellar), self.name, str(self.pkg_version))

    @property
    def bin(self) -> str:
        return os.path.join(self.prefix, "bin")

    @property
    def lib(self) -> str:
        return os.path.join(self.prefix, "lib")

    @property
    def include(self) -> str:
        return os.path.join(self.prefix, "include")

    @property
    def share(self) -> str:
        return os.path.join(self.prefix, "share")

    @property
    def std_cmake_args(self) -> List[str]:
        return [
            f"-DCMAKE_INSTALL_PREFIX={self.prefix}",
            "-DCMAKE_BUILD_TYPE=None",
            "-DCMAKE_FIND_FRAMEWORK=LAST",
            "-DCMAKE_VERBOSE_MAKEFILE=ON",
            "-Wno-dev",
        ]

    def skip_clean(self, path: str) -> bool:
        if path.endswith(".la") and "la" in self.definition.skip_clean_paths:
            return True
        rel = os.path.relpath(path, self.prefix) if os.path.isabs(path) else path
        return rel in self.definition.skip_clean_paths

    def fails_with(self, compiler: Union[Compiler, str]) -> bool:
        if not isinstance(compiler, Compiler):
            compiler = Compiler(compiler)
        return is_incompatible(self.definition.cc_failures, compiler)

    # ----------------------
    # dependency graph
    # ----------------------
    def _resolve(self, dep: Dependency) -> "Formula":
        if self.formulary is None:
            raise FormulaUnavailableError(dep.name)
        return self.formulary.resolve(dep)

    def recursive_dependencies(self, edge_filter: Optional[EdgeFilter] = None) -> List[Dependency]:
        """Dependencies in installable order: if a depends on b, b comes first."""
        return expand_dependencies(self, self._resolve, edge_filter)

    def recursive_requirements(self, edge_filter: Optional[EdgeFilter] = None) -> List[Requirement]:
        return expand_requirements(self, self._resolve, edge_filter)

    # ----------------------
    # downloads
    # ----------------------
    def fetch(self, downloader: Downloader, cache_dir: Optional[str] = None) -> str:
        cache = cache_dir or os.path.expanduser(get_build_config().get("cache") or "~/.kegworks/cache")
        return self.active_spec.fetch(downloader, cache, self.name)

    def verify_download_integrity(self, path: str, downloader: Optional[Downloader] = None) -> str:
        return self.active_spec.verify_download_integrity(path, downloader)

    # ----------------------
    # build / test
    # ----------------------
    def patch(self, buildpath: str, downloader: Optional[Downloader] = None, runner: Optional[Runner] = None):
        pipeline = PatchPipeline(PatchList.from_declaration(self.definition.patches), buildpath,
                                 downloader=downloader, runner=runner)
        return pipeline.run()

    def brew(self, buildpath: str, step: Callable[[BuildContext], Any],
             downloader: Optional[Downloader] = None, runner: Optional[Runner] = None) -> Any:
        """Patch the staged sources in buildpath, then run step(BuildContext)."""
        validate_attributes(self, "name", "version")
        try:
            self.patch(buildpath, downloader, runner)
            return step(BuildContext(self, buildpath))
        except (BuildCommandFailed, PatchApplicationFailed, OSError):
            self._keep_aux_logs(buildpath)
            raise

    def _keep_aux_logs(self, buildpath: str):
        names = get_build_config().get("aux_logs") or []
        found = [n for n in names if os.path.isfile(os.path.join(buildpath, n))]
        if not found:
            return
        os.makedirs(self.executor.logdir, exist_ok=True)
        for n in found:
            shutil.copy2(os.path.join(buildpath, n), os.path.join(self.executor.logdir, n))
            logger.debug("kept %s in %s", n, self.executor.logdir)

    def run_test(self, step: Callable[[TestContext], Any], used_options: Iterable[str] = ()) -> Any:
        """
        Run step(TestContext) in a fresh temporary directory.

        used_options are the flags the installed keg was built with; they
        become visible through ctx.build.with_() unless they contradict a
        flag already given. The formula's own build options are left as is.
        """
        build = copy.copy(self.build)
        build.args = list(self.build.args)
        for opt in used_options:
            flag = opt if str(opt).startswith("--") else f"--{opt}"
            if flag not in build.args and not _contradicts(build, flag):
                build.args.append(flag)
        with tempfile.TemporaryDirectory(prefix=f"{self.name}-test-") as testpath:
            return step(TestContext(self, testpath, build))

    # ----------------------
    # identity
    # ----------------------
    def __eq__(self, other):
        if not isinstance(other, Formula):
            return NotImplemented
        return self.name == other.name

    def __hash__(self):
        return hash(self.name)

    def __str__(self):
        return self.name

    def __repr__(self):
        return f"Formula({self.name!r}, {self.spec_name}, {self.pkg_version})"
