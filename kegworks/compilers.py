# kegworks/compilers.py
"""
Compiler compatibility for formulae.

- Compiler: a compiler family name plus (optional) version and major version
- Compiler.detect(): ask an installed compiler for its version
- CompilerFailure: "this formula fails with <compiler> <major> from <version>"
- is_incompatible(failures, compiler): the blacklist check used before a build
- select_compiler(formula, candidates): first compatible compiler by priority
"""

from __future__ import annotations

import re
import shutil
import subprocess
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from kegworks.config import get_config
from kegworks.exceptions import CompilerSelectionError
from kegworks.logging import get_logger
from kegworks.version import Version

logger = get_logger("compilers")

# families versioned by release number; others (clang, llvm) by build number
GNU_FAMILIES = ("gcc",)

_VERSION_OUTPUT_RE = {
    "gcc": [re.compile(r"(?:gcc|GCC)[^\n]*?\s(\d+\.\d+(?:\.\d+)?)")],
    # build number first, marketing version as a fallback
    "clang": [re.compile(r"clang-(\d+(?:\.\d+)*)"), re.compile(r"version\s(\d+(?:\.\d+)*)")],
    "llvm": [re.compile(r"(?:llvm-gcc|LLVM)[^\n]*?build\s(\d+)")],
}

# ---------------------
# helpers
# ---------------------
def _family(name: str) -> str:
    """gcc-4.8 -> gcc, clang -> clang"""
    return str(name).split("-", 1)[0].lower()

def _major_of(family: str, version: Optional[Union[str, Version]]) -> Optional[str]:
    if version is None or family not in GNU_FAMILIES:
        return None
    parts = str(version).split(".")
    return ".".join(parts[:2]) if len(parts) >= 2 else parts[0]

def _run(cmd: List[str]) -> Tuple[int, str]:
    """Run cmd returning (rc, combined output)."""
    try:
        p = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True)
        return p.returncode, p.stdout or ""
    except OSError as e:
        return 127, str(e)


class Compiler:
    def __init__(self, name: str, version: Optional[Union[str, Version]] = None,
                 major_version: Optional[str] = None):
        self.name = _family(name)
        self.version = Version(version) if version is not None else None
        self.major_version = major_version if major_version is not None else _major_of(self.name, version)

    @classmethod
    def detect(cls, name: str, executable: Optional[str] = None) -> Optional["Compiler"]:
        """Run `<executable> --version` and parse the result; None if not installed."""
        exe = executable or shutil.which(name)
        if not exe:
            return None
        rc, out = _run([exe, "--version"])
        if rc != 0:
            logger.debug("compiler %s --version failed (rc=%s)", exe, rc)
            return cls(name)
        for pat in _VERSION_OUTPUT_RE.get(_family(name), []):
            m = pat.search(out)
            if m:
                return cls(name, m.group(1))
        return cls(name)

    def __eq__(self, other):
        if not isinstance(other, Compiler):
            return NotImplemented
        return (self.name, self.major_version, self.version) == (other.name, other.major_version, other.version)

    def __hash__(self):
        return hash((self.name, self.major_version, str(self.version)))

    def __repr__(self):
        return f"Compiler({self.name!r}, {str(self.version) if self.version else None!r}, major={self.major_version!r})"


class CompilerFailure:
    """
    A formula fails with `compiler` (same major version) from `version` on.

    For gcc the major version selects the release series ("4.8"); a missing
    version blacklists the whole series. For clang/llvm the version is the
    build number and there is no major version.
    """

    def __init__(self, compiler: str, major_version: Optional[str] = None,
                 version: Optional[Union[str, Version]] = None, cause: Optional[str] = None):
        self.compiler = _family(compiler)
        self.major_version = major_version
        self.version = Version(version) if version is not None else None
        self.cause = cause

    @classmethod
    def create(cls, spec: Union[str, Dict[str, Any]], version: Optional[Union[str, int]] = None,
               build: Optional[Union[str, int]] = None, cause: Optional[str] = None) -> "CompilerFailure":
        """
        Build a failure from a declaration:
          create("clang", build=425)
          create({"gcc": "4.8"}, version="4.8.1")
        """
        if isinstance(spec, dict):
            if len(spec) != 1:
                raise ValueError(f"fails_with takes exactly one compiler, got {spec!r}")
            (name, major), = spec.items()
            major = str(major)
        else:
            name, major = spec, None
        threshold = version if version is not None else build
        return cls(name, major, threshold, cause)

    def matches(self, compiler: Compiler) -> bool:
        if self.compiler != compiler.name or self.major_version != compiler.major_version:
            return False
        if self.version is None or compiler.version is None:
            return True
        return compiler.version >= self.version

    def _key(self):
        return (self.compiler, self.major_version, str(self.version) if self.version is not None else None)

    def __eq__(self, other):
        if not isinstance(other, CompilerFailure):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self):
        return hash(self._key())

    def __repr__(self):
        return f"CompilerFailure({self.compiler!r}, major={self.major_version!r}, version={str(self.version) if self.version else None!r})"


def is_incompatible(failures: Iterable[CompilerFailure], compiler: Compiler) -> bool:
    """True when any failure record blacklists this compiler."""
    return any(f.matches(compiler) for f in failures or ())


def default_priority() -> List[str]:
    return list(get_config().get("compilers.default_priority", ["clang", "gcc", "llvm"]))


def select_compiler(formula: Any, candidates: Iterable[Compiler]) -> Compiler:
    """
    Return the first candidate the formula does not fail with.

    Candidates are tried in the order given; callers usually sort them by
    default_priority().
    """
    for cc in candidates:
        if not formula.fails_with(cc):
            return cc
        logger.info("%s fails with %s %s, trying next compiler", formula.name, cc.name, cc.version or "")
    raise CompilerSelectionError(getattr(formula, "name", str(formula)))
