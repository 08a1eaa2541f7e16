# kegworks/options.py
"""
Build options and build mode.

- Option / Options: declared build toggles ("with-foo", "universal", ...)
- BuildOptions: the declared toggles of a spec plus the flags the caller used
- BuildMode: how the caller asked for the build (--HEAD, --devel, --verbose, ...)
- resolve_build_options(): merge formula-level options into the active spec
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from kegworks.logging import get_logger

logger = get_logger("options")

# flags that select a build mode rather than a declared option
MODE_FLAGS = ("--HEAD", "--devel", "--verbose", "-v", "--build-from-source", "-s")


class Option:
    def __init__(self, name: str, description: Optional[str] = None):
        self.name = name.lstrip("-")
        self.description = description or ""

    @property
    def flag(self) -> str:
        return f"--{self.name}"

    def __eq__(self, other):
        if isinstance(other, Option):
            return self.name == other.name
        return NotImplemented

    def __hash__(self):
        return hash(self.name)

    def __str__(self):
        return self.flag

    def __repr__(self):
        return f"Option({self.name!r}, {self.description!r})"


class Options:
    """Insertion-ordered set of Option."""

    def __init__(self, options: Iterable[Union[Option, str]] = ()):
        self._options: Dict[str, Option] = {}
        for o in options:
            self.add(o)

    def add(self, opt: Union[Option, str], description: Optional[str] = None) -> Option:
        if not isinstance(opt, Option):
            opt = Option(opt, description)
        return self._options.setdefault(opt.name, opt)

    def get(self, name: str) -> Optional[Option]:
        return self._options.get(name.lstrip("-"))

    def names(self) -> List[str]:
        return list(self._options)

    def __contains__(self, item) -> bool:
        name = item.name if isinstance(item, Option) else str(item).lstrip("-")
        return name in self._options

    def __iter__(self) -> Iterator[Option]:
        return iter(list(self._options.values()))

    def __len__(self) -> int:
        return len(self._options)

    def __bool__(self) -> bool:
        return bool(self._options)

    def __and__(self, other: "Options") -> "Options":
        return Options(o for o in self if o in other)

    def __sub__(self, other: "Options") -> "Options":
        return Options(o for o in self if o not in other)

    def __repr__(self):
        return f"Options({[o.flag for o in self]})"


class BuildOptions:
    """
    Declared toggles of one spec plus the caller's used flags.

    `args` holds what the caller passed; `used_options` is the subset that the
    formula actually declares. Undeclared flags are ignored (and reported once).
    """

    def __init__(self, args: Iterable[str] = ()):
        self.options = Options()
        self.universal = False
        self.args: List[str] = list(args)
        self._warned: set = set()

    def add(self, name: str, description: Optional[str] = None) -> Option:
        name = name.lstrip("-")
        if description is None:
            if name == "universal":
                description = "Build a universal binary"
            elif name.startswith("with-"):
                description = f"Build with {name[5:]} support"
            elif name.startswith("without-"):
                description = f"Build without {name[8:]} support"
            else:
                description = ""
        return self.options.add(Option(name, description))

    def has_option(self, name: str) -> bool:
        return name.lstrip("-") in self.options

    def empty(self) -> bool:
        return not self.options

    def __iter__(self) -> Iterator[Option]:
        return iter(self.options)

    def __len__(self) -> int:
        return len(self.options)

    def as_flags(self) -> List[str]:
        return [o.flag for o in self.options]

    def set_args(self, args: Iterable[str]):
        self.args = list(args)
        self._warned.clear()

    def include(self, name: str) -> bool:
        return f"--{name.lstrip('-')}" in self.args

    def with_(self, name: str) -> bool:
        if self.has_option(f"with-{name}"):
            return self.include(f"with-{name}")
        if self.has_option(f"without-{name}"):
            return not self.include(f"without-{name}")
        return False

    def without(self, name: str) -> bool:
        return not self.with_(name)

    def head(self) -> bool:
        return "--HEAD" in self.args

    def devel(self) -> bool:
        return "--devel" in self.args

    def stable(self) -> bool:
        return not (self.head() or self.devel())

    def is_universal(self) -> bool:
        return self.include("universal") and self.has_option("universal")

    @staticmethod
    def opposite_of(option: Union[Option, str]) -> Optional[Option]:
        name = option.name if isinstance(option, Option) else str(option).lstrip("-")
        for a, b in (("with-", "without-"), ("enable-", "disable-")):
            if name.startswith(b):
                return Option(a + name[len(b):])
            if name.startswith(a):
                return Option(b + name[len(a):])
        return None

    def has_opposite_of(self, option: Union[Option, str]) -> bool:
        opp = self.opposite_of(option)
        return opp is not None and opp in self.options

    @property
    def used_options(self) -> Options:
        used = Options()
        for flag in self.args:
            if not flag.startswith("--") or flag in MODE_FLAGS:
                continue
            if self.has_option(flag):
                used.add(self.options.get(flag))
            elif flag not in self._warned:
                self._warned.add(flag)
                logger.warning("ignoring undeclared option %s", flag)
        return used

    @property
    def unused_options(self) -> Options:
        return self.options - self.used_options

    def __repr__(self):
        return f"BuildOptions(options={self.as_flags()}, args={self.args})"


@dataclass
class BuildMode:
    """How the caller asked for the build."""

    head: bool = False
    devel: bool = False
    verbose: bool = False
    build_from_source: bool = False
    args: List[str] = field(default_factory=list)

    @classmethod
    def from_argv(cls, argv: Sequence[str], environ: Optional[Dict[str, str]] = None) -> "BuildMode":
        env = os.environ if environ is None else environ
        flags = list(argv)
        mode = cls.from_environ(env)
        mode.head = "--HEAD" in flags
        mode.devel = "--devel" in flags
        mode.verbose = mode.verbose or "--verbose" in flags or "-v" in flags
        mode.build_from_source = mode.build_from_source or "--build-from-source" in flags or "-s" in flags
        mode.args = [f for f in flags if f.startswith("--")]
        return mode

    @classmethod
    def from_environ(cls, environ: Optional[Dict[str, str]] = None) -> "BuildMode":
        env = os.environ if environ is None else environ
        return cls(
            verbose=bool(env.get("KEGWORKS_VERBOSE")),
            build_from_source=bool(env.get("KEGWORKS_BUILD_FROM_SOURCE")),
        )


def resolve_build_options(declared: Iterable[Tuple[str, Optional[str]]], build: BuildOptions) -> BuildOptions:
    """
    Merge formula-level declared options into the active spec's toggles.

    Idempotent: toggles already present are left alone, so calling this
    again with the same declarations changes nothing.
    """
    for opt, desc in declared:
        if not build.has_option(opt):
            build.add(opt, desc)
    return build
