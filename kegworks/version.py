# kegworks/version.py
"""
Version handling for formulae.

- Version: token-wise comparable version strings ("1.2.3", "2.0rc1", "HEAD")
- Version.parse(url): derive a version from a source URL
- PkgVersion: (version, revision) pair, the canonical build version
- compute_version(active_spec, revision): version of the selected spec
"""

from __future__ import annotations

import os
import re
from functools import total_ordering
from typing import Any, List, Optional, Tuple, Union

_TOKEN_RE = re.compile(r"\d+|[a-zA-Z]+")

_ARCHIVE_EXTS = (
    ".tar.gz", ".tar.bz2", ".tar.xz", ".tar.lz", ".tar.lzma", ".tgz", ".tbz", ".tbz2",
    ".txz", ".zip", ".7z", ".rar", ".gz", ".bz2", ".xz", ".tar", ".jar", ".gem",
)

# name-1.2.3, name_1.2.3, name-v1.2, name.1.2 (last resort)
_URL_VERSION_PATTERNS = [
    re.compile(r"[-_]v?(\d+(?:[._]\d+)*(?:[-_.]?[a-z]+\d*)?)$", re.IGNORECASE),
    re.compile(r"^v?(\d+(?:\.\d+)+[a-z]?\d*)$", re.IGNORECASE),
    re.compile(r"\.v?(\d+(?:\.\d+)+)$", re.IGNORECASE),
]


def _strip_archive_ext(stem: str) -> str:
    low = stem.lower()
    for ext in _ARCHIVE_EXTS:
        if low.endswith(ext):
            return stem[: -len(ext)]
    return stem


@total_ordering
class Version:
    """A version string compared token by token."""

    HEAD = "HEAD"

    def __init__(self, value: Union[str, int, float, "Version"]):
        if value is None:
            raise ValueError("a version cannot be None")
        if isinstance(value, Version):
            value = value.value
        self.value = str(value).strip()

    @classmethod
    def parse(cls, url: Optional[str]) -> Optional["Version"]:
        """Detect a version from an archive URL; None when nothing looks like one."""
        if not url:
            return None
        path = str(url).split("?", 1)[0].split("#", 1)[0].rstrip("/")
        stem = _strip_archive_ext(os.path.basename(path))
        for pat in _URL_VERSION_PATTERNS:
            m = pat.search(stem)
            if m:
                return cls(m.group(1))
        return None

    def is_head(self) -> bool:
        return self.value == self.HEAD

    def tokens(self) -> List[Union[int, str]]:
        out: List[Union[int, str]] = []
        for tok in _TOKEN_RE.findall(self.value):
            out.append(int(tok) if tok.isdigit() else tok.lower())
        return out

    def _cmp(self, other: "Version") -> int:
        if self.is_head() or other.is_head():
            return int(self.is_head()) - int(other.is_head())
        a, b = self.tokens(), other.tokens()
        # missing trailing components count as 0, so 1.0 == 1.0.0
        n = max(len(a), len(b))
        a = a + [0] * (n - len(a))
        b = b + [0] * (n - len(b))
        for x, y in zip(a, b):
            if x == y:
                continue
            if isinstance(x, int) and isinstance(y, int):
                return (x > y) - (x < y)
            if isinstance(x, str) and isinstance(y, str):
                return (x > y) - (x < y)
            # alpha tokens mark pre-releases: 1.0rc1 < 1.0
            return 1 if isinstance(x, int) else -1
        return 0

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, (Version, str, int, float)):
            return NotImplemented
        return self._cmp(Version(other)) == 0

    def __lt__(self, other: Any) -> bool:
        if not isinstance(other, (Version, str, int, float)):
            return NotImplemented
        return self._cmp(Version(other)) < 0

    def __hash__(self) -> int:
        toks = self.tokens()
        while toks and toks[-1] == 0:
            toks.pop()
        return hash((self.is_head(), tuple(toks)))

    def __str__(self) -> str:
        return self.value

    def __repr__(self) -> str:
        return f"Version({self.value!r})"

    def __bool__(self) -> bool:
        return bool(self.value)


@total_ordering
class PkgVersion:
    """Canonical build version: upstream version plus formula revision."""

    def __init__(self, version: Union[str, Version], revision: int = 0):
        self.version = Version(version)
        self.revision = int(revision or 0)

    def _key(self) -> Tuple[Version, int]:
        return (self.version, self.revision)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, PkgVersion):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other: Any) -> bool:
        if not isinstance(other, PkgVersion):
            return NotImplemented
        return self._key() < other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __str__(self) -> str:
        if self.revision > 0:
            return f"{self.version}_{self.revision}"
        return str(self.version)

    def __repr__(self) -> str:
        return f"PkgVersion({str(self.version)!r}, {self.revision})"


def compute_version(active_spec: Any, revision: int) -> PkgVersion:
    """
    Version of the spec chosen for this build.

    A bottle carries a version precomputed from the stable spec, so bottle and
    source builds of the same release compare equal.
    """
    if getattr(active_spec, "is_bottle", False):
        if active_spec.pkg_version is None:
            raise ValueError("bottle version was never validated against a stable spec")
        return active_spec.pkg_version
    return PkgVersion(active_spec.version, revision)
