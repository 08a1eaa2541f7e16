# kegworks/patches.py
"""
patches.py - patch declarations and the patching pipeline

Responsibilities:
- Parse a formula's patch declaration (string, list, {"p0": [...], "p1": [...]},
  or Patch objects) into an ordered PatchList
- Three patch kinds: external (url, fetched through a Downloader), local file,
  inline body
- Compression inferred from the url suffix (.gz, .bz2) or declared
- PatchPipeline: EMPTY -> [DOWNLOADING ->] APPLYING -> DONE
  Each patch is decompressed (gunzip / bunzip2) then applied with
  `patch -g 0 -f -pN -i NNN-kegworks.diff` inside the build directory.
  The first nonzero exit raises PatchApplicationFailed.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from enum import Enum
from typing import Any, Callable, Iterable, Iterator, List, Optional

from kegworks.config import get_patches_config
from kegworks.download import Downloader
from kegworks.exceptions import PatchApplicationFailed
from kegworks.logging import get_logger, ohai

logger = get_logger("patches")

Runner = Callable[[List[str], str], int]

_URL_PREFIXES = ("http://", "https://", "ftp://", "file://")

# -----------------------
# helpers
# -----------------------
def _safe_run(cmd: List[str], cwd: str) -> int:
    """Run a patch tool in cwd, logging its output; return the exit status."""
    logger.debug("RUN: %s (cwd=%s)", " ".join(cmd), cwd)
    try:
        p = subprocess.Popen(cmd, cwd=cwd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True)
    except OSError as e:
        logger.error("cannot execute %s: %s", cmd[0], e)
        return 127
    out, _ = p.communicate()
    for line in (out or "").splitlines():
        logger.info("%s", line)
    return p.returncode

def _compression_for(url: str) -> Optional[str]:
    low = url.lower().split("?", 1)[0]
    if low.endswith(".gz"):
        return "gzip"
    if low.endswith(".bz2"):
        return "bzip2"
    return None

def _looks_inline(s: str) -> bool:
    return "\n" in s or s.startswith(("diff ", "--- ", "Index: "))


class Patch:
    """
    One patch. Exactly one of url / path / data is set.

    `index` is the 1-based position in its list and fixes the on-disk name.
    """

    def __init__(self, url: Optional[str] = None, path: Optional[str] = None, data: Optional[str] = None,
                 strip: str = "p1", compression: Optional[str] = None):
        if sum(x is not None for x in (url, path, data)) != 1:
            raise ValueError("a patch needs exactly one of url, path or data")
        self.url = url
        self.path = path
        self.data = data
        self.strip = str(strip).lstrip(":")
        source = url or path
        self.compression = compression if compression is not None else (_compression_for(source) if source else None)
        self.index = 0

    @classmethod
    def from_declaration(cls, decl: Any, strip: str = "p1") -> "Patch":
        if isinstance(decl, Patch):
            return decl
        if isinstance(decl, dict):
            strip = decl.get("strip", strip)
            comp = decl.get("compression")
            if decl.get("url"):
                return cls(url=decl["url"], strip=strip, compression=comp)
            if decl.get("file") or decl.get("path"):
                return cls(path=decl.get("file") or decl.get("path"), strip=strip, compression=comp)
            if decl.get("data") is not None:
                return cls(data=decl["data"], strip=strip)
            raise ValueError(f"unsupported patch declaration: {decl!r}")
        s = str(decl)
        if s.startswith(_URL_PREFIXES):
            return cls(url=s, strip=strip)
        if _looks_inline(s):
            return cls(data=s, strip=strip)
        return cls(path=s, strip=strip)

    @property
    def external(self) -> bool:
        return self.url is not None

    @property
    def compressed(self) -> bool:
        return self.compression in ("gzip", "bzip2")

    @property
    def filename(self) -> str:
        return "%03d-kegworks.diff" % self.index

    @property
    def compressed_filename(self) -> str:
        return self.filename + {"gzip": ".gz", "bzip2": ".bz2"}.get(self.compression or "", "")

    @property
    def download_filename(self) -> str:
        return self.compressed_filename if self.compressed else self.filename

    @property
    def patch_args(self) -> List[str]:
        return [f"-{self.strip}", "-i", self.filename]

    def describe(self) -> str:
        return self.url or self.path or f"inline patch {self.index}"

    def __repr__(self):
        return f"Patch({self.describe()!r}, strip={self.strip!r}, compression={self.compression!r})"


class PatchList:
    """Ordered patches; numbering follows declaration order."""

    def __init__(self, patches: Iterable[Patch] = ()):
        self._patches: List[Patch] = []
        for p in patches:
            self.append(p)

    @classmethod
    def from_declaration(cls, decl: Any) -> "PatchList":
        if decl is None or isinstance(decl, PatchList):
            return decl if decl is not None else cls()
        items: List[Patch] = []
        if isinstance(decl, dict) and decl and all(str(k).lstrip(":") in ("p0", "p1", "p2", "p3") for k in decl):
            for strip, entries in decl.items():
                if not isinstance(entries, (list, tuple)):
                    entries = [entries]
                items.extend(Patch.from_declaration(e, str(strip).lstrip(":")) for e in entries)
        elif isinstance(decl, (list, tuple)):
            items = [Patch.from_declaration(e) for e in decl]
        else:
            items = [Patch.from_declaration(decl)]
        return cls(items)

    def append(self, patch: Patch):
        self._patches.append(patch)
        patch.index = len(self._patches)

    def external_patches(self) -> List[Patch]:
        return [p for p in self._patches if p.external]

    def empty(self) -> bool:
        return not self._patches

    def __iter__(self) -> Iterator[Patch]:
        return iter(self._patches)

    def __len__(self) -> int:
        return len(self._patches)

    def __bool__(self) -> bool:
        return bool(self._patches)


class PatchPipelineState(Enum):
    EMPTY = "empty"
    DOWNLOADING = "downloading"
    APPLYING = "applying"
    DONE = "done"


class PatchPipeline:
    """Download (when needed) and apply a PatchList inside `buildpath`."""

    def __init__(self, patches: PatchList, buildpath: str, downloader: Optional[Downloader] = None,
                 runner: Optional[Runner] = None, announce: Callable[[str], Any] = ohai):
        self.patches = patches
        self.buildpath = str(buildpath)
        self.downloader = downloader
        self.runner = runner or _safe_run
        self.announce = announce
        self.state = PatchPipelineState.EMPTY
        self.history: List[PatchPipelineState] = [self.state]
        cfg = get_patches_config()
        self.tool = cfg.get("tool", "patch")
        self.gunzip = cfg.get("gunzip", "gunzip")
        self.bunzip2 = cfg.get("bunzip2", "bunzip2")

    def _enter(self, state: PatchPipelineState):
        self.state = state
        self.history.append(state)

    def _stage_local(self, patch: Patch):
        dest = os.path.join(self.buildpath, patch.download_filename)
        if patch.data is not None:
            with open(dest, "w", encoding="utf-8") as f:
                f.write(patch.data)
        else:
            shutil.copyfile(os.path.expanduser(patch.path), dest)

    def _download(self):
        if self.downloader is None:
            raise ValueError("external patches declared but no downloader supplied")
        self._enter(PatchPipelineState.DOWNLOADING)
        self.announce("Downloading patches")
        self.downloader.fetch_all(
            (p.url, self.buildpath, p.download_filename) for p in self.patches.external_patches()
        )

    def _check(self, patch: Patch, cmd: List[str]):
        rc = self.runner(cmd, self.buildpath)
        if rc != 0:
            raise PatchApplicationFailed(patch.describe(), rc, cmd)

    def run(self) -> PatchPipelineState:
        if self.patches.empty():
            self._enter(PatchPipelineState.DONE)
            return self.state

        if self.patches.external_patches():
            self._download()

        self._enter(PatchPipelineState.APPLYING)
        self.announce("Patching")
        for p in self.patches:
            if not p.external:
                self._stage_local(p)
            if p.compression == "gzip":
                self._check(p, [self.gunzip, p.compressed_filename])
            elif p.compression == "bzip2":
                self._check(p, [self.bunzip2, p.compressed_filename])
            self._check(p, [self.tool, "-g", "0", "-f"] + p.patch_args)
            logger.debug("applied %s", p.describe())

        self._enter(PatchPipelineState.DONE)
        return self.state
