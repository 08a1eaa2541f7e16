# kegworks/download.py
"""
download.py - download collaborator and checksum verification

Features:
- Checksum: a (kind, hexdigest) pair; kinds are the fixed set sha1/sha256
- file digests computed in 8K chunks (_sha1_of_file / _sha256_of_file)
- verify_checksum(path, checksum) raising ChecksumMismatchError
- Downloader: the interface specs and the patch pipeline fetch through
- LocalDownloader: copies file:// URLs and plain paths into a cache dir
  (kegworks itself performs no network transfer; real transports plug in
  by subclassing Downloader)
"""

from __future__ import annotations

import os
import shutil
import hashlib
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlparse, unquote

from kegworks.exceptions import ChecksumMismatchError
from kegworks.logging import get_logger

logger = get_logger("download")

CHECKSUM_TYPES = ("sha1", "sha256")

# -----------------------------------------------------------------------
# Digest helpers
# -----------------------------------------------------------------------
def _ensure_dir(path: str):
    os.makedirs(path, exist_ok=True)

def _sha1_of_file(path: str) -> str:
    h = hashlib.sha1()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()

def _sha256_of_file(path: str) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()

_DIGESTERS = {"sha1": _sha1_of_file, "sha256": _sha256_of_file}


class Checksum:
    def __init__(self, kind: str, hexdigest: str):
        kind = str(kind).lower()
        if kind not in CHECKSUM_TYPES:
            raise ValueError(f"unsupported checksum type: {kind}")
        self.kind = kind
        self.hexdigest = str(hexdigest or "").strip().lower()

    @classmethod
    def parse(cls, value: Any) -> Optional["Checksum"]:
        """Accept "sha256:hex", {"sha256": hex}, a bare hex string or a Checksum."""
        if value is None or isinstance(value, Checksum):
            return value
        if isinstance(value, dict):
            for kind in CHECKSUM_TYPES:
                if value.get(kind):
                    return cls(kind, value[kind])
            return None
        s = str(value).strip()
        if ":" in s:
            kind, digest = s.split(":", 1)
            return cls(kind, digest)
        # bare digests: 40 hex chars is sha1, anything else sha256
        return cls("sha1" if len(s) == 40 else "sha256", s)

    def empty(self) -> bool:
        return not self.hexdigest

    def compute(self, path: str) -> str:
        return _DIGESTERS[self.kind](path)

    def __eq__(self, other):
        if not isinstance(other, Checksum):
            return NotImplemented
        return (self.kind, self.hexdigest) == (other.kind, other.hexdigest)

    def __hash__(self):
        return hash((self.kind, self.hexdigest))

    def __bool__(self):
        return not self.empty()

    def __str__(self):
        return self.hexdigest

    def __repr__(self):
        return f"Checksum({self.kind!r}, {self.hexdigest!r})"


def verify_checksum(path: str, checksum: Optional[Checksum]) -> str:
    """
    Check path against checksum; return the computed digest.

    A missing or empty checksum only logs a warning: there is nothing to
    compare against and the download is accepted as is.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(path)
    if checksum is None or checksum.empty():
        actual = _sha256_of_file(path)
        logger.warning("Cannot verify integrity of %s (no checksum declared); sha256 is %s",
                       os.path.basename(path), actual)
        return actual
    actual = checksum.compute(path)
    if actual != checksum.hexdigest:
        raise ChecksumMismatchError(path, checksum.hexdigest, actual)
    logger.debug("verified %s %s", checksum.kind, os.path.basename(path))
    return actual

# -----------------------------------------------------------------------
# Downloaders
# -----------------------------------------------------------------------
class Downloader:
    """
    Fetch collaborator.

    fetch(url, dest_dir, filename=None) -> local path. Subclasses decide the
    transport; kegworks only decides which artifact is needed.
    """

    def fetch(self, url: str, dest_dir: str, filename: Optional[str] = None) -> str:
        raise NotImplementedError

    def verify(self, path: str, checksum: Optional[Checksum]) -> bool:
        """True when path matches checksum (or there is no checksum to check)."""
        try:
            verify_checksum(path, checksum)
        except ChecksumMismatchError as e:
            logger.error("%s", e)
            return False
        return True

    def fetch_all(self, items: Iterable[Tuple[str, str, Optional[str]]]) -> List[str]:
        """Fetch (url, dest_dir, filename) triples in order."""
        return [self.fetch(url, dest, name) for url, dest, name in items]

    @staticmethod
    def basename_for(url: str) -> str:
        path = urlparse(str(url)).path or str(url)
        return os.path.basename(unquote(path).rstrip("/")) or "download"


class LocalDownloader(Downloader):
    """Copies local files (file:// URLs or filesystem paths)."""

    def __init__(self, mirrors: Optional[Dict[str, str]] = None):
        # url -> local path, for urls that are not file:// themselves
        self.mirrors: Dict[str, str] = dict(mirrors or {})
        self.fetched: List[str] = []

    def _source_for(self, url: str) -> str:
        if url in self.mirrors:
            return self.mirrors[url]
        parsed = urlparse(url)
        if parsed.scheme == "file":
            return unquote(parsed.path)
        if parsed.scheme in ("", None):
            return url
        raise ValueError(f"LocalDownloader cannot fetch {url}")

    def fetch(self, url: str, dest_dir: str, filename: Optional[str] = None) -> str:
        src = self._source_for(url)
        if not os.path.isfile(src):
            raise FileNotFoundError(src)
        _ensure_dir(dest_dir)
        out_path = os.path.join(dest_dir, filename or self.basename_for(url))
        if os.path.abspath(src) != os.path.abspath(out_path):
            shutil.copy2(src, out_path)
        self.fetched.append(url)
        logger.debug("fetched %s -> %s", url, out_path)
        return out_path
