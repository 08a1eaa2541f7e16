# kegworks/specs.py
"""
Software specifications: what one variant of a formula is built from.

- SoftwareSpec: url, version, mirrors, checksum, resources, deps, requirements, options
- HeadSoftwareSpec: a VCS checkout, version HEAD, never checksummed
- Resource: an extra named download staged next to the main source
- Bottle: a prebuilt binary, per-platform-tag checksums, versioned from stable
- select_active_spec(): which of stable/devel/head/bottle this build uses
"""

from __future__ import annotations

import os
import platform
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from kegworks.config import get_bottles_config
from kegworks.dependencies import Dependency, Requirement, requirement_from_declaration
from kegworks.download import CHECKSUM_TYPES, Checksum, Downloader, verify_checksum
from kegworks.exceptions import ChecksumMismatchError, MissingSourceSpecification
from kegworks.logging import get_logger
from kegworks.options import BuildOptions
from kegworks.version import PkgVersion, Version

logger = get_logger("specs")


class SoftwareSpec:
    is_bottle = False

    def __init__(self, url: Optional[str] = None, version: Optional[Union[str, Version]] = None,
                 mirrors: Iterable[str] = ()):
        self.url = url
        self._version = Version(version) if version is not None else None
        self.mirrors: List[str] = list(mirrors)
        self.checksum: Optional[Checksum] = None
        self.resources: Dict[str, "Resource"] = {}
        self.deps: List[Dependency] = []
        self.requirements: List[Requirement] = []
        self.build = BuildOptions()
        self.specs: Dict[str, Any] = {}

    # ----------------------
    # declaration
    # ----------------------
    @property
    def version(self) -> Optional[Version]:
        if self._version is None and self.url:
            return Version.parse(self.url)
        return self._version

    @version.setter
    def version(self, value):
        self._version = Version(value) if value is not None else None

    def set_sha1(self, hexdigest: str):
        self.checksum = Checksum("sha1", hexdigest)

    def set_sha256(self, hexdigest: str):
        self.checksum = Checksum("sha256", hexdigest)

    def mirror(self, url: str):
        self.mirrors.append(url)

    def depends_on(self, decl: Union[str, Dict[str, Any], Dependency, Requirement]):
        if isinstance(decl, Requirement):
            self.requirements.append(decl)
            return
        dep = Dependency.from_declaration(decl)
        if dep.optional and not self.build.has_option(f"with-{dep.name}"):
            self.build.add(f"with-{dep.name}")
        elif dep.recommended and not self.build.has_option(f"without-{dep.name}"):
            self.build.add(f"without-{dep.name}")
        self.deps.append(dep)

    def requirement(self, decl: Union[str, Dict[str, Any], Requirement]):
        self.requirements.append(requirement_from_declaration(decl))

    def option(self, name: str, description: Optional[str] = None):
        if name.startswith("--"):
            raise ValueError(f"option name should not start with dashes: {name}")
        self.build.add(name, description)

    def resource(self, name: str) -> "Resource":
        return self.resources[name]

    def has_resource(self, name: str) -> bool:
        return name in self.resources

    def add_resource(self, res: "Resource"):
        if res.name in self.resources:
            return
        res.owner = self
        self.resources[res.name] = res

    @property
    def usable(self) -> bool:
        return bool(self.url)

    # ----------------------
    # fetching
    # ----------------------
    def download_name(self, name: str) -> str:
        base = Downloader.basename_for(self.url or "")
        return f"{name}-{self.version}{_archive_ext(base)}"

    def fetch(self, downloader: Downloader, dest_dir: str, name: str) -> str:
        """Fetch the primary download, falling back to mirrors in order."""
        urls = [u for u in [self.url] + self.mirrors if u]
        if not urls:
            raise MissingSourceSpecification(name)
        last_exc: Optional[Exception] = None
        for url in urls:
            try:
                return downloader.fetch(url, dest_dir, self.download_name(name))
            except (OSError, ValueError) as e:
                last_exc = e
                logger.warning("fetch of %s failed: %s", url, e)
        raise last_exc

    def verify_download_integrity(self, path: str, downloader: Optional[Downloader] = None) -> str:
        if downloader is not None and self.checksum and not downloader.verify(path, self.checksum):
            raise ChecksumMismatchError(path, self.checksum.hexdigest, self.checksum.compute(path))
        return verify_checksum(path, self.checksum)

    # ----------------------
    # loading
    # ----------------------
    def _apply_checksums(self, d: Dict[str, Any]):
        for kind in CHECKSUM_TYPES:
            if d.get(kind):
                getattr(self, f"set_{kind}")(str(d[kind]))

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> "SoftwareSpec":
        d = d or {}
        spec = cls(d.get("url"), d.get("version"), d.get("mirrors") or ())
        spec._apply_checksums(d)
        spec.specs = {k: v for k, v in d.items() if k in ("using", "branch", "tag", "revision")}
        for name, rd in (d.get("resources") or {}).items():
            spec.add_resource(Resource.from_dict(name, rd))
        return spec

    def __repr__(self):
        return f"{type(self).__name__}(url={self.url!r}, version={str(self.version) if self.version else None!r})"


class HeadSoftwareSpec(SoftwareSpec):
    """A VCS checkout. Its version is always HEAD and it carries no checksum."""

    def __init__(self, url: Optional[str] = None, version: Optional[Union[str, Version]] = None,
                 mirrors: Iterable[str] = ()):
        super().__init__(url, version or Version.HEAD, mirrors)

    @property
    def version(self) -> Optional[Version]:
        return self._version

    @version.setter
    def version(self, value):
        self._version = Version(value) if value is not None else Version(Version.HEAD)

    def download_name(self, name: str) -> str:
        return f"{name}--{self.specs.get('using', 'git')}"

    def verify_download_integrity(self, path: str, downloader: Optional[Downloader] = None) -> str:
        # checkouts have nothing to verify
        return ""

    @classmethod
    def from_dict(cls, d: Optional[Union[str, Dict[str, Any]]]) -> "HeadSoftwareSpec":
        if isinstance(d, str):
            d = {"url": d}
        return super().from_dict(d)


class Resource(SoftwareSpec):
    """A named extra download; fetched alongside its owning spec."""

    def __init__(self, name: str, url: Optional[str] = None, version: Optional[Union[str, Version]] = None):
        super().__init__(url, version)
        self.name = name
        self.owner: Optional[SoftwareSpec] = None

    def download_name(self, name: str) -> str:
        return f"{name}--{super().download_name(self.name)}"

    @classmethod
    def from_dict(cls, name: str, d: Optional[Dict[str, Any]]) -> "Resource":
        d = d or {}
        res = cls(name, d.get("url"), d.get("version"))
        res._apply_checksums(d)
        return res


def _archive_ext(basename: str) -> str:
    low = basename.lower()
    for ext in (".tar.gz", ".tar.bz2", ".tar.xz", ".tgz", ".zip", ".tar", ".gz", ".bz2", ".xz"):
        if low.endswith(ext):
            return basename[-len(ext):]
    return os.path.splitext(basename)[1]


def default_bottle_tag() -> str:
    tag = get_bottles_config().get("tag")
    if tag:
        return str(tag)
    return f"{platform.system().lower()}_{platform.machine().lower() or 'unknown'}"


class Bottle(SoftwareSpec):
    """
    A prebuilt binary for one or more platform tags.

    Only usable when a checksum exists for the current tag. Its version is
    not declared but computed from the stable spec when the owning formula
    is constructed (see validate()).
    """

    is_bottle = True

    def __init__(self, root_url: Optional[str] = None, current_tag: Optional[str] = None):
        super().__init__()
        self.root_url = root_url or get_bottles_config().get("root_url")
        self.current_tag = current_tag or default_bottle_tag()
        self.checksums: Dict[str, Checksum] = {}
        self.revision = 0
        self.cellar: Optional[str] = None
        self.pkg_version: Optional[PkgVersion] = None

    @property
    def version(self):
        return self.pkg_version

    @version.setter
    def version(self, value):
        self.pkg_version = value if value is None or isinstance(value, PkgVersion) else PkgVersion(value)

    @property
    def checksum(self) -> Optional[Checksum]:
        return self.checksums.get(self.current_tag)

    @checksum.setter
    def checksum(self, value):
        # per-tag only; SoftwareSpec.__init__ assigns None here
        if value is not None:
            self.checksums[self.current_tag] = value

    def set_sha1(self, hexdigest: str, tag: Optional[str] = None):
        self.checksums[tag or self.current_tag] = Checksum("sha1", hexdigest)

    def set_sha256(self, hexdigest: str, tag: Optional[str] = None):
        self.checksums[tag or self.current_tag] = Checksum("sha256", hexdigest)

    @property
    def declared(self) -> bool:
        """Some checksum exists for the current tag."""
        return self.checksum is not None and not self.checksum.empty()

    @property
    def usable(self) -> bool:
        return self.declared

    def filename(self, name: str) -> str:
        rev = f".{self.revision}" if self.revision else ""
        return f"{name}-{self.pkg_version}.{self.current_tag}.bottle{rev}.tar.gz"

    def download_name(self, name: str) -> str:
        return self.filename(name)

    def validate(self, name: str, stable_version: Union[str, Version], revision: int):
        """Fix the bottle version against the stable spec and fill in the url."""
        self.pkg_version = PkgVersion(stable_version, revision)
        if not self.url and self.root_url:
            self.url = f"{self.root_url.rstrip('/')}/{self.filename(name)}"

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]], current_tag: Optional[str] = None) -> "Bottle":
        d = d or {}
        b = cls(d.get("root_url"), current_tag)
        b.revision = int(d.get("revision") or 0)
        b.cellar = d.get("cellar")
        if d.get("url"):
            b.url = d["url"]
        for kind in CHECKSUM_TYPES:
            for tag, digest in (d.get(kind) or {}).items():
                getattr(b, f"set_{kind}")(str(digest), str(tag))
        return b

    def __repr__(self):
        return f"Bottle(tag={self.current_tag!r}, version={str(self.pkg_version) if self.pkg_version else None!r})"

# ----------------------
# Selection
# ----------------------
def select_active_spec(stable: Optional[SoftwareSpec], devel: Optional[SoftwareSpec],
                       head: Optional[SoftwareSpec], bottle: Optional[Bottle], mode: Any,
                       bottle_installable: Callable[[], bool], name: str = "") -> SoftwareSpec:
    """
    First match wins:
      head requested, devel requested, installable bottle, stable,
      devel-only, head-only; otherwise MissingSourceSpecification.
    """
    if head is not None and mode.head:
        return head
    if devel is not None and mode.devel:
        return devel
    if bottle is not None and bottle_installable():
        return bottle
    if stable is not None:
        return stable
    if devel is not None:
        return devel
    if head is not None:
        return head
    raise MissingSourceSpecification(name)
