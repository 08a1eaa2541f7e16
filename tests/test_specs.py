"""Tests for software specs, bottles and active spec selection."""

import hashlib
import itertools

import pytest

from kegworks.download import Checksum, LocalDownloader
from kegworks.exceptions import ChecksumMismatchError, MissingSourceSpecification
from kegworks.options import BuildMode
from kegworks.specs import Bottle, HeadSoftwareSpec, Resource, SoftwareSpec, select_active_spec
from kegworks.version import PkgVersion, Version


def _specs():
    stable = SoftwareSpec("https://example.org/foo-1.0.tar.gz")
    devel = SoftwareSpec("https://example.org/foo-1.1b1.tar.gz")
    head = HeadSoftwareSpec("https://example.org/foo.git")
    bottle = Bottle(current_tag="test_tag")
    bottle.set_sha256("ab" * 32)
    bottle.validate("foo", stable.version, 0)
    return stable, devel, head, bottle


class TestSoftwareSpec:
    def test_version_from_url(self):
        assert SoftwareSpec("https://example.org/foo-1.0.tar.gz").version == Version("1.0")
        assert SoftwareSpec("https://example.org/foo.tar.gz", "2.1").version == Version("2.1")

    def test_usable_requires_url(self):
        assert not SoftwareSpec().usable
        assert SoftwareSpec("https://example.org/foo-1.0.tar.gz").usable

    def test_checksum_setters(self):
        spec = SoftwareSpec("https://example.org/foo-1.0.tar.gz")
        spec.set_sha1("a" * 40)
        assert spec.checksum == Checksum("sha1", "a" * 40)
        spec.set_sha256("b" * 64)
        assert spec.checksum.kind == "sha256"

    def test_optional_dependency_adds_option(self):
        spec = SoftwareSpec("https://example.org/foo-1.0.tar.gz")
        spec.depends_on({"ssl": ["optional"]})
        spec.depends_on({"docs": ["recommended"]})
        assert spec.build.has_option("with-ssl")
        assert spec.build.has_option("without-docs")

    def test_option_names_have_no_dashes(self):
        with pytest.raises(ValueError):
            SoftwareSpec().option("--with-foo")

    def test_head_spec(self):
        head = HeadSoftwareSpec("https://example.org/foo.git")
        assert head.version.is_head()
        assert head.verify_download_integrity("/nonexistent") == ""

    def test_resources(self):
        spec = SoftwareSpec.from_dict({
            "url": "https://example.org/foo-1.0.tar.gz",
            "resources": {"extra": {"url": "https://example.org/extra-0.3.tar.gz", "sha256": "c" * 64}},
        })
        res = spec.resource("extra")
        assert isinstance(res, Resource)
        assert res.owner is spec
        assert res.download_name("foo") == "foo--extra-0.3.tar.gz"


class TestFetchAndVerify:
    def test_fetch_and_verify(self, tmp_path):
        src = tmp_path / "foo-1.0.tar.gz"
        src.write_bytes(b"payload")
        spec = SoftwareSpec(src.as_uri())
        spec.set_sha256(hashlib.sha256(b"payload").hexdigest())
        dl = LocalDownloader()
        path = spec.fetch(dl, str(tmp_path / "cache"), "foo")
        assert path.endswith("foo-1.0.tar.gz")
        assert spec.verify_download_integrity(path) == spec.checksum.hexdigest
        assert spec.verify_download_integrity(path, dl)

    def test_mismatch(self, tmp_path):
        src = tmp_path / "foo-1.0.tar.gz"
        src.write_bytes(b"payload")
        spec = SoftwareSpec(src.as_uri())
        spec.set_sha1("0" * 40)
        with pytest.raises(ChecksumMismatchError) as exc:
            spec.verify_download_integrity(str(src))
        assert exc.value.expected == "0" * 40

    def test_mirror_fallback(self, tmp_path):
        src = tmp_path / "foo-1.0.tar.gz"
        src.write_bytes(b"payload")
        spec = SoftwareSpec((tmp_path / "missing" / "foo-1.0.tar.gz").as_uri())
        spec.mirror(src.as_uri())
        path = spec.fetch(LocalDownloader(), str(tmp_path / "cache"), "foo")
        assert open(path, "rb").read() == b"payload"

    def test_fetch_without_any_url(self, tmp_path):
        with pytest.raises(MissingSourceSpecification):
            SoftwareSpec().fetch(LocalDownloader(), str(tmp_path / "cache"), "foo")

    def test_last_mirror_error_propagates(self, tmp_path):
        spec = SoftwareSpec((tmp_path / "a-1.0.tar.gz").as_uri())
        spec.mirror("https://example.org/a-1.0.tar.gz")
        with pytest.raises(ValueError):
            spec.fetch(LocalDownloader(), str(tmp_path / "cache"), "a")


class TestBottle:
    def test_usable_only_for_current_tag(self):
        b = Bottle(current_tag="test_tag")
        b.set_sha256("ab" * 32, tag="other_tag")
        assert not b.usable
        b.set_sha256("cd" * 32)
        assert b.usable

    def test_validate_sets_version_and_url(self):
        b = Bottle(root_url="https://bottles.example.org", current_tag="test_tag")
        b.set_sha256("ab" * 32)
        b.validate("foo", Version("1.0"), 2)
        assert b.version == PkgVersion("1.0", 2)
        assert b.url == "https://bottles.example.org/foo-1.0_2.test_tag.bottle.tar.gz"

    def test_from_dict(self):
        b = Bottle.from_dict({"revision": 1, "sha256": {"test_tag": "ab" * 32, "other": "cd" * 32}},
                             current_tag="test_tag")
        assert b.checksum.hexdigest == "ab" * 32
        assert b.filename("foo").endswith(".bottle.1.tar.gz")


class TestSelectActiveSpec:
    def test_totality(self):
        stable, devel, head, bottle = _specs()
        for mask in itertools.product([True, False], repeat=4):
            args = [s if on else None for s, on in zip((stable, devel, head, bottle), mask)]
            for m in (BuildMode(), BuildMode(head=True), BuildMode(devel=True)):
                for installable in (True, False):
                    if not any(args[:3]) and not (args[3] is not None and installable):
                        with pytest.raises(MissingSourceSpecification):
                            select_active_spec(*args, m, lambda: installable)
                    else:
                        assert select_active_spec(*args, m, lambda: installable) is not None

    def test_head_mode_beats_bottle(self):
        stable, devel, head, bottle = _specs()
        chosen = select_active_spec(stable, devel, head, bottle, BuildMode(head=True), lambda: True)
        assert chosen is head

    def test_devel_mode(self):
        stable, devel, head, bottle = _specs()
        assert select_active_spec(stable, devel, head, bottle, BuildMode(devel=True), lambda: True) is devel

    def test_bottle_fast_path(self):
        stable, devel, head, bottle = _specs()
        assert select_active_spec(stable, devel, head, bottle, BuildMode(), lambda: True) is bottle
        assert select_active_spec(stable, devel, head, bottle, BuildMode(), lambda: False) is stable

    def test_devel_only_and_head_only(self):
        _, devel, head, _ = _specs()
        assert select_active_spec(None, devel, head, None, BuildMode(), lambda: False) is devel
        assert select_active_spec(None, None, head, None, BuildMode(), lambda: False) is head

    def test_head_mode_without_head_spec(self):
        stable, _, _, _ = _specs()
        assert select_active_spec(stable, None, None, None, BuildMode(head=True), lambda: False) is stable

    def test_nothing_declared(self):
        with pytest.raises(MissingSourceSpecification, match="formulae require at least a URL"):
            select_active_spec(None, None, None, None, BuildMode(), lambda: True)
