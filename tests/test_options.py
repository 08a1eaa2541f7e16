"""Tests for build options and build mode."""

import logging

from kegworks.options import BuildMode, BuildOptions, Option, Options, resolve_build_options


class TestOptions:
    def test_option_strips_dashes(self):
        assert Option("--with-ssl").name == "with-ssl"
        assert Option("with-ssl").flag == "--with-ssl"
        assert Option("universal") == Option("--universal")

    def test_ordered_set(self):
        opts = Options(["b", "a", "b"])
        assert opts.names() == ["b", "a"]
        assert "--a" in opts
        assert len(opts - Options(["a"])) == 1
        assert (opts & Options(["a", "z"])).names() == ["a"]


class TestBuildOptions:
    def _declared(self):
        b = BuildOptions()
        b.add("with-ssl")
        b.add("without-docs")
        b.add("universal")
        return b

    def test_default_descriptions(self):
        b = self._declared()
        descs = {o.name: o.description for o in b}
        assert descs["with-ssl"] == "Build with ssl support"
        assert descs["universal"] == "Build a universal binary"

    def test_with_and_without(self):
        b = self._declared()
        assert not b.with_("ssl")
        assert b.with_("docs")
        b.set_args(["--with-ssl", "--without-docs"])
        assert b.with_("ssl")
        assert b.without("docs")
        assert not b.with_("unknown")

    def test_undeclared_flags_are_ignored_with_warning(self, caplog):
        b = self._declared()
        b.set_args(["--with-ssl", "--with-bogus"])
        root = logging.getLogger("kegworks")
        root.addHandler(caplog.handler)
        try:
            used = b.used_options
            used_again = b.used_options
        finally:
            root.removeHandler(caplog.handler)
        assert used.names() == ["with-ssl"]
        assert used_again.names() == ["with-ssl"]
        warnings = [r for r in caplog.records if "--with-bogus" in r.getMessage()]
        assert len(warnings) == 1

    def test_unused_options(self):
        b = self._declared()
        b.set_args(["--universal"])
        assert b.unused_options.names() == ["with-ssl", "without-docs"]
        assert b.is_universal()

    def test_spec_mode_flags(self):
        b = BuildOptions(["--HEAD"])
        assert b.head() and not b.stable()
        assert BuildOptions(["--devel"]).devel()

    def test_opposites(self):
        assert BuildOptions.opposite_of("with-foo").name == "without-foo"
        assert BuildOptions.opposite_of("--disable-bar").name == "enable-bar"
        assert BuildOptions.opposite_of("universal") is None
        b = self._declared()
        assert b.has_opposite_of("without-ssl")


class TestResolveBuildOptions:
    def test_merge_is_idempotent(self):
        build = BuildOptions()
        build.add("with-ssl")
        declared = [("with-ssl", "ignored"), ("enable-foo", "Enable foo")]
        resolve_build_options(declared, build)
        first = [(o.name, o.description) for o in build]
        resolve_build_options(declared, build)
        assert [(o.name, o.description) for o in build] == first
        assert first == [("with-ssl", "Build with ssl support"), ("enable-foo", "Enable foo")]


class TestBuildMode:
    def test_from_argv(self):
        mode = BuildMode.from_argv(["--HEAD", "-v", "--with-ssl"], environ={})
        assert mode.head and mode.verbose
        assert not mode.devel and not mode.build_from_source
        assert "--with-ssl" in mode.args

    def test_environment_switches(self):
        mode = BuildMode.from_argv([], environ={"KEGWORKS_VERBOSE": "1", "KEGWORKS_BUILD_FROM_SOURCE": "1"})
        assert mode.verbose and mode.build_from_source
