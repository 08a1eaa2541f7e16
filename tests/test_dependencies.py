"""Tests for dependency and requirement expansion."""

import pytest

from kegworks.dependencies import (Dependency, ExecutableRequirement, Expansion, Requirement,
                                   expand_dependencies, expand_requirements)
from kegworks.exceptions import CyclicDependency
from kegworks.options import BuildOptions


class Node:
    """Minimal stand-in for a formula: name, deps, requirements, build."""

    def __init__(self, name, deps=(), requirements=(), args=(), declared=()):
        self.name = name
        self.deps = [Dependency.from_declaration(d) for d in deps]
        self.requirements = list(requirements)
        self.build = BuildOptions(args)
        for opt in declared:
            self.build.add(opt)


def graph(*nodes):
    table = {n.name: n for n in nodes}
    return table, (lambda dep: table[dep.name])


class TestDependency:
    def test_declarations(self):
        assert Dependency.from_declaration("zlib").tags == []
        assert Dependency.from_declaration({"pkg-config": "build"}).build
        d = Dependency.from_declaration({"name": "ssl", "tags": ["optional"]})
        assert d.optional and not d.required


class TestExpandDependencies:
    def test_post_order(self):
        nodes, resolve = graph(
            Node("a", ["b", "c"]),
            Node("b", ["d"]),
            Node("c", ["d"]),
            Node("d"),
        )
        names = [d.name for d in expand_dependencies(nodes["a"], resolve)]
        assert names == ["d", "b", "c"]

    def test_single_occurrence_merges_tags(self):
        nodes, resolve = graph(
            Node("a", [{"b": ["build"]}, "c"]),
            Node("b", ["d"]),
            Node("c", [{"d": ["run"]}]),
            Node("d"),
        )
        deps = expand_dependencies(nodes["a"], resolve)
        assert [d.name for d in deps].count("d") == 1
        d = next(x for x in deps if x.name == "d")
        assert d.tags == ["run"]
        assert next(x for x in deps if x.name == "b").build

    def test_optional_pruned_by_default(self):
        nodes, resolve = graph(
            Node("a", [{"ssl": ["optional"]}, {"docs": ["recommended"]}], declared=["with-ssl", "without-docs"]),
            Node("ssl"),
            Node("docs"),
        )
        assert [d.name for d in expand_dependencies(nodes["a"], resolve)] == ["docs"]

    def test_optional_kept_when_built_with(self):
        nodes, resolve = graph(
            Node("a", [{"ssl": ["optional"]}], args=["--with-ssl"], declared=["with-ssl"]),
            Node("ssl", ["crypto"]),
            Node("crypto"),
        )
        assert [d.name for d in expand_dependencies(nodes["a"], resolve)] == ["crypto", "ssl"]

    def test_filter_actions(self):
        nodes, resolve = graph(
            Node("a", ["b", "c", "e"]),
            Node("b", ["x"]),
            Node("c", ["y"]),
            Node("e", ["z"]),
            Node("x"), Node("y"), Node("z"),
        )
        actions = {"b": Expansion.SKIP, "c": Expansion.KEEP_BUT_PRUNE_RECURSIVE_DEPS, "e": False}
        names = [d.name for d in expand_dependencies(nodes["a"], resolve, lambda _, dep: actions.get(dep.name))]
        assert names == ["x", "c"]

    def test_cycle(self):
        nodes, resolve = graph(Node("a", ["b"]), Node("b", ["c"]), Node("c", ["a"]))
        with pytest.raises(CyclicDependency) as exc:
            expand_dependencies(nodes["a"], resolve)
        assert exc.value.cycle == ["a", "b", "c", "a"]

    def test_pruned_back_edge_is_not_a_cycle(self):
        nodes, resolve = graph(Node("a", ["b"]), Node("b", [{"a": ["build"]}]))
        runtime_only = lambda _, dep: Expansion.PRUNE if dep.build else None
        assert [d.name for d in expand_dependencies(nodes["a"], resolve, runtime_only)] == ["b"]

    def test_unused_optional_back_edge_is_not_a_cycle(self):
        nodes, resolve = graph(Node("a", ["b"]), Node("b", [{"a": ["optional"]}], declared=["with-a"]))
        assert [d.name for d in expand_dependencies(nodes["a"], resolve)] == ["b"]

    def test_kept_back_edge_is_still_a_cycle(self):
        nodes, resolve = graph(Node("a", ["b"]), Node("b", [{"a": ["build"]}]))
        with pytest.raises(CyclicDependency) as exc:
            expand_dependencies(nodes["a"], resolve)
        assert exc.value.cycle == ["a", "b", "a"]

    def test_self_dependency_is_a_cycle(self):
        nodes, resolve = graph(Node("a", ["a"]))
        with pytest.raises(CyclicDependency):
            expand_dependencies(nodes["a"], resolve)

    def test_diamond_is_not_a_cycle(self):
        nodes, resolve = graph(Node("a", ["b", "c"]), Node("b", ["d"]), Node("c", ["d"]), Node("d"))
        expand_dependencies(nodes["a"], resolve)


class TestExpandRequirements:
    def test_root_then_dependencies_deduplicated(self):
        x11 = Requirement("x11")
        nodes, resolve = graph(
            Node("a", ["b"], requirements=[Requirement("macos"), x11]),
            Node("b", requirements=[Requirement("x11"), Requirement("java")]),
        )
        names = [r.name for r in expand_requirements(nodes["a"], resolve)]
        assert names == ["macos", "x11", "java"]

    def test_optional_requirement_pruned(self):
        nodes, resolve = graph(Node("a", requirements=[Requirement("x11", ["optional"])]))
        assert expand_requirements(nodes["a"], resolve) == []

    def test_executable_requirement(self):
        assert ExecutableRequirement("shell", "sh").satisfied()
        assert not ExecutableRequirement("nope", "definitely-not-a-real-tool-kegworks").satisfied()
