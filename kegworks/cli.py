#!/usr/bin/env python3
# kegworks/cli.py
"""
kegworks CLI

  kegworks info FILE...                  active spec, version, options, conflicts
  kegworks deps FILE... [--include-build] dependencies in install order
  kegworks compilers FILE...             which installed compiler each formula builds with
  kegworks config [--print|--validate]   effective configuration

Mode flags (--HEAD, --devel, --verbose, --build-from-source) and any
--with-foo / --without-foo toggles apply to every formula on the line.
"""

from __future__ import annotations

import sys
import argparse
from typing import Any, List, Optional

import yaml
from rich.console import Console
from rich.table import Table

from kegworks import config as config_mod
from kegworks.compilers import Compiler, default_priority, select_compiler
from kegworks.dependencies import Expansion
from kegworks.exceptions import KegworksError
from kegworks.formulary import Formulary
from kegworks.logging import get_logger
from kegworks.options import BuildMode

logger = get_logger("cli")
console = Console()

# -----------------------
# Small pretty helpers
# -----------------------
def print_ok(msg: str):
    console.print(f"[bold green]✔[/] {msg}")

def print_warn(msg: str):
    console.print(f"[bold yellow]![/] {msg}")

def print_err(msg: str):
    console.print(f"[bold red]✖[/] {msg}")

# -----------------------
# Commands
# -----------------------
def _formulary(args: argparse.Namespace, extra: List[str]) -> Formulary:
    flags = list(extra)
    for flag, on in (("--HEAD", args.head), ("--devel", args.devel),
                     ("--verbose", args.verbose), ("--build-from-source", args.build_from_source)):
        if on:
            flags.append(flag)
    fy = Formulary(mode=BuildMode.from_argv(flags))
    if args.formula_dir:
        fy.load_directory(args.formula_dir)
    return fy

def _load_targets(fy: Formulary, files: List[str]) -> List[str]:
    return [fy.load_path(f).name for f in files]

def cmd_info(fy: Formulary, names: List[str]):
    for name in names:
        f = fy.factory(name)
        t = Table(title=f"{f.name} {f.pkg_version}", show_header=False)
        t.add_column("field", style="cyan")
        t.add_column("value")
        t.add_row("homepage", f.homepage or "")
        t.add_row("spec", f.spec_name)
        t.add_row("url", f.url or "")
        for label in ("stable", "devel", "head"):
            spec = getattr(f, label)
            if spec is not None:
                t.add_row(label, str(spec.version))
        t.add_row("bottle", "yes" if f.bottle is not None else "no")
        if f.keg_only:
            t.add_row("keg-only", f.keg_only_reason or "")
        t.add_row("prefix", f.prefix)
        for o in f.build:
            t.add_row(o.flag, o.description)
        for c in f.conflicts:
            t.add_row("conflicts with", c.name + (f" ({c.reason})" if c.reason else ""))
        console.print(t)

def cmd_deps(fy: Formulary, names: List[str], include_build: bool):
    def edge_filter(dependent: Any, dep: Any):
        if not include_build and getattr(dep, "build", False):
            return Expansion.PRUNE
        if dep.optional or dep.recommended:
            return dependent.build.with_(dep.name)
        return None

    for name in names:
        f = fy.factory(name)
        t = Table(title=f"{f.name} dependencies")
        t.add_column("#", justify="right")
        t.add_column("name", style="cyan")
        t.add_column("tags")
        for i, dep in enumerate(f.recursive_dependencies(edge_filter), 1):
            t.add_row(str(i), dep.name, ", ".join(dep.tags))
        console.print(t)
        reqs = f.recursive_requirements(edge_filter)
        for req in reqs:
            if req.satisfied():
                print_ok(req.name)
            else:
                print_warn(req.message())

def cmd_compilers(fy: Formulary, names: List[str]):
    found = [c for c in (Compiler.detect(n) for n in default_priority()) if c is not None]
    if not found:
        print_warn("no compilers found on PATH")
    for name in names:
        f = fy.factory(name)
        cc = select_compiler(f, found)
        print_ok(f"{f.name}: {cc.name} {cc.version or ''}".rstrip())

def cmd_config(validate: bool):
    if validate:
        ok, issues = config_mod.validate_config()
        for i in issues:
            print_warn(i)
        if ok:
            print_ok("configuration valid")
        return 0 if ok else 1
    console.print(yaml.safe_dump(config_mod.get_config().as_dict(), sort_keys=False))
    return 0

# -----------------------
# Argparse wiring
# -----------------------
def make_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="kegworks", description="kegworks formula build engine")
    ap.add_argument("--HEAD", dest="head", action="store_true", help="use the head (VCS) spec")
    ap.add_argument("--devel", action="store_true", help="use the devel spec")
    ap.add_argument("-v", "--verbose", action="store_true", help="echo build output")
    ap.add_argument("-s", "--build-from-source", dest="build_from_source", action="store_true",
                    help="never pour bottles")
    ap.add_argument("--formula-dir", help="directory of formula files used to resolve dependencies")
    ap.add_argument("--config", help="explicit config file")
    sub = ap.add_subparsers(dest="cmd")

    p_info = sub.add_parser("info")
    p_info.add_argument("files", nargs="+")

    p_deps = sub.add_parser("deps")
    p_deps.add_argument("files", nargs="+")
    p_deps.add_argument("--include-build", action="store_true")

    p_cc = sub.add_parser("compilers")
    p_cc.add_argument("files", nargs="+")

    p_cfg = sub.add_parser("config")
    grp = p_cfg.add_mutually_exclusive_group()
    grp.add_argument("--print", action="store_true", default=True)
    grp.add_argument("--validate", action="store_true")
    return ap

def main(argv: Optional[List[str]] = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    parser = make_parser()
    args, extra = parser.parse_known_args(argv)
    unknown = [a for a in extra if not a.startswith("--with")]
    if unknown:
        parser.error("unrecognized arguments: " + " ".join(unknown))

    if args.config:
        config_mod.reload(args.config)

    try:
        if args.cmd == "config":
            return cmd_config(args.validate)
        if args.cmd in ("info", "deps", "compilers"):
            fy = _formulary(args, extra)
            names = _load_targets(fy, args.files)
            if args.cmd == "info":
                cmd_info(fy, names)
            elif args.cmd == "deps":
                cmd_deps(fy, names, args.include_build)
            else:
                cmd_compilers(fy, names)
            return 0
        parser.print_help()
        return 0
    except (KegworksError, OSError, yaml.YAMLError) as e:
        logger.debug("command failed", exc_info=True)
        print_err(f"Command failed: {e}")
        return 2

if __name__ == "__main__":
    sys.exit(main())
