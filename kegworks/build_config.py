# kegworks/build_config.py
"""Build-configuration snapshot appended to failed build logs."""

from __future__ import annotations

import os
import sys
import platform
from typing import Any, Optional, TextIO

import kegworks
from kegworks.config import get_build_config

COMPILER_ENV = ("CC", "CXX", "LD", "CPP", "CFLAGS", "CXXFLAGS", "OBJCFLAGS", "LDFLAGS", "CPPFLAGS", "MAKEFLAGS")


def write_build_config(fh: TextIO, formula: Optional[Any] = None):
    cfg = get_build_config()
    fh.write(f"KEGWORKS_VERSION: {kegworks.__version__}\n")
    fh.write(f"PYTHON: {platform.python_implementation()} {platform.python_version()} ({sys.executable})\n")
    fh.write(f"PLATFORM: {platform.platform()}\n")
    fh.write(f"CPU: {os.cpu_count() or 1}-core {platform.machine() or 'unknown'}\n")
    fh.write(f"KEGWORKS_CELLAR: {cfg.get('cellar')}\n")
    fh.write(f"KEGWORKS_LOGS: {cfg.get('logs_dir')}\n")
    for var in COMPILER_ENV:
        if os.environ.get(var):
            fh.write(f"{var}: {os.environ[var]}\n")
    if formula is not None:
        spec = formula.active_spec
        fh.write(f"FORMULA: {formula.name}\n")
        fh.write(f"SPEC: {formula.spec_name}\n")
        fh.write(f"VERSION: {formula.pkg_version}\n")
        used = " ".join(o.flag for o in formula.build.used_options) or "(none)"
        fh.write(f"USED_OPTIONS: {used}\n")
        if spec.url:
            fh.write(f"URL: {spec.url}\n")
