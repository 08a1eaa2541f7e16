"""Shared fixtures: every test runs against an isolated configuration."""

import stat

import pytest

from kegworks import config as config_mod
from kegworks.config import Config
from kegworks.options import BuildMode


@pytest.fixture(autouse=True)
def isolated_config(tmp_path):
    """Point logs, cellar and cache at tmp_path and keep the console plain."""
    previous = config_mod.get_config()
    cfg = Config.from_overrides({
        "logging": {"color": False, "level": "WARNING"},
        "build": {
            "logs_dir": str(tmp_path / "logs"),
            "cellar": str(tmp_path / "Cellar"),
            "cache": str(tmp_path / "cache"),
        },
        "bottles": {"tag": "test_tag", "root_url": "https://bottles.example.org"},
    })
    config_mod.set_config(cfg)
    yield cfg
    config_mod.set_config(previous)


@pytest.fixture
def write_script(tmp_path):
    """Write an executable /bin/sh script and return its path."""
    def _write(name, body):
        path = tmp_path / "bin" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("#!/bin/sh\n" + body)
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)
    return _write


@pytest.fixture
def mode():
    return BuildMode()
