# kegworks/executor.py
# -*- coding: utf-8 -*-
"""
executor.py - supervised execution of build commands

API:
  ex = SupervisedExecutor("libfoo")
  ex.run("./configure", "--prefix=/opt/foo", cwd=buildpath)
  ex.run("make")            # logged to <logs_dir>/libfoo/02.make

Behaviour:
  - one log file per invocation, NN.<basename of command>, never reused
  - child stdout and stderr share one pipe; every line goes to the log and
    is echoed to the console only in verbose mode
  - child environment carries KEGWORKS_CC_LOG_PATH=<log file>
  - xcodebuild-like commands run with the compiler variables removed from
    os.environ; they are put back on every exit path
  - "./configure" banners hide --disable-dependency-tracking/--disable-debug
    unless verbose
  - nonzero exit: tail of the log on the console, build configuration
    appended to the log, BuildCommandFailed raised
  - if the parent is interrupted the child is killed before re-raising
"""

from __future__ import annotations

import os
import sys
import subprocess
from collections import deque
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, TextIO

from kegworks.build_config import write_build_config
from kegworks.config import get_build_config
from kegworks.exceptions import BuildCommandFailed
from kegworks.logging import get_logger, ohai

logger = get_logger("executor")

CC_LOG_ENV = "KEGWORKS_CC_LOG_PATH"

# -----------------------
# helpers
# -----------------------
def log_name(count: int, cmd: str) -> str:
    """03.make, 01.configure, 02.cmake"""
    return "%02d.%s" % (count, os.path.basename(str(cmd)).split(" ")[0])

def pretty_command(cmd: str, args: List[Any], verbose: bool, boring: Optional[List[str]] = None) -> str:
    shown = [str(a) for a in args]
    if cmd == "./configure" and not verbose:
        hidden = set(boring if boring is not None else get_build_config().get("boring_configure_flags", []))
        shown = [a for a in shown if a not in hidden]
    return " ".join([str(cmd)] + shown).strip()

@contextmanager
def scrubbed_environ(names: List[str]) -> Iterator[Dict[str, str]]:
    """Remove `names` from os.environ for the duration of the block."""
    removed: Dict[str, str] = {}
    for n in names:
        if n in os.environ:
            removed[n] = os.environ.pop(n)
    try:
        yield removed
    finally:
        os.environ.update(removed)

def _tail(path: str, n: int) -> List[str]:
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        return list(deque(f, maxlen=n))


class SupervisedExecutor:
    """Runs the build commands of one formula and keeps its invocation counter."""

    def __init__(self, formula_name: str, logs_dir: Optional[str] = None, verbose: Optional[bool] = None,
                 stdout: Optional[TextIO] = None, config_writer: Optional[Callable[[TextIO], None]] = None):
        cfg = get_build_config()
        self.formula_name = formula_name
        self.logs_root = os.path.expanduser(logs_dir or cfg.get("logs_dir") or "~/.kegworks/logs")
        self.verbose = bool(cfg.get("verbose", False)) if verbose is None else bool(verbose)
        self.stdout = stdout
        self.config_writer = config_writer or write_build_config
        self.tail_lines = int(cfg.get("tail_lines", 5))
        self.scrub_commands: List[str] = list(cfg.get("scrub_env_commands") or [])
        self.scrub_vars: List[str] = list(cfg.get("scrub_env_vars") or [])
        self.exec_count = 0

    @property
    def logdir(self) -> str:
        return os.path.join(self.logs_root, self.formula_name)

    def _out(self) -> TextIO:
        return self.stdout or sys.stdout

    def _needs_scrub(self, cmd: str) -> bool:
        base = os.path.basename(str(cmd))
        return any(base.startswith(c) for c in self.scrub_commands)

    def run(self, cmd: str, *args: Any, cwd: Optional[str] = None) -> str:
        """
        Run cmd with args; return the log file path.

        Raises BuildCommandFailed on a nonzero exit (a command that cannot
        be spawned counts as exit status 1).
        """
        argv = [str(cmd)] + [str(a) for a in args]
        ohai(pretty_command(cmd, list(args), self.verbose), stream=self._out())

        self.exec_count += 1
        os.makedirs(self.logdir, exist_ok=True)
        logfn = os.path.join(self.logdir, log_name(self.exec_count, cmd))
        logger.debug("running %s (log %s)", argv, logfn)

        scrub = self.scrub_vars if self._needs_scrub(cmd) else []
        with scrubbed_environ(scrub), open(logfn, "w", encoding="utf-8") as f:
            env = dict(os.environ)
            env[CC_LOG_ENV] = logfn
            rc = self._supervise(argv, cwd, env, f)
            self._out().flush()
            if rc != 0:
                f.flush()
                if not self.verbose:
                    self._out().writelines(_tail(logfn, self.tail_lines))
                    self._out().flush()
                f.write("\n")
                self.config_writer(f)
                raise BuildCommandFailed(self.formula_name, str(cmd), [str(a) for a in args], rc, logfn)
        return logfn

    def _supervise(self, argv: List[str], cwd: Optional[str], env: Dict[str, str], log: TextIO) -> int:
        try:
            proc = subprocess.Popen(argv, cwd=cwd, env=env, stdin=subprocess.DEVNULL,
                                    stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
                                    text=True, errors="replace")
        except OSError as e:
            logger.debug("spawn of %s failed: %s", argv[0], e)
            log.write(f"Failed to execute: {argv[0]}\n")
            return 1

        try:
            for line in proc.stdout:
                if not line.endswith("\n"):
                    line += "\n"
                log.write(line)
                if self.verbose:
                    self._out().write(line)
            return proc.wait()
        except BaseException:
            if proc.poll() is None:
                proc.kill()
                proc.wait()
            raise
        finally:
            proc.stdout.close()
