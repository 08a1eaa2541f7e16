# kegworks/logging.py
# -*- coding: utf-8 -*-
"""
kegworks logging

Features:
 - Configured from kegworks.config ("logging" section), re-applied on config reload
 - Console color formatter
 - Rotating file handler
 - JSONL transparency log
 - Module-level configurable log levels (module_levels)
 - ohai() banners for build steps ("==> ./configure --prefix=...")
 - Thread-safe reconfiguration and per-level metrics
"""

from __future__ import annotations

import sys
import json
import time
import logging
import logging.handlers
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO

from kegworks.config import get_config, register_watch_callback

# Logger for this module
_logger = logging.getLogger("kegworks.logging")

# ----------------------
# Color formatter
# ----------------------
class ColorFormatter(logging.Formatter):
    COLORS = {
        logging.DEBUG: "\033[37m",    # light gray
        logging.INFO: "\033[36m",     # cyan
        logging.WARNING: "\033[33m",  # yellow
        logging.ERROR: "\033[31m",    # red
        logging.CRITICAL: "\033[41;37m", # white on red
    }
    RESET = "\033[0m"

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None, color: bool = True):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.color = color

    def format(self, record):
        msg = super().format(record)
        if self.color:
            color = self.COLORS.get(record.levelno, "")
            return f"{color}{msg}{self.RESET}"
        return msg

# ----------------------
# JSONL formatter for transparency log
# ----------------------
class JSONLineFormatter(logging.Formatter):
    def format(self, record):
        obj = {
            "timestamp": time.time(),
            "level": record.levelname,
            "module": getattr(record, "keg_module", record.name),
            "message": record.getMessage(),
        }
        if record.exc_info:
            obj["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(obj, ensure_ascii=False)

# ----------------------
# Filters
# ----------------------
class ModuleLevelFilter(logging.Filter):
    def __init__(self, module_levels: Dict[str, str]):
        super().__init__()
        self.module_levels = {m: getattr(logging, str(lvl).upper(), logging.INFO) for m, lvl in (module_levels or {}).items()}

    def filter(self, record):
        mod = getattr(record, "keg_module", None)
        if mod and mod in self.module_levels:
            return record.levelno >= self.module_levels[mod]
        return True


class _ModuleFieldFilter(logging.Filter):
    """Records logged through plain stdlib loggers get keg_module from their name."""

    def filter(self, record):
        if not hasattr(record, "keg_module"):
            record.keg_module = record.name.rsplit(".", 1)[-1]
        return True

# ----------------------
# KegLogger (singleton)
# ----------------------
class KegLogger:
    _instance = None
    _singleton_lock = threading.Lock()

    def __new__(cls):
        with cls._singleton_lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._inited = False
        return cls._instance

    def __init__(self):
        if self._inited:
            return
        self._lock = threading.RLock()

        self._root = logging.getLogger("kegworks")
        self._root.setLevel(logging.DEBUG)
        self._root.propagate = False

        self._handlers: List[logging.Handler] = []
        self._module_filter = ModuleLevelFilter({})
        self._metrics: Dict[str, int] = {lvl: 0 for lvl in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")}

        self._apply_config(get_config().merged.get("logging", {}))
        register_watch_callback(lambda new_cfg: self.reload_config())
        self._root.addFilter(self._count_levels_filter)
        self._inited = True

    def _count_levels_filter(self, record):
        name = record.levelname
        if name in self._metrics:
            self._metrics[name] += 1
        return True

    # ----------------------
    # Configuration (apply/hot-reload)
    # ----------------------
    def _apply_config(self, cfg: Dict[str, Any]):
        with self._lock:
            for h in list(self._handlers):
                self._root.removeHandler(h)
                h.close()
            self._handlers.clear()

            self._root.removeFilter(self._module_filter)
            self._module_filter = ModuleLevelFilter(cfg.get("module_levels", {}) or {})
            self._root.addFilter(self._module_filter)

            fmt = cfg.get("format") or "[%(asctime)s] [%(levelname)s] [%(keg_module)s] %(message)s"
            datefmt = cfg.get("datefmt", "%H:%M:%S")

            # console handler
            console_cfg = cfg.get("console", {"enabled": True}) or {}
            if console_cfg.get("enabled", True):
                ch = logging.StreamHandler(sys.stderr)
                ch.setLevel(getattr(logging, str(cfg.get("level", "INFO")).upper(), logging.INFO))
                ch.setFormatter(ColorFormatter(fmt, datefmt=datefmt, color=bool(cfg.get("color", True))))
                self._add_handler(ch)

            # rotating file handler
            if cfg.get("file"):
                file_path = Path(cfg["file"]).expanduser()
                file_path.parent.mkdir(parents=True, exist_ok=True)
                max_bytes = int(cfg.get("max_size_bytes") or 10 * 1024 * 1024)
                fh = logging.handlers.RotatingFileHandler(str(file_path), maxBytes=max_bytes,
                                                          backupCount=int(cfg.get("backups", 5)), encoding="utf-8")
                fh.setLevel(getattr(logging, str(cfg.get("file_level", "DEBUG")).upper(), logging.DEBUG))
                fh.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
                self._add_handler(fh)

            # jsonl transparency log
            jsonl_cfg = cfg.get("jsonl", {}) or {}
            if jsonl_cfg.get("enabled"):
                path = Path(jsonl_cfg.get("path") or "~/.kegworks/logs/transparency.jsonl").expanduser()
                path.parent.mkdir(parents=True, exist_ok=True)
                jh = logging.FileHandler(str(path), encoding="utf-8")
                jh.setLevel(getattr(logging, str(jsonl_cfg.get("level", "INFO")).upper(), logging.INFO))
                jh.setFormatter(JSONLineFormatter())
                self._add_handler(jh)

            _logger.debug("logging: configuration applied")

    def _add_handler(self, handler: logging.Handler):
        handler.addFilter(_ModuleFieldFilter())
        self._root.addHandler(handler)
        self._handlers.append(handler)

    def reload_config(self):
        """Re-apply logging config from kegworks.config."""
        self._apply_config(get_config().merged.get("logging", {}))

    # ----------------------
    # Public API
    # ----------------------
    def get_logger(self, module_name: str) -> logging.LoggerAdapter:
        """Return a LoggerAdapter that injects 'keg_module' into records."""
        return logging.LoggerAdapter(self._root, {"keg_module": module_name})

    def get_metrics(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._metrics)

# ----------------------
# Build step banners
# ----------------------
_BANNER_COLOR = "\033[1;34m"
_BANNER_RESET = "\033[0m"

def ohai(title: str, stream: Optional[TextIO] = None, color: Optional[bool] = None):
    """Print a '==> title' banner to the console and record it in the log."""
    out = stream or sys.stdout
    if color is None:
        color = bool(get_config().get("logging.color", True)) and out.isatty()
    if color:
        out.write(f"{_BANNER_COLOR}==>{_BANNER_RESET} \033[1m{title}{_BANNER_RESET}\n")
    else:
        out.write(f"==> {title}\n")
    out.flush()
    get_logger("build").debug(title)

# ----------------------
# Public factory
# ----------------------
_GLOBAL_LOGGER = KegLogger()

def get_logger(module: str) -> logging.LoggerAdapter:
    return _GLOBAL_LOGGER.get_logger(module)

def get_metrics():
    return _GLOBAL_LOGGER.get_metrics()
