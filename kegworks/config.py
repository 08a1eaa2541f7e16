# kegworks/config.py
# -*- coding: utf-8 -*-
"""
kegworks central configuration loader

Features:
- Read YAML/JSON config from multiple locations (env override, cwd, user, system)
- Merge with authoritative DEFAULTS, normalize/coerce types (human sizes to bytes)
- Validate structure and types, warn or raise ConfigError (fatal optional)
- Provide access via Config dataclass (get_config(), get_build_config(), ...)
- Thread-safe load/reload with watcher callback notification
- Save writes only the overrides (diff against DEFAULTS)
"""

from __future__ import annotations

import os
import json
import logging
import threading
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import yaml

from kegworks.exceptions import ConfigError

# the package logger depends on this module, so config logs through stdlib directly
logger = logging.getLogger("kegworks.config")

# ----------------------------
# DEFAULT configuration (authoritative base)
# ----------------------------
DEFAULTS: Dict[str, Any] = {
    "logging": {
        "level": "INFO",
        "file": None,
        "file_level": "DEBUG",
        "color": True,
        "max_size": "10M",  # human readable
        "backups": 5,
        "jsonl": {"enabled": False, "path": "~/.kegworks/logs/transparency.jsonl"},
        "module_levels": {},
    },
    "build": {
        "logs_dir": "~/.kegworks/logs",
        "cellar": "~/.kegworks/Cellar",
        "cache": "~/.kegworks/cache",
        "verbose": False,
        "jobs": os.cpu_count() or 1,
        "tail_lines": 5,
        "aux_logs": ["config.log", "CMakeCache.txt"],
        "boring_configure_flags": ["--disable-dependency-tracking", "--disable-debug"],
        "scrub_env_commands": ["xcodebuild"],
        "scrub_env_vars": [
            "CC", "CXX", "LD", "CPP", "CFLAGS", "CXXFLAGS", "OBJCFLAGS",
            "LDFLAGS", "CPPFLAGS", "MAKEFLAGS",
        ],
    },
    "patches": {
        "tool": "patch",
        "gunzip": "gunzip",
        "bunzip2": "bunzip2",
    },
    "bottles": {
        "tag": None,  # derived from the running platform when unset
        "root_url": "https://downloads.kegworks.invalid/bottles",
    },
    "compilers": {
        "default_priority": ["clang", "gcc", "llvm"],
    },
}

# ----------------------------
# Dataclass to hold config
# ----------------------------
@dataclass
class Config:
    raw: Dict[str, Any] = field(default_factory=dict)     # values loaded from file (if any)
    merged: Dict[str, Any] = field(default_factory=dict)  # merged with DEFAULTS
    path: Optional[Path] = None

    def get(self, path: str, default: Any = None) -> Any:
        """Dot-separated getter for merged config."""
        parts = path.split(".") if path else []
        cur: Any = self.merged
        for p in parts:
            if isinstance(cur, dict) and p in cur:
                cur = cur[p]
            else:
                return default
        return cur

    def section(self, name: str) -> Dict[str, Any]:
        val = self.merged.get(name)
        return deepcopy(val) if isinstance(val, dict) else {}

    def as_dict(self) -> Dict[str, Any]:
        return deepcopy(self.merged)

    @classmethod
    def from_overrides(cls, overrides: Optional[Dict[str, Any]] = None) -> "Config":
        """Build a Config from in-memory overrides without touching the filesystem."""
        raw = overrides or {}
        return cls(raw=deepcopy(raw), merged=_normalize_and_coerce(_deep_merge(DEFAULTS, raw)))

# ----------------------------
# Module state
# ----------------------------
_CONFIG: Optional[Config] = None
_CONFIG_LOCK = threading.RLock()
_WATCH_CALLBACKS: List[Callable[[Config], None]] = []

# ----------------------------
# Utilities
# ----------------------------
def _human_size_to_bytes(val: Union[str, int, None]) -> Optional[int]:
    if val is None:
        return None
    if isinstance(val, int):
        return val
    s = str(val).strip().upper()
    units = {"KB": 1024, "K": 1024, "MB": 1024**2, "M": 1024**2, "GB": 1024**3, "G": 1024**3, "T": 1024**4}
    try:
        for suffix, mul in units.items():
            if s.endswith(suffix):
                num = float(s[: -len(suffix)].strip())
                return int(num * mul)
        return int(float(s))
    except ValueError:
        logger.warning("config: cannot parse human size '%s'", val)
        return None

def _expand_path(val: Optional[str]) -> Optional[str]:
    if val is None:
        return None
    return os.path.abspath(os.path.expanduser(os.path.expandvars(str(val))))

def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    res = deepcopy(a)
    for k, v in b.items():
        if k in res and isinstance(res[k], dict) and isinstance(v, dict):
            res[k] = _deep_merge(res[k], v)
        else:
            res[k] = deepcopy(v)
    return res

def _find_candidates(explicit: Optional[str] = None) -> List[Path]:
    candidates: List[Path] = []
    env = os.environ.get("KEGWORKS_CONFIG")
    if explicit:
        candidates.append(Path(explicit))
    if env:
        candidates.append(Path(env))
    candidates.extend([
        Path.cwd() / "kegworks.yaml",
        Path.cwd() / "kegworks.yml",
        Path.cwd() / "kegworks.json",
        Path.home() / ".config" / "kegworks" / "config.yaml",
        Path("/etc") / "kegworks" / "config.yaml",
    ])
    return candidates

def _load_file(path: Path) -> Optional[Dict[str, Any]]:
    if not path.exists():
        return None
    try:
        txt = path.read_text(encoding="utf-8")
    except OSError as e:
        logger.error("config: failed reading %s: %s", path, e)
        return None

    if path.suffix.lower() in (".yaml", ".yml"):
        try:
            data = yaml.safe_load(txt)
            return data if isinstance(data, dict) else {}
        except yaml.YAMLError as e:
            logger.debug("config: yaml parse fail %s: %s", path, e)

    try:
        data = json.loads(txt)
        return data if isinstance(data, dict) else {}
    except ValueError as e:
        logger.debug("config: json parse fail %s: %s", path, e)
    return None

def _normalize_and_coerce(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize path fields, convert human sizes and coerce basic types."""
    out = deepcopy(cfg)
    path_keys = [
        ("build", "logs_dir"),
        ("build", "cellar"),
        ("build", "cache"),
        ("logging", "file"),
    ]
    for section, key in path_keys:
        ref = out.get(section)
        if isinstance(ref, dict) and isinstance(ref.get(key), str) and ref[key]:
            ref[key] = _expand_path(ref[key])
    jsonl = out.get("logging", {}).get("jsonl")
    if isinstance(jsonl, dict) and isinstance(jsonl.get("path"), str):
        jsonl["path"] = _expand_path(jsonl["path"])

    # Convert human sizes
    if isinstance(out.get("logging"), dict) and "max_size" in out["logging"]:
        ms = _human_size_to_bytes(out["logging"]["max_size"])
        if ms is not None:
            out["logging"]["max_size_bytes"] = ms

    # Coerce numbers and booleans
    build = out.get("build")
    if isinstance(build, dict):
        try:
            build["jobs"] = int(build.get("jobs", 1))
            build["tail_lines"] = int(build.get("tail_lines", 5))
        except (TypeError, ValueError):
            logger.debug("config: failed to coerce build fields", exc_info=True)
        if isinstance(build.get("verbose"), str):
            build["verbose"] = build["verbose"].strip().lower() in ("1", "true", "yes", "on")
    return out

def _validate_structure(cfg: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """Return (ok, issues_list). Non-fatal warnings unless load() is called with fatal=True."""
    warnings: List[str] = []
    for k in cfg.keys():
        if k not in DEFAULTS:
            warnings.append(f"Unknown top-level config key: {k}")
    build = cfg.get("build", {})
    if isinstance(build, dict):
        bj = build.get("jobs")
        if not isinstance(bj, int) or bj < 1:
            warnings.append("build.jobs must be integer >= 1")
        tl = build.get("tail_lines")
        if not isinstance(tl, int) or tl < 0:
            warnings.append("build.tail_lines must be integer >= 0")
        for key in ("aux_logs", "boring_configure_flags", "scrub_env_commands", "scrub_env_vars"):
            if not isinstance(build.get(key), list):
                warnings.append(f"build.{key} should be a list")
    else:
        warnings.append("build must be a mapping")
    prio = cfg.get("compilers", {}).get("default_priority")
    if prio is not None and not isinstance(prio, list):
        warnings.append("compilers.default_priority should be a list")
    return (len(warnings) == 0, warnings)

# ----------------------------
# Loading / reloading
# ----------------------------
def _find_path(explicit: Optional[str] = None) -> Optional[Path]:
    for p in _find_candidates(explicit):
        if p.exists():
            return p
    return None

def load(explicit_path: Optional[str] = None, fatal: bool = False) -> Config:
    """
    Load and merge config. If fatal=True then structural validation failures raise ConfigError.
    Returns Config object.
    """
    global _CONFIG
    with _CONFIG_LOCK:
        cfg_path = _find_path(explicit_path)
        raw: Dict[str, Any] = {}
        if cfg_path:
            data = _load_file(cfg_path)
            if data is None:
                logger.warning("config: file found but could not be parsed: %s", cfg_path)
            else:
                raw = data
        merged = _deep_merge(DEFAULTS, raw)
        normalized = _normalize_and_coerce(merged)
        ok, issues = _validate_structure(normalized)
        if not ok:
            msg = f"config: validation issues: {issues}"
            if fatal:
                logger.error(msg)
                raise ConfigError(msg)
            logger.warning(msg)
        cfg_obj = Config(raw=raw, merged=normalized, path=cfg_path)
        _CONFIG = cfg_obj
        logger.debug("config: loaded merged config (from=%s)", str(cfg_path) if cfg_path else "<defaults>")
        return cfg_obj

def get_config() -> Config:
    global _CONFIG
    with _CONFIG_LOCK:
        if _CONFIG is None:
            _CONFIG = load()
        return _CONFIG

def set_config(cfg: Config) -> Config:
    """Install an explicit Config (tests, embedding applications)."""
    global _CONFIG
    with _CONFIG_LOCK:
        _CONFIG = cfg
    _notify_watchers(cfg)
    return cfg

def reload(explicit_path: Optional[str] = None) -> Config:
    cfg = load(explicit_path)
    _notify_watchers(cfg)
    return cfg

# ----------------------------
# Save: write only override (diff) to avoid clobbering defaults
# ----------------------------
def _compute_override(merged: Dict[str, Any], defaults: Dict[str, Any]) -> Dict[str, Any]:
    def diff(a: Any, b: Any) -> Any:
        if type(a) != type(b):
            return deepcopy(a)
        if isinstance(a, dict):
            out = {}
            for k, v in a.items():
                if k not in b:
                    out[k] = deepcopy(v)
                else:
                    d = diff(v, b[k])
                    if d is not None:
                        out[k] = d
            return out or None
        if a != b:
            return deepcopy(a)
        return None
    return diff(merged, defaults) or {}

def save(path: Optional[str] = None, override_only: bool = True) -> Path:
    with _CONFIG_LOCK:
        cfg = get_config()
        out_path = Path(path) if path else (cfg.path or (Path.home() / ".config" / "kegworks" / "config.yaml"))
        out_path.parent.mkdir(parents=True, exist_ok=True)
        to_write = cfg.as_dict()
        if override_only:
            to_write = _compute_override(to_write, _normalize_and_coerce(DEFAULTS))
        with open(out_path, "w", encoding="utf-8") as fh:
            if out_path.suffix.lower() == ".json":
                json.dump(to_write, fh, indent=2, ensure_ascii=False)
            else:
                yaml.safe_dump(to_write, fh, default_flow_style=False, sort_keys=False)
        logger.info("config: saved config to %s (override_only=%s)", out_path, override_only)
        return out_path

# ----------------------------
# Watcher API
# ----------------------------
def register_watch_callback(cb: Callable[[Config], None]) -> None:
    with _CONFIG_LOCK:
        if cb not in _WATCH_CALLBACKS:
            _WATCH_CALLBACKS.append(cb)

def unregister_watch_callback(cb: Callable[[Config], None]) -> None:
    with _CONFIG_LOCK:
        if cb in _WATCH_CALLBACKS:
            _WATCH_CALLBACKS.remove(cb)

def _notify_watchers(cfg: Config) -> None:
    with _CONFIG_LOCK:
        cbs = list(_WATCH_CALLBACKS)
    for cb in cbs:
        cb(cfg)

# ----------------------------
# Convenience helpers for modules
# ----------------------------
def get_build_config() -> Dict[str, Any]:
    return get_config().section("build")

def get_patches_config() -> Dict[str, Any]:
    return get_config().section("patches")

def get_bottles_config() -> Dict[str, Any]:
    return get_config().section("bottles")

def validate_config() -> Tuple[bool, List[str]]:
    ok, issues = _validate_structure(get_config().merged)
    extra: List[str] = []
    logs_dir = get_config().get("build.logs_dir")
    if logs_dir:
        parent = Path(logs_dir)
        try:
            parent.mkdir(parents=True, exist_ok=True)
            if not os.access(parent, os.W_OK):
                extra.append(f"build.logs_dir {parent} not writable")
        except OSError:
            extra.append(f"build.logs_dir {parent} not creatable")
    issues.extend(extra)
    return (len(issues) == 0, issues)
