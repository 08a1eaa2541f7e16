# kegworks/exceptions.py
"""
Exception types raised by the kegworks build engine.

Every error propagates synchronously to the immediate caller; nothing in
kegworks retries on its own.
"""

from __future__ import annotations

from typing import Any, List, Optional, Sequence


class KegworksError(Exception):
    """Base exception for all kegworks errors"""
    pass


class ConfigError(KegworksError):
    """Raised when the configuration fails validation in fatal mode"""
    pass


# ----------------------
# Formula construction
# ----------------------
class FormulaSpecificationError(KegworksError):
    """A formula's specifications cannot produce a buildable variant"""
    pass


class MissingSourceSpecification(FormulaSpecificationError):
    """No usable stable, devel, head or bottle specification was declared"""

    def __init__(self, name: str = ""):
        self.name = name
        who = f"{name}: " if name else ""
        super().__init__(f"{who}formulae require at least a URL")


class BottleSpecificationError(FormulaSpecificationError):
    """A bottle was declared but there is no stable spec to version it against"""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"{name}: a bottle requires a stable specification")


class InvalidSpecificationAttribute(KegworksError):
    """A required identity attribute is empty or contains whitespace"""

    def __init__(self, attr: str, value: Any):
        self.attr = attr
        self.value = value
        super().__init__(f"invalid attribute: {attr} ({value!r})")


class FormulaUnavailableError(KegworksError):
    """A dependency names a formula the registry does not know"""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"No available formula for {name}")


# ----------------------
# Dependency graph
# ----------------------
class CyclicDependency(KegworksError):
    """The dependency graph contains a cycle"""

    def __init__(self, cycle: Sequence[str]):
        self.cycle: List[str] = list(cycle)
        super().__init__("dependency cycle detected: " + " -> ".join(self.cycle))


# ----------------------
# Build time
# ----------------------
class CompilerSelectionError(KegworksError):
    """None of the candidate compilers can build the formula"""

    def __init__(self, formula: str):
        self.formula = formula
        super().__init__(f"{formula} cannot be built with any available compilers")


class ChecksumMismatchError(KegworksError):
    """A downloaded file does not match its declared checksum"""

    def __init__(self, path: str, expected: str, actual: str):
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(f"SHA mismatch for {path}\nExpected: {expected}\nActual: {actual}")


class PatchApplicationFailed(KegworksError):
    """The patch tool (or a decompressor) returned a nonzero status"""

    def __init__(self, patch: str, exit_status: int, command: Optional[Sequence[str]] = None):
        self.patch = patch
        self.exit_status = exit_status
        self.command = list(command or [])
        super().__init__(f"Failed to apply patch {patch} (exit status {exit_status})")


class BuildCommandFailed(KegworksError):
    """A supervised build command exited with a nonzero status"""

    def __init__(self, formula: str, cmd: str, args: Sequence[str], exit_status: int,
                 log_path: Optional[str] = None):
        self.formula = formula
        self.cmd = cmd
        self.args = list(args)
        self.exit_status = exit_status
        self.log_path = log_path
        shown = " ".join([str(cmd)] + [str(a) for a in self.args]).strip()
        super().__init__(f"{formula}: failed executing: {shown} (exit status {exit_status})")
