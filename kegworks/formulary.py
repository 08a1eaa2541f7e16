# kegworks/formulary.py
"""
Formulary: the registry formulae are looked up in.

- load_definition(path): read a YAML (or JSON) formula file into a FormulaDefinition
- Formulary.register / load_path / load_directory
- Formulary.factory(name): one Formula per name per session, sharing the
  session's BuildMode and bottle policy
"""

from __future__ import annotations

import os
import json
from pathlib import Path
from typing import Callable, Dict, List, Optional

import yaml

from kegworks.dependencies import Dependency
from kegworks.exceptions import FormulaUnavailableError, InvalidSpecificationAttribute
from kegworks.formula import Formula, FormulaDefinition
from kegworks.logging import get_logger
from kegworks.options import BuildMode

logger = get_logger("formulary")

FORMULA_SUFFIXES = (".yaml", ".yml", ".json")


def load_definition(path: str) -> FormulaDefinition:
    """Parse a formula file. The name defaults to the file stem."""
    p = Path(path).expanduser()
    text = p.read_text(encoding="utf-8")
    if p.suffix == ".json":
        data = json.loads(text)
    else:
        data = yaml.safe_load(text)
    if not isinstance(data, dict):
        raise InvalidSpecificationAttribute("definition", str(p))
    data.setdefault("name", p.stem)
    return FormulaDefinition.from_dict(data, path=str(p))


class Formulary:
    def __init__(self, mode: Optional[BuildMode] = None,
                 bottle_installable: Optional[Callable[[Formula], bool]] = None,
                 logs_dir: Optional[str] = None):
        self.mode = mode or BuildMode.from_environ()
        self.bottle_installable = bottle_installable
        self.logs_dir = logs_dir
        self._definitions: Dict[str, FormulaDefinition] = {}
        self._formulae: Dict[str, Formula] = {}

    def register(self, definition: FormulaDefinition) -> FormulaDefinition:
        if definition.name in self._definitions:
            logger.debug("replacing definition of %s", definition.name)
            self._formulae.pop(definition.name, None)
        self._definitions[definition.name] = definition
        return definition

    def load_path(self, path: str) -> FormulaDefinition:
        return self.register(load_definition(path))

    def load_directory(self, directory: str) -> List[FormulaDefinition]:
        out = []
        for entry in sorted(os.listdir(os.path.expanduser(directory))):
            if entry.endswith(FORMULA_SUFFIXES):
                out.append(self.load_path(os.path.join(directory, entry)))
        logger.debug("loaded %d formulae from %s", len(out), directory)
        return out

    def names(self) -> List[str]:
        return sorted(self._definitions)

    def __contains__(self, name: str) -> bool:
        return name in self._definitions

    def definition(self, name: str) -> FormulaDefinition:
        try:
            return self._definitions[name]
        except KeyError:
            raise FormulaUnavailableError(name) from None

    def factory(self, name: str) -> Formula:
        if name not in self._formulae:
            self._formulae[name] = Formula(self.definition(name), mode=self.mode,
                                           bottle_installable=self.bottle_installable,
                                           formulary=self, logs_dir=self.logs_dir)
        return self._formulae[name]

    def resolve(self, dep: Dependency) -> Formula:
        return self.factory(dep.name)
