"""
Symbol table for EPA script sessions.

An insertion-ordered map of name -> Variable with the script's
declaration policy:

- declaring a name that already exists keeps the original value and
  records a W301 warning, unless the name was invalidated first
- INVALIDATE_PARAM removes a scalar outright so the next declaration
  fully re-initializes it
"""

import logging
import math
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Tuple

from .errors import (
    DiagnosticCollector,
    error_invalidate_non_scalar,
    warning_redeclaration,
    warning_invalidate_unknown,
)
from .runtime.values import Variable, double_var
from .tokens import SourceSpan

logger = logging.getLogger(__name__)

# Builtin constants seeded into every table
BUILTIN_CONSTANTS: Dict[str, float] = {
    "PI": math.pi,
    "E": math.e,
}


class SymbolTable:
    """
    Name -> Variable store for one session.

    Iteration follows declaration order.
    """

    def __init__(self, diagnostics: Optional[DiagnosticCollector] = None,
                 seed_constants: bool = True):
        self._variables: Dict[str, Variable] = {}
        self._invalidated: Set[str] = set()
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticCollector()
        if seed_constants:
            for name, value in BUILTIN_CONSTANTS.items():
                self._variables[name] = double_var(value)

    def __contains__(self, name: str) -> bool:
        return name in self._variables

    def __len__(self) -> int:
        return len(self._variables)

    def __iter__(self) -> Iterator[str]:
        return iter(self._variables)

    def items(self) -> Iterator[Tuple[str, Variable]]:
        return iter(list(self._variables.items()))

    def names(self) -> List[str]:
        return list(self._variables)

    def get(self, name: str) -> Optional[Variable]:
        """Look up a variable; None if not declared."""
        return self._variables.get(name)

    def is_invalidated(self, name: str) -> bool:
        return name in self._invalidated

    def declare(self, name: str, variable: Variable, span: Optional[SourceSpan] = None) -> bool:
        """
        Declare `name` with an initial value.

        Returns True if the value was stored, False if an existing
        declaration was kept.
        """
        existing = self._variables.get(name)
        if existing is not None:
            existing.declaration_count += 1
            if name not in self._invalidated:
                self.diagnostics.add(warning_redeclaration(name, span))
                logger.warning("redeclaration of %r ignored; original value kept", name)
            return False

        variable.declaration_count = 1
        self._variables[name] = variable
        self._invalidated.discard(name)
        return True

    def set(self, name: str, variable: Variable) -> None:
        """Replace the value of an existing name (keeps its declaration count)."""
        existing = self._variables.get(name)
        if existing is not None:
            variable.declaration_count = existing.declaration_count
        self._variables[name] = variable

    def remove(self, name: str, disposer: Optional[Callable[[Any], None]] = None) -> Optional[Variable]:
        """Remove a name, disposing its owned references."""
        variable = self._variables.pop(name, None)
        if variable is not None:
            variable.dispose(disposer)
        return variable

    def invalidate(self, name: str, span: Optional[SourceSpan] = None) -> bool:
        """
        INVALIDATE_PARAM semantics.

        Returns False (with a W302 warning) when the name does not exist.
        Raises SemanticError for non-scalar kinds.
        """
        variable = self._variables.get(name)
        if variable is None:
            self.diagnostics.add(warning_invalidate_unknown(name, span))
            logger.warning("INVALIDATE_PARAM on unknown name %r", name)
            return False
        if not variable.is_scalar:
            raise error_invalidate_non_scalar(name, variable.kind.name, span)
        del self._variables[name]
        self._invalidated.add(name)
        logger.debug("invalidated %r", name)
        return True

    def snapshot(self) -> Dict[str, Any]:
        """Plain Python view of all variables, in declaration order."""
        return {name: var.to_python() for name, var in self._variables.items()}

    def teardown(self, disposer: Optional[Callable[[Any], None]] = None) -> None:
        """Dispose every variable and empty the table."""
        for variable in self._variables.values():
            variable.dispose(disposer)
        self._variables.clear()
        self._invalidated.clear()

    def format(self) -> str:
        """One `NAME = value` line per variable."""
        lines = []
        for name, var in self._variables.items():
            lines.append(f"{name} ({var.kind.name}) = {var.to_python()!r}")
        return "\n".join(lines)
