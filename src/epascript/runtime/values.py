"""
Runtime variables for the EPA script interpreter.

Every value in the symbol table is a `Variable`: an explicit kind tag plus
the Python payload. Containers (arrays, maps, structures) own their
element Variables; references hold opaque handles from the selection
provider and are released through a disposer callback.
"""

import math
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional, Union

from ..errors import error_type_mismatch


class VariableKind(Enum):
    """Runtime kinds of variables."""
    INTEGER = auto()
    DOUBLE = auto()
    STRING = auto()
    BOOL = auto()
    ARRAY = auto()
    MAP = auto()
    STRUCTURE = auto()
    REFERENCE = auto()
    FILE_DESCRIPTOR = auto()
    FROZEN_EXPR = auto()


SCALAR_KINDS = frozenset({
    VariableKind.INTEGER, VariableKind.DOUBLE, VariableKind.STRING, VariableKind.BOOL,
})
NUMERIC_KINDS = frozenset({VariableKind.INTEGER, VariableKind.DOUBLE, VariableKind.BOOL})
CONTAINER_KINDS = frozenset({VariableKind.ARRAY, VariableKind.MAP, VariableKind.STRUCTURE})

# Scalar type names as written in scripts
SUBTYPE_KINDS = {
    "INTEGER": VariableKind.INTEGER,
    "INT": VariableKind.INTEGER,
    "DOUBLE": VariableKind.DOUBLE,
    "STRING": VariableKind.STRING,
    "BOOL": VariableKind.BOOL,
}


@dataclass
class FileHandle:
    """A declared file descriptor; the core never opens it."""
    mode: Optional[str] = None
    path: Optional[str] = None


@dataclass
class Variable:
    """
    A dynamically typed script value.

    `data` holds int, float, str or bool for scalars, a list of Variables
    for arrays, a dict of Variables for maps and structures, an opaque
    handle (or None) for references, a FileHandle for file descriptors,
    and a Literal expression node for frozen expressions.
    """
    kind: VariableKind
    data: Any
    declaration_count: int = 1

    def __repr__(self) -> str:
        return f"Variable({self.kind.name}, {self.data!r})"

    @property
    def is_scalar(self) -> bool:
        return self.kind in SCALAR_KINDS

    @property
    def is_numeric(self) -> bool:
        return self.kind in NUMERIC_KINDS

    def is_truthy(self) -> bool:
        """Truth value used by IF conditions and AND / OR."""
        if self.kind in NUMERIC_KINDS:
            return self.data != 0
        if self.kind == VariableKind.STRING:
            return self.data != ""
        if self.kind in CONTAINER_KINDS:
            return len(self.data) > 0
        return self.data is not None

    def copy(self) -> "Variable":
        """Deep copy of containers; reference handles are shared."""
        if self.kind == VariableKind.ARRAY:
            data = [item.copy() for item in self.data]
        elif self.kind in (VariableKind.MAP, VariableKind.STRUCTURE):
            data = {key: item.copy() for key, item in self.data.items()}
        elif self.kind == VariableKind.FILE_DESCRIPTOR:
            data = FileHandle(self.data.mode, self.data.path)
        else:
            data = self.data
        return Variable(self.kind, data, self.declaration_count)

    def dispose(self, disposer: Optional[Callable[[Any], None]] = None) -> None:
        """Release owned reference handles, recursing into containers."""
        if self.kind == VariableKind.REFERENCE:
            if self.data is not None and disposer is not None:
                disposer(self.data)
            self.data = None
        elif self.kind == VariableKind.ARRAY:
            for item in self.data:
                item.dispose(disposer)
            self.data = []
        elif self.kind in (VariableKind.MAP, VariableKind.STRUCTURE):
            for item in self.data.values():
                item.dispose(disposer)
            self.data = {}

    def to_python(self) -> Any:
        """Plain Python view (lists, dicts, scalars) for display and tests."""
        if self.kind == VariableKind.ARRAY:
            return [item.to_python() for item in self.data]
        if self.kind in (VariableKind.MAP, VariableKind.STRUCTURE):
            return {key: item.to_python() for key, item in self.data.items()}
        if self.kind == VariableKind.FROZEN_EXPR:
            return self.data.value
        return self.data


# Convenience constructors

def int_var(n: int) -> Variable:
    """Create an integer variable."""
    return Variable(VariableKind.INTEGER, int(n))


def double_var(x: float) -> Variable:
    """Create a double variable."""
    return Variable(VariableKind.DOUBLE, float(x))


def string_var(s: str) -> Variable:
    """Create a string variable."""
    return Variable(VariableKind.STRING, str(s))


def bool_var(b: bool) -> Variable:
    """Create a bool variable."""
    return Variable(VariableKind.BOOL, bool(b))


def array_var(items: Optional[List[Variable]] = None) -> Variable:
    return Variable(VariableKind.ARRAY, list(items or []))


def map_var(items: Optional[Dict[str, Variable]] = None) -> Variable:
    return Variable(VariableKind.MAP, dict(items or {}))


def struct_var(members: Optional[Dict[str, Variable]] = None) -> Variable:
    return Variable(VariableKind.STRUCTURE, dict(members or {}))


def reference_var(handle: Any = None) -> Variable:
    return Variable(VariableKind.REFERENCE, handle)


def file_var(mode: Optional[str] = None, path: Optional[str] = None) -> Variable:
    return Variable(VariableKind.FILE_DESCRIPTOR, FileHandle(mode, path))


def frozen_var(literal: Any) -> Variable:
    """Wrap a Literal node baked from a live expression."""
    return Variable(VariableKind.FROZEN_EXPR, literal)


def from_python(value: Any) -> Variable:
    """Wrap a plain Python value (bool before int, since bool is an int)."""
    if isinstance(value, Variable):
        return value
    if isinstance(value, bool):
        return bool_var(value)
    if isinstance(value, int):
        return int_var(value)
    if isinstance(value, float):
        return double_var(value)
    if isinstance(value, str):
        return string_var(value)
    if isinstance(value, (list, tuple)):
        return array_var([from_python(v) for v in value])
    if isinstance(value, dict):
        return map_var({str(k): from_python(v) for k, v in value.items()})
    return reference_var(value)


def zero_value(kind: VariableKind) -> Variable:
    """Default value for a freshly declared slot of `kind`."""
    if kind == VariableKind.INTEGER:
        return int_var(0)
    if kind == VariableKind.DOUBLE:
        return double_var(0.0)
    if kind == VariableKind.STRING:
        return string_var("")
    if kind == VariableKind.BOOL:
        return bool_var(False)
    if kind == VariableKind.ARRAY:
        return array_var()
    if kind == VariableKind.MAP:
        return map_var()
    if kind == VariableKind.STRUCTURE:
        return struct_var()
    if kind == VariableKind.FILE_DESCRIPTOR:
        return file_var()
    return reference_var()


# Coercion

def to_number(var: Variable, what: str = "operand") -> Union[int, float]:
    """Numeric payload of an int, double or bool variable."""
    if var.kind == VariableKind.BOOL:
        return int(var.data)
    if var.kind in (VariableKind.INTEGER, VariableKind.DOUBLE):
        return var.data
    raise error_type_mismatch(f"numeric {what}", var.kind.name.lower())


def format_number(value: Union[int, float]) -> str:
    """Render a number the way string concatenation shows it."""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)
    if math.isfinite(value) and value == int(value) and abs(value) < 1e15:
        return str(int(value))
    return "%.15g" % value


def to_text(var: Variable, name: Optional[str] = None) -> str:
    """Text form of a variable for the string evaluation path."""
    if var.kind == VariableKind.STRING:
        return var.data
    if var.kind in NUMERIC_KINDS:
        return format_number(var.data)
    if var.kind == VariableKind.FROZEN_EXPR:
        value = var.data.value
        return value if isinstance(value, str) else format_number(value)
    if var.kind == VariableKind.FILE_DESCRIPTOR:
        return var.data.path or ""
    if name is not None:
        return name
    raise error_type_mismatch("string", var.kind.name.lower())


def coerce_to_kind(kind: VariableKind, value: Variable) -> Variable:
    """
    Convert `value` for storage in a slot of `kind`.

    DOUBLE into INTEGER truncates, BOOL into INTEGER widens, numerics into
    BOOL become `value != 0`. STRING slots only accept strings. Containers,
    references and file descriptors only accept their own kind.
    """
    if value.kind == VariableKind.FROZEN_EXPR:
        value = from_python(value.data.value)

    if kind == VariableKind.INTEGER and value.kind in NUMERIC_KINDS:
        return int_var(math.trunc(value.data))
    if kind == VariableKind.DOUBLE and value.kind in NUMERIC_KINDS:
        return double_var(float(value.data))
    if kind == VariableKind.BOOL and value.kind in NUMERIC_KINDS:
        return bool_var(value.data != 0)
    if kind == value.kind:
        return value.copy()
    raise error_type_mismatch(kind.name.lower(), value.kind.name.lower())
