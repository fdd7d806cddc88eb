"""
EPA script runtime - evaluation, command execution and reactive refresh.

This module provides:
- Variable: Dynamically typed runtime values
- BuiltinRegistry: Built-in function implementations
- Evaluator: General and string-context expression evaluation
- Interpreter: Per-command executors and the first pass
- ReactiveEngine / Dispatcher: Gating, snapshot rebuild and the busy guard
- Session: One open script with its collaborators
"""

from .values import (
    Variable,
    VariableKind,
    FileHandle,
    SCALAR_KINDS,
    NUMERIC_KINDS,
    int_var,
    double_var,
    string_var,
    bool_var,
    array_var,
    map_var,
    struct_var,
    reference_var,
    file_var,
    frozen_var,
    from_python,
    zero_value,
    coerce_to_kind,
    to_text,
)

from .builtins import (
    BuiltinFunction,
    BuiltinRegistry,
    get_builtin_registry,
    call_builtin,
)

from .evaluator import Evaluator

from .interfaces import (
    UIBinder,
    SelectionProvider,
    ModelQuery,
    LayoutCursor,
    HeadlessBinder,
    widget_id_for,
)

from .interpreter import Interpreter

from .reactive import (
    ReactiveEngine,
    Dispatcher,
)

from .context import (
    Session,
    FrozenSubPicture,
    Requirement,
)

__all__ = [
    # Values
    'Variable',
    'VariableKind',
    'FileHandle',
    'SCALAR_KINDS',
    'NUMERIC_KINDS',
    'int_var',
    'double_var',
    'string_var',
    'bool_var',
    'array_var',
    'map_var',
    'struct_var',
    'reference_var',
    'file_var',
    'frozen_var',
    'from_python',
    'zero_value',
    'coerce_to_kind',
    'to_text',
    # Builtins
    'BuiltinFunction',
    'BuiltinRegistry',
    'get_builtin_registry',
    'call_builtin',
    # Evaluation and execution
    'Evaluator',
    'Interpreter',
    'ReactiveEngine',
    'Dispatcher',
    # Collaborators
    'UIBinder',
    'SelectionProvider',
    'ModelQuery',
    'LayoutCursor',
    'HeadlessBinder',
    'widget_id_for',
    # Session
    'Session',
    'FrozenSubPicture',
    'Requirement',
]
