"""
Session state for one open script.

A Session owns the symbol table and everything the reactive engine needs
between triggers: the injected collaborators, the frozen sub-picture
list, the requirement registry and the gating state of every IF. There
is no module-level "active session"; callers hold the Session and go
through its methods.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Tuple, Union

from .values import (
    Variable, VariableKind, NUMERIC_KINDS,
    string_var, reference_var, array_var, map_var,
    from_python, coerce_to_kind, to_number, to_text,
)
from .evaluator import Evaluator
from .interfaces import UIBinder, SelectionProvider, ModelQuery, LayoutCursor, HeadlessBinder
from .interpreter import Interpreter
from .reactive import ReactiveEngine, Dispatcher
from ..ast import Program, Literal, Table, UserSelect, UserInputParam, ConfigElem, walk_commands
from ..config import ScriptConfig
from ..errors import (
    DiagnosticCollector, DslError,
    error_undefined_identifier, error_type_mismatch, error_invalid_operand,
    error_index_out_of_range, error_selection_failed,
)
from ..symbols import SymbolTable

logger = logging.getLogger(__name__)

BranchState = Union[None, int, str]


@dataclass
class FrozenSubPicture:
    """A SUB_PICTURE whose filename and position were baked into literals."""
    picture: Literal
    pos_x: Literal
    pos_y: Literal

    @property
    def filename(self) -> str:
        return self.picture.value

    @property
    def x(self) -> Union[int, float]:
        return self.pos_x.value

    @property
    def y(self) -> Union[int, float]:
        return self.pos_y.value

    def as_tuple(self) -> Tuple[str, Union[int, float], Union[int, float]]:
        return (self.filename, self.x, self.y)


@dataclass
class Requirement:
    """A required widget and the rule deciding whether it is satisfied."""
    widget_id: str
    name: str
    kind: str           # checkbox, radio, input or select
    active: bool = True

    def is_satisfied(self, symbols: SymbolTable) -> bool:
        variable = symbols.get(self.name)
        if variable is None:
            return False
        if self.kind == "checkbox":
            return variable.kind in NUMERIC_KINDS and variable.data != 0
        if self.kind == "radio":
            if variable.kind == VariableKind.STRING:
                return variable.data != ""
            return variable.kind in NUMERIC_KINDS and variable.data >= 0
        if self.kind == "input":
            if variable.kind == VariableKind.STRING:
                return variable.data != ""
            return variable.kind in NUMERIC_KINDS
        if self.kind == "select":
            if variable.kind == VariableKind.REFERENCE:
                return variable.data is not None
            if variable.kind == VariableKind.ARRAY:
                return any(item.kind == VariableKind.REFERENCE and item.data is not None
                           for item in variable.data)
        return False


class Session:
    """
    One open script: symbol table, collaborators and reactive state.

    Use `Session.from_source(...)` or `epascript.open_session(...)`, which
    parse the script and run the first pass.
    """

    def __init__(self, program: Program, binder: Optional[UIBinder] = None,
                 selection: Optional[SelectionProvider] = None,
                 query: Optional[ModelQuery] = None,
                 config: Optional[ScriptConfig] = None,
                 diagnostics: Optional[DiagnosticCollector] = None):
        self.program = program
        self.config = config or ScriptConfig()
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticCollector(self.config.max_errors)
        self.binder = binder if binder is not None else HeadlessBinder()
        self.selection = selection
        self.query = query

        self.symbols = SymbolTable(self.diagnostics)
        self.evaluator = Evaluator(self.symbols, self.config.double_epsilon, self.config.trig_in_degrees)
        self.interpreter = Interpreter(self)
        self.engine = ReactiveEngine(self)
        self.dispatcher = Dispatcher()
        self.cursor = LayoutCursor()

        self.sub_pictures: List[FrozenSubPicture] = []
        self.requirements: Dict[str, Requirement] = {}
        self.branch_state: Dict[int, BranchState] = {}
        self.global_picture: Optional[str] = None
        self.tables: Dict[str, Table] = {}
        self.selected_rows: Dict[str, int] = {}
        self.select_commands: Dict[str, UserSelect] = {}
        self.radio_options: Dict[str, List[str]] = {}
        self.default_for: Dict[str, List[str]] = {}
        self.ui_params: Dict[str, str] = {}     # variable name -> widget id
        self.row_params: Set[str] = set()       # scalars last written by a table row
        self.gui_declared: Set[str] = set()     # names whose value came from a GUI declaration
        self.shadowed_declarations: Set[int] = set()    # ids of rejected redeclarations
        self.config_elem: Optional[ConfigElem] = None
        self.dialog_size: Tuple[Optional[int], Optional[int]] = (None, None)
        self.screen_location: Optional[str] = None
        self.proceed = False
        self.closed = False

    @classmethod
    def from_source(cls, source: str, filename: Optional[str] = None,
                    binder: Optional[UIBinder] = None,
                    selection: Optional[SelectionProvider] = None,
                    query: Optional[ModelQuery] = None,
                    config: Optional[ScriptConfig] = None) -> "Session":
        """Lex, parse and start a session. Lexer errors propagate."""
        from ..lexer import tokenize
        from ..parser import parse

        config = config or ScriptConfig()
        diagnostics = DiagnosticCollector(config.max_errors)
        tokens = tokenize(source, filename, diagnostics)
        program = parse(tokens, filename=filename, source=source,
                        diagnostics=diagnostics, table_height=config.table_height)
        session = cls(program, binder=binder, selection=selection, query=query,
                      config=config, diagnostics=diagnostics)
        return session.start()

    # --- Lifecycle ---

    def start(self) -> "Session":
        """Run the first pass and the initial refresh."""
        self.dispatcher.dispatch(self._start)
        return self

    def _start(self) -> None:
        failures = self.interpreter.run_first_pass()
        if failures:
            logger.warning("first pass finished with %d failed command(s)", failures)
        self.engine.refresh()

    def close(self) -> None:
        """Tear down the symbol table, disposing every reference handle."""
        if self.closed:
            return
        self.symbols.teardown(self.dispose_handle)
        self.sub_pictures = []
        self.requirements.clear()
        self.branch_state.clear()
        self.closed = True
        logger.debug("session closed")

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def dispose_handle(self, handle: Any) -> None:
        if self.selection is not None:
            self.selection.dispose(handle)

    # --- Requirements ---

    def require(self, widget_id: str, name: str, kind: str) -> Requirement:
        requirement = self.requirements.get(widget_id)
        if requirement is None:
            requirement = Requirement(widget_id, name, kind)
            self.requirements[widget_id] = requirement
            self.binder.set_required(widget_id, True)
        return requirement

    @property
    def may_proceed(self) -> bool:
        """Validation sink: every active requirement is satisfied."""
        return self.proceed

    def refresh(self) -> Optional[bool]:
        """Full reactive pass; None when a pass is already in flight."""
        return self.dispatcher.dispatch(self.engine.refresh)

    # --- Triggers ---

    def _trigger(self, fn, *args) -> bool:
        try:
            result = self.dispatcher.dispatch(fn, *args)
        except DslError as exc:
            self.diagnostics.add_error(exc)
            logger.warning("%s failed: [%s] %s", fn.__name__.lstrip("_"), exc.code, exc.diagnostic.message)
            return False
        return bool(result)

    def set_input(self, name: str, value: Any) -> bool:
        """Store a user-entered value in its declared slot and refresh."""
        return self._trigger(self._set_input, name, value)

    def _set_input(self, name: str, value: Any) -> bool:
        current = self.symbols.get(name)
        if current is None:
            raise error_undefined_identifier(name)
        updated = self._coerce_input(name, current, value)
        targets = [(name, updated)]
        for other in self.default_for.get(name, []):
            slot = self.symbols.get(other)
            if slot is not None and slot.is_scalar:
                targets.append((other, self._coerce_input(other, slot, value)))
        for target, variable in targets:
            self.symbols.set(target, variable)
        logger.debug("input %s := %r", name, updated)
        self.engine.refresh()
        return True

    def _coerce_input(self, name: str, current: Variable, value: Any) -> Variable:
        if current.kind == VariableKind.STRING:
            return string_var(value if isinstance(value, str) else from_python(value).data)
        if isinstance(value, str):
            value = value.strip()
            try:
                value = float(value) if "." in value else int(value)
            except ValueError:
                raise error_type_mismatch(current.kind.name.lower(), "string") from None
        updated = coerce_to_kind(current.kind, from_python(value))
        if name in self.radio_options and updated.kind == VariableKind.INTEGER:
            count = len(self.radio_options[name])
            if updated.data >= count:
                raise error_index_out_of_range(updated.data, count)
        self._check_range(name, updated)
        return updated

    def _check_range(self, name: str, value: Variable) -> None:
        if value.kind not in NUMERIC_KINDS:
            return
        for block in self.program.blocks:
            for command in walk_commands(block.commands):
                if isinstance(command, UserInputParam) and command.name == name:
                    number = to_number(value)
                    if command.min_value is not None and number < self.evaluator.evaluate_number(command.min_value):
                        raise error_invalid_operand(f"'{name}' below MIN_VALUE")
                    if command.max_value is not None and number > self.evaluator.evaluate_number(command.max_value):
                        raise error_invalid_operand(f"'{name}' above MAX_VALUE")
                    return

    def request_selection(self, name: str) -> bool:
        """Ask the selection provider for references for a USER_SELECT*."""
        return self._trigger(self._request_selection, name)

    def _request_selection(self, name: str) -> bool:
        command = self.select_commands.get(name)
        if command is None:
            raise error_selection_failed(name, "no USER_SELECT for this name")
        if self.selection is None:
            raise error_selection_failed(name, "no selection provider", command.span)
        allowed = self.allowed_types(command)
        limit = self.selection_limit(command)
        logger.debug("requesting %s (types=%s, limit=%d)", name, allowed, limit)
        handles = self.selection.select(allowed, limit)
        return self._complete_selection(name, handles)

    def allowed_types(self, command: UserSelect) -> List[str]:
        if command.type_variable is None:
            return list(command.types)
        text = self.evaluator.lookup(command.type_variable)
        return [part.strip() for part in str(text.data).split("|") if part.strip()]

    def selection_limit(self, command: UserSelect) -> int:
        if not command.is_multiple:
            return 1
        if command.max_selections is None:
            return self.config.default_select_limit
        return self.evaluator.evaluate_int(command.max_selections)

    def complete_selection(self, name: str, handles: List[Any]) -> bool:
        """Store references handed back by the provider, then refresh."""
        return self._trigger(self._complete_selection, name, handles)

    def _complete_selection(self, name: str, handles: List[Any]) -> bool:
        handles = list(handles)
        command = self.select_commands.get(name)
        current = self.symbols.get(name)
        if command is None or current is None:
            for handle in handles:
                self.dispose_handle(handle)
            raise error_selection_failed(name, "no USER_SELECT for this name")
        limit = self.selection_limit(command)
        if limit > 0 and len(handles) > limit:
            for handle in handles:
                self.dispose_handle(handle)
            raise error_selection_failed(name, f"{len(handles)} picks exceed the limit of {limit}",
                                         command.span)
        if command.is_multiple:
            updated = array_var([reference_var(h) for h in handles])
        else:
            updated = reference_var(handles[0] if handles else None)
        current.dispose(self.dispose_handle)
        self.symbols.set(name, updated)
        logger.debug("selection %s <- %d handle(s)", name, len(handles))
        self.engine.refresh()
        return True

    def select_table_row(self, table_id: str, row_index: int) -> bool:
        """Pick a row of a table; its cells are published under the table id."""
        return self._trigger(self._select_table_row, table_id, row_index)

    def _select_table_row(self, table_id: str, row_index: int) -> bool:
        table = self.tables.get(table_id)
        if table is None:
            raise error_undefined_identifier(table_id)
        if row_index < 0 or row_index >= len(table.rows):
            raise error_index_out_of_range(row_index, len(table.rows), table.span)

        headers = [self.evaluator.evaluate_to_string(h) for h in table.headers]
        row = table.rows[row_index]
        values: Dict[str, Variable] = {}
        for header, cell in zip(headers, row):
            if cell is not None:
                values[header] = self.evaluator.evaluate(cell).copy()

        # compute every write before touching the table
        writes = []
        for header, value in values.items():
            slot = self.symbols.get(header)
            if slot is not None and slot.is_scalar and header not in self.ui_params:
                if slot.kind == VariableKind.STRING:
                    writes.append((header, string_var(to_text(value))))
                else:
                    writes.append((header, coerce_to_kind(slot.kind, value)))
        row_var = map_var(values)
        for header, variable in writes:
            self.symbols.set(header, variable)
            self.row_params.add(header)
        if table_id in self.symbols:
            self.symbols.set(table_id, row_var)
        else:
            self.symbols.declare(table_id, row_var)
        self.selected_rows[table_id] = row_index
        logger.debug("table %s row %d selected", table_id, row_index)
        self.engine.refresh()
        return True

    # --- Introspection ---

    def snapshot(self) -> Dict[str, Any]:
        """Plain view of the session for display and tests."""
        return {
            "variables": self.symbols.snapshot(),
            "sub_pictures": [p.as_tuple() for p in self.sub_pictures],
            "branches": dict(self.branch_state),
            "may_proceed": self.may_proceed,
        }
