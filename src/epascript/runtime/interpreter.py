"""
Command interpreter.

Executes commands against a Session. Declarations and assignments evaluate
their right-hand side before writing, so a failed expression leaves the
symbol table as it was. Widgets are declared before they are rendered; a
render failure (E403) keeps the declared slot. `execute` turns failures
into diagnostics and a False return value.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set, Tuple

from .values import (
    Variable, VariableKind, SUBTYPE_KINDS,
    string_var, double_var, int_var, reference_var, file_var,
    array_var, map_var, struct_var, zero_value, coerce_to_kind,
)
from .interfaces import widget_id_for
from ..ast import (
    Command, Expression, Literal, LiteralType,
    DeclareVariable, Assignment, ExpressionCommand, IfCommand,
    WidgetCommand, ShowParam, CheckboxParam, UserInputParam, RadioButtonParam, UserSelect,
    GlobalPicture, SubPicture, Table, InvalidateParam,
    MeasureDistance, MeasureLength, SearchModelRef, CatchError, ConfigElem,
    TypeSpec, ParameterType, ReferenceType, FileDescriptorType,
    ArrayType, MapType, StructureType, GeneralType,
    VariableRef, IndexAccess, MapLookup, MemberAccess,
    SectionKind, format_expression,
)
from ..errors import (
    DslError,
    error_assign_undeclared, error_invalid_operand, error_index_out_of_range,
    error_missing_key, error_type_mismatch, error_undefined_identifier,
    error_model_query_failed, error_render_failed, error_unknown_type,
)

if TYPE_CHECKING:
    from .context import Session

logger = logging.getLogger(__name__)


class Interpreter:
    """
    Executes parsed commands for one session.

    The first pass runs the ASM section, then the GUI section, and
    registers the tables of the TAB section.
    """

    def __init__(self, session: "Session"):
        self.session = session
        self.section: Optional[SectionKind] = None
        self._catch_depth = 0
        # (command id, code, message) of failures already reported
        self._reported: Set[Tuple[int, str, str]] = set()

    @property
    def symbols(self):
        return self.session.symbols

    @property
    def evaluator(self):
        return self.session.evaluator

    # --- Entry points ---

    def run_first_pass(self) -> int:
        """Execute the program once; returns the number of failed commands."""
        program = self.session.program
        failures = 0
        for kind in (SectionKind.ASM, SectionKind.GUI, SectionKind.TAB):
            commands = program.commands(kind)
            logger.debug("executing %d %s command(s)", len(commands), kind.value)
            self.section = kind
            failures += self.execute_all(commands)
        self.section = None
        return failures

    def execute_all(self, commands: List[Command]) -> int:
        failures = 0
        for command in commands:
            if not self.execute(command):
                failures += 1
        return failures

    def execute(self, command: Command) -> bool:
        """Execute one command; failures are recorded and reported as False."""
        try:
            return self._execute_command(command)
        except DslError as exc:
            self._record_failure(command, exc)
            return False

    def _record_failure(self, command: Command, exc: DslError) -> None:
        name = type(command).__name__
        if self._catch_depth > 0:
            logger.warning("%s failed inside BEGIN_CATCH_ERROR: %s", name, exc.diagnostic.message)
            return
        key = (id(command), exc.code, exc.diagnostic.message)
        if key in self._reported:
            logger.debug("%s failed again: [%s] %s", name, exc.code, exc.diagnostic.message)
            return
        self._reported.add(key)
        if exc.diagnostic.span.start.line == 0:
            exc.diagnostic.span = command.span
        self.session.diagnostics.add_error(exc)
        logger.warning("%s failed: [%s] %s", name, exc.code, exc.diagnostic.message)

    def _execute_command(self, command: Command) -> bool:
        if isinstance(command, DeclareVariable):
            return self._execute_declare(command)
        elif isinstance(command, Assignment):
            return self._execute_assignment(command)
        elif isinstance(command, ExpressionCommand):
            return self._execute_expression(command)
        elif isinstance(command, IfCommand):
            return self._execute_if(command)
        elif isinstance(command, WidgetCommand):
            return self._execute_widget(command)
        elif isinstance(command, GlobalPicture):
            return self._execute_global_picture(command)
        elif isinstance(command, SubPicture):
            return self.snapshot_sub_picture(command)
        elif isinstance(command, Table):
            return self._execute_table(command)
        elif isinstance(command, InvalidateParam):
            return self.symbols.invalidate(command.name, command.span)
        elif isinstance(command, MeasureDistance):
            return self._execute_measure_distance(command)
        elif isinstance(command, MeasureLength):
            return self._execute_measure_length(command)
        elif isinstance(command, SearchModelRef):
            return self._execute_search(command)
        elif isinstance(command, CatchError):
            return self._execute_catch_error(command)
        elif isinstance(command, ConfigElem):
            return self._execute_config_elem(command)
        raise error_invalid_operand(f"cannot execute {type(command).__name__}", command.span)

    # --- Declarations ---

    def materialize(self, spec: TypeSpec, default: Optional[Expression] = None) -> Variable:
        """Build the initial value of a declaration."""
        if isinstance(spec, ParameterType):
            kind = SUBTYPE_KINDS.get(spec.subtype)
            if kind is None:
                raise error_unknown_type(spec.subtype, spec.span)
            return self.value_for_kind(kind, default)
        if isinstance(spec, ReferenceType):
            return reference_var()
        if isinstance(spec, FileDescriptorType):
            return file_var(spec.mode, spec.path)
        if isinstance(spec, ArrayType):
            if spec.initializers:
                return array_var([self.materialize(spec.element, init) for init in spec.initializers])
            return array_var()
        if isinstance(spec, MapType):
            return map_var({entry.key: self.evaluator.evaluate(entry.value).copy()
                            for entry in spec.entries})
        if isinstance(spec, StructureType):
            return struct_var({member.name: self.materialize(member.type_spec, member.default)
                               for member in spec.members})
        if isinstance(spec, GeneralType):
            return self.materialize(spec.inner, default)
        raise error_invalid_operand(f"unsupported declaration {type(spec).__name__}", spec.span)

    def value_for_kind(self, kind: VariableKind, expr: Optional[Expression]) -> Variable:
        """Evaluate `expr` for a slot of `kind` (string slots use the string path)."""
        if expr is None:
            return zero_value(kind)
        if kind == VariableKind.STRING:
            return string_var(self.evaluator.evaluate_to_string(expr))
        return coerce_to_kind(kind, self.evaluator.evaluate(expr))

    def _execute_declare(self, command: DeclareVariable) -> bool:
        value = self.materialize(command.type_spec, command.default)
        if self.symbols.declare(command.name, value, command.span):
            if self.section == SectionKind.GUI:
                self.session.gui_declared.add(command.name)
        else:
            self.session.shadowed_declarations.add(id(command))
        return True

    # --- Assignment ---

    def _execute_assignment(self, command: Assignment) -> bool:
        name = command.name
        current = self.symbols.get(name)
        if current is None and "." in name and isinstance(command.target, VariableRef):
            return self._assign_dotted(command)
        if current is None:
            raise error_assign_undeclared(name, command.span)

        if isinstance(command.target, VariableRef):
            if current.kind == VariableKind.FROZEN_EXPR:
                raise error_invalid_operand(f"'{name}' is a frozen value", command.span)
            self.symbols.set(name, self.value_for_kind(current.kind, command.value))
            return True

        # element, member or map entry: edit a copy, then swap it in
        updated = current.copy()
        parent = self._resolve_in(updated, command.target.base)
        if isinstance(command.target, IndexAccess):
            if parent.kind != VariableKind.ARRAY:
                raise error_invalid_operand(f"cannot index a {parent.kind.name.lower()}", command.span)
            position = self.evaluator.evaluate_int(command.target.index)
            if position < 0 or position >= len(parent.data):
                raise error_index_out_of_range(position, len(parent.data), command.target.span)
            slot = parent.data[position]
            parent.data[position] = self.value_for_kind(slot.kind, command.value)
        else:
            key = command.target.key if isinstance(command.target, MapLookup) else command.target.member
            if parent.kind not in (VariableKind.MAP, VariableKind.STRUCTURE):
                raise error_invalid_operand(f"'{key}' set on a {parent.kind.name.lower()}", command.span)
            slot = parent.data.get(key)
            if slot is not None:
                parent.data[key] = self.value_for_kind(slot.kind, command.value)
            elif parent.kind == VariableKind.MAP:
                parent.data[key] = self.evaluator.evaluate(command.value).copy()
            else:
                raise error_missing_key(key, command.target.span)
        self.symbols.set(name, updated)
        return True

    def _assign_dotted(self, command: Assignment) -> bool:
        """`bolt.length = ...` where only `bolt` is declared."""
        parts = command.name.split(".")
        for cut in range(len(parts) - 1, 0, -1):
            root_name = ".".join(parts[:cut])
            root = self.symbols.get(root_name)
            if root is None:
                continue
            updated = root.copy()
            parent = updated
            for member in parts[cut:-1]:
                if parent.kind not in (VariableKind.MAP, VariableKind.STRUCTURE) or member not in parent.data:
                    raise error_missing_key(member, command.target.span)
                parent = parent.data[member]
            key = parts[-1]
            if parent.kind not in (VariableKind.MAP, VariableKind.STRUCTURE):
                raise error_invalid_operand(f"'{key}' set on a {parent.kind.name.lower()}", command.span)
            slot = parent.data.get(key)
            if slot is not None:
                parent.data[key] = self.value_for_kind(slot.kind, command.value)
            elif parent.kind == VariableKind.MAP:
                parent.data[key] = self.evaluator.evaluate(command.value).copy()
            else:
                raise error_missing_key(key, command.target.span)
            self.symbols.set(root_name, updated)
            return True
        raise error_assign_undeclared(command.name, command.span)

    def _resolve_in(self, root: Variable, expr: Expression) -> Variable:
        """Walk an access path inside `root` (a private copy)."""
        if isinstance(expr, VariableRef):
            return root
        container = self._resolve_in(root, expr.base)
        if isinstance(expr, IndexAccess):
            if container.kind != VariableKind.ARRAY:
                raise error_invalid_operand(f"cannot index a {container.kind.name.lower()}", expr.span)
            position = self.evaluator.evaluate_int(expr.index)
            if position < 0 or position >= len(container.data):
                raise error_index_out_of_range(position, len(container.data), expr.span)
            return container.data[position]
        key = expr.key if isinstance(expr, MapLookup) else expr.member
        if container.kind not in (VariableKind.MAP, VariableKind.STRUCTURE) or key not in container.data:
            raise error_missing_key(key, expr.span)
        return container.data[key]

    def _execute_expression(self, command: ExpressionCommand) -> bool:
        value = self.evaluator.evaluate(command.expression)
        logger.debug("%s -> %r", format_expression(command.expression), value)
        return True

    # --- Conditionals ---

    def live_branch(self, command: IfCommand) -> Optional[int]:
        """
        Index of the first branch whose condition holds, len(branches) for
        the else body, or None when nothing applies.

        A condition that fails to evaluate counts as false.
        """
        for index, branch in enumerate(command.branches):
            try:
                if self.evaluator.evaluate_condition(branch.condition):
                    return index
            except DslError as exc:
                self._record_failure(command, exc)
        if command.else_body is not None:
            return len(command.branches)
        return None

    def branch_body(self, command: IfCommand, index: int) -> List[Command]:
        if index < len(command.branches):
            return command.branches[index].body
        return command.else_body or []

    def _execute_if(self, command: IfCommand) -> bool:
        live = self.live_branch(command)
        for index in range(command.slot_count):
            body = self.branch_body(command, index)
            if index == live:
                self.execute_all(body)
            else:
                # widgets of dormant branches exist so gating can toggle them
                self._prepare_widgets(body)
        return True

    def _prepare_widgets(self, body: List[Command]) -> None:
        for command in body:
            if isinstance(command, WidgetCommand):
                self.execute(command)
            elif isinstance(command, IfCommand):
                for index in range(command.slot_count):
                    self._prepare_widgets(self.branch_body(command, index))
            elif isinstance(command, CatchError):
                self._prepare_widgets(command.body)

    # --- Widgets ---

    def _ensure_declared(self, name: str, variable: Variable) -> Variable:
        existing = self.symbols.get(name)
        if existing is not None:
            return existing
        self.symbols.declare(name, variable)
        return variable

    def _widget_kind(self, command: WidgetCommand, fallback: VariableKind) -> VariableKind:
        if command.subtype is None:
            return fallback
        kind = SUBTYPE_KINDS.get(command.subtype)
        if kind is None:
            raise error_unknown_type(command.subtype, command.span)
        return kind

    def _execute_widget(self, command: WidgetCommand) -> bool:
        session = self.session
        if isinstance(command, UserSelect):
            initial = array_var() if command.is_multiple else reference_var()
            session.select_commands[command.name] = command
            requirement_kind = "select"
            required = command.required or not command.is_optional
        elif isinstance(command, CheckboxParam):
            initial = zero_value(self._widget_kind(command, VariableKind.BOOL))
            requirement_kind = "checkbox"
            required = command.required
        elif isinstance(command, RadioButtonParam):
            kind = self._widget_kind(command, VariableKind.INTEGER)
            initial = int_var(-1) if kind == VariableKind.INTEGER else zero_value(kind)
            session.radio_options[command.name] = [
                self.evaluator.evaluate_to_string(option) for option in command.options
            ]
            requirement_kind = "radio"
            required = command.required
        elif isinstance(command, UserInputParam):
            kind = self._widget_kind(command, VariableKind.DOUBLE)
            initial = self.value_for_kind(kind, command.default)
            if command.default_for:
                session.default_for[command.name] = list(command.default_for)
            requirement_kind = "input"
            required = command.required
        else:
            initial = zero_value(self._widget_kind(command, VariableKind.STRING))
            requirement_kind = None
            required = False

        if not isinstance(command, ShowParam):
            self._ensure_declared(command.name, initial)
            session.ui_params[command.name] = command.widget_id
        elif command.name not in self.symbols:
            self._ensure_declared(command.name, initial)
        if required and requirement_kind is not None:
            session.require(command.widget_id, command.name, requirement_kind)
        self._render(command)
        return True

    def _render(self, command: Command) -> None:
        session = self.session
        widget_id = widget_id_for(command) or type(command).__name__
        if not session.binder.render(command, session.cursor, self.symbols):
            raise error_render_failed(widget_id, command.span)
        if not getattr(command, "on_picture", False):
            session.cursor.advance()

    # --- Pictures ---

    def _execute_global_picture(self, command: GlobalPicture) -> bool:
        self.session.global_picture = self.evaluator.evaluate_to_string(command.picture)
        return True

    def snapshot_sub_picture(self, command: SubPicture) -> bool:
        """Evaluate filename and position now and store them as literals."""
        from .context import FrozenSubPicture

        filename = self.evaluator.evaluate_to_string(command.picture)
        x = self.evaluator.evaluate_number(command.pos_x)
        y = self.evaluator.evaluate_number(command.pos_y)
        self.session.sub_pictures.append(FrozenSubPicture(
            picture=Literal(command.picture.span, filename, LiteralType.STRING),
            pos_x=_number_literal(command.pos_x, x),
            pos_y=_number_literal(command.pos_y, y),
        ))
        return True

    # --- Tables ---

    def _execute_table(self, command: Table) -> bool:
        self.session.tables[command.identifier] = command
        self._render(command)
        return True

    # --- Model queries ---

    def _query(self, command_name: str, span):
        query = self.session.query
        if query is None:
            raise error_model_query_failed(command_name, "no model query available", span)
        return query

    def _reference(self, name: str, span) -> Any:
        variable = self.symbols.get(name)
        if variable is None:
            raise error_undefined_identifier(name, span)
        if variable.kind != VariableKind.REFERENCE:
            raise error_type_mismatch("reference", variable.kind.name.lower(), span)
        if variable.data is None:
            raise error_invalid_operand(f"reference '{name}' has no selection", span)
        return variable.data

    def _store_result(self, name: str, value: Variable) -> None:
        existing = self.symbols.get(name)
        if existing is None:
            self.symbols.declare(name, value)
            return
        if existing.kind in (VariableKind.INTEGER, VariableKind.DOUBLE, VariableKind.BOOL, VariableKind.STRING):
            value = coerce_to_kind(existing.kind, value)
        existing.dispose(self.session.dispose_handle)
        self.symbols.set(name, value)

    def _execute_measure_distance(self, command: MeasureDistance) -> bool:
        query = self._query("MEASURE_DISTANCE", command.span)
        first = self._reference(command.reference1, command.span)
        second = self._reference(command.reference2, command.span)
        options: Dict[str, Any] = {}
        if command.enable_checkbox1 is not None:
            options["enable_checkbox1"] = self.evaluator.evaluate_condition(command.enable_checkbox1)
        if command.enable_checkbox2 is not None:
            options["enable_checkbox2"] = self.evaluator.evaluate_condition(command.enable_checkbox2)
        distance = query.measure_distance(first, second, options)
        self._store_result(command.result, double_var(distance))
        return True

    def _execute_measure_length(self, command: MeasureLength) -> bool:
        query = self._query("MEASURE_LENGTH", command.span)
        reference = self._reference(command.reference, command.span)
        self._store_result(command.result, double_var(query.measure_length(reference)))
        return True

    def _execute_search(self, command: SearchModelRef) -> bool:
        name = "SEARCH_MDL_REFS" if command.multiple else "SEARCH_MDL_REF"
        query = self._query(name, command.span)
        text = self.evaluator.evaluate_to_string
        options = {
            "recursive": command.recursive,
            "allow_suppressed": command.allow_suppressed,
            "exclude_inherited": command.exclude_inherited,
            "no_update": command.no_update,
            "include_multi_cad": (self.evaluator.evaluate_condition(command.include_multi_cad)
                                  if command.include_multi_cad is not None else False),
            "with_content": [text(e) for e in command.with_content],
            "with_content_not": [text(e) for e in command.with_content_not],
            "with_identifier": [text(e) for e in command.with_identifier],
            "with_identifier_not": [text(e) for e in command.with_identifier_not],
        }
        handles = query.search_references(
            text(command.model), text(command.type_expr), text(command.search_string),
            command.multiple, options,
        )
        if command.multiple:
            result = array_var([reference_var(h) for h in handles])
        else:
            result = reference_var(handles[0] if handles else None)
        logger.debug("%s found %d reference(s)", name, len(handles))
        self._store_result(command.result, result)
        return True

    # --- Blocks ---

    def _execute_catch_error(self, command: CatchError) -> bool:
        self._catch_depth += 1
        try:
            failures = self.execute_all(command.body)
        finally:
            self._catch_depth -= 1
        if failures:
            logger.info("BEGIN_CATCH_ERROR absorbed %d failure(s)", failures)
        return True

    def _execute_config_elem(self, command: ConfigElem) -> bool:
        session = self.session
        width = self.evaluator.evaluate_int(command.width) if command.width is not None else None
        height = self.evaluator.evaluate_int(command.height) if command.height is not None else None
        location = (self.evaluator.evaluate_to_string(command.screen_location)
                    if command.screen_location is not None else None)
        session.config_elem = command
        session.dialog_size = (width, height)
        session.screen_location = location
        return True


def _number_literal(source: Expression, value) -> Literal:
    if isinstance(value, float):
        return Literal(source.span, value, LiteralType.DOUBLE)
    return Literal(source.span, int(value), LiteralType.INT)
