"""
Abstract Syntax Tree (AST) node definitions for EPA scripts.

A parsed script is a Program made of sections (ASM, GUI, TAB), each an
ordered list of Command nodes. Commands hold Expression nodes and, for
DECLARE_VARIABLE, a recursive TypeSpec describing the declared kind.

Nodes own their children exclusively; the tree is never shared or
mutated after parsing.
"""

import itertools
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Optional, List, Union, Any, Dict, Iterator
from abc import ABC
from .tokens import SourceSpan, TokenType


# =============================================================================
# Base Classes
# =============================================================================

@dataclass
class AstNode(ABC):
    """Base class for all AST nodes."""
    span: SourceSpan  # Source location for error reporting

    def accept(self, visitor: "AstVisitor") -> Any:
        """Accept a visitor for traversal."""
        method_name = f"visit_{self.__class__.__name__}"
        method = getattr(visitor, method_name, visitor.generic_visit)
        return method(self)


class AstVisitor(ABC):
    """Base class for AST visitors."""

    def generic_visit(self, node: AstNode) -> Any:
        """Default visit method."""
        raise NotImplementedError(f"No visitor for {node.__class__.__name__}")


# =============================================================================
# Expression Nodes
# =============================================================================

class LiteralType(Enum):
    """Kinds of literal values."""
    INT = auto()
    DOUBLE = auto()
    STRING = auto()
    BOOL = auto()


@dataclass
class Expression(AstNode):
    """Base class for all expressions."""
    pass


@dataclass
class Literal(Expression):
    """A literal value (int, double, string, bool)."""
    value: Union[int, float, str, bool]
    literal_type: LiteralType


@dataclass
class Constant(Expression):
    """A builtin named constant such as PI or E."""
    name: str


@dataclass
class VariableRef(Expression):
    """A reference to a variable by name (may contain dots)."""
    name: str


@dataclass
class UnaryOp(Expression):
    """Unary negation."""
    operator: TokenType  # MINUS
    operand: Expression


@dataclass
class BinaryOp(Expression):
    """A binary operation (arithmetic, comparison, AND/OR)."""
    left: Expression
    operator: TokenType
    right: Expression


@dataclass
class FunctionCall(Expression):
    """A builtin function call (e.g., sqrt(x))."""
    name: str
    arguments: List[Expression] = field(default_factory=list)


@dataclass
class IndexAccess(Expression):
    """Array element access (e.g., holes[2])."""
    base: Expression
    index: Expression


@dataclass
class MapLookup(Expression):
    """Map lookup by key (e.g., sizes:M6)."""
    base: Expression
    key: str


@dataclass
class MemberAccess(Expression):
    """Structure member access (e.g., bolt.length)."""
    base: Expression
    member: str


# =============================================================================
# Declaration Type Specs
# =============================================================================

@dataclass
class TypeSpec(AstNode):
    """Base class for DECLARE_VARIABLE kinds."""
    pass


@dataclass
class ParameterType(TypeSpec):
    """A scalar parameter: INTEGER, DOUBLE, STRING or BOOL."""
    subtype: str


@dataclass
class ReferenceType(TypeSpec):
    """An opaque model reference, optionally restricted to an entity type."""
    entity_type: Optional[str] = None


@dataclass
class FileDescriptorType(TypeSpec):
    """A file handle with open mode and path."""
    mode: Optional[str] = None
    path: Optional[str] = None


@dataclass
class ArrayType(TypeSpec):
    """An array whose elements are described by a nested type spec."""
    element: TypeSpec
    initializers: List[Expression] = field(default_factory=list)


@dataclass
class MapEntry(AstNode):
    """One `key: value` pair of a MAP declaration."""
    key: str
    value: Expression


@dataclass
class MapType(TypeSpec):
    """A string-keyed map with initial entries."""
    entries: List[MapEntry] = field(default_factory=list)


@dataclass
class StructMember(AstNode):
    """One member of a STRUCTURE declaration."""
    name: str
    type_spec: TypeSpec
    default: Optional[Expression] = None


@dataclass
class StructureType(TypeSpec):
    """A structure with named, typed members."""
    members: List[StructMember] = field(default_factory=list)


@dataclass
class GeneralType(TypeSpec):
    """A wrapper around any other kind."""
    inner: TypeSpec


# =============================================================================
# Command Nodes
# =============================================================================

_if_ids = itertools.count(1)


def _next_if_id() -> int:
    return next(_if_ids)


@dataclass
class Command(AstNode):
    """Base class for all commands."""
    pass


@dataclass
class DeclareVariable(Command):
    """DECLARE_VARIABLE <kind> NAME [default]."""
    name: str
    type_spec: TypeSpec
    default: Optional[Expression] = None


@dataclass
class Assignment(Command):
    """NAME = expr (target may be an element, member or map entry)."""
    target: Expression
    value: Expression

    @property
    def name(self) -> str:
        """Name of the root variable being written."""
        node = self.target
        while not isinstance(node, VariableRef):
            node = node.base
        return node.name


@dataclass
class ExpressionCommand(Command):
    """A bare expression evaluated for its value."""
    expression: Expression


@dataclass
class IfBranch(AstNode):
    """One `(condition, body)` arm of an IF."""
    condition: Expression
    body: List[Command] = field(default_factory=list)


@dataclass
class IfCommand(Command):
    """
    IF / ELSE_IF / ELSE / END_IF.

    `if_id` is assigned from a process-wide counter at construction and
    is used to correlate branch state across recompute passes.
    """
    branches: List[IfBranch] = field(default_factory=list)
    else_body: Optional[List[Command]] = None
    if_id: int = field(default_factory=_next_if_id)

    @property
    def slot_count(self) -> int:
        """Number of gateable slots (branches plus else)."""
        return len(self.branches) + (1 if self.else_body is not None else 0)


@dataclass
class WidgetCommand(Command):
    """Common fields for commands that render a widget."""
    name: str
    subtype: Optional[str] = None
    tooltip: Optional[Expression] = None
    image: Optional[Expression] = None
    pos_x: Optional[Expression] = None
    pos_y: Optional[Expression] = None
    display_order: Optional[Expression] = None
    required: bool = False

    widget_prefix = "widget"

    @property
    def widget_id(self) -> str:
        return f"{self.widget_prefix}_{self.name}"

    @property
    def on_picture(self) -> bool:
        return self.pos_x is not None


@dataclass
class ShowParam(WidgetCommand):
    """SHOW_PARAM: read-only display of a parameter."""
    widget_prefix = "show"


@dataclass
class CheckboxParam(WidgetCommand):
    """CHECKBOX_PARAM: boolean input."""
    tag: Optional[Expression] = None

    widget_prefix = "checkbox"


@dataclass
class UserInputParam(WidgetCommand):
    """USER_INPUT_PARAM: free-form numeric or text input."""
    default: Optional[Expression] = None
    default_for: List[str] = field(default_factory=list)
    width: Optional[Expression] = None
    decimal_places: Optional[Expression] = None
    model: Optional[Expression] = None
    no_update: bool = False
    min_value: Optional[Expression] = None
    max_value: Optional[Expression] = None

    widget_prefix = "input"


@dataclass
class RadioButtonParam(WidgetCommand):
    """RADIOBUTTON_PARAM: choice among listed options."""
    options: List[Expression] = field(default_factory=list)

    widget_prefix = "radio"


class SelectKind(Enum):
    """The four USER_SELECT variants."""
    SINGLE = "USER_SELECT"
    OPTIONAL = "USER_SELECT_OPTIONAL"
    MULTIPLE = "USER_SELECT_MULTIPLE"
    MULTIPLE_OPTIONAL = "USER_SELECT_MULTIPLE_OPTIONAL"


@dataclass
class UserSelect(WidgetCommand):
    """USER_SELECT*: interactive model reference selection."""
    kind: SelectKind = SelectKind.SINGLE
    types: List[str] = field(default_factory=list)
    type_variable: Optional[str] = None     # from `&NAME`
    max_selections: Optional[Expression] = None
    allow_reselect: bool = False
    filters: Dict[str, Expression] = field(default_factory=dict)
    select_by_box: bool = False
    select_by_menu: bool = False
    include_multi_cad: Optional[Expression] = None
    tag: Optional[Expression] = None

    widget_prefix = "select"

    @property
    def is_optional(self) -> bool:
        return self.kind in (SelectKind.OPTIONAL, SelectKind.MULTIPLE_OPTIONAL)

    @property
    def is_multiple(self) -> bool:
        return self.kind in (SelectKind.MULTIPLE, SelectKind.MULTIPLE_OPTIONAL)


@dataclass
class GlobalPicture(Command):
    """GLOBAL_PICTURE: background image of the dialog."""
    picture: Expression

    widget_id = "picture_global"


@dataclass
class SubPicture(Command):
    """SUB_PICTURE: overlay image placed at (x, y); frozen when executed."""
    picture: Expression
    pos_x: Expression
    pos_y: Expression


@dataclass
class Table(Command):
    """BEGIN_TABLE / BEGIN_SUBTABLE ... END_TABLE."""
    identifier: str
    title: Expression
    is_subtable: bool = False
    no_autosel: bool = False
    no_filter: bool = False
    depend_on_input: bool = False
    invalidate_on_unselect: bool = False
    show_autosel: bool = False
    filter_rigid: bool = False
    array: bool = False
    filter_only_column: int = -1
    filter_column: int = -1
    table_height: int = 12
    table_height_set: bool = False
    headers: List[Expression] = field(default_factory=list)
    column_types: List[Expression] = field(default_factory=list)
    rows: List[List[Optional[Expression]]] = field(default_factory=list)

    @property
    def column_count(self) -> int:
        return len(self.headers)

    @property
    def widget_id(self) -> str:
        return f"table_{self.identifier}"


@dataclass
class InvalidateParam(Command):
    """INVALIDATE_PARAM NAME."""
    name: str


@dataclass
class MeasureDistance(Command):
    """MEASURE_DISTANCE ref1 ref2 result."""
    reference1: str
    reference2: str
    result: str
    enable_checkbox1: Optional[Expression] = None
    enable_checkbox2: Optional[Expression] = None


@dataclass
class MeasureLength(Command):
    """MEASURE_LENGTH ref result."""
    reference: str
    result: str


@dataclass
class SearchModelRef(Command):
    """SEARCH_MDL_REF / SEARCH_MDL_REFS."""
    model: Expression
    type_expr: Expression
    search_string: Expression
    result: str
    multiple: bool = False
    recursive: bool = False
    allow_suppressed: bool = False
    exclude_inherited: bool = False
    no_update: bool = False
    include_multi_cad: Optional[Expression] = None
    with_content: List[Expression] = field(default_factory=list)
    with_content_not: List[Expression] = field(default_factory=list)
    with_identifier: List[Expression] = field(default_factory=list)
    with_identifier_not: List[Expression] = field(default_factory=list)


@dataclass
class CatchError(Command):
    """BEGIN_CATCH_ERROR ... END_CATCH_ERROR."""
    body: List[Command] = field(default_factory=list)
    fix_fail_udf: bool = False
    fix_fail_component: bool = False


@dataclass
class ConfigElem(Command):
    """CONFIG_ELEM: dialog-level flags and size."""
    no_tables: bool = False
    no_gui: bool = False
    auto_commit: bool = False
    auto_close: bool = False
    show_gui_for_existing: bool = False
    no_auto_update: bool = False
    continue_on_cancel: bool = False
    screen_location: Optional[Expression] = None
    width: Optional[Expression] = None
    height: Optional[Expression] = None


# =============================================================================
# Sections
# =============================================================================

class SectionKind(Enum):
    """Script sections delimited by BEGIN_*_DESCR / END_*_DESCR."""
    ASM = "ASM"
    GUI = "GUI"
    TAB = "TAB"

    @property
    def begin_keyword(self) -> str:
        return f"BEGIN_{self.value}_DESCR"

    @property
    def end_keyword(self) -> str:
        return f"END_{self.value}_DESCR"


@dataclass
class Block(AstNode):
    """One script section and its commands."""
    kind: SectionKind
    commands: List[Command] = field(default_factory=list)


@dataclass
class Program(AstNode):
    """A complete parsed script."""
    blocks: List[Block] = field(default_factory=list)

    def find_block(self, kind: SectionKind) -> Optional[Block]:
        """First section of the given kind, if any."""
        for block in self.blocks:
            if block.kind == kind:
                return block
        return None

    def commands(self, kind: SectionKind) -> List[Command]:
        """Commands of a section (all sections of that kind for ASM)."""
        result: List[Command] = []
        for block in self.blocks:
            if block.kind == kind:
                result.extend(block.commands)
        return result


# =============================================================================
# Helpers
# =============================================================================

def walk_commands(commands: List[Command]) -> Iterator[Command]:
    """Yield commands depth-first, descending into IF and catch-error bodies."""
    for command in commands:
        yield command
        if isinstance(command, IfCommand):
            for branch in command.branches:
                yield from walk_commands(branch.body)
            if command.else_body is not None:
                yield from walk_commands(command.else_body)
        elif isinstance(command, CatchError):
            yield from walk_commands(command.body)


_OPERATOR_TEXT = {
    TokenType.PLUS: "+",
    TokenType.MINUS: "-",
    TokenType.STAR: "*",
    TokenType.SLASH: "/",
    TokenType.EQ: "==",
    TokenType.NE: "<>",
    TokenType.LT: "<",
    TokenType.GT: ">",
    TokenType.LE: "<=",
    TokenType.GE: ">=",
    TokenType.AND: "AND",
    TokenType.OR: "OR",
}


def format_expression(expr: Optional[Expression]) -> str:
    """Render an expression back to script syntax (fully parenthesized)."""
    if expr is None:
        return "NULL"
    if isinstance(expr, Literal):
        if expr.literal_type == LiteralType.STRING:
            escaped = expr.value.replace('\\', '\\\\').replace('"', '\\"')
            return f'"{escaped}"'
        if expr.literal_type == LiteralType.BOOL:
            return "TRUE" if expr.value else "FALSE"
        return repr(expr.value)
    if isinstance(expr, (Constant, VariableRef)):
        return expr.name
    if isinstance(expr, UnaryOp):
        return f"-{format_expression(expr.operand)}"
    if isinstance(expr, BinaryOp):
        op = _OPERATOR_TEXT.get(expr.operator, expr.operator.name)
        return f"({format_expression(expr.left)} {op} {format_expression(expr.right)})"
    if isinstance(expr, FunctionCall):
        args = ", ".join(format_expression(a) for a in expr.arguments)
        return f"{expr.name}({args})"
    if isinstance(expr, IndexAccess):
        return f"{format_expression(expr.base)}[{format_expression(expr.index)}]"
    if isinstance(expr, MapLookup):
        return f"{format_expression(expr.base)}:{expr.key}"
    if isinstance(expr, MemberAccess):
        return f"{format_expression(expr.base)}.{expr.member}"
    return f"<{expr.__class__.__name__}>"


class PrintVisitor(AstVisitor):
    """Debug visitor that prints the AST structure."""

    def __init__(self, indent: int = 0, out=print):
        self.indent = indent
        self.out = out

    def _print(self, text: str) -> None:
        self.out("  " * self.indent + text)

    def _child(self) -> "PrintVisitor":
        return PrintVisitor(self.indent + 2, self.out)

    def generic_visit(self, node: AstNode) -> None:
        if isinstance(node, Expression):
            self._print(format_expression(node))
            return
        self._print(f"{node.__class__.__name__}")
        for name, value in node.__dict__.items():
            if name == "span" or value is None or value == [] or value is False:
                continue
            if isinstance(value, AstNode):
                self._print(f"  {name}:")
                self._child().generic_visit(value)
            elif isinstance(value, list):
                self._print(f"  {name}: [")
                for item in value:
                    if isinstance(item, AstNode):
                        self._child().generic_visit(item)
                    elif isinstance(item, list):
                        cells = ", ".join(format_expression(c) for c in item)
                        self._print(f"    [{cells}]")
                    else:
                        self._print(f"    {item!r}")
                self._print("  ]")
            elif isinstance(value, dict):
                for key, item in value.items():
                    self._print(f"  {name}[{key}]: {format_expression(item)}")
            else:
                self._print(f"  {name}: {value!r}")


def print_ast(node: AstNode, out=print) -> None:
    """Print an AST node for debugging."""
    PrintVisitor(out=out).generic_visit(node)
