"""
Recursive descent parser for EPA scripts.

Converts a token stream into a Program made of sections (ASM, GUI, TAB).
Commands are dispatched on their leading keyword; expressions are parsed
by precedence climbing.

A malformed command is reported, dropped from the tree, and parsing
resumes at the next keyword token, so one bad line does not lose the
rest of the script.
"""

import logging
from typing import Callable, Dict, List, Optional, Set

from .tokens import Token, TokenType, SourceSpan, SCALAR_TYPES, TYPE_NAMES, is_number_text
from .ast import (
    # Expressions
    Expression, Literal, LiteralType, Constant, VariableRef,
    UnaryOp, BinaryOp, FunctionCall, IndexAccess, MapLookup, MemberAccess,
    # Type specs
    TypeSpec, ParameterType, ReferenceType, FileDescriptorType,
    ArrayType, MapEntry, MapType, StructMember, StructureType, GeneralType,
    # Commands
    Command, DeclareVariable, Assignment, ExpressionCommand,
    IfBranch, IfCommand,
    WidgetCommand, ShowParam, CheckboxParam, UserInputParam, RadioButtonParam,
    SelectKind, UserSelect,
    GlobalPicture, SubPicture, Table, InvalidateParam,
    MeasureDistance, MeasureLength, SearchModelRef, CatchError, ConfigElem,
    # Sections
    SectionKind, Block, Program,
)
from .errors import (
    ParserError,
    DiagnosticCollector,
    error_unexpected_token,
    error_unexpected_eof,
    error_invalid_expression,
    error_unknown_option,
    error_unknown_type,
    error_missing_closing,
    error_table_columns,
    error_unknown_function,
    error_invalid_number,
    error_duplicate_option,
    warning_unknown_command,
    warning_unknown_table_option,
    warning_duplicate_section,
)
from .runtime.builtins import get_builtin_registry

logger = logging.getLogger(__name__)

_SECTIONS = {kind.begin_keyword: kind for kind in SectionKind}
_SECTION_ENDS = frozenset(kind.end_keyword for kind in SectionKind)

_CONSTANTS = frozenset({"PI", "E"})
_BOOLEANS = {"TRUE": True, "FALSE": False}

# Table options that take an integer argument, and the plain flags
_TABLE_INT_OPTIONS = {
    "FILTER_ONLY_COLUMN": "filter_only_column",
    "FILTER_COLUMN": "filter_column",
    "TABLE_HEIGHT": "table_height",
}
_TABLE_FLAGS = {
    "NO_AUTOSEL": "no_autosel",
    "NO_FILTER": "no_filter",
    "DEPEND_ON_INPUT": "depend_on_input",
    "INVALIDATE_ON_UNSELECT": "invalidate_on_unselect",
    "SHOW_AUTOSEL": "show_autosel",
    "FILTER_RIGID": "filter_rigid",
    "ARRAY": "array",
}

_CONFIG_FLAGS = {
    "NO_TABLES": "no_tables",
    "NO_GUI": "no_gui",
    "AUTO_COMMIT": "auto_commit",
    "AUTO_CLOSE": "auto_close",
    "SHOW_GUI_FOR_EXISTING": "show_gui_for_existing",
    "NO_AUTO_UPDATE": "no_auto_update",
    "CONTINUE_ON_CANCEL": "continue_on_cancel",
}

_SELECT_FILTERS = frozenset({
    "FILTER_MDL", "FILTER_FEAT", "FILTER_GEOM", "FILTER_REF", "FILTER_IDENTIFIER",
})

_SEARCH_LISTS = {
    "WITH_CONTENT": "with_content",
    "WITH_CONTENT_NOT": "with_content_not",
    "WITH_IDENTIFIER": "with_identifier",
    "WITH_IDENTIFIER_NOT": "with_identifier_not",
}


class Parser:
    """
    Recursive descent parser for EPA scripts.

    Usage:
        parser = Parser(tokens)
        program = parser.parse_program()

    Expression precedence (lowest first), all levels left-associative:
        AND OR
        == <> < > <= >=     (chains fold left: a < b < c is (a < b) < c)
        + -
        * /
        unary -
    """

    # Operator precedence levels (higher = tighter binding)
    PRECEDENCE = {
        TokenType.AND: 1,
        TokenType.OR: 1,
        TokenType.EQ: 2,
        TokenType.NE: 2,
        TokenType.LT: 2,
        TokenType.GT: 2,
        TokenType.LE: 2,
        TokenType.GE: 2,
        TokenType.PLUS: 3,
        TokenType.MINUS: 3,
        TokenType.STAR: 4,
        TokenType.SLASH: 4,
    }

    def __init__(self, tokens: List[Token], filename: Optional[str] = None,
                 source: Optional[str] = None,
                 diagnostics: Optional[DiagnosticCollector] = None,
                 table_height: int = 12):
        self.tokens = tokens
        self.filename = filename
        self.source = source
        self.pos = 0
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticCollector()
        self.table_height = table_height
        self.functions = get_builtin_registry()
        self._lines = source.splitlines() if source else []

        self._command_parsers: Dict[str, Callable[[], Optional[Command]]] = {
            "DECLARE_VARIABLE": self._parse_declare,
            "IF": self._parse_if,
            "SHOW_PARAM": self._parse_show_param,
            "CHECKBOX_PARAM": self._parse_checkbox_param,
            "USER_INPUT_PARAM": self._parse_user_input_param,
            "RADIOBUTTON_PARAM": self._parse_radiobutton_param,
            "USER_SELECT": self._parse_user_select,
            "USER_SELECT_OPTIONAL": self._parse_user_select,
            "USER_SELECT_MULTIPLE": self._parse_user_select,
            "USER_SELECT_MULTIPLE_OPTIONAL": self._parse_user_select,
            "GLOBAL_PICTURE": self._parse_global_picture,
            "SUB_PICTURE": self._parse_sub_picture,
            "BEGIN_TABLE": self._parse_table,
            "BEGIN_SUBTABLE": self._parse_table,
            "INVALIDATE_PARAM": self._parse_invalidate,
            "MEASURE_DISTANCE": self._parse_measure_distance,
            "MEASURE_LENGTH": self._parse_measure_length,
            "SEARCH_MDL_REF": self._parse_search,
            "SEARCH_MDL_REFS": self._parse_search,
            "BEGIN_CATCH_ERROR": self._parse_catch_error,
            "CONFIG_ELEM": self._parse_config_elem,
        }

    # =========================================================================
    # Token Navigation
    # =========================================================================

    def _current(self) -> Token:
        """Get current token."""
        if self.pos >= len(self.tokens):
            return self.tokens[-1]  # EOF
        return self.tokens[self.pos]

    def _peek(self, offset: int = 0) -> Token:
        """Peek at token at current position + offset."""
        idx = self.pos + offset
        if idx >= len(self.tokens):
            return self.tokens[-1]  # EOF
        return self.tokens[idx]

    def _is_at_end(self) -> bool:
        """Check if at end of tokens."""
        return self._current().type == TokenType.EOF

    def _check(self, token_type: TokenType) -> bool:
        """Check if current token is of given type."""
        return self._current().type == token_type

    def _check_any(self, *token_types: TokenType) -> bool:
        """Check if current token is any of given types."""
        return self._current().type in token_types

    def _check_word(self, *words: str) -> bool:
        """Check if current token is a reserved word spelling one of `words`."""
        return self._current().is_word(*words)

    def _advance(self) -> Token:
        """Consume and return current token."""
        token = self._current()
        if not self._is_at_end():
            self.pos += 1
        return token

    def _consume(self, token_type: TokenType, expected: str) -> Token:
        """Consume token of expected type, or raise error."""
        if self._check(token_type):
            return self._advance()
        self._error(expected)

    def _consume_word(self, word: str) -> Token:
        if self._check_word(word):
            return self._advance()
        self._error(word)

    def _match(self, *token_types: TokenType) -> Optional[Token]:
        """Consume token if it matches any of the given types."""
        if self._current().type in token_types:
            return self._advance()
        return None

    def _previous(self) -> Token:
        return self.tokens[max(0, self.pos - 1)]

    def _same_line(self, line: int) -> bool:
        """True if the current token is on `line` (optional trailing parts)."""
        return not self._is_at_end() and self._current().line == line

    def _source_line(self, token: Token) -> Optional[str]:
        if 1 <= token.line <= len(self._lines):
            return self._lines[token.line - 1]
        return None

    def _error(self, expected: str) -> None:
        """Raise a parser error."""
        token = self._current()
        if token.type == TokenType.EOF:
            raise error_unexpected_eof(expected, token.span)
        raise error_unexpected_token(expected, str(token), token.span, self._source_line(token))

    def _span_from(self, start: Token) -> SourceSpan:
        """Create a span from start token to current position."""
        end_token = self._previous()
        if self.pos == 0 or end_token.span.end.offset < start.span.start.offset:
            return start.span
        return SourceSpan(start.span.start, end_token.span.end)

    def _starts_expression(self) -> bool:
        """True if the current token can begin an expression."""
        token = self._current()
        if token.type in (TokenType.NUMBER, TokenType.STRING, TokenType.IDENTIFIER,
                          TokenType.LPAREN, TokenType.MINUS, TokenType.FIELD):
            return True
        return token.is_word("NO_VALUE")

    # =========================================================================
    # Expression Parsing (Precedence Climbing)
    # =========================================================================

    def _parse_expression(self) -> Expression:
        """Parse an expression."""
        return self._parse_binary_expr(0)

    def _parse_binary_expr(self, min_precedence: int) -> Expression:
        """Parse binary expressions with precedence climbing."""
        left = self._parse_unary_expr()

        while True:
            op_token = self._current()
            precedence = self.PRECEDENCE.get(op_token.type)

            if precedence is None or precedence < min_precedence:
                break

            self._advance()  # consume operator
            right = self._parse_binary_expr(precedence + 1)

            left = BinaryOp(
                span=SourceSpan(left.span.start, right.span.end),
                left=left,
                operator=op_token.type,
                right=right
            )

        return left

    def _parse_unary_expr(self) -> Expression:
        """Parse unary minus."""
        if self._check(TokenType.MINUS):
            op = self._advance()
            operand = self._parse_unary_expr()
            return UnaryOp(
                span=SourceSpan(op.span.start, operand.span.end),
                operator=op.type,
                operand=operand
            )

        return self._parse_postfix_expr()

    def _parse_postfix_expr(self) -> Expression:
        """Parse postfix access chains: [index], .member and :key."""
        expr = self._parse_primary_expr()
        start = expr.span

        while True:
            if self._check(TokenType.LBRACKET):
                self._advance()  # consume '['
                index = self._parse_expression()
                self._consume(TokenType.RBRACKET, "']'")
                expr = IndexAccess(
                    span=SourceSpan(start.start, self._previous().span.end),
                    base=expr,
                    index=index
                )
            elif self._check(TokenType.DOT) and self._peek(1).type == TokenType.IDENTIFIER:
                self._advance()  # consume '.'
                for member in self._advance().value.split("."):
                    expr = MemberAccess(
                        span=SourceSpan(start.start, self._previous().span.end),
                        base=expr,
                        member=member
                    )
            elif (self._check(TokenType.COLON)
                  and self._peek(1).type in (TokenType.IDENTIFIER, TokenType.STRING, TokenType.NUMBER)
                  and not self._is_direction_suffix()):
                self._advance()  # consume ':'
                key = self._advance().text
                expr = MapLookup(
                    span=SourceSpan(start.start, self._previous().span.end),
                    base=expr,
                    key=key
                )
            else:
                break

        return expr

    def _parse_primary_expr(self) -> Expression:
        """Parse primary expressions (literals, names, calls, groups)."""
        token = self._current()

        if token.type == TokenType.NUMBER:
            self._advance()
            return self._number_literal(token)

        if token.type in (TokenType.STRING, TokenType.FIELD):
            self._advance()
            return Literal(span=token.span, value=token.value, literal_type=LiteralType.STRING)

        # Bare type names and option words stand for their own text
        if token.type in (TokenType.TYPE_NAME, TokenType.OPTION):
            self._advance()
            return Literal(span=token.span, value=token.value, literal_type=LiteralType.STRING)

        if token.is_word("NO_VALUE"):
            self._advance()
            return Literal(span=token.span, value="", literal_type=LiteralType.STRING)

        if token.type == TokenType.IDENTIFIER:
            self._advance()
            name = token.value
            if self._check(TokenType.LPAREN) and (
                    name in self.functions
                    or self._current().span.start.offset == token.span.end.offset):
                return self._parse_call(token)
            if name in _CONSTANTS:
                return Constant(span=token.span, name=name)
            if name in _BOOLEANS:
                return Literal(span=token.span, value=_BOOLEANS[name], literal_type=LiteralType.BOOL)
            if "-" in name and "." not in name:
                return self._split_hyphenated(token)
            return VariableRef(span=token.span, name=name)

        if token.type == TokenType.LPAREN:
            self._advance()
            expr = self._parse_expression()
            self._consume(TokenType.RPAREN, "')'")
            return expr

        if token.type == TokenType.EOF:
            raise error_unexpected_eof("expression", token.span)
        raise error_invalid_expression(token.span, self._source_line(token))

    def _number_literal(self, token: Token) -> Literal:
        text = token.value
        if not is_number_text(text):
            raise error_invalid_number(text, "number", token.span, self._source_line(token))
        if "." in text:
            return Literal(span=token.span, value=float(text), literal_type=LiteralType.DOUBLE)
        return Literal(span=token.span, value=int(text), literal_type=LiteralType.INT)

    def _split_hyphenated(self, token: Token) -> Expression:
        """
        Read `A-B` (no dot) as the subtraction `A - B`.

        The lexer keeps hyphens between letters inside one identifier, so
        this recovers arithmetic written without spaces. Hyphenated names
        without an extension are read as subtraction too.
        """
        parts = token.value.split("-")
        expr: Optional[Expression] = None
        for part in parts:
            if is_number_text(part):
                operand: Expression = Literal(
                    span=token.span,
                    value=float(part) if "." in part else int(part),
                    literal_type=LiteralType.DOUBLE if "." in part else LiteralType.INT,
                )
            else:
                operand = VariableRef(span=token.span, name=part)
            if expr is None:
                expr = operand
            else:
                expr = BinaryOp(span=token.span, left=expr, operator=TokenType.MINUS, right=operand)
        return expr

    def _parse_call(self, name_token: Token) -> FunctionCall:
        """Parse a builtin call; unknown names are rejected here."""
        name = name_token.value
        if name not in self.functions:
            raise error_unknown_function(name, name_token.span, self._source_line(name_token))
        self._consume(TokenType.LPAREN, "'('")
        args: List[Expression] = []
        if not self._check(TokenType.RPAREN):
            args.append(self._parse_expression())
            while self._match(TokenType.COMMA):
                args.append(self._parse_expression())
        self._consume(TokenType.RPAREN, "')'")
        return FunctionCall(span=self._span_from(name_token), name=name, arguments=args)

    # =========================================================================
    # Command Parsing
    # =========================================================================

    def _parse_command(self) -> Optional[Command]:
        """Parse one command; returns None for a skipped unknown keyword."""
        token = self._current()

        if token.type == TokenType.KEYWORD:
            parser = self._command_parsers.get(token.value)
            if parser is None:
                self.diagnostics.add(warning_unknown_command(token.value, token.span,
                                                             self._source_line(token)))
                logger.debug("skipping unknown command keyword %s at %s", token.value, token.span.start)
                self._advance()
                self._skip_to_keyword()
                return None
            return parser()

        if self._starts_expression():
            return self._parse_statement()

        self._error("command")

    def _parse_statement(self) -> Command:
        """Parse `target = expr` or a bare expression."""
        start = self._current()
        saved = self.pos
        if start.type != TokenType.IDENTIFIER:
            return ExpressionCommand(span=start.span, expression=self._parse_expression())
        target = self._parse_postfix_expr()
        if self._match(TokenType.ASSIGN):
            if not isinstance(target, (VariableRef, IndexAccess, MapLookup, MemberAccess)):
                raise error_invalid_expression(target.span, self._source_line(start))
            value = self._parse_expression()
            return Assignment(span=self._span_from(start), target=target, value=value)

        self.pos = saved
        expression = self._parse_expression()
        return ExpressionCommand(span=self._span_from(start), expression=expression)

    def _parse_commands_until(self, terminators: Set[str]) -> List[Command]:
        """
        Parse commands up to (not including) a terminator keyword.

        Also stops at section boundaries and end of input; the caller decides
        whether that is an error. Failed commands are recorded and skipped.
        """
        commands: List[Command] = []
        while not self._is_at_end():
            if self._check_word(*terminators, *_SECTION_ENDS, *_SECTIONS):
                break
            if self.diagnostics.should_stop:
                break
            start_pos = self.pos
            try:
                command = self._parse_command()
            except ParserError as exc:
                self._recover(exc, start_pos)
                continue
            if command is not None:
                commands.append(command)
        return commands

    def _recover(self, exc: ParserError, start_pos: int) -> None:
        """Record a parse error and skip to the next keyword token."""
        self.diagnostics.add_error(exc)
        logger.debug("recovering from %s at %s", exc.code, exc.diagnostic.span.start)
        if self.pos == start_pos:
            self._advance()
        self._skip_to_keyword()

    def _skip_to_keyword(self) -> None:
        while not self._is_at_end() and not self._check(TokenType.KEYWORD):
            self._advance()

    # --- DECLARE_VARIABLE ---

    def _parse_typespec(self) -> TypeSpec:
        """
        Parse a declaration kind.

        ARRAY, MAP, STRUCTURE and GENERAL describe their nested kinds by
        re-entering this method.
        """
        start = self._current()

        if start.type == TokenType.TYPE_NAME:
            if start.value not in SCALAR_TYPES:
                raise error_unknown_type(start.value, start.span, self._source_line(start))
            self._advance()
            return ParameterType(span=start.span, subtype=start.value)

        if start.is_word("PARAMETER"):
            self._advance()
            subtype = self._parse_scalar_type()
            return ParameterType(span=self._span_from(start), subtype=subtype)

        if start.is_word("REFERENCE"):
            self._advance()
            entity = None
            if self._check(TokenType.STRING) or (
                    self._check(TokenType.TYPE_NAME) and self._current().value not in SCALAR_TYPES):
                entity = self._advance().value
            return ReferenceType(span=self._span_from(start), entity_type=entity)

        if start.is_word("FILE_DESCRIPTOR"):
            self._advance()
            mode = path = None
            if self._check(TokenType.STRING):
                mode = self._advance().value
                if self._check(TokenType.STRING):
                    path = self._advance().value
            return FileDescriptorType(span=self._span_from(start), mode=mode, path=path)

        if start.is_word("ARRAY"):
            self._advance()
            element = self._parse_typespec()
            initializers: List[Expression] = []
            if self._match(TokenType.LBRACE):
                if not self._check(TokenType.RBRACE):
                    initializers.append(self._parse_expression())
                    while self._match(TokenType.COMMA):
                        initializers.append(self._parse_expression())
                self._consume(TokenType.RBRACE, "'}'")
            return ArrayType(span=self._span_from(start), element=element, initializers=initializers)

        if start.is_word("MAP"):
            self._advance()
            entries: List[MapEntry] = []
            if self._match(TokenType.LBRACE):
                while not self._check(TokenType.RBRACE):
                    key_token = self._current()
                    if key_token.type not in (TokenType.IDENTIFIER, TokenType.STRING, TokenType.NUMBER):
                        self._error("map key")
                    self._advance()
                    self._consume(TokenType.COLON, "':'")
                    value = self._parse_expression()
                    entries.append(MapEntry(span=self._span_from(key_token), key=key_token.text, value=value))
                    if not self._match(TokenType.COMMA):
                        break
                self._consume(TokenType.RBRACE, "'}'")
            return MapType(span=self._span_from(start), entries=entries)

        if start.is_word("STRUCTURE"):
            self._advance()
            members: List[StructMember] = []
            if self._match(TokenType.LBRACE):
                while not self._check(TokenType.RBRACE):
                    name_token = self._consume(TokenType.IDENTIFIER, "member name")
                    self._consume(TokenType.COLON, "':'")
                    member_spec = self._parse_typespec()
                    default = None
                    if self._starts_expression():
                        default = self._parse_expression()
                    members.append(StructMember(span=self._span_from(name_token), name=name_token.value,
                                                type_spec=member_spec, default=default))
                    if not self._match(TokenType.COMMA):
                        break
                self._consume(TokenType.RBRACE, "'}'")
            return StructureType(span=self._span_from(start), members=members)

        if start.is_word("GENERAL"):
            self._advance()
            inner = self._parse_typespec()
            return GeneralType(span=self._span_from(start), inner=inner)

        if start.type == TokenType.EOF:
            raise error_unexpected_eof("declaration kind", start.span)
        raise error_unknown_type(start.text, start.span, self._source_line(start))

    def _parse_scalar_type(self) -> str:
        token = self._current()
        if token.type == TokenType.TYPE_NAME and token.value in SCALAR_TYPES:
            return self._advance().value
        if token.type == TokenType.EOF:
            raise error_unexpected_eof("parameter type", token.span)
        raise error_unknown_type(token.text, token.span, self._source_line(token))

    def _parse_declare(self) -> DeclareVariable:
        """DECLARE_VARIABLE <kind> NAME [default]."""
        start = self._advance()
        type_spec = self._parse_typespec()
        name = self._consume(TokenType.IDENTIFIER, "variable name")
        default = None
        if self._same_line(name.line):
            self._match(TokenType.ASSIGN)
            if self._starts_expression():
                default = self._parse_expression()
        return DeclareVariable(span=self._span_from(start), name=name.value,
                               type_spec=type_spec, default=default)

    # --- IF ---

    def _parse_if(self) -> IfCommand:
        """IF cond ... {ELSE_IF cond ...}* [ELSE ...] END_IF."""
        start = self._advance()
        terminators = {"ELSE_IF", "ELSE", "END_IF"}
        branches: List[IfBranch] = []
        else_body: Optional[List[Command]] = None

        condition = self._parse_expression()
        body = self._parse_commands_until(terminators)
        branches.append(IfBranch(span=self._span_from(start), condition=condition, body=body))

        while self._check_word("ELSE_IF"):
            branch_start = self._advance()
            condition = self._parse_expression()
            body = self._parse_commands_until(terminators)
            branches.append(IfBranch(span=self._span_from(branch_start), condition=condition, body=body))

        if self._check_word("ELSE"):
            self._advance()
            else_body = self._parse_commands_until({"END_IF"})

        if not self._check_word("END_IF"):
            raise error_missing_closing("END_IF", "IF", start.span)
        self._advance()
        return IfCommand(span=self._span_from(start), branches=branches, else_body=else_body)

    # --- Widgets ---

    def _parse_widget_head(self, allow_untyped: bool = True):
        """Parse `<type> NAME`; the type is optional when `allow_untyped`."""
        subtype = None
        if self._check(TokenType.TYPE_NAME) or not allow_untyped:
            subtype = self._parse_scalar_type()
        name = self._consume(TokenType.IDENTIFIER, "parameter name")
        return subtype, name

    def _parse_common_option(self, command: WidgetCommand, option: Token) -> bool:
        """Options shared by every widget; True if consumed."""
        word = option.value
        if word == "TOOLTIP":
            self._advance()
            command.tooltip = self._parse_expression()
            if self._check_word("IMAGE"):
                self._advance()
                command.image = self._parse_expression()
            return True
        if word == "ON_PICTURE":
            self._advance()
            command.pos_x = self._parse_expression()
            command.pos_y = self._parse_expression()
            return True
        if word == "DISPLAY_ORDER":
            self._advance()
            command.display_order = self._parse_expression()
            return True
        if word == "REQUIRED":
            self._advance()
            command.required = True
            return True
        return False

    def _parse_widget_options(self, command: WidgetCommand, keyword: str,
                              extra: Optional[Callable[[Token], bool]] = None,
                              allowed_common: Set[str] = frozenset({
                                  "TOOLTIP", "ON_PICTURE", "DISPLAY_ORDER", "REQUIRED"})) -> None:
        while self._check(TokenType.OPTION):
            option = self._current()
            if extra is not None and extra(option):
                continue
            if option.value in allowed_common and self._parse_common_option(command, option):
                continue
            raise error_unknown_option(option.value, keyword, option.span, self._source_line(option))

    def _parse_show_param(self) -> ShowParam:
        """SHOW_PARAM <type> NAME {TOOLTIP ... | ON_PICTURE x y}*."""
        start = self._advance()
        subtype, name = self._parse_widget_head()
        command = ShowParam(span=start.span, name=name.value, subtype=subtype)
        self._parse_widget_options(command, "SHOW_PARAM",
                                   allowed_common={"TOOLTIP", "ON_PICTURE", "DISPLAY_ORDER"})
        command.span = self._span_from(start)
        return command

    def _parse_checkbox_param(self) -> CheckboxParam:
        """CHECKBOX_PARAM <type> NAME {REQUIRED | DISPLAY_ORDER e | ... | "tag"}*."""
        start = self._advance()
        subtype, name = self._parse_widget_head()
        command = CheckboxParam(span=start.span, name=name.value, subtype=subtype)
        while True:
            self._parse_widget_options(command, "CHECKBOX_PARAM")
            if self._check(TokenType.STRING) and self._same_line(name.line) and command.tag is None:
                command.tag = self._parse_primary_expr()
                continue
            break
        command.span = self._span_from(start)
        return command

    def _parse_user_input_param(self) -> UserInputParam:
        """USER_INPUT_PARAM <type> NAME [default] {options}*."""
        start = self._advance()
        subtype, name = self._parse_widget_head()
        command = UserInputParam(span=start.span, name=name.value, subtype=subtype)
        if self._same_line(name.line) and self._starts_expression():
            command.default = self._parse_expression()

        def extra(option: Token) -> bool:
            word = option.value
            if word == "DEFAULT_FOR":
                self._advance()
                command.default_for.append(self._consume(TokenType.IDENTIFIER, "parameter name").value)
                while self._match(TokenType.COMMA):
                    command.default_for.append(self._consume(TokenType.IDENTIFIER, "parameter name").value)
                return True
            if word == "NO_UPDATE":
                self._advance()
                command.no_update = True
                return True
            fields = {"WIDTH": "width", "DECIMAL_PLACES": "decimal_places", "MODEL": "model",
                      "MIN_VALUE": "min_value", "MAX_VALUE": "max_value"}
            if word in fields:
                self._advance()
                setattr(command, fields[word], self._parse_expression())
                return True
            return False

        self._parse_widget_options(command, "USER_INPUT_PARAM", extra)
        command.span = self._span_from(start)
        return command

    def _parse_radiobutton_param(self) -> RadioButtonParam:
        """RADIOBUTTON_PARAM <type> NAME opt {[,] opt}* {options}*."""
        start = self._advance()
        subtype, name = self._parse_widget_head()
        command = RadioButtonParam(span=start.span, name=name.value, subtype=subtype)
        while not self._is_at_end():
            self._match(TokenType.COMMA)
            if not self._starts_expression():
                break
            if self._check(TokenType.IDENTIFIER) and self._peek(1).type == TokenType.ASSIGN:
                break
            command.options.append(self._parse_expression())
        self._parse_widget_options(command, "RADIOBUTTON_PARAM")
        command.span = self._span_from(start)
        return command

    def _parse_user_select(self) -> UserSelect:
        """USER_SELECT* (TYPE {| TYPE}* | &VAR) [max] NAME {options}* [tag]."""
        start = self._advance()
        kind = SelectKind(start.value)
        command = UserSelect(span=start.span, name="", kind=kind)

        if self._match(TokenType.AMPERSAND):
            command.type_variable = self._consume(TokenType.IDENTIFIER, "type variable").value
        else:
            command.types.append(self._parse_entity_type())
            while self._match(TokenType.BAR):
                command.types.append(self._parse_entity_type())

        if command.is_multiple and not self._at_select_name():
            command.max_selections = self._parse_expression()
        name = self._consume(TokenType.IDENTIFIER, "reference name")
        command.name = name.value

        def extra(option: Token) -> bool:
            word = option.value
            if word in _SELECT_FILTERS:
                self._advance()
                command.filters[word] = self._parse_expression()
                return True
            if word == "ALLOW_RESELECT":
                self._advance()
                command.allow_reselect = True
                return True
            if word == "SELECT_BY_BOX":
                self._advance()
                command.select_by_box = True
                return True
            if word == "SELECT_BY_MENU":
                self._advance()
                command.select_by_menu = True
                return True
            if word == "INCLUDE_MULTI_CAD":
                self._advance()
                command.include_multi_cad = self._parse_expression()
                return True
            return False

        while True:
            self._parse_widget_options(command, start.value, extra)
            if self._check(TokenType.STRING) and self._same_line(name.line) and command.tag is None:
                command.tag = self._parse_primary_expr()
                continue
            break
        command.span = self._span_from(start)
        return command

    def _at_select_name(self) -> bool:
        """True if the current token is the reference name (max count omitted)."""
        token = self._current()
        if token.type != TokenType.IDENTIFIER:
            return False
        following = self._peek(1)
        if following.line != token.line:
            return True
        return following.type not in (
            TokenType.IDENTIFIER, TokenType.NUMBER, TokenType.PLUS, TokenType.MINUS,
            TokenType.STAR, TokenType.SLASH, TokenType.LPAREN, TokenType.LBRACKET,
            TokenType.COLON, TokenType.DOT,
        )

    def _parse_entity_type(self) -> str:
        token = self._current()
        if token.type == TokenType.TYPE_NAME and token.value in TYPE_NAMES:
            return self._advance().value
        if token.type == TokenType.EOF:
            raise error_unexpected_eof("reference type", token.span)
        raise error_unknown_type(token.text, token.span, self._source_line(token))

    # --- Pictures ---

    def _parse_global_picture(self) -> GlobalPicture:
        start = self._advance()
        picture = self._parse_expression()
        return GlobalPicture(span=self._span_from(start), picture=picture)

    def _parse_sub_picture(self) -> SubPicture:
        start = self._advance()
        picture = self._parse_expression()
        pos_x = self._parse_expression()
        pos_y = self._parse_expression()
        return SubPicture(span=self._span_from(start), picture=picture, pos_x=pos_x, pos_y=pos_y)

    # --- Tables ---

    def _parse_table(self) -> Table:
        """
        BEGIN_TABLE ID [title]
        [TABLE_OPTION opt...]
        SEL_STRING header...
        STRING type...
        row...
        END_TABLE
        """
        start = self._advance()
        is_subtable = start.value == "BEGIN_SUBTABLE"
        closer = "END_SUBTABLE" if is_subtable else "END_TABLE"

        id_token = self._current()
        if id_token.type not in (TokenType.IDENTIFIER, TokenType.FIELD):
            self._error("table identifier")
        self._advance()
        identifier = id_token.value

        title: Expression = Literal(span=id_token.span, value=identifier, literal_type=LiteralType.STRING)
        if self._same_line(start.line) and self._starts_expression():
            title = self._parse_expression()

        table = Table(span=start.span, identifier=identifier, title=title,
                      is_subtable=is_subtable, table_height=self.table_height)

        try:
            self._parse_table_body(table, closer, start)
        except ParserError:
            self._skip_past(closer)
            raise

        table.span = self._span_from(start)
        return table

    def _parse_table_body(self, table: Table, closer: str, start: Token) -> None:
        while self._check_word("TABLE_OPTION"):
            self._parse_table_options(table)

        if not self._check_word("SEL_STRING"):
            if self._is_at_end():
                raise error_missing_closing(closer, start.value, start.span)
            self._error("SEL_STRING")
        sel = self._advance()
        table.headers.append(Literal(span=sel.span, value="SEL_STRING", literal_type=LiteralType.STRING))
        while self._same_line(sel.line):
            header = self._advance()
            table.headers.append(Literal(span=header.span, value=header.text,
                                         literal_type=LiteralType.STRING))

        self._parse_column_types(table, closer, start)

        while not self._check_word(closer):
            if self._is_at_end() or self._check_word(*_SECTION_ENDS):
                raise error_missing_closing(closer, start.value, start.span)
            table.rows.append(self._parse_table_row(table))
        self._advance()

    def _skip_past(self, closer: str) -> None:
        """Skip the rest of a malformed table, consuming its closer."""
        while not self._is_at_end() and not self._check_word(closer, *_SECTION_ENDS):
            self._advance()
        if self._check_word(closer):
            self._advance()

    def _parse_table_options(self, table: Table) -> None:
        line = self._advance().line
        while self._same_line(line) and not self._check(TokenType.KEYWORD):
            option = self._advance()
            word = option.text
            if word in _TABLE_FLAGS:
                setattr(table, _TABLE_FLAGS[word], True)
            elif word in _TABLE_INT_OPTIONS:
                value = self._current()
                if value.type != TokenType.NUMBER or not value.value.isdigit():
                    raise error_invalid_number(value.text, f"{word} argument", value.span,
                                               self._source_line(value))
                self._advance()
                setattr(table, _TABLE_INT_OPTIONS[word], int(value.value))
                if word == "TABLE_HEIGHT":
                    table.table_height_set = True
            else:
                self.diagnostics.add(warning_unknown_table_option(word, option.span,
                                                                  self._source_line(option)))

    def _parse_column_types(self, table: Table, closer: str, start: Token) -> None:
        first = self._current()
        if self._is_at_end():
            raise error_missing_closing(closer, start.value, start.span)
        if not first.is_word("STRING"):
            raise error_table_columns("type row must start with STRING", first.span,
                                      self._source_line(first))
        while self._same_line(first.line) and not self._check_word(closer):
            token = self._advance()
            table.column_types.append(Literal(span=token.span, value=token.text,
                                              literal_type=LiteralType.STRING))
        if len(table.column_types) != table.column_count:
            raise error_table_columns(
                f"{len(table.column_types)} column type(s) for {table.column_count} header(s)",
                first.span, self._source_line(first),
            )

    def _parse_table_row(self, table: Table) -> List[Optional[Expression]]:
        """One data row; short rows are padded with None."""
        first = self._current()
        cells: List[Optional[Expression]] = []
        while self._same_line(first.line):
            cells.append(self._parse_table_cell())
        if len(cells) > table.column_count:
            raise error_table_columns(
                f"row has {len(cells)} cells but the table has {table.column_count} columns",
                first.span, self._source_line(first),
            )
        cells.extend([None] * (table.column_count - len(cells)))
        return cells

    def _parse_table_cell(self) -> Expression:
        token = self._current()
        if token.type == TokenType.MINUS and self._peek(1).type == TokenType.NUMBER:
            self._advance()
            literal = self._number_literal(self._advance())
            literal.value = -literal.value
            literal.span = SourceSpan(token.span.start, literal.span.end)
            return literal
        if token.type in (TokenType.IDENTIFIER, TokenType.KEYWORD) and not token.is_word("NO_VALUE"):
            self._advance()
            return Literal(span=token.span, value=token.text, literal_type=LiteralType.STRING)
        return self._parse_primary_expr()

    # --- References and model queries ---

    def _is_direction_suffix(self) -> bool:
        """`:in` / `:out` after a reference argument."""
        return (self._check(TokenType.COLON)
                and self._peek(1).type == TokenType.IDENTIFIER
                and self._peek(1).value in ("in", "out"))

    def _parse_reference(self) -> str:
        """A reference argument, with an optional `<:in>` / `:out` suffix."""
        name = self._consume(TokenType.IDENTIFIER, "reference name").value
        if (self._check(TokenType.LT) and self._peek(1).type == TokenType.COLON
                and self._peek(2).type == TokenType.IDENTIFIER
                and self._peek(2).value in ("in", "out")
                and self._peek(3).type == TokenType.GT):
            self.pos += 4
        elif self._is_direction_suffix():
            self.pos += 2
        return name

    def _parse_invalidate(self) -> InvalidateParam:
        start = self._advance()
        name = self._parse_reference()
        return InvalidateParam(span=self._span_from(start), name=name)

    def _parse_measure_distance(self) -> MeasureDistance:
        """MEASURE_DISTANCE [ENABLE_CHECKBOX1 e] [ENABLE_CHECKBOX2 e] ref ref result."""
        start = self._advance()
        checkboxes: Dict[str, Expression] = {}
        while self._check(TokenType.OPTION):
            option = self._current()
            if option.value not in ("ENABLE_CHECKBOX1", "ENABLE_CHECKBOX2"):
                raise error_unknown_option(option.value, "MEASURE_DISTANCE", option.span,
                                           self._source_line(option))
            self._advance()
            checkboxes[option.value] = self._parse_expression()
        first = self._parse_reference()
        second = self._parse_reference()
        result = self._parse_reference()
        return MeasureDistance(span=self._span_from(start), reference1=first, reference2=second,
                               result=result,
                               enable_checkbox1=checkboxes.get("ENABLE_CHECKBOX1"),
                               enable_checkbox2=checkboxes.get("ENABLE_CHECKBOX2"))

    def _parse_measure_length(self) -> MeasureLength:
        start = self._advance()
        reference = self._parse_reference()
        result = self._parse_reference()
        return MeasureLength(span=self._span_from(start), reference=reference, result=result)

    def _parse_search(self) -> SearchModelRef:
        """SEARCH_MDL_REF(S) {flags}* model type search {WITH_* e}* result."""
        start = self._advance()
        flags = {"RECURSIVE": "recursive", "ALLOW_SUPPRESSED": "allow_suppressed",
                 "EXCLUDE_INHERITED": "exclude_inherited", "NO_UPDATE": "no_update"}
        values: Dict[str, object] = {}
        include_multi_cad = None
        while self._check(TokenType.OPTION):
            option = self._current()
            if option.value in flags:
                self._advance()
                values[flags[option.value]] = True
            elif option.value == "INCLUDE_MULTI_CAD":
                self._advance()
                include_multi_cad = self._parse_expression()
            else:
                raise error_unknown_option(option.value, start.value, option.span,
                                           self._source_line(option))

        model = self._parse_expression()
        type_expr = self._parse_expression()
        search_string = self._parse_expression()
        command = SearchModelRef(span=start.span, model=model, type_expr=type_expr,
                                 search_string=search_string, result="",
                                 multiple=start.value == "SEARCH_MDL_REFS",
                                 include_multi_cad=include_multi_cad, **values)
        while self._check(TokenType.OPTION):
            option = self._current()
            if option.value not in _SEARCH_LISTS:
                raise error_unknown_option(option.value, start.value, option.span,
                                           self._source_line(option))
            self._advance()
            getattr(command, _SEARCH_LISTS[option.value]).append(self._parse_expression())
        command.result = self._parse_reference()
        command.span = self._span_from(start)
        return command

    # --- Blocks ---

    def _parse_catch_error(self) -> CatchError:
        start = self._advance()
        command = CatchError(span=start.span)
        while self._check_word("FIX_FAIL_UDF", "FIX_FAIL_COMPONENT"):
            if self._advance().value == "FIX_FAIL_UDF":
                command.fix_fail_udf = True
            else:
                command.fix_fail_component = True
        command.body = self._parse_commands_until({"END_CATCH_ERROR"})
        if not self._check_word("END_CATCH_ERROR"):
            raise error_missing_closing("END_CATCH_ERROR", "BEGIN_CATCH_ERROR", start.span)
        self._advance()
        command.span = self._span_from(start)
        return command

    def _parse_config_elem(self) -> ConfigElem:
        """CONFIG_ELEM {flag | SCREEN_LOCATION "loc"}* [width [height]]."""
        start = self._advance()
        command = ConfigElem(span=start.span)
        while self._same_line(start.line):
            token = self._current()
            if token.type == TokenType.OPTION and token.value in _CONFIG_FLAGS:
                self._advance()
                setattr(command, _CONFIG_FLAGS[token.value], True)
            elif token.is_word("SCREEN_LOCATION"):
                self._advance()
                if command.screen_location is not None:
                    raise error_duplicate_option("SCREEN_LOCATION", token.span, self._source_line(token))
                location = self._consume(TokenType.STRING, "screen location string")
                command.screen_location = Literal(span=location.span, value=location.value,
                                                  literal_type=LiteralType.STRING)
            elif token.type == TokenType.NUMBER:
                self._advance()
                if command.width is None:
                    command.width = self._number_literal(token)
                elif command.height is None:
                    command.height = self._number_literal(token)
                else:
                    raise error_unexpected_token("end of CONFIG_ELEM", str(token), token.span,
                                                 self._source_line(token))
            elif token.type == TokenType.OPTION:
                raise error_unknown_option(token.value, "CONFIG_ELEM", token.span, self._source_line(token))
            else:
                break
        command.span = self._span_from(start)
        return command

    # =========================================================================
    # Program
    # =========================================================================

    def _parse_section(self) -> Block:
        start = self._advance()
        kind = _SECTIONS[start.value]
        commands = self._parse_commands_until(set())
        if self._check_word(kind.end_keyword):
            self._advance()
        elif not self.diagnostics.should_stop:
            found = self._current()
            self.diagnostics.add_error(error_missing_closing(kind.end_keyword, start.value,
                                                             found.span if found.type != TokenType.EOF
                                                             else start.span))
            if self._check_word(*_SECTION_ENDS):
                self._advance()
        return Block(span=self._span_from(start), kind=kind, commands=commands)

    def parse_program(self) -> Program:
        """Parse a complete script."""
        start = self._current()
        blocks: List[Block] = []
        seen: Set[SectionKind] = set()
        loose: Optional[Block] = None

        while not self._is_at_end() and not self.diagnostics.should_stop:
            token = self._current()
            if token.type == TokenType.KEYWORD and token.value in _SECTIONS:
                block = self._parse_section()
                if block.kind in (SectionKind.GUI, SectionKind.TAB) and block.kind in seen:
                    self.diagnostics.add(warning_duplicate_section(block.kind.begin_keyword, token.span))
                    logger.debug("ignoring duplicate %s section", block.kind.value)
                    continue
                seen.add(block.kind)
                blocks.append(block)
                continue

            if token.type == TokenType.KEYWORD and token.value in _SECTION_ENDS:
                self.diagnostics.add(warning_unknown_command(token.value, token.span,
                                                             self._source_line(token)))
                self._advance()
                continue

            # commands outside any section belong to an implicit ASM block
            if loose is None:
                loose = Block(span=token.span, kind=SectionKind.ASM)
                blocks.append(loose)
            loose.commands.extend(self._parse_commands_until(set(_SECTIONS)))

        logger.debug("parsed %d section(s) with %d error(s)", len(blocks), self.diagnostics.error_count)
        return Program(span=self._span_from(start), blocks=blocks)

    def parse_single_expression(self) -> Expression:
        """Parse exactly one expression followed by end of input."""
        expr = self._parse_expression()
        if not self._is_at_end():
            self._error("end of expression")
        return expr


def parse(tokens: List[Token], filename: Optional[str] = None, source: Optional[str] = None,
          diagnostics: Optional[DiagnosticCollector] = None, table_height: int = 12) -> Program:
    """
    Convenience function to parse tokens into a program.

    Args:
        tokens: List of tokens from the lexer
        filename: Optional filename for error messages
        source: Optional original source code for error context
        diagnostics: Optional collector for recovered errors and warnings
        table_height: Default height of tables without TABLE_HEIGHT

    Returns:
        Parsed Program AST; malformed commands are absent and reported
        through the diagnostics collector
    """
    parser = Parser(tokens, filename, source, diagnostics, table_height)
    return parser.parse_program()


def parse_expression(source: str) -> Expression:
    """
    Parse a single expression from source text.

    Raises:
        LexerError / ParserError: If the text is not one valid expression
    """
    from .lexer import tokenize

    parser = Parser(tokenize(source), source=source)
    return parser.parse_single_expression()
