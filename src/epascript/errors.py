"""
Script exceptions and diagnostics.

Error code ranges:
- E0xx: Lexer errors
- E1xx: Parser errors
- E2xx: Evaluation errors
- E3xx: Semantic errors (declaration / invalidation policy)
- E4xx: Runtime binding errors (selection provider, model queries)

Warnings use the same ranges with a W prefix.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List
from .tokens import SourceSpan, SourceLocation


class ErrorSeverity(Enum):
    """Severity levels for diagnostics."""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    HINT = "hint"


_NOWHERE = SourceSpan(SourceLocation(0, 0, 0), SourceLocation(0, 0, 0))


def unknown_span() -> SourceSpan:
    """Span used for diagnostics that have no source position."""
    return _NOWHERE


@dataclass
class Diagnostic:
    """A single diagnostic message (error, warning, etc.)."""
    code: str                       # E001, E101, etc.
    message: str                    # Human-readable message
    severity: ErrorSeverity
    span: SourceSpan
    source_line: Optional[str] = None   # The actual line of source code
    hints: List[str] = field(default_factory=list)
    related: List["Diagnostic"] = field(default_factory=list)

    @property
    def is_error(self) -> bool:
        return self.severity == ErrorSeverity.ERROR

    def format(self, show_source: bool = True) -> str:
        """Format the diagnostic for display."""
        parts = []

        # Header: location: severity[code]: message
        loc = f"{self.span.start}"
        parts.append(f"{loc}: {self.severity.value}[{self.code}]: {self.message}")

        # Source line with caret
        if show_source and self.source_line is not None:
            parts.append("  |")
            line_num = str(self.span.start.line)
            parts.append(f"{line_num:>3} | {self.source_line}")

            col = max(1, self.span.start.column)
            if self.span.start.line == self.span.end.line:
                end_col = self.span.end.column
            else:
                end_col = len(self.source_line) + 1
            underline_len = max(1, end_col - col)
            parts.append(f"    | {' ' * (col - 1)}{'^' * underline_len}")

        for hint in self.hints:
            parts.append(f"    = hint: {hint}")

        for related in self.related:
            parts.append(f"    --> {related.span.start}: {related.message}")

        return "\n".join(parts)

    def to_json(self) -> dict:
        """Convert to JSON-serializable dict for tooling integration."""
        return {
            "code": self.code,
            "message": self.message,
            "severity": self.severity.value,
            "range": {
                "start": {
                    "line": self.span.start.line,
                    "column": self.span.start.column,
                    "offset": self.span.start.offset,
                },
                "end": {
                    "line": self.span.end.line,
                    "column": self.span.end.column,
                    "offset": self.span.end.offset,
                },
            },
            "hints": self.hints,
            "related": [r.to_json() for r in self.related],
        }


class DslError(Exception):
    """Base exception for script errors."""

    def __init__(self, diagnostic: Diagnostic):
        self.diagnostic = diagnostic
        super().__init__(diagnostic.message)

    @property
    def code(self) -> str:
        return self.diagnostic.code

    def __str__(self) -> str:
        return self.diagnostic.format()


class LexerError(DslError):
    """Error during lexical analysis (E0xx)."""
    pass


class ParserError(DslError):
    """Error during parsing (E1xx)."""
    pass


class EvaluationError(DslError):
    """Error while evaluating an expression (E2xx)."""
    pass


class SemanticError(DslError):
    """Declaration or invalidation policy violation (E3xx)."""
    pass


class RuntimeBindingError(DslError):
    """Failure reported by an external collaborator (E4xx)."""
    pass


def _diag(code: str, message: str, span: Optional[SourceSpan],
          source_line: Optional[str] = None, hints: Optional[List[str]] = None,
          severity: ErrorSeverity = ErrorSeverity.ERROR) -> Diagnostic:
    return Diagnostic(
        code=code,
        message=message,
        severity=severity,
        span=span or unknown_span(),
        source_line=source_line,
        hints=hints or [],
    )


# --- Lexer error codes ---

def error_unexpected_character(char: str, span: SourceSpan, source_line: str = None) -> LexerError:
    """E001: Unexpected character."""
    return LexerError(_diag("E001", f"unexpected character '{char}'", span, source_line))


def error_unterminated_string(span: SourceSpan, source_line: str = None) -> LexerError:
    """E002: Unterminated string literal."""
    return LexerError(_diag(
        "E002", "unterminated string literal", span, source_line,
        hints=["string literals must be closed with '\"' on the same line"],
    ))


def error_incomplete_escape(span: SourceSpan, source_line: str = None) -> LexerError:
    """E003: Backslash at end of input."""
    return LexerError(_diag("E003", "incomplete escape sequence at end of input", span, source_line))


def warning_unknown_escape(seq: str, span: SourceSpan, source_line: str = None) -> Diagnostic:
    """W001: Unknown escape kept literally."""
    return _diag(
        "W001", f"unknown escape sequence '\\{seq}' kept as written", span, source_line,
        hints=["valid escape sequences: \\n \\t \\r \\\\ \\\" \\a \\b \\f \\v \\' \\?"],
        severity=ErrorSeverity.WARNING,
    )


# --- Parser error codes ---

def error_unexpected_token(expected: str, found: str, span: SourceSpan,
                           source_line: str = None) -> ParserError:
    """E101: Unexpected token."""
    return ParserError(_diag("E101", f"expected {expected}, found {found}", span, source_line))


def error_unexpected_eof(expected: str, span: SourceSpan) -> ParserError:
    """E102: Unexpected end of input."""
    return ParserError(_diag("E102", f"unexpected end of input, expected {expected}", span))


def error_invalid_expression(span: SourceSpan, source_line: str = None) -> ParserError:
    """E103: Invalid expression."""
    return ParserError(_diag("E103", "invalid expression", span, source_line))


def error_unknown_option(option: str, command: str, span: SourceSpan,
                         source_line: str = None) -> ParserError:
    """E104: Option not accepted by the command."""
    return ParserError(_diag("E104", f"unknown option '{option}' for {command}", span, source_line))


def error_unknown_type(type_name: str, span: SourceSpan, source_line: str = None) -> ParserError:
    """E105: Unknown or unsupported type."""
    return ParserError(_diag("E105", f"unknown type '{type_name}'", span, source_line))


def error_missing_closing(keyword: str, opener: str, span: SourceSpan) -> ParserError:
    """E106: Block not closed."""
    return ParserError(_diag(
        "E106", f"missing {keyword} for {opener}", span,
        hints=[f"every {opener} must be closed with {keyword}"],
    ))


def error_table_columns(message: str, span: SourceSpan, source_line: str = None) -> ParserError:
    """E107: Table row or type row does not match the header."""
    return ParserError(_diag("E107", message, span, source_line))


def error_unknown_function(name: str, span: SourceSpan, source_line: str = None) -> ParserError:
    """E108: Call to a function that is not a builtin."""
    return ParserError(_diag("E108", f"unknown function '{name}'", span, source_line))


def error_invalid_number(text: str, what: str, span: SourceSpan,
                         source_line: str = None) -> ParserError:
    """E109: A numeric literal was required."""
    return ParserError(_diag("E109", f"invalid numeric literal '{text}' for {what}", span, source_line))


def error_duplicate_option(option: str, span: SourceSpan, source_line: str = None) -> ParserError:
    """E110: Option given twice."""
    return ParserError(_diag("E110", f"duplicate option '{option}'", span, source_line))


def warning_unknown_command(keyword: str, span: SourceSpan, source_line: str = None) -> Diagnostic:
    """W101: Keyword that does not start a command."""
    return _diag("W101", f"'{keyword}' does not start a command; skipped", span, source_line,
                 severity=ErrorSeverity.WARNING)


def warning_unknown_table_option(option: str, span: SourceSpan, source_line: str = None) -> Diagnostic:
    """W102: Unknown TABLE_OPTION ignored."""
    return _diag("W102", f"unknown TABLE_OPTION '{option}' ignored", span, source_line,
                 severity=ErrorSeverity.WARNING)


def warning_duplicate_section(section: str, span: SourceSpan) -> Diagnostic:
    """W103: Second GUI or TAB section ignored."""
    return _diag("W103", f"duplicate {section} section ignored", span,
                 severity=ErrorSeverity.WARNING)


# --- Evaluation error codes ---

def error_type_mismatch(expected: str, found: str, span: SourceSpan = None,
                        source_line: str = None) -> EvaluationError:
    """E201: Type mismatch."""
    return EvaluationError(_diag(
        "E201", f"type mismatch: expected '{expected}', found '{found}'", span, source_line,
    ))


def error_undefined_identifier(name: str, span: SourceSpan = None,
                               source_line: str = None) -> EvaluationError:
    """E202: Undefined identifier."""
    return EvaluationError(_diag("E202", f"undefined identifier '{name}'", span, source_line))


def error_division_by_zero(span: SourceSpan = None) -> EvaluationError:
    """E203: Division by zero."""
    return EvaluationError(_diag("E203", "division by zero", span))


def error_invalid_operand(message: str, span: SourceSpan = None) -> EvaluationError:
    """E204: Operand or target cannot be used here."""
    return EvaluationError(_diag("E204", message, span))


def error_index_out_of_range(index: int, length: int, span: SourceSpan = None) -> EvaluationError:
    """E205: Array index out of range."""
    return EvaluationError(_diag("E205", f"index {index} out of range for array of length {length}", span))


def error_missing_key(key: str, span: SourceSpan = None) -> EvaluationError:
    """E206: Missing map key or structure member."""
    return EvaluationError(_diag("E206", f"no key or member '{key}'", span))


def error_bad_argument(function: str, message: str, span: SourceSpan = None) -> EvaluationError:
    """E207: Builtin called with bad arguments."""
    return EvaluationError(_diag("E207", f"{function}(): {message}", span))


# --- Semantic error codes ---

def error_assign_undeclared(name: str, span: SourceSpan = None) -> SemanticError:
    """E301: Assignment to a name that was never declared."""
    return SemanticError(_diag(
        "E301", f"assignment to undeclared variable '{name}'", span,
        hints=["declare it first with DECLARE_VARIABLE or a *_PARAM command"],
    ))


def error_invalidate_non_scalar(name: str, kind: str, span: SourceSpan = None) -> SemanticError:
    """E302: INVALIDATE_PARAM on a non-scalar variable."""
    return SemanticError(_diag("E302", f"cannot invalidate '{name}' of kind {kind}", span))


def warning_redeclaration(name: str, span: SourceSpan = None) -> Diagnostic:
    """W301: Redeclaration ignored, original value kept."""
    return _diag("W301", f"'{name}' already declared; original value kept", span,
                 hints=[f"use INVALIDATE_PARAM {name} before declaring it again"],
                 severity=ErrorSeverity.WARNING)


def warning_invalidate_unknown(name: str, span: SourceSpan = None) -> Diagnostic:
    """W302: INVALIDATE_PARAM on a name that does not exist."""
    return _diag("W302", f"INVALIDATE_PARAM on unknown name '{name}'", span,
                 severity=ErrorSeverity.WARNING)


# --- Runtime binding error codes ---

def error_selection_failed(name: str, message: str, span: SourceSpan = None) -> RuntimeBindingError:
    """E401: Selection provider failure."""
    return RuntimeBindingError(_diag("E401", f"selection for '{name}' failed: {message}", span))


def error_model_query_failed(command: str, message: str, span: SourceSpan = None) -> RuntimeBindingError:
    """E402: Model query failure."""
    return RuntimeBindingError(_diag("E402", f"{command} failed: {message}", span))


def error_render_failed(widget_id: str, span: SourceSpan = None) -> RuntimeBindingError:
    """E403: UI binder could not render a widget."""
    return RuntimeBindingError(_diag("E403", f"could not render widget '{widget_id}'", span))


class DiagnosticCollector:
    """Collects diagnostics during lexing, parsing and execution."""

    def __init__(self, max_errors: int = 20):
        self.diagnostics: List[Diagnostic] = []
        self.max_errors = max_errors
        self._error_count = 0

    def add(self, diagnostic: Diagnostic) -> None:
        """Add a diagnostic."""
        self.diagnostics.append(diagnostic)
        if diagnostic.severity == ErrorSeverity.ERROR:
            self._error_count += 1

    def add_error(self, error: DslError) -> None:
        """Add an error exception as a diagnostic."""
        self.add(error.diagnostic)

    def codes(self) -> List[str]:
        """Codes of all collected diagnostics, in order."""
        return [d.code for d in self.diagnostics]

    @property
    def error_count(self) -> int:
        return self._error_count

    @property
    def warning_count(self) -> int:
        return sum(1 for d in self.diagnostics if d.severity == ErrorSeverity.WARNING)

    @property
    def has_errors(self) -> bool:
        return self._error_count > 0

    @property
    def has_warnings(self) -> bool:
        return self.warning_count > 0

    @property
    def should_stop(self) -> bool:
        """Check if we've hit the max error limit."""
        return self._error_count >= self.max_errors

    def format_all(self, show_source: bool = True) -> str:
        """Format all diagnostics for display."""
        parts = [d.format(show_source) for d in self.diagnostics]
        if self._error_count > 0:
            parts.append(f"\n{self._error_count} error(s), {self.warning_count} warning(s)")
        elif self.warning_count > 0:
            parts.append(f"\n{self.warning_count} warning(s)")
        return "\n\n".join(parts)

    def to_json(self) -> dict:
        """Convert all diagnostics to JSON format."""
        return {
            "diagnostics": [d.to_json() for d in self.diagnostics],
            "error_count": self._error_count,
            "warning_count": self.warning_count,
        }
