"""
Token types for the EPA script lexer.

EPA scripts are line-oriented: keywords are case-sensitive upper-case
words, modifiers ("options") and type names are reserved words too, and
everything else is an identifier, a number, a string or an operator.

Bare words are classified in a fixed order:
    keyword > type name > option > number > identifier

Error code ranges:
- E0xx: Lexer errors
- E1xx: Parser errors
- E2xx: Evaluation errors
- E3xx: Semantic errors
- E4xx: Runtime binding errors
"""

from enum import Enum, auto
from dataclasses import dataclass
from typing import Any, Optional


class TokenType(Enum):
    """All token types recognized by the EPA script lexer."""

    # --- Literals ---
    NUMBER = auto()             # 42, 3.5, .25 (always unsigned)
    STRING = auto()             # "hello\n"

    # --- Words ---
    IDENTIFIER = auto()         # user-defined names, file-name, a.b
    KEYWORD = auto()            # DECLARE_VARIABLE, IF, BEGIN_TABLE ...
    TYPE_NAME = auto()          # INTEGER, DOUBLE, SURFACE ...
    OPTION = auto()             # REQUIRED, TOOLTIP, TABLE_HEIGHT ...
    FIELD = auto()              # raw table cell text

    # --- Logical word operators ---
    AND = auto()                # AND
    OR = auto()                 # OR

    # --- Operators ---
    ASSIGN = auto()             # =
    EQ = auto()                 # ==
    NE = auto()                 # <>
    LT = auto()                 # <
    GT = auto()                 # >
    LE = auto()                 # <=
    GE = auto()                 # >=
    PLUS = auto()               # +
    MINUS = auto()              # -
    STAR = auto()               # *
    SLASH = auto()              # /
    BACKSLASH = auto()          # \ (path separators in unquoted names)
    BAR = auto()                # | (reference type alternatives)
    AMPERSAND = auto()          # & (reference type held in a variable)

    # --- Delimiters ---
    LPAREN = auto()             # (
    RPAREN = auto()             # )
    LBRACE = auto()             # {
    RBRACE = auto()             # }
    LBRACKET = auto()           # [
    RBRACKET = auto()           # ]
    COMMA = auto()              # ,
    COLON = auto()              # :
    DOT = auto()                # .

    # --- Special ---
    EOF = auto()                # end of input


@dataclass(frozen=True)
class SourceLocation:
    """Represents a position in source code."""
    line: int           # 1-indexed line number
    column: int         # 1-indexed column number
    offset: int         # 0-indexed character offset from start
    filename: Optional[str] = None

    def __str__(self) -> str:
        if self.filename:
            return f"{self.filename}:{self.line}:{self.column}"
        return f"{self.line}:{self.column}"


@dataclass(frozen=True)
class SourceSpan:
    """Represents a range in source code."""
    start: SourceLocation
    end: SourceLocation

    def __str__(self) -> str:
        if self.start.filename:
            return f"{self.start.filename}:{self.start.line}:{self.start.column}-{self.end.line}:{self.end.column}"
        return f"{self.start.line}:{self.start.column}-{self.end.line}:{self.end.column}"


@dataclass(frozen=True)
class Token:
    """A single token from the lexer."""
    type: TokenType
    value: Any              # str for words/strings/fields, the lexeme for numbers
    lexeme: str             # The original source text
    span: SourceSpan        # Location in source

    @property
    def line(self) -> int:
        return self.span.start.line

    @property
    def column(self) -> int:
        return self.span.start.column

    @property
    def text(self) -> str:
        """Token text as the parser sees it (decoded for strings)."""
        if self.value is None:
            return self.lexeme
        return str(self.value)

    def is_word(self, *words: str) -> bool:
        """True if this is a reserved word token spelling one of `words`."""
        return (self.type in (TokenType.KEYWORD, TokenType.TYPE_NAME, TokenType.OPTION)
                and self.value in words)

    def __str__(self) -> str:
        if self.type in (TokenType.NUMBER, TokenType.STRING, TokenType.IDENTIFIER,
                         TokenType.KEYWORD, TokenType.TYPE_NAME, TokenType.OPTION,
                         TokenType.FIELD):
            return f"{self.type.name}({self.value!r})"
        return self.type.name


# Section and command keywords
KEYWORDS: frozenset[str] = frozenset({
    # Sections
    "BEGIN_ASM_DESCR", "END_ASM_DESCR",
    "BEGIN_GUI_DESCR", "END_GUI_DESCR",
    "BEGIN_TAB_DESCR", "END_TAB_DESCR",
    # Tables
    "BEGIN_TABLE", "END_TABLE",
    "BEGIN_SUBTABLE", "END_SUBTABLE",
    "TABLE_OPTION", "SEL_STRING",
    # Commands
    "DECLARE_VARIABLE",
    "GLOBAL_PICTURE", "SUB_PICTURE",
    "SHOW_PARAM", "CHECKBOX_PARAM", "USER_INPUT_PARAM", "RADIOBUTTON_PARAM",
    "USER_SELECT", "USER_SELECT_OPTIONAL",
    "USER_SELECT_MULTIPLE", "USER_SELECT_MULTIPLE_OPTIONAL",
    "INVALIDATE_PARAM",
    "MEASURE_DISTANCE", "MEASURE_LENGTH",
    "SEARCH_MDL_REF", "SEARCH_MDL_REFS",
    "BEGIN_CATCH_ERROR", "END_CATCH_ERROR",
    "CONFIG_ELEM",
    # Conditionals
    "IF", "ELSE_IF", "ELSE", "END_IF",
    # Declaration kinds
    "PARAMETER", "REFERENCE", "FILE_DESCRIPTOR", "MAP", "STRUCTURE", "GENERAL",
    # Values
    "NO_VALUE",
})

# Scalar parameter types followed by reference entity types
SCALAR_TYPES: frozenset[str] = frozenset({"STRING", "INTEGER", "INT", "DOUBLE", "BOOL"})

TYPE_NAMES: frozenset[str] = SCALAR_TYPES | frozenset({
    "PLANE", "SURFACE", "POINT", "AXIS", "CURVE", "EDGE",
    "COMPONENT", "FEATURE", "PART", "ASSEMBLY",
    "SUBTABLE", "SUBCOMP", "CONFIG_DELETE_IDS", "CONFIG_STATE",
})

# Modifier words
OPTIONS: frozenset[str] = frozenset({
    # CONFIG_ELEM
    "NO_TABLES", "NO_GUI", "AUTO_COMMIT", "AUTO_CLOSE", "SHOW_GUI_FOR_EXISTING",
    "NO_AUTO_UPDATE", "CONTINUE_ON_CANCEL", "SCREEN_LOCATION",
    # Widgets
    "ON_PICTURE", "TOOLTIP", "IMAGE", "REQUIRED", "NO_UPDATE", "DISPLAY_ORDER",
    "DEFAULT_FOR", "WIDTH", "DECIMAL_PLACES", "MODEL", "MIN_VALUE", "MAX_VALUE",
    # Tables
    "NO_AUTOSEL", "NO_FILTER", "DEPEND_ON_INPUT", "INVALIDATE_ON_UNSELECT",
    "SHOW_AUTOSEL", "FILTER_RIGID", "FILTER_ONLY_COLUMN", "FILTER_COLUMN",
    "TABLE_HEIGHT", "ARRAY",
    # Selection
    "ALLOW_RESELECT", "FILTER_MDL", "FILTER_FEAT", "FILTER_GEOM", "FILTER_REF",
    "FILTER_IDENTIFIER", "SELECT_BY_BOX", "SELECT_BY_MENU", "INCLUDE_MULTI_CAD",
    # Measurement and search
    "ENABLE_CHECKBOX1", "ENABLE_CHECKBOX2",
    "RECURSIVE", "ALLOW_SUPPRESSED", "EXCLUDE_INHERITED",
    "WITH_CONTENT", "WITH_CONTENT_NOT", "WITH_IDENTIFIER", "WITH_IDENTIFIER_NOT",
    # Error handling
    "FIX_FAIL_UDF", "FIX_FAIL_COMPONENT",
})

WORD_OPERATORS: dict[str, TokenType] = {
    "AND": TokenType.AND,
    "OR": TokenType.OR,
}


def is_number_text(text: str) -> bool:
    """True for unsigned decimal text such as '12', '1.5', '.5' or '3.'."""
    if not text or text.count(".") > 1:
        return False
    digits = text.replace(".", "")
    return digits.isdigit() and digits.isascii()


def classify_word(word: str) -> TokenType:
    """
    Classify a bare word.

    Precedence is keyword, type name, option, number, identifier.
    """
    if word in WORD_OPERATORS:
        return WORD_OPERATORS[word]
    if word in KEYWORDS:
        return TokenType.KEYWORD
    if word in TYPE_NAMES:
        return TokenType.TYPE_NAME
    if word in OPTIONS:
        return TokenType.OPTION
    if is_number_text(word):
        return TokenType.NUMBER
    return TokenType.IDENTIFIER
