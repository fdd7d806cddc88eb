"""
Lexer for EPA scripts.

Converts source text into a stream of tokens. Handles:
- `!` comments running to end of line
- double-quoted strings with C-style escapes
- words classified as keyword / type name / option / number / identifier
- identifiers with embedded dots and letter-led hyphens (file-name.prt)
- table mode: lines between BEGIN_TABLE and END_TABLE are split into
  raw fields instead of being tokenized as expressions

A leading '-' is never part of a number; the parser resolves signs.
"""

import logging
import re
from typing import List, Optional, Iterator, Tuple

from .tokens import (
    Token, TokenType, SourceLocation, SourceSpan,
    KEYWORDS, TYPE_NAMES, OPTIONS, classify_word, is_number_text,
)
from .errors import (
    DiagnosticCollector,
    error_unexpected_character,
    error_unterminated_string,
    error_incomplete_escape,
    warning_unknown_escape,
)

logger = logging.getLogger(__name__)

ESCAPES = {
    'n': '\n',
    't': '\t',
    'r': '\r',
    '\\': '\\',
    '"': '"',
    "'": "'",
    'a': '\a',
    'b': '\b',
    'f': '\f',
    'v': '\v',
    '?': '?',
}

TABLE_OPENERS = frozenset({"BEGIN_TABLE", "BEGIN_SUBTABLE"})
TABLE_CLOSERS = frozenset({"END_TABLE", "END_SUBTABLE"})

_FIRST_WORD = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_TAB_FIELD = re.compile(r"[^\t]+")
_SPACE_FIELD = re.compile(r'"(?:[^"\\]|\\.)*"|\S+')


def _is_word_start(ch: str) -> bool:
    return ch.isascii() and (ch.isalpha() or ch == '_')


def _is_word_char(ch: str) -> bool:
    return ch.isascii() and (ch.isalnum() or ch == '_')


class Lexer:
    """
    Lexer for EPA scripts.

    Usage:
        lexer = Lexer(source)
        tokens = lexer.tokenize()

    Recoverable problems (unknown escapes) are added to `diagnostics`;
    fatal ones raise LexerError.
    """

    def __init__(self, source: str, filename: Optional[str] = None,
                 diagnostics: Optional[DiagnosticCollector] = None):
        self.source = source
        self.filename = filename
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticCollector()
        self.pos = 0
        self.line = 1
        self.column = 1
        self.line_start = 0
        self.at_line_start = True
        self.table_pending = False
        self.table_mode = False
        self._lines: Optional[List[str]] = None

    @property
    def lines(self) -> List[str]:
        """Lazily split source into lines for error messages."""
        if self._lines is None:
            self._lines = self.source.split('\n')
        return self._lines

    def get_source_line(self, line_num: int) -> str:
        """Get a specific line of source (1-indexed)."""
        if 1 <= line_num <= len(self.lines):
            return self.lines[line_num - 1]
        return ""

    def _location(self) -> SourceLocation:
        """Get current source location."""
        return SourceLocation(self.line, self.column, self.pos, self.filename)

    def _span(self, start: SourceLocation) -> SourceSpan:
        """Create a span from start to current position."""
        return SourceSpan(start, self._location())

    def _peek(self, offset: int = 0) -> str:
        """Peek at character at current position + offset."""
        pos = self.pos + offset
        if pos >= len(self.source):
            return '\0'
        return self.source[pos]

    def _is_at_end(self) -> bool:
        return self.pos >= len(self.source)

    def _advance(self) -> str:
        """Consume and return current character."""
        ch = self.source[self.pos]
        self.pos += 1
        if ch == '\n':
            self.line += 1
            self.column = 1
            self.line_start = self.pos
            self.at_line_start = True
        else:
            self.column += 1
        return ch

    def _match(self, expected: str) -> bool:
        """Consume character if it matches expected."""
        if self._peek() == expected and not self._is_at_end():
            self._advance()
            return True
        return False

    def _make_token(self, token_type: TokenType, value, start: SourceLocation,
                    lexeme: Optional[str] = None) -> Token:
        """Create a token from start position to current position."""
        span = self._span(start)
        if lexeme is None:
            lexeme = self.source[start.offset:self.pos]
        return Token(token_type, value, lexeme, span)

    def _skip_comment(self) -> None:
        """Skip a `!` comment up to (not including) the newline."""
        while not self._is_at_end() and self._peek() != '\n':
            self._advance()

    def _newline(self) -> None:
        """Consume a newline and activate a pending table."""
        self._advance()
        if self.table_pending:
            self.table_pending = False
            self.table_mode = True

    # =========================================================================
    # Strings
    # =========================================================================

    def _decode_escape(self, ch: str, span: SourceSpan) -> str:
        """Translate one escape character; unknown escapes are kept verbatim."""
        if ch in ESCAPES:
            return ESCAPES[ch]
        self.diagnostics.add(
            warning_unknown_escape(ch, span, self.get_source_line(span.start.line))
        )
        logger.debug("unknown escape \\%s kept at %s", ch, span.start)
        return '\\' + ch

    def _scan_string(self) -> Token:
        """Scan a double-quoted string literal."""
        start = self._location()
        self._advance()  # opening quote
        chars = []
        while self._peek() != '"' or self._is_at_end():
            if self._is_at_end() or self._peek() == '\n':
                raise error_unterminated_string(
                    self._span(start), self.get_source_line(start.line)
                )
            ch = self._advance()
            if ch == '\\':
                esc_start = self._location()
                if self._is_at_end():
                    raise error_incomplete_escape(
                        self._span(start), self.get_source_line(start.line)
                    )
                if self._peek() == '\n':
                    raise error_unterminated_string(
                        self._span(start), self.get_source_line(start.line)
                    )
                esc = self._advance()
                chars.append(self._decode_escape(esc, self._span(esc_start)))
            else:
                chars.append(ch)
        self._advance()  # closing quote
        return self._make_token(TokenType.STRING, ''.join(chars), start)

    def decode_string_body(self, body: str, start: SourceLocation) -> str:
        """Decode escapes in the body of a quoted table field."""
        chars = []
        i = 0
        while i < len(body):
            ch = body[i]
            if ch == '\\' and i + 1 < len(body):
                span = SourceSpan(start, start)
                chars.append(self._decode_escape(body[i + 1], span))
                i += 2
                continue
            chars.append(ch)
            i += 1
        return ''.join(chars)

    # =========================================================================
    # Words and numbers
    # =========================================================================

    def _scan_number(self) -> Token:
        """Scan an unsigned number; validation happens in the parser."""
        start = self._location()
        while self._peek().isdigit() or self._peek() == '.':
            self._advance()
        lexeme = self.source[start.offset:self.pos]
        return self._make_token(TokenType.NUMBER, lexeme, start)

    def _scan_word(self) -> Token:
        """Scan an identifier, keyword, type name or option."""
        start = self._location()
        while True:
            ch = self._peek()
            if _is_word_char(ch) or ch == '.':
                self._advance()
            elif ch == '-' and _is_word_start(self._peek(1)):
                self._advance()
            else:
                break
        word = self.source[start.offset:self.pos]
        token_type = classify_word(word)
        if token_type == TokenType.KEYWORD:
            if word in TABLE_OPENERS:
                self.table_pending = True
            elif word in TABLE_CLOSERS:
                self.table_mode = False
                self.table_pending = False
        return self._make_token(token_type, word, start)

    # =========================================================================
    # Table mode
    # =========================================================================

    def _table_line_is_raw(self) -> bool:
        """True if the current line should be split into raw table fields."""
        end = self.source.find('\n', self.pos)
        if end < 0:
            end = len(self.source)
        text = self.source[self.pos:end].strip()
        if not text or text.startswith('!'):
            return False
        match = _FIRST_WORD.match(text)
        return not (match and match.group(0) in KEYWORDS)

    def _field_tokens(self, text: str, start: SourceLocation) -> List[Token]:
        """Turn one raw table field into one or two tokens."""
        end = SourceLocation(start.line, start.column + len(text),
                             start.offset + len(text), self.filename)
        span = SourceSpan(start, end)

        if len(text) >= 2 and text[0] == '"' and text[-1] == '"':
            value = self.decode_string_body(text[1:-1], start)
            return [Token(TokenType.STRING, value, text, span)]
        if is_number_text(text):
            return [Token(TokenType.NUMBER, text, text, span)]
        if text[0] == '-' and is_number_text(text[1:]):
            minus_end = SourceLocation(start.line, start.column + 1, start.offset + 1, self.filename)
            return [
                Token(TokenType.MINUS, '-', '-', SourceSpan(start, minus_end)),
                Token(TokenType.NUMBER, text[1:], text[1:], SourceSpan(minus_end, end)),
            ]
        if _FIRST_WORD.fullmatch(text):
            if text in KEYWORDS:
                return [Token(TokenType.KEYWORD, text, text, span)]
            if text in TYPE_NAMES:
                return [Token(TokenType.TYPE_NAME, text, text, span)]
            if text in OPTIONS:
                return [Token(TokenType.OPTION, text, text, span)]
        return [Token(TokenType.FIELD, text, text, span)]

    def _split_fields(self, line: str) -> Iterator[Tuple[int, str]]:
        """Yield (column offset, field text) for a raw table line."""
        pattern = _TAB_FIELD if '\t' in line else _SPACE_FIELD
        for match in pattern.finditer(line):
            raw = match.group(0)
            text = raw.strip()
            if not text:
                continue
            yield match.start() + (len(raw) - len(raw.lstrip())), text

    def _scan_table_line(self) -> List[Token]:
        """Consume a raw table line (up to the newline) as field tokens."""
        end = self.source.find('\n', self.pos)
        if end < 0:
            end = len(self.source)
        line = self.source[self.pos:end]
        base_column = self.column
        base_offset = self.pos
        tokens = []
        for col, text in self._split_fields(line):
            start = SourceLocation(self.line, base_column + col, base_offset + col, self.filename)
            tokens.extend(self._field_tokens(text, start))
        self.column += end - self.pos
        self.pos = end
        self.at_line_start = False
        return tokens

    # =========================================================================
    # Main loop
    # =========================================================================

    def _scan_operator(self) -> Token:
        """Scan an operator or delimiter."""
        start = self._location()
        ch = self._advance()

        if ch == '=':
            if self._match('='):
                return self._make_token(TokenType.EQ, "==", start)
            return self._make_token(TokenType.ASSIGN, "=", start)
        if ch == '<':
            if self._match('>'):
                return self._make_token(TokenType.NE, "<>", start)
            if self._match('='):
                return self._make_token(TokenType.LE, "<=", start)
            return self._make_token(TokenType.LT, "<", start)
        if ch == '>':
            if self._match('='):
                return self._make_token(TokenType.GE, ">=", start)
            return self._make_token(TokenType.GT, ">", start)

        single_char_tokens = {
            '+': TokenType.PLUS,
            '-': TokenType.MINUS,
            '*': TokenType.STAR,
            '/': TokenType.SLASH,
            '\\': TokenType.BACKSLASH,
            '|': TokenType.BAR,
            '&': TokenType.AMPERSAND,
            '(': TokenType.LPAREN,
            ')': TokenType.RPAREN,
            '{': TokenType.LBRACE,
            '}': TokenType.RBRACE,
            '[': TokenType.LBRACKET,
            ']': TokenType.RBRACKET,
            ',': TokenType.COMMA,
            ':': TokenType.COLON,
            '.': TokenType.DOT,
        }
        if ch in single_char_tokens:
            return self._make_token(single_char_tokens[ch], ch, start)

        raise error_unexpected_character(
            ch, self._span(start), self.get_source_line(start.line)
        )

    def __iter__(self) -> Iterator[Token]:
        """Iterate over tokens."""
        while True:
            if self.at_line_start and self.table_mode and self._table_line_is_raw():
                yield from self._scan_table_line()
                continue
            self.at_line_start = False

            if self._is_at_end():
                yield self._make_token(TokenType.EOF, None, self._location(), "")
                return

            ch = self._peek()
            if ch == '\n':
                self._newline()
            elif ch in ' \t\r\f\v':
                self._advance()
            elif ch == '!':
                self._skip_comment()
            elif ch == '"':
                yield self._scan_string()
            elif ch.isdigit() or (ch == '.' and self._peek(1).isdigit()):
                yield self._scan_number()
            elif _is_word_start(ch):
                yield self._scan_word()
            else:
                yield self._scan_operator()

    def tokenize(self) -> List[Token]:
        """Tokenize the entire source, returning a list of tokens."""
        tokens = list(self)
        logger.debug("tokenized %d tokens from %s", len(tokens), self.filename or "<string>")
        return tokens


def tokenize(source: str, filename: Optional[str] = None,
             diagnostics: Optional[DiagnosticCollector] = None) -> List[Token]:
    """
    Convenience function to tokenize source code.

    Args:
        source: The script text
        filename: Optional filename for error messages
        diagnostics: Optional collector receiving lexer warnings

    Returns:
        List of tokens ending with EOF

    Raises:
        LexerError: If tokenization fails
    """
    return Lexer(source, filename, diagnostics).tokenize()
