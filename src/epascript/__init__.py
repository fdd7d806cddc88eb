"""
EPA script engine.

This package provides:
- Lexer: Tokenizes script source, including raw table rows
- Parser: Builds a Program of ASM/GUI/TAB sections from tokens
- Runtime: Evaluates expressions and executes commands against a symbol table
- Session: Runs the first pass and re-derives branches, sub-pictures and the
  proceed predicate after every input

Usage:
    from epascript import open_session

    source = '''
    BEGIN_GUI_DESCR
    USER_INPUT_PARAM DOUBLE LENGTH 100
    IF LENGTH > 50
        SUB_PICTURE "long.gif" 10 20
    END_IF
    END_GUI_DESCR
    '''
    with open_session(source) as session:
        session.set_input("LENGTH", 20)
        print(session.snapshot())
"""

import logging
from importlib.metadata import PackageNotFoundError, version
from typing import Optional

from .tokens import (
    Token,
    TokenType,
    SourceLocation,
    SourceSpan,
    KEYWORDS,
    SCALAR_TYPES,
    TYPE_NAMES,
    OPTIONS,
)

from .errors import (
    ErrorSeverity,
    Diagnostic,
    DiagnosticCollector,
    DslError,
    LexerError,
    ParserError,
    EvaluationError,
    SemanticError,
    RuntimeBindingError,
)

from .lexer import (
    Lexer,
    tokenize,
)

from .ast import (
    AstNode,
    Expression,
    Command,
    SectionKind,
    Block,
    Program,
    print_ast,
    format_expression,
)

from .parser import (
    Parser,
    parse,
    parse_expression,
)

from .symbols import SymbolTable

from .config import (
    ScriptConfig,
    load_config,
)

from .runtime import (
    Variable,
    VariableKind,
    Evaluator,
    Interpreter,
    UIBinder,
    SelectionProvider,
    ModelQuery,
    HeadlessBinder,
    Session,
)

try:
    __version__ = version("epa-script")
except PackageNotFoundError:
    __version__ = "unknown"

logging.getLogger(__name__).addHandler(logging.NullHandler())


def open_session(source: str, filename: Optional[str] = None,
                 binder: Optional[UIBinder] = None,
                 selection: Optional[SelectionProvider] = None,
                 query: Optional[ModelQuery] = None,
                 config: Optional[ScriptConfig] = None) -> Session:
    """
    Parse a script and run its first pass.

    Parse errors are collected in `session.diagnostics`; the malformed
    commands are simply absent. Lexer errors raise LexerError.
    """
    return Session.from_source(source, filename=filename, binder=binder,
                               selection=selection, query=query, config=config)


__all__ = [
    # Tokens
    'Token',
    'TokenType',
    'SourceLocation',
    'SourceSpan',
    'KEYWORDS',
    'SCALAR_TYPES',
    'TYPE_NAMES',
    'OPTIONS',
    # Errors
    'ErrorSeverity',
    'Diagnostic',
    'DiagnosticCollector',
    'DslError',
    'LexerError',
    'ParserError',
    'EvaluationError',
    'SemanticError',
    'RuntimeBindingError',
    # Lexer / Parser
    'Lexer',
    'tokenize',
    'Parser',
    'parse',
    'parse_expression',
    # AST
    'AstNode',
    'Expression',
    'Command',
    'SectionKind',
    'Block',
    'Program',
    'print_ast',
    'format_expression',
    # Runtime
    'SymbolTable',
    'ScriptConfig',
    'load_config',
    'Variable',
    'VariableKind',
    'Evaluator',
    'Interpreter',
    'UIBinder',
    'SelectionProvider',
    'ModelQuery',
    'HeadlessBinder',
    'Session',
    'open_session',
    '__version__',
]
