#!/usr/bin/env python3
"""
CLI for the EPA script engine.

Usage:
    python -m epascript check FILE.epa [--json]
    python -m epascript tokens FILE.epa
    python -m epascript ast FILE.epa
    python -m epascript run FILE.epa [--set NAME=VALUE ...] [--select NAME=H1,H2 ...] [--row TABLE=N ...]

Examples:
    # Report lexer and parser diagnostics
    python -m epascript check bracket.epa

    # Run headless with two inputs and print the final state
    python -m epascript run bracket.epa --set LENGTH=120 --set HOLES=1
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional, Tuple


def parse_assignment(text: str) -> Tuple[str, Any]:
    """Parse 'name=value' into (name, typed_value)."""
    if '=' not in text:
        raise ValueError(f"Invalid assignment: {text} (expected name=value)")

    name, value_str = text.split('=', 1)
    name = name.strip()
    value_str = value_str.strip()

    if value_str.lower() == 'true':
        return (name, True)
    elif value_str.lower() == 'false':
        return (name, False)

    try:
        return (name, int(value_str))
    except ValueError:
        pass

    try:
        return (name, float(value_str))
    except ValueError:
        pass

    # Strip quotes if present
    if (value_str.startswith('"') and value_str.endswith('"')) or \
       (value_str.startswith("'") and value_str.endswith("'")):
        value_str = value_str[1:-1]

    return (name, value_str)


def _read_source(path_text: str) -> Optional[str]:
    source_path = Path(path_text)
    if not source_path.exists():
        print(f"Error: File not found: {source_path}", file=sys.stderr)
        return None
    return source_path.read_text(encoding='utf-8')


def _load_settings(args):
    from .config import load_config

    config = load_config(args.config)
    if args.log_level:
        config = config.with_overrides(log_level=args.log_level.upper())
    logging.basicConfig(level=config.log_level, format='%(levelname)s %(name)s: %(message)s')
    return config


def cmd_check(args):
    """Check a script for lexer and parser errors."""
    from . import tokenize, parse
    from .errors import DiagnosticCollector, DslError

    source = _read_source(args.file)
    if source is None:
        return 1
    config = _load_settings(args)

    diagnostics = DiagnosticCollector(config.max_errors)
    try:
        tokens = tokenize(source, args.file, diagnostics)
    except DslError as e:
        diagnostics.add_error(e)
        program = None
    else:
        program = parse(tokens, filename=args.file, source=source,
                        diagnostics=diagnostics, table_height=config.table_height)

    if args.json:
        print(json.dumps(diagnostics.to_json(), indent=2))
        return 1 if diagnostics.has_errors else 0

    if diagnostics.diagnostics:
        print(diagnostics.format_all())
    if diagnostics.has_errors:
        return 1

    count = sum(len(block.commands) for block in program.blocks)
    print(f"OK: {Path(args.file).name} - {len(program.blocks)} section(s), {count} command(s)")
    if diagnostics.has_warnings:
        print(f"  {diagnostics.warning_count} warning(s)")
    return 0


def cmd_tokens(args):
    """Print the token stream of a script."""
    from . import tokenize
    from .errors import DslError

    source = _read_source(args.file)
    if source is None:
        return 1
    _load_settings(args)

    try:
        tokens = tokenize(source, args.file)
    except DslError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    for token in tokens:
        print(f"{token.line:4d}:{token.column:<3d} {token}")
    return 0


def cmd_ast(args):
    """Print the parsed tree of a script."""
    from . import tokenize, parse
    from .ast import print_ast
    from .errors import DiagnosticCollector, DslError

    source = _read_source(args.file)
    if source is None:
        return 1
    config = _load_settings(args)

    diagnostics = DiagnosticCollector(config.max_errors)
    try:
        program = parse(tokenize(source, args.file, diagnostics), filename=args.file,
                        source=source, diagnostics=diagnostics, table_height=config.table_height)
    except DslError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print_ast(program)
    if diagnostics.diagnostics:
        print(diagnostics.format_all(), file=sys.stderr)
    return 1 if diagnostics.has_errors else 0


def _split_handles(text: str) -> Tuple[str, List[str]]:
    if '=' not in text:
        raise ValueError(f"Invalid selection: {text} (expected name=handle[,handle...])")
    name, handles = text.split('=', 1)
    return name.strip(), [h.strip() for h in handles.split(',') if h.strip()]


def cmd_run(args):
    """Run a script headless, applying inputs in order."""
    from . import open_session
    from .errors import DslError

    source = _read_source(args.file)
    if source is None:
        return 1
    config = _load_settings(args)

    try:
        inputs = [parse_assignment(text) for text in args.set or []]
        selections = [_split_handles(text) for text in args.select or []]
        rows = [parse_assignment(text) for text in args.row or []]
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        session = open_session(source, filename=args.file, config=config)
    except DslError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    with session:
        for name, value in inputs:
            session.set_input(name, value)
        for name, handles in selections:
            session.complete_selection(name, handles)
        for table_id, index in rows:
            if not isinstance(index, int):
                print(f"Error: row index for {table_id} must be an integer", file=sys.stderr)
                return 1
            session.select_table_row(table_id, index)

        state = session.snapshot()
        if session.diagnostics.diagnostics:
            print(session.diagnostics.format_all(), file=sys.stderr)

    if args.json:
        print(json.dumps(state, indent=2, default=str))
    else:
        for name, value in state["variables"].items():
            print(f"{name} = {value!r}")
        for filename, x, y in state["sub_pictures"]:
            print(f"SUB_PICTURE {filename} at ({x}, {y})")
        for if_id, branch in state["branches"].items():
            print(f"IF #{if_id}: {'inactive' if branch is None else branch}")
        print(f"may_proceed: {state['may_proceed']}")

    return 1 if session.diagnostics.has_errors else 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog='python -m epascript',
        description='EPA script checker and headless runner',
    )
    parser.add_argument('--config', metavar='FILE', help='YAML settings file')
    parser.add_argument('--log-level', choices=['debug', 'info', 'warning', 'error'],
                        help='Override the configured log level')

    subparsers = parser.add_subparsers(dest='action', required=True)

    # check command
    check_parser = subparsers.add_parser('check', help='Check a script for errors')
    check_parser.add_argument('file', help='Script source file')
    check_parser.add_argument('--json', action='store_true', help='Print diagnostics as JSON')

    # tokens command
    tokens_parser = subparsers.add_parser('tokens', help='Print the token stream')
    tokens_parser.add_argument('file', help='Script source file')

    # ast command
    ast_parser = subparsers.add_parser('ast', help='Print the parse tree')
    ast_parser.add_argument('file', help='Script source file')

    # run command
    run_parser = subparsers.add_parser('run', help='Run a script headless')
    run_parser.add_argument('file', help='Script source file')
    run_parser.add_argument('-s', '--set', action='append', metavar='NAME=VALUE',
                            help='Input value (can be repeated)')
    run_parser.add_argument('--select', action='append', metavar='NAME=H1,H2',
                            help='Hand references to a USER_SELECT (can be repeated)')
    run_parser.add_argument('--row', action='append', metavar='TABLE=INDEX',
                            help='Select a table row (can be repeated)')
    run_parser.add_argument('--json', action='store_true', help='Print the final state as JSON')

    args = parser.parse_args(argv)

    if args.action == 'check':
        return cmd_check(args)
    elif args.action == 'tokens':
        return cmd_tokens(args)
    elif args.action == 'ast':
        return cmd_ast(args)
    elif args.action == 'run':
        return cmd_run(args)
    else:
        parser.print_help()
        return 1


if __name__ == '__main__':
    sys.exit(main())
