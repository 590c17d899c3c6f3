"""
Command-line inspection of state files.

    python -m statefile show state.json
    python -m statefile check state.json
    python -m statefile set state.json bar=20 foo='"text"'
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from typing import Any, List, Optional, Tuple

import orjson

from statefile.codec import JsonCodec
from statefile.config import PersistMode, StateFileConfig
from statefile.errors import InvalidStateError, StateFileError
from statefile.logging_cfg import build_logger
from statefile.store import StateFile

EXIT_OK = 0
EXIT_IO = 1
EXIT_INVALID = 2


def _empty_document() -> Any:
    return {}


def parse_assignment(raw: str) -> Tuple[str, Any]:
    """KEY=VALUE; VALUE is parsed as JSON, falling back to a plain string."""
    key, sep, value = raw.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {raw!r}")
    try:
        return key, orjson.loads(value)
    except orjson.JSONDecodeError:
        return key, value


def _open(path: str, config: StateFileConfig) -> StateFile[Any]:
    return StateFile.open(
        path, _empty_document, codec=JsonCodec(_empty_document, pretty=True), config=config
    )


def cmd_show(args: argparse.Namespace, config: StateFileConfig) -> int:
    state = _open(args.path, config)
    print(state.codec.encode(state.read()).decode("utf-8"))
    return EXIT_OK


def cmd_check(args: argparse.Namespace, config: StateFileConfig) -> int:
    _open(args.path, config)
    print(f"{args.path}: ok")
    return EXIT_OK


def cmd_set(args: argparse.Namespace, config: StateFileConfig) -> int:
    state = _open(args.path, config)
    if not isinstance(state.read(), dict):
        print(f"{args.path}: top-level document is not an object", file=sys.stderr)
        return EXIT_INVALID
    with state.write() as guard:
        for key, value in args.assignments:
            guard[key] = value
    print(f"{args.path}: updated {', '.join(k for k, _ in args.assignments)}")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="statefile", description="Inspect and edit state files")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log persistence events")
    parser.add_argument("--log-file", default=None, help="Also write JSON log lines to this file")
    sub = parser.add_subparsers(dest="command", required=True)

    show = sub.add_parser("show", help="Print the decoded document")
    show.add_argument("path")
    show.set_defaults(func=cmd_show)

    check = sub.add_parser("check", help="Verify the file decodes")
    check.add_argument("path")
    check.set_defaults(func=cmd_check)

    set_ = sub.add_parser("set", help="Update top-level keys of an object document")
    set_.add_argument("path")
    set_.add_argument("assignments", nargs="+", type=parse_assignment, metavar="KEY=VALUE")
    set_.set_defaults(func=cmd_set)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    build_logger(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        file_path=args.log_file,
    )
    # the CLI is short-lived; writes must land before it exits
    config = dataclasses.replace(StateFileConfig.load(), persist_mode=PersistMode.SYNC)
    try:
        return args.func(args, config)
    except InvalidStateError as exc:
        print(f"{args.path}: invalid state: {exc}", file=sys.stderr)
        return EXIT_INVALID
    except StateFileError as exc:
        print(f"{args.path}: {exc}", file=sys.stderr)
        return EXIT_IO
