#!/usr/bin/env python3
"""pixflake — evaluate flake manifests."""

import argparse
import json
import logging
import sys
from pathlib import Path

from pixflake.constants import SELF_KEY, default_system
from pixflake.errors import FlakeError, MissingAttributeError
from pixflake.evaluator import evaluate_path
from pixflake.lazy import MISSING, AttrSetView


def parse_installable(text):
    """Split ``path#attr.path`` into the flake path and attribute names.

    ``.#packages.hello`` -> (".", ["packages", "hello"]); ``#x`` -> (".", ["x"]);
    a plain path selects the whole flake.
    """
    path, _, attr = text.partition("#")
    return path or ".", [part for part in attr.split(".") if part]


def select(value, attr_path):
    seen = []
    for name in attr_path:
        if isinstance(value, AttrSetView) or hasattr(value, "keys"):
            try:
                value = value[name]
            except KeyError:
                raise MissingAttributeError(name, ".".join(seen) or "flake") from None
        else:
            value = getattr(value, name, MISSING)
            if value is MISSING:
                raise MissingAttributeError(name, ".".join(seen) or "flake")
        seen.append(name)
    return value


def to_json(value, _stack=()):
    """Convert an evaluated value into JSON-compatible data."""
    if id(value) in _stack:
        return "«repeated»"
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Path):
        return str(value)
    stack = _stack + (id(value),)
    if isinstance(value, AttrSetView) or hasattr(value, "keys"):
        return {str(k): to_json(value[k], stack) for k in value.keys() if k != SELF_KEY}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_json(v, stack) for v in value]
    if callable(value):
        return f"«function {getattr(value, '__qualname__', type(value).__name__)}»"
    return str(value)


def format_error(exc):
    where = f" [{exc.source}]" if exc.source else ""
    section = f" ({exc.section})" if exc.section else ""
    return f"error: {exc.kind}{where}{section}: {exc.msg}"


def cmd_eval(args):
    path, attr_path = parse_installable(args.installable)
    flake = evaluate_path(path, args.system)
    value = select(flake, attr_path)
    if args.json or not isinstance(value, str):
        json.dump(to_json(value), sys.stdout, indent=2)
        print()
    else:
        print(value)


def cmd_show(args):
    flake = evaluate_path(args.path, args.system)
    print(f"{args.path}: {flake.description or '(no description)'}")
    for name in flake.keys():
        if name in (SELF_KEY, "description"):
            continue
        value = flake[name]
        if isinstance(value, AttrSetView) or hasattr(value, "keys"):
            children = list(value.keys())
            print(f"├── {name}")
            for i, child in enumerate(children):
                branch = "└──" if i == len(children) - 1 else "├──"
                print(f"│   {branch} {child}")
        else:
            print(f"├── {name}: {to_json(value)}")


def main(argv=None):
    parser = argparse.ArgumentParser(prog="pixflake", description="Evaluate flake manifests")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log evaluation steps")
    sub = parser.add_subparsers(dest="command")

    system_help = "Target system identifier (default: $PIXFLAKE_SYSTEM or the host system)"

    # eval
    p = sub.add_parser("eval", help="Evaluate a flake attribute")
    p.add_argument("installable", nargs="?", default=".", help="path#attr.path, e.g. .#packages.hello")
    p.add_argument("--system", default=default_system(), help=system_help)
    p.add_argument("--json", action="store_true", help="Always print JSON")
    p.set_defaults(func=cmd_eval)

    # show
    p = sub.add_parser("show", help="Show the sections and outputs of a flake")
    p.add_argument("path", nargs="?", default=".")
    p.add_argument("--system", default=default_system(), help=system_help)
    p.set_defaults(func=cmd_show)

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        sys.exit(1)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    try:
        args.func(args)
    except FlakeError as exc:
        print(format_error(exc), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
