"""
goboundcheck command-line driver.
Usage: goboundcheck [-json] [-test=BOOL] [-v] PATTERN...
"""
from __future__ import annotations
import argparse
import json
import logging
import sys
from typing import Optional, Sequence

from analyzer.bounds_checker import ANALYZER_DOC, ANALYZER_NAME, check_package
from analyzer.type_checker import Diagnostic
from parser.package_loader import SourceError, expand_patterns, load_package

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_DIAGNOSTICS = 3


def _parse_bool(value: str) -> bool:
    v = value.strip().lower()
    if v in ("1", "t", "true", "yes"):
        return True
    if v in ("0", "f", "false", "no"):
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean value {value!r}")


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=ANALYZER_NAME,
        description=f"{ANALYZER_NAME}: {ANALYZER_DOC}",
    )
    parser.add_argument("patterns", nargs="+", metavar="PATTERN",
                        help="Go package directories, files, or dir/... patterns")
    parser.add_argument("-json", "--json", dest="json", action="store_true",
                        help="emit JSON output")
    parser.add_argument("-test", "--test", dest="test", type=_parse_bool, default=True, metavar="BOOL",
                        help="indicates whether test files should be analyzed, too (default true)")
    parser.add_argument("-v", "--verbose", dest="verbose", action="store_true",
                        help="log excluded and guarded accesses")
    return parser


def _posn(d: Diagnostic) -> str:
    return f"{d.file}:{d.line}:{d.column}"


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    results: dict[str, list[Diagnostic]] = {}
    try:
        for path in expand_patterns(args.patterns):
            package = load_package(path, include_tests=args.test)
            results[package.directory] = check_package(package)
    except SourceError as e:
        print(f"{ANALYZER_NAME}: {e}", file=sys.stderr)
        return EXIT_FAILURE

    if args.json:
        tree = {
            pkg: {ANALYZER_NAME: [{"posn": _posn(d), "message": d.message} for d in diags]}
            for pkg, diags in results.items() if diags
        }
        print(json.dumps(tree, indent="\t"))
        return EXIT_OK

    count = 0
    for diags in results.values():
        for d in diags:
            print(f"{_posn(d)}: {d.message}", file=sys.stderr)
            count += 1
    log.debug("%d diagnostic(s) reported", count)
    return EXIT_DIAGNOSTICS if count else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
