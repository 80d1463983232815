"""
Go package loading.
Reads and parses Go source files and groups them into packages; expands
``dir/...`` patterns the way the Go tool does.
"""
from __future__ import annotations
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from tree_sitter import Node, Tree

from parser.symbol_extractor import column_of, get_parser, line_of, node_text

log = logging.getLogger(__name__)

SKIP_DIRS = {"testdata", "vendor", "node_modules", ".git"}


class SourceError(Exception):
    """A Go source file could not be read or parsed."""

    def __init__(self, path: str, message: str, line: int = 0, column: int = 0):
        self.path = path
        self.message = message
        self.line = line
        self.column = column
        location = f"{path}:{line}:{column}" if line else path
        super().__init__(f"{location}: {message}")


@dataclass
class SourceFile:
    path: str
    source: bytes
    tree: Tree
    package_name: str = ""

    @property
    def root(self) -> Node:
        return self.tree.root_node


@dataclass
class Package:
    name: str
    directory: str
    files: list[SourceFile] = field(default_factory=list)


def _first_error(root: Node) -> Optional[Node]:
    pending = [root]
    while pending:
        node = pending.pop()
        if node.type == "ERROR" or node.is_missing:
            return node
        if node.has_error:
            pending.extend(reversed(node.children))
    return None


def _package_name(root: Node) -> str:
    for c in root.named_children:
        if c.type == "package_clause":
            for sub in c.named_children:
                if sub.type == "package_identifier":
                    return node_text(sub)
    return ""


def parse_go_source(source: bytes, file_path: str) -> SourceFile:
    tree = get_parser().parse(source)
    if tree.root_node.has_error:
        bad = _first_error(tree.root_node) or tree.root_node
        if bad.is_missing:
            message = f"syntax error: missing {bad.type}"
        else:
            message = "syntax error"
        raise SourceError(file_path, message, line_of(bad), column_of(bad))
    return SourceFile(path=file_path, source=source, tree=tree, package_name=_package_name(tree.root_node))


def _read_source(path: Path) -> SourceFile:
    try:
        source = path.read_bytes()
    except OSError as e:
        raise SourceError(str(path), f"cannot read file: {e.strerror or e}") from e
    return parse_go_source(source, str(path))


def _go_files(directory: Path, include_tests: bool) -> list[Path]:
    files = sorted(p for p in directory.iterdir() if p.is_file() and p.suffix == ".go")
    if not include_tests:
        files = [p for p in files if not p.name.endswith("_test.go")]
    return files


def load_package(path: str | os.PathLike, include_tests: bool = True) -> Package:
    """Load a package from a directory, or a single-file package from a ``.go`` file."""
    p = Path(path)
    if p.is_file():
        paths = [p]
        directory = p.parent
    elif p.is_dir():
        paths = _go_files(p, include_tests)
        directory = p
    else:
        raise SourceError(str(p), "no such file or directory")
    if not paths:
        raise SourceError(str(p), "no Go files in directory")

    files = [_read_source(fp) for fp in paths]
    # External test packages (package foo_test) share the directory but not the package.
    names = [f.package_name for f in files if f.package_name and not f.package_name.endswith("_test")]
    name = names[0] if names else (files[0].package_name or directory.name)
    log.debug("Loaded package %s from %s (%d file(s))", name, directory, len(files))
    return Package(name=name, directory=str(directory), files=files)


def _skip_dir(name: str) -> bool:
    return name in SKIP_DIRS or name.startswith((".", "_"))


def pattern_base(pattern: str) -> Optional[str]:
    """Directory walked by a ``dir/...`` pattern, or None for a plain package path."""
    if pattern != "..." and not pattern.endswith("/..."):
        return None
    base = pattern[: -len("...")].rstrip("/")
    if base:
        return base
    return "/" if pattern.startswith("/") else "."


def expand_patterns(patterns: Iterable[str]) -> list[str]:
    """Expand package patterns into package paths; ``dir/...`` walks subdirectories."""
    paths: list[str] = []
    for pattern in patterns:
        base = pattern_base(pattern)
        if base is not None:
            if not Path(base).is_dir():
                raise SourceError(base, "no such directory")
            for root, dirs, files in os.walk(base):
                dirs[:] = sorted(d for d in dirs if not _skip_dir(d))
                if any(f.endswith(".go") for f in files):
                    paths.append(root)
        else:
            paths.append(pattern)
    return paths
