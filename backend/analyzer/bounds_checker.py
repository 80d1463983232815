"""
Slice and array bounds-check verification.
Reports index and slice expressions that are not enclosed in an if-statement
validating len/cap, a range loop over the container, or a sort.Interface method.
"""
from __future__ import annotations
import logging
from typing import Optional

from tree_sitter import Node

from analyzer.guards import get_container_ident, is_guarded
from analyzer.type_checker import (
    CapabilityOracle,
    DeclarationTypeOracle,
    Diagnostic,
    PackageIndex,
    TypeOracle,
)
from parser.package_loader import Package, SourceFile
from parser.symbol_extractor import column_of, line_of
from parser.tree_walker import walk_accesses

log = logging.getLogger(__name__)

ANALYZER_NAME = "goboundcheck"
ANALYZER_DOC = "Checks that slice and array access is not out of bounds."
DIAGNOSTIC_CODE = "GOBOUNDCHECK"
UNGUARDED_ACCESS_MESSAGE = "Slice or array access is not enclosed in an if-statement that validates capacity!"


class Reporter:
    def __init__(self, current_file: str):
        self.current_file = current_file
        self.diagnostics: list[Diagnostic] = []

    def report(self, node: Node, message: str) -> None:
        self.diagnostics.append(Diagnostic(
            file=self.current_file,
            line=line_of(node),
            column=column_of(node),
            severity="WARNING",
            code=DIAGNOSTIC_CODE,
            message=message,
        ))


def check_slice_bounds(
    source_file: SourceFile,
    type_oracle: TypeOracle,
    capability_oracle: CapabilityOracle,
) -> list[Diagnostic]:
    reporter = Reporter(source_file.path)
    for access, ancestors in walk_accesses(source_file.root):
        ident = get_container_ident(access, type_oracle)
        if ident is None:
            continue
        if not is_guarded(access, ident, ancestors, capability_oracle):
            reporter.report(access, UNGUARDED_ACCESS_MESSAGE)
    return reporter.diagnostics


def check_package(package: Package, index: Optional[PackageIndex] = None) -> list[Diagnostic]:
    """Run the check over every file of ``package``; diagnostics come in file then document order."""
    if index is None:
        index = PackageIndex.from_files(package.files)
    oracle = DeclarationTypeOracle(index)
    diagnostics: list[Diagnostic] = []
    for source_file in package.files:
        diagnostics.extend(check_slice_bounds(source_file, oracle, index))
    log.info("Checked package %s: %d file(s), %d diagnostic(s)", package.name, len(package.files), len(diagnostics))
    return diagnostics
