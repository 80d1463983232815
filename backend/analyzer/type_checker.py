"""
Declaration-based type information for Go sources.
Classifies expressions as slice / array / map / other and answers method
signature queries for named types, using only the declarations of the package.
"""
from __future__ import annotations
import enum
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol, Sequence

from tree_sitter import Node

from parser.package_loader import SourceFile
from parser.symbol_extractor import (
    Symbol, extract_symbols_from_tree, node_text, result_type_nodes, unparen, var_specs,
)

log = logging.getLogger(__name__)

MAX_RESOLVE_DEPTH = 32

PREDECLARED_TYPES = {
    "any", "bool", "byte", "comparable", "complex64", "complex128", "error",
    "float32", "float64", "int", "int8", "int16", "int32", "int64", "rune",
    "string", "uint", "uint8", "uint16", "uint32", "uint64", "uintptr",
}

_STATEMENT_LIST_TYPES = (
    "block", "statement_list", "expression_case", "default_case", "type_case", "communication_case",
)
_FUNCTION_TYPES = ("function_declaration", "method_declaration", "func_literal")
_PARAMETER_TYPES = ("parameter_declaration", "variadic_parameter_declaration")


@dataclass
class Diagnostic:
    file: str
    line: int
    severity: str  # ERROR, WARNING
    message: str
    code: str = ""
    column: int = 0


class TypeClass(enum.Enum):
    SLICE = "slice"
    ARRAY = "array"
    MAP = "map"
    OTHER = "other"


_CONTAINER_CLASSES = (TypeClass.SLICE, TypeClass.ARRAY, TypeClass.MAP)


@dataclass(frozen=True)
class TypeInfo:
    """Underlying type class of an expression, with the element and key types it yields when indexed."""
    type_class: TypeClass
    element: Optional[Node] = field(default=None, compare=False)
    key: Optional[Node] = field(default=None, compare=False)


class TypeOracle(Protocol):
    def classify(self, expr: Node) -> Optional[TypeClass]:
        """Underlying type class of ``expr``, or None when it is not known."""
        ...


class CapabilityOracle(Protocol):
    def has_method(self, type_name: str, method: str, params: Sequence[str], results: Sequence[str]) -> bool:
        ...


def _args(call: Node) -> list[Node]:
    args = call.child_by_field_name("arguments")
    if args is None:
        return []
    return [a for a in args.named_children if a.type != "comment"]


class PackageIndex:
    """Package-level declarations of every file in a package."""

    def __init__(self, symbols: Iterable[Symbol]):
        self.types: dict[str, Symbol] = {}
        self.variables: dict[str, Symbol] = {}
        self.functions: dict[str, Symbol] = {}
        self.methods: dict[str, list[Symbol]] = defaultdict(list)
        for s in symbols:
            if s.kind == "type":
                self.types.setdefault(s.name, s)
            elif s.kind in ("variable", "constant"):
                self.variables.setdefault(s.name, s)
            elif s.kind == "function":
                self.functions.setdefault(s.name, s)
            elif s.kind == "method" and s.scope:
                self.methods[s.scope].append(s)

    @classmethod
    def from_files(cls, files: Iterable[SourceFile]) -> "PackageIndex":
        symbols: list[Symbol] = []
        for f in files:
            symbols.extend(extract_symbols_from_tree(f.root, f.path))
        return cls(symbols)

    def has_method(self, type_name: str, method: str, params: Sequence[str], results: Sequence[str]) -> bool:
        for m in self.methods.get(type_name, []):
            if m.name != method:
                continue
            if [p.get("type") for p in m.params] == list(params) and m.results == list(results):
                return True
        return False


class DeclarationTypeOracle:
    """
    Resolves identifiers lexically (enclosing statement lists, initializers,
    range clauses, parameters, then package variables) and derives the type of
    the nearest declaration. Indexing, slicing and ranging follow the element
    and key types of the container, and multi-value assignments take the
    matching result of a package function.
    """

    def __init__(self, index: PackageIndex):
        self.index = index

    def classify(self, expr: Node, _depth: int = 0) -> Optional[TypeClass]:
        info = self.type_of(expr, _depth)
        return info.type_class if info is not None else None

    def classify_type(self, type_node: Optional[Node]) -> Optional[TypeClass]:
        info = self.underlying(type_node)
        return info.type_class if info is not None else None

    def type_of(self, expr: Optional[Node], _depth: int = 0) -> Optional[TypeInfo]:
        if expr is None or _depth > MAX_RESOLVE_DEPTH:
            return None
        t = expr.type
        if t == "identifier":
            return self._resolve(expr, _depth)
        if t == "parenthesized_expression":
            inner = [c for c in expr.named_children if c.type != "comment"]
            return self.type_of(inner[0], _depth + 1) if inner else None
        if t in ("interpreted_string_literal", "raw_string_literal"):
            return TypeInfo(TypeClass.OTHER)
        if t in ("composite_literal", "type_conversion_expression", "type_assertion_expression"):
            return self.underlying(expr.child_by_field_name("type"))
        if t == "slice_expression":
            operand = self.type_of(expr.child_by_field_name("operand"), _depth + 1)
            if operand is None:
                return None
            if operand.type_class in (TypeClass.SLICE, TypeClass.ARRAY):
                return TypeInfo(TypeClass.SLICE, element=operand.element)
            return TypeInfo(TypeClass.OTHER)
        if t == "index_expression":
            container = self.type_of(expr.child_by_field_name("operand"), _depth + 1)
            if container is None:
                return None
            if container.type_class in _CONTAINER_CLASSES:
                return self.underlying(container.element)
            return TypeInfo(TypeClass.OTHER)
        if t == "call_expression":
            return self._call_type(expr, _depth)
        return None

    def underlying(self, type_node: Optional[Node], _seen: Optional[set[str]] = None) -> Optional[TypeInfo]:
        """Underlying type of a type expression, resolving named types of the package."""
        if type_node is None:
            return None
        t = type_node.type
        if t == "slice_type":
            return TypeInfo(TypeClass.SLICE, element=type_node.child_by_field_name("element"))
        if t in ("array_type", "implicit_length_array_type"):
            return TypeInfo(TypeClass.ARRAY, element=type_node.child_by_field_name("element"))
        if t == "map_type":
            return TypeInfo(TypeClass.MAP, element=type_node.child_by_field_name("value"),
                            key=type_node.child_by_field_name("key"))
        if t == "parenthesized_type":
            return self.underlying(type_node.named_children[0], _seen) if type_node.named_children else None
        if t == "generic_type":
            return self.underlying(type_node.child_by_field_name("type"), _seen)
        if t == "qualified_type":
            return None  # declared in another package
        if t in ("type_identifier", "identifier"):
            return self._named(node_text(type_node), _seen or set())
        return TypeInfo(TypeClass.OTHER)

    def _named(self, name: str, seen: set[str]) -> Optional[TypeInfo]:
        decl = self.index.types.get(name)
        if decl is None:
            return TypeInfo(TypeClass.OTHER) if name in PREDECLARED_TYPES else None
        if name in seen:
            return None
        seen.add(name)
        return self.underlying(decl.type_node, seen)

    def _call_type(self, call: Node, depth: int) -> Optional[TypeInfo]:
        fn = call.child_by_field_name("function")
        args = _args(call)
        if fn is None:
            return None
        if fn.type != "identifier":
            # Conversions such as ([]byte)(s) or []T(x)
            if fn.type in ("slice_type", "array_type", "map_type", "parenthesized_type", "generic_type"):
                return self.underlying(fn)
            return None
        name = node_text(fn)
        if name == "make":
            return self.underlying(args[0]) if args else None
        if name == "new":
            return TypeInfo(TypeClass.OTHER)
        if name == "append":
            return self.type_of(args[0], depth + 1) if args else None
        if name in ("len", "cap", "copy"):
            return TypeInfo(TypeClass.OTHER)
        if name in self.index.types:
            return self._named(name, set())
        func = self.index.functions.get(name)
        if func is not None:
            results = result_type_nodes(func.type_node)
            if len(results) == 1:
                return self.underlying(results[0])
        return None

    def _multi_value(self, value: Node, position: int, depth: int) -> Optional[TypeInfo]:
        """Type of the ``position``-th target of ``a, b := value``."""
        value = unparen(value)
        if value is None:
            return None
        if value.type == "call_expression":
            fn = value.child_by_field_name("function")
            func = self.index.functions.get(node_text(fn)) if fn is not None and fn.type == "identifier" else None
            if func is None:
                return None
            results = result_type_nodes(func.type_node)
            return self.underlying(results[position]) if position < len(results) else None
        # v, ok := m[k] / x.(T) / <-ch
        if value.type in ("index_expression", "type_assertion_expression", "unary_expression"):
            if position == 1:
                return TypeInfo(TypeClass.OTHER)
            if position == 0 and value.type != "unary_expression":
                return self.type_of(value, depth + 1)
        return None

    def _assigned(self, values: Sequence[Node], position: int, count: int, depth: int) -> Optional[TypeInfo]:
        if len(values) == count:
            return self.type_of(values[position], depth + 1)
        if len(values) == 1:
            return self._multi_value(values[0], position, depth)
        return None

    def _range_binding(self, clause: Node, position: int, depth: int) -> Optional[TypeInfo]:
        container = self.type_of(clause.child_by_field_name("right"), depth + 1)
        if container is None:
            return None
        if position == 0:
            if container.type_class == TypeClass.MAP:
                return self.underlying(container.key)
            if container.type_class in (TypeClass.SLICE, TypeClass.ARRAY):
                return TypeInfo(TypeClass.OTHER)
            return None
        if container.type_class in _CONTAINER_CLASSES:
            return self.underlying(container.element)
        return None

    def _resolve(self, ident: Node, depth: int) -> Optional[TypeInfo]:
        name = node_text(ident)
        child, scope = ident, ident.parent
        while scope is not None:
            found, info = self._lookup(scope, child, name, depth)
            if found:
                return info
            child, scope = scope, scope.parent

        sym = self.index.variables.get(name)
        if sym is None:
            log.debug("No declaration found for %s", name)
            return None
        if sym.kind == "constant":
            return TypeInfo(TypeClass.OTHER)
        if sym.type_node is not None:
            return self.underlying(sym.type_node)
        if sym.value_node is not None:
            if sym.value_index is not None:
                return self._multi_value(sym.value_node, sym.value_index, depth)
            return self.type_of(sym.value_node, depth + 1)
        return None

    def _lookup(self, scope: Node, child: Node, name: str, depth: int) -> tuple[bool, Optional[TypeInfo]]:
        t = scope.type
        if t in _STATEMENT_LIST_TYPES:
            for stmt in reversed(scope.named_children):
                if stmt.start_byte >= child.start_byte:
                    continue
                found, info = self._statement_binding(stmt, name, depth)
                if found:
                    return found, info
            return False, None

        if t in ("if_statement", "expression_switch_statement", "type_switch_statement", "for_clause"):
            if t == "type_switch_statement":
                alias = scope.child_by_field_name("alias")
                if alias is not None and alias.end_byte <= child.start_byte:
                    if name in (node_text(a) for a in alias.named_children):
                        return True, None
            init = scope.child_by_field_name("initializer")
            if init is not None and init.end_byte <= child.start_byte:
                return self._statement_binding(init, name, depth)
            return False, None

        if t == "for_statement":
            for clause in scope.named_children:
                if clause.end_byte > child.start_byte:
                    continue
                if clause.type == "range_clause":
                    left = clause.child_by_field_name("left")
                    declares = any(c.type == ":=" for c in clause.children)
                    if left is None or not declares:
                        continue
                    targets = [node_text(c) for c in left.named_children]
                    if name in targets:
                        return True, self._range_binding(clause, targets.index(name), depth)
                elif clause.type == "for_clause":
                    init = clause.child_by_field_name("initializer")
                    if init is not None:
                        return self._statement_binding(init, name, depth)
            return False, None

        if t in _FUNCTION_TYPES:
            for field_name in ("parameters", "receiver", "result"):
                params = scope.child_by_field_name(field_name)
                if params is None or params.type != "parameter_list":
                    continue
                for decl in params.named_children:
                    if decl.type not in _PARAMETER_TYPES:
                        continue
                    if name not in (node_text(n) for n in decl.children_by_field_name("name")):
                        continue
                    if decl.type == "variadic_parameter_declaration":
                        return True, TypeInfo(TypeClass.SLICE, element=decl.child_by_field_name("type"))
                    return True, self.underlying(decl.child_by_field_name("type"))
        return False, None

    def _statement_binding(self, stmt: Node, name: str, depth: int) -> tuple[bool, Optional[TypeInfo]]:
        if stmt.type == "short_var_declaration":
            left = stmt.child_by_field_name("left")
            right = stmt.child_by_field_name("right")
            targets = left.named_children if left is not None else []
            values = right.named_children if right is not None else []
            for i, target in enumerate(targets):
                if target.type == "identifier" and node_text(target) == name:
                    return True, self._assigned(values, i, len(targets), depth)
            return False, None

        if stmt.type in ("var_declaration", "const_declaration"):
            for spec in reversed(var_specs(stmt)):
                names = [node_text(n) for n in spec.children_by_field_name("name")]
                if name not in names:
                    continue
                if stmt.type == "const_declaration":
                    return True, TypeInfo(TypeClass.OTHER)
                type_node = spec.child_by_field_name("type")
                if type_node is not None:
                    return True, self.underlying(type_node)
                value_list = spec.child_by_field_name("value")
                values = value_list.named_children if value_list is not None else []
                return True, self._assigned(values, names.index(name), len(names), depth)
        return False, None
