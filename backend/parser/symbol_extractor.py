"""
Go declaration extraction using Tree-sitter.
Extracts package-level types, methods, functions, variables and constants with
metadata (name, type, file, line, receiver scope, parameter/result types).
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Optional

import tree_sitter_go
from tree_sitter import Language, Parser, Node

GO_LANGUAGE = Language(tree_sitter_go.language())


@dataclass
class Symbol:
    name: str
    kind: str  # type, method, function, variable, constant
    type: Optional[str] = None
    file_path: str = ""
    line: int = 0
    scope: str = ""  # receiver type name for methods
    params: list[dict[str, Any]] = field(default_factory=list)
    results: list[str] = field(default_factory=list)
    # Syntax nodes backing the declaration, used by the type oracle.
    type_node: Optional[Node] = field(default=None, repr=False, compare=False)
    value_node: Optional[Node] = field(default=None, repr=False, compare=False)
    # Set when one multi-value expression initializes several names: `var a, b = f()`.
    value_index: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "kind": self.kind,
            "type": self.type,
            "file_path": self.file_path,
            "line": self.line,
            "scope": self.scope,
            "params": self.params,
            "results": self.results,
        }


def get_parser() -> Parser:
    return Parser(GO_LANGUAGE)


def node_text(node: Node) -> str:
    return node.text.decode("utf-8", errors="replace")


def line_of(node: Node) -> int:
    return node.start_point[0] + 1


def column_of(node: Node) -> int:
    return node.start_point[1] + 1


def unparen(node: Optional[Node]) -> Optional[Node]:
    while node is not None and node.type == "parenthesized_expression":
        inner = [c for c in node.named_children if c.type != "comment"]
        node = inner[0] if inner else None
    return node


def receiver_type_name(type_node: Optional[Node]) -> Optional[str]:
    """Name of the named type behind a receiver type, e.g. ``*List[T]`` -> ``List``."""
    while type_node is not None:
        if type_node.type == "type_identifier":
            return node_text(type_node)
        if type_node.type in ("pointer_type", "parenthesized_type"):
            type_node = type_node.named_children[0] if type_node.named_children else None
        elif type_node.type == "generic_type":
            type_node = type_node.child_by_field_name("type")
        else:
            return None
    return None


def parameter_names(params_node: Optional[Node]) -> list[str]:
    names: list[str] = []
    if params_node is None:
        return names
    for decl in params_node.named_children:
        if decl.type in ("parameter_declaration", "variadic_parameter_declaration"):
            names.extend(node_text(n) for n in decl.children_by_field_name("name"))
    return names


def parameter_types(params_node: Optional[Node]) -> list[str]:
    """Flattened parameter type texts; ``(i, j int)`` gives ``["int", "int"]``."""
    types: list[str] = []
    if params_node is None:
        return types
    for decl in params_node.named_children:
        if decl.type not in ("parameter_declaration", "variadic_parameter_declaration"):
            continue
        type_node = decl.child_by_field_name("type")
        type_str = node_text(type_node) if type_node is not None else ""
        if decl.type == "variadic_parameter_declaration":
            type_str = "..." + type_str
        count = len(decl.children_by_field_name("name")) or 1
        types.extend([type_str] * count)
    return types


def result_types(result_node: Optional[Node]) -> list[str]:
    if result_node is None:
        return []
    if result_node.type == "parameter_list":
        return parameter_types(result_node)
    return [node_text(result_node)]


def result_type_nodes(result_node: Optional[Node]) -> list[Node]:
    """One type node per result; ``(a, b int, err error)`` gives three nodes."""
    if result_node is None:
        return []
    if result_node.type != "parameter_list":
        return [result_node]
    nodes: list[Node] = []
    for decl in result_node.named_children:
        if decl.type != "parameter_declaration":
            continue
        type_node = decl.child_by_field_name("type")
        nodes.extend([type_node] * (len(decl.children_by_field_name("name")) or 1))
    return nodes


def var_specs(decl: Node) -> list[Node]:
    specs: list[Node] = []
    for c in decl.named_children:
        if c.type in ("var_spec", "const_spec"):
            specs.append(c)
        elif c.type in ("var_spec_list", "const_spec_list"):
            specs.extend(s for s in c.named_children if s.type in ("var_spec", "const_spec"))
    return specs


def _type_specs(decl: Node) -> list[Node]:
    return [c for c in decl.named_children if c.type in ("type_spec", "type_alias")]


def _spec_symbols(spec: Node, kind: str, file_path: str) -> list[Symbol]:
    symbols: list[Symbol] = []
    names = spec.children_by_field_name("name")
    type_node = spec.child_by_field_name("type")
    value_list = spec.child_by_field_name("value")
    values = value_list.named_children if value_list is not None else []
    shared = len(values) == 1 and len(names) > 1
    for i, name_node in enumerate(names):
        value = values[0] if shared else values[i] if len(values) == len(names) else None
        symbols.append(Symbol(
            name=node_text(name_node), kind=kind,
            type=node_text(type_node) if type_node is not None else None,
            file_path=file_path, line=line_of(spec),
            type_node=type_node, value_node=value, value_index=i if shared else None,
        ))
    return symbols


def extract_symbols_from_tree(root: Node, file_path: str) -> list[Symbol]:
    symbols: list[Symbol] = []
    for node in root.named_children:
        if node.type == "function_declaration":
            name_node = node.child_by_field_name("name")
            result = node.child_by_field_name("result")
            symbols.append(Symbol(
                name=node_text(name_node), kind="function",
                type=node_text(result) if result is not None else None,
                file_path=file_path, line=line_of(node),
                params=[{"name": n} for n in parameter_names(node.child_by_field_name("parameters"))],
                results=result_types(result),
                type_node=result,
            ))
        elif node.type == "method_declaration":
            receiver = node.child_by_field_name("receiver")
            recv_decls = [c for c in receiver.named_children if c.type == "parameter_declaration"] if receiver else []
            recv_type = recv_decls[0].child_by_field_name("type") if recv_decls else None
            params_node = node.child_by_field_name("parameters")
            result = node.child_by_field_name("result")
            names = parameter_names(params_node)
            types = parameter_types(params_node)
            symbols.append(Symbol(
                name=node_text(node.child_by_field_name("name")), kind="method",
                type=node_text(result) if result is not None else None,
                file_path=file_path, line=line_of(node),
                scope=receiver_type_name(recv_type) or "",
                params=[{"name": n, "type": t} for n, t in zip(names, types)] if len(names) == len(types)
                else [{"name": "", "type": t} for t in types],
                results=result_types(result),
                type_node=result,
            ))
        elif node.type == "type_declaration":
            for spec in _type_specs(node):
                type_node = spec.child_by_field_name("type")
                symbols.append(Symbol(
                    name=node_text(spec.child_by_field_name("name")), kind="type",
                    type=node_text(type_node) if type_node is not None else None,
                    file_path=file_path, line=line_of(spec), type_node=type_node,
                ))
        elif node.type == "var_declaration":
            for spec in var_specs(node):
                symbols.extend(_spec_symbols(spec, "variable", file_path))
        elif node.type == "const_declaration":
            for spec in var_specs(node):
                symbols.extend(_spec_symbols(spec, "constant", file_path))
    return symbols


def extract_symbols_from_source(source: bytes, file_path: str) -> list[Symbol]:
    tree = get_parser().parse(source)
    if tree.root_node is None:
        return []
    return extract_symbols_from_tree(tree.root_node, file_path)
