"""
Guard detection for slice and array accesses.
An access is guarded when one of its enclosing nodes is an if-statement that
checks len/cap of the container, a range loop over the container using the
loop key as index, or a Less/Swap method of a sort.Interface implementation
indexing with its own parameters.
"""
from __future__ import annotations
import logging
from typing import Callable, Optional, Sequence

from tree_sitter import Node

from analyzer.type_checker import CapabilityOracle, TypeClass, TypeOracle
from parser.symbol_extractor import node_text, parameter_names, receiver_type_name, unparen

log = logging.getLogger(__name__)

LEN_CAP_FUNCS = ("len", "cap")
# Operators whose operands are themselves searched for a len/cap comparison.
COMBINING_OPERATORS = ("&&", "||", "==")
SORT_METHODS = ("Less", "Swap")


def get_container_ident(access: Node, oracle: TypeOracle) -> Optional[str]:
    """
    Name of the container an index or slice expression refers to, or None if
    the access is not checked: the operand is not a plain identifier, or an
    index expression whose container is not a slice or array.
    """
    operand = access.child_by_field_name("operand")
    if operand is None or operand.type != "identifier":
        return None
    if access.type == "slice_expression":
        return node_text(operand)
    if access.type == "index_expression":
        type_class = oracle.classify(operand)
        if type_class in (TypeClass.SLICE, TypeClass.ARRAY):
            return node_text(operand)
        log.debug("Skipping %s at line %d: %s", node_text(operand), access.start_point[0] + 1,
                  type_class.value if type_class else "unknown type")
    return None


def is_len_cap_call(node: Optional[Node]) -> bool:
    if node is None or node.type != "call_expression":
        return False
    fn = node.child_by_field_name("function")
    return fn is not None and fn.type == "identifier" and node_text(fn) in LEN_CAP_FUNCS


def is_ident_func_arg(call: Node, ident: str) -> bool:
    args = call.child_by_field_name("arguments")
    if args is None:
        return False
    return any(a.type == "identifier" and node_text(a) == ident for a in args.named_children)


def condition_has_len_cap_call(cond: Optional[Node], ident: str) -> bool:
    """True if a len(ident) or cap(ident) call is compared anywhere in the condition."""
    pending = [cond]
    while pending:
        node = unparen(pending.pop())
        if node is None or node.type != "binary_expression":
            continue
        left = unparen(node.child_by_field_name("left"))
        right = unparen(node.child_by_field_name("right"))
        for operand in (left, right):
            if is_len_cap_call(operand) and is_ident_func_arg(operand, ident):
                return True
        operator = node.child_by_field_name("operator")
        if operator is not None and operator.type in COMBINING_OPERATORS:
            pending.extend((right, left))
    return False


def is_if_cap_check(if_stmt: Node, ident: str, access: Node, capabilities: CapabilityOracle) -> bool:
    return condition_has_len_cap_call(if_stmt.child_by_field_name("condition"), ident)


def _index_ident(access: Node) -> Optional[str]:
    if access.type != "index_expression":
        return None
    index = access.child_by_field_name("index")
    if index is None or index.type != "identifier":
        return None
    return node_text(index)


def is_range_index_access(for_stmt: Node, ident: str, access: Node, capabilities: CapabilityOracle) -> bool:
    clause = next((c for c in for_stmt.named_children if c.type == "range_clause"), None)
    if clause is None:
        return False
    ranged = unparen(clause.child_by_field_name("right"))
    if ranged is None or ranged.type != "identifier" or node_text(ranged) != ident:
        return False
    index = _index_ident(access)
    left = clause.child_by_field_name("left")
    if index is None or left is None or not left.named_children:
        return False
    key = left.named_children[0]
    return key.type == "identifier" and node_text(key) == index


def implements_sort_interface(type_name: str, capabilities: CapabilityOracle) -> bool:
    return (
        capabilities.has_method(type_name, "Len", [], ["int"])
        and capabilities.has_method(type_name, "Less", ["int", "int"], ["bool"])
        and capabilities.has_method(type_name, "Swap", ["int", "int"], [])
    )


def is_sort_interface_method_access(method: Node, ident: str, access: Node, capabilities: CapabilityOracle) -> bool:
    name = method.child_by_field_name("name")
    if name is None or node_text(name) not in SORT_METHODS:
        return False
    receiver = method.child_by_field_name("receiver")
    decls = [c for c in receiver.named_children if c.type == "parameter_declaration"] if receiver else []
    if not decls:
        return False
    type_name = receiver_type_name(decls[0].child_by_field_name("type"))
    if type_name is None or not implements_sort_interface(type_name, capabilities):
        return False
    index = _index_ident(access)
    return index is not None and index in parameter_names(method.child_by_field_name("parameters"))


GuardCheck = Callable[[Node, str, Node, CapabilityOracle], bool]

GUARD_CHECKS: dict[str, GuardCheck] = {
    "if_statement": is_if_cap_check,
    "for_statement": is_range_index_access,
    "method_declaration": is_sort_interface_method_access,
}


def is_guarded(access: Node, ident: str, ancestors: Sequence[Node], capabilities: CapabilityOracle) -> bool:
    """True if any ancestor of ``access`` certifies that accessing ``ident`` is in bounds."""
    for node in reversed(ancestors):
        check = GUARD_CHECKS.get(node.type)
        if check is not None and check(node, ident, access, capabilities):
            log.debug("Access to %s at line %d guarded by %s at line %d", ident,
                      access.start_point[0] + 1, node.type, node.start_point[0] + 1)
            return True
    return False
