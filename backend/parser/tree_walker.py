"""
Depth-first traversal of a Go syntax tree that reports index and slice
expressions together with the chain of nodes enclosing them.
"""
from __future__ import annotations
from typing import Iterator

from tree_sitter import Node

ACCESS_NODE_TYPES = ("index_expression", "slice_expression")


def walk_accesses(root: Node) -> Iterator[tuple[Node, list[Node]]]:
    """
    Yield ``(access, ancestors)`` for every index/slice expression under ``root``
    in document order. ``ancestors`` runs from ``root`` down to the access's
    parent and is only valid until the next item is requested.

    Uses a tree cursor rather than recursion, so deeply nested expressions
    do not hit the interpreter's recursion limit.
    """
    stack: list[Node] = []
    cursor = root.walk()
    while True:
        node = cursor.node
        if node.type in ACCESS_NODE_TYPES:
            yield node, stack
        if cursor.goto_first_child():
            stack.append(node)
            continue
        while not cursor.goto_next_sibling():
            if not cursor.goto_parent():
                return
            stack.pop()
