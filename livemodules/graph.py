"""Adjacency-map helpers for the require graph."""

from collections import deque
from collections.abc import Mapping
from collections.abc import Sequence


def invert(graph: Mapping[str, Sequence[str]]) -> dict[str, list[str]]:
    """Reverse every edge of ``graph``, keeping nodes without incoming edges."""
    inverted: dict[str, list[str]] = {node: [] for node in graph}
    for node, targets in graph.items():
        for target in targets:
            edges = inverted.setdefault(target, [])
            if node not in edges:
                edges.append(node)
    return inverted


def hull(graph: Mapping[str, Sequence[str]], start: str, include_start: bool = True) -> list[str]:
    """Nodes reachable from ``start`` in breadth-first order.

    Args:
        graph: Node to list of successor nodes
        start: Node to start from
        include_start: Whether ``start`` itself is part of the result

    Returns:
        Reachable node ids, each listed once
    """
    seen = {start}
    order = [start] if include_start else []
    queue = deque([start])
    while queue:
        node = queue.popleft()
        for target in graph.get(node, ()):
            if target in seen:
                continue
            seen.add(target)
            order.append(target)
            queue.append(target)
    return order
