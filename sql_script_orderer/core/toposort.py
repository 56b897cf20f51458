"""Cycle-safe topological sort.

``adjacency[a]`` lists what ``a`` depends on. The result places every
dependency before its dependents and raises OrderingCycleError on a cycle.
"""
from __future__ import annotations

from typing import Dict, Hashable, Iterable, List, Mapping, Sequence, Tuple, TypeVar

from sql_script_orderer.core.exceptions import OrderingCycleError

Node = TypeVar("Node", bound=Hashable)


def topological_sort(adjacency: Mapping[Node, Sequence[Node]]) -> List[Node]:
    """Depth-first topological sort over every key of ``adjacency``.

    Traversal uses an explicit stack, so deep chains do not hit the
    interpreter recursion limit. Roots are taken in key order and neighbours
    in list order, which makes the output deterministic.
    """
    ordered: List[Node] = []
    visited = set()

    for root in adjacency:
        if root in visited:
            continue
        path: List[Node] = [root]
        on_path = {root}
        stack = [(root, iter(adjacency.get(root, ())))]
        while stack:
            node, neighbours = stack[-1]
            for neighbour in neighbours:
                if neighbour in visited:
                    continue
                if neighbour in on_path:
                    cycle = path[path.index(neighbour):] + [neighbour]
                    raise OrderingCycleError(cycle)
                path.append(neighbour)
                on_path.add(neighbour)
                stack.append((neighbour, iter(adjacency.get(neighbour, ()))))
                break
            else:
                stack.pop()
                path.pop()
                on_path.discard(node)
                visited.add(node)
                ordered.append(node)

    return ordered


def adjacency_from_pairs(nodes: Iterable[Node], pairs: Iterable[Tuple[Node, Node]]) -> Dict[Node, List[Node]]:
    """Build an adjacency map over ``nodes`` from (referencer, referenced) pairs.

    Pairs with an end outside ``nodes`` and self references are dropped, as are
    repeated pairs.
    """
    adjacency: Dict[Node, List[Node]] = {node: [] for node in nodes}
    for referencer, referenced in pairs:
        if referencer == referenced:
            continue
        if referencer not in adjacency or referenced not in adjacency:
            continue
        if referenced not in adjacency[referencer]:
            adjacency[referencer].append(referenced)
    return adjacency
