"""Baseline item dependency ordering.

Provides cycle detection, a stable topological sort of items by their
``depends_on`` edges, and the dependency-skip test used while applying.

Example:
    >>> from fleetguard.ordering import order_items
    >>> for item in order_items(baseline.items):
    ...     print(item.id)

"""

from __future__ import annotations

import heapq
from typing import TYPE_CHECKING, Iterable, Mapping

if TYPE_CHECKING:
    from fleetguard._types import BaselineItem


def detect_cycles(ids: list[str], deps: Mapping[str, Iterable[str]]) -> list[list[str]]:
    """Detect cycles in a dependency graph using DFS.

    Args:
        ids: All node ids, in declaration order.
        deps: Map of id -> ids it depends on.

    Returns:
        List of cycles, each a list of ids that starts and ends on the same id.

    """
    WHITE, GRAY, BLACK = 0, 1, 2
    color = {node: WHITE for node in ids}
    cycles: list[list[str]] = []

    def dfs(node: str, path: list[str]) -> None:
        if node not in color:
            return

        if color[node] == GRAY:
            cycle_start = path.index(node)
            cycles.append(path[cycle_start:] + [node])
            return

        if color[node] == BLACK:
            return

        color[node] = GRAY
        path.append(node)

        for neighbor in deps.get(node, ()):
            dfs(neighbor, path)

        path.pop()
        color[node] = BLACK

    for node in ids:
        if color[node] == WHITE:
            dfs(node, [])

    return cycles


def topological_order(ids: list[str], deps: Mapping[str, Iterable[str]]) -> list[str]:
    """Sort ids so every node follows its dependencies.

    Ties are broken by declaration order, so a graph without edges keeps the
    order it was declared in.

    Raises:
        ValueError: The graph contains a cycle.

    """
    position = {node: i for i, node in enumerate(ids)}
    in_degree = {node: 0 for node in ids}
    dependents: dict[str, list[str]] = {node: [] for node in ids}
    for node in ids:
        for dep in deps.get(node, ()):
            if dep in position:
                in_degree[node] += 1
                dependents[dep].append(node)

    ready = [position[node] for node in ids if in_degree[node] == 0]
    heapq.heapify(ready)
    result = []

    while ready:
        node = ids[heapq.heappop(ready)]
        result.append(node)
        for dependent in dependents[node]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(ready, position[dependent])

    if len(result) != len(ids):
        done = set(result)
        stuck = [node for node in ids if node not in done]
        raise ValueError(f"Dependency cycle among: {', '.join(stuck)}")
    return result


def order_items(items: list[BaselineItem]) -> list[BaselineItem]:
    """Order baseline items by dependencies, declaration order breaking ties."""
    by_id = {item.id: item for item in items}
    ids = [item.id for item in items]
    deps = {item.id: list(item.depends_on) for item in items}
    return [by_id[item_id] for item_id in topological_order(ids, deps)]


def should_skip(
    item_id: str,
    items_by_id: Mapping[str, BaselineItem],
    unsatisfied: set[str],
) -> tuple[bool, str]:
    """Check if an item must be skipped because a dependency did not land.

    Args:
        item_id: The item to check.
        items_by_id: All items in the baseline.
        unsatisfied: Ids whose outcome was neither Applied nor NoOp.

    Returns:
        Tuple of (should_skip, reason).

    """
    item = items_by_id.get(item_id)
    if item is None:
        return False, ""

    failed_direct = [d for d in item.depends_on if d in unsatisfied]
    if failed_direct:
        return True, f"dependency not satisfied: {', '.join(failed_direct)}"

    visited: set[str] = set()
    to_check = list(item.depends_on)
    while to_check:
        dep = to_check.pop()
        if dep in visited:
            continue
        visited.add(dep)
        if dep in unsatisfied:
            return True, f"transitive dependency not satisfied: {dep}"
        dep_item = items_by_id.get(dep)
        if dep_item:
            to_check.extend(dep_item.depends_on)

    return False, ""
