"""Dependency graph assembly.

Contains utilities for:
- allocating a stable identity for every validated draft,
- mapping batch indices to those identities,
- detecting circular dependencies over the resulting graph.

The model may point a task at a later index, so acyclicity is never assumed
from the index ordering; every plan goes through cycle detection.
"""

import uuid
from dataclasses import dataclass
from typing import Dict, Hashable, List, Sequence, Tuple
from uuid import UUID

from .errors import CyclicDependency, InvalidPlan
from .validation import PlannedTask


@dataclass(frozen=True)
class AssembledTask:
    id: UUID
    draft: PlannedTask


@dataclass(frozen=True)
class AssembledPlan:
    tasks: List[AssembledTask]
    # (task_id, depends_on_task_id)
    edges: List[Tuple[UUID, UUID]]


class IdentityMap:
    """Maps batch positions to task identities."""

    def __init__(self, size: int):
        self._ids = [uuid.uuid4() for _ in range(size)]

    def __len__(self) -> int:
        return len(self._ids)

    def resolve(self, index: int) -> UUID:
        if not isinstance(index, int) or index < 0 or index >= len(self._ids):
            raise InvalidPlan(f"Dependency index {index!r} does not reference a task in this plan")
        return self._ids[index]


def detect_circular_dependencies(graph: Dict[Hashable, Sequence[Hashable]]) -> List[List[Hashable]]:
    """Detect cycles in a dependency graph.

    Args:
        graph: node -> nodes it depends on.

    Returns:
        A list of cycles, each a node path that starts and ends on the same
        node, rotated to start at the node inserted first into ``graph``
        (e.g. [a, b, a]).
    """
    order = {node: i for i, node in enumerate(graph)}
    visited = set()              # permanently visited nodes
    stack: List[Hashable] = []   # current DFS stack
    cycles: List[List[Hashable]] = []
    seen_cycles: set = set()

    def dfs(node: Hashable) -> None:
        if node in stack:
            # back-edge
            cycle = stack[stack.index(node):] + [node]
            if len(cycle) > 1:
                min_idx = min(range(len(cycle) - 1), key=lambda i: order.get(cycle[i], len(order)))
                ordered = cycle[min_idx:-1] + cycle[:min_idx] + [cycle[min_idx]]
            else:
                ordered = cycle
            key = tuple(ordered)
            if key not in seen_cycles:
                seen_cycles.add(key)
                cycles.append(ordered)
            return
        if node in visited:
            return

        visited.add(node)
        stack.append(node)
        for neighbour in graph.get(node, ()):
            dfs(neighbour)
        stack.pop()

    for node in graph:
        if node not in visited:
            dfs(node)

    return cycles


def assemble_plan(planned: Sequence[PlannedTask]) -> AssembledPlan:
    """Turn validated drafts into identified tasks and dependency edges.

    Raises:
        InvalidPlan: if a dependency index does not resolve.
        CyclicDependency: if the dependency relation contains a cycle. The
            cycles are reported as order indices.
    """
    identities = IdentityMap(len(planned))
    tasks = [AssembledTask(id=identities.resolve(p.order_index), draft=p) for p in planned]
    edges = [
        (identities.resolve(p.order_index), identities.resolve(dep))
        for p in planned
        for dep in p.dependencies
    ]

    graph: Dict[Hashable, List[Hashable]] = {t.id: [] for t in tasks}
    for task_id, depends_on_task_id in edges:
        graph[task_id].append(depends_on_task_id)
    cycles = detect_circular_dependencies(graph)
    if cycles:
        position = {t.id: t.draft.order_index for t in tasks}
        raise CyclicDependency([[position[node] for node in cycle] for cycle in cycles])

    return AssembledPlan(tasks=tasks, edges=edges)
