"""Dependency graph validation for the stage registry."""

from typing import Dict, List

from lib.errors import CycleDetected
from lib.registry import StageRegistry

_IN_PROGRESS = 1
_DONE = 2


def validate(registry: StageRegistry) -> None:
    """Raise CycleDetected if the dependency relation has a cycle.

    Depth-first over dependency edges in registry order. A node met again while
    still on the current path closes a cycle; the reported path starts and ends
    with that node, e.g. ["A", "B", "C", "A"].
    """
    marks: Dict[str, int] = {}

    for root in registry.ids:
        if root in marks:
            continue
        path: List[str] = [root]
        marks[root] = _IN_PROGRESS
        # Each frame: (stage id, remaining dependencies to visit)
        stack = [(root, sorted(registry.get(root).depends_on))]

        while stack:
            node, pending = stack[-1]
            if not pending:
                marks[node] = _DONE
                stack.pop()
                path.pop()
                continue

            dep = pending.pop(0)
            mark = marks.get(dep)
            if mark == _IN_PROGRESS:
                start = path.index(dep)
                raise CycleDetected(path[start:] + [dep])
            if mark == _DONE:
                continue

            marks[dep] = _IN_PROGRESS
            path.append(dep)
            stack.append((dep, sorted(registry.get(dep).depends_on)))


def topological_order(registry: StageRegistry) -> List[str]:
    """Stage ids with every stage after its dependencies; ties keep registry order."""
    validate(registry)
    remaining = {s.id: set(s.depends_on) for s in registry.all()}
    order: List[str] = []
    while remaining:
        ready = [sid for sid in registry.ids if sid in remaining and not remaining[sid]]
        for sid in ready:
            order.append(sid)
            del remaining[sid]
        for deps in remaining.values():
            deps.difference_update(ready)
    return order
