"""
Topological ordering helpers shared by the plan engine.
"""

from __future__ import annotations

import heapq
from typing import Dict, Iterable, List, Mapping, Sequence

from deploymesh.core.errors import CyclicDependencyError


def topological_order(addresses: Sequence[str], dependencies: Mapping[str, Iterable[str]]) -> List[str]:
    """
    Kahn's algorithm with a stable tie-break.

    Dependencies come before dependents; among nodes that are ready at the
    same time, the one appearing first in ``addresses`` wins.  Edges to
    addresses outside ``addresses`` are ignored.

    Raises:
        CyclicDependencyError: when the nodes do not form a DAG.
    """
    position = {address: idx for idx, address in enumerate(addresses)}
    indegree: Dict[str, int] = {address: 0 for address in addresses}
    dependents: Dict[str, List[str]] = {address: [] for address in addresses}

    for address in addresses:
        for dependency in set(dependencies.get(address, ())):
            if dependency not in position:
                continue
            indegree[address] += 1
            dependents[dependency].append(address)

    ready = [(position[address], address) for address, degree in indegree.items() if degree == 0]
    heapq.heapify(ready)
    ordered: List[str] = []
    while ready:
        _, address = heapq.heappop(ready)
        ordered.append(address)
        for dependent in dependents[address]:
            indegree[dependent] -= 1
            if indegree[dependent] == 0:
                heapq.heappush(ready, (position[dependent], dependent))

    if len(ordered) != len(position):
        remaining = [address for address in addresses if indegree[address] > 0]
        raise CyclicDependencyError(find_cycle(remaining, dependencies))
    return ordered


def find_cycle(addresses: Sequence[str], dependencies: Mapping[str, Iterable[str]]) -> List[str]:
    """Return one dependency cycle among ``addresses`` (first node repeated at the end)."""
    members = set(addresses)
    visiting: List[str] = []
    on_stack: set[str] = set()
    done: set[str] = set()

    def _visit(address: str) -> List[str]:
        visiting.append(address)
        on_stack.add(address)
        for dependency in sorted(set(dependencies.get(address, ())) & members):
            if dependency in on_stack:
                start = visiting.index(dependency)
                return visiting[start:] + [dependency]
            if dependency not in done:
                cycle = _visit(dependency)
                if cycle:
                    return cycle
        visiting.pop()
        on_stack.discard(address)
        done.add(address)
        return []

    for address in addresses:
        if address not in done:
            cycle = _visit(address)
            if cycle:
                return cycle
    return list(addresses)
