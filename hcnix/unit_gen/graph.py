"""Ordering graph over generated units.

Each unit's `after` set is a list of edges to units that must be up (or, for
oneshots, finished) first. Names that are not part of the topology
(network.target, multi-user.target) are external: systemd provides them, so
they never block ordering here.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from hcnix.unit_gen.errors import DependencyCycleError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from hcnix.unit_gen.models import UnitDescriptor


def _find_cycle(edges: dict[str, set[str]]) -> list[str]:
    """Return one cycle in `edges` as a closed path (first name repeated last)."""
    visiting: list[str] = []
    done: set[str] = set()

    def visit(name: str) -> list[str] | None:
        if name in visiting:
            return [*visiting[visiting.index(name) :], name]
        if name in done:
            return None
        visiting.append(name)
        for dep in sorted(edges[name]):
            found = visit(dep)
            if found:
                return found
        visiting.pop()
        done.add(name)
        return None

    for name in sorted(edges):
        found = visit(name)
        if found:
            return found
    return []


def topological_order(units: Sequence[UnitDescriptor]) -> tuple[UnitDescriptor, ...]:
    """Order units so that each one follows everything in its `after` set.

    Units with no ordering between them keep their declaration order, so the
    result is stable for a given input.

    Raises:
        DependencyCycleError: If the `after` edges between units form a cycle.
        ValueError: If two units share a name.
    """
    by_name: dict[str, UnitDescriptor] = {}
    for u in units:
        if u.name in by_name:
            msg = f"Duplicate unit name: {u.name}"
            raise ValueError(msg)
        by_name[u.name] = u

    edges = {u.name: {dep for dep in u.after if dep in by_name} for u in units}
    position = {u.name: i for i, u in enumerate(units)}
    remaining = {name: set(deps) for name, deps in edges.items()}
    ordered: list[UnitDescriptor] = []

    while remaining:
        ready = [name for name, deps in remaining.items() if not deps]
        if not ready:
            raise DependencyCycleError(_find_cycle({n: edges[n] for n in remaining}))
        name = min(ready, key=position.__getitem__)
        ordered.append(by_name[name])
        del remaining[name]
        for deps in remaining.values():
            deps.discard(name)

    return tuple(ordered)


def transitive_after(units: Sequence[UnitDescriptor], name: str) -> frozenset[str]:
    """Return every unit `name` is ordered after, directly or through other units.

    External names are included but not followed.
    """
    by_name = {u.name: u for u in units}
    seen: set[str] = set()
    stack = list(by_name[name].after)
    while stack:
        dep = stack.pop()
        if dep in seen:
            continue
        seen.add(dep)
        if dep in by_name:
            stack.extend(by_name[dep].after)
    return frozenset(seen)
