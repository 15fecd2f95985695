"""Execution planning.

The planner turns a selected subset of the dependency graph into an ordered
sequence of waves. A wave holds models with no dependency among them; every
model sits in the wave given by its longest path from a root of the selected
subgraph, which exposes the maximum independent parallelism while keeping a
simple ordering contract: wave n+1 starts only after wave n is resolved.

The planner performs no execution. It only asks whether unselected upstream
models already exist, through a caller-supplied callback.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Iterator

from modelops.core.errors import CycleError, MissingUpstreamError
from modelops.core.graph import DependencyGraph
from modelops.core.models import ModelDefinition


@dataclass(frozen=True)
class ExecutionPlan:
    """
    Ordered waves of model names.

    Names inside a wave are stored sorted for stable output only; the
    coordinator is free to run them in any order.
    """

    waves: tuple[tuple[str, ...], ...]

    def __iter__(self) -> Iterator[tuple[str, ...]]:
        return iter(self.waves)

    def __len__(self) -> int:
        return len(self.waves)

    @property
    def models(self) -> list[str]:
        """All planned model names, wave by wave."""
        return [name for wave in self.waves for name in wave]

    @property
    def is_empty(self) -> bool:
        return not self.waves


def plan(
    graph: DependencyGraph,
    selected: Iterable[str],
    *,
    is_materialized: Callable[[ModelDefinition], bool] | None = None,
) -> ExecutionPlan:
    """
    Order a selected subset of the graph into waves.

    Args:
        graph: Validated dependency graph.
        selected: Names of the models to run. Unknown names are ignored.
        is_materialized: Returns True when an unselected upstream model's
                         relation already exists. When None the check is
                         skipped (dry runs must not touch the warehouse).

    Returns:
        ExecutionPlan whose waves respect the topological order of the graph
        restricted to the selected set.

    Raises:
        MissingUpstreamError: If a selected model needs an upstream model that
                              is neither selected nor materialized.
        CycleError: If the restricted graph is not acyclic.
    """
    chosen = {name for name in selected if name in graph}

    for name in sorted(chosen):
        for upstream in graph.upstream_of(name):
            if upstream in chosen:
                continue
            if is_materialized is not None and not is_materialized(graph.get(upstream)):
                raise MissingUpstreamError(name, upstream)

    level: dict[str, int] = {}
    # ordering follows selected ancestors, including paths through unselected models
    pending = {name: sorted(graph.ancestors(name) & chosen) for name in chosen}
    while pending:
        progressed = False
        for name in sorted(pending):
            parents = pending[name]
            if all(p in level for p in parents):
                level[name] = 1 + max((level[p] for p in parents), default=-1)
                del pending[name]
                progressed = True
        if not progressed:
            raise CycleError(sorted(pending))

    waves: dict[int, list[str]] = {}
    for name, lvl in level.items():
        waves.setdefault(lvl, []).append(name)

    return ExecutionPlan(
        waves=tuple(tuple(sorted(waves[lvl])) for lvl in sorted(waves)),
    )
