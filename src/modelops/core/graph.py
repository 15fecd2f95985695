"""Dependency graph of models.

Edges point from an upstream model to the models that reference it. Sources
are kept alongside the graph so references to them resolve, but they are not
nodes: the engine never builds or orders them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, Mapping

from modelops.core.errors import CycleError, DefinitionError, UnknownReferenceError
from modelops.core.models import ModelDefinition, Source

_WHITE, _GREY, _BLACK = 0, 1, 2


@dataclass(frozen=True)
class DependencyGraph:
    """
    Immutable DAG of model definitions.

    Attributes:
        models: Model definitions keyed by name.
        sources: Declared external sources keyed by name.
        parents: For each model, the upstream *models* it references.
        children: For each model, the models that reference it.
    """

    models: Mapping[str, ModelDefinition]
    sources: Mapping[str, Source]
    parents: Mapping[str, tuple[str, ...]]
    children: Mapping[str, tuple[str, ...]]

    def __contains__(self, name: object) -> bool:
        return name in self.models

    def __len__(self) -> int:
        return len(self.models)

    def names(self) -> list[str]:
        """Return all model names in lexicographic order."""
        return sorted(self.models)

    def get(self, name: str) -> ModelDefinition:
        """Return the model called `name` (KeyError if unknown)."""
        return self.models[name]

    def upstream_of(self, name: str) -> tuple[str, ...]:
        """Direct upstream models of `name` (sources excluded)."""
        return self.parents.get(name, ())

    def downstream_of(self, name: str) -> tuple[str, ...]:
        """Direct downstream models of `name`."""
        return self.children.get(name, ())

    def ancestors(self, name: str) -> set[str]:
        """All transitive upstream models of `name` (not including itself)."""
        return self._walk(name, self.parents)

    def descendants(self, name: str) -> set[str]:
        """All transitive downstream models of `name` (not including itself)."""
        return self._walk(name, self.children)

    @staticmethod
    def _walk(start: str, edges: Mapping[str, tuple[str, ...]]) -> set[str]:
        seen: set[str] = set()
        stack = list(edges.get(start, ()))
        while stack:
            node = stack.pop()
            if node in seen:
                continue
            seen.add(node)
            stack.extend(edges.get(node, ()))
        return seen

    def topological_order(self) -> list[str]:
        """
        Return a deterministic linearization of the graph.

        Kahn's algorithm with lexicographic tie-breaking: whenever several
        models are ready, the smallest name goes first.
        """
        remaining = {name: len(self.parents.get(name, ())) for name in self.models}
        ready = sorted(name for name, count in remaining.items() if count == 0)
        order: list[str] = []
        while ready:
            name = ready.pop(0)
            order.append(name)
            for child in self.children.get(name, ()):
                remaining[child] -= 1
                if remaining[child] == 0:
                    ready.append(child)
                    ready.sort()
        if len(order) != len(self.models):
            raise CycleError(_find_cycle(self.models, self.parents) or sorted(remaining))
        return order


def _find_cycle(
    models: Iterable[str], parents: Mapping[str, tuple[str, ...]]
) -> list[str] | None:
    """
    Depth-first search with white/grey/black colouring.

    Returns the first cycle found as a path whose last element repeats the
    first (e.g. ["A", "B", "A"]), or None if the graph is acyclic.

    The walk keeps an explicit stack of parent iterators so deep model chains
    do not hit the interpreter recursion limit.
    """
    colour = {name: _WHITE for name in models}

    for root in sorted(colour):
        if colour[root] != _WHITE:
            continue
        colour[root] = _GREY
        path = [root]
        frames: list[Iterator[str]] = [iter(parents.get(root, ()))]
        while frames:
            parent = next(frames[-1], None)
            if parent is None:
                colour[path.pop()] = _BLACK
                frames.pop()
                continue
            state = colour.get(parent)
            if state == _GREY:
                # path holds the downstream walk; report it upstream -> downstream
                cycle = list(reversed(path[path.index(parent) :]))
                return cycle + [cycle[0]]
            if state == _WHITE:
                colour[parent] = _GREY
                path.append(parent)
                frames.append(iter(parents.get(parent, ())))
    return None


def build(
    definitions: Iterable[ModelDefinition],
    sources: Iterable[Source] = (),
) -> DependencyGraph:
    """
    Build a dependency graph from model definitions.

    Args:
        definitions: Loaded model definitions.
        sources: External sources that may be referenced but are never built.

    Returns:
        A validated, acyclic DependencyGraph.

    Raises:
        DefinitionError: If two models (or a model and a source) share a name.
        UnknownReferenceError: If a reference resolves to nothing.
        CycleError: If references form a cycle; `path` holds the full cycle.
    """
    models: dict[str, ModelDefinition] = {}
    for model in definitions:
        if model.name in models:
            raise DefinitionError(f"Duplicate model name: '{model.name}'")
        models[model.name] = model

    source_map: dict[str, Source] = {}
    for source in sources:
        if source.name in models:
            raise DefinitionError(
                f"'{source.name}' is declared both as a model and as a source"
            )
        source_map[source.name] = source

    parents: dict[str, tuple[str, ...]] = {}
    children: dict[str, list[str]] = {name: [] for name in models}
    for name, model in models.items():
        upstream_models: list[str] = []
        for ref in model.upstream:
            if ref in models:
                if ref not in upstream_models:
                    upstream_models.append(ref)
            elif ref not in source_map:
                raise UnknownReferenceError(ref, referenced_by=name)
        parents[name] = tuple(upstream_models)
        for ref in upstream_models:
            children[ref].append(name)

    cycle = _find_cycle(models, parents)
    if cycle:
        raise CycleError(cycle)

    return DependencyGraph(
        models=dict(models),
        sources=source_map,
        parents=parents,
        children={name: tuple(sorted(kids)) for name, kids in children.items()},
    )
