"""Model selector abstractions and implementations.

This module defines the selector system used to resolve which models a run
includes. Unlike a per-item predicate, some selectors depend on graph
position (`+name`, `name+`), so every selector resolves against a whole
DependencyGraph and returns a set of model names. Selectors can be combined
with UnionSelector to express a full selection expression.

Selectors are pure, side-effect-free objects: the same graph and selector
always yield the same set.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from modelops.core.graph import DependencyGraph


class ModelSelector(ABC):
    """
    Abstract base class for all model selectors.

    A ModelSelector encapsulates a single piece of selection logic that
    resolves to a subset of the models in a graph.
    """

    @abstractmethod
    def select(self, graph: DependencyGraph) -> frozenset[str]:
        """
        Resolve this selector against a graph.

        Args:
            graph: Dependency graph to select from.

        Returns:
            Names of the matched models. May be empty.
        """
        ...


class NameSelector(ModelSelector):
    """Selector that matches a single model by exact name."""

    def __init__(self, name: str):
        self.name = name

    def select(self, graph: DependencyGraph) -> frozenset[str]:
        if self.name in graph:
            return frozenset({self.name})
        return frozenset()

    def __repr__(self) -> str:
        return f"NameSelector({self.name!r})"


class TagSelector(ModelSelector):
    """Selector that matches every model carrying a tag."""

    def __init__(self, tag: str):
        self.tag = tag

    def select(self, graph: DependencyGraph) -> frozenset[str]:
        return frozenset(
            name for name, model in graph.models.items() if self.tag in model.tags
        )

    def __repr__(self) -> str:
        return f"TagSelector({self.tag!r})"


class AllSelector(ModelSelector):
    """Selector that matches every model in the graph."""

    def select(self, graph: DependencyGraph) -> frozenset[str]:
        return frozenset(graph.models)

    def __repr__(self) -> str:
        return "AllSelector()"


class AncestorsSelector(ModelSelector):
    """
    Selector for `+name`: the model plus all of its transitive upstream models.
    """

    def __init__(self, name: str):
        self.name = name

    def select(self, graph: DependencyGraph) -> frozenset[str]:
        if self.name not in graph:
            return frozenset()
        return frozenset({self.name} | graph.ancestors(self.name))

    def __repr__(self) -> str:
        return f"AncestorsSelector({self.name!r})"


class DescendantsSelector(ModelSelector):
    """
    Selector for `name+`: the model plus all of its transitive downstream models.
    """

    def __init__(self, name: str):
        self.name = name

    def select(self, graph: DependencyGraph) -> frozenset[str]:
        if self.name not in graph:
            return frozenset()
        return frozenset({self.name} | graph.descendants(self.name))

    def __repr__(self) -> str:
        return f"DescendantsSelector({self.name!r})"


class UnionSelector(ModelSelector):
    """
    Composite selector that matches a model if any child selector matches it.
    """

    def __init__(self, selectors: list[ModelSelector]):
        """
        Create a union selector.

        Args:
            selectors: Selectors whose results are combined.
        """
        self.selectors = selectors

    def select(self, graph: DependencyGraph) -> frozenset[str]:
        selected: set[str] = set()
        for s in self.selectors:
            selected |= s.select(graph)
        return frozenset(selected)

    def __repr__(self) -> str:
        return f"UnionSelector({self.selectors!r})"
