"""Selection expression parsing.

This module translates the textual selection expression given on the command
line (or by a scheduler) into concrete ModelSelector instances. Grammar: a
space- or comma-separated list of terms, each one of

    name        exact model name
    tag:<tag>   every model carrying the tag (`tag:all` selects every model)
    +name       name plus all upstream models
    name+       name plus all downstream models
    +name+      both directions
    *           every model

Terms are combined with union semantics.
"""

from __future__ import annotations

import re

from modelops.core.errors import SelectionError
from modelops.core.graph import DependencyGraph
from modelops.core.selectors import (
    AllSelector,
    AncestorsSelector,
    DescendantsSelector,
    ModelSelector,
    NameSelector,
    TagSelector,
    UnionSelector,
)

_SPLIT_RE = re.compile(r"[\s,]+")


def _parse_term(term: str) -> ModelSelector:
    """Convert one expression term into a selector."""
    if term == "*":
        return AllSelector()

    if term.startswith("tag:"):
        tag = term[len("tag:") :]
        if not tag:
            raise SelectionError(f"Invalid selection term '{term}' (expected tag:<name>)")
        if tag == "all":
            return AllSelector()
        return TagSelector(tag)

    up = term.startswith("+")
    down = term.endswith("+")
    name = term[1 if up else 0 : len(term) - 1 if down else len(term)]
    if not name or "+" in name:
        raise SelectionError(f"Invalid selection term '{term}'")

    if up and down:
        return UnionSelector([AncestorsSelector(name), DescendantsSelector(name)])
    if up:
        return AncestorsSelector(name)
    if down:
        return DescendantsSelector(name)
    return NameSelector(name)


def build_selector(expression: str | list[str] | tuple[str, ...]) -> ModelSelector:
    """
    Build a ModelSelector from a selection expression.

    Args:
        expression: Expression text, or a list of expression fragments (e.g.
                    a repeated `--select` option). Fragments are joined.

    Returns:
        A selector representing the union of all terms. An empty expression
        yields an empty union, which selects nothing.

    Raises:
        SelectionError: If a term is malformed.
    """
    if not isinstance(expression, str):
        expression = " ".join(expression)

    terms = [t for t in _SPLIT_RE.split(expression.strip()) if t]
    selectors = [_parse_term(t) for t in terms]

    if len(selectors) == 1:
        return selectors[0]

    return UnionSelector(selectors)


def select(graph: DependencyGraph, expression: str | list[str]) -> frozenset[str]:
    """Resolve a selection expression against a graph."""
    return build_selector(expression).select(graph)
