# File: admingen/inheritance.py
"""
AdminGen - Presenter Inheritance
=================================
Orders presenters so that every parent precedes its children and computes
each child's effective configuration by section-level replace: a section
the child defines replaces the parent's section wholesale, every other
section passes through unchanged.

Ordering is an explicit depth-first walk up each presenter's parent chain.
The walk returns a tagged result instead of raising, and keeps no
visitation state beyond the path of the chain being walked.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from admingen.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("admingen.inheritance")

# Keys that describe the inheritance link itself and are never inherited
_LINK_KEYS: Tuple[str, ...] = ("name", "inherits")


# ---------------------------------------------------------------------------
# Tagged ordering result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InheritanceOrder:
    """Presenter names ordered so that parents come first."""

    names: Tuple[str, ...]


@dataclass(frozen=True)
class InheritanceCycle:
    """A cycle, listed from the first repeated node back to itself."""

    cycle: Tuple[str, ...]

    def describe(self) -> str:
        return " -> ".join(self.cycle)


@dataclass(frozen=True)
class MissingParent:
    child: str
    parent: str


OrderResult = Union[InheritanceOrder, InheritanceCycle, MissingParent]


@dataclass(frozen=True)
class PresenterEntry:
    """
    One declared presenter before resolution.

    ``build`` returns a fresh raw configuration hash on every call.
    """

    name: str
    parent: Optional[str]
    build: Callable[[], Dict[str, Any]]
    source: str = ""


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------


def _chain(
    name: str,
    parents: Mapping[str, Optional[str]],
    path: Tuple[str, ...],
) -> Union[Tuple[str, ...], InheritanceCycle, MissingParent]:
    """Chain from *name* up to its root, or the error met while walking it."""
    if name in path:
        start: int = path.index(name)
        return InheritanceCycle(cycle=path[start:] + (name,))
    parent: Optional[str] = parents[name]
    if parent is None:
        return path + (name,)
    if parent not in parents:
        return MissingParent(child=name, parent=parent)
    return _chain(parent, parents, path + (name,))


def order_presenters(parents: Mapping[str, Optional[str]]) -> OrderResult:
    """
    Order presenter names so every parent precedes its children.

    *parents* maps each presenter name to its parent name (or None).
    Declaration order is preserved among presenters of the same depth.

    Returns:
        ``InheritanceOrder`` on success, otherwise the first
        ``InheritanceCycle`` or ``MissingParent`` encountered.
    """
    depths: Dict[str, int] = {}
    for name in parents:
        walked = _chain(name, parents, ())
        if not isinstance(walked, tuple):
            return walked
        depths[name] = len(walked)
    ordered: List[str] = sorted(parents, key=lambda n: depths[n])
    return InheritanceOrder(names=tuple(ordered))


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------


def merge_configuration(
    parent_resolved: Mapping[str, Any],
    child_raw: Mapping[str, Any],
) -> Dict[str, Any]:
    """
    Section-level replace of *parent_resolved* by *child_raw*.

    Each top-level key the child defines replaces the parent's value
    entirely (no deep merge). The child's own ``name`` and ``inherits``
    are always kept.
    """
    merged: Dict[str, Any] = copy.deepcopy(dict(parent_resolved))
    for key, value in child_raw.items():
        merged[key] = copy.deepcopy(value)
    for key in _LINK_KEYS:
        if key in child_raw:
            merged[key] = child_raw[key]
        else:
            merged.pop(key, None)
    return merged


def resolve_presenters(entries: List[PresenterEntry]) -> Dict[str, Dict[str, Any]]:
    """
    Resolve every entry into a fully merged configuration hash.

    Raises:
        ConfigurationError: on an inheritance cycle or a missing parent,
            naming the offending presenter source.
    """
    by_name: Dict[str, PresenterEntry] = {e.name: e for e in entries}
    result: OrderResult = order_presenters({e.name: e.parent for e in entries})

    if isinstance(result, InheritanceCycle):
        first: PresenterEntry = by_name[result.cycle[0]]
        raise ConfigurationError(
            f"Circular presenter inheritance: {result.describe()}", first.source or first.name
        )
    if isinstance(result, MissingParent):
        child: PresenterEntry = by_name[result.child]
        raise ConfigurationError(
            f"Presenter '{result.child}' inherits from '{result.parent}' which was not found",
            child.source or child.name,
        )

    resolved: Dict[str, Dict[str, Any]] = {}
    for name in result.names:
        entry: PresenterEntry = by_name[name]
        raw: Dict[str, Any] = entry.build()
        if entry.parent is None:
            resolved[name] = raw
        else:
            resolved[name] = merge_configuration(resolved[entry.parent], raw)
            logger.debug("Presenter %s inherits from %s", name, entry.parent)
    return resolved


__all__: List[str] = [
    "InheritanceCycle",
    "InheritanceOrder",
    "MissingParent",
    "OrderResult",
    "PresenterEntry",
    "merge_configuration",
    "order_presenters",
    "resolve_presenters",
]
