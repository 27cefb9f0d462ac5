# File: admingen/includes.py
"""
AdminGen - Includes Resolver
=============================
Plans how a query must load related records for one presenter context.

Two phases:

1. ``DependencyCollector`` walks the resolved presenter configuration (plus
   the runtime sort field and search fields) and emits ``Dependency``
   values: an association path and a reason, ``display`` (rendered only)
   or ``query`` (addressed in ORDER BY / WHERE).
2. ``StrategyResolver`` groups dependencies by association and maps each
   group to a loading affordance:

   ===========  ============  ==========================
   cardinality  display only  query (or both)
   ===========  ============  ==========================
   to-one       preload       joined_preload
   to-many      preload       join_only + preload
   ===========  ============  ==========================

Paths are either an association name (``"company"``) or a one-level
nested mapping (``{"contacts": "company"}`` /
``{"contacts": ["company", "owner"]}``).

Resolution never raises: references to unknown associations are dropped
and logged at debug level.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from admingen.models import (
    AssociationDefinition,
    AssociationType,
    DependencyReason,
    ModelDefinition,
    PresenterDefinition,
    RenderContext,
)
from admingen.utils import extract_template_refs

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("admingen.includes")

Path = Union[str, Dict[str, Any]]


# ---------------------------------------------------------------------------
# Values
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Dependency:
    """An association path plus why it is needed."""

    path: Path
    reason: str

    def __post_init__(self) -> None:
        if not isinstance(self.path, (str, dict)) or not self.path:
            raise ValueError(f"path must be a name or a one-key mapping, got {self.path!r}")
        if isinstance(self.path, dict) and len(self.path) != 1:
            raise ValueError(f"nested path must have exactly one key, got {self.path!r}")
        if self.reason not in (r.value for r in DependencyReason):
            raise ValueError(f"reason must be 'display' or 'query', got {self.reason!r}")

    @property
    def association_name(self) -> str:
        if isinstance(self.path, dict):
            return next(iter(self.path))
        return self.path

    @property
    def nested(self) -> bool:
        return isinstance(self.path, dict)

    @property
    def is_query(self) -> bool:
        return self.reason == DependencyReason.QUERY.value

    @property
    def is_display(self) -> bool:
        return self.reason == DependencyReason.DISPLAY.value


@dataclass
class LoadingStrategy:
    """
    Three lists of paths for the query collaborator.

    ``preload`` loads in a separate batched query, ``joined_preload`` joins
    and hydrates in one query, ``join_only`` joins for filtering/sorting
    without hydrating.
    """

    preload: List[Path] = field(default_factory=list)
    joined_preload: List[Path] = field(default_factory=list)
    join_only: List[Path] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.preload or self.joined_preload or self.join_only)

    def apply(self, query: Any) -> Any:
        """Chain the non-empty lists onto *query*; an empty strategy is a no-op."""
        if self.preload:
            query = query.preload(*self.preload)
        if self.joined_preload:
            query = query.joined_preload(*self.joined_preload)
        if self.join_only:
            query = query.join_only(*self.join_only)
        return query

    def to_dict(self) -> Dict[str, List[Path]]:
        return {
            "preload": list(self.preload),
            "joined_preload": list(self.joined_preload),
            "join_only": list(self.join_only),
        }


# ---------------------------------------------------------------------------
# Phase 1: collection
# ---------------------------------------------------------------------------


def _nested_path(parts: Sequence[str]) -> Path:
    """``["company", "industry"]`` -> ``{"company": "industry"}``."""
    path: Path = parts[-1]
    for part in reversed(parts[:-1]):
        path = {part: path}
    return path


def _items(value: Any) -> List[Any]:
    """Entries of a configuration list; anything else reads as empty."""
    return list(value) if isinstance(value, (list, tuple)) else []


def _normalize_manual(value: Any) -> List[Path]:
    """
    Paths named by one manual ``includes`` / ``eager_load`` entry.

    A mapping yields one path per key, so ``{contacts: [company], deals: []}``
    becomes ``{contacts: [company]}`` and ``deals``. Malformed entries
    yield nothing.
    """
    if isinstance(value, str):
        return [value] if value else []
    if not isinstance(value, Mapping):
        return []
    paths: List[Path] = []
    for key, inner in value.items():
        name: str = str(key)
        if not name:
            continue
        if inner is None:
            paths.append(name)
        elif isinstance(inner, str):
            paths.append({name: inner} if inner else name)
        elif isinstance(inner, (list, tuple)):
            children: List[Path] = [p for item in inner for p in _normalize_manual(item)]
            paths.append({name: children} if children else name)
        elif isinstance(inner, Mapping):
            nested: List[Path] = _normalize_manual(inner)
            if not nested:
                paths.append(name)
            else:
                paths.append({name: nested[0] if len(nested) == 1 else nested})
    return paths


class DependencyCollector:
    """
    Gathers dependencies from presenter metadata, sort and search params,
    and manual ``includes`` / ``eager_load`` lists.

    *models* is used to look up the display templates of association
    targets; without it no nested paths are derived from templates.
    """

    def __init__(self, models: Optional[Mapping[str, ModelDefinition]] = None) -> None:
        self.dependencies: List[Dependency] = []
        self._models: Mapping[str, ModelDefinition] = models or {}

    # -- Public sources -----------------------------------------------------

    def from_presenter(
        self,
        presenter: PresenterDefinition,
        model: ModelDefinition,
        context: Union[str, RenderContext],
    ) -> None:
        key: str = context.value if isinstance(context, RenderContext) else str(context)
        if key == RenderContext.INDEX.value:
            self._collect_index(presenter, model)
        elif key == RenderContext.SHOW.value:
            self._collect_show(presenter, model)
        elif key == RenderContext.FORM.value:
            self._collect_form(presenter, model)

    def from_sort(self, sort_field: Optional[str], model: ModelDefinition) -> None:
        """A dot-path sort field needs its first association joined."""
        self._query_dependency(sort_field, model)

    def from_search(self, fields: Optional[Sequence[str]], model: ModelDefinition) -> None:
        for search_field in _items(fields):
            self._query_dependency(search_field, model)

    def from_manual(self, config: Any) -> None:
        """``includes`` entries are display dependencies, ``eager_load`` ones query."""
        if not isinstance(config, Mapping):
            return
        for key, reason in (
            ("includes", DependencyReason.DISPLAY.value),
            ("eager_load", DependencyReason.QUERY.value),
        ):
            entries: Any = config.get(key)
            for entry in [entries] if isinstance(entries, Mapping) else _items(entries):
                paths: List[Path] = _normalize_manual(entry)
                if not paths:
                    logger.debug("Ignoring malformed %s entry %r", key, entry)
                for path in paths:
                    self._add(path, reason)

    # -- Context walkers ----------------------------------------------------

    def _collect_index(self, presenter: PresenterDefinition, model: ModelDefinition) -> None:
        fk_map: Dict[str, AssociationDefinition] = model.belongs_to_fk_map()
        for column in _items(presenter.index_config.get("table_columns")):
            if not isinstance(column, Mapping):
                continue
            name: str = str(column.get("field") or "")
            if "{" in name:
                self._collect_template(name, model)
            elif "." in name:
                self._collect_dot_path(name, model)
            elif name in fk_map:
                self._add(fk_map[name].name, DependencyReason.DISPLAY.value)

    def _collect_show(self, presenter: PresenterDefinition, model: ModelDefinition) -> None:
        for section in _items(presenter.show_config.get("layout")):
            if not isinstance(section, Mapping):
                continue
            if section.get("type") == "association_list":
                self._collect_association_list(section, model)
                continue
            for field_config in _items(section.get("fields")):
                if not isinstance(field_config, Mapping):
                    continue
                name: str = str(field_config.get("field") or "")
                if "{" in name:
                    self._collect_template(name, model)
                elif "." in name:
                    self._collect_dot_path(name, model)

    def _collect_form(self, presenter: PresenterDefinition, model: ModelDefinition) -> None:
        for section in _items(presenter.form_config.get("sections")):
            if not isinstance(section, Mapping) or section.get("type") != "nested_fields":
                continue
            name: str = str(section.get("association") or "")
            if name and self._association(model, name) is not None:
                self._add(name, DependencyReason.DISPLAY.value)

    def _collect_association_list(self, section: Mapping[str, Any], model: ModelDefinition) -> None:
        name: str = str(section.get("association") or "")
        if not name:
            return
        assoc: Optional[AssociationDefinition] = self._association(model, name)
        if assoc is None:
            return
        children: List[str] = self._template_children(assoc, section.get("display") or "default")
        if children:
            self._add({name: children}, DependencyReason.DISPLAY.value)
        else:
            self._add(name, DependencyReason.DISPLAY.value)

    def _template_children(self, assoc: AssociationDefinition, template_name: str) -> List[str]:
        """Associations the target's display template reaches through dot paths."""
        target: Optional[ModelDefinition] = (
            self._models.get(assoc.target_model) if assoc.target_model else None
        )
        if target is None:
            return []
        template = target.display_template(str(template_name))
        if template is None:
            return []
        children: Dict[str, None] = {}
        for ref in template.referenced_fields():
            if "." in ref:
                children.setdefault(ref.split(".")[0], None)
        return list(children)

    def _collect_template(self, template: str, model: ModelDefinition) -> None:
        for ref in extract_template_refs(template):
            if "." in ref:
                self._collect_dot_path(ref, model)

    def _collect_dot_path(self, field_path: str, model: ModelDefinition) -> None:
        associations: List[str] = field_path.split(".")[:-1]
        if not associations or self._association(model, associations[0]) is None:
            return
        self._add(_nested_path(associations), DependencyReason.DISPLAY.value)

    # -- Helpers ------------------------------------------------------------

    def _query_dependency(self, field_path: Optional[str], model: ModelDefinition) -> None:
        if not field_path or "." not in str(field_path):
            return
        name: str = str(field_path).split(".")[0]
        if self._association(model, name) is not None:
            self._add(name, DependencyReason.QUERY.value)

    @staticmethod
    def _association(model: ModelDefinition, name: str) -> Optional[AssociationDefinition]:
        assoc: Optional[AssociationDefinition] = model.association(str(name))
        if assoc is None:
            logger.debug("Dropping unknown association '%s' of model %s", name, model.name)
        return assoc

    def _add(self, path: Path, reason: str) -> None:
        if any(d.path == path and d.reason == reason for d in self.dependencies):
            return
        self.dependencies.append(Dependency(path=path, reason=reason))


# ---------------------------------------------------------------------------
# Phase 2: strategy
# ---------------------------------------------------------------------------


def _unique(paths: List[Path]) -> List[Path]:
    result: List[Path] = []
    for path in paths:
        if path not in result:
            result.append(path)
    return result


class StrategyResolver:
    """Maps dependencies onto a ``LoadingStrategy``."""

    @staticmethod
    def select_path(dependencies: Sequence[Dependency]) -> Path:
        """
        Merge every path of one association into a single path.

        ``company`` + ``{company: industry}`` + ``{company: address}``
        becomes ``{company: [industry, address]}``. Merged children are
        always a list, even when only one remains.
        """
        nested: List[Dependency] = [d for d in dependencies if d.nested]
        if not nested:
            return dependencies[0].path
        children: List[Any] = []
        for dep in nested:
            inner: Any = next(iter(dict(dep.path).values()))
            for child in inner if isinstance(inner, list) else [inner]:
                if child not in children:
                    children.append(child)
        name: str = dependencies[0].association_name
        if not children:
            return name
        return {name: children}

    @classmethod
    def resolve(cls, dependencies: Sequence[Dependency], model: ModelDefinition) -> LoadingStrategy:
        grouped: Dict[str, List[Dependency]] = {}
        for dep in dependencies:
            grouped.setdefault(dep.association_name, []).append(dep)

        preload: List[Path] = []
        joined_preload: List[Path] = []
        join_only: List[Path] = []
        for name, deps in grouped.items():
            assoc: Optional[AssociationDefinition] = model.association(name)
            if assoc is None:
                logger.debug("Dropping unknown association '%s' of model %s", name, model.name)
                continue
            path: Path = cls.select_path(deps)
            if any(d.is_query for d in deps):
                if assoc.type == AssociationType.HAS_MANY.value:
                    join_only.append(path)
                    preload.append(path)
                else:
                    joined_preload.append(path)
            else:
                preload.append(path)

        return LoadingStrategy(
            preload=_unique(preload),
            joined_preload=_unique(joined_preload),
            join_only=_unique(join_only),
        )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def resolve(
    presenter: PresenterDefinition,
    model: ModelDefinition,
    context: Union[str, RenderContext],
    sort_field: Optional[str] = None,
    search_fields: Optional[Sequence[str]] = None,
    models: Optional[Mapping[str, ModelDefinition]] = None,
) -> LoadingStrategy:
    """
    Plan the loading strategy for *presenter* rendered in *context*.

    Pure: reads only the definitions passed in and returns a fresh value.
    """
    collector: DependencyCollector = DependencyCollector(models)
    collector.from_presenter(presenter, model, context)
    collector.from_sort(sort_field, model)
    collector.from_search(search_fields, model)
    collector.from_manual(presenter.config_for(context))
    strategy: LoadingStrategy = StrategyResolver.resolve(collector.dependencies, model)
    logger.debug(
        "Resolved %s/%s: %d dependencies -> %s",
        presenter.name,
        context,
        len(collector.dependencies),
        strategy.to_dict(),
    )
    return strategy


__all__: List[str] = [
    "Dependency",
    "DependencyCollector",
    "LoadingStrategy",
    "Path",
    "StrategyResolver",
    "resolve",
]
