# File: admingen/loader.py
"""
AdminGen - Metadata Loader
===========================
Reads declarative sources (YAML/JSON files and Python builder scripts),
converges them to the normalized intermediate hash, parses typed
definitions, resolves presenter inheritance and checks cross references.

Pipeline::

    files -> raw entries -> types -> models -> presenters (ordered, merged)
                                      \\-> reference checks

Any problem raises ``ConfigurationError`` naming the offending source.
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import yaml
from pydantic import ValidationError as PydanticValidationError

from admingen.dsl import load_script
from admingen.exceptions import ConfigurationError
from admingen.inheritance import PresenterEntry, resolve_presenters
from admingen.models import ModelDefinition, PresenterDefinition, TypeDefinition
from admingen.services import TypeRegistry
from admingen.utils import Timer

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("admingen.loader")

STRUCTURED_SUFFIXES: Tuple[str, ...] = (".yml", ".yaml", ".json")
SCRIPT_SUFFIXES: Tuple[str, ...] = (".py",)

# Top-level keys: singular holds one mapping, plural holds a list
_KIND_KEYS: Dict[str, Tuple[str, str]] = {
    "type": ("type", "types"),
    "model": ("model", "models"),
    "presenter": ("presenter", "presenters"),
}

SourceLike = Union[str, Path]


# ---------------------------------------------------------------------------
# Result container
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MetadataSet:
    """Loaded, validated definitions. Read-only after construction."""

    models: Mapping[str, ModelDefinition]
    presenters: Mapping[str, PresenterDefinition]
    types: TypeRegistry
    sources: Mapping[str, str] = field(default_factory=dict)

    def model(self, name: str) -> Optional[ModelDefinition]:
        return self.models.get(name)

    def presenter(self, name: str) -> Optional[PresenterDefinition]:
        return self.presenters.get(name)

    def require_model(self, name: str) -> ModelDefinition:
        model: Optional[ModelDefinition] = self.models.get(name)
        if model is None:
            raise ConfigurationError(f"Model '{name}' not found")
        return model

    def require_presenter(self, name: str) -> PresenterDefinition:
        presenter: Optional[PresenterDefinition] = self.presenters.get(name)
        if presenter is None:
            raise ConfigurationError(f"Presenter '{name}' not found")
        return presenter

    def source_of(self, kind: str, name: str) -> Optional[str]:
        return self.sources.get(f"{kind}:{name}")

    def __repr__(self) -> str:
        return (
            f"<MetadataSet models={len(self.models)} "
            f"presenters={len(self.presenters)} types={len(self.types)}>"
        )


@dataclass
class _RawEntry:
    kind: str
    name: str
    data: Dict[str, Any]
    source: str


# ---------------------------------------------------------------------------
# File readers
# ---------------------------------------------------------------------------


def _format_pydantic_error(exc: PydanticValidationError) -> str:
    parts: List[str] = []
    for err in exc.errors():
        loc: str = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


def read_structured_file(path: Path) -> Dict[str, Any]:
    """
    Load a YAML or JSON definition file.

    Raises:
        ConfigurationError: unreadable file, parse errors or a non-mapping document.
    """
    try:
        text: str = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigurationError(f"Cannot read metadata file: {exc}", str(path)) from exc
    try:
        if path.suffix.lower() == ".json":
            data: Any = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid JSON: {exc}", str(path)) from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"YAML syntax error: {exc}", str(path)) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Expected a mapping at top level, got {type(data).__name__}", str(path)
        )
    return data


def _entries_from_mapping(data: Mapping[str, Any], source: str) -> List[_RawEntry]:
    entries: List[_RawEntry] = []
    unknown: List[str] = [
        k for k in data if not any(k in pair for pair in _KIND_KEYS.values())
    ]
    if unknown:
        raise ConfigurationError(
            f"Unknown top-level key(s) {sorted(unknown)}; expected one of "
            "model/models, presenter/presenters, type/types",
            source,
        )
    for kind, (single, plural) in _KIND_KEYS.items():
        items: List[Any] = []
        if single in data:
            items.append(data[single])
        if plural in data:
            if not isinstance(data[plural], list):
                raise ConfigurationError(f"'{plural}' must be a list", source)
            items.extend(data[plural])
        for item in items:
            if not isinstance(item, dict):
                raise ConfigurationError(f"Each {kind} must be a mapping", source)
            name: Any = item.get("name")
            if not name or not isinstance(name, str):
                raise ConfigurationError(f"{kind.capitalize()} is missing a 'name'", source)
            entries.append(_RawEntry(kind=kind, name=name, data=item, source=source))
    return entries


def _iter_source_files(sources: Iterable[SourceLike]) -> List[Path]:
    files: List[Path] = []
    suffixes: Tuple[str, ...] = STRUCTURED_SUFFIXES + SCRIPT_SUFFIXES
    for src in sources:
        path: Path = Path(src)
        if path.is_dir():
            files.extend(
                sorted(
                    p for p in path.rglob("*")
                    if p.is_file() and p.suffix.lower() in suffixes
                )
            )
        elif path.is_file():
            files.append(path)
        else:
            raise ConfigurationError("Metadata source does not exist", str(path))
    return files


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------


class MetadataLoader:
    """
    Turns declarative sources into a ``MetadataSet``.

    Args:
        types: Type registry to extend with loaded types. Built-in types
            are available when omitted.
    """

    def __init__(self, types: Optional[TypeRegistry] = None) -> None:
        self._types: TypeRegistry = types if types is not None else TypeRegistry()

    def load(self, sources: Iterable[SourceLike]) -> MetadataSet:
        with Timer("metadata load") as t:
            raw_entries: List[_RawEntry] = []
            presenter_entries: List[PresenterEntry] = []
            for path in _iter_source_files(sources):
                self._collect(path, raw_entries, presenter_entries)

            owners: Dict[str, str] = self._check_duplicates(raw_entries, presenter_entries)
            self._load_types([e for e in raw_entries if e.kind == "type"])
            models: Dict[str, ModelDefinition] = self._load_models(
                [e for e in raw_entries if e.kind == "model"]
            )
            self._check_association_targets(models, owners)
            presenters: Dict[str, PresenterDefinition] = self._load_presenters(
                presenter_entries, models
            )

        logger.info(
            "Loaded %d model(s), %d presenter(s), %d type(s) in %.3fs.",
            len(models),
            len(presenters),
            len(self._types),
            t.elapsed,
        )
        return MetadataSet(
            models=MappingProxyType(models),
            presenters=MappingProxyType(presenters),
            types=self._types,
            sources=MappingProxyType(owners),
        )

    # -- Collection ---------------------------------------------------------

    def _collect(
        self,
        path: Path,
        raw_entries: List[_RawEntry],
        presenter_entries: List[PresenterEntry],
    ) -> None:
        source: str = str(path)
        if path.suffix.lower() in SCRIPT_SUFFIXES:
            script = load_script(path)
            for builder in script.types:
                raw_entries.append(_RawEntry("type", builder.name, builder.to_hash(), source))
            for builder in script.models:
                raw_entries.append(_RawEntry("model", builder.name, builder.to_hash(), source))
            for builder in script.presenters:
                presenter_entries.append(
                    PresenterEntry(
                        name=builder.name,
                        parent=builder.inherits,
                        build=builder.to_hash,
                        source=source,
                    )
                )
            return

        data: Dict[str, Any] = read_structured_file(path)
        for entry in _entries_from_mapping(data, source):
            if entry.kind == "presenter":
                presenter_entries.append(self._presenter_entry(entry))
            else:
                raw_entries.append(entry)

    @staticmethod
    def _presenter_entry(entry: _RawEntry) -> PresenterEntry:
        snapshot: Dict[str, Any] = copy.deepcopy(entry.data)
        parent: Any = entry.data.get("inherits")
        if parent is not None and not isinstance(parent, str):
            raise ConfigurationError(
                f"Presenter '{entry.name}': 'inherits' must be a presenter name", entry.source
            )
        return PresenterEntry(
            name=entry.name,
            parent=parent,
            build=lambda: copy.deepcopy(snapshot),
            source=entry.source,
        )

    @staticmethod
    def _check_duplicates(
        raw_entries: List[_RawEntry],
        presenter_entries: List[PresenterEntry],
    ) -> Dict[str, str]:
        owners: Dict[str, str] = {}
        pairs: List[Tuple[str, str, str]] = [(e.kind, e.name, e.source) for e in raw_entries]
        pairs.extend(("presenter", e.name, e.source) for e in presenter_entries)
        for kind, name, source in pairs:
            key: str = f"{kind}:{name}"
            if key in owners:
                raise ConfigurationError(
                    f"Duplicate {kind} '{name}' (already defined in {owners[key]})", source
                )
            owners[key] = source
        return owners

    # -- Parsing ------------------------------------------------------------

    def _load_types(self, entries: List[_RawEntry]) -> None:
        for entry in entries:
            try:
                type_def: TypeDefinition = TypeDefinition.model_validate(entry.data)
            except PydanticValidationError as exc:
                raise ConfigurationError(
                    f"Invalid type '{entry.name}': {_format_pydantic_error(exc)}", entry.source
                ) from exc
            self._types.register(type_def, entry.source)

    def _load_models(self, entries: List[_RawEntry]) -> Dict[str, ModelDefinition]:
        models: Dict[str, ModelDefinition] = {}
        for entry in entries:
            try:
                models[entry.name] = ModelDefinition.from_hash(entry.data, self._types)
            except PydanticValidationError as exc:
                raise ConfigurationError(
                    f"Invalid model '{entry.name}': {_format_pydantic_error(exc)}", entry.source
                ) from exc
        return models

    @staticmethod
    def _check_association_targets(
        models: Mapping[str, ModelDefinition],
        owners: Mapping[str, str],
    ) -> None:
        for model in models.values():
            for assoc in model.associations:
                if assoc.polymorphic or not assoc.target_model:
                    continue
                if assoc.target_model not in models:
                    raise ConfigurationError(
                        f"Model '{model.name}', association '{assoc.name}' references "
                        f"unknown model '{assoc.target_model}'",
                        owners.get(f"model:{model.name}"),
                    )

    @staticmethod
    def _load_presenters(
        entries: List[PresenterEntry],
        models: Mapping[str, ModelDefinition],
    ) -> Dict[str, PresenterDefinition]:
        sources: Dict[str, str] = {e.name: e.source for e in entries}
        resolved: Dict[str, Dict[str, Any]] = resolve_presenters(entries)
        presenters: Dict[str, PresenterDefinition] = {}
        for entry in entries:
            data: Dict[str, Any] = resolved[entry.name]
            try:
                presenter: PresenterDefinition = PresenterDefinition.from_hash(data)
            except PydanticValidationError as exc:
                raise ConfigurationError(
                    f"Invalid presenter '{entry.name}': {_format_pydantic_error(exc)}",
                    sources[entry.name],
                ) from exc
            if presenter.model not in models:
                raise ConfigurationError(
                    f"Presenter '{presenter.name}' references unknown model '{presenter.model}'",
                    sources[entry.name],
                )
            presenters[entry.name] = presenter
        return presenters


def load_metadata(
    sources: Iterable[SourceLike],
    types: Optional[TypeRegistry] = None,
) -> MetadataSet:
    """Convenience wrapper around ``MetadataLoader(types).load(sources)``."""
    return MetadataLoader(types).load(sources)


__all__: List[str] = [
    "MetadataLoader",
    "MetadataSet",
    "load_metadata",
    "read_structured_file",
]
