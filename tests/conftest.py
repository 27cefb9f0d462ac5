"""
tests/conftest.py
Shared fixtures for the admingen test suite.

No external mocking libraries are used; metadata files are written with
PyYAML into pytest's tmp_path and schema tests run against real SQLite
databases through SQLAlchemy.
"""

from __future__ import annotations

import copy
import logging
import pathlib
from typing import Any, Callable, Dict, Iterator, List

import pytest
import yaml
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from admingen.factory import ModelFactory
from admingen.loader import MetadataSet, load_metadata
from admingen.models import ModelDefinition
from admingen.services import ServiceRegistry, TypeRegistry


# ---------------------------------------------------------------------------
# Reference metadata
# ---------------------------------------------------------------------------

CRM_MODELS: Dict[str, Any] = {
    "models": [
        {
            "name": "company",
            "fields": [
                {"name": "name", "type": "string", "limit": 100, "validations": ["presence"]},
                {"name": "website", "type": "url"},
            ],
            "associations": [
                {
                    "type": "has_many",
                    "name": "contacts",
                    "target_model": "contact",
                    "foreign_key": "company_id",
                },
                {
                    "type": "has_many",
                    "name": "deals",
                    "target_model": "deal",
                    "foreign_key": "company_id",
                },
            ],
            "display_templates": {"default": "{name}"},
        },
        {
            "name": "contact",
            "fields": [
                {"name": "first_name", "type": "string"},
                {"name": "email", "type": "email"},
            ],
            "associations": [
                {"type": "belongs_to", "name": "company", "target_model": "company"},
            ],
            "display_templates": {
                "default": {"template": "{first_name}", "subtitle": "{company.name}"},
            },
        },
        {
            "name": "deal",
            "fields": [
                {"name": "title", "type": "string", "validations": ["presence"]},
                {
                    "name": "stage",
                    "type": "enum",
                    "enum_values": ["lead", "won", "lost"],
                    "default": "lead",
                },
                {"name": "value", "type": "decimal", "precision": 12, "scale": 2},
            ],
            "associations": [
                {"type": "belongs_to", "name": "company", "target_model": "company"},
                {
                    "type": "has_many",
                    "name": "comments",
                    "target_model": "comment",
                    "foreign_key": "deal_id",
                },
            ],
        },
        {
            "name": "comment",
            "fields": [{"name": "body", "type": "text"}],
            "associations": [
                {"type": "belongs_to", "name": "deal", "target_model": "deal"},
            ],
        },
    ]
}

TASK_MODELS: Dict[str, Any] = {
    "models": [
        {
            "name": "project",
            "fields": [{"name": "name", "type": "string"}],
            "associations": [
                {
                    "type": "has_many",
                    "name": "tasks",
                    "target_model": "task",
                    "foreign_key": "project_id",
                },
            ],
        },
        {
            "name": "task",
            "fields": [{"name": "title", "type": "string"}],
            "associations": [
                {"type": "belongs_to", "name": "project", "target_model": "project"},
            ],
            "options": {"positioning": {"scope": "project_id"}},
        },
    ]
}

CRM_PRESENTERS: Dict[str, Any] = {
    "presenters": [
        {
            "name": "deal_admin",
            "model": "deal",
            "slug": "deals",
            "index": {
                "per_page": 25,
                "default_sort": {"field": "title", "direction": "asc"},
                "table_columns": [
                    {"field": "title"},
                    {"field": "company_id"},
                    {"field": "company.name"},
                ],
            },
            "show": {
                "layout": [
                    {"section": "Details", "fields": [{"field": "title"}, {"field": "stage"}]},
                    {"section": "Comments", "type": "association_list", "association": "comments"},
                ]
            },
            "search": {"enabled": True, "searchable_fields": ["title"]},
        },
        {"name": "deal_compact", "inherits": "deal_admin", "per_page": 10},
        {
            "name": "company_admin",
            "model": "company",
            "show": {
                "layout": [
                    {"section": "Contacts", "type": "association_list", "association": "contacts"},
                ]
            },
        },
    ]
}


def write_yaml(path: pathlib.Path, data: Dict[str, Any]) -> pathlib.Path:
    """Dump *data* to *path* (creating parent directories) and return the path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        yaml.safe_dump(data, fh, default_flow_style=False, sort_keys=False)
    return path


# ---------------------------------------------------------------------------
# Metadata fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def metadata_dir(tmp_path: pathlib.Path) -> pathlib.Path:
    """A metadata directory holding the reference CRM and task definitions."""
    root: pathlib.Path = tmp_path / "admingen"
    write_yaml(root / "models" / "crm.yml", copy.deepcopy(CRM_MODELS))
    write_yaml(root / "models" / "tasks.yaml", copy.deepcopy(TASK_MODELS))
    write_yaml(root / "presenters" / "crm.yml", copy.deepcopy(CRM_PRESENTERS))
    return root


@pytest.fixture()
def metadata(metadata_dir: pathlib.Path) -> MetadataSet:
    return load_metadata([metadata_dir])


@pytest.fixture()
def crm_documents() -> Dict[str, Dict[str, Any]]:
    """Deep copies of the reference documents, free to mutate."""
    return {
        "models": copy.deepcopy(CRM_MODELS),
        "tasks": copy.deepcopy(TASK_MODELS),
        "presenters": copy.deepcopy(CRM_PRESENTERS),
    }


@pytest.fixture()
def make_metadata(tmp_path: pathlib.Path) -> Callable[..., MetadataSet]:
    """Write the given documents into a fresh directory and load it."""
    counter: List[int] = [0]

    def _make(*documents: Dict[str, Any]) -> MetadataSet:
        counter[0] += 1
        root: pathlib.Path = tmp_path / f"set{counter[0]}"
        for index, document in enumerate(documents):
            write_yaml(root / f"doc{index}.yml", copy.deepcopy(document))
        return load_metadata([root])

    return _make


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine() -> Iterator[Engine]:
    """In-memory SQLite engine; one shared connection so state survives."""
    eng: Engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield eng
    eng.dispose()


@pytest.fixture()
def database_url(tmp_path: pathlib.Path) -> str:
    return f"sqlite:///{(tmp_path / 'app.db').as_posix()}"


# ---------------------------------------------------------------------------
# Runtime type fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def services() -> ServiceRegistry:
    return ServiceRegistry.with_builtins()


@pytest.fixture()
def build_type(services: ServiceRegistry) -> Callable[..., type]:
    """
    Compile one model hash into a runtime type.

    Extra keyword arguments go to ``ModelFactory``; ``models`` defaults to
    the built model alone.
    """

    def _build(data: Dict[str, Any], **factory_kwargs: Any) -> type:
        types: TypeRegistry = TypeRegistry()
        model: ModelDefinition = ModelDefinition.from_hash(data, types)
        models: Dict[str, ModelDefinition] = factory_kwargs.pop("models", {model.name: model})
        factory: ModelFactory = ModelFactory(
            factory_kwargs.pop("services", services),
            types=types,
            models=models,
            **factory_kwargs,
        )
        return factory.build(model)

    return _build


# ---------------------------------------------------------------------------
# Logging isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _restore_admingen_logger() -> Iterator[None]:
    """The CLI reconfigures the package logger; undo it after each test."""
    root_logger: logging.Logger = logging.getLogger("admingen")
    handlers = list(root_logger.handlers)
    level: int = root_logger.level
    propagate: bool = root_logger.propagate
    yield
    root_logger.handlers[:] = handlers
    root_logger.setLevel(level)
    root_logger.propagate = propagate
