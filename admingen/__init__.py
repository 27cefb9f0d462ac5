# File: admingen/__init__.py
"""
AdminGen - Metadata-Driven Admin Application Core
==================================================

Compiles declarative model and presenter definitions (YAML/JSON files or
small Python builder scripts) into:

- additive database schema changes (``SchemaManager``),
- one runtime record type per model (``ModelFactory``),
- per-request eager-loading plans (``includes.resolve``).

Architecture overview::

    sources --> MetadataLoader --> MetadataSet --+--> SchemaManager  (boot)
                 (loader.py)       (models.py)   +--> ModelFactory   (boot)
                                                 +--> includes       (per request)

Usage::

    from admingen import AdminGenerator, load_settings
    app, report = AdminGenerator(load_settings("admingen.yml")).boot()
    Order = app.model("order")

    # From the command line
    admingen check -m config/admingen
"""

from __future__ import annotations

__version__: str = "0.1.0"
__author__: str = "Diegoproggramer"
__license__: str = "MIT"

from admingen.config import AdminGenSettings, load_settings
from admingen.custom_fields import CustomFieldDefinition, CustomFieldRegistry
from admingen.events import EventBus, EventContext
from admingen.exceptions import (
    AdminGenError,
    ConfigurationError,
    RecordInvalid,
    SchemaDriftWarning,
)
from admingen.factory import ModelFactory, ModelRegistry
from admingen.generator import AdminGenerator, BootedApplication, BootReport
from admingen.includes import LoadingStrategy, resolve
from admingen.loader import MetadataLoader, MetadataSet, load_metadata
from admingen.models import ModelDefinition, PresenterDefinition
from admingen.runtime import Errors, Record
from admingen.schema import MigrationPlan, SchemaManager
from admingen.services import ServiceRegistry, TypeRegistry, current_user
from admingen.utils import Timer
from admingen.validators import ValidationResult, validate_metadata

# ---------------------------------------------------------------------------
# Public API surface
# ---------------------------------------------------------------------------

__all__: list[str] = [
    # Version info
    "__version__",
    "__author__",
    "__license__",
    # Boot
    "AdminGenerator",
    "AdminGenSettings",
    "BootReport",
    "BootedApplication",
    "load_settings",
    # Definitions
    "MetadataLoader",
    "MetadataSet",
    "ModelDefinition",
    "PresenterDefinition",
    "load_metadata",
    # Validation
    "ValidationResult",
    "validate_metadata",
    # Schema
    "MigrationPlan",
    "SchemaManager",
    # Runtime
    "CustomFieldDefinition",
    "CustomFieldRegistry",
    "Errors",
    "EventBus",
    "EventContext",
    "ModelFactory",
    "ModelRegistry",
    "Record",
    "ServiceRegistry",
    "TypeRegistry",
    "current_user",
    # Loading plans
    "LoadingStrategy",
    "resolve",
    # Errors
    "AdminGenError",
    "ConfigurationError",
    "RecordInvalid",
    "SchemaDriftWarning",
    # Utilities
    "Timer",
]
