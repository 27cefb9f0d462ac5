# File: admingen/validators.py
"""
AdminGen - Metadata Validators
===============================
Cross-definition semantic checks over a loaded ``MetadataSet``.

Pydantic validates each definition on its own and the loader rejects
what cannot be loaded at all (duplicates, unknown targets, inheritance
errors). This module reports what *can* be loaded but is probably wrong:
presenter columns naming unknown fields, templates referencing missing
attributes, positioning scopes that do not exist, service keys the
registry lacks...

Every check returns a ``ValidationResult``; ``validate_metadata`` merges
them all.

Usage:
    from admingen.validators import validate_metadata
    result = validate_metadata(metadata, services)
    if not result.is_valid:
        print(result.format_report())
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from admingen.loader import MetadataSet
from admingen.models import (
    AssociationType,
    FieldDefinition,
    FieldType,
    ModelDefinition,
    PresenterDefinition,
)
from admingen.services import ServiceRegistry
from admingen.utils import extract_template_refs, is_template

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("admingen.validators")

# ---------------------------------------------------------------------------
# Validation result container
# ---------------------------------------------------------------------------


class ValidationIssue:
    """Lightweight issue descriptor (no Pydantic overhead)."""

    __slots__ = ("level", "code", "message", "context")

    def __init__(
        self,
        level: str,
        code: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.level: str = level  # "error" | "warning" | "info"
        self.code: str = code
        self.message: str = message
        self.context: Dict[str, Any] = context or {}

    @property
    def is_error(self) -> bool:
        return self.level == "error"

    @property
    def is_warning(self) -> bool:
        return self.level == "warning"

    def __repr__(self) -> str:
        return f"[{self.level.upper()}] {self.code}: {self.message}"

    def __str__(self) -> str:
        return self.__repr__()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "code": self.code,
            "message": self.message,
            "context": self.context,
        }


class ValidationResult:
    """Accumulates ``ValidationIssue`` instances produced by the checks."""

    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: List[ValidationIssue] = []

    # -- Mutation -----------------------------------------------------------

    def add_error(self, code: str, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        self._items.append(ValidationIssue("error", code, message, context))

    def add_warning(
        self, code: str, message: str, context: Optional[Dict[str, Any]] = None
    ) -> None:
        self._items.append(ValidationIssue("warning", code, message, context))

    def add_info(self, code: str, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        self._items.append(ValidationIssue("info", code, message, context))

    def merge(self, other: "ValidationResult") -> None:
        self._items.extend(other._items)

    # -- Query --------------------------------------------------------------

    @property
    def errors(self) -> List[ValidationIssue]:
        return [e for e in self._items if e.is_error]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [e for e in self._items if e.is_warning]

    @property
    def all_items(self) -> List[ValidationIssue]:
        return list(self._items)

    @property
    def has_errors(self) -> bool:
        return any(e.is_error for e in self._items)

    @property
    def has_warnings(self) -> bool:
        return any(e.is_warning for e in self._items)

    @property
    def error_count(self) -> int:
        return sum(1 for e in self._items if e.is_error)

    @property
    def warning_count(self) -> int:
        return sum(1 for e in self._items if e.is_warning)

    @property
    def is_valid(self) -> bool:
        return not self.has_errors

    def codes(self) -> List[str]:
        return [e.code for e in self._items]

    def summary(self) -> str:
        return (
            f"Validation: {self.error_count} error(s), "
            f"{self.warning_count} warning(s), "
            f"{len(self._items)} total item(s)."
        )

    def __repr__(self) -> str:
        return f"<ValidationResult {self.summary()}>"

    def __bool__(self) -> bool:
        """Truthy when there are NO errors (i.e. valid)."""
        return self.is_valid

    def __len__(self) -> int:
        return len(self._items)

    def format_report(self, include_info: bool = False) -> str:
        """Human-readable multi-line report."""
        lines: List[str] = [self.summary(), ""]
        for item in self._items:
            if not include_info and item.level == "info":
                continue
            prefix: str = {"error": "ERROR", "warning": "WARN ", "info": "INFO "}.get(
                item.level, "-"
            )
            lines.append(f"  {prefix} [{item.code}] {item.message}")
            for k, v in item.context.items():
                lines.append(f"       {k}: {v}")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def known_attributes(model: ModelDefinition) -> Set[str]:
    """Every attribute name a runtime record of *model* will have."""
    names: Set[str] = {"id"} | set(model.field_names)
    for assoc in model.associations:
        names.add(assoc.name)
        if assoc.type == AssociationType.BELONGS_TO.value and assoc.foreign_key:
            names.add(assoc.foreign_key)
        if assoc.polymorphic_type_column:
            names.add(assoc.polymorphic_type_column)
    if model.timestamps:
        names.update(("created_at", "updated_at"))
    if model.positioning_field:
        names.add(model.positioning_field)
    if model.custom_fields_enabled:
        names.add("custom_data")
    return names


def _check_reference(
    result: ValidationResult,
    metadata: MetadataSet,
    model: ModelDefinition,
    reference: str,
    code: str,
    context: Dict[str, Any],
) -> None:
    """Warn when a plain or dot-path reference cannot be resolved."""
    parts: List[str] = reference.split(".")
    if len(parts) == 1:
        if reference not in known_attributes(model):
            result.add_warning(
                code,
                f"'{reference}' is not an attribute of model '{model.name}'.",
                {**context, "field": reference},
            )
        return
    assoc = model.association(parts[0])
    if assoc is None:
        result.add_warning(
            code,
            f"'{reference}' goes through unknown association '{parts[0]}' "
            f"of model '{model.name}'; it will not be eager-loaded.",
            {**context, "field": reference},
        )
        return
    target: Optional[ModelDefinition] = (
        metadata.model(assoc.target_model) if assoc.target_model else None
    )
    if target is not None and len(parts) == 2 and parts[1] not in known_attributes(target):
        result.add_warning(
            code,
            f"'{reference}': '{parts[1]}' is not an attribute of model '{target.name}'.",
            {**context, "field": reference},
        )


def _field_references(value: str) -> List[str]:
    if "{" in value:
        return extract_template_refs(value)
    return [value] if value else []


# ---------------------------------------------------------------------------
# Individual checks
# ---------------------------------------------------------------------------


def validate_associations(metadata: MetadataSet) -> ValidationResult:
    """
    - belongs_to foreign keys that collide with a non-integer field
    - has_many foreign keys missing on the target
    - through associations naming an unknown association
    """
    result: ValidationResult = ValidationResult()
    for model in metadata.models.values():
        for assoc in model.associations:
            ctx: Dict[str, Any] = {"model": model.name, "association": assoc.name}
            if assoc.type == AssociationType.BELONGS_TO.value and assoc.foreign_key:
                explicit: Optional[FieldDefinition] = model.field(assoc.foreign_key)
                if explicit is not None and explicit.column_type != FieldType.INTEGER.value:
                    result.add_error(
                        "FOREIGN_KEY_TYPE_MISMATCH",
                        f"Foreign key '{assoc.foreign_key}' of '{model.name}.{assoc.name}' "
                        f"is declared as '{explicit.type}', expected integer.",
                        ctx,
                    )
            if assoc.through and model.association(assoc.through) is None:
                result.add_error(
                    "UNKNOWN_THROUGH_ASSOCIATION",
                    f"'{model.name}.{assoc.name}' goes through unknown association "
                    f"'{assoc.through}'.",
                    ctx,
                )
            if assoc.type == AssociationType.HAS_MANY.value and assoc.foreign_key:
                target: Optional[ModelDefinition] = (
                    metadata.model(assoc.target_model) if assoc.target_model else None
                )
                if target is not None and assoc.foreign_key not in known_attributes(target):
                    result.add_warning(
                        "MISSING_INVERSE_FOREIGN_KEY",
                        f"'{model.name}.{assoc.name}' expects foreign key "
                        f"'{assoc.foreign_key}' on model '{target.name}'.",
                        ctx,
                    )
    return result


def validate_presenter_fields(metadata: MetadataSet) -> ValidationResult:
    """Index columns and show/form section fields must resolve on the model."""
    result: ValidationResult = ValidationResult()
    for presenter in metadata.presenters.values():
        model: Optional[ModelDefinition] = metadata.model(presenter.model)
        if model is None:
            continue
        for column in presenter.table_columns:
            for ref in _field_references(str(column.get("field") or "")):
                _check_reference(
                    result,
                    metadata,
                    model,
                    ref,
                    "UNKNOWN_COLUMN_FIELD",
                    {"presenter": presenter.name, "section": "index"},
                )
        for section_key, list_key in (("show", "layout"), ("form", "sections")):
            for section in presenter.config_for(section_key).get(list_key) or []:
                if section.get("association") and model.association(section["association"]) is None:
                    result.add_warning(
                        "UNKNOWN_SECTION_ASSOCIATION",
                        f"Presenter '{presenter.name}' renders unknown association "
                        f"'{section['association']}'.",
                        {"presenter": presenter.name, "section": section_key},
                    )
                if section.get("type") == "nested_fields":
                    continue
                for field_config in section.get("fields") or []:
                    for ref in _field_references(str(field_config.get("field") or "")):
                        _check_reference(
                            result,
                            metadata,
                            model,
                            ref,
                            "UNKNOWN_SECTION_FIELD",
                            {"presenter": presenter.name, "section": section_key},
                        )
    return result


def validate_sort_and_search(metadata: MetadataSet) -> ValidationResult:
    result: ValidationResult = ValidationResult()
    for presenter in metadata.presenters.values():
        model: Optional[ModelDefinition] = metadata.model(presenter.model)
        if model is None:
            continue
        sort: Any = presenter.default_sort
        if isinstance(sort, dict) and sort.get("field"):
            _check_reference(
                result,
                metadata,
                model,
                str(sort["field"]),
                "UNKNOWN_SORT_FIELD",
                {"presenter": presenter.name},
            )
        for search_field in presenter.searchable_fields:
            _check_reference(
                result,
                metadata,
                model,
                search_field,
                "UNKNOWN_SEARCH_FIELD",
                {"presenter": presenter.name},
            )
    return result


def validate_display_templates(metadata: MetadataSet) -> ValidationResult:
    result: ValidationResult = ValidationResult()
    for model in metadata.models.values():
        for name, template in model.display_templates.items():
            for ref in template.referenced_fields():
                _check_reference(
                    result,
                    metadata,
                    model,
                    ref,
                    "UNKNOWN_TEMPLATE_FIELD",
                    {"model": model.name, "template": name},
                )
    return result


def validate_positioning(metadata: MetadataSet) -> ValidationResult:
    result: ValidationResult = ValidationResult()
    for model in metadata.models.values():
        if not model.is_positioned:
            continue
        ctx: Dict[str, Any] = {"model": model.name}
        declared: Optional[FieldDefinition] = model.field(str(model.positioning_field))
        if declared is not None and declared.column_type != FieldType.INTEGER.value:
            result.add_error(
                "POSITION_FIELD_NOT_INTEGER",
                f"Position field '{declared.name}' of '{model.name}' must be an integer.",
                ctx,
            )
        for scope in model.positioning_scope:
            if scope not in known_attributes(model):
                result.add_error(
                    "UNKNOWN_POSITION_SCOPE",
                    f"Positioning scope '{scope}' is not an attribute of '{model.name}'.",
                    ctx,
                )
    return result


def validate_enums(metadata: MetadataSet) -> ValidationResult:
    """Enum values must be distinct; literal defaults must be one of them."""
    result: ValidationResult = ValidationResult()
    for model in metadata.models.values():
        for fdef in model.enum_fields:
            names: List[str] = fdef.enum_value_names
            if len(names) != len(set(names)):
                result.add_error(
                    "DUPLICATE_ENUM_VALUE",
                    f"Enum field '{model.name}.{fdef.name}' declares a value twice.",
                    {"model": model.name, "field": fdef.name},
                )
            default: Any = fdef.default
            if default is None or isinstance(default, dict) or is_template(default):
                continue
            if str(default) not in fdef.enum_value_names:
                result.add_error(
                    "ENUM_DEFAULT_NOT_ALLOWED",
                    f"Default '{default}' of '{model.name}.{fdef.name}' is not one of "
                    f"{fdef.enum_value_names}.",
                    {"model": model.name, "field": fdef.name},
                )
    return result


def _service_keys(model: ModelDefinition) -> Iterable[tuple]:
    """(category, key, where) for every service a model names."""
    conditions: List[tuple] = []
    for fdef in model.fields:
        where: str = f"{model.name}.{fdef.name}"
        for name in fdef.effective_transforms:
            yield ("transforms", name, where)
        if isinstance(fdef.default, dict) and "service" in fdef.default:
            yield ("defaults", str(fdef.default["service"]), where)
        if isinstance(fdef.computed, dict) and "service" in fdef.computed:
            yield ("computed", str(fdef.computed["service"]), where)
        if isinstance(fdef.source, dict) and "service" in fdef.source:
            yield ("accessors", str(fdef.source["service"]), where)
        for validation in fdef.effective_validations:
            if validation.service:
                yield ("validators", validation.service, where)
            if validation.when and "service" in validation.when:
                conditions.append(("conditions", str(validation.when["service"]), where))
    for validation in model.validations:
        if validation.service:
            yield ("validators", validation.service, model.name)
        if validation.when and "service" in validation.when:
            conditions.append(("conditions", str(validation.when["service"]), model.name))
    for event in model.events:
        if event.condition and "service" in event.condition:
            conditions.append(("conditions", str(event.condition["service"]), model.name))
    yield from conditions


def check_service_references(
    metadata: MetadataSet, services: ServiceRegistry
) -> ValidationResult:
    """Every service key a definition names must be registered."""
    result: ValidationResult = ValidationResult()
    for model in metadata.models.values():
        for category, key, where in _service_keys(model):
            if not services.registered(category, key):
                result.add_error(
                    "UNKNOWN_SERVICE",
                    f"{where}: {category} service '{key}' is not registered.",
                    {"category": category, "key": key},
                )
    return result


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def validate_metadata(
    metadata: MetadataSet, services: Optional[ServiceRegistry] = None
) -> ValidationResult:
    """
    **Master validation entry point.**

    Runs every metadata check and, when *services* is given, the service
    reference check.
    """
    logger.info(
        "Starting metadata validation: %d model(s), %d presenter(s)",
        len(metadata.models),
        len(metadata.presenters),
    )
    result: ValidationResult = ValidationResult()
    result.merge(validate_associations(metadata))
    result.merge(validate_presenter_fields(metadata))
    result.merge(validate_sort_and_search(metadata))
    result.merge(validate_display_templates(metadata))
    result.merge(validate_positioning(metadata))
    result.merge(validate_enums(metadata))
    if services is not None:
        result.merge(check_service_references(metadata, services))

    if result.has_errors:
        logger.error("Validation FAILED with %d error(s). %s", result.error_count, result.summary())
    else:
        logger.info("Validation PASSED. %s", result.summary())
    return result


__all__: List[str] = [
    "ValidationIssue",
    "ValidationResult",
    "check_service_references",
    "known_attributes",
    "validate_associations",
    "validate_display_templates",
    "validate_enums",
    "validate_metadata",
    "validate_positioning",
    "validate_presenter_fields",
    "validate_sort_and_search",
]
