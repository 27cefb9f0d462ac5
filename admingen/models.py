# File: admingen/models.py
"""
AdminGen - Definition Model
============================
Pydantic V2 models representing parsed declarative definitions: models,
fields, associations, validations, scopes, events, display templates,
presenters and reusable field types.

Every model here is frozen. Definitions are created once during boot and
shared read-only for the lifetime of the process. Presenter view sections
are kept as the plain mappings produced by the loader; consumers must treat
them as read-only.

Raw input shapes (YAML, JSON or builder scripts) all converge to the same
intermediate hash, parsed by ``ModelDefinition.from_hash`` /
``PresenterDefinition.from_hash``.
"""

from __future__ import annotations

import copy
import logging
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from admingen.utils import extract_template_refs, to_plural, to_title_human

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("admingen.models")

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class FieldType(str, Enum):
    """Primitive field types understood by every component."""

    STRING = "string"
    TEXT = "text"
    INTEGER = "integer"
    FLOAT = "float"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    ENUM = "enum"
    FILE = "file"
    RICH_TEXT = "rich_text"
    JSON = "json"
    UUID = "uuid"
    ATTACHMENT = "attachment"


BASE_TYPES: FrozenSet[str] = frozenset(t.value for t in FieldType)


class FieldSource(str, Enum):
    """Where a field's value lives."""

    STORED = "stored"
    COMPUTED = "computed"
    EXTERNAL = "external"
    SERVICE = "service"


class AssociationType(str, Enum):
    """Declared association macro."""

    BELONGS_TO = "belongs_to"
    HAS_MANY = "has_many"
    HAS_ONE = "has_one"


class AssociationKind(str, Enum):
    """Cardinality classification used by schema synthesis and the resolver."""

    TO_ONE_REQUIRED = "to_one_required"
    TO_ONE_OPTIONAL = "to_one_optional"
    TO_MANY = "to_many"
    TO_MANY_THROUGH = "to_many_through"
    POLYMORPHIC = "polymorphic"


class ValidationType(str, Enum):
    """Supported validation kinds."""

    PRESENCE = "presence"
    LENGTH = "length"
    NUMERICALITY = "numericality"
    FORMAT = "format"
    INCLUSION = "inclusion"
    EXCLUSION = "exclusion"
    UNIQUENESS = "uniqueness"
    CONFIRMATION = "confirmation"
    COMPARISON = "comparison"
    CUSTOM = "custom"
    SERVICE = "service"


class ComparisonOperator(str, Enum):
    """Operators for cross-field comparison validations."""

    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    EQ = "eq"
    NOT_EQ = "not_eq"


class EventType(str, Enum):
    LIFECYCLE = "lifecycle"
    FIELD_CHANGE = "field_change"


LIFECYCLE_EVENTS: Tuple[str, ...] = (
    "after_create",
    "after_update",
    "before_destroy",
    "after_destroy",
)


class RenderContext(str, Enum):
    """Presenter contexts the resolver can plan for."""

    INDEX = "index"
    SHOW = "show"
    FORM = "form"


class DependencyReason(str, Enum):
    """Why the resolver needs an association loaded."""

    DISPLAY = "display"
    QUERY = "query"


PRESENTER_SECTIONS: Tuple[str, ...] = (
    "index",
    "show",
    "form",
    "search",
    "actions",
    "navigation",
)

DEFAULT_PER_PAGE: int = 25

# ---------------------------------------------------------------------------
# Shared model configuration
# ---------------------------------------------------------------------------

_SHARED_CONFIG: ConfigDict = ConfigDict(
    strict=False,
    populate_by_name=True,
    use_enum_values=True,
    frozen=True,
    extra="forbid",
)

_COLUMN_OPTION_KEYS: Tuple[str, ...] = ("limit", "precision", "scale", "null")


def _pop_extras(data: Dict[str, Any], known: FrozenSet[str], into: str) -> Dict[str, Any]:
    """Move every key not in *known* into ``data[into]`` (shorthand syntax)."""
    extras: Dict[str, Any] = {k: v for k, v in data.items() if k not in known}
    if not extras:
        return data
    result: Dict[str, Any] = {k: v for k, v in data.items() if k in known}
    merged: Dict[str, Any] = dict(result.get(into) or {})
    merged.update(extras)
    result[into] = merged
    return result


# ---------------------------------------------------------------------------
# Column options & validations
# ---------------------------------------------------------------------------


class ColumnOptions(BaseModel):
    """Physical column options. ``None`` means "not specified"."""

    model_config = _SHARED_CONFIG

    limit: Optional[int] = Field(default=None, ge=1, description="Max length.")
    precision: Optional[int] = Field(default=None, ge=1, description="Numeric precision.")
    scale: Optional[int] = Field(default=None, ge=0, description="Numeric scale.")
    null: Optional[bool] = Field(default=None, description="Column nullability.")

    def overlay(self, other: Optional["ColumnOptions"]) -> "ColumnOptions":
        """Return a copy where every option *other* specifies wins."""
        if other is None:
            return self
        updates: Dict[str, Any] = {
            key: getattr(other, key)
            for key in _COLUMN_OPTION_KEYS
            if getattr(other, key) is not None
        }
        return self.model_copy(update=updates)


class ValidationDefinition(BaseModel):
    """
    A single declared validation.

    Shorthand keys (``{type: length, maximum: 100}``) are folded into
    ``options``.
    """

    model_config = _SHARED_CONFIG

    type: ValidationType = Field(..., description="Validation kind.")
    options: Dict[str, Any] = Field(default_factory=dict)
    message: Optional[str] = Field(default=None, description="Custom error message.")
    when: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Condition: {field, operator, value} or {service}.",
    )
    field_ref: Optional[str] = Field(default=None, description="Comparison operand field.")
    operator: Optional[ComparisonOperator] = Field(default=None)
    validator_class: Optional[str] = Field(
        default=None, description="Dotted import path for custom validators."
    )
    service: Optional[str] = Field(default=None, description="Validator service key.")
    target_field: Optional[str] = Field(
        default=None, description="Field that model-level errors are reported on."
    )

    @model_validator(mode="before")
    @classmethod
    def _fold_shorthand(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"type": data}
        if isinstance(data, dict):
            return _pop_extras(data, frozenset(cls.model_fields), "options")
        return data

    @model_validator(mode="after")
    def _check_requirements(self) -> "ValidationDefinition":
        if self.type == ValidationType.CUSTOM and not self.validator_class:
            raise ValueError("Custom validation requires 'validator_class'")
        if self.type == ValidationType.SERVICE and not self.service:
            raise ValueError("Service validation requires 'service'")
        if self.type == ValidationType.COMPARISON and (not self.field_ref or not self.operator):
            raise ValueError("Comparison validation requires 'field_ref' and 'operator'")
        return self


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------


class TypeDefinition(BaseModel):
    """A reusable field type (``email``, ``phone``...) layered on a base type."""

    model_config = _SHARED_CONFIG

    name: str = Field(..., min_length=1)
    base_type: FieldType = Field(...)
    transforms: List[str] = Field(default_factory=list)
    validations: List[ValidationDefinition] = Field(default_factory=list)
    column_options: ColumnOptions = Field(default_factory=ColumnOptions)

    @field_validator("transforms", mode="before")
    @classmethod
    def _listify(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [v]
        return v or []


# ---------------------------------------------------------------------------
# Fields
# ---------------------------------------------------------------------------


class EnumValue(BaseModel):
    model_config = _SHARED_CONFIG

    value: str = Field(..., min_length=1)
    label: Optional[str] = Field(default=None)

    @model_validator(mode="before")
    @classmethod
    def _from_scalar(cls, data: Any) -> Any:
        if isinstance(data, (str, int)) and not isinstance(data, bool):
            return {"value": str(data)}
        return data

    @property
    def display(self) -> str:
        return self.label or to_title_human(self.value)


class AttachmentOptions(BaseModel):
    """Size and content-type constraints for attachment fields."""

    model_config = _SHARED_CONFIG

    multiple: bool = Field(default=False)
    max_size: Optional[Union[int, str]] = Field(default=None, description='e.g. "25MB".')
    min_size: Optional[Union[int, str]] = Field(default=None)
    content_types: List[str] = Field(default_factory=list, description='e.g. ["image/*"].')
    max_files: Optional[int] = Field(default=None, ge=1)


class FieldDefinition(BaseModel):
    """
    A single field of a model.

    ``type`` is either a base type or the name of a registered
    ``TypeDefinition``; in the latter case ``type_definition`` is attached by
    the loader before validation.
    """

    model_config = _SHARED_CONFIG

    name: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    label: Optional[str] = Field(default=None)
    column_options: ColumnOptions = Field(default_factory=ColumnOptions)
    validations: List[ValidationDefinition] = Field(default_factory=list)
    enum_values: List[EnumValue] = Field(default_factory=list)
    default: Any = Field(
        default=None,
        description="Literal, template string with {refs}, or {service: key}.",
    )
    transforms: List[str] = Field(default_factory=list)
    computed: Optional[Union[str, Dict[str, Any]]] = Field(
        default=None, description="Template string or {service: key}."
    )
    source: Optional[Union[str, Dict[str, Any]]] = Field(
        default=None, description='"external" or {service, options}.'
    )
    attachment: AttachmentOptions = Field(default_factory=AttachmentOptions)
    type_definition: Optional[TypeDefinition] = Field(default=None)

    @model_validator(mode="before")
    @classmethod
    def _normalise(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        # limit/null/precision/scale may be given at the top level
        inline: Dict[str, Any] = {
            k: data.pop(k) for k in _COLUMN_OPTION_KEYS if k in data
        }
        if inline:
            options: Dict[str, Any] = dict(data.get("column_options") or {})
            options.update(inline)
            data["column_options"] = options
        if isinstance(data.get("transforms"), str):
            data["transforms"] = [data["transforms"]]
        values: Any = data.get("enum_values")
        if isinstance(values, dict):
            data["enum_values"] = [{"value": k, "label": v} for k, v in values.items()]
        return data

    @model_validator(mode="after")
    def _check_consistency(self) -> "FieldDefinition":
        if self.type not in BASE_TYPES and self.type_definition is None:
            raise ValueError(f"Field type '{self.type}' is invalid for field '{self.name}'")
        if self.source is not None and self.computed is not None:
            raise ValueError(
                f"Field '{self.name}': cannot have both 'source' and 'computed'"
            )
        if isinstance(self.source, str) and self.source != "external":
            raise ValueError(
                f"Field '{self.name}': source must be 'external' or a {{service: ...}} mapping"
            )
        if isinstance(self.source, dict) and not self.source.get("service"):
            raise ValueError(f"Field '{self.name}': source mapping requires 'service'")
        if self.base_type == FieldType.ENUM.value and not self.enum_values:
            raise ValueError(f"Enum field '{self.name}' requires enum_values")
        return self

    # -- Derived helpers ----------------------------------------------------

    @property
    def base_type(self) -> str:
        if self.type_definition is not None:
            return str(self.type_definition.base_type)
        return self.type

    @property
    def display_label(self) -> str:
        return self.label or to_title_human(self.name)

    @property
    def source_kind(self) -> FieldSource:
        if self.computed is not None:
            return FieldSource.COMPUTED
        if self.source == "external":
            return FieldSource.EXTERNAL
        if isinstance(self.source, dict):
            return FieldSource.SERVICE
        return FieldSource.STORED

    @property
    def is_virtual(self) -> bool:
        return self.source is not None

    @property
    def is_external(self) -> bool:
        return self.source_kind == FieldSource.EXTERNAL

    @property
    def is_service_accessor(self) -> bool:
        return self.source_kind == FieldSource.SERVICE

    @property
    def is_computed(self) -> bool:
        return self.computed is not None

    @property
    def is_enum(self) -> bool:
        return self.base_type == FieldType.ENUM.value

    @property
    def is_attachment(self) -> bool:
        return self.base_type == FieldType.ATTACHMENT.value

    @property
    def is_stored(self) -> bool:
        """True when the field owns a physical column."""
        return not self.is_virtual and not self.is_attachment

    @property
    def column_type(self) -> Optional[str]:
        """Storage type after aliasing, or None for non-stored fields."""
        if not self.is_stored:
            return None
        aliases: Dict[str, str] = {
            FieldType.ENUM.value: FieldType.STRING.value,
            FieldType.RICH_TEXT.value: FieldType.TEXT.value,
            FieldType.UUID.value: FieldType.STRING.value,
            FieldType.FILE.value: FieldType.STRING.value,
        }
        return aliases.get(self.base_type, self.base_type)

    @property
    def effective_column_options(self) -> ColumnOptions:
        """Type-level column options first, field-level options override."""
        if self.type_definition is None:
            return self.column_options
        return self.type_definition.column_options.overlay(self.column_options)

    @property
    def enum_value_names(self) -> List[str]:
        return [v.value for v in self.enum_values]

    @property
    def effective_transforms(self) -> List[str]:
        """Type-level transforms first, then field-level, de-duplicated."""
        ordered: Dict[str, None] = {}
        if self.type_definition is not None:
            for name in self.type_definition.transforms:
                ordered.setdefault(name, None)
        for name in self.transforms:
            ordered.setdefault(name, None)
        return list(ordered)

    @property
    def effective_validations(self) -> List[ValidationDefinition]:
        if self.type_definition is None:
            return list(self.validations)
        return list(self.type_definition.validations) + list(self.validations)

    def __repr__(self) -> str:
        return f"<FieldDefinition {self.name}: {self.type}>"


# ---------------------------------------------------------------------------
# Associations
# ---------------------------------------------------------------------------


class NestedAttributes(BaseModel):
    """Nested-write permissions for a to-many or to-one association."""

    model_config = _SHARED_CONFIG

    allow_destroy: bool = Field(default=False)
    limit: Optional[int] = Field(default=None, ge=1)
    update_only: bool = Field(default=False)
    reject_if: Optional[str] = Field(default=None, description='e.g. "all_blank".')


class AssociationDefinition(BaseModel):
    """A declared association to another model (or an external class)."""

    model_config = _SHARED_CONFIG

    type: AssociationType = Field(...)
    name: str = Field(..., min_length=1)
    target_model: Optional[str] = Field(default=None)
    class_name: Optional[str] = Field(default=None, description="External target class.")
    foreign_key: Optional[str] = Field(default=None)
    dependent: Optional[str] = Field(default=None, description="destroy, nullify, ...")
    required: Optional[bool] = Field(default=None)
    polymorphic: bool = Field(default=False)
    as_: Optional[str] = Field(default=None, alias="as")
    through: Optional[str] = Field(default=None)
    source: Optional[str] = Field(default=None)
    inverse_of: Optional[str] = Field(default=None)
    autosave: bool = Field(default=False)
    validate_: Optional[bool] = Field(default=None, alias="validate")
    nested_attributes: Optional[NestedAttributes] = Field(default=None)
    counter_cache: Union[bool, str] = Field(default=False)
    touch: bool = Field(default=False)

    @model_validator(mode="before")
    @classmethod
    def _infer_defaults(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "model" in data and "target_model" not in data:
            data["target_model"] = data.pop("model")
        if data.get("nested_attributes") is True:
            data["nested_attributes"] = {}
        if data.get("type") == AssociationType.BELONGS_TO.value:
            if not data.get("foreign_key") and data.get("name"):
                data["foreign_key"] = f"{data['name']}_id"
            if data.get("required") is None:
                data["required"] = not data.get("polymorphic", False)
        return data

    @model_validator(mode="after")
    def _check_target(self) -> "AssociationDefinition":
        if not self.polymorphic and not self.target_model and not self.class_name:
            raise ValueError(
                f"Association '{self.name}' requires either target_model or class_name"
            )
        if self.polymorphic and self.type != AssociationType.BELONGS_TO.value:
            raise ValueError(f"Association '{self.name}': only belongs_to can be polymorphic")
        return self

    @property
    def kind(self) -> AssociationKind:
        if self.polymorphic:
            return AssociationKind.POLYMORPHIC
        if self.type == AssociationType.HAS_MANY.value:
            if self.through:
                return AssociationKind.TO_MANY_THROUGH
            return AssociationKind.TO_MANY
        if self.type == AssociationType.BELONGS_TO.value and self.required:
            return AssociationKind.TO_ONE_REQUIRED
        return AssociationKind.TO_ONE_OPTIONAL

    @property
    def is_to_many(self) -> bool:
        return self.type == AssociationType.HAS_MANY.value

    @property
    def is_to_one(self) -> bool:
        return not self.is_to_many

    @property
    def is_internal(self) -> bool:
        """True when the target is a model of the loaded definition set."""
        return bool(self.target_model)

    @property
    def polymorphic_type_column(self) -> Optional[str]:
        return f"{self.name}_type" if self.polymorphic else None

    def __repr__(self) -> str:
        return f"<AssociationDefinition {self.type} {self.name} -> {self.target_model or self.class_name}>"


# ---------------------------------------------------------------------------
# Scopes, events, display templates
# ---------------------------------------------------------------------------


class ScopeDefinition(BaseModel):
    """A named query scope. ``type: custom`` scopes are provided by the host."""

    model_config = _SHARED_CONFIG

    name: str = Field(..., min_length=1)
    type: Optional[str] = Field(default=None)
    where: Dict[str, Any] = Field(default_factory=dict)
    where_not: Dict[str, Any] = Field(default_factory=dict)
    order: Dict[str, str] = Field(default_factory=dict)
    limit: Optional[int] = Field(default=None, ge=1)

    @property
    def is_custom(self) -> bool:
        return self.type == "custom"


class EventDefinition(BaseModel):
    """Lifecycle or field-change event declared on a model."""

    model_config = _SHARED_CONFIG

    name: str = Field(..., min_length=1)
    type: EventType = Field(default=EventType.FIELD_CHANGE)
    field: Optional[str] = Field(default=None)
    condition: Optional[Dict[str, Any]] = Field(default=None)

    @model_validator(mode="before")
    @classmethod
    def _infer_type(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("type"):
            data = dict(data)
            data["type"] = (
                EventType.LIFECYCLE.value
                if data.get("name") in LIFECYCLE_EVENTS
                else EventType.FIELD_CHANGE.value
            )
        return data

    @model_validator(mode="after")
    def _check_field(self) -> "EventDefinition":
        if self.type == EventType.FIELD_CHANGE.value and not self.field:
            raise ValueError(f"Field change event '{self.name}' requires a field")
        if self.type == EventType.LIFECYCLE.value and self.name not in LIFECYCLE_EVENTS:
            raise ValueError(
                f"Unknown lifecycle event '{self.name}'; expected one of {list(LIFECYCLE_EVENTS)}"
            )
        return self

    @property
    def is_lifecycle(self) -> bool:
        return self.type == EventType.LIFECYCLE.value


class DisplayTemplate(BaseModel):
    """How a record renders when embedded in another view."""

    model_config = _SHARED_CONFIG

    template: str = Field(..., min_length=1)
    subtitle: Optional[str] = Field(default=None)
    badge: Optional[str] = Field(default=None)
    icon: Optional[str] = Field(default=None)

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"template": data}
        return data

    def referenced_fields(self) -> List[str]:
        """Every ``{ref}`` of template, subtitle and badge, de-duplicated."""
        seen: Dict[str, None] = {}
        for part in (self.template, self.subtitle, self.badge):
            for ref in extract_template_refs(part):
                seen.setdefault(ref, None)
        return list(seen)


class PositioningOptions(BaseModel):
    model_config = _SHARED_CONFIG

    field: str = Field(default="position", min_length=1)
    scope: List[str] = Field(default_factory=list)

    @field_validator("scope", mode="before")
    @classmethod
    def _listify(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v


class ModelOptions(BaseModel):
    model_config = _SHARED_CONFIG

    timestamps: bool = Field(default=True)
    custom_fields: bool = Field(default=False, description="Schemaless extension fields.")
    label_method: str = Field(default="to_s")
    positioning: Optional[PositioningOptions] = Field(default=None)

    @field_validator("positioning", mode="before")
    @classmethod
    def _expand_positioning(cls, v: Any) -> Any:
        if v is True:
            return {}
        if v is False:
            return None
        return v


# ---------------------------------------------------------------------------
# Model definition
# ---------------------------------------------------------------------------


class ModelDefinition(BaseModel):
    """
    A complete declarative model.

    Invariant: field names are unique within the model.
    """

    model_config = _SHARED_CONFIG

    name: str = Field(..., min_length=1)
    label: Optional[str] = Field(default=None)
    label_plural: Optional[str] = Field(default=None)
    table_name: Optional[str] = Field(default=None)
    fields: List[FieldDefinition] = Field(default_factory=list)
    validations: List[ValidationDefinition] = Field(default_factory=list)
    associations: List[AssociationDefinition] = Field(default_factory=list)
    scopes: List[ScopeDefinition] = Field(default_factory=list)
    events: List[EventDefinition] = Field(default_factory=list)
    options: ModelOptions = Field(default_factory=ModelOptions)
    display_templates: Dict[str, DisplayTemplate] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _fill_names(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not data.get("name"):
            return data
        data = dict(data)
        name: str = str(data["name"])
        if not data.get("label"):
            data["label"] = to_title_human(name)
        if not data.get("label_plural"):
            data["label_plural"] = to_plural(str(data["label"]))
        if not data.get("table_name"):
            data["table_name"] = to_plural(name)
        return data

    @model_validator(mode="after")
    def _unique_names(self) -> "ModelDefinition":
        names: List[str] = [f.name for f in self.fields]
        if len(names) != len(set(names)):
            dupes: List[str] = sorted({n for n in names if names.count(n) > 1})
            raise ValueError(f"Duplicate field names in model '{self.name}': {', '.join(dupes)}")
        assoc_names: List[str] = [a.name for a in self.associations]
        if len(assoc_names) != len(set(assoc_names)):
            dupes = sorted({n for n in assoc_names if assoc_names.count(n) > 1})
            raise ValueError(
                f"Duplicate association names in model '{self.name}': {', '.join(dupes)}"
            )
        return self

    @classmethod
    def from_hash(
        cls,
        data: Mapping[str, Any],
        types: Optional[Mapping[str, TypeDefinition]] = None,
    ) -> "ModelDefinition":
        """
        Parse the normalized intermediate hash.

        Field types that are not base types are resolved against *types*
        and attached as ``type_definition``.
        """
        raw: Dict[str, Any] = dict(data)
        fields: List[Any] = []
        for item in raw.get("fields") or []:
            if isinstance(item, dict):
                type_name: Any = item.get("type")
                if (
                    types is not None
                    and type_name not in BASE_TYPES
                    and type_name in types
                    and "type_definition" not in item
                ):
                    item = {**item, "type_definition": types[type_name]}
            fields.append(item)
        raw["fields"] = fields
        return cls.model_validate(raw)

    # -- Lookups ------------------------------------------------------------

    def field(self, name: str) -> Optional[FieldDefinition]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def association(self, name: str) -> Optional[AssociationDefinition]:
        for a in self.associations:
            if a.name == name:
                return a
        return None

    def display_template(self, name: str = "default") -> Optional[DisplayTemplate]:
        return self.display_templates.get(name)

    def belongs_to_fk_map(self) -> Dict[str, AssociationDefinition]:
        """Foreign-key column name -> owning belongs_to association."""
        return {
            a.foreign_key: a
            for a in self.associations
            if a.type == AssociationType.BELONGS_TO.value and a.foreign_key
        }

    @property
    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    @property
    def enum_fields(self) -> List[FieldDefinition]:
        return [f for f in self.fields if f.is_enum]

    @property
    def stored_fields(self) -> List[FieldDefinition]:
        return [f for f in self.fields if f.is_stored]

    @property
    def timestamps(self) -> bool:
        return self.options.timestamps

    @property
    def custom_fields_enabled(self) -> bool:
        return self.options.custom_fields

    @property
    def label_method(self) -> str:
        return self.options.label_method

    @property
    def is_positioned(self) -> bool:
        return self.options.positioning is not None

    @property
    def positioning_field(self) -> Optional[str]:
        return self.options.positioning.field if self.options.positioning else None

    @property
    def positioning_scope(self) -> List[str]:
        return list(self.options.positioning.scope) if self.options.positioning else []

    def __repr__(self) -> str:
        return (
            f"<ModelDefinition {self.name} table={self.table_name} "
            f"fields={len(self.fields)} associations={len(self.associations)}>"
        )


# ---------------------------------------------------------------------------
# Presenter definition
# ---------------------------------------------------------------------------


class PresenterDefinition(BaseModel):
    """
    A fully resolved presenter: inheritance has already been applied.

    View sections are free-form mappings; the keys consumers rely on are
    documented on the accessors below. The accessors hand out deep copies,
    so a caller editing a section never changes the resolved presenter.
    """

    model_config = _SHARED_CONFIG

    name: str = Field(..., min_length=1)
    model: str = Field(..., min_length=1)
    label: Optional[str] = Field(default=None)
    slug: Optional[str] = Field(default=None)
    icon: Optional[str] = Field(default=None)
    read_only: bool = Field(default=False)
    embeddable: bool = Field(default=False)
    inherits: Optional[str] = Field(default=None, description="Parent presenter name.")
    per_page: Optional[int] = Field(default=None, ge=1, description="Top-level page size.")
    index: Dict[str, Any] = Field(default_factory=dict)
    show: Dict[str, Any] = Field(default_factory=dict)
    form: Dict[str, Any] = Field(default_factory=dict)
    search: Dict[str, Any] = Field(default_factory=dict)
    actions: Dict[str, Any] = Field(default_factory=dict)
    navigation: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _fill_label(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("name") and not data.get("label"):
            data = dict(data)
            data["label"] = to_title_human(str(data["name"]))
        return data

    @field_validator("index", "show", "form", "search", "actions", "navigation", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return {} if v is None else v

    @classmethod
    def from_hash(cls, data: Mapping[str, Any]) -> "PresenterDefinition":
        return cls.model_validate(dict(data))

    # -- View accessors -----------------------------------------------------

    @property
    def index_config(self) -> Dict[str, Any]:
        return copy.deepcopy(self.index)

    @property
    def show_config(self) -> Dict[str, Any]:
        return copy.deepcopy(self.show)

    @property
    def form_config(self) -> Dict[str, Any]:
        return copy.deepcopy(self.form)

    @property
    def search_config(self) -> Dict[str, Any]:
        return copy.deepcopy(self.search)

    def config_for(self, context: Union[str, RenderContext]) -> Dict[str, Any]:
        """Section backing a render context; empty for unknown contexts."""
        key: str = context.value if isinstance(context, RenderContext) else str(context)
        if key in (c.value for c in RenderContext):
            return copy.deepcopy(getattr(self, key))
        return {}

    @property
    def table_columns(self) -> List[Dict[str, Any]]:
        return copy.deepcopy(list(self.index.get("table_columns") or []))

    @property
    def effective_per_page(self) -> int:
        """Top-level override, else ``index.per_page``, else the default."""
        if self.per_page is not None:
            return self.per_page
        return int(self.index.get("per_page") or DEFAULT_PER_PAGE)

    @property
    def default_sort(self) -> Optional[Dict[str, Any]]:
        return copy.deepcopy(self.index.get("default_sort"))

    @property
    def searchable_fields(self) -> List[str]:
        if self.search.get("enabled") is False:
            return []
        return [str(f) for f in self.search.get("searchable_fields") or []]

    def actions_for(self, on: str) -> List[Dict[str, Any]]:
        """Actions of one kind: ``collection``, ``single`` or ``batch``."""
        return copy.deepcopy(list(self.actions.get(on) or []))

    @property
    def is_routable(self) -> bool:
        return bool(self.slug)

    def __repr__(self) -> str:
        return f"<PresenterDefinition {self.name} model={self.model}>"


__all__: List[str] = [
    "AssociationDefinition",
    "AssociationKind",
    "AssociationType",
    "AttachmentOptions",
    "BASE_TYPES",
    "ColumnOptions",
    "ComparisonOperator",
    "DEFAULT_PER_PAGE",
    "DependencyReason",
    "DisplayTemplate",
    "EnumValue",
    "EventDefinition",
    "EventType",
    "FieldDefinition",
    "FieldSource",
    "FieldType",
    "LIFECYCLE_EVENTS",
    "ModelDefinition",
    "ModelOptions",
    "NestedAttributes",
    "PRESENTER_SECTIONS",
    "PositioningOptions",
    "PresenterDefinition",
    "RenderContext",
    "ScopeDefinition",
    "TypeDefinition",
    "ValidationDefinition",
    "ValidationType",
]
