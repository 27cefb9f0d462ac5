# File: admingen/applicators.py
"""
AdminGen - Runtime Type Applicators
====================================
The thirteen build stages of the ModelFactory. Each stage is a plain
function ``apply_<stage>(record_type, model, context)`` that fills the
type's ``RecordSchema`` and installs descriptors. Stages only depend on
what they read from the definition, so each can run alone against a bare
type from ``new_record_type``.

Stage order (see ``STAGES``):

 1. table                 8. events
 2. enums                 9. defaults (and positioning)
 3. validations          10. computed fields
 4. transforms           11. external & service accessors
 5. associations         12. custom fields
 6. attachments          13. label method
 7. scopes
"""

from __future__ import annotations

import copy
import datetime as _dt
import fnmatch
import importlib
import logging
import operator
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Tuple,
    runtime_checkable,
)

from admingen.custom_fields import CustomFieldDefinition, CustomFieldRegistry
from admingen.events import EventBus
from admingen.exceptions import ConfigurationError
from admingen.models import (
    AssociationDefinition,
    AssociationType,
    ComparisonOperator,
    EventDefinition,
    FieldDefinition,
    ModelDefinition,
    ValidationDefinition,
    ValidationType,
)
from admingen.runtime import (
    BASE_ERROR_KEY,
    AccessorDescriptor,
    AssociationDescriptor,
    AssociationSpec,
    AttachmentSpec,
    CustomFieldDescriptor,
    FieldDescriptor,
    PositioningSpec,
    Record,
    RecordSchema,
    ScopeSpec,
    TransientDescriptor,
    is_blank,
)
from admingen.services import ServiceRegistry, Validator
from admingen.utils import interpolate_template, is_template, parse_size

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("admingen.applicators")

Check = Callable[[Record, str], List[str]]
Predicate = Callable[[Record], bool]

CUSTOM_DATA_COLUMN: str = "custom_data"
TIMESTAMP_COLUMNS: Tuple[str, str] = ("created_at", "updated_at")


@runtime_checkable
class UniquenessChecker(Protocol):
    """Answers uniqueness queries against storage for the write path."""

    def exists(
        self,
        model: str,
        field: str,
        value: Any,
        scope: Mapping[str, Any],
        exclude_id: Any,
    ) -> bool: ...


@dataclass
class BuildContext:
    """Collaborators shared by every stage of one factory run."""

    services: ServiceRegistry
    event_bus: EventBus = field(default_factory=EventBus)
    custom_fields: Optional[CustomFieldRegistry] = None
    models: Mapping[str, ModelDefinition] = field(default_factory=dict)
    uniqueness_checker: Optional[UniquenessChecker] = None


def _schema(record_type: type) -> RecordSchema:
    return record_type.__schema__


def _where(model: ModelDefinition, name: str) -> str:
    return f"{model.name}.{name}"


def resolve_path(record: Any, path: str) -> Any:
    """Follow a dot path (``company.name``) from *record*; None on a gap."""
    current: Any = record
    for part in path.split("."):
        if current is None:
            return None
        current = getattr(current, part, None)
    return current


def render_template(record: Any, template: str) -> str:
    return interpolate_template(template, lambda ref: resolve_path(record, ref))


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------

_CONDITION_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "eq": lambda a, b: a == b,
    "not_eq": lambda a, b: a != b,
    "in": lambda a, b: a in (b or []),
    "not_in": lambda a, b: a not in (b or []),
    "gt": lambda a, b: a is not None and a > b,
    "gte": lambda a, b: a is not None and a >= b,
    "lt": lambda a, b: a is not None and a < b,
    "lte": lambda a, b: a is not None and a <= b,
    "present": lambda a, b: not is_blank(a),
    "blank": lambda a, b: is_blank(a),
}


def build_condition(
    spec: Mapping[str, Any], services: ServiceRegistry, context: str
) -> Predicate:
    """
    Compile ``{field, operator, value}`` or ``{service: key}`` into a predicate.

    Raises:
        ConfigurationError: unknown operator or missing condition service.
    """
    if "service" in spec:
        condition: Any = services.require("conditions", str(spec["service"]), context)
        return lambda record: bool(condition.evaluate(record))

    field_name: Optional[str] = spec.get("field")
    if not field_name:
        raise ConfigurationError(f"{context}: condition requires 'field' or 'service'")
    op_name: str = str(spec.get("operator", "eq"))
    compare: Optional[Callable[[Any, Any], bool]] = _CONDITION_OPERATORS.get(op_name)
    if compare is None:
        raise ConfigurationError(
            f"{context}: unknown condition operator '{op_name}'; "
            f"expected one of {sorted(_CONDITION_OPERATORS)}"
        )
    expected: Any = spec.get("value")
    return lambda record: compare(resolve_path(record, field_name), expected)


# ---------------------------------------------------------------------------
# Stage 1: table binding
# ---------------------------------------------------------------------------


def _stamp_timestamps(record: Record, changes: Dict[str, Any]) -> None:
    now: _dt.datetime = _dt.datetime.now(_dt.timezone.utc)
    if record.new_record and record.read_attribute("created_at") is None:
        record.write_attribute("created_at", now)
    if record.new_record or record.changes:
        record.write_attribute("updated_at", now)


def apply_table(record_type: type, model: ModelDefinition, context: BuildContext) -> None:
    """Bind the table name and install one descriptor per physical column."""
    schema: RecordSchema = _schema(record_type)
    schema.table_name = model.table_name

    columns: Dict[str, str] = {"id": "integer"}
    for fdef in model.stored_fields:
        columns.setdefault(fdef.name, fdef.column_type or "string")
    for assoc in model.associations:
        if assoc.type == AssociationType.BELONGS_TO.value and assoc.foreign_key:
            columns.setdefault(assoc.foreign_key, "integer")
            if assoc.polymorphic_type_column:
                columns.setdefault(assoc.polymorphic_type_column, "string")
    if model.is_positioned and model.positioning_field:
        columns.setdefault(model.positioning_field, "integer")
    if model.custom_fields_enabled:
        columns.setdefault(CUSTOM_DATA_COLUMN, "json")
        schema.custom_data_column = CUSTOM_DATA_COLUMN
    if model.timestamps:
        for name in TIMESTAMP_COLUMNS:
            columns.setdefault(name, "datetime")
        schema.add_hook("before_save", _stamp_timestamps)

    schema.columns = list(columns)
    schema.field_types = dict(columns)
    for name in columns:
        setattr(record_type, name, FieldDescriptor(name))


# ---------------------------------------------------------------------------
# Stage 2: enums
# ---------------------------------------------------------------------------


def _enum_validator(name: str, allowed: Tuple[str, ...]) -> Callable[[Record], None]:
    def validator(record: Record) -> None:
        value: Any = record.read_attribute(name)
        if not is_blank(value) and str(value) not in allowed:
            record.errors.add(name, "is not included in the list")

    return validator


def apply_enums(record_type: type, model: ModelDefinition, context: BuildContext) -> None:
    """Enum columns are plain strings; membership is enforced by validation."""
    schema: RecordSchema = _schema(record_type)
    for fdef in model.enum_fields:
        allowed: Tuple[str, ...] = tuple(fdef.enum_value_names)
        schema.enum_values[fdef.name] = allowed
        schema.add_validator(_enum_validator(fdef.name, allowed))


# ---------------------------------------------------------------------------
# Stage 3: validations
# ---------------------------------------------------------------------------


def _as_number(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            return None
    return None


def _presence(options: Mapping[str, Any]) -> Check:
    def check(record: Record, name: str) -> List[str]:
        return ["can't be blank"] if is_blank(getattr(record, name)) else []

    return check


def _length(options: Mapping[str, Any]) -> Check:
    minimum: Optional[int] = options.get("minimum")
    maximum: Optional[int] = options.get("maximum")
    exact: Optional[int] = options.get("is")
    within: Any = options.get("in") or options.get("within")
    if isinstance(within, (list, tuple)) and len(within) == 2:
        minimum, maximum = within[0], within[1]

    def check(record: Record, name: str) -> List[str]:
        value: Any = getattr(record, name)
        if value is None:
            return []
        length: int = len(value) if hasattr(value, "__len__") else len(str(value))
        if exact is not None and length != exact:
            return [f"is the wrong length (should be {exact} characters)"]
        if minimum is not None and length < minimum:
            return [f"is too short (minimum is {minimum} characters)"]
        if maximum is not None and length > maximum:
            return [f"is too long (maximum is {maximum} characters)"]
        return []

    return check


_NUMERIC_BOUNDS: Tuple[Tuple[str, Callable[[Any, Any], bool], str], ...] = (
    ("greater_than", operator.gt, "greater than"),
    ("greater_than_or_equal_to", operator.ge, "greater than or equal to"),
    ("less_than", operator.lt, "less than"),
    ("less_than_or_equal_to", operator.le, "less than or equal to"),
    ("equal_to", operator.eq, "equal to"),
    ("other_than", operator.ne, "other than"),
)


def _numericality(options: Mapping[str, Any]) -> Check:
    only_integer: bool = bool(options.get("only_integer"))
    allow_nil: bool = bool(options.get("allow_nil") or options.get("allow_blank"))

    def check(record: Record, name: str) -> List[str]:
        raw: Any = getattr(record, name)
        if is_blank(raw):
            return [] if allow_nil else ["is not a number"]
        number: Optional[Decimal] = _as_number(raw)
        if number is None:
            return ["is not a number"]
        if only_integer and number != number.to_integral_value():
            return ["must be an integer"]
        messages: List[str] = []
        for key, compare, phrase in _NUMERIC_BOUNDS:
            if key in options and not compare(number, Decimal(str(options[key]))):
                messages.append(f"must be {phrase} {options[key]}")
        return messages

    return check


def _format(options: Mapping[str, Any]) -> Check:
    pattern: Optional[str] = options.get("with")
    negated: Optional[str] = options.get("without")
    if pattern is None and negated is None:
        raise ConfigurationError("format validation requires 'with' or 'without'")
    try:
        compiled_with: Optional[re.Pattern[str]] = re.compile(pattern) if pattern else None
        compiled_without: Optional[re.Pattern[str]] = re.compile(negated) if negated else None
    except re.error as exc:
        raise ConfigurationError(f"format validation has an invalid pattern: {exc}") from exc

    def check(record: Record, name: str) -> List[str]:
        value: Any = getattr(record, name)
        if is_blank(value):
            return []
        text: str = str(value)
        if compiled_with is not None and not compiled_with.search(text):
            return ["is invalid"]
        if compiled_without is not None and compiled_without.search(text):
            return ["is invalid"]
        return []

    return check


def _membership(options: Mapping[str, Any], inside: bool) -> Check:
    values: List[Any] = list(options.get("in") or options.get("within") or [])
    skip_blank: bool = bool(options.get("allow_blank") or options.get("allow_nil"))

    def check(record: Record, name: str) -> List[str]:
        value: Any = getattr(record, name)
        if skip_blank and is_blank(value):
            return []
        if inside and value not in values:
            return ["is not included in the list"]
        if not inside and value in values:
            return ["is reserved"]
        return []

    return check


def _uniqueness(options: Mapping[str, Any], model: ModelDefinition, checker: Any) -> Check:
    scope: Any = options.get("scope") or []
    scope_fields: List[str] = [scope] if isinstance(scope, str) else list(scope)
    case_sensitive: bool = options.get("case_sensitive", True)

    def check(record: Record, name: str) -> List[str]:
        value: Any = getattr(record, name)
        if checker is None or is_blank(value):
            return []
        if not case_sensitive and isinstance(value, str):
            value = value.lower()
        scope_values: Dict[str, Any] = {s: record.read_attribute(s) for s in scope_fields}
        taken: bool = checker.exists(
            model.name, name, value, scope_values, record.read_attribute("id")
        )
        return ["has already been taken"] if taken else []

    return check


def _confirmation(record_type: type, field_name: str) -> Check:
    confirmation: str = f"{field_name}_confirmation"
    if not hasattr(record_type, confirmation):
        setattr(record_type, confirmation, TransientDescriptor(confirmation))

    def check(record: Record, name: str) -> List[str]:
        expected: Any = record._transient.get(confirmation)
        if expected is None:
            return []
        if expected != getattr(record, name):
            return [f"doesn't match {confirmation.replace('_', ' ').capitalize()}"]
        return []

    return check


_COMPARISONS: Dict[str, Tuple[Callable[[Any, Any], bool], str]] = {
    ComparisonOperator.GT.value: (operator.gt, "greater than"),
    ComparisonOperator.GTE.value: (operator.ge, "greater than or equal to"),
    ComparisonOperator.LT.value: (operator.lt, "less than"),
    ComparisonOperator.LTE.value: (operator.le, "less than or equal to"),
    ComparisonOperator.EQ.value: (operator.eq, "equal to"),
    ComparisonOperator.NOT_EQ.value: (operator.ne, "other than"),
}


def _comparison(definition: ValidationDefinition) -> Check:
    compare, phrase = _COMPARISONS[str(definition.operator)]
    other_name: str = str(definition.field_ref)

    def check(record: Record, name: str) -> List[str]:
        value: Any = getattr(record, name)
        other: Any = resolve_path(record, other_name)
        if value is None or other is None:
            return []
        try:
            ok: bool = compare(value, other)
        except TypeError:
            return [f"cannot be compared to {other_name}"]
        return [] if ok else [f"must be {phrase} {other_name}"]

    return check


def _import_validator(dotted: str) -> Validator:
    module_name, _, attr = dotted.rpartition(".")
    if not module_name:
        raise ConfigurationError(f"validator_class '{dotted}' must be a dotted import path")
    try:
        target: Any = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as exc:
        raise ConfigurationError(f"Cannot import validator_class '{dotted}': {exc}") from exc
    instance: Any = target() if isinstance(target, type) else target
    if not isinstance(instance, Validator):
        raise ConfigurationError(f"validator_class '{dotted}' does not implement Validator")
    return instance


def _delegate(validator: Validator, options: Mapping[str, Any]) -> Check:
    def check(record: Record, name: str) -> List[str]:
        validator.validate(record, options)
        return []

    return check


def build_validation(
    record_type: type,
    model: ModelDefinition,
    field_name: str,
    definition: ValidationDefinition,
    context: BuildContext,
) -> Callable[[Record], None]:
    """Compile one ``ValidationDefinition`` into a record validator."""
    where: str = _where(model, field_name)
    options: Dict[str, Any] = dict(definition.options)
    kind: str = str(definition.type)

    check: Check
    if kind == ValidationType.PRESENCE.value:
        check = _presence(options)
    elif kind == ValidationType.LENGTH.value:
        check = _length(options)
    elif kind == ValidationType.NUMERICALITY.value:
        check = _numericality(options)
    elif kind == ValidationType.FORMAT.value:
        try:
            check = _format(options)
        except ConfigurationError as exc:
            raise ConfigurationError(f"{where}: {exc.message}") from exc
    elif kind == ValidationType.INCLUSION.value:
        check = _membership(options, inside=True)
    elif kind == ValidationType.EXCLUSION.value:
        check = _membership(options, inside=False)
    elif kind == ValidationType.UNIQUENESS.value:
        if context.uniqueness_checker is None:
            logger.warning("Uniqueness of %s is not checked: no uniqueness checker", where)
        check = _uniqueness(options, model, context.uniqueness_checker)
    elif kind == ValidationType.CONFIRMATION.value:
        check = _confirmation(record_type, field_name)
    elif kind == ValidationType.COMPARISON.value:
        check = _comparison(definition)
    elif kind == ValidationType.CUSTOM.value:
        check = _delegate(_import_validator(str(definition.validator_class)), options)
    else:
        check = _delegate(
            context.services.require("validators", str(definition.service), where), options
        )

    condition: Optional[Predicate] = (
        build_condition(definition.when, context.services, where) if definition.when else None
    )
    message: Optional[str] = definition.message

    def validator(record: Record) -> None:
        if condition is not None and not condition(record):
            return
        for default_message in check(record, field_name):
            record.errors.add(field_name, message or default_message)

    return validator


def apply_validations(record_type: type, model: ModelDefinition, context: BuildContext) -> None:
    """Field-level validations (type-level first), then model-level ones."""
    schema: RecordSchema = _schema(record_type)
    for fdef in model.fields:
        for definition in fdef.effective_validations:
            schema.add_validator(
                build_validation(record_type, model, fdef.name, definition, context)
            )

    delegated: Tuple[str, ...] = (ValidationType.CUSTOM.value, ValidationType.SERVICE.value)
    for definition in model.validations:
        target: Optional[str] = definition.target_field
        if target is None:
            if str(definition.type) not in delegated:
                raise ConfigurationError(
                    f"{model.name}: model-level {definition.type} validation requires 'target_field'"
                )
            target = BASE_ERROR_KEY
        schema.add_validator(build_validation(record_type, model, target, definition, context))


# ---------------------------------------------------------------------------
# Stage 4: transforms
# ---------------------------------------------------------------------------


def apply_transforms(record_type: type, model: ModelDefinition, context: BuildContext) -> None:
    """Resolve each field's transform chain; descriptors apply it on assignment."""
    schema: RecordSchema = _schema(record_type)
    for fdef in model.fields:
        names: List[str] = fdef.effective_transforms
        if not names:
            continue
        schema.transforms[fdef.name] = tuple(
            context.services.require("transforms", n, _where(model, fdef.name)) for n in names
        )


# ---------------------------------------------------------------------------
# Stage 5: associations
# ---------------------------------------------------------------------------


def _association_spec(assoc: AssociationDefinition) -> AssociationSpec:
    nested: Optional[Dict[str, Any]] = (
        assoc.nested_attributes.model_dump() if assoc.nested_attributes else None
    )
    return AssociationSpec(
        name=assoc.name,
        type=str(assoc.type),
        kind=str(assoc.kind.value),
        target_model=assoc.target_model,
        class_name=assoc.class_name,
        foreign_key=assoc.foreign_key,
        polymorphic_type_column=assoc.polymorphic_type_column,
        required=bool(assoc.required),
        dependent=assoc.dependent,
        inverse_of=assoc.inverse_of,
        autosave=assoc.autosave,
        through=assoc.through,
        source=assoc.source,
        as_=assoc.as_,
        counter_cache=assoc.counter_cache,
        touch=assoc.touch,
        nested_attributes=nested,
    )


def _required_validator(spec: AssociationSpec) -> Callable[[Record], None]:
    def validator(record: Record) -> None:
        if record._loaded.get(spec.name) is not None:
            return
        if spec.foreign_key and not is_blank(record.read_attribute(spec.foreign_key)):
            return
        record.errors.add(spec.name, "must exist")

    return validator


def apply_associations(record_type: type, model: ModelDefinition, context: BuildContext) -> None:
    """
    Install association descriptors.

    ``through`` must name another association of the same model, and
    ``inverse_of`` must exist on the target when the target is known.
    """
    schema: RecordSchema = _schema(record_type)
    for assoc in model.associations:
        where: str = _where(model, assoc.name)
        if assoc.through and model.association(assoc.through) is None:
            raise ConfigurationError(
                f"{where}: through association '{assoc.through}' is not defined"
            )
        target: Optional[ModelDefinition] = (
            context.models.get(assoc.target_model) if assoc.target_model else None
        )
        if assoc.inverse_of and target is not None and target.association(assoc.inverse_of) is None:
            raise ConfigurationError(
                f"{where}: inverse_of '{assoc.inverse_of}' is not an association "
                f"of '{assoc.target_model}'"
            )

        spec: AssociationSpec = _association_spec(assoc)
        schema.associations[assoc.name] = spec
        setattr(record_type, assoc.name, AssociationDescriptor(spec))
        if spec.type == AssociationType.BELONGS_TO.value and spec.required:
            schema.add_validator(_required_validator(spec))


# ---------------------------------------------------------------------------
# Stage 6: attachments
# ---------------------------------------------------------------------------


def _item_property(item: Any, key: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(key)
    return getattr(item, key, None)


def _content_type_allowed(content_type: Optional[str], patterns: Tuple[str, ...]) -> bool:
    if not patterns:
        return True
    if not content_type:
        return False
    return any(fnmatch.fnmatchcase(content_type, p) for p in patterns)


def _attachment_validator(spec: AttachmentSpec, declared_max: Any) -> Callable[[Record], None]:
    def validator(record: Record) -> None:
        value: Any = record.read_attribute(spec.name)
        if value is None:
            return
        items: List[Any] = list(value) if spec.multiple else [value]
        if spec.max_files is not None and len(items) > spec.max_files:
            record.errors.add(spec.name, f"has too many files (maximum is {spec.max_files})")
        for item in items:
            size: Any = _item_property(item, "size")
            if spec.max_size is not None and size is not None and size > spec.max_size:
                record.errors.add(spec.name, f"is too large (maximum is {declared_max})")
            if spec.min_size is not None and size is not None and size < spec.min_size:
                record.errors.add(spec.name, "is too small")
            if not _content_type_allowed(_item_property(item, "content_type"), spec.content_types):
                record.errors.add(spec.name, "has an invalid content type")

    return validator


def apply_attachments(record_type: type, model: ModelDefinition, context: BuildContext) -> None:
    schema: RecordSchema = _schema(record_type)
    for fdef in model.fields:
        if not fdef.is_attachment:
            continue
        options = fdef.attachment
        try:
            spec: AttachmentSpec = AttachmentSpec(
                name=fdef.name,
                multiple=options.multiple,
                max_size=parse_size(options.max_size) if options.max_size is not None else None,
                min_size=parse_size(options.min_size) if options.min_size is not None else None,
                content_types=tuple(options.content_types),
                max_files=options.max_files,
            )
        except ValueError as exc:
            raise ConfigurationError(f"{_where(model, fdef.name)}: {exc}") from exc
        schema.attachments[fdef.name] = spec
        setattr(record_type, fdef.name, FieldDescriptor(fdef.name))
        schema.add_validator(_attachment_validator(spec, options.max_size))


# ---------------------------------------------------------------------------
# Stage 7: scopes
# ---------------------------------------------------------------------------


def apply_scopes(record_type: type, model: ModelDefinition, context: BuildContext) -> None:
    schema: RecordSchema = _schema(record_type)
    for scope in model.scopes:
        if scope.is_custom:
            logger.debug("Scope %s is custom; left to the host", _where(model, scope.name))
            continue
        schema.scopes[scope.name] = ScopeSpec(
            name=scope.name,
            where=dict(scope.where),
            where_not=dict(scope.where_not),
            order=dict(scope.order),
            limit=scope.limit,
        )


# ---------------------------------------------------------------------------
# Stage 8: events
# ---------------------------------------------------------------------------


def _lifecycle_hook(bus: EventBus, name: str) -> Callable[[Record, Dict[str, Any]], None]:
    def hook(record: Record, changes: Dict[str, Any]) -> None:
        bus.dispatch(record, name, changes)

    return hook


def _field_change_hook(
    bus: EventBus, event: EventDefinition, condition: Optional[Predicate]
) -> Callable[[Record, Dict[str, Any]], None]:
    watched: str = str(event.field)

    def hook(record: Record, changes: Dict[str, Any]) -> None:
        if watched not in changes:
            return
        if condition is not None and not condition(record):
            return
        bus.dispatch(record, event.name, changes, field=watched)

    return hook


def apply_events(record_type: type, model: ModelDefinition, context: BuildContext) -> None:
    """Lifecycle events hook their phase; field-change events fire after save."""
    schema: RecordSchema = _schema(record_type)
    known: set = set(model.field_names) | set(model.belongs_to_fk_map())
    for event in model.events:
        where: str = _where(model, event.name)
        if event.is_lifecycle:
            schema.add_hook(event.name, _lifecycle_hook(context.event_bus, event.name))
            continue
        if event.field not in known:
            raise ConfigurationError(f"{where}: watched field '{event.field}' is not defined")
        condition: Optional[Predicate] = (
            build_condition(event.condition, context.services, where) if event.condition else None
        )
        schema.add_hook("after_save", _field_change_hook(context.event_bus, event, condition))


# ---------------------------------------------------------------------------
# Stage 9: defaults & positioning
# ---------------------------------------------------------------------------


def _default_initializer(
    fdef: FieldDefinition, context: BuildContext, where: str
) -> Callable[[Record], None]:
    default: Any = fdef.default
    name: str = fdef.name
    provider: Any = None
    if isinstance(default, dict) and "service" in default:
        provider = context.services.require("defaults", str(default["service"]), where)

    def resolve(record: Record) -> Any:
        if provider is not None:
            return provider.default(record, name)
        if is_template(default):
            return render_template(record, default)
        return copy.deepcopy(default)

    def initializer(record: Record) -> None:
        if is_blank(getattr(record, name)):
            setattr(record, name, resolve(record))

    return initializer


def apply_defaults(record_type: type, model: ModelDefinition, context: BuildContext) -> None:
    """Defaults run on new records only, for blank fields only."""
    schema: RecordSchema = _schema(record_type)
    for fdef in model.fields:
        if fdef.default is None:
            continue
        schema.add_initializer(_default_initializer(fdef, context, _where(model, fdef.name)))

    if model.is_positioned:
        available: set = set(schema.columns) or (
            set(model.field_names) | set(model.belongs_to_fk_map())
        )
        missing: List[str] = [s for s in model.positioning_scope if s not in available]
        if missing:
            raise ConfigurationError(
                f"{model.name}: positioning scope column(s) not defined: {', '.join(missing)}"
            )
        schema.positioning = PositioningSpec(
            field=str(model.positioning_field), scope=tuple(model.positioning_scope)
        )


# ---------------------------------------------------------------------------
# Stage 10: computed fields
# ---------------------------------------------------------------------------


def _computed_hook(
    fdef: FieldDefinition, context: BuildContext, where: str
) -> Callable[[Record, Dict[str, Any]], None]:
    spec: Any = fdef.computed
    name: str = fdef.name
    provider: Any = None
    if isinstance(spec, dict):
        if "service" not in spec:
            raise ConfigurationError(f"{where}: computed mapping requires 'service'")
        provider = context.services.require("computed", str(spec["service"]), where)

    def hook(record: Record, changes: Dict[str, Any]) -> None:
        if provider is not None:
            value: Any = provider.compute(record)
        else:
            value = render_template(record, str(spec))
        record.write_attribute(name, value)

    return hook


def apply_computed(record_type: type, model: ModelDefinition, context: BuildContext) -> None:
    """Computed values overwrite their field right before persistence."""
    schema: RecordSchema = _schema(record_type)
    for fdef in model.fields:
        if fdef.is_computed:
            schema.add_hook("before_save", _computed_hook(fdef, context, _where(model, fdef.name)))


# ---------------------------------------------------------------------------
# Stage 11: external & service accessors
# ---------------------------------------------------------------------------


def apply_external_accessors(
    record_type: type, model: ModelDefinition, context: BuildContext
) -> None:
    """
    Service-backed fields get an accessor descriptor; external fields are
    recorded for ``check_external_accessors``.
    """
    schema: RecordSchema = _schema(record_type)
    for fdef in model.fields:
        if fdef.is_service_accessor:
            source: Dict[str, Any] = dict(fdef.source or {})
            accessor: Any = context.services.require(
                "accessors", str(source["service"]), _where(model, fdef.name)
            )
            setattr(
                record_type,
                fdef.name,
                AccessorDescriptor(fdef.name, accessor, dict(source.get("options") or {})),
            )
        elif fdef.is_external:
            schema.external_fields.append(fdef.name)


def _has_accessor_pair(record_type: type, name: str) -> bool:
    for klass in record_type.__mro__:
        if name in klass.__dict__:
            attr: Any = klass.__dict__[name]
            if isinstance(attr, property):
                return attr.fget is not None and attr.fset is not None
            return hasattr(attr, "__get__") and hasattr(attr, "__set__")
    return False


def check_external_accessors(record_type: type) -> None:
    """
    Every external field must already have a getter and a setter on the type.

    Raises:
        ConfigurationError: naming the model and the fields lacking accessors.
    """
    schema: RecordSchema = _schema(record_type)
    missing: List[str] = [
        name for name in schema.external_fields if not _has_accessor_pair(record_type, name)
    ]
    if missing:
        raise ConfigurationError(
            f"{schema.model_name}: external field(s) without getter and setter: "
            f"{', '.join(missing)}"
        )


# ---------------------------------------------------------------------------
# Stage 12: custom fields
# ---------------------------------------------------------------------------


def _custom_fields_validator(
    definitions: Tuple[CustomFieldDefinition, ...],
) -> Callable[[Record], None]:
    def validator(record: Record) -> None:
        for definition in definitions:
            for message in definition.check(record.custom_field(definition.name)):
                record.errors.add(definition.name, message)

    return validator


def _custom_fields_initializer(
    definitions: Tuple[CustomFieldDefinition, ...],
) -> Callable[[Record], None]:
    def initializer(record: Record) -> None:
        for definition in definitions:
            if definition.default_value is None:
                continue
            if record.custom_field(definition.name) is None:
                record.set_custom_field(definition.name, copy.deepcopy(definition.default_value))

    return initializer


def apply_custom_fields(record_type: type, model: ModelDefinition, context: BuildContext) -> None:
    """Accessors, validation and defaults for extension fields stored in ``custom_data``."""
    if not model.custom_fields_enabled:
        return
    schema: RecordSchema = _schema(record_type)
    if schema.custom_data_column is None:
        schema.custom_data_column = CUSTOM_DATA_COLUMN
    if not hasattr(record_type, CUSTOM_DATA_COLUMN):
        setattr(record_type, CUSTOM_DATA_COLUMN, FieldDescriptor(CUSTOM_DATA_COLUMN))

    registry: Optional[CustomFieldRegistry] = context.custom_fields
    definitions: Tuple[CustomFieldDefinition, ...] = (
        tuple(registry.for_model(model.name)) if registry is not None else ()
    )
    for definition in definitions:
        schema.custom_fields[definition.name] = definition
        if hasattr(record_type, definition.name):
            logger.debug(
                "Custom field %s shadows an existing attribute; accessor skipped",
                _where(model, definition.name),
            )
            continue
        setattr(record_type, definition.name, CustomFieldDescriptor(definition.name))

    if definitions:
        schema.add_validator(_custom_fields_validator(definitions))
        schema.add_initializer(_custom_fields_initializer(definitions))


# ---------------------------------------------------------------------------
# Stage 13: label method
# ---------------------------------------------------------------------------


def apply_label(record_type: type, model: ModelDefinition, context: BuildContext) -> None:
    """Alias ``to_label`` to the configured attribute (``to_s`` means none)."""
    attribute: str = model.label_method
    if attribute == "to_s":
        return
    if not hasattr(record_type, attribute):
        raise ConfigurationError(
            f"{model.name}: label_method '{attribute}' is not an attribute of the model"
        )
    _schema(record_type).label_attribute = attribute


Stage = Callable[[type, ModelDefinition, BuildContext], None]

STAGES: Tuple[Tuple[str, Stage], ...] = (
    ("table", apply_table),
    ("enums", apply_enums),
    ("validations", apply_validations),
    ("transforms", apply_transforms),
    ("associations", apply_associations),
    ("attachments", apply_attachments),
    ("scopes", apply_scopes),
    ("events", apply_events),
    ("defaults", apply_defaults),
    ("computed", apply_computed),
    ("external_accessors", apply_external_accessors),
    ("custom_fields", apply_custom_fields),
    ("label", apply_label),
)


__all__: List[str] = [
    "BuildContext",
    "CUSTOM_DATA_COLUMN",
    "STAGES",
    "TIMESTAMP_COLUMNS",
    "UniquenessChecker",
    "apply_associations",
    "apply_attachments",
    "apply_computed",
    "apply_custom_fields",
    "apply_defaults",
    "apply_enums",
    "apply_events",
    "apply_external_accessors",
    "apply_label",
    "apply_scopes",
    "apply_table",
    "apply_transforms",
    "apply_validations",
    "build_condition",
    "build_validation",
    "check_external_accessors",
    "render_template",
    "resolve_path",
]
