# File: admingen/runtime.py
"""
AdminGen - Runtime Records
===========================
Base classes for the data-access types produced by the ModelFactory.

Each model gets one concrete ``Record`` subclass whose behaviour is driven
by a ``RecordSchema``: the applicators fill the schema (validators,
transforms, hooks, defaults...) and install descriptors for field access.
The schema is frozen once the build finishes; records then only read it.

Records never talk to storage themselves. Persistence goes through a
``writer`` callable handed to ``save`` and a ``deleter`` handed to
``destroy``; loaded rows come back through ``Record.load``.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import (
    Any,
    Callable,
    ClassVar,
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
)

from admingen.exceptions import ConfigurationError, RecordInvalid

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("admingen.runtime")

Changes = Dict[str, Tuple[Any, Any]]
Hook = Callable[["Record", Changes], None]
Writer = Callable[["Record"], Any]

HOOK_PHASES: Tuple[str, ...] = (
    "before_save",
    "after_create",
    "after_update",
    "after_save",
    "before_destroy",
    "after_destroy",
)

BASE_ERROR_KEY: str = "base"


def is_blank(value: Any) -> bool:
    """None, empty/whitespace strings and empty collections are blank."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class Errors:
    """Field-keyed validation messages of one record."""

    __slots__ = ("_messages",)

    def __init__(self) -> None:
        self._messages: Dict[str, List[str]] = {}

    def add(self, field_name: str, message: str) -> None:
        bucket: List[str] = self._messages.setdefault(field_name, [])
        if message not in bucket:
            bucket.append(message)

    def on(self, field_name: str) -> List[str]:
        return list(self._messages.get(field_name, []))

    def clear(self) -> None:
        self._messages.clear()

    def to_dict(self) -> Dict[str, List[str]]:
        return {k: list(v) for k, v in self._messages.items()}

    def full_messages(self) -> List[str]:
        result: List[str] = []
        for field_name, messages in self._messages.items():
            for message in messages:
                if field_name == BASE_ERROR_KEY:
                    result.append(message)
                else:
                    result.append(f"{field_name.replace('_', ' ').capitalize()} {message}")
        return result

    def __contains__(self, field_name: object) -> bool:
        return field_name in self._messages

    def __iter__(self) -> Iterator[str]:
        return iter(self._messages)

    def __len__(self) -> int:
        return sum(len(v) for v in self._messages.values())

    def __bool__(self) -> bool:
        return bool(self._messages)

    def __repr__(self) -> str:
        return f"<Errors {self._messages}>"


# ---------------------------------------------------------------------------
# Specs installed by the applicators
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AssociationSpec:
    name: str
    type: str
    kind: str
    target_model: Optional[str]
    class_name: Optional[str] = None
    foreign_key: Optional[str] = None
    polymorphic_type_column: Optional[str] = None
    required: bool = False
    dependent: Optional[str] = None
    inverse_of: Optional[str] = None
    autosave: bool = False
    through: Optional[str] = None
    source: Optional[str] = None
    as_: Optional[str] = None
    counter_cache: Any = False
    touch: bool = False
    nested_attributes: Optional[Mapping[str, Any]] = None

    @property
    def is_to_many(self) -> bool:
        return self.type == "has_many"


@dataclass(frozen=True)
class AttachmentSpec:
    name: str
    multiple: bool = False
    max_size: Optional[int] = None
    min_size: Optional[int] = None
    content_types: Tuple[str, ...] = ()
    max_files: Optional[int] = None


@dataclass(frozen=True)
class ScopeSpec:
    """A named query scope, applied by the query collaborator."""

    name: str
    where: Mapping[str, Any] = field(default_factory=dict)
    where_not: Mapping[str, Any] = field(default_factory=dict)
    order: Mapping[str, str] = field(default_factory=dict)
    limit: Optional[int] = None

    def apply(self, query: Any) -> Any:
        """Call ``where``/``where_not``/``order``/``limit`` on *query* for non-empty parts."""
        if self.where:
            query = query.where(**self.where)
        if self.where_not:
            query = query.where_not(**self.where_not)
        if self.order:
            query = query.order(**self.order)
        if self.limit is not None:
            query = query.limit(self.limit)
        return query


@dataclass(frozen=True)
class PositioningSpec:
    field: str
    scope: Tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Record schema
# ---------------------------------------------------------------------------


class RecordSchema:
    """
    Everything a runtime type knows about its model.

    Filled by the applicators, then frozen by the factory.
    """

    def __init__(self, model_name: str) -> None:
        self.model_name: str = model_name
        self.table_name: Optional[str] = None
        self.columns: List[str] = []
        self.field_types: Dict[str, str] = {}
        self.enum_values: Dict[str, Tuple[str, ...]] = {}
        self.validators: List[Callable[["Record"], None]] = []
        self.transforms: Dict[str, Tuple[Any, ...]] = {}
        self.associations: Dict[str, AssociationSpec] = {}
        self.attachments: Dict[str, AttachmentSpec] = {}
        self.scopes: Dict[str, ScopeSpec] = {}
        self.hooks: Dict[str, List[Hook]] = {phase: [] for phase in HOOK_PHASES}
        self.initializers: List[Callable[["Record"], None]] = []
        self.external_fields: List[str] = []
        self.custom_fields: Dict[str, Any] = {}
        self.custom_data_column: Optional[str] = None
        self.label_attribute: Optional[str] = None
        self.positioning: Optional[PositioningSpec] = None
        self._frozen: bool = False

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "_frozen", False):
            raise ConfigurationError(
                f"Runtime schema of '{self.model_name}' is frozen; cannot set '{name}'"
            )
        object.__setattr__(self, name, value)

    def ensure_mutable(self) -> None:
        if self._frozen:
            raise ConfigurationError(f"Runtime schema of '{self.model_name}' is frozen")

    def add_validator(self, validator: Callable[["Record"], None]) -> None:
        self.ensure_mutable()
        self.validators.append(validator)

    def add_hook(self, phase: str, hook: Hook) -> None:
        self.ensure_mutable()
        if phase not in self.hooks:
            raise ConfigurationError(f"Unknown hook phase '{phase}'")
        self.hooks[phase].append(hook)

    def add_initializer(self, initializer: Callable[["Record"], None]) -> None:
        self.ensure_mutable()
        self.initializers.append(initializer)

    def freeze(self) -> None:
        """Swap every container for an immutable one and forbid changes."""
        for name in ("columns", "validators", "initializers", "external_fields"):
            object.__setattr__(self, name, tuple(getattr(self, name)))
        for name in (
            "field_types",
            "enum_values",
            "transforms",
            "associations",
            "attachments",
            "scopes",
            "custom_fields",
        ):
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))
        object.__setattr__(
            self,
            "hooks",
            MappingProxyType({phase: tuple(hooks) for phase, hooks in self.hooks.items()}),
        )
        object.__setattr__(self, "_frozen", True)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __repr__(self) -> str:
        return f"<RecordSchema {self.model_name} table={self.table_name}>"


# ---------------------------------------------------------------------------
# Descriptors
# ---------------------------------------------------------------------------


class FieldDescriptor:
    """Stored attribute; applies the field's transforms on assignment."""

    def __init__(self, name: str) -> None:
        self.name: str = name

    def __get__(self, instance: Optional["Record"], owner: type) -> Any:
        if instance is None:
            return self
        return instance.read_attribute(self.name)

    def __set__(self, instance: "Record", value: Any) -> None:
        for transform in instance.__schema__.transforms.get(self.name, ()):
            value = transform.transform(value)
        instance.write_attribute(self.name, value)


class TransientDescriptor:
    """Attribute kept on the instance only (e.g. ``password_confirmation``)."""

    def __init__(self, name: str) -> None:
        self.name: str = name

    def __get__(self, instance: Optional["Record"], owner: type) -> Any:
        if instance is None:
            return self
        return instance._transient.get(self.name)

    def __set__(self, instance: "Record", value: Any) -> None:
        instance._transient[self.name] = value


class AssociationDescriptor:
    """
    Related record(s) as loaded by the query collaborator.

    Assigning a record to a to-one association copies its id into the
    foreign key (and its model name into the polymorphic type column).
    """

    def __init__(self, spec: AssociationSpec) -> None:
        self.spec: AssociationSpec = spec

    def __get__(self, instance: Optional["Record"], owner: type) -> Any:
        if instance is None:
            return self
        default: Any = [] if self.spec.is_to_many else None
        return instance._loaded.get(self.spec.name, default)

    def __set__(self, instance: "Record", value: Any) -> None:
        if self.spec.is_to_many:
            instance._loaded[self.spec.name] = list(value or [])
            return
        instance._loaded[self.spec.name] = value
        if self.spec.type == "belongs_to" and self.spec.foreign_key:
            instance.write_attribute(self.spec.foreign_key, getattr(value, "id", None))
            if self.spec.polymorphic_type_column:
                type_name: Optional[str] = (
                    value.__schema__.model_name if isinstance(value, Record) else None
                )
                instance.write_attribute(self.spec.polymorphic_type_column, type_name)


class AccessorDescriptor:
    """Virtual field backed by an accessor service."""

    def __init__(self, name: str, accessor: Any, options: Mapping[str, Any]) -> None:
        self.name: str = name
        self.accessor: Any = accessor
        self.options: Mapping[str, Any] = options

    def __get__(self, instance: Optional["Record"], owner: type) -> Any:
        if instance is None:
            return self
        return self.accessor.get(instance, self.options)

    def __set__(self, instance: "Record", value: Any) -> None:
        self.accessor.set(instance, value, self.options)


class CustomFieldDescriptor:
    """Schemaless field stored inside the extension column."""

    def __init__(self, name: str) -> None:
        self.name: str = name

    def __get__(self, instance: Optional["Record"], owner: type) -> Any:
        if instance is None:
            return self
        return instance.custom_field(self.name)

    def __set__(self, instance: "Record", value: Any) -> None:
        instance.set_custom_field(self.name, value)


# ---------------------------------------------------------------------------
# Record base
# ---------------------------------------------------------------------------


class Record:
    """
    Base of every runtime type.

    Attribute values live in ``_attributes``; descriptors installed by the
    applicators decide how each name is read and written.
    """

    __schema__: ClassVar[RecordSchema] = RecordSchema("record")

    def __init__(self, **attributes: Any) -> None:
        self._attributes: Dict[str, Any] = {}
        self._original: Dict[str, Any] = {}
        self._transient: Dict[str, Any] = {}
        self._loaded: Dict[str, Any] = {}
        self._persisted: bool = False
        self._destroyed: bool = False
        self.nested_changes: Dict[str, List[Dict[str, Any]]] = {}
        self.errors: Errors = Errors()
        self.assign(attributes)
        for initializer in self.__schema__.initializers:
            initializer(self)

    @classmethod
    def load(cls, **row: Any) -> "Record":
        """Build a persisted instance from a storage row (no transforms, no defaults)."""
        instance: Record = cls.__new__(cls)
        instance._attributes = dict(row)
        instance._original = copy.deepcopy(instance._attributes)
        instance._transient = {}
        instance._loaded = {}
        instance._persisted = True
        instance._destroyed = False
        instance.nested_changes = {}
        instance.errors = Errors()
        return instance

    @classmethod
    def scope(cls, name: str) -> ScopeSpec:
        """Named scope of this model; apply it with ``scope.apply(query)``."""
        try:
            return cls.__schema__.scopes[name]
        except KeyError:
            raise KeyError(f"'{cls.__schema__.model_name}' has no scope '{name}'") from None

    # -- Attribute access ---------------------------------------------------

    def assign(self, attributes: Mapping[str, Any]) -> None:
        """Assign through the descriptors; unknown names raise AttributeError."""
        for name, value in attributes.items():
            if not hasattr(type(self), name):
                raise AttributeError(
                    f"'{self.__schema__.model_name}' has no attribute '{name}'"
                )
            setattr(self, name, value)

    def read_attribute(self, name: str) -> Any:
        return self._attributes.get(name)

    def write_attribute(self, name: str, value: Any) -> None:
        self._attributes[name] = value

    @property
    def attributes(self) -> Dict[str, Any]:
        return dict(self._attributes)

    def column_values(self) -> Dict[str, Any]:
        """Values of the physical columns, for the writer."""
        return {c: self._attributes.get(c) for c in self.__schema__.columns}

    # -- State --------------------------------------------------------------

    @property
    def new_record(self) -> bool:
        return not self._persisted

    @property
    def persisted(self) -> bool:
        return self._persisted and not self._destroyed

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def changes(self) -> Changes:
        result: Changes = {}
        for name in set(self._original) | set(self._attributes):
            old: Any = self._original.get(name)
            new: Any = self._attributes.get(name)
            if old != new:
                result[name] = (old, new)
        return result

    def changed(self, name: str) -> bool:
        return name in self.changes

    def was(self, name: str) -> Any:
        return self._original.get(name)

    # -- Associations -------------------------------------------------------

    def set_loaded(self, name: str, value: Any) -> None:
        """Store association data fetched by the query collaborator."""
        if name not in self.__schema__.associations:
            raise KeyError(f"'{self.__schema__.model_name}' has no association '{name}'")
        self._loaded[name] = value

    def assign_nested(self, name: str, items: Sequence[Mapping[str, Any]]) -> None:
        """
        Queue nested writes for an association that accepts them.

        Persisting the queued rows is up to the writer.
        """
        spec: Optional[AssociationSpec] = self.__schema__.associations.get(name)
        if spec is None or spec.nested_attributes is None:
            raise KeyError(f"'{self.__schema__.model_name}' does not accept nested '{name}'")
        options: Mapping[str, Any] = spec.nested_attributes
        accepted: List[Dict[str, Any]] = []
        for item in items:
            values: Dict[str, Any] = dict(item)
            if options.get("reject_if") == "all_blank" and all(
                is_blank(v) for k, v in values.items() if k != "_destroy"
            ):
                continue
            if values.get("_destroy") and not options.get("allow_destroy"):
                values.pop("_destroy")
            if options.get("update_only") and "id" not in values:
                continue
            accepted.append(values)
        limit: Optional[int] = options.get("limit")
        if limit is not None and len(accepted) > limit:
            self.errors.add(name, f"too many records (maximum is {limit})")
        self.nested_changes[name] = accepted

    # -- Custom fields ------------------------------------------------------

    @property
    def custom_fields(self) -> Dict[str, Any]:
        column: Optional[str] = self.__schema__.custom_data_column
        data: Any = self._attributes.get(column) if column else None
        return dict(data) if isinstance(data, dict) else {}

    def custom_field(self, name: str) -> Any:
        return self.custom_fields.get(name)

    def set_custom_field(self, name: str, value: Any) -> None:
        column: Optional[str] = self.__schema__.custom_data_column
        if column is None:
            raise AttributeError(
                f"'{self.__schema__.model_name}' has no custom fields enabled"
            )
        data: Dict[str, Any] = self.custom_fields
        data[name] = value
        self._attributes[column] = data

    # -- Positioning --------------------------------------------------------

    def position_scope(self) -> Tuple[Any, ...]:
        """Values of the positioning scope columns (empty when unscoped)."""
        spec: Optional[PositioningSpec] = self.__schema__.positioning
        if spec is None:
            return ()
        return tuple(self._attributes.get(c) for c in spec.scope)

    # -- Validation & persistence -------------------------------------------

    def valid(self) -> bool:
        self.errors.clear()
        for validator in self.__schema__.validators:
            validator(self)
        return not self.errors

    def _run_hooks(self, phase: str, changes: Changes) -> None:
        for hook in self.__schema__.hooks[phase]:
            hook(self, changes)

    def save(self, writer: Writer, strict: bool = False) -> bool:
        """
        Validate and persist through *writer*.

        Computed fields are resolved before validation; when validation
        fails the attribute values are restored to what they were before
        the call. When the writer returns a value and the record has no id
        yet, it becomes the id.

        Returns:
            False when validation fails (``strict=False``).

        Raises:
            RecordInvalid: when validation fails and ``strict`` is set.
        """
        snapshot: Dict[str, Any] = copy.deepcopy(self._attributes)
        self._run_hooks("before_save", {})
        if not self.valid():
            self._attributes = snapshot
            if strict:
                raise RecordInvalid(self.errors)
            return False

        creating: bool = self.new_record
        changes: Changes = self.changes
        result: Any = writer(self)
        if creating and result is not None and self._attributes.get("id") is None:
            self._attributes["id"] = result
        self._persisted = True

        self._run_hooks("after_create" if creating else "after_update", changes)
        self._run_hooks("after_save", changes)
        self._original = copy.deepcopy(self._attributes)
        return True

    def destroy(self, deleter: Writer) -> None:
        self._run_hooks("before_destroy", {})
        deleter(self)
        self._destroyed = True
        self._run_hooks("after_destroy", {})

    # -- Display ------------------------------------------------------------

    def to_label(self) -> str:
        attribute: Optional[str] = self.__schema__.label_attribute
        if attribute:
            value: Any = getattr(self, attribute)
            return "" if value is None else str(value)
        return f"{type(self).__name__} #{self._attributes.get('id')}"

    def __str__(self) -> str:
        return self.to_label()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self._attributes.get('id')!r}>"


def new_record_type(model_name: str, class_name: str, bases: Sequence[type] = ()) -> type:
    """
    Create a bare runtime type for *model_name* with an empty schema.

    *bases* are host-provided mixins placed before ``Record``.
    """
    namespace: Dict[str, Any] = {
        "__schema__": RecordSchema(model_name),
        "__module__": "admingen.dynamic",
        "__qualname__": class_name,
    }
    return type(class_name, (*bases, Record), namespace)


__all__: List[str] = [
    "AccessorDescriptor",
    "AssociationDescriptor",
    "AssociationSpec",
    "AttachmentSpec",
    "BASE_ERROR_KEY",
    "CustomFieldDescriptor",
    "Errors",
    "FieldDescriptor",
    "HOOK_PHASES",
    "PositioningSpec",
    "Record",
    "RecordSchema",
    "ScopeSpec",
    "TransientDescriptor",
    "is_blank",
    "new_record_type",
]
