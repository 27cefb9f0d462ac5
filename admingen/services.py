# File: admingen/services.py
"""
AdminGen - Service & Type Registries
=====================================
Pluggable implementations (transforms, validators, conditions, default
providers, computed providers, accessors) looked up by string key, plus the
registry of reusable field types.

Both registries are explicit values: they are constructed during boot,
filled, frozen, and then passed to every component that needs lookups.
There is no process-wide singleton.

Each category has a protocol; ``ServiceRegistry.register`` rejects
implementations that do not satisfy it.
"""

from __future__ import annotations

import contextlib
import contextvars
import datetime as _dt
import logging
import re
from typing import (
    Any,
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Protocol,
    Tuple,
    runtime_checkable,
)

from admingen.exceptions import ConfigurationError
from admingen.models import BASE_TYPES, ColumnOptions, FieldType, TypeDefinition, ValidationDefinition

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("admingen.services")

# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class Transform(Protocol):
    """Normalizes a value before it is stored on a record."""

    def transform(self, value: Any) -> Any: ...


@runtime_checkable
class Validator(Protocol):
    """Adds messages to ``record.errors``; must not raise for invalid data."""

    def validate(self, record: Any, options: Mapping[str, Any]) -> None: ...


@runtime_checkable
class Condition(Protocol):
    def evaluate(self, record: Any) -> bool: ...


@runtime_checkable
class DefaultProvider(Protocol):
    def default(self, record: Any, field_name: str) -> Any: ...


@runtime_checkable
class ComputedProvider(Protocol):
    def compute(self, record: Any) -> Any: ...


@runtime_checkable
class Accessor(Protocol):
    """Backs a virtual field with custom storage."""

    def get(self, record: Any, options: Mapping[str, Any]) -> Any: ...

    def set(self, record: Any, value: Any, options: Mapping[str, Any]) -> None: ...


CATEGORIES: Dict[str, type] = {
    "transforms": Transform,
    "validators": Validator,
    "conditions": Condition,
    "defaults": DefaultProvider,
    "computed": ComputedProvider,
    "accessors": Accessor,
}

# ---------------------------------------------------------------------------
# Current user (set by the request layer)
# ---------------------------------------------------------------------------

_current_user_id: contextvars.ContextVar[Optional[Any]] = contextvars.ContextVar(
    "admingen_current_user_id", default=None
)


@contextlib.contextmanager
def current_user(user_id: Any) -> Iterator[None]:
    """Bind the acting user's id for the ``current_user_id`` default."""
    token = _current_user_id.set(user_id)
    try:
        yield
    finally:
        _current_user_id.reset(token)


# ---------------------------------------------------------------------------
# Built-in transforms
# ---------------------------------------------------------------------------

_SCHEME_RE: re.Pattern[str] = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")
_NON_DIGIT_RE: re.Pattern[str] = re.compile(r"\D")


class StripTransform:
    def transform(self, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class DowncaseTransform:
    def transform(self, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value


class NormalizeUrlTransform:
    """Prepend ``https://`` when the value has no scheme."""

    def transform(self, value: Any) -> Any:
        if not isinstance(value, str) or not value:
            return value
        if _SCHEME_RE.match(value):
            return value
        return f"https://{value}"


class NormalizePhoneTransform:
    """Keep a leading ``+`` and digits only."""

    def transform(self, value: Any) -> Any:
        if not isinstance(value, str) or not value:
            return value
        stripped: str = value.strip()
        prefix: str = "+" if stripped.startswith("+") else ""
        return prefix + _NON_DIGIT_RE.sub("", stripped)


# ---------------------------------------------------------------------------
# Built-in defaults & accessors
# ---------------------------------------------------------------------------


class CurrentDateDefault:
    def default(self, record: Any, field_name: str) -> Any:
        return _dt.date.today()


class CurrentDatetimeDefault:
    def default(self, record: Any, field_name: str) -> Any:
        return _dt.datetime.now(_dt.timezone.utc)


class CurrentUserIdDefault:
    def default(self, record: Any, field_name: str) -> Any:
        return _current_user_id.get()


class JsonFieldAccessor:
    """
    Read/write a key inside a JSON column.

    Options: ``column`` (the JSON column name) and ``key``.
    """

    def get(self, record: Any, options: Mapping[str, Any]) -> Any:
        data: Any = record.read_attribute(options["column"]) or {}
        return data.get(options["key"]) if isinstance(data, dict) else None

    def set(self, record: Any, value: Any, options: Mapping[str, Any]) -> None:
        column: str = options["column"]
        current: Any = record.read_attribute(column)
        data: Dict[str, Any] = dict(current) if isinstance(current, dict) else {}
        data[options["key"]] = value
        record.write_attribute(column, data)


# ---------------------------------------------------------------------------
# Service registry
# ---------------------------------------------------------------------------


class ServiceRegistry:
    """
    String-keyed, category-partitioned registry of service implementations.

    Mutable during boot; ``freeze()`` makes it read-only.
    """

    __slots__ = ("_services", "_frozen")

    def __init__(self) -> None:
        self._services: Dict[str, Dict[str, Any]] = {c: {} for c in CATEGORIES}
        self._frozen: bool = False

    @classmethod
    def with_builtins(cls) -> "ServiceRegistry":
        registry: ServiceRegistry = cls()
        registry.register("transforms", "strip", StripTransform())
        registry.register("transforms", "downcase", DowncaseTransform())
        registry.register("transforms", "normalize_url", NormalizeUrlTransform())
        registry.register("transforms", "normalize_phone", NormalizePhoneTransform())
        registry.register("defaults", "current_date", CurrentDateDefault())
        registry.register("defaults", "current_datetime", CurrentDatetimeDefault())
        registry.register("defaults", "current_user_id", CurrentUserIdDefault())
        registry.register("accessors", "json_field", JsonFieldAccessor())
        return registry

    # -- Mutation -----------------------------------------------------------

    def register(self, category: str, key: str, implementation: Any) -> None:
        """
        Register *implementation* under ``category/key``.

        Raises:
            ConfigurationError: unknown category, frozen registry, or an
                implementation that does not satisfy the category protocol.
        """
        if self._frozen:
            raise ConfigurationError(
                f"Service registry is frozen; cannot register '{category}/{key}'"
            )
        protocol: Optional[type] = CATEGORIES.get(category)
        if protocol is None:
            raise ConfigurationError(
                f"Unknown service category '{category}'; expected one of {sorted(CATEGORIES)}"
            )
        if not isinstance(implementation, protocol):
            raise ConfigurationError(
                f"Service '{category}/{key}' does not implement {protocol.__name__}"
            )
        if key in self._services[category]:
            logger.debug("Replacing service %s/%s", category, key)
        self._services[category][key] = implementation

    def freeze(self) -> "ServiceRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    # -- Query --------------------------------------------------------------

    def lookup(self, category: str, key: str) -> Optional[Any]:
        return self._services.get(category, {}).get(key)

    def require(self, category: str, key: str, context: str = "") -> Any:
        """Like ``lookup`` but raises ``ConfigurationError`` on a miss."""
        service: Optional[Any] = self.lookup(category, key)
        if service is None:
            where: str = f"{context}: " if context else ""
            raise ConfigurationError(f"{where}{category} service '{key}' not found")
        return service

    def registered(self, category: str, key: str) -> bool:
        return self.lookup(category, key) is not None

    def keys(self, category: str) -> List[str]:
        return sorted(self._services.get(category, {}))

    def __repr__(self) -> str:
        counts: str = ", ".join(f"{c}={len(v)}" for c, v in self._services.items())
        return f"<ServiceRegistry {counts}{' frozen' if self._frozen else ''}>"


# ---------------------------------------------------------------------------
# Type registry
# ---------------------------------------------------------------------------


def _builtin_types() -> Tuple[TypeDefinition, ...]:
    return (
        TypeDefinition(
            name="email",
            base_type=FieldType.STRING,
            transforms=["strip", "downcase"],
            validations=[
                ValidationDefinition(
                    type="format",
                    options={"with": r"^[^@\s]+@[^@\s]+\.[^@\s]+$"},
                    message="is not a valid email address",
                )
            ],
            column_options=ColumnOptions(limit=255),
        ),
        TypeDefinition(
            name="phone",
            base_type=FieldType.STRING,
            transforms=["strip", "normalize_phone"],
            column_options=ColumnOptions(limit=50),
        ),
        TypeDefinition(
            name="url",
            base_type=FieldType.STRING,
            transforms=["strip", "normalize_url"],
            column_options=ColumnOptions(limit=2048),
        ),
        TypeDefinition(
            name="color",
            base_type=FieldType.STRING,
            transforms=["strip", "downcase"],
            validations=[
                ValidationDefinition(
                    type="format",
                    options={"with": r"^#[0-9a-fA-F]{6}$"},
                    message="must be a hex color like #1a2b3c",
                )
            ],
            column_options=ColumnOptions(limit=7),
        ),
    )


class TypeRegistry(Mapping[str, TypeDefinition]):
    """Name -> ``TypeDefinition``; behaves as a read-only mapping."""

    def __init__(self, include_builtins: bool = True) -> None:
        self._types: Dict[str, TypeDefinition] = {}
        self._frozen: bool = False
        if include_builtins:
            for type_def in _builtin_types():
                self._types[type_def.name] = type_def

    def register(self, type_def: TypeDefinition, source: Optional[str] = None) -> None:
        if self._frozen:
            raise ConfigurationError(
                f"Type registry is frozen; cannot register '{type_def.name}'", source
            )
        if type_def.name in BASE_TYPES:
            raise ConfigurationError(
                f"Type '{type_def.name}' shadows a base type", source
            )
        self._types[type_def.name] = type_def

    def freeze(self) -> "TypeRegistry":
        self._frozen = True
        return self

    def __getitem__(self, name: str) -> TypeDefinition:
        return self._types[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._types)

    def __len__(self) -> int:
        return len(self._types)

    def __repr__(self) -> str:
        return f"<TypeRegistry {sorted(self._types)}>"


__all__: List[str] = [
    "Accessor",
    "CATEGORIES",
    "ComputedProvider",
    "Condition",
    "DefaultProvider",
    "JsonFieldAccessor",
    "ServiceRegistry",
    "Transform",
    "TypeRegistry",
    "Validator",
    "current_user",
]
