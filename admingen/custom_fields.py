# File: admingen/custom_fields.py
"""
AdminGen - Custom Fields
=========================
Schemaless extension fields: definitions loaded from their own YAML file,
independent of the model metadata, whose values live inside a model's
``custom_data`` JSON column.

File shape::

    custom_fields:
      - model: deal
        name: region
        type: enum
        enum_values: [north, south]
        required: true
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from admingen.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("admingen.custom_fields")

# Names that would shadow record internals
RESERVED_NAMES: Tuple[str, ...] = (
    "id",
    "errors",
    "attributes",
    "changes",
    "custom_data",
    "custom_fields",
    "created_at",
    "updated_at",
)


class CustomFieldType(str, Enum):
    STRING = "string"
    TEXT = "text"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    DATE = "date"
    ENUM = "enum"


_NUMERIC_TYPES: Tuple[str, ...] = (CustomFieldType.INTEGER.value, CustomFieldType.FLOAT.value)
_TEXT_TYPES: Tuple[str, ...] = (CustomFieldType.STRING.value, CustomFieldType.TEXT.value)


class CustomFieldDefinition(BaseModel):
    """One extension field of one model."""

    model_config = ConfigDict(
        populate_by_name=True,
        use_enum_values=True,
        frozen=True,
        extra="forbid",
    )

    model: str = Field(..., min_length=1, description="Target model name.")
    name: str = Field(..., min_length=1)
    field_type: CustomFieldType = Field(default=CustomFieldType.STRING, alias="type")
    label: Optional[str] = Field(default=None)
    required: bool = Field(default=False)
    min_length: Optional[int] = Field(default=None, ge=0)
    max_length: Optional[int] = Field(default=None, ge=1)
    min_value: Optional[Union[int, float]] = Field(default=None)
    max_value: Optional[Union[int, float]] = Field(default=None)
    enum_values: List[str] = Field(default_factory=list)
    default_value: Any = Field(default=None)
    active: bool = Field(default=True)
    position: int = Field(default=0)

    @field_validator("name")
    @classmethod
    def _not_reserved(cls, v: str) -> str:
        if v in RESERVED_NAMES:
            raise ValueError(f"'{v}' is a reserved name")
        return v

    @field_validator("enum_values", mode="before")
    @classmethod
    def _flatten_enum(cls, v: Any) -> Any:
        if v is None:
            return []
        return [str(item.get("value")) if isinstance(item, dict) else str(item) for item in v]

    def check(self, value: Any) -> List[str]:
        """Validation messages for *value*; empty when valid."""
        if value is None or (isinstance(value, str) and not value.strip()):
            return ["can't be blank"] if self.required else []

        messages: List[str] = []
        if self.field_type in _TEXT_TYPES:
            length: int = len(str(value))
            if self.min_length and length < self.min_length:
                messages.append(f"is too short (minimum is {self.min_length} characters)")
            if self.max_length and length > self.max_length:
                messages.append(f"is too long (maximum is {self.max_length} characters)")
        elif self.field_type in _NUMERIC_TYPES:
            try:
                number: Decimal = Decimal(str(value))
            except InvalidOperation:
                return ["is not a number"]
            if self.min_value is not None and number < Decimal(str(self.min_value)):
                messages.append(f"must be greater than or equal to {self.min_value}")
            if self.max_value is not None and number > Decimal(str(self.max_value)):
                messages.append(f"must be less than or equal to {self.max_value}")
        elif self.field_type == CustomFieldType.ENUM.value and self.enum_values:
            if str(value) not in self.enum_values:
                messages.append("is not included in the list")
        return messages


class CustomFieldRegistry:
    """Model name -> active custom field definitions, in position order."""

    def __init__(self, definitions: Iterable[CustomFieldDefinition] = ()) -> None:
        self._by_model: Dict[str, List[CustomFieldDefinition]] = {}
        for definition in definitions:
            self.add(definition)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "CustomFieldRegistry":
        """
        Read definitions from a YAML file.

        Raises:
            ConfigurationError: unreadable file, bad YAML, or invalid entries.
        """
        file_path: Path = Path(path)
        try:
            raw: Any = yaml.safe_load(file_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigurationError(f"Cannot read custom fields: {exc}", file_path) from exc
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML: {exc}", file_path) from exc

        entries: Any = (raw or {}).get("custom_fields") if isinstance(raw, dict) else raw
        if entries is None:
            entries = []
        if not isinstance(entries, list):
            raise ConfigurationError("'custom_fields' must be a list", file_path)

        registry: CustomFieldRegistry = cls()
        for index, entry in enumerate(entries):
            try:
                registry.add(CustomFieldDefinition.model_validate(entry))
            except ValidationError as exc:
                first: Dict[str, Any] = exc.errors()[0]
                raise ConfigurationError(
                    f"Invalid custom field #{index}: {first['msg']}", file_path
                ) from exc
        logger.info("Loaded %d custom field(s) from %s", len(registry), file_path)
        return registry

    def add(self, definition: CustomFieldDefinition) -> None:
        bucket: List[CustomFieldDefinition] = self._by_model.setdefault(definition.model, [])
        if any(d.name == definition.name for d in bucket):
            raise ConfigurationError(
                f"Duplicate custom field '{definition.name}' for model '{definition.model}'"
            )
        bucket.append(definition)
        bucket.sort(key=lambda d: d.position)

    def for_model(self, model: str) -> List[CustomFieldDefinition]:
        return [d for d in self._by_model.get(model, []) if d.active]

    def __len__(self) -> int:
        return sum(len(v) for v in self._by_model.values())

    def __repr__(self) -> str:
        return f"<CustomFieldRegistry models={sorted(self._by_model)}>"


__all__: List[str] = [
    "CustomFieldDefinition",
    "CustomFieldRegistry",
    "CustomFieldType",
    "RESERVED_NAMES",
]
