# File: admingen/exceptions.py
"""
AdminGen - Exception Hierarchy
===============================
All errors raised by the package derive from ``AdminGenError``.

- ``ConfigurationError`` is fatal and boot-time only: the process must never
  serve traffic against a partially compiled definition set.
- ``RecordInvalid`` is recoverable and per-record; it carries field-keyed
  messages for the caller.
- ``SchemaDriftWarning`` is a warning category, recorded on migration plans
  and logged, never raised.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, List, Optional

if TYPE_CHECKING:
    from admingen.runtime import Errors


class AdminGenError(Exception):
    """Base class for every error raised by admingen."""


class ConfigurationError(AdminGenError):
    """
    Invalid or inconsistent metadata detected while booting.

    ``source`` names the offending file or definition, when known.
    """

    def __init__(self, message: str, source: Optional[str] = None) -> None:
        self.message: str = message
        self.source: Optional[str] = str(source) if source is not None else None
        super().__init__(self.__str__())

    def __str__(self) -> str:
        if self.source:
            return f"{self.source}: {self.message}"
        return self.message


class RecordInvalid(AdminGenError):
    """Raised by a strict save when a record fails validation."""

    def __init__(self, errors: "Errors") -> None:
        self.errors: "Errors" = errors
        messages: Dict[str, List[str]] = errors.to_dict()
        detail: str = "; ".join(
            f"{field} {msg}" for field, msgs in messages.items() for msg in msgs
        )
        super().__init__(f"Validation failed: {detail}")


class SchemaDriftWarning(UserWarning):
    """An optional schema optimization could not be applied."""

    def __init__(self, message: str, hint: str = "") -> None:
        self.message: str = message
        self.hint: str = hint
        super().__init__(message)

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} (hint: {self.hint})"
        return self.message


__all__: List[str] = [
    "AdminGenError",
    "ConfigurationError",
    "RecordInvalid",
    "SchemaDriftWarning",
]
