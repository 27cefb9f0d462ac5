# File: admingen/config.py
"""
AdminGen - Settings
====================
Boot configuration: where the metadata lives, which database to migrate,
and how strict the boot pipeline should be.

Resolution order (later wins):

    1. Field defaults on ``AdminGenSettings``.
    2. A YAML settings file (``admingen.yml`` by convention).
    3. ``ADMINGEN_*`` environment variables.
    4. Explicit overrides (CLI flags).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from admingen.exceptions import ConfigurationError
from admingen.schema import UNIQUENESS_MODES

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("admingen.config")

ENV_PREFIX: str = "ADMINGEN_"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class AdminGenSettings(BaseModel):
    """Validated boot settings."""

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    metadata_paths: List[str] = Field(
        default_factory=lambda: ["config/admingen"],
        description="Directories or files holding model/presenter definitions.",
    )
    database_url: str = Field(default="sqlite:///admingen.db", min_length=1)
    enforce_position_uniqueness: str = Field(default="auto")
    custom_fields_path: Optional[str] = Field(default=None)
    strict: bool = Field(default=False, description="Abort boot on validation warnings.")
    log_level: str = Field(default="WARNING")

    @field_validator("metadata_paths", mode="before")
    @classmethod
    def _split_paths(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [p.strip() for p in v.split(os.pathsep) if p.strip()]
        return v

    @field_validator("enforce_position_uniqueness")
    @classmethod
    def _check_mode(cls, v: str) -> str:
        if v not in UNIQUENESS_MODES:
            raise ValueError(f"must be one of {list(UNIQUENESS_MODES)}")
        return v

    @field_validator("log_level")
    @classmethod
    def _check_level(cls, v: str) -> str:
        level: str = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"must be one of {list(_LOG_LEVELS)}")
        return level

    @property
    def metadata_sources(self) -> List[Path]:
        return [Path(p) for p in self.metadata_paths]


def _read_settings_file(path: Path) -> Dict[str, Any]:
    try:
        raw: Any = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigurationError(f"Cannot read settings: {exc}", path) from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML: {exc}", path) from exc
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Expected a mapping at top level, got {type(raw).__name__}", path
        )
    # allow the settings to live under an ``admingen:`` key
    nested: Any = raw.get("admingen")
    return dict(nested) if isinstance(nested, dict) else dict(raw)


def _from_environment(environ: Mapping[str, str]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for name in AdminGenSettings.model_fields:
        key: str = f"{ENV_PREFIX}{name.upper()}"
        if key in environ:
            values[name] = environ[key]
    return values


def load_settings(
    path: Optional[Union[str, Path]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> AdminGenSettings:
    """
    Build ``AdminGenSettings`` from a file, the environment and overrides.

    ``None`` values in *overrides* are ignored so unset CLI flags do not
    clobber file or environment values.

    Raises:
        ConfigurationError: unreadable file or invalid values.
    """
    data: Dict[str, Any] = {}
    source: Optional[str] = None
    if path is not None:
        source = str(path)
        data.update(_read_settings_file(Path(path)))
    data.update(_from_environment(os.environ if environ is None else environ))
    data.update({k: v for k, v in (overrides or {}).items() if v is not None})

    try:
        settings: AdminGenSettings = AdminGenSettings.model_validate(data)
    except ValidationError as exc:
        first: Dict[str, Any] = exc.errors()[0]
        where: str = ".".join(str(p) for p in first.get("loc", ())) or "settings"
        raise ConfigurationError(f"Invalid setting '{where}': {first['msg']}", source) from exc

    logger.debug("Settings resolved: %s", settings.model_dump())
    return settings


__all__: List[str] = ["AdminGenSettings", "ENV_PREFIX", "load_settings"]
