# File: admingen/dsl.py
"""
AdminGen - Builder Scripts
===========================
Small Python scripts that declare models, presenters and types through a
constrained builder API. Each builder converges to the same normalized
intermediate hash as the YAML/JSON form.

Example ``models/deal.py``::

    deal = define_model("deal", label="Deal")
    deal.field("title", "string", limit=255).validates("presence")
    deal.field("stage", "enum", enum_values=["lead", "won", "lost"], default="lead")
    deal.belongs_to("company", model="company")
    deal.scope("open", where_not={"stage": ["won", "lost"]})

Example ``presenters/deal_admin.py``::

    admin = define_presenter("deal_admin", model="deal", slug="deals")
    admin.index(per_page=50).column("title", link_to="show").column("company.name")
    admin.show().association_list("Contacts", association="contacts")

Scripts run with a reduced set of builtins and without ``import``.
"""

from __future__ import annotations

import builtins
import copy
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from admingen.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("admingen.dsl")

_SAFE_BUILTINS: Tuple[str, ...] = (
    "True", "False", "None", "bool", "dict", "enumerate", "float", "int",
    "isinstance", "len", "list", "max", "min", "range", "reversed", "set",
    "sorted", "str", "tuple", "zip",
)


# ---------------------------------------------------------------------------
# Model builders
# ---------------------------------------------------------------------------


class FieldBuilder:
    """Chained configuration of one field."""

    def __init__(self, data: Dict[str, Any]) -> None:
        self._data: Dict[str, Any] = data

    def validates(self, type_: str, **options: Any) -> "FieldBuilder":
        self._data.setdefault("validations", []).append({"type": type_, **options})
        return self

    def transform(self, *names: str) -> "FieldBuilder":
        self._data.setdefault("transforms", []).extend(names)
        return self

    def to_hash(self) -> Dict[str, Any]:
        return copy.deepcopy(self._data)


class ModelBuilder:
    """Collects a model definition hash."""

    def __init__(self, name: str, **options: Any) -> None:
        self.name: str = name
        self._data: Dict[str, Any] = {"name": name}
        for key in ("label", "label_plural", "table_name"):
            if key in options:
                self._data[key] = options.pop(key)
        self._options: Dict[str, Any] = dict(options)
        self._fields: List[FieldBuilder] = []

    def field(self, name: str, type_: str, **attrs: Any) -> FieldBuilder:
        builder: FieldBuilder = FieldBuilder({"name": name, "type": type_, **attrs})
        self._fields.append(builder)
        return builder

    def _association(self, type_: str, name: str, attrs: Dict[str, Any]) -> "ModelBuilder":
        entry: Dict[str, Any] = {"type": type_, "name": name}
        entry.update(attrs)
        self._data.setdefault("associations", []).append(entry)
        return self

    def belongs_to(self, name: str, **attrs: Any) -> "ModelBuilder":
        return self._association("belongs_to", name, attrs)

    def has_many(self, name: str, **attrs: Any) -> "ModelBuilder":
        return self._association("has_many", name, attrs)

    def has_one(self, name: str, **attrs: Any) -> "ModelBuilder":
        return self._association("has_one", name, attrs)

    def validates(self, type_: str, **options: Any) -> "ModelBuilder":
        """Model-level validation (use ``target_field`` to name the error key)."""
        self._data.setdefault("validations", []).append({"type": type_, **options})
        return self

    def scope(self, name: str, **attrs: Any) -> "ModelBuilder":
        self._data.setdefault("scopes", []).append({"name": name, **attrs})
        return self

    def on(self, event: str, **attrs: Any) -> "ModelBuilder":
        self._data.setdefault("events", []).append({"name": event, **attrs})
        return self

    def on_change(self, event: str, field: str, condition: Optional[Dict[str, Any]] = None) -> "ModelBuilder":
        entry: Dict[str, Any] = {"name": event, "type": "field_change", "field": field}
        if condition is not None:
            entry["condition"] = condition
        self._data.setdefault("events", []).append(entry)
        return self

    def display_template(self, name: str = "default", **attrs: Any) -> "ModelBuilder":
        self._data.setdefault("display_templates", {})[name] = attrs
        return self

    def timestamps(self, enabled: bool = True) -> "ModelBuilder":
        self._options["timestamps"] = enabled
        return self

    def custom_fields(self, enabled: bool = True) -> "ModelBuilder":
        self._options["custom_fields"] = enabled
        return self

    def label_method(self, attribute: str) -> "ModelBuilder":
        self._options["label_method"] = attribute
        return self

    def positioning(self, field: str = "position", scope: Any = None) -> "ModelBuilder":
        self._options["positioning"] = {"field": field, "scope": scope}
        return self

    def to_hash(self) -> Dict[str, Any]:
        data: Dict[str, Any] = copy.deepcopy(self._data)
        data["fields"] = [f.to_hash() for f in self._fields]
        if self._options:
            data["options"] = copy.deepcopy(self._options)
        return data


class TypeBuilder:
    def __init__(self, name: str, base_type: str, **attrs: Any) -> None:
        self.name: str = name
        self._data: Dict[str, Any] = {"name": name, "base_type": base_type, **attrs}

    def to_hash(self) -> Dict[str, Any]:
        return copy.deepcopy(self._data)


# ---------------------------------------------------------------------------
# Presenter builders
# ---------------------------------------------------------------------------


class SectionBuilder:
    """A titled group of fields inside ``show.layout`` or ``form.sections``."""

    def __init__(self, data: Dict[str, Any]) -> None:
        self._data: Dict[str, Any] = data

    def field(self, name: str, **attrs: Any) -> "SectionBuilder":
        self._data.setdefault("fields", []).append({"field": name, **attrs})
        return self


class IndexBuilder:
    def __init__(self, data: Dict[str, Any]) -> None:
        self._data: Dict[str, Any] = data

    def column(self, field: str, **attrs: Any) -> "IndexBuilder":
        self._data.setdefault("table_columns", []).append({"field": field, **attrs})
        return self

    def includes(self, *paths: Any) -> "IndexBuilder":
        self._data.setdefault("includes", []).extend(paths)
        return self

    def eager_load(self, *paths: Any) -> "IndexBuilder":
        self._data.setdefault("eager_load", []).extend(paths)
        return self


class ShowBuilder:
    def __init__(self, data: Dict[str, Any]) -> None:
        self._data: Dict[str, Any] = data

    def section(self, title: str, columns: int = 1, **attrs: Any) -> SectionBuilder:
        entry: Dict[str, Any] = {"section": title, "columns": columns, "fields": [], **attrs}
        self._data.setdefault("layout", []).append(entry)
        return SectionBuilder(entry)

    def association_list(self, title: str, association: str, **attrs: Any) -> "ShowBuilder":
        self._data.setdefault("layout", []).append(
            {"section": title, "type": "association_list", "association": association, **attrs}
        )
        return self

    def includes(self, *paths: Any) -> "ShowBuilder":
        self._data.setdefault("includes", []).extend(paths)
        return self


class FormBuilder:
    def __init__(self, data: Dict[str, Any]) -> None:
        self._data: Dict[str, Any] = data

    def section(self, title: str, columns: int = 1, **attrs: Any) -> SectionBuilder:
        entry: Dict[str, Any] = {"title": title, "columns": columns, "fields": [], **attrs}
        self._data.setdefault("sections", []).append(entry)
        return SectionBuilder(entry)

    def nested_fields(
        self,
        title: str,
        association: str,
        allow_add: bool = True,
        allow_remove: bool = True,
        **attrs: Any,
    ) -> SectionBuilder:
        entry: Dict[str, Any] = {
            "title": title,
            "type": "nested_fields",
            "association": association,
            "allow_add": allow_add,
            "allow_remove": allow_remove,
            "fields": [],
            **attrs,
        }
        self._data.setdefault("sections", []).append(entry)
        return SectionBuilder(entry)


class SearchBuilder:
    def __init__(self, data: Dict[str, Any]) -> None:
        self._data: Dict[str, Any] = data

    def filter(self, name: str, **attrs: Any) -> "SearchBuilder":
        self._data.setdefault("predefined_filters", []).append({"name": name, **attrs})
        return self


class PresenterBuilder:
    """
    Collects a presenter hash.

    Only sections the script touches are emitted, so a child presenter
    inherits every section it leaves alone.
    """

    def __init__(
        self,
        name: str,
        model: Optional[str] = None,
        inherits: Optional[str] = None,
        **attrs: Any,
    ) -> None:
        self.name: str = name
        self.inherits: Optional[str] = inherits
        self._data: Dict[str, Any] = {"name": name}
        if model is not None:
            self._data["model"] = model
        if inherits is not None:
            self._data["inherits"] = inherits
        self._data.update(attrs)

    def _section(self, key: str, attrs: Dict[str, Any]) -> Dict[str, Any]:
        section: Dict[str, Any] = self._data.setdefault(key, {})
        section.update(attrs)
        return section

    def index(self, **attrs: Any) -> IndexBuilder:
        return IndexBuilder(self._section("index", attrs))

    def show(self, **attrs: Any) -> ShowBuilder:
        return ShowBuilder(self._section("show", attrs))

    def form(self, **attrs: Any) -> FormBuilder:
        return FormBuilder(self._section("form", attrs))

    def search(self, **attrs: Any) -> SearchBuilder:
        attrs.setdefault("enabled", True)
        return SearchBuilder(self._section("search", attrs))

    def action(self, name: str, on: str = "single", **attrs: Any) -> "PresenterBuilder":
        actions: Dict[str, Any] = self._data.setdefault("actions", {})
        actions.setdefault(on, []).append({"name": name, **attrs})
        return self

    def navigation(self, **attrs: Any) -> "PresenterBuilder":
        self._section("navigation", attrs)
        return self

    def per_page(self, size: int) -> "PresenterBuilder":
        self._data["per_page"] = size
        return self

    def read_only(self, value: bool = True) -> "PresenterBuilder":
        self._data["read_only"] = value
        return self

    def embeddable(self, value: bool = True) -> "PresenterBuilder":
        self._data["embeddable"] = value
        return self

    def to_hash(self) -> Dict[str, Any]:
        return copy.deepcopy(self._data)


# ---------------------------------------------------------------------------
# Script evaluation
# ---------------------------------------------------------------------------


class ScriptResult:
    """Builders declared by one script, in declaration order."""

    __slots__ = ("source", "models", "presenters", "types")

    def __init__(self, source: str) -> None:
        self.source: str = source
        self.models: List[ModelBuilder] = []
        self.presenters: List[PresenterBuilder] = []
        self.types: List[TypeBuilder] = []


def _namespace(result: ScriptResult) -> Dict[str, Any]:
    def define_model(name: str, **options: Any) -> ModelBuilder:
        builder: ModelBuilder = ModelBuilder(name, **options)
        result.models.append(builder)
        return builder

    def define_presenter(
        name: str,
        model: Optional[str] = None,
        inherits: Optional[str] = None,
        **attrs: Any,
    ) -> PresenterBuilder:
        builder: PresenterBuilder = PresenterBuilder(name, model=model, inherits=inherits, **attrs)
        result.presenters.append(builder)
        return builder

    def define_type(name: str, base_type: str, **attrs: Any) -> TypeBuilder:
        builder: TypeBuilder = TypeBuilder(name, base_type, **attrs)
        result.types.append(builder)
        return builder

    safe: Dict[str, Any] = {n: getattr(builtins, n) for n in _SAFE_BUILTINS}
    return {
        "__builtins__": safe,
        "define_model": define_model,
        "define_presenter": define_presenter,
        "define_type": define_type,
    }


def run_script(source_text: str, source: str) -> ScriptResult:
    """
    Evaluate builder-script text.

    Raises:
        ConfigurationError: on syntax errors or any failure raised while the
            script runs, naming *source*.
    """
    result: ScriptResult = ScriptResult(source)
    try:
        code: Any = compile(source_text, source, "exec")
    except SyntaxError as exc:
        raise ConfigurationError(
            f"Syntax error at line {exc.lineno}: {exc.msg}", source
        ) from exc
    try:
        exec(code, _namespace(result))  # noqa: S102
    except ConfigurationError:
        raise
    except Exception as exc:
        raise ConfigurationError(
            f"Builder script failed: {type(exc).__name__}: {exc}", source
        ) from exc
    logger.debug(
        "Script %s declared %d model(s), %d presenter(s), %d type(s)",
        source,
        len(result.models),
        len(result.presenters),
        len(result.types),
    )
    return result


def load_script(path: Path) -> ScriptResult:
    try:
        text: str = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigurationError(f"Cannot read builder script: {exc}", str(path)) from exc
    return run_script(text, str(path))


__all__: List[str] = [
    "FieldBuilder",
    "FormBuilder",
    "IndexBuilder",
    "ModelBuilder",
    "PresenterBuilder",
    "ScriptResult",
    "SearchBuilder",
    "SectionBuilder",
    "ShowBuilder",
    "TypeBuilder",
    "load_script",
    "run_script",
]
