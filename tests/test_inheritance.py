"""
tests/test_inheritance.py
Unit tests for presenter ordering and section-level merging.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

import pytest

from admingen.exceptions import ConfigurationError
from admingen.inheritance import (
    InheritanceCycle,
    InheritanceOrder,
    MissingParent,
    PresenterEntry,
    merge_configuration,
    order_presenters,
    resolve_presenters,
)
from admingen.loader import MetadataSet


def _entry(name: str, parent: Optional[str] = None, **config: Any) -> PresenterEntry:
    data: Dict[str, Any] = {"name": name, **config}
    if parent is not None:
        data["inherits"] = parent
    return PresenterEntry(name=name, parent=parent, build=lambda: dict(data), source=f"{name}.yml")


class TestOrderPresenters:
    def test_parents_come_first(self) -> None:
        result = order_presenters({"grandchild": "child", "child": "root", "root": None})
        assert isinstance(result, InheritanceOrder)
        assert result.names == ("root", "child", "grandchild")

    def test_declaration_order_kept_within_depth(self) -> None:
        result = order_presenters({"b": None, "a": None, "c": "a"})
        assert isinstance(result, InheritanceOrder)
        assert result.names == ("b", "a", "c")

    def test_cycle(self) -> None:
        result = order_presenters({"a": "b", "b": "a"})
        assert isinstance(result, InheritanceCycle)
        assert result.describe() == "a -> b -> a"

    def test_self_reference_is_a_cycle(self) -> None:
        result = order_presenters({"a": "a"})
        assert isinstance(result, InheritanceCycle)
        assert result.cycle == ("a", "a")

    def test_missing_parent(self) -> None:
        result = order_presenters({"child": "ghost"})
        assert result == MissingParent(child="child", parent="ghost")


class TestMergeConfiguration:
    def test_sections_are_replaced_wholesale(self) -> None:
        parent: Dict[str, Any] = {
            "name": "base",
            "model": "deal",
            "index": {"per_page": 25, "table_columns": [{"field": "title"}]},
            "show": {"layout": []},
        }
        merged = merge_configuration(parent, {"name": "child", "inherits": "base", "index": {"per_page": 10}})
        assert merged["index"] == {"per_page": 10}
        assert merged["show"] == {"layout": []}
        assert merged["model"] == "deal"
        assert merged["name"] == "child"
        assert merged["inherits"] == "base"

    def test_empty_child_is_identity(self) -> None:
        parent: Dict[str, Any] = {"name": "base", "model": "deal", "search": {"enabled": True}}
        merged = merge_configuration(parent, {"name": "child", "inherits": "base"})
        assert {k: v for k, v in merged.items() if k not in ("name", "inherits")} == {
            "model": "deal",
            "search": {"enabled": True},
        }

    def test_parent_is_not_mutated(self) -> None:
        parent: Dict[str, Any] = {"name": "base", "index": {"table_columns": [{"field": "a"}]}}
        merged = merge_configuration(parent, {"name": "child"})
        merged["index"]["table_columns"].append({"field": "b"})
        assert parent["index"]["table_columns"] == [{"field": "a"}]


class TestResolvePresenters:
    def test_chain_resolves(self) -> None:
        entries: List[PresenterEntry] = [
            _entry("leaf", "middle", show={"layout": ["leaf"]}),
            _entry("middle", "root", index={"per_page": 10}),
            _entry("root", model="deal", index={"per_page": 50}, show={"layout": ["root"]}),
        ]
        resolved = resolve_presenters(entries)
        assert resolved["leaf"]["model"] == "deal"
        assert resolved["leaf"]["index"] == {"per_page": 10}
        assert resolved["leaf"]["show"] == {"layout": ["leaf"]}

    def test_cycle_raises(self) -> None:
        entries = [_entry("a", "b"), _entry("b", "a")]
        with pytest.raises(ConfigurationError, match="Circular presenter inheritance: a -> b -> a"):
            resolve_presenters(entries)

    def test_missing_parent_raises(self) -> None:
        with pytest.raises(ConfigurationError, match="inherits from 'ghost' which was not found") as exc_info:
            resolve_presenters([_entry("child", "ghost")])
        assert exc_info.value.source == "child.yml"

    def test_compact_child_keeps_parent_columns(self, metadata: MetadataSet) -> None:
        admin = metadata.presenter("deal_admin")
        compact = metadata.presenter("deal_compact")
        assert compact.model == "deal"
        assert compact.table_columns == admin.table_columns
        assert compact.effective_per_page == 10
        assert admin.effective_per_page == 25
        assert compact.inherits == "deal_admin"

    def test_child_overriding_nothing_matches_parent(self, make_metadata: Callable[..., MetadataSet]) -> None:
        loaded: MetadataSet = make_metadata(
            {"model": {"name": "deal", "fields": [{"name": "title", "type": "string"}]}},
            {
                "presenter": {
                    "name": "deal_admin",
                    "model": "deal",
                    "slug": "deals",
                    "index": {"per_page": 20, "table_columns": [{"field": "title"}]},
                    "show": {"layout": [{"section": "Details", "fields": [{"field": "title"}]}]},
                    "search": {"enabled": True, "searchable_fields": ["title"]},
                }
            },
            {"presenter": {"name": "deal_copy", "inherits": "deal_admin"}},
        )
        parent = loaded.require_presenter("deal_admin")
        child = loaded.require_presenter("deal_copy")
        for section in ("index", "show", "form", "search", "actions", "navigation"):
            assert getattr(child, section) == getattr(parent, section)
        assert (child.model, child.slug, child.per_page) == (parent.model, parent.slug, parent.per_page)
