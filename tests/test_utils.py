"""
tests/test_utils.py
Unit tests for admingen.utils naming, template and size helpers.
"""

from __future__ import annotations

import pytest

from admingen.utils import (
    Timer,
    extract_template_refs,
    interpolate_template,
    is_template,
    parse_size,
    to_pascal_case,
    to_plural,
    to_title_human,
)


class TestNaming:
    def test_to_pascal_case(self) -> None:
        assert to_pascal_case("deal_category") == "DealCategory"
        assert to_pascal_case("task") == "Task"

    def test_to_title_human(self) -> None:
        assert to_title_human("deal_category") == "Deal Category"

    @pytest.mark.parametrize(
        "singular, plural",
        [
            ("deal", "deals"),
            ("company", "companies"),
            ("address", "addresses"),
            ("person", "people"),
            ("box", "boxes"),
            ("day", "days"),
            ("deal_category", "deal_categories"),
        ],
    )
    def test_to_plural(self, singular: str, plural: str) -> None:
        assert to_plural(singular) == plural


class TestTemplates:
    def test_extract_refs_in_order_without_duplicates(self) -> None:
        refs = extract_template_refs("{first_name} {last_name} ({company.name}) {first_name}")
        assert refs == ["first_name", "last_name", "company.name"]

    def test_extract_refs_of_nothing(self) -> None:
        assert extract_template_refs(None) == []
        assert extract_template_refs("plain") == []

    def test_is_template(self) -> None:
        assert is_template("{title}")
        assert not is_template("title")
        assert not is_template(5)

    def test_interpolate_renders_none_as_empty(self) -> None:
        values = {"a": "x", "b": None}
        assert interpolate_template("{a}-{b}-{ a }", values.get) == "x--x"


class TestParseSize:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (1024, 1024),
            ("512", 512),
            ("1KB", 1024),
            ("25MB", 25 * 1024 * 1024),
            ("1.5 kb", 1536),
        ],
    )
    def test_valid_sizes(self, value: object, expected: int) -> None:
        assert parse_size(value) == expected

    @pytest.mark.parametrize("value", ["lots", True, "10 parsecs"])
    def test_invalid_sizes(self, value: object) -> None:
        with pytest.raises(ValueError, match="Invalid size"):
            parse_size(value)


class TestTimer:
    def test_records_elapsed_time(self) -> None:
        with Timer("work") as timer:
            sum(range(1000))
        assert timer.elapsed >= 0.0
        assert "work" in repr(timer)
