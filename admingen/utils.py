# File: admingen/utils.py
"""
AdminGen - Utility Functions & Helpers
=======================================
Naming transformations, display-template helpers, size parsing and a
timing context manager shared by the boot pipeline.

All string-conversion functions are decorated with ``@lru_cache`` since the
same model and field names are converted over and over during boot.
"""

from __future__ import annotations

import functools
import logging
import re
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("admingen.utils")

# ---------------------------------------------------------------------------
# Pre-compiled regex patterns
# ---------------------------------------------------------------------------

_NON_ALPHANUM_RE: re.Pattern[str] = re.compile(r"[^a-zA-Z0-9]")
_SPLIT_WORDS_RE: re.Pattern[str] = re.compile(
    r"[A-Z]?[a-z]+|[A-Z]+(?=[A-Z][a-z]|\d|\b)|[A-Z]|\d+"
)
_TEMPLATE_REF_RE: re.Pattern[str] = re.compile(r"\{([^{}]+)\}")
_SIZE_RE: re.Pattern[str] = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([KMGT]?B)?\s*$", re.IGNORECASE)

_SIZE_UNITS: Dict[str, int] = {
    "B": 1,
    "KB": 1024,
    "MB": 1024 ** 2,
    "GB": 1024 ** 3,
    "TB": 1024 ** 4,
}


# ---------------------------------------------------------------------------
# Cached string transformation functions
# ---------------------------------------------------------------------------


@functools.lru_cache(maxsize=None)
def to_pascal_case(name: str) -> str:
    """
    Convert any string to PascalCase (used for runtime class names).

    Examples:
        >>> to_pascal_case("deal_category")
        'DealCategory'
    """
    if not name:
        return ""
    return "".join(word.capitalize() for word in _extract_words(name))


@functools.lru_cache(maxsize=None)
def to_title_human(name: str) -> str:
    """
    Convert identifier to human-readable title.

    Examples:
        >>> to_title_human("deal_category")
        'Deal Category'
    """
    if not name:
        return ""
    return " ".join(w.capitalize() for w in _extract_words(name))


@functools.lru_cache(maxsize=None)
def to_plural(name: str) -> str:
    """
    Naive English pluralisation, sufficient for default table names.

    Examples:
        >>> to_plural("company")
        'companies'
        >>> to_plural("deal")
        'deals'
    """
    if not name:
        return ""

    lower: str = name.lower()

    irregulars: Dict[str, str] = {
        "person": "people",
        "child": "children",
        "man": "men",
        "woman": "women",
        "datum": "data",
        "index": "indices",
        "status": "statuses",
        "address": "addresses",
    }

    if lower in irregulars:
        plural: str = irregulars[lower]
        if name[0].isupper():
            return plural[0].upper() + plural[1:]
        return plural

    # Only the last word of a snake_case name is pluralised
    head, sep, tail = name.rpartition("_")
    if sep and tail:
        return f"{head}_{to_plural(tail)}"

    if lower.endswith(("sh", "ch", "x", "z", "ss", "s")):
        return name + "es"
    if lower.endswith("y") and len(name) > 1 and lower[-2] not in "aeiou":
        return name[:-1] + "ies"
    if lower.endswith("fe"):
        return name[:-2] + "ves"
    if lower.endswith("f") and not lower.endswith("ff"):
        return name[:-1] + "ves"

    return name + "s"


@functools.lru_cache(maxsize=None)
def _extract_words(name: str) -> Tuple[str, ...]:
    """Extract lowercase words from any casing style."""
    cleaned: str = _NON_ALPHANUM_RE.sub(" ", name)
    words: List[str] = _SPLIT_WORDS_RE.findall(cleaned)
    return tuple(w.lower() for w in words if w)


# ---------------------------------------------------------------------------
# Display templates
# ---------------------------------------------------------------------------


def is_template(value: Any) -> bool:
    """True when *value* is a string containing at least one ``{ref}``."""
    return isinstance(value, str) and _TEMPLATE_REF_RE.search(value) is not None


def extract_template_refs(template: Optional[str]) -> List[str]:
    """
    Return the stripped ``{ref}`` names of a template, in order, de-duplicated.

    Examples:
        >>> extract_template_refs("{first_name} {last_name} ({company.name})")
        ['first_name', 'last_name', 'company.name']
    """
    if not template:
        return []
    seen: Dict[str, None] = {}
    for match in _TEMPLATE_REF_RE.findall(template):
        ref: str = match.strip()
        if ref:
            seen.setdefault(ref, None)
    return list(seen)


def interpolate_template(template: str, resolve: Callable[[str], Any]) -> str:
    """
    Replace every ``{ref}`` in *template* with ``resolve(ref)``.

    ``None`` renders as an empty string.
    """

    def _replace(match: "re.Match[str]") -> str:
        value: Any = resolve(match.group(1).strip())
        return "" if value is None else str(value)

    return _TEMPLATE_REF_RE.sub(_replace, template)


# ---------------------------------------------------------------------------
# Sizes
# ---------------------------------------------------------------------------


def parse_size(value: Any) -> int:
    """
    Parse a human size (``"25MB"``, ``"512 KB"``, ``1024``) into bytes.

    Raises:
        ValueError: if the value cannot be parsed.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid size: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    match = _SIZE_RE.match(str(value))
    if match is None:
        raise ValueError(f"Invalid size: {value!r}")
    number: float = float(match.group(1))
    unit: str = (match.group(2) or "B").upper()
    return int(number * _SIZE_UNITS[unit])


# ---------------------------------------------------------------------------
# Timer context manager
# ---------------------------------------------------------------------------


class Timer:
    """
    Simple context-manager timer for profiling boot steps.

    Usage:
        with Timer("load metadata") as t:
            ...
        print(t.elapsed)
    """

    __slots__ = ("label", "start_time", "end_time", "elapsed")

    def __init__(self, label: str = "operation") -> None:
        self.label: str = label
        self.start_time: float = 0.0
        self.end_time: float = 0.0
        self.elapsed: float = 0.0

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        exc_tb: Optional[object],
    ) -> None:
        self.end_time = time.perf_counter()
        self.elapsed = self.end_time - self.start_time
        logger.debug("Timer [%s]: %.4f seconds", self.label, self.elapsed)

    def __repr__(self) -> str:
        return f"<Timer {self.label}: {self.elapsed:.4f}s>"


__all__: List[str] = [
    "Timer",
    "extract_template_refs",
    "interpolate_template",
    "is_template",
    "parse_size",
    "to_pascal_case",
    "to_plural",
    "to_title_human",
]
