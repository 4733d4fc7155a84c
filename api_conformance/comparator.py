"""Comparator - Matches expected values against actual JSON values.

An expected value is one of four kinds (see ValueKind) and is compared against
the actual value according to its kind:

    PATTERN   compiled regex; the actual value's text must match (re.search)
    SEQUENCE  list/tuple; order-independent, exact element equality
    MAPPING   dict; every expected entry must hold (extra actual keys allowed)
    LITERAL   anything else; strict value equality

Nothing in this module raises on a shape mismatch: comparing a mapping against
a scalar, or a pattern against a list, is simply False.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, assert_never


# =============================================================================
# Sentinel for Missing Fields
# =============================================================================


class _NotFound:
    """Sentinel for a key absent from the actual mapping.

    It compares like JSON null (an expected None matches a missing key), but
    failure descriptions can still tell the two apart.
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "<NOT_FOUND>"


NOT_FOUND = _NotFound()


# =============================================================================
# Value Kinds
# =============================================================================


class ValueKind(str, Enum):
    """Comparison strategy selected by the shape of an expected value."""

    LITERAL = "literal"
    PATTERN = "pattern"
    SEQUENCE = "sequence"
    MAPPING = "mapping"


def classify(expected: Any) -> ValueKind:
    """Return the comparison strategy for an expected value."""
    if isinstance(expected, re.Pattern):
        return ValueKind.PATTERN
    if isinstance(expected, (list, tuple)):
        return ValueKind.SEQUENCE
    if isinstance(expected, Mapping):
        return ValueKind.MAPPING
    return ValueKind.LITERAL


# =============================================================================
# Value Comparator
# =============================================================================


def compare_values(expected: Any, actual: Any) -> bool:
    """Compare one expected value against one actual value.

    Args:
        expected: Expected value (pattern, sequence, mapping, or literal).
        actual: Actual value from a parsed JSON body, or NOT_FOUND.

    Returns:
        True if actual satisfies expected.
    """
    if actual is NOT_FOUND:
        actual = None

    kind = classify(expected)
    if kind is ValueKind.PATTERN:
        return _matches_pattern(expected, actual)
    if kind is ValueKind.SEQUENCE:
        return _sequence_matches(expected, actual)
    if kind is ValueKind.MAPPING:
        return _mapping_matches(expected, actual)
    if kind is ValueKind.LITERAL:
        return values_equal(expected, actual)
    assert_never(kind)


def values_equal(expected: Any, actual: Any) -> bool:
    """Strict structural equality.

    Unlike ``==``, booleans never equal numbers and strings never equal
    numbers. Integers and floats of the same value are equal. Mappings and
    sequences are compared recursively with the same rules.
    """
    if isinstance(expected, bool) or isinstance(actual, bool):
        return type(expected) is type(actual) and expected == actual

    if _is_number(expected) or _is_number(actual):
        return _is_number(expected) and _is_number(actual) and expected == actual

    if isinstance(expected, str) or isinstance(actual, str):
        return isinstance(expected, str) and isinstance(actual, str) and expected == actual

    if isinstance(expected, Mapping):
        if not isinstance(actual, Mapping) or expected.keys() != actual.keys():
            return False
        return all(values_equal(value, actual[key]) for key, value in expected.items())

    if isinstance(expected, (list, tuple)):
        if not isinstance(actual, (list, tuple)) or len(expected) != len(actual):
            return False
        return all(values_equal(e, a) for e, a in zip(expected, actual))

    return expected == actual


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _matches_pattern(pattern: re.Pattern, actual: Any) -> bool:
    text = _as_text(actual)
    if text is None:
        return False
    if isinstance(pattern.pattern, bytes):
        return pattern.search(text.encode("utf-8")) is not None
    return pattern.search(text) is not None


def _as_text(value: Any) -> str | None:
    """Textual form of a scalar for regex matching, or None for non-scalars.

    Numbers and booleans use their JSON spelling (true, 1.5).
    """
    if isinstance(value, str):
        return value
    if isinstance(value, (bool, int, float)):
        return json.dumps(value)
    return None


def is_orderable(items: Any) -> bool:
    """True if items is a sequence whose elements have a total order.

    Only homogeneous sequences of strings, or of real (non-boolean) numbers,
    qualify. Empty sequences are trivially orderable.
    """
    if not isinstance(items, (list, tuple)):
        return False
    if all(isinstance(item, str) for item in items):
        return True
    return all(_is_number(item) for item in items)


def _sequence_matches(expected: list | tuple, actual: Any) -> bool:
    # Order never matters: sort when both sides can be sorted, otherwise
    # look each expected element up in actual.
    if is_orderable(expected) and is_orderable(actual):
        if len(expected) != len(actual):
            return False
        return all(
            values_equal(e, a) for e, a in zip(sorted(expected), sorted(actual))
        )

    if actual is None or not isinstance(actual, (list, tuple)):
        return False

    # NOTE: elements must match exactly; patterns and partial mappings inside
    # sequences are compared with values_equal, never recursively matched.
    if len(actual) != len(expected):
        return False
    return all(
        any(values_equal(item, candidate) for candidate in actual)
        for item in expected
    )


def _mapping_matches(expected: Mapping, actual: Any) -> bool:
    if not isinstance(actual, Mapping):
        return False
    return all(
        EntryMatch.check(key, value, actual).matched
        for key, value in expected.items()
    )


# =============================================================================
# Map-Entry Matcher
# =============================================================================


@dataclass(frozen=True)
class EntryMatch:
    """Result of checking one expected (key, value) pair against a mapping.

    Attributes:
        key: The expected key.
        expected: The expected value for that key.
        actual: The value found under key, or NOT_FOUND.
        matched: Whether actual satisfies expected.
    """

    key: Any
    expected: Any
    actual: Any
    matched: bool

    @classmethod
    def check(cls, key: Any, expected: Any, target: Any) -> EntryMatch:
        """Look key up in target and compare the found value to expected.

        A target that is not a mapping fails every entry.
        """
        if not isinstance(target, Mapping):
            return cls(key=key, expected=expected, actual=NOT_FOUND, matched=False)

        actual = target.get(key, NOT_FOUND)
        return cls(
            key=key,
            expected=expected,
            actual=actual,
            matched=compare_values(expected, actual),
        )

    def __bool__(self) -> bool:
        return self.matched

    @property
    def description(self) -> str:
        """Failure message naming the key, the expected and the actual value."""
        return (
            f'"{self.key}" should match "{render_value(self.expected)}", '
            f'but we got "{render_value(self.actual)}" instead.'
        )


def entry_matches(key: Any, expected: Any, target: Any) -> bool:
    """Return whether target[key] satisfies expected."""
    return EntryMatch.check(key, expected, target).matched


# =============================================================================
# Rendering
# =============================================================================


def render_value(value: Any) -> str:
    """Render an expected or actual value for a failure message.

    Patterns render as /source/, missing values as <missing>, strings as-is,
    everything else as JSON.
    """
    if value is NOT_FOUND:
        return "<missing>"
    if isinstance(value, re.Pattern):
        return _render_pattern(value)
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, default=_render_default)
    except (TypeError, ValueError):
        return repr(value)


def _render_pattern(pattern: re.Pattern) -> str:
    source = pattern.pattern
    if isinstance(source, bytes):
        source = source.decode("utf-8", errors="replace")
    return f"/{source}/"


def _render_default(value: Any) -> Any:
    if isinstance(value, re.Pattern):
        return _render_pattern(value)
    if value is NOT_FOUND:
        return "<missing>"
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=repr)
    return repr(value)
