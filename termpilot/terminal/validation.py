"""Output validation predicates."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any

from termpilot.errors import ValidationError
from termpilot.models import ColorSpan

# "<kind>:<argument>" shorthands accepted in plain string expectations
_PREFIXES = ("regex", "contains", "not_contains", "starts_with", "ends_with")


def _regex_search(pattern: str, text: str) -> bool:
    try:
        return re.search(pattern, text, re.IGNORECASE) is not None
    except re.error as exc:
        raise ValidationError(f"Invalid regex {pattern!r}: {exc}") from exc


def _check(kind: str, text: str, value: Any) -> bool:
    if kind == "equals":
        return text.strip() == str(value).strip()
    if kind == "regex":
        return _regex_search(str(value), text)
    if kind == "contains":
        return str(value) in text
    if kind == "not_contains":
        return str(value) not in text
    if kind == "starts_with":
        return text.startswith(str(value))
    if kind == "ends_with":
        return text.endswith(str(value))
    if kind == "empty":
        return not text.strip()
    if kind == "not_empty":
        return bool(text.strip())
    if kind == "length":
        try:
            return len(text) == int(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Length validation needs an integer, got {value!r}") from exc
    raise ValidationError(f"Unsupported validation type: {kind}")


def matches(text: str, expected: str | Mapping[str, Any]) -> bool:
    """
    Evaluate an expectation against captured text.

    Strings are either "<kind>:<argument>" for the kinds in _PREFIXES, or an
    exact match after trimming. Mappings carry {"type": ..., "value": ...}.
    """
    if isinstance(expected, str):
        kind, sep, argument = expected.partition(":")
        if sep and kind in _PREFIXES:
            return _check(kind, text, argument)
        return _check("equals", text, expected)

    if isinstance(expected, Mapping):
        kind = expected.get("type")
        if not kind:
            raise ValidationError(f"Validation object needs a 'type': {dict(expected)!r}")
        return _check(str(kind), text, expected.get("value"))

    raise ValidationError(f"Unsupported validation value: {expected!r}")


def missing_spans(actual: Iterable[ColorSpan], expected: Iterable[ColorSpan]) -> list[ColorSpan]:
    """Expected spans with no actual span of the same text, colors and styles."""
    actual = list(actual)
    return [want for want in expected if not any(span.same_style(want) for span in actual)]


def spans_present(actual: Iterable[ColorSpan], expected: Iterable[ColorSpan]) -> bool:
    return not missing_spans(actual, expected)
