"""
Query translator - parses URL query parameters into a ParsedQuery.

Value grammar, first match wins:

    >=v  <=v  >v  <v   numeric comparison (v parsed as float)
    !=v                not equal (literal)
    ~v                 case-insensitive regular expression
    a,b,c              membership ($in, literal strings, not trimmed)
    true / false       boolean equality
    42, -1.5, 1e5      numeric equality
    anything else      literal equality

Reserved keys ``page``, ``limit``, ``sort`` and ``fields`` control
pagination, ordering and projection instead of filtering.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Mapping
from typing import Any

from docgate.runtime.errors import ValidationError
from docgate.specs.query import (
    DEFAULT_LIMIT,
    DEFAULT_PAGE,
    MAX_LIMIT,
    FilterCondition,
    FilterOperator,
    ParsedQuery,
    SortField,
)

RESERVED_PARAMS = frozenset({"page", "limit", "sort", "fields"})

# Decimal literals with optional sign, fraction and exponent: 42, -1.5, .5, +3, 1e5.
_NUMERIC_PATTERN = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")

# Longest prefixes first so ">=" is not read as ">".
_COMPARISON_PREFIXES: tuple[tuple[str, FilterOperator], ...] = (
    (">=", FilterOperator.GTE),
    ("<=", FilterOperator.LTE),
    (">", FilterOperator.GT),
    ("<", FilterOperator.LT),
)

_KEY_OPERATOR_CHARS = "<>!~"

RawParams = Mapping[str, Any] | Iterable[tuple[str, Any]]


def _iter_params(raw: RawParams) -> Iterable[tuple[str, Any]]:
    if isinstance(raw, Mapping):
        return raw.items()
    return raw


def split_operator_key(key: str, value: str) -> tuple[str, str]:
    """
    Rebuild ``field`` and value expression when the operator sits in the key.

    A browser sends ``?price>100&price<=500`` as the pairs
    ``("price>100", "")`` and ``("price<", "500")``.

    Examples:
        ("price>100", "") -> ("price", ">100")
        ("price<", "500") -> ("price", "<=500")
        ("status!", "done") -> ("status", "!=done")
        ("name", "~smith") -> ("name", "~smith")
    """
    idx = next((i for i, ch in enumerate(key) if ch in _KEY_OPERATOR_CHARS), -1)
    if idx < 0:
        return key, value

    field, suffix = key[:idx], key[idx:]
    if not value:
        return field, suffix
    if suffix in ("<", ">", "!"):
        return field, f"{suffix}={value}"
    if suffix == "~":
        return field, f"~{value}"
    return field, f"{suffix}={value}"


def _to_number(text: str) -> float | None:
    """The finite float a decimal literal denotes, or None."""
    if not _NUMERIC_PATTERN.fullmatch(text):
        return None
    number = float(text)
    return number if math.isfinite(number) else None


def parse_value(field: str, value: Any) -> FilterCondition:
    """
    Parse one filter value expression into a condition.

    Raises:
        ValidationError: If a comparison operand is not numeric or a regular
            expression does not compile
    """
    if not isinstance(value, str):
        return FilterCondition(field, FilterOperator.EQ, value)

    for prefix, operator in _COMPARISON_PREFIXES:
        if value.startswith(prefix):
            operand = value[len(prefix) :]
            number = _to_number(operand)
            if number is None:
                raise ValidationError.for_field(
                    field, f"Operator '{prefix}' requires a numeric value", operand
                )
            return FilterCondition(field, operator, number)

    if value.startswith("!="):
        return FilterCondition(field, FilterOperator.NE, value[2:])

    if value.startswith("~"):
        pattern = value[1:]
        try:
            re.compile(pattern)
        except re.error as e:
            raise ValidationError.for_field(
                field, f"Invalid regular expression: {e}", pattern
            ) from e
        return FilterCondition(field, FilterOperator.REGEX, pattern)

    if "," in value:
        return FilterCondition(field, FilterOperator.IN, tuple(value.split(",")))

    if value == "true":
        return FilterCondition(field, FilterOperator.EQ, True)
    if value == "false":
        return FilterCondition(field, FilterOperator.EQ, False)

    number = _to_number(value)
    if number is not None:
        return FilterCondition(field, FilterOperator.EQ, number)

    return FilterCondition(field, FilterOperator.EQ, value)


def parse_sort_string(sort_str: str) -> tuple[SortField, ...]:
    """
    Parse a sort string into sort fields.

    Format: "field1,-field2" (comma-separated, - for descending)
    """
    return tuple(SortField.parse(s.strip()) for s in sort_str.split(",") if s.strip().lstrip("-"))


def parse_fields_string(fields_str: str) -> tuple[str, ...] | None:
    """Parse a comma-separated projection; empty means all fields."""
    fields = tuple(f.strip() for f in fields_str.split(",") if f.strip())
    return fields or None


def _parse_int(name: str, value: Any, minimum: int, maximum: int | None = None) -> int:
    if isinstance(value, bool):
        number = None
    elif isinstance(value, int):
        number = value
    else:
        text = str(value).strip()
        number = int(text) if re.fullmatch(r"-?\d+", text) else None

    if number is None:
        raise ValidationError.for_field(name, f"{name} must be an integer", value)
    if number < minimum or (maximum is not None and number > maximum):
        bounds = f"between {minimum} and {maximum}" if maximum is not None else f"at least {minimum}"
        raise ValidationError.for_field(name, f"{name} must be {bounds}", value)
    return number


class QueryTranslator:
    """
    Translates raw query parameters into a ParsedQuery.

    Pure and deterministic: the same parameters always produce the same
    result and no database access happens.

    Example:
        >>> q = QueryTranslator().translate({"price": ">100", "sort": "-createdAt"})
        >>> q.filter
        {'price': {'$gt': 100.0}}
    """

    def __init__(self, default_limit: int = DEFAULT_LIMIT, max_limit: int = MAX_LIMIT):
        self.default_limit = default_limit
        self.max_limit = max_limit

    def translate(self, raw: RawParams) -> ParsedQuery:
        """
        Translate query parameters.

        Args:
            raw: A mapping, or ``(key, value)`` pairs when keys repeat

        Raises:
            ValidationError: For malformed pagination, comparison operands or
                regular expressions
        """
        conditions: list[FilterCondition] = []
        reserved: dict[str, Any] = {}

        for key, value in _iter_params(raw):
            if key in RESERVED_PARAMS:
                reserved[key] = value
                continue
            text = value if value is not None else ""
            field, expression = split_operator_key(key, text) if isinstance(text, str) else (key, text)
            if not field:
                raise ValidationError.for_field(key, "Filter is missing a field name", value)
            conditions.append(parse_value(field, expression))

        page = DEFAULT_PAGE
        if "page" in reserved:
            page = _parse_int("page", reserved["page"], 1)

        limit = self.default_limit
        if "limit" in reserved:
            limit = _parse_int("limit", reserved["limit"], 1, self.max_limit)

        options: dict[str, Any] = {"conditions": tuple(conditions), "page": page, "limit": limit}

        sort = parse_sort_string(str(reserved.get("sort") or ""))
        if sort:
            options["sort"] = sort

        projection = parse_fields_string(str(reserved.get("fields") or ""))
        if projection:
            options["projection"] = projection

        return ParsedQuery(**options)
