"""Parsing of control values given as text."""

from __future__ import annotations

import re
from typing import Callable, Iterable, Mapping, Optional, TypeVar, Union

T = TypeVar("T")

_INT = r"\s*([+-]?\d+)"
_UINT = r"\s*\+?(\d+)"

_RECTANGLE_PATTERNS = (
    re.compile(r"\(" + _INT + "," + _INT + r"\)/" + _UINT + "x" + _UINT),
    re.compile(_INT + "," + _INT + "," + _UINT + "," + _UINT),
)

_SIZE_PATTERNS = (
    re.compile(_UINT + "x" + _UINT),
    re.compile(_UINT + "," + _UINT),
)


def parse_rectangle(value: str) -> tuple[int, int, int, int]:
    """Parse ``(x,y)/WxH`` or ``x,y,w,h``; an empty rectangle if neither fits."""
    for pattern in _RECTANGLE_PATTERNS:
        match = pattern.match(value)
        if match:
            x, y, width, height = (int(group) for group in match.groups())
            return x, y, width, height
    return 0, 0, 0, 0


def parse_size(value: str) -> tuple[int, int]:
    """Parse ``WxH`` or ``W,H``; an empty size if neither fits."""
    for pattern in _SIZE_PATTERNS:
        match = pattern.match(value)
        if match:
            width, height = (int(group) for group in match.groups())
            return width, height
    return 0, 0


def parse_control_values(value: Optional[str], parse: Callable[[str], T]) -> list[T]:
    """Split ``value`` on commas, skip empty items and parse the rest.

    Raises ValueError when nothing is left to parse.
    """
    parsed = [parse(item) for item in (value or "").split(",") if item]
    if not parsed:
        raise ValueError(f"no value to parse in {value!r}")
    return parsed


def strip_enum_prefix(
    values: Union[Mapping[int, str], Iterable[tuple[int, str]]], prefix: Optional[str]
) -> dict[int, str]:
    """Map enum values to their names with a leading ``prefix`` removed."""
    items = values.items() if isinstance(values, Mapping) else values
    result = {}
    for number, name in items:
        if prefix and name.startswith(prefix):
            name = name[len(prefix):]
        result[number] = name
    return result