"""
String extension functions for rule expressions.

celpy ships the core string functions (``contains``, ``startsWith``,
``endsWith``, ``matches``, ``size``). Rules over SQL text also need the
usual string extensions, registered here under their CEL names:

    lowerAscii, upperAscii, replace, split, substring, trim,
    indexOf, lastIndexOf, join

Each function takes the receiver as its first argument, so both
``query.sql.lowerAscii()`` and ``lowerAscii(query.sql)`` work. Out of
range positions raise ``ValueError``, which surfaces as an evaluation
error.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from celpy import celtypes


def _ascii(convert: Callable[[str], str]) -> Callable[[str], celtypes.StringType]:
    def apply(text: str) -> celtypes.StringType:
        return celtypes.StringType("".join(convert(c) if c.isascii() else c for c in text))

    return apply


lower_ascii = _ascii(str.lower)
upper_ascii = _ascii(str.upper)


def replace(text: str, old: str, new: str, limit: int = -1) -> celtypes.StringType:
    """Replace ``limit`` occurrences of ``old`` (all when negative)."""
    return celtypes.StringType(text.replace(old, new, int(limit)))


def split(text: str, separator: str, limit: int = -1) -> celtypes.ListType:
    """
    Split ``text`` on ``separator``.

    A zero ``limit`` yields an empty list, a positive one at most ``limit``
    parts, and a negative one every part. An empty separator splits into
    characters.
    """
    limit = int(limit)
    if limit == 0:
        return celtypes.ListType([])
    if separator:
        parts = text.split(separator) if limit < 0 else text.split(separator, limit - 1)
    else:
        parts = list(text)
        if 0 < limit < len(parts):
            parts = parts[: limit - 1] + ["".join(parts[limit - 1:])]
    return celtypes.ListType([celtypes.StringType(part) for part in parts])


def substring(text: str, start: int, end: int | None = None) -> celtypes.StringType:
    start = int(start)
    end = len(text) if end is None else int(end)
    if not 0 <= start <= end <= len(text):
        raise ValueError(f"substring out of range: [{start}:{end}] of length {len(text)}")
    return celtypes.StringType(text[start:end])


def trim(text: str) -> celtypes.StringType:
    return celtypes.StringType(text.strip())


def index_of(text: str, fragment: str, offset: int = 0) -> celtypes.IntType:
    offset = int(offset)
    if not 0 <= offset <= len(text):
        raise ValueError(f"index out of range: {offset}")
    return celtypes.IntType(text.find(fragment, offset))


def last_index_of(text: str, fragment: str, offset: int | None = None) -> celtypes.IntType:
    """Last position of ``fragment`` starting at or before ``offset``."""
    offset = len(text) if offset is None else int(offset)
    if not 0 <= offset <= len(text):
        raise ValueError(f"index out of range: {offset}")
    return celtypes.IntType(text.rfind(fragment, 0, offset + len(fragment)))


def join(items: list[Any], separator: str = "") -> celtypes.StringType:
    if not all(isinstance(item, str) for item in items):
        raise TypeError("join requires a list of strings")
    return celtypes.StringType(separator.join(items))


FUNCTIONS: dict[str, Callable[..., Any]] = {
    "lowerAscii": lower_ascii,
    "upperAscii": upper_ascii,
    "replace": replace,
    "split": split,
    "substring": substring,
    "trim": trim,
    "indexOf": index_of,
    "lastIndexOf": last_index_of,
    "join": join,
}
