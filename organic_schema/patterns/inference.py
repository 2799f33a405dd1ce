"""
Type inference for observed attribute values.

Inference is an ordered table of ``(predicate, TypeTag)`` pairs evaluated
top-down; the first predicate that matches wins.
"""

import json
import re
from enum import Enum
from typing import Any, Callable, Hashable, Iterable, List, Tuple


class TypeTag(str, Enum):
    """Inferred type of an attribute value."""
    ANY = "any"                    # null / missing
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"              # non-integral numeric
    BOOLEAN = "boolean"
    EMAIL = "email"
    URL = "url"
    DATE = "date"                  # ISO date prefix
    PHONE = "phone"
    OBJECT = "object"
    ARRAY = "array"


EMAIL_RE = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")
URL_RE = re.compile(r"https?://")
DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}", re.ASCII)
PHONE_RE = re.compile(r"[+\d\s\-()]{8,}", re.ASCII)

# Most specific first
TYPE_PRIORITY: List[TypeTag] = [
    TypeTag.EMAIL,
    TypeTag.URL,
    TypeTag.DATE,
    TypeTag.PHONE,
    TypeTag.NUMBER,
    TypeTag.INTEGER,
    TypeTag.BOOLEAN,
    TypeTag.STRING,
    TypeTag.OBJECT,
    TypeTag.ARRAY,
]


def is_email(value: str) -> bool:
    return EMAIL_RE.fullmatch(value) is not None


def is_url(value: str) -> bool:
    return URL_RE.match(value) is not None


def is_date(value: str) -> bool:
    return DATE_RE.match(value) is not None


def is_phone(value: str) -> bool:
    return PHONE_RE.fullmatch(value) is not None


def _is_number(value: Any) -> bool:
    # bool is an int subclass
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_integral(value: Any) -> bool:
    return isinstance(value, int) or value.is_integer()


TYPE_RULES: List[Tuple[Callable[[Any], bool], TypeTag]] = [
    (lambda v: v is None, TypeTag.ANY),
    (lambda v: isinstance(v, bool), TypeTag.BOOLEAN),
    (lambda v: _is_number(v) and _is_integral(v), TypeTag.INTEGER),
    (_is_number, TypeTag.NUMBER),
    (lambda v: isinstance(v, str) and is_email(v), TypeTag.EMAIL),
    (lambda v: isinstance(v, str) and is_url(v), TypeTag.URL),
    (lambda v: isinstance(v, str) and is_date(v), TypeTag.DATE),
    (lambda v: isinstance(v, str) and is_phone(v), TypeTag.PHONE),
    (lambda v: isinstance(v, str), TypeTag.STRING),
    (lambda v: isinstance(v, (list, tuple)), TypeTag.ARRAY),
    (lambda v: isinstance(v, dict), TypeTag.OBJECT),
]


def infer_type(value: Any) -> TypeTag:
    """Infer the type tag of a raw value. Unknown kinds fall back to string."""
    for predicate, tag in TYPE_RULES:
        if predicate(value):
            return tag
    return TypeTag.STRING


def dominant_type(types: Iterable[TypeTag]) -> TypeTag:
    """
    Pick the single best tag from all tags observed for an attribute.

    A lone tag is returned as is; otherwise the most specific tag in
    ``TYPE_PRIORITY`` wins. ``any`` only survives when it is alone.
    """
    observed = list(types)
    if len(observed) == 1:
        return observed[0]

    for tag in TYPE_PRIORITY:
        if tag in observed:
            return tag
    return TypeTag.STRING


def value_key(value: Any) -> Hashable:
    """
    Canonical identity for a stored value.

    Booleans never collide with numbers, ``1`` and ``1.0`` are the same
    value, and containers compare by content.
    """
    if isinstance(value, bool):
        return ("bool", value)
    if isinstance(value, (dict, list, tuple)):
        try:
            return ("json", json.dumps(value, sort_keys=True, default=str))
        except TypeError:
            # Mixed key types cannot be sorted
            return ("repr", repr(value))
    try:
        hash(value)
    except TypeError:
        return ("repr", repr(value))
    return value
