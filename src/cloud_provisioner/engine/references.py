"""Reference expressions and the unknown-until-apply marker.

Attribute values may embed ``${...}`` expressions:

- ``${var.NAME}``: configuration variable
- ``${count.index}``, ``${each.key}``, ``${each.value}``: instance keys
- ``${TYPE.NAME.ATTR}``, ``${TYPE.NAME[0].ATTR}``, ``${TYPE.NAME["k"].ATTR}``
  refer to another instance's attribute; ``${TYPE.NAME[*].ATTR}`` yields a list

A string that is exactly one expression evaluates to the raw value; an
expression embedded in longer text is interpolated as a string.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any

RESERVED_NAMESPACES: frozenset[str] = frozenset({"var", "count", "each"})
UNKNOWN_KEY = "$unknown"

_EXPR_RE = re.compile(r"\$\{\s*([^{}]+?)\s*\}")
_REF_RE = re.compile(
    r"^(?P<type>[a-z][a-z0-9_]*)\.(?P<name>[A-Za-z0-9_]+)"
    r'(?:\[(?P<index>\*|\d+|"[^"]*")\])?'
    r"\.(?P<attr>[A-Za-z0-9_]+(?:\.[A-Za-z0-9_]+)*)$"
)


class _Keep:
    """Sentinel returned by a lookup to leave an expression untouched."""

    def __repr__(self) -> str:
        return "KEEP"


KEEP = _Keep()

Lookup = Callable[[str, str], Any]


@dataclass(frozen=True, slots=True)
class Unknown:
    """A value that will only be known once the producing instance is applied."""

    expression: str

    def __str__(self) -> str:
        return "(known after apply)"


@dataclass(frozen=True, slots=True)
class ReferenceExpr:
    """A parsed ``TYPE.NAME[INDEX].ATTR`` expression."""

    resource_type: str
    name: str
    key: int | str | None
    splat: bool
    attribute: str
    expression: str

    @property
    def resource_address(self) -> str:
        return f"{self.resource_type}.{self.name}"

    @property
    def has_index(self) -> bool:
        return self.splat or self.key is not None


def format_address(resource_type: str, name: str, key: int | str | None = None) -> str:
    """Instance address: ``type.name``, ``type.name[0]`` or ``type.name["key"]``."""
    base = f"{resource_type}.{name}"
    if key is None:
        return base
    if isinstance(key, int):
        return f"{base}[{key}]"
    return f'{base}["{key}"]'


def parse_reference(expression: str) -> ReferenceExpr | None:
    """Parse a resource reference; ``None`` when the expression is not one."""
    m = _REF_RE.match(expression)
    if m is None or m.group("type") in RESERVED_NAMESPACES:
        return None
    raw_index = m.group("index")
    key: int | str | None = None
    splat = raw_index == "*"
    if raw_index is not None and not splat:
        key = raw_index.strip('"') if raw_index.startswith('"') else int(raw_index)
    return ReferenceExpr(
        resource_type=m.group("type"),
        name=m.group("name"),
        key=key,
        splat=splat,
        attribute=m.group("attr"),
        expression=expression,
    )


def _join(path: str, part: str | int) -> str:
    if isinstance(part, int):
        return f"{path}[{part}]"
    return f"{path}.{part}" if path else part


def iter_expressions(value: Any, path: str = "") -> Iterator[tuple[str, str]]:
    """Yield ``(attribute_path, expression)`` for every expression in *value*."""
    if isinstance(value, str):
        for m in _EXPR_RE.finditer(value):
            yield path, m.group(1).strip()
    elif isinstance(value, dict):
        for k, v in value.items():
            yield from iter_expressions(v, _join(path, k))
    elif isinstance(value, list):
        for i, v in enumerate(value):
            yield from iter_expressions(v, _join(path, i))


def contains_unknown(value: Any) -> bool:
    if isinstance(value, Unknown):
        return True
    if isinstance(value, dict):
        return any(contains_unknown(v) for v in value.values())
    if isinstance(value, list):
        return any(contains_unknown(v) for v in value)
    return False


def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value, sort_keys=True)


def substitute(value: Any, lookup: Lookup, path: str = "") -> Any:
    """Replace expressions in *value* using ``lookup(expression, attribute_path)``.

    The lookup may return :data:`KEEP` to leave an expression in place. A
    string interpolating an unknown value becomes wholly :class:`Unknown`.
    """
    if isinstance(value, str):
        whole = _EXPR_RE.fullmatch(value)
        if whole is not None:
            result = lookup(whole.group(1).strip(), path)
            return value if result is KEEP else result

        unknown = False

        def _repl(m: re.Match[str]) -> str:
            nonlocal unknown
            result = lookup(m.group(1).strip(), path)
            if result is KEEP:
                return m.group(0)
            if contains_unknown(result):
                unknown = True
                return m.group(0)
            return _as_text(result)

        text = _EXPR_RE.sub(_repl, value)
        return Unknown(value) if unknown else text
    if isinstance(value, dict):
        return {k: substitute(v, lookup, _join(path, k)) for k, v in value.items()}
    if isinstance(value, list):
        return [substitute(v, lookup, _join(path, i)) for i, v in enumerate(value)]
    return value


def encode_unknowns(value: Any) -> Any:
    """JSON-safe form: every :class:`Unknown` becomes ``{"$unknown": expression}``."""
    if isinstance(value, Unknown):
        return {UNKNOWN_KEY: value.expression}
    if isinstance(value, dict):
        return {k: encode_unknowns(v) for k, v in value.items()}
    if isinstance(value, list):
        return [encode_unknowns(v) for v in value]
    return value


def is_encoded_unknown(value: Any) -> bool:
    return isinstance(value, dict) and set(value) == {UNKNOWN_KEY}


def contains_encoded_unknown(value: Any) -> bool:
    if is_encoded_unknown(value):
        return True
    if isinstance(value, dict):
        return any(contains_encoded_unknown(v) for v in value.values())
    if isinstance(value, list):
        return any(contains_encoded_unknown(v) for v in value)
    return False
