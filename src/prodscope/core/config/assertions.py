"""
Recipe assertion language.

Assertions are short boolean checks over an extracted record, written as
strings in recipe files and compiled once when the recipe is loaded:

    price > 0
    name
    images.length >= 2
    images[0].startswith('https://')
    currency == 'EUR'

Compilation produces an :class:`Assertion` tree node (field path, operator,
literal). Strings that do not fit the grammar raise
:class:`AssertionSyntaxError` at load time instead of silently passing.
"""

from __future__ import annotations

import operator
import re
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Union

COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
    "==": operator.eq,
    "!=": operator.ne,
}

METHODS = {
    "startswith": "startswith",
    "startsWith": "startswith",
    "endswith": "endswith",
    "endsWith": "endswith",
    "includes": "contains",
    "contains": "contains",
}

_ASSERTION_RE = re.compile(
    r"""^\s*
    (?P<field>[A-Za-z_]\w*)
    (?P<path>(?:\.length|\[\d+\])*)
    \s*
    (?:
        (?P<op>>=|<=|==|!=|>|<)\s*(?P<literal>.+?)
      | \.(?P<method>\w+)\(\s*(?P<arg>.+?)\s*\)
    )?
    \s*$""",
    re.VERBOSE,
)

_PATH_STEP_RE = re.compile(r"\.length|\[(\d+)\]")

_MISSING = object()


class AssertionSyntaxError(ValueError):
    """An assertion string is outside the supported grammar."""


@dataclass(frozen=True)
class Length:
    """``.length`` accessor."""


@dataclass(frozen=True)
class Index:
    """``[n]`` accessor."""

    position: int


Accessor = Union[Length, Index]


@dataclass(frozen=True)
class Assertion:
    """One compiled assertion: ``field<path> <op> <literal>``.

    ``op`` is None for a bare truthiness check.
    """

    source: str
    field: str
    path: tuple[Accessor, ...] = ()
    op: str | None = None
    literal: Any = None

    def resolve(self, data: Mapping[str, Any]) -> Any:
        value = data.get(self.field, _MISSING)
        for step in self.path:
            if value is _MISSING or value is None:
                return _MISSING
            if isinstance(step, Length):
                try:
                    value = len(value)
                except TypeError:
                    return _MISSING
            else:
                if not isinstance(value, (list, tuple, str)) or step.position >= len(value):
                    return _MISSING
                value = value[step.position]
        return value

    def evaluate(self, data: Mapping[str, Any]) -> bool:
        value = self.resolve(data)

        if self.op is None:
            return value is not _MISSING and bool(value)

        if value is _MISSING or value is None:
            return self.op == "!=" and self.literal is not None

        if self.op in ("startswith", "endswith", "contains"):
            if not isinstance(value, str):
                return False
            if self.op == "contains":
                return str(self.literal) in value
            return getattr(value, self.op)(str(self.literal))

        left, right = _coerce_pair(value, self.literal)
        try:
            return COMPARATORS[self.op](left, right)
        except TypeError:
            return False

    def __str__(self) -> str:
        return self.source


def _coerce_pair(value: Any, literal: Any) -> tuple[Any, Any]:
    """Compare numbers as numbers even when one side arrived as text."""
    if isinstance(literal, (int, float)) and not isinstance(literal, bool) and isinstance(value, str):
        try:
            return float(value), literal
        except ValueError:
            return value, str(literal)
    if isinstance(value, (int, float)) and not isinstance(value, bool) and isinstance(literal, str):
        try:
            return value, float(literal)
        except ValueError:
            return str(value), literal
    return value, literal


def _parse_literal(text: str) -> Any:
    text = text.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return text[1:-1]
    lowered = text.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if lowered in ("null", "none"):
        return None
    try:
        number = float(text)
    except ValueError:
        return text
    return int(number) if number.is_integer() and "." not in text else number


def _parse_path(text: str) -> tuple[Accessor, ...]:
    steps: list[Accessor] = []
    for match in _PATH_STEP_RE.finditer(text):
        if match.group(1) is not None:
            steps.append(Index(int(match.group(1))))
        else:
            steps.append(Length())
    return tuple(steps)


def compile_assertion(source: str) -> Assertion:
    """Compile one assertion string.

    Raises:
        AssertionSyntaxError: If the string does not match the grammar
    """
    match = _ASSERTION_RE.match(source)
    if not match:
        raise AssertionSyntaxError(f"Unsupported assertion: {source!r}")

    field = match.group("field")
    path = _parse_path(match.group("path") or "")

    if match.group("op"):
        return Assertion(source, field, path, match.group("op"), _parse_literal(match.group("literal")))

    if match.group("method"):
        method = METHODS.get(match.group("method"))
        if method is None:
            raise AssertionSyntaxError(
                f"Unsupported method '{match.group('method')}' in assertion: {source!r}"
            )
        return Assertion(source, field, path, method, _parse_literal(match.group("arg")))

    return Assertion(source, field, path)


def compile_assertions(sources: list[str]) -> list[Assertion]:
    return [compile_assertion(source) for source in sources]


def failed_assertions(assertions: list[Assertion], data: Mapping[str, Any]) -> list[str]:
    """Return an error message for every assertion that evaluates false."""
    return [f"Assertion failed: {assertion.source}" for assertion in assertions if not assertion.evaluate(data)]
