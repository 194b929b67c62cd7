"""
Version matcher — evaluate constraint expressions against a version.

Versions are dotted numeric strings (``16.04.2``, ``10000``). Comparison
is component-wise numeric, never lexicographic; missing trailing
components count as zero.

Constraint expressions::

    14.04          exact (components the constraint names must match)
    ==14.04        exact
    >=10.14        at least
    >16.04         greater than
    <=2 / <2       at most / less than
    >=1.2, <2      range (every part must match)

Pure: no I/O.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from offsetup.core.errors import InvalidVersionError

_OPERATOR_RE = re.compile(r"^\s*(==|>=|<=|=|>|<)?\s*(.+?)\s*$")


class Operator(str, Enum):
    EXACT = "=="
    AT_LEAST = ">="
    GREATER_THAN = ">"
    AT_MOST = "<="
    LESS_THAN = "<"


@dataclass(frozen=True)
class Constraint:
    """One comparison: operator + parsed version components."""

    op: Operator
    version: tuple[int, ...]
    raw: str = ""

    def __str__(self) -> str:
        return self.raw or f"{self.op.value}{'.'.join(map(str, self.version))}"


def parse_version(value: str) -> tuple[int, ...]:
    """``"16.04.2"`` → ``(16, 4, 2)``. A leading ``v`` is tolerated."""
    text = str(value).strip()
    if text[:1] in ("v", "V"):
        text = text[1:]
    parts = text.split(".")
    if not text or not all(p.isdigit() for p in parts):
        raise InvalidVersionError(str(value))
    return tuple(int(p) for p in parts)


def parse_constraint(expression: str) -> list[Constraint]:
    """Parse an expression into the constraints that must all hold."""
    text = str(expression).strip()
    if not text:
        raise InvalidVersionError(str(expression))
    constraints = []
    for part in text.split(","):
        match = _OPERATOR_RE.match(part)
        if match is None or not match.group(2):
            raise InvalidVersionError(str(expression))
        symbol = match.group(1) or "=="
        if symbol == "=":
            symbol = "=="
        constraints.append(
            Constraint(
                op=Operator(symbol),
                version=parse_version(match.group(2)),
                raw=part.strip(),
            )
        )
    return constraints


def _pad(parts: tuple[int, ...], length: int) -> tuple[int, ...]:
    return parts + (0,) * (length - len(parts))


def compare(a: tuple[int, ...], b: tuple[int, ...]) -> int:
    """Three-way compare; -1, 0 or 1. First differing component decides."""
    width = max(len(a), len(b))
    left, right = _pad(a, width), _pad(b, width)
    return (left > right) - (left < right)


def _holds(constraint: Constraint, candidate: tuple[int, ...]) -> bool:
    if constraint.op is Operator.EXACT:
        # Prefix match: "14.04" accepts 14.04.5, "14.04.5" rejects 14.04
        width = len(constraint.version)
        return _pad(candidate, width)[:width] == constraint.version
    order = compare(candidate, constraint.version)
    if constraint.op is Operator.AT_LEAST:
        return order >= 0
    if constraint.op is Operator.GREATER_THAN:
        return order > 0
    if constraint.op is Operator.AT_MOST:
        return order <= 0
    return order < 0


def matches(constraint: str | Constraint | list[Constraint], candidate: str) -> bool:
    """Whether ``candidate`` satisfies ``constraint``.

    Raises:
        InvalidVersionError: either side is malformed.
    """
    if isinstance(constraint, str):
        parsed = parse_constraint(constraint)
    elif isinstance(constraint, Constraint):
        parsed = [constraint]
    else:
        parsed = constraint
    version = parse_version(candidate)
    return all(_holds(c, version) for c in parsed)


def first_match(expressions: list[str], candidate: str) -> str | None:
    """Return the first expression ``candidate`` satisfies, or None."""
    for expression in expressions:
        if matches(expression, candidate):
            return expression
    return None
