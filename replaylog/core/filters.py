"""Declarative recording filters.

A filter is a conjunction of clauses ``path op value``. Paths resolve against
Recording attributes first and dict keys after that, e.g. ``metadata.title``.
String form::

    status == "onDisk" and metadata.test.result != "passed"

Supported operators: ``==``, ``!=``, ``contains``, ``startswith``. Values are
quoted strings, numbers, ``true``, ``false`` or ``null``.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

Op = Literal["==", "!=", "contains", "startswith"]

_MISSING = object()

_CLAUSE_RE = re.compile(
    r"""^\s*
    (?P<path>[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*)
    \s*(?P<op>==|!=|\bcontains\b|\bstartswith\b)\s*
    (?P<value>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*'|-?\d+(?:\.\d+)?|true|false|null)
    \s*$""",
    re.VERBOSE,
)
_AND_RE = re.compile(r"\s+and\s+(?=(?:[^\"']|\"[^\"]*\"|'[^']*')*$)")


def _parse_value(raw: str) -> Any:
    if raw[0] == "'":
        raw = '"' + raw[1:-1].replace('"', '\\"') + '"'
    return json.loads(raw)


def resolve(obj: Any, path: str) -> Any:
    cur = obj
    for part in path.split("."):
        if isinstance(cur, dict):
            cur = cur.get(part, _MISSING)
        else:
            cur = getattr(cur, part, _MISSING)
        if cur is _MISSING:
            return _MISSING
    if isinstance(cur, Enum):
        return cur.value
    return cur


@dataclass(frozen=True)
class Clause:
    path: str
    op: Op
    value: Any

    def matches(self, obj: Any) -> bool:
        actual = resolve(obj, self.path)
        if actual is _MISSING:
            actual = None
        if self.op == "==":
            return actual == self.value
        if self.op == "!=":
            return actual != self.value
        if self.op == "contains":
            if isinstance(actual, str):
                needle = self.value if isinstance(self.value, str) else json.dumps(self.value)
                return needle in actual
            if isinstance(actual, (list, tuple, dict)):
                return self.value in actual
            return False
        if self.op == "startswith":
            return isinstance(actual, str) and isinstance(self.value, str) and actual.startswith(self.value)
        raise ValueError(f"unsupported operator {self.op!r}")


@dataclass(frozen=True)
class RecordingFilter:
    clauses: tuple[Clause, ...] = field(default_factory=tuple)

    def __call__(self, obj: Any) -> bool:
        return all(c.matches(obj) for c in self.clauses)

    @classmethod
    def parse(cls, text: str) -> "RecordingFilter":
        text = text.strip()
        if not text:
            return cls()
        clauses = []
        for part in _AND_RE.split(text):
            m = _CLAUSE_RE.match(part)
            if not m:
                raise ValueError(f"invalid filter clause: {part.strip()!r}")
            clauses.append(Clause(m["path"], m["op"], _parse_value(m["value"])))  # type: ignore[arg-type]
        return cls(tuple(clauses))
