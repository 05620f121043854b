"""Chart predicates used by the Filter and Split nodes.

A predicate is either a comparison on a chart property or a combination of
predicates::

    {property: columnCount, op: allow, values: [7]}
    {property: title, op: deny, values: ["intro"]}
    {property: meter, op: lt, value: 20}
    {all: [...]}, {any: [...]}, {not: {...}}

``lt``/``gt`` use natural ordering, so ``"Hard 9" < "Hard 10"``, and string
comparisons ignore case.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Callable, Union

from pydantic import Field, model_validator

from chart_converter.config import ConfigModel
from chart_converter.models.core import Chart

ChartTest = Callable[[Chart], bool]

_NUMBER_RE = re.compile(r"(\d+(?:\.\d+)?)")


class ChartProperty(str, Enum):
    """Chart properties available to predicates."""

    TITLE = "title"
    ARTIST = "artist"
    CREATOR = "creator"
    VERSION = "version"
    SOURCE = "source"
    DIFFICULTY = "difficulty"
    GAMEMODE = "gamemode"
    COLUMN_COUNT = "columnCount"
    NOTE_COUNT = "noteCount"
    METER = "meter"


class ComparisonOp(str, Enum):
    """Comparison operators."""

    ALLOW = "allow"
    DENY = "deny"
    LESS_THAN = "lt"
    GREATER_THAN = "gt"


PROPERTY_GETTERS: dict[ChartProperty, Callable[[Chart], Any]] = {
    ChartProperty.TITLE: lambda c: c.metadata.title,
    ChartProperty.ARTIST: lambda c: c.metadata.artist,
    ChartProperty.CREATOR: lambda c: c.metadata.creator,
    ChartProperty.VERSION: lambda c: c.metadata.version,
    ChartProperty.SOURCE: lambda c: c.metadata.source,
    ChartProperty.DIFFICULTY: lambda c: c.difficulty,
    ChartProperty.GAMEMODE: lambda c: c.effective_gamemode or "",
    ChartProperty.COLUMN_COUNT: lambda c: c.column_count,
    ChartProperty.NOTE_COUNT: lambda c: c.note_count,
    ChartProperty.METER: lambda c: c.meter,
}


def natural_key(value: Any) -> tuple:
    """Sort key comparing embedded numbers numerically and text case-insensitively."""
    if isinstance(value, bool):
        value = int(value)
    if isinstance(value, (int, float)):
        return ((0, float(value), ""),)
    parts = _NUMBER_RE.split(str(value).casefold())
    key = []
    for index, part in enumerate(parts):
        if index % 2:
            key.append((0, float(part), ""))
        elif part:
            key.append((1, 0.0, part))
    return tuple(key)


class Comparison(ConfigModel):
    """Comparison of one chart property."""

    property: ChartProperty
    op: ComparisonOp
    value: Any = None
    values: list[Any] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_operands(self) -> Comparison:
        if self.op in (ComparisonOp.ALLOW, ComparisonOp.DENY):
            if not self.values and self.value is None:
                raise ValueError(f"'{self.op.value}' needs 'values'")
        elif self.value is None:
            raise ValueError(f"'{self.op.value}' needs 'value'")
        return self

    def compile(self) -> ChartTest:
        getter = PROPERTY_GETTERS[self.property]
        if self.op in (ComparisonOp.ALLOW, ComparisonOp.DENY):
            options = self.values or [self.value]
            accepted = {natural_key(v) for v in options}
            allow = self.op == ComparisonOp.ALLOW
            return lambda chart: (natural_key(getter(chart)) in accepted) == allow
        bound = natural_key(self.value)
        if self.op == ComparisonOp.LESS_THAN:
            return lambda chart: natural_key(getter(chart)) < bound
        return lambda chart: natural_key(getter(chart)) > bound


class AllOf(ConfigModel):
    """All sub-predicates must hold."""

    all_: list[PredicateSpec] = Field(alias="all")

    def compile(self) -> ChartTest:
        tests = [p.compile() for p in self.all_]
        return lambda chart: all(test(chart) for test in tests)


class AnyOf(ConfigModel):
    """At least one sub-predicate must hold."""

    any_: list[PredicateSpec] = Field(alias="any")

    def compile(self) -> ChartTest:
        tests = [p.compile() for p in self.any_]
        return lambda chart: any(test(chart) for test in tests)


class NotOf(ConfigModel):
    """Negation of a predicate."""

    not_: PredicateSpec = Field(alias="not")

    def compile(self) -> ChartTest:
        test = self.not_.compile()
        return lambda chart: not test(chart)


PredicateSpec = Union[Comparison, AllOf, AnyOf, NotOf]

AllOf.model_rebuild()
AnyOf.model_rebuild()
NotOf.model_rebuild()


def compile_predicate(spec: PredicateSpec | None) -> ChartTest:
    """Turn a predicate specification into a chart test (None accepts all)."""
    if spec is None:
        return lambda chart: True
    return spec.compile()
