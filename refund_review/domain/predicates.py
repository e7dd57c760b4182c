"""Store-agnostic read predicates.

A ``Predicate`` is a conjunction of field conditions. It can be evaluated
in memory against a record mapping, and the persistence layer translates
the same object into a SQL ``WHERE`` clause, so the filter that decides
what a reviewer sees is the one enforced at the store boundary.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any


class Op(str, Enum):
    EQ = "=="
    GTE = ">="
    LTE = "<="
    IN = "in"


@dataclass(frozen=True)
class Condition:
    field: str
    op: Op
    value: Any

    def matches(self, record: Mapping[str, Any]) -> bool:
        actual = record.get(self.field)
        if actual is None:
            return False
        actual = _plain(actual)
        if self.op is Op.EQ:
            return actual == _plain(self.value)
        if self.op is Op.IN:
            return actual in {_plain(v) for v in self.value}
        if self.op is Op.GTE:
            return actual >= self.value
        if self.op is Op.LTE:
            return actual <= self.value
        raise ValueError(f"Unsupported operator: {self.op}")


def _plain(value: Any) -> Any:
    # str enums compare by value
    if isinstance(value, Enum):
        return value.value
    return value


@dataclass(frozen=True)
class Predicate:
    conditions: tuple[Condition, ...] = ()
    match_nothing: bool = False

    @classmethod
    def everything(cls) -> Predicate:
        return cls()

    @classmethod
    def nothing(cls) -> Predicate:
        return cls(match_nothing=True)

    @classmethod
    def where(cls, field: str, op: Op | str, value: Any) -> Predicate:
        return cls(conditions=(Condition(field, Op(op), value),))

    @property
    def is_unrestricted(self) -> bool:
        return not self.match_nothing and not self.conditions

    def __and__(self, other: Predicate) -> Predicate:
        if self.match_nothing or other.match_nothing:
            return Predicate.nothing()
        return Predicate(conditions=self.conditions + other.conditions)

    def matches(self, record: Mapping[str, Any]) -> bool:
        if self.match_nothing:
            return False
        return all(condition.matches(record) for condition in self.conditions)
