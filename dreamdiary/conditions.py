from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Optional, Union

from .attributes import AGE_KEY, AttributeView


class Operator(str, Enum):
    GTE = "gte"
    LTE = "lte"
    EQ = "eq"


_OPERATOR_ALIASES = {
    "gte": Operator.GTE, ">=": Operator.GTE, "≥": Operator.GTE,
    "lte": Operator.LTE, "<=": Operator.LTE, "≤": Operator.LTE,
    "eq": Operator.EQ, "=": Operator.EQ, "==": Operator.EQ,
}


def parse_operator(raw) -> Optional[Operator]:
    if isinstance(raw, Operator):
        return raw
    if not isinstance(raw, str):
        return None
    return _OPERATOR_ALIASES.get(raw.strip().lower())


def evaluate_condition(value: Optional[float], operator, threshold: float) -> bool:
    """
    Compare an attribute value against a threshold.
    A missing value or an unknown operator never satisfies the condition.
    """
    if value is None:
        return False

    op = parse_operator(operator)
    if op is Operator.GTE:
        return value >= threshold
    if op is Operator.LTE:
        return value <= threshold
    if op is Operator.EQ:
        return value == threshold
    return False


def calculate_age(birth_date: date, today: Optional[date] = None) -> int:
    today = today or date.today()
    age = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        age -= 1
    return age


# --------- condition sources ---------

@dataclass(frozen=True)
class StoredAttribute:
    key: str


@dataclass(frozen=True)
class ComputedAge:
    pass


ConditionSource = Union[StoredAttribute, ComputedAge]


def source_for(attribute_key: str) -> ConditionSource:
    if attribute_key == AGE_KEY:
        return ComputedAge()
    return StoredAttribute(attribute_key)


def resolve_source(source: ConditionSource, attributes: AttributeView, age: Optional[int]) -> Optional[float]:
    if isinstance(source, ComputedAge):
        return float(age) if age is not None else None
    return attributes.number(source.key)


@dataclass(frozen=True)
class Condition:
    source: ConditionSource
    operator: str
    threshold: float

    @classmethod
    def from_slot(cls, attribute_key: Optional[str], operator: Optional[str], threshold: Optional[float]) -> Optional["Condition"]:
        # all three or nothing
        if not attribute_key or not operator or threshold is None:
            return None
        return cls(source_for(attribute_key), operator, float(threshold))

    def evaluate(self, attributes: AttributeView, age: Optional[int]) -> bool:
        return evaluate_condition(resolve_source(self.source, attributes, age), self.operator, self.threshold)
