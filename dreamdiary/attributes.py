"""
User attributes: the definition catalog, typed values, and the lookup view the
condition evaluator reads from.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Union

from sqlmodel import Session, select

from .model import UserAttribute, utcnow

logger = logging.getLogger(__name__)

AGE_KEY = "age"


class ValueType(str, Enum):
    NUMBER = "number"
    TEXT = "text"
    BOOLEAN = "boolean"


class AttributeCategory(str, Enum):
    FINANCIAL = "financial"
    LIFE_STAGE = "life_stage"
    HEALTH = "health"
    RELATIONSHIP = "relationship"


@dataclass(frozen=True)
class AttributeDefinition:
    key: str
    label: str
    category: AttributeCategory
    value_type: ValueType
    unit: Optional[str] = None
    is_calculated: bool = False


ATTRIBUTE_DEFINITIONS: List[AttributeDefinition] = [
    AttributeDefinition("annual_income", "Annual income", AttributeCategory.FINANCIAL, ValueType.NUMBER, "10k JPY"),
    AttributeDefinition("savings", "Savings", AttributeCategory.FINANCIAL, ValueType.NUMBER, "10k JPY"),
    AttributeDefinition("investment_assets", "Investment assets", AttributeCategory.FINANCIAL, ValueType.NUMBER, "10k JPY"),
    AttributeDefinition("monthly_disposable", "Monthly disposable income", AttributeCategory.FINANCIAL, ValueType.NUMBER, "10k JPY"),
    AttributeDefinition("debt_balance", "Debt / loan balance", AttributeCategory.FINANCIAL, ValueType.NUMBER, "10k JPY"),
    AttributeDefinition(AGE_KEY, "Age", AttributeCategory.LIFE_STAGE, ValueType.NUMBER, "years", is_calculated=True),
    AttributeDefinition("child_age", "Child's age", AttributeCategory.LIFE_STAGE, ValueType.NUMBER, "years"),
    AttributeDefinition("years_employed", "Years employed", AttributeCategory.LIFE_STAGE, ValueType.NUMBER, "years"),
    AttributeDefinition("paid_leave_remaining", "Paid leave remaining", AttributeCategory.LIFE_STAGE, ValueType.NUMBER, "days"),
    AttributeDefinition("retired", "Retired", AttributeCategory.LIFE_STAGE, ValueType.BOOLEAN),
    AttributeDefinition("weight", "Weight", AttributeCategory.HEALTH, ValueType.NUMBER, "kg"),
    AttributeDefinition("certification", "Certifications", AttributeCategory.HEALTH, ValueType.TEXT),
    AttributeDefinition("has_partner", "Has partner", AttributeCategory.RELATIONSHIP, ValueType.BOOLEAN),
    AttributeDefinition("residence", "Residence", AttributeCategory.RELATIONSHIP, ValueType.TEXT),
    AttributeDefinition("job_title", "Job title", AttributeCategory.RELATIONSHIP, ValueType.TEXT),
]

_DEFINITIONS_BY_KEY: Dict[str, AttributeDefinition] = {d.key: d for d in ATTRIBUTE_DEFINITIONS}


def get_definition(key: str) -> Optional[AttributeDefinition]:
    return _DEFINITIONS_BY_KEY.get(key)


def conditionable_definitions() -> List[AttributeDefinition]:
    """Attributes a wishlist condition may compare against (numbers only)."""
    return [d for d in ATTRIBUTE_DEFINITIONS if d.value_type == ValueType.NUMBER]


def definitions_by_category(category: AttributeCategory) -> List[AttributeDefinition]:
    return [d for d in ATTRIBUTE_DEFINITIONS if d.category == category]


# --------- typed values ---------

@dataclass(frozen=True)
class NumberValue:
    value: float


@dataclass(frozen=True)
class TextValue:
    value: str


@dataclass(frozen=True)
class BooleanValue:
    value: bool


AttributeValue = Union[NumberValue, TextValue, BooleanValue]


class InvalidAttribute(ValueError):
    pass


def value_from_row(row: UserAttribute) -> Optional[AttributeValue]:
    """
    Turn the three nullable store columns into one typed value.
    The declared type wins for catalog keys; freeform keys use whichever
    column is populated (number, then text, then boolean).
    """
    definition = get_definition(row.attribute_key)
    value_type = definition.value_type if definition else None

    if value_type in (None, ValueType.NUMBER) and row.attribute_value is not None:
        return NumberValue(float(row.attribute_value))
    if value_type in (None, ValueType.TEXT) and row.text_value is not None:
        return TextValue(row.text_value)
    if value_type in (None, ValueType.BOOLEAN) and row.boolean_value is not None:
        return BooleanValue(bool(row.boolean_value))
    return None


def value_to_columns(value: AttributeValue) -> dict:
    if isinstance(value, NumberValue):
        return {"attribute_value": value.value, "text_value": None, "boolean_value": None}
    if isinstance(value, TextValue):
        return {"attribute_value": None, "text_value": value.value, "boolean_value": None}
    return {"attribute_value": None, "text_value": None, "boolean_value": value.value}


def coerce_value(
    key: str,
    number: Optional[float] = None,
    text: Optional[str] = None,
    boolean: Optional[bool] = None,
) -> AttributeValue:
    """
    Build the typed value for an upsert. Exactly one field must be given, and
    for catalog keys it must match the declared type.
    """
    given = [v for v in (number, text, boolean) if v is not None]
    if len(given) != 1:
        raise InvalidAttribute(f"attribute '{key}' needs exactly one value, got {len(given)}")

    if number is not None:
        value: AttributeValue = NumberValue(float(number))
    elif text is not None:
        value = TextValue(text)
    else:
        value = BooleanValue(bool(boolean))

    definition = get_definition(key)
    if definition is None:
        return value
    if definition.is_calculated:
        raise InvalidAttribute(f"attribute '{key}' is calculated and cannot be stored")
    expected = {
        ValueType.NUMBER: NumberValue,
        ValueType.TEXT: TextValue,
        ValueType.BOOLEAN: BooleanValue,
    }[definition.value_type]
    if not isinstance(value, expected):
        raise InvalidAttribute(f"attribute '{key}' expects a {definition.value_type.value} value")
    return value


class AttributeView:
    """Read-only lookup table over one user's attributes."""

    def __init__(self, values: Optional[Dict[str, AttributeValue]] = None):
        self._values: Dict[str, AttributeValue] = dict(values or {})

    @classmethod
    def from_rows(cls, rows: Iterable[UserAttribute]) -> "AttributeView":
        values: Dict[str, AttributeValue] = {}
        for row in rows:
            value = value_from_row(row)
            if value is not None:
                values[row.attribute_key] = value
        return cls(values)

    def get(self, key: str) -> Optional[AttributeValue]:
        return self._values.get(key)

    def number(self, key: str) -> Optional[float]:
        """Numeric value for key, or None when missing or not a number."""
        value = self._values.get(key)
        if isinstance(value, NumberValue):
            return value.value
        return None

    def keys(self) -> List[str]:
        return sorted(self._values)

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)


# --------- store access ---------

def get_user_attributes(session: Session, user_id: int) -> List[UserAttribute]:
    return list(session.exec(
        select(UserAttribute)
        .where(UserAttribute.user_id == user_id)
        .order_by(UserAttribute.attribute_key)
    ).all())


def get_attribute_view(session: Session, user_id: int) -> AttributeView:
    return AttributeView.from_rows(get_user_attributes(session, user_id))


def upsert_user_attribute(session: Session, user_id: int, key: str, value: AttributeValue) -> UserAttribute:
    row = session.exec(
        select(UserAttribute).where(
            UserAttribute.user_id == user_id,
            UserAttribute.attribute_key == key,
        )
    ).first()

    columns = value_to_columns(value)
    if not row:
        row = UserAttribute(user_id=user_id, attribute_key=key, **columns)
        session.add(row)
    else:
        for name, v in columns.items():
            setattr(row, name, v)
        row.updated_at = utcnow()
        session.add(row)

    session.commit()
    session.refresh(row)
    logger.info("attribute upserted user=%s key=%s", user_id, key)
    return row


def delete_user_attribute(session: Session, user_id: int, key: str) -> bool:
    row = session.exec(
        select(UserAttribute).where(
            UserAttribute.user_id == user_id,
            UserAttribute.attribute_key == key,
        )
    ).first()
    if not row:
        return False
    session.delete(row)
    session.commit()
    return True
