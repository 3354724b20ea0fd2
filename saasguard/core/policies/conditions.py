"""Declarative condition language for automation policies.

A condition object maps field names of the event payload to predicates::

    {"risk_level": ["high", "critical"],        # membership
     "risk_score": {"$gte": 70},                # comparison
     "approval_status": "pending"}              # equality

All fields and all operators must hold (logical AND). There is no OR or NOT;
tenants needing either write two policies. Operators outside the supported
set never match.
"""

import operator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import structlog

logger = structlog.get_logger(__name__)


class ConditionError(Exception):
    """Raised when a condition object is not a mapping."""

    pass


class ComparisonOperator(str, Enum):
    GT = "$gt"
    GTE = "$gte"
    LT = "$lt"
    LTE = "$lte"
    EQ = "$eq"
    NE = "$ne"


_OPERATOR_FUNCS: Dict[ComparisonOperator, Callable[[Any, Any], bool]] = {
    ComparisonOperator.GT: operator.gt,
    ComparisonOperator.GTE: operator.ge,
    ComparisonOperator.LT: operator.lt,
    ComparisonOperator.LTE: operator.le,
    ComparisonOperator.EQ: operator.eq,
    ComparisonOperator.NE: operator.ne,
}

SUPPORTED_OPERATORS = frozenset(op.value for op in ComparisonOperator)


@dataclass(frozen=True)
class Equals:
    value: Any

    def matches(self, actual: Any) -> bool:
        return actual == self.value


@dataclass(frozen=True)
class Membership:
    values: tuple

    def matches(self, actual: Any) -> bool:
        return actual in self.values


@dataclass(frozen=True)
class Comparison:
    op: ComparisonOperator
    value: Any

    def matches(self, actual: Any) -> bool:
        try:
            return bool(_OPERATOR_FUNCS[self.op](actual, self.value))
        except TypeError:
            # Missing field or mismatched types
            return False


@dataclass(frozen=True)
class UnsupportedOperator:
    name: str
    value: Any

    def matches(self, actual: Any) -> bool:
        return False


Predicate = Union[Equals, Membership, Comparison, UnsupportedOperator]


@dataclass
class FieldCondition:
    """All predicates that apply to one payload field."""

    field: str
    predicates: List[Predicate] = field(default_factory=list)

    def matches(self, data: Mapping[str, Any]) -> bool:
        actual = data.get(self.field)
        return all(p.matches(actual) for p in self.predicates)


@dataclass
class ConditionSet:
    conditions: List[FieldCondition] = field(default_factory=list)

    def matches(self, data: Mapping[str, Any]) -> bool:
        """True when every field condition holds; an empty set always matches."""
        for condition in self.conditions:
            if not condition.matches(data):
                return False
        return True

    def unsupported_operators(self) -> List[str]:
        """Operator names in this set that can never match."""
        return [
            p.name
            for c in self.conditions
            for p in c.predicates
            if isinstance(p, UnsupportedOperator)
        ]


def _parse_predicates(name: str, spec: Any) -> List[Predicate]:
    if isinstance(spec, (list, tuple)):
        return [Membership(values=tuple(spec))]

    if isinstance(spec, dict):
        predicates: List[Predicate] = []
        for op_name, value in spec.items():
            if op_name in SUPPORTED_OPERATORS:
                predicates.append(Comparison(op=ComparisonOperator(op_name), value=value))
            else:
                logger.warning("unsupported_condition_operator", field=name, operator=op_name)
                predicates.append(UnsupportedOperator(name=str(op_name), value=value))
        return predicates

    return [Equals(value=spec)]


def parse_conditions(conditions: Optional[Mapping[str, Any]]) -> ConditionSet:
    """Parse a condition object into a ConditionSet.

    Args:
        conditions: Mapping of field name to predicate spec, or None

    Returns:
        ConditionSet (empty when conditions is None or empty)

    Raises:
        ConditionError: If conditions is not a mapping
    """
    if conditions is None:
        return ConditionSet()

    if not isinstance(conditions, Mapping):
        raise ConditionError(
            f"Conditions must be a mapping of field names, got {type(conditions).__name__}"
        )

    return ConditionSet(
        conditions=[
            FieldCondition(field=str(name), predicates=_parse_predicates(str(name), spec))
            for name, spec in conditions.items()
        ]
    )


def evaluate(conditions: Optional[Mapping[str, Any]], data: Mapping[str, Any]) -> bool:
    """Parse and evaluate conditions against an event payload."""
    return parse_conditions(conditions).matches(data)
