"""
Condition System for surveyflow

Every branch predicate, visibility (skip) condition and quota rule is
represented as a tree of Rule and ConditionGroup objects, never as a loose
dict or a code string.

This ensures:
    - Unknown operators are rejected when the tree is built
    - The same tree drives the runtime, the validator and the quota engine
    - Trees are immutable and safe to share across request handlers

ARCHITECTURAL RULE:
    These objects are structure only.
    Evaluation lives in `surveyflow.evaluator`.
    JSON conversion lives in `surveyflow.serialization`.
"""

from abc import ABC
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple


class Condition(ABC):
    """
    Base class for the two condition node kinds (Rule and ConditionGroup).

    It exists so that signatures can say "a rule or a group" in one word.
    """
    pass


class LogicType(Enum):
    """How a ConditionGroup combines its children."""

    AND = "AND"
    OR = "OR"


class Operator(Enum):
    """
    Comparison operators a Rule may use.

    Keep this list closed. Parsing rejects anything not listed here, so an
    evaluator never has to guess what an unfamiliar tag meant.
    """

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "gt"
    LESS_THAN = "lt"
    IS_SET = "is_set"
    IS_EMPTY = "is_empty"
    IS_BETWEEN = "is_between"
    IN_RANGE = "in_range"


# Older quota records were saved with spelled-out operator names.
OPERATOR_ALIASES = {
    "greater_than": Operator.GREATER_THAN,
    "less_than": Operator.LESS_THAN,
}


class ValueType(Enum):
    """Whether Rule.value is a literal or the id of another answered node."""

    STATIC = "static"
    VARIABLE = "variable"


@dataclass(frozen=True)
class Rule(Condition):
    """
    A single comparison between one answer and a target value.

    Example:
        "age bracket equals 18-24"

    Becomes:
        Rule(field="age_node", operator=Operator.EQUALS, value="18-24")

    Properties:
        field: Node id whose answer is tested
        operator: Operator enum
        value: Literal target, {"min", "max"} for is_between, a range string
            for in_range, or another node id when value_type is VARIABLE
        value_type: ValueType enum (defaults to STATIC)
        sub_field: Key projected out of a composite answer
            (a matrix row, a cascading level)
    """

    field: str
    operator: Operator
    value: Any = None
    value_type: ValueType = ValueType.STATIC
    sub_field: Optional[str] = None


@dataclass(frozen=True)
class ConditionGroup(Condition):
    """
    Boolean combination of rules and nested groups.

    Example:
        (age equals 18-24 OR age equals 25-34) AND gender equals female

    Becomes:
        ConditionGroup(LogicType.AND, (
            ConditionGroup(LogicType.OR, (Rule(...), Rule(...))),
            Rule(...),
        ))

    IMPORTANT:
        children is a tuple so the whole tree stays immutable.
    """

    logic_type: LogicType
    children: Tuple[Condition, ...] = ()

    def is_empty(self) -> bool:
        """True when the group holds no children at all."""
        return len(self.children) == 0

    def has_rules(self) -> bool:
        """True when at least one Rule sits somewhere in the tree."""
        return any(
            child.has_rules() if isinstance(child, ConditionGroup) else isinstance(child, Rule)
            for child in self.children
        )
