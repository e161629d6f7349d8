"""
Condition evaluator.

Evaluates Rule / ConditionGroup trees against a map of node id to answer.
Pure and synchronous: no I/O, no mutation of its inputs.

Two strictness modes share one set of operator semantics:
    strict=True   (runtime)  a referenced node id absent from the responses
                             raises MissingField
    strict=False  (quotas)   an absent answer simply fails the rule
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping as MappingABC
from typing import Any, Dict, Mapping

from surveyflow.conditions import Condition, ConditionGroup, LogicType, Operator, Rule, ValueType
from surveyflow.errors import MissingField
from surveyflow.model import ResponseEntry

_MISSING = object()

_SPAN = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*-\s*(-?\d+(?:\.\d+)?)\s*$")


def answers_from_entries(entries: Mapping[str, Any] | None) -> Dict[str, Any]:
    """
    Flatten stored response entries to plain answers.

    Accepts ResponseEntry objects or their dict form
    ({"question", "answer", "type"}). Entries without an answer are dropped,
    so they count as absent.
    """
    answers: Dict[str, Any] = {}
    for node_id, entry in (entries or {}).items():
        if isinstance(entry, ResponseEntry):
            answers[node_id] = entry.answer
        elif isinstance(entry, MappingABC) and "answer" in entry:
            answers[node_id] = entry["answer"]
    return answers


def evaluate(condition: Condition, responses: Mapping[str, Any], *, strict: bool = True) -> bool:
    """
    Evaluate a rule or group. AND needs every child true, OR needs any.

    Every child is evaluated, even after the outcome is known, so a missing
    field anywhere in the tree is reported in strict mode.
    """
    if isinstance(condition, ConditionGroup):
        results = [evaluate(child, responses, strict=strict) for child in condition.children]
        if condition.logic_type is LogicType.OR:
            return any(results)
        return all(results)
    if isinstance(condition, Rule):
        return evaluate_rule(condition, responses, strict=strict)
    raise TypeError(f"Unsupported Condition type: {type(condition)}")


def evaluate_rule(rule: Rule, responses: Mapping[str, Any], *, strict: bool = True) -> bool:
    value = _lookup(responses, rule.field, strict, "field")
    if value is _MISSING:
        return False

    if rule.sub_field and isinstance(value, MappingABC):
        value = value.get(rule.sub_field)

    target = rule.value
    if rule.value_type is ValueType.VARIABLE:
        target = _lookup(responses, rule.value, strict, "variable")
        if target is _MISSING:
            return False

    return _compare(rule.operator, value, target)


def _lookup(responses: Mapping[str, Any], key: Any, strict: bool, role: str) -> Any:
    if key in responses:
        value = responses[key]
        if isinstance(value, ResponseEntry):
            return value.answer
        return value
    if strict:
        raise MissingField(str(key), role)
    return _MISSING


def _norm(v: Any) -> str:
    if v is None:
        return ""
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v).lower()


def _number(v: Any) -> float:
    """Coerce to float; anything non-numeric becomes NaN so comparisons fail."""
    if isinstance(v, bool):
        return float(v)
    if isinstance(v, (int, float)):
        return float(v)
    if isinstance(v, str) and v.strip():
        try:
            return float(v.strip())
        except ValueError:
            return math.nan
    return math.nan


def _equals(value: Any, target: Any) -> bool:
    if isinstance(value, (list, tuple)):
        return any(_norm(v) == _norm(target) for v in value)
    return _norm(value) == _norm(target)


def _contains(value: Any, target: Any) -> bool:
    if isinstance(value, (list, tuple)):
        return any(_norm(v) == _norm(target) for v in value)
    return _norm(target) in _norm(value)


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def _between(value: Any, target: Any) -> bool:
    if not isinstance(target, MappingABC):
        return False
    num, low, high = _number(value), _number(target.get("min")), _number(target.get("max"))
    return low <= num <= high


def _in_range(value: Any, target: Any) -> bool:
    if isinstance(target, (list, tuple)):
        parts = [str(t).strip() for t in target]
    elif isinstance(target, str):
        parts = [p.strip() for p in target.split(",")]
    else:
        return False
    num = _number(value)
    for part in parts:
        span = _SPAN.match(part)
        if span:
            if float(span.group(1)) <= num <= float(span.group(2)):
                return True
        elif part and _norm(value) == _norm(part):
            return True
    return False


def _compare(operator: Operator, value: Any, target: Any) -> bool:
    if operator is Operator.EQUALS:
        return _equals(value, target)
    if operator is Operator.NOT_EQUALS:
        return not _equals(value, target)
    if operator is Operator.CONTAINS:
        return _contains(value, target)
    if operator is Operator.NOT_CONTAINS:
        return not _contains(value, target)
    if operator is Operator.GREATER_THAN:
        return _number(value) > _number(target)
    if operator is Operator.LESS_THAN:
        return _number(value) < _number(target)
    if operator is Operator.IS_SET:
        return not _is_empty(value)
    if operator is Operator.IS_EMPTY:
        return _is_empty(value)
    if operator is Operator.IS_BETWEEN:
        return _between(value, target)
    if operator is Operator.IN_RANGE:
        return _in_range(value, target)
    raise ValueError(f"Unhandled operator: {operator}")
