"""
Serialization helpers for surveyflow objects (Graph, Node, Condition, etc.).

Provides JSON/YAML conversion via an intermediate dict representation that
matches the editor's wire format (camelCase keys, `kind`/`type` tags).
Parsing is strict: unknown condition tags raise ConditionParseError and
malformed `next` pointers raise GraphFormatError.
"""
from __future__ import annotations

import json
from types import MappingProxyType
from typing import Any, Dict, Mapping

import yaml

from surveyflow.conditions import (
    Condition,
    ConditionGroup,
    LogicType,
    Operator,
    OPERATOR_ALIASES,
    Rule,
    ValueType,
)
from surveyflow.errors import ConditionParseError, GraphFormatError
from surveyflow.model import (
    BranchNext,
    Graph,
    LinearNext,
    Next,
    Node,
    Quota,
    ResponseEntry,
)


def parse_operator(tag: Any) -> Operator:
    if tag in OPERATOR_ALIASES:
        return OPERATOR_ALIASES[tag]
    try:
        return Operator(tag)
    except ValueError:
        raise ConditionParseError(f"Unknown condition operator: {tag!r}") from None


def condition_to_dict(cond: Condition | None) -> Any:
    if cond is None:
        return None
    if isinstance(cond, ConditionGroup):
        return {
            "type": "group",
            "logicType": cond.logic_type.value,
            "children": [condition_to_dict(c) for c in cond.children],
        }
    if isinstance(cond, Rule):
        d = {
            "type": "rule",
            "field": cond.field,
            "operator": cond.operator.value,
            "value": cond.value,
            "valueType": cond.value_type.value,
        }
        if cond.sub_field is not None:
            d["subField"] = cond.sub_field
        return d
    raise TypeError(f"Unsupported Condition type: {type(cond)}")


def condition_from_dict(d: Any) -> Condition | None:
    if d is None:
        return None
    if not isinstance(d, Mapping):
        raise ConditionParseError(f"Condition must be an object, got {type(d).__name__}")
    t = d.get("type")
    if t == "group":
        try:
            logic = LogicType(d.get("logicType") or "AND")
        except ValueError:
            raise ConditionParseError(f"Unknown logic type: {d.get('logicType')!r}") from None
        children = d.get("children") or []
        if not isinstance(children, list):
            raise ConditionParseError("Group children must be a list")
        return ConditionGroup(logic_type=logic, children=tuple(condition_from_dict(c) for c in children))
    if t == "rule":
        if not d.get("field"):
            raise ConditionParseError("Rule is missing its field")
        try:
            value_type = ValueType(d.get("valueType") or "static")
        except ValueError:
            raise ConditionParseError(f"Unknown value type: {d.get('valueType')!r}") from None
        return Rule(
            field=d["field"],
            operator=parse_operator(d.get("operator")),
            value=d.get("value"),
            value_type=value_type,
            sub_field=d.get("subField") or None,
        )
    raise ConditionParseError(f"Unsupported condition dict type: {t!r}")


def next_to_dict(n: Next | None) -> Dict[str, Any] | None:
    if n is None:
        return None
    if isinstance(n, BranchNext):
        return {"kind": "branch", "trueId": n.true_id, "falseId": n.false_id}
    return {"kind": "linear", "nextId": n.next_id}


def next_from_dict(d: Mapping[str, Any] | None) -> Next | None:
    if d is None:
        return None
    kind = d.get("kind")
    if kind == "branch":
        return BranchNext(true_id=d.get("trueId"), false_id=d.get("falseId"))
    if kind == "linear":
        return LinearNext(next_id=d.get("nextId"))
    raise GraphFormatError(f"Unknown next kind: {kind!r}")


def node_to_dict(n: Node) -> Dict[str, Any]:
    return {"id": n.id, "type": n.type, "data": dict(n.data), "next": next_to_dict(n.next)}


def node_from_dict(d: Mapping[str, Any], node_id: str | None = None) -> Node:
    data = dict(d.get("data") or {})
    return Node(
        id=d.get("id") or node_id,
        type=d.get("type", ""),
        data=MappingProxyType(data),
        next=next_from_dict(d.get("next")),
        condition=condition_from_dict(data.get("condition")),
    )


def graph_to_dict(g: Graph) -> Dict[str, Any]:
    return {node_id: node_to_dict(node) for node_id, node in g.items()}


def graph_from_dict(d: Mapping[str, Any], survey_id: str | None = None, version: int | None = None) -> Graph:
    if not isinstance(d, Mapping):
        raise GraphFormatError("Runtime graph must be an object keyed by node id")
    return Graph({key: node_from_dict(value, key) for key, value in d.items()}, survey_id=survey_id, version=version)


def graph_to_json(g: Graph) -> str:
    return json.dumps(graph_to_dict(g), sort_keys=True)


def graph_from_json(s: str, survey_id: str | None = None, version: int | None = None) -> Graph:
    return graph_from_dict(json.loads(s), survey_id=survey_id, version=version)


def graph_to_yaml(g: Graph) -> str:
    return yaml.safe_dump(graph_to_dict(g))


def graph_from_yaml(s: str, survey_id: str | None = None, version: int | None = None) -> Graph:
    return graph_from_dict(yaml.safe_load(s), survey_id=survey_id, version=version)


def entries_to_dict(entries: Mapping[str, ResponseEntry]) -> Dict[str, Any]:
    return {node_id: e.to_dict() for node_id, e in entries.items()}


def entries_from_dict(d: Mapping[str, Any] | None) -> Dict[str, ResponseEntry]:
    return {node_id: ResponseEntry.from_dict(e) for node_id, e in (d or {}).items() if isinstance(e, Mapping)}


def quota_from_dict(d: Mapping[str, Any]) -> Quota:
    rule = condition_from_dict(d["rule"])
    return Quota(
        id=d["id"],
        survey_id=d["surveyId"],
        rule=rule,
        limit=int(d["limit"]),
        enabled=bool(d.get("enabled", True)),
    )
