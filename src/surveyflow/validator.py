"""
Graph Validator: pre-publish structural checks on a designer-authored graph.

Works on the editor's design JSON (node list + edge list), not on a compiled
runtime Graph, so that it can report problems a compiled graph could not even
represent.

Every problem is returned, never raised: the editor shows all of them at
once. The validator never evaluates a condition against answers.

Checks, in order:
    1. exactly one start node, at least one end node
    2. end nodes carry a redirect URL
    3. branch nodes carry a parseable condition with at least one rule,
       and a "true" and a "false" output
    4. no cycles (Kahn's algorithm)
    5. every node reachable from start
    6. every sink node is an end node
    7. conditions only reference question nodes answered on every path
       before them
"""

from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Set

from surveyflow.conditions import Condition, ConditionGroup, Rule, ValueType
from surveyflow.errors import ConditionParseError
from surveyflow.model import BRANCH, END, START
from surveyflow.serialization import condition_from_dict

ERROR = "error"
WARNING = "warning"


@dataclass
class ValidationIssue:
    """One problem found in a design graph."""

    code: str
    message: str
    node_id: Optional[str] = None
    severity: str = ERROR

    def to_dict(self) -> Dict[str, Any]:
        d = {"type": self.severity, "code": self.code, "message": self.message}
        if self.node_id is not None:
            d["nodeId"] = self.node_id
        return d


@dataclass
class ValidationResult:
    """Outcome of validate(): valid when no issue has error severity."""

    errors: List[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not any(issue.severity == ERROR for issue in self.errors)

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [issue for issue in self.errors if issue.severity == WARNING]

    def add(self, code: str, message: str, node_id: Optional[str] = None, severity: str = ERROR) -> None:
        self.errors.append(ValidationIssue(code=code, message=message, node_id=node_id, severity=severity))

    def has(self, code: str) -> bool:
        return any(issue.code == code for issue in self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {"isValid": self.is_valid, "errors": [issue.to_dict() for issue in self.errors]}


def iter_rules(cond: Optional[Condition]) -> Iterator[Rule]:
    """Yield every Rule in a condition tree, depth first."""
    if cond is None:
        return
    stack = [cond]
    while stack:
        item = stack.pop()
        if isinstance(item, ConditionGroup):
            stack.extend(reversed(item.children))
        elif isinstance(item, Rule):
            yield item


def referenced_fields(cond: Optional[Condition]) -> List[str]:
    """Node ids a condition reads: rule fields plus variable-typed values."""
    fields: List[str] = []
    for rule in iter_rules(cond):
        fields.append(rule.field)
        if rule.value_type is ValueType.VARIABLE and isinstance(rule.value, str):
            fields.append(rule.value)
    return list(dict.fromkeys(fields))


def _has_rules(raw: Any) -> bool:
    if not isinstance(raw, Mapping):
        return False
    if raw.get("type") == "rule":
        return True
    children = raw.get("children")
    if children is None:
        # Older editor builds stored a flat "rules" list.
        children = raw.get("rules")
    return bool(children)


def _topological_order(node_ids: Sequence[str], adjacency: Mapping[str, List[str]]) -> List[str]:
    """Kahn's algorithm. Returns fewer ids than given when a cycle exists."""
    in_degree = {node_id: 0 for node_id in node_ids}
    for source in node_ids:
        for target in adjacency[source]:
            in_degree[target] += 1

    queue = deque(node_id for node_id in node_ids if in_degree[node_id] == 0)
    order: List[str] = []
    while queue:
        node_id = queue.popleft()
        order.append(node_id)
        for target in adjacency[node_id]:
            in_degree[target] -= 1
            if in_degree[target] == 0:
                queue.append(target)
    return order


def _reachable_from(start_id: str, adjacency: Mapping[str, List[str]]) -> Set[str]:
    reachable: Set[str] = set()
    stack = [start_id]
    while stack:
        node_id = stack.pop()
        if node_id in reachable:
            continue
        reachable.add(node_id)
        for neighbor in adjacency.get(node_id, []):
            if neighbor not in reachable:
                stack.append(neighbor)
    return reachable


def _dominators(start_id: str, order: Sequence[str], predecessors: Mapping[str, List[str]],
                reachable: Set[str]) -> Dict[str, Set[str]]:
    """
    dom[n] = {n} ∪ ⋂ dom[p] over reachable predecessors p.

    One pass in topological order is enough because the graph is acyclic.
    """
    dom: Dict[str, Set[str]] = {start_id: {start_id}}
    for node_id in order:
        if node_id == start_id or node_id not in reachable:
            continue
        preds = [p for p in predecessors[node_id] if p in dom]
        if not preds:
            continue
        common = set(dom[preds[0]])
        for p in preds[1:]:
            common &= dom[p]
        common.add(node_id)
        dom[node_id] = common
    return dom


def validate(nodes: Sequence[Mapping[str, Any]], edges: Sequence[Mapping[str, Any]]) -> ValidationResult:
    """
    Validate a design graph.

    Args:
        nodes: [{"id", "type", "data"}, ...]
        edges: [{"source", "target", "sourceHandle"?}, ...]

    Returns:
        ValidationResult listing every problem found
    """
    result = ValidationResult()

    node_by_id: Dict[str, Mapping[str, Any]] = {}
    for node in nodes:
        node_id = node.get("id")
        if node_id in node_by_id:
            result.add("duplicate_node", f"Node id '{node_id}' is used more than once.", node_id)
            continue
        node_by_id[node_id] = node
    node_ids = list(node_by_id)

    def node_type(node_id: str) -> str:
        return node_by_id[node_id].get("type") or ""

    def node_data(node_id: str) -> Mapping[str, Any]:
        return node_by_id[node_id].get("data") or {}

    # =========================================================================
    # 1. START / END PRESENCE
    # =========================================================================

    start_ids = [n for n in node_ids if node_type(n) == START]
    end_ids = [n for n in node_ids if node_type(n) == END]

    if len(start_ids) != 1:
        result.add("start_node", f"The flow must have exactly one Start node (found {len(start_ids)}).")
    if not end_ids:
        result.add("end_node", "The flow must have at least one End node.")

    # =========================================================================
    # 2. END NODE CONFIGURATION
    # =========================================================================

    for node_id in end_ids:
        if not node_data(node_id).get("redirectUrl"):
            result.add("end_config", "End node must have a Redirect URL.", node_id)

    # =========================================================================
    # 3. CONDITIONS AND BRANCH WELL-FORMEDNESS
    # =========================================================================

    conditions: Dict[str, Condition] = {}
    for node_id in node_ids:
        raw = node_data(node_id).get("condition")
        is_branch = node_type(node_id) == BRANCH
        if is_branch and not _has_rules(raw):
            result.add("branch_condition", "Branch node must have at least one condition rule.", node_id)
            continue
        if raw is None:
            continue
        try:
            parsed = condition_from_dict(raw)
        except ConditionParseError as e:
            result.add("invalid_condition", f"Condition cannot be used: {e}", node_id)
            continue
        if is_branch and not any(iter_rules(parsed)):
            result.add("branch_condition", "Branch node must have at least one condition rule.", node_id)
            continue
        if parsed is not None:
            conditions[node_id] = parsed

    adjacency: Dict[str, List[str]] = {node_id: [] for node_id in node_ids}
    predecessors: Dict[str, List[str]] = defaultdict(list)
    handles: Dict[str, List[Any]] = defaultdict(list)

    for edge in edges:
        source, target = edge.get("source"), edge.get("target")
        if source not in node_by_id or target not in node_by_id:
            result.add("dangling_edge", f"Edge {source} -> {target} references a missing node.",
                       source if source in node_by_id else None, WARNING)
            continue
        adjacency[source].append(target)
        predecessors[target].append(source)
        handles[source].append(edge.get("sourceHandle"))

    for node_id in node_ids:
        out = handles.get(node_id, [])
        if node_type(node_id) == BRANCH:
            missing = [h for h in ("true", "false") if h not in out]
            if out and missing:
                result.add("branch_handle", f"Branch node has no '{missing[0]}' output.", node_id)
            if any(h not in ("true", "false") for h in out) or len(set(out)) != len(out):
                result.add("branch_handle", "Branch outputs must be one 'true' and one 'false' edge.",
                           node_id, WARNING)
        elif len(out) > 1:
            result.add("fan_out", f"'{node_type(node_id)}' node has {len(out)} outgoing edges; only the first is used.",
                       node_id, WARNING)

    # =========================================================================
    # 4. CYCLES
    # =========================================================================

    order = _topological_order(node_ids, adjacency)
    has_cycle = len(order) < len(node_ids)
    if has_cycle:
        result.add("cycle", "The flow contains a cycle (loop). Remove loops to publish.")

    # =========================================================================
    # 5. REACHABILITY
    # =========================================================================

    reachable: Set[str] = set()
    if len(start_ids) == 1:
        reachable = _reachable_from(start_ids[0], adjacency)
        for node_id in node_ids:
            if node_id not in reachable:
                result.add("unreachable", f"Node '{node_id}' is not reachable from the Start node.", node_id)

    # =========================================================================
    # 6. SINK NODES
    # =========================================================================

    for node_id in node_ids:
        if not adjacency[node_id] and node_type(node_id) != END:
            result.add("sink_node",
                       f"One path ends at a '{node_type(node_id)}' node instead of an End node.", node_id)

    # =========================================================================
    # 7. CAUSAL ORDERING
    # =========================================================================

    if has_cycle or len(start_ids) != 1:
        return result

    dom = _dominators(start_ids[0], order, predecessors, reachable)
    for owner, cond in conditions.items():
        if owner not in dom:
            continue
        place = "branch" if node_type(owner) == BRANCH else "node"
        answered_before = dom[owner] - {owner}
        for field_id in referenced_fields(cond):
            if field_id not in node_by_id:
                result.add("causal_order", f"Condition references unknown node '{field_id}'.", owner)
            elif node_type(field_id) in (START, END, BRANCH):
                result.add("causal_order",
                           f"Condition references '{field_id}', a '{node_type(field_id)}' node that records no answer.",
                           owner)
            elif field_id not in answered_before:
                result.add("causal_order",
                           f"Field '{field_id}' is not guaranteed to be answered before this {place}.", owner)

    return result
