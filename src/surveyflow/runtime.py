"""
DAG runtime: resolves "what comes next" over a published Graph.

One engine serves both the builder preview and the live runner, so the two
can never disagree about routing.

Pure and synchronous. A DAGRuntime holds a Graph (immutable) and nothing
else; every call takes the caller's responses and returns a value or raises
one of the runtime errors, which are fatal to that call only.

Responses map node id to the raw answer (or a ResponseEntry). The caller is
expected to include the answer to the current node before asking for the
next one.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Set

from surveyflow.conditions import ConditionGroup
from surveyflow.errors import CycleDetected, MissingCondition, StartNodeInvalid
from surveyflow.evaluator import evaluate
from surveyflow.logging import get_logger
from surveyflow.model import (
    BRANCH,
    END,
    START,
    BranchNext,
    Graph,
    Node,
    ResponseEntry,
    ResponseStatus,
    status_for_outcome,
)

logger = get_logger(__name__)

_NEVER_SKIPPED = frozenset({START, END, BRANCH})


class DAGRuntime:
    """Next-node resolution, skip logic and branch auto-chaining."""

    def __init__(self, graph: Graph):
        self.graph = graph
        for key, node in graph.items():
            if node.id != key:
                logger.warning("node_identity_mismatch", key=key, node_id=node.id)

    def get_start_node(self) -> Node:
        starts = self.graph.nodes_of_type(START)
        if not starts:
            raise StartNodeInvalid("Start node missing in workflow.")
        if len(starts) > 1:
            raise StartNodeInvalid("Multiple start nodes found. Workflow invalid.")
        return starts[0]

    def get_node(self, node_id: Optional[str]) -> Optional[Node]:
        if node_id is None:
            return None
        return self.graph.get(node_id)

    def get_next_node(self, current_id: str, responses: Mapping[str, Any]) -> Optional[Node]:
        """
        Single routing step from current_id.

        Linear pointers return their target; branch pointers evaluate the
        owning node's condition. A proposed question node whose visibility
        condition is false is passed through via its own next pointer, so
        skipped nodes are never returned. A branch node may be returned;
        use resolve_next to chain through branches.

        Returns:
            The next visible node, or None when the flow terminates here

        Raises:
            MissingCondition: A branch node has no usable condition
            MissingField: A condition references an unanswered node
            CycleDetected: Skip resolution revisited a node
        """
        return self._step(current_id, responses, {current_id})

    def resolve_next(self, current_id: str, responses: Mapping[str, Any]) -> Optional[Node]:
        """
        Next node a respondent should see, chaining through branch nodes.

        Keeps one visited set for the whole call, so a loop through branch
        or skipped nodes raises CycleDetected instead of spinning forever.
        """
        visited: Set[str] = {current_id}
        node = self._step(current_id, responses, visited)
        while node is not None and node.is_branch:
            node = self._step(node.id, responses, visited)
        return node

    def get_taken_path(self, responses: Mapping[str, Any]) -> List[Node]:
        """
        Replay the route from start for a finished set of responses.

        Branch nodes appear in the path; skipped nodes do not. Stops at the
        first end node or where the flow terminates.
        """
        path: List[Node] = []
        visited: Set[str] = set()
        current: Optional[Node] = self.get_start_node()
        while current is not None:
            if current.id in visited:
                raise CycleDetected(current.id)
            visited.add(current.id)
            path.append(current)
            if current.is_end:
                break
            current = self.get_next_node(current.id, responses)
        return path

    def _step(self, current_id: str, responses: Mapping[str, Any], visited: Set[str]) -> Optional[Node]:
        node = self.graph.get(current_id)
        while node is not None:
            proposed = self._follow(node, responses)
            if proposed is None:
                return None
            if proposed.id in visited:
                raise CycleDetected(proposed.id)
            visited.add(proposed.id)
            if self._is_visible(proposed, responses):
                return proposed
            logger.debug("node_skipped", node_id=proposed.id)
            node = proposed
        return None

    def _follow(self, node: Node, responses: Mapping[str, Any]) -> Optional[Node]:
        pointer = node.next
        if pointer is None:
            return None
        if isinstance(pointer, BranchNext):
            condition = node.condition
            if condition is None or (isinstance(condition, ConditionGroup) and not condition.has_rules()):
                raise MissingCondition(node.id)
            target = pointer.true_id if evaluate(condition, responses) else pointer.false_id
            return self.get_node(target)
        return self.get_node(pointer.next_id)

    @staticmethod
    def _is_visible(node: Node, responses: Mapping[str, Any]) -> bool:
        if node.type in _NEVER_SKIPPED or node.condition is None:
            return True
        return evaluate(node.condition, responses)


class Traversal:
    """
    A respondent's walk through one graph version.

    Holds the current node and the ResponseEntry map built so far. Used
    unchanged by the builder preview and the live runner.

    Example:
        traversal = Traversal(DAGRuntime(graph))
        traversal.answer("yes")
        traversal.answer(["Cars", "BMW"])
        if traversal.finished:
            status = traversal.final_status
    """

    def __init__(self, runtime: DAGRuntime, responses: Optional[Mapping[str, ResponseEntry]] = None):
        self.runtime = runtime
        self.responses: Dict[str, ResponseEntry] = dict(responses or {})
        start = runtime.get_start_node()
        self.current: Optional[Node] = runtime.resolve_next(start.id, self.answers())
        self.stopped = False

    def answers(self) -> Dict[str, Any]:
        return {node_id: entry.answer for node_id, entry in self.responses.items()}

    @property
    def finished(self) -> bool:
        return self.current is not None and self.current.is_end

    @property
    def final_status(self) -> Optional[ResponseStatus]:
        """Status implied by the reached end node, None while still running."""
        if not self.finished:
            return None
        return status_for_outcome(self.current.data.get("outcome"))

    def answer(self, value: Any = None) -> Optional[Node]:
        """
        Record an answer for the current node and move on.

        A value of None advances without recording (informational nodes).
        Returns the new current node. When the flow terminates before an end
        node, current stays put and `stopped` becomes True.
        """
        if self.current is None or self.finished:
            return self.current
        node = self.current
        answers = self.answers()
        if value is not None:
            answers[node.id] = value
        next_node = self.runtime.resolve_next(node.id, answers)
        if value is not None:
            self.responses[node.id] = ResponseEntry(question=node.label, answer=value, type=node.type)
        if next_node is None:
            logger.warning("flow_stopped", node_id=node.id)
            self.stopped = True
            return node
        self.current = next_node
        return next_node
