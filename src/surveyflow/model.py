"""
Core Survey Flow Model Objects

Defines the data structures shared by the runtime, the quota engine and the
submission batcher:
    - Nodes (questions, branches, start and end markers)
    - Next pointers (linear or branch)
    - Graphs (published, versioned node maps)
    - Response entries and persisted responses
    - Quotas and survey-level configuration

ARCHITECTURAL RULE:
    These objects:
        - Know nothing about HTTP, rendering or storage engines
        - Are immutable once a graph version is published
        - Represent structure, not behavior
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

from .conditions import Condition, ConditionGroup, Rule


START = "start"
END = "end"
BRANCH = "branch"


class ResponseStatus(str, Enum):
    """Lifecycle status of a single respondent's response."""

    IN_PROGRESS = "IN_PROGRESS"
    CLICKED = "CLICKED"
    COMPLETED = "COMPLETED"
    DROPPED = "DROPPED"
    DISQUALIFIED = "DISQUALIFIED"
    OVER_QUOTA = "OVER_QUOTA"
    QUALITY_TERMINATE = "QUALITY_TERMINATE"
    SECURITY_TERMINATE = "SECURITY_TERMINATE"


TERMINAL_STATUSES = frozenset({
    ResponseStatus.COMPLETED,
    ResponseStatus.DROPPED,
    ResponseStatus.DISQUALIFIED,
    ResponseStatus.OVER_QUOTA,
    ResponseStatus.QUALITY_TERMINATE,
    ResponseStatus.SECURITY_TERMINATE,
})


class Mode(str, Enum):
    """Whether a response was collected in test or live fielding."""

    TEST = "TEST"
    LIVE = "LIVE"


class QuotaType(str, Enum):
    """Which kind of cap rejected a completion."""

    GLOBAL = "GLOBAL"
    DEMOGRAPHIC = "DEMOGRAPHIC"


@dataclass(frozen=True)
class LinearNext:
    """Unconditional successor. next_id may be None at a dead end."""

    next_id: Optional[str] = None


@dataclass(frozen=True)
class BranchNext:
    """Successor chosen by the owning node's condition."""

    true_id: Optional[str] = None
    false_id: Optional[str] = None


Next = Union[LinearNext, BranchNext]


@dataclass(frozen=True)
class Node:
    """
    A single unit of survey logic.

    Properties:
        id:
            Unique identifier inside one graph version
            Example: "node_1769542709146_vzeiekw9r"

        type:
            "start", "end", "branch" or a question-variant tag
            Examples: "textInput", "singleChoice", "matrixChoice"

        data:
            Read-only type-specific fields (label, options, redirectUrl,
            outcome, ...). Kept as the editor produced them.

        next:
            LinearNext, BranchNext, or None for terminal nodes

        condition:
            Parsed data["condition"].
            On a branch node: the predicate that picks true_id or false_id.
            On a question node: its visibility condition; when it evaluates
            false the runtime passes through the node without surfacing it.

    ARCHITECTURAL RULE:
        - A branch condition chooses the route
        - A visibility condition decides whether a node is shown at all
        - The same `condition` slot carries both; the node type says which
    """

    id: str
    type: str
    data: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    next: Optional[Next] = None
    condition: Optional[Condition] = None

    @property
    def is_branch(self) -> bool:
        return self.type == BRANCH

    @property
    def is_end(self) -> bool:
        return self.type == END

    @property
    def is_start(self) -> bool:
        return self.type == START

    @property
    def label(self) -> str:
        return self.data.get("label") or "Unknown Question"


class Graph(Mapping[str, Node]):
    """
    Immutable, versioned mapping of node id to Node.

    One Graph object is one published workflow version. Editing a survey
    produces a new Graph; an existing one is never changed in place, which is
    what makes it safe to share between concurrent traversals.
    """

    def __init__(self, nodes: Mapping[str, Node], survey_id: Optional[str] = None,
                 version: Optional[int] = None):
        self._nodes = MappingProxyType(dict(nodes))
        self.survey_id = survey_id
        self.version = version

    def __getitem__(self, node_id: str) -> Node:
        return self._nodes[node_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)

    def __repr__(self) -> str:
        return f"Graph(survey_id={self.survey_id!r}, version={self.version!r}, nodes={len(self)})"

    def nodes_of_type(self, node_type: str) -> List[Node]:
        return [node for node in self._nodes.values() if node.type == node_type]


@dataclass(frozen=True)
class ResponseEntry:
    """
    One answered node as stored on a response.

    Properties:
        question: Question label at the time of answering
        answer: Scalar, list (multi-select, cascading path) or mapping
            (matrix rows keyed by row value)
        type: Node type that produced the answer
    """

    question: str
    answer: Any
    type: str

    def to_dict(self) -> Dict[str, Any]:
        return {"question": self.question, "answer": self.answer, "type": self.type}

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "ResponseEntry":
        return cls(question=d.get("question", ""), answer=d.get("answer"), type=d.get("type", ""))


@dataclass(frozen=True)
class Quota:
    """
    A cap on completed responses matching a rule.

    Properties:
        id: Quota identifier
        survey_id: Owning survey
        rule: Rule or ConditionGroup a completed response must match to count
        limit: Maximum number of matching completions
        enabled: Disabled quotas are ignored by the engine
    """

    id: str
    survey_id: str
    rule: Union[Rule, ConditionGroup]
    limit: int
    enabled: bool = True


@dataclass(frozen=True)
class SurveyConfig:
    """Survey-level settings the engine needs (caps and redirect targets)."""

    id: str
    global_quota: Optional[int] = None
    over_quota_url: Optional[str] = None
    redirect_url: Optional[str] = None
    security_terminate_url: Optional[str] = None


@dataclass
class PersistedResponse:
    """A response row as read back from the store."""

    id: str
    survey_id: str
    mode: Mode
    status: ResponseStatus
    response: Dict[str, ResponseEntry] = field(default_factory=dict)
    outcome: Optional[str] = None
    respondent_id: Optional[str] = None
    clicked: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass
class Metrics:
    """Aggregated counters for one (survey_id, mode) pair."""

    survey_id: str
    mode: Mode
    clicked: int = 0
    completed: int = 0
    dropped: int = 0
    disqualified: int = 0
    over_quota: int = 0
    quality_terminate: int = 0
    security_terminate: int = 0


# Status -> Metrics attribute. IN_PROGRESS has no counter.
METRIC_COLUMNS = {
    ResponseStatus.CLICKED: "clicked",
    ResponseStatus.COMPLETED: "completed",
    ResponseStatus.DROPPED: "dropped",
    ResponseStatus.DISQUALIFIED: "disqualified",
    ResponseStatus.OVER_QUOTA: "over_quota",
    ResponseStatus.QUALITY_TERMINATE: "quality_terminate",
    ResponseStatus.SECURITY_TERMINATE: "security_terminate",
}


def status_for_outcome(outcome: Optional[str]) -> ResponseStatus:
    """
    Map an end node's outcome label to the status a response finishes with.

    Labels are free text chosen in the editor, so the match is by keyword:
    "Disqualified - age" -> DISQUALIFIED, "Quota full" -> OVER_QUOTA.
    Anything unrecognized (including no outcome) is a completion.
    """
    label = str(outcome or "COMPLETED").upper()
    if "DISQUALIF" in label:
        return ResponseStatus.DISQUALIFIED
    if "QUALITY" in label:
        return ResponseStatus.QUALITY_TERMINATE
    if "SECURITY" in label:
        return ResponseStatus.SECURITY_TERMINATE
    if "DROP" in label or "FAIL" in label:
        return ResponseStatus.DROPPED
    if "QUOTA" in label:
        return ResponseStatus.OVER_QUOTA
    return ResponseStatus.COMPLETED
