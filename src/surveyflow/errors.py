"""
Exception hierarchy for surveyflow.

Validation problems are never raised; they are returned as data by
`surveyflow.validator`. Everything here is fatal only to the single call that
raised it.
"""


class SurveyFlowError(Exception):
    """Base class for all surveyflow errors."""
    pass


class ConditionParseError(SurveyFlowError):
    """Raised when condition JSON carries an unknown or malformed tag."""
    pass


class GraphFormatError(SurveyFlowError):
    """Raised when runtime graph JSON cannot be turned into nodes."""
    pass


class RuntimeEvaluationError(SurveyFlowError):
    """Base class for failures during a single traversal or evaluation call."""
    pass


class MissingField(RuntimeEvaluationError):
    """A rule references a node id that is absent from the responses."""

    def __init__(self, field: str, role: str = "field"):
        self.field = field
        super().__init__(f"Referenced {role} '{field}' is missing from responses.")


class MissingCondition(RuntimeEvaluationError):
    """A branch node has no usable condition."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Branch node {node_id} has no condition defined.")


class StartNodeInvalid(RuntimeEvaluationError):
    """The graph does not have exactly one start node."""
    pass


class CycleDetected(RuntimeEvaluationError):
    """A node was revisited during a single resolution call."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Cycle detected at node {node_id} during runtime traversal.")


class SurveyNotFound(SurveyFlowError):
    """The survey referenced by a quota check does not exist."""
    pass


class EventParseError(SurveyFlowError):
    """A submission event payload could not be understood."""
    pass


class ResponseAlreadyFinal(SurveyFlowError):
    """A response that already ended some other way cannot be finalized."""

    def __init__(self, response_id: str, status: str):
        self.response_id = response_id
        self.status = status
        super().__init__(f"Response {response_id} already ended as {status}.")
