"""
Tests for the DAG runtime and Traversal.

Tests verify that the runtime correctly:
    - Finds the start node and rejects graphs without exactly one
    - Follows linear and branch pointers
    - Passes through nodes whose visibility condition is false
    - Chains through consecutive branch nodes
    - Raises MissingField / MissingCondition / CycleDetected instead of guessing
"""

import pytest

from conftest import group, rule
from surveyflow.compiler import compile_design
from surveyflow.errors import CycleDetected, MissingCondition, MissingField, StartNodeInvalid
from surveyflow.examples import build_example_screener
from surveyflow.model import Graph, Node, ResponseStatus
from surveyflow.runtime import DAGRuntime, Traversal
from surveyflow.serialization import graph_from_dict


def linear(node_id, node_type="textInput", next_id=None, **data):
    nxt = {"kind": "linear", "nextId": next_id} if next_id else None
    return node_id, {"id": node_id, "type": node_type, "data": data, "next": nxt}


def branch(node_id, true_id, false_id, condition=None):
    data = {"condition": condition} if condition is not None else {}
    return node_id, {"id": node_id, "type": "branch", "data": data,
                     "next": {"kind": "branch", "trueId": true_id, "falseId": false_id}}


def runtime_for(*entries):
    return DAGRuntime(graph_from_dict(dict(entries)))


@pytest.fixture
def screener():
    return DAGRuntime(compile_design(*build_example_screener(), survey_id="s1", version=1))


class TestStartNode:

    def test_single_start(self, screener):
        assert screener.get_start_node().id == "start"

    def test_no_start(self):
        runtime = runtime_for(linear("q1"))
        with pytest.raises(StartNodeInvalid):
            runtime.get_start_node()

    def test_two_starts(self):
        runtime = runtime_for(linear("s1", "start", "q1"), linear("s2", "start", "q1"), linear("q1"))
        with pytest.raises(StartNodeInvalid):
            runtime.get_start_node()


class TestNextNode:

    def test_linear(self, screener):
        assert screener.get_next_node("start", {}).id == "q_age"

    def test_branch_true_and_false(self, screener):
        assert screener.get_next_node("b_adult", {"q_age": "34"}).id == "q_gender"
        assert screener.get_next_node("b_adult", {"q_age": "15"}).id == "end_underage"

    def test_branch_returned_by_single_step(self, screener):
        """get_next_node stops at a branch; resolve_next chains through it."""
        assert screener.get_next_node("q_age", {"q_age": 34}).id == "b_adult"
        assert screener.resolve_next("q_age", {"q_age": 34}).id == "q_gender"

    def test_missing_field_on_branch(self, screener):
        """A branch reading an unanswered node fails loudly instead of defaulting to false."""
        with pytest.raises(MissingField):
            screener.get_next_node("b_adult", {})

    def test_missing_condition(self):
        runtime = runtime_for(branch("b1", "q1", "q2"), linear("q1"), linear("q2"))
        with pytest.raises(MissingCondition):
            runtime.get_next_node("b1", {})

    def test_empty_condition_group(self):
        runtime = runtime_for(branch("b1", "q1", "q2", group("AND")), linear("q1"), linear("q2"))
        with pytest.raises(MissingCondition):
            runtime.get_next_node("b1", {})

    def test_nested_groups_without_rules(self):
        """No rule anywhere in the tree: the branch refuses to pick a route."""
        runtime = runtime_for(linear("q", next_id="b1"),
                              branch("b1", "yes", "no", group("AND", group("OR"))),
                              linear("yes"), linear("no"))
        with pytest.raises(MissingCondition):
            runtime.resolve_next("q", {"q": "x"})

    def test_end_of_flow(self):
        runtime = runtime_for(linear("q1"))
        assert runtime.get_next_node("q1", {"q1": 1}) is None

    def test_unknown_current_node(self, screener):
        assert screener.get_next_node("nope", {}) is None


class TestSkipLogic:

    def test_invisible_node_skipped(self, screener):
        """q_pregnant is only shown to respondents who answered Female."""
        assert screener.get_next_node("q_gender", {"q_gender": "Male"}).id == "q_city"
        assert screener.get_next_node("q_gender", {"q_gender": "female"}).id == "q_pregnant"

    def test_consecutive_skips(self):
        hidden = group("AND", rule("q1", "equals", "show"))
        runtime = runtime_for(
            linear("q1", next_id="q2"),
            linear("q2", next_id="q3", condition=hidden),
            linear("q3", next_id="q4", condition=hidden),
            linear("q4"),
        )
        assert runtime.get_next_node("q1", {"q1": "hide"}).id == "q4"

    def test_skipped_node_at_end_terminates(self):
        runtime = runtime_for(linear("q1", next_id="q2"),
                              linear("q2", condition=group("AND", rule("q1", "equals", "show"))))
        assert runtime.get_next_node("q1", {"q1": "hide"}) is None

    def test_skip_loop_detected(self):
        hidden = group("AND", rule("q1", "equals", "show"))
        runtime = runtime_for(
            linear("q1", next_id="q2"),
            linear("q2", next_id="q3", condition=hidden),
            linear("q3", next_id="q2", condition=hidden),
        )
        with pytest.raises(CycleDetected):
            runtime.get_next_node("q1", {"q1": "hide"})


class TestBranchChaining:

    def test_chained_branches(self):
        runtime = runtime_for(
            linear("q1", next_id="b1"),
            branch("b1", "b2", "end_a", group("AND", rule("q1", "gt", 10))),
            branch("b2", "end_b", "end_c", group("AND", rule("q1", "gt", 100))),
            linear("end_a", "end"), linear("end_b", "end"), linear("end_c", "end"),
        )
        assert runtime.resolve_next("q1", {"q1": 5}).id == "end_a"
        assert runtime.resolve_next("q1", {"q1": 500}).id == "end_b"
        assert runtime.resolve_next("q1", {"q1": 50}).id == "end_c"

    def test_branch_cycle_detected(self):
        """Branches pointing at each other raise instead of looping forever."""
        always = group("AND", rule("x", "is_set"))
        runtime = runtime_for(
            linear("start", "start", "b1"),
            branch("b1", "b2", "b2", always),
            branch("b2", "b1", "b1", always),
        )
        with pytest.raises(CycleDetected) as excinfo:
            runtime.resolve_next("start", {"x": 1})
        assert excinfo.value.node_id == "b1"

    def test_long_acyclic_chain_not_truncated(self):
        always = group("AND", rule("x", "is_set"))
        entries = [linear("start", "start", "b0")]
        for i in range(200):
            entries.append(branch(f"b{i}", f"b{i + 1}", "dead", always))
        entries += [linear("b200", "end"), linear("dead", "end")]
        runtime = runtime_for(*entries)
        assert runtime.resolve_next("start", {"x": 1}).id == "b200"


def test_taken_path(screener):
    answers = {"q_age": 40, "q_gender": "Male", "q_city": "York"}
    path = [n.id for n in screener.get_taken_path(answers)]
    assert path == ["start", "q_age", "b_adult", "q_gender", "q_city", "end_complete"]


def test_graph_is_read_only(screener):
    with pytest.raises(TypeError):
        screener.graph["x"] = Node(id="x", type="textInput")
    with pytest.raises(TypeError):
        screener.graph["q_age"].data["label"] = "changed"


def test_node_identity_mismatch_still_loads():
    graph = Graph({"a": Node(id="b", type="start")})
    assert DAGRuntime(graph).get_start_node().id == "b"


class TestTraversal:

    def test_complete_path(self, screener):
        traversal = Traversal(screener)
        assert traversal.current.id == "q_age"
        traversal.answer(34)
        assert traversal.current.id == "q_gender"
        traversal.answer("Female")
        assert traversal.current.id == "q_pregnant"
        traversal.answer("No")
        traversal.answer("Leeds")
        assert traversal.finished
        assert traversal.final_status is ResponseStatus.COMPLETED
        assert traversal.responses["q_age"].question == "How old are you?"
        assert traversal.answers() == {"q_age": 34, "q_gender": "Female", "q_pregnant": "No", "q_city": "Leeds"}

    def test_disqualified_path(self, screener):
        traversal = Traversal(screener)
        traversal.answer(15)
        assert traversal.current.id == "end_underage"
        assert traversal.final_status is ResponseStatus.DISQUALIFIED

    def test_answer_after_finish_is_ignored(self, screener):
        traversal = Traversal(screener)
        traversal.answer(15)
        assert traversal.answer("again").id == "end_underage"
        assert "end_underage" not in traversal.responses

    def test_flow_stops_without_end_node(self):
        traversal = Traversal(runtime_for(linear("start", "start", "q1"), linear("q1")))
        assert traversal.answer("x").id == "q1"
        assert traversal.stopped
        assert not traversal.finished
        assert traversal.final_status is None

    def test_resume_from_existing_responses(self, screener):
        first = Traversal(screener)
        first.answer(34)
        resumed = Traversal(screener, first.responses)
        assert resumed.answers() == {"q_age": 34}
