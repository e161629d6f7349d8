"""
Tests for the Graph Validator.

Tests verify that the validator correctly:
    - Requires exactly one start and at least one end node
    - Requires configured end nodes and well-formed branch conditions
    - Finds cycles (including in disconnected components)
    - Finds nodes unreachable from start and paths that dead-end
    - Checks that conditions only read answers guaranteed to exist
"""

from conftest import edge, end, group, node, rule
from surveyflow.examples import build_example_screener
from surveyflow.validator import referenced_fields, validate
from surveyflow.serialization import condition_from_dict


def linear_design():
    nodes = [node("start", "start"), node("q1"), node("q2"), end("end")]
    edges = [edge("start", "q1"), edge("q1", "q2"), edge("q2", "end")]
    return nodes, edges


def codes(result):
    return [issue.code for issue in result.errors if issue.severity == "error"]


def test_valid_linear_graph():
    """One start, one end, acyclic and fully reachable: valid."""
    result = validate(*linear_design())
    assert result.is_valid
    assert result.to_dict() == {"isValid": True, "errors": []}


def test_example_screener_is_valid():
    result = validate(*build_example_screener())
    assert result.is_valid, result.to_dict()


def test_second_start_node():
    nodes, edges = linear_design()
    nodes.append(node("start2", "start"))
    edges.append(edge("start2", "q1"))
    result = validate(nodes, edges)
    assert not result.is_valid
    assert "start_node" in codes(result)
    assert "exactly one Start node" in result.errors[0].message


def test_missing_end_node():
    nodes = [node("start", "start"), node("q1")]
    result = validate(nodes, [edge("start", "q1")])
    assert "end_node" in codes(result)


def test_unreachable_node():
    """Removing reachability flips a valid graph to invalid with the node named."""
    nodes, edges = linear_design()
    edges.remove(edge("q1", "q2"))
    edges.append(edge("q1", "end"))
    result = validate(nodes, edges)
    assert not result.is_valid
    unreachable = [i for i in result.errors if i.code == "unreachable"]
    assert [i.node_id for i in unreachable] == ["q2"]
    assert "not reachable from the Start" in unreachable[0].message


def test_end_node_needs_redirect():
    nodes, edges = linear_design()
    nodes[-1] = node("end", "end", label="End")
    result = validate(nodes, edges)
    assert codes(result) == ["end_config"]
    assert result.errors[0].node_id == "end"


def test_self_loop_is_cycle():
    nodes, edges = linear_design()
    edges.append(edge("q1", "q1"))
    result = validate(nodes, edges)
    assert not result.is_valid
    assert "cycle" in codes(result)


def test_longer_cycle_is_cycle():
    nodes, edges = linear_design()
    edges.append(edge("q2", "q1"))
    assert "cycle" in codes(validate(nodes, edges))


def test_cycle_in_disconnected_component():
    """A cycle nowhere near start is still found."""
    nodes, edges = linear_design()
    nodes += [node("a"), node("b")]
    edges += [edge("a", "b"), edge("b", "a")]
    result = validate(nodes, edges)
    assert not result.is_valid
    assert "cycle" in codes(result)
    assert {i.node_id for i in result.errors if i.code == "unreachable"} == {"a", "b"}


def test_path_ending_at_question_node():
    nodes, edges = linear_design()
    nodes.append(node("orphan_q"))
    edges.append(edge("q1", "orphan_q"))
    result = validate(nodes, edges)
    assert "sink_node" in codes(result)
    assert any(i.code == "fan_out" and i.severity == "warning" for i in result.errors)


class TestBranchConditions:

    def design(self, condition):
        nodes = [
            node("start", "start"),
            node("q_age"),
            node("b1", "branch", condition=condition),
            end("end_yes"),
            end("end_no", outcome="Disqualified"),
        ]
        edges = [
            edge("start", "q_age"),
            edge("q_age", "b1"),
            edge("b1", "end_yes", "true"),
            edge("b1", "end_no", "false"),
        ]
        return nodes, edges

    def test_valid_branch(self):
        assert validate(*self.design(group("AND", rule("q_age", "gt", 17)))).is_valid

    def test_missing_condition(self):
        result = validate(*self.design(None))
        assert codes(result) == ["branch_condition"]

    def test_empty_group(self):
        result = validate(*self.design(group("AND")))
        assert codes(result) == ["branch_condition"]

    def test_nested_groups_without_rules(self):
        """Groups inside groups with no rule anywhere still leave the branch without a condition."""
        result = validate(*self.design(group("AND", group("OR"), group("AND", group("OR")))))
        assert codes(result) == ["branch_condition"]

    def test_unknown_operator(self):
        result = validate(*self.design(group("AND", rule("q_age", "about", 17))))
        assert codes(result) == ["invalid_condition"]

    def test_extra_handle_warns(self):
        nodes, edges = self.design(group("AND", rule("q_age", "gt", 17)))
        edges.append(edge("b1", "end_no", "maybe"))
        result = validate(nodes, edges)
        assert result.is_valid
        assert [w.code for w in result.warnings] == ["branch_handle"]

    def test_missing_false_output(self):
        """With only a 'true' edge, a false condition would stop the flow at the branch."""
        nodes, edges = self.design(group("AND", rule("q_age", "gt", 17)))
        nodes.pop()
        edges.pop()
        result = validate(nodes, edges)
        assert not result.is_valid
        assert codes(result) == ["branch_handle"]
        assert "'false'" in result.errors[0].message

    def test_missing_true_output(self):
        nodes, edges = self.design(group("AND", rule("q_age", "gt", 17)))
        edges[2] = edge("b1", "end_no", "false")
        result = validate(nodes, edges)
        assert "branch_handle" in codes(result)


class TestCausalOrdering:

    def test_field_answered_later(self):
        """A branch reading a question that comes after it is rejected."""
        nodes = [
            node("start", "start"),
            node("b1", "branch", condition=group("AND", rule("q_late", "is_set"))),
            node("q_late"),
            end("end"),
        ]
        edges = [edge("start", "b1"), edge("b1", "q_late", "true"), edge("b1", "end", "false"),
                 edge("q_late", "end")]
        result = validate(nodes, edges)
        assert codes(result) == ["causal_order"]
        assert "not guaranteed to be answered before this branch" in result.errors[0].message

    def test_field_on_only_one_path(self):
        """Answered on one route into the node but not the other: rejected."""
        nodes = [
            node("start", "start"),
            node("q_age"),
            node("b1", "branch", condition=group("AND", rule("q_age", "gt", 17))),
            node("q_adult"),
            node("q_final", condition=group("AND", rule("q_adult", "equals", "yes"))),
            end("end"),
        ]
        edges = [
            edge("start", "q_age"), edge("q_age", "b1"),
            edge("b1", "q_adult", "true"), edge("b1", "q_final", "false"),
            edge("q_adult", "q_final"), edge("q_final", "end"),
        ]
        result = validate(nodes, edges)
        assert codes(result) == ["causal_order"]
        assert result.errors[0].node_id == "q_final"
        assert "before this node" in result.errors[0].message

    def test_nested_group_and_variable_value_checked(self):
        cond = group("AND", rule("q1", "is_set"), group("OR", rule("q1", "equals", "q_later", value_type="variable")))
        nodes = [node("start", "start"), node("q1"), node("b1", "branch", condition=cond),
                 node("q_later"), end("end")]
        edges = [edge("start", "q1"), edge("q1", "b1"), edge("b1", "q_later", "true"),
                 edge("b1", "end", "false"), edge("q_later", "end")]
        result = validate(nodes, edges)
        assert [(i.code, i.node_id) for i in result.errors] == [("causal_order", "b1")]
        assert "q_later" in result.errors[0].message

    def test_reference_to_node_without_answer(self):
        """Start, branch and end nodes dominate plenty of nodes but never hold an answer."""
        nodes = [
            node("start", "start"),
            node("q1"),
            node("b1", "branch", condition=group("AND", rule("q1", "is_set"))),
            node("q2", condition=group("AND", rule("b1", "is_set"))),
            end("end"),
        ]
        edges = [edge("start", "q1"), edge("q1", "b1"), edge("b1", "q2", "true"),
                 edge("b1", "end", "false"), edge("q2", "end")]
        result = validate(nodes, edges)
        assert [(i.code, i.node_id) for i in result.errors] == [("causal_order", "q2")]
        assert "records no answer" in result.errors[0].message

    def test_unknown_referenced_node(self):
        nodes, edges = linear_design()
        nodes[2] = node("q2", condition=group("AND", rule("ghost", "is_set")))
        result = validate(nodes, edges)
        assert codes(result) == ["causal_order"]
        assert "unknown node" in result.errors[0].message


def test_referenced_fields():
    cond = condition_from_dict(group("OR", rule("a", "is_set"), rule("b", "equals", "c", value_type="variable")))
    assert referenced_fields(cond) == ["a", "b", "c"]


def test_dangling_edge_is_warning():
    nodes, edges = linear_design()
    edges.append(edge("q1", "missing"))
    result = validate(nodes, edges)
    assert result.is_valid
    assert any(w.code == "dangling_edge" for w in result.warnings)
