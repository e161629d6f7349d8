"""
Example screener design used by the demo and the tests.

    start -> q_age -> b_adult --true--> q_gender -> q_pregnant* -> q_city -> end_complete
                              \\-false--> end_underage

* q_pregnant is only shown when q_gender equals "Female".
"""

from typing import Any, Dict, List, Tuple

COMPLETE_URL = "https://panel.example.com/complete?pid=[%%PID%%]"
DISQUALIFIED_URL = "https://panel.example.com/terminate?tid=[%%transactionid%%]"


def _rule(field: str, operator: str, value: Any = None) -> Dict[str, Any]:
    return {"type": "rule", "field": field, "operator": operator, "value": value, "valueType": "static"}


def build_example_screener() -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Editor-style (nodes, edges) for a short age/gender screener."""
    nodes = [
        {"id": "start", "type": "start", "data": {"label": "Start"}},
        {"id": "q_age", "type": "textInput", "data": {"label": "How old are you?", "inputType": "number"}},
        {
            "id": "b_adult",
            "type": "branch",
            "data": {
                "label": "Adult?",
                "condition": {"type": "group", "logicType": "AND", "children": [_rule("q_age", "gt", 17)]},
            },
        },
        {
            "id": "q_gender",
            "type": "singleChoice",
            "data": {"label": "What is your gender?", "options": ["Male", "Female", "Other"]},
        },
        {
            "id": "q_pregnant",
            "type": "singleChoice",
            "data": {
                "label": "Are you currently pregnant?",
                "options": ["Yes", "No"],
                "condition": {"type": "group", "logicType": "AND",
                              "children": [_rule("q_gender", "equals", "Female")]},
            },
        },
        {"id": "q_city", "type": "textInput", "data": {"label": "Which city do you live in?"}},
        {
            "id": "end_complete",
            "type": "end",
            "data": {"label": "Thank you", "outcome": "Completed", "redirectUrl": COMPLETE_URL},
        },
        {
            "id": "end_underage",
            "type": "end",
            "data": {"label": "Sorry", "outcome": "Disqualified - underage", "redirectUrl": DISQUALIFIED_URL},
        },
    ]
    edges = [
        {"source": "start", "target": "q_age"},
        {"source": "q_age", "target": "b_adult"},
        {"source": "b_adult", "target": "q_gender", "sourceHandle": "true"},
        {"source": "b_adult", "target": "end_underage", "sourceHandle": "false"},
        {"source": "q_gender", "target": "q_pregnant"},
        {"source": "q_pregnant", "target": "q_city"},
        {"source": "q_city", "target": "end_complete"},
    ]
    return nodes, edges
