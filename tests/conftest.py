"""Shared fixtures: in-memory store, fake clock, cache, and small design builders."""

from datetime import datetime, timedelta, timezone

import pytest

from surveyflow.cache import InMemoryCache
from surveyflow.store import ResponseStore


class FakeClock:
    """Manually advanced clock. Usable as a batcher Clock and as a cache clock callable."""

    def __init__(self, start: float = 1000.0):
        self.t = start

    def now(self) -> float:
        return self.t

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    s = ResponseStore.in_memory()
    yield s
    s.close()


@pytest.fixture
def cache(clock):
    return InMemoryCache(clock=clock)


@pytest.fixture
def t0():
    return datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def at(base: datetime, seconds: float) -> str:
    """ISO timestamp `seconds` after base, in the wire format events use."""
    return (base + timedelta(seconds=seconds)).isoformat().replace("+00:00", "Z")


def rule(field, operator, value=None, value_type="static", sub_field=None):
    d = {"type": "rule", "field": field, "operator": operator, "value": value, "valueType": value_type}
    if sub_field is not None:
        d["subField"] = sub_field
    return d


def group(logic, *children):
    return {"type": "group", "logicType": logic, "children": list(children)}


def node(node_id, node_type="textInput", **data):
    return {"id": node_id, "type": node_type, "data": data}


def end(node_id, outcome="Completed", url="https://panel.example.com/done?pid=[%%PID%%]"):
    return node(node_id, "end", label="End", outcome=outcome, redirectUrl=url)


def edge(source, target, handle=None):
    e = {"source": source, "target": target}
    if handle is not None:
        e["sourceHandle"] = handle
    return e
