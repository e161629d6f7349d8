"""
Demo: publish the example screener, run a few respondents through it, batch
their events into the store and print the resulting metrics.
"""

import sys

from surveyflow.batcher import SubmissionBatcher
from surveyflow.cache import InMemoryCache
from surveyflow.config import load_settings
from surveyflow.events import EventQueue
from surveyflow.examples import build_example_screener
from surveyflow.logging import configure_logging
from surveyflow.model import Mode, ResponseStatus, SurveyConfig
from surveyflow.quota import QuotaEngine
from surveyflow.runtime import DAGRuntime, Traversal
from surveyflow.serialization import graph_to_yaml
from surveyflow.sessions import ResponseSessions
from surveyflow.store import ResponseStore
from surveyflow.workflows import load_published_graph, publish_workflow

SURVEY_ID = "demo-screener"

RESPONDENTS = [
    ("p-001", [34, "Female", "No", "Leeds"]),
    ("p-002", [15]),
    ("p-003", [52, "Male", "York"]),
    ("p-004", [29, "Other", "Bath"]),
]


def print_validation(result):
    print()
    print("=" * 70)
    print("VALIDATION")
    print("=" * 70)
    print(f"  Valid:     {'YES' if result.is_valid else 'NO'}")
    for issue in result.errors:
        print(f"  [{issue.severity}] {issue.code}: {issue.message}")
    print()


def print_metrics(metrics):
    print("=" * 70)
    print(f"METRICS: {metrics.survey_id} ({metrics.mode.value})")
    print("=" * 70)
    for name in ("clicked", "completed", "disqualified", "over_quota", "dropped"):
        print(f"  {name:<14} {getattr(metrics, name)}")
    print()


if __name__ == "__main__":
    settings = load_settings(sys.argv[1] if len(sys.argv) > 1 else None)
    configure_logging(json_output=settings.logging.json_output, level=settings.logging.level)

    # With a settings file, use its database; otherwise keep everything in memory.
    store = ResponseStore.from_url(settings.database.url) if len(sys.argv) > 1 else ResponseStore.in_memory()
    cache = InMemoryCache()
    queue = EventQueue()

    with store.transaction() as conn:
        store.save_survey(conn, SurveyConfig(id=SURVEY_ID, global_quota=2,
                                             over_quota_url="https://panel.example.com/full?pid=[%%PID%%]"))

    nodes, edges = build_example_screener()
    published = publish_workflow(store, SURVEY_ID, nodes, edges)
    print_validation(published.validation)
    if not published.published:
        sys.exit(1)

    graph = load_published_graph(store, SURVEY_ID)
    print(graph_to_yaml(graph))

    runtime = DAGRuntime(graph)
    sessions = ResponseSessions(queue, cache, store, session_ttl=settings.cache.session_ttl_seconds)
    quotas = QuotaEngine(store)

    for pid, answers in RESPONDENTS:
        sessions.start_response(SURVEY_ID, response_id=pid, mode=Mode.LIVE)
        traversal = Traversal(runtime)
        for value in answers:
            traversal.answer(value)
            sessions.heartbeat(pid)

        path = " -> ".join(node.id for node in runtime.get_taken_path(traversal.answers()))
        status = traversal.final_status
        data = {k: v.to_dict() for k, v in traversal.responses.items()}
        if status is ResponseStatus.COMPLETED:
            decision = quotas.finalize_response(SURVEY_ID, pid, data, mode=Mode.LIVE)
            if decision.is_over_quota:
                status = ResponseStatus.OVER_QUOTA
        end_data = traversal.current.data
        result = sessions.update_response(
            pid, response=data, status=status, outcome=end_data.get("outcome"),
            redirect_url=None if status is ResponseStatus.OVER_QUOTA else end_data.get("redirectUrl"),
        )
        print(f"  {pid}: {status.value if status else 'IN_PROGRESS':<13} {path}")
        if result.redirect_url:
            print(f"         redirect -> {result.redirect_url}")

    batcher = SubmissionBatcher(store, cache, max_batch_size=settings.batcher.max_batch_size,
                                max_wait=settings.batcher.max_wait_seconds,
                                marker_ttl=settings.cache.marker_ttl_seconds)
    batcher.run(queue, should_stop=lambda: len(queue) == 0, poll_timeout=0)

    with store.connection() as conn:
        metrics = store.get_metrics(conn, SURVEY_ID, Mode.LIVE)
    print()
    print_metrics(metrics)
