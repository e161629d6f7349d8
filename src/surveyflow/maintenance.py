"""
Periodic housekeeping: abandon responses whose respondent went quiet.

A live respondent sends a heartbeat; a response still IN_PROGRESS whose
updated_at is older than the threshold is marked DROPPED and counted.
"""

from __future__ import annotations

import time
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from surveyflow.cache import KeyValueCache, marker_key, session_key
from surveyflow.logging import get_logger
from surveyflow.model import METRIC_COLUMNS, ResponseStatus
from surveyflow.store import ResponseStore, utcnow

logger = get_logger(__name__)

ABANDONED_OUTCOME = "Heartbeat Timeout (Abandoned)"


def drop_stale_responses(store: ResponseStore, stale_after_seconds: float = 120, *,
                         now: Optional[datetime] = None, cache: Optional[KeyValueCache] = None) -> List[str]:
    """
    Mark stale IN_PROGRESS responses DROPPED and increment their `dropped` counter.

    Each response is re-checked by a conditional update, so one that got a
    heartbeat or finished between the scan and the write is left alone.
    Returns the ids that were dropped. When a cache is given, their session
    entries and idempotency markers are removed.
    """
    threshold = (now or utcnow()) - timedelta(seconds=stale_after_seconds)
    dropped: List[str] = []

    with store.transaction() as conn:
        for response in store.find_stale_responses(conn, threshold):
            if not store.mark_dropped(conn, response.id, ABANDONED_OUTCOME, threshold):
                continue
            store.increment_metrics(conn, response.survey_id, response.mode,
                                    {METRIC_COLUMNS[ResponseStatus.DROPPED]: 1})
            dropped.append(response.id)

    if dropped:
        logger.info("stale_responses_dropped", count=len(dropped), stale_after_seconds=stale_after_seconds)
        if cache is not None:
            for response_id in dropped:
                cache.delete(session_key(response_id), *[marker_key(response_id, s) for s in ResponseStatus])
    return dropped


def run_maintenance(store: ResponseStore, *, stale_after_seconds: float = 120, interval_seconds: float = 60,
                    cache: Optional[KeyValueCache] = None, should_stop: Callable[[], bool] = lambda: False,
                    sleep: Callable[[float], None] = time.sleep) -> None:
    """Run drop_stale_responses every interval until should_stop() is true.

    A failed sweep is logged and retried on the next tick.
    """
    while not should_stop():
        try:
            drop_stale_responses(store, stale_after_seconds, cache=cache)
        except Exception as e:
            logger.error("maintenance_failed", error=str(e), exc_info=True)
        sleep(interval_seconds)
