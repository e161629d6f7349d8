"""
Submission batcher: reconciles out-of-order submission events into the store.

A window closes when it holds max_batch_size events or when its oldest event
has waited max_wait seconds, whichever happens first. Each window is
processed as:

    1. sort by event timestamp
    2. merge events per response id into one upsert (absent fields never
       overwrite stored ones; an event older than the stored row does not
       replace its answers, and a finished row only takes a newer terminal
       status)
    3. for every status observed that the stored row does not already
       account for, claim the idempotency marker
       metric_counted:{id}:{status} with set-if-absent; count only on claim
    4. write all upserts and metric increments in one transaction
    5. after commit, drop session state and markers of responses that are
       now terminal

A window that fails is logged and dropped (markers claimed for it are
released); the consumer keeps going with the next window.

One batcher instance belongs to one consumer loop. Its buffer is not safe for
concurrent producers.
"""

from __future__ import annotations

import json
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Protocol, Sequence, Set, Tuple

from surveyflow.cache import KeyValueCache, marker_key, session_key
from surveyflow.errors import EventParseError
from surveyflow.events import EventName, EventSource, SubmissionEvent
from surveyflow.logging import get_logger
from surveyflow.model import METRIC_COLUMNS, TERMINAL_STATUSES, Mode, ResponseStatus
from surveyflow.store import ResponseStore

logger = get_logger(__name__)

DEFAULT_MARKER_TTL = 604800

_OPENING_EVENTS = frozenset({EventName.START_RESPONSE, EventName.SUBMISSION})
# Fields a late event must not write over a newer or finished row.
_CONTENT_FIELDS = ("response", "outcome")


class Clock(Protocol):
    def now(self) -> float: ...


class SystemClock:
    """Monotonic seconds."""

    def now(self) -> float:
        return time.monotonic()


@dataclass
class PendingResponse:
    """Everything one window knows about one response id."""

    response_id: str
    fields: Dict[str, Any] = field(default_factory=dict)
    statuses: List[ResponseStatus] = field(default_factory=list)
    opened: bool = False

    @property
    def survey_id(self) -> Optional[str]:
        return self.fields.get("survey_id")

    @property
    def mode(self) -> Optional[Mode]:
        return self.fields.get("mode")

    @property
    def status(self) -> Optional[ResponseStatus]:
        return self.fields.get("status")

    def apply(self, event: SubmissionEvent) -> None:
        self.fields["updated_at"] = event.timestamp
        if event.survey_id is not None:
            self.fields["survey_id"] = event.survey_id
        if event.mode is not None:
            self.fields["mode"] = event.mode
        if event.name is EventName.HEARTBEAT:
            return
        if event.name in _OPENING_EVENTS:
            self.opened = True
        if event.response is not None:
            self.fields["response"] = event.response
        if event.outcome is not None:
            self.fields["outcome"] = event.outcome
        if event.respondent_id is not None:
            self.fields["respondent_id"] = event.respondent_id
        if event.status is not None:
            self.fields["status"] = event.status
            if event.status not in self.statuses:
                self.statuses.append(event.status)

    def countable_statuses(self) -> List[ResponseStatus]:
        statuses = [ResponseStatus.CLICKED] if self.opened else []
        return statuses + [s for s in self.statuses if s in METRIC_COLUMNS and s not in statuses]


def merge_window(events: Sequence[SubmissionEvent]) -> Dict[str, PendingResponse]:
    """Fold a window into one PendingResponse per response id, oldest event first."""
    pending: Dict[str, PendingResponse] = {}
    for event in sorted(events, key=lambda e: e.timestamp):
        item = pending.get(event.response_id)
        if item is None:
            item = pending[event.response_id] = PendingResponse(event.response_id)
        item.apply(event)
    return pending


@dataclass
class WindowResult:
    """What flush() did with one window."""

    committed: bool
    event_count: int = 0
    responses: int = 0
    increments: Dict[Tuple[str, str], Dict[str, int]] = field(default_factory=dict)
    terminal_ids: Set[str] = field(default_factory=set)
    error: Optional[str] = None


class SubmissionBatcher:
    """
    Windowed, idempotent reconciliation of submission events.

    Args:
        store: Durable relational store
        cache: Key-value cache for markers and session state
        max_batch_size: Events that close a window
        max_wait: Seconds after the first buffered event that close a window
        clock: Time source (SystemClock by default); tests inject a fake
        marker_ttl: Lifetime of idempotency markers in seconds
    """

    def __init__(self, store: ResponseStore, cache: KeyValueCache, *, max_batch_size: int = 50,
                 max_wait: float = 5.0, clock: Optional[Clock] = None,
                 marker_ttl: float = DEFAULT_MARKER_TTL):
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be at least 1")
        self.store = store
        self.cache = cache
        self.max_batch_size = max_batch_size
        self.max_wait = max_wait
        self.clock = clock or SystemClock()
        self.marker_ttl = marker_ttl
        self._buffer: Deque[SubmissionEvent] = deque()
        self._opened_at: Optional[float] = None

    def __len__(self) -> int:
        return len(self._buffer)

    # =========================================================================
    # WINDOWING
    # =========================================================================

    def add(self, event: Any) -> Optional[WindowResult]:
        """
        Buffer one event (a SubmissionEvent or a raw payload).

        Returns the WindowResult when this event filled the window.

        Raises:
            EventParseError: Raw payload could not be parsed
        """
        if not isinstance(event, SubmissionEvent):
            event = SubmissionEvent.from_payload(event)
        if not self._buffer:
            self._opened_at = self.clock.now()
        self._buffer.append(event)
        if len(self._buffer) >= self.max_batch_size:
            return self.flush()
        return None

    def due(self) -> bool:
        return bool(self._buffer) and self._opened_at is not None and \
            self.clock.now() - self._opened_at >= self.max_wait

    def poll(self) -> Optional[WindowResult]:
        """Flush when the open window has waited max_wait."""
        if self.due():
            return self.flush()
        return None

    def time_until_due(self) -> Optional[float]:
        if not self._buffer or self._opened_at is None:
            return None
        return max(0.0, self.max_wait - (self.clock.now() - self._opened_at))

    def flush(self) -> WindowResult:
        """Process whatever is buffered as one window."""
        events = list(self._buffer)
        self._buffer.clear()
        self._opened_at = None
        if not events:
            return WindowResult(committed=True)
        return self._process(events)

    def run(self, source: EventSource, should_stop: Callable[[], bool] = lambda: False,
            poll_timeout: float = 1.0) -> None:
        """
        Consumer loop: pull payloads, close windows, never die on a bad one.

        Unparseable payloads are logged and skipped. The remaining buffer is
        flushed once should_stop() turns true.
        """
        logger.info("batcher_started", max_batch_size=self.max_batch_size, max_wait=self.max_wait)
        while not should_stop():
            wait = self.time_until_due()
            payload = source.get(timeout=poll_timeout if wait is None else min(wait, poll_timeout))
            if payload is not None:
                try:
                    self.add(payload)
                except EventParseError as e:
                    logger.error("event_rejected", error=str(e))
            self.poll()
        self.flush()
        logger.info("batcher_stopped")

    # =========================================================================
    # WINDOW PROCESSING
    # =========================================================================

    def _session_identity(self, response_id: str) -> Tuple[Optional[str], Optional[Mode]]:
        raw = self.cache.get(session_key(response_id))
        if not raw:
            return None, None
        try:
            session = json.loads(raw)
            if not isinstance(session, dict):
                raise ValueError(f"session is a {type(session).__name__}")
            mode = session.get("mode")
            return session.get("surveyId") or None, Mode(mode) if mode else None
        except ValueError as e:
            logger.warning("session_unreadable", response_id=response_id, error=str(e))
            return None, None

    def _process(self, events: List[SubmissionEvent]) -> WindowResult:
        pending = merge_window(events)

        for item in pending.values():
            if item.survey_id is None or item.mode is None:
                survey_id, mode = self._session_identity(item.response_id)
                if item.survey_id is None and survey_id:
                    item.fields["survey_id"] = survey_id
                if item.mode is None and mode:
                    item.fields["mode"] = mode

        claimed: List[str] = []
        increments: Dict[Tuple[str, str], Counter] = {}
        try:
            with self.store.transaction() as conn:
                stored = self.store.response_states(conn, list(pending))

                for item in pending.values():
                    previous, clicked, stored_at = stored.get(item.response_id, (None, False, None))
                    closed = previous in TERMINAL_STATUSES
                    stale = stored_at is not None and item.fields["updated_at"] < stored_at
                    if stale:
                        # The row already holds newer answers.
                        for key in _CONTENT_FIELDS + ("updated_at",):
                            item.fields.pop(key, None)
                    if closed and (stale or item.status not in TERMINAL_STATUSES):
                        # A finished response is only replaced by a newer terminal event.
                        for key in _CONTENT_FIELDS + ("status",):
                            item.fields.pop(key, None)
                    if item.survey_id is None or item.mode is None:
                        continue
                    statuses = item.countable_statuses()
                    if closed and item.status is None:
                        statuses = [s for s in statuses if s is ResponseStatus.CLICKED]
                    bucket = increments.setdefault((item.survey_id, item.mode.value), Counter())
                    for status in statuses:
                        # Whoever stored a terminal status counted it; a counted click is on the row.
                        if (status is ResponseStatus.CLICKED and clicked) or (closed and status is previous):
                            continue
                        key = marker_key(item.response_id, status)
                        if self.cache.set_if_absent(key, "1", self.marker_ttl):
                            claimed.append(key)
                            bucket[METRIC_COLUMNS[status]] += 1
                            if status is ResponseStatus.CLICKED:
                                item.fields["clicked"] = True

                for item in pending.values():
                    self.store.upsert_response(conn, item.response_id, item.fields)
                for (survey_id, mode), counts in increments.items():
                    if counts:
                        self.store.increment_metrics(conn, survey_id, mode, counts)
        except Exception as e:
            logger.error("window_dropped", events=len(events), responses=len(pending), error=str(e),
                         exc_info=True)
            if claimed:
                self.cache.delete(*claimed)
            return WindowResult(committed=False, event_count=len(events), responses=len(pending), error=str(e))

        terminal_ids = {item.response_id for item in pending.values() if item.status in TERMINAL_STATUSES}
        for response_id in terminal_ids:
            keys = [session_key(response_id)] + [marker_key(response_id, s) for s in ResponseStatus]
            self.cache.delete(*keys)

        result = WindowResult(
            committed=True,
            event_count=len(events),
            responses=len(pending),
            increments={key: dict(counts) for key, counts in increments.items() if counts},
            terminal_ids=terminal_ids,
        )
        logger.info("batch_committed", events=len(events), responses=len(pending),
                    terminal=len(terminal_ids), increments=sum(sum(c.values()) for c in increments.values()))
        return result
