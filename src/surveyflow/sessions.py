"""
Response sessions: the producer side of the submission stream.

Each call turns one respondent action into an event on the sink. Nothing is
written to the durable store here; the batcher does that. The only state
kept is the short-lived session:{id} cache entry holding the survey id and
mode, so later updates and heartbeats can carry them.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from surveyflow.cache import KeyValueCache, session_key
from surveyflow.events import EventName, EventSink, SubmissionEvent
from surveyflow.logging import get_logger
from surveyflow.model import Mode, ResponseStatus, SurveyConfig
from surveyflow.redirects import redirect_for_status, render_redirect_url
from surveyflow.store import ResponseStore, utcnow

logger = get_logger(__name__)

DEFAULT_SESSION_TTL = 86400


@dataclass(frozen=True)
class StartedResponse:
    id: str
    survey_id: str
    mode: Mode
    status: ResponseStatus = ResponseStatus.IN_PROGRESS


@dataclass(frozen=True)
class UpdateResult:
    id: str
    status: Optional[ResponseStatus]
    redirect_url: Optional[str] = None


class ResponseSessions:
    """
    Starts, updates and keeps alive respondent sessions.

    Args:
        sink: Where events are enqueued
        cache: Holds session:{id}
        store: Used to look up survey redirect targets; without it only
            explicit redirect URLs are returned
        session_ttl: Seconds a session entry lives
        now: Timestamp source for events
    """

    def __init__(self, sink: EventSink, cache: KeyValueCache, store: Optional[ResponseStore] = None, *,
                 session_ttl: float = DEFAULT_SESSION_TTL, now: Callable[[], datetime] = utcnow):
        self.sink = sink
        self.cache = cache
        self.store = store
        self.session_ttl = session_ttl
        self.now = now

    def _emit(self, event: SubmissionEvent) -> None:
        self.sink.put(event.to_payload())

    def _session(self, response_id: str) -> Tuple[Optional[str], Optional[Mode]]:
        raw = self.cache.get(session_key(response_id))
        if not raw:
            return None, None
        session: Dict[str, Any] = json.loads(raw)
        mode = session.get("mode")
        return session.get("surveyId"), Mode(mode) if mode else None

    def _survey(self, survey_id: Optional[str]) -> Optional[SurveyConfig]:
        if self.store is None or not survey_id:
            return None
        with self.store.connection() as conn:
            return self.store.get_survey(conn, survey_id)

    def start_response(self, survey_id: str, *, response_id: Optional[str] = None,
                       mode: Optional[Mode] = None, respondent_id: Optional[str] = None) -> StartedResponse:
        """Open a session. A panel-provided response_id is kept; otherwise one is generated."""
        if not survey_id:
            raise ValueError("survey_id is required")
        response_id = response_id or str(uuid.uuid4())
        mode = Mode(mode) if mode else Mode.TEST

        self._emit(SubmissionEvent(
            name=EventName.START_RESPONSE,
            response_id=response_id,
            timestamp=self.now(),
            survey_id=survey_id,
            mode=mode,
            respondent_id=respondent_id,
        ))
        self.cache.set(session_key(response_id), json.dumps({"surveyId": survey_id, "mode": mode.value}),
                       self.session_ttl)
        logger.debug("response_started", response_id=response_id, survey_id=survey_id, mode=mode.value)
        return StartedResponse(id=response_id, survey_id=survey_id, mode=mode)

    def update_response(self, response_id: str, *, response: Optional[Dict[str, Any]] = None,
                        status: Optional[ResponseStatus] = None, outcome: Optional[str] = None,
                        respondent_id: Optional[str] = None,
                        redirect_url: Optional[str] = None) -> UpdateResult:
        """
        Enqueue an update and work out where to send the respondent.

        An explicit redirect_url wins; otherwise a non in-progress status
        picks the survey's target for it. Placeholders are filled with the
        response id.
        """
        if not response_id:
            raise ValueError("response_id is required")
        status = ResponseStatus(status) if status else None
        survey_id, mode = self._session(response_id)

        self._emit(SubmissionEvent(
            name=EventName.UPDATE_RESPONSE,
            response_id=response_id,
            timestamp=self.now(),
            survey_id=survey_id,
            mode=mode,
            status=status,
            response=response,
            outcome=outcome,
            respondent_id=respondent_id,
        ))

        target = redirect_url
        if not target and status is not None and status is not ResponseStatus.IN_PROGRESS:
            target = redirect_for_status(self._survey(survey_id), status)
        return UpdateResult(id=response_id, status=status, redirect_url=render_redirect_url(target, response_id))

    def heartbeat(self, response_id: str) -> None:
        survey_id, mode = self._session(response_id)
        self._emit(SubmissionEvent(
            name=EventName.HEARTBEAT,
            response_id=response_id,
            timestamp=self.now(),
            survey_id=survey_id,
            mode=mode,
        ))
