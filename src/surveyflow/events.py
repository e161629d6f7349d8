"""
Submission events and the FIFO source they arrive on.

Payload shape:
    {"name": "update-response",
     "data": {"id", "surveyId", "mode", "status"?, "response"?, "outcome"?,
              "respondentId"?, "timestamp"}}

Delivery is at-least-once and unordered; the batcher sorts and de-duplicates.
"""

from __future__ import annotations

import json
import queue
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Protocol, Union

from surveyflow.errors import EventParseError
from surveyflow.model import Mode, ResponseStatus


class EventName(str, Enum):
    START_RESPONSE = "start-response"
    UPDATE_RESPONSE = "update-response"
    HEARTBEAT = "heartbeat"
    SUBMISSION = "submission"


def parse_timestamp(value: Any) -> datetime:
    """ISO-8601 string (a trailing Z is accepted) or datetime -> aware UTC datetime."""
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, str) and value:
        try:
            ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise EventParseError(f"Invalid event timestamp: {value!r}") from None
    else:
        raise EventParseError("Event is missing its timestamp")
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


@dataclass(frozen=True)
class SubmissionEvent:
    """
    One event for one response.

    Optional fields are None when the event did not carry them; the batcher
    never writes None over a stored value.
    """

    name: EventName
    response_id: str
    timestamp: datetime
    survey_id: Optional[str] = None
    mode: Optional[Mode] = None
    status: Optional[ResponseStatus] = None
    response: Optional[Dict[str, Any]] = None
    outcome: Optional[str] = None
    respondent_id: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Union[str, bytes, Mapping[str, Any]]) -> "SubmissionEvent":
        """
        Build an event from a queue payload.

        Raises:
            EventParseError: Invalid JSON, unknown name, missing id, bad
                status/mode tag or timestamp
        """
        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except ValueError as e:
                raise EventParseError(f"Event payload is not JSON: {e}") from None
        if not isinstance(payload, Mapping):
            raise EventParseError("Event payload must be an object")

        try:
            name = EventName(payload.get("name"))
        except ValueError:
            raise EventParseError(f"Unknown event name: {payload.get('name')!r}") from None

        data = payload.get("data") or {}
        if not isinstance(data, Mapping):
            raise EventParseError(f"{name.value} event data must be an object")
        if not data.get("id"):
            raise EventParseError(f"{name.value} event is missing a response id")

        try:
            mode = Mode(data["mode"]) if data.get("mode") else None
            status = ResponseStatus(data["status"]) if data.get("status") else None
        except ValueError as e:
            raise EventParseError(str(e)) from None

        return cls(
            name=name,
            response_id=str(data["id"]),
            timestamp=parse_timestamp(data.get("timestamp")),
            survey_id=data.get("surveyId") or None,
            mode=mode,
            status=status,
            response=data.get("response"),
            outcome=data.get("outcome") or None,
            respondent_id=data.get("respondentId") or None,
        )

    def to_payload(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.response_id, "timestamp": self.timestamp.isoformat()}
        if self.survey_id is not None:
            data["surveyId"] = self.survey_id
        if self.mode is not None:
            data["mode"] = self.mode.value
        if self.status is not None:
            data["status"] = self.status.value
        if self.response is not None:
            data["response"] = self.response
        if self.outcome is not None:
            data["outcome"] = self.outcome
        if self.respondent_id is not None:
            data["respondentId"] = self.respondent_id
        return {"name": self.name.value, "data": data}


class EventSource(Protocol):
    def get(self, timeout: Optional[float] = None) -> Optional[Any]:
        """Next raw payload, or None when nothing arrived within timeout."""
        ...


class EventSink(Protocol):
    def put(self, payload: Any) -> None: ...


@dataclass
class EventQueue:
    """In-process FIFO implementing both EventSource and EventSink."""

    maxsize: int = 0
    _queue: "queue.Queue[Any]" = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._queue = queue.Queue(maxsize=self.maxsize)

    def put(self, payload: Any) -> None:
        self._queue.put(payload)

    def get(self, timeout: Optional[float] = None) -> Optional[Any]:
        try:
            if timeout is not None and timeout <= 0:
                return self._queue.get_nowait()
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def __len__(self) -> int:
        return self._queue.qsize()
