"""
Quota engine: decides whether a completing response is admitted.

Two kinds of cap:
    GLOBAL       at most `global_quota` COMPLETED responses per survey
    DEMOGRAPHIC  at most `limit` COMPLETED responses matching a quota rule

Over quota is an expected outcome, returned as a QuotaDecision, never raised.

The check must run in the same transaction as the write that finalizes the
response, under a lock keyed by survey; otherwise two respondents can both
see count == limit - 1 and both be admitted. finalize_response does both.

Demographic counting re-scans the survey's COMPLETED responses on every
check (O(N) per completion). Rules are matched with the non-strict evaluator,
so historical responses that never answered a field simply do not count.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from sqlalchemy import Connection

from surveyflow.errors import ResponseAlreadyFinal, SurveyNotFound
from surveyflow.evaluator import answers_from_entries, evaluate
from surveyflow.logging import get_logger
from surveyflow.model import METRIC_COLUMNS, Mode, PersistedResponse, Quota, QuotaType, ResponseStatus
from surveyflow.store import ResponseStore, utcnow

logger = get_logger(__name__)


@dataclass(frozen=True)
class QuotaDecision:
    """Result of a quota check."""

    is_over_quota: bool
    type: Optional[QuotaType] = None
    redirect_url: Optional[str] = None
    quota_id: Optional[str] = None

    @classmethod
    def admitted(cls) -> "QuotaDecision":
        return cls(is_over_quota=False)


def matches_quota(quota: Quota, response_data: Mapping[str, Any]) -> bool:
    """True when a stored response map (node id -> entry) matches the quota rule."""
    return evaluate(quota.rule, answers_from_entries(response_data), strict=False)


class QuotaEngine:
    """Global and demographic quota enforcement over a ResponseStore."""

    def __init__(self, store: ResponseStore):
        self.store = store

    def check_quota(self, conn: Connection, survey_id: str, current_response_id: str,
                    current_response_data: Mapping[str, Any]) -> QuotaDecision:
        """
        Decide admission for one completing response.

        Args:
            conn: Connection inside the finalizing transaction
            survey_id: Survey being completed
            current_response_id: Excluded from every count
            current_response_data: Node id -> entry dict (or ResponseEntry)

        Raises:
            SurveyNotFound: No survey row for survey_id
        """
        survey = self.store.get_survey(conn, survey_id)
        if survey is None:
            raise SurveyNotFound(f"Survey not found: {survey_id}")

        if survey.global_quota is not None:
            completed = self.store.count_responses(conn, survey_id, ResponseStatus.COMPLETED, current_response_id)
            if completed >= survey.global_quota:
                logger.info("quota_rejected", survey_id=survey_id, response_id=current_response_id,
                            quota_type=QuotaType.GLOBAL.value, count=completed, limit=survey.global_quota)
                return QuotaDecision(True, QuotaType.GLOBAL, survey.over_quota_url)

        for quota in self.store.get_quotas(conn, survey_id):
            if not matches_quota(quota, current_response_data):
                continue

            count = sum(
                1
                for data in self.store.iter_response_data(conn, survey_id, ResponseStatus.COMPLETED,
                                                          current_response_id)
                if matches_quota(quota, data)
            )
            logger.debug("quota_checked", quota_id=quota.id, limit=quota.limit, count=count)

            if count >= quota.limit:
                logger.info("quota_rejected", survey_id=survey_id, response_id=current_response_id,
                            quota_type=QuotaType.DEMOGRAPHIC.value, quota_id=quota.id,
                            count=count, limit=quota.limit)
                return QuotaDecision(True, QuotaType.DEMOGRAPHIC, survey.over_quota_url, quota.id)

        return QuotaDecision.admitted()

    def finalize_response(self, survey_id: str, response_id: str, response_data: Mapping[str, Any], *,
                          mode: Any = None, outcome: Optional[str] = None,
                          respondent_id: Optional[str] = None) -> QuotaDecision:
        """
        Check quotas and write the terminal status in one locked transaction.

        The response is stored as COMPLETED when admitted, OVER_QUOTA when not,
        and that status is counted in the survey metrics here (the batcher
        does not count a status it finds already stored). Finalizing a
        response that is already COMPLETED or OVER_QUOTA writes and counts
        nothing and reports the stored result. Store failures propagate;
        nothing is retried here.

        Raises:
            SurveyNotFound: No survey row for survey_id
            ResponseAlreadyFinal: The response already ended with another
                terminal status (disqualified, dropped, ...)
        """
        with self.store.survey_transaction(survey_id) as conn:
            existing = self.store.get_response(conn, response_id)
            decision = self.check_quota(conn, survey_id, response_id, response_data)
            if existing is not None and existing.is_terminal:
                return self._stored_decision(conn, existing)
            status = ResponseStatus.OVER_QUOTA if decision.is_over_quota else ResponseStatus.COMPLETED

            fields: dict[str, Any] = {
                "survey_id": survey_id,
                "status": status,
                "response": {k: _entry_dict(v) for k, v in response_data.items()},
                "updated_at": utcnow(),
            }
            if mode is not None:
                fields["mode"] = mode
            if outcome is not None:
                fields["outcome"] = outcome
            if respondent_id is not None:
                fields["respondent_id"] = respondent_id
            self.store.upsert_response(conn, response_id, fields)

            counted_mode = mode if mode is not None else (existing.mode if existing else Mode.TEST)
            self.store.increment_metrics(conn, survey_id, counted_mode, {METRIC_COLUMNS[status]: 1})
        return decision

    def _stored_decision(self, conn: Connection, existing: PersistedResponse) -> QuotaDecision:
        if existing.status is ResponseStatus.COMPLETED:
            return QuotaDecision.admitted()
        if existing.status is ResponseStatus.OVER_QUOTA:
            survey = self.store.get_survey(conn, existing.survey_id)
            return QuotaDecision(True, redirect_url=survey.over_quota_url if survey else None)
        logger.warning("finalize_refused", response_id=existing.id, status=existing.status.value)
        raise ResponseAlreadyFinal(existing.id, existing.status.value)


def _entry_dict(entry: Any) -> Any:
    return entry.to_dict() if hasattr(entry, "to_dict") else entry
