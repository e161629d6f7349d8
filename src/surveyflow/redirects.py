"""Where a respondent is sent when a response stops."""

import re
from typing import Optional

from surveyflow.model import ResponseStatus, SurveyConfig

_PLACEHOLDER = re.compile(r"\[%%(?:PID|transactionid)%%\]", re.IGNORECASE)


def redirect_for_status(survey: Optional[SurveyConfig], status: Optional[ResponseStatus]) -> Optional[str]:
    """
    Survey-level redirect target for a status.

    DROPPED -> redirect_url, OVER_QUOTA -> over_quota_url,
    SECURITY_TERMINATE -> security_terminate_url. Other statuses have no
    survey-level target (end nodes carry their own redirectUrl).
    """
    if survey is None or status is None:
        return None
    if status is ResponseStatus.DROPPED:
        return survey.redirect_url
    if status is ResponseStatus.OVER_QUOTA:
        return survey.over_quota_url
    if status is ResponseStatus.SECURITY_TERMINATE:
        return survey.security_terminate_url
    return None


def render_redirect_url(url: Optional[str], response_id: str) -> Optional[str]:
    """Replace [%%PID%%] and [%%transactionid%%] (any case) with the response id."""
    if not url:
        return None
    return _PLACEHOLDER.sub(lambda _: response_id, url)
