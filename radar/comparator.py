"""Cross-period comparison: prior scores, quarter arithmetic and deltas."""
from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from radar.models import AssessmentPeriod, AssessmentResponse

log = logging.getLogger(__name__)

BASELINE_SCORE = 3


def previous_quarter(year: int, quarter: int) -> tuple[int, int]:
    if quarter == 1:
        return year - 1, 4
    return year, quarter - 1


def get_prior_scores(
    session: Session,
    company_id: str,
    exclude_period: tuple[int, int] | None = None,
    *,
    editing: bool = False,
) -> dict[str, int] | None:
    """Score map of the period a new or edited assessment should start from.

    By default the newest period other than *exclude_period* is used. With
    ``editing=True`` the period equal to *exclude_period* wins if it exists,
    else the newest one. Returns ``None`` when no period qualifies; a missing
    key in the returned dict means "no prior score", which is not a 0.
    """
    periods = session.execute(
        select(AssessmentPeriod.id, AssessmentPeriod.year, AssessmentPeriod.quarter)
        .where(AssessmentPeriod.company_id == company_id)
        .order_by(AssessmentPeriod.year.desc(), AssessmentPeriod.quarter.desc())
    ).all()
    if not periods:
        return None

    selected = None
    if editing:
        if exclude_period is not None:
            selected = next((p for p in periods if (p.year, p.quarter) == tuple(exclude_period)), None)
        selected = selected or periods[0]
    else:
        selected = next(
            (p for p in periods if exclude_period is None or (p.year, p.quarter) != tuple(exclude_period)),
            None,
        )
    if selected is None:
        return None

    log.debug("Prior scores for %s from Q%d %d", company_id, selected.quarter, selected.year)
    return period_scores(session, selected.id)


def period_scores(session: Session, period_id: str) -> dict[str, int]:
    rows = session.execute(
        select(AssessmentResponse.question_id, AssessmentResponse.score)
        .where(AssessmentResponse.assessment_period_id == period_id)
    ).all()
    return {qid: score for qid, score in rows}


def score_deltas(current: dict[str, int], prior: dict[str, int] | None) -> dict[str, int]:
    """Per-question change, only for questions scored in both periods."""
    if not prior:
        return {}
    return {qid: current[qid] - prior[qid] for qid in current if qid in prior}


def form_defaults(
    question_ids: list[str], prior: dict[str, int] | None, baseline: int = BASELINE_SCORE,
) -> dict[str, int]:
    """Initial slider values: the prior score where one exists, else *baseline*."""
    prior = prior or {}
    return {qid: prior.get(qid, baseline) for qid in question_ids}
