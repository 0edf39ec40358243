"""Per-category score aggregation for radar charts.

Each category becomes one chart point carrying a single synthetic axis whose
score is the unweighted mean of every response recorded against the
category's questions. ``Question.weight`` is stored but not applied here.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, NamedTuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from radar.models import AssessmentPeriod, AssessmentResponse, Category, Question


class QuestionRef(NamedTuple):
    id: str
    category_id: str
    category_label: str
    pillar: str


class ResponseRef(NamedTuple):
    question_id: str
    score: int


@dataclass
class CategoryAxis:
    category_id: str
    category_label: str
    pillar: str
    axes: list[dict] = field(default_factory=list)

    @property
    def score(self) -> float:
        return self.axes[0]["score"] if self.axes else 0.0

    def to_dict(self) -> dict:
        return {
            "category_id": self.category_id,
            "category_label": self.category_label,
            "pillar": self.pillar,
            "axes": [dict(a) for a in self.axes],
        }


def mean(scores: list[int | float]) -> float:
    return sum(scores) / len(scores) if scores else 0.0


def aggregate(
    questions: Iterable[QuestionRef], responses: Iterable[ResponseRef | tuple[str, int]],
) -> list[CategoryAxis]:
    """Group response scores by category and average them.

    Responses for questions outside *questions* are ignored, and categories
    without any scores are left out. The result is ordered by
    ``(pillar, label, id)`` regardless of input order.
    """
    by_question = {q.id: q for q in questions}
    scores: dict[str, list[int]] = {}
    meta: dict[str, QuestionRef] = {}
    for question_id, score in responses:
        q = by_question.get(question_id)
        if q is None:
            continue
        scores.setdefault(q.category_id, []).append(score)
        meta.setdefault(q.category_id, q)

    result = []
    for category_id, values in scores.items():
        q = meta[category_id]
        result.append(CategoryAxis(
            category_id=category_id,
            category_label=q.category_label,
            pillar=q.pillar,
            axes=[{"label": q.category_label, "score": mean(values)}],
        ))
    result.sort(key=lambda a: (a.pillar, a.category_label, a.category_id))
    return result


def sort_axes(axes: list[CategoryAxis], categories: dict[str, Category]) -> list[CategoryAxis]:
    """Display order: declared category sequence, then pillar."""
    def key(axis: CategoryAxis):
        cat = categories.get(axis.category_id)
        return (cat.sequence if cat is not None else 0, axis.pillar)
    return sorted(axes, key=key)


# ---------------------------------------------------------------------------
# Read paths
# ---------------------------------------------------------------------------


def questions_for_company(session: Session, company_id: str) -> list[Question]:
    """The company's own questions if it has any, else the standard bank."""
    own = session.execute(
        select(Question).where(Question.company_id == company_id).order_by(Question.sequence)
    ).scalars().all()
    if own:
        return list(own)
    return list(session.execute(
        select(Question).where(Question.company_id.is_(None)).order_by(Question.sequence)
    ).scalars().all())


def _question_refs(session: Session, questions: list[Question]) -> tuple[list[QuestionRef], dict[str, Category]]:
    cat_ids = {q.category_id for q in questions}
    categories = {
        c.id: c for c in session.execute(
            select(Category).where(Category.id.in_(cat_ids))
        ).scalars().all()
    } if cat_ids else {}
    refs = [
        QuestionRef(q.id, q.category_id, categories[q.category_id].label, categories[q.category_id].pillar)
        for q in questions if q.category_id in categories
    ]
    return refs, categories


def assessment_axes(session: Session, company_id: str, period_id: str) -> list[CategoryAxis]:
    """Chart points for one assessment period, in display order."""
    refs, categories = _question_refs(session, questions_for_company(session, company_id))
    rows = session.execute(
        select(AssessmentResponse.question_id, AssessmentResponse.score)
        .where(AssessmentResponse.assessment_period_id == period_id)
    ).all()
    return sort_axes(aggregate(refs, (ResponseRef(qid, s) for qid, s in rows)), categories)


def latest_assessments(session: Session, company_id: str, limit: int = 3) -> list[dict]:
    """The most recent *limit* periods with their chart points, newest first."""
    periods = session.execute(
        select(AssessmentPeriod)
        .where(AssessmentPeriod.company_id == company_id)
        .order_by(AssessmentPeriod.year.desc(), AssessmentPeriod.quarter.desc())
        .limit(limit)
    ).scalars().all()
    if not periods:
        return []

    refs, categories = _question_refs(session, questions_for_company(session, company_id))
    out = []
    for p in periods:
        rows = session.execute(
            select(AssessmentResponse.question_id, AssessmentResponse.score)
            .where(AssessmentResponse.assessment_period_id == p.id)
        ).all()
        axes = sort_axes(aggregate(refs, (ResponseRef(qid, s) for qid, s in rows)), categories)
        out.append({
            "period_id": p.id,
            "year": p.year,
            "quarter": p.quarter,
            "submitted_at": p.submitted_at,
            "categories": axes,
        })
    return out
