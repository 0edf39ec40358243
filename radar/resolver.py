"""Find-or-create resolution of categories and questions during an import.

Every insert is committed on its own, so a failed insert can be rolled back
without losing the rows created earlier in the same run. No locks are taken:
two concurrent imports may race on a new category's sequence number, and the
re-fetch after an IntegrityError absorbs duplicate inserts.
"""
from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from radar.models import Category, Question
from radar.utils import normalize_text

log = logging.getLogger(__name__)


def _find_category(session: Session, pillar: str, label: str) -> Category | None:
    return session.execute(
        select(Category).where(Category.pillar == pillar, Category.label == label)
    ).scalars().first()


def resolve_category(
    session: Session, pillar: str, label: str, cache: dict[tuple[str, str], str] | None = None,
) -> str | None:
    """Return the id of the ``(pillar, label)`` category, creating it if needed.

    New categories are appended after the highest sequence in their pillar.
    Returns ``None`` when the row can neither be created nor found.
    """
    key = (pillar, label)
    if cache is not None and key in cache:
        return cache[key]

    existing = _find_category(session, pillar, label)
    if existing is None:
        max_seq = session.execute(
            select(func.max(Category.sequence)).where(Category.pillar == pillar)
        ).scalar()
        category = Category(pillar=pillar, label=label, sequence=(max_seq or 0) + 1)
        session.add(category)
        try:
            session.commit()
            existing = category
        except IntegrityError as exc:
            session.rollback()
            log.warning("Category insert failed for %s > %s, re-fetching: %s", pillar, label, exc.orig)
            existing = _find_category(session, pillar, label)
            if existing is None:
                return None

    if cache is not None:
        cache[key] = existing.id
    return existing.id


class QuestionResolver:
    """Per-import map of a company's questions, keyed by normalized prompt.

    A statement missing from the company's own questions becomes a new
    company-specific question, even when a standard question with the same
    text exists; the copy can then be edited independently.
    """

    def __init__(self, session: Session, company_id: str):
        self.session = session
        self.company_id = company_id
        self.created: list[str] = []
        rows = session.execute(
            select(Question.id, Question.prompt)
            .where(Question.company_id == company_id)
            .order_by(Question.sequence)
        ).all()
        self._by_prompt: dict[str, str] = {}
        for qid, prompt in rows:
            self._by_prompt.setdefault(normalize_text(prompt), qid)

    def resolve(self, category_id: str, statement: str, sequence: int) -> str | None:
        """Return the question id for *statement*, creating it on a miss."""
        key = normalize_text(statement)
        if key in self._by_prompt:
            return self._by_prompt[key]

        question = Question(
            company_id=self.company_id, category_id=category_id,
            prompt=statement, sequence=sequence,
        )
        self.session.add(question)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            log.warning("Question insert failed, re-fetching %r: %s", statement[:60], exc.orig)
            qid = self.session.execute(
                select(Question.id).where(
                    Question.company_id == self.company_id,
                    Question.category_id == category_id,
                    Question.prompt == statement,
                )
            ).scalar()
            if qid is None:
                return None
            self._by_prompt[key] = qid
            return qid

        self._by_prompt[key] = question.id
        self.created.append(statement)
        return question.id
