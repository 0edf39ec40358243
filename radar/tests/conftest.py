from __future__ import annotations

import pytest
from sqlalchemy.orm import Session, sessionmaker

from radar.db import make_engine
from radar.models import (
    AssessmentPeriod, AssessmentResponse, Base, Category, Company, Question, User,
)

# ---------------------------------------------------------------------------
# Fixtures: in-memory SQLite database
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine():
    eng = make_engine("sqlite:///:memory:")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session(engine):
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    sess = SessionLocal()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture()
def company(session: Session) -> Company:
    c = Company(name="Acme")
    session.add(c)
    session.commit()
    return c


@pytest.fixture()
def founder(session: Session, company: Company) -> User:
    u = User(auth_user_id="founder-1", full_name="Fran Founder", company_id=company.id)
    session.add(u)
    session.commit()
    return u


@pytest.fixture()
def admin(session: Session) -> User:
    u = User(auth_user_id="admin-1", full_name="Ada Admin", role="admin")
    session.add(u)
    session.commit()
    return u


@pytest.fixture()
def make_question(session: Session):
    """Factory: ``make_question(pillar, label, prompt, company_id=None, sequence=1)``."""
    def _make(pillar: str, label: str, prompt: str, company_id: str | None = None,
              sequence: int = 1, category_sequence: int = 1) -> Question:
        cat = session.query(Category).filter_by(pillar=pillar, label=label).first()
        if cat is None:
            cat = Category(pillar=pillar, label=label, sequence=category_sequence)
            session.add(cat)
            session.flush()
        q = Question(category_id=cat.id, company_id=company_id, prompt=prompt, sequence=sequence)
        session.add(q)
        session.commit()
        return q
    return _make


@pytest.fixture()
def make_period(session: Session):
    """Factory: ``make_period(company_id, year, quarter, {question_id: score})``."""
    def _make(company_id: str, year: int, quarter: int, scores: dict[str, int] | None = None) -> AssessmentPeriod:
        p = AssessmentPeriod(company_id=company_id, year=year, quarter=quarter)
        session.add(p)
        session.flush()
        for qid, score in (scores or {}).items():
            session.add(AssessmentResponse(assessment_period_id=p.id, question_id=qid, score=score))
        session.commit()
        return p
    return _make
