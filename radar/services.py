"""Shared business logic for the Radar API and the admin CLI."""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from radar.aggregator import assessment_axes, latest_assessments, questions_for_company
from radar.comparator import period_scores, previous_quarter, score_deltas
from radar.models import (
    REVIEW_TTL, AssessmentPeriod, AssessmentResponse, Category, Company, MonthlyReport,
    Question, QuarterlyReview, User, utcnow,
)
from radar.reviewer import LLMClient, build_review_prompt, parse_review_response
from radar.schemas import QuarterlyReviewOut
from radar.utils import clean_company_name
from radar.validation import (
    InvalidInput, validate_email, validate_manual_score, validate_month, validate_period, validate_uuid,
    validate_year,
)

log = logging.getLogger(__name__)

ADMIN_ROLE = "admin"
MEMBER_ROLE = "member"


class CompanyLookupError(LookupError):
    """No company, or more than one, matches a free-text name."""
    def __init__(self, message: str, ambiguous: bool = False):
        super().__init__(message)
        self.ambiguous = ambiguous


class DuplicatePeriod(ValueError):
    pass


class PeriodNotFound(LookupError):
    pass


# ---------------------------------------------------------------------------
# Companies
# ---------------------------------------------------------------------------


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def find_company_by_name(session: Session, name: str) -> Company:
    """Case-insensitive exact match, trying the raw name and then its cleaned form.

    Never guesses: zero or several matches raise :class:`CompanyLookupError`.
    """
    raw = (name or "").strip()
    candidates = [c for c in dict.fromkeys((raw, clean_company_name(raw))) if c]
    for candidate in candidates:
        matches = session.execute(
            select(Company).where(Company.name.ilike(_escape_like(candidate), escape="\\")).limit(2)
        ).scalars().all()
        if len(matches) > 1:
            raise CompanyLookupError(f'Multiple companies match "{raw}". Please be more specific.', ambiguous=True)
        if matches:
            return matches[0]
    raise CompanyLookupError(f'Unable to find a portfolio company named "{raw}".')


def company_overview(session: Session) -> dict[str, list[dict]]:
    """Companies split by whether they have any assessment, each sorted by name."""
    companies = session.execute(select(Company).order_by(Company.name)).scalars().all()
    periods = session.execute(
        select(AssessmentPeriod).order_by(AssessmentPeriod.year.desc(), AssessmentPeriod.quarter.desc())
    ).scalars().all()
    by_company: dict[str, list[dict]] = {c.id: [] for c in companies}
    for p in periods:
        if p.company_id in by_company:
            by_company[p.company_id].append(
                {"id": p.id, "year": p.year, "quarter": p.quarter, "submitted_at": p.submitted_at}
            )
    items = [{"id": c.id, "name": c.name, "periods": by_company[c.id]} for c in companies]
    items.sort(key=lambda c: c["name"].lower())
    return {
        "with_assessments": [c for c in items if c["periods"]],
        "without_assessments": [c for c in items if not c["periods"]],
    }


def get_company(session: Session, company_id: str) -> Company | None:
    validate_uuid(company_id, "company ID")
    return session.get(Company, company_id)


def clean_company_names(session: Session, dry_run: bool = False) -> list[dict]:
    """Strip emoji and stray symbols from stored company names.

    Names whose cleaned form is empty or already taken are left alone.
    """
    companies = session.execute(select(Company).order_by(Company.name)).scalars().all()
    taken = {c.name.lower() for c in companies}
    changes = []
    for company in companies:
        cleaned = clean_company_name(company.name)
        if not cleaned or cleaned == company.name:
            continue
        if cleaned.lower() in taken and cleaned.lower() != company.name.lower():
            log.warning("Skipping %r: cleaned name %r already exists", company.name, cleaned)
            continue
        changes.append({"id": company.id, "old": company.name, "new": cleaned})
        if not dry_run:
            taken.discard(company.name.lower())
            taken.add(cleaned.lower())
            company.name = cleaned
    if not dry_run and changes:
        session.commit()
    log.info("%s %d company names", "Would clean" if dry_run else "Cleaned", len(changes))
    return changes


# ---------------------------------------------------------------------------
# Portal users & admin access
# ---------------------------------------------------------------------------


def find_portal_user(session: Session, auth_user_id: str) -> User | None:
    return session.execute(
        select(User).where(User.auth_user_id == auth_user_id).order_by(User.created_at, User.id)
    ).scalars().first()


def get_or_create_portal_user(
    session: Session, auth_user_id: str, full_name: str | None = None,
    company_name: str | None = None, email: str | None = None,
) -> User:
    """Return the portal profile for an identity, creating it on first sign-in."""
    existing = find_portal_user(session, auth_user_id)
    if existing is not None:
        return existing
    if not company_name:
        raise InvalidInput("Your profile is missing a company selection. Please contact support.")
    if email:
        validate_email(email)
    company = find_company_by_name(session, company_name)
    user = User(
        auth_user_id=auth_user_id,
        full_name=full_name or email or "Founder",
        email=email or "",
        company_id=company.id,
    )
    session.add(user)
    session.commit()
    log.info("Created portal user %s for %s", auth_user_id, company.name)
    return user


def is_admin(session: Session, auth_user_id: str | None) -> bool:
    if not auth_user_id:
        return False
    user = find_portal_user(session, auth_user_id)
    return user is not None and user.role == ADMIN_ROLE


def user_summary(user: User) -> dict:
    return {
        "id": user.id, "auth_user_id": user.auth_user_id, "full_name": user.full_name,
        "email": user.email, "company_id": user.company_id,
        "company_name": user.company.name if user.company else None,
        "role": user.role, "admin_requested_at": user.admin_requested_at,
    }


def list_users(session: Session, admins_only: bool = False) -> list[dict]:
    """Users ordered by name; duplicate profiles of one identity are listed once."""
    query = select(User).order_by(User.full_name, User.created_at)
    if admins_only:
        query = query.where(User.role == ADMIN_ROLE)
    seen: set[str] = set()
    out = []
    for user in session.execute(query).scalars().all():
        if user.auth_user_id in seen:
            continue
        seen.add(user.auth_user_id)
        out.append(user_summary(user))
    return out


def request_admin_access(session: Session, auth_user_id: str) -> User:
    user = find_portal_user(session, auth_user_id)
    if user is None:
        raise LookupError("User not found")
    if user.admin_requested_at is None and user.role != ADMIN_ROLE:
        user.admin_requested_at = utcnow()
        session.commit()
    return user


def _set_role(session: Session, auth_user_id: str, role: str) -> int:
    result = session.execute(update(User).where(User.auth_user_id == auth_user_id).values(role=role))
    session.commit()
    return result.rowcount


def grant_admin(session: Session, auth_user_id: str) -> int:
    """Promote every profile of *auth_user_id*; returns the number updated."""
    count = _set_role(session, auth_user_id, ADMIN_ROLE)
    log.info("Granted admin to %s (%d profiles)", auth_user_id, count)
    return count


def revoke_admin(session: Session, auth_user_id: str, acting_auth_user_id: str | None = None) -> int:
    if acting_auth_user_id is not None and auth_user_id == acting_auth_user_id:
        raise InvalidInput("You cannot revoke your own admin access.")
    count = _set_role(session, auth_user_id, MEMBER_ROLE)
    log.info("Revoked admin from %s (%d profiles)", auth_user_id, count)
    return count


# ---------------------------------------------------------------------------
# Assessments
# ---------------------------------------------------------------------------


def question_list(session: Session, company_id: str) -> list[dict]:
    """The questions a company answers, with their category, in form order."""
    out = []
    for q in questions_for_company(session, company_id):
        out.append({
            "id": q.id, "category_id": q.category_id, "category_label": q.category.label,
            "pillar": q.category.pillar, "prompt": q.prompt, "sequence": q.sequence,
        })
    return out


def submit_assessment(
    session: Session, user: User, year: Any, quarter: Any, answers: dict[str, Any],
) -> AssessmentPeriod:
    """Store a founder's assessment for a new quarter.

    All input is validated before anything is written; a quarter that was
    already submitted raises :class:`DuplicatePeriod`.
    """
    year, quarter = validate_period(year, quarter)
    if not user.company_id:
        raise InvalidInput("Your profile is missing a company assignment. Please contact support.")
    scores = {qid: validate_manual_score(qid, score) for qid, score in answers.items()}
    known = {q.id for q in questions_for_company(session, user.company_id)}
    unknown = [qid for qid in scores if qid not in known]
    if unknown:
        raise InvalidInput(f"Unknown question {unknown[0]}")

    period = AssessmentPeriod(
        company_id=user.company_id, year=year, quarter=quarter, submitted_by=user.id,
    )
    session.add(period)
    try:
        session.flush()
    except IntegrityError as exc:
        session.rollback()
        raise DuplicatePeriod(f"You've already submitted Q{quarter} {year}.") from exc

    session.add_all([
        AssessmentResponse(assessment_period_id=period.id, question_id=qid, score=score)
        for qid, score in scores.items()
    ])
    session.commit()
    log.info("Assessment Q%d %d submitted by %s (%d answers)", quarter, year, user.auth_user_id, len(scores))
    return period


def get_period(session: Session, period_id: str) -> AssessmentPeriod | None:
    validate_uuid(period_id, "assessment ID")
    return session.get(AssessmentPeriod, period_id)


def assessment_detail(session: Session, period: AssessmentPeriod) -> dict:
    """One period's chart points, its answers and the per-question score change.

    Changes are against the preceding quarter and empty when it is missing.
    """
    rows = session.execute(
        select(AssessmentResponse.question_id, AssessmentResponse.score, Question.prompt,
               Category.label, Category.pillar)
        .join(Question, Question.id == AssessmentResponse.question_id)
        .join(Category, Category.id == Question.category_id)
        .where(AssessmentResponse.assessment_period_id == period.id)
        .order_by(Category.sequence, Question.sequence)
    ).all()
    prev = _find_period(session, period.company_id, *previous_quarter(period.year, period.quarter))
    deltas = score_deltas(period_scores(session, period.id), period_scores(session, prev.id) if prev else None)
    return {
        "period_id": period.id, "company_id": period.company_id,
        "year": period.year, "quarter": period.quarter, "submitted_at": period.submitted_at,
        "categories": [a.to_dict() for a in assessment_axes(session, period.company_id, period.id)],
        "responses": [
            {"question_id": qid, "score": score, "prompt": prompt, "category_label": label, "pillar": pillar}
            for qid, score, prompt, label, pillar in rows
        ],
        "deltas": deltas,
    }


def company_assessments(session: Session, company_id: str, limit: int | None = 3) -> list[dict]:
    return [
        {**a, "categories": [c.to_dict() for c in a["categories"]]}
        for a in latest_assessments(session, company_id, limit=limit)
    ]


def delete_assessment(session: Session, period_id: str) -> bool:
    """Delete a period and its responses; ``False`` if it does not exist."""
    period = get_period(session, period_id)
    if period is None:
        return False
    session.delete(period)
    session.commit()
    log.info("Deleted assessment %s (Q%d %d)", period.id, period.quarter, period.year)
    return True


# ---------------------------------------------------------------------------
# Question bank
# ---------------------------------------------------------------------------


def seed_question_bank(session: Session, bank: dict[str, dict[str, list[str]]]) -> dict[str, int]:
    """Upsert the standard question bank ``{pillar: {label: [prompt, ...]}}``.

    Categories get a running sequence across the whole bank; questions are
    numbered from 1 within their category.
    """
    categories = questions = 0
    category_seq = 1
    for pillar, labels in bank.items():
        for label, prompts in labels.items():
            category = session.execute(
                select(Category).where(Category.pillar == pillar, Category.label == label)
            ).scalars().first()
            if category is None:
                category = Category(pillar=pillar, label=label)
                session.add(category)
            category.sequence = category_seq
            category_seq += 1
            session.flush()
            categories += 1

            for idx, prompt in enumerate(prompts):
                question = session.execute(
                    select(Question).where(
                        Question.category_id == category.id,
                        Question.company_id.is_(None),
                        Question.prompt == prompt,
                    )
                ).scalars().first()
                if question is None:
                    question = Question(category_id=category.id, company_id=None, prompt=prompt)
                    session.add(question)
                question.sequence = idx + 1
                questions += 1
            log.debug("Category synced: %s > %s", pillar, label)
    session.commit()
    log.info("Seeded %d categories and %d questions", categories, questions)
    return {"categories": categories, "questions": questions}


# ---------------------------------------------------------------------------
# Monthly reports
# ---------------------------------------------------------------------------

CHALLENGE_FIELDS = ("team", "product", "sales", "marketing", "finance", "fundraise")


def monthly_report_summary(report: MonthlyReport) -> dict:
    return {
        "id": report.id, "company_id": report.company_id, "year": report.year, "month": report.month,
        **{f: getattr(report, f"challenge_{f}") for f in CHALLENGE_FIELDS},
    }


def upsert_monthly_report(
    session: Session, company_id: str, year: Any, month: Any, challenges: dict[str, str | None],
) -> MonthlyReport:
    """Create or replace the challenge notes for one company month."""
    year, month = validate_year(year), validate_month(month)
    report = session.execute(
        select(MonthlyReport).where(
            MonthlyReport.company_id == company_id,
            MonthlyReport.year == year,
            MonthlyReport.month == month,
        )
    ).scalars().first()
    if report is None:
        report = MonthlyReport(company_id=company_id, year=year, month=month)
        session.add(report)
    for field in CHALLENGE_FIELDS:
        setattr(report, f"challenge_{field}", challenges.get(field))
    session.commit()
    return report


def quarter_months(quarter: int) -> list[int]:
    return [3 * quarter - 2, 3 * quarter - 1, 3 * quarter]


def quarter_monthly_reports(session: Session, company_id: str, year: int, quarter: int) -> list[MonthlyReport]:
    return list(session.execute(
        select(MonthlyReport).where(
            MonthlyReport.company_id == company_id,
            MonthlyReport.year == year,
            MonthlyReport.month.in_(quarter_months(quarter)),
        ).order_by(MonthlyReport.month)
    ).scalars().all())


# ---------------------------------------------------------------------------
# Quarterly review
# ---------------------------------------------------------------------------


def _find_period(session: Session, company_id: str, year: int, quarter: int) -> AssessmentPeriod | None:
    return session.execute(
        select(AssessmentPeriod).where(
            AssessmentPeriod.company_id == company_id,
            AssessmentPeriod.year == year,
            AssessmentPeriod.quarter == quarter,
        )
    ).scalars().first()


def cached_review(session: Session, company_id: str, year: int, quarter: int) -> QuarterlyReview | None:
    return session.execute(
        select(QuarterlyReview).where(
            QuarterlyReview.company_id == company_id,
            QuarterlyReview.year == year,
            QuarterlyReview.quarter == quarter,
            QuarterlyReview.expires_at > utcnow(),
        )
    ).scalars().first()


async def generate_quarterly_review(
    session: Session, company_id: str, company_name: str, year: Any, quarter: Any,
    client: LLMClient | None = None,
) -> QuarterlyReviewOut:
    """Return the cached review for the quarter, or generate and cache a new one.

    Needs assessments for both the quarter and the one before it.
    """
    year, quarter = validate_period(year, quarter)
    hit = cached_review(session, company_id, year, quarter)
    if hit is not None:
        log.debug("Review cache hit for %s Q%d %d", company_id, quarter, year)
        return QuarterlyReviewOut.model_validate_json(hit.review_json)

    current = _find_period(session, company_id, year, quarter)
    if current is None:
        raise PeriodNotFound("Current quarter assessment not found")
    prev_year, prev_quarter = previous_quarter(year, quarter)
    previous = _find_period(session, company_id, prev_year, prev_quarter)
    if previous is None:
        raise PeriodNotFound("Previous quarter assessment not found")

    prompt = build_review_prompt(
        company_name,
        (year, quarter),
        (prev_year, prev_quarter),
        assessment_axes(session, company_id, current.id),
        assessment_axes(session, company_id, previous.id),
        quarter_monthly_reports(session, company_id, year, quarter),
    )
    if client is None:
        client = LLMClient()
    review = parse_review_response(await client.complete(prompt))

    row = session.execute(
        select(QuarterlyReview).where(
            QuarterlyReview.company_id == company_id,
            QuarterlyReview.year == year,
            QuarterlyReview.quarter == quarter,
        )
    ).scalars().first()
    if row is None:
        row = QuarterlyReview(company_id=company_id, year=year, quarter=quarter)
        session.add(row)
    now = utcnow()
    row.review_json = review.model_dump_json()
    row.llm_model = client.model
    row.created_at = now
    row.expires_at = now + REVIEW_TTL
    session.commit()
    log.info("Generated quarterly review for %s Q%d %d with %s", company_name, quarter, year, client.model)
    return review
