from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

from sqlalchemy import (
    CheckConstraint, DateTime, Float, ForeignKey, SmallInteger, String, Text,
    UniqueConstraint, func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

REVIEW_TTL = timedelta(hours=24)


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column stores naive UTC."""
    return datetime.now(UTC).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


class Company(Base):
    __tablename__ = "companies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(300), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    users: Mapped[list[User]] = relationship("User", back_populates="company")
    periods: Mapped[list[AssessmentPeriod]] = relationship(
        "AssessmentPeriod", back_populates="company", cascade="all, delete",
    )
    questions: Mapped[list[Question]] = relationship(
        "Question", back_populates="company", cascade="all, delete",
    )
    monthly_reports: Mapped[list[MonthlyReport]] = relationship(
        "MonthlyReport", back_populates="company", cascade="all, delete",
    )


class User(Base):
    """Portal user, linked to the identity provider by ``auth_user_id``."""
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    auth_user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String(300), nullable=False)
    email: Mapped[str] = mapped_column(String(300), default="")
    company_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("companies.id"), nullable=True,
    )
    role: Mapped[str] = mapped_column(String(20), default="member")  # "member" | "admin"
    admin_requested_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    company: Mapped[Company | None] = relationship("Company", back_populates="users")


class Category(Base):
    __tablename__ = "categories"
    __table_args__ = (UniqueConstraint("pillar", "label"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    pillar: Mapped[str] = mapped_column(String(300), nullable=False)
    label: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    sequence: Mapped[int] = mapped_column(SmallInteger, default=0)

    questions: Mapped[list[Question]] = relationship(
        "Question", back_populates="category", cascade="all, delete",
    )


class Question(Base):
    """A Likert-scored statement. ``company_id`` NULL marks a standard question."""
    __tablename__ = "questions"
    __table_args__ = (UniqueConstraint("category_id", "company_id", "prompt"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    category_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("categories.id", ondelete="CASCADE"), nullable=False,
    )
    company_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    weight: Mapped[float] = mapped_column(Float, default=1.0)
    sequence: Mapped[int] = mapped_column(SmallInteger, default=0)

    category: Mapped[Category] = relationship("Category", back_populates="questions")
    company: Mapped[Company | None] = relationship("Company", back_populates="questions")


class AssessmentPeriod(Base):
    __tablename__ = "assessment_periods"
    __table_args__ = (
        UniqueConstraint("company_id", "year", "quarter"),
        CheckConstraint("quarter BETWEEN 1 AND 4", name="assessment_periods_quarter_check"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    company_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False,
    )
    year: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    quarter: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    submitted_by: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    submitted_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    company: Mapped[Company] = relationship("Company", back_populates="periods")
    responses: Mapped[list[AssessmentResponse]] = relationship(
        "AssessmentResponse", back_populates="period", cascade="all, delete",
    )


class AssessmentResponse(Base):
    # No unique (period, question): duplicate statements in one import are kept
    # as separate rows and averaged.
    __tablename__ = "assessment_responses"
    __table_args__ = (
        CheckConstraint("score BETWEEN 0 AND 5", name="assessment_responses_score_check"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    assessment_period_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("assessment_periods.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    question_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("questions.id", ondelete="CASCADE"), nullable=False,
    )
    score: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    period: Mapped[AssessmentPeriod] = relationship("AssessmentPeriod", back_populates="responses")


class MonthlyReport(Base):
    __tablename__ = "monthly_reports"
    __table_args__ = (
        UniqueConstraint("company_id", "year", "month"),
        CheckConstraint("month BETWEEN 1 AND 12", name="monthly_reports_month_check"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    company_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False,
    )
    year: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    month: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    challenge_team: Mapped[str | None] = mapped_column(Text, nullable=True)
    challenge_product: Mapped[str | None] = mapped_column(Text, nullable=True)
    challenge_sales: Mapped[str | None] = mapped_column(Text, nullable=True)
    challenge_marketing: Mapped[str | None] = mapped_column(Text, nullable=True)
    challenge_finance: Mapped[str | None] = mapped_column(Text, nullable=True)
    challenge_fundraise: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    company: Mapped[Company] = relationship("Company", back_populates="monthly_reports")


class QuarterlyReview(Base):
    """Cached LLM review for one (company, year, quarter); valid until ``expires_at``."""
    __tablename__ = "quarterly_reviews"
    __table_args__ = (UniqueConstraint("company_id", "year", "quarter"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    company_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False,
    )
    year: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    quarter: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    review_json: Mapped[str] = mapped_column(Text, default="{}")
    llm_model: Mapped[str] = mapped_column(String(100), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: utcnow() + REVIEW_TTL)
