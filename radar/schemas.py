"""Pydantic request/response schemas for the Radar API."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, field_validator


# ---------------------------------------------------------------------------
# Assessments
# ---------------------------------------------------------------------------


class AxisOut(BaseModel):
    label: str
    score: float


class CategoryAxisOut(BaseModel):
    category_id: str
    category_label: str
    pillar: str
    axes: list[AxisOut]


class AssessmentOut(BaseModel):
    period_id: str
    year: int
    quarter: int
    submitted_at: datetime | None = None
    categories: list[CategoryAxisOut] = []


class PeriodOut(BaseModel):
    id: str
    year: int
    quarter: int
    submitted_at: datetime | None = None


class CompanyOut(BaseModel):
    id: str
    name: str
    periods: list[PeriodOut] = []


class CompanyOverviewOut(BaseModel):
    with_assessments: list[CompanyOut]
    without_assessments: list[CompanyOut]


class QuestionOut(BaseModel):
    id: str
    category_id: str
    category_label: str
    pillar: str
    prompt: str
    sequence: int


class AssessmentSubmit(BaseModel):
    year: int
    quarter: int
    # Scores are checked by the service layer so every bad value gets the same message.
    answers: dict[str, Any]


class PriorScoresOut(BaseModel):
    scores: dict[str, int] | None
    defaults: dict[str, int]


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


class ImportRequest(BaseModel):
    company_name: str
    year: int
    quarter: int
    json_data: str

    @field_validator("company_name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("company_name must not be blank")
        return v.strip()


class ImportFailure(BaseModel):
    statement: str
    reason: str
    pillar: str
    category: str


class ImportResult(BaseModel):
    company_id: str
    period_id: str
    responses_imported: int
    questions_created: int
    statements_processed: int
    overwritten: bool
    failures: list[ImportFailure] = []
    message: str = ""


# ---------------------------------------------------------------------------
# Monthly reports & quarterly review
# ---------------------------------------------------------------------------


class MonthlyReportIn(BaseModel):
    year: int
    month: int
    team: str | None = None
    product: str | None = None
    sales: str | None = None
    marketing: str | None = None
    finance: str | None = None
    fundraise: str | None = None


class MonthlyReportOut(MonthlyReportIn):
    id: str
    company_id: str


class Insight(BaseModel):
    title: str
    description: str
    type: str = ""  # improvement | decline | shift | correlation
    category: str = ""
    pillar: str = ""
    change: float | None = None
    current_score: float | None = None
    previous_score: float | None = None


class QuarterlyReviewOut(BaseModel):
    executive_summary: str
    insights: list[Insight] = []
    recommendations: list[str] = []


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class PortalUserCreate(BaseModel):
    full_name: str
    company_name: str | None = None
    email: str | None = None


class UserOut(BaseModel):
    id: str
    auth_user_id: str
    full_name: str
    email: str = ""
    company_id: str | None = None
    company_name: str | None = None
    role: str
    admin_requested_at: datetime | None = None
