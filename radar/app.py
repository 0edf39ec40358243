from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Generator

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from radar import services
from radar.comparator import form_defaults, get_prior_scores
from radar.db import get_session, init_db
from radar.importer import ImportRejected, import_assessment
from radar.models import Company, User
from radar.ratelimit import RateLimiter, client_key
from radar.reviewer import LLMCallError
from radar.schemas import (
    AssessmentOut,
    AssessmentSubmit,
    CompanyOverviewOut,
    ImportRequest,
    ImportResult,
    MonthlyReportIn,
    MonthlyReportOut,
    PortalUserCreate,
    PriorScoresOut,
    QuarterlyReviewOut,
    QuestionOut,
    UserOut,
)
from radar.validation import InvalidInput, validate_period

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


def enforce_rate_limit(request: Request) -> None:
    limiter: RateLimiter = request.app.state.rate_limiter
    key = client_key(
        request.headers.get("x-forwarded-for"),
        request.headers.get("x-real-ip"),
        request.client.host if request.client else None,
    )
    if not limiter.check(key):
        raise HTTPException(429, "Too many requests. Please slow down.")


app = FastAPI(
    title="Radar",
    version="0.1.0",
    description=(
        "Quarterly self-assessment API for portfolio companies. Founders submit "
        "Likert-scale assessments; admins review radar charts across quarters, "
        "import historical data and request AI-generated quarterly reviews. "
        "Callers are identified by the X-Auth-User-Id header set by the identity provider."
    ),
    lifespan=lifespan,
    dependencies=[Depends(enforce_rate_limit)],
    openapi_tags=[
        {"name": "Profile", "description": "The signed-in user's portal profile."},
        {"name": "Assessments", "description": "Submit and view quarterly self-assessments."},
        {"name": "Admin", "description": "Portfolio overview and assessment management. Admins only."},
        {"name": "Import", "description": "Import historical assessments from JSON. Admins only."},
        {"name": "Reviews", "description": "Monthly reports and LLM quarterly reviews. Admins only."},
        {"name": "Users", "description": "Admin access management. Admins only."},
    ],
)
app.state.rate_limiter = RateLimiter()


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


@app.exception_handler(InvalidInput)
async def _invalid_input(request: Request, exc: InvalidInput):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(services.CompanyLookupError)
async def _company_lookup(request: Request, exc: services.CompanyLookupError):
    return JSONResponse(status_code=409 if exc.ambiguous else 404, content={"detail": str(exc)})


@app.exception_handler(services.DuplicatePeriod)
async def _duplicate_period(request: Request, exc: services.DuplicatePeriod):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(services.PeriodNotFound)
async def _period_not_found(request: Request, exc: services.PeriodNotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ImportRejected)
async def _import_rejected(request: Request, exc: ImportRejected):
    return JSONResponse(status_code=422, content={
        "detail": str(exc), "failures": [f.model_dump() for f in exc.failures],
    })


@app.exception_handler(LLMCallError)
async def _llm_failed(request: Request, exc: LLMCallError):
    log.warning("Quarterly review failed: %s", exc)
    return JSONResponse(status_code=502, content={"detail": str(exc), "retryable": exc.retryable})


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def auth_user_id(x_auth_user_id: str | None = Header(None)) -> str:
    if not x_auth_user_id:
        raise HTTPException(401, "Not authenticated")
    return x_auth_user_id


def current_user(
    auth_id: str = Depends(auth_user_id), session: Session = Depends(db_session),
) -> User:
    user = services.find_portal_user(session, auth_id)
    if user is None:
        raise HTTPException(403, "No portal profile. Create one with POST /api/me.")
    return user


def require_admin(user: User = Depends(current_user)) -> User:
    if user.role != services.ADMIN_ROLE:
        raise HTTPException(403, "Not authorized. Admin access required.")
    return user


def _company_or_404(session: Session, company_id: str) -> Company:
    company = services.get_company(session, company_id)
    if company is None:
        raise HTTPException(404, "Company not found")
    return company


def _own_company(user: User) -> str:
    if not user.company_id:
        raise HTTPException(400, "Your profile is missing a company assignment. Please contact support.")
    return user.company_id


# ---------------------------------------------------------------------------
# Routes: Profile
# ---------------------------------------------------------------------------


@app.post("/api/me", response_model=UserOut, tags=["Profile"],
          summary="Get or create the caller's portal profile")
async def create_profile(
    body: PortalUserCreate, auth_id: str = Depends(auth_user_id), session: Session = Depends(db_session),
):
    user = services.get_or_create_portal_user(
        session, auth_id, full_name=body.full_name, company_name=body.company_name, email=body.email,
    )
    return services.user_summary(user)


@app.get("/api/me", response_model=UserOut, tags=["Profile"], summary="The caller's portal profile")
async def get_profile(user: User = Depends(current_user)):
    return services.user_summary(user)


@app.post("/api/me/admin-request", response_model=UserOut, tags=["Profile"],
          summary="Ask an existing admin for admin access")
async def request_admin(user: User = Depends(current_user), session: Session = Depends(db_session)):
    return services.user_summary(services.request_admin_access(session, user.auth_user_id))


# ---------------------------------------------------------------------------
# Routes: Assessments (founder)
# ---------------------------------------------------------------------------


@app.get("/api/questions", response_model=list[QuestionOut], tags=["Assessments"],
         summary="Questions the caller's company answers, in form order")
async def list_questions(user: User = Depends(current_user), session: Session = Depends(db_session)):
    return services.question_list(session, _own_company(user))


@app.get("/api/assessments/prior", response_model=PriorScoresOut, tags=["Assessments"],
         summary="Prior scores and slider defaults for a new or edited assessment")
async def prior_scores(
    year: int = Query(...), quarter: int = Query(...),
    editing: bool = Query(False, description="Prefer the selected quarter itself if it exists"),
    user: User = Depends(current_user), session: Session = Depends(db_session),
):
    company_id = _own_company(user)
    period = validate_period(year, quarter)
    scores = get_prior_scores(session, company_id, period, editing=editing)
    question_ids = [q["id"] for q in services.question_list(session, company_id)]
    return {"scores": scores, "defaults": form_defaults(question_ids, scores)}


@app.post("/api/assessments", status_code=201, tags=["Assessments"],
          summary="Submit the caller's assessment for a quarter")
async def submit_assessment(
    body: AssessmentSubmit, user: User = Depends(current_user), session: Session = Depends(db_session),
):
    period = services.submit_assessment(session, user, body.year, body.quarter, body.answers)
    return {"period_id": period.id, "year": period.year, "quarter": period.quarter}


@app.get("/api/dashboard", response_model=list[AssessmentOut], tags=["Assessments"],
         summary="The caller's three most recent assessments as radar-chart data")
async def dashboard(user: User = Depends(current_user), session: Session = Depends(db_session)):
    return services.company_assessments(session, _own_company(user), limit=3)


# ---------------------------------------------------------------------------
# Routes: Admin overview
# ---------------------------------------------------------------------------


@app.get("/api/admin/companies", response_model=CompanyOverviewOut, tags=["Admin"],
         summary="All companies, split by whether they have assessments")
async def companies_overview(_: User = Depends(require_admin), session: Session = Depends(db_session)):
    return services.company_overview(session)


@app.get("/api/admin/companies/{company_id}/assessments", response_model=list[AssessmentOut],
         tags=["Admin"], summary="A company's assessments, newest first")
async def company_assessments(
    company_id: str,
    all_periods: bool = Query(False, alias="all", description="Return every period instead of the latest three"),
    _: User = Depends(require_admin), session: Session = Depends(db_session),
):
    company = _company_or_404(session, company_id)
    return services.company_assessments(session, company.id, limit=None if all_periods else 3)


@app.get("/api/admin/assessments/{period_id}", tags=["Admin"],
         summary="One assessment with chart data and individual answers")
async def assessment_detail(period_id: str, _: User = Depends(require_admin), session: Session = Depends(db_session)):
    period = services.get_period(session, period_id)
    if period is None:
        raise HTTPException(404, "Assessment not found")
    return services.assessment_detail(session, period)


@app.delete("/api/admin/assessments/{period_id}", tags=["Admin"],
            summary="Delete an assessment and its responses")
async def delete_assessment(period_id: str, _: User = Depends(require_admin), session: Session = Depends(db_session)):
    if not services.delete_assessment(session, period_id):
        raise HTTPException(404, "Assessment not found")
    return {"ok": True}


# ---------------------------------------------------------------------------
# Routes: Import
# ---------------------------------------------------------------------------


@app.post("/api/admin/import", response_model=ImportResult, tags=["Import"],
          summary="Import (or overwrite) one quarter from pillar > category > statements JSON")
async def import_json(body: ImportRequest, _: User = Depends(require_admin), session: Session = Depends(db_session)):
    return import_assessment(session, body.company_name, body.year, body.quarter, body.json_data)


# ---------------------------------------------------------------------------
# Routes: Monthly reports & quarterly review
# ---------------------------------------------------------------------------


@app.get("/api/admin/companies/{company_id}/monthly-reports", response_model=list[MonthlyReportOut],
         tags=["Reviews"], summary="Monthly challenge reports for a quarter")
async def list_monthly_reports(
    company_id: str, year: int = Query(...), quarter: int = Query(...),
    _: User = Depends(require_admin), session: Session = Depends(db_session),
):
    company = _company_or_404(session, company_id)
    year, quarter = validate_period(year, quarter)
    reports = services.quarter_monthly_reports(session, company.id, year, quarter)
    return [services.monthly_report_summary(r) for r in reports]


@app.put("/api/admin/companies/{company_id}/monthly-reports", response_model=MonthlyReportOut,
         tags=["Reviews"], summary="Create or replace one month's challenge report")
async def put_monthly_report(
    company_id: str, body: MonthlyReportIn,
    _: User = Depends(require_admin), session: Session = Depends(db_session),
):
    company = _company_or_404(session, company_id)
    report = services.upsert_monthly_report(
        session, company.id, body.year, body.month, body.model_dump(exclude={"year", "month"}),
    )
    return services.monthly_report_summary(report)


@app.post("/api/admin/companies/{company_id}/reviews/{year}/{quarter}", response_model=QuarterlyReviewOut,
          tags=["Reviews"], summary="Cached or freshly generated LLM review of a quarter")
async def quarterly_review(
    company_id: str, year: int, quarter: int,
    _: User = Depends(require_admin), session: Session = Depends(db_session),
):
    company = _company_or_404(session, company_id)
    return await services.generate_quarterly_review(session, company.id, company.name, year, quarter)


# ---------------------------------------------------------------------------
# Routes: Users
# ---------------------------------------------------------------------------


@app.get("/api/admin/users", response_model=list[UserOut], tags=["Users"], summary="List portal users")
async def list_users(
    admins_only: bool = Query(False), _: User = Depends(require_admin), session: Session = Depends(db_session),
):
    return services.list_users(session, admins_only=admins_only)


@app.post("/api/admin/users/{target_auth_id}/grant", tags=["Users"], summary="Grant admin access")
async def grant_admin(target_auth_id: str, _: User = Depends(require_admin), session: Session = Depends(db_session)):
    if not services.grant_admin(session, target_auth_id):
        raise HTTPException(404, "User not found")
    return {"ok": True}


@app.post("/api/admin/users/{target_auth_id}/revoke", tags=["Users"], summary="Revoke admin access")
async def revoke_admin(target_auth_id: str, admin: User = Depends(require_admin), session: Session = Depends(db_session)):
    if not services.revoke_admin(session, target_auth_id, acting_auth_user_id=admin.auth_user_id):
        raise HTTPException(404, "User not found")
    return {"ok": True}


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    uvicorn.run("radar.app:app", host="127.0.0.1", port=8001, reload=True)


if __name__ == "__main__":
    main()
