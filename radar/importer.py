"""Import historical assessments from spreadsheet-derived JSON.

The payload is a three-level mapping::

    {"<pillar>": {"<category label>": [{"statement": "...", "score": 4}, ...]}}

Statements are matched to the company's questions by normalized text; unknown
statements become new company-specific questions. Importing into a quarter
that already has an assessment replaces it.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from radar.models import AssessmentPeriod, AssessmentResponse
from radar.resolver import QuestionResolver, resolve_category
from radar.schemas import ImportFailure, ImportResult
from radar.services import find_company_by_name
from radar.validation import MAX_IMPORT_BYTES, InvalidInput, coerce_import_score, validate_period

log = logging.getLogger(__name__)

_PREVIEW = 60
_MAX_INT_DIGITS = 300


class ImportRejected(ValueError):
    """Nothing in the payload could be turned into a response."""

    def __init__(self, message: str, failures: list[ImportFailure]):
        super().__init__(message)
        self.failures = failures


# ---------------------------------------------------------------------------
# Item parsing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StatementScore:
    statement: str
    score: int


@dataclass(frozen=True)
class Malformed:
    label: str
    reason: str


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    return "object"


def parse_item(item: Any, position: int) -> StatementScore | Malformed:
    """Turn one raw list entry into a statement/score pair or a failure tag.

    *position* is 1-based and only used to label failures.
    """
    if not isinstance(item, dict) or "statement" not in item:
        return Malformed(
            f"Item #{position}",
            "Invalid item structure (not an object or missing 'statement' field)",
        )
    statement = item["statement"]
    if not isinstance(statement, str) or not statement:
        return Malformed(f"Item #{position}", "Statement is missing or not a string")
    return StatementScore(statement, coerce_import_score(item.get("score")))


def _preview(text: str, limit: int = _PREVIEW) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def rejection_message(total: int, failures: list[ImportFailure]) -> str:
    lines = [
        "No valid responses found. Check that statement text matches the question bank.",
        "",
        f"Total statements processed: {total}",
        f"Failed statements: {len(failures)}",
    ]
    if failures:
        lines += ["", "First few failures:"]
        for i, f in enumerate(failures[:5], 1):
            lines.append(f"{i}. {f.pillar} > {f.category}: {f.reason}")
            lines.append(f'   "{_preview(f.statement)}"')
        if len(failures) > 5:
            lines += ["", f"... and {len(failures) - 5} more"]
    return "\n".join(lines)


def _summary_message(
    company: str, year: int, quarter: int, responses: int, processed: int,
    created: list[str], overwritten: bool,
) -> str:
    verb = "Overwritten" if overwritten else "Imported"
    lines = [f"{verb} {responses} responses for {company} Q{quarter} {year}.", "", f"Processed: {processed} statements"]
    if created:
        lines.append(f"Created: {len(created)} new company-specific question(s)")
        shown = created if len(created) <= 5 else created[:3]
        lines += [f'  - "{_preview(q, 80)}"' for q in shown]
        if len(created) > 5:
            lines.append(f"  ... and {len(created) - 3} more")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


def _parse_int(literal: str) -> int | float:
    # Literals past the int conversion limit become floats and score 0.
    return float(literal) if len(literal) > _MAX_INT_DIGITS else int(literal)


def _decode(json_payload: str | bytes) -> dict:
    if len(json_payload) > MAX_IMPORT_BYTES:
        raise InvalidInput(
            "JSON payload exceeds maximum size limit (10MB). Please reduce the size and try again."
        )
    try:
        data = json.loads(json_payload, parse_int=_parse_int)
    except ValueError as exc:
        raise InvalidInput("Invalid JSON. Please check your paste.") from exc
    if not isinstance(data, dict):
        raise InvalidInput(f"Import data must be an object keyed by pillar, got {_type_name(data)}.")
    return data


def import_assessment(
    session: Session, company_name: str, year: Any, quarter: Any, json_payload: str | bytes,
) -> ImportResult:
    """Validate, resolve and persist one quarter of imported scores.

    Raises ``CompanyLookupError``, ``InvalidInput`` or :class:`ImportRejected`
    before touching existing assessment data. Categories and questions
    created while resolving are kept even when the import is rejected.
    """
    company = find_company_by_name(session, company_name)
    year, quarter = validate_period(year, quarter)
    data = _decode(json_payload)

    questions = QuestionResolver(session, company.id)
    category_cache: dict[tuple[str, str], str] = {}
    responses: list[tuple[str, int]] = []
    failures: list[ImportFailure] = []
    processed = 0

    def fail(statement: str, reason: str, pillar: str, category: str) -> None:
        log.warning("Import %s: %s > %s: %s (%s)", company.name, pillar, category, reason, _preview(statement))
        failures.append(ImportFailure(statement=statement, reason=reason, pillar=pillar, category=category))

    for pillar, categories in data.items():
        if not isinstance(categories, dict):
            fail(f"Pillar: {pillar}", f"Expected object, got {_type_name(categories)}", pillar, "")
            continue
        for label, items in categories.items():
            if not isinstance(items, list):
                fail(f"Category: {label}", f"Expected array, got {_type_name(items)}", pillar, label)
                continue
            category_id = resolve_category(session, pillar, label, category_cache)
            if category_id is None:
                fail(f"Category: {label}", "Failed to get or create category", pillar, label)
                continue

            for idx, item in enumerate(items):
                processed += 1
                parsed = parse_item(item, idx + 1)
                if isinstance(parsed, Malformed):
                    fail(parsed.label, parsed.reason, pillar, label)
                    continue
                question_id = questions.resolve(category_id, parsed.statement, idx + 1)
                if question_id is None:
                    fail(parsed.statement, "Failed to get or create question in database", pillar, label)
                    continue
                responses.append((question_id, parsed.score))

    if not responses:
        raise ImportRejected(rejection_message(processed, failures), failures)

    # Each step commits separately; a period left without responses marks an
    # interrupted run and is replaced by the next import of the same quarter.
    existing = session.execute(
        select(AssessmentPeriod).where(
            AssessmentPeriod.company_id == company.id,
            AssessmentPeriod.year == year,
            AssessmentPeriod.quarter == quarter,
        )
    ).scalars().first()
    overwritten = existing is not None
    if existing is not None:
        session.delete(existing)
        session.commit()

    period = AssessmentPeriod(company_id=company.id, year=year, quarter=quarter)
    session.add(period)
    session.commit()

    session.add_all([
        AssessmentResponse(assessment_period_id=period.id, question_id=qid, score=score)
        for qid, score in responses
    ])
    session.commit()

    log.info(
        "Imported %d responses for %s Q%d %d (%d statements, %d new questions, %d failures%s)",
        len(responses), company.name, quarter, year, processed, len(questions.created),
        len(failures), ", overwritten" if overwritten else "",
    )
    return ImportResult(
        company_id=company.id,
        period_id=period.id,
        responses_imported=len(responses),
        questions_created=len(questions.created),
        statements_processed=processed,
        overwritten=overwritten,
        failures=failures,
        message=_summary_message(
            company.name, year, quarter, len(responses), processed, questions.created, overwritten,
        ),
    )


def find_interrupted_periods(session: Session) -> list[AssessmentPeriod]:
    """Periods without any responses, left behind by an import that stopped midway.

    Imports never set ``submitted_by``, so empty manual submissions are not listed.
    """
    has_responses = exists().where(AssessmentResponse.assessment_period_id == AssessmentPeriod.id)
    return list(session.execute(
        select(AssessmentPeriod).where(~has_responses, AssessmentPeriod.submitted_by.is_(None))
        .order_by(AssessmentPeriod.year, AssessmentPeriod.quarter)
    ).scalars().all())
