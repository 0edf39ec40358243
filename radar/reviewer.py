"""Quarterly review: prompt construction, LLM call and reply parsing.

The review compares a quarter's category scores with the preceding quarter
and the founders' monthly challenge notes. The LLM is asked for a fixed JSON
shape; replies that do not fit it are kept as a plain-text summary.
"""
from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Iterable

import httpx
from pydantic import ValidationError

from radar.aggregator import CategoryAxis
from radar.models import MonthlyReport
from radar.schemas import QuarterlyReviewOut

log = logging.getLogger(__name__)

AZURE_API_VERSION = "2024-02-15-preview"
_TIMEOUT = 120.0
_MAX_TOKENS = 2000
_TEMPERATURE = 0.7

MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)
CHALLENGE_AREAS = ("team", "product", "sales", "marketing", "finance", "fundraise")

_JSON_FENCE_RE = re.compile(r"```json\n(.*?)\n```", re.DOTALL)
_BARE_FENCE_RE = re.compile(r"```\n(.*?)\n```", re.DOTALL)


class LLMCallError(Exception):
    """LLM call failed or returned no content."""
    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


# ---------------------------------------------------------------------------
# LLM Client
# ---------------------------------------------------------------------------


class LLMClient:
    """Single-prompt async LLM client for Azure AI, OpenAI and Anthropic."""

    def __init__(
        self,
        provider: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.provider = provider or os.environ.get("LLM_PROVIDER", "azure")
        self.model = model or os.environ.get("LLM_MODEL", "")
        self._api_key = api_key
        self._base_url = base_url
        self._transport = transport
        self._client: Any = None
        self._init_client()

    def _init_client(self) -> None:
        if self.provider == "azure":
            self.model = self.model or "gpt-4o"
            self._base_url = (self._base_url or os.environ.get("AZURE_AI_ENDPOINT") or "").rstrip("/")
            self._api_key = self._api_key or os.environ.get("AZURE_AI_API_KEY")
            if not self._base_url or not self._api_key:
                raise LLMCallError(
                    "Azure AI not configured. Please set AZURE_AI_ENDPOINT and AZURE_AI_API_KEY "
                    "environment variables."
                )
        elif self.provider == "anthropic":
            import anthropic
            self.model = self.model or "claude-haiku-4-5-20251001"
            self._client = anthropic.AsyncAnthropic(
                api_key=self._api_key or os.environ.get("ANTHROPIC_API_KEY")
            )
        elif self.provider in ("openai", "openai_compatible"):
            import openai
            self.model = self.model or "gpt-4o-mini"
            kwargs: dict[str, Any] = {}
            key = self._api_key or os.environ.get("OPENAI_API_KEY")
            if key:
                kwargs["api_key"] = key
            url = self._base_url or os.environ.get("OPENAI_BASE_URL")
            if url:
                kwargs["base_url"] = url
            self._client = openai.AsyncOpenAI(**kwargs)
        else:
            raise ValueError(f"Unknown LLM provider: {self.provider!r}")

    async def _azure_complete(self, prompt: str) -> str:
        api_version = os.environ.get("AZURE_AI_API_VERSION", AZURE_API_VERSION)
        url = f"{self._base_url}/chat/completions"
        body = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": _TEMPERATURE,
            "max_tokens": _MAX_TOKENS,
        }
        async with httpx.AsyncClient(timeout=httpx.Timeout(_TIMEOUT), transport=self._transport) as client:
            resp = await client.post(
                url, params={"api-version": api_version}, json=body,
                headers={"api-key": self._api_key or "", "Content-Type": "application/json"},
            )
        if resp.status_code >= 400:
            raise LLMCallError(
                f"Azure AI API error: {resp.status_code} {resp.reason_phrase}. {resp.text}",
                retryable=resp.status_code == 429 or resp.status_code >= 500,
            )
        choices = resp.json().get("choices") or []
        if not choices:
            raise LLMCallError("Azure AI API returned no choices")
        return choices[0]["message"]["content"] or ""

    async def complete(self, prompt: str) -> str:
        """Send *prompt* as a single user message and return the reply text. No retry."""
        try:
            if self.provider == "azure":
                return await self._azure_complete(prompt)
            if self.provider == "anthropic":
                response = await self._client.messages.create(
                    model=self.model,
                    max_tokens=_MAX_TOKENS,
                    temperature=_TEMPERATURE,
                    messages=[{"role": "user", "content": prompt}],
                )
                return response.content[0].text
            response = await self._client.chat.completions.create(
                model=self.model,
                max_tokens=_MAX_TOKENS,
                temperature=_TEMPERATURE,
                messages=[{"role": "user", "content": prompt}],
            )
            if not response.choices:
                raise LLMCallError("LLM returned no choices")
            return response.choices[0].message.content or ""
        except LLMCallError:
            raise
        except Exception as exc:
            raise LLMCallError(f"LLM API call failed: {exc}", retryable=True) from exc


# ---------------------------------------------------------------------------
# Prompt data
# ---------------------------------------------------------------------------


def format_assessment_data(axes: Iterable[CategoryAxis]) -> dict[str, dict[str, float]]:
    """``{pillar: {category label: score}}`` from aggregated chart points."""
    by_pillar: dict[str, dict[str, float]] = {}
    for axis in axes:
        by_pillar.setdefault(axis.pillar, {})[axis.category_label] = axis.score
    return by_pillar


def format_monthly_reports(reports: Iterable[MonthlyReport]) -> list[dict]:
    return [
        {
            "month": MONTH_NAMES[r.month - 1],
            "challenges": {area: getattr(r, f"challenge_{area}") for area in CHALLENGE_AREAS},
        }
        for r in reports
    ]


REVIEW_PROMPT = """\
You are an expert portfolio analyst reviewing quarterly assessment data for venture-backed startups. \
Analyze the following data and provide insights.

## COMPANY CONTEXT
Company: {company}
Current Quarter: Q{cur_q} {cur_y}
Previous Quarter: Q{prev_q} {prev_y}

## ASSESSMENT DATA

### Current Quarter (Q{cur_q} {cur_y})
{current}

### Previous Quarter (Q{prev_q} {prev_y})
{previous}

## MONTHLY REPORTS (Latest Quarter)
{reports}

## ANALYSIS REQUIREMENTS

1. **Pattern Detection**: Identify meaningful changes (>1.0 point difference) between quarters
   - Flag categories that moved from weak (<2.5) to strong (>3.5)
   - Flag categories that dropped from strong (>3.5) to weak (<2.5)
   - Identify any category changes >1.0 points

2. **Leadership Shift Detection**:
   - Compare "Product leadership" vs "Market leadership" scores within "BUSINESS CONCEPT & MARKET" pillar
   - If one was stronger than the other in previous quarter and this has reversed, flag this as a significant shift
   - Note the magnitude of the shift

3. **Correlation Analysis**:
   - Compare assessment score changes with monthly report challenges
   - If a category score decreased and that area appears in monthly challenges, highlight the correlation
   - If a category score increased despite challenges mentioned, note this as positive resilience

4. **Narrative Generation**:
   - Write a 2-3 sentence executive summary highlighting the most significant changes
   - Generate 3-5 key insights (each 1-2 sentences) focusing on:
     * Meaningful score changes (>1.0 points)
     * Leadership shifts (Product vs Market)
     * Correlations between assessment scores and monthly challenges
     * Areas of concern or strength

5. **Recommendations**:
   - Provide 2-3 very short, actionable recommendations (one sentence each)
   - Focus on addressing identified gaps or reinforcing strengths

## OUTPUT FORMAT

Provide your analysis in the following JSON structure:

{{
  "executive_summary": "2-3 sentence summary here",
  "insights": [
    {{
      "title": "Short insight title",
      "description": "1-2 sentence description",
      "type": "improvement|decline|shift|correlation",
      "category": "Category name",
      "pillar": "Pillar name",
      "change": 1.5,
      "current_score": 4.0,
      "previous_score": 2.5
    }}
  ],
  "recommendations": [
    "Short actionable recommendation 1",
    "Short actionable recommendation 2"
  ]
}}

Be concise, data-driven, and focus on actionable insights. Prioritize insights that show meaningful \
changes (>1.0 points) or interesting patterns."""


def build_review_prompt(
    company_name: str,
    current_period: tuple[int, int],
    previous_period: tuple[int, int],
    current_axes: Iterable[CategoryAxis],
    previous_axes: Iterable[CategoryAxis],
    monthly_reports: Iterable[MonthlyReport],
) -> str:
    """Fill the review template; periods are ``(year, quarter)`` pairs."""
    cur_y, cur_q = current_period
    prev_y, prev_q = previous_period
    return REVIEW_PROMPT.format(
        company=company_name,
        cur_y=cur_y, cur_q=cur_q, prev_y=prev_y, prev_q=prev_q,
        current=json.dumps(format_assessment_data(current_axes), indent=2, ensure_ascii=False),
        previous=json.dumps(format_assessment_data(previous_axes), indent=2, ensure_ascii=False),
        reports=json.dumps(format_monthly_reports(monthly_reports), indent=2, ensure_ascii=False),
    )


# ---------------------------------------------------------------------------
# Reply parsing
# ---------------------------------------------------------------------------


def parse_review_response(raw_text: str) -> QuarterlyReviewOut:
    """Parse the LLM reply; anything unparseable becomes the executive summary."""
    m = _JSON_FENCE_RE.search(raw_text) or _BARE_FENCE_RE.search(raw_text)
    text = m.group(1) if m else raw_text
    try:
        return QuarterlyReviewOut.model_validate(json.loads(text))
    except (json.JSONDecodeError, ValidationError) as exc:
        log.warning("Review reply is not the expected JSON, keeping raw text: %s", exc)
        return QuarterlyReviewOut(executive_summary=raw_text, insights=[], recommendations=[])
