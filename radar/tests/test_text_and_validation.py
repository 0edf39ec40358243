"""Tests for text normalization and boundary validation."""
from __future__ import annotations

import pytest

from radar.utils import clean_company_name, normalize_text
from radar.validation import (
    InvalidInput, coerce_import_score, validate_email, validate_manual_score, validate_month,
    validate_period, validate_uuid,
)


class TestNormalizeText:
    def test_empty(self):
        assert normalize_text("") == ""

    def test_case_whitespace_and_punctuation(self):
        assert normalize_text("  We   have PMF!  ") == "we have pmf"
        assert normalize_text("We have PMF.") == normalize_text("we have pmf")

    def test_quotes_removed(self):
        assert normalize_text("The team's \"vision\" is clear") == "the teams vision is clear"

    def test_all_punctuation_marks(self):
        assert normalize_text("a.b,c;d:e!f?g") == "abcdefg"

    def test_tabs_and_newlines_collapse(self):
        assert normalize_text("one\t\ttwo\nthree") == "one two three"

    def test_no_stemming(self):
        assert normalize_text("We hire engineers") != normalize_text("We hired engineers")


class TestCleanCompanyName:
    def test_falsy(self):
        assert clean_company_name(None) is None
        assert clean_company_name("") is None

    def test_strips_emoji(self):
        assert clean_company_name("Acme \U0001F680") == "Acme"
        assert clean_company_name("✨Shiny✨ Co") == "Shiny Co"

    def test_keeps_allowed_symbols(self):
        assert clean_company_name("Smith & Sons-Co. @home") == "Smith & Sons-Co. @home"

    def test_drops_other_symbols_and_collapses_space(self):
        assert clean_company_name("  Acme (Berlin)   GmbH ") == "Acme Berlin GmbH"

    def test_non_ascii_letters_removed(self):
        assert clean_company_name("Café Labs") == "Caf Labs"


class TestValidation:
    def test_uuid(self):
        assert validate_uuid("123e4567-e89b-12d3-a456-426614174000")
        with pytest.raises(InvalidInput, match="Invalid assessment ID format"):
            validate_uuid("not-a-uuid", "assessment ID")

    def test_email(self):
        assert validate_email("a@b.co") == "a@b.co"
        with pytest.raises(InvalidInput):
            validate_email("a@b")

    def test_period_ok(self):
        assert validate_period(2024, 3) == (2024, 3)
        assert validate_period("2024", "1") == (2024, 1)

    def test_quarter_checked_before_year(self):
        with pytest.raises(InvalidInput, match="Quarter must be between 1 and 4."):
            validate_period(1999, 5)

    @pytest.mark.parametrize("year", [1999, 2101, "abc", 2024.5, True])
    def test_bad_year(self, year):
        with pytest.raises(InvalidInput, match="Year must be between 2000 and 2100."):
            validate_period(year, 1)

    def test_month(self):
        assert validate_month(12) == 12
        with pytest.raises(InvalidInput):
            validate_month(13)

    @pytest.mark.parametrize("score", [1, 3, 5, "4", 2.0])
    def test_manual_score_accepts(self, score):
        assert 1 <= validate_manual_score("q", score) <= 5

    @pytest.mark.parametrize("score", [0, 6, -1, 2.5, "abc", None, True])
    def test_manual_score_rejects(self, score):
        with pytest.raises(InvalidInput, match="question q"):
            validate_manual_score("q", score)


class TestCoerceImportScore:
    @pytest.mark.parametrize("value,expected", [
        (4, 4), (0, 0), (5, 5), ("3", 3), (2.5, 3), ("3.5", 4), (1.4, 1), (" 2 ", 2),
        ("4/5", 4), ("3 out of 5", 3), (".5e1", 5),
    ])
    def test_numeric(self, value, expected):
        assert coerce_import_score(value) == expected

    @pytest.mark.parametrize("value", [
        6, -1, "abc", None, float("nan"), True, [], {}, 10**400, -(10**400), float("inf"),
        "1" * 5000, "9/5", "/4",
    ])
    def test_everything_else_is_zero(self, value):
        assert coerce_import_score(value) == 0
