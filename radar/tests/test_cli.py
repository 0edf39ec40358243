from __future__ import annotations

import json

import pytest
from sqlalchemy import func, select

from radar.cli import main
from radar.db import session_scope
from radar.models import AssessmentPeriod, Category, Company, Question


@pytest.fixture()
def db_url(tmp_path):
    url = f"sqlite:///{tmp_path / 'radar.db'}"
    main(["--database-url", url, "interrupted"])
    with session_scope() as session:
        session.add(Company(name="Acme"))
        session.commit()
    return url


def _write(tmp_path, name, data) -> str:
    path = tmp_path / name
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


def test_seed_questions(db_url, tmp_path, capsys):
    bank = _write(tmp_path, "bank.json", {"Team": {"Hiring": ["We hire well", "Onboarding is smooth"]}})
    assert main(["--database-url", db_url, "seed-questions", bank]) == 0
    assert "1 categories, 2 questions synced" in capsys.readouterr().out
    with session_scope() as session:
        assert session.execute(select(func.count(Question.id))).scalar() == 2
        assert session.execute(select(Category.label)).scalar_one() == "Hiring"


def test_import(db_url, tmp_path, capsys):
    path = _write(tmp_path, "q1.json", {"Team": {"Hiring": [
        {"statement": "We hire well", "score": 4},
        {"score": 2},
    ]}})
    code = main(["--database-url", db_url, "import", path, "--company", "acme", "--year", "2024", "--quarter", "1"])
    out = capsys.readouterr().out
    assert code == 0
    assert "Imported 1 responses for Acme Q1 2024." in out
    assert "Item #2" in out


def test_import_unknown_company(db_url, tmp_path, capsys):
    path = _write(tmp_path, "q1.json", {})
    code = main(["--database-url", db_url, "import", path, "--company", "Globex", "--year", "2024", "--quarter", "1"])
    assert code == 2
    assert "Globex" in capsys.readouterr().out


def test_import_rejected(db_url, tmp_path):
    path = _write(tmp_path, "q1.json", {"Team": {"Hiring": [{"score": 2}]}})
    code = main(["--database-url", db_url, "import", path, "--company", "Acme", "--year", "2024", "--quarter", "1"])
    assert code == 1


def test_grant_admin_unknown_user(db_url, capsys):
    assert main(["--database-url", db_url, "grant-admin", "ghost"]) == 1
    assert "No portal user" in capsys.readouterr().out


def test_clean_company_names_dry_run(db_url, capsys):
    with session_scope() as session:
        session.add(Company(name="Rocket \U0001F680 Labs"))
        session.commit()
    assert main(["--database-url", db_url, "clean-company-names", "--dry-run"]) == 0
    assert "1 names would change" in capsys.readouterr().out


def test_interrupted_delete(db_url, capsys):
    with session_scope() as session:
        acme = session.execute(select(Company)).scalar_one()
        session.add(AssessmentPeriod(company_id=acme.id, year=2024, quarter=2))
        session.commit()
    assert main(["--database-url", db_url, "interrupted", "--delete"]) == 0
    assert "1 interrupted imports deleted" in capsys.readouterr().out
    with session_scope() as session:
        assert session.execute(select(func.count(AssessmentPeriod.id))).scalar() == 0
