"""Admin command line: imports, question bank seeding and data maintenance."""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from radar import services
from radar.db import init_db, session_scope
from radar.importer import ImportRejected, find_interrupted_periods, import_assessment
from radar.validation import InvalidInput

# ---------------------------------------------------------------------------
# Terminal formatting
# ---------------------------------------------------------------------------

_USE_COLOR = sys.stdout.isatty() and not os.environ.get("NO_COLOR")


def _green(t: str) -> str: return f"\033[32m{t}\033[0m" if _USE_COLOR else t
def _red(t: str) -> str: return f"\033[31m{t}\033[0m" if _USE_COLOR else t
def _yellow(t: str) -> str: return f"\033[33m{t}\033[0m" if _USE_COLOR else t


OK = _green("OK")
FAIL = _red("FAIL")
WARN = _yellow("WARN")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_import(args: argparse.Namespace) -> int:
    payload = Path(args.file).read_text(encoding="utf-8")
    with session_scope() as session:
        try:
            result = import_assessment(session, args.company, args.year, args.quarter, payload)
        except ImportRejected as exc:
            print(f"  {FAIL} {exc}")
            return 1
        except (InvalidInput, services.CompanyLookupError) as exc:
            print(f"  {FAIL} {exc}")
            return 2
    print(f"  {OK} {result.message}")
    for f in result.failures:
        print(f"  {WARN} {f.pillar} > {f.category}: {f.reason} ({f.statement[:60]})")
    return 0


def cmd_seed_questions(args: argparse.Namespace) -> int:
    bank = json.loads(Path(args.file).read_text(encoding="utf-8"))
    with session_scope() as session:
        counts = services.seed_question_bank(session, bank)
    print(f"  {OK} {counts['categories']} categories, {counts['questions']} questions synced")
    return 0


def cmd_clean_company_names(args: argparse.Namespace) -> int:
    with session_scope() as session:
        changes = services.clean_company_names(session, dry_run=args.dry_run)
    for c in changes:
        print(f"  {c['old']!r} -> {c['new']!r}")
    verb = "would change" if args.dry_run else "changed"
    print(f"  {OK} {len(changes)} names {verb}")
    return 0


def cmd_grant_admin(args: argparse.Namespace) -> int:
    with session_scope() as session:
        count = services.grant_admin(session, args.auth_user_id)
    if not count:
        print(f"  {FAIL} No portal user with auth id {args.auth_user_id}")
        return 1
    print(f"  {OK} Admin granted to {args.auth_user_id}")
    return 0


def cmd_interrupted(args: argparse.Namespace) -> int:
    with session_scope() as session:
        periods = find_interrupted_periods(session)
        for p in periods:
            print(f"  {WARN} {p.company.name} Q{p.quarter} {p.year} ({p.id}) has no responses")
            if args.delete:
                session.delete(p)
        if args.delete and periods:
            session.commit()
    print(f"  {OK} {len(periods)} interrupted imports{' deleted' if args.delete and periods else ''}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="radar-admin", description=__doc__)
    parser.add_argument("--database-url", help="Overrides RADAR_DATABASE_URL")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("import", help="Import one quarter from a JSON file")
    p.add_argument("file")
    p.add_argument("--company", required=True)
    p.add_argument("--year", required=True, type=int)
    p.add_argument("--quarter", required=True, type=int)
    p.set_defaults(func=cmd_import)

    p = sub.add_parser("seed-questions", help="Sync the standard question bank from a JSON file")
    p.add_argument("file")
    p.set_defaults(func=cmd_seed_questions)

    p = sub.add_parser("clean-company-names", help="Strip emoji and symbols from company names")
    p.add_argument("--dry-run", action="store_true")
    p.set_defaults(func=cmd_clean_company_names)

    p = sub.add_parser("grant-admin", help="Give a portal user admin access")
    p.add_argument("auth_user_id")
    p.set_defaults(func=cmd_grant_admin)

    p = sub.add_parser("interrupted", help="List periods left empty by an interrupted import")
    p.add_argument("--delete", action="store_true")
    p.set_defaults(func=cmd_interrupted)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    init_db(args.database_url)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
