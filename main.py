#!/usr/bin/env python3
"""
InsightShield -- command-line administration and report access.

Usage:
  python main.py users set-password superuser@insightshield.com
  python main.py users list
  python main.py instances list
  python main.py instances create "Prod Environment" --description "Production estate"
  python main.py runs list --instance 1
  python main.py report cve-summary --instance 1 --run 3
  python main.py report risk-summary --instance 1 --run 3 --format csv > risk.csv
  python main.py report instance-insights --instance 1 --format json
  python main.py sheet-name encode "CVE Summary"
  python main.py sheet-name decode Q1ZFIFN1bW1hcnk

Environment variables (see core/config.py):
  DATABASE_URL, AUTH_DATABASE_URL  Storage location (SQLite files by default)
  SECRET_KEY or DEBUG=true         Required to load settings
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings
from core.formatter import disable_color, print_report, to_csv, to_json
from core.models import ResultStatus, Scope
from core.roles import derive_role
from core.sheets import decode_sheet_name, encode_sheet_name
from reports.catalog import CATALOG, COMPUTED_VIEWS
from reports.models import Instance
from reports.store import ReportStore
from reports.views import UnknownReport, load_view

_MIN_PASSWORD = 8


def _user_store() -> UserStore:
    url = get_settings().auth_database_url
    return UserStore(url) if url else UserStore()


def _report_store() -> ReportStore:
    url = get_settings().database_url
    return ReportStore(url) if url else ReportStore()


# ---------------------------------------------------------------------------
# users
# ---------------------------------------------------------------------------


def cmd_users_set_password(args: argparse.Namespace) -> int:
    """Create or reset the account for one of the allow-listed principals."""
    allowed = get_settings().allowed_users
    if derive_role(args.email, allowed) is None:
        print(f"  [!] {args.email} is not an authorized principal. Allowed: {', '.join(allowed)}")
        return 1
    password = args.password or getpass.getpass("  New password: ")
    if len(password) < _MIN_PASSWORD or len(password) > 72:
        print(f"  [!] Password must be {_MIN_PASSWORD}-72 characters.")
        return 1
    if not args.password and getpass.getpass("  Confirm password: ") != password:
        print("  [!] Passwords do not match.")
        return 1
    store = _user_store()
    try:
        store.upsert_password(args.email, hash_password(password))
    finally:
        store.close()
    print(f"  Password set for {args.email}.")
    return 0


def cmd_users_list(args: argparse.Namespace) -> int:
    allowed = get_settings().allowed_users
    store = _user_store()
    try:
        for email in allowed:
            user = store.get_by_email(email)
            role = derive_role(email, allowed)
            status = "no account" if user is None else ("active" if user.is_active else "disabled")
            last = user.last_login if user and user.last_login else "never"
            print(f"  {email:<40} {role.value:<12} {status:<12} last login: {last}")
    finally:
        store.close()
    return 0


# ---------------------------------------------------------------------------
# instances / runs
# ---------------------------------------------------------------------------


def cmd_instances_list(args: argparse.Namespace) -> int:
    store = _report_store()
    try:
        instances = store.list_instances()
        if not instances:
            print("  No instances.")
        for instance in instances:
            print(f"  {instance.id:>4}  {instance.name:<30} {instance.status:<8} {instance.created_at[:10]}")
    finally:
        store.close()
    return 0


def cmd_instances_create(args: argparse.Namespace) -> int:
    name = args.name.strip()
    if not name:
        print("  [!] Instance name is required.")
        return 1
    store = _report_store()
    try:
        instance_id = store.create_instance(Instance(name=name, description=args.description, created_by="cli"))
    finally:
        store.close()
    print(f"  Created instance {instance_id} ({name}).")
    return 0


def cmd_runs_list(args: argparse.Namespace) -> int:
    store = _report_store()
    try:
        if store.get_instance(args.instance) is None:
            print(f"  [!] Instance {args.instance} not found.")
            return 1
        runs = store.list_runs(args.instance)
        if not runs:
            print("  No runs.")
        for run in runs:
            print(
                f"  {run.id:>4}  #{run.run_number:<4} {run.status:<10} "
                f"{run.scan_date or '':<12} {run.source_filename or ''}"
            )
    finally:
        store.close()
    return 0


# ---------------------------------------------------------------------------
# report
# ---------------------------------------------------------------------------


def cmd_report(args: argparse.Namespace) -> int:
    if args.no_color:
        disable_color()
    store = _report_store()
    try:
        result = load_view(store, args.slug, Scope(args.instance, args.run), args.page)
    except UnknownReport:
        print(f"  [!] Unknown report '{args.slug}'. Available: {', '.join([*CATALOG, *COMPUTED_VIEWS])}")
        return 1
    finally:
        store.close()

    if result.status is ResultStatus.no_scope:
        print("  [!] Instance/run not found, or the run does not belong to the instance.")
        return 1
    if result.status is ResultStatus.error:
        print(f"  [!] {result.error}")
        return 1

    payload = result.data
    if args.format == "json":
        print(to_json(payload))
    elif args.format == "csv":
        if "rows" not in payload:
            print(f"  [!] {args.slug} has no tabular rows; use --format json.")
            return 1
        sys.stdout.write(to_csv(payload["rows"]))
    elif "rows" in payload:
        print_report(payload.get("title", args.slug), payload)
    else:
        print(to_json(payload))
    return 0


# ---------------------------------------------------------------------------
# sheet-name
# ---------------------------------------------------------------------------


def cmd_sheet_name(args: argparse.Namespace) -> int:
    if args.action == "encode":
        print(encode_sheet_name(args.value))
        return 0
    try:
        print(decode_sheet_name(args.value))
    except ValueError as e:
        print(f"  [!] {e}")
        return 1
    return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="insightshield",
        description="InsightShield administration and report access.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    users = sub.add_parser("users", help="Manage the allow-listed accounts")
    users_sub = users.add_subparsers(dest="action", metavar="ACTION")
    set_pw = users_sub.add_parser("set-password", help="Create or reset an account password")
    set_pw.add_argument("email")
    set_pw.add_argument("--password", help="Password (prompted for when omitted)")
    set_pw.set_defaults(func=cmd_users_set_password)
    users_sub.add_parser("list", help="List principals and account status").set_defaults(func=cmd_users_list)

    instances = sub.add_parser("instances", help="List or create instances")
    instances_sub = instances.add_subparsers(dest="action", metavar="ACTION")
    instances_sub.add_parser("list", help="List instances").set_defaults(func=cmd_instances_list)
    create = instances_sub.add_parser("create", help="Create an instance")
    create.add_argument("name")
    create.add_argument("--description", default="")
    create.set_defaults(func=cmd_instances_create)

    runs = sub.add_parser("runs", help="List runs of an instance")
    runs_sub = runs.add_subparsers(dest="action", metavar="ACTION")
    runs_list = runs_sub.add_parser("list", help="List runs, oldest first")
    runs_list.add_argument("--instance", type=int, required=True)
    runs_list.set_defaults(func=cmd_runs_list)

    report = sub.add_parser("report", help="Print a report for an instance/run")
    report.add_argument("slug", help="Report slug, e.g. cve-summary or instance-insights")
    report.add_argument("--instance", type=int, required=True)
    report.add_argument("--run", type=int, default=None, help="Run id (not needed for instance-wide views)")
    report.add_argument("--page", type=int, default=1)
    report.add_argument(
        "--format",
        choices=["terminal", "json", "csv"],
        default="terminal",
        metavar="FORMAT",
        help="Output format: terminal (default), json, or csv",
    )
    report.add_argument("--no-color", action="store_true", help="Disable ANSI color codes")
    report.set_defaults(func=cmd_report)

    sheet = sub.add_parser("sheet-name", help="Encode/decode a worksheet name for download URLs")
    sheet.add_argument("action", choices=["encode", "decode"])
    sheet.add_argument("value")
    sheet.set_defaults(func=cmd_sheet_name)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
