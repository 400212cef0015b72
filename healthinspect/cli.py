"""
Interactive CLI for HealthInspect.
Log in and browse facilities, inspections and reports within your role's scope.
"""

from getpass import getpass

import pandas as pd

from healthinspect import repository
from healthinspect.analysis import (
    compute_dashboard_stats,
    facilities_frame,
    find_compliance_issues,
    inspections_frame,
    summarize_stats,
)
from healthinspect.config import MAX_PREVIEW_ROWS
from healthinspect.database import init_engine, init_schema
from healthinspect.permissions import (
    get_role_display_name,
    get_user_permissions,
    has_permission,
    visible_sections,
)
from healthinspect.rbac import build_scope, load_user

# command -> (capability needed, help text)
COMMANDS = {
    "facilities": ("can_view_facilities", "list facilities you can see"),
    "inspections": ("can_view_inspections", "list inspections you can see"),
    "schedules": ("can_view_inspections", "list upcoming inspection schedules"),
    "dashboard": ("can_view_dashboard", "headline statistics"),
    "issues": ("can_view_reports", "facilities below the compliance threshold"),
    "users": ("can_view_users", "list portal users"),
}


def print_frame(df: pd.DataFrame) -> None:
    if df.empty:
        print("(no rows returned)")
    else:
        print(df.head(MAX_PREVIEW_ROWS).to_string(index=False))
        if len(df) > MAX_PREVIEW_ROWS:
            print(f"... {len(df) - MAX_PREVIEW_ROWS} more rows")


def run_command(engine, user, scope, command: str) -> None:
    if command == "facilities":
        print_frame(facilities_frame(repository.get_facilities(engine, scope)))
    elif command == "inspections":
        print_frame(inspections_frame(repository.get_inspections(engine, scope)))
    elif command == "schedules":
        schedules = repository.get_inspection_schedules(engine, scope)
        print_frame(pd.DataFrame(
            [(s.scheduled_date, s.scheduled_time or "", s.inspection_type, s.status, s.facility_id)
             for s in schedules],
            columns=["date", "time", "type", "status", "facility_id"],
        ))
    elif command == "dashboard":
        stats = compute_dashboard_stats(
            repository.get_facilities(engine, scope), repository.get_inspections(engine, scope)
        )
        print(f"Facilities: {stats['total_facilities']} ({summarize_stats(stats, get_user_permissions(user))})")
        print(f"Average compliance: {stats['average_compliance']}%")
        print(f"Non-compliant facilities: {stats['non_compliant_facilities']}")
        print(f"Inspections this month: {stats['inspections_this_month']}")
        print(f"Pending inspections: {stats['pending_inspections']}")
    elif command == "issues":
        print_frame(pd.DataFrame(find_compliance_issues(repository.get_facilities(engine, scope))))
    elif command == "users":
        users = repository.get_users(engine, user)
        print_frame(pd.DataFrame(
            [(u.name, u.email, get_role_display_name(u.role), u.district or "", u.is_active) for u in users],
            columns=["name", "email", "role", "district", "active"],
        ))


def main():
    print("=== HealthInspect: Facility Inspection Portal ===\n")

    engine = init_engine()
    init_schema(engine)

    # ── Login ────────────────────────────────────────────────────────
    try:
        email = input("Email (or 'quit'): ").strip()
        if not email or email.lower() in {"quit", "exit"}:
            print("Goodbye.")
            return
        password = getpass("Password: ")
    except (EOFError, KeyboardInterrupt):
        print("\nExiting.")
        return

    try:
        user = load_user(engine, email, password)
        scope = build_scope(user)
    except ValueError as e:
        print("\n[ERROR] Login failed.")
        print("Details:", e)
        return

    print(f"\n[auth] Logged in as: {user.name} ({get_role_display_name(user.role)})")
    print(f"[auth] Scope: {scope.notes}")
    print("[auth] Sections: " + (", ".join(label for _, label in visible_sections(user)) or "none"))

    allowed = {cmd: text for cmd, (flag, text) in COMMANDS.items() if has_permission(user, flag)}

    # ── REPL ─────────────────────────────────────────────────────────
    while True:
        try:
            q = input("\nCommand ('help' for a list, 'quit' to leave): ").strip().lower()
        except (EOFError, KeyboardInterrupt):
            print("\nExiting.")
            break

        if not q:
            continue
        if q in {"quit", "exit"}:
            print("Goodbye.")
            break
        if q == "help":
            for cmd, text in allowed.items():
                print(f"  {cmd:<12} {text}")
            continue
        if q not in allowed:
            print(f"[RBAC] '{q}' is not available for your role.")
            continue

        try:
            run_command(engine, user, scope, q)
        except Exception as e:
            print("\n[DB ERROR] Could not complete the command.")
            print("Details:", e)


if __name__ == "__main__":
    main()
