"""
Role-Based Access Control – loading the signed-in user and building their scope.
"""

from typing import Optional

from sqlalchemy import text
from werkzeug.security import check_password_hash

from healthinspect.models import INSPECTOR_ROLES, Scope, User
from healthinspect.permissions import get_role_display_name, get_user_permissions, parse_role
from healthinspect.repository import user_from_row


def load_user(engine, email: str, password: str) -> User:
    """Authenticate by email and password and return the active User."""
    sql = text("""
        SELECT id, email, phone, name, role, district, password_hash, is_active, created_at
        FROM users
        WHERE lower(email) = :e
    """)
    with engine.connect() as conn:
        row = conn.execute(sql, {"e": email.strip().lower()}).mappings().first()

    if not row or not check_password_hash(row["password_hash"], password):
        raise ValueError("Invalid email or password.")

    if not row["is_active"]:
        raise ValueError("Your account has been suspended. Please contact administrator.")

    return user_from_row(row)


def load_user_by_id(engine, user_id: str) -> Optional[User]:
    """Re-read a user by id (used to pick up suspensions and role changes)."""
    sql = text("""
        SELECT id, email, phone, name, role, district, is_active, created_at
        FROM users
        WHERE id = :id
    """)
    with engine.connect() as conn:
        row = conn.execute(sql, {"id": user_id}).mappings().first()
    return user_from_row(row) if row else None


def build_scope(user: User) -> Scope:
    """Derive the row-level Scope used to filter every list query."""
    permissions = get_user_permissions(user)
    role = parse_role(user.role)
    types = ", ".join(sorted(t.value for t in permissions.facility_types)) or "none"

    if role is None:
        return Scope(
            facility_types=frozenset(),
            district=None,
            inspector_id=None,
            notes=f"Unrecognised role '{user.role}': no facilities or inspections are visible.",
        )

    district = None
    if not permissions.can_view_all_districts:
        if not user.district:
            raise ValueError(
                f"{get_role_display_name(role)} user must have a district set in users."
            )
        district = user.district.strip().lower()

    inspector_id = user.id if role in INSPECTOR_ROLES else None

    notes = f"{get_role_display_name(role)}: facility types [{types}]"
    notes += f", district '{district}' only" if district else ", all districts"
    if inspector_id:
        notes += ", own inspections and assigned schedules only"
    return Scope(
        facility_types=permissions.facility_types,
        district=district,
        inspector_id=inspector_id,
        notes=notes + ".",
    )
