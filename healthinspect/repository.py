"""
Persistence for users, facilities, inspections and schedules.

Reads take a Scope and never return rows outside it. Writes take the acting
User and re-check the capability they need, so the API layer is not the only
line of enforcement.
"""

import json
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import bindparam, text
from werkzeug.security import check_password_hash, generate_password_hash

from healthinspect.config import (
    FACILITY_TYPES,
    INSPECTION_STATUSES,
    MAX_RESULTS_RETURN,
    MIN_PASSWORD_LENGTH,
    RWANDA_DISTRICTS,
    SCHEDULE_STATUSES,
)
from healthinspect.models import (
    INSPECTOR_ROLES,
    Facility,
    Inspection,
    InspectionItem,
    InspectionSchedule,
    NotFoundError,
    Role,
    Scope,
    User,
)
from healthinspect.permissions import (
    can_access_facility,
    can_access_facility_type,
    has_permission,
    parse_role,
    require_permission,
)
from healthinspect.scoring import PHARMACY_CATEGORY, compliance_percentage, score_items

DISTRICTS = {d.lower() for d in RWANDA_DISTRICTS}

FACILITY_COLUMNS = (
    "f.id, f.name, f.type, f.district, f.address, f.phone, f.email, "
    "f.registration_number, f.assigned_inspector_id, f.last_inspection_date, "
    "f.compliance_score, f.is_active, f.created_at"
)
INSPECTION_COLUMNS = (
    "i.id, i.facility_id, i.inspector_id, i.inspector_name, i.facility_name, "
    "i.district, i.start_date, i.completed_date, i.status, i.total_score, "
    "i.max_possible_score, i.compliance_percentage, i.signature, i.notes"
)
USER_COLUMNS = "id, email, phone, name, role, district, is_active, created_at"


# ── Row helpers ──────────────────────────────────────────────────────

def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> str:
    return datetime.utcnow().isoformat(sep=" ", timespec="seconds")


def parse_timestamp(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def user_from_row(row) -> User:
    return User(
        id=str(row["id"]),
        email=str(row["email"]),
        name=str(row["name"]),
        role=str(row["role"]).strip().lower(),
        district=row["district"] or None,
        is_active=bool(row["is_active"]),
        phone=row["phone"] or None,
        created_at=parse_timestamp(row["created_at"]),
    )


def facility_from_row(row) -> Facility:
    return Facility(
        id=str(row["id"]),
        name=row["name"],
        type=row["type"],
        district=row["district"],
        address=row["address"],
        phone=row["phone"],
        registration_number=row["registration_number"],
        email=row["email"] or None,
        assigned_inspector_id=row["assigned_inspector_id"] or None,
        last_inspection_date=parse_timestamp(row["last_inspection_date"]),
        compliance_score=float(row["compliance_score"]) if row["compliance_score"] is not None else None,
        is_active=bool(row["is_active"]),
        created_at=parse_timestamp(row["created_at"]),
    )


def inspection_from_row(row, items: Optional[List[InspectionItem]] = None) -> Inspection:
    return Inspection(
        id=str(row["id"]),
        facility_id=str(row["facility_id"]),
        inspector_id=str(row["inspector_id"]),
        inspector_name=row["inspector_name"],
        facility_name=row["facility_name"],
        district=row["district"],
        start_date=parse_timestamp(row["start_date"]),
        status=row["status"],
        total_score=float(row["total_score"]),
        max_possible_score=float(row["max_possible_score"]),
        compliance_percentage=float(row["compliance_percentage"]),
        completed_date=parse_timestamp(row["completed_date"]),
        signature=row["signature"],
        notes=row["notes"],
        items=items or [],
    )


def schedule_from_row(row) -> InspectionSchedule:
    return InspectionSchedule(
        id=str(row["id"]),
        facility_id=str(row["facility_id"]),
        inspection_type=row["inspection_type"],
        scheduled_date=row["scheduled_date"],
        scheduled_time=row["scheduled_time"],
        assigned_inspectors=json.loads(row["assigned_inspectors"] or "[]"),
        status=row["status"],
        created_by=row["created_by"],
        notes=row["notes"],
    )


def _scope_clauses(scope: Scope, district_column: str):
    """WHERE fragments restricting facility type (always) and district (if set)."""
    clauses = ["f.type IN :types"]
    params: Dict[str, Any] = {"types": sorted(t.value for t in scope.facility_types)}
    if scope.district:
        clauses.append(f"lower({district_column}) = :scope_district")
        params["scope_district"] = scope.district
    return clauses, params


def _active_filter(value) -> Optional[str]:
    """Treat missing values and the UI's 'all' sentinel as no filter."""
    if value is None:
        return None
    value = str(value).strip()
    if not value or value.lower() == "all":
        return None
    return value


# ── Facilities ───────────────────────────────────────────────────────

def get_facilities(engine, scope: Scope, filters: Optional[Dict[str, Any]] = None) -> List[Facility]:
    """List facilities visible under *scope*, optionally narrowed by *filters*."""
    if not scope.facility_types:
        return []
    filters = filters or {}
    clauses, params = _scope_clauses(scope, "f.district")

    district = _active_filter(filters.get("district"))
    if district:
        clauses.append("lower(f.district) = :district")
        params["district"] = district.lower()
    ftype = _active_filter(filters.get("type"))
    if ftype:
        clauses.append("f.type = :type")
        params["type"] = ftype.lower()
    inspector = _active_filter(filters.get("assigned_inspector_id"))
    if inspector:
        clauses.append("f.assigned_inspector_id = :inspector")
        params["inspector"] = inspector
    search = _active_filter(filters.get("search"))
    if search:
        clauses.append("(lower(f.name) LIKE :search OR lower(f.registration_number) LIKE :search)")
        params["search"] = f"%{search.lower()}%"

    sql = text(
        f"SELECT {FACILITY_COLUMNS} FROM facilities f WHERE "
        + " AND ".join(clauses)
        + " ORDER BY f.name ASC LIMIT :limit"
    ).bindparams(bindparam("types", expanding=True))
    params["limit"] = MAX_RESULTS_RETURN
    with engine.connect() as conn:
        rows = conn.execute(sql, params).mappings().all()
    return [facility_from_row(r) for r in rows]


def _fetch_facility(conn, facility_id: str) -> Optional[Facility]:
    sql = text(f"SELECT {FACILITY_COLUMNS} FROM facilities f WHERE f.id = :id")
    row = conn.execute(sql, {"id": facility_id}).mappings().first()
    return facility_from_row(row) if row else None


def get_facility(engine, scope: Scope, facility_id: str) -> Facility:
    if not scope.facility_types:
        raise NotFoundError(f"Facility {facility_id} not found.")
    clauses, params = _scope_clauses(scope, "f.district")
    sql = text(
        f"SELECT {FACILITY_COLUMNS} FROM facilities f WHERE f.id = :id AND "
        + " AND ".join(clauses)
    ).bindparams(bindparam("types", expanding=True))
    params["id"] = facility_id
    with engine.connect() as conn:
        row = conn.execute(sql, params).mappings().first()
    if not row:
        raise NotFoundError(f"Facility {facility_id} not found.")
    return facility_from_row(row)


def _validate_facility(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    cleaned: Dict[str, Any] = {}
    for key in ("name", "address", "phone"):
        if key in data or not partial:
            value = str(data.get(key) or "").strip()
            if not value:
                raise ValueError(f"{key} is required")
            cleaned[key] = value

    if "type" in data or not partial:
        ftype = str(data.get("type") or "").strip().lower()
        if ftype not in FACILITY_TYPES:
            raise ValueError(f"type must be one of {', '.join(FACILITY_TYPES)}")
        cleaned["type"] = ftype

    if "district" in data or not partial:
        district = str(data.get("district") or "").strip().lower()
        if district not in DISTRICTS:
            raise ValueError(f"Unknown district '{data.get('district')}'")
        cleaned["district"] = district

    if "email" in data:
        cleaned["email"] = str(data.get("email") or "").strip() or None
    if str(data.get("registration_number") or "").strip():
        cleaned["registration_number"] = str(data["registration_number"]).strip()
    if "assigned_inspector_id" in data:
        cleaned["assigned_inspector_id"] = data["assigned_inspector_id"] or None
    if "is_active" in data:
        cleaned["is_active"] = bool(data["is_active"])
    return cleaned


def _check_assignable_inspector(conn, inspector_id: Optional[str], facility_type: str) -> None:
    if not inspector_id:
        return
    row = conn.execute(
        text(f"SELECT {USER_COLUMNS} FROM users WHERE id = :id"), {"id": inspector_id}
    ).mappings().first()
    if not row:
        raise ValueError(f"Assigned inspector {inspector_id} does not exist.")
    inspector = user_from_row(row)
    if parse_role(inspector.role) not in INSPECTOR_ROLES:
        raise ValueError(f"User {inspector.email} is not an inspector.")
    if not can_access_facility_type(inspector, facility_type):
        raise ValueError(f"Inspector {inspector.email} cannot inspect {facility_type} facilities.")


def _check_registration_free(conn, registration_number: str, facility_id: Optional[str] = None) -> None:
    row = conn.execute(
        text("SELECT id FROM facilities WHERE registration_number = :r"), {"r": registration_number}
    ).first()
    if row and row[0] != facility_id:
        raise ValueError(f"A facility with registration number {registration_number} already exists.")


def create_facility(engine, user: User, data: Dict[str, Any]) -> Facility:
    require_permission(user, "can_add_facilities")
    cleaned = _validate_facility(data)
    candidate = Facility(id="", type=cleaned["type"], district=cleaned["district"], name="",
                         address="", phone="", registration_number="")
    if not can_access_facility(user, candidate):
        raise PermissionError(
            f"Not allowed to add {cleaned['type']} facilities in {cleaned['district']}."
        )

    facility_id = _new_id()
    registration = cleaned.get("registration_number") or (
        f"{cleaned['type'].upper()}-{cleaned['district'].upper()}-{int(datetime.utcnow().timestamp() * 1000)}"
    )
    with engine.begin() as conn:
        _check_assignable_inspector(conn, cleaned.get("assigned_inspector_id"), cleaned["type"])
        _check_registration_free(conn, registration)
        conn.execute(
            text("""
                INSERT INTO facilities (id, name, type, district, address, phone, email,
                    registration_number, assigned_inspector_id, is_active, created_at)
                VALUES (:id, :name, :type, :district, :address, :phone, :email,
                    :registration_number, :assigned_inspector_id, :is_active, :created_at)
            """),
            {
                "id": facility_id,
                "name": cleaned["name"],
                "type": cleaned["type"],
                "district": cleaned["district"],
                "address": cleaned["address"],
                "phone": cleaned["phone"],
                "email": cleaned.get("email"),
                "registration_number": registration,
                "assigned_inspector_id": cleaned.get("assigned_inspector_id"),
                "is_active": cleaned.get("is_active", True),
                "created_at": _now(),
            },
        )
        facility = _fetch_facility(conn, facility_id)
    print(f"[db] Facility created: {facility_id} ({facility.type}, {facility.district})")
    return facility


def update_facility(engine, user: User, facility_id: str, data: Dict[str, Any]) -> Facility:
    require_permission(user, "can_edit_facilities")
    cleaned = _validate_facility(data, partial=True)
    if not cleaned:
        raise ValueError("No updatable fields supplied.")

    with engine.begin() as conn:
        existing = _fetch_facility(conn, facility_id)
        if existing is None or not can_access_facility(user, existing):
            raise NotFoundError(f"Facility {facility_id} not found.")

        merged = Facility(**{**existing.__dict__, **cleaned})
        if not can_access_facility(user, merged):
            raise PermissionError(
                f"Not allowed to move facility to {merged.type} in {merged.district}."
            )
        if "assigned_inspector_id" in cleaned or "type" in cleaned:
            _check_assignable_inspector(conn, merged.assigned_inspector_id, merged.type)
        if "registration_number" in cleaned:
            _check_registration_free(conn, cleaned["registration_number"], facility_id)

        assignments = ", ".join(f"{key} = :{key}" for key in cleaned)
        conn.execute(
            text(f"UPDATE facilities SET {assignments} WHERE id = :id"),
            {**cleaned, "id": facility_id},
        )
        facility = _fetch_facility(conn, facility_id)
    print(f"[db] Facility updated: {facility_id}")
    return facility


def delete_facility(engine, user: User, facility_id: str) -> None:
    require_permission(user, "can_delete_facilities")
    with engine.begin() as conn:
        existing = _fetch_facility(conn, facility_id)
        if existing is None or not can_access_facility(user, existing):
            raise NotFoundError(f"Facility {facility_id} not found.")
        conn.execute(
            text("DELETE FROM inspection_items WHERE inspection_id IN "
                 "(SELECT id FROM inspections WHERE facility_id = :id)"),
            {"id": facility_id},
        )
        conn.execute(text("DELETE FROM inspections WHERE facility_id = :id"), {"id": facility_id})
        conn.execute(text("DELETE FROM inspection_schedules WHERE facility_id = :id"), {"id": facility_id})
        conn.execute(text("DELETE FROM facilities WHERE id = :id"), {"id": facility_id})
    print(f"[db] Facility deleted: {facility_id}")


# ── Inspections ──────────────────────────────────────────────────────

def _inspection_scope(scope: Scope):
    clauses, params = _scope_clauses(scope, "i.district")
    if scope.inspector_id:
        clauses.append("i.inspector_id = :scope_inspector")
        params["scope_inspector"] = scope.inspector_id
    return clauses, params


def get_inspections(engine, scope: Scope, filters: Optional[Dict[str, Any]] = None) -> List[Inspection]:
    """List inspections (without items) visible under *scope*, newest first."""
    if not scope.facility_types:
        return []
    filters = filters or {}
    clauses, params = _inspection_scope(scope)

    for key, column in (("facility_id", "i.facility_id"), ("inspector_id", "i.inspector_id"),
                        ("status", "i.status")):
        value = _active_filter(filters.get(key))
        if value:
            clauses.append(f"{column} = :{key}")
            params[key] = value
    district = _active_filter(filters.get("district"))
    if district:
        clauses.append("lower(i.district) = :district")
        params["district"] = district.lower()
    ftype = _active_filter(filters.get("type"))
    if ftype:
        clauses.append("f.type = :type")
        params["type"] = ftype.lower()

    sql = text(
        f"SELECT {INSPECTION_COLUMNS} "
        "FROM inspections i JOIN facilities f ON f.id = i.facility_id WHERE "
        + " AND ".join(clauses)
        + " ORDER BY i.created_at DESC LIMIT :limit"
    ).bindparams(bindparam("types", expanding=True))
    params["limit"] = MAX_RESULTS_RETURN
    with engine.connect() as conn:
        rows = conn.execute(sql, params).mappings().all()
    return [inspection_from_row(r) for r in rows]


def get_inspection_by_id(engine, scope: Scope, inspection_id: str) -> Inspection:
    """Fetch one inspection with its checklist items."""
    if not scope.facility_types:
        raise NotFoundError(f"Inspection {inspection_id} not found.")
    clauses, params = _inspection_scope(scope)
    sql = text(
        f"SELECT {INSPECTION_COLUMNS} FROM inspections i "
        "JOIN facilities f ON f.id = i.facility_id WHERE i.id = :id AND "
        + " AND ".join(clauses)
    ).bindparams(bindparam("types", expanding=True))
    params["id"] = inspection_id
    items_sql = text("""
        SELECT id, question, category, max_score, response, actual_score, comments, images
        FROM inspection_items
        WHERE inspection_id = :id
        ORDER BY position ASC
    """)
    with engine.connect() as conn:
        row = conn.execute(sql, params).mappings().first()
        if not row:
            raise NotFoundError(f"Inspection {inspection_id} not found.")
        item_rows = conn.execute(items_sql, {"id": inspection_id}).mappings().all()

    items = [
        InspectionItem(
            id=str(r["id"]),
            question=r["question"],
            category=r["category"],
            max_score=float(r["max_score"]),
            response=r["response"],
            actual_score=float(r["actual_score"]),
            comments=r["comments"],
            images=json.loads(r["images"] or "[]"),
        )
        for r in item_rows
    ]
    return inspection_from_row(row, items)


def _max_score(value) -> float:
    if isinstance(value, bool):
        raise ValueError("max_score must be a positive number")
    try:
        score = float(value)
    except (TypeError, ValueError):
        raise ValueError("max_score must be a positive number") from None
    if not 0 < score < float("inf"):
        raise ValueError("max_score must be a positive number")
    return score


def _item_from_payload(raw: Dict[str, Any]) -> InspectionItem:
    if not isinstance(raw, dict):
        raise ValueError("Every inspection item must be a JSON object.")
    if "description" in raw or "number" in raw:
        # Official pharmacy form layout: number, description, status, observation.
        question = f"{raw.get('number', '')}. {raw.get('description', '')}".strip(". ")
        return InspectionItem(
            question=question,
            category=PHARMACY_CATEGORY,
            max_score=1,
            response=raw.get("status"),
            comments=raw.get("observation") or "",
            images=list(raw.get("images") or []),
        )
    question = str(raw.get("question") or "").strip()
    if not question:
        raise ValueError("Every inspection item needs a question.")
    return InspectionItem(
        question=question,
        category=str(raw.get("category") or "general"),
        max_score=_max_score(raw.get("max_score", 1)),
        response=raw.get("response"),
        comments=raw.get("comments"),
        images=list(raw.get("images") or []),
    )


def create_inspection(engine, user: User, data: Dict[str, Any]) -> Inspection:
    """Record an inspection of a facility by *user*, scoring its items."""
    require_permission(user, "can_conduct_inspections")
    status = str(data.get("status") or "submitted").strip().lower()
    if status not in ("draft", "submitted"):
        raise ValueError("A new inspection must be 'draft' or 'submitted'.")
    raw_items = data.get("items") or []
    if not isinstance(raw_items, list):
        raise ValueError("items must be a list")

    items, total, maximum = score_items(_item_from_payload(r) for r in raw_items)
    if status == "submitted" and not items:
        raise ValueError("A submitted inspection must contain at least one item.")
    for item in items:
        if item.response == "non_compliant" and not item.images:
            raise ValueError(f"Non-compliant item '{item.question}' needs photo evidence.")
    percentage = compliance_percentage(total, maximum)

    inspection_id = _new_id()
    now = _now()
    with engine.begin() as conn:
        facility = _fetch_facility(conn, str(data.get("facility_id") or ""))
        if facility is None or not can_access_facility(user, facility):
            raise NotFoundError(f"Facility {data.get('facility_id')} not found.")

        conn.execute(
            text("""
                INSERT INTO inspections (id, facility_id, inspector_id, inspector_name,
                    facility_name, district, start_date, completed_date, status, total_score,
                    max_possible_score, compliance_percentage, signature, notes, created_at)
                VALUES (:id, :facility_id, :inspector_id, :inspector_name, :facility_name,
                    :district, :start_date, :completed_date, :status, :total_score,
                    :max_possible_score, :compliance_percentage, :signature, :notes, :created_at)
            """),
            {
                "id": inspection_id,
                "facility_id": facility.id,
                "inspector_id": user.id,
                "inspector_name": user.name,
                "facility_name": facility.name,
                "district": facility.district,
                "start_date": now,
                "completed_date": now if status == "submitted" else None,
                "status": status,
                "total_score": total,
                "max_possible_score": maximum,
                "compliance_percentage": percentage,
                "signature": data.get("signature"),
                "notes": data.get("notes"),
                "created_at": now,
            },
        )
        for position, item in enumerate(items):
            item.id = _new_id()
            conn.execute(
                text("""
                    INSERT INTO inspection_items (id, inspection_id, position, question, category,
                        max_score, response, actual_score, comments, images)
                    VALUES (:id, :inspection_id, :position, :question, :category,
                        :max_score, :response, :actual_score, :comments, :images)
                """),
                {
                    "id": item.id,
                    "inspection_id": inspection_id,
                    "position": position,
                    "question": item.question,
                    "category": item.category,
                    "max_score": item.max_score,
                    "response": item.response,
                    "actual_score": item.actual_score,
                    "comments": item.comments,
                    "images": json.dumps(item.images),
                },
            )
        if status == "submitted":
            conn.execute(
                text("UPDATE facilities SET last_inspection_date = :d, compliance_score = :s WHERE id = :id"),
                {"d": now, "s": percentage, "id": facility.id},
            )

    print(f"[db] Inspection {status}: {inspection_id} for {facility.name} ({percentage}%)")
    return Inspection(
        id=inspection_id,
        facility_id=facility.id,
        inspector_id=user.id,
        inspector_name=user.name,
        facility_name=facility.name,
        district=facility.district,
        start_date=parse_timestamp(now),
        status=status,
        total_score=total,
        max_possible_score=maximum,
        compliance_percentage=percentage,
        completed_date=parse_timestamp(now) if status == "submitted" else None,
        signature=data.get("signature"),
        notes=data.get("notes"),
        items=items,
    )


# status -> statuses it may move to
INSPECTION_TRANSITIONS = {
    "draft": {"submitted"},
    "submitted": {"reviewed"},
    "reviewed": {"approved"},
    "approved": set(),
}


def update_inspection_status(engine, user: User, scope: Scope, inspection_id: str, new_status: str) -> Inspection:
    """Move an inspection along draft → submitted → reviewed → approved."""
    new_status = str(new_status or "").strip().lower()
    if new_status not in INSPECTION_STATUSES:
        raise ValueError(f"status must be one of {', '.join(INSPECTION_STATUSES)}")

    inspection = get_inspection_by_id(engine, scope, inspection_id)
    if new_status not in INSPECTION_TRANSITIONS[inspection.status]:
        raise ValueError(f"Cannot change status from '{inspection.status}' to '{new_status}'.")

    if new_status == "submitted":
        if inspection.inspector_id != user.id:
            raise PermissionError("Only the inspector who started a draft may submit it.")
    else:
        require_permission(user, "can_view_reports")
        if parse_role(user.role) in INSPECTOR_ROLES:
            raise PermissionError("Inspectors cannot review or approve inspections.")

    now = _now()
    with engine.begin() as conn:
        conn.execute(
            text("""
                UPDATE inspections
                SET status = :status, completed_date = COALESCE(completed_date, :now)
                WHERE id = :id
            """),
            {"status": new_status, "now": now if new_status == "submitted" else None, "id": inspection_id},
        )
        if new_status == "submitted":
            conn.execute(
                text("UPDATE facilities SET last_inspection_date = :d, compliance_score = :s WHERE id = :id"),
                {"d": now, "s": inspection.compliance_percentage, "id": inspection.facility_id},
            )
    return get_inspection_by_id(engine, scope, inspection_id)


# ── Inspection schedules ─────────────────────────────────────────────

def get_inspection_schedules(engine, scope: Scope) -> List[InspectionSchedule]:
    if not scope.facility_types:
        return []
    clauses, params = _scope_clauses(scope, "f.district")
    sql = text(
        "SELECT s.id, s.facility_id, s.inspection_type, s.scheduled_date, s.scheduled_time, "
        "s.assigned_inspectors, s.notes, s.status, s.created_by "
        "FROM inspection_schedules s JOIN facilities f ON f.id = s.facility_id WHERE "
        + " AND ".join(clauses)
        + " ORDER BY s.scheduled_date ASC, s.scheduled_time ASC"
    ).bindparams(bindparam("types", expanding=True))
    with engine.connect() as conn:
        rows = conn.execute(sql, params).mappings().all()
    schedules = [schedule_from_row(r) for r in rows]
    if scope.inspector_id:
        schedules = [s for s in schedules if scope.inspector_id in s.assigned_inspectors]
    return schedules


def _fetch_schedule(conn, schedule_id: str) -> Optional[InspectionSchedule]:
    row = conn.execute(
        text("""
            SELECT id, facility_id, inspection_type, scheduled_date, scheduled_time,
                assigned_inspectors, notes, status, created_by
            FROM inspection_schedules WHERE id = :id
        """),
        {"id": schedule_id},
    ).mappings().first()
    return schedule_from_row(row) if row else None


def create_inspection_schedule(engine, user: User, data: Dict[str, Any]) -> InspectionSchedule:
    require_permission(user, "can_add_facilities")
    scheduled_date = str(data.get("scheduled_date") or "").strip()
    try:
        datetime.strptime(scheduled_date, "%Y-%m-%d")
    except ValueError:
        raise ValueError("scheduled_date must be YYYY-MM-DD") from None
    scheduled_time = str(data.get("scheduled_time") or "").strip() or None
    if scheduled_time:
        try:
            datetime.strptime(scheduled_time, "%H:%M")
        except ValueError:
            raise ValueError("scheduled_time must be HH:MM") from None
    inspection_type = str(data.get("inspection_type") or "routine").strip()
    assigned = data.get("assigned_inspectors") or []
    if not isinstance(assigned, list) or not assigned:
        raise ValueError("assigned_inspectors must be a non-empty list of user ids")

    schedule_id = _new_id()
    with engine.begin() as conn:
        facility = _fetch_facility(conn, str(data.get("facility_id") or ""))
        if facility is None or not can_access_facility(user, facility):
            raise NotFoundError(f"Facility {data.get('facility_id')} not found.")
        for inspector_id in assigned:
            _check_assignable_inspector(conn, inspector_id, facility.type)
        conn.execute(
            text("""
                INSERT INTO inspection_schedules (id, facility_id, inspection_type, scheduled_date,
                    scheduled_time, assigned_inspectors, notes, status, created_by, created_at)
                VALUES (:id, :facility_id, :inspection_type, :scheduled_date, :scheduled_time,
                    :assigned, :notes, 'scheduled', :created_by, :created_at)
            """),
            {
                "id": schedule_id,
                "facility_id": facility.id,
                "inspection_type": inspection_type,
                "scheduled_date": scheduled_date,
                "scheduled_time": scheduled_time,
                "assigned": json.dumps(list(assigned)),
                "notes": data.get("notes"),
                "created_by": user.id,
                "created_at": _now(),
            },
        )
        schedule = _fetch_schedule(conn, schedule_id)
    print(f"[db] Inspection scheduled: {schedule_id} for {facility.name} on {scheduled_date}")
    return schedule


# assigned inspectors move their own schedules forward
SCHEDULE_TRANSITIONS = {
    "scheduled": {"in_progress"},
    "in_progress": {"completed"},
}


def update_schedule_status(engine, user: User, scope: Scope, schedule_id: str, new_status: str) -> InspectionSchedule:
    new_status = str(new_status or "").strip().lower()
    if new_status not in SCHEDULE_STATUSES:
        raise ValueError(f"status must be one of {', '.join(SCHEDULE_STATUSES)}")
    visible = {s.id: s for s in get_inspection_schedules(engine, scope)}
    schedule = visible.get(schedule_id)
    if schedule is None:
        raise NotFoundError(f"Schedule {schedule_id} not found.")

    if not has_permission(user, "can_add_facilities"):
        if user.id not in schedule.assigned_inspectors:
            raise PermissionError("Only assigned inspectors may update this schedule.")
        if new_status not in SCHEDULE_TRANSITIONS.get(schedule.status, set()):
            raise ValueError(f"Cannot change status from '{schedule.status}' to '{new_status}'.")

    with engine.begin() as conn:
        conn.execute(
            text("UPDATE inspection_schedules SET status = :status WHERE id = :id"),
            {"status": new_status, "id": schedule_id},
        )
        return _fetch_schedule(conn, schedule_id)


def delete_schedule(engine, user: User, scope: Scope, schedule_id: str) -> None:
    require_permission(user, "can_add_facilities")
    if schedule_id not in {s.id for s in get_inspection_schedules(engine, scope)}:
        raise NotFoundError(f"Schedule {schedule_id} not found.")
    with engine.begin() as conn:
        conn.execute(text("DELETE FROM inspection_schedules WHERE id = :id"), {"id": schedule_id})


# ── Users ────────────────────────────────────────────────────────────

def get_users(engine, user: User) -> List[User]:
    require_permission(user, "can_view_users")
    with engine.connect() as conn:
        rows = conn.execute(
            text(f"SELECT {USER_COLUMNS} FROM users ORDER BY created_at DESC")
        ).mappings().all()
    return [user_from_row(r) for r in rows]


def get_user(engine, user_id: str) -> User:
    with engine.connect() as conn:
        row = conn.execute(
            text(f"SELECT {USER_COLUMNS} FROM users WHERE id = :id"), {"id": user_id}
        ).mappings().first()
    if not row:
        raise NotFoundError(f"User {user_id} not found.")
    return user_from_row(row)


def _validate_user_fields(data: Dict[str, Any], partial: bool) -> Dict[str, Any]:
    cleaned: Dict[str, Any] = {}
    if "name" in data or not partial:
        name = str(data.get("name") or "").strip()
        if not name:
            raise ValueError("name is required")
        cleaned["name"] = name
    if "role" in data or not partial:
        role = parse_role(str(data.get("role") or "").strip().lower())
        if role is None:
            raise ValueError(f"role must be one of {', '.join(r.value for r in Role)}")
        cleaned["role"] = role.value
    if "district" in data:
        district = str(data.get("district") or "").strip().lower() or None
        if district and district not in DISTRICTS:
            raise ValueError(f"Unknown district '{data.get('district')}'")
        cleaned["district"] = district
    if "phone" in data:
        cleaned["phone"] = str(data.get("phone") or "").strip() or None
    return cleaned


def _check_district_for_role(role: str, district: Optional[str]) -> None:
    if parse_role(role) in INSPECTOR_ROLES and not district:
        raise ValueError("Inspectors must be assigned a home district.")


def create_user(engine, user: User, data: Dict[str, Any]) -> User:
    require_permission(user, "can_add_users")
    cleaned = _validate_user_fields(data, partial=False)
    email = str(data.get("email") or "").strip().lower()
    if "@" not in email:
        raise ValueError("A valid email is required")
    password = str(data.get("password") or "")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")
    _check_district_for_role(cleaned["role"], cleaned.get("district"))

    user_id = _new_id()
    with engine.begin() as conn:
        exists = conn.execute(
            text("SELECT id FROM users WHERE lower(email) = :e"), {"e": email}
        ).first()
        if exists:
            raise ValueError(f"A user with email {email} already exists.")
        conn.execute(
            text("""
                INSERT INTO users (id, email, phone, name, role, district, password_hash, is_active, created_at)
                VALUES (:id, :email, :phone, :name, :role, :district, :password_hash, :is_active, :created_at)
            """),
            {
                "id": user_id,
                "email": email,
                "phone": cleaned.get("phone"),
                "name": cleaned["name"],
                "role": cleaned["role"],
                "district": cleaned.get("district"),
                "password_hash": generate_password_hash(password),
                "is_active": True,
                "created_at": _now(),
            },
        )
    print(f"[db] User created: {user_id} ({cleaned['role']})")
    return get_user(engine, user_id)


def update_user(engine, user: User, user_id: str, data: Dict[str, Any]) -> User:
    require_permission(user, "can_edit_users")
    cleaned = _validate_user_fields(data, partial=True)
    if not cleaned:
        raise ValueError("No updatable fields supplied.")
    target = get_user(engine, user_id)
    _check_district_for_role(cleaned.get("role", target.role), cleaned.get("district", target.district))

    assignments = ", ".join(f"{key} = :{key}" for key in cleaned)
    with engine.begin() as conn:
        conn.execute(text(f"UPDATE users SET {assignments} WHERE id = :id"), {**cleaned, "id": user_id})
    return get_user(engine, user_id)


def change_password(engine, user: User, current: str, new: str, confirm: Optional[str] = None) -> None:
    """Let a signed-in user replace their own password."""
    current = str(current or "")
    new = str(new or "")
    if confirm is not None and new != str(confirm):
        raise ValueError("New passwords do not match.")
    if len(new) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")

    with engine.begin() as conn:
        row = conn.execute(
            text("SELECT password_hash FROM users WHERE id = :id"), {"id": user.id}
        ).first()
        if not row:
            raise NotFoundError(f"User {user.id} not found.")
        if not check_password_hash(row[0], current):
            raise ValueError("Current password is incorrect.")
        conn.execute(
            text("UPDATE users SET password_hash = :h WHERE id = :id"),
            {"h": generate_password_hash(new), "id": user.id},
        )
    print(f"[auth] Password changed for {user.email}")


def set_user_active(engine, user: User, user_id: str, is_active: bool) -> User:
    """Suspend or reactivate an account."""
    require_permission(user, "can_suspend_users")
    if user_id == user.id:
        raise ValueError("You cannot suspend your own account.")
    get_user(engine, user_id)
    with engine.begin() as conn:
        conn.execute(
            text("UPDATE users SET is_active = :a WHERE id = :id"),
            {"a": bool(is_active), "id": user_id},
        )
    print(f"[db] User {user_id} {'reactivated' if is_active else 'suspended'}")
    return get_user(engine, user_id)


def delete_user(engine, user: User, user_id: str) -> None:
    require_permission(user, "can_delete_users")
    target = get_user(engine, user_id)
    if target.id == user.id:
        raise ValueError("You cannot delete your own account.")
    if parse_role(target.role) is Role.SUPER_ADMIN:
        raise PermissionError("Super administrators cannot be deleted.")
    with engine.begin() as conn:
        conn.execute(
            text("UPDATE facilities SET assigned_inspector_id = NULL WHERE assigned_inspector_id = :id"),
            {"id": user_id},
        )
        conn.execute(text("DELETE FROM users WHERE id = :id"), {"id": user_id})
    print(f"[db] User deleted: {user_id}")
