"""
Persistence tests against an in-memory SQLite database: scoped reads,
capability checks on writes, scoring on submission and status workflows.
"""

import pytest
from sqlalchemy import text

from healthinspect import repository
from healthinspect.models import NotFoundError
from healthinspect.rbac import build_scope, load_user


def general_items():
    return [
        {"question": "Licence displayed", "category": "licensing", "max_score": 2, "response": "yes"},
        {"question": "Cold chain log", "category": "storage", "max_score": 3, "response": "no"},
        {"question": "Radiology shielding", "category": "safety", "max_score": 5, "response": "na"},
    ]


# ── Facilities: scoped reads ─────────────────────────────────────────

def test_inspector_sees_own_types_in_home_district(make_user, make_facility, engine):
    inspector = make_user("pharmacy_inspector", district="gasabo")
    keep = make_facility("pharmacy", "gasabo")
    make_facility("pharmacy", "huye")
    make_facility("hospital", "gasabo")

    facilities = repository.get_facilities(engine, build_scope(inspector))
    assert [f.id for f in facilities] == [keep]


def test_supervisor_sees_types_in_all_districts(make_user, make_facility, engine):
    supervisor = make_user("hospital_supervisor")
    make_facility("hospital", "gasabo")
    make_facility("clinic", "huye")
    make_facility("pharmacy", "huye")

    types = sorted(f.type for f in repository.get_facilities(engine, build_scope(supervisor)))
    assert types == ["clinic", "hospital"]


def test_unknown_role_sees_no_facilities(make_user, make_facility, engine):
    legacy = make_user("regional_admin")
    make_facility("hospital", "gasabo")
    assert repository.get_facilities(engine, build_scope(legacy)) == []


def test_facility_filters(make_user, make_facility, engine):
    admin = make_user("admin")
    make_facility("pharmacy", "gasabo", name="Kigali Central Pharmacy")
    make_facility("clinic", "huye", name="Huye Clinic")
    scope = build_scope(admin)

    assert [f.name for f in repository.get_facilities(engine, scope, {"district": "Huye"})] == ["Huye Clinic"]
    assert [f.name for f in repository.get_facilities(engine, scope, {"type": "pharmacy"})] == [
        "Kigali Central Pharmacy"
    ]
    assert [f.name for f in repository.get_facilities(engine, scope, {"search": "central"})] == [
        "Kigali Central Pharmacy"
    ]
    assert len(repository.get_facilities(engine, scope, {"district": "all", "type": ""})) == 2


def test_get_facility_outside_scope_is_not_found(make_user, make_facility, engine):
    inspector = make_user("hospital_inspector", district="gasabo")
    other = make_facility("hospital", "huye")
    with pytest.raises(NotFoundError):
        repository.get_facility(engine, build_scope(inspector), other)


# ── Facilities: writes ───────────────────────────────────────────────

def test_admin_creates_facility_with_generated_registration(make_user, engine):
    admin = make_user("admin")
    facility = repository.create_facility(engine, admin, {
        "name": "Remera Pharmacy", "type": "Pharmacy", "district": "Gasabo",
        "address": "KG 11 Ave", "phone": "+250788000001",
    })
    assert facility.type == "pharmacy"
    assert facility.district == "gasabo"
    assert facility.registration_number.startswith("PHARMACY-GASABO-")
    assert facility.compliance_score is None


def test_supervisor_cannot_create_facility(make_user, engine):
    supervisor = make_user("pharmacy_supervisor")
    with pytest.raises(PermissionError):
        repository.create_facility(engine, supervisor, {
            "name": "X", "type": "pharmacy", "district": "gasabo", "address": "a", "phone": "p",
        })


def test_create_facility_validates_input(make_user, engine):
    admin = make_user("admin")
    base = {"name": "X", "type": "pharmacy", "district": "gasabo", "address": "a", "phone": "p"}
    with pytest.raises(ValueError, match="Unknown district"):
        repository.create_facility(engine, admin, {**base, "district": "atlantis"})
    with pytest.raises(ValueError, match="type must be one of"):
        repository.create_facility(engine, admin, {**base, "type": "dentist"})
    with pytest.raises(ValueError, match="name is required"):
        repository.create_facility(engine, admin, {**base, "name": " "})


def test_assigned_inspector_must_cover_facility_type(make_user, engine):
    admin = make_user("admin")
    hospital_inspector = make_user("hospital_inspector", district="gasabo")
    base = {"name": "X", "type": "pharmacy", "district": "gasabo", "address": "a", "phone": "p"}
    with pytest.raises(ValueError, match="cannot inspect pharmacy"):
        repository.create_facility(engine, admin, {**base, "assigned_inspector_id": hospital_inspector.id})
    with pytest.raises(ValueError, match="is not an inspector"):
        repository.create_facility(engine, admin, {**base, "assigned_inspector_id": admin.id})


def test_update_facility(make_user, make_facility, engine):
    admin = make_user("admin")
    inspector = make_user("pharmacy_inspector", district="gasabo")
    facility_id = make_facility("pharmacy", "gasabo")

    updated = repository.update_facility(engine, admin, facility_id, {
        "name": "Renamed", "assigned_inspector_id": inspector.id,
    })
    assert updated.name == "Renamed"
    assert updated.assigned_inspector_id == inspector.id

    with pytest.raises(ValueError, match="No updatable fields"):
        repository.update_facility(engine, admin, facility_id, {})
    with pytest.raises(NotFoundError):
        repository.update_facility(engine, admin, "missing", {"name": "Y"})


def test_only_super_admin_deletes_facilities(make_user, make_facility, engine):
    admin = make_user("admin")
    root = make_user("super_admin")
    inspector = make_user("pharmacy_inspector", district="gasabo")
    facility_id = make_facility("pharmacy", "gasabo")
    repository.create_inspection(engine, inspector, {"facility_id": facility_id, "items": general_items()})

    with pytest.raises(PermissionError):
        repository.delete_facility(engine, admin, facility_id)

    repository.delete_facility(engine, root, facility_id)
    with engine.connect() as conn:
        assert conn.execute(text("SELECT count(*) FROM inspections")).scalar() == 0
        assert conn.execute(text("SELECT count(*) FROM inspection_items")).scalar() == 0
        assert conn.execute(text("SELECT count(*) FROM facilities")).scalar() == 0


# ── Inspections ──────────────────────────────────────────────────────

def test_submitted_inspection_scores_and_updates_facility(make_user, make_facility, engine):
    inspector = make_user("pharmacy_inspector", district="gasabo")
    facility_id = make_facility("pharmacy", "gasabo")

    inspection = repository.create_inspection(engine, inspector, {
        "facility_id": facility_id, "items": general_items(), "notes": "Routine visit",
    })
    assert inspection.status == "submitted"
    assert inspection.total_score == 2
    assert inspection.max_possible_score == 5
    assert inspection.compliance_percentage == 40.0
    assert inspection.completed_date is not None

    facility = repository.get_facility(engine, build_scope(inspector), facility_id)
    assert facility.compliance_score == 40.0
    assert facility.last_inspection_date is not None

    stored = repository.get_inspection_by_id(engine, build_scope(inspector), inspection.id)
    assert [i.question for i in stored.items] == [
        "Licence displayed", "Cold chain log", "Radiology shielding",
    ]
    assert [i.actual_score for i in stored.items] == [2, 0, 0]


def test_pharmacy_form_items(make_user, make_facility, engine):
    inspector = make_user("pharmacy_inspector", district="gasabo")
    facility_id = make_facility("pharmacy", "gasabo")
    items = [
        {"number": 1, "description": "Pharmacist on duty", "status": "compliant"},
        {"number": 2, "description": "Expired stock removed", "status": "non_compliant",
         "observation": "Two expired boxes", "images": ["photo-1.jpg"]},
        {"number": 3, "description": "Narcotics register", "status": "not_applicable"},
    ]
    inspection = repository.create_inspection(engine, inspector, {"facility_id": facility_id, "items": items})
    assert inspection.total_score == 2
    assert inspection.max_possible_score == 3
    assert inspection.compliance_percentage == 66.7
    assert inspection.items[0].question == "1. Pharmacist on duty"
    assert inspection.items[1].category == "pharmacy_inspection"


def test_non_compliant_item_needs_photo(make_user, make_facility, engine):
    inspector = make_user("pharmacy_inspector", district="gasabo")
    facility_id = make_facility("pharmacy", "gasabo")
    with pytest.raises(ValueError, match="photo evidence"):
        repository.create_inspection(engine, inspector, {
            "facility_id": facility_id,
            "items": [{"number": 1, "description": "Clean shelves", "status": "non_compliant"}],
        })


def test_submitted_inspection_needs_items(make_user, make_facility, engine):
    inspector = make_user("pharmacy_inspector", district="gasabo")
    facility_id = make_facility("pharmacy", "gasabo")
    with pytest.raises(ValueError, match="at least one item"):
        repository.create_inspection(engine, inspector, {"facility_id": facility_id, "items": []})


def test_cannot_inspect_facility_outside_scope(make_user, make_facility, engine):
    inspector = make_user("pharmacy_inspector", district="gasabo")
    other_district = make_facility("pharmacy", "huye")
    other_type = make_facility("clinic", "gasabo")
    for facility_id in (other_district, other_type):
        with pytest.raises(NotFoundError):
            repository.create_inspection(engine, inspector, {"facility_id": facility_id, "items": general_items()})


def test_inspectors_only_see_their_own_inspections(make_user, make_facility, engine):
    first = make_user("pharmacy_inspector", district="gasabo")
    second = make_user("pharmacy_inspector", district="gasabo")
    supervisor = make_user("pharmacy_supervisor")
    facility_id = make_facility("pharmacy", "gasabo")
    mine = repository.create_inspection(engine, first, {"facility_id": facility_id, "items": general_items()})
    repository.create_inspection(engine, second, {"facility_id": facility_id, "items": general_items()})

    assert [i.id for i in repository.get_inspections(engine, build_scope(first))] == [mine.id]
    assert len(repository.get_inspections(engine, build_scope(supervisor))) == 2
    with pytest.raises(NotFoundError):
        repository.get_inspection_by_id(engine, build_scope(second), mine.id)


def test_inspection_status_workflow(make_user, make_facility, engine):
    inspector = make_user("hospital_inspector", district="gasabo")
    supervisor = make_user("hospital_supervisor")
    facility_id = make_facility("clinic", "gasabo")
    draft = repository.create_inspection(engine, inspector, {
        "facility_id": facility_id, "status": "draft", "items": general_items(),
    })
    assert draft.completed_date is None
    inspector_scope = build_scope(inspector)
    supervisor_scope = build_scope(supervisor)

    with pytest.raises(PermissionError, match="Only the inspector"):
        repository.update_inspection_status(engine, supervisor, supervisor_scope, draft.id, "submitted")
    with pytest.raises(ValueError, match="Cannot change status"):
        repository.update_inspection_status(engine, supervisor, supervisor_scope, draft.id, "approved")

    submitted = repository.update_inspection_status(engine, inspector, inspector_scope, draft.id, "submitted")
    assert submitted.status == "submitted"
    assert submitted.completed_date is not None
    assert repository.get_facility(engine, supervisor_scope, facility_id).compliance_score == 40.0

    with pytest.raises(PermissionError, match="cannot review"):
        repository.update_inspection_status(engine, inspector, inspector_scope, draft.id, "reviewed")

    reviewed = repository.update_inspection_status(engine, supervisor, supervisor_scope, draft.id, "reviewed")
    assert reviewed.status == "reviewed"
    approved = repository.update_inspection_status(engine, supervisor, supervisor_scope, draft.id, "approved")
    assert approved.status == "approved"

    with pytest.raises(ValueError, match="status must be one of"):
        repository.update_inspection_status(engine, supervisor, supervisor_scope, draft.id, "archived")


# ── Schedules ────────────────────────────────────────────────────────

def test_schedule_lifecycle(make_user, make_facility, engine):
    admin = make_user("admin")
    assigned = make_user("pharmacy_inspector", district="gasabo")
    other = make_user("pharmacy_inspector", district="gasabo")
    facility_id = make_facility("pharmacy", "gasabo")

    schedule = repository.create_inspection_schedule(engine, admin, {
        "facility_id": facility_id, "scheduled_date": "2024-07-01", "scheduled_time": "09:30",
        "assigned_inspectors": [assigned.id],
    })
    assert schedule.status == "scheduled"
    assert schedule.inspection_type == "routine"

    assert [s.id for s in repository.get_inspection_schedules(engine, build_scope(assigned))] == [schedule.id]
    assert repository.get_inspection_schedules(engine, build_scope(other)) == []

    with pytest.raises(ValueError, match="Cannot change status"):
        repository.update_schedule_status(engine, assigned, build_scope(assigned), schedule.id, "completed")
    moved = repository.update_schedule_status(engine, assigned, build_scope(assigned), schedule.id, "in_progress")
    assert moved.status == "in_progress"

    cancelled = repository.update_schedule_status(engine, admin, build_scope(admin), schedule.id, "cancelled")
    assert cancelled.status == "cancelled"

    repository.delete_schedule(engine, admin, build_scope(admin), schedule.id)
    assert repository.get_inspection_schedules(engine, build_scope(admin)) == []


def test_schedule_validation(make_user, make_facility, engine):
    admin = make_user("admin")
    supervisor = make_user("pharmacy_supervisor")
    inspector = make_user("pharmacy_inspector", district="gasabo")
    facility_id = make_facility("pharmacy", "gasabo")
    base = {"facility_id": facility_id, "scheduled_date": "2024-07-01", "assigned_inspectors": [inspector.id]}

    with pytest.raises(ValueError, match="YYYY-MM-DD"):
        repository.create_inspection_schedule(engine, admin, {**base, "scheduled_date": "01/07/2024"})
    with pytest.raises(ValueError, match="HH:MM"):
        repository.create_inspection_schedule(engine, admin, {**base, "scheduled_time": "9am"})
    with pytest.raises(ValueError, match="non-empty list"):
        repository.create_inspection_schedule(engine, admin, {**base, "assigned_inspectors": []})
    with pytest.raises(PermissionError):
        repository.create_inspection_schedule(engine, supervisor, base)


# ── Users ────────────────────────────────────────────────────────────

def test_super_admin_manages_users(make_user, engine):
    root = make_user("super_admin")
    created = repository.create_user(engine, root, {
        "email": "New.Inspector@Example.org", "password": "longenough", "name": "New Inspector",
        "role": "hospital_inspector", "district": "Huye",
    })
    assert created.email == "new.inspector@example.org"
    assert created.district == "huye"
    assert created.is_active is True

    with pytest.raises(ValueError, match="already exists"):
        repository.create_user(engine, root, {
            "email": "new.inspector@example.org", "password": "longenough", "name": "Dup",
            "role": "admin",
        })

    updated = repository.update_user(engine, root, created.id, {"role": "pharmacy_inspector"})
    assert updated.role == "pharmacy_inspector"

    suspended = repository.set_user_active(engine, root, created.id, False)
    assert suspended.is_active is False


def test_user_validation(make_user, engine):
    root = make_user("super_admin")
    base = {"email": "a@example.org", "password": "longenough", "name": "A", "role": "admin"}
    with pytest.raises(ValueError, match="role must be one of"):
        repository.create_user(engine, root, {**base, "role": "owner"})
    with pytest.raises(ValueError, match="at least 8"):
        repository.create_user(engine, root, {**base, "password": "short"})
    with pytest.raises(ValueError, match="valid email"):
        repository.create_user(engine, root, {**base, "email": "nobody"})
    with pytest.raises(ValueError, match="home district"):
        repository.create_user(engine, root, {**base, "role": "pharmacy_inspector"})


def test_admin_cannot_manage_users(make_user, engine):
    admin = make_user("admin")
    inspector = make_user("pharmacy_inspector", district="gasabo")
    assert len(repository.get_users(engine, admin)) == 2
    with pytest.raises(PermissionError):
        repository.create_user(engine, admin, {
            "email": "b@example.org", "password": "longenough", "name": "B", "role": "admin",
        })
    with pytest.raises(PermissionError):
        repository.set_user_active(engine, admin, inspector.id, False)
    with pytest.raises(PermissionError):
        repository.get_users(engine, inspector)


def test_user_self_protection(make_user, engine):
    root = make_user("super_admin")
    other_root = make_user("super_admin")
    with pytest.raises(ValueError, match="your own account"):
        repository.set_user_active(engine, root, root.id, False)
    with pytest.raises(ValueError, match="your own account"):
        repository.delete_user(engine, root, root.id)
    with pytest.raises(PermissionError, match="cannot be deleted"):
        repository.delete_user(engine, root, other_root.id)


def test_delete_user_unassigns_facilities(make_user, make_facility, engine):
    root = make_user("super_admin")
    inspector = make_user("pharmacy_inspector", district="gasabo")
    facility_id = make_facility("pharmacy", "gasabo", assigned_inspector_id=inspector.id)

    repository.delete_user(engine, root, inspector.id)
    with pytest.raises(NotFoundError):
        repository.get_user(engine, inspector.id)
    facility = repository.get_facility(engine, build_scope(root), facility_id)
    assert facility.assigned_inspector_id is None


# ── Input hardening ──────────────────────────────────────────────────

FACILITY = {"name": "X", "type": "pharmacy", "district": "gasabo", "address": "a", "phone": "p"}


def test_null_facility_email_is_stored_as_none(make_user, engine):
    admin = make_user("admin")
    facility = repository.create_facility(engine, admin, {**FACILITY, "email": None})
    assert facility.email is None
    facility = repository.update_facility(engine, admin, facility.id, {"email": "  "})
    assert facility.email is None


def test_duplicate_registration_number_rejected(make_user, engine):
    admin = make_user("admin")
    first = repository.create_facility(engine, admin, {**FACILITY, "registration_number": "REG-1"})
    second = repository.create_facility(engine, admin, {**FACILITY, "registration_number": "REG-2"})

    with pytest.raises(ValueError, match="REG-1 already exists"):
        repository.create_facility(engine, admin, {**FACILITY, "registration_number": "REG-1"})
    with pytest.raises(ValueError, match="REG-1 already exists"):
        repository.update_facility(engine, admin, second.id, {"registration_number": "REG-1"})

    same = repository.update_facility(engine, admin, first.id, {"registration_number": "REG-1", "name": "Y"})
    assert same.name == "Y"


@pytest.mark.parametrize("bad", [None, -5, 0, "lots", True, float("nan")])
def test_item_max_score_must_be_positive(make_user, make_facility, engine, bad):
    inspector = make_user("pharmacy_inspector", district="gasabo")
    facility_id = make_facility("pharmacy", "gasabo")
    items = [{"question": "Q1", "max_score": bad, "response": "yes"},
             {"question": "Q2", "max_score": 5, "response": "yes"}]
    with pytest.raises(ValueError, match="max_score must be a positive number"):
        repository.create_inspection(engine, inspector, {"facility_id": facility_id, "items": items})
    assert repository.get_facility(engine, build_scope(inspector), facility_id).compliance_score is None


def test_item_must_be_an_object(make_user, make_facility, engine):
    inspector = make_user("pharmacy_inspector", district="gasabo")
    facility_id = make_facility("pharmacy", "gasabo")
    with pytest.raises(ValueError, match="JSON object"):
        repository.create_inspection(engine, inspector, {"facility_id": facility_id, "items": ["Licence"]})


def test_numeric_string_max_score_accepted(make_user, make_facility, engine):
    inspector = make_user("pharmacy_inspector", district="gasabo")
    facility_id = make_facility("pharmacy", "gasabo")
    inspection = repository.create_inspection(engine, inspector, {
        "facility_id": facility_id, "items": [{"question": "Q", "max_score": "2.5", "response": "yes"}],
    })
    assert inspection.max_possible_score == 2.5


# ── Password change ──────────────────────────────────────────────────

def test_change_password(make_user, engine):
    user = make_user("hospital_supervisor")

    with pytest.raises(ValueError, match="Current password is incorrect"):
        repository.change_password(engine, user, "not-it", "brand-new-pass", "brand-new-pass")
    with pytest.raises(ValueError, match="do not match"):
        repository.change_password(engine, user, "password123", "brand-new-pass", "brand-new-pasz")
    with pytest.raises(ValueError, match="at least 8"):
        repository.change_password(engine, user, "password123", "short", "short")

    repository.change_password(engine, user, "password123", "brand-new-pass", "brand-new-pass")
    assert load_user(engine, user.email, "brand-new-pass").id == user.id
    with pytest.raises(ValueError, match="Invalid email or password"):
        load_user(engine, user.email, "password123")
