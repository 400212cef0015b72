#!/usr/bin/env python3
"""
Seed a HealthInspect database with Faker-generated demo data.

Creates one user per role, a set of facilities spread over a few districts and
some scored inspections. Every seeded account uses the same password
(SEED_PASSWORD, default "changeme123").
"""

import os
import random
import uuid
from datetime import datetime, timedelta

from faker import Faker
from sqlalchemy import MetaData, Table
from werkzeug.security import generate_password_hash

# --------------------------------------------------------------------
# CONFIG
# --------------------------------------------------------------------
NUM_FACILITIES = 24
INSPECTIONS_PER_FACILITY = (0, 3)   # min, max
SEED_DISTRICTS = ["gasabo", "kicukiro", "nyarugenge", "huye"]

SEED_USERS = [
    ("super_admin", None),
    ("admin", None),
    ("pharmacy_supervisor", None),
    ("hospital_supervisor", None),
    ("pharmacy_inspector", "gasabo"),
    ("hospital_inspector", "gasabo"),
]

CHECKLIST = [
    ("Valid operating license displayed", "licensing", 5),
    ("Qualified staff on duty", "staffing", 5),
    ("Cold chain temperature logs maintained", "storage", 3),
    ("Expired products segregated", "storage", 3),
    ("Waste disposal procedure followed", "hygiene", 2),
]


# --------------------------------------------------------------------
# HELPERS
# --------------------------------------------------------------------
def random_datetime_within(days_back=180):
    now = datetime.utcnow()
    delta = timedelta(days=random.randint(0, days_back), seconds=random.randint(0, 86400))
    return now - delta


def reflect(engine):
    metadata = MetaData()
    return {
        name: Table(name, metadata, autoload_with=engine)
        for name in ("users", "facilities", "inspections", "inspection_items")
    }


# --------------------------------------------------------------------
# SEED FUNCTIONS
# --------------------------------------------------------------------
def seed_users(conn, users_table, fake, password):
    rows = []
    for role, district in SEED_USERS:
        rows.append(
            {
                "id": str(uuid.uuid4()),
                "email": f"{role.replace('_', '.')}@healthinspect.example",
                "phone": fake.phone_number(),
                "name": fake.name(),
                "role": role,
                "district": district,
                "password_hash": generate_password_hash(password),
                "is_active": True,
                "created_at": datetime.utcnow(),
            }
        )
    conn.execute(users_table.insert(), rows)
    return rows


def seed_facilities(conn, facilities_table, fake, inspectors, n=NUM_FACILITIES):
    rows = []
    for i in range(n):
        ftype = random.choice(["pharmacy", "hospital", "clinic"])
        district = random.choice(SEED_DISTRICTS)
        wanted = "pharmacy_inspector" if ftype == "pharmacy" else "hospital_inspector"
        inspector = inspectors.get(wanted)
        suffix = {"pharmacy": "Pharmacy", "hospital": "Hospital", "clinic": "Clinic"}[ftype]
        rows.append(
            {
                "id": str(uuid.uuid4()),
                "name": f"{fake.last_name()} {suffix}",
                "type": ftype,
                "district": district,
                "address": fake.street_address(),
                "phone": fake.phone_number(),
                "email": fake.company_email(),
                "registration_number": f"{ftype.upper()}-{district.upper()}-{1000 + i}",
                "assigned_inspector_id": inspector["id"] if inspector and district == inspector["district"] else None,
                "is_active": True,
                "created_at": random_datetime_within(720),
            }
        )
    conn.execute(facilities_table.insert(), rows)
    return rows


def seed_inspections(conn, tables, facilities, inspectors):
    count = 0
    for facility in facilities:
        wanted = "pharmacy_inspector" if facility["type"] == "pharmacy" else "hospital_inspector"
        inspector = inspectors[wanted]
        latest = None
        for _ in range(random.randint(*INSPECTIONS_PER_FACILITY)):
            inspection_id = str(uuid.uuid4())
            started = random_datetime_within()
            items = []
            total = maximum = 0
            for position, (question, category, max_score) in enumerate(CHECKLIST):
                response = random.choices(["yes", "no", "na"], weights=[7, 2, 1])[0]
                actual = max_score if response == "yes" else 0
                if response != "na":
                    total += actual
                    maximum += max_score
                items.append(
                    {
                        "id": str(uuid.uuid4()),
                        "inspection_id": inspection_id,
                        "position": position,
                        "question": question,
                        "category": category,
                        "max_score": max_score,
                        "response": response,
                        "actual_score": actual,
                        "comments": None,
                        "images": "[]",
                    }
                )
            pct = round(total / maximum * 100, 1) if maximum else 0.0
            conn.execute(
                tables["inspections"].insert(),
                [{
                    "id": inspection_id,
                    "facility_id": facility["id"],
                    "inspector_id": inspector["id"],
                    "inspector_name": inspector["name"],
                    "facility_name": facility["name"],
                    "district": facility["district"],
                    "start_date": started,
                    "completed_date": started + timedelta(hours=3),
                    "status": random.choice(["submitted", "reviewed", "approved"]),
                    "total_score": total,
                    "max_possible_score": maximum,
                    "compliance_percentage": pct,
                    "signature": inspector["name"],
                    "notes": None,
                    "created_at": started,
                }],
            )
            conn.execute(tables["inspection_items"].insert(), items)
            if latest is None or started > latest[0]:
                latest = (started, pct)
            count += 1
        if latest:
            conn.execute(
                tables["facilities"].update()
                .where(tables["facilities"].c.id == facility["id"])
                .values(last_inspection_date=latest[0], compliance_score=latest[1])
            )
    return count


def seed(engine, password="changeme123", seed_value=42):
    """Populate an initialised (empty) database; returns row counts."""
    fake = Faker()
    random.seed(seed_value)
    Faker.seed(seed_value)

    tables = reflect(engine)
    with engine.begin() as conn:
        users = seed_users(conn, tables["users"], fake, password)
        inspectors = {u["role"]: u for u in users if u["role"].endswith("_inspector")}
        facilities = seed_facilities(conn, tables["facilities"], fake, inspectors)
        n_inspections = seed_inspections(conn, tables, facilities, inspectors)
    return {"users": len(users), "facilities": len(facilities), "inspections": n_inspections}


if __name__ == "__main__":
    from healthinspect.database import init_engine, init_schema

    engine = init_engine()
    init_schema(engine)
    counts = seed(engine, password=os.getenv("SEED_PASSWORD", "changeme123"))

    print("=" * 60)
    print("HealthInspect demo data")
    print("=" * 60)
    for name, n in counts.items():
        print(f"  {name:<12} {n}")
    print("\nLogins (same password for all):")
    for role, _district in SEED_USERS:
        print(f"  {role.replace('_', '.')}@healthinspect.example")
    print("=" * 60)
