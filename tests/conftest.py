"""
Shared fixtures: an in-memory SQLite database and row factories.
"""

import uuid

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool
from werkzeug.security import generate_password_hash

from healthinspect.database import init_schema
from healthinspect.models import User

TEST_PASSWORD = "password123"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    init_schema(engine)
    return engine


@pytest.fixture
def make_user(engine):
    """Insert a user row directly and return it as a User."""
    def _make(role, district=None, email=None, name=None, is_active=True):
        user_id = str(uuid.uuid4())
        email = email or f"{role}-{user_id[:8]}@example.org"
        name = name or role.replace("_", " ").title()
        with engine.begin() as conn:
            conn.execute(
                text("""
                    INSERT INTO users (id, email, phone, name, role, district, password_hash, is_active, created_at)
                    VALUES (:id, :email, NULL, :name, :role, :district, :pw, :active, '2024-01-01 09:00:00')
                """),
                {
                    "id": user_id, "email": email, "name": name, "role": role,
                    "district": district, "active": is_active,
                    "pw": generate_password_hash(TEST_PASSWORD, method="pbkdf2:sha256:1000"),
                },
            )
        return User(id=user_id, email=email, name=name, role=role,
                    district=district, is_active=is_active)
    return _make


@pytest.fixture
def make_facility(engine):
    """Insert a facility row directly and return its id."""
    def _make(ftype, district, name=None, compliance_score=None, assigned_inspector_id=None):
        facility_id = str(uuid.uuid4())
        with engine.begin() as conn:
            conn.execute(
                text("""
                    INSERT INTO facilities (id, name, type, district, address, phone, email,
                        registration_number, assigned_inspector_id, compliance_score, is_active, created_at)
                    VALUES (:id, :name, :type, :district, 'KG 1 Ave', '+250700000000', NULL,
                        :reg, :inspector, :score, 1, '2024-01-01 09:00:00')
                """),
                {
                    "id": facility_id,
                    "name": name or f"{ftype.title()} {facility_id[:6]}",
                    "type": ftype,
                    "district": district,
                    "reg": f"{ftype.upper()}-{facility_id[:8]}",
                    "inspector": assigned_inspector_id,
                    "score": compliance_score,
                },
            )
        return facility_id
    return _make
