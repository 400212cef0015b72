"""
Database engine initialisation and schema creation.
"""

import sys
from typing import Optional

from sqlalchemy import create_engine, text

from healthinspect.config import get_env

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id VARCHAR(36) PRIMARY KEY,
        email VARCHAR(255) NOT NULL UNIQUE,
        phone VARCHAR(50),
        name VARCHAR(255) NOT NULL,
        role VARCHAR(50) NOT NULL,
        district VARCHAR(100),
        password_hash VARCHAR(255) NOT NULL,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS facilities (
        id VARCHAR(36) PRIMARY KEY,
        name VARCHAR(255) NOT NULL,
        type VARCHAR(20) NOT NULL,
        district VARCHAR(100) NOT NULL,
        address VARCHAR(255) NOT NULL,
        phone VARCHAR(50) NOT NULL,
        email VARCHAR(255),
        registration_number VARCHAR(100) NOT NULL UNIQUE,
        assigned_inspector_id VARCHAR(36) REFERENCES users(id),
        last_inspection_date TIMESTAMP,
        compliance_score REAL,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS inspections (
        id VARCHAR(36) PRIMARY KEY,
        facility_id VARCHAR(36) NOT NULL REFERENCES facilities(id) ON DELETE CASCADE,
        inspector_id VARCHAR(36) NOT NULL,
        inspector_name VARCHAR(255) NOT NULL,
        facility_name VARCHAR(255) NOT NULL,
        district VARCHAR(100) NOT NULL,
        start_date TIMESTAMP NOT NULL,
        completed_date TIMESTAMP,
        status VARCHAR(20) NOT NULL,
        total_score REAL NOT NULL DEFAULT 0,
        max_possible_score REAL NOT NULL DEFAULT 0,
        compliance_percentage REAL NOT NULL DEFAULT 0,
        signature TEXT,
        notes TEXT,
        created_at TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS inspection_items (
        id VARCHAR(36) PRIMARY KEY,
        inspection_id VARCHAR(36) NOT NULL REFERENCES inspections(id) ON DELETE CASCADE,
        position INTEGER NOT NULL,
        question TEXT NOT NULL,
        category VARCHAR(100) NOT NULL,
        max_score REAL NOT NULL DEFAULT 1,
        response VARCHAR(20),
        actual_score REAL NOT NULL DEFAULT 0,
        comments TEXT,
        images TEXT NOT NULL DEFAULT '[]'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS inspection_schedules (
        id VARCHAR(36) PRIMARY KEY,
        facility_id VARCHAR(36) NOT NULL REFERENCES facilities(id) ON DELETE CASCADE,
        inspection_type VARCHAR(100) NOT NULL,
        scheduled_date VARCHAR(10) NOT NULL,
        scheduled_time VARCHAR(5),
        assigned_inspectors TEXT NOT NULL DEFAULT '[]',
        notes TEXT,
        status VARCHAR(20) NOT NULL,
        created_by VARCHAR(36) NOT NULL,
        created_at TIMESTAMP NOT NULL
    )
    """,
]


def init_engine(db_uri: Optional[str] = None):
    """Create a SQLAlchemy engine and verify the connection."""
    db_uri = db_uri or get_env("DB_URI")
    engine = create_engine(db_uri, echo=False, future=True)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        print("ERROR: could not connect to DB:", e, file=sys.stderr)
        sys.exit(1)
    print("[init] Connected to DB.")
    return engine


def init_schema(engine) -> None:
    """Create the application tables if they do not exist yet."""
    with engine.begin() as conn:
        for statement in SCHEMA_STATEMENTS:
            conn.execute(text(statement))
    print(f"[init] Schema ready ({len(SCHEMA_STATEMENTS)} tables).")
