"""
Centralised configuration constants and environment helpers.
"""

import os
import sys

from dotenv import load_dotenv

load_dotenv()

# ── Domain constants ─────────────────────────────────────────────────
FACILITY_TYPES = ("pharmacy", "hospital", "clinic")

INSPECTION_STATUSES = ("draft", "submitted", "reviewed", "approved")
SCHEDULE_STATUSES = ("scheduled", "in_progress", "completed", "cancelled")

RWANDA_DISTRICTS = [
    "Bugesera", "Burera", "Gakenke", "Gasabo", "Gatsibo", "Gicumbi",
    "Gisagara", "Huye", "Kamonyi", "Karongi", "Kayonza", "Kicukiro",
    "Kirehe", "Muhanga", "Musanze", "Ngoma", "Ngororero", "Nyabihu",
    "Nyagatare", "Nyamagabe", "Nyamasheke", "Nyanza", "Nyarugenge",
    "Nyaruguru", "Rubavu", "Ruhango", "Rulindo", "Rusizi", "Rutsiro",
    "Rwamagana",
]

# Facilities scoring below this are reported as compliance issues.
COMPLIANCE_THRESHOLD = 80.0

# ── API server ───────────────────────────────────────────────────────
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
TOKEN_EXPIRY_HOURS = 24
MAX_RESULTS_RETURN = 1000
MAX_PREVIEW_ROWS = 20
MIN_PASSWORD_LENGTH = 8


def get_env(name: str) -> str:
    """Return an environment variable or exit with an error message."""
    value = os.getenv(name)
    if not value:
        print(f"ERROR: env var {name} is not set", file=sys.stderr)
        sys.exit(1)
    return value
