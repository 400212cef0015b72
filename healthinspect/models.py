"""
Domain dataclasses and enumerations used across the application.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import FrozenSet, List, Optional


class Role(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    PHARMACY_SUPERVISOR = "pharmacy_supervisor"
    HOSPITAL_SUPERVISOR = "hospital_supervisor"
    PHARMACY_INSPECTOR = "pharmacy_inspector"
    HOSPITAL_INSPECTOR = "hospital_inspector"


class FacilityType(str, Enum):
    PHARMACY = "pharmacy"
    HOSPITAL = "hospital"
    CLINIC = "clinic"


INSPECTOR_ROLES = frozenset({Role.PHARMACY_INSPECTOR, Role.HOSPITAL_INSPECTOR})


@dataclass
class User:
    """Represents the authenticated user's identity and home district."""
    id: str
    email: str
    name: str
    role: str                  # raw value; may fall outside Role for legacy rows
    district: Optional[str] = None
    is_active: bool = True
    phone: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class Permission:
    """Capability set resolved from a user's role. Never persisted."""
    can_view_dashboard: bool = False
    can_view_facilities: bool = False
    can_add_facilities: bool = False
    can_edit_facilities: bool = False
    can_delete_facilities: bool = False
    can_view_inspections: bool = False
    can_conduct_inspections: bool = False
    can_view_reports: bool = False
    can_view_users: bool = False
    can_add_users: bool = False
    can_edit_users: bool = False
    can_delete_users: bool = False
    can_suspend_users: bool = False
    facility_types: FrozenSet[FacilityType] = frozenset()
    can_view_all_districts: bool = False


@dataclass
class Scope:
    """Row-level visibility derived from a user and their Permission."""
    facility_types: FrozenSet[FacilityType]
    district: Optional[str]        # None means every district is visible
    inspector_id: Optional[str]    # set for inspectors: own records only
    notes: str


@dataclass
class Facility:
    id: str
    name: str
    type: str
    district: str
    address: str
    phone: str
    registration_number: str
    email: Optional[str] = None
    assigned_inspector_id: Optional[str] = None
    last_inspection_date: Optional[datetime] = None
    compliance_score: Optional[float] = None
    is_active: bool = True
    created_at: Optional[datetime] = None


@dataclass
class InspectionItem:
    question: str
    category: str
    max_score: float = 1
    response: Optional[str] = None   # yes/no/na or compliant/non_compliant/not_applicable
    actual_score: float = 0
    comments: Optional[str] = None
    images: List[str] = field(default_factory=list)
    id: Optional[str] = None


@dataclass
class Inspection:
    id: str
    facility_id: str
    inspector_id: str
    inspector_name: str
    facility_name: str
    district: str
    start_date: datetime
    status: str
    total_score: float = 0
    max_possible_score: float = 0
    compliance_percentage: float = 0
    completed_date: Optional[datetime] = None
    signature: Optional[str] = None
    notes: Optional[str] = None
    items: List[InspectionItem] = field(default_factory=list)


@dataclass
class InspectionSchedule:
    id: str
    facility_id: str
    inspection_type: str
    scheduled_date: str
    scheduled_time: Optional[str]
    assigned_inspectors: List[str]
    status: str
    created_by: str
    notes: Optional[str] = None


class NotFoundError(LookupError):
    """A row does not exist or lies outside the caller's scope."""
