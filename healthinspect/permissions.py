"""
Role-permission matrix – resolving a user's role into a capability set.

Every role maps to exactly one Permission in ROLE_PERMISSIONS. Anything that
does not parse as a Role resolves to NO_PERMISSIONS, so unknown or legacy role
strings get a fully locked-down view instead of inheriting another role's rights.
"""

from typing import Dict, List, Optional, Tuple, Union

from healthinspect.models import FacilityType, Permission, Role, User

ALL_FACILITY_TYPES = frozenset(FacilityType)
HOSPITAL_AND_CLINIC = frozenset({FacilityType.HOSPITAL, FacilityType.CLINIC})
PHARMACY_ONLY = frozenset({FacilityType.PHARMACY})

NO_PERMISSIONS = Permission()


# ── Policy table ─────────────────────────────────────────────────────

ROLE_PERMISSIONS: Dict[Role, Permission] = {
    Role.SUPER_ADMIN: Permission(
        can_view_dashboard=True,
        can_view_facilities=True,
        can_add_facilities=True,
        can_edit_facilities=True,
        can_delete_facilities=True,
        can_view_inspections=True,
        can_conduct_inspections=True,
        can_view_reports=True,
        can_view_users=True,
        can_add_users=True,
        can_edit_users=True,
        can_delete_users=True,
        can_suspend_users=True,
        facility_types=ALL_FACILITY_TYPES,
        can_view_all_districts=True,
    ),
    Role.ADMIN: Permission(
        can_view_dashboard=True,
        can_view_facilities=True,
        can_add_facilities=True,
        can_edit_facilities=True,
        can_view_inspections=True,
        can_conduct_inspections=True,
        can_view_reports=True,
        can_view_users=True,
        facility_types=ALL_FACILITY_TYPES,
        can_view_all_districts=True,
    ),
    Role.PHARMACY_SUPERVISOR: Permission(
        can_view_dashboard=True,
        can_view_facilities=True,
        can_view_inspections=True,
        can_conduct_inspections=True,
        can_view_reports=True,
        can_view_users=True,
        facility_types=PHARMACY_ONLY,
        can_view_all_districts=True,
    ),
    Role.HOSPITAL_SUPERVISOR: Permission(
        can_view_dashboard=True,
        can_view_facilities=True,
        can_view_inspections=True,
        can_conduct_inspections=True,
        can_view_reports=True,
        can_view_users=True,
        facility_types=HOSPITAL_AND_CLINIC,
        can_view_all_districts=True,
    ),
    Role.PHARMACY_INSPECTOR: Permission(
        can_view_facilities=True,
        can_view_inspections=True,
        can_conduct_inspections=True,
        can_view_reports=True,
        facility_types=PHARMACY_ONLY,
    ),
    Role.HOSPITAL_INSPECTOR: Permission(
        can_view_facilities=True,
        can_view_inspections=True,
        can_conduct_inspections=True,
        can_view_reports=True,
        facility_types=HOSPITAL_AND_CLINIC,
    ),
}

assert set(ROLE_PERMISSIONS) == set(Role), "ROLE_PERMISSIONS must cover every Role"

ROLE_DISPLAY_NAMES: Dict[Role, str] = {
    Role.SUPER_ADMIN: "Super Administrator",
    Role.ADMIN: "General Administrator",
    Role.PHARMACY_SUPERVISOR: "Pharmacy Supervisor",
    Role.HOSPITAL_SUPERVISOR: "Hospital Supervisor",
    Role.PHARMACY_INSPECTOR: "Pharmacy Inspector",
    Role.HOSPITAL_INSPECTOR: "Hospital Inspector",
}

ROLE_COLORS: Dict[Role, str] = {
    Role.SUPER_ADMIN: "bg-purple-100 text-purple-800",
    Role.ADMIN: "bg-blue-100 text-blue-800",
    Role.PHARMACY_SUPERVISOR: "bg-green-100 text-green-800",
    Role.HOSPITAL_SUPERVISOR: "bg-red-100 text-red-800",
    Role.PHARMACY_INSPECTOR: "bg-green-50 text-green-700",
    Role.HOSPITAL_INSPECTOR: "bg-red-50 text-red-700",
}
DEFAULT_ROLE_COLOR = "bg-gray-100 text-gray-800"

# (section id, label, gating flag) in sidebar order
NAVIGATION_SECTIONS: List[Tuple[str, str, str]] = [
    ("dashboard", "Dashboard", "can_view_dashboard"),
    ("facility-management", "Manage Facilities", "can_manage_facilities"),
    ("inspections", "Inspections", "can_view_inspections"),
    ("reports", "Reports", "can_view_reports"),
    ("users", "User Management", "can_view_users"),
]


# ── Resolution ───────────────────────────────────────────────────────

def parse_role(value: Union[Role, str, None]) -> Optional[Role]:
    """Return the Role for *value*, or None if it is not a known role."""
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError:
        return None


def get_user_permissions(user: Optional[User]) -> Permission:
    """Resolve the capability set for *user*. Unknown roles get nothing."""
    if user is None:
        return NO_PERMISSIONS
    role = parse_role(user.role)
    if role is None:
        return NO_PERMISSIONS
    return ROLE_PERMISSIONS[role]


# ── Predicates ───────────────────────────────────────────────────────

def can_access_facility_type(user: User, facility_type: Union[FacilityType, str]) -> bool:
    try:
        ftype = FacilityType(facility_type)
    except ValueError:
        return False
    return ftype in get_user_permissions(user).facility_types


def can_access_district(user: User, district: Optional[str]) -> bool:
    """True if *district* is visible to *user* (all districts, or their own)."""
    permissions = get_user_permissions(user)
    if permissions.can_view_all_districts:
        return True
    if not user.district or not district:
        return False
    return user.district.strip().lower() == district.strip().lower()


def can_access_facility(user: User, facility) -> bool:
    """Combined facility-type and district check for a Facility-like object."""
    return (
        can_access_facility_type(user, facility.type)
        and can_access_district(user, facility.district)
    )


def can_manage_users(user: User) -> bool:
    permissions = get_user_permissions(user)
    return permissions.can_add_users or permissions.can_edit_users or permissions.can_delete_users


def can_manage_facilities(user: User) -> bool:
    permissions = get_user_permissions(user)
    return permissions.can_add_facilities or permissions.can_edit_facilities


def has_permission(user: Optional[User], flag: str) -> bool:
    """Look up a capability by name; also accepts the composite manage flags."""
    if flag == "can_manage_users":
        return user is not None and can_manage_users(user)
    if flag == "can_manage_facilities":
        return user is not None and can_manage_facilities(user)
    value = getattr(get_user_permissions(user), flag)
    if not isinstance(value, bool):
        raise ValueError(f"'{flag}' is not a boolean capability")
    return value


def require_permission(user: Optional[User], flag: str) -> None:
    """Raise PermissionError unless *user* holds capability *flag*."""
    if not has_permission(user, flag):
        role = get_role_display_name(user.role) if user else "anonymous"
        raise PermissionError(f"{role} is not allowed to perform this action ({flag}).")


def visible_sections(user: Optional[User]) -> List[Tuple[str, str]]:
    """Navigation entries the user may open, as (section id, label)."""
    return [
        (section_id, label)
        for section_id, label, flag in NAVIGATION_SECTIONS
        if has_permission(user, flag)
    ]


# ── Display helpers ──────────────────────────────────────────────────

def get_role_display_name(role: Union[Role, str]) -> str:
    parsed = parse_role(role)
    if parsed is None:
        return str(role)
    return ROLE_DISPLAY_NAMES[parsed]


def get_role_color(role: Union[Role, str]) -> str:
    parsed = parse_role(role)
    if parsed is None:
        return DEFAULT_ROLE_COLOR
    return ROLE_COLORS[parsed]


def permissions_to_dict(permission: Permission) -> Dict[str, object]:
    """JSON-friendly view of a Permission (facility types as a sorted list)."""
    return {
        "can_view_dashboard": permission.can_view_dashboard,
        "can_view_facilities": permission.can_view_facilities,
        "can_add_facilities": permission.can_add_facilities,
        "can_edit_facilities": permission.can_edit_facilities,
        "can_delete_facilities": permission.can_delete_facilities,
        "can_view_inspections": permission.can_view_inspections,
        "can_conduct_inspections": permission.can_conduct_inspections,
        "can_view_reports": permission.can_view_reports,
        "can_view_users": permission.can_view_users,
        "can_add_users": permission.can_add_users,
        "can_edit_users": permission.can_edit_users,
        "can_delete_users": permission.can_delete_users,
        "can_suspend_users": permission.can_suspend_users,
        "facility_types": sorted(t.value for t in permission.facility_types),
        "can_view_all_districts": permission.can_view_all_districts,
    }
