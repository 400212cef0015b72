"""
Dashboard statistics and compliance reports over facility/inspection lists.
"""

from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

import pandas as pd

from healthinspect.config import COMPLIANCE_THRESHOLD, FACILITY_TYPES
from healthinspect.models import Facility, Inspection, Permission


def facilities_frame(facilities: List[Facility]) -> pd.DataFrame:
    columns = ["id", "name", "type", "district", "compliance_score", "last_inspection_date"]
    if not facilities:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame([asdict(f) for f in facilities])[columns]


def inspections_frame(inspections: List[Inspection]) -> pd.DataFrame:
    columns = ["id", "facility_id", "district", "status", "start_date", "compliance_percentage"]
    if not inspections:
        return pd.DataFrame(columns=columns)
    rows = [{c: getattr(i, c) for c in columns} for i in inspections]
    return pd.DataFrame(rows, columns=columns)


# ── Dashboard ────────────────────────────────────────────────────────

def compute_dashboard_stats(
    facilities: List[Facility],
    inspections: List[Inspection],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Headline numbers for the dashboard. Facilities that were never inspected
    count as score 0, so they show up as non-compliant until inspected.
    """
    now = now or datetime.utcnow()
    fdf = facilities_frame(facilities)
    idf = inspections_frame(inspections)

    by_type = fdf["type"].value_counts().to_dict() if not fdf.empty else {}
    scores = pd.to_numeric(fdf["compliance_score"], errors="coerce").fillna(0.0)

    stats: Dict[str, Any] = {
        "total_facilities": int(len(fdf)),
        "facilities_by_type": {t: int(by_type.get(t, 0)) for t in FACILITY_TYPES},
        "average_compliance": round(float(scores.mean()), 1) if len(scores) else 0.0,
        "non_compliant_facilities": int((scores < COMPLIANCE_THRESHOLD).sum()),
        "total_inspections": int(len(idf)),
        "inspections_this_month": 0,
        "pending_inspections": 0,
        "inspections_by_status": {},
    }
    if not idf.empty:
        started = pd.to_datetime(idf["start_date"])
        this_month = (started.dt.year == now.year) & (started.dt.month == now.month)
        stats["inspections_this_month"] = int(this_month.sum())
        stats["pending_inspections"] = int(idf["status"].isin(["draft", "submitted"]).sum())
        stats["inspections_by_status"] = {
            str(k): int(v) for k, v in idf["status"].value_counts().items()
        }
    return stats


def summarize_stats(stats: Dict[str, Any], permission: Permission) -> str:
    """One-line facility summary limited to the types the user can see."""
    counts = stats["facilities_by_type"]
    types = sorted(t.value for t in permission.facility_types)
    if types == ["pharmacy"]:
        return f"{counts['pharmacy']} Pharmacies"
    if types == ["clinic", "hospital"]:
        return f"{counts['hospital']} Hospitals, {counts['clinic']} Clinics"
    if not types:
        return "No facilities available"
    return f"{counts['hospital']} Hospitals, {counts['pharmacy']} Pharmacies, {counts['clinic']} Clinics"


# ── Compliance issues ────────────────────────────────────────────────

def find_compliance_issues(
    facilities: List[Facility],
    threshold: float = COMPLIANCE_THRESHOLD,
) -> List[Dict[str, Any]]:
    """Facilities below *threshold*, worst first. Uninspected ones are excluded."""
    fdf = facilities_frame(facilities)
    if fdf.empty:
        return []
    fdf["compliance_score"] = pd.to_numeric(fdf["compliance_score"], errors="coerce")
    issues = fdf[fdf["compliance_score"].notna() & (fdf["compliance_score"] < threshold)]
    issues = issues.sort_values(["compliance_score", "name"], ascending=[True, True])

    out = []
    for row in issues.itertuples(index=False):
        score = float(row.compliance_score)
        out.append({
            "facility_id": row.id,
            "name": row.name,
            "type": row.type,
            "district": row.district,
            "compliance_score": score,
            "severity": "critical" if score < threshold / 2 else "warning",
            "last_inspection_date": (
                row.last_inspection_date.isoformat() if row.last_inspection_date is not None
                and not pd.isna(row.last_inspection_date) else None
            ),
        })
    return out


def compliance_by_district(facilities: List[Facility]) -> Dict[str, float]:
    """Average compliance per district over inspected facilities."""
    fdf = facilities_frame(facilities)
    fdf["compliance_score"] = pd.to_numeric(fdf["compliance_score"], errors="coerce")
    fdf = fdf.dropna(subset=["compliance_score"])
    if fdf.empty:
        return {}
    means = fdf.groupby("district")["compliance_score"].mean().round(1)
    return {str(k): float(v) for k, v in means.items()}
