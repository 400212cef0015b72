"""
Inspection checklist scoring.
"""

from typing import Iterable, List, Tuple

from healthinspect.models import InspectionItem

GENERAL_RESPONSES = {"yes", "no", "na"}
PHARMACY_RESPONSES = {"compliant", "non_compliant", "not_applicable"}
PHARMACY_CATEGORY = "pharmacy_inspection"


def score_item(item: InspectionItem) -> InspectionItem:
    """Fill in item.actual_score from its response and return the item."""
    response = (item.response or "").strip().lower() or None
    if response is not None and response not in GENERAL_RESPONSES | PHARMACY_RESPONSES:
        raise ValueError(f"Unsupported response '{item.response}' for item '{item.question}'.")
    item.response = response

    if response in PHARMACY_RESPONSES:
        # Official pharmacy form: one point per line, N/A counts as met.
        item.max_score = 1
        item.actual_score = 0 if response == "non_compliant" else 1
    elif response == "yes":
        item.actual_score = item.max_score
    else:
        item.actual_score = 0
    return item


def score_items(items: Iterable[InspectionItem]) -> Tuple[List[InspectionItem], float, float]:
    """Score every item; return (items, total_score, max_possible_score).

    General "na" answers and unanswered items are left out of the maximum.
    """
    scored = [score_item(i) for i in items]
    total = 0.0
    maximum = 0.0
    for item in scored:
        if item.response is None or item.response == "na":
            continue
        total += item.actual_score
        maximum += item.max_score
    return scored, total, maximum


def compliance_percentage(total: float, maximum: float) -> float:
    if maximum <= 0:
        return 0.0
    return round(total / maximum * 100, 1)
