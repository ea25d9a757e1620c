"""Tailor a corridor checklist to one traveller's dates."""
from __future__ import annotations

import re

from traverse.models.domain import FinancialThresholds, RequirementItem, RequirementsChecklist
from traverse.models.schemas import TravelDetails

LUMP_SUM_MARKER = "N/A (lump-sum requirement)"

_DAY_SPAN = re.compile(r"\d+-day")
_AMOUNT = re.compile(r"[\d,.]+")


def personalize(checklist: RequirementsChecklist, travel: TravelDetails) -> RequirementsChecklist:
    items = [_personalize_item(item, travel) for item in checklist.items]
    thresholds = _personalize_thresholds(checklist.financial_thresholds, travel.trip_days)
    return checklist.model_copy(update={"items": items, "financial_thresholds": thresholds})


def minimal_checklist(travel: TravelDetails) -> RequirementsChecklist:
    """Last-resort checklist when neither the backend nor the cache can answer."""
    return RequirementsChecklist(
        corridor=travel.corridor,
        visa_type="Unknown - Research Required",
        visa_required=True,
        items=[
            RequirementItem(
                name="Passport",
                description="Valid passport",
                personalized_detail=f"Passport must be valid until {travel.passport_valid_until.isoformat()}",
            ),
            RequirementItem(name="Visa Application Form", description="Completed visa application"),
        ],
        processing_time="Unknown",
        apply_at="Embassy or consulate",
        important_notes=["Unable to retrieve complete requirements. Please verify with official sources."],
        sources=[],
    )


def _personalize_item(item: RequirementItem, travel: TravelDetails) -> RequirementItem:
    name = item.name.lower()
    depart = travel.dates.depart.isoformat()
    ret = travel.dates.return_date.isoformat()
    days = travel.trip_days

    if "passport" in name and "valid" in name:
        detail = (
            f"Passport must be valid until at least {travel.passport_valid_until.isoformat()} "
            "(6 months after return)"
        )
    elif "itinerary" in name or "flight" in name:
        detail = f"Flight bookings for {depart} to {ret}"
    elif "accommodation" in name or "hotel" in name:
        detail = f"Bookings covering all {days} nights ({depart} to {ret})"
    elif "bank" in name or "fund" in name or "financial" in name:
        if not item.personalized_detail:
            return item
        detail = _DAY_SPAN.sub(f"{days}-day", item.personalized_detail)
    elif "insurance" in name:
        detail = f"Coverage required: {depart} to {ret} ({days} days)"
    else:
        return item
    return item.model_copy(update={"personalized_detail": detail})


def _personalize_thresholds(
    thresholds: FinancialThresholds | None,
    days: int,
) -> FinancialThresholds | None:
    if not thresholds or not thresholds.daily_minimum or thresholds.daily_minimum == LUMP_SUM_MARKER:
        return thresholds
    match = _AMOUNT.search(thresholds.daily_minimum)
    if not match:
        return thresholds
    try:
        daily = float(match.group(0).replace(",", ""))
    except ValueError:
        return thresholds
    total = round(daily * days)
    label = f"{thresholds.currency or ''} {total:,}+ for {days} days".strip()
    return thresholds.model_copy(update={"total_recommended": label})
