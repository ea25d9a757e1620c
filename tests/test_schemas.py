"""Tests for request validation, trip arithmetic and checklist personalization."""
from datetime import date

import pytest
from pydantic import ValidationError

from traverse.models.domain import (
    ApplicationAssessment,
    ComplianceItem,
    ComplianceStatus,
    FinancialThresholds,
    RequirementItem,
    RequirementsChecklist,
    RemediationItem,
    Severity,
)
from traverse.models.schemas import TranslateRequest, TravelDetails, UploadedDocument, add_months
from traverse.services.personalization import LUMP_SUM_MARKER, minimal_checklist, personalize


def _travel(**overrides):
    data = {
        "passports": ["India"],
        "destination": "Germany",
        "purpose": "tourism",
        "dates": {"depart": "2026-03-10", "return": "2026-03-25"},
    }
    data.update(overrides)
    return TravelDetails.model_validate(data)


def test_add_months_clamps_to_month_end():
    assert add_months(date(2026, 8, 31), 6) == date(2027, 2, 28)
    assert add_months(date(2027, 8, 31), 6) == date(2028, 2, 29)
    assert add_months(date(2026, 3, 25), 6) == date(2026, 9, 25)


def test_travel_details_derived_values():
    travel = _travel(passports=["India", "UK"], purpose="digital_nomad")
    assert travel.corridor == "India or UK → Germany"
    assert travel.purpose_label == "digital nomad"
    assert travel.trip_days == 15
    assert travel.passport_valid_until == date(2026, 9, 25)
    assert travel.travelers == 1


@pytest.mark.parametrize(
    "overrides",
    [
        {"passports": []},
        {"passports": ["  "]},
        {"destination": ""},
        {"purpose": "holiday"},
        {"dates": {"depart": "2026-02-30", "return": "2026-03-25"}},
        {"dates": {"depart": "2026-3-10", "return": "2026-03-25"}},
        {"dates": {"depart": "2026-03-25", "return": "2026-03-25"}},
        {"travelers": 0},
        {"travelers": 101},
        {"travelers": "2"},
    ],
)
def test_invalid_travel_details(overrides):
    with pytest.raises(ValidationError):
        _travel(**overrides)


def test_uploaded_document_rejects_pdf():
    with pytest.raises(ValidationError):
        UploadedDocument(id="d", filename="a.pdf", mime_type="application/pdf", base64="x", size_bytes=1)


def test_checklist_assigns_stable_ids():
    checklist = RequirementsChecklist(
        corridor="A → B",
        visa_type="C",
        items=[
            RequirementItem(name="Bank Statement (3 months)", description="d"),
            RequirementItem(id="custom", name="Photo", description="d"),
        ],
    )
    assert [item.id for item in checklist.items] == ["req-1-bank-statement-3-months", "custom"]
    reloaded = RequirementsChecklist.model_validate(checklist.dump())
    assert [item.id for item in reloaded.items] == [item.id for item in checklist.items]


def test_lenient_enums_and_wire_aliases():
    item = ComplianceItem.model_validate({"requirement": "X", "status": "MET", "documentRef": "passport"})
    assert item.status == ComplianceStatus.MET
    assert ComplianceItem.model_validate({"requirement": "X", "status": "maybe"}).status == ComplianceStatus.NOT_CHECKED
    assert RemediationItem.model_validate({"severity": "high", "issue": "i", "fix": "f"}).severity == Severity.INFO
    assert item.dump() == {"requirement": "X", "status": "met", "documentRef": "passport"}


def test_translate_request_payload_drops_empty_sections():
    request = TranslateRequest.model_validate(
        {"language": "French", "uiStrings": {"a": "b"}, "items": [], "dynamicTexts": ["x"]}
    )
    assert request.needs_translation
    assert request.payload() == {"uiStrings": {"a": "b"}, "dynamicTexts": ["x"]}
    assert not TranslateRequest(language=" english ").needs_translation
    assert not TranslateRequest(language="").needs_translation


def test_personalize_does_not_touch_lump_sum_thresholds():
    travel = _travel()
    checklist = RequirementsChecklist(
        corridor="Nigeria → United Kingdom",
        visa_type="Standard Visitor",
        financial_thresholds=FinancialThresholds(daily_minimum=LUMP_SUM_MARKER, total_recommended="GBP 2,000"),
        items=[
            RequirementItem(name="Proof of Funds", description="d"),
            RequirementItem(name="Tuberculosis Test", description="d"),
        ],
    )
    personalized = personalize(checklist, travel)
    assert personalized.financial_thresholds.total_recommended == "GBP 2,000"
    assert personalized.items == checklist.items


def test_personalize_itinerary_and_accommodation():
    travel = _travel()
    checklist = RequirementsChecklist(
        corridor="India → Germany",
        visa_type="C",
        items=[
            RequirementItem(name="Flight Itinerary", description="d"),
            RequirementItem(name="Hotel Booking", description="d"),
        ],
    )
    flight, hotel = personalize(checklist, travel).items
    assert flight.personalized_detail == "Flight bookings for 2026-03-10 to 2026-03-25"
    assert hotel.personalized_detail == "Bookings covering all 15 nights (2026-03-10 to 2026-03-25)"


def test_minimal_checklist():
    checklist = minimal_checklist(_travel())
    assert checklist.visa_type == "Unknown - Research Required"
    assert checklist.items[0].personalized_detail == "Passport must be valid until 2026-09-25"
    assert checklist.sources == []


def test_assessment_gravity_order():
    ordered = sorted(ApplicationAssessment, key=lambda verdict: verdict.gravity, reverse=True)
    assert ordered == [
        ApplicationAssessment.SIGNIFICANT_ISSUES,
        ApplicationAssessment.ADDITIONAL_DOCUMENTS_NEEDED,
        ApplicationAssessment.APPLICATION_PROCEEDS,
    ]
