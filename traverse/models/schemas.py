from __future__ import annotations

import calendar
import re
from datetime import date
from typing import Annotated, Any, Literal, Optional

from pydantic import Field, StringConstraints, field_validator, model_validator

from traverse.models.domain import (
    CamelModel,
    ComplianceItem,
    DocumentExtraction,
    RemediationItem,
    RequirementItem,
    RequirementsChecklist,
    TravelPurpose,
)

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


def add_months(value: date, months: int) -> date:
    """Calendar month arithmetic, clamping to the last day of the target month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


class TravelDates(CamelModel):
    depart: date
    return_date: date = Field(alias="return")

    @field_validator("depart", "return_date", mode="before")
    @classmethod
    def _iso_calendar_date(cls, value: Any) -> Any:
        if isinstance(value, date):
            return value
        if not isinstance(value, str) or not _ISO_DATE.match(value):
            raise ValueError("Invalid date format (YYYY-MM-DD)")
        return value

    @model_validator(mode="after")
    def _return_after_depart(self) -> "TravelDates":
        if self.return_date <= self.depart:
            raise ValueError("Return date must be after departure date")
        return self


class TravelDetails(CamelModel):
    passports: list[NonEmptyStr] = Field(min_length=1)
    destination: NonEmptyStr
    purpose: TravelPurpose
    dates: TravelDates
    travelers: int = Field(default=1, ge=1, le=100, strict=True)
    event: Optional[str] = None

    @property
    def corridor(self) -> str:
        """Canonical corridor label, e.g. ``India → Germany``."""
        return f"{' or '.join(self.passports)} → {self.destination}"

    @property
    def purpose_label(self) -> str:
        return self.purpose.value.replace("_", " ")

    @property
    def trip_days(self) -> int:
        return (self.dates.return_date - self.dates.depart).days

    @property
    def passport_valid_until(self) -> date:
        return add_months(self.dates.return_date, 6)


class UploadedDocument(CamelModel):
    id: str
    filename: NonEmptyStr
    mime_type: Literal["image/png", "image/jpeg"]
    base64: NonEmptyStr
    size_bytes: float = Field(gt=0)


class AnalyzeRequest(CamelModel):
    travel_details: TravelDetails
    documents: list[UploadedDocument] = Field(default_factory=list)
    test: bool = False


class DocumentAnalysisRequest(CamelModel):
    document: UploadedDocument
    requirement: RequirementItem
    previous_extractions: list[DocumentExtraction] = Field(default_factory=list)


class AdvisoryRequest(CamelModel):
    requirements: RequirementsChecklist
    extractions: list[DocumentExtraction] = Field(default_factory=list)
    compliances: list[ComplianceItem] = Field(default_factory=list)
    prior_fixes: Optional[list[RemediationItem]] = None


class TranslateItem(CamelModel):
    name: str
    description: str = ""


class CorridorInfo(CamelModel):
    corridor: str
    visa_type: str


class TranslateRequest(CamelModel):
    language: str = ""
    ui_strings: Optional[dict[str, str]] = None
    items: Optional[list[TranslateItem]] = None
    corridor_info: Optional[CorridorInfo] = None
    important_notes: Optional[list[str]] = None
    dynamic_texts: Optional[list[str]] = None

    @property
    def needs_translation(self) -> bool:
        return bool(self.language.strip()) and self.language.strip().lower() != "english"

    def payload(self) -> dict[str, Any]:
        """The translatable content, keyed as the client sent it; empty sections are dropped."""
        payload: dict[str, Any] = {}
        if self.ui_strings:
            payload["uiStrings"] = self.ui_strings
        if self.items:
            payload["items"] = [item.dump() for item in self.items]
        if self.corridor_info:
            payload["corridorInfo"] = self.corridor_info.dump()
        if self.important_notes:
            payload["importantNotes"] = self.important_notes
        if self.dynamic_texts:
            payload["dynamicTexts"] = self.dynamic_texts
        return payload
