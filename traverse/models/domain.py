from __future__ import annotations

import re
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake_case attributes, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def dump(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Severity(StrEnum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self]


SEVERITY_RANK: dict[Severity, int] = {
    Severity.CRITICAL: 0,
    Severity.WARNING: 1,
    Severity.INFO: 2,
}


class ComplianceStatus(StrEnum):
    MET = "met"
    WARNING = "warning"
    CRITICAL = "critical"
    NOT_CHECKED = "not_checked"


class Confidence(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class NarrativeStrength(StrEnum):
    WEAK = "WEAK"
    MODERATE = "MODERATE"
    STRONG = "STRONG"


class ApplicationAssessment(StrEnum):
    ADDITIONAL_DOCUMENTS_NEEDED = "ADDITIONAL_DOCUMENTS_NEEDED"
    SIGNIFICANT_ISSUES = "SIGNIFICANT_ISSUES"
    APPLICATION_PROCEEDS = "APPLICATION_PROCEEDS"

    @property
    def gravity(self) -> int:
        """Decision order: SIGNIFICANT_ISSUES > ADDITIONAL_DOCUMENTS_NEEDED > APPLICATION_PROCEEDS."""
        return {
            ApplicationAssessment.APPLICATION_PROCEEDS: 0,
            ApplicationAssessment.ADDITIONAL_DOCUMENTS_NEEDED: 1,
            ApplicationAssessment.SIGNIFICANT_ISSUES: 2,
        }[self]


class TravelPurpose(StrEnum):
    TOURISM = "tourism"
    BUSINESS = "business"
    WORK = "work"
    STUDY = "study"
    MEDICAL = "medical"
    TRANSIT = "transit"
    FAMILY = "family"
    DIGITAL_NOMAD = "digital_nomad"


def _coerce_enum(value: Any, enum_cls: type[StrEnum], default: StrEnum) -> Any:
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        for member in enum_cls:
            if member.value.lower() == lowered:
                return member
    return default


def slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


# --- Research output ---


class SourceReference(CamelModel):
    name: str
    url: str = ""
    date_accessed: Optional[str] = None


class RequirementItem(CamelModel):
    id: str = ""
    name: str
    description: str
    required: bool = True
    confidence: Confidence = Confidence.HIGH
    source: Optional[str] = None
    uploadable: Optional[bool] = None
    personalized_detail: Optional[str] = None
    universal: Optional[bool] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _lenient_confidence(cls, value: Any) -> Any:
        if value is None:
            return Confidence.HIGH
        return _coerce_enum(value, Confidence, Confidence.MEDIUM)

    @field_validator("required", mode="before")
    @classmethod
    def _default_required(cls, value: Any) -> Any:
        return True if value is None else value


class Fees(CamelModel):
    visa: str = "To be determined"
    service: Optional[str] = None


class ApplicationWindow(CamelModel):
    earliest: str
    latest: str


class HealthRequirement(CamelModel):
    type: str
    required: bool = False
    note: Optional[str] = None


class FinancialThresholds(CamelModel):
    daily_minimum: Optional[str] = None
    total_recommended: Optional[str] = None
    currency: Optional[str] = None
    notes: Optional[str] = None


class AlternativeVisa(CamelModel):
    type: str
    processing_time: Optional[str] = None
    note: Optional[str] = None


class PostArrivalRegistration(CamelModel):
    required: bool = False
    deadline: Optional[str] = None
    where: Optional[str] = None


class DocumentLanguage(CamelModel):
    accepted: list[str] = Field(default_factory=list)
    translation_required: Optional[bool] = None
    certified_translation: Optional[bool] = None


class TransitVisaInfo(CamelModel):
    warning: str
    applies: Optional[str] = None


class RequirementsChecklist(CamelModel):
    corridor: str
    visa_type: str
    visa_required: bool = True
    items: list[RequirementItem] = Field(default_factory=list)
    fees: Fees = Field(default_factory=Fees)
    processing_time: str = ""
    apply_at: str = ""
    important_notes: list[str] = Field(default_factory=list)
    sources: Optional[list[SourceReference]] = None

    application_window: Optional[ApplicationWindow] = None
    common_rejection_reasons: Optional[list[str]] = None
    health_requirements: Optional[list[HealthRequirement]] = None
    financial_thresholds: Optional[FinancialThresholds] = None
    alternative_visa_types: Optional[list[AlternativeVisa]] = None
    post_arrival_registration: Optional[PostArrivalRegistration] = None
    document_language: Optional[DocumentLanguage] = None
    transit_visa_info: Optional[TransitVisaInfo] = None

    @model_validator(mode="after")
    def _assign_requirement_ids(self) -> "RequirementsChecklist":
        # Ids are stable once assigned; only blanks are filled in.
        for index, item in enumerate(self.items):
            if not item.id:
                item.id = f"req-{index + 1}-{slugify(item.name)}"
        return self


# --- Document agent output ---


class DocumentExtraction(CamelModel):
    id: str
    doc_type: str = "unknown"
    language: str = "Unknown"
    extracted_text: str = ""
    structured_data: dict[str, Any] = Field(default_factory=dict)


class ComplianceItem(CamelModel):
    requirement: str
    status: ComplianceStatus = ComplianceStatus.NOT_CHECKED
    detail: Optional[str] = None
    document_ref: Optional[str] = None
    requirement_id: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _lenient_status(cls, value: Any) -> Any:
        return _coerce_enum(value, ComplianceStatus, ComplianceStatus.NOT_CHECKED)


class ComplianceResult(CamelModel):
    met: int = 0
    warnings: int = 0
    critical: int = 0
    items: list[ComplianceItem] = Field(default_factory=list)


class _SeverityModel(CamelModel):
    severity: Severity = Severity.INFO

    @field_validator("severity", mode="before")
    @classmethod
    def _lenient_severity(cls, value: Any) -> Any:
        return _coerce_enum(value, Severity, Severity.INFO)


class DocExcerpt(CamelModel):
    id: str = ""
    language: str = ""
    text: str = ""


class CrossLingualFinding(_SeverityModel):
    finding: str
    doc1: Optional[DocExcerpt] = None
    doc2: Optional[DocExcerpt] = None
    reasoning: str = ""


class NarrativeIssue(_SeverityModel):
    category: str = ""
    description: str = ""


class NarrativeAssessment(CamelModel):
    strength: NarrativeStrength = NarrativeStrength.MODERATE
    issues: list[NarrativeIssue] = Field(default_factory=list)
    summary: str = ""

    @field_validator("strength", mode="before")
    @classmethod
    def _lenient_strength(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.upper()
        return _coerce_enum(value, NarrativeStrength, NarrativeStrength.MODERATE)


class ForensicFlag(_SeverityModel):
    finding: str
    detail: str = ""
    document_ref: Optional[str] = None


class CrossDocFinding(_SeverityModel):
    finding: str
    detail: str = ""


class DocumentAnalysis(CamelModel):
    compliance: ComplianceResult = Field(default_factory=ComplianceResult)
    cross_lingual_findings: list[CrossLingualFinding] = Field(default_factory=list)
    narrative_assessment: NarrativeAssessment = Field(default_factory=NarrativeAssessment)
    forensic_flags: list[ForensicFlag] = Field(default_factory=list)

    @classmethod
    def empty(cls, summary: str) -> "DocumentAnalysis":
        return cls(narrative_assessment=NarrativeAssessment(summary=summary))


class CrossCheckResult(CamelModel):
    compliance: ComplianceItem
    cross_doc_findings: list[CrossDocFinding] = Field(default_factory=list)


# --- Advisory ---


class RemediationItem(_SeverityModel):
    priority: int = 0
    issue: str
    fix: str
    document_ref: Optional[str] = None
    requirement_id: Optional[str] = None
    requirement: Optional[str] = None


class AdvisoryReport(CamelModel):
    overall: ApplicationAssessment = ApplicationAssessment.ADDITIONAL_DOCUMENTS_NEEDED
    fixes: list[RemediationItem] = Field(default_factory=list)
    interview_tips: list[str] = Field(default_factory=list)
    corridor_warnings: list[str] = Field(default_factory=list)


class AnalysisResult(CamelModel):
    requirements: Optional[RequirementsChecklist] = None
    extractions: Optional[list[DocumentExtraction]] = None
    analysis: Optional[DocumentAnalysis] = None
    advisory: Optional[AdvisoryReport] = None
