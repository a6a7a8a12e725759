"""Pydantic v2 contracts for content-gates stages."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

BusinessType = Literal[
    "real_estate",
    "hospitality",
    "saas",
    "local_services",
    "education",
    "healthcare",
    "food_and_beverage",
    "professional_services",
]
BUSINESS_TYPES = (
    "real_estate",
    "hospitality",
    "saas",
    "local_services",
    "education",
    "healthcare",
    "food_and_beverage",
    "professional_services",
)
Level = Literal["low", "medium", "high"]
HeadingLevel = Literal["h2", "h3"]
CtaPosition = Literal["top", "middle", "bottom"]

SLUG_PATTERN = r"^[a-z0-9-]+$"
VERSION_PATTERN = r"^v\d+\.\d+\.\d+$"


def _check_iso_timestamp(value: str) -> str:
    # fromisoformat() only accepts a trailing "Z" from 3.11 on
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValueError(f"not an ISO-8601 timestamp: {value!r}") from exc
    return value


# ── Input ────────────────────────────────────────────────────────────────────

class KeywordInput(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    keyword: str = Field(min_length=1, max_length=200)
    location: Optional[str] = Field(default=None, max_length=100)
    business_type: Optional[BusinessType] = None


# ── Entity profile (user-provided business data, never LLM-invented) ────────

class GeoCoordinates(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class BusinessHours(BaseModel):
    day: Literal["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
    open: str = Field(pattern=r"^\d{2}:\d{2}$")
    close: str = Field(pattern=r"^\d{2}:\d{2}$")
    closed: bool = False


class Service(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=10, max_length=500)
    price_range: Optional[str] = Field(default=None, max_length=100)
    duration: Optional[str] = Field(default=None, max_length=100)
    availability: Optional[str] = Field(default=None, max_length=200)
    custom_attributes: Dict[str, str] = Field(default_factory=dict)


class Address(BaseModel):
    street: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    postal_code: str = Field(min_length=1)
    country: str = Field(default="MX", min_length=1)


class EntityProfile(BaseModel):
    business_name: str = Field(min_length=1, max_length=200)
    business_type_detail: Optional[str] = Field(default=None, max_length=200)
    address: Address
    phone: str = Field(min_length=5, max_length=20)
    email: Optional[str] = Field(default=None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    website: Optional[str] = Field(default=None, pattern=r"^https?://\S+$")
    coordinates: Optional[GeoCoordinates] = None
    service_area: List[str] = Field(min_length=1, max_length=20)
    hours: List[BusinessHours] = Field(min_length=1, max_length=7)
    services: List[Service] = Field(min_length=1, max_length=20)
    founding_year: Optional[int] = Field(default=None, ge=1800, le=2100)
    certifications: List[str] = Field(default_factory=list, max_length=20)
    awards: List[str] = Field(default_factory=list, max_length=20)
    team_size: Optional[str] = Field(default=None, max_length=50)
    review_count: Optional[int] = Field(default=None, ge=0)
    average_rating: Optional[float] = Field(default=None, ge=1, le=5)
    custom_attributes: Dict[str, str] = Field(default_factory=dict)


class RunInput(KeywordInput):
    """Everything the user types before the first stage runs."""

    entity_profile: Optional[EntityProfile] = None


# ── Shared metadata ──────────────────────────────────────────────────────────

class GenerationMetadata(BaseModel):
    model: str = Field(min_length=1)
    prompt_version: str = Field(pattern=VERSION_PATTERN)
    timestamp: str

    @field_validator("timestamp")
    @classmethod
    def _timestamp_is_iso(cls, value: str) -> str:
        return _check_iso_timestamp(value)


class ContentMetadata(GenerationMetadata):
    word_count: int = Field(gt=0)


# ── Intent analysis (Gate A candidates) ──────────────────────────────────────

RiskIndicator = Literal[
    "thin_content",
    "generic_angle",
    "high_competition",
    "low_volume",
    "seasonal_query",
    "intent_mismatch",
    "monetization_weak",
    "eeat_risk",
]


class Opportunity(BaseModel):
    title: str = Field(min_length=1)
    description: str = Field(min_length=10)
    confidence: Level
    user_goals: List[str] = Field(min_length=1)
    content_attributes_needed: List[str] = Field(min_length=1)
    rationale: str = Field(min_length=10)
    risk_indicators: List[RiskIndicator] = Field(default_factory=list)
    aeo_potential: Optional[Level] = None
    geo_potential: Optional[Level] = None


class IntentAnalysis(BaseModel):
    query_classification: Literal["informational", "transactional", "navigational", "commercial"]
    primary_user_goals: List[str] = Field(min_length=1, max_length=5)
    opportunities: List[Opportunity] = Field(min_length=5, max_length=10)
    metadata: GenerationMetadata


# ── Template proposal (Gate B candidates) ────────────────────────────────────

class TemplateSection(BaseModel):
    heading_level: HeadingLevel
    heading_text: str = Field(min_length=1)
    content_type: Literal["text", "list", "table", "comparison", "faq"]
    rationale: str = Field(min_length=10)


class FaqGuidance(BaseModel):
    question: str = Field(min_length=5)
    answer_guidance: str = Field(min_length=10)


class CallToAction(BaseModel):
    text: str = Field(min_length=1)
    position: CtaPosition


class AeoStrategy(BaseModel):
    snippet_type: str = Field(min_length=1)
    voice_questions: List[str] = Field(min_length=1, max_length=5)
    answer_unit_count: int = Field(ge=5, le=15)


class GeoStrategy(BaseModel):
    schema_types: List[str] = Field(min_length=1)
    chunking_strategy: str = Field(min_length=1)
    evidence_density: Level


class TemplateStructure(BaseModel):
    name: str = Field(min_length=1)
    slug: str = Field(pattern=SLUG_PATTERN)
    title: str = Field(min_length=1)
    h1: str = Field(min_length=1)
    sections: List[TemplateSection] = Field(min_length=3, max_length=15)
    faqs: List[FaqGuidance] = Field(min_length=3, max_length=10)
    cta_suggestion: CallToAction
    internal_link_suggestions: List[str] = Field(default_factory=list, max_length=10)
    schema_org_types: List[str] = Field(min_length=1)
    rationale: str = Field(min_length=20)
    aeo_strategy: Optional[AeoStrategy] = None
    geo_strategy: Optional[GeoStrategy] = None


class TemplateProposal(BaseModel):
    templates: List[TemplateStructure] = Field(min_length=2, max_length=3)
    metadata: GenerationMetadata


# ── Content draft (final deliverable) ────────────────────────────────────────

class GeneratedSection(BaseModel):
    heading_level: HeadingLevel
    heading_text: str = Field(min_length=1)
    content: str = Field(min_length=50)


class Faq(BaseModel):
    question: str = Field(min_length=5)
    answer: str = Field(min_length=20)


class ContentDraft(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    slug: str = Field(pattern=SLUG_PATTERN)
    h1: str = Field(min_length=1, max_length=150)
    meta_description: str = Field(min_length=50, max_length=160)
    sections: List[GeneratedSection] = Field(min_length=3)
    faqs: List[Faq] = Field(min_length=3)
    cta: CallToAction
    metadata: ContentMetadata


class EnhancedSection(GeneratedSection):
    chunk_id: str = Field(pattern=SLUG_PATTERN)
    is_self_contained: bool
    word_count: int = Field(gt=0)
    topic_tags: List[str] = Field(min_length=1, max_length=5)


class CitableAnswerUnit(BaseModel):
    question: str = Field(min_length=10, max_length=200)
    answer: str = Field(min_length=150, max_length=350)
    answer_word_count: int = Field(ge=40, le=80)
    topic_tag: str = Field(min_length=1, max_length=50)
    evidence_type: Literal["factual", "descriptive", "comparative", "procedural"]
    source_field: Optional[str] = None


class EvidenceClaim(BaseModel):
    claim_text: str = Field(min_length=10)
    claim_type: Literal["entity_fact", "general_knowledge", "statistical", "testimonial", "procedural"]
    source: str = Field(min_length=1)
    verifiable: bool
    section_index: int = Field(ge=0)


class EvidenceLayer(BaseModel):
    claims: List[EvidenceClaim] = Field(min_length=1)
    total_claims: int = Field(gt=0)
    verifiable_count: int = Field(ge=0)
    verifiable_ratio: float = Field(ge=0, le=1)


class EntityCard(BaseModel):
    business_name: str
    address_formatted: str
    phone: str
    services_highlighted: List[str] = Field(min_length=1, max_length=5)
    hours_summary: str
    rating_summary: Optional[str] = None


class EnhancedContentDraft(ContentDraft):
    """Draft produced when the run carries an entity profile."""

    sections: List[EnhancedSection] = Field(min_length=3)
    citable_answer_units: List[CitableAnswerUnit] = Field(min_length=5, max_length=15)
    evidence_layer: EvidenceLayer
    entity_card: EntityCard


# Enhanced first so that its extra fields survive a round trip.
DraftPayload = Union[EnhancedContentDraft, ContentDraft]


# ── Gate verdicts ────────────────────────────────────────────────────────────

OpportunityRisk = Literal["duplicate_risk", "generic", "mismatch_intent", "thin", "unsafe_claims"]
TemplateRisk = Literal[
    "generic_structure",
    "mismatch_opportunity",
    "thin_content_risk",
    "duplicate_pattern",
    "overoptimized",
]
ContentRisk = Literal[
    "thin_content",
    "generic_language",
    "mismatch_intent",
    "overoptimized",
    "hallucination_risk",
    "eeat_weak",
    "duplicate_angle",
    "answer_unit_too_short",
    "answer_unit_too_long",
    "low_evidence_ratio",
    "entity_data_mismatch",
    "chunk_not_self_contained",
    "missing_eeat_signals",
]


class OpportunityVerdict(BaseModel):
    approved: bool
    reasons: List[str] = Field(min_length=1)
    risk_flags: List[OpportunityRisk] = Field(default_factory=list)
    suggested_fix: str = ""


class TemplateVerdict(BaseModel):
    approved: bool
    reasons: List[str] = Field(default_factory=list)
    risk_flags: List[TemplateRisk] = Field(default_factory=list)
    suggested_fix: str = ""


class ContentVerdict(BaseModel):
    approved: bool
    reasons: List[str] = Field(min_length=1)
    risk_flags: List[ContentRisk] = Field(default_factory=list)
    suggested_fix: str = ""


Verdict = Union[OpportunityVerdict, TemplateVerdict, ContentVerdict]


# ── Stage request payloads ───────────────────────────────────────────────────

class _StageRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    keyword: str = Field(min_length=1, max_length=200)
    location: Optional[str] = Field(default=None, max_length=100)
    business_type: Optional[BusinessType] = None


class OpportunityGuardInput(_StageRequest):
    intent_analysis: IntentAnalysis
    selected_opportunity_index: int = Field(ge=0)
    selected_opportunity: Opportunity

    @model_validator(mode="after")
    def _index_in_range(self) -> "OpportunityGuardInput":
        if self.selected_opportunity_index >= len(self.intent_analysis.opportunities):
            raise ValueError("selected_opportunity_index is out of range")
        return self


class TemplateRequest(_StageRequest):
    selected_opportunity: Opportunity = Field(
        validation_alias=AliasChoices("selected_opportunity", "selectedOpportunity"),
    )
    selected_opportunity_index: int = Field(
        ge=0,
        validation_alias=AliasChoices("selected_opportunity_index", "selectedOpportunityIndex"),
    )


class TemplateSummary(BaseModel):
    """The slice of a template the template gate needs to judge."""

    name: str
    description: str
    structure: List[str]

    @classmethod
    def of(cls, template: TemplateStructure) -> "TemplateSummary":
        return cls(
            name=template.name,
            description=template.rationale,
            structure=[s.heading_text for s in template.sections],
        )


class TemplateGuardInput(_StageRequest):
    opportunity: Opportunity
    selected_template_index: int = Field(ge=0)
    template: TemplateSummary


class ContentRequest(_StageRequest):
    selected_template: TemplateStructure = Field(
        validation_alias=AliasChoices("selected_template", "selectedTemplate"),
    )
    selected_template_index: int = Field(
        ge=0,
        validation_alias=AliasChoices("selected_template_index", "selectedTemplateIndex"),
    )
    entity_profile: Optional[EntityProfile] = None
    improvement_hint: Optional[str] = Field(default=None, max_length=1000)


class ContentGuardInput(_StageRequest):
    opportunity: Opportunity
    template: TemplateStructure
    content: DraftPayload


def _check_bundle_selection(bundle: "PublishInput | ResultBundle"):
    if not bundle.guard_content_result.approved:
        raise ValueError("content must pass the content gate before publishing")
    if bundle.selected_opportunity_index >= len(bundle.intent_analysis.opportunities):
        raise ValueError("selected_opportunity_index is out of range")
    if bundle.selected_template_index >= len(bundle.template_proposal.templates):
        raise ValueError("selected_template_index is out of range")
    return bundle


class PublishInput(_StageRequest):
    entity_profile: Optional[EntityProfile] = None
    intent_analysis: IntentAnalysis
    selected_opportunity_index: int = Field(ge=0)
    template_proposal: TemplateProposal
    selected_template_index: int = Field(ge=0)
    content_draft: DraftPayload
    guard_content_result: ContentVerdict

    @model_validator(mode="after")
    def _approved_and_in_range(self) -> "PublishInput":
        return _check_bundle_selection(self)


# ── Published bundle ─────────────────────────────────────────────────────────

class ResultBundle(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(pattern=SLUG_PATTERN)
    keyword: str = Field(min_length=1)
    location: Optional[str] = None
    business_type: Optional[BusinessType] = None
    entity_profile: Optional[EntityProfile] = None
    intent_analysis: IntentAnalysis
    selected_opportunity_index: int = Field(ge=0)
    template_proposal: TemplateProposal
    selected_template_index: int = Field(ge=0)
    content_draft: DraftPayload
    guard_content_result: ContentVerdict
    published_at: str

    @field_validator("published_at")
    @classmethod
    def _published_at_is_iso(cls, value: str) -> str:
        return _check_iso_timestamp(value)

    # stored records are re-checked on every read
    @model_validator(mode="after")
    def _approved_and_in_range(self) -> "ResultBundle":
        return _check_bundle_selection(self)


class ResultSummary(BaseModel):
    id: str
    keyword: str
    published_at: str


class PublishReceipt(BaseModel):
    id: str
    url: str
