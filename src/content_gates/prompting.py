"""Prompt construction for each stage.

Templates live in ``prompts/*.txt``; user-supplied strings are sanitised
before they are substituted.
"""

from __future__ import annotations

import re
from typing import Optional

from content_gates.models import (
    ContentGuardInput,
    ContentRequest,
    EntityProfile,
    KeywordInput,
    OpportunityGuardInput,
    TemplateGuardInput,
    TemplateRequest,
)
from content_gates.resources import read_text

_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")
_SPACE_RE = re.compile(r"\s+")
_PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")


def sanitize_for_prompt(value: Optional[str], max_length: int = 500) -> str:
    """Strip control characters, collapse whitespace and cap the length."""
    if not value:
        return ""
    text = _CONTROL_RE.sub(" ", value)
    text = _SPACE_RE.sub(" ", text).strip()
    return text[:max_length]


def sanitize_keyword(value: str) -> str:
    return sanitize_for_prompt(value, 200)


def sanitize_location(value: Optional[str]) -> str:
    return sanitize_for_prompt(value, 100)


def _safe_format(template: str, **kwargs: str) -> str:
    """Substitute {key} placeholders without raising on unrecognised braces.

    Python's str.format() fails when the template contains literal JSON braces.
    This helper only replaces explicitly provided keys and leaves everything
    else untouched.  Substitution is a single pass, so braces inside a
    substituted value are never expanded.
    """
    return _PLACEHOLDER_RE.sub(lambda m: kwargs.get(m.group(1), m.group(0)), template)


def _context(payload: KeywordInput, missing_location: str = "global") -> dict:
    return {
        "keyword": sanitize_keyword(payload.keyword),
        "location": sanitize_location(payload.location) or missing_location,
        "business_type": payload.business_type or "unspecified",
    }


def _bullets(items, fmt=str) -> str:
    return "\n".join(f"- {fmt(item)}" for item in items) or "(none)"


# ── Stage prompts ────────────────────────────────────────────────────────────

def intent_prompt(payload: KeywordInput, prompt_version: str) -> str:
    return _safe_format(
        read_text("prompts/analyze_intent.txt"),
        prompt_version=prompt_version,
        **_context(payload),
    )


def opportunity_guard_prompt(payload: OpportunityGuardInput) -> str:
    analysis = payload.intent_analysis
    chosen = payload.selected_opportunity
    siblings = [
        opp for i, opp in enumerate(analysis.opportunities) if i != payload.selected_opportunity_index
    ]
    return _safe_format(
        read_text("prompts/approve_opportunity.txt"),
        classification=analysis.query_classification,
        all_titles=_bullets(analysis.opportunities, lambda o: sanitize_for_prompt(o.title)),
        title=sanitize_for_prompt(chosen.title),
        description=sanitize_for_prompt(chosen.description),
        rationale=sanitize_for_prompt(chosen.rationale),
        confidence=chosen.confidence,
        siblings=_bullets(
            siblings,
            lambda o: f"{sanitize_for_prompt(o.title)}: {sanitize_for_prompt(o.description)}",
        ),
        **_context(payload, missing_location="Not specified"),
    )


def templates_prompt(payload: TemplateRequest, prompt_version: str) -> str:
    opp = payload.selected_opportunity
    return _safe_format(
        read_text("prompts/propose_templates.txt"),
        prompt_version=prompt_version,
        title=sanitize_for_prompt(opp.title),
        description=sanitize_for_prompt(opp.description),
        user_goals=", ".join(sanitize_for_prompt(g, 200) for g in opp.user_goals),
        attributes=", ".join(sanitize_for_prompt(a, 200) for a in opp.content_attributes_needed),
        **_context(payload),
    )


def template_guard_prompt(payload: TemplateGuardInput) -> str:
    opp = payload.opportunity
    return _safe_format(
        read_text("prompts/approve_template.txt"),
        opportunity_title=sanitize_for_prompt(opp.title),
        opportunity_description=sanitize_for_prompt(opp.description),
        user_goals=", ".join(sanitize_for_prompt(g, 200) for g in opp.user_goals),
        template_name=sanitize_for_prompt(payload.template.name),
        template_description=sanitize_for_prompt(payload.template.description),
        structure=_bullets(payload.template.structure, sanitize_for_prompt),
        **_context(payload, missing_location="Not specified"),
    )


def entity_context(entity: EntityProfile) -> str:
    """Render verified business facts for the enhanced content prompt."""
    addr = entity.address
    lines = [
        "ENTITY PROFILE (verified business data; use ONLY these facts, never invent):",
        f"Business Name: {sanitize_for_prompt(entity.business_name)}",
        f"Phone: {sanitize_for_prompt(entity.phone)}",
        "Address: "
        + sanitize_for_prompt(f"{addr.street}, {addr.city}, {addr.state} {addr.postal_code}, {addr.country}"),
        f"Service Area: {', '.join(sanitize_for_prompt(a, 100) for a in entity.service_area)}",
    ]
    if entity.business_type_detail:
        lines.append(f"Business Detail: {sanitize_for_prompt(entity.business_type_detail)}")
    if entity.email:
        lines.append(f"Email: {sanitize_for_prompt(entity.email)}")
    if entity.website:
        lines.append(f"Website: {sanitize_for_prompt(entity.website)}")

    open_days = [h for h in entity.hours if not h.closed]
    if open_days:
        lines.append("Hours: " + ", ".join(f"{h.day}: {h.open}-{h.close}" for h in open_days))

    lines.append("Services:")
    for i, service in enumerate(entity.services, 1):
        line = f"  {i}. {sanitize_for_prompt(service.name)}: {sanitize_for_prompt(service.description)}"
        if service.price_range:
            line += f" | Price: {sanitize_for_prompt(service.price_range)}"
        if service.duration:
            line += f" | Duration: {sanitize_for_prompt(service.duration)}"
        lines.append(line)

    if entity.founding_year:
        lines.append(f"Founded: {entity.founding_year}")
    if entity.certifications:
        lines.append(f"Certifications: {', '.join(sanitize_for_prompt(c, 100) for c in entity.certifications)}")
    if entity.awards:
        lines.append(f"Awards: {', '.join(sanitize_for_prompt(a, 100) for a in entity.awards)}")
    if entity.average_rating:
        lines.append(f"Rating: {entity.average_rating}/5 ({entity.review_count or 0} reviews)")
    for key, value in entity.custom_attributes.items():
        lines.append(f"{sanitize_for_prompt(key, 100)}: {sanitize_for_prompt(value)}")
    return "\n".join(lines)


def content_prompt(payload: ContentRequest, prompt_version: str) -> str:
    template = payload.selected_template
    sections = "\n".join(
        f"{i}. {s.heading_level.upper()}: \"{sanitize_for_prompt(s.heading_text)}\" "
        f"({s.content_type}) - {sanitize_for_prompt(s.rationale)}"
        for i, s in enumerate(template.sections, 1)
    )
    faqs = "\n".join(
        f"{i}. Q: \"{sanitize_for_prompt(f.question)}\" - Guidance: {sanitize_for_prompt(f.answer_guidance)}"
        for i, f in enumerate(template.faqs, 1)
    )
    name = "prompts/generate_content_enhanced.txt" if payload.entity_profile else "prompts/generate_content.txt"
    prompt = _safe_format(
        read_text(name),
        prompt_version=prompt_version,
        template_name=sanitize_for_prompt(template.name),
        h1=sanitize_for_prompt(template.h1),
        sections=sections,
        faqs=faqs,
        cta_text=sanitize_for_prompt(template.cta_suggestion.text),
        cta_position=template.cta_suggestion.position,
        entity_context=entity_context(payload.entity_profile) if payload.entity_profile else "",
        **_context(payload),
    )
    hint = sanitize_for_prompt(payload.improvement_hint, 1000)
    if hint:
        prompt += (
            "\n\nA previous draft was rejected by the editorial review. "
            f"Address this feedback in the new draft: {hint}"
        )
    return prompt


def content_guard_prompt(payload: ContentGuardInput) -> str:
    opp = payload.opportunity
    content = payload.content
    sections = "\n\n".join(
        f"{i}. {sanitize_for_prompt(s.heading_text)} ({s.heading_level})\n"
        f"   Content preview: {sanitize_for_prompt(s.content, 200)}..."
        for i, s in enumerate(content.sections, 1)
    )
    faqs = "\n\n".join(
        f"{i}. {sanitize_for_prompt(f.question)}\n   Answer: {sanitize_for_prompt(f.answer, 150)}..."
        for i, f in enumerate(content.faqs, 1)
    )
    return _safe_format(
        read_text("prompts/approve_content.txt"),
        opportunity_title=sanitize_for_prompt(opp.title),
        opportunity_description=sanitize_for_prompt(opp.description),
        user_goals=", ".join(sanitize_for_prompt(g, 200) for g in opp.user_goals),
        template_name=sanitize_for_prompt(payload.template.name),
        template_sections=" | ".join(sanitize_for_prompt(s.heading_text) for s in payload.template.sections),
        title=sanitize_for_prompt(content.title),
        h1=sanitize_for_prompt(content.h1),
        meta_description=sanitize_for_prompt(content.meta_description),
        word_count=str(content.metadata.word_count),
        sections=sections,
        faqs=faqs,
        cta=sanitize_for_prompt(content.cta.text),
        **_context(payload, missing_location="Not specified"),
    )
