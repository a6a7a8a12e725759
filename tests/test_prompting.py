"""Tests for prompt construction and input sanitisation."""

import re

from content_gates.models import ContentRequest, EntityProfile, KeywordInput, TemplateStructure
from content_gates.prompting import (
    _safe_format,
    content_prompt,
    entity_context,
    intent_prompt,
    sanitize_for_prompt,
    sanitize_keyword,
)

from conftest import fixture_data

PROFILE = {
    "business_name": "Nube Ventas",
    "address": {
        "street": "Av. Chapultepec 123",
        "city": "Guadalajara",
        "state": "Jalisco",
        "postal_code": "44100",
    },
    "phone": "+52 33 1234 5678",
    "service_area": ["Guadalajara", "Zapopan"],
    "hours": [{"day": "monday", "open": "09:00", "close": "18:00"}],
    "services": [{"name": "CRM setup", "description": "Pipeline configuration and data import."}],
}

_PLACEHOLDER_RE = re.compile(r"\{(keyword|location|business_type|prompt_version|entity_context|h1|sections|faqs)\}")


class TestSanitize:
    def test_control_characters_and_whitespace(self):
        assert sanitize_for_prompt("best\x00 crm\n\n\tsoftware\x7f") == "best crm software"

    def test_truncates(self):
        assert len(sanitize_keyword("k" * 500)) == 200

    def test_empty(self):
        assert sanitize_for_prompt(None) == ""


class TestPrompts:
    def test_intent_prompt_fills_every_placeholder(self):
        prompt = intent_prompt(KeywordInput(keyword="best crm software", location="Austin"), "v1.2.3")
        assert "best crm software" in prompt
        assert "Austin" in prompt
        assert "v1.2.3" in prompt
        assert not _PLACEHOLDER_RE.search(prompt)
        # literal JSON braces survive
        assert '"query_classification"' in prompt

    def test_missing_location_reads_global(self):
        prompt = intent_prompt(KeywordInput(keyword="crm"), "v1.0.0")
        assert "Location: global" in prompt

    def test_braces_in_user_text_are_not_expanded(self):
        prompt = intent_prompt(KeywordInput(keyword="crm {location} {business_type}", location="Austin"), "v1.0.0")
        assert "Keyword: crm {location} {business_type}" in prompt
        assert "Location: Austin" in prompt

    def test_safe_format_is_a_single_pass(self):
        assert _safe_format("{a} {b} {c}", a="{b}", b="x") == "{b} x {c}"

    def _content_request(self, **extra):
        template = TemplateStructure.model_validate(fixture_data("TemplateProposal")["templates"][0])
        return ContentRequest(keyword="crm", selected_template=template, selected_template_index=0, **extra)

    def test_standard_content_prompt(self):
        prompt = content_prompt(self._content_request(), "v1.0.0")
        assert "citable_answer_units" not in prompt
        assert "How we compared CRM tools" in prompt
        assert not _PLACEHOLDER_RE.search(prompt)

    def test_content_prompts_carry_the_template_h1(self):
        for extra in ({}, {"entity_profile": PROFILE}):
            prompt = content_prompt(self._content_request(**extra), "v1.0.0")
            assert "H1: The Best CRM Software for Small Sales Teams" in prompt

    def test_entity_profile_selects_enhanced_prompt(self):
        prompt = content_prompt(self._content_request(entity_profile=PROFILE), "v1.0.0")
        assert "citable_answer_units" in prompt
        assert "Business Name: Nube Ventas" in prompt

    def test_improvement_hint_is_appended(self):
        prompt = content_prompt(self._content_request(improvement_hint="Add a\npricing table"), "v1.0.0")
        assert prompt.rstrip().endswith("Add a pricing table")

    def test_entity_context_lists_facts(self):
        text = entity_context(EntityProfile.model_validate(PROFILE))
        assert "Service Area: Guadalajara, Zapopan" in text
        assert "monday: 09:00-18:00" in text
        assert "1. CRM setup" in text
