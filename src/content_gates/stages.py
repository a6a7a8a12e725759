"""Stage logic behind the HTTP endpoints.

Each method takes an already-validated request payload, builds the stage
prompt, runs it through the :class:`LLMInvoker` and returns the validated
artifact.  Failures surface as :class:`StageError`; choosing a status code is
left to the HTTP edge.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Type, TypeVar

from pydantic import BaseModel

from content_gates.config import Settings
from content_gates.llm.invoker import LLMCallSpec, LLMInvoker, Preset
from content_gates.models import (
    ContentDraft,
    ContentGuardInput,
    ContentRequest,
    ContentVerdict,
    DraftPayload,
    EnhancedContentDraft,
    IntentAnalysis,
    KeywordInput,
    OpportunityGuardInput,
    OpportunityVerdict,
    PublishInput,
    PublishReceipt,
    ResultBundle,
    TemplateGuardInput,
    TemplateProposal,
    TemplateRequest,
    TemplateVerdict,
)
from content_gates.prompting import (
    content_guard_prompt,
    content_prompt,
    intent_prompt,
    opportunity_guard_prompt,
    template_guard_prompt,
    templates_prompt,
)
from content_gates.storage import ResultStore, make_result_id

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class Stages:
    def __init__(
        self,
        invoker: LLMInvoker,
        settings: Settings,
        store: ResultStore,
        now: Callable[[], str] = utc_now_iso,
    ) -> None:
        self.invoker = invoker
        self.settings = settings
        self.store = store
        self._now = now

    def _run(self, prompt: str, contract: Type[T], preset: Preset, request_id: Optional[str]) -> T:
        spec = LLMCallSpec(prompt=prompt, output_contract=contract, preset=preset, request_id=request_id)
        return self.invoker.invoke(spec).unwrap()

    def _stamp(self, artifact: T) -> T:
        # the reported model name is descriptive; the configured one wins
        metadata = artifact.metadata.model_copy(update={"model": self.invoker.model})
        return artifact.model_copy(update={"metadata": metadata})

    # ── Gate A ───────────────────────────────────────────────────────────

    def analyze_intent(self, payload: KeywordInput, request_id: Optional[str] = None) -> IntentAnalysis:
        prompt = intent_prompt(payload, self.settings.prompt_version)
        analysis = self._run(prompt, IntentAnalysis, "classification", request_id)
        logger.info("intent analysed: %d opportunities", len(analysis.opportunities))
        return self._stamp(analysis)

    def approve_opportunity(
        self, payload: OpportunityGuardInput, request_id: Optional[str] = None
    ) -> OpportunityVerdict:
        return self._run(opportunity_guard_prompt(payload), OpportunityVerdict, "validation", request_id)

    # ── Gate B ───────────────────────────────────────────────────────────

    def propose_templates(self, payload: TemplateRequest, request_id: Optional[str] = None) -> TemplateProposal:
        prompt = templates_prompt(payload, self.settings.prompt_version)
        proposal = self._run(prompt, TemplateProposal, "generation", request_id)
        return self._stamp(proposal)

    def approve_template(self, payload: TemplateGuardInput, request_id: Optional[str] = None) -> TemplateVerdict:
        return self._run(template_guard_prompt(payload), TemplateVerdict, "validation", request_id)

    # ── Result ───────────────────────────────────────────────────────────

    def generate_content(self, payload: ContentRequest, request_id: Optional[str] = None) -> DraftPayload:
        contract = EnhancedContentDraft if payload.entity_profile else ContentDraft
        prompt = content_prompt(payload, self.settings.prompt_version)
        draft = self._run(prompt, contract, "creative", request_id)
        return self._stamp(draft)

    def approve_content(self, payload: ContentGuardInput, request_id: Optional[str] = None) -> ContentVerdict:
        return self._run(content_guard_prompt(payload), ContentVerdict, "validation", request_id)

    def publish(self, payload: PublishInput) -> PublishReceipt:
        bundle = ResultBundle(
            id=make_result_id(payload.content_draft.slug),
            keyword=payload.keyword,
            location=payload.location,
            business_type=payload.business_type,
            entity_profile=payload.entity_profile,
            intent_analysis=payload.intent_analysis,
            selected_opportunity_index=payload.selected_opportunity_index,
            template_proposal=payload.template_proposal,
            selected_template_index=payload.selected_template_index,
            content_draft=payload.content_draft,
            guard_content_result=payload.guard_content_result,
            published_at=self._now(),
        )
        self.store.save(bundle)
        logger.info("published %s", bundle.id)
        return PublishReceipt(id=bundle.id, url=f"/results/{bundle.id}")
