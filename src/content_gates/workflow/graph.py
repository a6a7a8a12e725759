"""LangGraph pipelines for the workflow's compound actions.

Pipelines:
  - opportunity gate:  review the selected opportunity, then propose templates.
  - template gate:     review the selected template, then generate and review content.
  - regenerate:        generate a new draft with an improvement hint, then review it.

Nodes call the stage client.  A failed call ends the pipeline with the error
recorded in state; whatever completed before it is still returned so that the
controller can apply it.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from langgraph.graph import END, StateGraph
from pydantic import BaseModel, TypeAdapter

from content_gates.models import (
    ContentVerdict,
    DraftPayload,
    IntentAnalysis,
    Opportunity,
    OpportunityVerdict,
    RunInput,
    TemplateProposal,
    TemplateStructure,
    TemplateVerdict,
)
from content_gates.workflow.client import HttpStageClient, StageCallError

_draft_adapter: TypeAdapter[DraftPayload] = TypeAdapter(DraftPayload)


def _error(exc: StageCallError) -> dict:
    return {
        "error": {
            "code": exc.code,
            "message": exc.message,
            "status": exc.status,
            "request_id": exc.request_id,
        }
    }


def _error_from(error: Optional[Dict[str, Any]]) -> Optional[StageCallError]:
    if not error:
        return None
    return StageCallError(
        error["code"], error.get("message") or "", error.get("status"), error.get("request_id")
    )


def _final(result: Any) -> Dict[str, Any]:
    if isinstance(result, dict):
        return result
    return result.model_dump()


def _approved(verdict: Optional[Dict[str, Any]]) -> bool:
    return bool(verdict and verdict.get("approved"))


# ══════════════════════════════════════════════════════════════════════════════
# PIPELINE 1: Opportunity gate
# ══════════════════════════════════════════════════════════════════════════════

class OpportunityGateState(BaseModel):
    run: Dict[str, Any]
    analysis: Dict[str, Any]
    selected_index: int
    verdict: Optional[Dict[str, Any]] = None
    proposal: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None


def build_opportunity_graph(client: HttpStageClient):
    def review(state: OpportunityGateState) -> dict:
        run = RunInput.model_validate(state.run)
        analysis = IntentAnalysis.model_validate(state.analysis)
        try:
            verdict = client.approve_opportunity(run, analysis, state.selected_index)
        except StageCallError as exc:
            return _error(exc)
        return {"verdict": verdict.model_dump(mode="json")}

    def propose(state: OpportunityGateState) -> dict:
        run = RunInput.model_validate(state.run)
        opportunity = IntentAnalysis.model_validate(state.analysis).opportunities[state.selected_index]
        try:
            proposal = client.propose_templates(run, opportunity, state.selected_index)
        except StageCallError as exc:
            return _error(exc)
        return {"proposal": proposal.model_dump(mode="json")}

    def after_review(state: OpportunityGateState) -> str:
        if state.error or not _approved(state.verdict):
            return "stop"
        return "propose"

    graph = StateGraph(OpportunityGateState)
    graph.add_node("review", review)
    graph.add_node("propose", propose)
    # an already-approved opportunity skips straight to the proposal
    graph.set_conditional_entry_point(
        lambda state: "propose" if _approved(state.verdict) else "review",
        {"review": "review", "propose": "propose"},
    )
    graph.add_conditional_edges("review", after_review, {"propose": "propose", "stop": END})
    graph.add_edge("propose", END)
    return graph.compile()


def run_opportunity_gate(
    client: HttpStageClient,
    run: RunInput,
    analysis: IntentAnalysis,
    selected_index: int,
    verdict: Optional[OpportunityVerdict] = None,
) -> Tuple[Optional[OpportunityVerdict], Optional[TemplateProposal], Optional[StageCallError]]:
    """Returns (verdict, proposal, error); the proposal is only set when approved."""
    compiled = build_opportunity_graph(client)
    result = _final(
        compiled.invoke(
            OpportunityGateState(
                run=run.model_dump(mode="json"),
                analysis=analysis.model_dump(mode="json"),
                selected_index=selected_index,
                verdict=verdict.model_dump(mode="json") if verdict else None,
            )
        )
    )
    out_verdict = OpportunityVerdict.model_validate(result["verdict"]) if result.get("verdict") else None
    proposal = TemplateProposal.model_validate(result["proposal"]) if result.get("proposal") else None
    return out_verdict, proposal, _error_from(result.get("error"))


# ══════════════════════════════════════════════════════════════════════════════
# PIPELINE 2: Template gate (and regeneration)
# ══════════════════════════════════════════════════════════════════════════════

class ContentGateState(BaseModel):
    run: Dict[str, Any]
    opportunity: Dict[str, Any]
    template: Dict[str, Any]
    selected_index: int
    improvement_hint: Optional[str] = None
    template_verdict: Optional[Dict[str, Any]] = None
    draft: Optional[Dict[str, Any]] = None
    content_verdict: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None


def build_content_graph(client: HttpStageClient, review_template: bool = True):
    """Template review (optional) -> generate -> content review."""

    def review_template_node(state: ContentGateState) -> dict:
        run = RunInput.model_validate(state.run)
        try:
            verdict = client.approve_template(
                run,
                Opportunity.model_validate(state.opportunity),
                TemplateStructure.model_validate(state.template),
                state.selected_index,
            )
        except StageCallError as exc:
            return _error(exc)
        return {"template_verdict": verdict.model_dump(mode="json")}

    def generate(state: ContentGateState) -> dict:
        run = RunInput.model_validate(state.run)
        try:
            draft = client.generate_content(
                run,
                TemplateStructure.model_validate(state.template),
                state.selected_index,
                improvement_hint=state.improvement_hint,
            )
        except StageCallError as exc:
            return _error(exc)
        return {"draft": draft.model_dump(mode="json")}

    def review_content(state: ContentGateState) -> dict:
        run = RunInput.model_validate(state.run)
        try:
            verdict = client.approve_content(
                run,
                Opportunity.model_validate(state.opportunity),
                TemplateStructure.model_validate(state.template),
                _draft_adapter.validate_python(state.draft),
            )
        except StageCallError as exc:
            return _error(exc)
        return {"content_verdict": verdict.model_dump(mode="json")}

    def after_template_review(state: ContentGateState) -> str:
        if state.error or not _approved(state.template_verdict):
            return "stop"
        return "generate"

    def after_generate(state: ContentGateState) -> str:
        return "stop" if state.error else "review_content"

    graph = StateGraph(ContentGateState)
    graph.add_node("generate", generate)
    graph.add_node("review_content", review_content)
    if review_template:
        graph.add_node("review_template", review_template_node)
        graph.set_conditional_entry_point(
            lambda state: "generate" if _approved(state.template_verdict) else "review_template",
            {"review_template": "review_template", "generate": "generate"},
        )
        graph.add_conditional_edges(
            "review_template", after_template_review, {"generate": "generate", "stop": END}
        )
    else:
        graph.set_entry_point("generate")
    graph.add_conditional_edges("generate", after_generate, {"review_content": "review_content", "stop": END})
    graph.add_edge("review_content", END)
    return graph.compile()


def run_content_gate(
    client: HttpStageClient,
    run: RunInput,
    opportunity: Opportunity,
    template: TemplateStructure,
    selected_index: int,
    template_verdict: Optional[TemplateVerdict] = None,
    improvement_hint: Optional[str] = None,
    review_template: bool = True,
) -> Tuple[
    Optional[TemplateVerdict],
    Optional[DraftPayload],
    Optional[ContentVerdict],
    Optional[StageCallError],
]:
    """Returns (template_verdict, draft, content_verdict, error).

    Draft and content verdict are both set or both ``None``.
    """
    compiled = build_content_graph(client, review_template=review_template)
    result = _final(
        compiled.invoke(
            ContentGateState(
                run=run.model_dump(mode="json"),
                opportunity=opportunity.model_dump(mode="json"),
                template=template.model_dump(mode="json"),
                selected_index=selected_index,
                improvement_hint=improvement_hint,
                template_verdict=template_verdict.model_dump(mode="json") if template_verdict else None,
            )
        )
    )
    out_template_verdict = (
        TemplateVerdict.model_validate(result["template_verdict"]) if result.get("template_verdict") else None
    )
    draft = content_verdict = None
    if result.get("draft") and result.get("content_verdict"):
        draft = _draft_adapter.validate_python(result["draft"])
        content_verdict = ContentVerdict.model_validate(result["content_verdict"])
    return out_template_verdict, draft, content_verdict, _error_from(result.get("error"))
