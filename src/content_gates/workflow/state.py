"""Workflow states and the pure transition function.

The workflow is linear: input -> gate A (opportunity) -> gate B (template)
-> result.  Every later state embeds the earlier one, so stepping back is a
matter of unwrapping, and nothing produced after the rollback target
survives.  ``transition`` never performs I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, model_validator

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


class InvalidTransition(Exception):
    """The event is not allowed in the current state."""


class _State(BaseModel):
    model_config = ConfigDict(frozen=True)


class InputState(_State):
    stage: Literal["input"] = "input"
    run: RunInput


class GateAState(_State):
    stage: Literal["gate_a"] = "gate_a"
    run: RunInput
    analysis: IntentAnalysis
    selected_index: Optional[int] = None
    verdict: Optional[OpportunityVerdict] = None
    pending_back: bool = False

    @property
    def selected(self) -> Optional[Opportunity]:
        if self.selected_index is None:
            return None
        return self.analysis.opportunities[self.selected_index]

    @property
    def approved(self) -> bool:
        return self.verdict is not None and self.verdict.approved


class GateBState(_State):
    stage: Literal["gate_b"] = "gate_b"
    gate_a: GateAState
    proposal: TemplateProposal
    selected_index: Optional[int] = None
    verdict: Optional[TemplateVerdict] = None
    pending_back: bool = False

    @model_validator(mode="after")
    def _opportunity_approved(self) -> "GateBState":
        if not self.gate_a.approved or self.gate_a.selected_index is None:
            raise ValueError("gate B needs an approved opportunity")
        return self

    @property
    def run(self) -> RunInput:
        return self.gate_a.run

    @property
    def opportunity(self) -> Opportunity:
        return self.gate_a.selected

    @property
    def selected(self) -> Optional[TemplateStructure]:
        if self.selected_index is None:
            return None
        return self.proposal.templates[self.selected_index]

    @property
    def approved(self) -> bool:
        return self.verdict is not None and self.verdict.approved


class ResultState(_State):
    stage: Literal["result"] = "result"
    gate_b: GateBState
    draft: DraftPayload
    verdict: ContentVerdict
    published_id: Optional[str] = None
    pending_back: bool = False

    @model_validator(mode="after")
    def _template_approved(self) -> "ResultState":
        if not self.gate_b.approved or self.gate_b.selected_index is None:
            raise ValueError("result needs an approved template")
        return self

    @property
    def run(self) -> RunInput:
        return self.gate_b.run

    @property
    def approved(self) -> bool:
        return self.verdict.approved


WorkflowState = Union[InputState, GateAState, GateBState, ResultState]


def run_of(state: WorkflowState) -> RunInput:
    return state.run


# ── Events ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class IntentAnalyzed:
    analysis: IntentAnalysis


@dataclass(frozen=True)
class OpportunitySelected:
    index: int


@dataclass(frozen=True)
class OpportunityReviewed:
    verdict: OpportunityVerdict


@dataclass(frozen=True)
class TemplatesProposed:
    proposal: TemplateProposal


@dataclass(frozen=True)
class TemplateSelected:
    index: int


@dataclass(frozen=True)
class TemplateReviewed:
    verdict: TemplateVerdict


@dataclass(frozen=True)
class ContentGenerated:
    draft: DraftPayload
    verdict: ContentVerdict


@dataclass(frozen=True)
class ContentRegenerated:
    draft: DraftPayload
    verdict: ContentVerdict


@dataclass(frozen=True)
class Published:
    result_id: str


@dataclass(frozen=True)
class BackRequested:
    pass


@dataclass(frozen=True)
class BackConfirmed:
    pass


@dataclass(frozen=True)
class BackCancelled:
    pass


@dataclass(frozen=True)
class Reset:
    run: Optional[RunInput] = None


Event = Union[
    IntentAnalyzed,
    OpportunitySelected,
    OpportunityReviewed,
    TemplatesProposed,
    TemplateSelected,
    TemplateReviewed,
    ContentGenerated,
    ContentRegenerated,
    Published,
    BackRequested,
    BackConfirmed,
    BackCancelled,
    Reset,
]


def _reject(state: WorkflowState, event: Event, why: str = "") -> InvalidTransition:
    message = f"{type(event).__name__} is not allowed in stage {state.stage}"
    return InvalidTransition(f"{message}: {why}" if why else message)


def _check_index(index: int, size: int, what: str) -> None:
    if not 0 <= index < size:
        raise InvalidTransition(f"{what} index {index} is out of range (0..{size - 1})")


# ── Transition ───────────────────────────────────────────────────────────────

def transition(state: WorkflowState, event: Event) -> WorkflowState:
    """Return the state that follows *event*, or raise :class:`InvalidTransition`."""
    if isinstance(event, Reset):
        return InputState(run=event.run or state.run)

    if getattr(state, "pending_back", False):
        if isinstance(event, BackConfirmed):
            return _roll_back(state)
        if isinstance(event, BackCancelled):
            return state.model_copy(update={"pending_back": False})
        raise _reject(state, event, "a step back is awaiting confirmation")
    if isinstance(event, (BackConfirmed, BackCancelled)):
        raise _reject(state, event, "no step back was requested")

    if isinstance(state, InputState):
        return _from_input(state, event)
    if isinstance(state, GateAState):
        return _from_gate_a(state, event)
    if isinstance(state, GateBState):
        return _from_gate_b(state, event)
    return _from_result(state, event)


def _from_input(state: InputState, event: Event) -> WorkflowState:
    if isinstance(event, IntentAnalyzed):
        return GateAState(run=state.run, analysis=event.analysis)
    raise _reject(state, event)


def _from_gate_a(state: GateAState, event: Event) -> WorkflowState:
    if isinstance(event, OpportunitySelected):
        _check_index(event.index, len(state.analysis.opportunities), "opportunity")
        # a new selection invalidates the previous verdict
        return state.model_copy(update={"selected_index": event.index, "verdict": None})
    if isinstance(event, OpportunityReviewed):
        if state.selected_index is None:
            raise _reject(state, event, "select an opportunity first")
        return state.model_copy(update={"verdict": event.verdict})
    if isinstance(event, TemplatesProposed):
        if not state.approved:
            raise _reject(state, event, "the selected opportunity is not approved")
        return GateBState(gate_a=state, proposal=event.proposal)
    if isinstance(event, BackRequested):
        return InputState(run=state.run)
    raise _reject(state, event)


def _from_gate_b(state: GateBState, event: Event) -> WorkflowState:
    if isinstance(event, TemplateSelected):
        _check_index(event.index, len(state.proposal.templates), "template")
        return state.model_copy(update={"selected_index": event.index, "verdict": None})
    if isinstance(event, TemplateReviewed):
        if state.selected_index is None:
            raise _reject(state, event, "select a template first")
        return state.model_copy(update={"verdict": event.verdict})
    if isinstance(event, ContentGenerated):
        if not state.approved:
            raise _reject(state, event, "the selected template is not approved")
        return ResultState(gate_b=state, draft=event.draft, verdict=event.verdict)
    if isinstance(event, BackRequested):
        return state.model_copy(update={"pending_back": True})
    raise _reject(state, event)


def _from_result(state: ResultState, event: Event) -> WorkflowState:
    if isinstance(event, ContentRegenerated):
        if state.published_id is not None:
            raise _reject(state, event, "the draft is already published")
        return state.model_copy(update={"draft": event.draft, "verdict": event.verdict})
    if isinstance(event, Published):
        if not state.approved:
            raise _reject(state, event, "the draft is not approved")
        if state.published_id is not None:
            raise _reject(state, event, "the draft is already published")
        return state.model_copy(update={"published_id": event.result_id})
    if isinstance(event, BackRequested):
        return state.model_copy(update={"pending_back": True})
    raise _reject(state, event)


def _roll_back(state: WorkflowState) -> WorkflowState:
    # the target keeps its selection but must be validated again
    if isinstance(state, GateBState):
        return state.gate_a.model_copy(update={"verdict": None})
    if isinstance(state, ResultState):
        return state.gate_b.model_copy(update={"verdict": None})
    raise InvalidTransition(f"stage {state.stage} has no confirmed step back")
