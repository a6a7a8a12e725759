"""Drives a :mod:`~content_gates.workflow.state` machine against the stage API.

Network work happens here; every state change goes through ``transition``.
A failed call leaves the state as it was (apart from any verdict that
arrived before the failure) and is kept in :attr:`WorkflowController.error`
until the next action.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from content_gates.models import RunInput
from content_gates.workflow.client import HttpStageClient, StageCallError
from content_gates.workflow.graph import run_content_gate, run_opportunity_gate
from content_gates.workflow.state import (
    BackCancelled,
    BackConfirmed,
    BackRequested,
    ContentGenerated,
    ContentRegenerated,
    Event,
    GateAState,
    GateBState,
    InputState,
    IntentAnalyzed,
    InvalidTransition,
    OpportunityReviewed,
    OpportunitySelected,
    Published,
    Reset,
    ResultState,
    TemplateReviewed,
    TemplateSelected,
    TemplatesProposed,
    WorkflowState,
    transition,
)

logger = logging.getLogger(__name__)


class WorkflowController:
    def __init__(self, client: HttpStageClient, run: RunInput) -> None:
        self.client = client
        self.state: WorkflowState = InputState(run=run)
        self.error: Optional[StageCallError] = None
        self._last_action: Optional[Callable[[], WorkflowState]] = None

    # ── plumbing ─────────────────────────────────────────────────────────

    def _apply(self, event: Event) -> WorkflowState:
        self.state = transition(self.state, event)
        return self.state

    def _expect(self, kind: type, action: str):
        if not isinstance(self.state, kind):
            raise InvalidTransition(f"{action} is not available in stage {self.state.stage}")
        return self.state

    def _network(self, action: Callable[[], WorkflowState]) -> WorkflowState:
        self._last_action = action
        self.error = None
        try:
            state = action()
        except StageCallError as exc:
            logger.warning("stage call failed: %s (request %s)", exc.code, exc.request_id)
            self.error = exc
            raise
        self._last_action = None
        return state

    # ── actions ──────────────────────────────────────────────────────────

    def analyze(self) -> WorkflowState:
        """Input -> gate A."""
        state = self._expect(InputState, "analyze")
        return self._network(lambda: self._apply(IntentAnalyzed(self.client.analyze_intent(state.run))))

    def select_opportunity(self, index: int) -> WorkflowState:
        return self._apply(OpportunitySelected(index))

    def validate_opportunity(self) -> WorkflowState:
        """Review the selected opportunity; on approval fetch templates and move to gate B."""
        state = self._expect(GateAState, "validate_opportunity")
        if state.selected_index is None:
            raise InvalidTransition("select an opportunity first")

        def action() -> WorkflowState:
            current = self.state
            verdict, proposal, error = run_opportunity_gate(
                self.client, current.run, current.analysis, current.selected_index, current.verdict
            )
            if verdict is not None and verdict != current.verdict:
                self._apply(OpportunityReviewed(verdict))
            if error is not None:
                raise error
            if proposal is not None:
                self._apply(TemplatesProposed(proposal))
            return self.state

        return self._network(action)

    def select_template(self, index: int) -> WorkflowState:
        return self._apply(TemplateSelected(index))

    def validate_template(self) -> WorkflowState:
        """Review the selected template; on approval generate, review and move to the result."""
        state = self._expect(GateBState, "validate_template")
        if state.selected_index is None:
            raise InvalidTransition("select a template first")

        def action() -> WorkflowState:
            current = self.state
            verdict, draft, content_verdict, error = run_content_gate(
                self.client,
                current.run,
                current.opportunity,
                current.selected,
                current.selected_index,
                template_verdict=current.verdict,
            )
            if verdict is not None and verdict != current.verdict:
                self._apply(TemplateReviewed(verdict))
            if error is not None:
                raise error
            if draft is not None:
                self._apply(ContentGenerated(draft, content_verdict))
            return self.state

        return self._network(action)

    def regenerate(self) -> WorkflowState:
        """Generate a new draft for the same selections, guided by the last review."""
        self._expect(ResultState, "regenerate")

        def action() -> WorkflowState:
            current = self.state
            gate_b = current.gate_b
            hint = current.verdict.suggested_fix or None
            _, draft, verdict, error = run_content_gate(
                self.client,
                current.run,
                gate_b.opportunity,
                gate_b.selected,
                gate_b.selected_index,
                template_verdict=gate_b.verdict,
                improvement_hint=hint,
                review_template=False,
            )
            if error is not None:
                raise error
            return self._apply(ContentRegenerated(draft, verdict))

        return self._network(action)

    def publish(self) -> WorkflowState:
        state = self._expect(ResultState, "publish")
        if not state.approved:
            raise InvalidTransition("the draft is not approved")
        if state.published_id is not None:
            raise InvalidTransition("the draft is already published")

        def action() -> WorkflowState:
            current = self.state
            gate_b = current.gate_b
            receipt = self.client.publish(
                current.run,
                gate_b.gate_a.analysis,
                gate_b.gate_a.selected_index,
                gate_b.proposal,
                gate_b.selected_index,
                current.draft,
                current.verdict,
            )
            return self._apply(Published(receipt.id))

        return self._network(action)

    def retry(self) -> WorkflowState:
        """Re-issue the last failed network action; the state is unchanged until it succeeds."""
        if self._last_action is None:
            raise InvalidTransition("nothing to retry")
        return self._network(self._last_action)

    # ── navigation ───────────────────────────────────────────────────────

    def back(self) -> WorkflowState:
        self.error = None
        self._last_action = None
        return self._apply(BackRequested())

    def confirm_back(self) -> WorkflowState:
        return self._apply(BackConfirmed())

    def cancel_back(self) -> WorkflowState:
        return self._apply(BackCancelled())

    def reset(self, run: Optional[RunInput] = None) -> WorkflowState:
        self.error = None
        self._last_action = None
        return self._apply(Reset(run))
