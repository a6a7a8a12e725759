"""Tests for workflow states and the pure transition function."""

import pytest
from pydantic import ValidationError

from content_gates.models import (
    ContentDraft,
    ContentVerdict,
    IntentAnalysis,
    OpportunityVerdict,
    RunInput,
    TemplateProposal,
    TemplateVerdict,
)
from content_gates.workflow.state import (
    BackCancelled,
    BackConfirmed,
    BackRequested,
    ContentGenerated,
    ContentRegenerated,
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
    transition,
)

from conftest import fixture_data

APPROVED = {"approved": True, "reasons": ["fine"], "risk_flags": [], "suggested_fix": ""}
REJECTED = {"approved": False, "reasons": ["too generic"], "risk_flags": [], "suggested_fix": "narrow it"}


def _analysis():
    return IntentAnalysis.model_validate(fixture_data("IntentAnalysis"))


def _proposal():
    return TemplateProposal.model_validate(fixture_data("TemplateProposal"))


def _draft():
    return ContentDraft.model_validate(fixture_data("ContentDraft"))


def _walk(*events, start=None):
    state = start or InputState(run=RunInput(keyword="best crm software"))
    for event in events:
        state = transition(state, event)
    return state


def _gate_b():
    return _walk(
        IntentAnalyzed(_analysis()),
        OpportunitySelected(2),
        OpportunityReviewed(OpportunityVerdict(**APPROVED)),
        TemplatesProposed(_proposal()),
    )


def _result(content_verdict=APPROVED):
    return _walk(
        TemplateSelected(1),
        TemplateReviewed(TemplateVerdict(**APPROVED)),
        ContentGenerated(_draft(), ContentVerdict(**content_verdict)),
        start=_gate_b(),
    )


class TestForward:
    def test_happy_path_reaches_result(self):
        state = _result()
        assert isinstance(state, ResultState)
        assert state.gate_b.gate_a.selected_index == 2
        assert state.gate_b.selected_index == 1
        assert state.run.keyword == "best crm software"

    def test_rejected_opportunity_cannot_advance(self):
        state = _walk(
            IntentAnalyzed(_analysis()),
            OpportunitySelected(0),
            OpportunityReviewed(OpportunityVerdict(**REJECTED)),
        )
        with pytest.raises(InvalidTransition):
            transition(state, TemplatesProposed(_proposal()))

        # feedback kept, candidates intact
        assert state.verdict.suggested_fix == "narrow it"
        assert len(state.analysis.opportunities) == 5

    def test_rejected_template_cannot_advance(self):
        state = _walk(TemplateSelected(0), TemplateReviewed(TemplateVerdict(**REJECTED)), start=_gate_b())
        with pytest.raises(InvalidTransition):
            transition(state, ContentGenerated(_draft(), ContentVerdict(**APPROVED)))

    def test_review_needs_a_selection(self):
        state = _walk(IntentAnalyzed(_analysis()))
        with pytest.raises(InvalidTransition):
            transition(state, OpportunityReviewed(OpportunityVerdict(**APPROVED)))

    def test_new_selection_clears_stale_verdict(self):
        state = _walk(
            IntentAnalyzed(_analysis()),
            OpportunitySelected(0),
            OpportunityReviewed(OpportunityVerdict(**REJECTED)),
            OpportunitySelected(1),
        )
        assert state.verdict is None
        assert state.selected.title == _analysis().opportunities[1].title

    @pytest.mark.parametrize("index", [-1, 5])
    def test_index_out_of_range(self, index):
        state = _walk(IntentAnalyzed(_analysis()))
        with pytest.raises(InvalidTransition):
            transition(state, OpportunitySelected(index))

    def test_events_out_of_order(self):
        with pytest.raises(InvalidTransition):
            _walk(TemplatesProposed(_proposal()))

    def test_gate_b_cannot_be_built_without_approval(self):
        gate_a = _walk(IntentAnalyzed(_analysis()), OpportunitySelected(0))
        with pytest.raises(ValidationError):
            GateBState(gate_a=gate_a, proposal=_proposal())


class TestPublish:
    def test_records_id(self):
        state = transition(_result(), Published("best-crm-abc123"))
        assert state.published_id == "best-crm-abc123"

    def test_requires_approved_content(self):
        with pytest.raises(InvalidTransition):
            transition(_result(REJECTED), Published("x-abc123"))

    def test_only_once(self):
        state = transition(_result(), Published("x-abc123"))
        with pytest.raises(InvalidTransition):
            transition(state, Published("y-abc123"))
        with pytest.raises(InvalidTransition):
            transition(state, ContentRegenerated(_draft(), ContentVerdict(**APPROVED)))

    def test_regenerate_replaces_draft_and_verdict(self):
        state = transition(_result(REJECTED), ContentRegenerated(_draft(), ContentVerdict(**APPROVED)))
        assert state.approved


class TestBack:
    def test_gate_a_goes_straight_to_input(self):
        state = _walk(IntentAnalyzed(_analysis()), BackRequested())
        assert isinstance(state, InputState)
        assert state.run.keyword == "best crm software"

    def test_result_back_needs_confirmation(self):
        pending = transition(_result(), BackRequested())
        assert isinstance(pending, ResultState)
        assert pending.pending_back

        with pytest.raises(InvalidTransition):
            transition(pending, Published("x-abc123"))

    def test_confirmed_back_from_result_keeps_selections(self):
        state = _walk(BackRequested(), BackConfirmed(), start=_result())

        assert isinstance(state, GateBState)
        assert state.gate_a.selected_index == 2
        assert state.selected_index == 1
        # must be validated again before reaching the result
        assert state.verdict is None
        with pytest.raises(InvalidTransition):
            transition(state, ContentGenerated(_draft(), ContentVerdict(**APPROVED)))

    def test_confirmed_back_from_gate_b_drops_templates(self):
        state = _walk(BackRequested(), BackConfirmed(), start=_gate_b())

        assert isinstance(state, GateAState)
        assert state.selected_index == 2
        assert state.verdict is None
        assert not hasattr(state, "proposal")

    def test_cancel_clears_the_flag(self):
        state = _walk(BackRequested(), BackCancelled(), start=_result())
        assert isinstance(state, ResultState)
        assert not state.pending_back

    def test_confirm_without_request(self):
        with pytest.raises(InvalidTransition):
            transition(_gate_b(), BackConfirmed())

    def test_back_from_input(self):
        with pytest.raises(InvalidTransition):
            _walk(BackRequested())


class TestReset:
    def test_from_anywhere(self):
        state = transition(transition(_result(), BackRequested()), Reset())
        assert isinstance(state, InputState)
        assert state.run.keyword == "best crm software"

    def test_with_new_run(self):
        state = transition(_gate_b(), Reset(RunInput(keyword="crm for dentists")))
        assert state.run.keyword == "crm for dentists"


def test_states_are_immutable():
    state = _walk(IntentAnalyzed(_analysis()))
    with pytest.raises(ValidationError):
        state.selected_index = 1
