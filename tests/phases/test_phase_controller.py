"""
Tests for phase sequencing, gate evaluation and reopen overrides.
"""

import pytest
from unittest.mock import Mock

from phasegate.config import WorkflowConfig
from phasegate.errors import GateNotSatisfied, PhaseSequenceError, UnknownItem
from phasegate.escalation import Decision, EscalationManager, EscalationSubject
from phasegate.events import EventTypes
from phasegate.phases import PhaseController, PhaseState

PROVIDED_KINDS = ("items_done", "reviews_settled", "catalogue_settled", "escalations_cleared")


@pytest.fixture
def escalations():
    return EscalationManager()


@pytest.fixture
def providers():
    """One satisfied provider mock per criterion kind."""
    return {kind: Mock(return_value=(True, "ok")) for kind in PROVIDED_KINDS}


@pytest.fixture
def controller(escalations, events, providers):
    controller = PhaseController(WorkflowConfig(), escalations, events)
    for kind, provider in providers.items():
        controller.register_criterion_provider(kind, provider)
    return controller


def advance_to(controller, ordinal):
    while controller.current_phase != ordinal:
        controller.advance_phase()


class TestSequencing:

    def test_first_phase_open_at_construction(self, controller):
        assert controller.current_phase == 1
        assert controller.get_phase(1).state == PhaseState.OPEN
        assert controller.get_phase(2).state == PhaseState.PENDING

    def test_open_current_phase_is_noop(self, controller):
        phase = controller.open_phase(1)

        assert phase.state == PhaseState.OPEN
        assert len(controller.get_phase(1).transitions) == 1

    def test_open_later_phase_rejected(self, controller):
        with pytest.raises(PhaseSequenceError):
            controller.open_phase(2)

    def test_open_closed_phase_rejected(self, controller):
        controller.advance_phase()

        with pytest.raises(PhaseSequenceError):
            controller.open_phase(1)

    def test_open_unknown_phase(self, controller):
        with pytest.raises(UnknownItem):
            controller.open_phase(9)

    def test_advance_opens_next_phase(self, controller, events):
        assert controller.advance_phase() == 2

        assert controller.current_phase == 2
        assert controller.get_phase(1).state == PhaseState.CLOSED
        assert controller.get_phase(1).closed_at is not None
        assert controller.get_phase(2).state == PhaseState.OPEN
        assert events.get_history(EventTypes.PHASE_CLOSED)[0]["data"]["phase"] == 1

    def test_final_phase_reaches_terminal_state(self, controller):
        controller.record_evidence(4, "signoff", "release-note-42")
        advance_to(controller, 4)

        assert controller.advance_phase() is None
        assert controller.is_terminal
        with pytest.raises(PhaseSequenceError):
            controller.advance_phase()

    def test_gate_close_hooks_run_with_phase(self, controller):
        hook = Mock()
        controller.add_gate_close_hook(hook)

        controller.advance_phase()

        hook.assert_called_once_with(1)


class TestGateEvaluation:

    def test_gate_lists_exactly_the_unmet_criterion(self, controller, providers):
        providers["reviews_settled"].return_value = (False, "in review: prop-1")

        with pytest.raises(GateNotSatisfied) as exc_info:
            controller.advance_phase()

        unmet = exc_info.value.unmet_criteria
        assert [c.criterion_id for c in unmet] == ["reviews_settled"]
        assert unmet[0].reason == "in review: prop-1"
        assert exc_info.value.phase == 1
        # Nothing moved
        assert controller.current_phase == 1
        assert controller.get_phase(1).state == PhaseState.OPEN

    def test_blocked_gate_skips_hooks_and_publishes(self, controller, providers, events):
        providers["items_done"].return_value = (False, "1 of 1 item(s) not done: item-1")
        hook = Mock()
        controller.add_gate_close_hook(hook)

        with pytest.raises(GateNotSatisfied):
            controller.advance_phase()

        hook.assert_not_called()
        blocked = events.get_history(EventTypes.GATE_BLOCKED)
        assert blocked[0]["data"]["unmetCriteria"] == ["items_done"]

    def test_providers_called_with_phase(self, controller, providers):
        controller.evaluate_gate(1)

        providers["items_done"].assert_called_once_with(1)
        providers["catalogue_settled"].assert_not_called()

    def test_missing_provider_is_unmet(self, escalations, events):
        controller = PhaseController(WorkflowConfig(), escalations, events)

        status = controller.evaluate_gate(1)

        assert not status.satisfied
        assert {r.criterion_id for r in status.unmet_criteria} == {
            "items_done", "reviews_settled", "escalations_cleared",
        }

    def test_manual_criterion_needs_evidence(self, controller):
        advance_to(controller, 4)

        status = controller.evaluate_gate()
        assert status.to_dict()["unmetCriteria"] == ["signoff"]

        controller.record_evidence(4, "signoff", "release-note-42")
        assert controller.evaluate_gate().satisfied

    def test_record_evidence_validation(self, controller):
        with pytest.raises(ValueError):
            controller.record_evidence(4, "signoff", "")
        with pytest.raises(ValueError):
            controller.record_evidence(1, "items_done", "manual override")
        with pytest.raises(UnknownItem):
            controller.record_evidence(1, "no-such-criterion", "ref")

    def test_gate_surfaces_open_escalations(self, controller, escalations):
        escalation = escalations.raise_escalation(EscalationSubject.PROPOSAL, "prop-1", phase=3)

        status = controller.evaluate_gate(1)

        assert status.open_escalations == [escalation.escalation_id]
        assert status.to_dict()["openEscalations"] == [escalation.escalation_id]


class TestReopen:

    def test_reopen_requires_approval(self, controller, escalations):
        controller.advance_phase()

        escalation = controller.request_reopen(1, "inventory missed a module")

        assert escalation.subject == EscalationSubject.PHASE_REOPEN
        assert controller.current_phase == 2

        escalations.resolve(escalation.escalation_id, Decision.APPROVE, "agreed")

        assert controller.current_phase == 1
        reopened = controller.get_phase(1)
        assert reopened.state == PhaseState.OPEN
        assert reopened.transitions[-1].override is True
        assert reopened.transitions[-1].escalation_id == escalation.escalation_id
        assert controller.get_phase(2).state == PhaseState.PENDING

    def test_rejected_reopen_changes_nothing(self, controller, escalations):
        controller.advance_phase()
        escalation = controller.request_reopen(1, "inventory missed a module")

        escalations.resolve(escalation.escalation_id, Decision.REJECT, "not worth it")

        assert controller.current_phase == 2
        assert controller.get_phase(1).state == PhaseState.CLOSED

    def test_only_most_recently_closed_phase(self, controller):
        advance_to(controller, 3)

        with pytest.raises(PhaseSequenceError):
            controller.request_reopen(1, "too late")
        with pytest.raises(PhaseSequenceError):
            controller.request_reopen(3, "still open")

    def test_duplicate_reopen_request_rejected(self, controller):
        controller.advance_phase()
        controller.request_reopen(1, "first")

        with pytest.raises(PhaseSequenceError):
            controller.request_reopen(1, "second")

    def test_reopened_phase_advances_again(self, controller, escalations):
        controller.advance_phase()
        escalation = controller.request_reopen(1, "missed a module")
        escalations.resolve(escalation.escalation_id, Decision.APPROVE)

        assert controller.advance_phase() == 2
        assert controller.get_phase(2).state == PhaseState.OPEN
