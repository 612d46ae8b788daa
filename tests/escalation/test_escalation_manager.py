"""
Tests for the escalation lifecycle: raise, block, resolve, resume.
"""

from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import Mock

from phasegate.errors import InvalidTransition, UnknownItem
from phasegate.escalation import (
    Decision,
    Escalation,
    EscalationManager,
    EscalationStatus,
    EscalationSubject,
    Position,
    Resolution,
    Stance,
)
from phasegate.events import EventTypes


class TestEscalationSchema:

    def test_escalation_age_calculation(self):
        """Should correctly calculate escalation age."""
        five_hours_ago = datetime.now(timezone.utc) - timedelta(hours=5)

        escalation = Escalation(
            escalation_id="esc-1",
            subject=EscalationSubject.PROPOSAL,
            subject_id="prop-1",
            created_at=five_hours_ago,
        )

        assert 4.9 <= escalation.age_in_hours <= 5.1

    def test_to_dict(self):
        escalation = Escalation(
            escalation_id="esc-1",
            subject=EscalationSubject.CATALOGUE_CHANGE,
            subject_id="rule-1@v1",
            positions=[Position(role="architect", stance=Stance.OPPOSE)],
        )

        data = escalation.to_dict()

        assert data["subject"] == "catalogue_change"
        assert data["status"] == "pending"
        assert data["decision"] is None
        assert data["positions"][0]["stance"] == "oppose"


class TestEscalationManager:

    @pytest.fixture
    def router(self):
        return Mock()

    @pytest.fixture
    def manager(self, router, events):
        return EscalationManager(router=router, events=events)

    def test_raise_blocks_work_item(self, manager, router):
        escalation = manager.raise_escalation(
            EscalationSubject.PROPOSAL, "prop-1", reason="deadlock", work_item_id="item-1", phase=2,
        )

        assert escalation.is_pending
        assert escalation.escalation_id.startswith("esc-")
        router.block.assert_called_once_with("item-1", escalation.escalation_id)

    def test_raise_without_work_item_blocks_nothing(self, manager, router):
        manager.raise_escalation(EscalationSubject.PHASE_REOPEN, "phase-1", phase=1)

        router.block.assert_not_called()

    def test_resolve_unblocks_then_resumes(self, manager, router):
        calls = []
        router.unblock.side_effect = lambda item, esc: calls.append("unblock")
        handler = Mock(side_effect=lambda e: calls.append("resume"))
        escalation = manager.raise_escalation(
            EscalationSubject.PROPOSAL, "prop-1", work_item_id="item-1", on_resolve=handler,
        )

        resolved = manager.resolve(escalation.escalation_id, Decision.APPROVE, "go ahead")

        assert resolved.status == EscalationStatus.RESOLVED
        assert resolved.decision == Decision.APPROVE
        assert resolved.decision_text == "go ahead"
        assert resolved.resolved_at is not None
        assert calls == ["unblock", "resume"]
        handler.assert_called_once_with(resolved)

    def test_resolve_accepts_decision_strings(self, manager):
        escalation = manager.raise_escalation(EscalationSubject.PROPOSAL, "prop-1")

        assert manager.resolve(escalation.escalation_id, "reject").decision == Decision.REJECT

    def test_resolve_twice_rejected(self, manager):
        escalation = manager.raise_escalation(EscalationSubject.PROPOSAL, "prop-1")
        manager.resolve(escalation.escalation_id, Decision.REJECT)

        with pytest.raises(InvalidTransition):
            manager.resolve(escalation.escalation_id, Decision.APPROVE)

    def test_resolve_unknown(self, manager):
        with pytest.raises(UnknownItem):
            manager.resolve("esc-missing", Decision.APPROVE)

    def test_cleared_per_phase(self, manager):
        escalation = manager.raise_escalation(EscalationSubject.PROPOSAL, "prop-1", phase=2)

        assert manager.cleared(1)[0] is True
        satisfied, reason = manager.cleared(2)
        assert satisfied is False
        assert escalation.escalation_id in reason

        manager.resolve(escalation.escalation_id, Decision.APPROVE)
        assert manager.cleared(2)[0] is True

    def test_pending_escalations_filtered_by_phase(self, manager):
        manager.raise_escalation(EscalationSubject.PROPOSAL, "prop-1", phase=1)
        manager.raise_escalation(EscalationSubject.PROPOSAL, "prop-2", phase=2)

        assert len(manager.get_pending_escalations()) == 2
        assert [e.subject_id for e in manager.get_pending_escalations(phase=2)] == ["prop-2"]

    def test_events_published(self, manager, events):
        escalation = manager.raise_escalation(EscalationSubject.PROPOSAL, "prop-1")
        manager.resolve(escalation.escalation_id, Decision.APPROVE)

        assert len(events.get_history(EventTypes.ESCALATION_RAISED)) == 1
        resolved = events.get_history(EventTypes.ESCALATION_RESOLVED)
        assert resolved[0]["data"]["decision"] == "approve"


class TestDecisionProvider:
    """Escalations handed to a human decision interface."""

    def test_provider_decision_resolves_escalation(self):
        provider = Mock()
        provider.request_decision.return_value = Resolution(Decision.APPROVE, "looks right")
        manager = EscalationManager(decision_provider=provider)

        escalation = manager.raise_escalation(EscalationSubject.PROPOSAL, "prop-1")
        resolved = manager.wait(escalation.escalation_id, timeout=5)

        assert resolved.decision == Decision.APPROVE
        assert resolved.decision_text == "looks right"
        provider.request_decision.assert_called_once()

    def test_provider_failure_leaves_escalation_pending(self):
        provider = Mock()
        provider.request_decision.side_effect = RuntimeError("inbox offline")
        manager = EscalationManager(decision_provider=provider)

        escalation = manager.raise_escalation(EscalationSubject.PROPOSAL, "prop-1")
        manager.wait(escalation.escalation_id, timeout=0.2)

        assert escalation.is_pending
        # A manual decision still closes it
        manager.resolve(escalation.escalation_id, Decision.REJECT)
        assert not escalation.is_pending
