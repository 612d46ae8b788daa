"""
Tests for work item routing and status ownership.
"""

import pytest
from unittest.mock import Mock

from phasegate.errors import DuplicateSubmission, InvalidTransition, PhaseMismatch, UnknownItem
from phasegate.review import ChangeProposal
from phasegate.roles import Role
from phasegate.routing import TaskRouter, WorkItemDescriptor, WorkItemStatus


def proposal_for(item_id, phase=1):
    return ChangeProposal.create(item_id, f"work on {item_id}", Role.ANALYST, phase=phase)


@pytest.fixture
def router(events):
    router = TaskRouter(events=events)
    router.ingest([
        {"item_id": "item-1", "phase": 1},
        WorkItemDescriptor(item_id="item-2", phase=2, description="rule extraction"),
    ])
    return router


class TestIngest:

    def test_ingest_creates_pending_items(self, router):
        assert router.status("item-1") == WorkItemStatus.PENDING
        assert router.item("item-2").description == "rule extraction"
        assert [i.item_id for i in router.items(phase=1)] == ["item-1"]

    def test_reingest_same_descriptor_is_noop(self, router):
        assert router.ingest([{"item_id": "item-1", "phase": 1}]) == []
        assert len(router.items()) == 2

    def test_reingest_with_other_phase_rejected(self, router):
        with pytest.raises(ValueError):
            router.ingest([{"item_id": "item-1", "phase": 3}])

    def test_invalid_descriptor_rejected(self, router):
        with pytest.raises(ValueError):
            router.ingest([{"item_id": "item-9", "phase": 0}])

    def test_unknown_item(self, router):
        with pytest.raises(UnknownItem):
            router.status("item-missing")


class TestAssignAndComplete:

    def test_assign_moves_to_in_progress(self, router):
        item = router.assign("item-1", Role.ANALYST)

        assert item.status == WorkItemStatus.IN_PROGRESS
        assert item.role == "analyst"

    def test_assign_checks_open_phase(self, events):
        router = TaskRouter(current_phase=lambda: 1, events=events)
        router.ingest([{"item_id": "item-2", "phase": 2}])

        with pytest.raises(PhaseMismatch):
            router.assign("item-2", Role.ANALYST)

    def test_complete_forwards_proposal(self, router):
        forwarder = Mock(return_value="queued")
        router.set_forwarder(forwarder)
        router.assign("item-1", Role.ANALYST)
        proposal = proposal_for("item-1")

        assert router.complete("item-1", proposal) == "queued"
        forwarder.assert_called_once_with(proposal)
        item = router.item("item-1")
        assert item.status == WorkItemStatus.UNDER_REVIEW
        assert item.active_proposal_id == proposal.proposal_id

    def test_second_assign_while_under_review(self, router):
        router.assign("item-1", Role.ANALYST)
        proposal = proposal_for("item-1")
        router.complete("item-1", proposal)

        with pytest.raises(DuplicateSubmission) as exc_info:
            router.assign("item-1", Role.ANALYST)
        assert exc_info.value.active_proposal_id == proposal.proposal_id

    def test_second_complete_while_under_review(self, router):
        router.assign("item-1", Role.ANALYST)
        router.complete("item-1", proposal_for("item-1"))

        with pytest.raises(DuplicateSubmission):
            router.complete("item-1", proposal_for("item-1"))

    def test_complete_requires_in_progress(self, router):
        with pytest.raises(InvalidTransition):
            router.complete("item-1", proposal_for("item-1"))

    def test_complete_rejects_foreign_proposal(self, router):
        router.assign("item-1", Role.ANALYST)

        with pytest.raises(ValueError):
            router.complete("item-1", proposal_for("item-2", phase=2))

    def test_forwarding_failure_reverts(self, router):
        router.set_forwarder(Mock(side_effect=RuntimeError("queue full")))
        router.assign("item-1", Role.ANALYST)

        with pytest.raises(RuntimeError):
            router.complete("item-1", proposal_for("item-1"))

        item = router.item("item-1")
        assert item.status == WorkItemStatus.IN_PROGRESS
        assert item.active_proposal_id is None


class TestRequestedTransitions:

    @pytest.fixture
    def reviewing(self, router):
        router.assign("item-1", Role.ANALYST)
        proposal = proposal_for("item-1")
        router.complete("item-1", proposal)
        return proposal

    def test_mark_done(self, router, reviewing):
        router.mark_done("item-1", reviewing.proposal_id)

        assert router.status("item-1") == WorkItemStatus.DONE
        with pytest.raises(InvalidTransition):
            router.assign("item-1", Role.ANALYST)
        with pytest.raises(InvalidTransition):
            router.return_to_pending("item-1")

    def test_mark_done_for_other_proposal_rejected(self, router, reviewing):
        with pytest.raises(InvalidTransition):
            router.mark_done("item-1", "prop-other")

    def test_block_and_unblock_restore_status(self, router, reviewing):
        router.block("item-1", "esc-1")
        assert router.status("item-1") == WorkItemStatus.BLOCKED

        with pytest.raises(InvalidTransition):
            router.block("item-1", "esc-2")
        with pytest.raises(InvalidTransition):
            router.assign("item-1", Role.ANALYST)

        router.unblock("item-1", "esc-other")
        assert router.status("item-1") == WorkItemStatus.BLOCKED

        router.unblock("item-1", "esc-1")
        assert router.status("item-1") == WorkItemStatus.UNDER_REVIEW

    def test_return_to_pending_clears_proposal(self, router, reviewing):
        router.return_to_pending("item-1", "rejected")

        item = router.item("item-1")
        assert item.status == WorkItemStatus.PENDING
        assert item.active_proposal_id is None
        assert item.history[-1]["reason"] == "rejected"

    def test_all_done(self, router, reviewing):
        assert router.all_done(1)[0] is False
        router.mark_done("item-1", reviewing.proposal_id)
        assert router.all_done(1) == (True, "1 item(s) done")
