"""
Shared pytest fixtures for phasegate tests
"""

import pytest

from phasegate.catalogue import CatalogueStore
from phasegate.chronicle import ChronicleStore
from phasegate.config import ReviewConfig, RetryConfig, WorkflowConfig
from phasegate.escalation import ConflictResolver, EscalationManager
from phasegate.events import EventBus
from phasegate.review import DebatePosition, EvidenceKind, ReviewCoordinator, Verdict
from phasegate.roles import Concern, Role
from phasegate.routing import TaskRouter


class ScriptedPanel:
    """
    Reviewer panel that answers from a script.

    ``verdicts`` maps a role to a list of answers, one per voting round; the
    last answer repeats. An answer is a Verdict or a (Verdict, Concern) pair.
    Roles without a script approve. Roles in ``silent`` never answer.
    """

    def __init__(self, verdicts=None, position_concerns=None, silent=None):
        self.coordinator = None
        self.verdicts = verdicts or {}
        self.position_concerns = position_concerns or {}
        self.silent = set(silent or ())
        self.vote_requests = []
        self.position_requests = []

    def request_vote(self, proposal, role, round_no):
        self.vote_requests.append((proposal.proposal_id, role, round_no))
        if role in self.silent:
            return
        script = self.verdicts.get(role, [Verdict.APPROVED])
        answer = script[min(round_no, len(script)) - 1]
        verdict, concern = answer if isinstance(answer, tuple) else (answer, Concern.OTHER)
        self.coordinator.record_vote(
            proposal.proposal_id, role, round_no, verdict,
            rationale=f"{role.value} in round {round_no}", concern=concern,
        )

    def request_position(self, proposal, role, debate_round):
        self.position_requests.append((proposal.proposal_id, role, debate_round))
        return DebatePosition(
            role=role,
            statement=f"{role.value} holds position in debate {debate_round}",
            evidence_kind=EvidenceKind.CRITERION,
            evidence_ref=f"{proposal.work_item_id}#criterion",
            concern=self.position_concerns.get(role, Concern.OTHER),
        )

    def requests_for(self, role):
        return [r for r in self.vote_requests if r[1] == role]


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def fast_review_config():
    """Short vote timeout and a single retry so missing-vote paths finish quickly."""
    return ReviewConfig(vote_timeout_seconds=0.05, max_vote_retries=1, max_revisions=2)


@pytest.fixture
def make_coordinator(events, fast_review_config):
    """
    Factory building a coordinator wired to real stores.

    The router forwards completed proposals straight into ``submit`` and
    resumed reviews run synchronously, so every scenario runs on the test
    thread.
    """
    built = []

    def _make(panel, proposer=None, review_config=None, config=None):
        config = config or WorkflowConfig()
        router = TaskRouter(events=events)
        escalations = EscalationManager(router=router, events=events)
        catalogue = CatalogueStore(escalations=escalations, events=events)
        chronicle = ChronicleStore(":memory:", events=events)
        coordinator = ReviewCoordinator(
            panel,
            router,
            chronicle,
            catalogue,
            escalations,
            ConflictResolver(config.priority_for),
            reviewer_table=config.reviewer_table(),
            review_config=review_config or fast_review_config,
            retry_config=RetryConfig(initial_delay_ms=1, max_delay_ms=1, jitter=False),
            proposer=proposer,
            runner=lambda proposal_id, fn: fn(),
            events=events,
            sleep=lambda seconds: None,
        )
        panel.coordinator = coordinator
        router.set_forwarder(coordinator.submit)
        built.append(chronicle)
        return coordinator

    yield _make

    for chronicle in built:
        chronicle.close()


@pytest.fixture
def start_item():
    """Ingest and assign a work item so it is ready for a proposal."""

    def _start(coordinator, item_id="item-1", phase=1, role=Role.ANALYST):
        coordinator.router.ingest([{"item_id": item_id, "phase": phase}])
        coordinator.router.assign(item_id, role)

    return _start


@pytest.fixture
def panel_factory():
    return ScriptedPanel
