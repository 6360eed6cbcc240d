"""
Concurrent transition requests against one database.

Two actors holding the same ``onboarding`` snapshot race to move the same
project.  Exactly one transition is recorded; the loser gets STALE_STATE
(its read was serialized behind the winner's commit) or
PersistenceConflictError (its conditional update matched no row).
Different projects never interfere.
"""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest

from workflow_kernel.domain.statuses import ActorRole, ProjectStatus
from workflow_kernel.domain.transition_validator import RejectionReason
from workflow_kernel.exceptions import PersistenceConflictError
from workflow_services.transition_orchestrator import TransitionRequest

from tests.conftest import TEST_ACTOR_ID

S = ProjectStatus


def _racing_request(entity_id: str, target: ProjectStatus, key: str) -> TransitionRequest:
    return TransitionRequest(
        entity_id=entity_id,
        requested_status=target,
        actor_id=TEST_ACTOR_ID,
        actor_role=ActorRole.ADMIN,
        idempotency_key=key,
        expected_status=S.ONBOARDING,
    )


def _run_concurrently(orchestrator, requests):
    barrier = Barrier(len(requests))

    def _submit(request):
        barrier.wait(timeout=10)
        try:
            return orchestrator.request_transition(request)
        except PersistenceConflictError as exc:
            return exc

    with ThreadPoolExecutor(max_workers=len(requests)) as pool:
        return list(pool.map(_submit, requests))


def _is_stale_loss(outcome) -> bool:
    if isinstance(outcome, PersistenceConflictError):
        return True
    return outcome.rejected and outcome.rejection.reason is RejectionReason.STALE_STATE


class TestSameEntityRace:

    @pytest.mark.parametrize("targets", [(S.ACTIVE, S.ACTIVE), (S.ACTIVE, S.ON_HOLD)])
    def test_one_winner(self, orchestrator, registered_project, targets):
        requests = [
            _racing_request(registered_project, target, f"actor-{i}")
            for i, target in enumerate(targets)
        ]

        outcomes = _run_concurrently(orchestrator, requests)

        winners = [o for o in outcomes if not _is_stale_loss(o)]
        assert len(winners) == 1
        assert winners[0].accepted
        history = orchestrator.history(registered_project)
        assert len(history) == 1
        assert orchestrator.latest_status(registered_project) is history[-1].to_status

    def test_same_key_race_is_one_transition(self, orchestrator, registered_project):
        request = _racing_request(registered_project, S.ACTIVE, "shared-key")

        outcomes = _run_concurrently(orchestrator, [request] * 4)

        assert all(not isinstance(o, Exception) for o in outcomes)
        assert len({o.transition_id for o in outcomes}) == 1
        assert sum(not o.replayed for o in outcomes) == 1
        assert len(orchestrator.history(registered_project)) == 1


class TestIndependentEntities:

    def test_all_succeed(self, orchestrator):
        entity_ids = [f"proj-{i}" for i in range(6)]
        for entity_id in entity_ids:
            orchestrator.register_project(
                entity_id, entity_id.upper(), TEST_ACTOR_ID, S.ONBOARDING,
            )

        outcomes = _run_concurrently(
            orchestrator,
            [_racing_request(e, S.ACTIVE, f"key-{e}") for e in entity_ids],
        )

        assert all(o.accepted and not o.replayed for o in outcomes)
        for entity_id in entity_ids:
            assert orchestrator.latest_status(entity_id) is S.ACTIVE
            assert [t.sequence for t in orchestrator.history(entity_id)] == [1]
