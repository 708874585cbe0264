import pytest
from sqlalchemy import select

from app.models import DeadLetter, SagaInstance
from app.sagas.match_date_saga import (
    MATCH_ACCEPTED, SLOT_RESERVED, SLOT_RESERVATION_FAILED,
    AWAITING_NOTIFY, CANCEL_SLOT_RESERVATION, MARK_MATCH_PENDING, build_match_date_saga
)
from app.services.operator_service import OperatorService
from common.enum.saga_enums import DeadLetterReason, HandleOutcome
from common.exception.exceptions import ProtocolViolation, RecordNotFound, SagaNotFound
from common.extensions import db
import common.extensions as extensions
from common.saga.definition import COMPENSATED, COMPENSATING
from common.saga.registry import SagaRegistry
from common.saga.saga_orchestrator import SagaOrchestrator
from tests.helpers import count, event, new_correlation_id, outbox_types


def test_get_saga_reports_state_and_compensation_log(orchestrator):
    corr = new_correlation_id()
    orchestrator.handle(event(MATCH_ACCEPTED, corr, {'match_id': 'm-1'}))
    orchestrator.handle(event(SLOT_RESERVATION_FAILED, corr))

    detail = OperatorService.get_saga(corr).to_dict()

    assert detail['instance']['current_state'] == COMPENSATED
    assert detail['instance']['payload'] == {'match_id': 'm-1'}
    assert [entry['action'] for entry in detail['compensation_log']] == [MARK_MATCH_PENDING]


def test_get_unknown_saga(orchestrator):
    with pytest.raises(SagaNotFound):
        OperatorService.get_saga(new_correlation_id())


def test_stuck_instances_are_the_idle_unfinished_ones(orchestrator, clock):
    stuck, finished = new_correlation_id(), new_correlation_id()
    orchestrator.handle(event(MATCH_ACCEPTED, stuck))
    orchestrator.handle(event(MATCH_ACCEPTED, finished))
    orchestrator.handle(event(SLOT_RESERVATION_FAILED, finished))

    assert OperatorService.list_stuck_instances(idle_seconds=600) == []

    clock.advance(minutes=20)

    assert [dto.correlation_id for dto in OperatorService.list_stuck_instances(idle_seconds=600)] == [stuck]


def test_trigger_compensation_injects_cancel(orchestrator):
    corr = new_correlation_id()
    orchestrator.handle(event(MATCH_ACCEPTED, corr))
    orchestrator.handle(event(SLOT_RESERVED, corr))

    outcome = OperatorService.trigger_compensation(corr, reason='duplicate booking')

    assert outcome == HandleOutcome.APPLIED
    assert db.session.get(SagaInstance, corr).current_state == COMPENSATED
    assert CANCEL_SLOT_RESERVATION in outbox_types(corr)
    assert MARK_MATCH_PENDING in outbox_types(corr)


def test_trigger_compensation_refuses_finished_or_unknown_sagas(orchestrator):
    corr = new_correlation_id()
    orchestrator.handle(event(MATCH_ACCEPTED, corr))
    orchestrator.handle(event(SLOT_RESERVATION_FAILED, corr))

    with pytest.raises(ProtocolViolation):
        OperatorService.trigger_compensation(corr)
    with pytest.raises(SagaNotFound):
        OperatorService.trigger_compensation(new_correlation_id())


def test_replayed_dead_letter_applies_once_the_saga_exists(app, registry, clock):
    orchestrator = SagaOrchestrator(registry, lambda: db.session, clock=clock, max_park_attempts=0)
    extensions.orchestrator = orchestrator
    corr = new_correlation_id()

    assert orchestrator.handle(event(SLOT_RESERVED, corr)) == HandleOutcome.DEAD_LETTERED
    orchestrator.handle(event(MATCH_ACCEPTED, corr))

    dead_letters = OperatorService.list_dead_letters()
    assert [dto.reason for dto in dead_letters] == [DeadLetterReason.PARK_ATTEMPTS_EXHAUSTED.value]

    outcome = OperatorService.replay_dead_letter(dead_letters[0].dead_letter_id)

    assert outcome == HandleOutcome.APPLIED
    assert db.session.get(SagaInstance, corr).current_state == AWAITING_NOTIFY
    assert OperatorService.list_dead_letters() == []

    with pytest.raises(RecordNotFound):
        OperatorService.replay_dead_letter(dead_letters[0].dead_letter_id)


def test_failed_replay_keeps_the_dead_letter_open(orchestrator):
    corr = new_correlation_id()
    orchestrator.handle(event(MATCH_ACCEPTED, corr))
    orchestrator.dead_letters.add(
        db.session, event(SLOT_RESERVED, corr, b'not json'), DeadLetterReason.HANDLER_ERROR, error='bad payload'
    )
    db.session.commit()
    dead_letter_id = db.session.scalar(select(DeadLetter.id))

    with pytest.raises(ValueError):
        OperatorService.replay_dead_letter(dead_letter_id)

    open_letters = OperatorService.list_dead_letters()
    assert [dto.dead_letter_id for dto in open_letters] == [dead_letter_id]
    assert db.session.get(SagaInstance, corr).current_state != AWAITING_NOTIFY


def test_resolve_dead_letter(orchestrator):
    orchestrator.handle(event('MatchExploded', new_correlation_id()))
    dead_letter_id = db.session.scalar(select(DeadLetter.id))

    resolved = OperatorService.resolve_dead_letter(dead_letter_id)

    assert resolved.resolved_at is not None
    assert OperatorService.list_dead_letters() == []
    assert count(DeadLetter) == 1
    with pytest.raises(RecordNotFound):
        OperatorService.resolve_dead_letter(dead_letter_id + 100)


def test_manual_interventions_can_be_listed_and_resolved(app, clock):
    def always_fails(correlation_id, payload):
        raise ConnectionError('match service unavailable')

    registry = SagaRegistry()
    registry.register(build_match_date_saga(compensation_handlers={'accept_match': always_fails}))
    orchestrator = SagaOrchestrator(registry, lambda: db.session, clock=clock, compensation_max_attempts=1)
    extensions.orchestrator = orchestrator
    corr = new_correlation_id()

    orchestrator.handle(event(MATCH_ACCEPTED, corr))
    orchestrator.handle(event(SLOT_RESERVATION_FAILED, corr))

    assert db.session.get(SagaInstance, corr).current_state == COMPENSATING
    interventions = OperatorService.list_manual_interventions()
    assert [dto.correlation_id for dto in interventions] == [corr]

    resolved = OperatorService.resolve_manual_intervention(interventions[0].intervention_id, note='slot freed by hand')

    assert resolved.resolution_note == 'slot freed by hand'
    assert OperatorService.list_manual_interventions() == []


def test_flagged_outbox_entries(orchestrator, relay, transport):
    orchestrator.handle(event(MATCH_ACCEPTED, new_correlation_id()))
    transport.fail_next(3)

    for _ in range(3):
        relay.run_once()

    flagged = OperatorService.list_flagged_outbox_entries()
    assert [dto.event_type for dto in flagged] == ['ReserveSlot']
    assert flagged[0].attempts == 3


def test_health_endpoint_reports_queue_sizes(app, orchestrator):
    orchestrator.handle(event(MATCH_ACCEPTED, new_correlation_id()))
    orchestrator.handle(event('MatchExploded', new_correlation_id()))

    response = app.test_client().get('/health')

    assert response.status_code == 200
    body = response.get_json()
    assert body['status'] == 'healthy'
    assert body['saga_types'] == ['MatchDate']
    assert body['pending_outbox'] == 1
    assert body['open_dead_letters'] == 1
    assert body['open_interventions'] == 0
    assert body['parked_messages'] == 0
