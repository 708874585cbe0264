import pytest
from datetime import timedelta
from sqlalchemy import select

from app.models import ManualIntervention, SagaInstance
from app.sagas.match_date_saga import (
    MATCH_ACCEPTED, SLOT_RESERVED, SLOT_RESERVATION_FAILED, NOTIFICATION_FAILED,
    MARK_MATCH_PENDING, CANCEL_SLOT_RESERVATION, NOTIFY_PARTIES, RESERVE_SLOT,
    AWAITING_SLOT, build_match_date_saga
)
from common.enum.saga_enums import HandleOutcome
from common.extensions import db
from common.saga.definition import CANCEL, COMPENSATED, COMPENSATING, TIMEOUT
from common.saga.registry import SagaRegistry
from common.saga.saga_orchestrator import SagaOrchestrator, timeout_message_id
from common.scheduler.jobs import SagaTimeoutJob
from tests.helpers import compensation_entries, count, event, new_correlation_id, outbox_types


class FlakyCompensation:

    def __init__(self, failures):
        self.failures = failures
        self.calls = []

    def __call__(self, correlation_id, payload):
        self.calls.append(correlation_id)
        if len(self.calls) <= self.failures:
            raise ConnectionError('match service unavailable')


@pytest.fixture
def flaky_orchestrator(app, clock):
    def build(failures):
        handler = FlakyCompensation(failures)
        registry = SagaRegistry()
        registry.register(build_match_date_saga(compensation_handlers={'accept_match': handler}))
        orchestrator = SagaOrchestrator(registry, lambda: db.session, clock=clock)
        return orchestrator, handler
    return build


def test_timeout_compensates_completed_steps_in_reverse(orchestrator, clock):
    corr = new_correlation_id()
    orchestrator.handle(event(MATCH_ACCEPTED, corr))
    orchestrator.handle(event(SLOT_RESERVED, corr))
    job = SagaTimeoutJob(orchestrator)

    clock.advance(minutes=9)
    assert job.execute()['applied'] == 0

    clock.advance(minutes=2)
    assert job.execute()['applied'] == 1

    instance = db.session.get(SagaInstance, corr)
    assert instance.current_state == COMPENSATED
    assert instance.timeout_at is None

    entries = compensation_entries(corr)
    assert [entry.step for entry in entries] == ['reserve_slot', 'accept_match']
    assert [entry.action for entry in entries] == [CANCEL_SLOT_RESERVATION, MARK_MATCH_PENDING]
    assert outbox_types(corr) == sorted([RESERVE_SLOT, NOTIFY_PARTIES, CANCEL_SLOT_RESERVATION, MARK_MATCH_PENDING])


def test_timeout_scan_ignores_finished_sagas(orchestrator, clock):
    corr = new_correlation_id()
    orchestrator.handle(event(MATCH_ACCEPTED, corr))
    orchestrator.handle(event(SLOT_RESERVATION_FAILED, corr))
    job = SagaTimeoutJob(orchestrator)

    clock.advance(hours=1)

    assert sum(job.execute().values()) == 0
    assert len(compensation_entries(corr)) == 1


def test_concurrent_timeout_scans_compensate_once(orchestrator, clock):
    corr = new_correlation_id()
    orchestrator.handle(event(MATCH_ACCEPTED, corr))
    version = db.session.get(SagaInstance, corr).version
    clock.advance(minutes=6)

    timeout = event(TIMEOUT, corr, {'state': AWAITING_SLOT, 'version': version},
                    message_id=timeout_message_id(corr, version))

    assert orchestrator.handle(timeout) == HandleOutcome.APPLIED
    assert orchestrator.handle(timeout) == HandleOutcome.DUPLICATE
    assert len(compensation_entries(corr)) == 1


def test_timeout_from_an_older_version_is_discarded(orchestrator, clock):
    corr = new_correlation_id()
    orchestrator.handle(event(MATCH_ACCEPTED, corr))
    stale_version = db.session.get(SagaInstance, corr).version
    orchestrator.handle(event(SLOT_RESERVED, corr))

    stale = event(TIMEOUT, corr, {'state': AWAITING_SLOT, 'version': stale_version},
                  message_id=timeout_message_id(corr, stale_version))

    assert orchestrator.handle(stale) == HandleOutcome.DISCARDED
    assert compensation_entries(corr) == []


def test_cancel_routes_through_compensation(orchestrator):
    corr = new_correlation_id()
    orchestrator.handle(event(MATCH_ACCEPTED, corr))

    assert orchestrator.handle(event(CANCEL, corr, {'reason': 'user withdrew'})) == HandleOutcome.APPLIED

    instance = db.session.get(SagaInstance, corr)
    assert instance.current_state == COMPENSATED
    assert 'reason' not in instance.payload
    assert [entry.step for entry in compensation_entries(corr)] == ['accept_match']


def test_failed_compensation_is_retried_with_backoff(flaky_orchestrator, clock):
    orchestrator, handler = flaky_orchestrator(failures=1)
    corr = new_correlation_id()
    orchestrator.handle(event(MATCH_ACCEPTED, corr))

    orchestrator.handle(event(SLOT_RESERVATION_FAILED, corr))

    instance = db.session.get(SagaInstance, corr)
    assert instance.current_state == COMPENSATING
    assert instance.compensation_attempts == 1
    assert instance.timeout_at == clock() + timedelta(seconds=1)
    assert instance.completed_at is None
    assert outbox_types(corr) == [RESERVE_SLOT]

    clock.advance(seconds=1)
    SagaTimeoutJob(orchestrator).execute()

    instance = db.session.get(SagaInstance, corr)
    assert instance.current_state == COMPENSATED
    assert len(handler.calls) == 2
    assert [entry.outcome for entry in compensation_entries(corr)] == ['failed', 'succeeded']
    assert [entry.attempt for entry in compensation_entries(corr)] == [1, 2]
    assert outbox_types(corr) == [MARK_MATCH_PENDING, RESERVE_SLOT]


def test_succeeded_compensations_are_not_repeated(flaky_orchestrator, clock):
    orchestrator, handler = flaky_orchestrator(failures=1)
    corr = new_correlation_id()
    orchestrator.handle(event(MATCH_ACCEPTED, corr))
    orchestrator.handle(event(SLOT_RESERVED, corr))

    orchestrator.handle(event(NOTIFICATION_FAILED, corr))
    clock.advance(seconds=1)
    SagaTimeoutJob(orchestrator).execute()

    entries = compensation_entries(corr)
    assert [(entry.step, entry.outcome) for entry in entries] == [
        ('reserve_slot', 'succeeded'),
        ('accept_match', 'failed'),
        ('accept_match', 'succeeded'),
    ]
    assert outbox_types(corr).count(CANCEL_SLOT_RESERVATION) == 1
    assert db.session.get(SagaInstance, corr).current_state == COMPENSATED


def test_exhausted_compensation_escalates_to_manual_intervention(flaky_orchestrator, clock):
    orchestrator, handler = flaky_orchestrator(failures=100)
    corr = new_correlation_id()
    orchestrator.handle(event(MATCH_ACCEPTED, corr))
    orchestrator.handle(event(SLOT_RESERVATION_FAILED, corr))
    job = SagaTimeoutJob(orchestrator)

    clock.advance(seconds=1)
    job.execute()
    assert db.session.get(SagaInstance, corr).timeout_at == clock() + timedelta(seconds=2)

    clock.advance(seconds=2)
    job.execute()

    instance = db.session.get(SagaInstance, corr)
    assert instance.current_state == COMPENSATING
    assert instance.compensation_attempts == 3
    assert instance.timeout_at is None

    clock.advance(hours=1)
    assert sum(job.execute().values()) == 0
    assert len(handler.calls) == 3

    intervention = db.session.scalar(select(ManualIntervention))
    assert intervention.correlation_id == corr
    assert intervention.step == 'accept_match'
    assert 'match service unavailable' in intervention.reason
    assert count(ManualIntervention) == 1
    assert [entry.outcome for entry in compensation_entries(corr)] == ['failed', 'failed', 'failed']
