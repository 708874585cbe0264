import threading

import pytest
from sqlalchemy import select

from app.models import DeadLetter, SagaInstance
from app.sagas.match_date_saga import (
    MATCH_ACCEPTED, RESERVE_SLOT, NOTIFY_PARTIES, MARK_MATCH_PENDING,
    SLOT_RESERVED, SLOT_RESERVATION_FAILED, PARTIES_NOTIFIED
)
from common.decorator.db_decorators import transactional
from common.enum.saga_enums import DeadLetterReason, HandleOutcome
from common.exception.exceptions import PersistenceConflict
from common.extensions import db
from common.idempotency import idempotent_consumer
from common.saga.consumer import SagaConsumer
from common.saga.definition import COMPENSATED, COMPLETED
from tests.helpers import event, new_correlation_id


class DownstreamServices:
    """Slot and notification services replying through their own outbox."""

    def __init__(self, outbox_store, slots_available=True):
        self.outbox_store = outbox_store
        self.slots_available = slots_available
        self.received = []
        # NOTE : the application's consumer ledger, SQL in the testing config
        self.handlers = {
            RESERVE_SLOT: idempotent_consumer('slot-service')(self.reserve_slot),
            NOTIFY_PARTIES: idempotent_consumer('notification-service')(self.notify_parties),
            MARK_MATCH_PENDING: idempotent_consumer('match-service')(self.record),
        }

    def record(self, envelope):
        self.received.append(envelope.type)
        return {'ok': True}

    def reserve_slot(self, envelope):
        self.record(envelope)
        reply = SLOT_RESERVED if self.slots_available else SLOT_RESERVATION_FAILED
        self.outbox_store.enqueue(db.session, envelope.correlation_id, reply, {'slot_id': 's-1'})
        return {'reply': reply}

    def notify_parties(self, envelope):
        self.record(envelope)
        self.outbox_store.enqueue(db.session, envelope.correlation_id, PARTIES_NOTIFIED, {})
        return {'reply': PARTIES_NOTIFIED}


def _pump(relay, transport, consumer, services, rounds=10):
    """Relay, deliver, repeat until the system is quiet. Every message is delivered twice."""
    for _ in range(rounds):
        relay.run_once()
        delivered = transport.drain()
        if not delivered:
            return
        for envelope in delivered + delivered:
            handler = services.handlers.get(envelope.type)
            if handler is not None:
                handler(envelope)
            else:
                consumer.process(envelope)


@pytest.fixture
def consumer(orchestrator, transport):
    return SagaConsumer(transport, orchestrator, lambda: db.session)


def test_match_to_date_completes_over_the_transport(orchestrator, relay, transport, consumer, clock):
    services = DownstreamServices(orchestrator.outbox_store)
    corr = new_correlation_id()

    @transactional
    def accept_match():
        orchestrator.outbox_store.enqueue(db.session, corr, MATCH_ACCEPTED, {'match_id': 'm-7'})

    accept_match()
    _pump(relay, transport, consumer, services)

    assert db.session.get(SagaInstance, corr).current_state == COMPLETED
    assert services.received == [RESERVE_SLOT, NOTIFY_PARTIES]


def test_match_to_date_compensates_when_no_slot_is_free(orchestrator, relay, transport, consumer, clock):
    services = DownstreamServices(orchestrator.outbox_store, slots_available=False)
    corr = new_correlation_id()

    @transactional
    def accept_match():
        orchestrator.outbox_store.enqueue(db.session, corr, MATCH_ACCEPTED, {'match_id': 'm-7'})

    accept_match()
    _pump(relay, transport, consumer, services)

    assert db.session.get(SagaInstance, corr).current_state == COMPENSATED
    assert services.received == [RESERVE_SLOT, MARK_MATCH_PENDING]


def test_consumer_ignores_commands(consumer):
    assert consumer.process(event(RESERVE_SLOT, new_correlation_id())) is None


def test_consumer_dead_letters_handler_errors(consumer, orchestrator, monkeypatch):
    def explode(envelope, park_count=0):
        raise RuntimeError('boom')

    monkeypatch.setattr(orchestrator, 'handle', explode)

    assert consumer.process(event(MATCH_ACCEPTED, new_correlation_id())) == HandleOutcome.DEAD_LETTERED
    assert db.session.scalar(select(DeadLetter.reason)) == DeadLetterReason.HANDLER_ERROR.value


def test_consumer_dead_letters_repeated_conflicts(consumer, orchestrator, monkeypatch):
    def conflict(envelope, park_count=0):
        raise PersistenceConflict(message='conflict twice')

    monkeypatch.setattr(orchestrator, 'handle', conflict)

    consumer.process(event(MATCH_ACCEPTED, new_correlation_id()))

    dead_letter = db.session.scalar(select(DeadLetter))
    assert dead_letter.reason == DeadLetterReason.PERSISTENCE_CONFLICT.value
    assert dead_letter.error == '[P001] conflict twice'


def test_consumer_records_malformed_records(consumer):
    consumer.on_malformed(b'\x00garbage', ValueError('not an envelope'))

    dead_letter = db.session.scalar(select(DeadLetter))
    assert dead_letter.reason == DeadLetterReason.MALFORMED_ENVELOPE.value


def test_consumer_run_stops_on_request(consumer, transport):
    corr = new_correlation_id()
    transport.deliver(event(MATCH_ACCEPTED, corr))
    stop_event = threading.Event()
    stop_event.set()

    consumer.run(stop_event=stop_event)

    assert db.session.get(SagaInstance, corr) is not None
