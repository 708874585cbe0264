import pytest

import common.extensions as extensions
from app import create_app
from app.sagas import register_sagas
from common.extensions import db
from common.outbox.relay import OutboxRelay
from common.saga.registry import SagaRegistry
from common.saga.saga_orchestrator import SagaOrchestrator
from tests.helpers import FakeClock


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry():
    return register_sagas(SagaRegistry())


@pytest.fixture
def orchestrator(app, registry, clock):
    orchestrator = SagaOrchestrator(registry, lambda: db.session, clock=clock)
    extensions.orchestrator = orchestrator
    return orchestrator


@pytest.fixture
def transport(app):
    transport = extensions.transport
    transport.clear()
    return transport


@pytest.fixture
def relay(app, transport, orchestrator, clock):
    relay = OutboxRelay(
        transport,
        lambda: db.session,
        outbox_store=orchestrator.outbox_store,
        batch_size=50,
        max_attempts=3,
        clock=clock
    )
    extensions.outbox_relay = relay
    return relay
