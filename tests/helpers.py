import uuid
from datetime import datetime, timedelta

from sqlalchemy import func, select

from app.models import CompensationLog, OutboxEntry
from common.extensions import db
from common.messaging.envelope import MessageEnvelope


class FakeClock:

    def __init__(self, start=datetime(2024, 3, 1, 9, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


def new_correlation_id():
    return str(uuid.uuid4())


def event(event_type, correlation_id, payload=None, message_id=None):
    return MessageEnvelope.create(event_type, correlation_id, payload=payload, message_id=message_id)


def outbox_types(correlation_id):
    stmt = select(OutboxEntry.event_type).where(OutboxEntry.correlation_id == correlation_id)
    return sorted(db.session.scalars(stmt))


def compensation_entries(correlation_id):
    stmt = (
        select(CompensationLog)
        .where(CompensationLog.correlation_id == correlation_id)
        .order_by(CompensationLog.id)
    )
    return list(db.session.scalars(stmt))


def count(model):
    return db.session.scalar(select(func.count()).select_from(model))
