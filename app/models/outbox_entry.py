import uuid
from sqlalchemy import Column, String, Integer, TIMESTAMP, LargeBinary, Text, Index
from common.extensions import db
from common.utils.time_utils import utcnow


def generate_uuid():
    return str(uuid.uuid4())


class OutboxEntry(db.Model):
    __tablename__ = 'outbox_entry'

    # NOTE : also the message_id of the published envelope, so redelivery keeps the id
    id = Column(String(36), primary_key=True, default=generate_uuid, comment='Outbox entry ID (UUID)')

    aggregate_id = Column(String(64), nullable=False, comment='Entity whose change is announced')
    correlation_id = Column(String(36), nullable=False, comment='Saga correlation ID carried by the envelope')
    event_type = Column(String(100), nullable=False, comment='Envelope type')
    payload = Column(LargeBinary, nullable=False, comment='Envelope payload bytes')

    created_at = Column(TIMESTAMP, default=utcnow, nullable=False, comment='Committed with the domain write')
    published_at = Column(TIMESTAMP, nullable=True, comment='Set once the transport acknowledged')
    attempts = Column(Integer, default=0, nullable=False, comment='Publish attempts')
    last_error = Column(Text, nullable=True, comment='Last transport error')
    flagged_at = Column(TIMESTAMP, nullable=True, comment='Attempt ceiling reached, needs operator inspection')

    __table_args__ = (
        Index('ix_outbox_entry_pending', 'published_at', 'created_at'),
    )

    def __repr__(self):
        return f"<OutboxEntry(id={self.id}, type={self.event_type}, attempts={self.attempts})>"
