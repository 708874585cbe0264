from sqlalchemy import Column, Integer, String, BigInteger, TIMESTAMP, Text, Index
from common.extensions import db
from common.utils.time_utils import utcnow


class DeadLetter(db.Model):
    __tablename__ = 'dead_letter'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)

    message_id = Column(String(36), nullable=False, comment='Envelope message ID')
    correlation_id = Column(String(36), nullable=True, comment='Envelope correlation ID')
    message_type = Column(String(100), nullable=True, comment='Envelope type')
    consumer_name = Column(String(200), nullable=True, comment='Consumer that rejected the message')
    envelope = Column(Text, nullable=False, comment='Serialized envelope (JSON)')

    reason = Column(String(50), nullable=False, comment='DeadLetterReason')
    error = Column(Text, nullable=True, comment='Error detail')

    created_at = Column(TIMESTAMP, default=utcnow, nullable=False)
    resolved_at = Column(TIMESTAMP, nullable=True, comment='Replayed or dismissed by an operator')

    __table_args__ = (
        Index('ix_dead_letter_open', 'resolved_at', 'created_at'),
    )
