from sqlalchemy import Column, Integer, String, BigInteger, TIMESTAMP, UniqueConstraint, Index
from common.extensions import db
from common.utils.time_utils import utcnow


class IdempotencyRecord(db.Model):
    __tablename__ = 'idempotency_record'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)

    consumer_name = Column(String(200), nullable=False, comment='Logical consumer (saga type + correlation ID)')
    message_id = Column(String(36), nullable=False, comment='Envelope message ID')
    processed_at = Column(TIMESTAMP, default=utcnow, nullable=False, comment='First successful claim')
    result_hash = Column(String(64), nullable=True, comment='sha256 of the persisted result')

    __table_args__ = (
        UniqueConstraint('consumer_name', 'message_id', name='uq_idempotency_consumer_message'),
        Index('ix_idempotency_processed_at', 'processed_at'),
    )
