from sqlalchemy import Column, String, Integer, BigInteger, TIMESTAMP, Text, Index
from common.extensions import db
from common.utils.time_utils import utcnow


class ParkedMessage(db.Model):
    __tablename__ = 'parked_message'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)

    message_id = Column(String(36), nullable=False, unique=True, comment='Envelope message ID')
    correlation_id = Column(String(36), nullable=False, comment='Envelope correlation ID')
    message_type = Column(String(100), nullable=False, comment='Envelope type')
    envelope = Column(Text, nullable=False, comment='Serialized envelope (JSON)')

    attempt = Column(Integer, nullable=False, comment='Times this message has been parked')
    release_at = Column(TIMESTAMP, nullable=False, comment='Earliest re-evaluation time')
    created_at = Column(TIMESTAMP, default=utcnow, nullable=False)

    __table_args__ = (
        Index('ix_parked_message_release', 'release_at'),
    )
