from sqlalchemy import Column, Integer, String, BigInteger, TIMESTAMP, Text, Index
from common.extensions import db
from common.utils.time_utils import utcnow


class ManualIntervention(db.Model):
    __tablename__ = 'manual_intervention'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)

    correlation_id = Column(String(36), nullable=False, comment='Saga correlation ID')
    saga_type = Column(String(100), nullable=False)
    step = Column(String(100), nullable=True, comment='Step whose compensation kept failing')
    reason = Column(Text, nullable=False)

    created_at = Column(TIMESTAMP, default=utcnow, nullable=False)
    resolved_at = Column(TIMESTAMP, nullable=True)
    resolution_note = Column(Text, nullable=True)

    __table_args__ = (
        Index('ix_manual_intervention_open', 'resolved_at', 'created_at'),
    )
