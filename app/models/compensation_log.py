from sqlalchemy import Column, String, Integer, BigInteger, TIMESTAMP, Text, Index
from common.extensions import db
from common.utils.time_utils import utcnow


class CompensationLog(db.Model):
    __tablename__ = 'compensation_log'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)

    correlation_id = Column(String(36), nullable=False, comment='Saga correlation ID')
    step = Column(String(100), nullable=False, comment='Forward step being undone')
    action = Column(String(200), nullable=False, comment='Compensation command type or handler name')
    executed_at = Column(TIMESTAMP, default=utcnow, nullable=False, comment='Execution time')
    outcome = Column(String(20), nullable=False, comment='succeeded / failed')
    attempt = Column(Integer, nullable=False, default=1, comment='Compensation pass number')
    error = Column(Text, nullable=True, comment='Failure detail')

    __table_args__ = (
        Index('ix_compensation_log_corr_step', 'correlation_id', 'step'),
    )
