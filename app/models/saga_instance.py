from sqlalchemy import Column, String, Integer, TIMESTAMP, JSON, Index
from common.extensions import db
from common.utils.time_utils import utcnow


class SagaInstance(db.Model):
    __tablename__ = 'saga_instance'

    correlation_id = Column(
        String(36),
        primary_key=True,
        comment='Correlation ID threading every message of one saga (UUID)'
    )

    saga_type = Column(String(100), nullable=False, comment='Registered saga definition name')
    current_state = Column(String(100), nullable=False, comment='Member of the state set declared for saga_type')

    payload = Column(JSON, nullable=False, default=dict, comment='Accumulated event payload fields')
    completed_steps = Column(JSON, nullable=False, default=list, comment='Forward steps in completion order')
    compensation_attempts = Column(Integer, nullable=False, default=0, comment='Failed compensation passes so far')

    # NOTE : optimistic concurrency, bumped by SQLAlchemy on every UPDATE
    version = Column(Integer, nullable=False, comment='Row version')

    created_at = Column(TIMESTAMP, default=utcnow, nullable=False, comment='Created on first triggering event')
    updated_at = Column(TIMESTAMP, default=utcnow, nullable=False, comment='Last persisted mutation, set by the orchestrator clock')
    completed_at = Column(TIMESTAMP, nullable=True, comment='Set when a terminal state is reached')
    timeout_at = Column(TIMESTAMP, nullable=True, comment='Deadline of the current state')

    __mapper_args__ = {
        'version_id_col': version
    }

    __table_args__ = (
        Index('ix_saga_instance_timeout', 'timeout_at', 'current_state'),
        Index('ix_saga_instance_type_state', 'saga_type', 'current_state'),
    )

    def __repr__(self):
        return (
            f"<SagaInstance(correlation_id={self.correlation_id}, type={self.saga_type}, "
            f"state={self.current_state}, version={self.version})>"
        )
