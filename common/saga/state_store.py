from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from app.models.saga_instance import SagaInstance
from common.exception.exceptions import PersistenceConflict
from common.saga.definition import STARTED
from common.utils.logging_utils import get_logger

logger = get_logger('saga_state_store')


class SagaStateStore:
    """
    SagaInstance rows keyed by correlation ID.

    Writes go through the caller's session and are checked against the row
    version; save() only flushes, the caller owns the commit.
    """

    def __init__(self, session_provider: Callable):
        self.session_provider = session_provider

    def get(self, correlation_id: str) -> Optional[SagaInstance]:
        return self.session_provider().get(SagaInstance, str(correlation_id))

    def create(self, correlation_id: str, saga_type: str, now: datetime) -> SagaInstance:
        instance = SagaInstance(
            correlation_id=str(correlation_id),
            saga_type=saga_type,
            current_state=STARTED,
            payload={},
            completed_steps=[],
            compensation_attempts=0,
            created_at=now,
            updated_at=now
        )
        self.session_provider().add(instance)
        return instance

    def save(self, instance: SagaInstance) -> None:
        session = self.session_provider()
        # NOTE : a failed flush expires the instance, read the key before flushing
        correlation_id = instance.correlation_id
        try:
            session.flush()
        except StaleDataError as e:
            raise PersistenceConflict(
                message=f"Saga {correlation_id} changed since it was loaded",
                correlation_id=correlation_id
            ) from e
        except IntegrityError as e:
            # NOTE : a concurrent consumer created the same correlation ID first
            raise PersistenceConflict(
                message=f"Saga {correlation_id} was created concurrently",
                correlation_id=correlation_id
            ) from e

    def find_timed_out(self, now: datetime, limit: int = 100) -> List[SagaInstance]:
        stmt = (
            select(SagaInstance)
            .where(
                SagaInstance.timeout_at.is_not(None),
                SagaInstance.timeout_at <= now,
                SagaInstance.completed_at.is_(None)
            )
            .order_by(SagaInstance.timeout_at)
            .limit(limit)
        )
        return list(self.session_provider().scalars(stmt))

    def find_stuck(self, updated_before: datetime, limit: int = 100) -> List[SagaInstance]:
        """Non-terminal instances untouched since updated_before."""
        stmt = (
            select(SagaInstance)
            .where(
                SagaInstance.completed_at.is_(None),
                SagaInstance.updated_at <= updated_before
            )
            .order_by(SagaInstance.updated_at)
            .limit(limit)
        )
        return list(self.session_provider().scalars(stmt))
