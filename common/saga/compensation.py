from datetime import datetime
from typing import List, Optional, Set

from sqlalchemy import select

from app.models.compensation_log import CompensationLog
from common.enum.saga_enums import CompensationOutcome


class CompensationLogStore:
    """One row per executed compensation, succeeded or failed."""

    def succeeded_steps(self, session, correlation_id: str) -> Set[str]:
        stmt = select(CompensationLog.step).where(
            CompensationLog.correlation_id == correlation_id,
            CompensationLog.outcome == CompensationOutcome.SUCCEEDED.value
        )
        return set(session.scalars(stmt))

    def record(
        self,
        session,
        correlation_id: str,
        step: str,
        action: str,
        outcome: CompensationOutcome,
        attempt: int,
        executed_at: datetime,
        error: Optional[str] = None
    ) -> CompensationLog:
        entry = CompensationLog(
            correlation_id=correlation_id,
            step=step,
            action=action,
            outcome=outcome.value,
            attempt=attempt,
            executed_at=executed_at,
            error=error
        )
        session.add(entry)
        return entry

    def list_for(self, session, correlation_id: str) -> List[CompensationLog]:
        stmt = (
            select(CompensationLog)
            .where(CompensationLog.correlation_id == correlation_id)
            .order_by(CompensationLog.id)
        )
        return list(session.scalars(stmt))
