"""
Operator-facing queues of the orchestrator

- DeadLetterStore: messages that can never be applied
- ParkingLot: out-of-order events waiting to be re-evaluated
- ManualInterventionQueue: sagas whose compensation retries ran out
"""

from datetime import datetime
from typing import List, Optional, Union

from sqlalchemy import delete, func, select

from app.models.dead_letter import DeadLetter
from app.models.manual_intervention import ManualIntervention
from app.models.parked_message import ParkedMessage
from common.enum.saga_enums import DeadLetterReason
from common.messaging.envelope import MessageEnvelope, serialize_envelope
from common.utils.logging_utils import get_logger
from common.utils.time_utils import utcnow

logger = get_logger('dead_letter')


class DeadLetterStore:

    def add(
        self,
        session,
        envelope: MessageEnvelope,
        reason: DeadLetterReason,
        error: Optional[str] = None,
        consumer_name: Optional[str] = None,
        created_at: Optional[datetime] = None
    ) -> DeadLetter:
        dead_letter = DeadLetter(
            message_id=envelope.message_id,
            correlation_id=envelope.correlation_id,
            message_type=envelope.type,
            consumer_name=consumer_name,
            envelope=serialize_envelope(envelope),
            reason=reason.value,
            error=error,
            created_at=created_at or utcnow()
        )
        session.add(dead_letter)

        logger.error(
            f"Dead-lettered {envelope.type} ({envelope.message_id}) for {envelope.correlation_id}: "
            f"{reason.value} - {error}"
        )
        return dead_letter

    def add_raw(self, session, raw: Union[bytes, str], error: Optional[str] = None) -> DeadLetter:
        """Undecodable record, kept verbatim."""
        if isinstance(raw, (bytes, bytearray)):
            raw = bytes(raw).decode('utf-8', errors='replace')

        dead_letter = DeadLetter(
            message_id='',
            envelope=raw,
            reason=DeadLetterReason.MALFORMED_ENVELOPE.value,
            error=error
        )
        session.add(dead_letter)

        logger.error(f"Dead-lettered malformed envelope: {error}")
        return dead_letter

    def get(self, session, dead_letter_id: int) -> Optional[DeadLetter]:
        return session.get(DeadLetter, dead_letter_id)

    def list_open(self, session, limit: int = 100, reason: Optional[DeadLetterReason] = None) -> List[DeadLetter]:
        stmt = select(DeadLetter).where(DeadLetter.resolved_at.is_(None))
        if reason is not None:
            stmt = stmt.where(DeadLetter.reason == reason.value)
        stmt = stmt.order_by(DeadLetter.created_at, DeadLetter.id).limit(limit)
        return list(session.scalars(stmt))

    def count_open(self, session) -> int:
        stmt = select(func.count()).select_from(DeadLetter).where(DeadLetter.resolved_at.is_(None))
        return session.scalar(stmt) or 0


class ParkingLot:

    def park(
        self,
        session,
        envelope: MessageEnvelope,
        attempt: int,
        release_at: datetime,
        created_at: Optional[datetime] = None
    ) -> ParkedMessage:
        parked = session.scalar(select(ParkedMessage).where(ParkedMessage.message_id == envelope.message_id))

        if parked is None:
            parked = ParkedMessage(
                message_id=envelope.message_id,
                correlation_id=envelope.correlation_id,
                message_type=envelope.type,
                envelope=serialize_envelope(envelope),
                attempt=attempt,
                release_at=release_at,
                created_at=created_at or utcnow()
            )
            session.add(parked)
        elif attempt > parked.attempt:
            parked.attempt = attempt
            parked.release_at = release_at
        # NOTE : a redelivered copy of an already parked message keeps the existing row

        logger.info(
            f"Parked {envelope.type} ({envelope.message_id}) for {envelope.correlation_id}, "
            f"attempt {parked.attempt}, release at {parked.release_at}"
        )
        return parked

    def due(self, session, now: datetime, limit: int = 100) -> List[ParkedMessage]:
        stmt = (
            select(ParkedMessage)
            .where(ParkedMessage.release_at <= now)
            .order_by(ParkedMessage.release_at, ParkedMessage.id)
            .limit(limit)
        )
        return list(session.scalars(stmt))

    def remove(self, session, message_id: str) -> None:
        session.execute(delete(ParkedMessage).where(ParkedMessage.message_id == message_id))

    def count(self, session) -> int:
        return session.scalar(select(func.count()).select_from(ParkedMessage)) or 0


class ManualInterventionQueue:

    def open(
        self,
        session,
        correlation_id: str,
        saga_type: str,
        step: Optional[str],
        reason: str,
        created_at: Optional[datetime] = None
    ) -> ManualIntervention:
        intervention = ManualIntervention(
            correlation_id=correlation_id,
            saga_type=saga_type,
            step=step,
            reason=reason,
            created_at=created_at or utcnow()
        )
        session.add(intervention)

        logger.critical(f"Manual intervention required for saga {correlation_id} ({saga_type}), step {step}: {reason}")
        return intervention

    def get(self, session, intervention_id: int) -> Optional[ManualIntervention]:
        return session.get(ManualIntervention, intervention_id)

    def list_open(self, session, limit: int = 100) -> List[ManualIntervention]:
        stmt = (
            select(ManualIntervention)
            .where(ManualIntervention.resolved_at.is_(None))
            .order_by(ManualIntervention.created_at, ManualIntervention.id)
            .limit(limit)
        )
        return list(session.scalars(stmt))

    def count_open(self, session) -> int:
        stmt = select(func.count()).select_from(ManualIntervention).where(ManualIntervention.resolved_at.is_(None))
        return session.scalar(stmt) or 0
