from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import func, select

from app.models.outbox_entry import OutboxEntry
from common.messaging.envelope import MessageEnvelope, encode_payload
from common.utils.logging_utils import get_logger
from common.utils.time_utils import utcnow

logger = get_logger('outbox_store')


class OutboxStore:
    """
    Transactional outbox.

    enqueue() only adds to the caller's session: it never begins, flushes or
    commits a transaction, so the message commits or rolls back together with
    the domain write that announces it.
    """

    def enqueue(
        self,
        session,
        aggregate_id: str,
        event_type: str,
        payload: Union[Dict[str, Any], bytes, None],
        correlation_id: Optional[str] = None,
        created_at: Optional[datetime] = None
    ) -> OutboxEntry:
        entry = OutboxEntry(
            aggregate_id=str(aggregate_id),
            correlation_id=str(correlation_id or aggregate_id),
            event_type=event_type,
            payload=encode_payload(payload),
            created_at=created_at or utcnow(),
            attempts=0
        )
        session.add(entry)

        logger.debug(f"Enqueued {event_type} for aggregate {aggregate_id}")
        return entry

    @staticmethod
    def to_envelope(entry: OutboxEntry) -> MessageEnvelope:
        return MessageEnvelope(
            message_id=entry.id,
            correlation_id=entry.correlation_id,
            type=entry.event_type,
            payload=entry.payload,
            attempt=max(entry.attempts - 1, 0)
        )

    # NOTE : read side, used by the relay and the operator surface

    def fetch_pending(self, session, batch_size: int) -> List[OutboxEntry]:
        stmt = (
            select(OutboxEntry)
            .where(OutboxEntry.published_at.is_(None))
            .order_by(OutboxEntry.created_at, OutboxEntry.id)
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )
        return list(session.scalars(stmt))

    def fetch_flagged(self, session, limit: int = 100) -> List[OutboxEntry]:
        stmt = (
            select(OutboxEntry)
            .where(OutboxEntry.published_at.is_(None), OutboxEntry.flagged_at.is_not(None))
            .order_by(OutboxEntry.flagged_at)
            .limit(limit)
        )
        return list(session.scalars(stmt))

    def count_pending(self, session) -> int:
        stmt = select(func.count()).select_from(OutboxEntry).where(OutboxEntry.published_at.is_(None))
        return session.scalar(stmt) or 0
