"""
Idempotency ledger

Presence of (consumer_name, message_id) means the message's effect has been
applied; reprocessing must be a no-op.

- SqlIdempotencyLedger: conditional insert under the unique constraint, in the
  caller's session so the claim commits or rolls back with the effect
- RedisIdempotencyLedger: SET NX EX, for consumers without a local SQL transaction
"""

import hashlib
import json
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Protocol

from sqlalchemy import delete, insert, select, update

from app.models.idempotency_record import IdempotencyRecord
from common.utils.logging_utils import get_logger
from common.utils.time_utils import utcnow

logger = get_logger('idempotency_ledger')

_records = IdempotencyRecord.__table__


class IdempotencyLedger(Protocol):

    def try_claim(self, consumer_name: str, message_id: str) -> bool:
        ...

    def release(self, consumer_name: str, message_id: str) -> None:
        ...


def hash_result(result: Any) -> str:
    encoded = json.dumps(result, sort_keys=True, default=str).encode('utf-8')
    return hashlib.sha256(encoded).hexdigest()


def _insert_ignore(session, values: dict):
    """INSERT that silently skips a (consumer_name, message_id) collision."""
    dialect = session.get_bind().dialect.name

    if dialect == 'postgresql':
        from sqlalchemy.dialects.postgresql import insert as pg_insert
        return pg_insert(_records).values(**values).on_conflict_do_nothing(
            index_elements=['consumer_name', 'message_id']
        )
    if dialect == 'sqlite':
        from sqlalchemy.dialects.sqlite import insert as sqlite_insert
        return sqlite_insert(_records).values(**values).on_conflict_do_nothing(
            index_elements=['consumer_name', 'message_id']
        )
    if dialect in ('mysql', 'mariadb'):
        return insert(_records).values(**values).prefix_with('IGNORE')

    return None


class SqlIdempotencyLedger:

    def __init__(self, session_provider: Callable, clock: Callable = utcnow):
        self.session_provider = session_provider
        self.clock = clock

    def try_claim(self, consumer_name: str, message_id: str, processed_at: Optional[datetime] = None) -> bool:
        session = self.session_provider()
        values = {
            'consumer_name': consumer_name,
            'message_id': message_id,
            'processed_at': processed_at or self.clock()
        }

        stmt = _insert_ignore(session, values)
        if stmt is None:
            # NOTE : dialect without an upsert form, the unique constraint still rejects a racing twin at commit
            exists = session.scalar(
                select(IdempotencyRecord.id).where(
                    IdempotencyRecord.consumer_name == consumer_name,
                    IdempotencyRecord.message_id == message_id
                )
            )
            if exists is not None:
                return False
            session.add(IdempotencyRecord(**values))
            return True

        result = session.execute(stmt)
        claimed = result.rowcount == 1

        if not claimed:
            logger.debug(f"Message {message_id} already processed by {consumer_name}")
        return claimed

    def is_processed(self, consumer_name: str, message_id: str) -> bool:
        session = self.session_provider()
        found = session.scalar(
            select(IdempotencyRecord.id).where(
                IdempotencyRecord.consumer_name == consumer_name,
                IdempotencyRecord.message_id == message_id
            )
        )
        return found is not None

    def record_result(self, consumer_name: str, message_id: str, result_hash: str) -> None:
        session = self.session_provider()
        session.execute(
            update(_records)
            .where(
                _records.c.consumer_name == consumer_name,
                _records.c.message_id == message_id
            )
            .values(result_hash=result_hash)
        )

    def release(self, consumer_name: str, message_id: str) -> None:
        session = self.session_provider()
        session.execute(
            delete(_records)
            .where(
                _records.c.consumer_name == consumer_name,
                _records.c.message_id == message_id
            )
        )

    def purge_older_than(self, cutoff: datetime) -> int:
        """Caller commits. Retention must outlast the broker's redelivery window."""
        session = self.session_provider()
        result = session.execute(
            delete(_records)
            .where(_records.c.processed_at < cutoff)
        )
        return result.rowcount or 0


class RedisIdempotencyLedger:

    KEY_PREFIX = 'idempotency'

    def __init__(self, redis_client, retention: timedelta = timedelta(days=7)):
        self.redis_client = redis_client
        self.retention = retention

    def _key(self, consumer_name: str, message_id: str) -> str:
        return f"{self.KEY_PREFIX}:{consumer_name}:{message_id}"

    def try_claim(self, consumer_name: str, message_id: str) -> bool:
        claimed = self.redis_client.set(
            self._key(consumer_name, message_id),
            utcnow().isoformat(),
            nx=True,
            ex=int(self.retention.total_seconds())
        )
        return bool(claimed)

    def is_processed(self, consumer_name: str, message_id: str) -> bool:
        return bool(self.redis_client.exists(self._key(consumer_name, message_id)))

    def release(self, consumer_name: str, message_id: str) -> None:
        self.redis_client.delete(self._key(consumer_name, message_id))
