from datetime import timedelta

from common.idempotency.ledger import SqlIdempotencyLedger
from common.utils.logging_utils import get_logger

logger = get_logger('idempotency_cleanup_job')


class IdempotencyCleanupJob:

    def __init__(self, ledger: SqlIdempotencyLedger, retention_days: int = 7):
        self.ledger = ledger
        self.retention_days = retention_days

    def execute(self) -> int:
        session = self.ledger.session_provider()
        cutoff = self.ledger.clock() - timedelta(days=self.retention_days)

        purged = self.ledger.purge_older_than(cutoff)
        session.commit()

        logger.info(f"Purged {purged} idempotency records processed before {cutoff}")
        return purged
