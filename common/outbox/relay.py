import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from common.exception.exceptions import TransientTransportError
from common.outbox.outbox_store import OutboxStore
from common.utils.logging_utils import get_logger
from common.utils.time_utils import utcnow

logger = get_logger('outbox_relay')


@dataclass
class RelayReport:
    published: int = 0
    failed: int = 0
    flagged: List[str] = field(default_factory=list)

    def to_dict(self):
        return {
            'published': self.published,
            'failed': self.failed,
            'flagged': list(self.flagged)
        }


class OutboxRelay:
    """
    Publishes unpublished outbox entries in creation order.

    An entry is marked published only after the transport acknowledged it and
    each entry is committed on its own, so a crash republishes at most the
    entry in flight. Consumers dedupe by message ID.
    """

    def __init__(
        self,
        transport,
        session_provider: Callable,
        outbox_store: Optional[OutboxStore] = None,
        batch_size: int = 100,
        max_attempts: int = 10,
        clock: Callable = utcnow
    ):
        self.transport = transport
        self.session_provider = session_provider
        self.outbox_store = outbox_store or OutboxStore()
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self.clock = clock
        self._stop_event = threading.Event()

    def run_once(self, batch_size: Optional[int] = None) -> RelayReport:
        session = self.session_provider()
        report = RelayReport()

        entries = self.outbox_store.fetch_pending(session, batch_size or self.batch_size)
        if not entries:
            session.commit()
            return report

        for entry in entries:
            entry.attempts = (entry.attempts or 0) + 1

            try:
                self.transport.publish(OutboxStore.to_envelope(entry))
            except TransientTransportError as e:
                self._record_failure(entry, e.message, report)
                logger.warning(f"Publish failed for outbox entry {entry.id} (attempt {entry.attempts}): {e.message}")
            except Exception as e:
                # NOTE : counted like a transient failure so one bad entry cannot block the queue
                self._record_failure(entry, f"{type(e).__name__}: {e}", report)
                logger.error(
                    f"Unexpected error publishing outbox entry {entry.id} (attempt {entry.attempts}): {e}",
                    exc_info=True
                )
            else:
                entry.published_at = self.clock()
                entry.last_error = None
                report.published += 1

            session.commit()

        if report.published or report.failed:
            logger.info(f"Outbox relay pass: published={report.published}, failed={report.failed}")

        return report

    def _record_failure(self, entry, error: str, report: RelayReport):
        entry.last_error = error
        report.failed += 1

        if entry.attempts >= self.max_attempts and entry.flagged_at is None:
            # NOTE : flagged entries stay in the queue, publishing is idempotent
            entry.flagged_at = self.clock()
            report.flagged.append(entry.id)
            logger.error(
                f"Outbox entry {entry.id} ({entry.event_type}) reached {entry.attempts} attempts, "
                f"flagged for operator inspection"
            )

    def run(self, poll_interval: float = 1.0, batch_size: Optional[int] = None,
            stop_event: Optional[threading.Event] = None):
        stop_event = stop_event or self._stop_event
        logger.info(f"Outbox relay started (poll_interval={poll_interval}s)")

        while not stop_event.is_set():
            try:
                report = self.run_once(batch_size)
            except Exception as e:
                logger.error(f"Outbox relay pass aborted: {e}", exc_info=True)
                self.session_provider().rollback()
                report = RelayReport()

            # NOTE : drain a full batch immediately instead of sleeping
            if report.published + report.failed < (batch_size or self.batch_size):
                stop_event.wait(poll_interval)

        logger.info("Outbox relay stopped")

    def stop(self):
        self._stop_event.set()
