import threading
from typing import Callable, Optional

from common.enum.saga_enums import DeadLetterReason, HandleOutcome
from common.exception.exceptions import PersistenceConflict
from common.messaging.envelope import MessageEnvelope
from common.saga.dead_letter import DeadLetterStore
from common.saga.saga_orchestrator import SagaOrchestrator
from common.utils.logging_utils import get_logger

logger = get_logger('saga_consumer')


class SagaConsumer:
    """
    Pulls envelopes from the transport and hands them to the orchestrator.

    Nothing a single message does stops the loop: failures that escape the
    orchestrator are dead-lettered and the next message is processed.
    """

    def __init__(
        self,
        transport,
        orchestrator: SagaOrchestrator,
        session_provider: Callable,
        dead_letters: Optional[DeadLetterStore] = None
    ):
        self.transport = transport
        self.orchestrator = orchestrator
        self.session_provider = session_provider
        self.dead_letters = dead_letters or DeadLetterStore()
        self._stop_event = threading.Event()

    def accepts(self, envelope: MessageEnvelope) -> bool:
        # NOTE : commands share the in-memory queue with events, they belong to downstream services
        return not self.orchestrator.registry.is_command(envelope.type)

    def process(self, envelope: MessageEnvelope) -> Optional[HandleOutcome]:
        if not self.accepts(envelope):
            logger.debug(f"Ignoring command {envelope.type} ({envelope.message_id})")
            return None

        try:
            outcome = self.orchestrator.handle(envelope)
            logger.debug(f"{envelope.type} ({envelope.message_id}) -> {outcome.value}")
            return outcome

        except PersistenceConflict as e:
            self._dead_letter(envelope, DeadLetterReason.PERSISTENCE_CONFLICT, f"[{e.code}] {e.message}")

        except Exception as e:
            logger.error(f"Handler error on {envelope.type} ({envelope.message_id}): {e}", exc_info=True)
            self._dead_letter(envelope, DeadLetterReason.HANDLER_ERROR, str(e))

        return HandleOutcome.DEAD_LETTERED

    def _dead_letter(self, envelope: MessageEnvelope, reason: DeadLetterReason, error: str):
        session = self.session_provider()
        session.rollback()
        try:
            self.dead_letters.add(session, envelope, reason, error=error)
            session.commit()
        except Exception as e:
            session.rollback()
            logger.critical(f"Could not dead-letter {envelope.message_id}: {e}", exc_info=True)

    def on_malformed(self, raw: bytes, error: Exception):
        session = self.session_provider()
        try:
            self.dead_letters.add_raw(session, raw, error=str(error))
            session.commit()
        except Exception as e:
            session.rollback()
            logger.critical(f"Could not dead-letter malformed record: {e}", exc_info=True)

    def run(self, stop_event: Optional[threading.Event] = None):
        stop_event = stop_event or self._stop_event
        logger.info("Saga consumer started")

        for envelope in self.transport.subscribe():
            self.process(envelope)
            if stop_event.is_set():
                break

        logger.info("Saga consumer stopped")

    def stop(self):
        self._stop_event.set()
        stop = getattr(self.transport, 'stop', None)
        if stop is not None:
            stop()
