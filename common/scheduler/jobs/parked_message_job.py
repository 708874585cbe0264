from typing import Dict

from marshmallow import ValidationError

from common.enum.saga_enums import DeadLetterReason, HandleOutcome
from common.exception.exceptions import PersistenceConflict
from common.messaging.envelope import deserialize_envelope
from common.saga.saga_orchestrator import SagaOrchestrator
from common.utils.logging_utils import get_logger

logger = get_logger('parked_message_job')


class ParkedMessageJob:

    def __init__(self, orchestrator: SagaOrchestrator, batch_size: int = 100):
        self.orchestrator = orchestrator
        self.batch_size = batch_size

    def execute(self) -> Dict[str, int]:
        session = self.orchestrator.session_provider()
        parking_lot = self.orchestrator.parking_lot
        now = self.orchestrator.clock()

        due = [
            (parked.message_id, parked.envelope, parked.attempt)
            for parked in parking_lot.due(session, now, self.batch_size)
        ]
        session.rollback()

        counts = {outcome.value: 0 for outcome in HandleOutcome}
        for message_id, raw_envelope, attempt in due:
            try:
                envelope = deserialize_envelope(raw_envelope)
            except (ValidationError, ValueError) as e:
                logger.error(f"Parked {message_id} cannot be decoded: {e}")
                self.orchestrator.dead_letters.add_raw(session, raw_envelope, error=str(e))
                outcome = self._settle(session, message_id)

            else:
                # NOTE : handle() rolls back before raising, a failing message moves to the dead letters
                try:
                    outcome = self.orchestrator.handle(envelope, park_count=attempt)
                except PersistenceConflict as e:
                    logger.error(f"Re-evaluation of parked {message_id} kept conflicting: {e.message}")
                    self.orchestrator.dead_letters.add(
                        session, envelope, DeadLetterReason.PERSISTENCE_CONFLICT,
                        error=f"[{e.code}] {e.message}", created_at=now
                    )
                    outcome = self._settle(session, message_id)
                except Exception as e:
                    logger.error(f"Re-evaluation of parked {message_id} failed: {e}", exc_info=True)
                    self.orchestrator.dead_letters.add(
                        session, envelope, DeadLetterReason.HANDLER_ERROR, error=str(e), created_at=now
                    )
                    outcome = self._settle(session, message_id)
                else:
                    # NOTE : re-parking updated the row in place, anything else settles the message
                    if outcome != HandleOutcome.PARKED:
                        parking_lot.remove(session, message_id)
                        session.commit()

            counts[outcome.value] += 1

        if due:
            logger.info(f"Parked release: {len(due)} due, {counts}")
        return counts

    def _settle(self, session, message_id: str) -> HandleOutcome:
        self.orchestrator.parking_lot.remove(session, message_id)
        session.commit()
        return HandleOutcome.DEAD_LETTERED
