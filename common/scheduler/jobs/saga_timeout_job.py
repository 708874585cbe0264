from typing import Dict

from common.enum.saga_enums import HandleOutcome
from common.messaging.envelope import MessageEnvelope
from common.saga.definition import TIMEOUT
from common.saga.saga_orchestrator import SagaOrchestrator, timeout_message_id
from common.utils.logging_utils import get_logger

logger = get_logger('saga_timeout_job')


class SagaTimeoutJob:
    """
    Feeds a Timeout event to every non-terminal saga past its deadline.

    The Timeout goes through the same transition table as any other event,
    so a saga whose reply was lost still ends up compensated.
    """

    def __init__(self, orchestrator: SagaOrchestrator, batch_size: int = 100):
        self.orchestrator = orchestrator
        self.batch_size = batch_size

    def execute(self) -> Dict[str, int]:
        session = self.orchestrator.session_provider()
        now = self.orchestrator.clock()

        due = [
            (instance.correlation_id, instance.current_state, instance.version)
            for instance in self.orchestrator.state_store.find_timed_out(now, self.batch_size)
        ]
        session.rollback()

        counts = {outcome.value: 0 for outcome in HandleOutcome}
        for correlation_id, state, version in due:
            envelope = MessageEnvelope.create(
                TIMEOUT,
                correlation_id,
                payload={'state': state, 'version': version},
                message_id=timeout_message_id(correlation_id, version)
            )

            try:
                outcome = self.orchestrator.handle(envelope)
            except Exception as e:
                logger.error(f"Timeout handling failed for saga {correlation_id}: {e}", exc_info=True)
                continue

            counts[outcome.value] += 1
            logger.info(f"Saga {correlation_id} timed out in {state}: {outcome.value}")

        if due:
            logger.info(f"Timeout scan: {len(due)} due, {counts}")
        return counts
