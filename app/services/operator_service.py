from datetime import timedelta
from typing import List, Optional

from marshmallow import ValidationError

import common.extensions as extensions
from common.extensions import db
from common.decorator.db_decorators import transactional, transactional_readonly
from common.enum.error_code import SagaErrorCode
from common.enum.saga_enums import DeadLetterReason, HandleOutcome
from common.exception.exceptions import ProtocolViolation, RecordNotFound, SagaNotFound
from common.messaging.envelope import MessageEnvelope, deserialize_envelope
from common.saga.definition import CANCEL
from common.utils.logging_utils import get_logger

from app.dto.saga import (
    SagaInstanceDto, SagaDetailDto, CompensationLogDto,
    DeadLetterDto, ManualInterventionDto, OutboxEntryDto,
    HealthSummaryDto,
)

logger = get_logger('operator_service')


class OperatorService:
    """Plain callables behind an operator CLI or UI."""

    @staticmethod
    @transactional_readonly
    def get_saga(correlation_id: str) -> SagaDetailDto:
        orchestrator = extensions.orchestrator
        instance = orchestrator.state_store.get(correlation_id)
        if instance is None:
            raise SagaNotFound(message=f"Saga {correlation_id} not found", correlation_id=correlation_id)

        log = orchestrator.compensation_log.list_for(db.session, correlation_id)
        return SagaDetailDto(
            instance=SagaInstanceDto.from_model(instance),
            compensation_log=[
                CompensationLogDto(
                    step=entry.step,
                    action=entry.action,
                    outcome=entry.outcome,
                    attempt=entry.attempt,
                    executed_at=entry.executed_at.isoformat(),
                    error=entry.error
                )
                for entry in log
            ]
        )

    @staticmethod
    @transactional_readonly
    def list_stuck_instances(idle_seconds: int = 600, limit: int = 100) -> List[SagaInstanceDto]:
        """Non-terminal sagas that have not moved for idle_seconds, escalated ones included."""
        orchestrator = extensions.orchestrator
        cutoff = orchestrator.clock() - timedelta(seconds=idle_seconds)
        return [
            SagaInstanceDto.from_model(instance)
            for instance in orchestrator.state_store.find_stuck(cutoff, limit)
        ]

    @staticmethod
    @transactional_readonly
    def list_dead_letters(limit: int = 100, reason: Optional[DeadLetterReason] = None) -> List[DeadLetterDto]:
        dead_letters = extensions.orchestrator.dead_letters.list_open(db.session, limit, reason)
        return [DeadLetterDto.from_model(dead_letter) for dead_letter in dead_letters]

    @staticmethod
    def replay_dead_letter(dead_letter_id: int) -> HandleOutcome:
        """
        Feed a dead-lettered message to the orchestrator again.

        The ledger claim is released first, so a message that is still not
        applicable lands in a new dead letter. The dead letter is resolved only
        once the orchestrator returned an outcome; if handling raises it stays
        open for another replay.
        """
        orchestrator = extensions.orchestrator
        session = db.session

        dead_letter = orchestrator.dead_letters.get(session, dead_letter_id)
        if dead_letter is None or dead_letter.resolved_at is not None:
            raise RecordNotFound(message=f"Open dead letter {dead_letter_id} not found")

        try:
            envelope = deserialize_envelope(dead_letter.envelope)
        except ValidationError as e:
            raise ProtocolViolation(
                SagaErrorCode.MALFORMED_ENVELOPE,
                f"Dead letter {dead_letter_id} cannot be replayed: {e.messages}"
            ) from e

        if dead_letter.consumer_name:
            orchestrator.ledger.release(dead_letter.consumer_name, envelope.message_id)
            session.commit()

        try:
            outcome = orchestrator.handle(envelope.with_attempt(envelope.attempt + 1))
        except Exception as e:
            logger.error(f"Replay of dead letter {dead_letter_id} ({envelope.type}) failed, left open: {e}")
            raise

        dead_letter = orchestrator.dead_letters.get(session, dead_letter_id)
        dead_letter.resolved_at = orchestrator.clock()
        session.commit()

        logger.info(f"Replayed dead letter {dead_letter_id} ({envelope.type}): {outcome.value}")
        return outcome

    @staticmethod
    @transactional
    def resolve_dead_letter(dead_letter_id: int) -> DeadLetterDto:
        orchestrator = extensions.orchestrator
        dead_letter = orchestrator.dead_letters.get(db.session, dead_letter_id)
        if dead_letter is None:
            raise RecordNotFound(message=f"Dead letter {dead_letter_id} not found")

        if dead_letter.resolved_at is None:
            dead_letter.resolved_at = orchestrator.clock()
        return DeadLetterDto.from_model(dead_letter)

    @staticmethod
    @transactional_readonly
    def list_manual_interventions(limit: int = 100) -> List[ManualInterventionDto]:
        interventions = extensions.orchestrator.interventions.list_open(db.session, limit)
        return [ManualInterventionDto.from_model(intervention) for intervention in interventions]

    @staticmethod
    @transactional
    def resolve_manual_intervention(intervention_id: int, note: Optional[str] = None) -> ManualInterventionDto:
        orchestrator = extensions.orchestrator
        intervention = orchestrator.interventions.get(db.session, intervention_id)
        if intervention is None:
            raise RecordNotFound(message=f"Manual intervention {intervention_id} not found")

        intervention.resolved_at = orchestrator.clock()
        intervention.resolution_note = note
        logger.info(f"Manual intervention {intervention_id} for saga {intervention.correlation_id} resolved")
        return ManualInterventionDto.from_model(intervention)

    @staticmethod
    def trigger_compensation(correlation_id: str, reason: Optional[str] = None) -> HandleOutcome:
        """Inject a Cancel event, it takes the same compensation path as any failure."""
        orchestrator = extensions.orchestrator
        session = db.session

        instance = orchestrator.state_store.get(correlation_id)
        if instance is None:
            session.rollback()
            raise SagaNotFound(message=f"Saga {correlation_id} not found", correlation_id=correlation_id)

        definition = orchestrator.registry.get(instance.saga_type)
        state = instance.current_state
        session.rollback()

        if definition.is_terminal(state):
            raise ProtocolViolation(
                SagaErrorCode.EVENT_AFTER_TERMINAL,
                f"Saga {correlation_id} already finished in {state}",
                correlation_id=correlation_id
            )

        envelope = MessageEnvelope.create(CANCEL, correlation_id, payload={'reason': reason or 'operator'})
        outcome = orchestrator.handle(envelope)
        logger.warning(f"Compensation triggered for saga {correlation_id} ({reason}): {outcome.value}")
        return outcome

    @staticmethod
    @transactional_readonly
    def list_flagged_outbox_entries(limit: int = 100) -> List[OutboxEntryDto]:
        entries = extensions.outbox_relay.outbox_store.fetch_flagged(db.session, limit)
        return [OutboxEntryDto.from_model(entry) for entry in entries]

    @staticmethod
    @transactional_readonly
    def get_health_summary() -> HealthSummaryDto:
        orchestrator = extensions.orchestrator
        session = db.session
        return HealthSummaryDto(
            pending_outbox=orchestrator.outbox_store.count_pending(session),
            open_dead_letters=orchestrator.dead_letters.count_open(session),
            open_interventions=orchestrator.interventions.count_open(session),
            parked_messages=orchestrator.parking_lot.count(session)
        )
