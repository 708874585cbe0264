import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError, PendingRollbackError
from sqlalchemy.orm.exc import StaleDataError

from app.models.saga_instance import SagaInstance
from common.enum.error_code import SagaErrorCode
from common.enum.saga_enums import CompensationOutcome, DeadLetterReason, HandleOutcome
from common.exception.exceptions import (
    BusinessFailure,
    CompensationFailure,
    PersistenceConflict,
    ProtocolViolation
)
from common.idempotency.ledger import SqlIdempotencyLedger
from common.messaging.envelope import MessageEnvelope
from common.outbox.outbox_store import OutboxStore
from common.saga.compensation import CompensationLogStore
from common.saga.dead_letter import DeadLetterStore, ManualInterventionQueue, ParkingLot
from common.saga.definition import (
    COMPENSATING,
    RESERVED_EVENTS,
    TIMEOUT,
    ActionKind,
    SagaDefinition
)
from common.saga.registry import SagaRegistry
from common.saga.state_store import SagaStateStore
from common.utils.logging_utils import get_logger
from common.utils.time_utils import utcnow

logger = get_logger('saga_orchestrator')

_REJECTION_ERRORS = {
    DeadLetterReason.UNDEFINED_TRANSITION: SagaErrorCode.UNDEFINED_TRANSITION,
    DeadLetterReason.UNKNOWN_EVENT_TYPE: SagaErrorCode.UNKNOWN_EVENT_TYPE,
    DeadLetterReason.EVENT_AFTER_TERMINAL: SagaErrorCode.EVENT_AFTER_TERMINAL,
    DeadLetterReason.PARK_ATTEMPTS_EXHAUSTED: SagaErrorCode.PARK_ATTEMPTS_EXHAUSTED,
}


def consumer_name_for(saga_type: str, correlation_id: str) -> str:
    return f"{saga_type}:{correlation_id}"


def timeout_message_id(correlation_id: str, version: int) -> str:
    """Same instance version -> same message ID, so concurrent scanners dedupe in the ledger."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{correlation_id}:timeout:{version}"))


def compute_backoff(attempts: int, base: timedelta, maximum: timedelta) -> timedelta:
    """base * 2^(attempts-1), capped at maximum."""
    if attempts < 1:
        return base
    return min(base * (2 ** (attempts - 1)), maximum)


@dataclass
class CompensationResult:
    failed_step: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.failed_step is None


class SagaOrchestrator:
    """
    Drives saga instances through their transition tables.

    One handle() call is one local transaction: the idempotency claim, the new
    instance state, the outbox commands and the compensation log rows commit
    together or not at all.
    """

    def __init__(
        self,
        registry: SagaRegistry,
        session_provider: Callable,
        outbox_store: Optional[OutboxStore] = None,
        ledger: Optional[SqlIdempotencyLedger] = None,
        clock: Callable[[], datetime] = utcnow,
        park_delay: timedelta = timedelta(seconds=5),
        max_park_attempts: int = 5,
        compensation_max_attempts: int = 3,
        compensation_backoff_base: timedelta = timedelta(seconds=1),
        compensation_backoff_max: timedelta = timedelta(seconds=30)
    ):
        self.registry = registry
        self.session_provider = session_provider
        self.outbox_store = outbox_store or OutboxStore()
        self.ledger = ledger or SqlIdempotencyLedger(session_provider, clock)
        self.clock = clock
        self.park_delay = park_delay
        self.max_park_attempts = max_park_attempts
        self.compensation_max_attempts = compensation_max_attempts
        self.compensation_backoff_base = compensation_backoff_base
        self.compensation_backoff_max = compensation_backoff_max

        self.state_store = SagaStateStore(session_provider)
        self.compensation_log = CompensationLogStore()
        self.dead_letters = DeadLetterStore()
        self.parking_lot = ParkingLot()
        self.interventions = ManualInterventionQueue()

    @classmethod
    def from_config(cls, registry: SagaRegistry, session_provider: Callable, config, clock: Callable = utcnow,
                    outbox_store: Optional[OutboxStore] = None) -> 'SagaOrchestrator':
        return cls(
            registry=registry,
            session_provider=session_provider,
            outbox_store=outbox_store,
            clock=clock,
            park_delay=timedelta(seconds=config['SAGA_PARK_DELAY_SECONDS']),
            max_park_attempts=config['SAGA_MAX_PARK_ATTEMPTS'],
            compensation_max_attempts=config['COMPENSATION_MAX_ATTEMPTS'],
            compensation_backoff_base=timedelta(seconds=config['COMPENSATION_BACKOFF_BASE_SECONDS']),
            compensation_backoff_max=timedelta(seconds=config['COMPENSATION_BACKOFF_MAX_SECONDS'])
        )

    def handle(self, envelope: MessageEnvelope, park_count: int = 0) -> HandleOutcome:
        """
        Apply one event to its saga instance.

        park_count is how many times this message has already been parked.
        A version conflict is retried once against the reloaded instance, a
        second conflict raises PersistenceConflict.
        """
        session = self.session_provider()

        for evaluation in (1, 2):
            try:
                return self._handle_once(envelope, park_count)

            except (StaleDataError, IntegrityError, PendingRollbackError) as e:
                session.rollback()
                conflict = PersistenceConflict(
                    message=f"Saga {envelope.correlation_id} conflicted on {envelope.type}: {e}",
                    correlation_id=envelope.correlation_id
                )
            except PersistenceConflict as e:
                session.rollback()
                conflict = e
            except Exception:
                session.rollback()
                raise

            if evaluation == 1:
                logger.warning(f"{conflict.message}, reloading and evaluating once more")
            else:
                logger.error(f"{conflict.message}, second conflict in a row")
                raise conflict

    def _handle_once(self, envelope: MessageEnvelope, park_count: int) -> HandleOutcome:
        session = self.session_provider()
        now = self.clock()
        correlation_id = envelope.correlation_id

        instance = self.state_store.get(correlation_id)

        if instance is None:
            if envelope.type == TIMEOUT:
                logger.debug(f"Discarding {TIMEOUT} for unknown saga {correlation_id}")
                session.rollback()
                return HandleOutcome.DISCARDED

            definition = self.registry.find_initiator(envelope.type)
            if definition is None:
                session.rollback()
                return self._reject(envelope, None, None, park_count)

            instance = self.state_store.create(correlation_id, definition.saga_type, now)
        else:
            definition = self.registry.get(instance.saga_type)

        consumer_name = consumer_name_for(definition.saga_type, correlation_id)

        if not self.ledger.try_claim(consumer_name, envelope.message_id):
            session.rollback()
            logger.info(f"Duplicate {envelope.type} ({envelope.message_id}) for saga {correlation_id}, skipped")
            return HandleOutcome.DUPLICATE

        current_state = instance.current_state

        if envelope.type == TIMEOUT and self._is_stale_timeout(envelope, instance, definition):
            session.rollback()
            logger.debug(f"Discarding stale {TIMEOUT} for saga {correlation_id} in {current_state}")
            return HandleOutcome.DISCARDED

        transition = definition.transition_for(current_state, envelope.type)
        if transition is None:
            session.rollback()
            return self._reject(envelope, definition, current_state, park_count)

        payload = dict(instance.payload or {})
        if envelope.type not in RESERVED_EVENTS:
            payload.update(envelope.payload_dict())

        completed_steps = list(instance.completed_steps or [])
        for step_name in transition.completes:
            if step_name not in completed_steps:
                completed_steps.append(step_name)

        next_state = transition.next_state
        timeout_at = self._deadline(definition, next_state, now)
        action = transition.action

        if action.kind == ActionKind.EMIT:
            for command in action.commands:
                self.outbox_store.enqueue(
                    session,
                    aggregate_id=correlation_id,
                    event_type=command,
                    payload=payload,
                    correlation_id=correlation_id,
                    created_at=now
                )

        elif action.kind == ActionKind.COMPENSATE:
            if envelope.type not in RESERVED_EVENTS:
                failure = BusinessFailure(message=f"{envelope.type} reported for saga {correlation_id}")
                logger.warning(f"[{failure.code}] {failure.message}, compensating")

            result = self._compensate(session, definition, instance, completed_steps, payload, now)
            if not result.succeeded:
                next_state = COMPENSATING
                timeout_at = self._schedule_compensation_retry(session, definition, instance, result, now)

        instance.current_state = next_state
        instance.payload = payload
        instance.completed_steps = completed_steps
        instance.updated_at = now
        instance.timeout_at = timeout_at
        if definition.is_terminal(next_state):
            instance.completed_at = now

        self.state_store.save(instance)
        session.commit()

        logger.info(
            f"Saga {definition.saga_type}:{correlation_id} {current_state} --{envelope.type}--> {next_state} "
            f"({action.kind.value}{' ' + ','.join(action.commands) if action.commands else ''})"
        )
        return HandleOutcome.APPLIED

    def _deadline(self, definition: SagaDefinition, state: str, now: datetime) -> Optional[datetime]:
        if definition.is_terminal(state):
            return None
        timeout = definition.timeout_for(state)
        return now + timeout if timeout else None

    def _is_stale_timeout(self, envelope: MessageEnvelope, instance: SagaInstance, definition: SagaDefinition) -> bool:
        if definition.is_terminal(instance.current_state):
            return True
        # NOTE : a timeout synthesized for an older version lost the race against a real event
        version = envelope.payload_dict().get('version')
        return version is not None and version != instance.version

    def _compensate(
        self,
        session,
        definition: SagaDefinition,
        instance: SagaInstance,
        completed_steps: List[str],
        payload: dict,
        now: datetime
    ) -> CompensationResult:
        correlation_id = instance.correlation_id
        attempt = (instance.compensation_attempts or 0) + 1
        already_compensated = self.compensation_log.succeeded_steps(session, correlation_id)

        for step_name in reversed(completed_steps):
            step = definition.step(step_name)
            if step is None or not step.has_compensation or step_name in already_compensated:
                continue

            action = step.compensation_action
            try:
                if step.compensate is not None:
                    step.compensate(correlation_id, dict(payload))
            except Exception as e:
                failure = CompensationFailure(step_name, f"Compensation of {step_name} failed: {e}")
                logger.error(f"[{failure.code}] Saga {correlation_id}: {failure.message} (attempt {attempt})")
                self.compensation_log.record(
                    session, correlation_id, step_name, action,
                    CompensationOutcome.FAILED, attempt, now, error=str(e)
                )
                # NOTE : earlier steps wait, compensations run strictly in reverse order
                return CompensationResult(failed_step=step_name, error=str(e))

            if step.compensation is not None:
                self.outbox_store.enqueue(
                    session,
                    aggregate_id=correlation_id,
                    event_type=step.compensation,
                    payload=payload,
                    correlation_id=correlation_id,
                    created_at=now
                )

            self.compensation_log.record(
                session, correlation_id, step_name, action,
                CompensationOutcome.SUCCEEDED, attempt, now
            )
            logger.info(f"Saga {correlation_id}: compensated {step_name} with {action}")

        return CompensationResult()

    def _schedule_compensation_retry(
        self,
        session,
        definition: SagaDefinition,
        instance: SagaInstance,
        result: CompensationResult,
        now: datetime
    ) -> Optional[datetime]:
        attempts = (instance.compensation_attempts or 0) + 1
        instance.compensation_attempts = attempts

        if attempts >= self.compensation_max_attempts:
            self.interventions.open(
                session,
                correlation_id=instance.correlation_id,
                saga_type=definition.saga_type,
                step=result.failed_step,
                reason=f"{SagaErrorCode.COMPENSATION_EXHAUSTED.message} Last error: {result.error}",
                created_at=now
            )
            return None

        delay = compute_backoff(attempts, self.compensation_backoff_base, self.compensation_backoff_max)
        logger.warning(
            f"Saga {instance.correlation_id}: compensation attempt {attempts} failed, retrying in {delay.total_seconds()}s"
        )
        return now + delay

    def _reject(
        self,
        envelope: MessageEnvelope,
        definition: Optional[SagaDefinition],
        current_state: Optional[str],
        park_count: int
    ) -> HandleOutcome:
        """
        Undefined transition, the session has already been rolled back.

        Known events that may still become applicable are parked, everything
        else is claimed and dead-lettered so a redelivery is not reported twice.
        """
        session = self.session_provider()
        now = self.clock()

        if definition is None:
            definition = self.registry.definition_for_event(envelope.type)

        if definition is None or not self.registry.knows_event(envelope.type):
            reason = DeadLetterReason.UNKNOWN_EVENT_TYPE
        elif current_state is not None and definition.is_terminal(current_state):
            if envelope.type == TIMEOUT:
                return HandleOutcome.DISCARDED
            reason = DeadLetterReason.EVENT_AFTER_TERMINAL
        elif park_count < self.max_park_attempts:
            self.parking_lot.park(
                session,
                envelope,
                attempt=park_count + 1,
                release_at=now + self.park_delay,
                created_at=now
            )
            session.commit()
            return HandleOutcome.PARKED
        else:
            reason = DeadLetterReason.PARK_ATTEMPTS_EXHAUSTED

        violation = ProtocolViolation(
            _REJECTION_ERRORS[reason],
            f"{envelope.type} in state {current_state or '<none>'} for saga {envelope.correlation_id}: "
            f"{_REJECTION_ERRORS[reason].message}"
        )

        consumer_name = consumer_name_for(
            definition.saga_type if definition else 'unrouted',
            envelope.correlation_id
        )
        if not self.ledger.try_claim(consumer_name, envelope.message_id):
            session.rollback()
            return HandleOutcome.DUPLICATE

        self.dead_letters.add(
            session,
            envelope,
            reason,
            error=f"[{violation.code}] {violation.message}",
            consumer_name=consumer_name,
            created_at=now
        )
        session.commit()
        return HandleOutcome.DEAD_LETTERED
