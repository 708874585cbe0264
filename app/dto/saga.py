from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


def _iso(value):
    return value.isoformat() if value else None


@dataclass
class SagaInstanceDto:
    correlation_id: str
    saga_type: str
    current_state: str
    payload: Dict[str, Any]
    completed_steps: List[str]
    compensation_attempts: int
    version: int
    created_at: str
    updated_at: str
    completed_at: Optional[str]
    timeout_at: Optional[str]

    @classmethod
    def from_model(cls, instance) -> 'SagaInstanceDto':
        return cls(
            correlation_id=instance.correlation_id,
            saga_type=instance.saga_type,
            current_state=instance.current_state,
            payload=dict(instance.payload or {}),
            completed_steps=list(instance.completed_steps or []),
            compensation_attempts=instance.compensation_attempts or 0,
            version=instance.version,
            created_at=_iso(instance.created_at),
            updated_at=_iso(instance.updated_at),
            completed_at=_iso(instance.completed_at),
            timeout_at=_iso(instance.timeout_at)
        )

    def to_dict(self):
        return {
            'correlation_id': self.correlation_id,
            'saga_type': self.saga_type,
            'current_state': self.current_state,
            'payload': self.payload,
            'completed_steps': self.completed_steps,
            'compensation_attempts': self.compensation_attempts,
            'version': self.version,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
            'completed_at': self.completed_at,
            'timeout_at': self.timeout_at
        }


@dataclass
class CompensationLogDto:
    step: str
    action: str
    outcome: str
    attempt: int
    executed_at: str
    error: Optional[str] = None

    def to_dict(self):
        return {
            'step': self.step,
            'action': self.action,
            'outcome': self.outcome,
            'attempt': self.attempt,
            'executed_at': self.executed_at,
            'error': self.error
        }


@dataclass
class SagaDetailDto:
    instance: SagaInstanceDto
    compensation_log: List[CompensationLogDto] = field(default_factory=list)

    def to_dict(self):
        return {
            'instance': self.instance.to_dict(),
            'compensation_log': [entry.to_dict() for entry in self.compensation_log]
        }


@dataclass
class DeadLetterDto:
    dead_letter_id: int
    message_id: str
    correlation_id: Optional[str]
    message_type: Optional[str]
    consumer_name: Optional[str]
    reason: str
    error: Optional[str]
    created_at: str
    resolved_at: Optional[str]

    @classmethod
    def from_model(cls, dead_letter) -> 'DeadLetterDto':
        return cls(
            dead_letter_id=dead_letter.id,
            message_id=dead_letter.message_id,
            correlation_id=dead_letter.correlation_id,
            message_type=dead_letter.message_type,
            consumer_name=dead_letter.consumer_name,
            reason=dead_letter.reason,
            error=dead_letter.error,
            created_at=_iso(dead_letter.created_at),
            resolved_at=_iso(dead_letter.resolved_at)
        )

    def to_dict(self):
        return {
            'dead_letter_id': self.dead_letter_id,
            'message_id': self.message_id,
            'correlation_id': self.correlation_id,
            'message_type': self.message_type,
            'consumer_name': self.consumer_name,
            'reason': self.reason,
            'error': self.error,
            'created_at': self.created_at,
            'resolved_at': self.resolved_at
        }


@dataclass
class ManualInterventionDto:
    intervention_id: int
    correlation_id: str
    saga_type: str
    step: Optional[str]
    reason: str
    created_at: str
    resolved_at: Optional[str]
    resolution_note: Optional[str]

    @classmethod
    def from_model(cls, intervention) -> 'ManualInterventionDto':
        return cls(
            intervention_id=intervention.id,
            correlation_id=intervention.correlation_id,
            saga_type=intervention.saga_type,
            step=intervention.step,
            reason=intervention.reason,
            created_at=_iso(intervention.created_at),
            resolved_at=_iso(intervention.resolved_at),
            resolution_note=intervention.resolution_note
        )

    def to_dict(self):
        return {
            'intervention_id': self.intervention_id,
            'correlation_id': self.correlation_id,
            'saga_type': self.saga_type,
            'step': self.step,
            'reason': self.reason,
            'created_at': self.created_at,
            'resolved_at': self.resolved_at,
            'resolution_note': self.resolution_note
        }


@dataclass
class OutboxEntryDto:
    entry_id: str
    correlation_id: str
    event_type: str
    attempts: int
    last_error: Optional[str]
    created_at: str
    flagged_at: Optional[str]

    @classmethod
    def from_model(cls, entry) -> 'OutboxEntryDto':
        return cls(
            entry_id=entry.id,
            correlation_id=entry.correlation_id,
            event_type=entry.event_type,
            attempts=entry.attempts,
            last_error=entry.last_error,
            created_at=_iso(entry.created_at),
            flagged_at=_iso(entry.flagged_at)
        )

    def to_dict(self):
        return {
            'entry_id': self.entry_id,
            'correlation_id': self.correlation_id,
            'event_type': self.event_type,
            'attempts': self.attempts,
            'last_error': self.last_error,
            'created_at': self.created_at,
            'flagged_at': self.flagged_at
        }


@dataclass
class HealthSummaryDto:
    pending_outbox: int
    open_dead_letters: int
    open_interventions: int
    parked_messages: int

    def to_dict(self):
        return {
            'pending_outbox': self.pending_outbox,
            'open_dead_letters': self.open_dead_letters,
            'open_interventions': self.open_interventions,
            'parked_messages': self.parked_messages
        }
