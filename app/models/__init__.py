"""
Models package
SQLAlchemy ORM models of the saga core (one model per file)

- SagaInstance: durable per-instance saga state, keyed by correlation ID
- OutboxEntry: message committed with the domain write, relayed later
- IdempotencyRecord: (consumer, message ID) dedupe ledger
- CompensationLog: audit trail and replay guard for compensations
- DeadLetter: messages routed away from the orchestrator loop
- ParkedMessage: out-of-order events waiting for re-evaluation
- ManualIntervention: sagas whose compensation retries were exhausted
"""

from common.extensions import db

from app.models.saga_instance import SagaInstance
from app.models.outbox_entry import OutboxEntry
from app.models.idempotency_record import IdempotencyRecord
from app.models.compensation_log import CompensationLog
from app.models.dead_letter import DeadLetter
from app.models.parked_message import ParkedMessage
from app.models.manual_intervention import ManualIntervention

__all__ = [
    'db',

    'SagaInstance',
    'OutboxEntry',
    'IdempotencyRecord',
    'CompensationLog',
    'DeadLetter',
    'ParkedMessage',
    'ManualIntervention'
]
