"""
Scheduler job classes
"""

from .outbox_relay_job import OutboxRelayJob
from .saga_timeout_job import SagaTimeoutJob
from .parked_message_job import ParkedMessageJob
from .idempotency_cleanup_job import IdempotencyCleanupJob

__all__ = [
    'OutboxRelayJob',
    'SagaTimeoutJob',
    'ParkedMessageJob',
    'IdempotencyCleanupJob'
]
