"""
Saga orchestration module

Orchestrated sagas over a transactional outbox: every step is a local
transaction and a failed saga is undone by compensating its completed steps
in reverse order.
"""

from .definition import (
    STARTED,
    COMPENSATING,
    COMPLETED,
    COMPENSATED,
    TIMEOUT,
    CANCEL,
    ActionKind,
    Action,
    Transition,
    StepDefinition,
    SagaDefinition
)
from .registry import SagaRegistry
from .state_store import SagaStateStore
from .saga_orchestrator import SagaOrchestrator, compute_backoff, consumer_name_for, timeout_message_id
from .consumer import SagaConsumer

__all__ = [
    'STARTED',
    'COMPENSATING',
    'COMPLETED',
    'COMPENSATED',
    'TIMEOUT',
    'CANCEL',
    'ActionKind',
    'Action',
    'Transition',
    'StepDefinition',
    'SagaDefinition',
    'SagaRegistry',
    'SagaStateStore',
    'SagaOrchestrator',
    'compute_backoff',
    'consumer_name_for',
    'timeout_message_id',
    'SagaConsumer'
]
