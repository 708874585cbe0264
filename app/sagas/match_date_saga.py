"""
Match -> Date saga

Accepting a proposed pairing reserves a scheduling slot and then notifies
both parties. A failed reservation or notification, a lost reply or an
operator Cancel puts the match back to pending and frees the slot.
"""

from datetime import timedelta
from typing import Callable, Dict, Optional

from common.saga.definition import (
    STARTED,
    COMPENSATING,
    COMPLETED,
    COMPENSATED,
    Action,
    SagaDefinition,
    StepDefinition,
    Transition
)

SAGA_TYPE = 'MatchDate'

AWAITING_SLOT = 'AwaitingSlot'
AWAITING_NOTIFY = 'AwaitingNotify'

# events
MATCH_ACCEPTED = 'MatchAccepted'
SLOT_RESERVED = 'SlotReserved'
SLOT_RESERVATION_FAILED = 'SlotReservationFailed'
PARTIES_NOTIFIED = 'PartiesNotified'
NOTIFICATION_FAILED = 'NotificationFailed'

# commands
RESERVE_SLOT = 'ReserveSlot'
NOTIFY_PARTIES = 'NotifyParties'
MARK_MATCH_PENDING = 'MarkMatchPending'
CANCEL_SLOT_RESERVATION = 'CancelSlotReservation'

ACCEPT_MATCH = 'accept_match'
RESERVE_SLOT_STEP = 'reserve_slot'
NOTIFY_PARTIES_STEP = 'notify_parties'


def build_match_date_saga(
    compensation_handlers: Optional[Dict[str, Callable[[str, dict], None]]] = None,
    slot_timeout: timedelta = timedelta(minutes=5),
    notify_timeout: timedelta = timedelta(minutes=10)
) -> SagaDefinition:
    """compensation_handlers: step name -> in-process undo, run before the step's command is enqueued"""
    handlers = compensation_handlers or {}

    return SagaDefinition(
        saga_type=SAGA_TYPE,
        states=[STARTED, AWAITING_SLOT, AWAITING_NOTIFY, COMPLETED, COMPENSATING, COMPENSATED],
        transitions={
            (STARTED, MATCH_ACCEPTED): Transition(
                Action.emit(RESERVE_SLOT), AWAITING_SLOT, completes=(ACCEPT_MATCH,)
            ),
            (AWAITING_SLOT, SLOT_RESERVED): Transition(
                Action.emit(NOTIFY_PARTIES), AWAITING_NOTIFY, completes=(RESERVE_SLOT_STEP,)
            ),
            (AWAITING_SLOT, SLOT_RESERVATION_FAILED): Transition(Action.compensate(), COMPENSATED),
            (AWAITING_NOTIFY, PARTIES_NOTIFIED): Transition(
                Action.none(), COMPLETED, completes=(NOTIFY_PARTIES_STEP,)
            ),
            (AWAITING_NOTIFY, NOTIFICATION_FAILED): Transition(Action.compensate(), COMPENSATED),
        },
        steps=[
            StepDefinition(ACCEPT_MATCH, compensation=MARK_MATCH_PENDING, compensate=handlers.get(ACCEPT_MATCH)),
            StepDefinition(
                RESERVE_SLOT_STEP,
                compensation=CANCEL_SLOT_RESERVATION,
                compensate=handlers.get(RESERVE_SLOT_STEP)
            ),
            # NOTE : a sent notification cannot be taken back
            StepDefinition(NOTIFY_PARTIES_STEP),
        ],
        state_timeouts={
            AWAITING_SLOT: slot_timeout,
            AWAITING_NOTIFY: notify_timeout,
        }
    )
