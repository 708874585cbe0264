from datetime import timedelta

import pytest

from app.sagas.match_date_saga import (
    SAGA_TYPE, MATCH_ACCEPTED, RESERVE_SLOT, NOTIFY_PARTIES, MARK_MATCH_PENDING,
    CANCEL_SLOT_RESERVATION, SLOT_RESERVED, AWAITING_SLOT, build_match_date_saga
)
from common.exception.exceptions import SagaDefinitionError, UnknownSagaType
from common.saga.definition import (
    CANCEL, COMPENSATED, COMPENSATING, COMPLETED, STARTED, TIMEOUT,
    Action, ActionKind, SagaDefinition, StepDefinition, Transition
)
from common.saga.registry import SagaRegistry


def _definition(transitions=None, steps=None, states=('Working',), state_timeouts=None, saga_type='Probe'):
    return SagaDefinition(
        saga_type=saga_type,
        states=states,
        transitions=transitions if transitions is not None else {
            (STARTED, 'Begun'): Transition(Action.emit('DoWork'), 'Working', completes=('work',)),
            ('Working', 'WorkDone'): Transition(Action.none(), COMPLETED),
        },
        steps=steps if steps is not None else [StepDefinition('work', compensation='UndoWork')],
        state_timeouts=state_timeouts or {}
    )


def test_match_date_table():
    definition = build_match_date_saga()

    transition = definition.transition_for(STARTED, MATCH_ACCEPTED)
    assert transition.action == Action.emit(RESERVE_SLOT)
    assert transition.next_state == AWAITING_SLOT
    assert definition.initiating_events == frozenset({MATCH_ACCEPTED})
    assert definition.timeout_for(AWAITING_SLOT) == timedelta(minutes=5)
    assert definition.timeout_for(COMPENSATING) is None
    assert definition.command_types == frozenset({
        RESERVE_SLOT, NOTIFY_PARTIES, MARK_MATCH_PENDING, CANCEL_SLOT_RESERVATION
    })


def test_non_terminal_states_get_timeout_and_cancel_edges():
    definition = _definition()

    for state in (STARTED, 'Working', COMPENSATING):
        for event_type in (TIMEOUT, CANCEL):
            transition = definition.transition_for(state, event_type)
            assert transition.action.kind == ActionKind.COMPENSATE
            assert transition.next_state == COMPENSATED

    assert definition.transition_for(COMPLETED, TIMEOUT) is None
    assert definition.transition_for(COMPENSATED, CANCEL) is None


def test_declared_timeout_edge_is_kept():
    transitions = {
        (STARTED, 'Begun'): Transition(Action.emit('DoWork'), 'Working'),
        ('Working', TIMEOUT): Transition(Action.emit('Nudge'), 'Working'),
    }

    definition = _definition(transitions=transitions)

    assert definition.transition_for('Working', TIMEOUT).action == Action.emit('Nudge')


def test_numeric_timeouts_are_seconds():
    definition = _definition(state_timeouts={'Working': 90})

    assert definition.timeout_for('Working') == timedelta(seconds=90)


@pytest.mark.parametrize('transitions, steps, state_timeouts, message', [
    ({('Working', 'WorkDone'): Transition(Action.none(), COMPLETED)}, None, None, "no transition leaves"),
    ({(STARTED, 'Begun'): Transition(Action.emit('DoWork'), 'Nowhere')}, None, None, "undeclared state"),
    ({(STARTED, 'Begun'): Transition(Action.emit('DoWork'), 'Working'),
      (COMPLETED, 'Again'): Transition(Action.none(), 'Working')}, None, None, "terminal state"),
    ({(STARTED, 'Begun'): Transition(Action.emit(), 'Working')}, None, None, "emits no command"),
    ({(STARTED, 'Begun'): Transition(Action.compensate(), COMPLETED)}, None, None, "does not lead to"),
    ({(STARTED, 'Begun'): Transition(Action.emit('DoWork'), 'Working', completes=('ghost',))},
     None, None, "unknown step"),
    (None, [StepDefinition('work'), StepDefinition('work')], None, "duplicate step"),
    (None, None, {'Working': 0}, "must be positive"),
    (None, None, {'Elsewhere': 10}, "undeclared state"),
])
def test_inconsistent_definitions_are_rejected(transitions, steps, state_timeouts, message):
    with pytest.raises(SagaDefinitionError) as exc_info:
        _definition(transitions=transitions, steps=steps, state_timeouts=state_timeouts)

    assert message in exc_info.value.message
    assert exc_info.value.code == 'D001'


def test_registry_routes_events_and_commands():
    registry = SagaRegistry()
    registry.register(build_match_date_saga())

    assert registry.get(SAGA_TYPE).saga_type == SAGA_TYPE
    assert registry.find_initiator(MATCH_ACCEPTED).saga_type == SAGA_TYPE
    assert registry.find_initiator(SLOT_RESERVED) is None
    assert registry.knows_event(SLOT_RESERVED)
    assert registry.knows_event(CANCEL)
    assert not registry.knows_event('MatchExploded')
    assert registry.is_command(RESERVE_SLOT)
    assert registry.is_command(MARK_MATCH_PENDING)
    assert not registry.is_command(SLOT_RESERVED)


def test_registry_rejects_duplicates():
    registry = SagaRegistry()
    registry.register(build_match_date_saga())

    with pytest.raises(SagaDefinitionError):
        registry.register(build_match_date_saga())

    with pytest.raises(SagaDefinitionError):
        registry.register(_definition(
            saga_type='Rival',
            transitions={(STARTED, MATCH_ACCEPTED): Transition(Action.emit('DoWork'), 'Working')}
        ))


def test_unknown_saga_type():
    with pytest.raises(UnknownSagaType):
        SagaRegistry().get('Nope')
