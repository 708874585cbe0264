"""
Saga definition

A saga type is an explicit data table (current state, event type) -> Transition,
so a workflow can be read and tested without the transport or the stores.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

from common.enum.error_code import SagaErrorCode
from common.exception.exceptions import SagaDefinitionError

STARTED = 'Started'
COMPENSATING = 'Compensating'
COMPLETED = 'Completed'
COMPENSATED = 'Compensated'

TIMEOUT = 'Timeout'
CANCEL = 'Cancel'

RESERVED_STATES = (STARTED, COMPENSATING, COMPLETED, COMPENSATED)
RESERVED_EVENTS = (TIMEOUT, CANCEL)
TERMINAL_STATES = frozenset({COMPLETED, COMPENSATED})


class ActionKind(str, Enum):
    EMIT = "emit"  # enqueue downstream commands
    COMPENSATE = "compensate"  # undo completed steps in reverse
    NONE = "none"


@dataclass(frozen=True)
class Action:
    kind: ActionKind
    commands: Tuple[str, ...] = ()

    @classmethod
    def emit(cls, *commands: str) -> 'Action':
        return cls(ActionKind.EMIT, tuple(commands))

    @classmethod
    def compensate(cls) -> 'Action':
        return cls(ActionKind.COMPENSATE)

    @classmethod
    def none(cls) -> 'Action':
        return cls(ActionKind.NONE)


@dataclass(frozen=True)
class Transition:
    action: Action
    next_state: str
    # forward steps this transition marks as done
    completes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class StepDefinition:
    """
    A forward step and how to undo it.

    compensation: command type enqueued in the outbox when the step is undone
    compensate: in-process handler called as compensate(correlation_id, payload),
        must be idempotent since a failed pass is retried
    """
    name: str
    compensation: Optional[str] = None
    compensate: Optional[Callable[[str, dict], None]] = None

    @property
    def has_compensation(self) -> bool:
        return self.compensation is not None or self.compensate is not None

    @property
    def compensation_action(self) -> str:
        if self.compensation:
            return self.compensation
        return getattr(self.compensate, '__name__', self.name)


@dataclass
class SagaDefinition:
    saga_type: str
    states: Iterable[str]
    transitions: Dict[Tuple[str, str], Transition]
    steps: List[StepDefinition] = field(default_factory=list)
    state_timeouts: Dict[str, Union[timedelta, int, float]] = field(default_factory=dict)

    def __post_init__(self):
        self.states = frozenset(self.states) | frozenset(RESERVED_STATES)
        self.transitions = dict(self.transitions)
        self.steps = list(self.steps)
        self.state_timeouts = {
            state: value if isinstance(value, timedelta) else timedelta(seconds=value)
            for state, value in self.state_timeouts.items()
        }
        self._steps_by_name = {}

        self._validate()
        self._add_default_edges()

    def _fail(self, message: str):
        raise SagaDefinitionError(
            SagaErrorCode.INVALID_DEFINITION,
            f"{self.saga_type}: {message}",
            saga_type=self.saga_type
        )

    def _validate(self):
        if not self.saga_type:
            self._fail("saga_type is required")

        for step in self.steps:
            if step.name in self._steps_by_name:
                self._fail(f"duplicate step '{step.name}'")
            self._steps_by_name[step.name] = step

        if not any(state == STARTED for state, _ in self.transitions):
            self._fail(f"no transition leaves '{STARTED}'")

        for (state, event_type), transition in self.transitions.items():
            edge = f"({state}, {event_type})"

            if state not in self.states:
                self._fail(f"{edge} starts from undeclared state '{state}'")
            if transition.next_state not in self.states:
                self._fail(f"{edge} leads to undeclared state '{transition.next_state}'")
            if state in TERMINAL_STATES:
                self._fail(f"{edge} leaves terminal state '{state}'")

            if transition.action.kind == ActionKind.EMIT and not transition.action.commands:
                self._fail(f"{edge} emits no command")
            if transition.action.kind != ActionKind.EMIT and transition.action.commands:
                self._fail(f"{edge} lists commands on a '{transition.action.kind.value}' action")
            if transition.action.kind == ActionKind.COMPENSATE and transition.next_state != COMPENSATED:
                self._fail(f"{edge} compensates but does not lead to '{COMPENSATED}'")

            for step_name in transition.completes:
                if step_name not in self._steps_by_name:
                    self._fail(f"{edge} completes unknown step '{step_name}'")

        for state, timeout in self.state_timeouts.items():
            if state not in self.states:
                self._fail(f"timeout declared for undeclared state '{state}'")
            if timeout <= timedelta(0):
                self._fail(f"timeout of '{state}' must be positive")

    def _add_default_edges(self):
        for state in self.states:
            if state in TERMINAL_STATES:
                continue
            for event_type in RESERVED_EVENTS:
                self.transitions.setdefault(
                    (state, event_type),
                    Transition(Action.compensate(), COMPENSATED)
                )

    def transition_for(self, state: str, event_type: str) -> Optional[Transition]:
        return self.transitions.get((state, event_type))

    def is_terminal(self, state: str) -> bool:
        return state in TERMINAL_STATES

    def step(self, name: str) -> Optional[StepDefinition]:
        return self._steps_by_name.get(name)

    def timeout_for(self, state: str) -> Optional[timedelta]:
        return self.state_timeouts.get(state)

    @property
    def initiating_events(self) -> FrozenSet[str]:
        return frozenset(
            event_type for state, event_type in self.transitions
            if state == STARTED and event_type not in RESERVED_EVENTS
        )

    @property
    def event_types(self) -> FrozenSet[str]:
        return frozenset(event_type for _, event_type in self.transitions)

    @property
    def command_types(self) -> FrozenSet[str]:
        commands = set()
        for transition in self.transitions.values():
            commands.update(transition.action.commands)
        for step in self.steps:
            if step.compensation:
                commands.add(step.compensation)
        return frozenset(commands)
