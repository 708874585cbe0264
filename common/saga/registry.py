from typing import Dict, List, Optional

from common.enum.error_code import SagaErrorCode
from common.exception.exceptions import SagaDefinitionError, UnknownSagaType
from common.saga.definition import RESERVED_EVENTS, SagaDefinition
from common.utils.logging_utils import get_logger

logger = get_logger('saga_registry')


class SagaRegistry:

    def __init__(self):
        self._definitions: Dict[str, SagaDefinition] = {}
        self._initiators: Dict[str, SagaDefinition] = {}

    def register(self, definition: SagaDefinition) -> SagaDefinition:
        if definition.saga_type in self._definitions:
            raise SagaDefinitionError(
                SagaErrorCode.INVALID_DEFINITION,
                f"Saga type '{definition.saga_type}' is already registered"
            )

        # NOTE : an initiating event must map to exactly one saga type
        for event_type in definition.initiating_events:
            owner = self._initiators.get(event_type)
            if owner is not None:
                raise SagaDefinitionError(
                    SagaErrorCode.INVALID_DEFINITION,
                    f"'{event_type}' already starts saga type '{owner.saga_type}'"
                )

        self._definitions[definition.saga_type] = definition
        for event_type in definition.initiating_events:
            self._initiators[event_type] = definition

        logger.info(
            f"Registered saga {definition.saga_type} "
            f"(initiators={sorted(definition.initiating_events)}, transitions={len(definition.transitions)})"
        )
        return definition

    def get(self, saga_type: str) -> SagaDefinition:
        try:
            return self._definitions[saga_type]
        except KeyError:
            raise UnknownSagaType(message=f"Saga type '{saga_type}' is not registered", saga_type=saga_type)

    def find_initiator(self, event_type: str) -> Optional[SagaDefinition]:
        return self._initiators.get(event_type)

    def definition_for_event(self, event_type: str) -> Optional[SagaDefinition]:
        for definition in self._definitions.values():
            if event_type in definition.event_types:
                return definition
        return None

    def knows_event(self, event_type: str) -> bool:
        if event_type in RESERVED_EVENTS:
            return bool(self._definitions)
        return self.definition_for_event(event_type) is not None

    def is_command(self, message_type: str) -> bool:
        return any(message_type in definition.command_types for definition in self._definitions.values())

    def definitions(self) -> List[SagaDefinition]:
        return list(self._definitions.values())
