from enum import Enum


class SagaErrorCode(Enum):
    # 1. Transport
    TRANSPORT_UNAVAILABLE = ("T001", "Message transport did not acknowledge the publish.", True)

    # 2. Persistence
    PERSISTENCE_CONFLICT = ("P001", "Saga instance was modified concurrently.", True)

    # 3. Protocol
    UNDEFINED_TRANSITION = ("S001", "No transition is defined for this event in the current state.", False)
    UNKNOWN_EVENT_TYPE = ("S002", "No registered saga handles this event type.", False)
    EVENT_AFTER_TERMINAL = ("S003", "Event arrived after the saga reached a terminal state.", False)
    PARK_ATTEMPTS_EXHAUSTED = ("S004", "Out-of-order event was never applicable.", False)
    MALFORMED_ENVELOPE = ("S005", "Message envelope could not be decoded.", False)

    # 4. Business
    BUSINESS_FAILURE = ("B001", "Downstream service reported a business failure.", False)

    # 5. Compensation
    COMPENSATION_FAILED = ("C001", "Compensation action failed.", True)
    COMPENSATION_EXHAUSTED = ("C002", "Compensation retries exhausted, manual intervention required.", False)

    # 6. Definitions / operator
    INVALID_DEFINITION = ("D001", "Saga definition is inconsistent.", False)
    UNKNOWN_SAGA_TYPE = ("D002", "Saga type is not registered.", False)
    SAGA_NOT_FOUND = ("O001", "Saga instance not found.", False)
    RECORD_NOT_FOUND = ("O002", "Operator record not found.", False)

    def __init__(self, code, message, retryable):
        self.code = code
        self.message = message
        self.retryable = retryable
