from enum import Enum


class HandleOutcome(str, Enum):
    APPLIED = "applied"  # transition executed and persisted
    DUPLICATE = "duplicate"  # already claimed by the ledger
    PARKED = "parked"  # out-of-order, re-evaluated later
    DEAD_LETTERED = "dead_lettered"  # protocol violation, routed to operators
    DISCARDED = "discarded"  # stale timeout for a finished saga


class CompensationOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class DeadLetterReason(str, Enum):
    UNDEFINED_TRANSITION = "undefined_transition"
    UNKNOWN_EVENT_TYPE = "unknown_event_type"
    EVENT_AFTER_TERMINAL = "event_after_terminal"
    PARK_ATTEMPTS_EXHAUSTED = "park_attempts_exhausted"
    PERSISTENCE_CONFLICT = "persistence_conflict"
    MALFORMED_ENVELOPE = "malformed_envelope"
    HANDLER_ERROR = "handler_error"
