from common.enum.error_code import SagaErrorCode


class SagaError(Exception):
    default_error = None

    def __init__(self, error_enum: SagaErrorCode = None, message=None, **context):
        self.error_enum = error_enum or self.default_error
        self.message = message if message else self.error_enum.message
        self.context = context
        super().__init__(self.message)

    @property
    def code(self):
        return self.error_enum.code

    @property
    def retryable(self):
        return self.error_enum.retryable


class TransientTransportError(SagaError):
    default_error = SagaErrorCode.TRANSPORT_UNAVAILABLE


class PersistenceConflict(SagaError):
    default_error = SagaErrorCode.PERSISTENCE_CONFLICT


class ProtocolViolation(SagaError):
    default_error = SagaErrorCode.UNDEFINED_TRANSITION


class BusinessFailure(SagaError):
    default_error = SagaErrorCode.BUSINESS_FAILURE


class CompensationFailure(SagaError):
    default_error = SagaErrorCode.COMPENSATION_FAILED

    def __init__(self, step: str, message=None, **context):
        self.step = step
        super().__init__(SagaErrorCode.COMPENSATION_FAILED, message, step=step, **context)


class SagaDefinitionError(SagaError):
    default_error = SagaErrorCode.INVALID_DEFINITION


class UnknownSagaType(SagaError):
    default_error = SagaErrorCode.UNKNOWN_SAGA_TYPE


class SagaNotFound(SagaError):
    default_error = SagaErrorCode.SAGA_NOT_FOUND


class RecordNotFound(SagaError):
    default_error = SagaErrorCode.RECORD_NOT_FOUND
