from flask import jsonify

from common.enum.error_code import SagaErrorCode
from common.exception.exceptions import SagaError, SagaNotFound, RecordNotFound, ProtocolViolation
from common.utils.logging_utils import get_logger
from sqlalchemy.exc import SQLAlchemyError

logger = get_logger('error_handler')


def _status_for(e: SagaError) -> int:
    if isinstance(e, (SagaNotFound, RecordNotFound)):
        return 404
    if isinstance(e, ProtocolViolation):
        return 409
    return 503 if e.retryable else 500


def register_error_handlers(app):
    @app.errorhandler(SagaError)
    def handle_saga_error(e):
        return jsonify({
            "result": "fail",
            "message": e.message,
            "code": e.code,
            "data": None
        }), _status_for(e)

    @app.errorhandler(SQLAlchemyError)
    def handle_db_error(e):
        logger.error(f"Database error: {e}")
        return jsonify({
            "result": "fail",
            "message": "Database operation failed.",
            "code": SagaErrorCode.PERSISTENCE_CONFLICT.code,
            "data": None
        }), 503
