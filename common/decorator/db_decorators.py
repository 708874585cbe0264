from functools import wraps
from common.extensions import db
from common.utils.logging_utils import get_logger

logger = get_logger('db_decorators')


def transactional(func):
    """
    Commit on return, roll back on exception.

    Domain writes and OutboxStore.enqueue() inside the wrapped function share
    db.session, so the entity and its outbox entry commit together.
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            result = func(*args, **kwargs)

            db.session.commit()

            return result

        except Exception as e:
            logger.error(f"Transaction in {func.__name__} rolled back: {e}")
            db.session.rollback()
            raise

    return wrapper


def transactional_readonly(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            result = func(*args, **kwargs)
            return result

        except Exception:
            db.session.rollback()
            raise

    return wrapper
