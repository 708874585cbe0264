from functools import wraps
from typing import Callable, Optional

import common.extensions as extensions
from common.idempotency.ledger import IdempotencyLedger, hash_result
from common.messaging.envelope import MessageEnvelope
from common.utils.logging_utils import get_logger

logger = get_logger('idempotent_consumer')


def idempotent_consumer(
    consumer_name: str,
    ledger: Optional[IdempotencyLedger] = None,
    session_provider: Optional[Callable] = None
):
    """
    Wraps a handler taking a MessageEnvelope so a redelivered message is a no-op.

    Without an explicit ledger the application's consumer ledger is used,
    looked up when the handler runs. With a session_provider (a SQL ledger
    brings its own) the claim, the handler's writes and the result hash
    commit together and a failure rolls all of them back. Without one (Redis
    ledger) the claim is released when the handler raises, so the broker's
    redelivery runs the handler again.
    """
    def decorator(func):
        @wraps(func)
        def wrapper(envelope: MessageEnvelope, *args, **kwargs):
            active_ledger = ledger if ledger is not None else extensions.consumer_ledger
            if active_ledger is None:
                raise RuntimeError(f"No idempotency ledger configured for {consumer_name}")

            sessions = session_provider
            if sessions is None:
                sessions = getattr(active_ledger, 'session_provider', None)

            if not active_ledger.try_claim(consumer_name, envelope.message_id):
                logger.info(f"Skipping duplicate {envelope.type} ({envelope.message_id}) for {consumer_name}")
                if sessions is not None:
                    sessions().rollback()
                return None

            try:
                result = func(envelope, *args, **kwargs)

                if sessions is not None:
                    if result is not None and hasattr(active_ledger, 'record_result'):
                        active_ledger.record_result(consumer_name, envelope.message_id, hash_result(result))
                    sessions().commit()

                return result

            except Exception as e:
                logger.error(f"{consumer_name} failed on {envelope.type} ({envelope.message_id}): {e}")
                if sessions is not None:
                    sessions().rollback()
                else:
                    active_ledger.release(consumer_name, envelope.message_id)
                raise

        return wrapper

    return decorator
