"""
Saga consumer runner
Separate process feeding transport messages to the saga orchestrator

Usage:
    python run_saga_consumer.py
"""

import os
import signal
import sys
from dotenv import load_dotenv

load_dotenv()

# NOTE: the consumer process leaves the periodic jobs to the app process
os.environ.setdefault('SCHEDULER_ENABLED', 'false')

from app import create_app
from common.extensions import db
import common.extensions as extensions
from common.saga.consumer import SagaConsumer
from common.utils.logging_utils import get_logger

logger = get_logger('run_saga_consumer')


def main():
    config_name = os.getenv('FLASK_ENV', 'development')
    app = create_app(config_name)

    with app.app_context():
        consumer = SagaConsumer(
            extensions.transport,
            extensions.orchestrator,
            session_provider=lambda: db.session
        )
        if hasattr(extensions.transport, 'on_malformed'):
            extensions.transport.on_malformed = consumer.on_malformed

        def shutdown(signum, frame):
            logger.info(f"Signal {signum} received, shutting down...")
            consumer.stop()

        signal.signal(signal.SIGTERM, shutdown)
        signal.signal(signal.SIGINT, shutdown)

        logger.info("=" * 50)
        logger.info("Saga consumer starting...")
        logger.info(f"Transport: {app.config['TRANSPORT']}")
        logger.info(f"Group ID: {app.config['KAFKA_GROUP_ID']}")
        logger.info("=" * 50)

        try:
            consumer.run()
        except Exception as e:
            logger.error(f"Unexpected error: {str(e)}", exc_info=True)
            extensions.transport.close()
            sys.exit(1)

        extensions.transport.close()


if __name__ == '__main__':
    main()
