"""
Scheduled job registration
- Outbox relay: publish committed outbox entries
- Saga timeout scan: feed Timeout events to overdue sagas
- Parked message release: re-evaluate out-of-order events
- Idempotency cleanup: purge ledger records past retention
"""

from flask import current_app
from common.extensions import scheduler
import common.extensions as extensions
from common.scheduler.jobs import OutboxRelayJob, SagaTimeoutJob, ParkedMessageJob, IdempotencyCleanupJob
from common.utils.logging_utils import get_logger

logger = get_logger('scheduler_tasks')


def register_scheduled_tasks():
    config = current_app.config

    # NOTE : one run at a time per job, missed runs collapse into one
    job_options = {
        'trigger': 'interval',
        'max_instances': 1,
        'coalesce': True,
        'replace_existing': True
    }

    scheduler.add_job(
        id='outbox_relay',
        func=execute_outbox_relay_job,
        seconds=config['OUTBOX_POLL_INTERVAL_SECONDS'],
        **job_options
    )

    scheduler.add_job(
        id='saga_timeout_scan',
        func=execute_saga_timeout_job,
        seconds=config['TIMEOUT_SCAN_INTERVAL_SECONDS'],
        **job_options
    )

    scheduler.add_job(
        id='parked_message_release',
        func=execute_parked_message_job,
        seconds=config['PARKED_RELEASE_INTERVAL_SECONDS'],
        **job_options
    )

    scheduler.add_job(
        id='idempotency_cleanup',
        func=execute_idempotency_cleanup_job,
        trigger='cron',
        hour=4,
        minute=0,
        max_instances=1,
        coalesce=True,
        replace_existing=True
    )

    logger.info("All scheduled jobs registered")
    logger.info(f"Outbox relay: every {config['OUTBOX_POLL_INTERVAL_SECONDS']}s")
    logger.info(f"Saga timeout scan: every {config['TIMEOUT_SCAN_INTERVAL_SECONDS']}s")
    logger.info(f"Parked message release: every {config['PARKED_RELEASE_INTERVAL_SECONDS']}s")
    logger.info("Idempotency cleanup: daily at 04:00 UTC")


def execute_outbox_relay_job():
    with scheduler.app.app_context():
        try:
            job = OutboxRelayJob(
                extensions.outbox_relay,
                batch_size=scheduler.app.config['OUTBOX_BATCH_SIZE']
            )
            job.execute()
        except Exception as e:
            logger.error(f"Outbox relay job failed: {str(e)}", exc_info=True)


def execute_saga_timeout_job():
    with scheduler.app.app_context():
        try:
            job = SagaTimeoutJob(
                extensions.orchestrator,
                batch_size=scheduler.app.config['SAGA_SCAN_BATCH_SIZE']
            )
            job.execute()
        except Exception as e:
            logger.error(f"Saga timeout job failed: {str(e)}", exc_info=True)


def execute_parked_message_job():
    with scheduler.app.app_context():
        try:
            job = ParkedMessageJob(
                extensions.orchestrator,
                batch_size=scheduler.app.config['SAGA_SCAN_BATCH_SIZE']
            )
            job.execute()
        except Exception as e:
            logger.error(f"Parked message job failed: {str(e)}", exc_info=True)


def execute_idempotency_cleanup_job():
    with scheduler.app.app_context():
        try:
            logger.info("Idempotency cleanup started")
            job = IdempotencyCleanupJob(
                extensions.orchestrator.ledger,
                retention_days=scheduler.app.config['IDEMPOTENCY_RETENTION_DAYS']
            )
            job.execute()
            logger.info("Idempotency cleanup finished")
        except Exception as e:
            logger.error(f"Idempotency cleanup failed: {str(e)}", exc_info=True)
