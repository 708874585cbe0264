"""
Scheduler setup
Background jobs on Flask-APScheduler
"""
from flask import Flask
from common.extensions import scheduler
from common.utils.logging_utils import get_logger

logger = get_logger('scheduler')


def init_scheduler(app: Flask):
    """
    Register the saga background jobs and start the scheduler
    """
    if not app.config.get('SCHEDULER_ENABLED', True):
        logger.info("Scheduler disabled (SCHEDULER_ENABLED=false)")
        return

    app.config['SCHEDULER_API_ENABLED'] = False
    app.config['SCHEDULER_TIMEZONE'] = 'UTC'

    scheduler.init_app(app)

    from common.scheduler.tasks import register_scheduled_tasks
    with app.app_context():
        register_scheduled_tasks()

    if not scheduler.running:
        scheduler.start()


__all__ = ['init_scheduler']
