"""
Utils package

- logging_utils: logger setup shared by the app, the scheduler jobs and the consumer
- time_utils: UTC clock used by the saga stores
"""

from common.utils.logging_utils import get_logger, setup_logger
from common.utils.time_utils import utcnow

__all__ = [
    'get_logger',
    'setup_logger',
    'utcnow'
]
