import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

ROOT_LOGGER_NAME = 'quietmatch'


def setup_logger(app=None, log_level=None, log_to_file=True, log_dir='logs'):
    if log_level is None:
        log_level = logging.INFO

    if app:
        app.logger.setLevel(log_level)

    # NOTE: every component logger (quietmatch.*) propagates to this one
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(log_level)

    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        fmt='[%(asctime)s] %(levelname)s in %(name)s (%(filename)s:%(lineno)d): %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if not log_to_file:
        return logger

    # NOTE: 10MB per file, 5 backups
    log_path = Path(log_dir)
    log_path.mkdir(exist_ok=True)

    file_handler = RotatingFileHandler(
        log_path / 'quietmatch-saga.log',
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding='utf-8'
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)

    # NOTE: errors also land in their own file
    error_handler = RotatingFileHandler(
        log_path / 'error.log',
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding='utf-8'
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(error_handler)

    return logger


def get_logger(name=None):
    if name:
        return logging.getLogger(f'{ROOT_LOGGER_NAME}.{name}')
    return logging.getLogger(ROOT_LOGGER_NAME)
