import os


class Config:
    SECRET_KEY = os.getenv('SECRET_KEY')

    DB_USERNAME = os.getenv('DB_USERNAME')
    DB_PASSWORD = os.getenv('DB_PASSWORD')
    DB_HOST = os.getenv('DB_HOST', 'localhost')
    DB_PORT = int(os.getenv('DB_PORT', 3306))
    DB_NAME = os.getenv('DB_NAME', 'matching_db')
    DB_DRIVER = os.getenv('DB_DRIVER', 'mysql+pymysql')

    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = False

    REDIS_HOST = os.getenv('REDIS_HOST', 'localhost')
    REDIS_PORT = int(os.getenv('REDIS_PORT', 6379))
    REDIS_DB = int(os.getenv('REDIS_DB', 0))
    REDIS_PASSWORD = os.getenv('REDIS_PASSWORD')
    REDIS_URL = os.getenv('REDIS_URL')

    # NOTE: 'kafka' in deployments, 'memory' for local runs and tests
    TRANSPORT = os.getenv('TRANSPORT', 'kafka')

    KAFKA_BOOTSTRAP_SERVERS = os.getenv('KAFKA_BOOTSTRAP_SERVERS', 'localhost:9092')
    KAFKA_CLIENT_ID = os.getenv('KAFKA_CLIENT_ID', 'quietmatch-saga')
    KAFKA_GROUP_ID = os.getenv('KAFKA_GROUP_ID', 'quietmatch-saga-orchestrator')
    KAFKA_TOPIC_SAGA_EVENTS = os.getenv('KAFKA_TOPIC_SAGA_EVENTS', 'saga-events')
    KAFKA_TOPIC_SAGA_COMMANDS = os.getenv('KAFKA_TOPIC_SAGA_COMMANDS', 'saga-commands')
    KAFKA_SEND_TIMEOUT_SECONDS = int(os.getenv('KAFKA_SEND_TIMEOUT_SECONDS', 5))

    # NOTE: downstream consumers only, the orchestrator always claims in SQL
    IDEMPOTENCY_BACKEND = os.getenv('IDEMPOTENCY_BACKEND', 'sql')
    IDEMPOTENCY_RETENTION_DAYS = int(os.getenv('IDEMPOTENCY_RETENTION_DAYS', 7))

    OUTBOX_POLL_INTERVAL_SECONDS = int(os.getenv('OUTBOX_POLL_INTERVAL_SECONDS', 1))
    OUTBOX_BATCH_SIZE = int(os.getenv('OUTBOX_BATCH_SIZE', 100))
    OUTBOX_MAX_ATTEMPTS = int(os.getenv('OUTBOX_MAX_ATTEMPTS', 10))

    SAGA_PARK_DELAY_SECONDS = int(os.getenv('SAGA_PARK_DELAY_SECONDS', 5))
    SAGA_MAX_PARK_ATTEMPTS = int(os.getenv('SAGA_MAX_PARK_ATTEMPTS', 5))

    COMPENSATION_MAX_ATTEMPTS = int(os.getenv('COMPENSATION_MAX_ATTEMPTS', 3))
    COMPENSATION_BACKOFF_BASE_SECONDS = int(os.getenv('COMPENSATION_BACKOFF_BASE_SECONDS', 1))
    COMPENSATION_BACKOFF_MAX_SECONDS = int(os.getenv('COMPENSATION_BACKOFF_MAX_SECONDS', 30))

    TIMEOUT_SCAN_INTERVAL_SECONDS = int(os.getenv('TIMEOUT_SCAN_INTERVAL_SECONDS', 5))
    PARKED_RELEASE_INTERVAL_SECONDS = int(os.getenv('PARKED_RELEASE_INTERVAL_SECONDS', 2))
    SAGA_SCAN_BATCH_SIZE = int(os.getenv('SAGA_SCAN_BATCH_SIZE', 100))

    SCHEDULER_ENABLED = os.getenv('SCHEDULER_ENABLED', 'true').lower() == 'true'

    SENTRY_DSN = os.getenv('SENTRY_DSN')
    SENTRY_ENVIRONMENT = os.getenv('SENTRY_ENVIRONMENT', 'development')
    SENTRY_TRACES_SAMPLE_RATE = float(os.getenv('SENTRY_TRACES_SAMPLE_RATE', 0.0))

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_TO_FILE = True


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_ECHO = False
    LOG_LEVEL = 'DEBUG'
    TRANSPORT = os.getenv('TRANSPORT', 'memory')


class ProductionConfig(Config):
    DEBUG = False
    SQLALCHEMY_ECHO = False
    LOG_LEVEL = 'WARNING'


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    TRANSPORT = 'memory'
    IDEMPOTENCY_BACKEND = 'sql'
    SCHEDULER_ENABLED = False
    SENTRY_DSN = None
    LOG_TO_FILE = False


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig,
}
