"""
QuietMatch saga service
Flask host of the saga orchestrator, its outbox relay and its background jobs
"""

from flask import Flask
from sqlalchemy.engine import URL
import redis
import logging
import sentry_sdk
from sentry_sdk.integrations.flask import FlaskIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.redis import RedisIntegration
from common.extensions import db
import common.extensions as extensions
from common.utils.logging_utils import setup_logger


def create_app(config_name='default'):
    """
    Application Factory Pattern
    """
    app = Flask(__name__)

    from common.config.config import config
    config_class = config.get(config_name, config['default'])
    app.config.from_object(config_class)

    if app.config.get('SENTRY_DSN'):
        sentry_sdk.init(
            dsn=app.config['SENTRY_DSN'],
            integrations=[
                FlaskIntegration(),
                SqlalchemyIntegration(),
                RedisIntegration(),
            ],
            environment=app.config.get('SENTRY_ENVIRONMENT', 'development'),
            traces_sample_rate=app.config.get('SENTRY_TRACES_SAMPLE_RATE', 0.0),
            send_default_pii=False,
            attach_stacktrace=True,
        )

    log_level = getattr(logging, app.config.get('LOG_LEVEL', 'INFO'))
    logger = setup_logger(app, log_level, log_to_file=app.config.get('LOG_TO_FILE', True))

    if not app.config.get('SQLALCHEMY_DATABASE_URI'):
        required = [
            'DB_USERNAME', 'DB_PASSWORD',
            'DB_HOST', 'DB_PORT', 'DB_NAME'
        ]
        missing = [k for k in required if not app.config.get(k)]
        if missing:
            raise RuntimeError(f"Missing database settings: {missing}")

        app.config['SQLALCHEMY_DATABASE_URI'] = URL.create(
            drivername=app.config['DB_DRIVER'],
            username=app.config['DB_USERNAME'],
            password=app.config['DB_PASSWORD'],
            host=app.config['DB_HOST'],
            port=app.config['DB_PORT'],
            database=app.config['DB_NAME'],
        )

    db.init_app(app)

    if app.config.get('IDEMPOTENCY_BACKEND') == 'redis':
        _init_redis(app, logger)

    from common.saga.registry import SagaRegistry
    from app.sagas import register_sagas
    registry = register_sagas(SagaRegistry())
    extensions.saga_registry = registry

    extensions.transport = _create_transport(app, registry)

    from common.saga.saga_orchestrator import SagaOrchestrator
    from common.outbox.relay import OutboxRelay
    from common.idempotency.ledger import RedisIdempotencyLedger, SqlIdempotencyLedger
    from datetime import timedelta

    session_provider = lambda: db.session

    orchestrator = SagaOrchestrator.from_config(registry, session_provider, app.config)
    extensions.orchestrator = orchestrator

    extensions.outbox_relay = OutboxRelay(
        extensions.transport,
        session_provider,
        outbox_store=orchestrator.outbox_store,
        batch_size=app.config['OUTBOX_BATCH_SIZE'],
        max_attempts=app.config['OUTBOX_MAX_ATTEMPTS']
    )

    # NOTE: ledger for downstream consumers, the orchestrator always claims in SQL
    if extensions.redis_client is not None:
        extensions.consumer_ledger = RedisIdempotencyLedger(
            extensions.redis_client,
            retention=timedelta(days=app.config['IDEMPOTENCY_RETENTION_DAYS'])
        )
    else:
        extensions.consumer_ledger = SqlIdempotencyLedger(session_provider)

    from common.scheduler import init_scheduler
    init_scheduler(app)

    from common.exception.error_handler import register_error_handlers
    register_error_handlers(app)

    @app.route('/health')
    def health_check():
        from app.services.operator_service import OperatorService
        return {
            'status': 'healthy',
            'service': 'quietmatch-saga',
            'saga_types': [definition.saga_type for definition in registry.definitions()],
            **OperatorService.get_health_summary().to_dict()
        }, 200

    return app


def _init_redis(app, logger):
    try:
        if app.config.get('REDIS_URL'):
            logger.info("Connecting to Redis via REDIS_URL")
            extensions.redis_client = redis.from_url(
                app.config['REDIS_URL'],
                decode_responses=True,
                socket_connect_timeout=5
            )
        else:
            redis_host = app.config.get('REDIS_HOST', 'localhost')
            redis_port = app.config.get('REDIS_PORT', 6379)
            redis_password = app.config.get('REDIS_PASSWORD') or None

            logger.info(f"Connecting to Redis: {redis_host}:{redis_port} (db={app.config.get('REDIS_DB', 0)})")

            extensions.redis_client = redis.Redis(
                host=redis_host,
                port=redis_port,
                db=app.config.get('REDIS_DB', 0),
                password=redis_password,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5
            )

        extensions.redis_client.ping()
        logger.info("Redis connected")

    except redis.AuthenticationError as e:
        logger.warning(f"Redis authentication failed: {e}, falling back to the SQL ledger")
        extensions.redis_client = None
    except redis.ConnectionError as e:
        logger.warning(f"Redis connection failed: {e}, falling back to the SQL ledger")
        extensions.redis_client = None


def _create_transport(app, registry):
    if app.config.get('TRANSPORT') == 'memory':
        from common.messaging.transport import InMemoryTransport
        return InMemoryTransport()

    from common.messaging.kafka_transport import KafkaTransport

    events_topic = app.config['KAFKA_TOPIC_SAGA_EVENTS']
    commands_topic = app.config['KAFKA_TOPIC_SAGA_COMMANDS']

    def topic_for(envelope):
        return commands_topic if registry.is_command(envelope.type) else events_topic

    return KafkaTransport(
        bootstrap_servers=app.config['KAFKA_BOOTSTRAP_SERVERS'],
        client_id=app.config['KAFKA_CLIENT_ID'],
        group_id=app.config['KAFKA_GROUP_ID'],
        subscribe_topics=[events_topic],
        topic_for=topic_for,
        send_timeout=app.config['KAFKA_SEND_TIMEOUT_SECONDS']
    )
