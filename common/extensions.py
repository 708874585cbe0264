from flask_sqlalchemy import SQLAlchemy
from flask_apscheduler import APScheduler

db = SQLAlchemy()

scheduler = APScheduler()

redis_client = None

transport = None

saga_registry = None

orchestrator = None

outbox_relay = None

consumer_ledger = None
