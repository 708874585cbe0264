"""
Idempotency module

Consumer-side dedupe by (consumer name, message ID).
"""

from .ledger import IdempotencyLedger, SqlIdempotencyLedger, RedisIdempotencyLedger, hash_result
from .consumer import idempotent_consumer

__all__ = [
    'IdempotencyLedger',
    'SqlIdempotencyLedger',
    'RedisIdempotencyLedger',
    'hash_result',
    'idempotent_consumer'
]
