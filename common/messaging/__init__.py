"""
Messaging module

Transport-agnostic envelope and the pluggable transports that carry it.
"""

from .envelope import (
    MessageEnvelope,
    MessageEnvelopeSchema,
    serialize_envelope,
    deserialize_envelope
)
from .transport import MessageTransport, InMemoryTransport

__all__ = [
    'MessageEnvelope',
    'MessageEnvelopeSchema',
    'serialize_envelope',
    'deserialize_envelope',
    'MessageTransport',
    'InMemoryTransport'
]
