"""
Transactional outbox

Messages are written in the same local transaction as the domain change and
relayed to the transport afterwards, which closes the dual-write gap.
"""

from .outbox_store import OutboxStore
from .relay import OutboxRelay, RelayReport

__all__ = [
    'OutboxStore',
    'OutboxRelay',
    'RelayReport'
]
