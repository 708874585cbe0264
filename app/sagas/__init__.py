"""
Saga workflows hosted by this application
"""

from common.saga.registry import SagaRegistry
from app.sagas.match_date_saga import build_match_date_saga


def register_sagas(registry: SagaRegistry) -> SagaRegistry:
    registry.register(build_match_date_saga())
    return registry


__all__ = ['register_sagas', 'build_match_date_saga']
