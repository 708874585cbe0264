"""
Services package

- operator_service: inspection and repair operations over the saga core
"""

from app.services.operator_service import OperatorService

__all__ = ['OperatorService']
