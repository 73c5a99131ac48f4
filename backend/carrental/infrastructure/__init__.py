"""
Infrastructure layer - external system integrations.
Keeps business logic clean from implementation details.
"""

from .khalti_client import KhaltiGateway

__all__ = ['KhaltiGateway']
